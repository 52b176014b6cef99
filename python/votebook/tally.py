"""
Vote Tally Controller

Keeps the yes/no counts in a signal that mirrors the store, and turns a
button press into one write.

Two increment policies exist:

- ``transactional`` (default): the increment runs as a store transaction
  against the server-side value and is retried on conflict, so concurrent
  voters never overwrite each other.
- ``naive``: the last tally this controller saw is incremented and written
  back whole. Two voters working from the same stale tally lose one vote.
  It is kept to demonstrate that hazard and should not be used in production.
"""

from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass
from enum import Enum
import logging

from . import Memo, Signal, memo, signal
from .errors import VotebookError
from .guard import LocalVoteGuard
from .store import RealtimeStore, Subscription

logger = logging.getLogger(__name__)

CHOICES = ("yes", "no")
ALREADY_VOTED = "You have already voted."
VOTE_IN_FLIGHT = "Your vote is being recorded."


class VotePolicy(Enum):
    """How a vote reaches the store."""
    TRANSACTIONAL = "transactional"
    NAIVE = "naive"


def _count(value: Any) -> int:
    # Numbers round-trip through the CRDT document as floats.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)


@dataclass(frozen=True)
class Tally:
    """Vote counts for both choices."""
    yes: int = 0
    no: int = 0

    @classmethod
    def from_value(cls, value: Any) -> "Tally":
        """Build a tally from a stored value, reading anything missing as zero."""
        if not isinstance(value, dict):
            return cls()
        return cls(yes=_count(value.get("yes")), no=_count(value.get("no")))

    @property
    def total(self) -> int:
        return self.yes + self.no

    def incremented(self, choice: str) -> "Tally":
        if choice == "yes":
            return Tally(self.yes + 1, self.no)
        if choice == "no":
            return Tally(self.yes, self.no + 1)
        raise ValueError(f"Unknown choice: {choice!r}")

    def to_value(self) -> Dict[str, int]:
        return {"yes": self.yes, "no": self.no}


def increment(choice: str) -> Callable[[Any], Dict[str, int]]:
    """Build a transaction update function that adds one vote for ``choice``."""
    if choice not in CHOICES:
        raise ValueError(f"Unknown choice: {choice!r}")

    def update(current: Any) -> Dict[str, int]:
        return Tally.from_value(current).incremented(choice).to_value()

    return update


class VoteTallyController:
    """
    Binds the tally at ``path`` to a signal and casts votes.

    Example:
        controller = VoteTallyController(store, guard)
        controller.mount()
        await controller.cast_vote("yes")
        controller.tally.value  # Tally(yes=1, no=0)
    """

    def __init__(
        self,
        store: RealtimeStore,
        guard: LocalVoteGuard,
        path: str = "votes",
        policy: VotePolicy = VotePolicy.TRANSACTIONAL,
        notify: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Args:
            store: The store holding the tally.
            guard: This device's vote guard.
            path: Where the tally lives in the store.
            policy: How increments are written.
            notify: Shows a notice to the user (double votes only).
        """
        self._store = store
        self._guard = guard
        self.path = path
        self.policy = VotePolicy(policy)
        self._notify = notify or (lambda text: logger.warning("Notice: %s", text))
        self._subscription: Optional[Subscription] = None
        self._pending = False

        self.tally: Signal = signal(Tally())
        self.total: Memo[int] = memo(lambda: self.tally.value.total)

    @property
    def mounted(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def has_voted(self) -> bool:
        return self._guard.is_set()

    def mount(self) -> None:
        """Open the tally subscription."""
        if self._subscription is None:
            self._subscription = self._store.subscribe(
                self.path, self.on_remote_tally_changed, self.on_remote_error
            )

    def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def on_remote_tally_changed(self, new_value: Any) -> None:
        """Replace the local tally with the value the store delivered."""
        logger.debug("Tally received: %r", new_value)
        self.tally.value = Tally.from_value(new_value)

    def on_remote_error(self, error: Exception) -> None:
        logger.error("Could not load votes from %r: %s", self.path, error)

    async def cast_vote(self, choice: str) -> None:
        """
        Add one vote for ``choice`` unless this device already voted.

        The new count shows up through the subscription, not here. Write
        failures are logged and leave the guard unset.
        """
        if choice not in CHOICES:
            raise ValueError(f"Unknown choice: {choice!r}")
        if self._guard.is_set():
            self._notify(ALREADY_VOTED)
            return
        if self._pending:
            self._notify(VOTE_IN_FLIGHT)
            return

        self._pending = True
        try:
            if self.policy is VotePolicy.TRANSACTIONAL:
                await self._store.transaction(self.path, increment(choice))
            else:
                updated = self.tally.peek().incremented(choice)
                await self._store.set(self.path, updated.to_value())
        except VotebookError as exc:
            logger.error("Saving vote for %r failed: %s", choice, exc)
            return
        finally:
            self._pending = False

        try:
            self._guard.mark()
        except OSError as exc:
            logger.error("Vote for %r saved but the guard could not be stored: %s", choice, exc)
            return
        logger.info("Vote for %r saved", choice)
