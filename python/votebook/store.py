"""
Votebook Realtime Store

This module provides the key-path store the widget is bound to. State lives
in a CRDT document, so separate store replicas can exchange updates and
converge the same way collaborative rooms do.

The store offers four primitives:

- ``subscribe``: deliver the full value at a path now and after every change
- ``set``: unconditional overwrite
- ``transaction``: optimistic read-modify-write, retried on conflict
- ``append``: write under a new, order-preserving child key

Example:
    from votebook.store import RealtimeStore

    store = RealtimeStore()
    store.subscribe("votes", lambda value: print("votes:", value))

    # Prints "votes: None" now, then "votes: {'yes': 1, 'no': 0}"
    await store.transaction("votes", lambda current: {"yes": 1, "no": 0})
"""

from typing import Any, Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass
import asyncio
import copy
import logging

try:
    from pycrdt import Doc, Map
except ImportError:
    raise ImportError(
        "pycrdt is required for the realtime store. "
        "Install with: pip install pycrdt"
    )

from .errors import PermissionDeniedError, StoreUnavailableError, TransactionAbortedError
from .keys import PushKeyGenerator

logger = logging.getLogger(__name__)

DataCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


def normalize_path(path: str) -> str:
    """Strip surrounding slashes and reject paths the store can't address."""
    cleaned = path.strip("/")
    if not cleaned:
        raise ValueError("Path must not be empty")
    if "/" in cleaned:
        raise ValueError(f"Only top-level paths are supported: {path!r}")
    return cleaned


class Subscription:
    """
    A live subscription to one path.

    Created by ``RealtimeStore.subscribe``; call ``unsubscribe`` to stop
    delivery.
    """

    def __init__(
        self,
        store: "RealtimeStore",
        path: str,
        on_data: DataCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._store = store
        self.path = path
        self._on_data = on_data
        self._on_error = on_error
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop receiving values. Safe to call more than once."""
        if self._active:
            self._active = False
            self._store._remove_subscription(self)

    def _deliver(self, value: Any) -> None:
        if not self._active:
            return
        try:
            self._on_data(value)
        except Exception:
            logger.exception("Subscriber for %r raised while handling data", self.path)

    def _fail(self, error: Exception) -> None:
        if self._on_error is None:
            logger.error("Subscription to %r failed: %s", self.path, error)
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Subscriber for %r raised while handling an error", self.path)

    def __repr__(self) -> str:
        state = "active" if self._active else "closed"
        return f"Subscription({self.path!r}, {state})"


@dataclass
class TransactionResult:
    """Outcome of a transaction.

    Attributes:
        committed: False when the update function aborted by returning None.
        snapshot: The value at the path after the transaction.
        attempts: How many times the update function ran.
    """
    committed: bool
    snapshot: Any
    attempts: int


class RealtimeStore:
    """
    An in-process realtime key-path store.

    Every write awaits ``latency`` seconds before it commits, standing in for
    the network round trip. That window is where concurrent writers
    interleave: ``set`` overwrites whatever landed in the meantime, while
    ``transaction`` notices the path moved and retries.
    """

    def __init__(
        self,
        name: str = "votebook",
        latency: float = 0.0,
        max_retries: int = 25,
        key_generator: Optional[Callable[[], str]] = None,
        denied_paths: Iterable[str] = (),
    ):
        """
        Create a new store.

        Args:
            name: Identifier used in logs.
            latency: Seconds every write waits before committing.
            max_retries: Default attempt limit for transactions.
            key_generator: Produces child keys for ``append``.
            denied_paths: Paths that refuse every read and write.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.name = name
        self.latency = latency
        self.max_retries = max_retries
        self.doc = Doc()
        self._root = self.doc.get("store", type=Map)
        self._keys = key_generator or PushKeyGenerator()
        self._denied = frozenset(normalize_path(p) for p in denied_paths)
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._versions: Dict[str, int] = {}
        self._online = True

    @property
    def online(self) -> bool:
        return self._online

    def go_offline(self) -> None:
        """Make every following read and write fail as unreachable."""
        self._online = False
        logger.warning("Store %s went offline", self.name)

    def go_online(self) -> None:
        self._online = True
        logger.info("Store %s is back online", self.name)

    def version(self, path: str) -> int:
        """Number of committed writes seen at ``path``."""
        return self._versions.get(normalize_path(path), 0)

    def get(self, path: str) -> Any:
        """Read the current value at ``path`` (None if absent)."""
        path = normalize_path(path)
        self._check(path)
        return self._read(path)

    def subscribe(
        self,
        path: str,
        on_data: DataCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Subscribe to the value at ``path``.

        ``on_data`` receives the current value immediately and the full new
        value after every change. If the path can't be read, ``on_error``
        receives the error once and the returned subscription is inactive.
        """
        path = normalize_path(path)
        sub = Subscription(self, path, on_data, on_error)
        try:
            self._check(path)
        except (StoreUnavailableError, PermissionDeniedError) as exc:
            sub._fail(exc)
            return sub

        sub._active = True
        self._subscriptions.setdefault(path, []).append(sub)
        logger.debug("Subscribed to %r on %s", path, self.name)
        sub._deliver(self._read(path))
        return sub

    def subscriber_count(self, path: str) -> int:
        return len(self._subscriptions.get(normalize_path(path), []))

    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at ``path``; None deletes it."""
        path = normalize_path(path)
        self._check(path)
        await self._round_trip()
        self._write(path, value)
        logger.info("Set %r on %s", path, self.name)

    async def transaction(
        self,
        path: str,
        update_fn: Callable[[Any], Any],
        max_retries: Optional[int] = None,
    ) -> TransactionResult:
        """
        Atomically replace the value at ``path`` with ``update_fn(current)``.

        ``update_fn`` receives a copy of the current value (None if absent)
        and may run several times. Returning None aborts without writing.

        Raises:
            TransactionAbortedError: every attempt conflicted.
        """
        path = normalize_path(path)
        limit = self.max_retries if max_retries is None else max_retries

        for attempt in range(1, limit + 1):
            self._check(path)
            version = self._versions.get(path, 0)
            proposed = update_fn(self._read(path))
            if proposed is None:
                logger.debug("Transaction on %r aborted by its update function", path)
                return TransactionResult(False, self._read(path), attempt)

            await self._round_trip()

            if self._versions.get(path, 0) != version:
                logger.debug("Transaction on %r conflicted (attempt %d/%d)", path, attempt, limit)
                continue

            self._write(path, proposed)
            logger.info("Committed transaction on %r after %d attempt(s)", path, attempt)
            return TransactionResult(True, self._read(path), attempt)

        raise TransactionAbortedError(path, limit)

    async def append(self, path: str, value: Any) -> str:
        """Store ``value`` under a new generated child key and return the key."""
        path = normalize_path(path)
        self._check(path)
        key = self._keys()
        await self._round_trip()

        with self.doc.transaction():
            children = self._root.get(path)
            if not isinstance(children, Map):
                existing = children if isinstance(children, dict) else {}
                self._root[path] = Map(existing)
                children = self._root[path]
            children[key] = value

        self._bump(path)
        logger.info("Appended %s under %r on %s", key, path, self.name)
        self._publish(path)
        return key

    def get_update(self) -> bytes:
        """Get the current document state as bytes for syncing."""
        return self.doc.get_update()

    def apply_update(self, update: bytes) -> None:
        """Apply an update from another replica and notify every subscriber."""
        self.doc.apply_update(update)
        paths = set(self._subscriptions) | set(self._root.keys())
        for path in paths:
            self._bump(path)
        for path in paths:
            self._publish(path)

    def close(self) -> None:
        """Drop every subscription."""
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.unsubscribe()

    def _check(self, path: str) -> None:
        if not self._online:
            raise StoreUnavailableError(f"Store {self.name} is offline")
        if path in self._denied:
            raise PermissionDeniedError(path)

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    def _read(self, path: str) -> Any:
        raw = self._root.get(path)
        if isinstance(raw, Map):
            raw = raw.to_py()
        return copy.deepcopy(raw)

    def _write(self, path: str, value: Any) -> None:
        with self.doc.transaction():
            if value is None:
                if path in self._root:
                    del self._root[path]
            else:
                self._root[path] = copy.deepcopy(value)
        self._bump(path)
        self._publish(path)

    def _bump(self, path: str) -> None:
        self._versions[path] = self._versions.get(path, 0) + 1

    def _publish(self, path: str) -> None:
        subs = self._subscriptions.get(path)
        if not subs:
            return
        value = self._read(path)
        logger.debug("Publishing %r to %d subscriber(s)", path, len(subs))
        for sub in list(subs):
            sub._deliver(copy.deepcopy(value))

    def _remove_subscription(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.path, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.path, None)

    def __repr__(self) -> str:
        state = "online" if self._online else "offline"
        return f"RealtimeStore({self.name!r}, {state})"
