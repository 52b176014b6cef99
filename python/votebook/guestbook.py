"""
Guestbook Controller

Mirrors the comments collection into a newest-first list and appends new
entries. Ordering uses the generated keys, which grow with insertion order;
timestamps are only for display because older entries stored them as
preformatted strings.
"""

from typing import Any, Callable, List, Optional, Union
from dataclasses import dataclass
import logging
import time

from . import Signal, signal
from .errors import VotebookError
from .keys import key_timestamp
from .store import RealtimeStore, Subscription

logger = logging.getLogger(__name__)

Timestamp = Union[int, str, None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Comment:
    """One guestbook entry.

    Attributes:
        id: The generated key the entry is stored under.
        text: What the visitor wrote.
        timestamp: Epoch milliseconds, or a display string on legacy entries.
    """
    id: str
    text: str
    timestamp: Timestamp = None

    @classmethod
    def from_entry(cls, key: str, entry: Any) -> Optional["Comment"]:
        """Parse a stored entry, returning None if it can't be shown."""
        if not isinstance(entry, dict):
            return None
        text = entry.get("text")
        if not isinstance(text, str) or not text.strip():
            return None

        timestamp = entry.get("timestamp")
        if isinstance(timestamp, bool):
            timestamp = None
        elif isinstance(timestamp, (int, float)):
            timestamp = int(timestamp)
        elif not isinstance(timestamp, str):
            try:
                timestamp = key_timestamp(key)
            except ValueError:
                timestamp = None
        return cls(id=key, text=text, timestamp=timestamp)


def order_comments(collection: Any) -> List[Comment]:
    """Turn a key -> entry mapping into comments, newest key first."""
    if not isinstance(collection, dict):
        return []
    comments = []
    for key, entry in collection.items():
        comment = Comment.from_entry(str(key), entry)
        if comment is None:
            logger.warning("Skipping malformed comment %r", key)
            continue
        comments.append(comment)
    comments.sort(key=lambda c: c.id, reverse=True)
    return comments


class GuestbookController:
    """
    Binds the comments at ``path`` to a signal and posts new ones.

    Attributes:
        comments: Signal holding the newest-first list of comments.
        draft: Signal holding the current contents of the input field.
    """

    def __init__(
        self,
        store: RealtimeStore,
        path: str = "comments",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self.path = path
        self._clock = clock
        self._subscription: Optional[Subscription] = None

        self.comments: Signal = signal([])
        self.draft: Signal = signal("")

    @property
    def mounted(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def mount(self) -> None:
        """Open the comments subscription."""
        if self._subscription is None:
            self._subscription = self._store.subscribe(
                self.path, self.on_remote_comments_changed, self.on_remote_error
            )

    def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def on_remote_comments_changed(self, new_collection: Any) -> None:
        comments = order_comments(new_collection)
        logger.debug("Comments received: %d entries", len(comments))
        self.comments.value = comments

    def on_remote_error(self, error: Exception) -> None:
        logger.error("Could not load comments from %r: %s", self.path, error)

    def set_draft(self, text: str) -> None:
        self.draft.value = text

    async def submit_comment(self, text: Optional[str] = None) -> None:
        """
        Post ``text`` (the draft by default) as a new comment.

        Blank text is ignored. The draft is cleared before the write, and
        stays cleared if the write fails.
        """
        if text is None:
            text = self.draft.peek()
        text = text.strip()
        if not text:
            return

        self.draft.value = ""
        entry = {"text": text, "timestamp": self._clock()}
        try:
            key = await self._store.append(self.path, entry)
        except VotebookError as exc:
            logger.error("Saving comment failed: %s", exc)
            return
        logger.info("Comment saved as %s", key)
