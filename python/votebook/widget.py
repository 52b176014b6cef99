"""
Votebook Widget

Wires a tally controller and a guestbook controller for one device and
renders them as a single page fragment.
"""

from typing import Callable, Optional, Union
from datetime import datetime

from . import Effect, effect
from .component import VNode, Component, button, div, form, h1, h2, input_, li, p, small, span, to_html, ul
from .guard import LocalVoteGuard
from .guestbook import GuestbookController
from .store import RealtimeStore
from .tally import VotePolicy, VoteTallyController


def format_timestamp(value: Union[int, str, None]) -> str:
    """Display string for a comment timestamp."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return ""


class VoteWidget:
    """
    The voting widget as seen by one device.

    Example:
        widget = VoteWidget(store, LocalVoteGuard(flags, "device-1"))
        widget.mount()
        widget.watch(lambda html: print(html))
        await widget.votes.cast_vote("yes")
    """

    def __init__(
        self,
        store: RealtimeStore,
        guard: LocalVoteGuard,
        votes_path: str = "votes",
        comments_path: str = "comments",
        policy: VotePolicy = VotePolicy.TRANSACTIONAL,
        notify: Optional[Callable[[str], None]] = None,
        title: str = "Vote",
        question: str = "What do you think?",
        yes_label: str = "Yes",
        no_label: str = "No",
    ) -> None:
        self.votes = VoteTallyController(store, guard, votes_path, policy, notify)
        self.guestbook = GuestbookController(store, comments_path)
        self.title = title
        self.question = question
        self.labels = {"yes": yes_label, "no": no_label}
        self.component = Component(self._render)
        self._effect: Optional[Effect] = None

    def mount(self) -> None:
        self.votes.mount()
        self.guestbook.mount()

    def unmount(self) -> None:
        if self._effect is not None:
            self._effect.dispose()
            self._effect = None
        self.votes.unmount()
        self.guestbook.unmount()

    def render(self) -> VNode:
        return self.component.render()

    def render_html(self) -> str:
        return to_html(self.render())

    def watch(self, callback: Callable[[str], None]) -> Effect:
        """Call ``callback`` with fresh HTML now and whenever it changes."""
        if self._effect is not None:
            self._effect.dispose()
        last = [None]

        def push() -> None:
            html = self.render_html()
            if html != last[0]:
                last[0] = html
                callback(html)

        self._effect = effect(push)
        return self._effect

    def _render(self) -> VNode:
        tally = self.votes.tally.value
        comments = self.guestbook.comments.value

        return div(
            div(
                h1(self.title),
                p(self.question),
                class_="header",
            ),
            div(
                self._vote_button("yes", tally.yes),
                self._vote_button("no", tally.no),
                class_="choices",
            ),
            div(f"Total votes: {self.votes.total()}", id="total"),
            div(
                h2("Guestbook"),
                form(
                    input_(
                        type="text",
                        name="comment",
                        id="comment-input",
                        value=self.guestbook.draft.value,
                        placeholder="Leave a comment",
                    ),
                    button("Post", type="submit"),
                    id="comment-form",
                ),
                ul(
                    [
                        li(
                            div(c.text, class_="comment-text"),
                            small(format_timestamp(c.timestamp), class_="comment-time"),
                            key=c.id,
                        )
                        for c in comments
                    ],
                    id="comments",
                ),
                class_="guestbook",
            ),
            class_="widget",
        )

    def _vote_button(self, choice: str, count: int) -> VNode:
        return button(
            span(self.labels[choice], class_="label"),
            span(f"{count} votes", class_="count"),
            id=f"vote-{choice}",
            class_=f"vote vote-{choice}",
            data_handler="vote",
            data_choice=choice,
        )
