"""
Votebook Settings

Server and widget settings, read from ``VOTEBOOK_*`` environment variables
with the defaults below.
"""

from typing import Mapping, Optional
from dataclasses import dataclass
import os

from .tally import VotePolicy


@dataclass(frozen=True)
class Settings:
    """
    Settings for one server process.

    Attributes:
        votes_path: Store path holding the yes/no tally.
        comments_path: Store path holding guestbook entries.
        vote_policy: How increments are written; transactional unless
            explicitly set to naive.
        guard_file: JSON file for per-device vote flags; in memory if None.
        latency: Simulated store round trip in seconds.
    """

    host: str = "localhost"
    port: int = 8000
    votes_path: str = "votes"
    comments_path: str = "comments"
    vote_policy: VotePolicy = VotePolicy.TRANSACTIONAL
    max_retries: int = 25
    latency: float = 0.0
    guard_file: Optional[str] = None
    title: str = "Vote"
    question: str = "What do you think?"
    yes_label: str = "Yes"
    no_label: str = "No"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from ``VOTEBOOK_*`` environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            return env.get(f"VOTEBOOK_{name}", default).strip()

        policy = get("VOTE_POLICY", VotePolicy.TRANSACTIONAL.value).lower()
        try:
            vote_policy = VotePolicy(policy)
        except ValueError:
            raise ValueError(f"VOTEBOOK_VOTE_POLICY must be 'transactional' or 'naive', got {policy!r}")

        max_retries = int(get("MAX_RETRIES", "25"))
        if max_retries < 1:
            raise ValueError("VOTEBOOK_MAX_RETRIES must be at least 1")
        latency = float(get("LATENCY", "0.0"))
        if latency < 0:
            raise ValueError("VOTEBOOK_LATENCY must not be negative")

        return cls(
            host=get("HOST", cls.host),
            port=int(get("PORT", str(cls.port))),
            votes_path=get("VOTES_PATH", cls.votes_path),
            comments_path=get("COMMENTS_PATH", cls.comments_path),
            vote_policy=vote_policy,
            max_retries=max_retries,
            latency=latency,
            guard_file=get("GUARD_FILE", "") or None,
            title=get("TITLE", cls.title),
            question=get("QUESTION", cls.question),
            yes_label=get("YES_LABEL", cls.yes_label),
            no_label=get("NO_LABEL", cls.no_label),
            log_level=get("LOG_LEVEL", cls.log_level).upper(),
        )
