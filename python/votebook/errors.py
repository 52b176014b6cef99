"""Exceptions raised by the store gateway."""


class VotebookError(Exception):
    """Base class for votebook errors."""


class StoreUnavailableError(VotebookError):
    """The store is offline and cannot serve reads or writes."""


class PermissionDeniedError(VotebookError):
    """The store refused access to a path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Permission denied: {path}")
        self.path = path


class TransactionAbortedError(VotebookError):
    """A transaction kept conflicting and ran out of retries."""

    def __init__(self, path: str, attempts: int) -> None:
        super().__init__(f"Transaction on {path!r} aborted after {attempts} attempts")
        self.path = path
        self.attempts = attempts
