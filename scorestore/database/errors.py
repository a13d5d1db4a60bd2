"""Exceptions raised by the score store."""

__all__: list[str] = [
    "DatabaseError",
    "InvalidInputError",
    "StoreWriteError",
    "StoreQueryError",
    "WRITE_PHASES",
]

WRITE_PHASES = ("open", "write", "commit")


class DatabaseError(Exception):
    """Base exception for database operations."""
    pass


class InvalidInputError(DatabaseError, ValueError):
    """Raised when caller input is rejected before reaching the store."""
    pass


class StoreWriteError(DatabaseError):
    """Raised when a batch insert fails.

    ``phase`` tells which step failed: ``"open"`` (connection or transaction
    could not be started), ``"write"`` (the insert statement failed and was
    rolled back) or ``"commit"``. After a commit failure an unknown subset
    of the batch may be persisted.
    """

    def __init__(self, phase: str, message: str):
        if phase not in WRITE_PHASES:
            raise ValueError(f"Unknown write phase '{phase}'")
        super().__init__(message)
        self.phase = phase


class StoreQueryError(DatabaseError):
    """Raised when a read query fails to execute or its rows cannot be parsed."""
    pass
