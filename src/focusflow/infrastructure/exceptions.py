"""Exception hierarchy for the FocusFlow core."""

import sqlite3


class FocusFlowError(Exception):
    """Base exception for all FocusFlow errors.

    Attributes:
        message: Error message describing what went wrong
        remediation: Optional guidance on how to fix the issue
        retryable: Whether the caller may simply try the operation again
    """

    retryable: bool = False

    def __init__(self, message: str, remediation: str | None = None):
        """Initialize error.

        Args:
            message: Error message
            remediation: Optional remediation guidance
        """
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class StoreUnavailableError(FocusFlowError):
    """The store could not be reached in time.

    Raised when the repository lock cannot be acquired within the configured
    wait, when SQLite reports the file as locked or busy, or when the
    repository is used before ``initialize()``. Callers may retry.
    """

    retryable = True

    def __init__(self, message: str = "Task store is busy or unavailable"):
        super().__init__(
            message=message,
            remediation="Retry the operation; close other programs holding the database file",
        )


class ConstraintViolationError(FocusFlowError, ValueError):
    """Input rejected before or by the store; nothing was written."""

    pass


class MigrationError(FocusFlowError):
    """Schema migration failed. Fatal at startup.

    Attributes:
        version: Migration version that failed
    """

    def __init__(self, version: int, reason: str):
        super().__init__(
            message=f"Schema migration to version {version} failed: {reason}",
            remediation="Restore the database from a backup or export, then restart",
        )
        self.version = version


def translate_sqlite_error(exc: sqlite3.Error) -> FocusFlowError | None:
    """Map a raw SQLite error onto the FocusFlow taxonomy.

    Returns None for errors that have no domain meaning, so the caller
    re-raises the original.
    """
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolationError(f"Constraint violation: {exc}")
    if isinstance(exc, sqlite3.OperationalError):
        text = str(exc).lower()
        if "locked" in text or "busy" in text:
            return StoreUnavailableError(f"Task store is locked: {exc}")
    return None


def format_error(exc: BaseException) -> str:
    """One-line human readable message for the command boundary."""
    if isinstance(exc, FocusFlowError):
        return str(exc.args[0]) if exc.args else exc.__class__.__name__
    text = str(exc).strip()
    return text or exc.__class__.__name__
