"""Unit tests for the exception hierarchy."""

import sqlite3

from focusflow.infrastructure.exceptions import (
    ConstraintViolationError,
    FocusFlowError,
    MigrationError,
    StoreUnavailableError,
    format_error,
    translate_sqlite_error,
)


class TestExceptionHierarchy:
    """Test custom exception hierarchy."""

    def test_focusflow_error_is_base_exception(self) -> None:
        """Test that FocusFlowError is the base exception."""
        error = FocusFlowError("Test error")
        assert isinstance(error, Exception)
        assert str(error) == "Test error"
        assert error.retryable is False

    def test_error_with_remediation(self) -> None:
        error = FocusFlowError("Broken", remediation="Fix it")

        assert error.remediation == "Fix it"
        assert "Remediation: Fix it" in str(error)

    def test_store_unavailable_is_retryable(self) -> None:
        error = StoreUnavailableError()

        assert isinstance(error, FocusFlowError)
        assert error.retryable is True
        assert "busy or unavailable" in str(error)

    def test_constraint_violation_is_value_error(self) -> None:
        error = ConstraintViolationError("Task title must not be empty")

        assert isinstance(error, FocusFlowError)
        assert isinstance(error, ValueError)
        assert error.retryable is False

    def test_migration_error_carries_version(self) -> None:
        error = MigrationError(3, "disk I/O error")

        assert error.version == 3
        assert "version 3" in str(error)
        assert "disk I/O error" in str(error)


class TestTranslateSqliteError:
    """Tests for mapping raw SQLite errors."""

    def test_integrity_error(self) -> None:
        result = translate_sqlite_error(sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert isinstance(result, ConstraintViolationError)

    def test_locked_database(self) -> None:
        result = translate_sqlite_error(sqlite3.OperationalError("database is locked"))
        assert isinstance(result, StoreUnavailableError)

    def test_other_operational_error_untranslated(self) -> None:
        assert translate_sqlite_error(sqlite3.OperationalError("no such table: foo")) is None


class TestFormatError:
    """Tests for boundary error messages."""

    def test_omits_remediation(self) -> None:
        error = FocusFlowError("Broken", remediation="Fix it")
        assert format_error(error) == "Broken"

    def test_plain_exception(self) -> None:
        assert format_error(RuntimeError("boom")) == "boom"

    def test_empty_message_uses_class_name(self) -> None:
        assert format_error(KeyError()) == "KeyError"
