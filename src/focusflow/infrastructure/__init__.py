"""Infrastructure layer for FocusFlow."""

from focusflow.infrastructure.config import Config, ConfigManager
from focusflow.infrastructure.database import Database
from focusflow.infrastructure.exceptions import (
    ConstraintViolationError,
    FocusFlowError,
    MigrationError,
    StoreUnavailableError,
)
from focusflow.infrastructure.logger import get_logger, setup_logging
from focusflow.infrastructure.migrations import CURRENT_SCHEMA_VERSION, SchemaMigrator

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "Config",
    "ConfigManager",
    "ConstraintViolationError",
    "Database",
    "FocusFlowError",
    "MigrationError",
    "SchemaMigrator",
    "StoreUnavailableError",
    "get_logger",
    "setup_logging",
]
