"""Database module for SSO users, roles, permissions and credentials."""

from .connection import DatabaseConnection
from .exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    MigrationError,
    QueryError,
    RecordNotFoundError,
    SystemRoleError,
    TokenPairError,
    TransactionError,
)
from .migrator import Migrator
from .repository import SYSTEM_ROLES, SsoRepository

__all__ = [
    "SsoRepository",
    "DatabaseConnection",
    "Migrator",
    "SYSTEM_ROLES",
    "DatabaseError",
    "DatabaseConnectionError",
    "MigrationError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "SystemRoleError",
    "TokenPairError",
    "QueryError",
    "TransactionError",
]
