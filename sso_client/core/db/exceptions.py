"""Exceptions for database operations."""

from pathlib import Path
from typing import Optional, Union


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class MigrationError(DatabaseError):
    """Raised when database migration fails."""

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        name: Optional[str] = None,
    ):
        super().__init__(message)
        self.version = version
        self.name = name


class RecordNotFoundError(DatabaseError):
    """Raised when a user, role, permission or token row cannot be found."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        record_id: Optional[Union[int, str]] = None,
    ):
        super().__init__(message)
        self.resource = resource
        self.record_id = record_id


class DuplicateRecordError(DatabaseError):
    """Raised when attempting to create a duplicate record."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
        value: Optional[str] = None,
    ):
        super().__init__(message)
        self.table = table
        self.key = key
        self.value = value


class SystemRoleError(DatabaseError):
    """Raised when deleting one of the reserved system roles."""

    def __init__(self, message: str, slug: Optional[str] = None):
        super().__init__(message)
        self.slug = slug


class TokenPairError(DatabaseError):
    """Raised when a token write would break the access/refresh/expiry pairing."""

    pass


class QueryError(DatabaseError):
    """Raised when database query execution fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        params: Optional[tuple] = None,
    ):
        super().__init__(message)
        self.query = query
        self.params = params


class TransactionError(DatabaseError):
    """Raised when transaction operation fails."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
