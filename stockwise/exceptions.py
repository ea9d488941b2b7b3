# ==============================================================================
# DOMAIN EXCEPTIONS
# ==============================================================================

from typing import Iterable, Optional


class StockwiseError(Exception):
    """Base class for every error raised by the package."""
    pass


class UnknownTable(StockwiseError):
    """A table name outside the recognized set was requested."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' not found")


class ProtectedTable(StockwiseError):
    """A generic mutation was attempted on an append-only table."""

    def __init__(self, table: str, operation: str):
        self.table = table
        self.operation = operation
        super().__init__(f"Table '{table}' does not allow {operation}")


class StorageUnavailable(StockwiseError):
    """The persistence medium is inaccessible or out of quota."""
    pass


class SessionCorrupt(StockwiseError):
    """The stored auth state could not be parsed."""
    pass


class AuthDenied(StockwiseError):
    """The current user's role is not among the allowed roles."""

    message = 'Access denied. You do not have permission to access this page.'

    def __init__(self, role: Optional[str] = None, allowed: Iterable[str] = ()):
        self.role = role
        self.allowed = frozenset(allowed)
        super().__init__(self.message)


class ValidationError(StockwiseError):
    """Rejected input; the message is meant for the end user."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)
