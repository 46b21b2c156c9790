"""Custom exception hierarchy for loan-import."""


class LoanImportError(Exception):
    """Base exception for all loan-import errors."""


class EntityNotFoundError(LoanImportError):
    """Raised when a referenced entity does not exist."""


class ReferentialIntegrityError(EntityNotFoundError):
    """Raised when a foreign key reference is violated."""


class InvalidEntityStateError(LoanImportError):
    """Raised when an entity is in an invalid state for the operation."""


class ConfigurationError(LoanImportError):
    """Raised when configuration is invalid or missing."""


class SourceReadError(LoanImportError):
    """Raised when a workbook or one of its sheets cannot be read."""


class PersistenceError(LoanImportError):
    """Raised when the store cannot be reached or rejects a write."""


class SinkError(LoanImportError):
    """Raised when a sink operation fails."""
