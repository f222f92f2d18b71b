"""
errors.py

Exception taxonomy shared by the domain, application and infrastructure layers.

  ApplicationError
  ├── ValidationError   – malformed input (blank name, non-positive amount)
  ├── StateError        – operation illegal in the report's lifecycle state
  ├── NotFoundError     – referenced report / section / activity does not exist
  └── StorageError      – the storage collaborator failed (I/O, quota)

Validation, state and lookup errors are raised before any write takes place,
so callers can re-prompt the user without having to undo anything.
"""


class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class ValidationError(ApplicationError, ValueError):
    """Raised when input to a mutating operation is malformed."""


class StateError(ApplicationError):
    """Raised when a report is in the wrong lifecycle state for the operation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class StorageError(ApplicationError):
    """Raised when the backing store fails to read or write."""
