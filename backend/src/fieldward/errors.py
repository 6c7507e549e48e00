"""Domain error taxonomy for fieldward.

Every failure the core reports to a caller is one of six categories:

- ConfigurationError: metadata or role configuration is malformed (fatal at startup)
- PermissionDenied: the caller's role cannot touch one or more fields or the entity
- ValidationFailed: type, format, range or required-value violation
- ConflictError: uniqueness violation, including identifier collisions
- NotFoundReference: a foreign key points at a record that does not exist
- DeleteBlocked: a record cannot be deleted while other records reference it

The category is fixed by the exception class chosen at the raise site.
Storage failures the translator does not recognise surface as
OpaqueStorageError, which carries no engine detail.
"""

from typing import Any


class DomainError(Exception):
    """Base class for errors surfaced to callers.

    Attributes:
        message: Human-readable message, safe to show to API clients
        field: Field name the error relates to, or None for entity-level errors
        details: Optional structured data (offending field lists, per-field errors)
    """

    category = "DomainError"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "category": self.category,
            "message": self.message,
        }
        if self.field is not None:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(DomainError):
    """Entity metadata or the role hierarchy is malformed or incomplete."""

    category = "ConfigurationError"
    status_code = 500


class PermissionDenied(DomainError):
    """The role cannot perform the operation on one or more fields."""

    category = "PermissionDenied"
    status_code = 403


class ValidationFailed(DomainError):
    """A value failed a type, format, length, pattern, enum or range check."""

    category = "ValidationFailed"
    status_code = 400


class ConflictError(DomainError):
    """A unique value already exists."""

    category = "ConflictError"
    status_code = 409


class NotFoundReference(DomainError):
    """A foreign key references a record that does not exist."""

    category = "NotFoundReference"
    status_code = 400


class DeleteBlocked(DomainError):
    """The record is still referenced by other records."""

    category = "DeleteBlocked"
    status_code = 409


class OpaqueStorageError(Exception):
    """A storage failure that could not be mapped to the domain taxonomy.

    The message is always generic. The original exception is chained as
    ``__cause__`` for server-side logging only.
    """

    message = "An unexpected storage error occurred"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
