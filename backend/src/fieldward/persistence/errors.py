"""Translate storage constraint failures into domain errors.

Classification uses engine error codes, never message wording alone:

- PostgreSQL: SQLSTATE (``orig.sqlstate`` on psycopg 3, ``orig.pgcode`` on psycopg2)
- SQLite: extended result code name (``orig.sqlite_errorname``), falling back
  to the fixed prefix SQLite puts on constraint messages

Field names are recovered on a best-effort basis. Anything that cannot be
classified becomes an OpaqueStorageError with a generic message.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Mapping

from fieldward.errors import (
    ConflictError,
    DeleteBlocked,
    DomainError,
    NotFoundReference,
    OpaqueStorageError,
    ValidationFailed,
)
from fieldward.metadata.loader import EntityMetadata, MetadataLoader

logger = logging.getLogger(__name__)


class ConstraintKind(str, Enum):
    FOREIGN_KEY = "foreign_key"
    UNIQUE = "unique"
    CHECK = "check"
    NOT_NULL = "not_null"
    INVALID_DATETIME = "invalid_datetime"
    NUMERIC_RANGE = "numeric_range"
    INVALID_TEXT = "invalid_text"


SQLSTATE_KINDS = {
    "23503": ConstraintKind.FOREIGN_KEY,
    "23505": ConstraintKind.UNIQUE,
    "23514": ConstraintKind.CHECK,
    "23502": ConstraintKind.NOT_NULL,
    "22007": ConstraintKind.INVALID_DATETIME,
    "22008": ConstraintKind.INVALID_DATETIME,
    "22003": ConstraintKind.NUMERIC_RANGE,
    "22P02": ConstraintKind.INVALID_TEXT,
}

SQLITE_KINDS = {
    "SQLITE_CONSTRAINT_FOREIGNKEY": ConstraintKind.FOREIGN_KEY,
    "SQLITE_CONSTRAINT_UNIQUE": ConstraintKind.UNIQUE,
    "SQLITE_CONSTRAINT_PRIMARYKEY": ConstraintKind.UNIQUE,
    "SQLITE_CONSTRAINT_CHECK": ConstraintKind.CHECK,
    "SQLITE_CONSTRAINT_NOTNULL": ConstraintKind.NOT_NULL,
}

# Fixed prefixes of SQLite constraint messages, used when the error name is absent
SQLITE_MESSAGE_PREFIXES = {
    "FOREIGN KEY constraint failed": ConstraintKind.FOREIGN_KEY,
    "UNIQUE constraint failed": ConstraintKind.UNIQUE,
    "CHECK constraint failed": ConstraintKind.CHECK,
    "NOT NULL constraint failed": ConstraintKind.NOT_NULL,
}

_KEY_DETAIL = re.compile(r"Key \(([^)]+)\)")
_REFERENCED_FROM = re.compile(r'referenced from table "([^"]+)"')
_QUALIFIED_COLUMN = re.compile(r"\b(\w+)\.(\w+)\b")
_CONSTRAINT_NAME = re.compile(r"\b((?:uq|ck|fk)_\w+)")


def _original(exc: BaseException) -> Any:
    """The DBAPI exception wrapped by SQLAlchemy, or the exception itself."""
    return getattr(exc, "orig", None) or exc


def _diag(orig: Any, attr: str) -> str | None:
    diag = getattr(orig, "diag", None)
    return getattr(diag, attr, None) if diag is not None else None


class ConstraintTranslator:
    def __init__(self, registry: MetadataLoader | None = None):
        self.registry = registry

    def classify(self, exc: BaseException) -> ConstraintKind | None:
        orig = _original(exc)

        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate:
            return SQLSTATE_KINDS.get(sqlstate)

        errorname = getattr(orig, "sqlite_errorname", None)
        if errorname:
            kind = SQLITE_KINDS.get(errorname)
            if kind is not None:
                return kind

        message = str(orig)
        for prefix, kind in SQLITE_MESSAGE_PREFIXES.items():
            if message.startswith(prefix):
                return kind
        return None

    def translate(
        self,
        exc: BaseException,
        metadata: EntityMetadata,
        operation: str,
        payload: Mapping[str, Any] | None = None,
    ) -> DomainError | OpaqueStorageError:
        """Map a storage failure to the domain error the caller should raise."""
        kind = self.classify(exc)
        if kind is None:
            logger.error(
                "Unrecognised storage error during %s on %s",
                operation,
                metadata.name,
                exc_info=exc,
            )
            return OpaqueStorageError()

        field = self.extract_field(exc, metadata, kind, payload)
        label = metadata.display_name_for(field)
        logger.info(
            "Storage constraint %s on %s.%s during %s",
            kind.value,
            metadata.name,
            field,
            operation,
        )

        if kind is ConstraintKind.FOREIGN_KEY:
            if operation == "delete":
                table = self._referencing_table(exc, metadata) or "other records"
                return DeleteBlocked(
                    f"Cannot delete {metadata.display_name}: it is still referenced by "
                    f"{table}. Please remove or reassign the dependent records first.",
                    details={"referencedBy": table},
                )
            fk = metadata.foreign_keys.get(field) if field else None
            ref = fk.display_name if fk else "Referenced record"
            return NotFoundReference(
                f"{ref} not found. Please provide a valid {label or 'reference'}.",
                field=field,
            )

        if kind is ConstraintKind.UNIQUE:
            return ConflictError(f"{label or 'Value'} already exists", field=field)

        if kind is ConstraintKind.CHECK:
            return ValidationFailed(
                f"Invalid value for {label or 'field'}. Please check allowed values.",
                field=field,
            )

        if kind is ConstraintKind.NOT_NULL:
            return ValidationFailed(f"{label or 'Required field'} cannot be empty", field=field)

        if kind is ConstraintKind.INVALID_DATETIME:
            return ValidationFailed(
                "Invalid date format. Please use YYYY-MM-DD format.", field=field
            )

        if kind is ConstraintKind.NUMERIC_RANGE:
            return ValidationFailed("Numeric value is out of allowed range", field=field)

        return ValidationFailed("Invalid data format provided", field=field)

    def extract_field(
        self,
        exc: BaseException,
        metadata: EntityMetadata,
        kind: ConstraintKind,
        payload: Mapping[str, Any] | None = None,
    ) -> str | None:
        """Best-effort name of the offending field."""
        orig = _original(exc)
        detail = _diag(orig, "message_detail") or ""
        message = str(orig)

        match = _KEY_DETAIL.search(detail) or _KEY_DETAIL.search(message)
        if match:
            column = match.group(1).split(",")[0].strip()
            if column in metadata.fields:
                return column

        column = _diag(orig, "column_name")
        if column and column in metadata.fields:
            return column

        for table, column in _QUALIFIED_COLUMN.findall(message):
            if table == metadata.table_name and column in metadata.fields:
                return column

        constraint = _diag(orig, "constraint_name")
        if not constraint:
            match = _CONSTRAINT_NAME.search(message)
            constraint = match.group(1) if match else None
        if constraint:
            column = self._field_from_constraint(constraint, metadata)
            if column:
                return column

        if kind is ConstraintKind.FOREIGN_KEY and payload:
            present = [name for name in metadata.foreign_keys if name in payload]
            if len(present) == 1:
                return present[0]

        return None

    def _field_from_constraint(self, constraint: str, metadata: EntityMetadata) -> str | None:
        for prefix in ("uq", "ck", "fk"):
            head = f"{prefix}_{metadata.table_name}_"
            if constraint.startswith(head):
                column = constraint[len(head):]
                if column in metadata.fields:
                    return column
        return None

    def _referencing_table(self, exc: BaseException, metadata: EntityMetadata) -> str | None:
        orig = _original(exc)
        detail = _diag(orig, "message_detail") or str(orig)
        match = _REFERENCED_FROM.search(detail)
        if match:
            return match.group(1)

        if self.registry is None:
            return None
        referencing = sorted(
            {
                entity.table_name
                for entity in self.registry.entities.values()
                if any(fk.table == metadata.table_name for fk in entity.foreign_keys.values())
            }
        )
        if len(referencing) == 1:
            return referencing[0]
        return None
