"""Persistence layer for fieldward."""

from fieldward.persistence.config import DatabaseConfig
from fieldward.persistence.errors import ConstraintKind, ConstraintTranslator
from fieldward.persistence.identifiers import (
    IDENTIFIER_PATTERN,
    IdentifierGenerator,
    format_identifier,
    parse_sequence,
)
from fieldward.persistence.store import RecordStore

__all__ = [
    "DatabaseConfig",
    "ConstraintKind",
    "ConstraintTranslator",
    "IDENTIFIER_PATTERN",
    "IdentifierGenerator",
    "format_identifier",
    "parse_sequence",
    "RecordStore",
]
