"""Semantic field type registry with storage and normalization defaults."""

from dataclasses import dataclass

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.types import TypeEngine

# Type classes drive which modifier layer applies during schema building
STRING_CLASS = "string"
NUMERIC_CLASS = "numeric"
OTHER_CLASS = "other"


@dataclass(frozen=True)
class FieldType:
    name: str
    storage_type: type[TypeEngine] | TypeEngine
    type_class: str
    trim: bool = False
    lowercase: bool = False


# Built-in semantic types
FIELD_TYPES: dict[str, FieldType] = {
    "string": FieldType(
        name="string",
        storage_type=String(255),
        type_class=STRING_CLASS,
        trim=True,
    ),
    "text": FieldType(
        name="text",
        storage_type=Text,
        type_class=STRING_CLASS,
        trim=True,
    ),
    "email": FieldType(
        name="email",
        storage_type=String(255),
        type_class=STRING_CLASS,
        trim=True,
        lowercase=True,
    ),
    "phone": FieldType(
        name="phone",
        storage_type=String(50),  # formatting preserved
        type_class=STRING_CLASS,
        trim=True,
    ),
    "url": FieldType(
        name="url",
        storage_type=String(2048),
        type_class=STRING_CLASS,
        trim=True,
    ),
    "time": FieldType(
        name="time",
        storage_type=String(8),  # HH:MM or HH:MM:SS
        type_class=STRING_CLASS,
        trim=True,
    ),
    "enum": FieldType(
        name="enum",
        storage_type=String(50),
        type_class=STRING_CLASS,
        trim=True,
        lowercase=True,
    ),
    "integer": FieldType(
        name="integer",
        storage_type=Integer,
        type_class=NUMERIC_CLASS,
    ),
    "decimal": FieldType(
        name="decimal",
        storage_type=Numeric(14, 4),
        type_class=NUMERIC_CLASS,
    ),
    "currency": FieldType(
        name="currency",
        storage_type=Numeric(12, 2),
        type_class=NUMERIC_CLASS,
    ),
    "boolean": FieldType(
        name="boolean",
        storage_type=Boolean,
        type_class=OTHER_CLASS,
    ),
    "date": FieldType(
        name="date",
        storage_type=Date,
        type_class=OTHER_CLASS,
    ),
    "timestamp": FieldType(
        name="timestamp",
        storage_type=DateTime(timezone=True),
        type_class=OTHER_CLASS,
    ),
    "object": FieldType(
        name="object",
        storage_type=JSON,
        type_class=OTHER_CLASS,
    ),
}


def is_known_type(type_name: str) -> bool:
    return type_name in FIELD_TYPES


def get_field_type(type_name: str) -> FieldType:
    """Get field type definition, defaulting to string if unknown."""
    return FIELD_TYPES.get(type_name, FIELD_TYPES["string"])


def get_storage_type(type_name: str) -> type[TypeEngine] | TypeEngine:
    """Get the SQLAlchemy column type for a field type."""
    return get_field_type(type_name).storage_type
