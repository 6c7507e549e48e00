"""fieldward validation.

- builders: semantic type -> pydantic rule, plus string/numeric modifier layers
- schema: per-(entity, operation, role) schemas built from metadata and cached
- hygiene: trim/lowercase normalization applied before validation

Usage:
    from fieldward.validation import ValidationSchemaBuilder

    builder = ValidationSchemaBuilder(roles)
    schema = builder.build_entity_schema("invoice", "create", metadata, role="dispatcher")
    clean = schema.validate(payload)
"""

from fieldward.validation.builders import FieldRule, TypeBuilderRegistry
from fieldward.validation.hygiene import is_empty, sanitize_data, sanitize_value
from fieldward.validation.schema import EntitySchema, ValidationSchemaBuilder

__all__ = [
    "FieldRule",
    "TypeBuilderRegistry",
    "EntitySchema",
    "ValidationSchemaBuilder",
    "is_empty",
    "sanitize_data",
    "sanitize_value",
]
