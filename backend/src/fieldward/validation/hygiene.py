"""Input hygiene: trim and case-fold values before validation.

Normalization is idempotent, so running a payload through it twice yields
the same result as running it once.
"""

from typing import Any, Mapping

from fieldward.core.types import get_field_type, is_known_type
from fieldward.metadata.loader import EntityMetadata, FieldDef


def is_empty(value: Any) -> bool:
    """True for None or a string that is blank after trimming."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def sanitize_value(value: Any, field_def: FieldDef | None) -> Any:
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    if field_def is None:
        return value.strip()

    # Per-field overrides win over the type default
    field_type = get_field_type(field_def.type) if is_known_type(field_def.type) else None
    trim = field_def.trim if field_def.trim is not None else bool(field_type and field_type.trim)
    lowercase = (
        field_def.lowercase
        if field_def.lowercase is not None
        else bool(field_type and field_type.lowercase)
    )

    if trim:
        value = value.strip()
    if lowercase:
        value = value.lower()
    return value


def sanitize_data(payload: Mapping[str, Any], metadata: EntityMetadata) -> dict[str, Any]:
    """Apply ``sanitize_value`` to every key, using the entity's field defs."""
    return {
        name: sanitize_value(value, metadata.get_field(name))
        for name, value in payload.items()
    }
