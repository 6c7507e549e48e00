"""Type builders: semantic field type -> pydantic field rule.

Each builder returns a FieldRule holding a Python type plus the pydantic
constraint objects that go into ``Annotated[...]``. The registry then
applies the modifier layer for the type's class:

- string class (string, text, email, phone, url, time, enum):
  length bounds, regex pattern, trim/lowercase, ``values`` restriction
- numeric class (integer, decimal, currency): min/max, positive

Requiredness, defaults and messages are applied per operation by
``fieldward.validation.schema``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Callable, Mapping

from pydantic import AfterValidator, Field, StringConstraints
from pydantic_core import PydanticCustomError

from fieldward.core.types import NUMERIC_CLASS, OTHER_CLASS, STRING_CLASS, get_field_type
from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import FieldDef

# =============================================================================
# Format Patterns
# =============================================================================

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

PHONE_PATTERN = re.compile(
    r"^[\+]?[(]?[0-9]{1,3}[)]?[-\s\.]?[(]?[0-9]{1,4}[)]?[-\s\.]?[0-9]{1,4}[-\s\.]?[0-9]{1,9}$"
)

URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


@dataclass(frozen=True)
class FieldRule:
    """A Python type and the pydantic metadata constraining it."""

    python_type: Any
    type_class: str
    constraints: tuple[Any, ...] = ()

    def constrain(self, *items: Any) -> FieldRule:
        return replace(self, constraints=self.constraints + items)

    @property
    def annotation(self) -> Any:
        if not self.constraints:
            return self.python_type
        return Annotated[(self.python_type, *self.constraints)]


Builder = Callable[[FieldDef], FieldRule]


def _format_check(pattern: re.Pattern[str], expectation: str) -> AfterValidator:
    def check(value: str) -> str:
        if not pattern.match(value):
            raise PydanticCustomError("format", expectation)
        return value

    return AfterValidator(check)


# =============================================================================
# Base builders
# =============================================================================


def build_string(field_def: FieldDef) -> FieldRule:
    return FieldRule(str, STRING_CLASS)


def build_email(field_def: FieldDef) -> FieldRule:
    return FieldRule(str, STRING_CLASS).constrain(
        _format_check(EMAIL_PATTERN, "must be a valid email address")
    )


def build_phone(field_def: FieldDef) -> FieldRule:
    return FieldRule(str, STRING_CLASS).constrain(
        _format_check(PHONE_PATTERN, "must be a valid phone number")
    )


def build_url(field_def: FieldDef) -> FieldRule:
    return FieldRule(str, STRING_CLASS).constrain(
        _format_check(URL_PATTERN, "must be a valid URL")
    )


def build_time(field_def: FieldDef) -> FieldRule:
    return FieldRule(str, STRING_CLASS).constrain(
        _format_check(TIME_PATTERN, "must be a valid time (HH:MM or HH:MM:SS)")
    )


def build_integer(field_def: FieldDef) -> FieldRule:
    return FieldRule(int, NUMERIC_CLASS)


def build_decimal(field_def: FieldDef) -> FieldRule:
    return FieldRule(Decimal, NUMERIC_CLASS)


def build_currency(field_def: FieldDef) -> FieldRule:
    return FieldRule(Decimal, NUMERIC_CLASS).constrain(Field(decimal_places=2))


def build_boolean(field_def: FieldDef) -> FieldRule:
    return FieldRule(bool, OTHER_CLASS)


def build_date(field_def: FieldDef) -> FieldRule:
    return FieldRule(date, OTHER_CLASS)


def build_timestamp(field_def: FieldDef) -> FieldRule:
    return FieldRule(datetime, OTHER_CLASS)


def build_object(field_def: FieldDef) -> FieldRule:
    return FieldRule(dict[str, Any], OTHER_CLASS)


DEFAULT_BUILDERS: dict[str, Builder] = {
    "string": build_string,
    "text": build_string,
    "email": build_email,
    "phone": build_phone,
    "url": build_url,
    "time": build_time,
    "enum": build_string,
    "integer": build_integer,
    "decimal": build_decimal,
    "currency": build_currency,
    "boolean": build_boolean,
    "date": build_date,
    "timestamp": build_timestamp,
    "object": build_object,
}


# =============================================================================
# Modifier layers
# =============================================================================


def apply_string_modifiers(rule: FieldRule, field_def: FieldDef) -> FieldRule:
    field_type = get_field_type(field_def.type)
    trim = field_def.trim if field_def.trim is not None else field_type.trim
    lowercase = field_def.lowercase if field_def.lowercase is not None else field_type.lowercase

    # Normalization runs before the format checks added by the base builder
    rule = FieldRule(
        rule.python_type,
        rule.type_class,
        (
            StringConstraints(
                strip_whitespace=trim,
                to_lower=lowercase,
                min_length=field_def.min_length,
                max_length=field_def.max_length,
            ),
        )
        + rule.constraints,
    )

    if field_def.pattern:
        regex = re.compile(field_def.pattern)

        def check_pattern(value: str) -> str:
            if not regex.search(value):
                raise PydanticCustomError("pattern", "does not match the required format")
            return value

        rule = rule.constrain(AfterValidator(check_pattern))

    if field_def.values:
        allowed = tuple(field_def.values)

        def check_values(value: str) -> str:
            if value not in allowed:
                raise PydanticCustomError(
                    "enum",
                    "must be one of: {allowed}",
                    {"allowed": ", ".join(allowed)},
                )
            return value

        rule = rule.constrain(AfterValidator(check_values))

    return rule


def apply_numeric_modifiers(rule: FieldRule, field_def: FieldDef) -> FieldRule:
    if field_def.min is not None:
        rule = rule.constrain(Field(ge=field_def.min))
    if field_def.max is not None:
        rule = rule.constrain(Field(le=field_def.max))
    if field_def.positive:
        rule = rule.constrain(Field(gt=0))
    return rule


class TypeBuilderRegistry:
    """Maps semantic types to builders. The single extension point for types."""

    def __init__(self, builders: Mapping[str, Builder] | None = None):
        self._builders: dict[str, Builder] = dict(
            DEFAULT_BUILDERS if builders is None else builders
        )

    def register(self, type_name: str, builder: Builder) -> None:
        self._builders[type_name] = builder

    def has(self, type_name: str) -> bool:
        return type_name in self._builders

    @property
    def types(self) -> list[str]:
        return sorted(self._builders)

    def build(self, field_def: FieldDef) -> FieldRule:
        """Base rule for the field's type with its class modifier layer applied."""
        builder = self._builders.get(field_def.type)
        if builder is None:
            raise ConfigurationError(
                f"No type builder registered for '{field_def.type}' "
                f"(field '{field_def.name}')",
                field=field_def.name,
            )
        rule = builder(field_def)
        if rule.type_class == STRING_CLASS:
            return apply_string_modifiers(rule, field_def)
        if rule.type_class == NUMERIC_CLASS:
            return apply_numeric_modifiers(rule, field_def)
        return rule


# =============================================================================
# Messages
# =============================================================================

# pydantic error type -> violation kind; anything else is a format error
ERROR_KINDS = {
    "missing": "required",
    "string_too_short": "length",
    "string_too_long": "length",
    "string_pattern_mismatch": "pattern",
    "pattern": "pattern",
    "enum": "enum",
    "greater_than": "range",
    "greater_than_equal": "range",
    "less_than": "range",
    "less_than_equal": "range",
}

_TYPE_EXPECTATIONS = {
    "integer": "must be a whole number",
    "decimal": "must be a number",
    "currency": "must be a number",
    "boolean": "must be true or false",
    "date": "must be a valid date (YYYY-MM-DD)",
    "timestamp": "must be a valid date and time",
    "object": "must be an object",
}


def violation_kind(error_type: str) -> str:
    return ERROR_KINDS.get(error_type, "format")


def default_message(field_def: FieldDef, error: Mapping[str, Any]) -> str:
    """Generated message for a pydantic error dict on ``field_def``."""
    label = field_def.display_name
    error_type = error.get("type", "")
    ctx = error.get("ctx") or {}

    if error_type == "missing":
        return f"{label} is required"
    if error_type == "string_too_short":
        return f"{label} must be at least {ctx.get('min_length')} characters"
    if error_type == "string_too_long":
        return f"{label} must be at most {ctx.get('max_length')} characters"
    if error_type == "greater_than_equal":
        return f"{label} must be at least {ctx.get('ge')}"
    if error_type == "less_than_equal":
        return f"{label} must be at most {ctx.get('le')}"
    if error_type == "greater_than":
        if ctx.get("gt") == 0:
            return f"{label} must be positive"
        return f"{label} must be greater than {ctx.get('gt')}"
    if error_type == "less_than":
        return f"{label} must be less than {ctx.get('lt')}"
    if error_type == "decimal_max_places":
        return f"{label} must have at most {ctx.get('decimal_places')} decimal places"
    if error_type in ("format", "pattern", "enum"):
        return f"{label} {error.get('msg')}"
    if error_type == "string_pattern_mismatch":
        return f"{label} does not match the required format"

    expectation = _TYPE_EXPECTATIONS.get(field_def.type, "must be text")
    return f"{label} {expectation}"
