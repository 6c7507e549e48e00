"""Per-role validation schemas derived from entity metadata.

A schema is a pydantic model built for one ``(entity, operation, role)``.
It only contains the fields that role may write for that operation, so
anything else in a payload is dropped before type checks run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from fieldward.auth.roles import NO_ACCESS
from fieldward.errors import ValidationFailed
from fieldward.metadata.loader import EntityMetadata, FieldDef
from fieldward.validation.builders import TypeBuilderRegistry, default_message, violation_kind
from fieldward.validation.hygiene import is_empty

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"


@dataclass(frozen=True)
class EntitySchema:
    """A built, immutable validator for one entity/operation/role."""

    entity: str
    operation: str
    role: str | None
    model: type[BaseModel]
    field_defs: Mapping[str, FieldDef]
    required: frozenset[str]
    defaults: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.field_defs)

    def validate(self, payload: Any) -> dict[str, Any]:
        """Return the clean payload or raise ValidationFailed with every error."""
        if not isinstance(payload, Mapping):
            raise ValidationFailed(f"{self.entity} payload must be an object")

        data: dict[str, Any] = {}
        cleared: list[str] = []
        for name, value in payload.items():
            if name not in self.field_defs:
                continue
            if is_empty(value):
                # Blank required values are reported as missing; blank optional ones clear the field
                if name not in self.required:
                    cleared.append(name)
                continue
            data[name] = value

        if self.operation == CREATE:
            for name, default in self.defaults.items():
                if name not in data and name not in cleared:
                    data[name] = default

        try:
            instance = self.model.model_validate(data)
        except ValidationError as exc:
            raise self._failure(exc) from None

        result = instance.model_dump(by_alias=True, exclude_unset=True)
        for name in cleared:
            result[name] = None
        return result

    def _failure(self, exc: ValidationError) -> ValidationFailed:
        errors = []
        for error in exc.errors():
            loc = error.get("loc") or ()
            name = str(loc[0]) if loc else None
            field_def = self.field_defs.get(name) if name else None
            if field_def is None:
                errors.append({"field": name, "kind": "format", "message": error.get("msg", "")})
                continue
            kind = violation_kind(error["type"])
            message = field_def.messages.get(kind) or default_message(field_def, error)
            errors.append({"field": name, "kind": kind, "message": message})

        first = errors[0]
        if len(errors) == 1:
            message = first["message"]
        else:
            message = f"{len(errors)} validation errors: " + "; ".join(
                e["message"] for e in errors
            )
        return ValidationFailed(message, field=first["field"], details={"errors": errors})


class ValidationSchemaBuilder:
    """Builds and caches EntitySchemas keyed by (entity, operation, role)."""

    def __init__(self, roles, type_registry: TypeBuilderRegistry | None = None):
        self.roles = roles
        self.type_registry = type_registry or TypeBuilderRegistry()
        self._cache: dict[tuple[str, str, str | None], EntitySchema] = {}
        self._hits = 0
        self._misses = 0

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def cache_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "keys": sorted(self._cache, key=lambda k: (k[0], k[1], k[2] or "")),
        }

    def _allows(self, role: str | None, required: str) -> bool:
        if role is None:
            return required != NO_ACCESS
        return self.roles.has_permission(role, required)

    def derive_creatable_fields(
        self, metadata: EntityMetadata, role: Any = None
    ) -> list[str]:
        role_name = self._role_key(role)
        return [
            name
            for name, access in metadata.merged_field_access.items()
            if name in metadata.fields and self._allows(role_name, access.create)
        ]

    def derive_updateable_fields(
        self, metadata: EntityMetadata, role: Any = None
    ) -> list[str]:
        role_name = self._role_key(role)
        immutable = set(metadata.immutable_fields)
        return [
            name
            for name, access in metadata.merged_field_access.items()
            if name in metadata.fields
            and name not in immutable
            and self._allows(role_name, access.update)
        ]

    def _role_key(self, role: Any) -> str | None:
        if role is None:
            return None
        return self.roles.normalize_role_name(role)

    def build_entity_schema(
        self,
        entity: str,
        operation: str,
        metadata: EntityMetadata,
        role: Any = None,
    ) -> EntitySchema:
        role_name = self._role_key(role)
        key = (entity, operation, role_name)
        cached = self._cache.get(key)
        if cached is not None:
            self._hits += 1
            return cached

        self._misses += 1
        schema = self._build(entity, operation, metadata, role_name)
        self._cache[key] = schema
        logger.debug(
            "Built %s schema for %s (role=%s): %d fields",
            operation,
            entity,
            role_name,
            len(schema.field_defs),
        )
        return schema

    def _build(
        self,
        entity: str,
        operation: str,
        metadata: EntityMetadata,
        role_name: str | None,
    ) -> EntitySchema:
        if operation == CREATE:
            names = self.derive_creatable_fields(metadata, role_name)
            if role_name is None:
                names += [n for n in metadata.required_fields if n not in names]
            required = frozenset(n for n in metadata.required_fields if n in names)
            defaults = {
                n: metadata.fields[n].default
                for n in names
                if metadata.fields[n].default is not None
            }
        elif operation == UPDATE:
            names = self.derive_updateable_fields(metadata, role_name)
            required = frozenset()
            defaults = {}
        else:
            raise ValueError(f"No validation schema for operation '{operation}'")

        definitions: dict[str, Any] = {}
        field_defs: dict[str, FieldDef] = {}
        for index, name in enumerate(names):
            field_def = metadata.fields[name]
            rule = self.type_registry.build(field_def)
            # Positional attribute names keep payload keys from colliding with BaseModel members
            if name in required:
                definitions[f"f{index}"] = (rule.annotation, Field(alias=name))
            else:
                definitions[f"f{index}"] = (rule.annotation, Field(default=None, alias=name))
            field_defs[name] = field_def

        model = create_model(
            f"{_class_name(entity)}{operation.capitalize()}Schema",
            __config__=ConfigDict(extra="ignore"),
            **definitions,
        )
        return EntitySchema(
            entity=entity,
            operation=operation,
            role=role_name,
            model=model,
            field_defs=MappingProxyType(field_defs),
            required=required,
            defaults=MappingProxyType(defaults),
        )


def _class_name(entity: str) -> str:
    return "".join(part.capitalize() for part in entity.split("_"))
