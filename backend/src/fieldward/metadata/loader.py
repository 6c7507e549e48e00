"""Load and resolve entity metadata from YAML files.

Layout under the metadata directory::

    metadata/
        universal.yaml        # baseline fields + fieldAccess shared by every entity
        roles.yaml            # bootstrap role hierarchy (see fieldward.auth.roles)
        entities/*.yaml       # one entity per file

Resolved metadata is frozen: dataclasses are immutable and every mapping is
wrapped in a read-only proxy, so nothing downstream can mutate it after load.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from fieldward.core.types import FIELD_TYPES, is_known_type
from fieldward.errors import ConfigurationError

logger = logging.getLogger(__name__)

OPERATIONS = ("create", "read", "update", "delete")
NO_ACCESS = "none"

_PREFIX_PATTERN = re.compile(r"^[A-Z]+$")
_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _empty() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class FieldDef:
    name: str
    type: str
    display_name: str
    required: bool = False
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    values: tuple[str, ...] | None = None
    default: Any = None
    positive: bool = False
    trim: bool | None = None  # None = type default
    lowercase: bool | None = None  # None = type default
    messages: Mapping[str, str] = field(default_factory=_empty)  # violation kind -> message


@dataclass(frozen=True)
class FieldAccess:
    """Minimum role per CRUD operation; ``none`` forbids it for everyone."""

    create: str = NO_ACCESS
    read: str = NO_ACCESS
    update: str = NO_ACCESS
    delete: str = NO_ACCESS

    def for_operation(self, operation: str) -> str:
        return getattr(self, operation, NO_ACCESS) or NO_ACCESS


@dataclass(frozen=True)
class ForeignKeyRef:
    table: str
    display_name: str


@dataclass(frozen=True)
class IdentifierConfig:
    """Configuration for minted identifiers (PREFIX-YYYY-NNNN)."""

    prefix: str
    field: str


@dataclass(frozen=True)
class EntityPermissions:
    """Entity-level minimum role per operation. None means unrestricted."""

    create: str | None = None
    read: str | None = None
    update: str | None = None
    delete: str | None = None

    def for_operation(self, operation: str) -> str | None:
        return getattr(self, operation, None)


@dataclass(frozen=True)
class EntityMetadata:
    name: str
    table_name: str
    identity_field: str
    display_name: str
    fields: Mapping[str, FieldDef]
    field_access: Mapping[str, FieldAccess]
    required_fields: tuple[str, ...] = ()
    immutable_fields: tuple[str, ...] = ()
    foreign_keys: Mapping[str, ForeignKeyRef] = field(default_factory=_empty)
    identifier: IdentifierConfig | None = None
    permissions: EntityPermissions | None = None
    # Baseline access shared by all entities; entity entries override it
    universal_access: Mapping[str, FieldAccess] = field(default_factory=_empty)

    @property
    def merged_field_access(self) -> Mapping[str, FieldAccess]:
        return MappingProxyType({**self.universal_access, **self.field_access})

    def get_field(self, name: str) -> FieldDef | None:
        return self.fields.get(name)

    def display_name_for(self, field_name: str | None) -> str | None:
        """Human-readable name for a field, falling back to Title Case."""
        if not field_name:
            return None
        field_def = self.fields.get(field_name)
        if field_def:
            return field_def.display_name
        return to_display_name(field_name)


def to_display_name(name: str) -> str:
    """Convert snake_case to Title Case."""
    return " ".join(part.capitalize() for part in name.split("_") if part)


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


class MetadataLoader:
    """Loads entity definitions and the universal baseline from YAML files."""

    def __init__(self, metadata_path: Path):
        self.metadata_path = Path(metadata_path)
        self._entities: dict[str, EntityMetadata] = {}
        self.universal_fields: Mapping[str, FieldDef] = _EMPTY
        self.universal_access: Mapping[str, FieldAccess] = _EMPTY

    @property
    def entities(self) -> Mapping[str, EntityMetadata]:
        return MappingProxyType(self._entities)

    def load_all(self) -> None:
        """Load the universal baseline, then all entities."""
        self._load_universal()
        self._load_entities()
        self._validate_uniqueness()
        logger.info(
            "Loaded metadata for %d entities from %s",
            len(self._entities),
            self.metadata_path,
        )

    def _load_universal(self) -> None:
        universal_file = self.metadata_path / "universal.yaml"
        if not universal_file.exists():
            return
        with open(universal_file) as f:
            data = yaml.safe_load(f) or {}
        self.set_universal(data)

    def set_universal(self, data: Mapping[str, Any]) -> None:
        """Install the universal baseline from a parsed mapping."""
        self.universal_fields = _freeze(
            {
                name: resolve_field(name, spec or {}, "universal")
                for name, spec in (data.get("fields") or {}).items()
            }
        )
        self.universal_access = _freeze(
            {
                name: resolve_field_access(spec or {}, "universal", name)
                for name, spec in (data.get("fieldAccess") or {}).items()
            }
        )

    def _load_entities(self) -> None:
        entities_path = self.metadata_path / "entities"
        if not entities_path.exists():
            raise ConfigurationError(
                f"Metadata entities directory not found: {entities_path}"
            )

        for yaml_file in sorted(entities_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if data and "entity" in data:
                self.add_entity(data)

    def add_entity(self, data: Mapping[str, Any]) -> EntityMetadata:
        """Resolve one entity definition and register it."""
        entity = resolve_entity(
            data,
            universal_fields=self.universal_fields,
            universal_access=self.universal_access,
        )
        if entity.name in self._entities:
            raise ConfigurationError(f"Entity '{entity.name}' is defined twice")
        self._entities[entity.name] = entity
        return entity

    def _validate_uniqueness(self) -> None:
        """Table names and identifier prefixes must be unique across entities."""
        tables: dict[str, str] = {}
        prefixes: dict[str, str] = {}

        for entity in self._entities.values():
            if entity.table_name in tables:
                raise ConfigurationError(
                    f"Duplicate table '{entity.table_name}' used by both "
                    f"'{tables[entity.table_name]}' and '{entity.name}'"
                )
            tables[entity.table_name] = entity.name

            if entity.identifier:
                prefix = entity.identifier.prefix
                if prefix in prefixes:
                    raise ConfigurationError(
                        f"Duplicate identifier prefix '{prefix}' used by both "
                        f"'{prefixes[prefix]}' and '{entity.name}'"
                    )
                prefixes[prefix] = entity.name

    def get_entity(self, name: str) -> EntityMetadata | None:
        """Get a resolved entity by name."""
        return self._entities.get(name)

    def require_entity(self, name: str) -> EntityMetadata:
        entity = self._entities.get(name)
        if entity is None:
            raise ConfigurationError(f"Unknown entity '{name}'")
        return entity

    def list_entities(self) -> list[str]:
        """List all entity names."""
        return list(self._entities.keys())


def resolve_field(name: str, data: Mapping[str, Any], entity_name: str) -> FieldDef:
    """Convert a field mapping to a FieldDef."""
    field_type = data.get("type")
    if not field_type:
        raise ConfigurationError(
            f"Field '{entity_name}.{name}' has no type", field=name
        )
    if not is_known_type(field_type):
        raise ConfigurationError(
            f"Field '{entity_name}.{name}' has unsupported type '{field_type}'. "
            f"Supported: {', '.join(sorted(FIELD_TYPES))}",
            field=name,
        )

    values = data.get("values")
    if field_type == "enum" and not values:
        raise ConfigurationError(
            f"Enum field '{entity_name}.{name}' must define values", field=name
        )

    lowercase = data.get("lowercase")
    default = data.get("default")
    if values:
        values = tuple(str(v) for v in values)
        # Stored values, the CHECK constraint and validation share one list
        folds = lowercase if lowercase is not None else FIELD_TYPES[field_type].lowercase
        if folds:
            values = tuple(v.lower() for v in values)
            if isinstance(default, str):
                default = default.lower()

    pattern = data.get("pattern")
    if pattern is not None:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigurationError(
                f"Field '{entity_name}.{name}' has an invalid pattern: {exc}",
                field=name,
            ) from exc

    return FieldDef(
        name=name,
        type=field_type,
        display_name=data.get("displayName", to_display_name(name)),
        required=bool(data.get("required", False)),
        min=data.get("min"),
        max=data.get("max"),
        min_length=data.get("minLength"),
        max_length=data.get("maxLength"),
        pattern=pattern,
        values=values or None,
        default=default,
        positive=bool(data.get("positive", False)),
        trim=data.get("trim"),
        lowercase=lowercase,
        messages=_freeze(data.get("messages")),
    )


def resolve_field_access(
    data: Mapping[str, Any], entity_name: str, field_name: str
) -> FieldAccess:
    """Convert a fieldAccess entry. Missing operations default to ``none``."""
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"fieldAccess.{field_name} on '{entity_name}' must be a mapping of "
            "create/read/update/delete to a role name or 'none'",
            field=field_name,
        )
    values = {}
    for op in OPERATIONS:
        value = data.get(op, NO_ACCESS)
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(
                f"fieldAccess.{field_name}.{op} on '{entity_name}' must be a role name or 'none'",
                field=field_name,
            )
        values[op] = value.strip().lower()
    return FieldAccess(**values)


def resolve_entity(
    data: Mapping[str, Any],
    universal_fields: Mapping[str, FieldDef] = _EMPTY,
    universal_access: Mapping[str, FieldAccess] = _EMPTY,
) -> EntityMetadata:
    """Resolve an entity definition mapping into frozen EntityMetadata."""
    name = data.get("entity")
    if not name:
        raise ConfigurationError("Entity definition is missing 'entity'")

    table_name = data.get("tableName")
    if not table_name:
        raise ConfigurationError(f"Entity '{name}' has no tableName")

    own_fields = {
        field_name: resolve_field(field_name, spec or {}, name)
        for field_name, spec in (data.get("fields") or {}).items()
    }
    fields = {**universal_fields, **own_fields}

    identity_field = data.get("identityField")
    if not identity_field:
        raise ConfigurationError(f"Entity '{name}' has no identityField")
    if identity_field not in fields:
        raise ConfigurationError(
            f"Entity '{name}' identityField '{identity_field}' is not a defined field",
            field=identity_field,
        )

    required_fields = tuple(data.get("requiredFields") or ())
    for field_name in required_fields:
        if field_name not in fields:
            raise ConfigurationError(
                f"Entity '{name}' requires undefined field '{field_name}'",
                field=field_name,
            )

    immutable_fields = tuple(data.get("immutableFields") or ())
    for field_name in immutable_fields:
        if field_name not in fields:
            raise ConfigurationError(
                f"Entity '{name}' marks undefined field '{field_name}' immutable",
                field=field_name,
            )

    field_access = {
        field_name: resolve_field_access(spec, name, field_name)
        for field_name, spec in (data.get("fieldAccess") or {}).items()
    }

    foreign_keys = {}
    for field_name, spec in (data.get("foreignKeys") or {}).items():
        if not spec or not spec.get("table"):
            raise ConfigurationError(
                f"foreignKeys.{field_name} on '{name}' must name a table",
                field=field_name,
            )
        foreign_keys[field_name] = ForeignKeyRef(
            table=spec["table"],
            display_name=spec.get("displayName") or to_display_name(spec["table"]),
        )

    return EntityMetadata(
        name=name,
        table_name=table_name,
        identity_field=identity_field,
        display_name=data.get("displayName", to_display_name(name)),
        fields=_freeze(fields),
        field_access=_freeze(field_access),
        required_fields=required_fields,
        immutable_fields=immutable_fields,
        foreign_keys=_freeze(foreign_keys),
        identifier=_resolve_identifier(data.get("identifier"), name, identity_field),
        permissions=_resolve_permissions(data.get("permissions"), name),
        universal_access=universal_access,
    )


def _resolve_identifier(
    data: Mapping[str, Any] | None, entity_name: str, identity_field: str
) -> IdentifierConfig | None:
    if not data:
        return None

    prefix = data.get("prefix")
    field_name = data.get("field") or identity_field
    if not prefix:
        raise ConfigurationError(f"Entity '{entity_name}' identifier has no prefix")
    if not _PREFIX_PATTERN.match(prefix):
        raise ConfigurationError(
            f"Entity '{entity_name}' identifier prefix '{prefix}' must be uppercase letters"
        )
    if field_name != identity_field:
        raise ConfigurationError(
            f"Entity '{entity_name}' identifier field '{field_name}' must be the "
            f"identityField '{identity_field}'",
            field=field_name,
        )
    return IdentifierConfig(prefix=prefix, field=field_name)


def _resolve_permissions(
    data: Mapping[str, Any] | None, entity_name: str
) -> EntityPermissions | None:
    if not data:
        return None
    values: dict[str, str | None] = {}
    for op in OPERATIONS:
        value = data.get(op)
        if value is not None and not isinstance(value, str):
            raise ConfigurationError(
                f"permissions.{op} on '{entity_name}' must be a role name or 'none'"
            )
        values[op] = value.strip().lower() if value else None
    return EntityPermissions(**values)
