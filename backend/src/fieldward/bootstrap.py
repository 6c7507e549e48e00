"""Initialize fieldward services.

Returns a services container instead of setting module globals, so the
API, the CLI and tests can each build their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fieldward.auth.field_access import FieldAccessController
from fieldward.auth.roles import (
    ChainedRoleSource,
    DatabaseRoleSource,
    RoleHierarchyService,
    RoleSource,
    YamlRoleSource,
)
from fieldward.config import Settings
from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import MetadataLoader
from fieldward.metadata.validator import check_role_references
from fieldward.persistence.errors import ConstraintTranslator
from fieldward.persistence.identifiers import IdentifierGenerator
from fieldward.persistence.store import RecordStore
from fieldward.services.records import RecordService
from fieldward.validation.schema import ValidationSchemaBuilder

logger = logging.getLogger(__name__)


@dataclass
class FieldwardServices:
    """Container for all initialized fieldward services."""

    settings: Settings
    registry: MetadataLoader
    store: RecordStore
    roles: RoleHierarchyService
    field_access: FieldAccessController
    schemas: ValidationSchemaBuilder
    identifiers: IdentifierGenerator
    translator: ConstraintTranslator
    records: RecordService

    def close(self) -> None:
        self.store.dispose()


def load_registry(settings: Settings) -> MetadataLoader:
    """Load and resolve every entity under the metadata path."""
    registry = MetadataLoader(settings.metadata_path)
    registry.load_all()
    return registry


def open_store(
    settings: Settings,
    registry: MetadataLoader | None = None,
    *,
    create_tables: bool = True,
) -> RecordStore:
    """Connect to the configured database.

    Without a registry only the roles table is defined.
    """
    settings.database.ensure_sqlite_directory()
    store = RecordStore(settings.database.sqlalchemy_url, registry)
    if registry is None:
        store.define_tables([])
    if create_tables:
        store.create_all()
    return store


def default_role_source(settings: Settings, store: RecordStore) -> RoleSource:
    """The roles table, falling back to roles.yaml before it is seeded."""
    return ChainedRoleSource(
        DatabaseRoleSource(store),
        YamlRoleSource(settings.metadata_path / "roles.yaml"),
    )


def initialize_services(
    settings: Settings | None = None,
    *,
    role_source: RoleSource | None = None,
    create_tables: bool = True,
) -> FieldwardServices:
    """Load metadata, connect storage, load roles and wire the record service.

    Raises:
        ConfigurationError: metadata or the role hierarchy is invalid
    """
    settings = settings or Settings.from_env()

    registry = load_registry(settings)
    store = open_store(settings, registry, create_tables=create_tables)

    roles = RoleHierarchyService(role_source or default_role_source(settings, store))
    try:
        check_role_references(registry.entities.values(), roles.hierarchy)
    except ConfigurationError:
        store.dispose()
        raise

    field_access = FieldAccessController(roles)
    schemas = ValidationSchemaBuilder(roles)
    identifiers = IdentifierGenerator(store, registry)
    translator = ConstraintTranslator(registry)
    records = RecordService(
        registry,
        store,
        roles,
        field_access=field_access,
        schemas=schemas,
        identifiers=identifiers,
        translator=translator,
        identifier_retries=settings.identifier_retries,
    )

    logger.info(
        "fieldward ready: %d entities, roles=%s, database=%s",
        len(registry.entities),
        ",".join(roles.names),
        store.dialect_name,
    )
    return FieldwardServices(
        settings=settings,
        registry=registry,
        store=store,
        roles=roles,
        field_access=field_access,
        schemas=schemas,
        identifiers=identifiers,
        translator=translator,
        records=records,
    )
