"""Record service: the write and read pipeline for every entity.

Write path:

    payload -> sanitize -> field access check -> schema validation
            -> writable-field filter -> identifier -> store
            -> constraint translation (on failure) -> audit -> read projection

Every record returned to a caller has been projected onto the fields the
caller's role may read.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.exc import StatementError

from fieldward.audit import AuditEvent, AuditSink, LoggingAuditSink, compute_changes
from fieldward.auth.field_access import FieldAccessController
from fieldward.auth.roles import RoleHierarchyService
from fieldward.errors import ConflictError, PermissionDenied, ValidationFailed
from fieldward.metadata.loader import EntityMetadata, MetadataLoader
from fieldward.persistence.errors import ConstraintTranslator
from fieldward.persistence.identifiers import IdentifierGenerator
from fieldward.persistence.store import RecordStore
from fieldward.validation.hygiene import sanitize_data
from fieldward.validation.schema import ValidationSchemaBuilder

logger = logging.getLogger(__name__)

DEFAULT_IDENTIFIER_RETRIES = 5


class RecordService:
    def __init__(
        self,
        registry: MetadataLoader,
        store: RecordStore,
        roles: RoleHierarchyService,
        *,
        field_access: FieldAccessController | None = None,
        schemas: ValidationSchemaBuilder | None = None,
        identifiers: IdentifierGenerator | None = None,
        translator: ConstraintTranslator | None = None,
        audit: AuditSink | None = None,
        identifier_retries: int = DEFAULT_IDENTIFIER_RETRIES,
    ):
        self.registry = registry
        self.store = store
        self.roles = roles
        self.field_access = field_access or FieldAccessController(roles)
        self.schemas = schemas or ValidationSchemaBuilder(roles)
        self.identifiers = identifiers or IdentifierGenerator(store, registry)
        self.translator = translator or ConstraintTranslator(registry)
        self.audit = audit or LoggingAuditSink()
        self.identifier_retries = identifier_retries

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_entity_permission(
        self, metadata: EntityMetadata, role: Any, operation: str
    ) -> str:
        """Enforce entity-level permissions. Returns the normalized role name."""
        role_name = self.roles.normalize_role_name(role)
        required = metadata.permissions.for_operation(operation) if metadata.permissions else None

        if required is None:
            allowed = self.roles.rank(role_name) >= 0
        else:
            allowed = self.roles.has_permission(role_name, required)

        if not allowed:
            raise PermissionDenied(
                f"Role '{role_name}' cannot {operation} {metadata.display_name}",
                details={"role": role_name, "operation": operation, "entity": metadata.name},
            )
        return role_name

    @staticmethod
    def _require_mapping(metadata: EntityMetadata, payload: Any) -> Mapping[str, Any]:
        if not isinstance(payload, Mapping):
            raise ValidationFailed(f"{metadata.display_name} payload must be an object")
        return payload

    def _prepare(
        self, metadata: EntityMetadata, payload: Any, role: str, operation: str
    ) -> dict[str, Any]:
        """Sanitize, check field access and validate a write payload."""
        payload = self._require_mapping(metadata, payload)
        sanitized = sanitize_data(payload, metadata)
        self.field_access.validate_field_access(sanitized, metadata, role, operation)
        schema = self.schemas.build_entity_schema(metadata.name, operation, metadata, role)
        clean = schema.validate(sanitized)
        return self.field_access.filter_writable_fields(clean, metadata, role, operation)

    def _project(self, metadata: EntityMetadata, records: Any, role: str) -> Any:
        return self.field_access.filter_data_by_role(records, metadata, role, "read")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, entity: str, payload: Any, role: Any) -> dict[str, Any]:
        metadata = self.registry.require_entity(entity)
        role_name = self._check_entity_permission(metadata, role, "create")
        clean = self._prepare(metadata, payload, role_name, "create")

        attempts = 0
        while True:
            values = dict(clean)
            identifier = None
            if metadata.identifier:
                identifier = self.identifiers.generate(entity)
                values[metadata.identifier.field] = identifier

            try:
                row = self.store.insert(entity, values)
                break
            except StatementError as exc:
                error = self.translator.translate(exc, metadata, "create", values)
                if (
                    identifier is not None
                    and isinstance(error, ConflictError)
                    and error.field in (metadata.identifier.field, None)
                    and attempts < self.identifier_retries
                ):
                    attempts += 1
                    logger.warning(
                        "Identifier %s for %s already taken, retrying (%d/%d)",
                        identifier,
                        entity,
                        attempts,
                        self.identifier_retries,
                    )
                    continue
                raise error from exc

        self.audit.emit(
            AuditEvent(
                entity=entity,
                operation="create",
                record_id=row.get("id"),
                role=role_name,
                identifier=identifier,
                changes=compute_changes({k: row[k] for k in values if k in row}, None),
            )
        )
        return self._project(metadata, row, role_name)

    def get(self, entity: str, record_id: Any, role: Any) -> dict[str, Any] | None:
        metadata = self.registry.require_entity(entity)
        role_name = self._check_entity_permission(metadata, role, "read")
        row = self.store.get(entity, record_id)
        return self._project(metadata, row, role_name)

    def list(
        self,
        entity: str,
        role: Any,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List records. ``filters`` carries row scoping decided by the caller."""
        metadata = self.registry.require_entity(entity)
        role_name = self._check_entity_permission(metadata, role, "read")
        rows = self.store.list(entity, filters=filters, limit=limit, offset=offset)
        return self._project(metadata, rows, role_name)

    def update(
        self, entity: str, record_id: Any, payload: Any, role: Any
    ) -> dict[str, Any] | None:
        """Apply a partial update. Returns None if the record does not exist."""
        metadata = self.registry.require_entity(entity)
        role_name = self._check_entity_permission(metadata, role, "update")
        clean = self._prepare(metadata, payload, role_name, "update")
        if not clean:
            raise ValidationFailed(
                f"No updateable fields provided for {metadata.display_name}",
                details={"role": role_name},
            )

        before = self.store.get(entity, record_id)
        if before is None:
            return None

        try:
            row = self.store.update(entity, record_id, clean)
        except StatementError as exc:
            raise self.translator.translate(exc, metadata, "update", clean) from exc
        if row is None:
            return None

        self.audit.emit(
            AuditEvent(
                entity=entity,
                operation="update",
                record_id=record_id,
                role=role_name,
                identifier=before.get(metadata.identity_field),
                changes=compute_changes({k: row[k] for k in clean if k in row}, before),
            )
        )
        return self._project(metadata, row, role_name)

    def delete(self, entity: str, record_id: Any, role: Any) -> bool:
        """Delete a record. Returns False if it does not exist."""
        metadata = self.registry.require_entity(entity)
        role_name = self._check_entity_permission(metadata, role, "delete")

        before = self.store.get(entity, record_id)
        if before is None:
            return False

        try:
            deleted = self.store.delete(entity, record_id)
        except StatementError as exc:
            raise self.translator.translate(exc, metadata, "delete") from exc

        if deleted:
            self.audit.emit(
                AuditEvent(
                    entity=entity,
                    operation="delete",
                    record_id=record_id,
                    role=role_name,
                    identifier=before.get(metadata.identity_field),
                )
            )
        return deleted
