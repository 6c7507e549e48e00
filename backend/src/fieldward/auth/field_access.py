"""Field-level access control driven by entity ``fieldAccess`` metadata.

A field is readable/writable for a role when its entry for the operation
names a role at or below the caller's rank. Fields without an entry are
denied to everyone.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

from fieldward.errors import PermissionDenied
from fieldward.metadata.loader import EntityMetadata

logger = logging.getLogger(__name__)


class RoleResolver(Protocol):
    def normalize_role_name(self, role: Any) -> str: ...

    def has_permission(self, user_role: Any, required: str | None) -> bool: ...


def pick_fields(record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Return only the given keys that are present in ``record``."""
    return {name: record[name] for name in fields if name in record}


def omit_fields(record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    excluded = set(fields)
    return {name: value for name, value in record.items() if name not in excluded}


class FieldAccessController:
    def __init__(self, roles: RoleResolver):
        self.roles = roles
        self._cache: dict[tuple[str, str, str], frozenset[str]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def fields_for_operation(
        self, metadata: EntityMetadata, role: Any, operation: str
    ) -> frozenset[str]:
        """Fields the role may touch for ``operation``."""
        role_name = self.roles.normalize_role_name(role)
        key = (metadata.name, role_name, operation)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        allowed = frozenset(
            field_name
            for field_name, access in metadata.merged_field_access.items()
            if self.roles.has_permission(role_name, access.for_operation(operation))
        )
        self._cache[key] = allowed
        return allowed

    def can_access_field(
        self, metadata: EntityMetadata, role: Any, field_name: str, operation: str
    ) -> bool:
        return field_name in self.fields_for_operation(metadata, role, operation)

    def filter_data_by_role(
        self,
        records: Mapping[str, Any] | list[Mapping[str, Any]] | None,
        metadata: EntityMetadata,
        role: Any,
        operation: str = "read",
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Project a record, or a list of records, onto the permitted fields."""
        if records is None:
            return None
        allowed = self.fields_for_operation(metadata, role, operation)
        if isinstance(records, list):
            return [pick_fields(record, allowed) for record in records]
        return pick_fields(records, allowed)

    def validate_field_access(
        self,
        payload: Mapping[str, Any],
        metadata: EntityMetadata,
        role: Any,
        operation: str,
    ) -> None:
        """Raise PermissionDenied naming every field the role may not write."""
        allowed = self.fields_for_operation(metadata, role, operation)
        forbidden = [name for name in payload if name not in allowed]
        if not forbidden:
            return

        role_name = self.roles.normalize_role_name(role)
        logger.info(
            "Denied %s on %s for role %s: %s",
            operation,
            metadata.name,
            role_name,
            ", ".join(forbidden),
        )
        labels = ", ".join(metadata.display_name_for(name) or name for name in forbidden)
        raise PermissionDenied(
            f"Role '{role_name}' cannot {operation} field(s): {labels}",
            field=forbidden[0],
            details={"fields": forbidden, "role": role_name, "operation": operation},
        )

    def filter_writable_fields(
        self,
        payload: Mapping[str, Any],
        metadata: EntityMetadata,
        role: Any,
        operation: str,
    ) -> dict[str, Any]:
        """Drop fields the role may not write, without raising."""
        return pick_fields(payload, self._ordered(payload, metadata, role, operation))

    def _ordered(
        self, payload: Mapping[str, Any], metadata: EntityMetadata, role: Any, operation: str
    ) -> list[str]:
        allowed = self.fields_for_operation(metadata, role, operation)
        return [name for name in payload if name in allowed]
