"""Role hierarchy: ordered roles, rank lookup and permission comparison.

Roles are ordered from lowest to highest privilege. A role satisfies a
requirement when its rank is at least the required role's rank. The
hierarchy is loaded once from a RoleSource and then served from memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

import yaml
from sqlalchemy.exc import SQLAlchemyError

from fieldward.errors import ConfigurationError

if TYPE_CHECKING:
    from fieldward.persistence.store import RecordStore

logger = logging.getLogger(__name__)

NO_ACCESS = "none"


@dataclass(frozen=True)
class RoleRecord:
    name: str
    priority: int
    description: str | None = None


class RoleHierarchy:
    """An immutable, validated, ordered list of roles."""

    def __init__(self, records: Iterable[RoleRecord]):
        ordered = tuple(
            RoleRecord(
                name=record.name.strip().lower(),
                priority=record.priority,
                description=record.description,
            )
            for record in records
        )
        if not ordered:
            raise ConfigurationError("Role hierarchy is empty")

        seen: set[str] = set()
        previous: RoleRecord | None = None
        for record in ordered:
            if not record.name:
                raise ConfigurationError("Role hierarchy contains a role with no name")
            if record.name in seen:
                raise ConfigurationError(f"Duplicate role '{record.name}' in hierarchy")
            if previous is not None and record.priority <= previous.priority:
                raise ConfigurationError(
                    f"Role priorities must strictly increase: '{record.name}' "
                    f"({record.priority}) follows '{previous.name}' ({previous.priority})"
                )
            seen.add(record.name)
            previous = record

        self._records = ordered
        self._ranks = {record.name: index for index, record in enumerate(ordered)}
        self._by_priority = {record.priority: record.name for record in ordered}

    @classmethod
    def from_mappings(cls, rows: Iterable[Mapping[str, Any]]) -> RoleHierarchy:
        """Build from rows shaped like ``{"name": ..., "priority": ...}``."""
        records = []
        for row in rows:
            name = row.get("name")
            priority = row.get("priority")
            if not isinstance(name, str) or isinstance(priority, bool) or not isinstance(priority, int):
                raise ConfigurationError(f"Invalid role entry: {dict(row)!r}")
            records.append(RoleRecord(name, priority, row.get("description")))
        return cls(records)

    @property
    def records(self) -> tuple[RoleRecord, ...]:
        return self._records

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(record.name for record in self._records)

    @property
    def lowest(self) -> str:
        return self._records[0].name

    @property
    def highest(self) -> str:
        return self._records[-1].name

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, role: object) -> bool:
        return isinstance(role, str) and role.strip().lower() in self._ranks

    def rank(self, role: str | None) -> int:
        """Index of the role in the hierarchy, -1 if unknown."""
        if not isinstance(role, str):
            return -1
        return self._ranks.get(role.strip().lower(), -1)

    def priority_of(self, role: str) -> int | None:
        index = self.rank(role)
        return self._records[index].priority if index >= 0 else None

    def role_for_priority(self, priority: int) -> str | None:
        return self._by_priority.get(priority)

    def normalize_role_name(self, role: Any) -> str:
        """Canonical role name for a role name or legacy numeric priority.

        Unresolvable input (None, unknown priorities, other types) becomes
        the lowest-privilege role.
        """
        if isinstance(role, str):
            name = role.strip().lower()
            return name or self.lowest
        if isinstance(role, int) and not isinstance(role, bool):
            name = self.role_for_priority(role)
            if name is None:
                logger.debug("Unknown role priority %s; using '%s'", role, self.lowest)
                return self.lowest
            return name
        return self.lowest

    def has_permission(self, user_role: Any, required: str | None) -> bool:
        """True when ``user_role`` ranks at or above ``required``.

        ``none`` is never satisfied. Unknown roles on either side fail closed.
        """
        if not isinstance(required, str):
            return False
        required_name = required.strip().lower()
        if required_name == NO_ACCESS:
            return False

        user_rank = self.rank(self.normalize_role_name(user_role))
        required_rank = self.rank(required_name)
        if user_rank < 0 or required_rank < 0:
            return False
        return user_rank >= required_rank


# ── Sources ───────────────────────────────────────────────


class RoleSource(Protocol):
    def load(self) -> list[RoleRecord]: ...


class StaticRoleSource:
    """Fixed list of roles, for tests and embedded use."""

    def __init__(self, records: Iterable[RoleRecord | tuple[str, int]]):
        self._records = [
            record if isinstance(record, RoleRecord) else RoleRecord(*record)
            for record in records
        ]

    def load(self) -> list[RoleRecord]:
        return list(self._records)


class YamlRoleSource:
    """Reads ``roles.yaml``: ``roles: [{name, priority, description?}]``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[RoleRecord]:
        if not self.path.exists():
            raise ConfigurationError(f"Roles file not found: {self.path}")
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        rows = data.get("roles") if isinstance(data, dict) else None
        if not rows:
            raise ConfigurationError(f"Roles file {self.path} defines no roles")
        return list(RoleHierarchy.from_mappings(rows).records)


class DatabaseRoleSource:
    """Reads active rows from the ``roles`` table, ordered by priority."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load(self) -> list[RoleRecord]:
        try:
            rows = self.store.fetch_roles()
        except SQLAlchemyError as exc:
            raise ConfigurationError(f"Roles table is not available: {exc}") from exc
        if not rows:
            raise ConfigurationError("No active roles found in the roles table")
        return [
            RoleRecord(row["name"], int(row["priority"]), row.get("description"))
            for row in rows
        ]


class ChainedRoleSource:
    """Tries each source in order and returns the first that loads."""

    def __init__(self, *sources: RoleSource):
        self.sources = sources

    def load(self) -> list[RoleRecord]:
        failures = []
        for source in self.sources:
            try:
                return source.load()
            except ConfigurationError as exc:
                logger.info("Role source %s unavailable: %s", type(source).__name__, exc.message)
                failures.append(exc.message)
        raise ConfigurationError(
            "No role source could be loaded: " + "; ".join(failures),
            details={"failures": failures},
        )


# ── Service ───────────────────────────────────────────────


class RoleHierarchyService:
    """Caches the hierarchy loaded from a source.

    The first access loads it; ``reload()`` swaps in a freshly loaded
    hierarchy and ``clear()`` drops it so the next access reloads.
    """

    def __init__(self, source: RoleSource):
        self.source = source
        self._hierarchy: RoleHierarchy | None = None

    @property
    def hierarchy(self) -> RoleHierarchy:
        if self._hierarchy is None:
            self._hierarchy = self._load()
        return self._hierarchy

    def _load(self) -> RoleHierarchy:
        hierarchy = RoleHierarchy(self.source.load())
        logger.info("Loaded role hierarchy: %s", ", ".join(hierarchy.names))
        return hierarchy

    def reload(self) -> RoleHierarchy:
        hierarchy = self._load()
        self._hierarchy = hierarchy
        return hierarchy

    def clear(self) -> None:
        self._hierarchy = None

    @property
    def names(self) -> tuple[str, ...]:
        return self.hierarchy.names

    def rank(self, role: str | None) -> int:
        return self.hierarchy.rank(role)

    def normalize_role_name(self, role: Any) -> str:
        return self.hierarchy.normalize_role_name(role)

    def has_permission(self, user_role: Any, required: str | None) -> bool:
        return self.hierarchy.has_permission(user_role, required)
