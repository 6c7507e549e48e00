"""Audit event emission.

The record service emits one AuditEvent per successful write. Storing the
events is the job of whatever sink is injected; the default sink writes
them to the ``fieldward.audit`` logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

audit_logger = logging.getLogger("fieldward.audit")


@dataclass(frozen=True)
class AuditEvent:
    entity: str
    operation: str  # "create" | "update" | "delete"
    record_id: Any
    role: str | None
    identifier: str | None = None
    changes: dict[str, dict[str, Any]] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes audit events to a logger at INFO."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or audit_logger

    def emit(self, event: AuditEvent) -> None:
        self.logger.info(
            "%s %s id=%s identifier=%s role=%s changed=%s",
            event.operation,
            event.entity,
            event.record_id,
            event.identifier,
            event.role,
            ",".join(sorted(event.changes or {})),
        )


def compute_changes(
    record: dict[str, Any], original: dict[str, Any] | None
) -> dict[str, dict[str, Any]]:
    """Diff two versions of a record as ``{field: {"from": old, "to": new}}``.

    With no original (create) every field in ``record`` is reported as new.
    """
    changes: dict[str, dict[str, Any]] = {}
    for key, value in record.items():
        old = original.get(key) if original is not None else None
        if original is None or key not in original or old != value:
            changes[key] = {"from": old, "to": value}
    return changes
