"""Human-readable identifier generation.

Format: {PREFIX}-{YEAR}-{SEQUENCE}
Example: WO-2024-0001, INV-2024-0042

The sequence is zero-padded to four digits and keeps growing past 9999
(WO-2024-10000). It is scoped per entity and year, and the highest
existing identifier is always the floor, so sequences are never reused.

The generated value is a candidate: two concurrent callers can read the
same maximum. The unique constraint on the identity field rejects the
loser, and RecordService retries with a fresh candidate.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Callable

from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import MetadataLoader
from fieldward.persistence.store import RecordStore

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 4
IDENTIFIER_PATTERN = re.compile(r"^[A-Z]+-\d{4}-\d{4,}$")


def format_identifier(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(identifier: str | None, prefix: str, year: int) -> int | None:
    """Trailing sequence number of ``identifier``, or None if it is not ours."""
    if not identifier:
        return None
    head = f"{prefix}-{year}-"
    if not identifier.startswith(head):
        return None
    tail = identifier[len(head):]
    if not tail.isdigit():
        return None
    return int(tail)


class IdentifierGenerator:
    """Mints PREFIX-YYYY-NNNN identifiers for entities with an identifier config."""

    def __init__(
        self,
        store: RecordStore,
        registry: MetadataLoader,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock or (lambda: datetime.now(UTC))

    def generate(self, entity_type: str, year: int | None = None) -> str:
        """Next candidate identifier for ``entity_type``.

        Raises:
            ConfigurationError: the entity is unknown or has no identifier config
        """
        entity = self.registry.get_entity(entity_type)
        if entity is None:
            raise ConfigurationError(f"Unknown entity '{entity_type}'")
        if entity.identifier is None:
            raise ConfigurationError(
                f"Entity '{entity_type}' has no identifier configuration"
            )

        if year is None:
            year = self.clock().year
        prefix = entity.identifier.prefix
        last = 0
        for existing in self.store.iter_identifiers(
            entity.name, entity.identifier.field, f"{prefix}-{year}-"
        ):
            sequence = parse_sequence(existing, prefix, year)
            # Only canonical values are a floor: WO-2024-00001 or
            # WO-2024-legacy would sort first yet say nothing about the max
            if sequence is not None and format_identifier(prefix, year, sequence) == existing:
                last = sequence
                break
            logger.warning(
                "Ignoring malformed identifier %r in %s.%s",
                existing,
                entity.table_name,
                entity.identifier.field,
            )

        identifier = format_identifier(prefix, year, last + 1)
        logger.debug("Generated identifier %s for %s", identifier, entity_type)
        return identifier
