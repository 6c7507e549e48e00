"""Record services for fieldward."""

from fieldward.services.records import DEFAULT_IDENTIFIER_RETRIES, RecordService

__all__ = ["DEFAULT_IDENTIFIER_RETRIES", "RecordService"]
