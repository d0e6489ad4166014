"""Import and export of event logs as ``.tte`` bytes."""
from __future__ import annotations

import structlog

from timetravel.engines.event_log.engine import EventLog
from timetravel.infrastructure.codec.binary import encode_events

logger = structlog.get_logger(__name__)


def export_events(log: EventLog, upto: int | None = None) -> bytes:
    """Serialize *log*, or only its prefix ``[0, upto)`` when *upto* is given.

    Raises:
        InvalidRange: *upto* is beyond the end of the log.
    """
    if upto is None:
        data = log.serialize()
        count = len(log)
    else:
        events = log.slice(0, upto)
        data = encode_events(events)
        count = len(events)
    logger.info("events_exported", count=count, size=len(data))
    return data


def import_events(data: bytes) -> EventLog:
    """Decode *data* into a fresh log.

    Raises:
        CorruptData: The bytes are not a valid container.
        UnsupportedVersion: The container version is unknown.
    """
    log = EventLog.deserialize(data)
    logger.info("events_imported", count=len(log), size=len(data))
    return log


__all__ = ["export_events", "import_events"]
