"""Event log engine."""
from timetravel.engines.event_log.engine import EventLog

__all__ = ["EventLog"]
