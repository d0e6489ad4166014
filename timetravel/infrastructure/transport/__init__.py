"""Transport -- wire frames and the reconnecting session."""
from timetravel.infrastructure.transport.frames import (
    Cancel,
    Command,
    CommandCode,
    RequestExport,
    RewindTo,
    StartRecording,
    StopRecording,
)
from timetravel.infrastructure.transport.session import ConnectionState, TransportSession

__all__ = [
    "Cancel",
    "Command",
    "CommandCode",
    "ConnectionState",
    "RequestExport",
    "RewindTo",
    "StartRecording",
    "StopRecording",
    "TransportSession",
]
