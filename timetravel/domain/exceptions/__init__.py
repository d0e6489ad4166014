"""Time-travel exception hierarchy -- typed failures surfaced to callers."""
from __future__ import annotations


class TimeTravelError(Exception):
    """Base time-travel exception."""

    def __init__(self, message: str, code: str = "TIME_TRAVEL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# --- Event Log Exceptions ---

class LogClosed(TimeTravelError):
    def __init__(self, operation: str = "append") -> None:
        super().__init__(
            message=f"Cannot {operation}: event log has been closed",
            code="LOG_CLOSED",
        )
        self.operation = operation


class InvalidIndex(TimeTravelError):
    def __init__(self, index: int, length: int) -> None:
        super().__init__(
            message=f"Index {index} is out of bounds for log of length {length}",
            code="INVALID_INDEX",
        )
        self.index = index
        self.length = length


class InvalidRange(TimeTravelError):
    def __init__(self, start: int, end: int, length: int) -> None:
        super().__init__(
            message=f"Range [{start}, {end}) is invalid for log of length {length}",
            code="INVALID_RANGE",
        )
        self.start = start
        self.end = end
        self.length = length


# --- Codec Exceptions ---

class CorruptData(TimeTravelError):
    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Corrupt event data: {reason}", code="CORRUPT_DATA")
        self.reason = reason


class UnsupportedVersion(CorruptData):
    def __init__(self, version: int, supported: tuple[int, ...]) -> None:
        super().__init__(
            reason=f"unsupported format version {version} (supported: {', '.join(map(str, supported))})"
        )
        self.code = "UNSUPPORTED_VERSION"
        self.version = version
        self.supported = supported


# --- Connection Exceptions ---

class ForwardingFailed(TimeTravelError):
    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Port forwarding failed: {reason}", code="FORWARDING_FAILED")
        self.reason = reason


class ProtocolError(TimeTravelError):
    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Protocol error: {reason}", code="PROTOCOL_ERROR")
        self.reason = reason


class ConnectionLost(TimeTravelError):
    def __init__(self, reason: str, attempts: int = 0) -> None:
        msg = f"Connection lost: {reason}"
        if attempts:
            msg += f" (after {attempts} reconnect attempts)"
        super().__init__(message=msg, code="CONNECTION_LOST")
        self.reason = reason
        self.attempts = attempts


class NotConnected(TimeTravelError):
    def __init__(self, state: str) -> None:
        super().__init__(
            message=f"Session is not connected (state: {state})",
            code="NOT_CONNECTED",
        )
        self.state = state


class InvalidSessionState(TimeTravelError):
    def __init__(self, current_state: str, attempted_action: str) -> None:
        super().__init__(
            message=f"Cannot {attempted_action} session in state '{current_state}'",
            code="INVALID_SESSION_STATE",
        )
        self.current_state = current_state
        self.attempted_action = attempted_action


__all__ = [
    "TimeTravelError",
    "LogClosed",
    "InvalidIndex",
    "InvalidRange",
    "CorruptData",
    "UnsupportedVersion",
    "ForwardingFailed",
    "ProtocolError",
    "ConnectionLost",
    "NotConnected",
    "InvalidSessionState",
]
