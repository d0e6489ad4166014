"""Centralized configuration for the time-travel client."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_PORT = 6379


class ConnectionSettings(BaseModel):
    """Read-only snapshot polled by the transport before each connection attempt."""
    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    connect_via_adb: bool = False


class TransportConfig(BaseModel):
    """Timeouts and retry policy for a transport session.

    Attributes:
        connect_timeout_seconds: Bound on opening the socket.
        handshake_timeout_seconds: Bound on the HELLO exchange.
        command_timeout_seconds: Bound on writing a command.
        reconnect_max_retries: Reconnect attempts before giving up.
        reconnect_base_delay_seconds: First backoff delay, doubled per attempt.
        reconnect_max_delay_seconds: Upper bound of a single backoff delay.
        max_frame_size: Frames larger than this are drained and dropped.
    """

    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    handshake_timeout_seconds: float = Field(default=5.0, gt=0)
    command_timeout_seconds: float = Field(default=5.0, gt=0)
    reconnect_max_retries: int = Field(default=5, ge=0)
    reconnect_base_delay_seconds: float = Field(default=0.5, ge=0)
    reconnect_max_delay_seconds: float = Field(default=8.0, ge=0)
    max_frame_size: int = Field(default=16 * 1024 * 1024, ge=64)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number *attempt* (1-based)."""
        delay = self.reconnect_base_delay_seconds * (2 ** (attempt - 1))
        return min(delay, self.reconnect_max_delay_seconds)


class Settings(BaseSettings):
    """Client configuration loaded from environment variables."""

    # Connection
    host: str = "localhost"
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    connect_via_adb: bool = False

    # ADB
    adb_path: str = "adb"
    adb_timeout_seconds: float = 10.0

    # Transport
    connect_timeout_seconds: float = 5.0
    handshake_timeout_seconds: float = 5.0
    command_timeout_seconds: float = 5.0
    reconnect_max_retries: int = 5
    reconnect_base_delay_seconds: float = 0.5
    reconnect_max_delay_seconds: float = 8.0
    max_frame_size: int = 16 * 1024 * 1024

    # Replay
    checkpoint_interval: int = 64

    # Logging
    log_level: str = "info"
    json_logs: bool = False
    log_file: str | None = None

    model_config = {"env_prefix": "TIMETRAVEL_", "env_file": ".env", "extra": "ignore"}

    def connection(self) -> ConnectionSettings:
        return ConnectionSettings(host=self.host, port=self.port, connect_via_adb=self.connect_via_adb)

    def transport(self) -> TransportConfig:
        return TransportConfig(
            connect_timeout_seconds=self.connect_timeout_seconds,
            handshake_timeout_seconds=self.handshake_timeout_seconds,
            command_timeout_seconds=self.command_timeout_seconds,
            reconnect_max_retries=self.reconnect_max_retries,
            reconnect_base_delay_seconds=self.reconnect_base_delay_seconds,
            reconnect_max_delay_seconds=self.reconnect_max_delay_seconds,
            max_frame_size=self.max_frame_size,
        )
