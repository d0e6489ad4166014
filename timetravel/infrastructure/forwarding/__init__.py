"""Port forwarding -- tunnels the debug port to a device before connecting.

A forwarder reports failure as a :class:`ForwardingError` value instead of
raising; the transport session decides what a failure means for the
connection attempt.
"""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ForwardingError:
    """Human-readable reason a forward attempt failed."""

    text: str


class PortForwarder(Protocol):
    def forward(self, port: int) -> ForwardingError | None:
        ...


class AdbPortForwarder:
    """Forwards ``tcp:<port>`` on the host to the same port on an Android device.

    Runs ``adb forward tcp:<port> tcp:<port>``. Locating the ``adb``
    executable is left to configuration.
    """

    def __init__(
        self,
        adb_path: str = "adb",
        timeout_seconds: float = 10.0,
        runner: Callable[..., subprocess.CompletedProcess[Any]] = subprocess.run,
    ) -> None:
        self.adb_path = adb_path
        self.timeout_seconds = timeout_seconds
        self._run = runner

    def forward(self, port: int) -> ForwardingError | None:
        args = [self.adb_path, "forward", f"tcp:{port}", f"tcp:{port}"]
        try:
            result = self._run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError:
            return self._fail(port, f"ADB executable not found: {self.adb_path}")
        except subprocess.TimeoutExpired:
            return self._fail(port, f"ADB did not respond within {self.timeout_seconds}s")
        except OSError as exc:
            return self._fail(port, f"Failed to run ADB: {exc}")

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            return self._fail(port, detail or f"ADB exited with code {result.returncode}")

        logger.info("adb_port_forwarded", port=port)
        return None

    @staticmethod
    def _fail(port: int, text: str) -> ForwardingError:
        logger.warning("adb_forward_failed", port=port, error=text)
        return ForwardingError(text=text)


__all__ = ["ForwardingError", "PortForwarder", "AdbPortForwarder"]
