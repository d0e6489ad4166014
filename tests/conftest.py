"""Root conftest -- shared fixtures for all test suites."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is on sys.path so ``from timetravel...`` and
# ``from tests.fixtures...`` imports work without installation.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from timetravel.config import ConnectionSettings, TransportConfig  # noqa: E402
from timetravel.domain.entities.event import Event, EventKind  # noqa: E402
from timetravel.engines.event_log.engine import EventLog  # noqa: E402


@pytest.fixture
def make_event():
    """Factory building events for store ``A`` unless told otherwise."""

    def _make(
        kind: EventKind = EventKind.RESULT,
        payload: bytes = b"",
        store_instance_id: str = "A",
        store_tag: str = "CounterStore",
        timestamp: int = 1_700_000_000_000,
    ) -> Event:
        return Event(
            timestamp=timestamp,
            store_tag=store_tag,
            kind=kind,
            payload=payload,
            store_instance_id=store_instance_id,
        )

    return _make


@pytest.fixture
def scenario_log(make_event) -> EventLog:
    """Five events for store ``A``: Intent, Result, Intent, Result, Label."""
    log = EventLog()
    kinds = [EventKind.INTENT, EventKind.RESULT, EventKind.INTENT, EventKind.RESULT, EventKind.LABEL]
    for i, kind in enumerate(kinds):
        log.append(make_event(kind=kind, payload=f"e{i}".encode(), timestamp=1_700_000_000_000 + i))
    return log


@pytest.fixture
def fast_transport() -> TransportConfig:
    return TransportConfig(
        connect_timeout_seconds=1.0,
        handshake_timeout_seconds=1.0,
        command_timeout_seconds=1.0,
        reconnect_max_retries=3,
        reconnect_base_delay_seconds=0.01,
        reconnect_max_delay_seconds=0.05,
    )


@pytest.fixture
def local_settings():
    """Build a settings provider pointing at ``127.0.0.1:<port>``."""

    def _provider(port: int, connect_via_adb: bool = False):
        snapshot = ConnectionSettings(host="127.0.0.1", port=port, connect_via_adb=connect_via_adb)
        return lambda: snapshot

    return _provider
