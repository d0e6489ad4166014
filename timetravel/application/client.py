"""Time-travel client -- wires the event log, replay engine and transport.

Everything is owned by one :class:`TimeTravelClient` instance built at the
entry point; nothing here is global. File handling is delegated to the
``on_import_events`` / ``on_export_events`` callables, which only deal in raw
bytes.
"""
from __future__ import annotations

from typing import Callable

import structlog

from timetravel.application.import_export import export_events, import_events
from timetravel.config import TransportConfig
from timetravel.domain.entities.event import Event
from timetravel.domain.entities.state import MaterializedState
from timetravel.domain.exceptions import InvalidSessionState
from timetravel.engines.event_log.engine import EventLog
from timetravel.engines.replay_engine.engine import (
    DEFAULT_CHECKPOINT_INTERVAL,
    ReplayEngine,
    Reducer,
    latest_payload,
)
from timetravel.infrastructure.forwarding import PortForwarder
from timetravel.infrastructure.transport.frames import (
    Cancel,
    RewindTo,
    StartRecording,
    StopRecording,
)
from timetravel.infrastructure.transport.session import (
    ConnectionState,
    Opener,
    SettingsProvider,
    TransportSession,
    open_tcp_connection,
)

logger = structlog.get_logger(__name__)

ImportEvents = Callable[[], bytes | None]
ExportEvents = Callable[[bytes], None]


class TimeTravelClient:
    """Records live events, replays them, and imports/exports ``.tte`` data."""

    def __init__(
        self,
        settings: SettingsProvider,
        forwarder: PortForwarder | None = None,
        config: TransportConfig | None = None,
        on_import_events: ImportEvents | None = None,
        on_export_events: ExportEvents | None = None,
        reducer: Reducer = latest_payload,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        opener: Opener = open_tcp_connection,
    ) -> None:
        self._reducer = reducer
        self._checkpoint_interval = checkpoint_interval
        self._on_import_events = on_import_events
        self._on_export_events = on_export_events
        self.log = EventLog()
        self.engine = ReplayEngine(self.log, reducer=reducer, checkpoint_interval=checkpoint_interval)
        self.session = TransportSession(
            self.log,
            settings=settings,
            forwarder=forwarder,
            config=config,
            sink=self._on_live_event,
            opener=opener,
        )

    # -- connection ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    async def connect(self) -> None:
        await self.session.connect()

    async def disconnect(self) -> None:
        await self.session.disconnect()

    async def start_recording(self) -> None:
        await self.session.send_command(StartRecording())

    async def stop_recording(self) -> None:
        await self.session.send_command(StopRecording())

    async def cancel(self) -> None:
        await self.session.send_command(Cancel())

    # -- navigation ---------------------------------------------------------

    @property
    def cursor(self) -> int:
        return self.engine.cursor

    def current(self) -> MaterializedState:
        return self.engine.current()

    async def rewind_to(self, index: int) -> MaterializedState:
        """Move the replay cursor and, when connected, rewind the application.

        The forward tail is kept until a new live event arrives; at that point
        it is discarded (see :meth:`_on_live_event`).
        """
        state = self.engine.go_to(index)
        if self.session.is_connected:
            await self.session.send_command(RewindTo(index=index))
        return state

    async def rewind_and_continue(self, index: int) -> MaterializedState:
        """Rewind to *index* and discard everything after it right away."""
        with self.log.lock:
            self.log.truncate_from(index)
            state = self.engine.go_to(index)
        if self.session.is_connected:
            await self.session.send_command(RewindTo(index=index))
        return state

    async def step_forward(self) -> MaterializedState:
        if self.engine.cursor >= len(self.log):
            return self.engine.current()
        return await self.rewind_to(self.engine.cursor + 1)

    async def step_back(self) -> MaterializedState:
        if self.engine.cursor == 0:
            return self.engine.current()
        return await self.rewind_to(self.engine.cursor - 1)

    async def move_to_start(self) -> MaterializedState:
        return await self.rewind_to(0)

    async def move_to_end(self) -> MaterializedState:
        return await self.rewind_to(len(self.log))

    # -- import / export ----------------------------------------------------

    def export_events(self, upto_cursor: bool = False) -> bytes:
        """Serialize the log (or its prefix up to the cursor) and hand it on."""
        data = export_events(self.log, upto=self.engine.cursor if upto_cursor else None)
        if self._on_export_events is not None:
            self._on_export_events(data)
        return data

    async def export_remote_events(self, timeout: float | None = None) -> bytes:
        """Ask the connected application for its own export."""
        data = await self.session.request_export(timeout=timeout)
        if self._on_export_events is not None:
            self._on_export_events(data)
        return data

    def import_events(self, data: bytes | None = None) -> EventLog | None:
        """Replace the log with imported events.

        Reads from ``on_import_events`` when *data* is not given; returns
        ``None`` if that callable yields nothing (for example a cancelled
        file dialog).

        Raises:
            InvalidSessionState: The session is not disconnected.
            CorruptData: The bytes are not a valid container.
        """
        if self.session.state is not ConnectionState.DISCONNECTED:
            raise InvalidSessionState(self.session.state.value, "import events into")
        if data is None:
            if self._on_import_events is None:
                return None
            data = self._on_import_events()
            if data is None:
                return None

        log = import_events(data)
        self.engine.detach()
        self.log = log
        self.engine = ReplayEngine(log, reducer=self._reducer, checkpoint_interval=self._checkpoint_interval)
        self.engine.move_to_end()
        self.session.log = log
        return log

    # -- live events --------------------------------------------------------

    def _on_live_event(self, event: Event) -> None:
        with self.log.lock:
            length = len(self.log)
            cursor = self.engine.cursor
            if cursor < length:
                logger.info("diverged_after_rewind", cursor=cursor, discarded=length - cursor)
                self.log.truncate_from(cursor)
            index = self.log.append(event)
            self.engine.go_to(index + 1)
