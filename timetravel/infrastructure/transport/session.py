"""Transport session -- a reconnectable duplex channel to the instrumented app.

State machine::

    DISCONNECTED --connect()--> CONNECTING --(handshake ok)--> CONNECTED
    CONNECTED --(socket error)--> RECONNECTING --(retry ok)--> CONNECTED
    RECONNECTING --(retries exhausted)--> DISCONNECTED  (ConnectionLost)
    any state --disconnect()--> DISCONNECTED

One receive task per connected session parses frames and hands events to
the sink (by default :meth:`EventLog.append`). Reconnection re-polls the
settings provider and re-runs port forwarding; events the peer emitted while
the socket was down are not recovered.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from enum import StrEnum
from typing import Any, Awaitable, Callable

import structlog

from timetravel.config import ConnectionSettings, TransportConfig
from timetravel.domain.entities.event import Event
from timetravel.domain.exceptions import (
    ConnectionLost,
    ForwardingFailed,
    InvalidSessionState,
    NotConnected,
    ProtocolError,
    TimeTravelError,
)
from timetravel.engines.event_log.engine import EventLog
from timetravel.infrastructure.forwarding import PortForwarder
from timetravel.infrastructure.transport.frames import (
    LENGTH_PREFIX,
    PROTOCOL_VERSION,
    AckFrame,
    Command,
    CommandCode,
    EventFrame,
    Frame,
    HelloFrame,
    RequestExport,
    decode_frame,
    encode_command,
    encode_hello,
)

logger = structlog.get_logger(__name__)

Streams = tuple[asyncio.StreamReader, asyncio.StreamWriter]
Opener = Callable[[str, int], Awaitable[Streams]]
SettingsProvider = Callable[[], ConnectionSettings]
EventSink = Callable[[Event], Any]
StateListener = Callable[["ConnectionState"], None]
LostListener = Callable[[ConnectionLost], None]

_DRAIN_CHUNK = 64 * 1024


class ConnectionState(StrEnum):
    """Lifecycle state of a transport session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


async def open_tcp_connection(host: str, port: int) -> Streams:
    return await asyncio.open_connection(host, port)


class TransportSession:
    """Receives live events into an :class:`EventLog` and sends control commands.

    Usage::

        session = TransportSession(log, settings=lambda: settings.connection())
        await session.connect()
        await session.send_command(RewindTo(index=3))
        await session.disconnect()
    """

    def __init__(
        self,
        log: EventLog,
        settings: SettingsProvider,
        forwarder: PortForwarder | None = None,
        config: TransportConfig | None = None,
        sink: EventSink | None = None,
        opener: Opener = open_tcp_connection,
    ) -> None:
        self.log = log
        self._settings = settings
        self._forwarder = forwarder
        self._config = config or TransportConfig()
        self._sink = sink
        self._opener = opener

        self.session_id = uuid.uuid4().hex[:12]
        self._state = ConnectionState.DISCONNECTED
        self._disconnected = asyncio.Event()
        self._disconnected.set()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task[None] | None = None
        self._target: tuple[str | None, int | None] = (None, None)
        self._pending: dict[CommandCode, list[asyncio.Future[bytes]]] = defaultdict(list)
        self._state_listeners: list[StateListener] = []
        self._lost_listeners: list[LostListener] = []
        self._lost: ConnectionLost | None = None
        self.dropped_frames = 0

    # -- introspection ------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def last_error(self) -> ConnectionLost | None:
        """The failure that ended the last session, if retries ran out."""
        return self._lost

    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener)

    def on_connection_lost(self, listener: LostListener) -> Callable[[], None]:
        self._lost_listeners.append(listener)
        return lambda: self._lost_listeners.remove(listener)

    # -- public API ---------------------------------------------------------

    async def connect(self, host: str | None = None, port: int | None = None) -> None:
        """Connect, forwarding the port first when the settings ask for ADB.

        Raises:
            ForwardingFailed: The port forwarder reported an error. No socket
                was opened.
            ConnectionLost: The socket could not be opened or the handshake failed.
            InvalidSessionState: The session is not disconnected.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise InvalidSessionState(self._state.value, "connect")

        self._target = (host, port)
        self._lost = None
        self._set_state(ConnectionState.CONNECTING)
        try:
            reader, writer = await self._open()
        except BaseException:
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        if self._state is not ConnectionState.CONNECTING:
            writer.close()
            raise ConnectionLost("session was disconnected while connecting")

        self._attach(reader, writer)
        self._set_state(ConnectionState.CONNECTED)
        self._task = asyncio.create_task(self._run(), name=f"timetravel-receive-{self.session_id}")

    async def disconnect(self) -> None:
        """Move to DISCONNECTED now and cancel any pending receive or retry."""
        previous = self._state
        self._set_state(ConnectionState.DISCONNECTED)
        self._detach()
        self._fail_pending(ConnectionLost("session disconnected"))

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if previous is not ConnectionState.DISCONNECTED:
            logger.info("session_disconnected", session_id=self.session_id, previous_state=previous.value)

    async def send_command(self, command: Command) -> None:
        """Write *command* to the peer.

        Raises:
            NotConnected: The session is not in the CONNECTED state.
            ConnectionLost: The write failed or timed out.
        """
        writer = self._writer
        if self._state is not ConnectionState.CONNECTED or writer is None:
            raise NotConnected(self._state.value)
        try:
            writer.write(encode_command(command))
            await asyncio.wait_for(writer.drain(), timeout=self._config.command_timeout_seconds)
        except (TimeoutError, OSError) as exc:
            raise ConnectionLost(f"failed to send {type(command).__name__}: {exc}") from exc
        logger.info("command_sent", session_id=self.session_id, command=type(command).__name__)

    async def request_export(self, timeout: float | None = None) -> bytes:
        """Ask the peer to export its events and wait for the ``.tte`` bytes."""
        future: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
        waiters = self._pending[CommandCode.REQUEST_EXPORT]
        waiters.append(future)
        try:
            await self.send_command(RequestExport())
            try:
                return await asyncio.wait_for(future, timeout or self._config.command_timeout_seconds)
            except TimeoutError as exc:
                raise ConnectionLost("export request timed out") from exc
        finally:
            if future in waiters:
                waiters.remove(future)

    async def wait_closed(self) -> None:
        """Wait until the session is disconnected.

        Raises:
            ConnectionLost: The session ended because reconnection gave up.
        """
        await self._disconnected.wait()
        if self._lost is not None:
            raise self._lost

    # -- connection setup ---------------------------------------------------

    async def _open(self) -> Streams:
        settings = self._settings()
        host = self._target[0] or settings.host
        port = self._target[1] or settings.port

        if settings.connect_via_adb:
            if self._forwarder is None:
                raise ForwardingFailed("no port forwarder configured")
            error = await asyncio.to_thread(self._forwarder.forward, port)
            if error is not None:
                logger.warning("forwarding_failed", session_id=self.session_id, port=port, error=error.text)
                raise ForwardingFailed(error.text)

        try:
            reader, writer = await asyncio.wait_for(
                self._opener(host, port), timeout=self._config.connect_timeout_seconds
            )
        except TimeoutError as exc:
            raise ConnectionLost(f"connecting to {host}:{port} timed out") from exc
        except OSError as exc:
            raise ConnectionLost(f"connecting to {host}:{port} failed: {exc}") from exc

        try:
            await self._handshake(reader, writer)
        except BaseException:
            writer.close()
            raise
        logger.info("session_connected", session_id=self.session_id, host=host, port=port)
        return reader, writer

    async def _handshake(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        timeout = self._config.handshake_timeout_seconds
        try:
            writer.write(encode_hello())
            await asyncio.wait_for(writer.drain(), timeout=timeout)
            frame = decode_frame(await asyncio.wait_for(self._read_body(reader), timeout=timeout))
        except TimeoutError as exc:
            raise ConnectionLost("handshake timed out") from exc
        except (OSError, asyncio.IncompleteReadError) as exc:
            raise ConnectionLost(f"handshake failed: {exc}") from exc
        except ProtocolError as exc:
            raise ConnectionLost(f"handshake failed: {exc.reason}") from exc

        if not isinstance(frame, HelloFrame):
            raise ConnectionLost(f"handshake failed: expected HELLO, got {type(frame).__name__}")
        if frame.version != PROTOCOL_VERSION:
            raise ConnectionLost(
                f"handshake failed: peer speaks protocol {frame.version}, expected {PROTOCOL_VERSION}"
            )

    # -- receive task -------------------------------------------------------

    async def _run(self) -> None:
        structlog.contextvars.bind_contextvars(session_id=self.session_id)
        try:
            while self._reader is not None:
                error = "receive loop ended"
                try:
                    await self._receive(self._reader)
                except (OSError, asyncio.IncompleteReadError) as exc:
                    error = str(exc) or type(exc).__name__
                if self._state is not ConnectionState.CONNECTED:
                    return
                logger.warning("connection_dropped", error=error)
                self._detach()
                self._fail_pending(ConnectionLost(error))
                if not await self._reconnect(error):
                    return
        except Exception as exc:
            logger.error("receive_task_failed", error=f"{type(exc).__name__}: {exc}")
            self._give_up(ConnectionLost(f"receive task failed: {exc}"))

    async def _receive(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                frame = decode_frame(await self._read_body(reader))
            except ProtocolError as exc:
                self.dropped_frames += 1
                logger.warning("frame_dropped", error=exc.reason, dropped=self.dropped_frames)
                continue
            self._dispatch(frame)

    async def _read_body(self, reader: asyncio.StreamReader) -> bytes:
        (length,) = LENGTH_PREFIX.unpack(await reader.readexactly(LENGTH_PREFIX.size))
        if length > self._config.max_frame_size:
            remaining = length
            while remaining:
                chunk = min(remaining, _DRAIN_CHUNK)
                await reader.readexactly(chunk)
                remaining -= chunk
            raise ProtocolError(f"frame of {length} bytes exceeds limit of {self._config.max_frame_size}")
        return await reader.readexactly(length)

    def _dispatch(self, frame: Frame) -> None:
        if isinstance(frame, EventFrame):
            if self._state is not ConnectionState.CONNECTED:
                return
            try:
                (self._sink or self.log.append)(frame.event)
            except TimeTravelError as exc:
                logger.error("event_rejected", code=exc.code, error=exc.message)
        elif isinstance(frame, AckFrame):
            waiters = self._pending.get(frame.command)
            if waiters:
                future = waiters.pop(0)
                if not future.done():
                    future.set_result(frame.data)
            else:
                logger.debug("unsolicited_ack", command=frame.command.name)
        else:
            logger.debug("hello_ignored", version=frame.version)

    # -- reconnection -------------------------------------------------------

    async def _reconnect(self, error: str) -> bool:
        self._set_state(ConnectionState.RECONNECTING)
        retries = self._config.reconnect_max_retries
        for attempt in range(1, retries + 1):
            delay = self._config.backoff_delay(attempt)
            logger.info("reconnect_scheduled", attempt=attempt, max_retries=retries, delay=delay)
            await asyncio.sleep(delay)
            if self._state is not ConnectionState.RECONNECTING:
                return False
            try:
                reader, writer = await self._open()
            except (ForwardingFailed, ConnectionLost) as exc:
                error = exc.message
                logger.warning("reconnect_failed", attempt=attempt, error=error)
                continue
            if self._state is not ConnectionState.RECONNECTING:
                writer.close()
                return False
            self._attach(reader, writer)
            self._set_state(ConnectionState.CONNECTED)
            logger.info("reconnected", attempt=attempt)
            return True

        self._give_up(ConnectionLost(error, attempts=retries))
        return False

    def _give_up(self, lost: ConnectionLost) -> None:
        self._lost = lost
        self._detach()
        self._fail_pending(lost)
        self._set_state(ConnectionState.DISCONNECTED)
        logger.error("connection_lost", error=lost.message, events_kept=len(self.log))
        for listener in list(self._lost_listeners):
            listener(lost)

    # -- helpers ------------------------------------------------------------

    def _attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    def _detach(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            writer.close()

    def _fail_pending(self, exc: TimeTravelError) -> None:
        for waiters in self._pending.values():
            for future in waiters:
                if not future.done():
                    future.set_exception(exc)
            waiters.clear()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        if state is ConnectionState.DISCONNECTED:
            self._disconnected.set()
        else:
            self._disconnected.clear()
        logger.debug("session_state_changed", session_id=self.session_id, previous=previous.value, state=state.value)
        for listener in list(self._state_listeners):
            listener(state)
