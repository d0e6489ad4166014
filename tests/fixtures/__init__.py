"""Test fixtures and helpers -- an in-process instrumented application."""
from __future__ import annotations

import asyncio
import time
from typing import Callable

from timetravel.infrastructure.transport.frames import (
    LENGTH_PREFIX,
    PROTOCOL_VERSION,
    Command,
    CommandCode,
    RequestExport,
    decode_command,
    encode_ack,
    encode_hello,
)


async def read_body(reader: asyncio.StreamReader) -> bytes:
    (length,) = LENGTH_PREFIX.unpack(await reader.readexactly(LENGTH_PREFIX.size))
    return await reader.readexactly(length)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds, failing the test after *timeout*."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakePeer:
    """Minimal instrumented application speaking the time-travel wire protocol."""

    def __init__(self, hello_version: int = PROTOCOL_VERSION, answer_exports: bool = True) -> None:
        self.hello_version = hello_version
        self.answer_exports = answer_exports
        self.export_data = b""
        self.commands: list[Command] = []
        self.connections = 0
        self.port = 0
        self._server: asyncio.AbstractServer | None = None
        self._writers: list[asyncio.StreamWriter] = []

    async def start(self) -> FakePeer:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self.drop_connections()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def drop_connections(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    async def push(self, *frames: bytes) -> None:
        """Send raw frames on the most recent connection."""
        writer = self._writers[-1]
        for frame in frames:
            writer.write(frame)
        await writer.drain()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await read_body(reader)
            self.connections += 1
            self._writers.append(writer)
            writer.write(encode_hello(self.hello_version))
            await writer.drain()
            while True:
                command = decode_command(await read_body(reader))
                self.commands.append(command)
                if isinstance(command, RequestExport) and self.answer_exports:
                    writer.write(encode_ack(CommandCode.REQUEST_EXPORT, self.export_data))
                    await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            writer.close()
