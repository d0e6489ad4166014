"""Wire frames exchanged with the instrumented application.

Every frame is a ``u32`` body length followed by the body; the first body
byte is the frame type. Event frames reuse the field encoding of the
``.tte`` container (without the index, which the client assigns).
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from timetravel.domain.entities.event import Event
from timetravel.domain.exceptions import CorruptData, ProtocolError
from timetravel.infrastructure.codec.binary import MAGIC, ByteReader, pack_event_fields, read_event_fields

PROTOCOL_VERSION = 1
LENGTH_PREFIX = struct.Struct("<I")


class FrameType(IntEnum):
    HELLO = 0x00
    EVENT = 0x01
    COMMAND = 0x02
    ACK = 0x03


class CommandCode(IntEnum):
    START_RECORDING = 1
    STOP_RECORDING = 2
    REWIND_TO = 3
    REQUEST_EXPORT = 4
    CANCEL = 5


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StartRecording:
    code = CommandCode.START_RECORDING


@dataclass(frozen=True)
class StopRecording:
    code = CommandCode.STOP_RECORDING


@dataclass(frozen=True)
class RewindTo:
    index: int
    code = CommandCode.REWIND_TO


@dataclass(frozen=True)
class RequestExport:
    code = CommandCode.REQUEST_EXPORT


@dataclass(frozen=True)
class Cancel:
    code = CommandCode.CANCEL


Command = Union[StartRecording, StopRecording, RewindTo, RequestExport, Cancel]


# ---------------------------------------------------------------------------
# Decoded frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HelloFrame:
    version: int


@dataclass(frozen=True)
class EventFrame:
    event: Event


@dataclass(frozen=True)
class AckFrame:
    command: CommandCode
    data: bytes = b""


Frame = Union[HelloFrame, EventFrame, AckFrame]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _frame(frame_type: FrameType, content: bytes) -> bytes:
    body = bytes([frame_type]) + content
    return LENGTH_PREFIX.pack(len(body)) + body


def encode_hello(version: int = PROTOCOL_VERSION) -> bytes:
    return _frame(FrameType.HELLO, MAGIC + struct.pack("<H", version))


def encode_event(event: Event) -> bytes:
    return _frame(FrameType.EVENT, pack_event_fields(event))


def encode_command(command: Command) -> bytes:
    content = bytes([command.code])
    if isinstance(command, RewindTo):
        content += struct.pack("<Q", command.index)
    return _frame(FrameType.COMMAND, content)


def encode_ack(command: CommandCode, data: bytes = b"") -> bytes:
    return _frame(FrameType.ACK, bytes([command]) + LENGTH_PREFIX.pack(len(data)) + data)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_frame(body: bytes) -> Frame:
    """Decode one frame body (without its length prefix).

    Raises:
        ProtocolError: Unknown frame type, truncated or trailing content.
    """
    if not body:
        raise ProtocolError("empty frame")
    reader = ByteReader(body, offset=1)
    try:
        frame_type = FrameType(body[0])
    except ValueError:
        raise ProtocolError(f"unknown frame type {body[0]:#04x}") from None

    try:
        frame: Frame
        if frame_type is FrameType.HELLO:
            magic = reader.take(len(MAGIC), "hello magic")
            if magic != MAGIC:
                raise ProtocolError(f"bad hello magic {magic!r}")
            frame = HelloFrame(version=reader.u16("protocol version"))
        elif frame_type is FrameType.EVENT:
            frame = EventFrame(event=read_event_fields(reader))
        elif frame_type is FrameType.ACK:
            raw_code = reader.u8("command code")
            try:
                code = CommandCode(raw_code)
            except ValueError:
                raise ProtocolError(f"ack for unknown command {raw_code}") from None
            frame = AckFrame(command=code, data=reader.blob("ack data"))
        else:
            raise ProtocolError(f"unexpected {frame_type.name} frame from peer")
    except CorruptData as exc:
        raise ProtocolError(exc.reason) from exc

    if reader.remaining:
        raise ProtocolError(f"{reader.remaining} trailing bytes in {frame_type.name} frame")
    return frame


def decode_command(body: bytes) -> Command:
    """Decode a ``COMMAND`` frame body; used by peers and test doubles."""
    if len(body) < 2 or body[0] != FrameType.COMMAND:
        raise ProtocolError("not a command frame")
    reader = ByteReader(body, offset=2)
    try:
        code = CommandCode(body[1])
    except ValueError:
        raise ProtocolError(f"unknown command {body[1]}") from None
    try:
        if code is CommandCode.REWIND_TO:
            command: Command = RewindTo(index=reader.u64("rewind index"))
        else:
            command = {
                CommandCode.START_RECORDING: StartRecording,
                CommandCode.STOP_RECORDING: StopRecording,
                CommandCode.REQUEST_EXPORT: RequestExport,
                CommandCode.CANCEL: Cancel,
            }[code]()
    except CorruptData as exc:
        raise ProtocolError(exc.reason) from exc
    if reader.remaining:
        raise ProtocolError(f"{reader.remaining} trailing bytes in command frame")
    return command
