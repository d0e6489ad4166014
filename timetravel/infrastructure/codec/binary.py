"""Binary container format for time-travel event logs (``.tte`` files).

Layout (little-endian)::

    magic     4s   b"MVTT"
    version   u16
    count     u64
    events    count x record
    checksum  u32  CRC-32 of every preceding byte

Each record is ``index u64`` followed by the event fields::

    timestamp          u64
    store_tag          u32 length + UTF-8
    kind               u8
    store_instance_id  u32 length + UTF-8
    payload            u32 length + bytes

The event fields without the index are also the body of an ``EVENT`` wire
frame, see :mod:`timetravel.infrastructure.transport.frames`.
"""
from __future__ import annotations

import struct
import zlib
from typing import Sequence

from timetravel.domain.entities.event import Event, EventKind
from timetravel.domain.exceptions import CorruptData, UnsupportedVersion

MAGIC = b"MVTT"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS: tuple[int, ...] = (1,)
FILE_EXTENSION = ".tte"

_HEADER = struct.Struct("<4sHQ")
_U8 = struct.Struct("<B")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _pack_blob(data: bytes) -> bytes:
    return _U32.pack(len(data)) + data


def pack_event_fields(event: Event) -> bytes:
    """Encode every event field except the index."""
    return b"".join(
        (
            _U64.pack(event.timestamp),
            _pack_blob(event.store_tag.encode("utf-8")),
            _U8.pack(int(event.kind)),
            _pack_blob(event.store_instance_id.encode("utf-8")),
            _pack_blob(event.payload),
        )
    )


def encode_events(events: Sequence[Event]) -> bytes:
    """Serialize *events* into the canonical container form."""
    parts = [_HEADER.pack(MAGIC, FORMAT_VERSION, len(events))]
    for event in events:
        parts.append(_U64.pack(event.index))
        parts.append(pack_event_fields(event))
    body = b"".join(parts)
    return body + _U32.pack(zlib.crc32(body) & 0xFFFFFFFF)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class ByteReader:
    """Bounds-checked cursor over a byte buffer.

    Every read past the end raises :class:`CorruptData` naming the field
    that was being read.
    """

    def __init__(self, data: bytes, offset: int = 0, end: int | None = None) -> None:
        self._data = data
        self._offset = offset
        self._end = len(data) if end is None else end

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return self._end - self._offset

    def take(self, size: int, what: str) -> bytes:
        if size > self.remaining:
            raise CorruptData(
                f"truncated {what} at offset {self._offset}: need {size} bytes, have {self.remaining}"
            )
        chunk = self._data[self._offset:self._offset + size]
        self._offset += size
        return chunk

    def u8(self, what: str) -> int:
        return _U8.unpack(self.take(_U8.size, what))[0]

    def u16(self, what: str) -> int:
        return struct.unpack("<H", self.take(2, what))[0]

    def u32(self, what: str) -> int:
        return _U32.unpack(self.take(_U32.size, what))[0]

    def u64(self, what: str) -> int:
        return _U64.unpack(self.take(_U64.size, what))[0]

    def blob(self, what: str) -> bytes:
        return self.take(self.u32(f"{what} length"), what)

    def text(self, what: str) -> str:
        raw = self.blob(what)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptData(f"{what} is not valid UTF-8: {exc}") from exc


def read_event_fields(reader: ByteReader, index: int = 0) -> Event:
    """Decode the fields written by :func:`pack_event_fields`."""
    timestamp = reader.u64("timestamp")
    store_tag = reader.text("store tag")
    raw_kind = reader.u8("kind")
    try:
        kind = EventKind(raw_kind)
    except ValueError as exc:
        raise CorruptData(f"unknown event kind {raw_kind}") from exc
    store_instance_id = reader.text("store instance id")
    payload = reader.blob("payload")
    return Event(
        index=index,
        timestamp=timestamp,
        store_tag=store_tag,
        kind=kind,
        payload=payload,
        store_instance_id=store_instance_id,
    )


def decode_events(data: bytes) -> list[Event]:
    """Parse a container produced by :func:`encode_events`.

    Raises:
        UnsupportedVersion: The header names a version this reader does not know.
        CorruptData: Anything else is wrong with the input. Nothing is
            returned for partially readable input.
    """
    data = bytes(data)
    if len(data) < _HEADER.size + _U32.size:
        raise CorruptData(f"input too short ({len(data)} bytes)")

    magic, version, count = _HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise CorruptData(f"bad magic {magic!r}")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(version, SUPPORTED_VERSIONS)

    body_end = len(data) - _U32.size
    (stored_crc,) = _U32.unpack_from(data, body_end)
    reader = ByteReader(data, offset=_HEADER.size, end=body_end)

    events: list[Event] = []
    for expected in range(count):
        index = reader.u64("event index")
        if index != expected:
            raise CorruptData(f"non-contiguous index {index}, expected {expected}")
        events.append(read_event_fields(reader, index))

    if reader.remaining:
        raise CorruptData(f"{reader.remaining} unexpected trailing bytes")

    computed_crc = zlib.crc32(data[:body_end]) & 0xFFFFFFFF
    if computed_crc != stored_crc:
        raise CorruptData(f"checksum mismatch: stored {stored_crc:#010x}, computed {computed_crc:#010x}")
    return events
