"""Unit tests for the ``.tte`` binary codec."""
from __future__ import annotations

import struct
import zlib

import pytest

from timetravel.domain.entities.event import Event, EventKind
from timetravel.domain.exceptions import CorruptData, UnsupportedVersion
from timetravel.infrastructure.codec.binary import MAGIC, decode_events, encode_events

_HEADER_SIZE = 14


def _refresh_checksum(body: bytes) -> bytes:
    return body + struct.pack("<I", zlib.crc32(body) & 0xFFFFFFFF)


@pytest.fixture
def encoded(scenario_log) -> bytes:
    return scenario_log.serialize()


class TestEncode:
    def test_header_layout(self, encoded):
        magic, version, count = struct.unpack_from("<4sHQ", encoded, 0)
        assert magic == MAGIC
        assert version == 1
        assert count == 5

    def test_field_layout_of_first_record(self):
        event = Event(
            index=0, timestamp=7, store_tag="T", kind=EventKind.LABEL, payload=b"xy", store_instance_id="id"
        )
        data = encode_events([event])
        record = data[_HEADER_SIZE:-4]
        assert record == (
            struct.pack("<QQ", 0, 7)
            + struct.pack("<I", 1) + b"T"
            + bytes([4])
            + struct.pack("<I", 2) + b"id"
            + struct.pack("<I", 2) + b"xy"
        )

    def test_checksum_trailer(self, encoded):
        (crc,) = struct.unpack("<I", encoded[-4:])
        assert crc == zlib.crc32(encoded[:-4]) & 0xFFFFFFFF


class TestDecode:
    def test_round_trip(self, scenario_log, encoded):
        events = decode_events(encoded)
        assert events == scenario_log.events()
        assert encode_events(events) == encoded

    def test_unicode_and_binary_payload(self):
        event = Event(store_tag="Ström", kind=EventKind.STATE, payload=bytes(range(256)), store_instance_id="ид")
        assert decode_events(encode_events([event])) == [event]

    def test_bad_magic(self, encoded):
        with pytest.raises(CorruptData, match="bad magic"):
            decode_events(b"XXXX" + encoded[4:])

    def test_unknown_version(self, encoded):
        data = _refresh_checksum(encoded[:4] + struct.pack("<H", 2) + encoded[6:-4])
        with pytest.raises(UnsupportedVersion) as info:
            decode_events(data)
        assert info.value.version == 2

    def test_truncated_mid_event(self, encoded):
        with pytest.raises(CorruptData):
            decode_events(encoded[: len(encoded) // 2])

    def test_truncated_header(self):
        with pytest.raises(CorruptData, match="too short"):
            decode_events(MAGIC)

    def test_checksum_mismatch(self, encoded):
        tampered = bytearray(encoded)
        tampered[-6] ^= 0xFF
        with pytest.raises(CorruptData, match="checksum"):
            decode_events(bytes(tampered))

    def test_trailing_bytes(self, encoded):
        with pytest.raises(CorruptData, match="trailing"):
            decode_events(_refresh_checksum(encoded[:-4] + b"\x00\x00"))

    def test_non_contiguous_indices(self, make_event):
        events = [make_event().with_index(0), make_event().with_index(2)]
        with pytest.raises(CorruptData, match="non-contiguous"):
            decode_events(encode_events(events))

    def test_unknown_kind(self):
        event = Event(index=0, timestamp=1, store_tag="T", kind=EventKind.INTENT, store_instance_id="i")
        body = bytearray(encode_events([event])[:-4])
        kind_offset = _HEADER_SIZE + 8 + 8 + 4 + 1
        body[kind_offset] = 9
        with pytest.raises(CorruptData, match="unknown event kind"):
            decode_events(_refresh_checksum(bytes(body)))

    def test_invalid_utf8(self):
        event = Event(index=0, timestamp=1, store_tag="T", kind=EventKind.INTENT, store_instance_id="i")
        body = bytearray(encode_events([event])[:-4])
        tag_offset = _HEADER_SIZE + 8 + 8 + 4
        body[tag_offset] = 0xFF
        with pytest.raises(CorruptData, match="UTF-8"):
            decode_events(_refresh_checksum(bytes(body)))
