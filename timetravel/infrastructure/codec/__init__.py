"""Event log codec -- the ``.tte`` binary container."""
from timetravel.infrastructure.codec.binary import (
    FILE_EXTENSION,
    FORMAT_VERSION,
    MAGIC,
    SUPPORTED_VERSIONS,
    decode_events,
    encode_events,
)

__all__ = [
    "FILE_EXTENSION",
    "FORMAT_VERSION",
    "MAGIC",
    "SUPPORTED_VERSIONS",
    "decode_events",
    "encode_events",
]
