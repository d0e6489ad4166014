"""Time-travel event entity."""
from __future__ import annotations

import json
import time
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

U64_MAX = 2**64 - 1


class EventKind(IntEnum):
    """Kind of a recorded store event, stored on disk and on the wire as a ``u8``."""

    INTENT = 0
    ACTION = 1
    RESULT = 2
    STATE = 3
    LABEL = 4

    @property
    def changes_state(self) -> bool:
        """Only results and states affect materialized store state."""
        return self in (EventKind.RESULT, EventKind.STATE)


def now_millis() -> int:
    return int(time.time() * 1000)


class Event(BaseModel):
    """An immutable record of something a store did.

    ``index`` is assigned by the event log on append; events built before
    that (for example decoded from the wire) carry index ``0``.
    """
    model_config = ConfigDict(frozen=True)

    index: int = Field(default=0, ge=0, le=U64_MAX)
    timestamp: int = Field(default_factory=now_millis, ge=0, le=U64_MAX)
    store_tag: str
    kind: EventKind
    payload: bytes = b""
    store_instance_id: str

    @classmethod
    def from_value(
        cls,
        store_tag: str,
        kind: EventKind,
        value: Any,
        store_instance_id: str,
        **kwargs: Any,
    ) -> Event:
        """Build an event whose payload is the canonical JSON of *value*."""
        payload = json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return cls(
            store_tag=store_tag,
            kind=kind,
            payload=payload,
            store_instance_id=store_instance_id,
            **kwargs,
        )

    def value(self) -> Any:
        """Decode a JSON payload written by :meth:`from_value`."""
        return json.loads(self.payload.decode("utf-8"))

    def with_index(self, index: int) -> Event:
        return self.model_copy(update={"index": index})
