"""Materialized store state produced by replaying the event log."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class StoreState:
    """Folded state of a single store instance.

    Attributes:
        store_instance_id: Identity of the store instance.
        store_tag: Tag of the last state-changing event applied.
        value: Folded value, by default the payload of the last result/state.
        last_index: Log index of the last applied event.
        applied: Number of state-changing events folded so far.
    """

    store_instance_id: str
    store_tag: str
    value: Any
    last_index: int
    applied: int = 1


@dataclass(frozen=True)
class MaterializedState:
    """State of every store as of log index ``index`` (exclusive)."""

    index: int
    stores: dict[str, StoreState] = field(default_factory=dict)

    def get(self, store_instance_id: str) -> StoreState | None:
        return self.stores.get(store_instance_id)

    def __contains__(self, store_instance_id: object) -> bool:
        return store_instance_id in self.stores

    def __len__(self) -> int:
        return len(self.stores)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict view, bytes values rendered as text where possible."""
        stores: dict[str, Any] = {}
        for instance_id, store in sorted(self.stores.items()):
            value = store.value
            if isinstance(value, bytes):
                try:
                    value = value.decode("utf-8")
                except UnicodeDecodeError:
                    value = value.hex()
            stores[instance_id] = {
                "store_tag": store.store_tag,
                "value": value,
                "last_index": store.last_index,
                "applied": store.applied,
            }
        return {"index": self.index, "stores": stores}
