"""Domain entities -- events and materialized state."""
from timetravel.domain.entities.event import Event, EventKind
from timetravel.domain.entities.state import MaterializedState, StoreState

__all__ = ["Event", "EventKind", "MaterializedState", "StoreState"]
