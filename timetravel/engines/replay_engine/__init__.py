"""Replay engine."""
from timetravel.engines.replay_engine.engine import ReplayEngine, fold_events, latest_payload

__all__ = ["ReplayEngine", "fold_events", "latest_payload"]
