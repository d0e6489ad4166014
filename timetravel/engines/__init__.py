"""Engines -- event log and replay."""
