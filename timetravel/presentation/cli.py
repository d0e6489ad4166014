"""Command-line entry point.

``timetravel inspect FILE`` lists the events of a ``.tte`` file and the
materialized state at a chosen index; ``timetravel record --out FILE``
connects to an instrumented application and records until interrupted.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog
from pydantic import ValidationError

from timetravel.application.client import TimeTravelClient
from timetravel.application.import_export import import_events
from timetravel.config import Settings
from timetravel.domain.exceptions import ConnectionLost, TimeTravelError
from timetravel.engines.replay_engine.engine import ReplayEngine
from timetravel.infrastructure.forwarding import AdbPortForwarder
from timetravel.infrastructure.logging import setup_logging

logger = structlog.get_logger(__name__)


def _preview(payload: bytes, limit: int = 60) -> str:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        text = payload.hex()
    return text if len(text) <= limit else text[: limit - 3] + "..."


def inspect_file(path: Path, goto: int | None, as_json: bool, checkpoint_interval: int) -> int:
    log = import_events(path.read_bytes())
    engine = ReplayEngine(log, checkpoint_interval=checkpoint_interval)
    state = engine.go_to(len(log) if goto is None else goto)

    if as_json:
        events = [
            {
                "index": e.index,
                "timestamp": e.timestamp,
                "store_tag": e.store_tag,
                "kind": e.kind.name,
                "store_instance_id": e.store_instance_id,
                "payload": _preview(e.payload, limit=sys.maxsize),
            }
            for e in log.events()
        ]
        print(json.dumps({"events": events, "state": state.to_dict()}, indent=2))
        return 0

    print(f"{path} -- {len(log)} events")
    for e in log.events():
        marker = ">" if e.index == state.index - 1 else " "
        print(f"{marker} {e.index:>6}  {e.kind.name:<7} {e.store_tag:<24} {e.store_instance_id:<16} {_preview(e.payload)}")
    print(f"\nState at index {state.index}:")
    for instance_id, store in sorted(state.stores.items()):
        value = store.value if not isinstance(store.value, bytes) else _preview(store.value)
        print(f"  {instance_id} ({store.store_tag}) @ {store.last_index}: {value}")
    return 0


async def record(settings: Settings, out: Path) -> int:
    connection = settings.connection()
    forwarder = AdbPortForwarder(adb_path=settings.adb_path, timeout_seconds=settings.adb_timeout_seconds)
    client = TimeTravelClient(
        settings=lambda: connection,
        forwarder=forwarder,
        config=settings.transport(),
        on_export_events=out.write_bytes,
        checkpoint_interval=settings.checkpoint_interval,
    )

    await client.connect()
    exit_code = 0
    try:
        await client.start_recording()
        print(f"Recording from {connection.host}:{connection.port}, press Ctrl+C to stop", file=sys.stderr)
        await client.session.wait_closed()
    except ConnectionLost as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        exit_code = 1
    finally:
        try:
            if client.session.is_connected:
                await client.stop_recording()
        except TimeTravelError as exc:
            logger.warning("stop_recording_failed", error=exc.message)
        finally:
            await client.disconnect()
            client.export_events()
        print(f"Wrote {len(client.log)} events to {out}", file=sys.stderr)
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timetravel", description="MVI time-travel client")
    sub = parser.add_subparsers(dest="command", required=True)

    inspect = sub.add_parser("inspect", help="Show events and replayed state of a .tte file")
    inspect.add_argument("file", type=Path)
    inspect.add_argument("--goto", type=int, default=None, help="Replay up to this index (default: end)")
    inspect.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    rec = sub.add_parser("record", help="Record events from a running application")
    rec.add_argument("--out", type=Path, required=True, help="Destination .tte file")
    rec.add_argument("--host", default=None)
    rec.add_argument("--port", type=int, default=None)
    rec.add_argument("--adb", action="store_true", default=None, help="Forward the port via ADB first")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {
        key: value
        for key, value in (
            ("host", getattr(args, "host", None)),
            ("port", getattr(args, "port", None)),
            ("connect_via_adb", getattr(args, "adb", None)),
        )
        if value is not None
    }
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        print(f"error: invalid settings\n{exc}", file=sys.stderr)
        return 2
    setup_logging(level=settings.log_level, json_output=settings.json_logs, log_file=settings.log_file)

    try:
        if args.command == "inspect":
            return inspect_file(args.file, args.goto, args.json, settings.checkpoint_interval)
        return asyncio.run(record(settings, args.out))
    except KeyboardInterrupt:
        return 130
    except (TimeTravelError, OSError) as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
