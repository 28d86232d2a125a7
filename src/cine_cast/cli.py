"""Command-line entry point for broadcasting or joining a stream."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from .camera import CameraChoice
from .config import load_settings
from .controller import create_controller
from .errors import CineCastError, InvalidInput
from .event_log import EventLogEntry, format_entry
from .models import MediaSource, Role, SourceConfig
from .version import APP_VERSION

_ACTIONS = {"broadcast": Role.PUBLISHER, "join": Role.SUBSCRIBER}


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the CineCast client."""

    parser = argparse.ArgumentParser(
        prog="python -m cine_cast.cli",
        description="Broadcast to or join a CineCast stream through a signaling relay",
    )
    parser.add_argument("action", choices=sorted(_ACTIONS), help="Broadcast a stream or join one.")
    parser.add_argument("--name", required=True, help="Stream name shared with the other peer.")
    parser.add_argument(
        "--source",
        choices=[source.value for source in MediaSource],
        default=MediaSource.CAMERA.value,
        help="Media source used when broadcasting.",
    )
    parser.add_argument("--file", type=Path, help="Video file to loop when --source=file.")
    parser.add_argument("--url", help="Relay WebSocket URL (defaults to CINECAST_RELAY_URL).")
    parser.add_argument("--camera", choices=[choice.value for choice in CameraChoice], help="Camera backend to capture from.")
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Only request video when joining a stream.",
    )
    parser.add_argument("--debug", action="store_true", help="Output debug logs.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    return parser


def _print_entry(entry: EventLogEntry) -> None:
    print(format_entry(entry), flush=True)


async def _session(args: argparse.Namespace) -> int:
    settings = load_settings(
        relay_url=args.url,
        camera=args.camera,
        receive_audio=False if args.no_audio else None,
    )
    controller = create_controller(settings)
    controller.subscribe("event", _print_entry)
    role = _ACTIONS[args.action]
    source = None
    if role is Role.PUBLISHER:
        source = SourceConfig(source=MediaSource(args.source), file_path=args.file)
    try:
        await controller.start(role, args.name, source)
        await asyncio.Event().wait()
    finally:
        await controller.stop()
    return 0


def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_session(args))
    except KeyboardInterrupt:
        return 0
    except (InvalidInput, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except CineCastError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by ``python -m cine_cast.cli`` and ``cinecast``."""

    return run(argv)


__all__ = ["build_parser", "main", "run"]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())
