from __future__ import annotations

import argparse
import importlib
import json
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import smil as smil_util
from .collaborators import RecordingHighlighter, VirtualAudioSink
from .config import ConfigError, OverlayConfig, load_config
from .controller import PlaybackController
from .logging_utils import configure_logging
from .session import PlaybackState
from .timeline import FragmentTimeline, ValidationError
from .timers import ManualTimerService


def _load_timeline(path: Path) -> FragmentTimeline:
    return FragmentTimeline.from_records(smil_util.load_records(path))


def _parse_durations(values: Optional[list[str]]) -> dict[str, float]:
    durations: dict[str, float] = {}
    for raw in values or []:
        if "=" not in raw:
            raise ValueError(f"Duration must look like FILE=SECONDS: {raw}")
        name, seconds = raw.rsplit("=", 1)
        durations[name.strip()] = smil_util.parse_clock_value(seconds)
    return durations


def _validate(args: argparse.Namespace) -> int:
    try:
        timeline = _load_timeline(Path(args.timeline))
        durations = _parse_durations(args.duration)
    except (ValidationError, ValueError, OSError) as exc:
        sys.stderr.write(f"Invalid timeline: {exc}\n")
        return 2
    for warning in timeline.check_coverage(durations):
        sys.stderr.write(f"Coverage: {warning}\n")
    files = len(timeline.audio_refs())
    sys.stdout.write(f"OK: {len(timeline)} fragments across {files} audio file(s)\n")
    return 0


def _convert(args: argparse.Namespace) -> int:
    source = Path(args.source)
    output = Path(args.output)
    if not source.exists():
        sys.stderr.write(f"Source not found: {source}\n")
        return 2
    try:
        if source.suffix.lower() == ".epub":
            overlays = smil_util.read_epub_overlays(source)
            if not overlays:
                sys.stderr.write("No media overlays found in EPUB.\n")
                return 2
            output.mkdir(parents=True, exist_ok=True)
            for document, records in sorted(overlays.items()):
                FragmentTimeline.from_records(records)
                out_path = output / f"{Path(document).stem}.json"
                smil_util.dump_records(records, out_path, source=document)
                sys.stdout.write(f"{document}: {len(records)} fragments -> {out_path}\n")
            return 0
        records = smil_util.load_records(source)
        FragmentTimeline.from_records(records)
        smil_util.dump_records(records, output, source=source.name)
    except (ValidationError, ValueError, OSError) as exc:
        sys.stderr.write(f"Convert failed: {exc}\n")
        return 2
    sys.stdout.write(f"{len(records)} fragments -> {output}\n")
    return 0


def _inspect(args: argparse.Namespace) -> int:
    try:
        timeline = _load_timeline(Path(args.timeline))
    except (ValidationError, ValueError, OSError) as exc:
        sys.stderr.write(f"Invalid timeline: {exc}\n")
        return 2
    if args.json:
        sys.stdout.write(json.dumps(timeline.to_records(), ensure_ascii=False, indent=2) + "\n")
        return 0
    table = Table(title=f"{args.timeline} ({len(timeline)} fragments)")
    table.add_column("#", justify="right")
    table.add_column("id")
    table.add_column("begin", justify="right")
    table.add_column("end", justify="right")
    table.add_column("duration", justify="right")
    table.add_column("file")
    for idx, frag in enumerate(timeline):
        table.add_row(
            str(idx),
            frag.id,
            f"{frag.begin_sec:.3f}",
            f"{frag.end_sec:.3f}",
            f"{frag.duration:.3f}",
            frag.audio_ref,
        )
    Console().print(table)
    return 0


def _simulate(args: argparse.Namespace) -> int:
    try:
        timeline = _load_timeline(Path(args.timeline))
        config = load_config(args.config) if args.config else OverlayConfig()
        overrides: dict = {}
        if args.rate is not None:
            overrides["playback_rate"] = args.rate
        if args.single_fragment:
            overrides["single_fragment_mode"] = True
        config = config.merged(overrides)
    except (ValidationError, ConfigError, ValueError, OSError) as exc:
        sys.stderr.write(f"Simulate failed: {exc}\n")
        return 2
    if len(timeline) == 0:
        sys.stderr.write("Timeline is empty.\n")
        return 2

    start = 0
    if args.start:
        start = timeline.index_of_id(args.start)
        if start < 0:
            sys.stderr.write(f"Unknown fragment id: {args.start}\n")
            return 2

    console = Console()
    timers = ManualTimerService()
    controller = PlaybackController(
        timeline,
        VirtualAudioSink(timers.now),
        timers,
        highlighter=RecordingHighlighter(),
        config=config,
    )

    def _on_fragment(old: int, new: int) -> None:
        if new < 0:
            return
        frag = timeline.get(new)
        console.print(
            f"[{timers.now():8.3f}s] {frag.id} "
            f"({frag.begin_sec:.3f}-{frag.end_sec:.3f} {frag.audio_ref})",
            markup=False,
            highlight=False,
        )

    def _on_state(old: PlaybackState, new: PlaybackState) -> None:
        console.print(
            f"[{timers.now():8.3f}s] {old.value} -> {new.value}", markup=False, highlight=False
        )

    controller.events.on_fragment_change(_on_fragment)
    controller.events.on_state_change(_on_state)
    controller.play(start, True, -1.0)
    timers.run_until_idle()
    console.print(
        f"Finished in state {controller.state.value} after {timers.now():.3f}s", highlight=False
    )
    return 0


def _serve(args: argparse.Namespace) -> int:
    try:
        timeline = _load_timeline(Path(args.timeline))
        config = load_config(args.config) if args.config else load_config()
    except (ValidationError, ConfigError, ValueError, OSError) as exc:
        sys.stderr.write(f"Serve failed: {exc}\n")
        return 2
    player_util = importlib.import_module("mosync.player")
    player_util.run(
        Path(args.document),
        timeline,
        host=args.host,
        port=args.port,
        config=config,
        bookmark_path=Path(args.bookmark) if args.bookmark else None,
        verbose=args.verbose,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mosync", description="Synchronize text fragments with narrated audio"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    validate = subparsers.add_parser("validate", help="Validate a fragment timeline")
    validate.add_argument("timeline", help="Timeline JSON or SMIL file")
    validate.add_argument(
        "--duration",
        action="append",
        metavar="FILE=SECONDS",
        help="Known audio duration, used for the coverage check (repeatable)",
    )
    validate.set_defaults(func=_validate)

    convert = subparsers.add_parser(
        "convert", help="Convert SMIL or EPUB media overlays to timeline JSON"
    )
    convert.add_argument("source", help="Input .smil or .epub")
    convert.add_argument(
        "output", help="Output JSON file (SMIL) or directory (EPUB)"
    )
    convert.set_defaults(func=_convert)

    inspect = subparsers.add_parser("inspect", help="Show the fragments of a timeline")
    inspect.add_argument("timeline")
    inspect.add_argument("--json", action="store_true", help="Print records as JSON")
    inspect.set_defaults(func=_inspect)

    simulate = subparsers.add_parser(
        "simulate", help="Run a timeline in simulated time and print transitions"
    )
    simulate.add_argument("timeline")
    simulate.add_argument("--config", help="Config JSON file")
    simulate.add_argument("--rate", type=float, help="Playback rate (0.25-4.0)")
    simulate.add_argument(
        "--single-fragment",
        action="store_true",
        help="Stop after one fragment, as in single fragment mode",
    )
    simulate.add_argument("--start", help="Fragment id to start from")
    simulate.set_defaults(func=_simulate)

    serve = subparsers.add_parser("serve", help="Serve a read-along session over HTTP")
    serve.add_argument("document", help="XHTML document with fragment ids")
    serve.add_argument("timeline", help="Timeline JSON or SMIL file")
    serve.add_argument("--config", help="Config JSON file")
    serve.add_argument("--bookmark", help="JSON file for the last position bookmark")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=1913)
    serve.set_defaults(func=_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    configure_logging(args.verbose)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
