"""CLI: llm-relay replay, decode-marker, adapters, config validate."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path

from ..adapters import create_adapter, list_adapters
from ..config import configure_logging, load_config, validate_config
from ..core.continuity import decode_marker
from ..core.reporter import EventCollector
from ..types import (
    ContentEvent,
    ContinuityPayload,
    LLMProviderError,
    MarkerDecodeError,
    RequestMeta,
)


def event_to_dict(event: ContentEvent) -> dict:
    """JSON-friendly view of a content event."""
    if isinstance(event, ContinuityPayload):
        out: dict = {"type": "ContinuityPayload", "mime_type": event.mime_type}
        try:
            out["marker"] = dataclasses.asdict(decode_marker(event.data))
        except MarkerDecodeError:
            out["data"] = event.data.decode("utf-8", errors="replace")
        return out
    out = {"type": type(event).__name__}
    for f in dataclasses.fields(event):
        if f.name == "raw":
            continue
        value = getattr(event, f.name)
        out[f.name] = list(value) if isinstance(value, tuple) else value
    return out


async def _chunks(data: bytes, size: int):
    for i in range(0, len(data), size):
        yield data[i:i + size]


def cmd_replay(args):
    """Feed a captured raw stream through an adapter and print canonical events."""
    config = load_config(args.config)
    path = Path(args.file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        sys.exit(1)

    meta = RequestMeta(model_id=args.model, provider=args.provider or args.format)
    collector = EventCollector()
    adapter = create_adapter(args.format, meta, collector, config=config)
    try:
        asyncio.run(adapter.handle_stream(_chunks(path.read_bytes(), args.chunk_size)))
    except LLMProviderError as e:
        for event in collector.events:
            print(json.dumps(event_to_dict(event), ensure_ascii=False))
        print(f"Stream failed: {e}", file=sys.stderr)
        sys.exit(2)

    for event in collector.events:
        print(json.dumps(event_to_dict(event), ensure_ascii=False))
    if args.summary:
        print(f"\nframes={adapter.frames_seen} events={len(collector.events)} "
              f"text_chars={len(collector.text)} thinking_chars={len(collector.thinking)} "
              f"response_id={adapter.reporter.response_id}", file=sys.stderr)


def cmd_decode_marker(args):
    """Decode a continuity marker payload given as text or hex."""
    raw = args.payload
    data = raw.encode("utf-8")
    if args.hex:
        try:
            data = bytes.fromhex(raw)
        except ValueError as e:
            print(f"Invalid hex: {e}", file=sys.stderr)
            sys.exit(1)
    try:
        marker = decode_marker(data)
    except MarkerDecodeError as e:
        print(f"Not a continuity marker: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(dataclasses.asdict(marker), indent=2))


def cmd_adapters(args):
    """List registered adapters."""
    for name in list_adapters():
        print(name)


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Buffer thresholds: text={config.reporter.text_buffer_length} "
              f"thinking={config.reporter.thinking_buffer_length}")
        print(f"  Matcher: max={config.matcher.max_entries} ttl={config.matcher.ttl_seconds:g}s "
              f"similarity>{config.matcher.similarity_threshold:g} window={config.matcher.assistant_window}")
        print(f"  Continuity: margin={config.continuity.expiry_margin_seconds:g}s "
              f"ttl={config.continuity.session_ttl_seconds:g}s")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="llm-relay",
        description="Streaming normalization and session continuity for LLM vendor APIs",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # replay
    replay_parser = subparsers.add_parser("replay", help="Replay a captured stream through an adapter")
    replay_parser.add_argument("file", help="Raw stream bytes (SSE or JSON lines)")
    replay_parser.add_argument("--format", "-f", required=True, choices=list_adapters(), help="Adapter name")
    replay_parser.add_argument("--model", "-m", default="replay-model", help="Model id for markers")
    replay_parser.add_argument("--provider", "-p", default=None, help="Provider key (default: format)")
    replay_parser.add_argument("--chunk-size", type=int, default=256, help="Bytes per simulated read")
    replay_parser.add_argument("--summary", action="store_true", help="Print counts to stderr")

    # decode-marker
    marker_parser = subparsers.add_parser("decode-marker", help="Decode a continuity marker payload")
    marker_parser.add_argument("payload", help="Marker payload")
    marker_parser.add_argument("--hex", action="store_true", help="Payload is hex-encoded")

    # adapters
    subparsers.add_parser("adapters", help="List available adapters")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "replay" or args.verbose:
        try:
            configure_logging(load_config(args.config), verbose=args.verbose)
        except FileNotFoundError:
            pass

    if args.command == "replay":
        cmd_replay(args)
    elif args.command == "decode-marker":
        cmd_decode_marker(args)
    elif args.command == "adapters":
        cmd_adapters(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: llm-relay config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
