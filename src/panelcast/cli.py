"""
CLI entrypoint:
  panelcast video chunks.json [--no-captions] [--no-render]
  panelcast narrate script.txt [--no-captions]
  panelcast cut page.png --at 820 1640 [--upload]
  panelcast keys add keys.txt
  panelcast keys stats
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from panelcast import config
from panelcast.domain.errors import InvalidChunkFile, PipelineError, ProcessingIncomplete
from panelcast.domain.models import NarrationChunk


def load_chunks(path: str) -> List[NarrationChunk]:
    """Read narration chunks: a JSON list, or an object with a "chunks" list."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise InvalidChunkFile(f"Cannot read {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("chunks") or data.get("narrations") or []
    if not isinstance(data, list):
        raise InvalidChunkFile(f"{path} must hold a list of chunks")
    chunks = []
    for position, item in enumerate(data):
        try:
            chunks.append(NarrationChunk.from_dict(item))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidChunkFile(f"Chunk {position} in {path} is malformed: {exc!r}") from exc
    return chunks


def _report_failure(exc: PipelineError) -> None:
    print(f"\n❌ {type(exc).__name__}: {exc}", file=sys.stderr)
    failures = getattr(exc, "failures", None) or {}
    if isinstance(exc, ProcessingIncomplete):
        print(f"   Missing scenes: {exc.missing_indices}", file=sys.stderr)
    for index, message in sorted(failures.items()):
        print(f"   Scene {index}: {message}", file=sys.stderr)


def _report_result(result) -> None:
    reconciliation = result.reconciliation
    print(f"\n✅ Narration: {len(reconciliation.segments)} segment(s), "
          f"{reconciliation.joined.total_duration_seconds:.2f}s")
    for seg in reconciliation.timeline:
        print(f"   {seg.start_offset_seconds:7.2f}s +{seg.duration_seconds:.2f}s  {seg.image_ref or ''}")
    if reconciliation.missing_indices:
        print(f"   Skipped chunk(s): {reconciliation.missing_indices}")
    print(f"   Audio: {result.audio_url}")
    if result.transcription is not None:
        print(f"   Captions: {result.caption_url or 'unavailable (' + result.transcription.state.value + ')'}")
    if result.render is not None:
        if result.video_url:
            print(f"   Video: {result.video_url}")
        else:
            print(f"   Video render failed: {result.render.error}")


async def _run_video(args) -> int:
    from panelcast.adapters import default_adapters
    from panelcast.application.pipeline import VideoPipeline

    chunks = load_chunks(args.chunks)
    pipeline = VideoPipeline(**default_adapters())
    result = await pipeline.run_segmented_video(
        chunks, with_captions=not args.no_captions, render=not args.no_render
    )
    _report_result(result)
    return 0 if result.succeeded else 1


async def _run_narrate(args) -> int:
    from panelcast.adapters import default_adapters
    from panelcast.application.pipeline import VideoPipeline

    with open(args.text_file, "r", encoding="utf-8") as f:
        text = f.read()
    adapters = default_adapters(video_renderer=None)
    pipeline = VideoPipeline(**adapters)
    result = await pipeline.run_narration(text, with_captions=not args.no_captions)
    _report_result(result)
    return 0


async def _run_cut(args) -> int:
    from panelcast.adapters.image import PanelCutter

    cutter = PanelCutter()
    panels = cutter.cut(args.image, args.at)
    if args.upload:
        from panelcast.adapters import default_storage

        panels = await cutter.upload(panels, default_storage(), config.STORAGE_PREFIX)
    print(json.dumps([p.to_dict() for p in panels], indent=2))
    return 0


async def _run_keys(args) -> int:
    from panelcast.adapters.credentials import SQLiteCredentialStore
    from panelcast.application.credentials import CredentialPool

    pool = CredentialPool(SQLiteCredentialStore(args.db))
    if args.keys_command == "add":
        with open(args.file, "r", encoding="utf-8") as f:
            added = await pool.add_keys(f.read())
        print(f"✅ Added {added} key(s)")
    stats = await pool.statistics()
    print(f"Keys: {stats.total} total, {stats.valid} valid, {stats.invalid} invalid")
    print(f"At usage limit ({pool.usage_limit}): {stats.usage_limit_reached}")
    print(f"Average usage: {stats.average_usage:.1f}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panelcast",
        description="Narrate image panels and assemble them into a timed slideshow video",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)

    video = sub.add_parser("video", help="Narrate chunks and render a video")
    video.add_argument("chunks", help="JSON file of {imageIndex, imageUrl, narration} entries")
    video.add_argument("--no-captions", action="store_true", help="Skip transcription")
    video.add_argument("--no-render", action="store_true", help="Stop after the timeline is built")
    video.set_defaults(handler=_run_video)

    narrate = sub.add_parser("narrate", help="Synthesize one narration track from free text")
    narrate.add_argument("text_file")
    narrate.add_argument("--no-captions", action="store_true", help="Skip transcription")
    narrate.set_defaults(handler=_run_narrate)

    cut = sub.add_parser("cut", help="Cut a page capture into panels")
    cut.add_argument("image")
    cut.add_argument("--at", nargs="+", type=int, required=True, metavar="Y", help="Cut positions in pixels")
    cut.add_argument("--upload", action="store_true", help="Upload panels to storage")
    cut.set_defaults(handler=_run_cut)

    keys = sub.add_parser("keys", help="Manage the TTS API-key pool")
    keys.add_argument("--db", default=config.CREDENTIALS_DB, help="SQLite file (default: %(default)s)")
    keys_sub = keys.add_subparsers(dest="keys_command", required=True)
    keys_add = keys_sub.add_parser("add", help="Add keys from a file, one per line")
    keys_add.add_argument("file")
    keys_sub.add_parser("stats", help="Show pool statistics")
    keys.set_defaults(handler=_run_keys)
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config.ensure_directories()
    try:
        code = asyncio.run(args.handler(args))
    except PipelineError as exc:
        _report_failure(exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
