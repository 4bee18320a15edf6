"""Command-line entry point for reelforge."""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from reel_agent import (
    AssetCategory,
    AssetRotationSelector,
    CustomAsset,
    FFmpegMediaEngine,
    PipelineRun,
    ProgressEvent,
    ReelOrchestrator,
    ReelRequest,
)
from services.voice_service import VoiceService
from utils.config import load_config, validate_config
from utils.logging import setup_logging
from utils.progress import format_duration

logger = logging.getLogger(__name__)
console = Console()


class ProgressBarCallback:
    """Progress bar callback for displaying pipeline progress."""

    def __init__(self):
        self.bar: Optional[tqdm] = None

    def __call__(self, event: ProgressEvent):
        if self.bar is None:
            self.bar = tqdm(
                total=100,
                desc="Generating reel",
                unit="%",
                leave=True,
                bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}% [{elapsed}]",
            )
        self.bar.n = event.progress
        self.bar.set_description(event.stage.value.replace("_", " ").title())
        self.bar.refresh()

    def close(self):
        if self.bar:
            self.bar.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Turn a short script into a narrated, captioned vertical video."
    )
    parser.add_argument("script", nargs="?", help="Narration script text")
    parser.add_argument("--script-file", type=Path, help="Read the script from a file")
    parser.add_argument(
        "--category",
        choices=[c.value for c in AssetCategory],
        default=AssetCategory.SATISFYING.value,
        help="Background footage category",
    )
    parser.add_argument("--custom-video", type=Path, help="Use this background video instead of the catalog")
    parser.add_argument("--captions", type=Path, help="Edited SRT caption track to burn in instead of generated timing")
    parser.add_argument("--output", type=Path, help="Output video path (default: <OUTPUT_DIR>/reel_<run_id>.mp4)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser


def build_request(args: argparse.Namespace) -> ReelRequest:
    script = args.script or ""
    if args.script_file:
        script = args.script_file.read_text(encoding="utf-8")
    return ReelRequest(
        script=script,
        category=AssetCategory(args.category),
        custom_asset=CustomAsset.from_path(args.custom_video) if args.custom_video else None,
        captions=args.captions.read_text(encoding="utf-8") if args.captions else None,
    )


def print_summary(run: PipelineRun, video_path: Path, captions_path: Path, elapsed: float) -> None:
    table = Table(title=f"Reel {run.run_id}")
    table.add_column("Item")
    table.add_column("Value")
    table.add_row("Video", str(video_path))
    table.add_row("Captions", f"{captions_path} ({len(run.result.cues)} cues)")
    table.add_row("Background", run.result.background)
    table.add_row("Narration", f"{run.result.audio_duration:.2f}s")
    table.add_row("Elapsed", format_duration(elapsed))
    console.print(table)
    for warning in run.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


async def run_cli(args: argparse.Namespace, config: dict) -> int:
    request = build_request(args)
    selector = AssetRotationSelector.from_directory(Path(config["assets_dir"]))
    voice = VoiceService.from_config(config)
    progress = ProgressBarCallback()
    started = time.time()

    try:
        async with FFmpegMediaEngine(
            ffmpeg_binary=config["ffmpeg_binary"],
            timeout=config["engine_timeout_seconds"],
        ) as engine:
            orchestrator = ReelOrchestrator.from_config(config, selector, voice, engine)
            run = await orchestrator.generate(request, on_progress=progress)
    finally:
        progress.close()
        await voice.close()

    if run.failed:
        console.print(f"[red]Error:[/red] {run.error.user_message}")
        logger.debug("Run log:\n" + "\n".join(run.logs))
        return 1

    output = args.output or Path(config["output_dir"]) / f"reel_{run.run_id}.mp4"
    video_path, captions_path = run.result.save(output)
    print_summary(run, video_path, captions_path, time.time() - started)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    setup_logging(args.log_level or config["log_level"], json_output=args.json_logs or config["log_json"])

    errors = validate_config(config)
    if args.custom_video:
        # A custom background does not need the catalog
        errors = [e for e in errors if not e.startswith("Background assets directory")]
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        return 2

    try:
        return asyncio.run(run_cli(args, config))
    except KeyboardInterrupt:
        console.print("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
