#!/usr/bin/env python3
"""
Video Wizard - Render Core Entry Point
Timeline allocation, caption generation and the render job queue from the command line.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from dotenv import load_dotenv

from vidwizard.utils.config import Config
from vidwizard.utils.logger import setup_logging
from vidwizard.utils.captions import DEFAULT_CAPTION_STYLES, save_caption_file, to_ass, to_srt
from vidwizard.content_generation.alignment import build_captions
from vidwizard.content_generation.content_models import WordTimestamp
from vidwizard.video_assembly.timeline_builder import allocate_timeline, timing_preview
from vidwizard.video_assembly.video_models import TimelineAsset, parse_render_request
from vidwizard.automation.render_queue import RenderJobQueue
from vidwizard.automation.render_backend import HttpRenderBackend
from vidwizard.automation.queue_store import JsonFileQueueStore
from vidwizard.automation.automation_models import JobStatus

# Load local env for backend URL / token
load_dotenv(dotenv_path=Path(__file__).parent / ".env.local")

console = Console()


class VideoWizardSystem:
    """Wires configuration, logging and the render core together for the CLI"""

    def __init__(self, config_path: str = "configs/config.yaml"):
        if Path(config_path).exists():
            self.config = Config.load(config_path)
        else:
            console.print(f"[yellow]⚠[/yellow] {config_path} not found, using defaults")
            self.config = Config()
        self.config.apply_env_overrides()

        self.logger = setup_logging(self.config)

    def show_timeline(self, duration: float, asset_specs: List[str]):
        assets = []
        for index, spec in enumerate(asset_specs or ["asset-1"]):
            asset_id, _, native = spec.partition(':')
            assets.append(TimelineAsset(
                id=asset_id or f"asset-{index + 1}",
                native_duration=float(native) if native else None,
            ))

        slots = allocate_timeline(
            assets, duration,
            min_slot_duration=self.config.timing.min_slot_seconds,
            epsilon=self.config.timing.loop_trim_epsilon,
        )

        table = Table(title=f"Timeline ({duration:.1f}s)")
        for column in ("Asset", "Start", "End", "Duration", "Native", "Treatment"):
            table.add_column(column)
        for slot in slots:
            treatment = "loop" if slot.needs_loop else "trim" if slot.needs_trim else "-"
            native = f"{slot.native_duration:.1f}s" if slot.native_duration is not None else "?"
            table.add_row(slot.asset_ref, f"{slot.start_offset:.2f}", f"{slot.end_offset:.2f}",
                          f"{slot.target_duration:.2f}", native, treatment)
        console.print(table)

        preview = timing_preview(slots)
        console.print(f"[cyan]~{preview.average_duration:.1f}s per asset[/cyan] · "
                      f"{preview.loop_count} looped · {preview.trim_count} trimmed")

    def write_captions(self, script_file: Optional[str], words_file: Optional[str],
                       duration: Optional[float], fmt: str, out: Optional[str]):
        script = Path(script_file).read_text(encoding='utf-8') if script_file else None
        words = None
        if words_file:
            with open(words_file, encoding='utf-8') as f:
                words = [WordTimestamp(**w) for w in json.load(f)]

        segments = build_captions(words=words, script=script, total_duration=duration,
                                  config=self.config.captions)
        style = DEFAULT_CAPTION_STYLES.get(self.config.captions.default_style)

        if out:
            path = save_caption_file(segments, out, style=style, fmt=fmt)
            console.print(f"[green]✓[/green] Wrote {len(segments)} captions to {path}")
        else:
            console.print(to_srt(segments) if fmt == "srt" else to_ass(segments, style))

    async def render(self, request_files: List[str]):
        store = JsonFileQueueStore(str(self.config.snapshot_path))

        async with HttpRenderBackend(self.config.backend) as backend:
            queue = RenderJobQueue(backend, store=store, config=self.config.queue)

            for request_file in request_files:
                with open(request_file, encoding='utf-8') as f:
                    data = json.load(f)
                request = parse_render_request(data)
                job_id = queue.enqueue(request, name=data.get('name') or Path(request_file).stem)
                console.print(f"[blue]📋[/blue] Queued {request_file} as {job_id}")

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console,
                refresh_per_second=4,
            ) as progress:
                tasks = {job.id: progress.add_task(f"[cyan]{job.name}", total=100) for job in queue.jobs}

                def on_job_change(job):
                    task = tasks.get(job.id)
                    if task is None:
                        return
                    progress.update(task, completed=job.progress,
                                    description=f"[cyan]{job.name} ({job.status.value})")

                queue.add_listener(on_job_change)
                await queue.wait_until_idle()

        for job in queue.jobs:
            if job.status == JobStatus.COMPLETED:
                console.print(f"[green]✅[/green] {job.name}: {job.result_url}")
            elif job.status == JobStatus.FAILED:
                console.print(f"[red]❌[/red] {job.name}: {job.error}")

    def show_queue(self):
        snapshot = JsonFileQueueStore(str(self.config.snapshot_path)).load()
        if snapshot is None or not snapshot.jobs:
            console.print("[yellow]Queue is empty[/yellow]")
            return

        table = Table(title="Render queue")
        for column in ("Id", "Name", "Status", "Progress", "Result / error"):
            table.add_column(column)
        for job in snapshot.jobs:
            table.add_row(job.id, job.name, job.status.value, f"{job.progress}%",
                          job.result_url or job.error or "")
        console.print(table)


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Video Wizard render core")
    parser.add_argument("--config", type=str, default="configs/config.yaml",
                        help="Path to configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    timeline = sub.add_parser("timeline", help="Allocate assets over a voiceover duration")
    timeline.add_argument("--duration", type=float, required=True)
    timeline.add_argument("--asset", action="append", default=[],
                          help="Asset id, optionally with native duration: clip1:6.5")

    captions = sub.add_parser("captions", help="Build captions from word timestamps or a script")
    captions.add_argument("--script", type=str, help="Script text file")
    captions.add_argument("--words", type=str, help="JSON file of word timestamps")
    captions.add_argument("--duration", type=float, help="Voiceover duration (script mode)")
    captions.add_argument("--format", choices=["srt", "ass"], default="srt")
    captions.add_argument("--out", type=str, help="Output file (prints when omitted)")

    render = sub.add_parser("render", help="Queue render requests and wait for the results")
    render.add_argument("requests", nargs="+", help="Render request JSON files")

    sub.add_parser("queue", help="Show the persisted render queue")

    args = parser.parse_args()

    try:
        system = VideoWizardSystem(args.config)

        if args.command == "timeline":
            system.show_timeline(args.duration, args.asset)
        elif args.command == "captions":
            system.write_captions(args.script, args.words, args.duration, args.format, args.out)
        elif args.command == "render":
            asyncio.run(system.render(args.requests))
        elif args.command == "queue":
            system.show_queue()

    except KeyboardInterrupt:
        console.print("\n[yellow]⏹️[/yellow] Stopped by user")
    except Exception as e:
        logging.getLogger('vidwizard').error(f"Command failed: {e}")
        console.print(f"[red]💥[/red] Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
