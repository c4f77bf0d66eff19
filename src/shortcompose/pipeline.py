"""Pipeline orchestrator — segments and cues in, one vertical short out.

Stages, in order:
  1. generation — one clip per segment via SegmentJobRunner (bounded
     concurrency, per-segment retries). Zero successes stops the run
     before anything is composed.
  2. cards      — overlay cards for every segment via OverlayRenderer.
  3. manifest   — successful clips and cards, ordered by ordinal, with
     display windows assigned.
  4. compose    — the four Compositor passes.

run() always returns a PipelineResult; failures are reported through
success/error/failed_stage, never raised.
"""

import asyncio
import secrets
import shutil
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .cards import OverlayRenderer
from .common import scale_px
from .compositor import Compositor, FfmpegTranscoder
from .errors import CompositionError
from .generation import FalQueueService, HttpMediaFetcher
from .job_manifest import is_remote, seed_image_data_uri
from .jobs import SegmentJobRunner, summarize_results
from .manifest import DEFAULT_OVERLAY_WINDOW, assemble_manifest
from .models import OutputDescriptor, PipelineResult, Segment, SubtitleCue


def new_run_id(now: datetime | None = None) -> str:
    """Unique run id: run-YYYYmmdd_HHMMSS-<8 hex>."""
    now = now or datetime.now()
    return f"run-{now:%Y%m%d_%H%M%S}-{secrets.token_hex(4)}"


def inline_seed_images(segments: Iterable[Segment]) -> list[Segment]:
    """Replace local seed image paths with data: URIs."""
    out = []
    for seg in segments:
        ref = seg.seed_image_url
        if ref and not is_remote(ref):
            seg = replace(seg, seed_image_url=seed_image_data_uri(ref))
        out.append(seg)
    return out


class PipelineOrchestrator:
    """Sequence generation, card rendering and composition for one short."""

    def __init__(
        self,
        runner: SegmentJobRunner,
        renderer: OverlayRenderer,
        compositor: Compositor,
        *,
        scratch_dir: str | Path,
        concurrency: int = 1,
        overlay_window: float = DEFAULT_OVERLAY_WINDOW,
        window_mode: str = "fixed",
        keep_scratch: bool = False,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.runner = runner
        self.renderer = renderer
        self.compositor = compositor
        self.scratch_dir = Path(scratch_dir)
        self.concurrency = concurrency
        self.overlay_window = overlay_window
        self.window_mode = window_mode
        self.keep_scratch = keep_scratch

    def _cleanup(self, scratch: Path) -> None:
        if self.keep_scratch:
            print(f"  KEEP   scratch {scratch}", flush=True)
            return
        try:
            shutil.rmtree(scratch)
        except OSError as exc:
            print(f"  WARN   could not remove scratch {scratch}: {exc}", flush=True)

    async def run_async(
        self,
        segments: Iterable[Segment],
        cues: Iterable[SubtitleCue] = (),
    ) -> PipelineResult:
        run_id = new_run_id()
        scratch = self.scratch_dir / run_id
        result = PipelineResult(success=False, run_id=run_id)
        segments = sorted(segments, key=lambda s: s.ordinal)
        cues = list(cues)

        if not segments:
            result.error = "No segments to generate"
            result.failed_stage = "generation"
            return result

        print(f"\n{run_id}: {len(segments)} segments, {len(cues)} cues", flush=True)
        try:
            # 1. Clips
            results = await self.runner.run_all(
                segments, scratch / "clips", self.concurrency,
            )
            result.results = results
            summary = summarize_results(results)
            print(
                f"  CLIPS  {summary['success']}/{summary['total']} succeeded, "
                f"{summary['total_duration']:.1f}s total",
                flush=True,
            )
            if summary["success"] == 0:
                result.error = f"All {summary['total']} segment jobs failed"
                result.failed_stage = "generation"
                return result

            # 2. Cards
            overlays = []
            for seg in segments:
                overlays.extend(self.renderer.render_all(seg, scratch / "cards"))

            # 3. Manifest
            manifest = assemble_manifest(
                run_id, results, overlays, cues,
                window=self.overlay_window, window_mode=self.window_mode,
            )
            result.manifest = manifest

            # 4. Compose
            try:
                output = self.compositor.compose(manifest, scratch / "compose")
            except CompositionError as exc:
                result.error = str(exc)
                result.failed_stage = exc.pass_id
                result.manifest = replace(manifest, output=OutputDescriptor(
                    path="",
                    duration=0.0,
                    resolution=self.compositor.resolution,
                    success=False,
                    error=str(exc),
                    failed_pass=exc.pass_id,
                ))
                print(f"  FAIL   {exc}", flush=True)
                return result
        except Exception as exc:
            result.error = f"{type(exc).__name__}: {exc}"
            result.failed_stage = result.failed_stage or "pipeline"
            print(f"  FAIL   {result.error}", flush=True)
            return result

        result.manifest = replace(manifest, output=output)
        result.success = True
        result.output_path = output.path
        result.duration = output.duration
        result.resolution = output.resolution
        print(f"  DONE   {output.path} ({output.duration:.1f}s)", flush=True)

        self._cleanup(scratch)
        return result

    def run(
        self,
        segments: Iterable[Segment],
        cues: Iterable[SubtitleCue] = (),
    ) -> PipelineResult:
        return asyncio.run(self.run_async(segments, cues))


def build_renderer(config: dict) -> OverlayRenderer:
    """Card renderer for a loaded job manifest.

    Manifest margins are authored at 1920px height and scaled here.
    """
    overlay = config["overlay"]
    resolution = config["video"]["resolution"]
    return OverlayRenderer(
        resolution=resolution,
        margins={k: scale_px((v, 0), resolution[1]) for k, v in overlay["margins"].items()},
        tagline=overlay["tagline"],
        button_label=overlay["button_label"],
        background_alpha=overlay["background_alpha"],
    )


def build_orchestrator(
    config: dict,
    api_key: str,
    *,
    output_dir: str | None = None,
    concurrency: int | None = None,
    keep_scratch: bool = False,
) -> PipelineOrchestrator:
    """Wire the fal/httpx/ffmpeg bindings from a loaded job manifest."""
    video = config["video"]
    gen = config["generation"]
    overlay = config["overlay"]
    audio = config["audio"]
    out = config["output"]
    w, h = video["resolution"]

    runner = SegmentJobRunner(
        FalQueueService(api_key, base_url=gen["endpoint"]),
        HttpMediaFetcher(),
        resolution=video["resolution"],
        fps=video["fps"],
        text_to_video_model=gen["text_to_video_model"],
        image_to_video_model=gen["image_to_video_model"],
        poll_interval=gen["poll_interval"],
        max_poll_attempts=gen["max_poll_attempts"],
        retries=gen["retries"],
        retry_backoff=gen["retry_backoff"],
        prompt_context=gen["prompt_context"],
        prompt_max_length=gen["prompt_max_length"],
    )
    renderer = build_renderer(config)
    compositor = Compositor(
        FfmpegTranscoder(),
        output_dir or out["dir"],
        resolution=(w, h),
        fps=video["fps"],
        bitrate=video["bitrate"],
        subtitle_style=config["subtitles"],
        bgm_path=audio["bgm"],
        volume_db=audio["volume_db"],
        output_prefix=out["prefix"],
    )
    return PipelineOrchestrator(
        runner,
        renderer,
        compositor,
        scratch_dir=out["scratch_dir"],
        concurrency=concurrency or gen["concurrency"],
        overlay_window=overlay["window"],
        window_mode=overlay["window_mode"],
        keep_scratch=keep_scratch,
    )
