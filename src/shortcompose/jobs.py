"""Segment job runner — one generation job per segment, with retries.

Each attempt is an explicit GenerationJob value that moves through
pending -> polling -> succeeded | failed:

  1. Build the prompt from the segment's text (pure, bounded length).
  2. Pick the image-to-video model if the segment has a seed image,
     text-to-video otherwise.
  3. Submit, then poll at a fixed interval up to max_poll_attempts.
  4. Download the result to segment-NNN-attempt-N.mp4 in scratch and
     probe its duration.

A failed attempt is followed by a fixed backoff and a brand-new job
(fresh handle, fresh poll cycle), up to `retries` extra attempts. A
segment that exhausts its retries is reported as failed; it never aborts
the other segments.
"""

import asyncio
import re
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable

from .common import probe_duration
from .errors import ExternalServiceError
from .generation import (
    DEFAULT_IMAGE_TO_VIDEO_MODEL,
    DEFAULT_TEXT_TO_VIDEO_MODEL,
    GenerationParams,
    GenerationService,
    MediaFetcher,
    PollState,
)
from .models import GenerationJob, GenerationResult, JobState, Segment


DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 60
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF = 5.0
DEFAULT_PROMPT_MAX_LENGTH = 500

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def build_prompt(
    segment: Segment,
    context: str = "",
    max_length: int = DEFAULT_PROMPT_MAX_LENGTH,
) -> str:
    """Build the generation prompt for a segment.

    Hook, key points and call to action are joined after the optional
    context prefix; the title stands in when all three are empty.
    Punctuation becomes whitespace, whitespace runs collapse, and the
    result is cut to max_length characters.
    """
    parts = [segment.hook, *segment.key_points, segment.call_to_action]
    body = " ".join(p for p in parts if p)
    if not body.strip():
        body = segment.title
    raw = f"{context} {body}" if context else body

    prompt = _NON_WORD.sub(" ", raw)
    prompt = _WHITESPACE.sub(" ", prompt).strip()
    return prompt[:max_length].rstrip()


def scratch_clip_path(scratch_dir: Path, ordinal: int, attempt: int) -> Path:
    return Path(scratch_dir) / f"segment-{ordinal:03d}-attempt-{attempt}.mp4"


def summarize_results(results: Iterable[GenerationResult]) -> dict:
    """Count successes and failures and total the successful durations."""
    results = list(results)
    succeeded = [r for r in results if r.success]
    return {
        "total": len(results),
        "success": len(succeeded),
        "failed": len(results) - len(succeeded),
        "total_duration": sum(r.duration for r in succeeded),
    }


class SegmentJobRunner:
    """Drive generation jobs for segments to completion."""

    def __init__(
        self,
        service: GenerationService,
        fetcher: MediaFetcher,
        *,
        resolution: tuple[int, int] = (1080, 1920),
        fps: int = 24,
        text_to_video_model: str = DEFAULT_TEXT_TO_VIDEO_MODEL,
        image_to_video_model: str = DEFAULT_IMAGE_TO_VIDEO_MODEL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        retries: int = DEFAULT_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        prompt_context: str = "",
        prompt_max_length: int = DEFAULT_PROMPT_MAX_LENGTH,
        probe: Callable[[Path], float] = probe_duration,
    ):
        if max_poll_attempts < 1:
            raise ValueError(f"max_poll_attempts must be >= 1, got {max_poll_attempts}")
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        self.service = service
        self.fetcher = fetcher
        self.resolution = resolution
        self.fps = fps
        self.text_to_video_model = text_to_video_model
        self.image_to_video_model = image_to_video_model
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.retries = retries
        self.retry_backoff = retry_backoff
        self.prompt_context = prompt_context
        self.prompt_max_length = prompt_max_length
        self.probe = probe

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def prompt_for(self, segment: Segment) -> str:
        return build_prompt(segment, self.prompt_context, self.prompt_max_length)

    def params_for(self, segment: Segment) -> GenerationParams:
        model = (
            self.image_to_video_model if segment.seed_image_url
            else self.text_to_video_model
        )
        return GenerationParams(
            model=model,
            resolution=self.resolution,
            fps=self.fps,
            duration=segment.duration,
            seed_image_url=segment.seed_image_url,
        )

    # ── One attempt ───────────────────────────────────────────────

    async def _await_result_url(self, job: GenerationJob) -> tuple[GenerationJob, str | None]:
        """Poll a submitted job until it completes, fails or times out."""
        for poll_n in range(1, self.max_poll_attempts + 1):
            try:
                status = await self.service.poll(job.handle)
            except ExternalServiceError as exc:
                # Transport hiccup: counts as an attempt, keep polling.
                print(
                    f"  WARN   segment {job.segment_ordinal} poll "
                    f"{poll_n}/{self.max_poll_attempts}: {exc}",
                    flush=True,
                )
            else:
                if status.state == PollState.completed:
                    return job, status.result_url
                if status.state == PollState.failed:
                    return job.fail(f"Generation failed: {status.error or 'unknown error'}"), None

            if poll_n < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval)

        return job.fail(
            f"Timed out after {self.max_poll_attempts} polls"
        ), None

    async def run_job(
        self, job: GenerationJob, segment: Segment, scratch_dir: Path,
    ) -> GenerationJob:
        """Run one pending job to a terminal state. Never raises service errors."""
        prompt = self.prompt_for(segment)
        params = self.params_for(segment)
        job = replace(job, model=params.model)

        try:
            handle = await self.service.submit(prompt, params)
        except ExternalServiceError as exc:
            return job.fail(str(exc))

        job = job.advance(JobState.polling, handle=handle)
        job, result_url = await self._await_result_url(job)
        if job.done:
            return job
        if not result_url:
            return job.fail("Completed without a result URL")

        dest = scratch_clip_path(scratch_dir, segment.ordinal, job.attempt)
        try:
            await self.fetcher.fetch(result_url, dest)
        except ExternalServiceError as exc:
            return job.fail(str(exc))

        try:
            duration = await asyncio.to_thread(self.probe, dest)
        except (OSError, ValueError, KeyError) as exc:
            return job.fail(f"Downloaded clip is unreadable: {exc}")
        return job.advance(JobState.succeeded, video_path=dest, duration=duration)

    # ── Retry loop ────────────────────────────────────────────────

    async def submit_and_await(
        self, segment: Segment, scratch_dir: Path,
    ) -> GenerationResult:
        """Generate one clip for a segment, retrying with fresh jobs."""
        prompt = self.prompt_for(segment)
        jobs: list[GenerationJob] = []

        for attempt in range(1, self.max_attempts + 1):
            job = GenerationJob(segment_ordinal=segment.ordinal, attempt=attempt)
            print(
                f"  START  segment {segment.ordinal} attempt {attempt}/{self.max_attempts}",
                flush=True,
            )
            job = await self.run_job(job, segment, scratch_dir)
            jobs.append(job)

            if job.state == JobState.succeeded:
                print(
                    f"  DONE   segment {segment.ordinal} — {job.duration:.1f}s clip "
                    f"({job.video_path.name})",
                    flush=True,
                )
                return GenerationResult(
                    segment_ordinal=segment.ordinal,
                    success=True,
                    attempts=attempt,
                    prompt=prompt,
                    model=job.model,
                    video_path=job.video_path,
                    duration=job.duration,
                    jobs=tuple(jobs),
                )

            print(f"  FAIL   segment {segment.ordinal} attempt {attempt}: {job.error}", flush=True)
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_backoff)

        last_error = jobs[-1].error if jobs else "no attempts made"
        return GenerationResult(
            segment_ordinal=segment.ordinal,
            success=False,
            attempts=len(jobs),
            prompt=prompt,
            model=jobs[-1].model if jobs else "",
            error=f"Retries exhausted after {len(jobs)} attempts: {last_error}",
            jobs=tuple(jobs),
        )

    async def run_all(
        self,
        segments: Iterable[Segment],
        scratch_dir: Path,
        concurrency: int = 1,
    ) -> list[GenerationResult]:
        """Run every segment with at most `concurrency` in flight.

        Results are returned in ordinal order regardless of completion order.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        Path(scratch_dir).mkdir(parents=True, exist_ok=True)
        gate = asyncio.Semaphore(concurrency)

        async def _one(segment: Segment) -> GenerationResult:
            async with gate:
                return await self.submit_and_await(segment, scratch_dir)

        results = await asyncio.gather(*(_one(s) for s in segments))
        return sorted(results, key=lambda r: r.segment_ordinal)
