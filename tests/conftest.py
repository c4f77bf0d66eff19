"""Shared test fixtures for shortcompose tests."""

import re
import subprocess
from pathlib import Path

import pytest
import imageio_ffmpeg

from shortcompose.compositor import Transcoder
from shortcompose.errors import CompositionError, ExternalServiceError
from shortcompose.generation import (
    GenerationService,
    MediaFetcher,
    PollState,
    PollStatus,
)
from shortcompose.models import JobHandle, Segment

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


@pytest.fixture
def make_clip(tmp_path):
    """Factory for small real test videos (blue frames, silent audio).

    make_clip("a.mp4", duration=2, size="180x320") -> Path
    """
    def _make(name="clip.mp4", duration=2.0, size="180x320", fps=24, audio=True):
        out = tmp_path / name
        cmd = [_FFMPEG, "-y", "-f", "lavfi", "-i", f"color=c=blue:s={size}:d={duration}:r={fps}"]
        if audio:
            cmd += ["-f", "lavfi", "-i", "anullsrc=r=44100:cl=mono", "-shortest"]
        cmd += ["-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p"]
        if audio:
            cmd += ["-c:a", "aac", "-b:a", "32k"]
        cmd.append(str(out))
        subprocess.run(cmd, check=True, capture_output=True)
        return out
    return _make


# ── Fake generation service ───────────────────────────────────────
# Outcomes are scripted per prompt and consumed one per submit:
#   "ok"           completes on the first poll
#   "slow"         runs for two polls, then completes
#   "fail"         the service reports a failed job
#   "hang"         never leaves running (poll timeout)
#   "submit_error" the submit itself raises


class FakeService(GenerationService):
    def __init__(self, script=None, default="ok"):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.submits = []
        self.polls = []
        self._outcomes = {}
        self._poll_counts = {}

    async def submit(self, prompt, params):
        queue = self.script.get(prompt)
        outcome = queue.pop(0) if queue else self.default
        self.submits.append((prompt, params))
        if outcome == "submit_error":
            raise ExternalServiceError("submit rejected", status_code=500)
        request_id = f"req-{len(self.submits)}"
        self._outcomes[request_id] = outcome
        return JobHandle(request_id=request_id, model=params.model)

    async def poll(self, handle):
        self.polls.append(handle.request_id)
        n = self._poll_counts.get(handle.request_id, 0) + 1
        self._poll_counts[handle.request_id] = n
        outcome = self._outcomes[handle.request_id]
        if outcome == "fail":
            return PollStatus(PollState.failed, error="content policy")
        if outcome == "hang" or (outcome == "slow" and n < 3):
            return PollStatus(PollState.running)
        return PollStatus(
            PollState.completed,
            result_url=f"https://cdn.test/{handle.request_id}.mp4",
        )


class FakeFetcher(MediaFetcher):
    """Writes a placeholder file; URLs in fail_urls raise like a 404."""

    def __init__(self, fail_urls=()):
        self.fail_urls = set(fail_urls)
        self.fetched = []

    async def fetch(self, url, dest):
        self.fetched.append(url)
        if url in self.fail_urls:
            raise ExternalServiceError("Download failed: 404 Not Found", status_code=404)
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"fake mp4")
        return dest


def duration_probe(durations):
    """Probe stand-in: duration by segment ordinal from the scratch file name."""
    def _probe(path):
        ordinal = int(re.match(r"segment-(\d+)-", Path(path).name).group(1))
        return durations[ordinal]
    return _probe


def make_segment(ordinal, **kw):
    defaults = dict(
        title=f"Segment {ordinal}",
        hook=f"Hook number {ordinal}",
        key_points=(f"First point of {ordinal}", f"Second point of {ordinal}"),
        call_to_action="Follow for more",
        keywords=("science", "light"),
    )
    defaults.update(kw)
    return Segment(ordinal=ordinal, **defaults)


class RecordingTranscoder(Transcoder):
    """Writes an empty output file per job; optionally fails one pass."""

    def __init__(self, fail_on=None):
        self.jobs = []
        self.fail_on = fail_on

    def execute(self, job):
        self.jobs.append(job)
        if job.pass_id == self.fail_on:
            raise CompositionError(job.pass_id, "ffmpeg exited with status 1", stderr="boom")
        Path(job.output).write_bytes(b"")

    @property
    def pass_ids(self):
        return [j.pass_id for j in self.jobs]
