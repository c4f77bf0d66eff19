"""Value types passed between the pipeline stages.

Segments and cues come from the job manifest. Jobs, results, overlay
assets and the composition manifest are produced by the stages and never
mutated in place: a state change or a retry yields a new value.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Segment:
    """One content unit, mapped to exactly one generated clip."""

    ordinal: int
    title: str
    hook: str = ""
    key_points: tuple[str, ...] = ()
    call_to_action: str = ""
    keywords: tuple[str, ...] = ()
    seed_image_url: Optional[str] = None
    duration: float = 8.0


@dataclass(frozen=True)
class SubtitleCue:
    """One subtitle entry. Timestamps are SRT style (HH:MM:SS,mmm)."""

    id: int
    start: str
    end: str
    text: str


# ── Generation jobs ───────────────────────────────────────────────


class JobState(str, Enum):
    pending = "pending"
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"


_STATE_RANK = {
    JobState.pending: 0,
    JobState.polling: 1,
    JobState.succeeded: 2,
    JobState.failed: 2,
}


@dataclass(frozen=True)
class JobHandle:
    """Opaque reference to a submitted generation request."""

    request_id: str
    model: str
    status_url: str = ""
    response_url: str = ""


@dataclass(frozen=True)
class GenerationJob:
    """One attempt to generate a clip for a segment.

    State only moves forward: pending -> polling -> succeeded | failed,
    or pending -> failed when the submit itself fails.
    """

    segment_ordinal: int
    attempt: int
    model: str = ""
    state: JobState = JobState.pending
    handle: Optional[JobHandle] = None
    video_path: Optional[Path] = None
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state in (JobState.succeeded, JobState.failed)

    def advance(self, state: JobState, **changes) -> "GenerationJob":
        """Return a copy of this job in a later state."""
        if self.done:
            raise ValueError(
                f"Job for segment {self.segment_ordinal} attempt {self.attempt} "
                f"is already {self.state.value}"
            )
        if _STATE_RANK[state] <= _STATE_RANK[self.state]:
            raise ValueError(
                f"Invalid job transition {self.state.value} -> {state.value}"
            )
        return replace(self, state=state, **changes)

    def fail(self, error: str) -> "GenerationJob":
        return self.advance(JobState.failed, error=error)


@dataclass(frozen=True)
class GenerationResult:
    """Final per-segment outcome after all retries."""

    segment_ordinal: int
    success: bool
    attempts: int
    prompt: str
    model: str = ""
    video_path: Optional[Path] = None
    duration: float = 0.0
    error: Optional[str] = None
    jobs: tuple[GenerationJob, ...] = ()


# ── Overlays ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class CardSpec:
    """Structured description of one text card, rendered to a raster.

    card_type is "title", "keypoint-N" (1-based) or "cta"; template is
    the template id ("title", "keypoint", "cta").
    """

    card_type: str
    template: str
    heading: str = ""
    body: str = ""
    tags: tuple[str, ...] = ()
    button: str = ""


@dataclass(frozen=True)
class OverlayAsset:
    """A rendered card for one segment, and its display window once placed."""

    segment_ordinal: int
    card_type: str
    text: str
    image_path: Optional[Path] = None
    success: bool = True
    error: Optional[str] = None
    window: Optional[tuple[float, float]] = None


# ── Composition ───────────────────────────────────────────────────


@dataclass(frozen=True)
class OutputDescriptor:
    path: str
    duration: float
    resolution: tuple[int, int]
    success: bool
    error: Optional[str] = None
    failed_pass: Optional[str] = None


@dataclass(frozen=True)
class CompositionManifest:
    """Ordered description of every successful artifact for one run."""

    run_id: str
    clips: tuple[GenerationResult, ...]
    overlays: tuple[OverlayAsset, ...]
    cues: tuple[SubtitleCue, ...]
    output: Optional[OutputDescriptor] = None

    @property
    def duration(self) -> float:
        return sum(c.duration for c in self.clips)


@dataclass
class PipelineResult:
    """What a pipeline run returns. Never raised, always returned."""

    success: bool
    output_path: str = ""
    duration: float = 0.0
    resolution: tuple[int, int] = (0, 0)
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    run_id: str = ""
    results: list[GenerationResult] = field(default_factory=list)
    manifest: Optional[CompositionManifest] = None
