"""Tests for the pipeline value types."""

import pytest

from shortcompose.models import (
    CompositionManifest,
    GenerationJob,
    GenerationResult,
    JobHandle,
    JobState,
)


class TestGenerationJob:
    def test_starts_pending(self):
        job = GenerationJob(segment_ordinal=0, attempt=1)
        assert job.state == JobState.pending
        assert not job.done

    def test_forward_transitions(self):
        job = GenerationJob(segment_ordinal=0, attempt=1)
        polling = job.advance(JobState.polling, handle=JobHandle("r1", "m"))
        done = polling.advance(JobState.succeeded, duration=8.0)
        assert done.state == JobState.succeeded
        assert done.handle.request_id == "r1"
        assert done.duration == 8.0
        assert done.done

    def test_advance_returns_new_value(self):
        job = GenerationJob(segment_ordinal=0, attempt=1)
        job.advance(JobState.polling)
        assert job.state == JobState.pending

    def test_pending_can_fail_directly(self):
        job = GenerationJob(segment_ordinal=2, attempt=1).fail("submit rejected")
        assert job.state == JobState.failed
        assert job.error == "submit rejected"

    def test_terminal_state_is_final(self):
        job = GenerationJob(segment_ordinal=0, attempt=1).fail("boom")
        with pytest.raises(ValueError, match="already failed"):
            job.advance(JobState.succeeded)

    def test_no_backward_transition(self):
        job = GenerationJob(segment_ordinal=0, attempt=1).advance(JobState.polling)
        with pytest.raises(ValueError, match="Invalid job transition"):
            job.advance(JobState.pending)

    def test_frozen(self):
        job = GenerationJob(segment_ordinal=0, attempt=1)
        with pytest.raises(AttributeError):
            job.state = JobState.failed


class TestCompositionManifest:
    def test_duration_sums_clips(self):
        clips = tuple(
            GenerationResult(segment_ordinal=i, success=True, attempts=1, prompt="p", duration=d)
            for i, d in enumerate([8.0, 7.5, 6.0])
        )
        manifest = CompositionManifest(run_id="r", clips=clips, overlays=(), cues=())
        assert manifest.duration == pytest.approx(21.5)
