"""Composition manifest assembly and overlay window placement.

The manifest keeps only what succeeded, in ordinal order:
  - clips: successful generation results, sorted by segment ordinal.
  - overlays: successful cards of segments that produced a clip,
    sorted by (ordinal, card order: title, keypoint-1..N, cta).
  - cues: passed through unchanged.

Window modes:
  - fixed: overlay slot k is shown during [k*W, (k+1)*W), independent
    of clip lengths.
  - clip: each segment's cards split that segment's clip span evenly,
    so cards stay on top of the clip they describe.
Both modes produce sequential, non-overlapping half-open windows.
"""

from dataclasses import replace
from typing import Iterable

from .models import CompositionManifest, GenerationResult, OverlayAsset, SubtitleCue


VALID_WINDOW_MODES = {"fixed", "clip"}

DEFAULT_OVERLAY_WINDOW = 8.0


def overlay_window(slot: int, window: float) -> tuple[float, float]:
    """Return the half-open [start, end) display window for an overlay slot."""
    if window <= 0:
        raise ValueError(f"Overlay window must be > 0, got {window}")
    if slot < 0:
        raise ValueError(f"Overlay slot must be >= 0, got {slot}")
    return (slot * window, (slot + 1) * window)


def windows_overlap(a: tuple[float, float], b: tuple[float, float]) -> bool:
    """True if two half-open windows share any instant."""
    return a[0] < b[1] and b[0] < a[1]


def card_rank(card_type: str) -> int:
    """Sort rank within a segment: title, keypoint-1..N, then cta."""
    if card_type == "title":
        return 0
    if card_type.startswith("keypoint-"):
        return int(card_type.split("-", 1)[1])
    return 1_000_000


def _clip_aligned_windows(
    clips: list[GenerationResult], overlays: list[OverlayAsset],
) -> list[OverlayAsset]:
    starts = {}
    t = 0.0
    for clip in clips:
        starts[clip.segment_ordinal] = (t, clip.duration)
        t += clip.duration

    by_segment: dict[int, list[OverlayAsset]] = {}
    for asset in overlays:
        by_segment.setdefault(asset.segment_ordinal, []).append(asset)

    placed = []
    for ordinal, assets in by_segment.items():
        start, duration = starts[ordinal]
        share = duration / len(assets)
        for i, asset in enumerate(assets):
            placed.append(replace(
                asset, window=(start + i * share, start + (i + 1) * share),
            ))
    return placed


def assemble_manifest(
    run_id: str,
    results: Iterable[GenerationResult],
    overlays: Iterable[OverlayAsset],
    cues: Iterable[SubtitleCue],
    window: float = DEFAULT_OVERLAY_WINDOW,
    window_mode: str = "fixed",
) -> CompositionManifest:
    """Build the manifest from successful artifacts only.

    Raises:
        ValueError: Unknown window_mode or non-positive window.
    """
    if window_mode not in VALID_WINDOW_MODES:
        raise ValueError(
            f"Invalid window_mode '{window_mode}'. Valid: {sorted(VALID_WINDOW_MODES)}"
        )
    if window <= 0:
        raise ValueError(f"Overlay window must be > 0, got {window}")

    clips = sorted(
        (r for r in results if r.success),
        key=lambda r: r.segment_ordinal,
    )
    clip_ordinals = {c.segment_ordinal for c in clips}

    kept = sorted(
        (a for a in overlays if a.success and a.segment_ordinal in clip_ordinals),
        key=lambda a: (a.segment_ordinal, card_rank(a.card_type)),
    )
    if window_mode == "fixed":
        placed = [
            replace(asset, window=overlay_window(slot, window))
            for slot, asset in enumerate(kept)
        ]
    else:
        placed = _clip_aligned_windows(clips, kept)

    return CompositionManifest(
        run_id=run_id,
        clips=tuple(clips),
        overlays=tuple(placed),
        cues=tuple(cues),
    )
