"""Compositor — four sequential ffmpeg passes from manifest to final mp4.

Passes (each consumes the previous pass's scratch file):
  1. concat    — successful clips in ordinal order, scaled/padded to the
                 canonical frame and frame rate, video only.
  2. overlay   — each card scaled to full frame, enabled only during its
                 half-open window. No cards: the concat file is carried
                 forward untouched.
  3. subtitles — cues written to an SRT file and burned in with a fixed
                 style. No cues: plain re-encode.
  4. finalize  — optional background music mixed under a silent bed the
                 length of the video (amix duration=first), AAC audio,
                 +faststart, then moved to a timestamp-named output file.

Any failure raises CompositionError naming the pass; nothing is written
to the output directory unless the finalize pass succeeded. Filter graphs
are built by pure functions so they can be inspected without ffmpeg.
"""

import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .common import FFMPEG, ass_color, wrap_chars
from .errors import CompositionError
from .models import CompositionManifest, OutputDescriptor, SubtitleCue


PASSES = ("concat", "overlay", "subtitles", "finalize")

DEFAULT_RESOLUTION = (1080, 1920)
DEFAULT_FPS = 24
DEFAULT_BITRATE = "8M"
DEFAULT_BGM_VOLUME_DB = -15.0

# libass renders SRT input on a 384x288 script canvas; pixel sizes are
# converted into that space so the style scales with the output height.
_ASS_PLAY_RES_Y = 288

DEFAULT_SUBTITLE_STYLE = {
    "font_size": 32,
    "color": (255, 255, 255),
    "background": (0, 0, 0),
    "background_alpha": 0.7,
    "margin_v_frac": 0.10,
    "max_line_chars": None,
}


# ── Transcoder capability ─────────────────────────────────────────


@dataclass(frozen=True)
class MediaInput:
    """One ffmpeg input; options are placed before its -i."""

    path: str
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class TranscodeJob:
    pass_id: str
    inputs: tuple[MediaInput, ...]
    output: Path
    filter_graph: Optional[str] = None
    maps: tuple[str, ...] = ()
    output_args: tuple[str, ...] = ()


class Transcoder(ABC):
    @abstractmethod
    def execute(self, job: TranscodeJob) -> None:
        """Run the job, writing job.output; raise CompositionError on failure."""


def build_command(job: TranscodeJob, ffmpeg: str = FFMPEG) -> list[str]:
    cmd = [ffmpeg, "-y", "-hide_banner", "-loglevel", "error"]
    for media in job.inputs:
        cmd.extend([*media.options, "-i", media.path])
    if job.filter_graph:
        cmd.extend(["-filter_complex", job.filter_graph])
    for m in job.maps:
        cmd.extend(["-map", m])
    cmd.extend(job.output_args)
    cmd.append(str(job.output))
    return cmd


class FfmpegTranscoder(Transcoder):
    """Run transcode jobs with the ffmpeg binary bundled by imageio-ffmpeg."""

    def __init__(self, ffmpeg: str = FFMPEG):
        self.ffmpeg = ffmpeg

    def execute(self, job: TranscodeJob) -> None:
        Path(job.output).parent.mkdir(parents=True, exist_ok=True)
        cmd = build_command(job, self.ffmpeg)
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise CompositionError(
                job.pass_id,
                f"ffmpeg exited with status {exc.returncode}: {stderr[-500:]}",
                stderr=stderr,
            ) from exc
        except OSError as exc:
            raise CompositionError(job.pass_id, f"could not run ffmpeg: {exc}") from exc


# ── Filter graph builders ─────────────────────────────────────────


def build_concat_graph(
    n: int, resolution: tuple[int, int], fps: int,
) -> tuple[str, str]:
    """Normalize n video inputs to the canonical frame and concatenate them.

    Returns (filter_graph, output_label).
    """
    if n < 1:
        raise ValueError("Concatenation needs at least one clip")
    w, h = resolution
    parts = []
    for i in range(n):
        parts.append(
            f"[{i}:v]scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps}[v{i}]"
        )
    concat_in = "".join(f"[v{i}]" for i in range(n))
    parts.append(f"{concat_in}concat=n={n}:v=1:a=0[outv]")
    return ";".join(parts), "[outv]"


def build_overlay_graph(
    windows: list[tuple[float, float]], resolution: tuple[int, int],
) -> tuple[str, str]:
    """Chain one timed full-frame overlay per window over input 0.

    Overlay i is input i+1, shown while start <= t < end.
    Returns (filter_graph, output_label).
    """
    if not windows:
        raise ValueError("Overlay graph needs at least one overlay")
    w, h = resolution
    n = len(windows)
    parts = []
    for i, (start, end) in enumerate(windows):
        src = "[0:v]" if i == 0 else f"[ov{i - 1}]"
        out = "[outv]" if i == n - 1 else f"[ov{i}]"
        parts.append(f"[{i + 1}:v]scale={w}:{h}[card{i}]")
        parts.append(
            f"{src}[card{i}]overlay=0:0:"
            f"enable='gte(t,{start:.3f})*lt(t,{end:.3f})'{out}"
        )
    return ";".join(parts), "[outv]"


def escape_filter_value(value: str) -> str:
    """Escape a string for use as a filter option value in a filter graph.

    Two levels, as ffmpeg parses them: option value (\\ : ') and then
    filter graph (\\ ' [ ] , ;).
    """
    for ch in ("\\", ":", "'"):
        value = value.replace(ch, "\\" + ch)
    return "".join("\\" + ch if ch in "\\'[],;" else ch for ch in value)


def subtitle_force_style(style: dict, height: int) -> str:
    """ASS force_style string for the burned-in subtitles."""
    def _play_res(px: float) -> int:
        return max(1, round(px * _ASS_PLAY_RES_Y / height))

    return ",".join([
        f"FontSize={_play_res(style['font_size'])}",
        f"PrimaryColour={ass_color(style['color'])}",
        f"BackColour={ass_color(style['background'], style['background_alpha'])}",
        f"OutlineColour={ass_color(style['background'], style['background_alpha'])}",
        "BorderStyle=3",
        "Alignment=2",
        f"MarginV={_play_res(height * style['margin_v_frac'])}",
    ])


def build_subtitle_filter(
    srt_path: Path, style: dict, resolution: tuple[int, int],
) -> tuple[str, str]:
    """Burn an SRT file into input 0. Returns (filter_graph, output_label)."""
    _, h = resolution
    filename = escape_filter_value(str(srt_path))
    force_style = escape_filter_value(subtitle_force_style(style, h))
    return (
        f"[0:v]subtitles=filename={filename}:force_style={force_style}[outv]",
        "[outv]",
    )


def build_audio_mix_graph(volume_db: float) -> tuple[str, str]:
    """Mix music (input 2) under the base track (input 1).

    The base track's duration wins; the music is attenuated by volume_db.
    Returns (filter_graph, output_label).
    """
    return (
        f"[2:a]volume={volume_db}dB[bgm];"
        "[1:a][bgm]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[aout]",
        "[aout]",
    )


# ── Subtitle serialization ────────────────────────────────────────


def format_srt(cues: Iterable[SubtitleCue], max_line_chars: int | None = None) -> str:
    """Serialize cues as an SRT document (empty string for no cues)."""
    blocks = []
    for cue in cues:
        text = cue.text
        if max_line_chars:
            text = "\n".join(wrap_chars(text, max_line_chars))
        blocks.append(f"{cue.id}\n{cue.start} --> {cue.end}\n{text}\n")
    return "\n".join(blocks)


# ── Output naming ─────────────────────────────────────────────────


def unique_output_path(
    output_dir: Path, prefix: str = "shorts", now: datetime | None = None,
) -> Path:
    """Timestamp-named output path that does not collide with existing files."""
    now = now or datetime.now()
    stem = f"{prefix}_{now:%Y%m%d_%H%M%S}"
    candidate = Path(output_dir) / f"{stem}.mp4"
    n = 1
    while candidate.exists():
        candidate = Path(output_dir) / f"{stem}_{n}.mp4"
        n += 1
    return candidate


# ── Compositor ────────────────────────────────────────────────────


class Compositor:
    """Build the final video from a manifest in four strictly ordered passes."""

    def __init__(
        self,
        transcoder: Transcoder,
        output_dir: str | Path,
        *,
        resolution: tuple[int, int] = DEFAULT_RESOLUTION,
        fps: int = DEFAULT_FPS,
        bitrate: str = DEFAULT_BITRATE,
        subtitle_style: dict | None = None,
        bgm_path: str | Path | None = None,
        volume_db: float = DEFAULT_BGM_VOLUME_DB,
        output_prefix: str = "shorts",
    ):
        self.transcoder = transcoder
        self.output_dir = Path(output_dir)
        self.resolution = resolution
        self.fps = fps
        self.bitrate = bitrate
        self.subtitle_style = {**DEFAULT_SUBTITLE_STYLE, **(subtitle_style or {})}
        self.bgm_path = Path(bgm_path) if bgm_path else None
        self.volume_db = volume_db
        self.output_prefix = output_prefix

    def _video_args(self, preset: str = "medium") -> tuple[str, ...]:
        return (
            "-c:v", "libx264",
            "-preset", preset,
            "-b:v", self.bitrate,
            "-r", str(self.fps),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
        )

    def _run(self, job: TranscodeJob) -> Path:
        print(f"  PASS   {job.pass_id} -> {Path(job.output).name}", flush=True)
        self.transcoder.execute(job)
        if not Path(job.output).exists():
            raise CompositionError(job.pass_id, f"no output written to {job.output}")
        return Path(job.output)

    # ── Passes ────────────────────────────────────────────────────

    def concat_pass(self, manifest: CompositionManifest, scratch: Path) -> Path:
        if not manifest.clips:
            raise CompositionError("concat", "no successful clips to concatenate")
        graph, label = build_concat_graph(len(manifest.clips), self.resolution, self.fps)
        return self._run(TranscodeJob(
            pass_id="concat",
            inputs=tuple(MediaInput(str(c.video_path)) for c in manifest.clips),
            output=scratch / "01-concat.mp4",
            filter_graph=graph,
            maps=(label,),
            output_args=(*self._video_args(), "-an"),
        ))

    def overlay_pass(self, manifest: CompositionManifest, video: Path, scratch: Path) -> Path:
        if not manifest.overlays:
            print("  PASS   overlay skipped (no cards)", flush=True)
            return video
        windows = [a.window for a in manifest.overlays]
        if any(w is None for w in windows):
            raise CompositionError("overlay", "overlay without a display window")
        graph, label = build_overlay_graph(windows, self.resolution)
        inputs = [MediaInput(str(video))]
        inputs.extend(MediaInput(str(a.image_path)) for a in manifest.overlays)
        return self._run(TranscodeJob(
            pass_id="overlay",
            inputs=tuple(inputs),
            output=scratch / "02-overlay.mp4",
            filter_graph=graph,
            maps=(label,),
            output_args=(*self._video_args(), "-an"),
        ))

    def subtitle_pass(self, manifest: CompositionManifest, video: Path, scratch: Path) -> Path:
        srt_path = scratch / "subtitles.srt"
        try:
            srt_path.write_text(
                format_srt(manifest.cues, self.subtitle_style.get("max_line_chars")),
                encoding="utf-8",
            )
        except OSError as exc:
            raise CompositionError("subtitles", f"could not write {srt_path}: {exc}") from exc

        if manifest.cues:
            graph, label = build_subtitle_filter(srt_path, self.subtitle_style, self.resolution)
            maps = (label,)
        else:
            graph, maps = None, ("0:v",)
        return self._run(TranscodeJob(
            pass_id="subtitles",
            inputs=(MediaInput(str(video)),),
            output=scratch / "03-subtitles.mp4",
            filter_graph=graph,
            maps=maps,
            output_args=(*self._video_args(), "-an"),
        ))

    def finalize_pass(
        self, manifest: CompositionManifest, video: Path, scratch: Path,
    ) -> Path:
        staged = scratch / "04-final.mp4"
        audio_args = ("-c:a", "aac", "-b:a", "128k")

        if self.bgm_path and self.bgm_path.exists():
            graph, label = build_audio_mix_graph(self.volume_db)
            job = TranscodeJob(
                pass_id="finalize",
                inputs=(
                    MediaInput(str(video)),
                    MediaInput(
                        "anullsrc=r=44100:cl=stereo",
                        ("-f", "lavfi", "-t", f"{manifest.duration:.3f}"),
                    ),
                    MediaInput(str(self.bgm_path)),
                ),
                output=staged,
                filter_graph=graph,
                maps=("0:v", label),
                output_args=(*self._video_args("fast"), *audio_args),
            )
        else:
            if self.bgm_path:
                print(f"  WARN   background music not found: {self.bgm_path}", flush=True)
            job = TranscodeJob(
                pass_id="finalize",
                inputs=(MediaInput(str(video)),),
                output=staged,
                maps=("0:v", "0:a?"),
                output_args=(*self._video_args("fast"), *audio_args),
            )
        self._run(job)

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            final = unique_output_path(self.output_dir, self.output_prefix)
            shutil.move(str(staged), str(final))
        except OSError as exc:
            raise CompositionError("finalize", f"could not publish output: {exc}") from exc
        return final

    # ── Entry point ───────────────────────────────────────────────

    def compose(self, manifest: CompositionManifest, scratch_dir: str | Path) -> OutputDescriptor:
        """Run all four passes. Raises CompositionError at the failing pass."""
        scratch = Path(scratch_dir)
        scratch.mkdir(parents=True, exist_ok=True)

        video = self.concat_pass(manifest, scratch)
        video = self.overlay_pass(manifest, video, scratch)
        video = self.subtitle_pass(manifest, video, scratch)
        final = self.finalize_pass(manifest, video, scratch)

        return OutputDescriptor(
            path=str(final),
            duration=manifest.duration,
            resolution=self.resolution,
            success=True,
        )
