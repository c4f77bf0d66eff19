"""Job manifest loader — one YAML file describes a whole short.

Follows the same ${var} path resolution as the other loaders.

Job manifest schema (every section but segments is optional):
  paths:
    assets: "/data/assets"
  video:
    resolution: [1080, 1920]
    fps: 24
    bitrate: "8M"
  generation:
    text_to_video_model: "fal-ai/hunyuan-video"
    image_to_video_model: "fal-ai/veo3/fast/image-to-video"
    endpoint: "https://queue.fal.run"
    duration: 8
    poll_interval: 2
    max_poll_attempts: 60
    retries: 2
    retry_backoff: 5
    concurrency: 1
    prompt_context: "Educational short about"
    prompt_max_length: 500
  overlay:
    window: 8
    window_mode: fixed          # fixed | clip
    margins: {top: 100, bottom: 150, left: 60, right: 60}
    tagline: "Learn something new"
    button_label: "Subscribe"
    background_alpha: 255
  subtitles:
    font_size: 32
    color: "#FFFFFF"
    background: "#000000"
    background_alpha: 0.7
    margin_v_frac: 0.10
    max_line_chars: 30
  audio:
    bgm: "${assets}/music.mp3"
    volume_db: -15
  output:
    dir: "output"
    scratch_dir: "output/.scratch"
    prefix: "shorts"
  segments:
    - title: "Why the sky is blue"
      hook: "Ever wondered why?"
      key_points: ["Sunlight scatters", "Blue scatters most"]
      call_to_action: "Follow for more"
      keywords: ["physics", "light"]
      seed_image: "${assets}/sky.png"     # URL or local file, optional
      duration: 8
  cues:
    - start: "00:00:00,000"
      end: "00:00:03,500"
      text: "Ever wondered why the sky is blue?"

Segment ordinals are list positions unless an explicit `ordinal` is given.
Cue ids are 1-based list positions.
"""

import base64
import mimetypes
import re
from pathlib import Path

import yaml

from .common import parse_hex_color, resolve_path_vars
from .generation import (
    DEFAULT_IMAGE_TO_VIDEO_MODEL,
    DEFAULT_TEXT_TO_VIDEO_MODEL,
    FAL_QUEUE_URL,
)
from .manifest import DEFAULT_OVERLAY_WINDOW, VALID_WINDOW_MODES
from .models import Segment, SubtitleCue


VIDEO_DEFAULTS = {"resolution": (1080, 1920), "fps": 24, "bitrate": "8M"}

GENERATION_DEFAULTS = {
    "text_to_video_model": DEFAULT_TEXT_TO_VIDEO_MODEL,
    "image_to_video_model": DEFAULT_IMAGE_TO_VIDEO_MODEL,
    "endpoint": FAL_QUEUE_URL,
    "duration": 8.0,
    "poll_interval": 2.0,
    "max_poll_attempts": 60,
    "retries": 2,
    "retry_backoff": 5.0,
    "concurrency": 1,
    "prompt_context": "",
    "prompt_max_length": 500,
}

OVERLAY_DEFAULTS = {
    "window": DEFAULT_OVERLAY_WINDOW,
    "window_mode": "fixed",
    "margins": {"top": 100, "bottom": 150, "left": 60, "right": 60},
    "tagline": "",
    "button_label": "Subscribe",
    "background_alpha": 255,
}

SUBTITLE_DEFAULTS = {
    "font_size": 32,
    "color": "#FFFFFF",
    "background": "#000000",
    "background_alpha": 0.7,
    "margin_v_frac": 0.10,
    "max_line_chars": None,
}

AUDIO_DEFAULTS = {"bgm": None, "volume_db": -15.0}

OUTPUT_DEFAULTS = {"dir": "output", "scratch_dir": None, "prefix": "shorts"}

_TIMESTAMP = re.compile(r"^(\d{2}):(\d{2}):(\d{2}),(\d{3})$")


def srt_seconds(timestamp: str) -> float:
    """Parse an HH:MM:SS,mmm timestamp into seconds."""
    m = _TIMESTAMP.match(timestamp)
    if not m:
        raise ValueError(f"Invalid SRT timestamp '{timestamp}' (expected HH:MM:SS,mmm)")
    h, mi, s, ms = (int(g) for g in m.groups())
    if mi > 59 or s > 59:
        raise ValueError(f"Invalid SRT timestamp '{timestamp}'")
    return h * 3600 + mi * 60 + s + ms / 1000.0


def _section(raw: dict, name: str, defaults: dict) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Job manifest: '{name}' must be a mapping")
    unknown = set(section) - set(defaults)
    if unknown:
        raise ValueError(
            f"Job manifest: unknown {name} field(s) {sorted(unknown)}. "
            f"Valid: {sorted(defaults)}"
        )
    return {**defaults, **section}


def _positive(section: str, key: str, value, cast=float, allow_zero=False):
    value = cast(value)
    if value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValueError(f"{section}.{key} must be {bound}, got {value}")
    return value


def _resolve_optional(value, paths: dict) -> str | None:
    if value in (None, ""):
        return None
    return resolve_path_vars(str(value), paths)


def _validate_video(video: dict) -> dict:
    res = video["resolution"]
    if not isinstance(res, (list, tuple)) or len(res) != 2:
        raise ValueError(f"video.resolution must be [width, height], got {res!r}")
    w, h = int(res[0]), int(res[1])
    if w <= 0 or h <= 0:
        raise ValueError(f"video.resolution must be positive, got {w}x{h}")
    if w % 2 or h % 2:
        raise ValueError(f"video.resolution must be even for H.264, got {w}x{h}")
    return {
        "resolution": (w, h),
        "fps": _positive("video", "fps", video["fps"], int),
        "bitrate": str(video["bitrate"]),
    }


def _validate_generation(gen: dict) -> dict:
    out = dict(gen)
    out["duration"] = _positive("generation", "duration", gen["duration"])
    out["poll_interval"] = _positive("generation", "poll_interval", gen["poll_interval"], allow_zero=True)
    out["max_poll_attempts"] = _positive("generation", "max_poll_attempts", gen["max_poll_attempts"], int)
    out["retries"] = _positive("generation", "retries", gen["retries"], int, allow_zero=True)
    out["retry_backoff"] = _positive("generation", "retry_backoff", gen["retry_backoff"], allow_zero=True)
    out["concurrency"] = _positive("generation", "concurrency", gen["concurrency"], int)
    out["prompt_max_length"] = _positive("generation", "prompt_max_length", gen["prompt_max_length"], int)
    out["prompt_context"] = str(gen["prompt_context"] or "")
    for key in ("text_to_video_model", "image_to_video_model", "endpoint"):
        if not gen[key]:
            raise ValueError(f"generation.{key} must not be empty")
        out[key] = str(gen[key])
    return out


def _validate_overlay(overlay: dict) -> dict:
    mode = overlay["window_mode"]
    if mode not in VALID_WINDOW_MODES:
        raise ValueError(
            f"Invalid overlay.window_mode '{mode}'. Valid: {sorted(VALID_WINDOW_MODES)}"
        )
    margins = {**OVERLAY_DEFAULTS["margins"], **(overlay["margins"] or {})}
    unknown = set(margins) - set(OVERLAY_DEFAULTS["margins"])
    if unknown:
        raise ValueError(f"overlay.margins: unknown side(s) {sorted(unknown)}")
    margins = {k: _positive("overlay.margins", k, v, int, allow_zero=True) for k, v in margins.items()}
    alpha = int(overlay["background_alpha"])
    if not 0 <= alpha <= 255:
        raise ValueError(f"overlay.background_alpha must be 0-255, got {alpha}")
    return {
        "window": _positive("overlay", "window", overlay["window"]),
        "window_mode": mode,
        "margins": margins,
        "tagline": str(overlay["tagline"] or ""),
        "button_label": str(overlay["button_label"] or ""),
        "background_alpha": alpha,
    }


def _validate_subtitles(subs: dict) -> dict:
    alpha = float(subs["background_alpha"])
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"subtitles.background_alpha must be 0.0-1.0, got {alpha}")
    margin = float(subs["margin_v_frac"])
    if not 0.0 <= margin < 0.5:
        raise ValueError(f"subtitles.margin_v_frac must be in [0, 0.5), got {margin}")
    max_chars = subs["max_line_chars"]
    return {
        "font_size": _positive("subtitles", "font_size", subs["font_size"], int),
        "color": parse_hex_color(str(subs["color"])),
        "background": parse_hex_color(str(subs["background"])),
        "background_alpha": alpha,
        "margin_v_frac": margin,
        "max_line_chars": (
            _positive("subtitles", "max_line_chars", max_chars, int) if max_chars else None
        ),
    }


def _str_list(entry: dict, key: str, label: str) -> tuple[str, ...]:
    value = entry.get(key) or []
    if isinstance(value, str) or not isinstance(value, list):
        raise ValueError(f"{label}: '{key}' must be a list of strings")
    return tuple(str(v).strip() for v in value if str(v).strip())


def _parse_segments(raw_segments, paths: dict, default_duration: float) -> list[Segment]:
    if not isinstance(raw_segments, list) or not raw_segments:
        raise ValueError("Job manifest: 'segments' must be a non-empty list")

    segments = []
    seen = set()
    for i, entry in enumerate(raw_segments):
        label = f"Segment {i}"
        if not isinstance(entry, dict):
            raise ValueError(f"{label}: must be a mapping")
        if not str(entry.get("title") or "").strip():
            raise ValueError(f"{label}: missing required field 'title'")

        ordinal = int(entry.get("ordinal", i))
        if ordinal < 0:
            raise ValueError(f"{label}: ordinal must be >= 0, got {ordinal}")
        if ordinal in seen:
            raise ValueError(f"Duplicate segment ordinal: {ordinal}")
        seen.add(ordinal)

        segments.append(Segment(
            ordinal=ordinal,
            title=str(entry["title"]).strip(),
            hook=str(entry.get("hook") or "").strip(),
            key_points=_str_list(entry, "key_points", label),
            call_to_action=str(entry.get("call_to_action") or "").strip(),
            keywords=_str_list(entry, "keywords", label),
            seed_image_url=_resolve_optional(entry.get("seed_image"), paths),
            duration=_positive(label, "duration", entry.get("duration", default_duration)),
        ))
    return sorted(segments, key=lambda s: s.ordinal)


def _parse_cues(raw_cues) -> list[SubtitleCue]:
    if raw_cues is None:
        return []
    if not isinstance(raw_cues, list):
        raise ValueError("Job manifest: 'cues' must be a list")

    cues = []
    for i, entry in enumerate(raw_cues):
        label = f"Cue {i}"
        for key in ("start", "end", "text"):
            if key not in entry:
                raise ValueError(f"{label}: missing required field '{key}'")
        start, end = str(entry["start"]), str(entry["end"])
        if srt_seconds(start) >= srt_seconds(end):
            raise ValueError(f"{label}: start ({start}) must be before end ({end})")
        text = str(entry["text"]).strip()
        if not text:
            raise ValueError(f"{label}: text must not be empty")
        cues.append(SubtitleCue(id=i + 1, start=start, end=end, text=text))
    return cues


def load_job_manifest(manifest_path: str | Path) -> dict:
    """Load, validate, and normalize a job manifest.

    Processing pipeline:
      1. Parse YAML.
      2. Merge each section over its defaults, rejecting unknown keys.
      3. Validate numbers and colors; resolve ${path} variables.
      4. Build Segment and SubtitleCue values.

    Returns:
        Normalized config dict with keys video, generation, overlay,
        subtitles, audio, output, segments, cues.

    Raises:
        ValueError: Missing/invalid fields.
    """
    with open(manifest_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Job manifest: top level must be a mapping")
    if "segments" not in raw:
        raise ValueError("Job manifest: missing required 'segments' field")

    paths = raw.get("paths") or {}
    video = _validate_video(_section(raw, "video", VIDEO_DEFAULTS))
    generation = _validate_generation(_section(raw, "generation", GENERATION_DEFAULTS))
    overlay = _validate_overlay(_section(raw, "overlay", OVERLAY_DEFAULTS))
    subtitles = _validate_subtitles(_section(raw, "subtitles", SUBTITLE_DEFAULTS))

    audio = _section(raw, "audio", AUDIO_DEFAULTS)
    audio = {
        "bgm": _resolve_optional(audio["bgm"], paths),
        "volume_db": float(audio["volume_db"]),
    }

    output = _section(raw, "output", OUTPUT_DEFAULTS)
    out_dir = resolve_path_vars(str(output["dir"]), paths)
    scratch = _resolve_optional(output["scratch_dir"], paths)
    prefix = str(output["prefix"] or "").strip()
    if not prefix:
        raise ValueError("output.prefix must not be empty")
    output = {
        "dir": out_dir,
        "scratch_dir": scratch or str(Path(out_dir) / ".scratch"),
        "prefix": prefix,
    }

    return {
        "video": video,
        "generation": generation,
        "overlay": overlay,
        "subtitles": subtitles,
        "audio": audio,
        "output": output,
        "segments": _parse_segments(raw["segments"], paths, generation["duration"]),
        "cues": _parse_cues(raw.get("cues")),
    }


def is_remote(ref: str) -> bool:
    return ref.startswith(("http://", "https://", "data:"))


def seed_image_data_uri(path: str | Path) -> str:
    """Inline a local seed image as a data: URI the generation service accepts."""
    mime = mimetypes.guess_type(str(path))[0] or "image/png"
    data = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime};base64,{data}"


def validate_assets(config: dict) -> list[str]:
    """Check local files referenced by the manifest.

    Missing seed images are errors. A missing background music file is
    only a warning: the finalize pass then skips mixing.

    Returns:
        Warning messages.

    Raises:
        FileNotFoundError: If a local seed image is missing.
    """
    for seg in config["segments"]:
        ref = seg.seed_image_url
        if ref and not is_remote(ref) and not Path(ref).exists():
            raise FileNotFoundError(
                f"Segment {seg.ordinal}: seed image not found: {ref}"
            )

    warnings = []
    bgm = config["audio"]["bgm"]
    if bgm and not Path(bgm).exists():
        warnings.append(f"Background music not found, mixing skipped: {bgm}")
    return warnings
