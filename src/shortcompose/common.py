"""shortcompose.common — shared utilities for generation and compositing.

Contains: color parsing, path variable resolution, resolution scaling,
font loading, text wrapping, and clip duration probing.
"""

import re
from pathlib import Path

import imageio_ffmpeg
from PIL import ImageDraw, ImageFont
from moviepy import VideoFileClip

FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


# ── Font paths ─────────────────────────────────────────────────────
# Noto Sans CJK covers Hangul/Kanji card text; DejaVu Sans as fallback.

FONT_PATHS = [
    Path("/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc"),
    Path("/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf"),
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]

ELLIPSIS = "..."


# ── Color utilities ────────────────────────────────────────────────

def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB' or 'RRGGBB' string to (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    if len(hex_str) != 6:
        raise ValueError(f"Invalid hex color: '#{hex_str}'")
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


def ass_color(rgb: tuple[int, int, int], alpha: float = 1.0) -> str:
    """Format an RGB color as an ASS style colour (&HAABBGGRR).

    ASS alpha is inverted: 00 is opaque, FF fully transparent.
    """
    r, g, b = rgb
    a = round((1.0 - alpha) * 255)
    return f"&H{a:02X}{b:02X}{g:02X}{r:02X}"


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── Resolution scaling ─────────────────────────────────────────────
# Layout constants are authored against a 1920px-tall vertical frame.
# Each constant is (value_at_1920, floor).

REF_HEIGHT = 1920


def scale_px(ref_and_floor: tuple[int, int], h: int) -> int:
    """Scale a reference pixel value to the current output height."""
    ref_val, floor = ref_and_floor
    return max(floor, round(ref_val * h / REF_HEIGHT))


# ── Font loading ───────────────────────────────────────────────────

def load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load the first available font from FONT_PATHS at the given size."""
    for font_path in FONT_PATHS:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=size, index=0)
            except (OSError, IndexError):
                continue
    # Last resort: Pillow default font.
    return ImageFont.load_default()


# ── Text layout ────────────────────────────────────────────────────

def text_width(draw: ImageDraw.ImageDraw, text: str, font) -> int:
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[2] - bbox[0]


def truncate_to_width(
    draw: ImageDraw.ImageDraw, text: str, font, max_width: int,
) -> str:
    """Trim text from the right, adding an ellipsis, until it fits."""
    if text_width(draw, text, font) <= max_width:
        return text
    while text and text_width(draw, text + ELLIPSIS, font) > max_width:
        text = text[:-1]
    return text + ELLIPSIS if text else ""


def wrap_text(
    draw: ImageDraw.ImageDraw,
    text: str,
    font,
    max_width: int,
    max_lines: int | None = None,
) -> list[str]:
    """Greedy word-wrap text into lines no wider than max_width pixels.

    Words wider than a whole line are truncated with an ellipsis. When
    max_lines is set, extra lines are dropped and the last kept line is
    marked with an ellipsis.
    """
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if text_width(draw, candidate, font) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = truncate_to_width(draw, word, font, max_width)
    if current:
        lines.append(current)

    if max_lines is not None and len(lines) > max_lines:
        kept = lines[:max_lines]
        kept[-1] = truncate_to_width(
            draw, kept[-1] + ELLIPSIS, font, max_width,
        )
        lines = kept
    return lines


def wrap_chars(text: str, max_chars: int, max_lines: int = 2) -> list[str]:
    """Word-wrap by character count (for subtitle text, not pixels)."""
    if len(text) <= max_chars:
        return [text]
    lines: list[str] = []
    current = ""
    for word in text.split(" "):
        if len(current) + len(word) + (1 if current else 0) <= max_chars:
            current = f"{current} {word}" if current else word
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines[:max_lines]


# ── Clip probing ───────────────────────────────────────────────────

def probe_duration(path: str | Path) -> float:
    """Probe a video's duration in seconds using moviepy.

    imageio_ffmpeg does not bundle ffprobe, so moviepy's reader is used.
    """
    with VideoFileClip(str(path)) as clip:
        return float(clip.duration)
