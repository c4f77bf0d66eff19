"""Text card rendering for segment overlays.

Every segment gets a title card, one card per key point, and a
call-to-action card. A card is described by a CardSpec and rendered to a
full-frame RGBA raster by render_card_frame, which is deterministic:
the same spec at the same resolution always yields identical pixels.

Card layout (vertical frame):
  ┌───────────────────────┐
  │ gradient background   │  ← template colors
  │  ┌─────────────────┐  │  ← margins (top/left/right/bottom)
  │  │     heading     │  │  ← title / point number
  │  │   body lines    │  │  ← word-wrapped to the panel width
  │  │  [tag] [tag]    │  │  ← keyword pills or CTA button
  │  └─────────────────┘  │
  └───────────────────────┘

Everything drawn stays inside the margin box.
"""

from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw

from .common import load_font, parse_hex_color, scale_px, text_width, wrap_text
from .errors import RenderError
from .models import CardSpec, OverlayAsset, Segment


# ── Templates ────────────────────────────────────────────────────
# Font sizes are (value_at_1920, floor) pairs, scaled with frame height.

TEMPLATES = {
    "title": {
        "gradient": ("#667EEA", "#764BA2"),
        "heading_font": (48, 14),
        "body_font": (32, 10),
        "heading_color": "#FFFFFF",
        "body_color": "#FFD700",
    },
    "keypoint": {
        "gradient": ("#F093FB", "#F5576C"),
        "heading_font": (72, 20),
        "body_font": (28, 10),
        "heading_color": "#00D4FF",
        "body_color": "#E0E0E0",
    },
    "cta": {
        "gradient": ("#4FACFE", "#00F2FE"),
        "heading_font": (48, 14),
        "body_font": (28, 10),
        "heading_color": "#FFFFFF",
        "body_color": "#FFFFFF",
    },
}

ACCENT = "#00D4FF"
PANEL_RGBA = (0, 0, 0, 204)          # 80% black content panel

DEFAULT_MARGINS = {"top": 100, "bottom": 150, "left": 60, "right": 60}

_REF_PANEL_PADDING = (40, 8)
_REF_PANEL_RADIUS = (20, 4)
_REF_BLOCK_GAP = (20, 4)
_REF_LINE_SPACING = (10, 2)
_REF_TAG_FONT = (18, 8)
_REF_TAG_PAD_X = (16, 4)
_REF_TAG_PAD_Y = (8, 2)
_REF_TAG_GAP = (10, 3)
_REF_BUTTON_FONT = (24, 9)
_REF_BUTTON_PAD_X = (40, 8)
_REF_BUTTON_PAD_Y = (20, 4)

MAX_HEADING_LINES = 3
MAX_TAGS = 3


def scaled_margins(h: int, margins: dict[str, int] | None = None) -> dict[str, int]:
    """Default margins scaled to frame height, with explicit overrides."""
    result = {k: scale_px((v, 0), h) for k, v in DEFAULT_MARGINS.items()}
    if margins:
        result.update(margins)
    return result


# ── Raster rendering ─────────────────────────────────────────────


def _gradient(w: int, h: int, start: str, end: str, alpha: int) -> Image.Image:
    """Diagonal (top-left to bottom-right) two-color gradient."""
    c0 = np.array(parse_hex_color(start), dtype=np.float32)
    c1 = np.array(parse_hex_color(end), dtype=np.float32)
    xs = np.linspace(0.0, 1.0, w, dtype=np.float32)[None, :]
    ys = np.linspace(0.0, 1.0, h, dtype=np.float32)[:, None]
    t = ((xs + ys) / 2.0)[:, :, None]
    rgb = np.rint(c0 * (1.0 - t) + c1 * t).astype(np.uint8)
    a = np.full((h, w, 1), alpha, dtype=np.uint8)
    return Image.fromarray(np.concatenate([rgb, a], axis=2), "RGBA")


def _line_height(draw: ImageDraw.ImageDraw, font) -> int:
    bbox = draw.textbbox((0, 0), "Ag", font=font)
    return bbox[3] - bbox[1]


def _fit_pills(draw, labels, font, pad_x, gap, max_w) -> list[tuple[str, int]]:
    """Return (label, pill_width) for as many pills as fit on one row."""
    pills = []
    row_w = 0
    for label in labels:
        pill_w = text_width(draw, label, font) + 2 * pad_x
        needed = pill_w if not pills else row_w + gap + pill_w
        if needed > max_w:
            break
        pills.append((label, pill_w))
        row_w = needed
    return pills


def render_card_frame(
    spec: CardSpec,
    resolution: tuple[int, int],
    margins: dict[str, int] | None = None,
    background_alpha: int = 255,
) -> np.ndarray:
    """Render a card spec to a full-frame RGBA array of shape (h, w, 4).

    Raises:
        RenderError: Unknown template, empty card, or content that
            cannot fit inside the margins.
    """
    if spec.template not in TEMPLATES:
        raise RenderError(
            f"Unknown card template '{spec.template}'. Valid: {sorted(TEMPLATES)}"
        )
    if not (spec.heading.strip() or spec.body.strip()):
        raise RenderError(f"Card {spec.card_type} has no text")

    tpl = TEMPLATES[spec.template]
    w, h = resolution
    m = scaled_margins(h, margins)
    pad = scale_px(_REF_PANEL_PADDING, h)
    content_w = w - m["left"] - m["right"] - 2 * pad
    avail_h = h - m["top"] - m["bottom"]
    if content_w <= 0 or avail_h <= 2 * pad:
        raise RenderError(f"Margins {m} leave no room on a {w}x{h} card")

    img = _gradient(w, h, *tpl["gradient"], alpha=background_alpha)
    layer = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    heading_font = load_font(scale_px(tpl["heading_font"], h))
    body_font = load_font(scale_px(tpl["body_font"], h))
    tag_font = load_font(scale_px(_REF_TAG_FONT, h))
    button_font = load_font(scale_px(_REF_BUTTON_FONT, h))
    block_gap = scale_px(_REF_BLOCK_GAP, h)
    spacing = scale_px(_REF_LINE_SPACING, h)

    # Fixed-size blocks first, so the body gets whatever height remains.
    heading_lines = wrap_text(
        draw, spec.heading, heading_font, content_w, MAX_HEADING_LINES,
    ) if spec.heading.strip() else []
    heading_lh = _line_height(draw, heading_font)
    heading_h = len(heading_lines) * (heading_lh + spacing) - spacing if heading_lines else 0

    tag_pad_x = scale_px(_REF_TAG_PAD_X, h)
    tag_pad_y = scale_px(_REF_TAG_PAD_Y, h)
    tag_gap = scale_px(_REF_TAG_GAP, h)
    pills = _fit_pills(draw, spec.tags[:MAX_TAGS], tag_font, tag_pad_x, tag_gap, content_w)
    tag_h = _line_height(draw, tag_font) + 2 * tag_pad_y if pills else 0

    button_pad_x = scale_px(_REF_BUTTON_PAD_X, h)
    button_pad_y = scale_px(_REF_BUTTON_PAD_Y, h)
    button = None
    if spec.button:
        label = wrap_text(draw, spec.button, button_font, content_w - 2 * button_pad_x, 1)
        if label:
            button = (label[0], text_width(draw, label[0], button_font) + 2 * button_pad_x)
    button_h = _line_height(draw, button_font) + 2 * button_pad_y if button else 0

    fixed_blocks = [x for x in (heading_h, tag_h, button_h) if x]
    body_lh = _line_height(draw, body_font)
    max_content_h = avail_h - 2 * pad
    body_lines: list[str] = []
    if spec.body.strip():
        used = sum(fixed_blocks) + block_gap * len(fixed_blocks)
        max_body_lines = (max_content_h - used + spacing) // (body_lh + spacing)
        if max_body_lines < 1:
            raise RenderError(f"Card {spec.card_type}: body does not fit inside margins")
        body_lines = wrap_text(draw, spec.body, body_font, content_w, max_body_lines)
    body_h = len(body_lines) * (body_lh + spacing) - spacing if body_lines else 0

    blocks = [x for x in (heading_h, body_h, tag_h, button_h) if x]
    total_h = sum(blocks) + block_gap * (len(blocks) - 1)
    if total_h > max_content_h:
        raise RenderError(f"Card {spec.card_type}: content does not fit inside margins")

    # Panel: full margin-box width, content height, vertically centered.
    panel_h = total_h + 2 * pad
    x0 = m["left"]
    x1 = w - m["right"]
    y0 = m["top"] + (avail_h - panel_h) // 2
    draw.rounded_rectangle(
        [(x0, y0), (x1 - 1, y0 + panel_h - 1)],
        radius=scale_px(_REF_PANEL_RADIUS, h),
        fill=PANEL_RGBA,
    )

    cx = (x0 + x1) // 2
    y = y0 + pad

    def _centered_lines(lines, font, lh, color):
        nonlocal y
        for line in lines:
            lw = text_width(draw, line, font)
            bbox = draw.textbbox((0, 0), line, font=font)
            draw.text((cx - lw // 2 - bbox[0], y - bbox[1]), line, fill=color, font=font)
            y += lh + spacing
        y += block_gap - spacing

    heading_rgb = (*parse_hex_color(tpl["heading_color"]), 255)
    body_rgb = (*parse_hex_color(tpl["body_color"]), 255)
    accent_rgb = (*parse_hex_color(ACCENT), 255)

    if heading_lines:
        _centered_lines(heading_lines, heading_font, heading_lh, heading_rgb)
    if body_lines:
        _centered_lines(body_lines, body_font, body_lh, body_rgb)

    if pills:
        row_w = sum(pw for _, pw in pills) + tag_gap * (len(pills) - 1)
        px = cx - row_w // 2
        for label, pill_w in pills:
            draw.rounded_rectangle(
                [(px, y), (px + pill_w - 1, y + tag_h - 1)],
                radius=tag_h // 2, fill=accent_rgb,
            )
            bbox = draw.textbbox((0, 0), label, font=tag_font)
            draw.text(
                (px + tag_pad_x - bbox[0], y + tag_pad_y - bbox[1]),
                label, fill=(255, 255, 255, 255), font=tag_font,
            )
            px += pill_w + tag_gap
        y += tag_h + block_gap

    if button:
        label, button_w = button
        bx = cx - button_w // 2
        draw.rounded_rectangle(
            [(bx, y), (bx + button_w - 1, y + button_h - 1)],
            radius=button_h // 2, fill=accent_rgb,
        )
        bbox = draw.textbbox((0, 0), label, font=button_font)
        draw.text(
            (bx + button_pad_x - bbox[0], y + button_pad_y - bbox[1]),
            label, fill=(255, 255, 255, 255), font=button_font,
        )

    img.alpha_composite(layer)
    return np.array(img)


# ── Renderer ─────────────────────────────────────────────────────


class OverlayRenderer:
    """Render every card of a segment to PNG files, one attempt per card."""

    def __init__(
        self,
        resolution: tuple[int, int] = (1080, 1920),
        margins: dict[str, int] | None = None,
        tagline: str = "",
        button_label: str = "Subscribe",
        background_alpha: int = 255,
    ):
        self.resolution = resolution
        self.margins = margins
        self.tagline = tagline
        self.button_label = button_label
        self.background_alpha = background_alpha

    def card_specs(self, segment: Segment) -> list[CardSpec]:
        """Title card, one card per key point, then the call to action."""
        specs = []
        if segment.title.strip():
            specs.append(CardSpec(
                card_type="title", template="title",
                heading=segment.title, body=self.tagline,
            ))
        for i, point in enumerate(segment.key_points, start=1):
            specs.append(CardSpec(
                card_type=f"keypoint-{i}", template="keypoint",
                heading=str(i), body=point,
                tags=tuple(segment.keywords[:MAX_TAGS]),
            ))
        if segment.call_to_action.strip():
            specs.append(CardSpec(
                card_type="cta", template="cta",
                body=segment.call_to_action, button=self.button_label,
            ))
        return specs

    def card_path(self, out_dir: Path, segment: Segment, spec: CardSpec) -> Path:
        return Path(out_dir) / f"card-{segment.ordinal:03d}-{spec.card_type}.png"

    def render(self, segment: Segment, spec: CardSpec, out_dir: Path) -> OverlayAsset:
        """Render one card. Failures come back as an unsuccessful asset."""
        text = spec.heading if spec.template == "title" else spec.body
        try:
            frame = render_card_frame(
                spec, self.resolution, self.margins, self.background_alpha,
            )
            path = self.card_path(out_dir, segment, spec)
            path.parent.mkdir(parents=True, exist_ok=True)
            Image.fromarray(frame, "RGBA").save(path, format="PNG")
        except (RenderError, OSError, ValueError) as exc:
            return OverlayAsset(
                segment_ordinal=segment.ordinal,
                card_type=spec.card_type,
                text=text,
                success=False,
                error=str(exc),
            )
        return OverlayAsset(
            segment_ordinal=segment.ordinal,
            card_type=spec.card_type,
            text=text,
            image_path=path,
        )

    def render_all(self, segment: Segment, out_dir: Path) -> list[OverlayAsset]:
        """Render every card of a segment; a failed card never blocks the rest."""
        assets = []
        for spec in self.card_specs(segment):
            asset = self.render(segment, spec, out_dir)
            if asset.success:
                print(f"  CARD   segment {segment.ordinal} {spec.card_type} -> {asset.image_path.name}", flush=True)
            else:
                print(f"  FAIL   segment {segment.ordinal} {spec.card_type}: {asset.error}", flush=True)
            assets.append(asset)
        return assets
