"""Tests for text card rendering."""

from unittest import mock

import numpy as np
import pytest
from PIL import Image

from conftest import make_segment
from shortcompose import cards
from shortcompose.cards import (
    TEMPLATES,
    OverlayRenderer,
    _gradient,
    render_card_frame,
    scaled_margins,
)
from shortcompose.errors import RenderError
from shortcompose.models import CardSpec, Segment

RES = (270, 480)


def _keypoint_spec(**kw):
    defaults = dict(
        card_type="keypoint-1", template="keypoint", heading="1",
        body="Sunlight scatters off air molecules", tags=("physics", "light"),
    )
    defaults.update(kw)
    return CardSpec(**defaults)


class TestRenderCardFrame:
    def test_shape_and_mode(self):
        frame = render_card_frame(_keypoint_spec(), RES)
        assert frame.shape == (480, 270, 4)
        assert frame.dtype == np.uint8

    def test_deterministic(self):
        a = render_card_frame(_keypoint_spec(), RES)
        b = render_card_frame(_keypoint_spec(), RES)
        assert np.array_equal(a, b)

    def test_text_changes_pixels(self):
        a = render_card_frame(_keypoint_spec(), RES)
        b = render_card_frame(_keypoint_spec(body="Something else entirely"), RES)
        assert not np.array_equal(a, b)

    @pytest.mark.parametrize("template", sorted(TEMPLATES))
    def test_every_template_renders(self, template):
        spec = CardSpec(
            card_type=template, template=template,
            heading="Heading", body="Body text", button="Subscribe",
        )
        assert render_card_frame(spec, RES).shape == (480, 270, 4)

    def test_nothing_drawn_outside_margins(self):
        margins = {"top": 40, "bottom": 60, "left": 20, "right": 20}
        frame = render_card_frame(_keypoint_spec(), RES, margins)
        tpl = TEMPLATES["keypoint"]
        background = np.array(_gradient(*RES, *tpl["gradient"], alpha=255))
        w, h = RES
        outside = np.ones((h, w), dtype=bool)
        outside[40:h - 60, 20:w - 20] = False
        assert np.array_equal(frame[outside], background[outside])
        # and the margin box does hold the panel
        assert not np.array_equal(frame[~outside], background[~outside])

    def test_background_alpha(self):
        frame = render_card_frame(_keypoint_spec(), RES, background_alpha=0)
        assert frame[0, 0, 3] == 0

    def test_unknown_template(self):
        with pytest.raises(RenderError, match="Unknown card template"):
            render_card_frame(_keypoint_spec(template="fancy"), RES)

    def test_empty_card(self):
        with pytest.raises(RenderError, match="no text"):
            render_card_frame(_keypoint_spec(heading="", body="  "), RES)

    def test_margins_leave_no_room(self):
        margins = {"top": 0, "bottom": 0, "left": 140, "right": 140}
        with pytest.raises(RenderError, match="no room"):
            render_card_frame(_keypoint_spec(), RES, margins)


class TestScaledMargins:
    def test_defaults_at_reference_height(self):
        assert scaled_margins(1920) == {"top": 100, "bottom": 150, "left": 60, "right": 60}

    def test_override(self):
        assert scaled_margins(1920, {"top": 10})["top"] == 10


class TestOverlayRenderer:
    def test_card_specs_order(self):
        specs = OverlayRenderer(RES).card_specs(make_segment(0))
        assert [s.card_type for s in specs] == ["title", "keypoint-1", "keypoint-2", "cta"]
        assert specs[1].heading == "1"
        assert specs[1].tags == ("science", "light")
        assert specs[-1].button == "Subscribe"

    def test_optional_cards_skipped(self):
        seg = Segment(ordinal=0, title="Only title")
        specs = OverlayRenderer(RES).card_specs(seg)
        assert [s.card_type for s in specs] == ["title"]

    def test_tags_capped(self):
        seg = make_segment(0, keywords=("a", "b", "c", "d", "e"))
        specs = OverlayRenderer(RES).card_specs(seg)
        assert len(specs[1].tags) == 3

    def test_render_writes_png(self, tmp_path):
        renderer = OverlayRenderer(RES)
        seg = make_segment(4)
        asset = renderer.render(seg, renderer.card_specs(seg)[0], tmp_path)
        assert asset.success
        assert asset.card_type == "title"
        assert asset.text == "Segment 4"
        assert asset.image_path.name == "card-004-title.png"
        with Image.open(asset.image_path) as img:
            assert img.size == RES
            assert img.mode == "RGBA"

    def test_render_all(self, tmp_path):
        assets = OverlayRenderer(RES).render_all(make_segment(1), tmp_path)
        assert len(assets) == 4
        assert all(a.success for a in assets)
        assert all(a.segment_ordinal == 1 for a in assets)

    def test_failed_card_does_not_block_others(self, tmp_path):
        real = cards.render_card_frame

        def flaky(spec, *args, **kwargs):
            if spec.card_type == "keypoint-1":
                raise RenderError("font exploded")
            return real(spec, *args, **kwargs)

        with mock.patch("shortcompose.cards.render_card_frame", side_effect=flaky):
            assets = OverlayRenderer(RES).render_all(make_segment(0), tmp_path)

        by_type = {a.card_type: a for a in assets}
        assert not by_type["keypoint-1"].success
        assert by_type["keypoint-1"].error == "font exploded"
        assert by_type["keypoint-1"].image_path is None
        assert by_type["title"].success
        assert by_type["keypoint-2"].success
        assert by_type["cta"].success
