"""Tests for job manifest loading and validation."""

import textwrap

import pytest

from shortcompose.generation import DEFAULT_TEXT_TO_VIDEO_MODEL
from shortcompose.job_manifest import (
    is_remote,
    load_job_manifest,
    srt_seconds,
    validate_assets,
)


def _write(tmp_path, text, name="job.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text))
    return path


MINIMAL = """
segments:
  - title: "Why the sky is blue"
    hook: "Ever wondered?"
    key_points: ["Sunlight scatters", "Blue scatters most"]
    call_to_action: "Follow for more"
    keywords: [physics, light]
"""


class TestDefaults:
    def test_minimal_manifest(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, MINIMAL))
        assert config["video"] == {"resolution": (1080, 1920), "fps": 24, "bitrate": "8M"}
        gen = config["generation"]
        assert gen["text_to_video_model"] == DEFAULT_TEXT_TO_VIDEO_MODEL
        assert gen["max_poll_attempts"] == 60
        assert gen["poll_interval"] == 2.0
        assert gen["retries"] == 2
        assert gen["retry_backoff"] == 5.0
        assert config["overlay"]["window"] == 8.0
        assert config["overlay"]["window_mode"] == "fixed"
        assert config["subtitles"]["color"] == (255, 255, 255)
        assert config["audio"] == {"bgm": None, "volume_db": -15.0}
        assert config["output"]["prefix"] == "shorts"
        assert config["output"]["scratch_dir"].endswith(".scratch")
        assert config["cues"] == []

    def test_segment_fields(self, tmp_path):
        (seg,) = load_job_manifest(_write(tmp_path, MINIMAL))["segments"]
        assert seg.ordinal == 0
        assert seg.key_points == ("Sunlight scatters", "Blue scatters most")
        assert seg.keywords == ("physics", "light")
        assert seg.duration == 8.0
        assert seg.seed_image_url is None


class TestSections:
    def test_overrides_and_path_vars(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, """
            paths:
              assets: /data/assets
            video:
              resolution: [720, 1280]
              fps: 30
            generation:
              retries: 0
              concurrency: 3
            subtitles:
              color: "#FFD700"
            audio:
              bgm: "${assets}/music.mp3"
              volume_db: -20
            output:
              dir: "${assets}/out"
            segments:
              - title: A
                seed_image: "${assets}/a.png"
                duration: 5
        """))
        assert config["video"]["resolution"] == (720, 1280)
        assert config["generation"]["retries"] == 0
        assert config["generation"]["concurrency"] == 3
        assert config["subtitles"]["color"] == (255, 215, 0)
        assert config["audio"]["bgm"] == "/data/assets/music.mp3"
        assert config["output"]["dir"] == "/data/assets/out"
        assert config["segments"][0].seed_image_url == "/data/assets/a.png"
        assert config["segments"][0].duration == 5.0

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(tmp_path, """
            video:
              framerate: 30
            segments:
              - title: A
        """)
        with pytest.raises(ValueError, match="unknown video field"):
            load_job_manifest(path)

    @pytest.mark.parametrize("section,body,match", [
        ("video", "resolution: [1081, 1920]", "even"),
        ("video", "fps: 0", "video.fps"),
        ("generation", "max_poll_attempts: 0", "max_poll_attempts"),
        ("generation", "retries: -1", "retries"),
        ("overlay", "window: 0", "overlay.window"),
        ("overlay", "window_mode: random", "window_mode"),
        ("subtitles", "background_alpha: 2", "background_alpha"),
        ("subtitles", "color: '#FFF'", "Invalid hex color"),
    ])
    def test_invalid_values(self, tmp_path, section, body, match):
        path = _write(tmp_path, f"{section}:\n  {body}\nsegments:\n  - title: A\n")
        with pytest.raises(ValueError, match=match):
            load_job_manifest(path)


class TestSegments:
    def test_missing_segments(self, tmp_path):
        with pytest.raises(ValueError, match="segments"):
            load_job_manifest(_write(tmp_path, "video:\n  fps: 24\n"))

    def test_empty_segments(self, tmp_path):
        with pytest.raises(ValueError, match="non-empty"):
            load_job_manifest(_write(tmp_path, "segments: []\n"))

    def test_missing_title(self, tmp_path):
        with pytest.raises(ValueError, match="Segment 1: missing required field 'title'"):
            load_job_manifest(_write(tmp_path, "segments:\n  - title: A\n  - hook: B\n"))

    def test_explicit_ordinals_sorted(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, """
            segments:
              - {title: B, ordinal: 5}
              - {title: A, ordinal: 2}
        """))
        assert [(s.ordinal, s.title) for s in config["segments"]] == [(2, "A"), (5, "B")]

    def test_duplicate_ordinal(self, tmp_path):
        with pytest.raises(ValueError, match="Duplicate segment ordinal"):
            load_job_manifest(_write(tmp_path, """
                segments:
                  - {title: A, ordinal: 1}
                  - {title: B, ordinal: 1}
            """))

    def test_key_points_must_be_list(self, tmp_path):
        with pytest.raises(ValueError, match="key_points"):
            load_job_manifest(_write(tmp_path, """
                segments:
                  - {title: A, key_points: "not a list"}
            """))


class TestCues:
    def test_cues_numbered(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, MINIMAL + """
cues:
  - {start: "00:00:00,000", end: "00:00:02,500", text: "Ever wondered?"}
  - {start: "00:00:02,500", end: "00:00:05,000", text: "Sunlight scatters"}
"""))
        assert [c.id for c in config["cues"]] == [1, 2]
        assert config["cues"][1].start == "00:00:02,500"

    def test_bad_timestamp(self, tmp_path):
        path = _write(tmp_path, MINIMAL + """
cues:
  - {start: "0:00:00.000", end: "00:00:02,500", text: "x"}
""")
        with pytest.raises(ValueError, match="Invalid SRT timestamp"):
            load_job_manifest(path)

    def test_start_after_end(self, tmp_path):
        path = _write(tmp_path, MINIMAL + """
cues:
  - {start: "00:00:03,000", end: "00:00:02,500", text: "x"}
""")
        with pytest.raises(ValueError, match="must be before end"):
            load_job_manifest(path)

    def test_srt_seconds(self):
        assert srt_seconds("01:02:03,450") == pytest.approx(3723.45)


class TestValidateAssets:
    def test_missing_seed_image(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, f"""
            segments:
              - title: A
                seed_image: "{tmp_path}/missing.png"
        """))
        with pytest.raises(FileNotFoundError, match="seed image not found"):
            validate_assets(config)

    def test_remote_seed_image_not_checked(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, """
            segments:
              - title: A
                seed_image: "https://img.example/seed.png"
        """))
        assert validate_assets(config) == []

    def test_missing_bgm_is_warning(self, tmp_path):
        config = load_job_manifest(_write(tmp_path, f"""
            audio:
              bgm: "{tmp_path}/nope.mp3"
            segments:
              - title: A
        """))
        (warning,) = validate_assets(config)
        assert "mixing skipped" in warning

    def test_is_remote(self):
        assert is_remote("https://x/y.png")
        assert is_remote("data:image/png;base64,AAAA")
        assert not is_remote("/local/seed.png")
