"""Tests for settings persistence and job payload conversion."""

import json

from ffbench.core.config import (
    AppSettings,
    SettingsStore,
    apply_environment,
    job_request_from_payload,
)
from ffbench.core.models import ExtraArg, JobMode


class TestSettingsStore:
    def test_defaults_when_missing(self, tmp_path):
        assert SettingsStore(base_dir=tmp_path).load() == AppSettings()

    def test_round_trip(self, tmp_path):
        store = SettingsStore(base_dir=tmp_path / "nested")
        settings = AppSettings(ffmpeg_path="/opt/ff/ffmpeg", preset="gif", log_level="DEBUG")
        store.save(settings)
        assert store.path.exists()
        assert store.load() == settings

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")
        assert SettingsStore(base_dir=tmp_path).load() == AppSettings()

    def test_unknown_keys_are_ignored(self, tmp_path):
        payload = {"ffprobe_path": "/x/ffprobe", "theme": "dark"}
        (tmp_path / "settings.json").write_text(json.dumps(payload), encoding="utf-8")
        settings = SettingsStore(base_dir=tmp_path).load()
        assert settings.ffprobe_path == "/x/ffprobe"
        assert settings.preset == "h264"


def test_environment_overrides():
    settings = apply_environment(
        AppSettings(ffmpeg_path="/stored/ffmpeg"),
        {"FFMPEG_PATH": "/env/ffmpeg", "FFPROBE_PATH": "  ", "LOG_LEVEL": "debug"},
    )
    assert settings.ffmpeg_path == "/env/ffmpeg"
    assert settings.ffprobe_path == ""
    assert settings.log_level == "debug"


class TestJobRequestFromPayload:
    def test_camel_case_payload(self):
        request = job_request_from_payload(
            {
                "mode": "visual",
                "inputPath": " /in/a.mov ",
                "outputPath": "/out/a.mp4",
                "crf": "21",
                "scaleWidth": 1280,
                "movflagsFaststart": True,
                "disableAudio": "false",
                "map": "0:v:0",
                "loop": 0,
                "extraArgs": [
                    {"key": "tune", "value": "film"},
                    {"key": "shortest", "enabled": False},
                    "junk",
                ],
            }
        )
        assert request.job_mode is JobMode.VISUAL
        assert request.input_path == "/in/a.mov"
        assert request.crf == 21.0
        assert request.scale_width == 1280.0
        assert request.movflags_faststart is True
        assert request.disable_audio is False
        assert request.map == "0:v:0"
        assert request.loop == "0"
        assert request.extra_args == [
            ExtraArg(key="tune", value="film"),
            ExtraArg(key="shortest", enabled=False),
        ]

    def test_snake_case_and_blank_values(self):
        request = job_request_from_payload(
            {"raw_args": "  ", "start_time": "", "fps": "fast", "threads": None, "bogus": 1}
        )
        assert request.raw_args is None
        assert request.start_time is None
        assert request.fps is None
        assert request.threads is None
        assert request.job_mode is JobMode.PRESET

    def test_settings_fill_missing_tool_paths(self):
        settings = AppSettings(ffmpeg_path="/s/ffmpeg", ffprobe_path="/s/ffprobe", preset="mp3")
        request = job_request_from_payload({"ffmpegPath": "/p/ffmpeg"}, settings)
        assert request.ffmpeg_path == "/p/ffmpeg"
        assert request.ffprobe_path == "/s/ffprobe"
        assert request.preset == "mp3"
