"""Tests for the ffbench command line."""

import json
import sys

import pytest

from ffbench import main as cli
from ffbench.core.models import ProbeInfo, ProbeStream


@pytest.fixture
def settings_dir(tmp_path, monkeypatch):
    for name in ("FFMPEG_PATH", "FFPROBE_PATH", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "settings"
    path.mkdir()
    return path


def write_job(tmp_path, payload):
    job = tmp_path / "job.json"
    job.write_text(json.dumps(payload), encoding="utf-8")
    return str(job)


def test_preview_prints_command(tmp_path, settings_dir, capsys):
    job = write_job(tmp_path, {"preset": "mp3", "inputPath": "/a/in.wav", "outputPath": "/a/out.mp3"})
    assert cli.main(["--settings", str(settings_dir), "preview", job]) == cli.EXIT_OK
    out = capsys.readouterr().out.strip()
    assert out.endswith("-y -i /a/in.wav -vn -c:a libmp3lame -q:a 2 /a/out.mp3")


def test_preview_json(tmp_path, settings_dir, capsys):
    job = write_job(tmp_path, {"mode": "raw", "rawArgs": "-i {input} -f null -"})
    assert cli.main(["--settings", str(settings_dir), "preview", "--json", job]) == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["args"] == ["-i", "{input}", "-f", "null", "-"]
    assert data["command"] == 'ffmpeg -i "{input}" -f null -'


def test_preview_build_error(tmp_path, settings_dir):
    job = write_job(tmp_path, {"preset": "vp9", "inputPath": "a", "outputPath": "b"})
    assert cli.main(["--settings", str(settings_dir), "preview", job]) == cli.EXIT_USAGE


def test_bad_job_file(tmp_path, settings_dir):
    job = tmp_path / "job.json"
    job.write_text("[1, 2]", encoding="utf-8")
    assert cli.main(["--settings", str(settings_dir), "preview", str(job)]) == cli.EXIT_USAGE


def test_suggest_uses_settings_preset(settings_dir, capsys):
    (settings_dir / "settings.json").write_text(json.dumps({"preset": "gif"}), encoding="utf-8")
    assert cli.main(["--settings", str(settings_dir), "suggest", "/a/clip.mov"]) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "/a/clip_converted.gif"


def test_run_completes(tmp_path, settings_dir):
    job = write_job(
        tmp_path,
        {"mode": "raw", "ffmpegPath": sys.executable, "rawArgs": "-c pass", "duration": "1"},
    )
    assert cli.main(["--settings", str(settings_dir), "run", "-q", job]) == cli.EXIT_OK


def test_run_failure_exit_code(tmp_path, settings_dir):
    job = write_job(
        tmp_path,
        {"mode": "raw", "ffmpegPath": sys.executable, "rawArgs": "-c 'import sys; sys.exit(2)'", "duration": "1"},
    )
    assert cli.main(["--settings", str(settings_dir), "run", job]) == cli.EXIT_FAILED


def test_settings_set_persists_and_prints(settings_dir, capsys):
    argv = ["--settings", str(settings_dir), "settings", "--set", "preset=mp3", "--set", "ffmpeg-path=/opt/ff/ffmpeg"]
    assert cli.main(argv) == cli.EXIT_OK
    printed = json.loads(capsys.readouterr().out)
    assert printed["preset"] == "mp3"
    stored = json.loads((settings_dir / "settings.json").read_text(encoding="utf-8"))
    assert stored["ffmpeg_path"] == "/opt/ff/ffmpeg"

    assert cli.main(["--settings", str(settings_dir), "suggest", "/a/song.wav"]) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "/a/song_converted.mp3"


def test_settings_show_ignores_environment(settings_dir, capsys, monkeypatch):
    monkeypatch.setenv("FFMPEG_PATH", "/env/ffmpeg")
    assert cli.main(["--settings", str(settings_dir), "settings"]) == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["ffmpeg_path"] == ""
    assert not (settings_dir / "settings.json").exists()


def test_settings_rejects_unknown_key(settings_dir):
    argv = ["--settings", str(settings_dir), "settings", "--set", "colour=blue"]
    assert cli.main(argv) == cli.EXIT_USAGE
    assert not (settings_dir / "settings.json").exists()


def test_probe_reports_stream_kinds(settings_dir, capsys, monkeypatch):
    info = ProbeInfo(
        file="/a/clip.mov",
        format_name="mov,mp4",
        duration_sec=3.5,
        streams=[ProbeStream(index=0, codec_type="audio", codec_name="aac")],
    )
    seen = {}

    def fake_probe(binary, path, configured=""):
        seen.update(binary=binary, path=path)
        return info

    monkeypatch.setattr(cli, "probe_media", fake_probe)
    argv = ["--settings", str(settings_dir), "probe", "--ffprobe", "/opt/ff/ffprobe", "/a/clip.mov"]
    assert cli.main(argv) == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert seen == {"binary": "/opt/ff/ffprobe", "path": "/a/clip.mov"}
    assert data["duration_sec"] == 3.5
    assert data["has_audio"] is True
    assert data["has_video"] is False
