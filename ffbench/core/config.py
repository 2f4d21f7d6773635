from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from PySide6 import QtCore

from .models import ExtraArg, JobRequest

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_TEXT_FIELDS = {
    "mode", "ffmpeg_path", "ffprobe_path", "input_path", "output_path", "raw_args",
    "preset", "start_time", "duration", "speed_preset", "video_codec", "audio_codec",
    "pixel_format", "video_bitrate", "audio_bitrate", "audio_quality", "format",
    "map", "loop", "video_filter",
}
_NUMBER_FIELDS = {
    "crf", "fps", "scale_width", "scale_height", "sample_rate", "channels", "threads",
}
_BOOL_FIELDS = {
    "overwrite", "movflags_faststart", "disable_video", "disable_audio",
}


@dataclass
class AppSettings:
    """Serializable application settings."""

    ffmpeg_path: str = ""  # optional explicit path to ffmpeg executable
    ffprobe_path: str = ""  # optional explicit path to ffprobe executable
    preset: str = "h264"  # h264 | h265 | mp3 | gif
    log_level: str = "INFO"


class SettingsStore:
    """Stores settings in the platform's app data location as JSON."""

    def __init__(self, app_name: str = "FFBench", base_dir: Optional[Path] = None) -> None:
        if base_dir is None:
            base = QtCore.QStandardPaths.writableLocation(
                QtCore.QStandardPaths.AppLocalDataLocation
            )
            base_dir = Path(base) / app_name
        self._dir = Path(base_dir)
        self._file = self._dir / "settings.json"

    @property
    def path(self) -> Path:
        return self._file

    def load(self) -> AppSettings:
        if not self._file.exists():
            return AppSettings()
        try:
            data = json.loads(self._file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self._file, e)
            return AppSettings()
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self._file)
            return AppSettings()
        known = {f.name for f in dataclasses.fields(AppSettings)}
        return AppSettings(**{k: str(v) for k, v in data.items() if k in known and v is not None})

    def save(self, settings: AppSettings) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        payload = asdict(settings)
        self._file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def apply_environment(settings: AppSettings, environ: Mapping[str, str] = os.environ) -> AppSettings:
    """Let FFMPEG_PATH / FFPROBE_PATH / LOG_LEVEL override stored settings."""
    overrides: Dict[str, str] = {}
    for env_name, field_name in (
        ("FFMPEG_PATH", "ffmpeg_path"),
        ("FFPROBE_PATH", "ffprobe_path"),
        ("LOG_LEVEL", "log_level"),
    ):
        value = environ.get(env_name, "").strip()
        if value:
            overrides[field_name] = value
    return dataclasses.replace(settings, **overrides)


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        logger.debug("Ignoring non-numeric value %r", value)
        return None


def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return None


def _extra_args(value: Any) -> List[ExtraArg]:
    if not isinstance(value, list):
        return []
    result: List[ExtraArg] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        result.append(
            ExtraArg(
                key=_as_text(item.get("key")),
                value=_as_text(item.get("value")),
                enabled=_as_bool(item.get("enabled")),
            )
        )
    return result


def job_request_from_payload(
    payload: Mapping[str, Any], settings: Optional[AppSettings] = None
) -> JobRequest:
    """Build a JobRequest from a JSON-style mapping.

    Keys may be camelCase (``inputPath``) or snake_case (``input_path``).
    Unknown keys are ignored; blank strings become None. Tool paths not
    given in the payload come from ``settings``.
    """
    values: Dict[str, Any] = {}
    for raw_key, value in payload.items():
        key = _snake_case(str(raw_key))
        if key in _TEXT_FIELDS:
            values[key] = _as_text(value)
        elif key in _NUMBER_FIELDS:
            values[key] = _as_number(value)
        elif key in _BOOL_FIELDS:
            values[key] = _as_bool(value)
        elif key == "extra_args":
            values[key] = _extra_args(value)

    request = JobRequest(**values)
    if settings is not None:
        if not request.ffmpeg_path:
            request.ffmpeg_path = settings.ffmpeg_path or None
        if not request.ffprobe_path:
            request.ffprobe_path = settings.ffprobe_path or None
        if not request.preset:
            request.preset = settings.preset or None
    return request
