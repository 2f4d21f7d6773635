"""Translate a JobRequest into ffmpeg command-line arguments.

Three strategies share one request shape:

* ``preset`` - a closed set of fixed flag bundles (h264, h265, mp3, gif)
  with only crf, fps and width adjustable.
* ``visual`` - every knob is exposed; a per-preset default bundle fills in
  whatever the request leaves blank.
* ``raw`` - the user types the arguments; ``{input}`` and ``{output}`` are
  substituted with the request's paths.

Everything here is pure: no I/O and no process spawning.
"""

from __future__ import annotations

import math
import re
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Sequence

from .errors import MissingFieldError, TokenizeError, UnsupportedPresetError
from .ffmpeg import FFMPEG
from .models import JobMode, JobRequest, PresetDefaults

INPUT_PLACEHOLDER = "{input}"
OUTPUT_PLACEHOLDER = "{output}"

DEFAULT_PRESET = "h264"

PRESET_OUTPUT_EXT: Dict[str, str] = {
    "h264": ".mp4",
    "h265": ".mp4",
    "mp3": ".mp3",
    "gif": ".gif",
}

VISUAL_PRESET_DEFAULTS: Dict[str, PresetDefaults] = {
    "h264": PresetDefaults(
        video_codec="libx264",
        speed_preset="medium",
        crf=23,
        audio_codec="aac",
        audio_bitrate="192k",
    ),
    "h265": PresetDefaults(
        video_codec="libx265",
        speed_preset="medium",
        crf=28,
        audio_codec="aac",
        audio_bitrate="160k",
    ),
    "mp3": PresetDefaults(
        disable_video=True,
        audio_codec="libmp3lame",
        audio_quality="2",
    ),
    "gif": PresetDefaults(
        disable_audio=True,
        fps=12,
        scale_width=480,
        loop="0",
    ),
}

_SAFE_PREVIEW_ARG = re.compile(r"[A-Za-z0-9_./:=+,-]+")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first_text(*values: Any) -> str:
    for value in values:
        text = _text(value)
        if text:
            return text
    return ""


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def _round(value: float) -> int:
    # Halves round away from zero, unlike the builtin round()
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _round_positive(value: Optional[float]) -> Optional[int]:
    # Positive inputs may still round to 0; only non-positive ones count as absent
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return _round(value)


def _push_option(args: List[str], key: str, value: Any) -> None:
    text = _text(value)
    if text:
        args.extend([key, text])


def _push_trim_args(args: List[str], start_time: str, duration: str) -> None:
    if start_time:
        args.extend(["-ss", start_time])
    if duration:
        args.extend(["-t", duration])


def _require_paths(request: JobRequest) -> tuple[str, str]:
    input_path = _text(request.input_path)
    output_path = _text(request.output_path)
    if not input_path or not output_path:
        raise MissingFieldError(
            "inputPath and outputPath are required", "input_path", "output_path"
        )
    return input_path, output_path


def split_command_line(command_line: str) -> List[str]:
    """Split text into arguments using shell-like quoting.

    A backslash takes the next character literally, except inside single
    quotes where it is an ordinary character. Quotes are removed from the
    resulting tokens and empty tokens are dropped.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_single = False
    in_double = False
    escape_next = False

    for ch in command_line:
        if escape_next:
            current.append(ch)
            escape_next = False
            continue
        if ch == "\\" and not in_single:
            escape_next = True
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if ch.isspace() and not in_single and not in_double:
            if current:
                tokens.append("".join(current))
                current = []
            continue
        current.append(ch)

    if escape_next:
        raise TokenizeError("Invalid command line: trailing escape")
    if in_single or in_double:
        raise TokenizeError("Invalid command line: unclosed quote")

    if current:
        tokens.append("".join(current))
    return tokens


def build_raw_args(request: JobRequest) -> List[str]:
    raw_args = _text(request.raw_args)
    if not raw_args:
        raise MissingFieldError("rawArgs is required for raw mode", "raw_args")

    tokens = split_command_line(raw_args)
    input_path = _text(request.input_path)
    output_path = _text(request.output_path)

    if not input_path and any(INPUT_PLACEHOLDER in t for t in tokens):
        raise MissingFieldError(
            f"inputPath is required because raw args contain {INPUT_PLACEHOLDER}", "input_path"
        )
    if not output_path and any(OUTPUT_PLACEHOLDER in t for t in tokens):
        raise MissingFieldError(
            f"outputPath is required because raw args contain {OUTPUT_PLACEHOLDER}",
            "output_path",
        )

    return [
        t.replace(INPUT_PLACEHOLDER, input_path).replace(OUTPUT_PLACEHOLDER, output_path)
        for t in tokens
    ]


def build_preset_args(request: JobRequest) -> List[str]:
    preset = _text(request.preset) or DEFAULT_PRESET
    input_path, output_path = _require_paths(request)

    args: List[str] = ["-y"]
    _push_trim_args(args, _text(request.start_time), _text(request.duration))
    args.extend(["-i", input_path])

    crf = _finite(request.crf)
    if preset == "h264":
        crf_value = _round(crf) if crf is not None else 23
        args.extend(
            ["-c:v", "libx264", "-preset", "medium", "-crf", str(crf_value),
             "-c:a", "aac", "-b:a", "192k"]
        )
    elif preset == "h265":
        crf_value = _round(crf) if crf is not None else 28
        args.extend(
            ["-c:v", "libx265", "-preset", "medium", "-crf", str(crf_value),
             "-c:a", "aac", "-b:a", "160k"]
        )
    elif preset == "mp3":
        args.extend(["-vn", "-c:a", "libmp3lame", "-q:a", "2"])
    elif preset == "gif":
        fps = _round_positive(request.fps)
        if fps is None:
            fps = 12
        width = _round_positive(request.scale_width)
        if width is None:
            width = 480
        args.extend(["-vf", f"fps={fps},scale={width}:-1:flags=lanczos", "-loop", "0"])
    else:
        raise UnsupportedPresetError(preset)

    args.append(output_path)
    return args


def _visual_video_args(request: JobRequest, defaults: PresetDefaults) -> List[str]:
    video_codec = _first_text(request.video_codec, defaults.video_codec)
    if request.disable_video or defaults.disable_video or video_codec == "none":
        return ["-vn"]

    args: List[str] = []
    if video_codec and video_codec != "auto":
        args.extend(["-c:v", video_codec])

    # Speed preset and crf mean nothing for stream copy
    speed_preset = _first_text(request.speed_preset, defaults.speed_preset)
    if speed_preset and video_codec != "copy":
        args.extend(["-preset", speed_preset])

    crf = _finite(request.crf) if request.crf is not None else _finite(defaults.crf)
    if crf is not None and video_codec != "copy":
        args.extend(["-crf", str(_round(crf))])

    _push_option(args, "-b:v", request.video_bitrate)
    return args


def _visual_audio_args(request: JobRequest, defaults: PresetDefaults) -> List[str]:
    audio_codec = _first_text(request.audio_codec, defaults.audio_codec)
    if request.disable_audio or defaults.disable_audio or audio_codec == "none":
        return ["-an"]

    args: List[str] = []
    if audio_codec and audio_codec != "auto":
        args.extend(["-c:a", audio_codec])
    _push_option(args, "-b:a", _first_text(request.audio_bitrate, defaults.audio_bitrate))
    _push_option(args, "-q:a", _first_text(request.audio_quality, defaults.audio_quality))

    sample_rate = _round_positive(request.sample_rate)
    if sample_rate is not None:
        args.extend(["-ar", str(sample_rate)])
    channels = _round_positive(request.channels)
    if channels is not None:
        args.extend(["-ac", str(channels)])
    return args


def _visual_filter(request: JobRequest, defaults: PresetDefaults) -> str:
    filters: List[str] = []

    fps = request.fps if request.fps is not None else defaults.fps
    fps_value = _round_positive(fps)
    if fps_value is not None:
        filters.append(f"fps={fps_value}")

    width = request.scale_width if request.scale_width is not None else defaults.scale_width
    height = request.scale_height if request.scale_height is not None else defaults.scale_height
    if width is not None or height is not None:
        # -1 keeps the aspect ratio for the dimension left out
        w = _round_positive(width)
        h = _round_positive(height)
        filters.append(f"scale={-1 if w is None else w}:{-1 if h is None else h}:flags=lanczos")

    custom = _text(request.video_filter)
    if custom:
        filters.append(custom)
    return ",".join(filters)


def build_visual_args(request: JobRequest) -> List[str]:
    input_path, output_path = _require_paths(request)
    preset = _text(request.preset) or DEFAULT_PRESET
    defaults = VISUAL_PRESET_DEFAULTS.get(preset, VISUAL_PRESET_DEFAULTS[DEFAULT_PRESET])

    args: List[str] = []
    if request.overwrite is not False:
        args.append("-y")
    _push_trim_args(args, _text(request.start_time), _text(request.duration))
    args.extend(["-i", input_path])

    args.extend(_visual_video_args(request, defaults))
    args.extend(_visual_audio_args(request, defaults))

    video_filter = _visual_filter(request, defaults)
    if video_filter:
        args.extend(["-vf", video_filter])

    _push_option(args, "-loop", _first_text(request.loop, defaults.loop))
    _push_option(args, "-pix_fmt", request.pixel_format)
    if request.movflags_faststart:
        args.extend(["-movflags", "+faststart"])
    threads = _round_positive(request.threads)
    if threads is not None:
        args.extend(["-threads", str(threads)])
    _push_option(args, "-f", request.format)
    _push_option(args, "-map", request.map)

    for option in request.extra_args:
        if option.enabled is False:
            continue
        key = _text(option.key)
        if not key:
            continue
        args.append(key if key.startswith("-") else f"-{key}")
        value = _text(option.value)
        if value:
            args.append(value)

    args.append(output_path)
    return args


def build_ffmpeg_args(request: JobRequest) -> List[str]:
    """Build the ffmpeg arguments (without the executable) for ``request``."""
    mode = request.job_mode
    if mode is JobMode.RAW:
        return build_raw_args(request)
    if mode is JobMode.VISUAL:
        return build_visual_args(request)
    return build_preset_args(request)


def quote_command_arg(value: str) -> str:
    if not value:
        return '""'
    if _SAFE_PREVIEW_ARG.fullmatch(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_command_preview(binary_path: Optional[str], args: Sequence[str]) -> str:
    """Render a command the user can paste into a terminal."""
    binary = _text(binary_path) or FFMPEG
    return " ".join(quote_command_arg(arg) for arg in [binary, *args])


def suggest_output_path(input_path: Optional[str], preset: Optional[str]) -> str:
    """Default output next to the input: ``<stem>_converted<preset ext>``."""
    text = _text(input_path)
    if not text:
        return ""
    source = PurePath(text)
    stem = source.stem.strip() or "output"
    ext = PRESET_OUTPUT_EXT.get(_text(preset) or DEFAULT_PRESET, ".mp4")
    file_name = f"{stem}_converted{ext}"
    if str(source.parent) in ("", ".") or source.parent == source:
        return file_name
    return str(source.parent / file_name)
