from __future__ import annotations

import json
import logging
import math
import subprocess
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from .errors import ExecutableNotFoundError, FFBenchError, SpawnError, ToolError
from .models import JobRequest, ProbeInfo, ProbeStream, ProgressSample

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"

# Checked in order when the configured tool is a bare program name
SEARCH_DIRS = ["/opt/homebrew/bin", "/usr/local/bin"]

TIME_MARKER = "time="


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_explicit_path(path: str) -> bool:
    return "/" in path or "\\" in path or path.startswith(".")


def resolve_executable(configured: Optional[str], tool_name: str = FFMPEG) -> str:
    """Return the executable to launch for ``tool_name``.

    An explicit path is used as-is. A bare name is looked up in
    ``SEARCH_DIRS`` and, failing that, handed to the OS unchanged.
    """
    name = FFPROBE if tool_name == FFPROBE else FFMPEG
    path = _text(configured) or name
    if is_explicit_path(path):
        return path
    for base in SEARCH_DIRS:
        cand = Path(base) / name
        if cand.exists():
            return str(cand)
    return path


def format_spawn_error(error: OSError, tool_name: str, configured_path: str) -> ToolError:
    name = FFPROBE if tool_name == FFPROBE else FFMPEG
    if isinstance(error, FileNotFoundError):
        if sys.platform == "win32":
            example = f"C:\\ffmpeg\\bin\\{name}.exe"
        else:
            example = f"/opt/homebrew/bin/{name}"
        message = (
            f"{name} executable not found. Install FFmpeg (e.g. brew install ffmpeg) "
            f"or enter the full path to {name} (for example {example}). "
            f"Current setting: {configured_path or '(not set)'}"
        )
        return ExecutableNotFoundError(message, configured_path)
    return SpawnError(str(error))


def run_command(
    binary: str, args: Sequence[str], tool_name: str, configured_path: str
) -> Tuple[str, str]:
    """Run a tool to completion and return ``(stdout, stderr)``."""
    try:
        proc = subprocess.run(
            [binary, *args],
            stdin=subprocess.DEVNULL,
            capture_output=True,
        )
    except OSError as e:
        raise format_spawn_error(e, tool_name, configured_path) from e

    stdout = proc.stdout.decode("utf-8", errors="replace")
    stderr = proc.stderr.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        message = stderr.strip()
        if message:
            raise ToolError(message)
        raise ToolError(f"{tool_name} exited with code {proc.returncode}")
    return stdout, stderr


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _to_uint(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None or not math.isfinite(number) or number < 0:
        return None
    return int(round(number))


def probe_media(ffprobe_path: str, input_path: str, configured_path: str = "") -> ProbeInfo:
    """Probe a media file using ffprobe to fetch duration and stream info."""
    args = [
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        input_path,
    ]
    out, _ = run_command(ffprobe_path, args, FFPROBE, configured_path)
    try:
        data = json.loads(out)
    except json.JSONDecodeError as e:
        raise ToolError("ffprobe returned invalid JSON output") from e
    if not isinstance(data, dict):
        raise ToolError("ffprobe returned invalid JSON output")

    fmt = data.get("format") or {}
    streams: List[ProbeStream] = []
    for s in data.get("streams") or []:
        index = s.get("index")
        streams.append(
            ProbeStream(
                index=index if isinstance(index, int) and index >= 0 else None,
                codec_type=s.get("codec_type"),
                codec_name=s.get("codec_name"),
                width=_to_uint(s.get("width")),
                height=_to_uint(s.get("height")),
                sample_rate=_to_uint(s.get("sample_rate")),
                channels=_to_uint(s.get("channels")),
                bit_rate=_to_float(s.get("bit_rate")),
            )
        )

    return ProbeInfo(
        file=input_path,
        format_name=fmt.get("format_name") or "",
        duration_sec=_to_float(fmt.get("duration")),
        size_bytes=_to_float(fmt.get("size")),
        bit_rate=_to_float(fmt.get("bit_rate")),
        streams=streams,
    )


def probe_duration(request: JobRequest) -> Optional[float]:
    """Total input duration in seconds, or None when ffprobe can't tell."""
    input_path = _text(request.input_path)
    if not input_path:
        return None
    configured = _text(request.ffprobe_path)
    try:
        info = probe_media(resolve_executable(configured, FFPROBE), input_path, configured)
    except FFBenchError as e:
        logger.warning("Could not probe duration of %s: %s", input_path, e)
        return None
    return info.duration_sec


def parse_ffmpeg_time_to_seconds(value: str) -> Optional[float]:
    """Parse ``H:MM:SS(.ms)`` or plain seconds to a float."""
    text = value.strip()
    parts = text.split(":")
    try:
        if len(parts) == 3:
            return float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])
        return float(text)
    except ValueError:
        return None


def parse_time_input(value: Optional[str]) -> Optional[float]:
    text = _text(value)
    if not text:
        return None
    return parse_ffmpeg_time_to_seconds(text)


def parse_progress(line: str, duration_sec: Optional[float]) -> Optional[ProgressSample]:
    """Extract the ``time=`` position from one ffmpeg stderr line.

    Most lines carry no timestamp; those return None.
    """
    index = line.find(TIME_MARKER)
    if index < 0:
        return None
    tail = line[index + len(TIME_MARKER):].split()
    if not tail:
        return None
    current = parse_ffmpeg_time_to_seconds(tail[0])
    if current is None or not math.isfinite(current):
        return None

    ratio: Optional[float] = None
    if duration_sec is not None and math.isfinite(duration_sec) and duration_sec > 0:
        ratio = min(max(current / duration_sec, 0.0), 1.0)
    return ProgressSample(current_time_sec=current, ratio=ratio)
