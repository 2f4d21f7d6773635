from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional


class JobMode(enum.Enum):
    PRESET = "preset"
    VISUAL = "visual"
    RAW = "raw"

    @classmethod
    def from_text(cls, value: Optional[str]) -> "JobMode":
        text = (value or "").strip()
        if text == cls.RAW.value:
            return cls.RAW
        if text == cls.VISUAL.value:
            return cls.VISUAL
        return cls.PRESET


class JobStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass
class ExtraArg:
    """A free-form ``-key value`` pair appended in visual mode."""

    key: Optional[str] = None
    value: Optional[str] = None
    enabled: Optional[bool] = None


@dataclass
class JobRequest:
    """Everything a caller may say about one ffmpeg run.

    Every field is optional. Which fields matter depends on ``mode``; the
    builders ignore the rest. Text fields are trimmed before use and a blank
    string counts as absent.
    """

    mode: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    input_path: Optional[str] = None
    output_path: Optional[str] = None
    raw_args: Optional[str] = None
    preset: Optional[str] = None
    start_time: Optional[str] = None
    duration: Optional[str] = None
    overwrite: Optional[bool] = None
    crf: Optional[float] = None
    speed_preset: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    pixel_format: Optional[str] = None
    video_bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None
    audio_quality: Optional[str] = None
    fps: Optional[float] = None
    scale_width: Optional[float] = None
    scale_height: Optional[float] = None
    sample_rate: Optional[float] = None
    channels: Optional[float] = None
    threads: Optional[float] = None
    format: Optional[str] = None
    map: Optional[str] = None
    loop: Optional[str] = None
    video_filter: Optional[str] = None
    movflags_faststart: Optional[bool] = None
    disable_video: Optional[bool] = None
    disable_audio: Optional[bool] = None
    extra_args: List[ExtraArg] = field(default_factory=list)

    @property
    def job_mode(self) -> JobMode:
        return JobMode.from_text(self.mode)


@dataclass(frozen=True)
class PresetDefaults:
    """Fallback values a visual-mode preset supplies beneath explicit fields."""

    video_codec: Optional[str] = None
    speed_preset: Optional[str] = None
    crf: Optional[float] = None
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[str] = None
    audio_quality: Optional[str] = None
    disable_video: bool = False
    disable_audio: bool = False
    fps: Optional[float] = None
    scale_width: Optional[float] = None
    scale_height: Optional[float] = None
    loop: Optional[str] = None


@dataclass(frozen=True)
class ProgressSample:
    current_time_sec: Optional[float]
    ratio: Optional[float] = None  # 0..1, None when the total duration is unknown


@dataclass(frozen=True)
class StateEvent:
    status: JobStatus
    mode: Optional[str] = None
    command: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def running(cls, mode: JobMode, command: str) -> "StateEvent":
        return cls(JobStatus.RUNNING, mode=mode.value, command=command)

    @classmethod
    def completed(cls) -> "StateEvent":
        return cls(JobStatus.COMPLETED)

    @classmethod
    def stopped(cls) -> "StateEvent":
        return cls(JobStatus.STOPPED)

    @classmethod
    def failed(cls, message: str) -> "StateEvent":
        return cls(JobStatus.FAILED, message=message)


@dataclass
class ProbeStream:
    index: Optional[int] = None
    codec_type: Optional[str] = None
    codec_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    bit_rate: Optional[float] = None


@dataclass
class ProbeInfo:
    """Subset of ffprobe's ``-show_format -show_streams`` output."""

    file: str
    format_name: str = ""
    duration_sec: Optional[float] = None
    size_bytes: Optional[float] = None
    bit_rate: Optional[float] = None
    streams: List[ProbeStream] = field(default_factory=list)

    @property
    def has_video(self) -> bool:
        return any(s.codec_type == "video" for s in self.streams)

    @property
    def has_audio(self) -> bool:
        return any(s.codec_type == "audio" for s in self.streams)
