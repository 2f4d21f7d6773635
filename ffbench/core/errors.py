from __future__ import annotations


class FFBenchError(Exception):
    """Base class for every error raised by ffbench."""


class BuildError(FFBenchError):
    """The request could not be turned into an ffmpeg argument list."""


class MissingFieldError(BuildError):
    def __init__(self, message: str, *fields: str) -> None:
        super().__init__(message)
        self.fields = fields


class UnsupportedPresetError(BuildError):
    def __init__(self, preset: str) -> None:
        super().__init__(f"Unsupported preset: {preset}")
        self.preset = preset


class TokenizeError(BuildError):
    """Raw-mode arguments have an unclosed quote or a trailing backslash."""


class ToolError(FFBenchError):
    """An external tool (ffmpeg or ffprobe) could not be run or failed."""


class ExecutableNotFoundError(ToolError, FileNotFoundError):
    def __init__(self, message: str, configured_path: str = "") -> None:
        super().__init__(message)
        self.configured_path = configured_path


class SpawnError(ToolError):
    pass


class ConcurrencyConflictError(FFBenchError):
    def __init__(self) -> None:
        super().__init__("A task is already running; stop it before starting a new one.")
