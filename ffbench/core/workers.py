from __future__ import annotations

import dataclasses
import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from PySide6 import QtCore

from .commands import (
    INPUT_PLACEHOLDER,
    OUTPUT_PLACEHOLDER,
    build_ffmpeg_args,
    format_command_preview,
)
from .errors import ConcurrencyConflictError, SpawnError
from .ffmpeg import (
    FFMPEG,
    format_spawn_error,
    parse_progress,
    parse_time_input,
    probe_duration,
    resolve_executable,
)
from .models import JobRequest, ProgressSample, StateEvent

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.12  # seconds between exit-status checks

DurationProbe = Callable[[JobRequest], Optional[float]]


@dataclass(eq=False)
class RunningTask:
    """The one ffmpeg process being supervised.

    ``process`` is shared between the monitor thread and ``stop()``; every
    touch of it goes through ``lock``.
    """

    process: subprocess.Popen
    lock: threading.Lock = field(default_factory=threading.Lock)
    cancelled: threading.Event = field(default_factory=threading.Event)

    def poll(self) -> Optional[int]:
        with self.lock:
            return self.process.poll()

    def kill(self) -> None:
        with self.lock:
            if self.process.poll() is None:
                try:
                    self.process.kill()
                except OSError as e:
                    logger.warning("Could not kill ffmpeg (pid %s): %s", self.process.pid, e)

    def take_stderr(self):
        with self.lock:
            stream, self.process.stderr = self.process.stderr, None
            return stream


class ProcessorSignals(QtCore.QObject):
    log = QtCore.Signal(str)  # raw stderr line
    progress = QtCore.Signal(object)  # ProgressSample
    state = QtCore.Signal(object)  # StateEvent


class ProcessorWorker(QtCore.QRunnable):
    """Streams one task's stderr and reports how it ended."""

    def __init__(
        self,
        supervisor: "ProcessSupervisor",
        task: RunningTask,
        duration: Optional[float],
    ) -> None:
        super().__init__()
        self.supervisor = supervisor
        self.task = task
        self.duration = duration
        self.signals = supervisor.signals

    @QtCore.Slot()
    def run(self) -> None:  # type: ignore[override]
        try:
            self._stream_logs()
            ret = self._wait_for_exit()
        except (OSError, ValueError) as e:
            logger.error("Waiting for ffmpeg failed: %s", e)
            event = StateEvent.failed(str(e) or e.__class__.__name__)
        else:
            event = self._final_state(ret)

        # The slot is free before anyone hears about the terminal state
        self.supervisor._clear_active_task(self.task)
        self.signals.state.emit(event)

    def _final_state(self, ret: Optional[int]) -> StateEvent:
        if self.task.cancelled.is_set():
            logger.info("ffmpeg stopped (exit code %s)", ret)
            return StateEvent.stopped()
        if ret == 0:
            logger.info("ffmpeg completed")
            self.signals.progress.emit(ProgressSample(current_time_sec=self.duration, ratio=1.0))
            return StateEvent.completed()
        # A negative code means a signal ended the process, which carries no exit status
        code = "unknown" if ret is None or ret < 0 else str(ret)
        logger.warning("ffmpeg exited with code %s", code)
        return StateEvent.failed(f"ffmpeg exited with code {code}")

    def _stream_logs(self) -> None:
        stream = self.task.take_stderr()
        if stream is None:
            return
        # Text mode splits on "\r" too, which is how ffmpeg redraws its stats line
        with stream:
            for line in stream:
                line = line.strip()
                if not line:
                    continue
                self.signals.log.emit(line)
                sample = parse_progress(line, self.duration)
                if sample is not None:
                    self.signals.progress.emit(sample)

    def _wait_for_exit(self) -> Optional[int]:
        while True:
            ret = self.task.poll()
            if ret is not None:
                return ret
            time.sleep(POLL_INTERVAL)


class ProcessSupervisor(QtCore.QObject):
    """Runs at most one ffmpeg process at a time and reports on it.

    ``start()`` returns as soon as the process is spawned; output, progress
    and the final state arrive through ``signals`` from a pool thread.
    """

    def __init__(
        self,
        probe: DurationProbe = probe_duration,
        pool: Optional[QtCore.QThreadPool] = None,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.signals = ProcessorSignals()
        self.pool = pool or QtCore.QThreadPool.globalInstance()
        self._probe = probe
        self._slot_lock = threading.Lock()
        self._active: Optional[RunningTask] = None

    @property
    def is_running(self) -> bool:
        with self._slot_lock:
            return self._active is not None

    def build_preview(self, request: JobRequest) -> Tuple[List[str], str]:
        """Arguments and display command, with placeholders for missing paths."""
        preview = dataclasses.replace(
            request,
            input_path=(request.input_path or "").strip() or INPUT_PLACEHOLDER,
            output_path=(request.output_path or "").strip() or OUTPUT_PLACEHOLDER,
        )
        args = build_ffmpeg_args(preview)
        return args, format_command_preview(request.ffmpeg_path or FFMPEG, args)

    def resolve_duration(self, request: JobRequest) -> Optional[float]:
        duration = parse_time_input(request.duration)
        if duration is not None and duration > 0:
            return duration
        return self._probe(request)

    def start(self, request: JobRequest) -> bool:
        """Spawn ffmpeg for ``request``.

        Build and spawn errors are raised here; everything after the spawn
        is reported through ``signals.state``.
        """
        if self.is_running:
            raise ConcurrencyConflictError()

        configured = (request.ffmpeg_path or "").strip()
        binary = resolve_executable(configured, FFMPEG)
        args = build_ffmpeg_args(request)
        duration = self.resolve_duration(request)
        mode = request.job_mode
        command = format_command_preview(binary, args)

        with self._slot_lock:
            # Checked again under the lock: two callers may both have passed
            # the early check above, only one may spawn.
            if self._active is not None:
                raise ConcurrencyConflictError()
            logger.info("Starting %s job: %s", mode.value, command)
            try:
                process = subprocess.Popen(
                    [binary, *args],
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
            except OSError as e:
                logger.error("Failed to start ffmpeg: %s", e)
                raise format_spawn_error(e, FFMPEG, configured) from e

            if process.stderr is None:
                process.kill()
                process.wait()
                raise SpawnError("ffmpeg stderr pipe was not attached")

            task = RunningTask(process)
            self._active = task

        self.signals.state.emit(StateEvent.running(mode, command))
        self.pool.start(ProcessorWorker(self, task, duration))
        return True

    def stop(self) -> bool:
        """Cancel the active task. Returns False when nothing was running."""
        with self._slot_lock:
            task = self._active
        if task is None:
            return False
        # The flag goes first so the monitor reports "stopped", not the exit code
        task.cancelled.set()
        task.kill()
        logger.info("Stop requested for ffmpeg (pid %s)", task.process.pid)
        return True

    def _clear_active_task(self, task: RunningTask) -> None:
        with self._slot_lock:
            if self._active is task:
                self._active = None
