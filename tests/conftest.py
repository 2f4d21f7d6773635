"""Shared fixtures for ffbench tests.

The Python interpreter stands in for ffmpeg: raw-mode jobs run
``python -c '<script>'`` so the supervisor can be exercised end to end
without FFmpeg installed.
"""

import sys
import threading
import time
from typing import Callable, List

import pytest
from PySide6 import QtCore

from ffbench.core.models import JobRequest, JobStatus, ProgressSample, StateEvent
from ffbench.core.workers import ProcessSupervisor


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """A QCoreApplication for QObject signals and the thread pool."""
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class EventRecorder:
    """Collects supervisor signals on the emitting thread."""

    def __init__(self, supervisor: ProcessSupervisor) -> None:
        self._lock = threading.Lock()
        self.logs: List[str] = []
        self.progress: List[ProgressSample] = []
        self.states: List[StateEvent] = []
        direct = QtCore.Qt.ConnectionType.DirectConnection
        supervisor.signals.log.connect(self._on_log, direct)
        supervisor.signals.progress.connect(self._on_progress, direct)
        supervisor.signals.state.connect(self._on_state, direct)

    def _on_log(self, line: str) -> None:
        with self._lock:
            self.logs.append(line)

    def _on_progress(self, sample: ProgressSample) -> None:
        with self._lock:
            self.progress.append(sample)

    def _on_state(self, event: StateEvent) -> None:
        with self._lock:
            self.states.append(event)

    @property
    def statuses(self) -> List[JobStatus]:
        with self._lock:
            return [e.status for e in self.states]

    def terminal(self) -> StateEvent:
        assert wait_for(lambda: any(s.terminal for s in self.statuses)), self.statuses
        with self._lock:
            return next(e for e in self.states if e.status.terminal)


@pytest.fixture
def python_job() -> Callable[..., JobRequest]:
    """Factory for raw-mode requests that run a script with this interpreter."""

    def make(script: str, **fields) -> JobRequest:
        template = "-c '" + script + "'"
        return JobRequest(mode="raw", ffmpeg_path=sys.executable, raw_args=template, **fields)

    return make


@pytest.fixture
def supervisor() -> ProcessSupervisor:
    sup = ProcessSupervisor(probe=lambda request: None)
    yield sup
    sup.stop()
    wait_for(lambda: not sup.is_running)


@pytest.fixture
def recorder(supervisor: ProcessSupervisor) -> EventRecorder:
    return EventRecorder(supervisor)
