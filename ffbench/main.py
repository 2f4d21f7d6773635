from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import asdict, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from ffbench.core.commands import suggest_output_path
from ffbench.core.config import (
    AppSettings,
    SettingsStore,
    apply_environment,
    job_request_from_payload,
)
from ffbench.core.errors import FFBenchError
from ffbench.core.ffmpeg import FFPROBE, probe_media, resolve_executable
from ffbench.core.models import JobStatus, ProgressSample, StateEvent
from ffbench.core.workers import ProcessSupervisor

logger = logging.getLogger("ffbench")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_STOPPED = 130


def _load_payload(source: str) -> Dict[str, Any]:
    text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("job file must contain a JSON object")
    return data


class RunReporter(QtCore.QObject):
    """Prints supervisor events and ends the event loop on a terminal state."""

    def __init__(self, app: QtCore.QCoreApplication, quiet: bool = False) -> None:
        super().__init__()
        self.app = app
        self.quiet = quiet
        self.exit_code = EXIT_OK

    @QtCore.Slot(str)
    def on_log(self, line: str) -> None:
        if not self.quiet:
            print(line, file=sys.stderr)

    @QtCore.Slot(object)
    def on_progress(self, sample: ProgressSample) -> None:
        if sample.ratio is None:
            logger.debug("progress: %.2fs", sample.current_time_sec or 0.0)
        else:
            logger.info("progress: %5.1f%%", sample.ratio * 100)

    @QtCore.Slot(object)
    def on_state(self, event: StateEvent) -> None:
        if event.status is JobStatus.RUNNING:
            logger.info("running (%s): %s", event.mode, event.command)
            return
        if event.status is JobStatus.COMPLETED:
            logger.info("completed")
            self.exit_code = EXIT_OK
        elif event.status is JobStatus.STOPPED:
            logger.warning("stopped")
            self.exit_code = EXIT_STOPPED
        else:
            logger.error("failed: %s", event.message)
            self.exit_code = EXIT_FAILED
        self.app.quit()


def cmd_preview(args: argparse.Namespace, settings: AppSettings) -> int:
    request = job_request_from_payload(_load_payload(args.job), settings)
    tokens, command = ProcessSupervisor().build_preview(request)
    if args.json:
        print(json.dumps({"args": tokens, "command": command}, ensure_ascii=False, indent=2))
    else:
        print(command)
    return EXIT_OK


def cmd_probe(args: argparse.Namespace, settings: AppSettings) -> int:
    configured = args.ffprobe or settings.ffprobe_path
    info = probe_media(resolve_executable(configured, FFPROBE), args.input, configured)
    report = asdict(info)
    report["has_video"] = info.has_video
    report["has_audio"] = info.has_audio
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return EXIT_OK


def cmd_settings(args: argparse.Namespace, settings: AppSettings) -> int:
    store = SettingsStore(base_dir=args.settings)
    # Edits apply to the stored values, not the environment overrides
    stored = store.load()
    if args.set:
        known = {f.name for f in fields(AppSettings)}
        changes: Dict[str, str] = {}
        for item in args.set:
            key, sep, value = item.partition("=")
            key = key.strip().replace("-", "_")
            if not sep or key not in known:
                raise ValueError(f"expected KEY=VALUE with KEY one of {', '.join(sorted(known))}: {item}")
            changes[key] = value.strip()
        stored = replace(stored, **changes)
        store.save(stored)
        logger.info("Saved settings to %s", store.path)
    print(json.dumps(asdict(stored), ensure_ascii=False, indent=2))
    return EXIT_OK


def cmd_suggest(args: argparse.Namespace, settings: AppSettings) -> int:
    print(suggest_output_path(args.input, args.preset or settings.preset))
    return EXIT_OK


def cmd_run(args: argparse.Namespace, settings: AppSettings) -> int:
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv)
    request = job_request_from_payload(_load_payload(args.job), settings)

    supervisor = ProcessSupervisor()
    reporter = RunReporter(app, quiet=args.quiet)
    supervisor.signals.log.connect(reporter.on_log)
    supervisor.signals.progress.connect(reporter.on_progress)
    supervisor.signals.state.connect(reporter.on_state)

    previous = signal.signal(signal.SIGINT, lambda *_: supervisor.stop())
    # Give the interpreter a chance to run the SIGINT handler while Qt waits
    wakeup = QtCore.QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(200)
    try:
        supervisor.start(request)
        app.exec()
    finally:
        wakeup.stop()
        signal.signal(signal.SIGINT, previous)
    return reporter.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffbench", description="Build and supervise ffmpeg jobs.")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--settings", type=Path, help="directory holding settings.json")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("preview", help="print the ffmpeg command a job would run")
    p.add_argument("job", help="job JSON file, or - for stdin")
    p.add_argument("--json", action="store_true", help="print args and command as JSON")
    p.set_defaults(func=cmd_preview)

    p = sub.add_parser("probe", help="show ffprobe metadata for a file")
    p.add_argument("input")
    p.add_argument("--ffprobe", default="", help="path to ffprobe")
    p.set_defaults(func=cmd_probe)

    p = sub.add_parser("suggest", help="suggest an output path for an input file")
    p.add_argument("input")
    p.add_argument("--preset", default="")
    p.set_defaults(func=cmd_suggest)

    p = sub.add_parser("settings", help="show or change stored settings")
    p.add_argument("--set", action="append", metavar="KEY=VALUE", help="store a setting (repeatable)")
    p.set_defaults(func=cmd_settings)

    p = sub.add_parser("run", help="run a job and stream its progress")
    p.add_argument("job", help="job JSON file, or - for stdin")
    p.add_argument("-q", "--quiet", action="store_true", help="do not echo ffmpeg output")
    p.set_defaults(func=cmd_run)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ffbench command."""
    args = build_parser().parse_args(argv)
    settings = apply_environment(SettingsStore(base_dir=args.settings).load())

    log_level = (args.log_level or settings.log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="[%(levelname)s] %(asctime)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        return args.func(args, settings)
    except FFBenchError as e:
        logger.error("%s", e)
        return EXIT_USAGE
    except (OSError, ValueError) as e:
        logger.error("%s", e)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
