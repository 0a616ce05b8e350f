from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, TextIO

from ceremony_monitor.errors import LineReadError
from ceremony_monitor.state_machine import CoordinatorPhase, RoundStateMachine

logger = logging.getLogger(__name__)


class LogArchiver:
    """Append-only plain-text archive of every line read from the coordinator."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: TextIO | None = None

    def open(self) -> None:
        if self._handle is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8")

    def append(self, line: str) -> None:
        if self._handle is None:
            raise RuntimeError(f"Archive {self.path} is not open")
        self._handle.write(line)
        self._handle.write("\n")
        self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> LogArchiver:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()


@dataclass(slots=True)
class MonitorResult:
    lines_read: int
    lines_archived: int
    read_errors: int
    events_published: int
    final_phase: CoordinatorPhase


def _strip_line_ending(raw: bytes) -> bytes:
    if raw.endswith(b"\r\n"):
        return raw[:-2]
    if raw.endswith(b"\n"):
        return raw[:-1]
    return raw


class CoordinatorMonitor:
    """Drives one state machine over one coordinator output stream.

    The loop blocks on each line and ends when the stream is closed. Lines
    that cannot be read are logged and skipped; errors raised by the state
    machine stop the loop and propagate.
    """

    def __init__(
        self,
        stream: BinaryIO,
        machine: RoundStateMachine,
        archive: LogArchiver | None = None,
    ) -> None:
        self.stream = stream
        self.machine = machine
        self.archive = archive
        self.lines_read = 0
        self.lines_archived = 0
        self.read_errors = 0
        self.events_published = 0

    def _read_line(self) -> str | None:
        self.lines_read += 1
        try:
            raw = self.stream.readline()
        except OSError as exc:
            raise LineReadError(
                f"Error reading line from pipe to coordinator process: {exc}",
                line_number=self.lines_read,
            ) from exc
        if not raw:
            self.lines_read -= 1
            return None
        try:
            return _strip_line_ending(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise LineReadError(
                f"Coordinator output line is not valid UTF-8: {exc}",
                line_number=self.lines_read,
            ) from exc

    def _archive(self, line: str) -> None:
        if self.archive is None:
            return
        self.archive.append(line)
        self.lines_archived += 1

    def _archive_failed_line(self, line: str) -> None:
        # The error being handled by the caller takes precedence over archive errors.
        try:
            self._archive(line)
        except Exception as exc:
            logger.error(f"Unable to archive line {self.lines_read}: {exc}")

    def run(self) -> MonitorResult:
        while True:
            try:
                line = self._read_line()
            except LineReadError as exc:
                self.read_errors += 1
                logger.error(f"line {exc.line_number}: {exc}")
                continue
            if line is None:
                break

            logger.debug(f"coordinator: {line}")
            try:
                events = self.machine.process_line(line)
            except Exception:
                logger.error(
                    f"Stopping coordinator monitor at line {self.lines_read} "
                    f"in phase {self.machine.phase}"
                )
                self._archive_failed_line(line)
                raise
            self._archive(line)
            self.events_published += len(events)

        logger.debug(f"Coordinator output closed after {self.lines_read} lines")
        return MonitorResult(
            lines_read=self.lines_read,
            lines_archived=self.lines_archived,
            read_errors=self.read_errors,
            events_published=self.events_published,
            final_phase=self.machine.phase,
        )
