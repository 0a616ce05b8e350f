import io
import logging
from pathlib import Path

import pytest

from ceremony_monitor.bus import InMemoryEventBus
from ceremony_monitor.errors import UnknownRoleError
from ceremony_monitor.events import RoundStarted, RoundWaitingForParticipants
from ceremony_monitor.monitor import CoordinatorMonitor, LogArchiver
from ceremony_monitor.state_machine import CoordinatorPhase, RoundStateMachine

CONTRIBUTOR = "aleo1hsr8czcmxxanpv6cvwct75wep5ldhd2s702zm8la47dwcxjveypqsv7689"


class FlakyStream:
    """Raises once on the given read, then behaves like the wrapped stream."""

    def __init__(self, data: bytes, fail_on: int) -> None:
        self._inner = io.BytesIO(data)
        self._fail_on = fail_on
        self._reads = 0

    def readline(self) -> bytes:
        self._reads += 1
        if self._reads == self._fail_on:
            raise OSError("pipe hiccup")
        return self._inner.readline()


def _monitor(data: bytes, archive: LogArchiver | None = None):
    bus = InMemoryEventBus()
    subscription = bus.subscribe()
    machine = RoundStateMachine(bus)
    return CoordinatorMonitor(io.BytesIO(data), machine, archive), subscription


def test_monitor_runs_to_end_of_stream_and_archives(tmp_path: Path) -> None:
    log_path = tmp_path / "out" / "coordinator.log"
    data = b"booting\nCoordinator has booted up\r\nAdvanced ceremony to round 1\n"

    with LogArchiver(log_path) as archive:
        monitor, subscription = _monitor(data, archive)
        result = monitor.run()

    assert subscription.drain() == [RoundWaitingForParticipants(1), RoundStarted(1)]
    assert result.lines_read == 3
    assert result.lines_archived == 3
    assert result.read_errors == 0
    assert result.events_published == 2
    assert result.final_phase == CoordinatorPhase.round_running(1)
    assert log_path.read_text(encoding="utf-8") == (
        "booting\nCoordinator has booted up\nAdvanced ceremony to round 1\n"
    )


def test_last_line_without_newline_is_processed() -> None:
    monitor, subscription = _monitor(b"Coordinator has booted up")

    result = monitor.run()

    assert result.lines_read == 1
    assert subscription.drain() == [RoundWaitingForParticipants(1)]


def test_empty_stream_ends_cleanly() -> None:
    monitor, subscription = _monitor(b"")

    result = monitor.run()

    assert result.lines_read == 0
    assert result.final_phase == CoordinatorPhase.process_started()
    assert subscription.drain() == []


def test_undecodable_line_is_logged_skipped_and_not_archived(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="ceremony_monitor.monitor")
    log_path = tmp_path / "coordinator.log"
    data = b"Coordinator has booted up\n\xff\xfe garbage\nAdvanced ceremony to round 1\n"

    with LogArchiver(log_path) as archive:
        monitor, subscription = _monitor(data, archive)
        result = monitor.run()

    assert result.read_errors == 1
    assert result.lines_archived == 2
    assert subscription.drain() == [RoundWaitingForParticipants(1), RoundStarted(1)]
    assert "garbage" not in log_path.read_text(encoding="utf-8")
    assert "not valid UTF-8" in caplog.text


def test_read_error_does_not_stop_the_loop() -> None:
    bus = InMemoryEventBus()
    subscription = bus.subscribe()
    stream = FlakyStream(b"Coordinator has booted up\nAdvanced ceremony to round 1\n", fail_on=2)
    monitor = CoordinatorMonitor(stream, RoundStateMachine(bus))

    result = monitor.run()

    assert result.read_errors == 1
    assert subscription.drain() == [RoundWaitingForParticipants(1), RoundStarted(1)]


def test_fatal_line_stops_monitoring_and_is_archived(tmp_path: Path) -> None:
    log_path = tmp_path / "coordinator.log"
    bad_line = f"Dropping {CONTRIBUTOR}.auditor from the ceremony"
    data = (
        "Coordinator has booted up\n"
        f"{bad_line}\n"
        "Advanced ceremony to round 1\n"
    ).encode()

    with LogArchiver(log_path) as archive:
        monitor, subscription = _monitor(data, archive)
        with pytest.raises(UnknownRoleError):
            monitor.run()

    assert subscription.drain() == [RoundWaitingForParticipants(1)]
    assert log_path.read_text(encoding="utf-8") == f"Coordinator has booted up\n{bad_line}\n"
    assert monitor.machine.phase == CoordinatorPhase.waiting_for_participants(1)


class FullDiskArchiver(LogArchiver):
    """Accepts a fixed number of lines, then fails like a full disk."""

    def __init__(self, path: Path, capacity: int) -> None:
        super().__init__(path)
        self.capacity = capacity

    def append(self, line: str) -> None:
        if self.capacity == 0:
            raise OSError("No space left on device")
        self.capacity -= 1
        super().append(line)


def test_archive_failure_does_not_mask_line_error(tmp_path: Path, caplog) -> None:
    data = (
        "Coordinator has booted up\n"
        f"Dropping {CONTRIBUTOR}.auditor from the ceremony\n"
    ).encode()

    with FullDiskArchiver(tmp_path / "coordinator.log", capacity=1) as archive:
        monitor, _ = _monitor(data, archive)
        with caplog.at_level(logging.ERROR, logger="ceremony_monitor.monitor"):
            with pytest.raises(UnknownRoleError):
                monitor.run()

    assert monitor.lines_archived == 1
    assert "Unable to archive line 2: No space left on device" in caplog.text


def test_archiver_appends_to_existing_log(tmp_path: Path) -> None:
    log_path = tmp_path / "coordinator.log"
    log_path.write_text("previous run\n", encoding="utf-8")

    with LogArchiver(log_path) as archive:
        archive.append("next run")

    assert log_path.read_text(encoding="utf-8") == "previous run\nnext run\n"


def test_archiver_requires_open(tmp_path: Path) -> None:
    archive = LogArchiver(tmp_path / "coordinator.log")

    with pytest.raises(RuntimeError, match="not open"):
        archive.append("line")
