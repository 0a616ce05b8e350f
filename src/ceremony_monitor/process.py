from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ceremony_monitor.bus import EventBus
from ceremony_monitor.config import RunConfig
from ceremony_monitor.coordinator_config import write_coordinator_config
from ceremony_monitor.errors import ProcessExitError, ProcessLaunchError, PublishError
from ceremony_monitor.events import CeremonyEvent, ShutdownReason, ShutdownRequested
from ceremony_monitor.monitor import CoordinatorMonitor, LogArchiver, MonitorResult
from ceremony_monitor.patterns import PatternTable
from ceremony_monitor.state_machine import RoundStateMachine

logger = logging.getLogger(__name__)

COORDINATOR_ENV_OVERRIDES = {
    "RUST_BACKTRACE": "1",
    "RUST_LOG": "debug",
}
TERMINATE_GRACE_SECONDS = 5.0


def _canonical_binary(binary: Path) -> Path:
    if binary.parent == Path(".") and not binary.is_absolute():
        located = shutil.which(str(binary))
        if located is None:
            raise ProcessLaunchError(f"Coordinator binary not found: {binary}")
        binary = Path(located)
    try:
        return binary.resolve(strict=True)
    except OSError as exc:
        raise ProcessLaunchError(f"Coordinator binary not found: {binary}") from exc


def build_launch_command(binary: Path, config_path: Path) -> list[str]:
    try:
        canonical_config = config_path.resolve(strict=True)
    except OSError as exc:
        raise ProcessLaunchError(f"cannot canonicalize config path: {config_path}") from exc
    return [str(_canonical_binary(binary)), "--config", str(canonical_config)]


def build_launch_env() -> dict[str, str]:
    env = os.environ.copy()
    env.update(COORDINATOR_ENV_OVERRIDES)
    return env


@dataclass(slots=True)
class CoordinatorRunResult:
    monitor: MonitorResult
    exit_code: int
    shutdown_reason: ShutdownReason | None = None


class ShutdownListener(EventBus):
    """Forwards events to the ceremony bus and reacts to shutdown requests."""

    def __init__(self, bus: EventBus, on_shutdown: Callable[[ShutdownReason], None]) -> None:
        self.bus = bus
        self.on_shutdown = on_shutdown

    def publish(self, event: CeremonyEvent) -> None:
        self.bus.publish(event)
        if isinstance(event, ShutdownRequested):
            self.on_shutdown(event.reason)


class CoordinatorProcess:
    """Runs the coordinator binary with its output monitored on one thread.

    A ``ShutdownRequested`` event seen on the way to the bus stops the
    coordinator; the exit it causes is not reported as a failure.
    """

    def __init__(
        self,
        config: RunConfig,
        bus: EventBus,
        *,
        patterns: PatternTable | None = None,
    ) -> None:
        self.config = config
        self.bus = bus
        self.patterns = patterns
        self.process: subprocess.Popen[bytes] | None = None
        self.shutdown_reason: ShutdownReason | None = None
        self._thread: threading.Thread | None = None
        self._result: MonitorResult | None = None
        self._error: BaseException | None = None

    def start(self) -> None:
        if self.process is not None:
            raise RuntimeError("Coordinator already started")

        config_path = write_coordinator_config(self.config)
        command = build_launch_command(self.config.coordinator_bin, config_path)
        logger.info("Starting setup coordinator.")
        try:
            process = subprocess.Popen(
                command,
                cwd=self.config.out_dir,
                env=build_launch_env(),
                stdout=subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Unable to start coordinator: {exc}") from exc
        self.process = process

        self._thread = threading.Thread(
            target=self._monitor, args=(process,), name="coordinator", daemon=True
        )
        self._thread.start()

    def _monitor(self, process: subprocess.Popen[bytes]) -> None:
        if process.stdout is None:
            raise RuntimeError("Coordinator stdout is not piped")
        machine = RoundStateMachine(
            ShutdownListener(self.bus, self.request_shutdown), patterns=self.patterns
        )
        try:
            with LogArchiver(self.config.log_file_path) as archive:
                monitor = CoordinatorMonitor(process.stdout, machine, archive)
                self._result = monitor.run()
        except Exception as exc:
            self._error = exc
            logger.error(f"Coordinator monitor failed: {exc}")
            try:
                self.bus.publish(ShutdownRequested(ShutdownReason.ERROR))
            except PublishError as publish_exc:
                logger.error(f"Unable to request ceremony shutdown: {publish_exc}")
            self.terminate()

    def request_shutdown(self, reason: ShutdownReason) -> None:
        if self.shutdown_reason is None:
            self.shutdown_reason = reason
        logger.info(f"Ceremony shutdown requested ({reason.value}), stopping coordinator")
        self.terminate()

    def terminate(self) -> None:
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Coordinator did not exit after terminate, killing it")
            self.process.kill()
            self.process.wait()

    def wait(self, timeout: float | None = None) -> CoordinatorRunResult:
        if self.process is None or self._thread is None:
            raise RuntimeError("Coordinator has not been started")

        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            raise TimeoutError(f"Coordinator still running after {timeout}s")
        exit_code = self.process.wait()
        if self.process.stdout is not None:
            self.process.stdout.close()

        if self._error is not None:
            raise self._error
        if self._result is None:
            raise RuntimeError("Coordinator monitor finished without a result")
        # Negative codes are signal exits; after a requested shutdown they are ours.
        stopped_on_request = self.shutdown_reason is not None and exit_code < 0
        if exit_code != 0 and not stopped_on_request:
            raise ProcessExitError(
                f"Coordinator exited with status {exit_code}", exit_code=exit_code
            )
        logger.info(f"Coordinator exited after {self._result.lines_read} lines")
        return CoordinatorRunResult(
            monitor=self._result, exit_code=exit_code, shutdown_reason=self.shutdown_reason
        )
