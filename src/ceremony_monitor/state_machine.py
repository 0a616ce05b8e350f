from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ceremony_monitor.bus import EventBus
from ceremony_monitor.errors import PublishError
from ceremony_monitor.events import (
    CeremonyEvent,
    ParticipantDropped,
    RoundAggregated,
    RoundFinished,
    RoundStarted,
    RoundStartedAggregation,
    RoundWaitingForParticipants,
    ShutdownReason,
    ShutdownRequested,
    SuccessfulContribution,
)
from ceremony_monitor.participants import ParticipantIdentity, ParticipantRole, parse_address
from ceremony_monitor.patterns import LineCategory, PatternTable, default_pattern_table, parse_u64

logger = logging.getLogger(__name__)


class PhaseKind(Enum):
    PROCESS_STARTED = "process_started"
    WAITING_FOR_PARTICIPANTS = "waiting_for_participants"
    ROUND_RUNNING = "round_running"
    ROUND_AGGREGATING = "round_aggregating"
    WAITING_FOR_FINISH = "waiting_for_finish"
    ROUND_FINISHED = "round_finished"


@dataclass(frozen=True, slots=True)
class CoordinatorPhase:
    kind: PhaseKind
    round: int | None = None

    @classmethod
    def process_started(cls) -> CoordinatorPhase:
        return cls(PhaseKind.PROCESS_STARTED)

    @classmethod
    def waiting_for_participants(cls, round_number: int) -> CoordinatorPhase:
        return cls(PhaseKind.WAITING_FOR_PARTICIPANTS, round_number)

    @classmethod
    def round_running(cls, round_number: int) -> CoordinatorPhase:
        return cls(PhaseKind.ROUND_RUNNING, round_number)

    @classmethod
    def round_aggregating(cls, round_number: int) -> CoordinatorPhase:
        return cls(PhaseKind.ROUND_AGGREGATING, round_number)

    @classmethod
    def waiting_for_finish(cls, round_number: int) -> CoordinatorPhase:
        return cls(PhaseKind.WAITING_FOR_FINISH, round_number)

    @classmethod
    def round_finished(cls, round_number: int) -> CoordinatorPhase:
        return cls(PhaseKind.ROUND_FINISHED, round_number)

    def __post_init__(self) -> None:
        if self.kind is PhaseKind.PROCESS_STARTED:
            if self.round is not None:
                raise ValueError("process_started phase carries no round")
        elif self.round is None or self.round < 0:
            raise ValueError(f"{self.kind.value} phase requires a non-negative round")

    def require_round(self) -> int:
        if self.round is None:
            raise ValueError(f"{self.kind.value} phase carries no round")
        return self.round

    def __str__(self) -> str:
        if self.round is None:
            return self.kind.value
        return f"{self.kind.value}({self.round})"


RoundHandler = Callable[[int, str], None]


class RoundStateMachine:
    """Reconstructs the coordinator round lifecycle from its output lines.

    Each call to ``process_line`` consumes exactly one line, publishes the
    events it implies on the bus (in order, before returning) and advances
    the phase. Only the patterns relevant to the current phase are tested.
    Any invalid capture aborts the line and propagates to the caller.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        patterns: PatternTable | None = None,
        phase: CoordinatorPhase | None = None,
    ) -> None:
        self.bus = bus
        self.patterns = patterns or default_pattern_table()
        self.phase = phase or CoordinatorPhase.process_started()
        self._emitted: list[CeremonyEvent] = []
        self._round_handlers: dict[PhaseKind, RoundHandler] = {
            PhaseKind.WAITING_FOR_PARTICIPANTS: self._on_waiting_for_participants,
            PhaseKind.ROUND_RUNNING: self._on_round_running,
            PhaseKind.ROUND_AGGREGATING: self._on_round_aggregating,
            PhaseKind.WAITING_FOR_FINISH: self._on_waiting_for_finish,
            PhaseKind.ROUND_FINISHED: self._on_round_finished,
        }

    def process_line(self, line: str) -> list[CeremonyEvent]:
        self._emitted = []
        if self.phase.kind is PhaseKind.PROCESS_STARTED:
            self._on_process_started(line)
        else:
            handler = self._round_handlers[self.phase.kind]
            handler(self.phase.require_round(), line)
        return list(self._emitted)

    def _publish(self, event: CeremonyEvent) -> None:
        try:
            self.bus.publish(event)
        except PublishError:
            raise
        except Exception as exc:
            raise PublishError(f"Unable to publish {event.event}: {exc}") from exc
        self._emitted.append(event)

    def _transition(self, event: CeremonyEvent, next_phase: CoordinatorPhase) -> None:
        self._publish(event)
        logger.debug(f"Coordinator phase {self.phase} -> {next_phase}")
        self.phase = next_phase

    def _captured_round(self, match: re.Match[str], expected: int) -> int:
        captured = parse_u64(match.group("round"), field="round")
        if captured != expected:
            logger.warning(
                f"Coordinator reported round {captured} while tracking round {expected}"
            )
        return captured

    # ----------------------------
    # Checks shared between phases
    # ----------------------------

    def _check_participant_dropped(self, line: str) -> None:
        match = self.patterns.search(LineCategory.PARTICIPANT_DROPPED, line)
        if match is None:
            return
        address = parse_address(match.group("address"))
        role = ParticipantRole.parse(match.group("role"))
        participant = ParticipantIdentity(address=address, role=role)
        logger.debug(f"Participant {participant.id_on_coordinator()} dropped from the ceremony")
        self._publish(ParticipantDropped(participant))

    # ----------------------------
    # Phase handlers
    # ----------------------------

    def _on_process_started(self, line: str) -> None:
        if self.patterns.search(LineCategory.BOOT_COMPLETED, line):
            logger.debug("Coordinator process has booted")
            self._transition(
                RoundWaitingForParticipants(1), CoordinatorPhase.waiting_for_participants(1)
            )

    def _on_waiting_for_participants(self, round_number: int, line: str) -> None:
        self._check_participant_dropped(line)
        match = self.patterns.search(LineCategory.ROUND_STARTED, line)
        if match:
            self._captured_round(match, round_number)
            logger.debug(f"Round {round_number} has started")
            self._transition(
                RoundStarted(round_number), CoordinatorPhase.round_running(round_number)
            )

    def _on_round_running(self, round_number: int, line: str) -> None:
        self._check_participant_dropped(line)

        match = self.patterns.search(LineCategory.ROUND_STARTED_AGGREGATION, line)
        if match:
            self._captured_round(match, round_number)
            logger.debug(f"Round {round_number} has started aggregation")
            self._transition(
                RoundStartedAggregation(round_number),
                CoordinatorPhase.round_aggregating(round_number),
            )

        if self.patterns.search(LineCategory.ROUND_RESTARTED_NO_CONTRIBUTORS, line):
            logger.debug(f"Round {round_number} restarted with no remaining contributors")
            self._transition(
                ShutdownRequested(ShutdownReason.TEST_FINISHED),
                CoordinatorPhase.round_finished(round_number),
            )

        match = self.patterns.search(LineCategory.SUCCESSFUL_CONTRIBUTION, line)
        if match:
            chunk = parse_u64(match.group("chunk"), field="chunk")
            contributor = ParticipantIdentity.contributor(match.group("address"))
            logger.debug(
                f"Contributor {contributor.address} made a successful contribution "
                f"to chunk {chunk}"
            )
            self._publish(SuccessfulContribution(contributor=contributor, chunk=chunk))

    def _on_round_aggregating(self, round_number: int, line: str) -> None:
        match = self.patterns.search(LineCategory.ROUND_AGGREGATED, line)
        if match:
            self._captured_round(match, round_number)
            logger.debug(f"Round {round_number} is aggregated")
            self._transition(
                RoundAggregated(round_number), CoordinatorPhase.waiting_for_finish(round_number)
            )

    def _on_waiting_for_finish(self, round_number: int, line: str) -> None:
        match = self.patterns.search(LineCategory.ROUND_FINISHED, line)
        if match:
            self._captured_round(match, round_number)
            logger.debug(f"Round {round_number} has finished")
            self._transition(
                RoundFinished(round_number), CoordinatorPhase.round_finished(round_number)
            )

    def _on_round_finished(self, round_number: int, line: str) -> None:
        # Transient phase: the line is ignored and the next round always opens.
        next_round = round_number + 1
        self._transition(
            RoundWaitingForParticipants(next_round),
            CoordinatorPhase.waiting_for_participants(next_round),
        )
