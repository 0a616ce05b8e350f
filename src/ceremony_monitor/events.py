from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from ceremony_monitor.participants import ParticipantIdentity


class ShutdownReason(Enum):
    TEST_FINISHED = "test_finished"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class RoundWaitingForParticipants:
    round: int
    event: ClassVar[str] = "round_waiting_for_participants"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "round": self.round}


@dataclass(frozen=True, slots=True)
class RoundStarted:
    round: int
    event: ClassVar[str] = "round_started"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "round": self.round}


@dataclass(frozen=True, slots=True)
class RoundStartedAggregation:
    round: int
    event: ClassVar[str] = "round_started_aggregation"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "round": self.round}


@dataclass(frozen=True, slots=True)
class RoundAggregated:
    round: int
    event: ClassVar[str] = "round_aggregated"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "round": self.round}


@dataclass(frozen=True, slots=True)
class RoundFinished:
    round: int
    event: ClassVar[str] = "round_finished"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "round": self.round}


@dataclass(frozen=True, slots=True)
class ParticipantDropped:
    participant: ParticipantIdentity
    event: ClassVar[str] = "participant_dropped"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "participant": self.participant.to_dict()}


@dataclass(frozen=True, slots=True)
class SuccessfulContribution:
    contributor: ParticipantIdentity
    chunk: int
    event: ClassVar[str] = "successful_contribution"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "contributor": self.contributor.to_dict(),
            "chunk": self.chunk,
        }


@dataclass(frozen=True, slots=True)
class ShutdownRequested:
    reason: ShutdownReason
    event: ClassVar[str] = "shutdown_requested"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "reason": self.reason.value}


CeremonyEvent = (
    RoundWaitingForParticipants
    | RoundStarted
    | RoundStartedAggregation
    | RoundAggregated
    | RoundFinished
    | ParticipantDropped
    | SuccessfulContribution
    | ShutdownRequested
)
