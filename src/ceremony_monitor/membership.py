from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ceremony_monitor.config import RunConfig
from ceremony_monitor.errors import MembershipFileError, MissingParticipantError
from ceremony_monitor.participants import ParticipantIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RoundMembershipSnapshot:
    contributor_ids: tuple[str, ...]
    verifier_ids: tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Any) -> RoundMembershipSnapshot:
        if not isinstance(data, dict):
            raise ValueError("round state must be a JSON object")
        contributor_ids = data.get("contributorIds")
        verifier_ids = data.get("verifierIds")
        for key, value in (("contributorIds", contributor_ids), ("verifierIds", verifier_ids)):
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise ValueError(f"{key} must be a list of strings")
        return cls(contributor_ids=tuple(contributor_ids), verifier_ids=tuple(verifier_ids))

    @classmethod
    def load(cls, path: Path) -> RoundMembershipSnapshot:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise MembershipFileError(f"Unable to read state file: {path}: {exc}") from exc
        try:
            return cls.from_dict(json.loads(content))
        except (json.JSONDecodeError, ValueError) as exc:
            raise MembershipFileError(f"Unable to deserialize state file: {path}: {exc}") from exc


def round_state_path(transcript_dir: Path, round_number: int) -> Path:
    return transcript_dir / f"round_{round_number}" / "state.json"


def check_participants_in_round(
    config: RunConfig,
    round_number: int,
    contributors: Sequence[ParticipantIdentity],
    verifiers: Sequence[ParticipantIdentity] = (),
) -> RoundMembershipSnapshot:
    """Fail on the first expected contributor missing from the round state file.

    Verifiers are accepted for symmetry with the caller but are not checked.
    """
    state_file = round_state_path(config.transcript_dir(), round_number)
    snapshot = RoundMembershipSnapshot.load(state_file)

    for contributor in contributors:
        contributor_id = contributor.id_on_coordinator()
        if contributor_id not in snapshot.contributor_ids:
            raise MissingParticipantError(
                f"Unable to find contributor {contributor_id} in round state file",
                participant_id=contributor_id,
            )

    if verifiers:
        logger.debug(f"Skipping membership check for {len(verifiers)} verifiers")
    return snapshot
