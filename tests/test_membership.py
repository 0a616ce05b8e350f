import json
from pathlib import Path

import pytest

from ceremony_monitor.config import Environment, RunConfig
from ceremony_monitor.errors import MembershipFileError, MissingParticipantError
from ceremony_monitor.membership import (
    RoundMembershipSnapshot,
    check_participants_in_round,
    round_state_path,
)
from ceremony_monitor.participants import ParticipantIdentity

FIRST = "aleo1hsr8czcmxxanpv6cvwct75wep5ldhd2s702zm8la47dwcxjveypqsv7689"
SECOND = "aleo1qpzry9x8gf2tvdw0s3jn54khce6mua7lqpzry9x8gf2tvdw0s3jn54khce"


def _write_state(config: RunConfig, round_number: int, payload: object) -> Path:
    path = round_state_path(config.transcript_dir(), round_number)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_all_contributors_present(tmp_path: Path) -> None:
    config = RunConfig(out_dir=tmp_path)
    _write_state(
        config,
        1,
        {
            "contributorIds": [f"{FIRST}.contributor", f"{SECOND}.contributor"],
            "verifierIds": [f"{SECOND}.verifier"],
        },
    )

    snapshot = check_participants_in_round(
        config,
        1,
        [ParticipantIdentity.contributor(SECOND), ParticipantIdentity.contributor(FIRST)],
    )

    assert snapshot == RoundMembershipSnapshot(
        contributor_ids=(f"{FIRST}.contributor", f"{SECOND}.contributor"),
        verifier_ids=(f"{SECOND}.verifier",),
    )


def test_first_missing_contributor_is_named(tmp_path: Path) -> None:
    config = RunConfig(out_dir=tmp_path, environment=Environment.INNER)
    path = _write_state(config, 2, {"contributorIds": [], "verifierIds": []})
    assert path == tmp_path / "transcript" / "round_2" / "state.json"

    with pytest.raises(MissingParticipantError) as excinfo:
        check_participants_in_round(
            config,
            2,
            [ParticipantIdentity.contributor(SECOND), ParticipantIdentity.contributor(FIRST)],
        )

    assert excinfo.value.participant_id == f"{SECOND}.contributor"


def test_verifiers_are_not_checked(tmp_path: Path) -> None:
    config = RunConfig(out_dir=tmp_path)
    _write_state(config, 1, {"contributorIds": [f"{FIRST}.contributor"], "verifierIds": []})

    check_participants_in_round(
        config,
        1,
        [ParticipantIdentity.contributor(FIRST)],
        [ParticipantIdentity.verifier(SECOND)],
    )


def test_unreadable_or_malformed_state_file(tmp_path: Path) -> None:
    config = RunConfig(out_dir=tmp_path)
    with pytest.raises(MembershipFileError, match="Unable to read"):
        check_participants_in_round(config, 9, [])

    path = round_state_path(config.transcript_dir(), 3)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(MembershipFileError, match="Unable to deserialize"):
        check_participants_in_round(config, 3, [])

    path.write_text(json.dumps({"contributorIds": "x", "verifierIds": []}), encoding="utf-8")
    with pytest.raises(MembershipFileError, match="contributorIds"):
        check_participants_in_round(config, 3, [])
