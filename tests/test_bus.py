import pytest

from ceremony_monitor.bus import InMemoryEventBus
from ceremony_monitor.errors import AddressParseError, PublishError, UnknownRoleError
from ceremony_monitor.events import (
    ParticipantDropped,
    RoundStarted,
    RoundWaitingForParticipants,
    ShutdownReason,
    ShutdownRequested,
    SuccessfulContribution,
)
from ceremony_monitor.participants import ParticipantIdentity, ParticipantRole, parse_address

CONTRIBUTOR = "aleo1hsr8czcmxxanpv6cvwct75wep5ldhd2s702zm8la47dwcxjveypqsv7689"


def test_every_subscriber_sees_events_in_publish_order() -> None:
    bus = InMemoryEventBus()
    first = bus.subscribe()
    second = bus.subscribe()

    bus.publish(RoundWaitingForParticipants(1))
    bus.publish(RoundStarted(1))

    assert first.drain() == [RoundWaitingForParticipants(1), RoundStarted(1)]
    assert second.get(timeout=1) == RoundWaitingForParticipants(1)
    assert second.get(timeout=1) == RoundStarted(1)


def test_unsubscribed_and_closed_bus() -> None:
    bus = InMemoryEventBus()
    subscription = bus.subscribe()
    subscription.close()
    bus.publish(RoundStarted(1))
    assert subscription.drain() == []

    bus.close()
    with pytest.raises(PublishError, match="closed"):
        bus.publish(RoundStarted(2))


def test_event_message_shapes() -> None:
    contributor = ParticipantIdentity.contributor(CONTRIBUTOR)

    assert RoundStarted(4).to_dict() == {"event": "round_started", "round": 4}
    assert ShutdownRequested(ShutdownReason.TEST_FINISHED).to_dict() == {
        "event": "shutdown_requested",
        "reason": "test_finished",
    }
    assert ParticipantDropped(contributor).to_dict() == {
        "event": "participant_dropped",
        "participant": {"address": CONTRIBUTOR, "role": "contributor"},
    }
    assert SuccessfulContribution(contributor, 12).to_dict()["chunk"] == 12


def test_participant_parsing() -> None:
    assert parse_address(CONTRIBUTOR) == CONTRIBUTOR
    assert ParticipantRole.parse("verifier") is ParticipantRole.VERIFIER
    assert ParticipantIdentity.verifier(CONTRIBUTOR).id_on_coordinator() == (
        f"{CONTRIBUTOR}.verifier"
    )

    with pytest.raises(AddressParseError, match="start with"):
        parse_address("alex1" + CONTRIBUTOR[5:])
    with pytest.raises(AddressParseError, match="63 characters"):
        parse_address(CONTRIBUTOR[:-1])
    with pytest.raises(AddressParseError, match="invalid characters"):
        parse_address(CONTRIBUTOR[:-1] + "b")
    with pytest.raises(UnknownRoleError):
        ParticipantRole.parse("Contributor")
