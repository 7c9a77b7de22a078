import logging

from digitalroom.room.booth import Booth, BoothStatus
from digitalroom.room.state import RoomState


def make_booth(clock=None, **kwargs) -> tuple[Booth, RoomState]:
    state = RoomState()
    if clock is not None:
        kwargs["clock"] = clock
    return Booth(state, **kwargs), state


def test_claim_on_vacant_booth_binds_identity_and_handle() -> None:
    booth, state = make_booth()

    result = booth.claim("c1", "alice")

    assert result.granted and result.changed
    assert booth.status is BoothStatus.HELD
    assert (state.dj_id, state.dj_name) == ("c1", "alice")


def test_claims_from_other_identities_never_move_the_booth() -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    for handle, name in [("c2", "bob"), ("c3", "carol"), ("c4", "dave")]:
        result = booth.claim(handle, name)
        assert not result.granted
        assert (result.holder_id, result.holder_name) == ("c1", "alice")

    assert (state.dj_id, state.dj_name) == ("c1", "alice")


def test_repeated_claim_by_holder_is_a_no_op() -> None:
    booth, _ = make_booth()
    booth.claim("c1", "alice")

    result = booth.claim("c1", "alice")

    assert result.granted
    assert not result.changed


def test_claim_without_identity_is_refused() -> None:
    booth, state = make_booth()

    assert not booth.claim("c1", None).granted
    assert state.dj_id is None


def test_should_heal_only_for_same_identity_on_new_handle() -> None:
    booth, _ = make_booth()
    booth.claim("c1", "alice")

    assert booth.should_heal("c2", "alice")
    assert not booth.should_heal("c1", "alice")
    assert not booth.should_heal("c2", "bob")
    assert not booth.should_heal("c2", None)


def test_heal_rebinds_handle_and_keeps_identity() -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    assert booth.heal("c2", "alice")
    assert (state.dj_id, state.dj_name) == ("c2", "alice")


def test_authorize_update_heals_reconnected_holder() -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    decision = booth.authorize_update("c2", "alice")

    assert decision.accepted and decision.healed
    assert state.dj_id == "c2"


def test_authorize_update_rejects_strangers_and_logs(caplog) -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    with caplog.at_level(logging.WARNING):
        decision = booth.authorize_update("c9", "mallory")

    assert not decision.accepted
    assert state.dj_id == "c1"
    assert any("rejected" in record.getMessage() for record in caplog.records)


def test_authorize_update_on_vacant_booth_is_rejected() -> None:
    booth, _ = make_booth()

    assert not booth.authorize_update("c1", "alice").accepted


def test_reset_vacates_and_reports_change_once() -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    assert booth.reset()
    assert not booth.reset()
    assert state.dj_id is None and state.dj_name is None


def test_reclaim_if_orphaned_requires_missing_holder() -> None:
    booth, state = make_booth()
    booth.claim("c1", "alice")

    assert not booth.reclaim_if_orphaned(lambda handle: True)
    assert booth.reclaim_if_orphaned(lambda handle: False)
    assert booth.status is BoothStatus.VACANT
    assert not booth.reclaim_if_orphaned(lambda handle: False)


def test_hold_expiry_only_applies_when_configured() -> None:
    now = [0]
    unlimited, _ = make_booth(clock=lambda: now[0])
    limited, _ = make_booth(clock=lambda: now[0], max_hold_seconds=60)
    unlimited.claim("c1", "alice")
    limited.claim("c1", "alice")

    now[0] = 61_000

    assert not unlimited.hold_expired()
    assert limited.hold_expired()
