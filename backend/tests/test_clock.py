from digitalroom.room.clock import ClockSkew, reconcile, target_position


def test_skew_handshake_translates_local_time() -> None:
    skew = ClockSkew.from_handshake(local_now=10_500, server_now=10_000)

    assert skew.offset_ms == 500
    assert skew.server_now(12_500) == 12_000


def test_target_position_while_playing_counts_from_start() -> None:
    assert target_position(is_playing=True, started_at=4_000, paused_at=0, server_now=9_000) == 5_000


def test_target_position_while_paused_uses_paused_offset() -> None:
    assert target_position(is_playing=False, started_at=4_000, paused_at=1_234, server_now=9_000) == 1_234


def test_target_position_never_negative() -> None:
    assert target_position(is_playing=True, started_at=10_000, paused_at=0, server_now=9_000) == 0


def test_reconcile_ignores_jitter_within_tolerance() -> None:
    result = reconcile(
        6_400, is_playing=True, started_at=4_000, paused_at=0, server_now=9_000, tolerance_ms=1_500
    )

    assert result.target_ms == 5_000
    assert result.drift_ms == 1_400
    assert result.seek is False


def test_reconcile_seeks_when_drift_exceeds_tolerance() -> None:
    result = reconcile(
        8_000, is_playing=True, started_at=4_000, paused_at=0, server_now=9_000, tolerance_ms=1_500
    )

    assert result.seek is True
    assert result.target_ms == 5_000


def test_reconcile_paused_player_always_follows_pause_point() -> None:
    result = reconcile(2_010, is_playing=False, started_at=None, paused_at=2_000, server_now=9_000)

    assert result.seek is True
    assert result.target_ms == 2_000
