"""Behaviour of the room managers against recorded websocket fakes."""

from __future__ import annotations

import logging

import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import room_dj_changes_total, signal_relays_total
from digitalroom.presence.store import Participant
from digitalroom.realtime.hub import Acknowledgement
from digitalroom.realtime.managers import RoomManager
from digitalroom.room.playback import PlaybackUpdate

from conftest import DummyWebSocket


async def join(room: RoomManager, name: str) -> tuple[str, DummyWebSocket]:
    websocket = DummyWebSocket()
    handle = await room.connect(websocket)
    await room.authenticate(handle, Participant(id=handle, name=name))
    return handle, websocket


async def drop(room: RoomManager, handle: str, websocket: DummyWebSocket) -> None:
    await websocket.close()
    await room.disconnect(handle)


@pytest.mark.anyio("asyncio")
async def test_connect_sends_init_with_server_time(room, clock) -> None:
    websocket = DummyWebSocket()

    handle = await room.connect(websocket)

    init = websocket.events("init")[0]
    assert init["yourId"] == handle
    assert init["serverNow"] == clock.now
    assert init["state"]["serverTime"] == clock.now
    assert init["state"]["users"] == []
    assert init["state"]["messages"] == []


@pytest.mark.anyio("asyncio")
async def test_authenticate_announces_user_and_entry_once_per_identity(room) -> None:
    _, websocket = await join(room, "alice")
    await join(room, "alice")

    assert websocket.events("authSuccess")[0]["username"] == "alice"
    entered = [message for message in room.messages.snapshot() if message["text"] == "alice entered."]
    assert len(entered) == 1
    assert [user["name"] for user in websocket.events("userUpdate")[-1]] == ["alice"]


@pytest.mark.anyio("asyncio")
async def test_authenticate_after_socket_closed_is_ignored(room) -> None:
    websocket = DummyWebSocket()
    handle = await room.connect(websocket)
    await websocket.close()

    admitted = await room.authenticate(handle, Participant(id=handle, name="alice"))

    assert not admitted
    assert handle not in room.store


@pytest.mark.anyio("asyncio")
async def test_busy_booth_tells_only_the_claimant(room) -> None:
    dj, _ = await join(room, "alice")
    await room.playback.request_dj(dj)
    other, other_socket = await join(room, "bob")

    result = await room.playback.request_dj(other)

    assert result is not None and not result.granted
    assert other_socket.events("djChanged")[-1] == {"djId": dj, "djName": "alice"}
    assert "BOOTH BUSY: alice" in other_socket.events("newMessage")[-1]["text"]
    assert room.state.dj_id == dj


@pytest.mark.anyio("asyncio")
async def test_reconnecting_dj_heals_on_authenticate(room) -> None:
    first, first_socket = await join(room, "alice")
    await room.playback.request_dj(first)
    await drop(room, first, first_socket)
    before = room_dj_changes_total.sample("heal")

    second, second_socket = await join(room, "alice")

    assert room.state.dj_id == second
    assert second_socket.events("djChanged")[-1] == {"djId": second, "djName": "alice"}
    assert room_dj_changes_total.sample("heal") == before + 1


@pytest.mark.anyio("asyncio")
async def test_update_from_other_tab_of_the_dj_heals_and_applies(room) -> None:
    first, _ = await join(room, "alice")
    second, _ = await join(room, "alice")
    await room.playback.request_dj(first)

    accepted = await room.playback.submit_update(
        second, PlaybackUpdate(is_playing=True, seek_position_ms=0, current_track="song")
    )

    assert accepted
    assert room.state.dj_id == second
    assert room.state.current_track == "song"


@pytest.mark.anyio("asyncio")
async def test_disconnect_leaves_booth_for_the_reconciler(room) -> None:
    dj, dj_socket = await join(room, "alice")
    await room.playback.request_dj(dj)

    await drop(room, dj, dj_socket)

    assert room.state.dj_id == dj


@pytest.mark.anyio("asyncio")
async def test_reconciler_vacates_orphaned_booth_exactly_once(room) -> None:
    dj, dj_socket = await join(room, "alice")
    await room.playback.request_dj(dj)
    _, watcher = await join(room, "bob")
    await drop(room, dj, dj_socket)
    watcher.clear()

    first = await room.reconciler.run_once()
    second = await room.reconciler.run_once()

    assert first.booth_reclaimed and not second.booth_reclaimed
    assert room.state.dj_id is None and room.state.dj_name is None
    assert watcher.events("djChanged") == [{"djId": None}]


@pytest.mark.anyio("asyncio")
async def test_reconciler_enforces_configured_hold_limit(clock) -> None:
    room = RoomManager(clock=clock, dj_max_hold_seconds=30)
    dj, _ = await join(room, "alice")
    await room.playback.request_dj(dj)

    clock.advance(29_000)
    assert not (await room.reconciler.run_once()).booth_reclaimed
    clock.advance(2_000)
    assert (await room.reconciler.run_once()).booth_reclaimed
    assert room.state.dj_id is None


@pytest.mark.anyio("asyncio")
async def test_heartbeat_only_with_dj_and_track(room) -> None:
    dj, _ = await join(room, "alice")
    _, listener = await join(room, "bob")

    assert not await room.playback.broadcast_heartbeat()
    await room.playback.request_dj(dj)
    await room.playback.submit_update(dj, PlaybackUpdate(is_playing=True, current_track="song"))

    assert await room.playback.broadcast_heartbeat()
    assert listener.events("roomSync")[-1]["currentTrack"] == "song"


@pytest.mark.anyio("asyncio")
async def test_voice_join_lists_peers_and_relays_signals(room) -> None:
    alice, alice_socket = await join(room, "alice")
    bob, bob_socket = await join(room, "bob")
    await room.relay.join_voice(alice)

    peers = await room.relay.join_voice(bob)
    delivered = await room.relay.relay_voice_signal(bob, alice, {"type": "offer", "sdp": "v=0"})

    assert peers == [alice]
    assert bob_socket.events("voice-peer-list")[-1] == [alice]
    assert delivered
    assert alice_socket.events("voice-signal")[-1] == {"from": bob, "signal": {"type": "offer", "sdp": "v=0"}}


@pytest.mark.anyio("asyncio")
async def test_relay_to_vanished_peer_is_dropped_and_counted(room, caplog) -> None:
    alice, _ = await join(room, "alice")
    before = signal_relays_total.sample("voice", "dropped")

    with caplog.at_level(logging.DEBUG, logger="digitalroom.realtime.managers"):
        delivered = await room.relay.relay_voice_signal(alice, "gone", {"candidate": "x"})

    assert not delivered
    assert signal_relays_total.sample("voice", "dropped") == before + 1
    assert any("Dropped voice relay" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio("asyncio")
async def test_stream_join_notifies_broadcaster_and_tags_signals(room) -> None:
    streamer, streamer_socket = await join(room, "alice")
    viewer, viewer_socket = await join(room, "bob")
    await room.relay.start_stream(streamer)

    assert await room.relay.join_stream(viewer, streamer)
    assert streamer_socket.events("stream-peer-join") == [viewer]

    await room.relay.relay_stream_signal(streamer, viewer, {"type": "offer"}, streamer)
    assert viewer_socket.events("stream-signal")[-1] == {
        "from": streamer,
        "signal": {"type": "offer"},
        "streamerId": streamer,
    }
    assert viewer_socket.events("userPartialUpdate")[-1] == {"id": streamer, "isLive": True}


@pytest.mark.anyio("asyncio")
async def test_stream_cap_sends_advisory(clock) -> None:
    room = RoomManager(clock=clock, max_streams=1)
    first, _ = await join(room, "alice")
    second, second_socket = await join(room, "bob")

    assert await room.relay.start_stream(first)
    assert not await room.relay.start_stream(second)
    assert "Stream limit reached" in second_socket.events("newMessage")[-1]["text"]


@pytest.mark.anyio("asyncio")
async def test_disconnect_tears_down_voice_and_stream_membership(room) -> None:
    streamer, streamer_socket = await join(room, "alice")
    watched, watched_socket = await join(room, "carol")
    viewer, viewer_socket = await join(room, "bob")
    await room.relay.join_voice(streamer)
    await room.relay.join_voice(viewer)
    await room.relay.start_stream(streamer)
    await room.relay.start_stream(watched)
    await room.relay.join_stream(viewer, streamer)
    await room.relay.join_stream(streamer, watched)
    viewer_socket.clear()
    watched_socket.clear()

    await drop(room, streamer, streamer_socket)

    assert streamer not in room.voice
    assert streamer not in room.streams
    assert all(streamer not in (edge.viewer_id, edge.streamer_id) for edge in room.streams.edges())
    assert [member["id"] for member in viewer_socket.events("voice-update")[-1]] == [viewer]
    assert viewer_socket.events("stream-update")[-1] == [{"streamerId": watched, "streamerName": "carol"}]
    assert watched_socket.events("stream-peer-leave") == [streamer]
    assert [user["name"] for user in viewer_socket.events("userUpdate")[-1]] == ["carol", "bob"]


@pytest.mark.anyio("asyncio")
async def test_reconciler_prunes_relay_entries_without_transport(room) -> None:
    alice, alice_socket = await join(room, "alice")
    await room.relay.join_voice(alice)
    await room.relay.start_stream(alice)
    # Transport died without the endpoint running its cleanup.
    alice_socket.application_state = WebSocketState.DISCONNECTED

    report = await room.reconciler.run_once()

    assert report.relay_entries_pruned == 2
    assert alice not in room.voice and alice not in room.streams


@pytest.mark.anyio("asyncio")
async def test_chat_rate_limit_answers_with_advisory(room) -> None:
    alice, socket = await join(room, "alice")

    results = [await room.presence.send_message(alice, f"line {index}") for index in range(11)]

    assert results[:10] == [True] * 10
    assert results[10] is False
    assert "too fast" in socket.events("newMessage")[-1]["text"]


@pytest.mark.anyio("asyncio")
async def test_guest_chat_and_empty_message(room) -> None:
    websocket = DummyWebSocket()
    handle = await room.connect(websocket)

    assert await room.presence.send_message(handle, "  hello  ")
    assert room.messages.snapshot()[-1]["userName"] == "Guest"
    assert room.messages.snapshot()[-1]["text"] == "hello"
    assert not await room.presence.send_message(handle, "   ")
    assert "invalid or empty" in websocket.events("newMessage")[-1]["text"]


@pytest.mark.anyio("asyncio")
async def test_private_message_reaches_every_tab_of_both_parties(room) -> None:
    alice, alice_socket = await join(room, "alice")
    _, alice_tab = await join(room, "alice")
    _, bob_socket = await join(room, "bob")
    _, carol_socket = await join(room, "carol")

    assert await room.presence.private_message(alice, "bob", "psst")

    for websocket in (alice_socket, alice_tab, bob_socket):
        assert websocket.events("privateMessage")[-1]["text"] == "psst"
    assert carol_socket.events("privateMessage") == []


@pytest.mark.anyio("asyncio")
async def test_kick_closes_target_connection(room) -> None:
    target, websocket = await join(room, "mallory")

    assert await room.kick(target)
    assert websocket.closed_with == (4001, "Kicked by admin")
    assert not await room.kick("unknown")


@pytest.mark.anyio("asyncio")
async def test_acknowledgement_is_sent_at_most_once(room) -> None:
    websocket = DummyWebSocket()
    handle = await room.connect(websocket)
    ack = Acknowledgement(room.hub, handle, 7)

    assert await ack({"success": True})
    assert not await ack({"success": False})
    assert [frame for frame in websocket.sent if frame["type"] == "ack"] == [
        {"type": "ack", "ack": 7, "data": {"success": True}}
    ]


@pytest.mark.anyio("asyncio")
async def test_acknowledgement_without_id_sends_nothing(room) -> None:
    websocket = DummyWebSocket()
    handle = await room.connect(websocket)
    websocket.clear()

    assert not await Acknowledgement(room.hub, handle, None)({"success": True})
    assert websocket.sent == []


@pytest.mark.anyio("asyncio")
async def test_start_and_stop_background_loops(room) -> None:
    await room.start()
    await room.start()
    assert len(room._tasks) == 2

    await room.stop()
    assert room._tasks == []


@pytest.mark.anyio("asyncio")
async def test_announcement_is_broadcast_and_cleared(room) -> None:
    _, listener = await join(room, "bob")

    await room.playback.announce("Doors close at midnight")
    assert listener.events("roomUpdate")[-1]["announcement"] == "Doors close at midnight"

    await room.playback.announce("")
    assert room.state.announcement is None


@pytest.mark.anyio("asyncio")
async def test_stopping_a_stream_tells_its_viewers(room) -> None:
    streamer, _ = await join(room, "alice")
    viewer, viewer_socket = await join(room, "bob")
    await room.relay.start_stream(streamer)
    await room.relay.join_stream(viewer, streamer)

    assert await room.relay.stop_stream(streamer)

    assert viewer_socket.events("stream-ended") == [{"streamerId": streamer}]
    assert room.streams.watching(viewer) == []


@pytest.mark.anyio("asyncio")
async def test_disconnecting_broadcaster_tells_its_viewers(room) -> None:
    streamer, streamer_socket = await join(room, "alice")
    viewer, viewer_socket = await join(room, "bob")
    await room.relay.start_stream(streamer)
    await room.relay.join_stream(viewer, streamer)

    await drop(room, streamer, streamer_socket)

    assert viewer_socket.events("stream-ended") == [{"streamerId": streamer}]


@pytest.mark.anyio("asyncio")
async def test_reconciler_tells_broadcaster_when_stale_viewer_is_pruned(room) -> None:
    streamer, streamer_socket = await join(room, "alice")
    viewer, viewer_socket = await join(room, "bob")
    await room.relay.start_stream(streamer)
    await room.relay.join_stream(viewer, streamer)
    viewer_socket.application_state = WebSocketState.DISCONNECTED

    report = await room.reconciler.run_once()

    assert report.relay_entries_pruned == 1
    assert room.streams.edges() == set()
    assert streamer_socket.events("stream-peer-leave") == [viewer]
