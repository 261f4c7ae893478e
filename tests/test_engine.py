import pytest

from barqueue.errors import DeviceUnavailable, NotAuthorized, ValidationError
from barqueue.models import QueueItem, Track
from barqueue.spotify import Playback
from barqueue.web.state import QUEUE_UPDATE

from conftest import drain_events, make_track


@pytest.mark.anyio
async def test_add_broadcasts_then_writes_playlist_in_background(engine, fake_spotify, broadcaster):
    events = broadcaster.subscribe("display")

    item = await engine.add(make_track(1), "Carol")

    event, data = drain_events(events)[0]
    assert event == QUEUE_UPDATE
    assert data["queue"][0]["requestedBy"] == "Carol"

    await engine.drain()
    assert ("add_track", "spotify:track:t1", None) in fake_spotify.calls
    assert item.requested_by == "Carol"


@pytest.mark.anyio
async def test_failed_playlist_write_keeps_local_item(engine, fake_spotify, upstream_error):
    failures = []
    engine.on_remote_failure = lambda what, err: failures.append((what, err))
    fake_spotify.write_error = upstream_error

    await engine.add(make_track(1), "Carol")
    await engine.drain()

    assert [q.id for q in engine.state.queue] == ["t1"]
    assert failures == [("add spotify:track:t1", upstream_error)]


@pytest.mark.anyio
async def test_track_without_uri_is_not_sent_to_spotify(engine, fake_spotify):
    await engine.add(Track(id=None, title="X"), "Carol")
    await engine.drain()
    assert fake_spotify.calls == []


@pytest.mark.anyio
async def test_remove_by_id_also_removes_remote_uri(engine, fake_spotify):
    await engine.add(make_track(1), "Alice")
    await engine.add(make_track(2), "Alice")
    await engine.drain()

    await engine.remove(track_id="t1")

    assert ("remove_track", "spotify:track:t1") in fake_spotify.calls
    assert [t.id for t in fake_spotify.playlist] == ["t2"]


@pytest.mark.anyio
async def test_remove_of_unknown_track_is_silent(engine, fake_spotify, broadcaster):
    events = broadcaster.subscribe("display")
    removed = await engine.remove(uri="spotify:track:missing")
    assert removed == []
    assert drain_events(events) == []
    assert fake_spotify.calls == []


@pytest.mark.anyio
async def test_reorder_pushes_now_playing_then_queue(engine, fake_spotify, store):
    for n in (1, 2, 3):
        store.add(make_track(n), "Alice")
    store.advance()

    state, synced = await engine.reorder(["spotify:track:t3", "spotify:track:t2"])

    assert synced
    assert [q.id for q in state.queue] == ["t3", "t2"]
    assert fake_spotify.calls[-1] == (
        "replace_tracks", ["spotify:track:t1", "spotify:track:t3", "spotify:track:t2"]
    )


@pytest.mark.anyio
async def test_reorder_reports_unsynced_when_spotify_fails(engine, fake_spotify, store, upstream_error):
    store.add(make_track(1), "Alice")
    store.add(make_track(2), "Alice")
    fake_spotify.write_error = upstream_error

    state, synced = await engine.reorder(["spotify:track:t2", "spotify:track:t1"])

    assert not synced
    assert [q.id for q in state.queue] == ["t2", "t1"]


@pytest.mark.anyio
@pytest.mark.parametrize("uris", [None, [], "spotify:track:t1"])
async def test_reorder_needs_a_list(engine, uris):
    with pytest.raises(ValidationError):
        await engine.reorder(uris)


@pytest.mark.anyio
async def test_advance_with_empty_queue_clears_and_emits(engine, fake_spotify, store, broadcaster):
    store.add(make_track(1), "Alice")
    store.advance()
    events = broadcaster.subscribe("display")

    now_playing = await engine.advance()

    assert now_playing is None
    assert ("remove_track", "spotify:track:t1") in fake_spotify.calls
    event, data = drain_events(events)[-1]
    assert event == QUEUE_UPDATE
    assert data == {"nowPlaying": None, "queue": []}


@pytest.mark.anyio
async def test_advance_dequeues_head(engine, store):
    store.add(make_track(1), "Alice")
    store.add(make_track(2), "Bob")
    store.advance()

    now_playing = await engine.advance()

    assert now_playing.id == "t2"
    assert now_playing.requested_by == "Bob"
    assert engine.state.queue == ()


@pytest.mark.anyio
async def test_play_track_promotes_with_original_requester(engine, fake_spotify, store):
    fake_spotify.catalog["t3"] = make_track(3)
    for n in (1, 2, 3):
        await engine.add(make_track(n), "Alice" if n != 3 else "Dana")
    await engine.drain()
    store.advance()
    # Spotify is still on the old track when the pass after the promotion runs
    fake_spotify.playback = None

    state = await engine.play_track("spotify:track:t3")

    assert state.now_playing.id == "t3"
    assert state.now_playing.requested_by == "Dana"
    assert state.now_playing.track.title == "Song 3"
    assert [q.id for q in state.queue] == ["t2"]
    assert [t.id for t in fake_spotify.playlist] == ["t3", "t2"]
    assert ("add_track", "spotify:track:t3", 0) in fake_spotify.calls
    assert ("play_playlist", None) in fake_spotify.calls


@pytest.mark.anyio
async def test_play_track_failure_leaves_local_state_alone(engine, fake_spotify, store, broadcaster):
    await engine.add(make_track(1), "Alice")
    await engine.add(make_track(2), "Bob")
    await engine.drain()
    store.advance()
    before = store.state
    events = broadcaster.subscribe("display")

    async def no_device(offset_uri=None):
        raise DeviceUnavailable()

    fake_spotify.play_playlist = no_device

    with pytest.raises(DeviceUnavailable):
        await engine.play_track("spotify:track:t2")

    assert store.state is before
    assert drain_events(events) == []

    # Spotify is still on the old track; the next pass keeps its requester
    fake_spotify.playback = Playback(track=make_track(1), context_uri="spotify:playlist:pl1")
    await engine.sync()
    assert (store.state.now_playing.id, store.state.now_playing.requested_by) == ("t1", "Alice")
    assert [(q.id, q.requested_by) for q in store.state.queue] == [("t2", "Bob")]


@pytest.mark.anyio
async def test_play_track_requires_authorization(engine, fake_spotify):
    fake_spotify.authorized = False
    with pytest.raises(NotAuthorized):
        await engine.play_track("spotify:track:t1")


@pytest.mark.anyio
async def test_play_track_requires_uri(engine):
    with pytest.raises(ValidationError):
        await engine.play_track("")


@pytest.mark.anyio
async def test_skip_forward_drops_previous_track(engine, fake_spotify, store):
    await engine.add(make_track(1), "Alice")
    await engine.add(make_track(2), "Bob")
    await engine.drain()
    store.advance()
    fake_spotify.playback = Playback(track=make_track(2), context_uri="spotify:playlist:pl1")

    await engine.skip_forward()

    assert ("next_track",) in fake_spotify.calls
    assert ("remove_track", "spotify:track:t1") in fake_spotify.calls
    assert engine.state.now_playing.id == "t2"
    assert engine.state.now_playing.requested_by == "Bob"
    assert engine.state.queue == ()


@pytest.mark.anyio
async def test_set_now_playing_manual(engine, store):
    store.add(make_track(1), "Alice")
    item = QueueItem.from_payload({**make_track(1).to_dict(), "requestedBy": "Staff"})
    await engine.set_now_playing(item)
    assert engine.state.now_playing.requested_by == "Staff"
    assert engine.state.queue == ()


@pytest.mark.anyio
async def test_auth_status_shape(engine):
    status = await engine.auth_status()
    assert status == {
        "authorized": True,
        "playlistId": "pl1",
        "userId": "staff",
        "playlistName": "Bar Queue",
        "tokenExpiresAt": 1_700_000_000_000,
        "hasRefreshToken": True,
    }


@pytest.mark.anyio
async def test_stop_waits_for_pending_writes_and_closes_client(engine, fake_spotify):
    await engine.add(make_track(1), "Alice")
    await engine.stop()
    assert ("add_track", "spotify:track:t1", None) in fake_spotify.calls
    assert fake_spotify.calls[-1] == ("close",)
