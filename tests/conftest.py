"""Shared fixtures: an in-memory Spotify double and an engine wired to it."""
from types import SimpleNamespace
from typing import Optional

import pytest

from barqueue import errors
from barqueue.engine import QueueEngine
from barqueue.errors import NotAuthorized, ProviderError
from barqueue.models import Track
from barqueue.ratelimit import RateLimiter
from barqueue.spotify import Playback, track_id_from_uri
from barqueue.store import QueueStore
from barqueue.web.state import QueueBroadcaster


def make_track(n) -> Track:
    return Track(
        id=f"t{n}",
        title=f"Song {n}",
        artist="Artist",
        album_art=None,
        uri=f"spotify:track:t{n}",
    )


class FakeSpotify:
    """Remote playlist + player kept in memory. Records every call."""

    playlist_name = "Bar Queue"

    def __init__(self):
        self.authorized = True
        self.playlist: list[Track] = []
        self.playback: Optional[Playback] = Playback(track=None)
        self.playback_error: Optional[Exception] = None
        self.playlist_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.device_list = [{"id": "d1", "name": "Bar speakers", "is_active": True}]
        self.catalog: dict[str, Track] = {}
        self.calls: list[tuple] = []
        self.session = SimpleNamespace(
            playlist_id="pl1",
            user_id="staff",
            refresh_token="refresh",
            token_expires_at_ms=1_700_000_000_000,
            login_url=lambda: "https://accounts.spotify.com/authorize?client_id=abc",
        )

    @property
    def playlist_uri(self):
        return "spotify:playlist:pl1"

    def _track(self, uri: str) -> Track:
        tid = track_id_from_uri(uri)
        return self.catalog.get(tid) or Track(id=tid, title=tid or "", uri=uri)

    def _write(self, *call):
        self.calls.append(call)
        if self.write_error:
            raise self.write_error

    async def is_authorized(self):
        return self.authorized

    async def ensure_playlist(self):
        return "pl1" if self.authorized else None

    async def playlist_tracks(self):
        if not self.authorized:
            raise NotAuthorized()
        if self.playlist_error:
            raise self.playlist_error
        return list(self.playlist)

    async def currently_playing(self):
        if self.playback_error:
            raise self.playback_error
        return self.playback

    async def add_track(self, uri, position=None):
        self._write("add_track", uri, position)
        track = self._track(uri)
        if position is None:
            self.playlist.append(track)
        else:
            self.playlist.insert(position, track)
        return True

    async def remove_track(self, uri):
        self._write("remove_track", uri)
        self.playlist = [t for t in self.playlist if t.uri != uri]
        return True

    async def replace_tracks(self, uris):
        self._write("replace_tracks", list(uris))
        self.playlist = [self._track(u) for u in uris]
        return True

    async def clear_playlist(self):
        if not self.authorized:
            return False
        self._write("clear_playlist")
        self.playlist = []
        return True

    async def get_track(self, track_id):
        return self.catalog.get(track_id)

    async def search(self, query):
        return [t for t in self.catalog.values() if query.lower() in t.title.lower()]

    async def play(self):
        self._player("play")

    async def pause(self):
        self._player("pause")

    async def next_track(self):
        self._player("next_track")

    async def previous_track(self):
        self._player("previous_track")

    async def play_playlist(self, offset_uri=None):
        self._player("play_playlist", offset_uri)

    async def devices(self):
        self._player("devices")
        return list(self.device_list)

    async def transfer(self, device_id, play=True):
        self._player("transfer", device_id, play)

    def _player(self, *call):
        if not self.authorized:
            raise NotAuthorized()
        self.calls.append(call)
        if self.write_error:
            raise self.write_error

    async def close(self):
        self.calls.append(("close",))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def errors_log(tmp_path, monkeypatch):
    """Keep structured error entries out of the repo."""
    monkeypatch.setattr(errors, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(errors, "ERRORS_LOG", tmp_path / "errors.log")
    return tmp_path / "errors.log"


@pytest.fixture
def fake_spotify():
    return FakeSpotify()


@pytest.fixture
def clock():
    return SimpleNamespace(now=1_000_000.0)


@pytest.fixture
def store(clock):
    return QueueStore(RateLimiter(limit=3, window_minutes=30, clock=lambda: clock.now))


@pytest.fixture
def broadcaster():
    return QueueBroadcaster()


@pytest.fixture
def engine(store, fake_spotify, broadcaster):
    return QueueEngine(store, fake_spotify, broadcaster, sync_interval=3600)


def drain_events(q) -> list:
    events = []
    while not q.empty():
        events.append(q.get_nowait())
    return events


@pytest.fixture
def upstream_error():
    return ProviderError("Spotify POST /playlists/pl1/tracks HTTP 502: bad gateway", 502)
