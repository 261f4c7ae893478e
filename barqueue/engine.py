"""QueueEngine — command layer over the store, Spotify and the broadcaster.

Called from HTTP/WebSocket handlers. Local state always changes first; the
matching Spotify write is best-effort and any divergence it leaves behind is
repaired by the next reconciliation pass.
"""
import asyncio
import logging
from typing import Callable, Optional

from .config import PLAYLIST_NAME, UNKNOWN_REQUESTER
from .errors import NotAuthorized, ProviderError, ValidationError
from .models import QueueItem, QueueState, Track, now_ms
from .spotify import SpotifyClient, track_id_from_uri
from .store import QueueStore
from .sync import Reconciler, SyncOutcome

logger = logging.getLogger(__name__)


class QueueEngine:
    def __init__(self, store: QueueStore, spotify: SpotifyClient, broadcaster, sync_interval: Optional[float] = None):
        """broadcaster: QueueBroadcaster instance for pushing state to clients."""
        self.store = store
        self.spotify = spotify
        self.broadcaster = broadcaster
        kwargs = {"interval": sync_interval} if sync_interval is not None else {}
        self.reconciler = Reconciler(store, spotify, on_change=broadcaster.publish, **kwargs)

        # Called with (what, error) whenever a best-effort Spotify write fails
        self.on_remote_failure: Optional[Callable[[str, Exception], None]] = None
        self._pending: set[asyncio.Task] = set()

    @property
    def state(self) -> QueueState:
        return self.store.state

    def snapshot(self) -> dict:
        return self.store.state.to_dict()

    async def publish(self):
        await self.broadcaster.publish(self.store.state)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self):
        self.reconciler.start()
        logger.info("Sync loop started (every %ss)", self.reconciler.interval)

    async def stop(self):
        await self.reconciler.stop()
        await self.drain()
        await self.spotify.close()

    async def drain(self):
        """Wait for background Spotify writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Remote writes ────────────────────────────────────────────────────────

    async def _best_effort(self, coro, what: str) -> bool:
        try:
            await coro
            return True
        except ProviderError as e:
            logger.warning("Spotify %s failed, local queue kept: %s", what, e)
            if self.on_remote_failure:
                self.on_remote_failure(what, e)
            return False

    def _spawn(self, coro, what: str):
        task = asyncio.create_task(self._best_effort(coro, what))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ── Queue commands ───────────────────────────────────────────────────────

    async def add(self, track: Optional[Track], requested_by) -> QueueItem:
        item = self.store.add(track, requested_by)
        await self.publish()
        if item.uri:
            self.reconciler.expect(item.uri)
            self._spawn(self._push_add(item.uri), f"add {item.uri}")
        return item

    async def _push_add(self, uri: str):
        added = False
        try:
            added = await self.spotify.add_track(uri)
        finally:
            if not added:
                # Never reached the playlist; let the next pass drop it
                self.reconciler.forget(uri)

    async def remove(self, track_id: Optional[str] = None, uri: Optional[str] = None) -> list[QueueItem]:
        removed = self.store.remove(track_id, uri)
        if removed:
            for u in dict.fromkeys(item.uri for item in removed if item.uri):
                await self._best_effort(self.spotify.remove_track(u), f"remove {u}")
            await self.publish()
        return removed

    async def reorder(self, uris) -> tuple[QueueState, bool]:
        """Returns the new state and whether Spotify accepted the new order."""
        if not isinstance(uris, list) or not uris:
            raise ValidationError("Missing uris")
        state = self.store.reorder(uris)
        synced = await self._best_effort(
            self.spotify.replace_tracks(state.playlist_uris()), "reorder playlist"
        )
        await self.publish()
        return self.store.state, synced

    async def advance(self) -> Optional[QueueItem]:
        prev = self.store.state.now_playing
        if prev and prev.uri:
            await self._best_effort(self.spotify.remove_track(prev.uri), f"remove {prev.uri}")
        self.store.advance()
        await self.publish()
        return self.store.state.now_playing

    async def set_now_playing(self, item: QueueItem) -> QueueItem:
        self.store.set_now_playing(item)
        await self.publish()
        return item

    async def clear_queue(self):
        self.store.clear()
        await self.publish()

    async def clear_playlist(self) -> bool:
        return await self.spotify.clear_playlist()

    async def sync(self) -> SyncOutcome:
        return await self.reconciler.reconcile()

    # ── Catalog ──────────────────────────────────────────────────────────────

    async def search(self, query: str) -> list[Track]:
        query = (query or "").strip()
        if not query:
            return []
        return await self.spotify.search(query)

    # ── Playback ─────────────────────────────────────────────────────────────

    async def play(self):
        await self.spotify.play()

    async def pause(self):
        await self.spotify.pause()

    async def play_playlist(self):
        await self.spotify.play_playlist()

    async def skip_forward(self):
        """Spotify next, then drop what was playing from the playlist and queue."""
        prev = self.store.state.now_playing
        await self.spotify.next_track()
        if prev:
            if prev.uri:
                await self._best_effort(self.spotify.remove_track(prev.uri), f"remove {prev.uri}")
            if prev.id:
                self.store.remove(track_id=prev.id)
        await self.sync()
        await self.publish()

    async def skip_backward(self):
        await self.spotify.previous_track()
        await self.sync()

    async def play_track(self, uri: str) -> QueueState:
        """Promote uri to now playing: top of the playlist, playback from the top."""
        if not uri:
            raise ValidationError("Missing spotifyUri")
        if not await self.spotify.ensure_playlist():
            raise NotAuthorized()

        # Local state is only touched once Spotify has accepted the switch
        await self._best_effort(self.spotify.remove_track(uri), f"remove {uri}")
        prev = self.store.state.now_playing
        if prev and prev.uri:
            await self._best_effort(self.spotify.remove_track(prev.uri), f"remove {prev.uri}")
        await self.spotify.add_track(uri, position=0)
        await self.spotify.play_playlist()

        queued = self.store.find_by_uri(uri)
        track = None
        track_id = track_id_from_uri(uri)
        if track_id:
            try:
                track = await self.spotify.get_track(track_id)
            except ProviderError as e:
                logger.warning("Track lookup for %s failed: %s", uri, e)
        if track is None:
            track = queued.track if queued else Track(id=track_id, uri=uri)

        item = QueueItem(
            track=track,
            requested_by=queued.requested_by if queued else UNKNOWN_REQUESTER,
            added_at=now_ms(),
        )
        self.store.promote(item)
        await self.publish()
        await self.sync()
        return self.store.state

    async def devices(self) -> list[dict]:
        return await self.spotify.devices()

    async def transfer(self, device_id: str, play: bool = True):
        if not device_id:
            raise ValidationError("Missing deviceId")
        await self.spotify.transfer(device_id, play)

    # ── Auth ─────────────────────────────────────────────────────────────────

    def login_url(self) -> str:
        return self.spotify.session.login_url()

    async def authorize(self, code: str):
        if not code:
            raise ValidationError("Missing code")
        await self.spotify.session.exchange_code(code)
        await self.spotify.ensure_playlist()

    async def auth_status(self) -> dict:
        session = self.spotify.session
        return {
            "authorized": await self.spotify.is_authorized(),
            "playlistId": session.playlist_id,
            "userId": session.user_id,
            "playlistName": self.spotify.playlist_name or PLAYLIST_NAME,
            "tokenExpiresAt": session.token_expires_at_ms,
            "hasRefreshToken": bool(session.refresh_token),
        }
