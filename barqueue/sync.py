"""Reconciliation between the local queue and the Spotify playlist/player.

Spotify's playlist is the authority for order and membership; the local
queue is the authority for who requested what. Each pass merges the two and
replaces the local state only when something visible changed.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection, Optional

from .config import SYNC_INTERVAL_SECONDS, UNKNOWN_REQUESTER
from .errors import NotAuthorized, ProviderError
from .models import QueueItem, QueueState, Track, now_ms
from .spotify import Playback, SpotifyClient
from .store import QueueStore

logger = logging.getLogger(__name__)

CHANGED = "changed"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class SyncOutcome:
    status: str
    error_kind: Optional[str] = None  # "unauthorized" | "upstream" | "unexpected"
    error: Optional[BaseException] = None

    @property
    def changed(self) -> bool:
        return self.status == CHANGED


def _to_item(track: Track, meta: dict[str, tuple[str, int]]) -> QueueItem:
    requested_by, added_at = meta.get(track.uri, (UNKNOWN_REQUESTER, None))
    return QueueItem(track=track, requested_by=requested_by, added_at=added_at or now_ms())


def merge_state(
    current: QueueState,
    playback: Optional[Playback],
    playlist: list[Track],
    playlist_uri: Optional[str],
    unconfirmed: Collection[str] = (),
) -> QueueState:
    """Compute the state Spotify implies, keeping local requester metadata.

    playback=None means the currently-playing lookup gave no signal; the
    previous now playing is kept. Playback(track=None) means Spotify says
    nothing is playing, which clears it.

    unconfirmed holds URIs added locally whose playlist write has not been
    seen on Spotify yet. Those queue entries are kept after the playlist ones.
    """
    meta = current.metadata_by_uri()
    playlist_uris = {t.uri for t in playlist}

    now_playing = current.now_playing
    if playback is not None:
        track = playback.track
        if track is None:
            now_playing = None
        elif (playlist_uri and playback.context_uri == playlist_uri) or track.uri in playlist_uris:
            now_playing = _to_item(track, meta)

    seen = {now_playing.id} if now_playing and now_playing.id else set()
    queue = []
    for track in playlist:
        if track.id in seen:
            continue
        if track.id:
            seen.add(track.id)
        queue.append(_to_item(track, meta))

    for item in current.queue:
        if item.uri in unconfirmed and item.uri not in playlist_uris and item.id not in seen:
            if item.id:
                seen.add(item.id)
            queue.append(item)

    return QueueState(now_playing=now_playing, queue=tuple(queue))


def state_differs(old: QueueState, new: QueueState) -> bool:
    """nowPlaying by presence/id/requester, queue by exact id sequence."""
    a, b = old.now_playing, new.now_playing
    if (a is None) != (b is None):
        return True
    if a and b and (a.id != b.id or a.requested_by != b.requested_by):
        return True
    return [q.id for q in old.queue] != [q.id for q in new.queue]


class Reconciler:
    def __init__(
        self,
        store: QueueStore,
        spotify: SpotifyClient,
        on_change: Callable[[QueueState], Awaitable[None]],
        interval: float = SYNC_INTERVAL_SECONDS,
    ):
        self.store = store
        self.spotify = spotify
        self.on_change = on_change
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        # URIs written locally but not yet seen on the remote playlist
        self._unconfirmed: set[str] = set()

    def expect(self, uri: str):
        self._unconfirmed.add(uri)

    def forget(self, uri: str):
        self._unconfirmed.discard(uri)

    async def _fetch_playback(self) -> Optional[Playback]:
        try:
            return await self.spotify.currently_playing()
        except ProviderError as e:
            logger.debug("currently-playing unavailable: %s", e)
            return None

    async def reconcile(self) -> SyncOutcome:
        """One pass. Never raises; the outcome says what happened."""
        try:
            if not await self.spotify.ensure_playlist():
                return SyncOutcome(SKIPPED)

            playback, playlist = await asyncio.gather(
                self._fetch_playback(),
                self.spotify.playlist_tracks(),
            )

            # Snapshot taken after the awaits so writes made meanwhile keep their metadata
            current = self.store.state
            new_state = merge_state(
                current, playback, playlist, self.spotify.playlist_uri, set(self._unconfirmed)
            )
            self._unconfirmed -= {t.uri for t in playlist}
            if not state_differs(current, new_state):
                return SyncOutcome(UNCHANGED)

            self.store.replace(new_state)
            await self.on_change(new_state)
            return SyncOutcome(CHANGED)

        except NotAuthorized as e:
            return SyncOutcome(FAILED, "unauthorized", e)
        except ProviderError as e:
            return SyncOutcome(FAILED, "upstream", e)
        except Exception as e:
            return SyncOutcome(FAILED, "unexpected", e)

    # ── Timer ────────────────────────────────────────────────────────────────

    async def run(self):
        """Reconcile every interval until cancelled."""
        while True:
            outcome = await self.reconcile()
            if outcome.status == FAILED:
                if outcome.error_kind == "unexpected":
                    logger.error("Sync pass crashed", exc_info=outcome.error)
                else:
                    logger.warning("Sync pass failed (%s): %s", outcome.error_kind, outcome.error)
            elif outcome.changed:
                logger.info("Queue updated from Spotify")
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
