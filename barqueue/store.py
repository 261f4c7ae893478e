"""QueueStore — the single owned copy of {nowPlaying, queue}.

Every mutation builds a complete new QueueState and assigns it in one step,
so an await elsewhere never observes a half-applied change.
"""
import logging
from typing import Iterable, Optional

from .errors import DuplicateRequest, RateLimitExceeded, ValidationError
from .models import QueueItem, QueueState, Track, now_ms
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)


class QueueStore:
    def __init__(self, limiter: Optional[RateLimiter] = None):
        self.limiter = limiter or RateLimiter()
        self._state = QueueState()

    @property
    def state(self) -> QueueState:
        return self._state

    def replace(self, new_state: QueueState):
        self._state = new_state

    # ── Mutation paths ───────────────────────────────────────────────────────

    def add(self, track: Optional[Track], requested_by) -> QueueItem:
        """Append a patron request. Raises a QueueError subclass on rejection."""
        if track is None or not requested_by:
            raise ValidationError("Missing track or requestedBy")
        name = str(requested_by).strip()
        if not name:
            raise ValidationError("Invalid name")
        if not self.limiter.can_request(name):
            raise RateLimitExceeded(self.limiter.limit, self.limiter.window_minutes)
        if self._state.contains_id(track.id):
            raise DuplicateRequest("This song is already in the queue.")

        item = QueueItem(track=track, requested_by=name, added_at=now_ms())
        self.replace(self._state.with_changes(queue=self._state.queue + (item,)))
        self.limiter.record_request(name)
        logger.info("Queued %r for %s", track.title, name)
        return item

    def remove(self, track_id: Optional[str] = None, uri: Optional[str] = None) -> list[QueueItem]:
        """Drop queue entries matching id and uri (both must match when both given)."""
        if not track_id and not uri:
            raise ValidationError("Missing id or spotifyUri")

        def matches(item: QueueItem) -> bool:
            return (not track_id or item.id == track_id) and (not uri or item.uri == uri)

        removed = [item for item in self._state.queue if matches(item)]
        if removed:
            kept = [item for item in self._state.queue if not matches(item)]
            self.replace(self._state.with_changes(queue=kept))
        return removed

    def reorder(self, uris: Iterable[str]) -> QueueState:
        """Rebuild the queue in the given order, keeping only known uris, once each."""
        by_uri = {item.uri: item for item in self._state.queue if item.uri}
        seen = set()
        new_queue = []
        for uri in uris:
            if uri in seen or uri not in by_uri:
                continue
            seen.add(uri)
            new_queue.append(by_uri[uri])
        self.replace(self._state.with_changes(queue=new_queue))
        return self._state

    def advance(self) -> Optional[QueueItem]:
        """Move the queue head into now playing. Returns the item that was playing."""
        prev = self._state.now_playing
        queue = list(self._state.queue)
        if prev and prev.id:
            queue = [item for item in queue if item.id != prev.id]
        head = queue.pop(0) if queue else None
        self.replace(QueueState(now_playing=head, queue=tuple(queue)))
        return prev

    def promote(self, item: QueueItem) -> QueueState:
        """Make item now playing, dropping it and the old now playing from the queue."""
        prev = self._state.now_playing
        drop_ids = {i for i in (item.id, prev.id if prev else None) if i}
        queue = [
            q for q in self._state.queue
            if q.id not in drop_ids and not (item.uri and q.uri == item.uri)
        ]
        self.replace(QueueState(now_playing=item, queue=tuple(queue)))
        return self._state

    def set_now_playing(self, item: QueueItem) -> QueueState:
        queue = [
            q for q in self._state.queue
            if q != item and not (item.id and q.id == item.id)
        ]
        self.replace(QueueState(now_playing=item, queue=tuple(queue)))
        return self._state

    def clear(self):
        self.replace(self._state.with_changes(queue=()))

    def find_by_uri(self, uri: str) -> Optional[QueueItem]:
        return next((q for q in self._state.queue if q.uri == uri), None)
