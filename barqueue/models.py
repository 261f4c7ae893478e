"""Track / QueueItem / QueueState — immutable values shared by every layer."""
import time
from dataclasses import dataclass, field, replace
from typing import Optional

from .config import UNKNOWN_REQUESTER
from .errors import ValidationError


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Track:
    id: Optional[str]
    title: str = ""
    artist: str = ""
    album_art: Optional[str] = None
    uri: Optional[str] = None

    @classmethod
    def from_spotify(cls, data: Optional[dict]) -> Optional["Track"]:
        """Build from a Spotify track object. Returns None for empty slots."""
        if not data:
            return None
        images = (data.get("album") or {}).get("images") or []
        # Second image is the medium size; fall back to whatever exists
        art = None
        if len(images) > 1:
            art = images[1].get("url")
        elif images:
            art = images[0].get("url")
        return cls(
            id=data.get("id"),
            title=data.get("name") or "",
            artist=", ".join(a.get("name", "") for a in data.get("artists") or []),
            album_art=art,
            uri=data.get("uri"),
        )

    @classmethod
    def from_payload(cls, data: dict) -> "Track":
        """Build from the JSON a client sends (same shape as to_dict)."""
        return cls(
            id=data.get("id") or None,
            title=str(data.get("title") or ""),
            artist=str(data.get("artist") or ""),
            album_art=data.get("albumArt") or None,
            uri=data.get("spotifyUri") or None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "albumArt": self.album_art,
            "spotifyUri": self.uri,
        }


@dataclass(frozen=True)
class QueueItem:
    track: Track
    requested_by: str = UNKNOWN_REQUESTER
    added_at: int = field(default_factory=now_ms)

    @property
    def id(self) -> Optional[str]:
        return self.track.id

    @property
    def uri(self) -> Optional[str]:
        return self.track.uri

    @classmethod
    def from_payload(cls, data: dict) -> "QueueItem":
        try:
            added_at = int(data.get("addedAt") or now_ms())
        except (TypeError, ValueError):
            raise ValidationError("addedAt must be a number")
        return cls(
            track=Track.from_payload(data),
            requested_by=str(data.get("requestedBy") or UNKNOWN_REQUESTER),
            added_at=added_at,
        )

    def to_dict(self) -> dict:
        d = self.track.to_dict()
        d["requestedBy"] = self.requested_by
        d["addedAt"] = self.added_at
        return d


@dataclass(frozen=True)
class QueueState:
    now_playing: Optional[QueueItem] = None
    queue: tuple = ()

    def with_changes(self, **changes) -> "QueueState":
        if "queue" in changes:
            changes["queue"] = tuple(changes["queue"])
        return replace(self, **changes)

    def contains_id(self, track_id: Optional[str]) -> bool:
        if not track_id:
            return False
        if self.now_playing and self.now_playing.id == track_id:
            return True
        return any(item.id == track_id for item in self.queue)

    def metadata_by_uri(self) -> dict:
        """uri → (requestedBy, addedAt) for everything known locally."""
        meta = {item.uri: (item.requested_by, item.added_at) for item in self.queue if item.uri}
        if self.now_playing and self.now_playing.uri:
            meta[self.now_playing.uri] = (self.now_playing.requested_by, self.now_playing.added_at)
        return meta

    def playlist_uris(self) -> list[str]:
        """Desired remote playlist order: now playing first, then the queue."""
        items = ([self.now_playing] if self.now_playing else []) + list(self.queue)
        return [item.uri for item in items if item.uri]

    def to_dict(self) -> dict:
        return {
            "nowPlaying": self.now_playing.to_dict() if self.now_playing else None,
            "queue": [item.to_dict() for item in self.queue],
        }
