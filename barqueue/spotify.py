"""Spotify Web API client — search, playlist mutation, playback control.

One shared httpx.AsyncClient per instance. Playlist writes are no-ops
(returning False) while the staff account is not authorized; playback
commands raise NotAuthorized instead.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .auth import Credentials, ServiceToken, UserSession
from .config import (
    PLAYLIST_DESCRIPTION,
    PLAYLIST_ITEMS_LIMIT,
    PLAYLIST_NAME,
    PLAYLISTS_PAGE_LIMIT,
    SEARCH_LIMIT,
    SPOTIFY_API_URL,
    SPOTIFY_TIMEOUT,
)
from .errors import DeviceUnavailable, NotAuthorized, ProviderError
from .models import Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Playback:
    """Currently-playing snapshot. track is None when Spotify reports nothing playing."""
    track: Optional[Track]
    context_uri: Optional[str] = None
    is_playing: bool = False


def track_id_from_uri(uri: Optional[str]) -> Optional[str]:
    """spotify:track:<id> → <id>"""
    if not uri:
        return None
    parts = str(uri).split(":")
    return parts[2] if len(parts) > 2 and parts[2] else None


class SpotifyClient:
    def __init__(
        self,
        creds: Optional[Credentials] = None,
        playlist_name: str = PLAYLIST_NAME,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.creds = creds or Credentials()
        self.playlist_name = playlist_name
        self._http = http or httpx.AsyncClient(timeout=SPOTIFY_TIMEOUT)
        self.service_token = ServiceToken(self._http, self.creds, clock)
        self.session = UserSession(self._http, self.creds, clock)

    async def close(self):
        await self._http.aclose()

    # ── Low-level ────────────────────────────────────────────────────────────

    async def _send(self, method: str, path: str, token: str, **kwargs) -> httpx.Response:
        url = path if path.startswith("http") else f"{SPOTIFY_API_URL}{path}"
        try:
            r = await self._http.request(
                method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Spotify {method} {path} failed: {e}") from e
        if r.status_code >= 400:
            raise ProviderError(
                f"Spotify {method} {path} HTTP {r.status_code}: {r.text[:200]}",
                r.status_code,
            )
        return r

    async def _user(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self.session.token()
        if not token:
            raise NotAuthorized()
        return await self._send(method, path, token, **kwargs)

    async def is_authorized(self) -> bool:
        try:
            return bool(await self.session.token())
        except ProviderError as e:
            logger.warning("User token refresh failed: %s", e)
            return False

    # ── Catalog ──────────────────────────────────────────────────────────────

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> list[Track]:
        token = await self.service_token.get()
        r = await self._send("GET", "/search", token, params={"q": query, "type": "track", "limit": limit})
        items = (r.json().get("tracks") or {}).get("items") or []
        return [t for t in (Track.from_spotify(i) for i in items) if t]

    async def get_track(self, track_id: str) -> Optional[Track]:
        if not await self.session.token():
            return None
        r = await self._user("GET", f"/tracks/{track_id}")
        return Track.from_spotify(r.json())

    # ── Playlist ─────────────────────────────────────────────────────────────

    async def ensure_playlist(self) -> Optional[str]:
        """Resolve (or create) the queue playlist once. None while unauthorized."""
        if not await self.session.token():
            return None
        if self.session.playlist_id:
            return self.session.playlist_id

        me = (await self._user("GET", "/me")).json()
        self.session.user_id = me["id"]

        r = await self._user("GET", "/me/playlists", params={"limit": PLAYLISTS_PAGE_LIMIT})
        existing = next(
            (p for p in r.json().get("items") or [] if p and p.get("name") == self.playlist_name),
            None,
        )
        if existing:
            self.session.playlist_id = existing["id"]
            logger.info("Using playlist '%s' (%s)", self.playlist_name, existing["id"])
            return self.session.playlist_id

        r = await self._user(
            "POST",
            f"/users/{me['id']}/playlists",
            json={"name": self.playlist_name, "description": PLAYLIST_DESCRIPTION, "public": False},
        )
        self.session.playlist_id = r.json()["id"]
        logger.info("Created playlist '%s' (%s)", self.playlist_name, self.session.playlist_id)
        return self.session.playlist_id

    @property
    def playlist_uri(self) -> Optional[str]:
        pid = self.session.playlist_id
        return f"spotify:playlist:{pid}" if pid else None

    async def add_track(self, uri: str, position: Optional[int] = None) -> bool:
        playlist_id = await self.ensure_playlist()
        if not playlist_id:
            return False
        params = {"position": position} if position is not None else None
        await self._user("POST", f"/playlists/{playlist_id}/tracks", json={"uris": [uri]}, params=params)
        return True

    async def remove_track(self, uri: str) -> bool:
        """Remove every occurrence of uri. Absent tracks are not an error."""
        playlist_id = await self.ensure_playlist()
        if not playlist_id:
            return False
        await self._user("DELETE", f"/playlists/{playlist_id}/tracks", json={"tracks": [{"uri": uri}]})
        return True

    async def replace_tracks(self, uris: list[str]) -> bool:
        playlist_id = await self.ensure_playlist()
        if not playlist_id:
            return False
        await self._user("PUT", f"/playlists/{playlist_id}/tracks", json={"uris": list(uris)})
        return True

    async def playlist_tracks(self) -> list[Track]:
        """Tracks on the first page of the playlist, in playlist order."""
        playlist_id = await self.ensure_playlist()
        if not playlist_id:
            raise NotAuthorized()
        r = await self._user("GET", f"/playlists/{playlist_id}/tracks", params={"limit": PLAYLIST_ITEMS_LIMIT})
        tracks = []
        for it in r.json().get("items") or []:
            t = Track.from_spotify((it or {}).get("track"))
            if t and t.uri:
                tracks.append(t)
        return tracks

    async def clear_playlist(self) -> bool:
        playlist_id = await self.ensure_playlist()
        if not playlist_id:
            return False
        uris = [t.uri for t in await self.playlist_tracks()]
        if not uris:
            return True
        await self._user(
            "DELETE", f"/playlists/{playlist_id}/tracks",
            json={"tracks": [{"uri": u} for u in uris]},
        )
        return True

    # ── Playback ─────────────────────────────────────────────────────────────

    async def currently_playing(self) -> Playback:
        r = await self._user("GET", "/me/player/currently-playing")
        if r.status_code == 204 or not r.content:
            return Playback(track=None)
        data = r.json() or {}
        return Playback(
            track=Track.from_spotify(data.get("item")),
            context_uri=(data.get("context") or {}).get("uri"),
            is_playing=bool(data.get("is_playing")),
        )

    async def devices(self) -> list[dict]:
        r = await self._user("GET", "/me/player/devices")
        return r.json().get("devices") or []

    async def transfer(self, device_id: str, play: bool = True):
        await self._user("PUT", "/me/player", json={"device_ids": [device_id], "play": play})

    async def ensure_active_device(self, play: bool = True) -> dict:
        devices = await self.devices()
        if not devices:
            raise DeviceUnavailable()
        device = next((d for d in devices if d.get("is_active")), devices[0])
        logger.info("Transferring playback to %s", device.get("name") or device.get("id"))
        await self.transfer(device["id"], play)
        return device

    async def _with_device_fallback(self, method: str, path: str, *, play: bool, retry: bool = True, **kwargs):
        """Try a player command; if it fails, wake a device and try once more.

        With retry=False the transfer's play flag already carries the intent.
        """
        try:
            await self._user(method, path, **kwargs)
            return
        except NotAuthorized:
            raise
        except ProviderError as e:
            logger.info("Player command %s failed (%s), falling back to device transfer", path, e)

        await self.ensure_active_device(play)
        if retry:
            await self._user(method, path, **kwargs)

    async def play(self):
        await self._with_device_fallback("PUT", "/me/player/play", play=True, retry=False)

    async def pause(self):
        await self._with_device_fallback("PUT", "/me/player/pause", play=False, retry=False)

    async def next_track(self):
        await self._with_device_fallback("POST", "/me/player/next", play=True)

    async def previous_track(self):
        await self._with_device_fallback("POST", "/me/player/previous", play=True)

    async def play_playlist(self, offset_uri: Optional[str] = None):
        """Start the queue playlist from the top, or at offset_uri."""
        if not await self.ensure_playlist():
            raise NotAuthorized()
        body = {"context_uri": self.playlist_uri}
        if offset_uri:
            body["offset"] = {"uri": offset_uri}
            body["position_ms"] = 0
        await self._with_device_fallback("PUT", "/me/player/play", play=True, json=body)
