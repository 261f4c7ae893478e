"""Spotify token lifecycle — service (client-credentials) and user (auth-code) tokens.

Both caches live in memory for the process lifetime. A restart requires the
staff login flow again.
"""
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx

from .config import (
    SPOTIFY_ACCOUNTS_URL,
    SPOTIFY_CLIENT_ID,
    SPOTIFY_CLIENT_SECRET,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_SCOPES,
    TOKEN_EXPIRY_MARGIN,
)
from .errors import NotConfigured, ProviderError

logger = logging.getLogger(__name__)

TOKEN_URL = f"{SPOTIFY_ACCOUNTS_URL}/api/token"
AUTHORIZE_URL = f"{SPOTIFY_ACCOUNTS_URL}/authorize"


class Credentials:
    def __init__(
        self,
        client_id: str = SPOTIFY_CLIENT_ID,
        client_secret: str = SPOTIFY_CLIENT_SECRET,
        redirect_uri: str = SPOTIFY_REDIRECT_URI,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


async def _request_token(http: httpx.AsyncClient, creds: Credentials, form: dict) -> dict:
    """POST to the accounts token endpoint with Basic client auth."""
    try:
        r = await http.post(
            TOKEN_URL,
            data=form,
            auth=(creds.client_id, creds.client_secret),
        )
    except httpx.HTTPError as e:
        raise ProviderError(f"Token request failed: {e}") from e
    if r.status_code != 200:
        raise ProviderError(f"Token endpoint HTTP {r.status_code}: {r.text[:200]}", r.status_code)
    return r.json()


class ServiceToken:
    """Client-credentials token, used only for catalog search."""

    def __init__(self, http: httpx.AsyncClient, creds: Credentials, clock: Callable[[], float] = time.time):
        self._http = http
        self._creds = creds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    async def get(self) -> str:
        if not self._creds.configured:
            raise NotConfigured()
        if self._token and self._clock() < self._expires_at - TOKEN_EXPIRY_MARGIN:
            return self._token

        data = await _request_token(self._http, self._creds, {"grant_type": "client_credentials"})
        self._token = data["access_token"]
        self._expires_at = self._clock() + data.get("expires_in", 3600)
        logger.debug("Service token refreshed, valid for %ss", data.get("expires_in"))
        return self._token


class UserSession:
    """The staff account's OAuth session plus resolved user/playlist ids."""

    def __init__(self, http: httpx.AsyncClient, creds: Credentials, clock: Callable[[], float] = time.time):
        self._http = http
        self._creds = creds
        self._clock = clock
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: float = 0.0
        self.user_id: Optional[str] = None
        self.playlist_id: Optional[str] = None

    def login_url(self) -> str:
        params = {
            "response_type": "code",
            "client_id": self._creds.client_id,
            "scope": " ".join(SPOTIFY_SCOPES),
            "redirect_uri": self._creds.redirect_uri,
            "show_dialog": "true",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str):
        data = await _request_token(self._http, self._creds, {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._creds.redirect_uri,
        })
        self.access_token = data["access_token"]
        self.refresh_token = data.get("refresh_token") or self.refresh_token
        self.expires_at = self._clock() + data.get("expires_in", 3600)
        logger.info("Spotify user authorized")

    def _access_token_valid(self) -> bool:
        return bool(self.access_token) and self._clock() < self.expires_at - TOKEN_EXPIRY_MARGIN

    async def token(self) -> Optional[str]:
        """Valid access token, refreshing silently if needed. None = unauthorized."""
        if self._access_token_valid():
            return self.access_token
        if not self.refresh_token:
            return None

        data = await _request_token(self._http, self._creds, {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
        })
        # Refresh token is kept as-is even if Spotify hands out a new one
        self.access_token = data["access_token"]
        self.expires_at = self._clock() + data.get("expires_in", 3600)
        logger.info("User token refreshed")
        return self.access_token

    @property
    def token_expires_at_ms(self) -> Optional[int]:
        return int(self.expires_at * 1000) if self.expires_at else None
