"""Error taxonomy + structured error logging (JSON lines to errors.log)."""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import ERRORS_LOG, OUTPUT_DIR, DEV_MODE

logger = logging.getLogger(__name__)


# ── Queue errors (client-fixable) ────────────────────────────────────────────

class QueueError(Exception):
    """Base for request errors the client can act on."""

    status_code = 400
    code = "invalid"


class ValidationError(QueueError):
    """Missing or blank field."""


class DuplicateRequest(QueueError):
    """Track is already playing or queued."""

    status_code = 409
    code = "duplicate"


class RateLimitExceeded(QueueError):
    """Requester hit the per-window request cap."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, limit: int, window_minutes: float):
        window = int(window_minutes) if float(window_minutes).is_integer() else window_minutes
        super().__init__(f"Limit reached: at most {limit} songs every {window} min.")
        self.limit = limit
        self.window_minutes = window_minutes


# ── Provider errors (upstream) ───────────────────────────────────────────────

class ProviderError(Exception):
    """Spotify call failed (network error or non-2xx response)."""

    status_code = 500
    code = "upstream"

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class NotAuthorized(ProviderError):
    """No valid user token — staff must log in again."""

    status_code = 503
    code = "not_authorized"

    def __init__(self, message: str = "Spotify not authorized"):
        super().__init__(message)


class NotConfigured(ProviderError):
    """Client id/secret are missing, so the service token can't be fetched."""

    status_code = 503
    code = "not_configured"

    def __init__(self, message: str = "Spotify not configured"):
        super().__init__(message)


class DeviceUnavailable(ProviderError):
    """The account has no device to play on."""

    status_code = 404
    code = "no_device"

    def __init__(self, message: str = "No Spotify device available on the account"):
        super().__init__(message)


# ── Structured log ───────────────────────────────────────────────────────────

_FRIENDLY_MESSAGES = {
    "search": "Failed to search",
    "queue_add": "Failed to add to queue",
    "queue_remove": "Failed to remove from queue",
    "queue_reorder": "Failed to reorder queue",
    "queue_next": "Failed to advance",
    "playlist_clear": "Failed to clear playlist",
    "player_play": "Failed to play",
    "player_pause": "Failed to pause",
    "player_next": "Failed to skip",
    "player_previous": "Failed to go back",
    "player_play_playlist": "Failed to start playlist",
    "player_play_track": "Failed to play track",
    "player_devices": "Failed to list devices",
    "player_transfer": "Failed to transfer playback",
    "auth_callback": "Authorization failed",
}


def format_error(
    stage: str,
    raw: str = "",
    context: Optional[dict] = None,
) -> str:
    """Record an error entry and return the message to show the caller."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "context": context,
        "error": raw,
        "python": sys.version.split()[0],
    }

    _append_to_log(entry)
    logger.error("Error at %s: %s", stage, raw)

    if DEV_MODE:
        return json.dumps(entry, indent=2)
    return _FRIENDLY_MESSAGES.get(stage, f"Something went wrong ({stage}).")


def _append_to_log(entry: dict):
    try:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERRORS_LOG, "a") as f:
            f.write(json.dumps(entry) + "\n")
    except OSError:
        pass
