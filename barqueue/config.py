"""Config & constants — everything tunable comes from the environment."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from barqueue/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"

# ─── Spotify app ──────────────────────────────────────────────────────────────
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_REDIRECT_URI = os.getenv("SPOTIFY_REDIRECT_URI", "http://127.0.0.1:4000/auth/callback")
SPOTIFY_TIMEOUT = float(os.getenv("SPOTIFY_TIMEOUT", "10"))

SPOTIFY_ACCOUNTS_URL = "https://accounts.spotify.com"
SPOTIFY_API_URL = "https://api.spotify.com/v1"

SPOTIFY_SCOPES = [
    "playlist-modify-public",
    "playlist-modify-private",
    "playlist-read-private",
    "user-read-email",
    "user-read-playback-state",
    "user-read-currently-playing",
    "user-modify-playback-state",
]

# Tokens are treated as expired this many seconds before the real expiry
TOKEN_EXPIRY_MARGIN = 60

# ─── Playlist ─────────────────────────────────────────────────────────────────
PLAYLIST_NAME = os.getenv("PLAYLIST_NAME", "Bar Queue")
PLAYLIST_DESCRIPTION = os.getenv("PLAYLIST_DESCRIPTION", "Song requests from the bar kiosk")

# Provider page sizes — nothing past the first page is ever read
PLAYLISTS_PAGE_LIMIT = 50
PLAYLIST_ITEMS_LIMIT = 100
SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "10"))

# ─── Requests ─────────────────────────────────────────────────────────────────
REQUEST_LIMIT = int(os.getenv("REQUEST_LIMIT", "3"))
REQUEST_WINDOW_MINUTES = float(os.getenv("REQUEST_WINDOW_MINUTES", "30"))

# Shown as requester for tracks that only exist on the remote playlist
UNKNOWN_REQUESTER = "—"

# ─── Sync ─────────────────────────────────────────────────────────────────────
SYNC_INTERVAL_SECONDS = float(os.getenv("SYNC_INTERVAL_SECONDS", "5"))

# ─── Web server ──────────────────────────────────────────────────────────────
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "4000"))

_CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:5173")
_CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
ALLOWED_ORIGINS = _CORS_ORIGINS or [_CORS_ORIGIN]

APP_VERSION = "0.1.0"

# ─── Dev mode ─────────────────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "0").strip() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
