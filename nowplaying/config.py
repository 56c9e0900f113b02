"""Config & constants: everything tunable lives here and in .env"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from nowplaying/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
DATA_DIR = ROOT_DIR / os.getenv("DATA_DIR", "data")
DB_PATH = DATA_DIR / "sync-sessions.db"
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"

# ─── Sessions ─────────────────────────────────────────────────────────────────
SESSION_TTL_MS = int(os.getenv("SESSION_TTL_MS", str(24 * 60 * 60 * 1000)))
CODE_LENGTH = 6                 # lookup keys of exactly this length are codes
SWEEP_INTERVAL = float(os.getenv("SWEEP_INTERVAL", "3600"))   # seconds
# Store backend for `serve`: "sqlite" (default) or "memory"
SESSION_STORE = os.getenv("SESSION_STORE", "sqlite").strip().lower()

# ─── External services ────────────────────────────────────────────────────────
REGISTRY_URL = os.getenv("REGISTRY_URL", "http://localhost:8888").rstrip("/")
NOW_PLAYING_URL = os.getenv("NOW_PLAYING_URL", "http://localhost:3000/api/spotify/me")
LRCLIB_HOST = os.getenv("LRCLIB_HOST", "https://lrclib.net").rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "5"))

# ─── Cadence (seconds) ────────────────────────────────────────────────────────
HOST_PUSH_INTERVAL = float(os.getenv("HOST_PUSH_INTERVAL", "0.5"))
FOLLOWER_POLL_INTERVAL = float(os.getenv("FOLLOWER_POLL_INTERVAL", "1.0"))
NOW_PLAYING_POLL_INTERVAL = float(os.getenv("NOW_PLAYING_POLL_INTERVAL", "5.0"))
TICK_INTERVAL = 0.1             # render tick, independent of polling

# ─── Lyrics ───────────────────────────────────────────────────────────────────
# Synthesized timing for plain lyrics: silence before the first line and
# after the last one.
LYRIC_LEAD_IN_MS = 3000
LYRIC_TAIL_MS = 3000
LYRIC_PLACEHOLDER = "♪"

APP_VERSION = "0.3.0"

# ─── Web server ──────────────────────────────────────────────────────────────
WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("WEB_PORT", "8888"))

# ─── Dev mode ─────────────────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "1").strip() in ("1", "true", "yes")
