"""Error taxonomy + structured error logging (JSON lines to errors.log)."""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import ERRORS_LOG, OUTPUT_DIR, DEV_MODE

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base for every error the sync core surfaces to a caller.

    `status` is the HTTP status the web layer answers with.
    """
    status = 500
    default_message = "Sync error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class SessionNotFound(SyncError):
    status = 404
    default_message = "Session not found"


class DeviceNotInSession(SyncError):
    status = 404
    default_message = "Device not in session"


class InvalidAction(SyncError):
    status = 400
    default_message = "Invalid action"


class StoreError(SyncError):
    status = 500
    default_message = "Session store unavailable"


class UpstreamError(SyncError):
    """A collaborator service (now-playing, lyrics) failed or answered badly."""
    status = 502
    default_message = "Upstream service failed"


_FRIENDLY_MESSAGES = {
    "sync_session": "Sync request failed.",
    "store": "Session store unavailable.",
    "preflight": "Startup check failed.",
}


def format_error(
    stage: str,
    request: Optional[dict] = None,
    raw: str = "",
) -> str:
    entry = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "request": request,
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
