"""Append-only audit trail for lockout transitions.

Each entry is one JSON line in `logs/audit.log` (or `$AUDIT_LOG_DIR`). Only
the hashed identity key is written, never the raw origin or e-mail.
"""
import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

LOCKED = "login_locked"
RESET = "login_reset"

_LOCK = threading.Lock()

ROOT = Path(__file__).resolve().parent.parent.parent
LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", "") or ROOT / "logs")
LOG_FILE = LOG_DIR / "audit.log"


def log_lock(identity_key: str, retry_after: int, failed_attempts: int) -> None:
    """An identity just entered lockout."""
    log_event(LOCKED, identity_key, {
        "retry_after": retry_after,
        "failed_attempts": failed_attempts,
    })


def log_reset(identity_key: str, cleared_count: int, was_locked: bool) -> None:
    """A successful login wiped the identity's failure history."""
    log_event(RESET, identity_key, {
        "cleared_count": cleared_count,
        "was_locked": was_locked,
    })


def log_event(action: str, identity_key: str | None, payload: dict | None = None) -> None:
    line = json.dumps({
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "identity_key": identity_key,
        "payload": payload or {},
    }, ensure_ascii=False)
    # One locked write per entry so concurrent requests never interleave lines.
    with _LOCK:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        with open(LOG_FILE, "a", encoding="utf-8") as f:
            f.write(line + "\n")
