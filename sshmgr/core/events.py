"""
Structured event log (JSON lines) and the redaction shared by every sink.

One line per dispatcher outcome:
    {"ts": "...", "trace_id": "tg-17", "event": "command.completed",
     "details": {"command": "renew", "username": "alice", "error_code": null}}
"""
from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

MASK = "***REDACTED***"

# Matched case-insensitively against dict keys.
REDACT_KEYS = frozenset(
    {
        "password",
        "new_password",
        "secret",
        "new_secret",
        "token",
        "bot_token",
        "header_secret",
        "path_secret",
        "link",
        "authorization",
    }
)

# Bot API tokens look like "<bot id>:<35 chars>"; they can hide inside free-form error text.
_TOKEN_IN_TEXT_RE = re.compile(r"(?<![0-9])\d{5,}:[A-Za-z0-9_-]{30,}")

EVENT_COMPLETED = "command.completed"
EVENT_DENIED = "command.denied"
EVENT_FAILED = "command.failed"


def redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: (MASK if str(k).lower() in REDACT_KEYS else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    if isinstance(obj, str):
        return _TOKEN_IN_TEXT_RE.sub(MASK, obj)
    return obj


@dataclass(frozen=True)
class EventLogger:
    path: str
    _lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "event": event_type,
            "details": redact(details or {}),
        }
        line = json.dumps(payload, ensure_ascii=False, default=str)
        with self._lock:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def command(self, trace_id: str, event_type: str, *, command: str, username: Optional[str] = None, error_code: Optional[str] = None) -> None:
        """Dispatcher outcome; carries names and codes only, never command arguments."""
        self.log(trace_id, event_type, {"command": command, "username": username, "error_code": error_code})
