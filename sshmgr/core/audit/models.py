from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditOutcome(str, Enum):
    success = "success"
    unchanged = "unchanged"
    denied = "denied"
    failed = "failed"
    timeout = "timeout"


class AuditEvent(BaseModel):
    """
    One mutating command outcome.

    Holds names and codes only: no secrets, no tokens, no command arguments.
    """

    model_config = ConfigDict(extra="forbid")

    audit_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None

    actor: str = "unknown"
    operation: str
    username: Optional[str] = None
    outcome: AuditOutcome
    error_code: Optional[str] = None

    def summary(self) -> str:
        target = self.username or "-"
        line = f"{self.operation} {target}: {self.outcome.value} (by {self.actor})"
        if self.error_code:
            line += f" [{self.error_code}]"
        return line
