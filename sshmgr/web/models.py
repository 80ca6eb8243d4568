from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    ok: bool
    handled: bool
    command: Optional[str] = None
    error_code: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    mode: str = "webhook"
