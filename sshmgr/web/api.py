from __future__ import annotations

import hmac
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from sshmgr.core.errors import SSHMgrError, TransportError, UnauthorizedError
from sshmgr.transport.models import Update
from sshmgr.transport.telegram import handle_update, parse_command
from sshmgr.web.models import HealthResponse, WebhookAck

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

_STATUS_BY_CODE = {
    "unauthorized": 403,
    "invalid_argument": 400,
    "validation_error": 400,
    "service_timeout": 503,
    "transport_error": 502,
}


def _secret_matches(expected: str, given: Optional[str]) -> bool:
    if not expected:
        return True
    return hmac.compare_digest(expected.encode("utf-8"), (given or "").encode("utf-8"))


def create_app(
    dispatcher,
    client,
    logger,
    *,
    path_secret: str,
    header_secret: str = "",
    event_logger=None,
    bot_username: Optional[str] = None,
) -> FastAPI:
    if not path_secret:
        raise ValueError("path_secret is required for the webhook app.")
    app = FastAPI(title="SSH Manager Bot", version="0.1.0")

    def _event(trace_id: str, event_type: str, details: dict) -> None:
        if event_logger is not None:
            event_logger.log(trace_id, event_type, details)

    @app.exception_handler(SSHMgrError)
    async def sshmgr_error_handler(request: Request, exc: SSHMgrError):
        trace_id = getattr(getattr(request, "state", None), "trace_id", "web")
        _event(trace_id, "web.error", {"code": exc.code, "context": exc.context})
        code = _STATUS_BY_CODE.get(exc.code, 500)
        return JSONResponse(status_code=code, content={"detail": exc.user_message, "code": exc.code})

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok")

    def _handle(update: Update, trace_id: str) -> WebhookAck:
        cmd = parse_command(update.message.text if update.message else None, bot_username=bot_username)
        try:
            result = handle_update(update, dispatcher=dispatcher, client=client, bot_username=bot_username)
        except TransportError as e:
            # Acknowledge anyway; Telegram would otherwise redeliver and re-run the command.
            logger.warning(f"Reply for update {update.update_id} not delivered: {e.user_message}")
            _event(trace_id, "web.reply_failed", {"code": e.code})
            return WebhookAck(ok=True, handled=True, command=cmd.name if cmd else None, error_code=e.code)
        if result is None:
            return WebhookAck(ok=True, handled=False)
        return WebhookAck(ok=True, handled=True, command=cmd.name if cmd else None, error_code=result.error_code)

    @app.post("/telegram/{secret}", response_model=WebhookAck)
    async def telegram_webhook(secret: str, request: Request):
        # Secrets first: unauthenticated callers get 403 whatever the body holds.
        if not _secret_matches(path_secret, secret) or not _secret_matches(header_secret, request.headers.get(SECRET_HEADER)):
            logger.warning("Rejected webhook call with a bad secret.")
            raise UnauthorizedError("Forbidden.", source="webhook")
        try:
            update = Update.model_validate_json(await request.body())
        except ValidationError as e:
            _event(getattr(request.state, "trace_id", "web"), "web.invalid_update", {"errors": e.error_count()})
            return JSONResponse(status_code=400, content={"detail": "Invalid update.", "code": "validation_error"})
        trace_id = f"tg-{update.update_id}"
        request.state.trace_id = trace_id
        # Host commands block, so they run in the threadpool rather than on the event loop.
        return await run_in_threadpool(_handle, update, trace_id)

    @app.middleware("http")
    async def trace_middleware(request: Request, call_next):
        request.state.trace_id = uuid.uuid4().hex
        return await call_next(request)

    return app
