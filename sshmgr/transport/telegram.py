"""
Telegram Bot API transport.

- TelegramClient: thin requests wrapper over the few Bot API methods we use
- parse_command(): "/renew@my_bot alice 30" -> CommandMessage(name="renew", args=["alice", "30"])
- handle_update(): one update -> dispatcher -> reply (+ QR photo)
- PollingRunner: getUpdates long-poll loop feeding a worker pool

Errors never include the request URL: it contains the bot token.
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests

from sshmgr.core.dispatcher import CommandDispatcher, DispatchResult
from sshmgr.core.errors import TransportError
from sshmgr.transport.models import CommandMessage, Update

PARSE_MODE = "Markdown"


class TelegramClient:
    def __init__(
        self,
        token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        if not token:
            raise TransportError("Bot token is missing.")
        self._token = token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.session = session or requests.Session()

    def _url(self, method: str) -> str:
        return f"{self.api_base}/bot{self._token}/{method}"

    def _call(self, method: str, *, data: Optional[Dict[str, Any]] = None, files: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        try:
            r = self.session.post(self._url(method), data=data, files=files, timeout=timeout or self.timeout_seconds)
        except requests.RequestException as e:
            raise TransportError(f"Telegram {method} request failed.", method=method, error=type(e).__name__) from e
        try:
            body = r.json()
        except ValueError as e:
            raise TransportError(f"Telegram {method} returned a non-JSON response.", method=method, status=r.status_code) from e
        if not isinstance(body, dict) or not body.get("ok"):
            description = str((body or {}).get("description") or f"HTTP {r.status_code}") if isinstance(body, dict) else f"HTTP {r.status_code}"
            raise TransportError(f"Telegram {method} failed: {description}", method=method, status=r.status_code)
        return body.get("result")

    def get_updates(self, *, offset: Optional[int] = None, timeout: int = 30) -> List[Update]:
        data: Dict[str, Any] = {"timeout": int(timeout), "allowed_updates": '["message"]'}
        if offset is not None:
            data["offset"] = int(offset)
        result = self._call("getUpdates", data=data, timeout=self.timeout_seconds + float(timeout))
        return [Update.model_validate(u) for u in (result or [])]

    def send_message(self, chat_id: int, text: str, *, parse_mode: Optional[str] = PARSE_MODE) -> Any:
        data: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        return self._call("sendMessage", data=data)

    def send_photo(self, chat_id: int, png: bytes, *, caption: Optional[str] = None, parse_mode: Optional[str] = PARSE_MODE) -> Any:
        data: Dict[str, Any] = {"chat_id": chat_id}
        if caption:
            data["caption"] = caption
            if parse_mode:
                data["parse_mode"] = parse_mode
        return self._call("sendPhoto", data=data, files={"photo": ("credentials.png", png, "image/png")})

    def set_webhook(self, url: str, *, secret_token: str = "") -> Any:
        data: Dict[str, Any] = {"url": url, "allowed_updates": '["message"]'}
        if secret_token:
            data["secret_token"] = secret_token
        return self._call("setWebhook", data=data)

    def delete_webhook(self) -> Any:
        return self._call("deleteWebhook")


def parse_command(text: Optional[str], *, bot_username: Optional[str] = None) -> Optional[CommandMessage]:
    if not text:
        return None
    tokens = text.strip().split()
    if not tokens or not tokens[0].startswith("/"):
        return None
    head = tokens[0][1:]
    name, _, mention = head.partition("@")
    if mention and bot_username and mention.lower() != bot_username.lower():
        return None
    if not name:
        return None
    return CommandMessage(name=name.lower(), args=tokens[1:])


def deliver(client: TelegramClient, chat_id: int, result: DispatchResult) -> None:
    try:
        client.send_message(chat_id, result.reply)
    except TransportError:
        # Usually a Markdown entity error caused by user-supplied text; plain text always parses.
        client.send_message(chat_id, result.reply, parse_mode=None)
    if result.image is not None:
        try:
            client.send_photo(chat_id, result.image, caption=result.caption)
        except TransportError:
            client.send_photo(chat_id, result.image, caption=result.caption, parse_mode=None)


def handle_update(update: Update, *, dispatcher: CommandDispatcher, client: TelegramClient, bot_username: Optional[str] = None) -> Optional[DispatchResult]:
    msg = update.message
    if msg is None:
        return None
    cmd = parse_command(msg.text, bot_username=bot_username)
    if cmd is None:
        return None
    result = dispatcher.dispatch(cmd.name, msg.chat.id, cmd.args, trace_id=f"tg-{update.update_id}")
    deliver(client, msg.chat.id, result)
    return result


class PollingRunner:
    """
    getUpdates loop. Each update is handled to completion on a worker thread;
    same-account ordering is enforced by the engine's per-username locks.
    """

    def __init__(
        self,
        *,
        client: TelegramClient,
        dispatcher: CommandDispatcher,
        logger,
        workers: int = 4,
        poll_timeout_seconds: int = 30,
        backoff_seconds: float = 5.0,
        bot_username: Optional[str] = None,
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.logger = logger
        self.poll_timeout_seconds = int(poll_timeout_seconds)
        self.backoff_seconds = float(backoff_seconds)
        self.bot_username = bot_username
        self._offset: Optional[int] = None
        self._stop = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="tg-update")

    @property
    def offset(self) -> Optional[int]:
        return self._offset

    def _handle(self, update: Update) -> None:
        try:
            handle_update(update, dispatcher=self.dispatcher, client=self.client, bot_username=self.bot_username)
        except TransportError as e:
            self.logger.warning(f"Reply for update {update.update_id} not delivered: {e.user_message}")
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Update {update.update_id} failed: {type(e).__name__}")

    def poll_once(self) -> int:
        try:
            updates = self.client.get_updates(offset=self._offset, timeout=self.poll_timeout_seconds)
        except TransportError as e:
            self.logger.warning(f"Polling failed: {e.user_message}; retrying in {self.backoff_seconds:.0f}s")
            self._stop.wait(self.backoff_seconds)
            return 0
        for u in updates:
            self._offset = max(self._offset or 0, u.update_id + 1)
            self._executor.submit(self._handle, u)
        return len(updates)

    def run_forever(self) -> None:
        self.logger.info("Polling for Telegram updates...")
        while not self._stop.is_set():
            self.poll_once()

    def stop(self, *, wait: bool = True) -> None:
        self._stop.set()
        self._executor.shutdown(wait=wait)
