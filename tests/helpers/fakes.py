from __future__ import annotations

import datetime as _dt
import threading
import time as _time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sshmgr.core.accounts.models import AccountRecord
from sshmgr.core.accounts.service import UserService
from sshmgr.core.audit.models import AuditEvent
from sshmgr.core.audit.sinks import AuditSink
from sshmgr.core.codec.render import RenderedBarcode
from sshmgr.core.errors import AlreadyExistsError, NotFoundError, TokenTooLongError, TransportError

ADMIN_ID = 1001
STRANGER_ID = 2002
GROUPS = {"max1": 1, "max2": 2, "max3": 3}


class FakeClock:
    def __init__(self, today: _dt.date = _dt.date(2024, 1, 10)):
        self._today = today

    def today(self) -> _dt.date:
        return self._today

    def set(self, today: _dt.date) -> None:
        self._today = today

    def advance(self, days: int) -> None:
        self._today = self._today + _dt.timedelta(days=int(days))


class FakeUserService(UserService):
    """
    In-memory user database.

    - delays[op] sleeps before the operation runs (widens race windows)
    - failures[op] is raised instead of performing the operation
    - calls records (op, username) in the order operations ran
    """

    name = "fake"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.users: Dict[str, AccountRecord] = {}
        self.passwords: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, BaseException] = {}

    def _enter(self, op: str, username: str) -> None:
        delay = self.delays.get(op)
        if delay:
            _time.sleep(delay)
        err = self.failures.get(op)
        with self._lock:
            self.calls.append((op, username))
        if err is not None:
            raise err

    def ops(self, op: str) -> List[str]:
        with self._lock:
            return [u for o, u in self.calls if o == op]

    def seed(self, username: str, group: str = "max1", expiry: Optional[_dt.date] = None, locked: bool = False, secret: str = "seeded") -> None:
        with self._lock:
            self.users[username] = AccountRecord(username=username, group=group, expiry_date=expiry, locked=locked)
            self.passwords[username] = secret

    def _replace(self, username: str, **changes: Any) -> None:
        with self._lock:
            rec = self.users.get(username)
            if rec is None:
                raise NotFoundError(username=username)
            data = {"username": rec.username, "group": rec.group, "expiry_date": rec.expiry_date, "locked": rec.locked}
            data.update(changes)
            self.users[username] = AccountRecord(**data)

    def create_account(self, username: str, group: str, secret: str, expiry_date: _dt.date) -> None:
        self._enter("create_account", username)
        with self._lock:
            if username in self.users:
                raise AlreadyExistsError(username=username)
            self.users[username] = AccountRecord(username=username, group=group, expiry_date=expiry_date, locked=False)
            self.passwords[username] = secret

    def delete_account(self, username: str) -> None:
        self._enter("delete_account", username)
        with self._lock:
            if self.users.pop(username, None) is None:
                raise NotFoundError(username=username)
            self.passwords.pop(username, None)

    def set_locked(self, username: str, locked: bool) -> None:
        self._enter("set_locked", username)
        self._replace(username, locked=locked)

    def set_password(self, username: str, secret: str) -> None:
        self._enter("set_password", username)
        self._replace(username)
        with self._lock:
            self.passwords[username] = secret

    def set_expiry(self, username: str, expiry_date: _dt.date) -> None:
        self._enter("set_expiry", username)
        self._replace(username, expiry_date=expiry_date)

    def set_group(self, username: str, group: str) -> None:
        self._enter("set_group", username)
        self._replace(username, group=group)

    def account_exists(self, username: str) -> bool:
        self._enter("account_exists", username)
        with self._lock:
            return username in self.users

    def get_account(self, username: str) -> Optional[AccountRecord]:
        self._enter("get_account", username)
        with self._lock:
            return self.users.get(username)

    def list_usernames(self, prefix: str, group: Optional[str] = None) -> List[str]:
        self._enter("list_usernames", prefix)
        with self._lock:
            return [u for u, r in self.users.items() if u.startswith(prefix) and (group is None or r.group == group)]


@dataclass
class RecordingAuditSink(AuditSink):
    events: List[AuditEvent] = field(default_factory=list)

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


@dataclass
class FakeRenderer:
    fail: bool = False
    tokens: List[str] = field(default_factory=list)

    def render_barcode(self, token: str) -> RenderedBarcode:
        if self.fail:
            raise TokenTooLongError(length=len(token))
        self.tokens.append(token)
        return RenderedBarcode(png=b"\x89PNG-fake", version=1, width=10, height=10)


class DummyLogger:
    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def _add(self, level: str, msg: Any) -> None:
        self.records.append((level, str(msg)))

    def debug(self, msg, *_a, **_k):  # noqa: ANN001
        self._add("debug", msg)

    def info(self, msg, *_a, **_k):  # noqa: ANN001
        self._add("info", msg)

    def warning(self, msg, *_a, **_k):  # noqa: ANN001
        self._add("warning", msg)

    def error(self, msg, *_a, **_k):  # noqa: ANN001
        self._add("error", msg)

    def text(self) -> str:
        return "\n".join(m for _, m in self.records)


@dataclass
class FakeTelegramClient:
    messages: List[Tuple[int, str, Optional[str]]] = field(default_factory=list)
    photos: List[Tuple[int, bytes, Optional[str]]] = field(default_factory=list)
    updates: List[List[Any]] = field(default_factory=list)
    fail_markdown: bool = False
    fail_polls: int = 0
    offsets: List[Optional[int]] = field(default_factory=list)

    def send_message(self, chat_id: int, text: str, *, parse_mode: Optional[str] = "Markdown") -> None:
        if self.fail_markdown and parse_mode:
            raise TransportError("Telegram sendMessage failed: can't parse entities")
        self.messages.append((chat_id, text, parse_mode))

    def send_photo(self, chat_id: int, png: bytes, *, caption: Optional[str] = None, parse_mode: Optional[str] = "Markdown") -> None:
        if self.fail_markdown and parse_mode and caption:
            raise TransportError("Telegram sendPhoto failed: can't parse entities")
        self.photos.append((chat_id, png, caption))

    def get_updates(self, *, offset: Optional[int] = None, timeout: int = 30) -> List[Any]:
        self.offsets.append(offset)
        if self.fail_polls > 0:
            self.fail_polls -= 1
            raise TransportError("Telegram getUpdates request failed.")
        return self.updates.pop(0) if self.updates else []
