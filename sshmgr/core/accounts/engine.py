from __future__ import annotations

import datetime as _dt
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from sshmgr.core.accounts.locks import KeyedLocks, LockHold
from sshmgr.core.accounts.models import (
    AccountCredentials,
    AccountRecord,
    AccountState,
    GroupPolicy,
    TransitionResult,
)
from sshmgr.core.accounts.service import UserService
from sshmgr.core.clock import Clock, parse_date
from sshmgr.core.errors import (
    AlreadyExistsError,
    ExhaustedNamespaceError,
    InvalidArgumentError,
    InvalidDateError,
    InvalidDurationError,
    InvalidGroupError,
    InvalidUsernameError,
    NotFoundError,
    ServiceTimeoutError,
    SSHMgrError,
    UnderlyingSystemFailure,
)
from sshmgr.core.randomness import RandomSource, SystemRandomSource, generate_secret, generate_username

T = TypeVar("T")

USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")


@dataclass(frozen=True)
class EngineConfig:
    prefix: str = "sshuser"
    suffix_length: int = 5
    max_username_attempts: int = 16
    secret_length: int = 16
    past_date_tolerance_days: int = 0
    service_timeout_seconds: float = 30.0


class AccountLifecycleEngine:
    """
    Decides which account transitions are legal and performs them through a UserService.

    - every transition for one username runs under that username's lock
    - every host call is bounded by service_timeout_seconds
    - a timed-out call keeps its username locked until it finishes; a timed-out
      create is deleted again once it lands
    - errors are raised as typed SSHMgrError subclasses; nothing is logged here
    - secrets pass through to the host and back to the caller, never stored
    """

    def __init__(
        self,
        service: UserService,
        *,
        groups: GroupPolicy,
        cfg: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        random_source: Optional[RandomSource] = None,
        locks: Optional[KeyedLocks] = None,
        max_workers: int = 8,
    ):
        self.service = service
        self.groups = groups
        self.cfg = cfg or EngineConfig()
        self.clock = clock or Clock()
        self.random_source = random_source or SystemRandomSource()
        self.locks = locks or KeyedLocks()
        # username -> exception type for timed-out creates whose rollback failed
        self.orphaned: Dict[str, str] = {}
        self._orphan_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="user-service")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ---------- validation ----------
    @staticmethod
    def _check_username(username: str) -> str:
        name = str(username or "").strip()
        if not USERNAME_RE.match(name):
            raise InvalidUsernameError(f"Invalid username: {name or '(empty)'}", username=name)
        return name

    def _check_group(self, group: str) -> str:
        g = str(group or "").strip()
        if g not in self.groups:
            raise InvalidGroupError(f"Unknown group: {g or '(empty)'}", group=g)
        return g

    @staticmethod
    def _check_days(days: Any) -> int:
        if isinstance(days, bool) or not isinstance(days, int):
            raise InvalidDurationError("Number of days must be a whole number.", days=str(days))
        if days <= 0:
            raise InvalidDurationError(days=days)
        return days

    def _check_date(self, value: Union[str, _dt.date]) -> _dt.date:
        try:
            d = parse_date(value)
        except ValueError as e:
            raise InvalidDateError("Invalid expiry date, use YYYY-MM-DD.", value=str(value)) from e
        earliest = self.clock.today() - _dt.timedelta(days=int(self.cfg.past_date_tolerance_days))
        if d < earliest:
            raise InvalidDateError("Expiry date is in the past.", value=str(value))
        return d

    @staticmethod
    def _check_secret(secret: str) -> str:
        s = str(secret or "")
        if not s or any(c.isspace() for c in s):
            raise InvalidArgumentError("Password must be non-empty and contain no whitespace.")
        return s

    # ---------- host calls ----------
    def _call(self, operation: str, fn: Callable[..., T], *args: Any, hold: Optional[LockHold] = None) -> T:
        fut = self._executor.submit(fn, *args)
        try:
            return fut.result(timeout=float(self.cfg.service_timeout_seconds))
        except FutureTimeout as e:
            if hold is not None:
                # The call keeps running; nobody else may touch this username until it lands.
                hold.release_after(fut)
            raise ServiceTimeoutError(operation=operation) from e
        except SSHMgrError:
            raise
        except Exception as e:  # noqa: BLE001
            raise UnderlyingSystemFailure(operation=operation, error=type(e).__name__) from e

    def _require(self, operation: str, username: str, hold: LockHold) -> AccountRecord:
        rec = self._call(operation, self.service.get_account, username, hold=hold)
        if rec is None:
            raise NotFoundError(f"User not found: {username}", username=username)
        return rec

    def _add_days(self, base: _dt.date, days: int) -> _dt.date:
        try:
            return base + _dt.timedelta(days=days)
        except OverflowError as e:
            raise InvalidDurationError("Number of days is too large.", days=days) from e

    def _rollback_when_done(self, created: Future, username: str) -> Future:
        """Delete the account a timed-out create_account makes after all; the returned future finishes after that."""
        done: Future = Future()

        def after_create(f: Future) -> None:
            try:
                if not f.cancelled() and f.exception() is None:
                    self.service.delete_account(username)
            except Exception as e:  # noqa: BLE001
                with self._orphan_lock:
                    self.orphaned[username] = type(e).__name__
            finally:
                done.set_result(None)

        created.add_done_callback(after_create)
        return done

    def _create_locked(self, operation: str, username: str, group: str, expiry: _dt.date, secret: str, hold: LockHold) -> AccountCredentials:
        if self._call(operation, self.service.account_exists, username, hold=hold):
            raise AlreadyExistsError(f"User already exists: {username}", username=username)
        try:
            self._call(operation, self.service.create_account, username, group, secret, expiry, hold=hold)
        except ServiceTimeoutError:
            # Reported as failed, so it must not appear later either.
            assert hold.pending is not None
            hold.release_after(self._rollback_when_done(hold.pending, username))
            raise
        return AccountCredentials(
            operation=operation,
            username=username,
            secret=secret,
            group=group,
            max_logins=self.groups.limit_for(group),
            expiry_date=expiry,
        )

    # ---------- transitions ----------
    def create(self, username: str, group: str, expiry_date: Union[str, _dt.date], secret: str) -> AccountCredentials:
        name = self._check_username(username)
        g = self._check_group(group)
        expiry = self._check_date(expiry_date)
        s = self._check_secret(secret)
        with self.locks.hold(name) as h:
            return self._create_locked("create", name, g, expiry, s, h)

    def auto_create(self, group: str, days: int) -> AccountCredentials:
        g = self._check_group(group)
        n = self._check_days(days)
        expiry = self._add_days(self.clock.today(), n)
        attempts = max(1, int(self.cfg.max_username_attempts))
        for _ in range(attempts):
            name = generate_username(self.random_source, self.cfg.prefix, self.cfg.suffix_length)
            with self.locks.hold(name) as h:
                if self._call("auto_create", self.service.account_exists, name, hold=h):
                    continue
                secret = generate_secret(self.random_source, self.cfg.secret_length)
                try:
                    return self._create_locked("auto_create", name, g, expiry, secret, h)
                except AlreadyExistsError:
                    # Someone outside this process took the name between check and create.
                    continue
        raise ExhaustedNamespaceError(prefix=self.cfg.prefix, attempts=attempts)

    def delete(self, username: str) -> TransitionResult:
        name = self._check_username(username)
        with self.locks.hold(name) as h:
            self._require("delete", name, h)
            self._call("delete", self.service.delete_account, name, hold=h)
        return TransitionResult(operation="delete", username=name, state=AccountState.ABSENT)

    def _set_locked(self, operation: str, username: str, locked: bool) -> TransitionResult:
        name = self._check_username(username)
        target = AccountState.LOCKED if locked else AccountState.ACTIVE
        with self.locks.hold(name) as h:
            rec = self._require(operation, name, h)
            if rec.locked == locked:
                return TransitionResult(operation=operation, username=name, state=target, changed=False, expiry_date=rec.expiry_date)
            self._call(operation, self.service.set_locked, name, locked, hold=h)
        return TransitionResult(operation=operation, username=name, state=target, expiry_date=rec.expiry_date)

    def lock(self, username: str) -> TransitionResult:
        return self._set_locked("lock", username, True)

    def unlock(self, username: str) -> TransitionResult:
        return self._set_locked("unlock", username, False)

    def change_password(self, username: str, new_secret: str) -> AccountCredentials:
        name = self._check_username(username)
        s = self._check_secret(new_secret)
        with self.locks.hold(name) as h:
            rec = self._require("change_password", name, h)
            self._call("change_password", self.service.set_password, name, s, hold=h)
        return AccountCredentials(
            operation="change_password",
            username=name,
            secret=s,
            group=rec.group,
            max_logins=self.groups.limit_for(rec.group),
            expiry_date=rec.expiry_date,
        )

    def change_group(self, username: str, new_group: str) -> TransitionResult:
        name = self._check_username(username)
        g = self._check_group(new_group)
        with self.locks.hold(name) as h:
            rec = self._require("change_group", name, h)
            if rec.group != g:
                self._call("change_group", self.service.set_group, name, g, hold=h)
        return TransitionResult(
            operation="change_group",
            username=name,
            state=rec.state,
            changed=rec.group != g,
            group=g,
            max_logins=self.groups.limit_for(g),
            expiry_date=rec.expiry_date,
        )

    def change_expiry(self, username: str, new_date: Union[str, _dt.date]) -> TransitionResult:
        name = self._check_username(username)
        d = self._check_date(new_date)
        with self.locks.hold(name) as h:
            rec = self._require("change_expiry", name, h)
            self._call("change_expiry", self.service.set_expiry, name, d, hold=h)
        return TransitionResult(operation="change_expiry", username=name, state=rec.state, changed=rec.expiry_date != d, expiry_date=d)

    def renew(self, username: str, days: int) -> TransitionResult:
        name = self._check_username(username)
        n = self._check_days(days)
        with self.locks.hold(name) as h:
            rec = self._require("renew", name, h)
            today = self.clock.today()
            base = today if rec.expiry_date is None else max(today, rec.expiry_date)
            new_expiry = self._add_days(base, n)
            self._call("renew", self.service.set_expiry, name, new_expiry, hold=h)
        return TransitionResult(operation="renew", username=name, state=rec.state, expiry_date=new_expiry)

    def get_expiry(self, username: str) -> Optional[_dt.date]:
        """None means the host has no expiry set (an account created outside this bot)."""
        name = self._check_username(username)
        with self.locks.hold(name) as h:
            return self._require("get_expiry", name, h).expiry_date

    def list_accounts(self, group: Optional[str] = None) -> List[str]:
        g = self._check_group(group) if group else None
        names = self._call("list_accounts", self.service.list_usernames, self.cfg.prefix, g)
        return sorted(names)
