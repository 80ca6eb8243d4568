"""
Host user database backed by shadow-utils.

Commands used (all must be on PATH and the process must run as root):
- useradd / userdel / usermod  for create, delete, lock, password and group changes
- useradd -e / chage            for expiry (at creation, later changes and reads)
- passwd -S                    for the lock flag
Passwords are hashed with SHA-512 crypt before they reach argv.
"""
from __future__ import annotations

import datetime as _dt
import grp
import os
import pwd
import re
import subprocess
from typing import Callable, Dict, List, Optional, Sequence

from passlib.hash import sha512_crypt

from sshmgr.core.accounts.models import AccountRecord
from sshmgr.core.accounts.service import UserService
from sshmgr.core.clock import format_date
from sshmgr.core.errors import (
    AlreadyExistsError,
    InvalidArgumentError,
    NotFoundError,
    ServiceTimeoutError,
    UnderlyingSystemFailure,
)

_CHAGE_EXPIRES_RE = re.compile(r"^Account expires\s*:\s*(.+)$", re.MULTILINE)


def hash_password(secret: str) -> str:
    return sha512_crypt.hash(secret)


def _raise_for_exit_code(code: Optional[int], *, command: str, username: str) -> None:
    if code == 0:
        return
    if code is None or code < 0:
        raise UnderlyingSystemFailure("Process terminated.", command=command, username=username)
    if code == 1:
        raise UnderlyingSystemFailure("Permission denied.", command=command, username=username, exit_code=code)
    if code == 3:
        raise InvalidArgumentError("Invalid argument for the host.", command=command, username=username, exit_code=code)
    if code == 6:
        raise NotFoundError("Invalid user or group.", command=command, username=username, exit_code=code)
    if code == 9:
        raise AlreadyExistsError(f"User already exists: {username}", command=command, username=username, exit_code=code)
    raise UnderlyingSystemFailure("Unexpected error.", command=command, username=username, exit_code=code)


class HostUserService(UserService):
    name: str = "host"

    def __init__(
        self,
        *,
        shell: str = "/bin/rbash",
        timeout_seconds: float = 30.0,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.shell = shell
        self.timeout_seconds = float(timeout_seconds)
        self._run = run

    def _exec(self, args: Sequence[str], *, username: str) -> subprocess.CompletedProcess:
        command = str(args[0])
        env: Dict[str, str] = dict(os.environ)
        # chage and passwd print localized dates/status otherwise.
        env["LC_ALL"] = "C"
        try:
            proc = self._run(list(args), capture_output=True, text=True, timeout=self.timeout_seconds, env=env, check=False)
        except subprocess.TimeoutExpired as e:
            raise ServiceTimeoutError(command=command, username=username) from e
        except FileNotFoundError as e:
            raise UnderlyingSystemFailure(f"Command {command} not found.", command=command) from e
        _raise_for_exit_code(proc.returncode, command=command, username=username)
        return proc

    # ---------- mutations ----------
    def create_account(self, username: str, group: str, secret: str, expiry_date: _dt.date) -> None:
        self._exec(
            ["useradd", "-p", hash_password(secret), "-s", self.shell, "-g", group, "-e", format_date(expiry_date), username],
            username=username,
        )

    def delete_account(self, username: str) -> None:
        self._exec(["userdel", username], username=username)

    def set_locked(self, username: str, locked: bool) -> None:
        self._exec(["usermod", "-L" if locked else "-U", username], username=username)

    def set_password(self, username: str, secret: str) -> None:
        self._exec(["usermod", "-p", hash_password(secret), username], username=username)

    def set_expiry(self, username: str, expiry_date: _dt.date) -> None:
        self._exec(["chage", "-E", format_date(expiry_date), username], username=username)

    def set_group(self, username: str, group: str) -> None:
        self._exec(["usermod", "-g", group, username], username=username)

    # ---------- reads ----------
    def account_exists(self, username: str) -> bool:
        try:
            pwd.getpwnam(username)
        except KeyError:
            return False
        return True

    def _read_expiry(self, username: str) -> Optional[_dt.date]:
        out = self._exec(["chage", "-l", username], username=username).stdout or ""
        m = _CHAGE_EXPIRES_RE.search(out)
        if m is None:
            raise UnderlyingSystemFailure("Unexpected chage output.", username=username)
        raw = m.group(1).strip()
        if raw == "never":
            return None
        try:
            return _dt.datetime.strptime(raw, "%b %d, %Y").date()
        except ValueError as e:
            raise UnderlyingSystemFailure("Invalid expiry date on host.", username=username, value=raw) from e

    def _read_locked(self, username: str) -> bool:
        out = (self._exec(["passwd", "-S", username], username=username).stdout or "").split()
        # "<user> L 01/10/2024 0 99999 7 -1": second field is L (locked), P or NP.
        return len(out) > 1 and out[1] in {"L", "LK"}

    def get_account(self, username: str) -> Optional[AccountRecord]:
        try:
            entry = pwd.getpwnam(username)
        except KeyError:
            return None
        try:
            group = grp.getgrgid(entry.pw_gid).gr_name
        except KeyError:
            group = str(entry.pw_gid)
        return AccountRecord(
            username=username,
            group=group,
            expiry_date=self._read_expiry(username),
            locked=self._read_locked(username),
        )

    def list_usernames(self, prefix: str, group: Optional[str] = None) -> List[str]:
        gid: Optional[int] = None
        members: set[str] = set()
        if group:
            try:
                g = grp.getgrnam(group)
            except KeyError:
                return []
            gid = g.gr_gid
            members = set(g.gr_mem)
        out: List[str] = []
        for entry in pwd.getpwall():
            if not entry.pw_name.startswith(prefix):
                continue
            if gid is not None and entry.pw_gid != gid and entry.pw_name not in members:
                continue
            out.append(entry.pw_name)
        return out
