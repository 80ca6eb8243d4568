from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional


class AccountState(str, Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    LOCKED = "locked"


@dataclass(frozen=True)
class AccountRecord:
    """What the host user database knows about one account (never the secret)."""

    username: str
    group: str
    expiry_date: Optional[_dt.date]
    locked: bool = False

    @property
    def state(self) -> AccountState:
        return AccountState.LOCKED if self.locked else AccountState.ACTIVE


@dataclass(frozen=True)
class GroupPolicy:
    """Known login groups, mapped to their concurrent-login limit."""

    max_logins: Mapping[str, int]

    def __contains__(self, group: object) -> bool:
        return group in self.max_logins

    def limit_for(self, group: str) -> Optional[int]:
        return self.max_logins.get(group)


@dataclass(frozen=True)
class TransitionResult:
    operation: str
    username: str
    state: AccountState
    changed: bool = True
    group: Optional[str] = None
    max_logins: Optional[int] = None
    expiry_date: Optional[_dt.date] = None


@dataclass(frozen=True)
class AccountCredentials:
    """
    Returned by operations that set a secret.

    The plaintext lives here only until the caller has packaged it for the
    end user; repr() never shows it.
    """

    operation: str
    username: str
    secret: str = field(repr=False)
    group: Optional[str] = None
    max_logins: Optional[int] = None
    expiry_date: Optional[_dt.date] = None
