from __future__ import annotations

import datetime as _dt
from typing import List, Optional

from sshmgr.core.accounts.models import AccountRecord


class UserService:
    """
    Host user database capability.

    Every mutating call either completes or raises:
    - NotFoundError when the user (or group) does not exist
    - AlreadyExistsError when create_account hits an existing name
    - UnderlyingSystemFailure for anything the host reports that the engine cannot interpret
    Implementations never log or keep secrets.
    """

    name: str = "base"

    def create_account(self, username: str, group: str, secret: str, expiry_date: _dt.date) -> None:
        """Adds the user with its expiry already set; one host step, so no half-created account."""
        raise NotImplementedError

    def delete_account(self, username: str) -> None:
        raise NotImplementedError

    def set_locked(self, username: str, locked: bool) -> None:
        raise NotImplementedError

    def set_password(self, username: str, secret: str) -> None:
        raise NotImplementedError

    def set_expiry(self, username: str, expiry_date: _dt.date) -> None:
        raise NotImplementedError

    def set_group(self, username: str, group: str) -> None:
        raise NotImplementedError

    def account_exists(self, username: str) -> bool:
        raise NotImplementedError

    def get_account(self, username: str) -> Optional[AccountRecord]:
        """Current group/expiry/lock state, or None if the user is absent."""
        raise NotImplementedError

    def list_usernames(self, prefix: str, group: Optional[str] = None) -> List[str]:
        raise NotImplementedError
