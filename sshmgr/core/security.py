from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable

from sshmgr.core.errors import UnauthorizedError


def _identity_key(identity: object) -> str:
    # Chat ids arrive as ints from Telegram and as strings from config files.
    return str(identity).strip()


@dataclass(frozen=True)
class AdminSet:
    """Operator identities allowed to manage accounts. Built once at startup."""

    members: FrozenSet[str]

    @classmethod
    def of(cls, identities: Iterable[object]) -> "AdminSet":
        return cls(members=frozenset(_identity_key(i) for i in identities if _identity_key(i)))

    def __contains__(self, identity: object) -> bool:
        return _identity_key(identity) in self.members

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class AuthorizationGate:
    admins: AdminSet
    public_commands: FrozenSet[str] = frozenset({"help"})

    def is_admin(self, identity: object) -> bool:
        if identity is None:
            return False
        return identity in self.admins

    def allows(self, identity: object, command: str) -> bool:
        if str(command).lower() in self.public_commands:
            return True
        return self.is_admin(identity)

    def check(self, identity: object, command: str) -> None:
        """Raises UnauthorizedError; the message never depends on the target account."""
        if not self.allows(identity, command):
            raise UnauthorizedError(command=str(command))
