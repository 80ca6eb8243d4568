"""
Account lifecycle: Absent -> Active <-> Locked -> Absent.

The engine decides; a UserService (host or fake) performs.
"""

from sshmgr.core.accounts.engine import AccountLifecycleEngine, EngineConfig
from sshmgr.core.accounts.locks import KeyedLocks
from sshmgr.core.accounts.models import AccountCredentials, AccountRecord, AccountState, GroupPolicy, TransitionResult
from sshmgr.core.accounts.service import UserService

__all__ = [
    "AccountLifecycleEngine",
    "EngineConfig",
    "KeyedLocks",
    "AccountCredentials",
    "AccountRecord",
    "AccountState",
    "GroupPolicy",
    "TransitionResult",
    "UserService",
]
