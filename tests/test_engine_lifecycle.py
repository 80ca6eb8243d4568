from __future__ import annotations

import datetime as _dt

import pytest

from sshmgr.core.accounts import AccountLifecycleEngine, AccountState, EngineConfig, GroupPolicy
from sshmgr.core.errors import (
    AlreadyExistsError,
    InvalidArgumentError,
    InvalidDateError,
    InvalidDurationError,
    InvalidGroupError,
    InvalidUsernameError,
    NotFoundError,
    ServiceTimeoutError,
    UnderlyingSystemFailure,
)
from tests.helpers.fakes import FakeUserService


def test_create_then_renew_extends_from_current_expiry(engine, service, clock):
    creds = engine.create("alice", "max1", "2024-01-10", "S3cret!pw")
    assert creds.username == "alice"
    assert creds.group == "max1"
    assert creds.max_logins == 1
    assert creds.expiry_date == _dt.date(2024, 1, 10)
    assert service.passwords["alice"] == "S3cret!pw"

    res = engine.renew("alice", 30)
    assert res.expiry_date == _dt.date(2024, 2, 9)
    assert service.users["alice"].expiry_date == _dt.date(2024, 2, 9)


def test_renew_of_expired_account_counts_from_today(engine, service, clock):
    service.seed("bob", expiry=_dt.date(2024, 1, 10))
    clock.set(_dt.date(2024, 3, 1))
    res = engine.renew("bob", 30)
    assert res.expiry_date == _dt.date(2024, 3, 31)


def test_renew_without_expiry_counts_from_today(engine, service):
    service.seed("carol", expiry=None)
    assert engine.renew("carol", 5).expiry_date == _dt.date(2024, 1, 15)


def test_create_existing_user_is_rejected_without_touching_host(engine, service):
    service.seed("alice")
    with pytest.raises(AlreadyExistsError):
        engine.create("alice", "max2", "2024-02-01", "pw")
    assert service.ops("create_account") == []
    assert service.users["alice"].group == "max1"


def test_create_validates_before_any_host_call(engine, service):
    with pytest.raises(InvalidGroupError):
        engine.create("alice", "max9", "2024-02-01", "pw")
    with pytest.raises(InvalidDateError):
        engine.create("alice", "max1", "2024-01-09", "pw")
    with pytest.raises(InvalidDateError):
        engine.create("alice", "max1", "2024-13-01", "pw")
    with pytest.raises(InvalidUsernameError):
        engine.create("Alice;rm", "max1", "2024-02-01", "pw")
    with pytest.raises(InvalidArgumentError):
        engine.create("alice", "max1", "2024-02-01", "two words")
    assert service.calls == []


def test_lock_and_unlock_are_idempotent(engine, service):
    service.seed("alice")
    first = engine.lock("alice")
    assert first.changed is True
    assert first.state == AccountState.LOCKED
    second = engine.lock("alice")
    assert second.changed is False
    assert second.state == AccountState.LOCKED
    assert service.ops("set_locked") == ["alice"]

    assert engine.unlock("alice").changed is True
    assert engine.unlock("alice").changed is False
    assert service.users["alice"].locked is False


def test_operations_on_absent_user_raise_not_found(engine, service):
    for op in (engine.delete, engine.lock, engine.unlock, engine.get_expiry):
        with pytest.raises(NotFoundError):
            op("ghost")
    with pytest.raises(NotFoundError):
        engine.renew("ghost", 10)
    with pytest.raises(NotFoundError):
        engine.change_group("ghost", "max2")
    with pytest.raises(NotFoundError):
        engine.change_password("ghost", "pw")
    assert service.ops("delete_account") == []


def test_delete_removes_account(engine, service):
    service.seed("alice")
    res = engine.delete("alice")
    assert res.state == AccountState.ABSENT
    assert "alice" not in service.users


@pytest.mark.parametrize("days", [0, -3, True, "10", 1.5])
def test_renew_rejects_non_positive_or_non_integer_days(engine, service, days):
    service.seed("alice", expiry=_dt.date(2024, 2, 1))
    with pytest.raises(InvalidDurationError):
        engine.renew("alice", days)
    assert service.users["alice"].expiry_date == _dt.date(2024, 2, 1)


def test_change_group_reports_new_limit(engine, service):
    service.seed("alice", group="max1")
    res = engine.change_group("alice", "max3")
    assert res.changed is True
    assert res.max_logins == 3
    assert service.users["alice"].group == "max3"
    again = engine.change_group("alice", "max3")
    assert again.changed is False
    assert service.ops("set_group") == ["alice"]


def test_change_expiry_accepts_today_and_rejects_past(engine, service):
    service.seed("alice", expiry=_dt.date(2024, 2, 1))
    res = engine.change_expiry("alice", "2024-01-10")
    assert res.expiry_date == _dt.date(2024, 1, 10)
    assert res.changed is True
    with pytest.raises(InvalidDateError):
        engine.change_expiry("alice", _dt.date(2023, 12, 31))


def test_change_password_returns_new_secret_and_keeps_expiry(engine, service):
    service.seed("alice", group="max2", expiry=_dt.date(2024, 5, 1))
    creds = engine.change_password("alice", "n3w-Secret")
    assert creds.secret == "n3w-Secret"
    assert creds.max_logins == 2
    assert creds.expiry_date == _dt.date(2024, 5, 1)
    assert service.passwords["alice"] == "n3w-Secret"
    assert "n3w-Secret" not in repr(creds)


def test_get_expiry_may_be_unset(engine, service):
    service.seed("alice", expiry=None)
    assert engine.get_expiry("alice") is None


def test_list_accounts_is_sorted_and_filtered(engine, service):
    service.seed("sshuserzzzzz", group="max2")
    service.seed("sshuseraaaaa", group="max1")
    service.seed("root", group="max1")
    assert engine.list_accounts() == ["sshuseraaaaa", "sshuserzzzzz"]
    assert engine.list_accounts("max2") == ["sshuserzzzzz"]
    with pytest.raises(InvalidGroupError):
        engine.list_accounts("wheel")


def test_create_sets_expiry_in_the_same_host_call(engine, service):
    engine.create("alice", "max1", "2024-02-01", "pw")
    assert service.users["alice"].expiry_date == _dt.date(2024, 2, 1)
    assert service.ops("create_account") == ["alice"]
    assert service.ops("set_expiry") == []


def test_failed_host_create_leaves_nothing_to_roll_back(engine, service):
    service.failures["create_account"] = UnderlyingSystemFailure(operation="create_account")
    with pytest.raises(UnderlyingSystemFailure):
        engine.create("alice", "max1", "2024-02-01", "pw")
    assert "alice" not in service.users
    assert service.ops("delete_account") == []


def test_unexpected_host_exception_becomes_system_failure(engine, service):
    service.seed("alice")
    service.failures["set_locked"] = OSError("boom")
    with pytest.raises(UnderlyingSystemFailure) as ei:
        engine.lock("alice")
    assert ei.value.code == "system_failure"
    assert ei.value.context["error"] == "OSError"


def test_slow_host_call_times_out(clock):
    svc = FakeUserService()
    svc.seed("alice")
    svc.delays["set_locked"] = 0.5
    eng = AccountLifecycleEngine(
        svc,
        groups=GroupPolicy(max_logins={"max1": 1}),
        cfg=EngineConfig(service_timeout_seconds=0.05),
        clock=clock,
    )
    try:
        with pytest.raises(ServiceTimeoutError) as ei:
            eng.lock("alice")
        assert ei.value.code == "service_timeout"
        assert ei.value.context["operation"] == "lock"
    finally:
        eng.close()


def test_renew_past_the_calendar_end_is_an_invalid_duration(engine, service):
    service.seed("alice", expiry=_dt.date(2024, 2, 1))
    with pytest.raises(InvalidDurationError):
        engine.renew("alice", 10**7)
    assert service.users["alice"].expiry_date == _dt.date(2024, 2, 1)
    assert service.ops("set_expiry") == []


def test_auto_create_with_huge_duration_is_an_invalid_duration(engine, service):
    with pytest.raises(InvalidDurationError):
        engine.auto_create("max1", 10**9)
    assert service.calls == []
