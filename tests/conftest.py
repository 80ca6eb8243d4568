from __future__ import annotations

import datetime as _dt

import pytest

from sshmgr.core.accounts import AccountLifecycleEngine, EngineConfig, GroupPolicy
from sshmgr.core.dispatcher import CommandDispatcher, ServerInfo
from sshmgr.core.events import EventLogger
from sshmgr.core.randomness import SeededRandomSource
from sshmgr.core.security import AdminSet, AuthorizationGate
from tests.helpers.fakes import ADMIN_ID, GROUPS, DummyLogger, FakeClock, FakeRenderer, FakeUserService, RecordingAuditSink


@pytest.fixture
def clock():
    return FakeClock(_dt.date(2024, 1, 10))


@pytest.fixture
def service():
    return FakeUserService()


@pytest.fixture
def engine(service, clock):
    eng = AccountLifecycleEngine(
        service,
        groups=GroupPolicy(max_logins=dict(GROUPS)),
        cfg=EngineConfig(prefix="sshuser", suffix_length=5, max_username_attempts=8, secret_length=16, service_timeout_seconds=2.0),
        clock=clock,
        random_source=SeededRandomSource(42),
        max_workers=8,
    )
    yield eng
    eng.close()


@pytest.fixture
def server_info():
    return ServerInfo(address="vpn.example.org", ports=(22, 2222), location="Frankfurt")


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def dummy_logger():
    return DummyLogger()


@pytest.fixture
def event_log_path(tmp_path):
    return str(tmp_path / "events.jsonl")


@pytest.fixture
def dispatcher(engine, server_info, audit_sink, dummy_logger, event_log_path):
    return CommandDispatcher(
        engine=engine,
        gate=AuthorizationGate(admins=AdminSet.of([ADMIN_ID])),
        renderer=FakeRenderer(),
        server=server_info,
        logger=dummy_logger,
        audit=audit_sink,
        event_logger=EventLogger(event_log_path),
    )
