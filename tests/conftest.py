"""
tests/conftest.py -- Shared fixtures for KeyGate tests.

This module provides:
  - FakeClock: a controllable time source injected into every component
  - audit / store / gate: fully wired components rooted in tmp_path
  - cli_env: KEYGATE_* environment pointing the CLI at tmp_path

Design: every component takes its paths and its clock as constructor
arguments, so each test gets an isolated key store, log directory, session
file and lockout marker. Nothing touches the real /tmp/dns_key.active.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from audit.log import AuditLog
from core.config import get_settings
from gate.session import SessionGate
from keystore.store import KeyStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 10, 12, 0, 0).astimezone()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit(tmp_path: Path, clock: FakeClock) -> AuditLog:
    return AuditLog(tmp_path / "logs", clock=clock, user="tester", host="testhost")


@pytest.fixture
def store(tmp_path: Path, audit: AuditLog, clock: FakeClock) -> KeyStore:
    """Initialized KeyStore under tmp_path/keys."""
    s = KeyStore(tmp_path / "keys", audit, clock=clock)
    s.initialize()
    return s


@pytest.fixture
def gate(tmp_path: Path, store: KeyStore, audit: AuditLog, clock: FakeClock) -> Generator[SessionGate, None, None]:
    g = SessionGate(
        store,
        audit,
        session_path=tmp_path / "run" / "dns_key.active",
        lockout_path=tmp_path / "run" / "dns_tool.lock",
        clock=clock,
    )
    yield g
    g.close()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point get_settings() at tmp_path and reset the singleton around the test."""
    monkeypatch.setenv("KEYGATE_KEY_DIR", str(tmp_path / "keys"))
    monkeypatch.setenv("KEYGATE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("KEYGATE_SESSION_PATH", str(tmp_path / "run" / "dns_key.active"))
    monkeypatch.setenv("KEYGATE_LOCKOUT_PATH", str(tmp_path / "run" / "dns_tool.lock"))
    monkeypatch.setenv("NO_COLOR", "1")
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()
