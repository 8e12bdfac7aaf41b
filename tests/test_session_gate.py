"""Unit tests for gate/session.py -- SessionGate.

Covers:
- unlock(): success, idempotence, expired abort, lockout after 3 invalid
  attempts, lazy consumption of the attempt source, optional enforcement
- lock(): manual lock, no-op when locked, lockout marker cleared
- Auto-lock: persisted deadline fires on check(), status() reports LOCKED
  past the deadline without mutating,
  auto_lock_fire() checks session identity, in-process timer
- Revocation of the active key forces Locked
- log_usage(): only while unlocked
"""

import stat
import threading
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from audit.log import KEY_USAGE, SYSTEM_LOCK, SYSTEM_LOCKOUT, SYSTEM_UNLOCK, AuditLog
from core.models import CheckResult, GateState, SessionRecord, UnlockOutcome
from gate.session import SessionGate
from keystore.store import KeyStore


def _actions(audit: AuditLog, action: str) -> list[str]:
    return [e.message for e in audit.read() if e.action == action]


@pytest.fixture
def issued(store: KeyStore):
    return store.generate(7)


@pytest.fixture
def unlocked(gate: SessionGate, issued):
    result = gate.unlock([(issued.id, issued.secret)])
    assert result.outcome is UnlockOutcome.UNLOCKED
    return issued


# ---------------------------------------------------------------------------
# TestUnlock
# ---------------------------------------------------------------------------


class TestUnlock:
    def test_initial_state_is_locked(self, gate: SessionGate) -> None:
        assert gate.state is GateState.LOCKED
        assert gate.check() is CheckResult.LOCKED

    def test_valid_key_unlocks(self, gate: SessionGate, issued, audit: AuditLog) -> None:
        result = gate.unlock([(issued.id, issued.secret)])
        assert result.success
        assert result.key_id == issued.id
        assert result.attempts == 1
        assert gate.check() is CheckResult.VALID
        assert _actions(audit, SYSTEM_UNLOCK) == [f"SUCCESS - Key: {issued.id}"]

    def test_session_file_format(self, gate: SessionGate, unlocked, clock) -> None:
        text = gate.session_path.read_text()
        epoch = int(clock().timestamp())
        assert text.splitlines() == [
            f"KEY_ID={unlocked.id}",
            f"UNLOCK_TIME={epoch}",
            "USER=tester",
            f"EXPIRES_AT={epoch + 8 * 3600}",
        ]
        assert stat.S_IMODE(gate.session_path.stat().st_mode) == 0o600

    def test_already_unlocked_skips_validation(self, gate: SessionGate, unlocked, store: KeyStore) -> None:
        with patch.object(store, "validate") as validate:
            result = gate.unlock([("anything", "anything")])
        validate.assert_not_called()
        assert result.outcome is UnlockOutcome.ALREADY_UNLOCKED
        assert result.success
        assert result.key_id == unlocked.id

    def test_invalid_then_valid_within_one_call(self, gate: SessionGate, issued) -> None:
        result = gate.unlock([("KEY_WRONG", "x"), (issued.id, issued.secret)])
        assert result.outcome is UnlockOutcome.UNLOCKED
        assert result.attempts == 2
        assert not gate.locked_out

    def test_expired_key_aborts_immediately(self, gate: SessionGate, issued, clock, audit: AuditLog) -> None:
        clock.advance(days=8)
        attempts = [(issued.id, issued.secret), ("never", "used")]
        result = gate.unlock(attempts)
        assert result.outcome is UnlockOutcome.EXPIRED
        assert result.attempts == 1
        assert not result.success
        assert gate.state is GateState.LOCKED
        assert not gate.locked_out
        assert _actions(audit, SYSTEM_UNLOCK) == [f"FAILED - Expired key: {issued.id}"]

    def test_three_invalid_attempts_lock_out(self, gate: SessionGate, issued, audit: AuditLog) -> None:
        result = gate.unlock([(issued.id, "bad1"), (issued.id, "bad2"), (issued.id, "bad3")])
        assert result.outcome is UnlockOutcome.LOCKED_OUT
        assert result.attempts == 3
        assert gate.locked_out
        assert stat.S_IMODE(gate.lockout_path.stat().st_mode) == 0o600
        assert _actions(audit, SYSTEM_LOCKOUT) == ["Maximum unlock attempts reached"]
        assert _actions(audit, SYSTEM_UNLOCK) == [f"FAILED - Attempt {n} for key: {issued.id}" for n in (1, 2, 3)]

    def test_attempt_source_consumed_lazily(self, gate: SessionGate, issued) -> None:
        pulled = []

        def prompts():
            for n in range(10):
                pulled.append(n)
                yield ("KEY_WRONG", "x")

        gate.unlock(prompts())
        assert pulled == [0, 1, 2]

    def test_fewer_inputs_than_budget_is_plain_failure(self, gate: SessionGate, issued) -> None:
        result = gate.unlock([("KEY_WRONG", "x")])
        assert result.outcome is UnlockOutcome.INVALID
        assert not gate.locked_out

    def test_lockout_is_advisory_by_default(self, gate: SessionGate, issued) -> None:
        gate.unlock([("bad", "bad")] * 3)
        assert gate.locked_out
        result = gate.unlock([(issued.id, issued.secret)])
        assert result.outcome is UnlockOutcome.UNLOCKED

    def test_enforced_lockout_refuses(self, gate: SessionGate, issued, audit: AuditLog) -> None:
        gate.enforce_lockout = True
        gate.unlock([("bad", "bad")] * 3)
        result = gate.unlock([(issued.id, issued.secret)])
        assert result.outcome is UnlockOutcome.REFUSED
        assert gate.state is GateState.LOCKED
        assert _actions(audit, SYSTEM_UNLOCK)[-1] == "FAILED - Lockout in effect"

        gate.lock()  # clears the marker
        assert gate.unlock([(issued.id, issued.secret)]).outcome is UnlockOutcome.UNLOCKED


# ---------------------------------------------------------------------------
# TestLock
# ---------------------------------------------------------------------------


class TestLock:
    def test_manual_lock(self, gate: SessionGate, unlocked, audit: AuditLog) -> None:
        assert gate.lock() is True
        assert gate.state is GateState.LOCKED
        assert not gate.session_path.exists()
        assert _actions(audit, SYSTEM_LOCK) == [f"Manual lock - Key: {unlocked.id}"]

    def test_lock_when_locked_is_noop(self, gate: SessionGate, audit: AuditLog) -> None:
        assert gate.lock() is False
        assert _actions(audit, SYSTEM_LOCK) == []

    def test_lock_clears_lockout_marker(self, gate: SessionGate, issued) -> None:
        gate.unlock([("bad", "bad")] * 3)
        gate.lock()
        assert not gate.locked_out

    def test_lock_cancels_timer(self, gate: SessionGate, unlocked) -> None:
        timer = gate._timer
        assert timer is not None and timer.is_alive()
        gate.lock()
        timer.join(timeout=1)
        assert not timer.is_alive()
        assert gate._timer is None


# ---------------------------------------------------------------------------
# TestStatus
# ---------------------------------------------------------------------------


class TestStatus:
    def test_locked(self, gate: SessionGate) -> None:
        status = gate.status()
        assert status.state is GateState.LOCKED
        assert status.key_id is None

    def test_elapsed_increases(self, gate: SessionGate, unlocked, clock) -> None:
        clock.advance(minutes=5)
        first = gate.status()
        clock.advance(hours=1)
        second = gate.status()
        assert first.unlocked and second.unlocked
        assert first.key_id == unlocked.id
        assert first.elapsed == timedelta(minutes=5)
        assert second.elapsed == timedelta(hours=1, minutes=5)
        assert second.remaining == timedelta(hours=6, minutes=55)

    def test_reports_locked_past_deadline_without_removing_session(self, gate: SessionGate, unlocked, clock) -> None:
        clock.advance(hours=8, seconds=1)
        status = gate.status()
        assert status.state is GateState.LOCKED
        assert status.key_id is None
        assert gate.session_path.exists()

    def test_status_agrees_with_check_past_deadline(self, gate: SessionGate, unlocked, clock) -> None:
        clock.advance(hours=8)
        assert gate.status().state is GateState.LOCKED
        assert gate.check() is CheckResult.LOCKED
        assert gate.status().state is GateState.LOCKED


# ---------------------------------------------------------------------------
# TestAutoLock
# ---------------------------------------------------------------------------


class TestAutoLock:
    def test_check_fires_after_deadline(self, gate: SessionGate, unlocked, clock, audit: AuditLog) -> None:
        clock.advance(hours=8, seconds=1)
        assert gate.check() is CheckResult.LOCKED
        assert not gate.session_path.exists()
        assert _actions(audit, SYSTEM_LOCK) == [f"Auto-lock after timeout - Key: {unlocked.id}"]

    def test_check_before_deadline_stays_unlocked(self, gate: SessionGate, unlocked, clock) -> None:
        clock.advance(hours=7, minutes=59)
        assert gate.check() is CheckResult.VALID

    def test_deadline_survives_new_gate_instance(
        self, tmp_path: Path, gate: SessionGate, unlocked, store: KeyStore, audit: AuditLog, clock
    ) -> None:
        """A later invocation (fresh SessionGate) sees and enforces the same deadline."""
        gate.close()
        later = SessionGate(store, audit, gate.session_path, gate.lockout_path, clock=clock)
        try:
            assert later.check() is CheckResult.VALID
            clock.advance(hours=9)
            assert later.check() is CheckResult.LOCKED
        finally:
            later.close()

    def test_unlock_after_deadline_starts_new_session(self, gate: SessionGate, unlocked, clock) -> None:
        clock.advance(hours=9)
        result = gate.unlock([(unlocked.id, unlocked.secret)])
        assert result.outcome is UnlockOutcome.UNLOCKED
        assert gate.status().elapsed == timedelta(0)

    def test_fire_ignores_replaced_session(self, gate: SessionGate, unlocked, clock) -> None:
        old = SessionRecord.from_text(gate.session_path.read_text(), 8 * 3600)
        gate.lock()
        clock.advance(minutes=1)
        gate.unlock([(unlocked.id, unlocked.secret)])

        assert gate.auto_lock_fire(old.key_id, old.unlocked_at) is False
        assert gate.state is GateState.UNLOCKED

    def test_fire_after_manual_lock_is_noop(self, gate: SessionGate, unlocked, audit: AuditLog) -> None:
        session = SessionRecord.from_text(gate.session_path.read_text(), 8 * 3600)
        gate.lock()
        assert gate.auto_lock_fire(session.key_id, session.unlocked_at) is False
        assert [m for m in _actions(audit, SYSTEM_LOCK) if m.startswith("Auto-lock")] == []

    def test_three_line_session_file_uses_configured_duration(self, gate: SessionGate, issued, clock) -> None:
        epoch = int(clock().timestamp())
        gate.session_path.parent.mkdir(parents=True, exist_ok=True)
        gate.session_path.write_text(f"KEY_ID={issued.id}\nUNLOCK_TIME={epoch}\nUSER=someone\n")
        assert gate.status().remaining == timedelta(hours=8)
        clock.advance(hours=8)
        assert gate.check() is CheckResult.LOCKED

    def test_unreadable_session_file_counts_as_locked(self, gate: SessionGate) -> None:
        gate.session_path.parent.mkdir(parents=True, exist_ok=True)
        gate.session_path.write_text("garbage\n")
        assert gate.state is GateState.LOCKED
        assert gate.check() is CheckResult.LOCKED

    def test_in_process_timer_fires(self, gate: SessionGate, issued) -> None:
        fired = threading.Event()
        original = gate.auto_lock_fire

        def fire_and_signal(key_id, unlocked_at):
            result = original(key_id, unlocked_at)
            fired.set()
            return result

        gate.duration = timedelta(seconds=0)
        gate.auto_lock_fire = fire_and_signal
        gate.unlock([(issued.id, issued.secret)])

        assert fired.wait(timeout=5)
        assert not gate.session_path.exists()


# ---------------------------------------------------------------------------
# TestRevocation
# ---------------------------------------------------------------------------


class TestRevocation:
    def test_revoking_active_key_locks(self, gate: SessionGate, unlocked, store: KeyStore, audit: AuditLog) -> None:
        store.revoke(unlocked.id)
        assert gate.state is GateState.LOCKED
        assert gate.check() is CheckResult.LOCKED
        assert _actions(audit, SYSTEM_LOCK) == [f"Revoked key - Key: {unlocked.id}"]

    def test_revoking_other_key_keeps_session(self, gate: SessionGate, unlocked, store: KeyStore) -> None:
        other = store.generate(7)
        store.revoke(other.id)
        assert gate.state is GateState.UNLOCKED

    def test_revoked_key_cannot_unlock(self, gate: SessionGate, issued, store: KeyStore) -> None:
        store.revoke(issued.id)
        result = gate.unlock([(issued.id, issued.secret)])
        assert not result.success


# ---------------------------------------------------------------------------
# TestLogUsage
# ---------------------------------------------------------------------------


class TestLogUsage:
    def test_logs_while_unlocked(self, gate: SessionGate, unlocked, audit: AuditLog) -> None:
        assert gate.log_usage("lookup example.com") is True
        assert _actions(audit, KEY_USAGE) == [f"Action: lookup example.com - Key: {unlocked.id}"]

    def test_noop_while_locked(self, gate: SessionGate, audit: AuditLog) -> None:
        assert gate.log_usage("lookup example.com") is False
        assert _actions(audit, KEY_USAGE) == []

    def test_noop_after_deadline(self, gate: SessionGate, unlocked, clock, audit: AuditLog) -> None:
        clock.advance(hours=8, seconds=1)
        assert gate.log_usage("late lookup") is False
        assert _actions(audit, KEY_USAGE) == []


class TestRevokeListenerWiring:
    def test_gate_registers_with_store(self, tmp_path: Path, audit: AuditLog) -> None:
        store = MagicMock(spec=KeyStore)
        g = SessionGate(store, audit, tmp_path / "s", tmp_path / "l")
        store.add_revoke_listener.assert_called_once()
        g.close()
