"""
gate/session.py -- SessionGate: the Locked/Unlocked state machine.

State lives in the filesystem so it survives between short-lived CLI
invocations:

  session file   KEY_ID=, UNLOCK_TIME=, USER=, EXPIRES_AT= lines, mode 0600.
                 Present means Unlocked. At most one exists.
  lockout file   empty marker written after max_unlock_attempts consecutive
                 invalid attempts in one unlock() call. Advisory unless
                 enforce_lockout is set.

Auto-lock has two triggers:
  1. Persisted deadline (authoritative). check(), unlock(), and log_usage()
     compare now against EXPIRES_AT first and fire the auto-lock when it has
     passed. This works across process boundaries.
  2. In-process timer. unlock() arms a cancellable daemon threading.Timer for
     the same deadline; lock() cancels it. It only matters for a long-lived
     process holding the gate.

Both triggers call auto_lock_fire(key_id, unlocked_at), which only removes
the session if it is still the same session -- never a newer one created by
a later lock+unlock cycle.

status() is a pure projection: past the deadline it reports LOCKED, matching
check(), but leaves the session file for the next transition to remove.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta
from itertools import islice
from pathlib import Path
from typing import Optional

from audit.log import KEY_USAGE, SYSTEM_LOCK, SYSTEM_LOCKOUT, SYSTEM_UNLOCK, AuditLog
from core.clock import Clock, system_clock
from core.errors import StoreError
from core.files import FileLock, touch_private, write_private
from core.models import (
    CheckResult,
    GateState,
    GateStatus,
    SessionRecord,
    UnlockOutcome,
    UnlockResult,
    ValidationResult,
)
from keystore.store import KeyStore

logger = logging.getLogger("keygate.gate")

DEFAULT_SESSION_SECONDS = 8 * 60 * 60
DEFAULT_MAX_ATTEMPTS = 3


class SessionGate:
    """Unlock/lock state machine over a KeyStore.

    Usage:
        gate = SessionGate(store, audit, Path("/tmp/dns_key.active"), Path("/tmp/dns_tool.lock"))
        gate.unlock([(key_id, secret)])
        gate.check()    # CheckResult.VALID
        gate.lock()
    """

    def __init__(
        self,
        keystore: KeyStore,
        audit: AuditLog,
        session_path: Path,
        lockout_path: Path,
        duration_seconds: int = DEFAULT_SESSION_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        enforce_lockout: bool = False,
        clock: Clock = system_clock,
    ) -> None:
        self.keystore = keystore
        self.audit = audit
        self.session_path = Path(session_path)
        self.lockout_path = Path(lockout_path)
        self.duration = timedelta(seconds=duration_seconds)
        self.max_attempts = max_attempts
        self.enforce_lockout = enforce_lockout
        self._clock = clock
        self._timer: Optional[threading.Timer] = None
        self._timer_guard = threading.Lock()
        keystore.add_revoke_listener(self._on_key_revoked)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> GateState:
        return self.status().state

    @property
    def locked_out(self) -> bool:
        """True while the LockoutMarker exists."""
        return self.lockout_path.exists()

    def status(self) -> GateStatus:
        """Project the session file into a GateStatus without changing anything.

        Past the deadline this reports LOCKED without removing the session;
        check(), unlock() and log_usage() do the removal.
        """
        session = self._read_session()
        if session is None:
            return GateStatus(state=GateState.LOCKED)
        now = self._clock()
        now_ts = now.timestamp()
        if now_ts >= session.expires_at:
            return GateStatus(state=GateState.LOCKED)
        return GateStatus(
            state=GateState.UNLOCKED,
            key_id=session.key_id,
            user=session.user,
            unlocked_at=datetime.fromtimestamp(session.unlocked_at, tz=now.tzinfo),
            elapsed=timedelta(seconds=now_ts - session.unlocked_at),
            remaining=timedelta(seconds=session.expires_at - now_ts),
        )

    def check(self) -> CheckResult:
        """Answer for the DNS executor: VALID while unlocked, LOCKED otherwise."""
        self._expire_if_due()
        return CheckResult.VALID if self._read_session() is not None else CheckResult.LOCKED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def unlock(self, attempts: Iterable[tuple[str, str]]) -> UnlockResult:
        """Try up to max_attempts (key_id, secret) pairs drawn from attempts.

        attempts may be a list (headless callers, tests) or a generator that
        prompts the operator; it is consumed lazily, one pair per attempt.

        Outcomes:
          VALID    -> session written, timer armed, UNLOCKED.
          EXPIRED  -> stop immediately, EXPIRED. Does not count as a retry.
          INVALID  -> next attempt; after max_attempts, LockoutMarker + LOCKED_OUT.
        Already unlocked returns ALREADY_UNLOCKED without validating anything.
        """
        self._expire_if_due()
        current = self._read_session()
        if current is not None:
            return UnlockResult(UnlockOutcome.ALREADY_UNLOCKED, key_id=current.key_id)

        if self.enforce_lockout and self.locked_out:
            self.audit.append(SYSTEM_UNLOCK, "FAILED - Lockout in effect")
            return UnlockResult(UnlockOutcome.REFUSED)

        count = 0
        for key_id, secret in islice(attempts, self.max_attempts):
            count += 1
            result = self.keystore.validate(key_id, secret)
            if result is ValidationResult.VALID:
                return self._open_session(key_id, count)
            if result is ValidationResult.EXPIRED:
                self.audit.append(SYSTEM_UNLOCK, f"FAILED - Expired key: {key_id}")
                return UnlockResult(UnlockOutcome.EXPIRED, attempts=count, key_id=key_id)
            self.audit.append(SYSTEM_UNLOCK, f"FAILED - Attempt {count} for key: {key_id}")

        if count < self.max_attempts:
            return UnlockResult(UnlockOutcome.INVALID, attempts=count)

        try:
            self.lockout_path.parent.mkdir(parents=True, exist_ok=True)
            touch_private(self.lockout_path)
        except OSError as err:
            raise StoreError(f"Cannot write lockout marker {self.lockout_path}: {err}") from err
        self.audit.append(SYSTEM_LOCKOUT, "Maximum unlock attempts reached")
        return UnlockResult(UnlockOutcome.LOCKED_OUT, attempts=count)

    def lock(self, reason: str = "Manual lock") -> bool:
        """Delete the session and cancel the timer. Returns False if already locked.

        Also clears the LockoutMarker.
        """
        with FileLock(self.session_path):
            session = self._read_session()
            self._remove(self.session_path)
        self._cancel_timer()
        self._remove(self.lockout_path)
        if session is None:
            return False
        self.audit.append(SYSTEM_LOCK, f"{reason} - Key: {session.key_id}")
        return True

    def auto_lock_fire(self, key_id: str, unlocked_at: int) -> bool:
        """Expire the session identified by (key_id, unlocked_at).

        No-op, returning False, if that session is gone or was replaced.
        """
        with FileLock(self.session_path):
            session = self._read_session()
            if session is None or session.key_id != key_id or session.unlocked_at != unlocked_at:
                return False
            self._remove(self.session_path)
        logger.info("Session for %s auto-locked", key_id)
        self.audit.append(SYSTEM_LOCK, f"Auto-lock after timeout - Key: {key_id}")
        return True

    def log_usage(self, action: str) -> bool:
        """Record a KEY_USAGE entry against the active key. No-op while locked."""
        self._expire_if_due()
        session = self._read_session()
        if session is None:
            return False
        self.audit.append(KEY_USAGE, f"Action: {action} - Key: {session.key_id}")
        return True

    def close(self) -> None:
        """Cancel the in-process timer. The persisted deadline still applies."""
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_session(self, key_id: str, attempts: int) -> UnlockResult:
        now_ts = int(self._clock().timestamp())
        session = SessionRecord(
            key_id=key_id,
            unlocked_at=now_ts,
            user=self.audit.user,
            expires_at=now_ts + int(self.duration.total_seconds()),
        )
        with FileLock(self.session_path):
            # Another invocation may have unlocked while we were validating.
            existing = self._read_session()
            if existing is not None:
                return UnlockResult(UnlockOutcome.ALREADY_UNLOCKED, attempts=attempts, key_id=existing.key_id)
            try:
                self.session_path.parent.mkdir(parents=True, exist_ok=True)
                write_private(self.session_path, session.to_text())
            except OSError as err:
                raise StoreError(f"Cannot write session file {self.session_path}: {err}") from err
        self._arm_timer(session)
        self.audit.append(SYSTEM_UNLOCK, f"SUCCESS - Key: {key_id}")
        return UnlockResult(UnlockOutcome.UNLOCKED, attempts=attempts, key_id=key_id)

    def _expire_if_due(self) -> None:
        session = self._read_session()
        if session is not None and self._clock().timestamp() >= session.expires_at:
            self.auto_lock_fire(session.key_id, session.unlocked_at)

    def _on_key_revoked(self, key_id: str) -> None:
        session = self._read_session()
        if session is not None and session.key_id == key_id:
            self.lock(reason="Revoked key")

    def _read_session(self) -> Optional[SessionRecord]:
        try:
            text = self.session_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StoreError(f"Cannot read session file {self.session_path}: {err}") from err
        session = SessionRecord.from_text(text, int(self.duration.total_seconds()))
        if session is None:
            logger.warning("Ignoring unreadable session file %s", self.session_path)
        return session

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as err:
            raise StoreError(f"Cannot remove {path}: {err}") from err

    def _arm_timer(self, session: SessionRecord) -> None:
        delay = max(0.0, session.expires_at - self._clock().timestamp())
        timer = threading.Timer(delay, self.auto_lock_fire, args=(session.key_id, session.unlocked_at))
        timer.daemon = True
        with self._timer_guard:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        with self._timer_guard:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
