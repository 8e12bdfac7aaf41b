"""
keystore/store.py -- File-backed repository for issued digital keys.

Pattern: Repository. KeyStore owns two files under key_dir and no other
component touches them:

  master.key     one line, base64 random bytes, mode 0600. Created once by
                 initialize(), read-only afterwards, never rotated here.
  user_keys.enc  one line per key, `id:blob`, mode 0600. blob is
                 CryptoBox(secret:expiry) under the master key.

Mutations (initialize, generate, revoke) hold an exclusive FileLock on the
store. generate appends; revoke rewrites the whole file through a temp file
and os.replace(), so readers never observe a half-written store. validate
and list_keys take no lock.

Security:
  The raw secret is returned once from generate() and never again.
  Secrets are compared with hmac.compare_digest (constant time).
  A blob that fails to decrypt is reported to callers exactly like a wrong
  secret (ValidationResult.INVALID). Only the owner-only audit log records
  which of the two happened.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

from audit.log import KEY_GENERATE, KEY_REVOKE, KEY_VALIDATE, SYSTEM_INIT, AuditLog
from core.clock import Clock, system_clock
from core.crypto import CryptoBox
from core.errors import DecryptionError, StoreError
from core.files import FileLock, append_private, backup_private, replace_private, touch_private, write_private
from core.models import (
    MAX_EXPIRY_DAYS,
    PLAINTEXT_SEPARATOR,
    IssuedKey,
    KeyListing,
    KeyRecord,
    KeyStatus,
    ValidationResult,
)
from keystore.tokens import generate_key_id, generate_master_key, generate_secret

logger = logging.getLogger("keygate.keystore")

MASTER_KEY_FILE = "master.key"
STORE_FILE = "user_keys.enc"

RevokeListener = Callable[[str], None]


class KeyStore:
    """Repository for encrypted key records.

    Usage:
        store = KeyStore(Path("keys"), AuditLog(Path("logs")))
        store.initialize()
        issued = store.generate(7)
        store.validate(issued.id, issued.secret)   # ValidationResult.VALID
        store.revoke(issued.id)
    """

    def __init__(
        self,
        key_dir: Path,
        audit: AuditLog,
        crypto: Optional[CryptoBox] = None,
        clock: Clock = system_clock,
        master_key_bytes: int = 32,
    ) -> None:
        self.key_dir = Path(key_dir)
        self.audit = audit
        self.crypto = crypto or CryptoBox()
        self._clock = clock
        self._master_key_bytes = master_key_bytes
        self._revoke_listeners: list[RevokeListener] = []

    @property
    def master_key_path(self) -> Path:
        return self.key_dir / MASTER_KEY_FILE

    @property
    def store_path(self) -> Path:
        return self.key_dir / STORE_FILE

    def add_revoke_listener(self, listener: RevokeListener) -> None:
        """Register a callback invoked with the key id after each successful revoke."""
        self._revoke_listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Create the master key and empty store if absent. Idempotent.

        Returns True only on the call that created the master key; that call
        is also the only one that logs SYSTEM_INIT.
        """
        created = False
        try:
            self.key_dir.mkdir(parents=True, exist_ok=True)
            with FileLock(self.store_path):
                if not self.master_key_path.exists():
                    write_private(self.master_key_path, generate_master_key(self._master_key_bytes) + "\n")
                    created = True
                if not self.store_path.exists():
                    touch_private(self.store_path)
        except OSError as err:
            raise StoreError(f"Cannot initialize key store in {self.key_dir}: {err}") from err
        if created:
            logger.info("Initialized key system in %s", self.key_dir)
            self.audit.append(SYSTEM_INIT, "New key system created")
        return created

    # ------------------------------------------------------------------
    # Key operations
    # ------------------------------------------------------------------

    def generate(self, expiry_days: int) -> IssuedKey:
        """Issue a new key valid through today + expiry_days (inclusive).

        The returned IssuedKey is the only place the secret is ever exposed.

        Raises:
            ValueError: expiry_days is outside 1..MAX_EXPIRY_DAYS.
        """
        if not 1 <= expiry_days <= MAX_EXPIRY_DAYS:
            raise ValueError(f"expiry_days must be between 1 and {MAX_EXPIRY_DAYS}, got {expiry_days}")
        master_key = self._read_master_key()
        with FileLock(self.store_path):
            existing = {record.id for record in self._read_records()}
            now = self._clock()
            key_id = generate_key_id(now)
            while key_id in existing:
                key_id = generate_key_id(now)
            secret = generate_secret()
            expiry = now.date() + timedelta(days=expiry_days)
            blob = self.crypto.encrypt(f"{secret}{PLAINTEXT_SEPARATOR}{expiry.isoformat()}", master_key)
            try:
                append_private(self.store_path, KeyRecord(id=key_id, blob=blob).to_line())
            except OSError as err:
                raise StoreError(f"Cannot write key store {self.store_path}: {err}") from err
        self.audit.append(KEY_GENERATE, f"Generated new key: {key_id}")
        return IssuedKey(id=key_id, secret=secret, expiry=expiry)

    def validate(self, key_id: str, secret: str) -> ValidationResult:
        """Check a presented (id, secret) pair.

        Order: lookup, decrypt, secret comparison, expiry. An expired key is
        only reported as EXPIRED to a caller holding the right secret.
        """
        record = self._find(key_id)
        if record is None:
            self.audit.append(KEY_VALIDATE, f"FAILED - Key ID not found: {key_id}")
            return ValidationResult.INVALID

        try:
            stored_secret, expiry = self._open(record, self._read_master_key())
        except DecryptionError:
            self.audit.append(KEY_VALIDATE, f"FAILED - Decryption error for: {key_id}")
            return ValidationResult.INVALID

        presented = secret.encode("utf-8", "surrogatepass")
        if not hmac.compare_digest(stored_secret.encode("utf-8", "surrogatepass"), presented):
            self.audit.append(KEY_VALIDATE, f"FAILED - Invalid secret for: {key_id}")
            return ValidationResult.INVALID

        if self._today() > expiry:
            self.audit.append(KEY_VALIDATE, f"FAILED - Key expired: {key_id}")
            return ValidationResult.EXPIRED

        self.audit.append(KEY_VALIDATE, f"SUCCESS - Valid key: {key_id}")
        return ValidationResult.VALID

    def list_keys(self) -> list[KeyListing]:
        """Return id, expiry, and status of every readable key, in store order.

        Records that fail to decrypt are treated as corrupt and skipped.
        """
        records = self._read_records()
        if not records:
            return []
        master_key = self._read_master_key()
        today = self._today()
        listings: list[KeyListing] = []
        for record in records:
            try:
                _, expiry = self._open(record, master_key)
            except DecryptionError:
                logger.debug("Skipping unreadable key record %s", record.id)
                continue
            status = KeyStatus.EXPIRED if today > expiry else KeyStatus.ACTIVE
            listings.append(KeyListing(id=record.id, expiry=expiry, status=status))
        return listings

    def revoke(self, key_id: str) -> bool:
        """Permanently remove key_id from the store.

        Returns False, leaving the store untouched, if key_id is not present.
        On success the previous store is kept as user_keys.enc.bak, then the
        revoke listeners run (outside the store lock).
        """
        with FileLock(self.store_path):
            # Unparseable lines are carried over as they are.
            lines = [line for line in self._read_lines() if line.strip()]
            remaining = [line for line in lines if not _line_has_id(line, key_id)]
            if len(remaining) == len(lines):
                logger.info("Revoke requested for unknown key %s", key_id)
                return False
            content = "".join(line + "\n" for line in remaining)
            try:
                backup_private(self.store_path)
                replace_private(self.store_path, content)
            except OSError as err:
                raise StoreError(f"Cannot rewrite key store {self.store_path}: {err}") from err

        self.audit.append(KEY_REVOKE, f"Key revoked: {key_id}")
        for listener in self._revoke_listeners:
            listener(key_id)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _today(self) -> date:
        return self._clock().date()

    def _read_master_key(self) -> str:
        try:
            master_key = self.master_key_path.read_text(encoding="utf-8").strip()
        except OSError as err:
            raise StoreError(f"Cannot read master key {self.master_key_path}: {err}") from err
        if not master_key:
            raise StoreError(f"Master key {self.master_key_path} is empty")
        return master_key

    def _read_lines(self) -> list[str]:
        try:
            return self.store_path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as err:
            raise StoreError(f"Cannot read key store {self.store_path}: {err}") from err

    def _read_records(self) -> list[KeyRecord]:
        records = []
        for line in self._read_lines():
            record = KeyRecord.from_line(line)
            if record is not None:
                records.append(record)
        return records

    def _find(self, key_id: str) -> Optional[KeyRecord]:
        for record in self._read_records():
            if record.id == key_id:
                return record
        return None

    def _open(self, record: KeyRecord, master_key: str) -> tuple[str, date]:
        """Decrypt a record into (secret, expiry). Corrupt content raises DecryptionError."""
        plaintext = self.crypto.decrypt(record.blob, master_key)
        try:
            secret, sep, expiry_text = plaintext.decode("utf-8").rpartition(PLAINTEXT_SEPARATOR)
            if not sep:
                raise ValueError("missing separator")
            return secret, date.fromisoformat(expiry_text)
        except ValueError:
            raise DecryptionError() from None


def _line_has_id(line: str, key_id: str) -> bool:
    record = KeyRecord.from_line(line)
    return record is not None and record.id == key_id
