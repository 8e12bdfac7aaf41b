"""
core/models.py -- Domain dataclasses and result enums.

Pattern: Data class (pure data container, near-zero logic). Stores and the
gate do the work; these types only carry shape between them and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Key ids look like KEY_20240101120000_abcd1234.
KEY_ID_PATTERN = r"^KEY_\d{14}_[0-9a-f]{8}$"

# Separates the secret from the expiry date inside an encrypted blob. The
# expiry is always the last field, so secrets may contain the separator.
PLAINTEXT_SEPARATOR = ":"

# Upper bound for a key's validity period; keeps today + days inside date range.
MAX_EXPIRY_DAYS = 3650


class ValidationResult(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    EXPIRED = "EXPIRED"


class KeyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class GateState(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"


class CheckResult(str, Enum):
    """Answer given to the DNS executor. Anything but VALID means locked."""

    VALID = "VALID"
    LOCKED = "LOCKED"


class UnlockOutcome(str, Enum):
    UNLOCKED = "UNLOCKED"
    ALREADY_UNLOCKED = "ALREADY_UNLOCKED"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"  # input ran out before the attempt budget was spent
    LOCKED_OUT = "LOCKED_OUT"
    REFUSED = "REFUSED"  # lockout marker present and enforcement enabled


@dataclass
class KeyRecord:
    """One stored line of the key store: `id:blob`.

    The secret and expiry live only inside the encrypted blob. The raw secret
    is returned once by KeyStore.generate() and never persisted in plaintext.
    """

    id: str
    blob: str

    def to_line(self) -> str:
        return f"{self.id}:{self.blob}"

    @classmethod
    def from_line(cls, line: str) -> Optional[KeyRecord]:
        """Parse a store line. Returns None for blank or malformed lines."""
        key_id, sep, blob = line.strip().partition(":")
        if not sep or not key_id or not blob:
            return None
        return cls(id=key_id, blob=blob)


@dataclass
class IssuedKey:
    """Returned by KeyStore.generate(). The only place the secret ever appears."""

    id: str
    secret: str
    expiry: date


@dataclass
class KeyListing:
    """Public view of a key for --list. Never carries the secret."""

    id: str
    expiry: date
    status: KeyStatus


@dataclass
class SessionRecord:
    """The active unlock, persisted as KEY=VALUE lines in the session file."""

    key_id: str
    unlocked_at: int  # epoch seconds
    user: str
    expires_at: int  # epoch seconds

    def to_text(self) -> str:
        return (
            f"KEY_ID={self.key_id}\n"
            f"UNLOCK_TIME={self.unlocked_at}\n"
            f"USER={self.user}\n"
            f"EXPIRES_AT={self.expires_at}\n"
        )

    @classmethod
    def from_text(cls, text: str, duration_seconds: int) -> Optional[SessionRecord]:
        """Parse a session file.

        Files written without EXPIRES_AT get a deadline of UNLOCK_TIME plus the
        configured duration. Returns None if KEY_ID or UNLOCK_TIME is missing
        or unparseable.
        """
        fields: dict[str, str] = {}
        for line in text.splitlines():
            name, sep, value = line.partition("=")
            if sep:
                fields[name.strip()] = value.strip()
        try:
            unlocked_at = int(fields["UNLOCK_TIME"])
            expires_at = int(fields.get("EXPIRES_AT") or unlocked_at + duration_seconds)
        except (KeyError, ValueError):
            return None
        key_id = fields.get("KEY_ID", "")
        if not key_id:
            return None
        return cls(
            key_id=key_id,
            unlocked_at=unlocked_at,
            user=fields.get("USER", ""),
            expires_at=expires_at,
        )


@dataclass
class GateStatus:
    state: GateState
    key_id: Optional[str] = None
    user: Optional[str] = None
    unlocked_at: Optional[datetime] = None
    elapsed: Optional[timedelta] = None
    remaining: Optional[timedelta] = None

    @property
    def unlocked(self) -> bool:
        return self.state is GateState.UNLOCKED


@dataclass
class UnlockResult:
    outcome: UnlockOutcome
    attempts: int = 0
    key_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (UnlockOutcome.UNLOCKED, UnlockOutcome.ALREADY_UNLOCKED)
