"""
audit/log.py -- Append-only, day-partitioned security audit log.

One file per calendar day, one line per event:

    [2024-01-01 12:00:00] [KEY_GENERATE] [alice@host] Generated new key: KEY_...

Writes are best-effort: an I/O failure is reported on the "keygate.audit"
diagnostic logger and swallowed, so a full disk never turns a successful
lock or revoke into a failure. The write itself is synchronous -- the entry is
on disk (or known to be lost) before the caller returns.

Entries are never rewritten or deleted by KeyGate.

Usage:
    audit = AuditLog(Path("logs"))
    audit.append("SYSTEM_LOCK", "Manual lock - Key: KEY_...")
    entries = audit.read(date.today())
"""

from __future__ import annotations

import getpass
import logging
import re
import socket
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from core.clock import Clock, system_clock
from core.files import append_private

logger = logging.getLogger("keygate.audit")

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_LINE_RE = re.compile(r"^\[(?P<ts>[^\]]+)\] \[(?P<action>[^\]]+)\] \[(?P<who>[^\]]*)\] (?P<message>.*)$")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")

# Action tags
SYSTEM_INIT = "SYSTEM_INIT"
SYSTEM_UNLOCK = "SYSTEM_UNLOCK"
SYSTEM_LOCK = "SYSTEM_LOCK"
SYSTEM_LOCKOUT = "SYSTEM_LOCKOUT"
KEY_GENERATE = "KEY_GENERATE"
KEY_VALIDATE = "KEY_VALIDATE"
KEY_REVOKE = "KEY_REVOKE"
KEY_USAGE = "KEY_USAGE"


def current_user() -> str:
    """Resolve the operator identity. Falls back to 'unknown' in odd environments."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@dataclass
class AuditEntry:
    timestamp: datetime
    action: str
    user: str
    host: str
    message: str


class AuditLog:
    def __init__(
        self,
        log_dir: Path,
        clock: Clock = system_clock,
        user: Optional[str] = None,
        host: Optional[str] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self._clock = clock
        self.user = user or current_user()
        self.host = host or socket.gethostname()

    def path_for(self, day: date) -> Path:
        return self.log_dir / f"access_{day:%Y%m%d}.log"

    def append(self, action: str, detail: str) -> bool:
        """Append one entry to today's file. Returns False if the write failed."""
        now = self._clock()
        # Details can echo operator input (key ids); keep one event per line.
        detail = _CONTROL_RE.sub(" ", detail)
        line = f"[{now.strftime(_TIMESTAMP_FORMAT)}] [{action}] [{self.user}@{self.host}] {detail}"
        # Undecodable argv or terminal bytes arrive as lone surrogates.
        line = line.encode("utf-8", "backslashreplace").decode("utf-8")
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            append_private(self.path_for(now.date()), line)
        except OSError as err:
            logger.warning("Audit write failed for %s: %s", action, err)
            return False
        return True

    def read(self, day: Optional[date] = None) -> list[AuditEntry]:
        """Return the parsed entries of one day's file (today by default).

        Unparseable lines are skipped. A missing file yields an empty list.
        """
        path = self.path_for(day or self._clock().date())
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        entries: list[AuditEntry] = []
        for line in lines:
            match = _LINE_RE.match(line)
            if not match:
                continue
            user, _, host = match["who"].partition("@")
            try:
                ts = datetime.strptime(match["ts"], _TIMESTAMP_FORMAT)
            except ValueError:
                continue
            entries.append(AuditEntry(ts, match["action"], user, host, match["message"]))
        return entries
