"""
formatter.py — Renders gate results for the terminal.

Pure string builders: nothing here prints. main.py decides where text goes.
Secrets only ever pass through render_issued_key().
"""

import os
import re
import sys
from datetime import timedelta
from typing import Optional

from .models import GateStatus, IssuedKey, KeyListing, KeyStatus, UnlockOutcome, UnlockResult

W = 40  # rule width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    Can be overridden by calling disable_color() / enable_color().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def enable_color() -> None:
    global _color_enabled
    _color_enabled = True


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers — return empty string when color is off
# ---------------------------------------------------------------------------

_GREEN = "\033[0;32m"
_RED = "\033[0;31m"
_YELLOW = "\033[1;33m"
_BLUE = "\033[0;34m"
_RESET = "\033[0m"


def _paint(code: str, text: str) -> str:
    if not _color_active():
        return text
    return f"{code}{text}{_RESET}"


def green(text: str) -> str:
    return _paint(_GREEN, text)


def red(text: str) -> str:
    return _paint(_RED, text)


def yellow(text: str) -> str:
    return _paint(_YELLOW, text)


def heading(title: str) -> str:
    return f"{_paint(_BLUE, title)}\n{'=' * W}"


def printable(text: str) -> str:
    """Escape lone surrogates (undecodable argv bytes) so text can be printed."""
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def _hm(delta: timedelta) -> str:
    total = max(0, int(delta.total_seconds()))
    return f"{total // 3600}h {(total % 3600) // 60}m"


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def render_issued_key(issued: IssuedKey) -> str:
    return "\n".join(
        [
            green("New key generated:"),
            f"Key ID: {issued.id}",
            f"Key Secret: {issued.secret}",
            f"Expires: {issued.expiry.isoformat()}",
            "",
            yellow("Save this key securely - it won't be shown again!"),
        ]
    )


def render_listing(keys: list[KeyListing]) -> str:
    lines = [heading("Registered Keys:")]
    if not keys:
        lines.append("No keys found")
        return "\n".join(lines)
    for key in keys:
        status = red(key.status.value) if key.status is KeyStatus.EXPIRED else green(key.status.value)
        lines.extend([f"• {key.id}", f"  Expiry: {key.expiry.isoformat()}", f"  Status: {status}", ""])
    return "\n".join(lines)


def render_status(status: GateStatus) -> str:
    if not status.unlocked:
        return red("Status: LOCKED")
    lines = [
        green("Status: UNLOCKED"),
        f"Key ID: {status.key_id}",
        f"Unlocked for: {_hm(status.elapsed)}",
        f"Auto-lock in: {_hm(status.remaining)}",
    ]
    return "\n".join(lines)


_UNLOCK_MESSAGES = {
    UnlockOutcome.UNLOCKED: "System unlocked successfully!",
    UnlockOutcome.ALREADY_UNLOCKED: "System is already unlocked",
    UnlockOutcome.EXPIRED: "Key has expired",
    UnlockOutcome.INVALID: "Invalid key",
    UnlockOutcome.LOCKED_OUT: "Maximum attempts reached. System locked.",
    UnlockOutcome.REFUSED: "Unlock refused: too many failed attempts. Run --lock to clear.",
}


def render_unlock(result: UnlockResult) -> str:
    message = _UNLOCK_MESSAGES[result.outcome]
    return green(message) if result.success else red(message)
