#!/usr/bin/env python3
"""
KeyGate — Digital key access control for the DNS lookup tool.
The DNS tool only runs while the gate is unlocked with a valid key.

Usage:
  python main.py --generate
  python main.py --generate --days 30
  python main.py --unlock
  python main.py --status
  python main.py --lock
  python main.py --list
  python main.py --revoke KEY_20240101120000_abcd1234
  python main.py --check
  python main.py --log-usage "lookup example.com"
  python main.py --audit 2024-01-01

Environment variables (all optional, see core/config.py):
  KEYGATE_KEY_DIR        Directory holding master.key and user_keys.enc.
  KEYGATE_LOG_DIR        Directory holding the daily access_YYYYMMDD.log files.
  KEYGATE_SESSION_PATH   Session file (default: <tmp>/dns_key.active).
  KEYGATE_LOCKOUT_PATH   Lockout marker (default: <tmp>/dns_tool.lock).
"""

import argparse
import getpass
import logging
import sys
from collections.abc import Iterator
from datetime import date
from typing import Optional

from audit.log import AuditLog
from core.config import Settings, get_settings
from core.errors import StoreError
from core.formatter import (
    disable_color,
    green,
    heading,
    printable,
    red,
    render_issued_key,
    render_listing,
    render_status,
    render_unlock,
    yellow,
)
from core.models import MAX_EXPIRY_DAYS
from gate.session import SessionGate
from keystore.store import KeyStore

logger = logging.getLogger("keygate.cli")

EXIT_OK = 0
EXIT_FAIL = 1


def build_components(settings: Settings) -> tuple[AuditLog, KeyStore, SessionGate]:
    """Wire the audit log, key store, and gate from one Settings instance."""
    audit = AuditLog(settings.log_dir)
    store = KeyStore(settings.key_dir, audit, master_key_bytes=settings.master_key_bytes)
    gate = SessionGate(
        store,
        audit,
        session_path=settings.session_path,
        lockout_path=settings.lockout_path,
        duration_seconds=settings.session_duration_seconds,
        max_attempts=settings.max_unlock_attempts,
        enforce_lockout=settings.enforce_lockout,
    )
    return audit, store, gate


def _prompt_attempts(max_attempts: int) -> Iterator[tuple[str, str]]:
    """Prompt for (key id, secret) pairs. The gate pulls one pair per attempt."""
    for attempt in range(max_attempts):
        if attempt:
            print(red(f"Invalid key. Attempts remaining: {max_attempts - attempt}"))
        print()
        key_id = input("Enter Key ID: ").strip()
        secret = getpass.getpass("Enter Key Secret: ")
        yield key_id, secret


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keygate",
        description="Digital key manager for the DNS lookup tool.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  keygate --generate
  keygate --unlock
  keygate --status
  keygate --revoke KEY_20240101120000_abcd1234
        """,
    )
    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--unlock", action="store_true", help="Unlock system with digital key")
    commands.add_argument("--lock", action="store_true", help="Lock the system")
    commands.add_argument("--status", action="store_true", help="Check system status")
    commands.add_argument("--generate", action="store_true", help="Generate new digital key")
    commands.add_argument("--list", action="store_true", help="List all keys")
    commands.add_argument(
        "--revoke",
        nargs="?",
        const="",
        default=None,
        metavar="KEY_ID",
        help="Revoke a specific key",
    )
    commands.add_argument("--check", action="store_true", help="Print VALID or LOCKED (for scripts)")
    commands.add_argument("--log-usage", nargs="?", const="", default=None, metavar="ACTION", help="Log key usage")
    commands.add_argument(
        "--audit",
        nargs="?",
        const="",
        default=None,
        metavar="YYYY-MM-DD",
        help="Show the audit log for a day (default: today)",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        metavar="N",
        help=f"Validity of a generated key in days, 1-{MAX_EXPIRY_DAYS} (default: KEYGATE_KEY_EXPIRY_DAYS or 7)",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes")
    parser.add_argument("--verbose", action="store_true", help="Show diagnostic logging")
    return parser


def _run(args: argparse.Namespace, parser: argparse.ArgumentParser, settings: Settings) -> int:
    audit, store, gate = build_components(settings)
    try:
        store.initialize()

        if args.generate:
            days = args.days if args.days is not None else settings.key_expiry_days
            if not 1 <= days <= MAX_EXPIRY_DAYS:
                print(red(f"Error: --days must be between 1 and {MAX_EXPIRY_DAYS}"))
                return EXIT_FAIL
            issued = store.generate(days)
            print(render_issued_key(issued))
            # Last line is the bare id, for scripts.
            print(issued.id)
            return EXIT_OK

        if args.unlock:
            print(heading("Digital Key System Unlock"))
            try:
                result = gate.unlock(_prompt_attempts(settings.max_unlock_attempts))
            except (EOFError, KeyboardInterrupt):
                print(red("\nUnlock aborted"))
                return EXIT_FAIL
            print(render_unlock(result))
            return EXIT_OK if result.success else EXIT_FAIL

        if args.lock:
            print(yellow("Locking system..."))
            gate.lock()
            print(green("System locked"))
            return EXIT_OK

        if args.status:
            status = gate.status()
            print(render_status(status))
            return EXIT_OK if status.unlocked else EXIT_FAIL

        if args.list:
            print(render_listing(store.list_keys()))
            return EXIT_OK

        if args.revoke is not None:
            if not args.revoke:
                print(red("Error: Key ID required"))
                print("Usage: keygate --revoke <key_id>")
                return EXIT_FAIL
            if store.revoke(args.revoke):
                print(green(f"Key revoked: {printable(args.revoke)}"))
                return EXIT_OK
            print(red(f"Key not found: {printable(args.revoke)}"))
            return EXIT_FAIL

        if args.check:
            # Plain text, no color: the DNS tool compares stdout to "VALID".
            print(gate.check().value)
            return EXIT_OK

        if args.log_usage is not None:
            gate.log_usage(args.log_usage)
            return EXIT_OK

        if args.audit is not None:
            try:
                day = date.fromisoformat(args.audit) if args.audit else None
            except ValueError:
                print(red(f"Error: '{printable(args.audit)}' is not a YYYY-MM-DD date"))
                return EXIT_FAIL
            for entry in audit.read(day):
                print(f"[{entry.timestamp:%Y-%m-%d %H:%M:%S}] [{entry.action}] [{entry.user}@{entry.host}] {entry.message}")
            return EXIT_OK

        parser.print_help()
        return EXIT_OK
    finally:
        gate.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.no_color:
        disable_color()

    try:
        settings = get_settings()
    except ValueError as err:
        print(red(f"Configuration error: {err}"), file=sys.stderr)
        return EXIT_FAIL

    try:
        return _run(args, parser, settings)
    except StoreError as err:
        print(red(f"Error: {err} (exit {EXIT_FAIL})"), file=sys.stderr)
        return EXIT_FAIL


if __name__ == "__main__":
    sys.exit(main())
