"""
core/files.py -- Owner-only file I/O and the single-writer lock.

Every file KeyGate creates (master key, key store, session, lockout marker)
is mode 0600. Files are created with that mode via os.open() so there is no
window where a freshly created file is group- or world-readable.

FileLock is an advisory fcntl.flock() on a sibling ".lock" file. It makes
KeyStore mutations and Session transitions exclusive across independent CLI
invocations. flock() locks belong to the open file description, so a lock
must never be re-acquired while already held in the same process.
"""

from __future__ import annotations

import fcntl
import os
import shutil
import tempfile
from pathlib import Path

PRIVATE_MODE = 0o600


def write_private(path: Path, content: str) -> None:
    """Create or truncate path with mode 0600 and write content."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(content)
    # O_CREAT ignores the mode for pre-existing files.
    os.chmod(path, PRIVATE_MODE)


def append_private(path: Path, line: str) -> None:
    """Append one line to path, creating it with mode 0600 if absent."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, PRIVATE_MODE)
    with os.fdopen(fd, "a", encoding="utf-8") as fh:
        fh.write(line if line.endswith("\n") else line + "\n")


def touch_private(path: Path) -> None:
    """Create path empty with mode 0600 if it does not exist yet."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT, PRIVATE_MODE)
    os.close(fd)
    os.chmod(path, PRIVATE_MODE)


def replace_private(path: Path, content: str) -> None:
    """Atomically replace path with content.

    Writes to a temp file in the same directory, fsyncs it, then os.replace()s
    it over the target. Readers see either the old file or the new one, never
    a partial write.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, PRIVATE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def backup_private(path: Path) -> Path:
    """Copy path to path + '.bak' with mode 0600 and return the backup path."""
    backup = path.with_name(path.name + ".bak")
    shutil.copyfile(path, backup)
    os.chmod(backup, PRIVATE_MODE)
    return backup


class FileLock:
    """Context manager holding an exclusive flock() on `<path>.lock`.

    Usage:
        with FileLock(store_path):
            ...  # read-modify-write store_path
    """

    def __init__(self, path: Path) -> None:
        self.lock_path = path.with_name(path.name + ".lock")
        self._fh = None

    def __enter__(self) -> FileLock:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, PRIVATE_MODE)
        self._fh = os.fdopen(fd, "r+")
        fcntl.flock(self._fh, fcntl.LOCK_EX)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._fh is not None:
            try:
                fcntl.flock(self._fh, fcntl.LOCK_UN)
            finally:
                self._fh.close()
                self._fh = None
        return False
