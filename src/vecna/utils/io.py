"""JSON persistence helpers for vecna's state documents.

write_json() pretty-prints a document and swaps it into place atomically so a
crash never leaves a half-written state file behind. read_json() takes a
shared advisory lock while reading when the platform supports it.
"""
from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TextIO

logger = logging.getLogger(__name__)


@contextmanager
def shared_file_lock(file_handle: TextIO) -> Iterator[None]:
    """Hold a shared (read) lock on an open file, best-effort.

    Uses fcntl.flock on Unix. On Windows, or when locking fails, the body
    runs unlocked.
    """
    if sys.platform == "win32":
        yield
        return

    import fcntl

    try:
        fcntl.flock(file_handle, fcntl.LOCK_SH)
    except OSError:
        yield
        return

    try:
        yield
    finally:
        try:
            fcntl.flock(file_handle, fcntl.LOCK_UN)
        except OSError:
            pass


def atomic_write_text(path: str | Path, data: str, perms: int | None = None) -> None:
    """Write text to a sibling temp file, fsync it, then os.replace() it over path.

    The parent directory is created if needed. The temp file is removed if
    anything fails before the replace.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            prefix=f".{dest.name}.",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())

        os.replace(tmp_name, dest)
        tmp_name = None

        if perms is not None:
            try:
                os.chmod(dest, perms)
            except PermissionError:
                logger.warning(f"Could not set permissions {oct(perms)} on {dest}")
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def read_json(path: str | Path) -> Any:
    """Load a JSON document under a shared lock.

    Raises:
        OSError: If the file cannot be read.
        json.JSONDecodeError: If the content is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        with shared_file_lock(f):
            return json.load(f)


def write_json(path: str | Path, data: Any) -> None:
    """Atomically write a document as 2-space indented JSON."""
    atomic_write_text(path, json.dumps(data, indent=2, default=str) + "\n")
