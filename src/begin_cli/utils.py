"""Filesystem helpers for owner-only, crash-safe writes."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

PRIVATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600


def ensure_private_dir(path: Path) -> Path:
    """Create *path* (and parents) and restrict it to the owner."""
    path.mkdir(parents=True, exist_ok=True, mode=PRIVATE_DIR_MODE)
    if os.name == "posix":
        os.chmod(path, PRIVATE_DIR_MODE)
    return path


def atomic_write_text(
    path: Path,
    text: str,
    mode: int = PRIVATE_FILE_MODE,
    *,
    exclusive: bool = False,
) -> None:
    """Write *text* to *path* all-or-nothing.

    The content goes to a temporary file in the same directory which is
    fsynced and then renamed over *path*, so readers only ever see the old
    file or the complete new one.

    With *exclusive* the finished file is hard-linked into place instead of
    renamed, which fails with :class:`FileExistsError` when *path* already
    exists; an existing file is never replaced.
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        if os.name == "posix":
            os.fchmod(fd, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        if exclusive:
            os.link(tmp_name, path)
            os.unlink(tmp_name)
        else:
            os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
