"""Atomic file writes for persisted state (lock records, container registries,
generated build contexts).

A reader either sees the previous file or the complete new one; an interrupted
write leaves at most a stray temporary file next to the target.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """
    Atomically replace ``path`` with ``data``.

    Parameters
    ----------
    path : Path
        Destination file. Parent directories are created if missing.
    data : bytes
        Complete file contents.
    mode : Optional[int], optional
        Permission bits applied to the temporary file before it is renamed into
        place, so the target never exists with the wrong mode.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Atomically replace ``path`` with UTF-8 encoded ``text``."""
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)
