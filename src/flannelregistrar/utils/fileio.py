"""Crash-safe file writes."""

from __future__ import annotations

import os
import tempfile

from flannelregistrar.exceptions import StateStoreError


def atomic_write_text(path: str, text: str) -> None:
    """
    Write ``text`` to ``path`` through a temporary file and an atomic rename.

    Readers see either the previous content or the new content, never a
    partially written file.

    Raises:
        StateStoreError: If the directory or file cannot be written.
    """
    directory = os.path.dirname(path) or "."
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except OSError as e:
        raise StateStoreError(path, str(e)) from e
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
