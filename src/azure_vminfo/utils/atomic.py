"""Atomic file writes for the token store and result cache."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, data: str, *, mode: int | None = None) -> None:
    """Write ``data`` to ``path`` so readers see either the old or the new file.

    The content goes to a temp file in the destination directory, is flushed
    and fsynced, and only then replaces ``path``. On failure the temp file is
    removed and the previous content of ``path`` is left untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fh = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        newline="\n",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(tmp_fh.name)
    try:
        with tmp_fh:
            tmp_fh.write(data)
            tmp_fh.flush()
            try:
                os.fsync(tmp_fh.fileno())
            except OSError:
                # Some filesystems do not support fsync
                pass
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
