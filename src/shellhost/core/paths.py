from __future__ import annotations

import os
import tempfile
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def atomic_write_text(path: Path, text: str) -> None:
    ensure_dir(path.parent)
    tmp_dir = str(path.parent)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=tmp_dir, delete=False) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
        tmp_name = f.name
    try:
        os.replace(tmp_name, path)
    except OSError:
        os.unlink(tmp_name)
        raise
