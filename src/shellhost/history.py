"""
Command history with persistence.

One command per line, capped, rewritten in full after every change.
Persistence failures are logged and never propagated: history must not
break command execution.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

from .core.paths import atomic_write_text

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000


def _normalize(command: str) -> str:
    # The file is newline-delimited, multi-line commands are stored flattened
    return " ".join(command.splitlines())


class HistoryStore:
    def __init__(
        self,
        path: Union[str, Path],
        limit: int = HISTORY_LIMIT,
        log: Optional[logging.Logger] = None,
    ):
        self.path = Path(path).expanduser()
        self.limit = limit
        self._log = log or logger
        self._lock = threading.Lock()
        self._entries: List[str] = []
        self.load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def entries(self) -> List[str]:
        """Oldest first."""
        with self._lock:
            return list(self._entries)

    def load(self) -> List[str]:
        """Load command history from disk."""
        entries: List[str] = []
        try:
            if self.path.exists():
                content = self.path.read_text(encoding="utf-8")
                entries = [line for line in content.split("\n") if line.strip()]
        except (OSError, UnicodeDecodeError) as e:
            self._log.error(f"[HISTORY] Failed to load history from {self.path}: {e}")

        with self._lock:
            self._entries = entries[-self.limit:]
            return list(self._entries)

    def append(self, command: str) -> bool:
        """
        Add command to history.

        Returns False when the command repeats the previous entry.
        """
        command = _normalize(command)
        with self._lock:
            if self._entries and self._entries[-1] == command:
                return False

            self._entries.append(command)
            if len(self._entries) > self.limit:
                self._entries = self._entries[-self.limit:]

            self._save_locked()
        return True

    def list(self, limit: int = 100) -> List[str]:
        """Most recent first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(reversed(self._entries[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._entries = []
            self._save_locked()

    def save(self) -> None:
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        try:
            atomic_write_text(self.path, "\n".join(self._entries))
        except OSError as e:
            self._log.error(f"[HISTORY] Failed to save history to {self.path}: {e}")
