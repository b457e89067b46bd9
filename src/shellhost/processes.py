from __future__ import annotations

import logging
import shutil
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

# Windows: keep probe subprocesses from flashing a console window
CREATE_NO_WINDOW = 0x08000000


def which(cmd: str) -> Optional[str]:
    """Absolute path of a command found on PATH, or None."""
    return shutil.which(cmd)


def kill_tree(pid: int) -> int:
    """
    Kill a process and all of its descendants, children first.

    Returns the number of processes that received the kill.
    """
    try:
        root = psutil.Process(pid)
        victims = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        return 0

    killed = 0
    for proc in victims:
        try:
            proc.kill()
            killed += 1
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.warning(f"[PROCESS] Cannot kill pid {proc.pid}: {e}")

    logger.debug(f"[PROCESS] Killed {killed} process(es) in tree of {pid}")
    return killed
