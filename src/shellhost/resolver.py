"""
Shell executable resolver.

Tries PowerShell Core first (cross-platform), then the platform-native
shell. The first usable candidate is cached for the process lifetime.
"""
from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .errors import ExecutableNotFound
from .processes import CREATE_NO_WINDOW, which
from .terminal.shells import ShellExecutable, ShellKind, kind_for_path

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SEC = 2.0

PWSH_PATHS = [
    "pwsh",
    "/usr/local/bin/pwsh",
    "/usr/bin/pwsh",
    "C:\\Program Files\\PowerShell\\7\\pwsh.exe",
    "C:\\Program Files\\PowerShell\\6\\pwsh.exe",
]

WINDOWS_POWERSHELL_PATHS = [
    "powershell.exe",
    "C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe",
]

POSIX_SHELL_PATHS = [
    "/bin/bash",
    "/bin/sh",
]

_cache: dict[tuple[ShellExecutable, ...], ShellExecutable] = {}


def default_candidates(platform: str = sys.platform) -> list[ShellExecutable]:
    """Candidates in priority order for the given platform."""
    candidates = [ShellExecutable(p, ShellKind.POWERSHELL) for p in PWSH_PATHS]
    if platform == "win32":
        candidates += [ShellExecutable(p, ShellKind.POWERSHELL) for p in WINDOWS_POWERSHELL_PATHS]
    else:
        candidates += [ShellExecutable(p, ShellKind.POSIX) for p in POSIX_SHELL_PATHS]
    return candidates


def candidates_from_paths(paths: Iterable[str]) -> list[ShellExecutable]:
    return [ShellExecutable(p, kind_for_path(p)) for p in paths]


def check_executable(candidate: ShellExecutable, timeout: float = PROBE_TIMEOUT_SEC) -> bool:
    """Check if executable exists on disk or can be launched."""
    path = Path(candidate.path)
    if path.is_file() and os.access(path, os.X_OK):
        return True

    try:
        subprocess.run(
            [candidate.path, *candidate.probe_args()],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
            creationflags=CREATE_NO_WINDOW if sys.platform == "win32" else 0,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True


def resolve_shell(
    candidates: Optional[Sequence[ShellExecutable]] = None,
    *,
    timeout: float = PROBE_TIMEOUT_SEC,
    log: Optional[logging.Logger] = None,
) -> ShellExecutable:
    """
    Resolve the shell sessions are spawned with.

    Raises:
        ExecutableNotFound: none of the candidates is usable
    """
    log = log or logger
    ordered = tuple(candidates if candidates is not None else default_candidates())
    cached = _cache.get(ordered)
    if cached is not None:
        return cached

    for candidate in ordered:
        if not check_executable(candidate, timeout=timeout):
            continue
        # Bare names are pinned to their PATH location
        resolved = ShellExecutable(which(candidate.path) or candidate.path, candidate.kind)
        log.info(f"[RESOLVER] Using {candidate.kind.value} shell: {resolved.path}")
        _cache[ordered] = resolved
        return resolved

    raise ExecutableNotFound([c.path for c in ordered])


def reset_cache() -> None:
    _cache.clear()
