"""
Shell dialects.

Each supported shell family knows how to be spawned as an interactive
session, how to be probed for availability, and how to print a sentinel
token whose echoed source text never contains the token itself.
"""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import PureWindowsPath
from typing import Optional

SENTINEL_PREFIX = "__SHX_"

_VERSION_RE = re.compile(r"\d+\.\d+\.\d+")


class ShellKind(str, Enum):
    """Семейства поддерживаемых оболочек."""
    POWERSHELL = "powershell"
    POSIX = "posix"


def shell_name(path: str) -> str:
    # PureWindowsPath splits on both separators
    name = PureWindowsPath(path).name.lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


def kind_for_path(path: str) -> ShellKind:
    if shell_name(path) in ("pwsh", "powershell"):
        return ShellKind.POWERSHELL
    return ShellKind.POSIX


@dataclass(frozen=True, slots=True)
class Sentinel:
    """Completion marker for one dispatch."""
    key: str

    @classmethod
    def new(cls) -> "Sentinel":
        return cls(key=secrets.token_hex(6))

    @property
    def token(self) -> str:
        return f"{SENTINEL_PREFIX}{self.key}__"


@dataclass(frozen=True, slots=True)
class ShellExecutable:
    path: str
    kind: ShellKind

    @property
    def name(self) -> str:
        return shell_name(self.path)

    def spawn_args(self, execution_policy: Optional[str] = None) -> list[str]:
        if self.kind is ShellKind.POWERSHELL:
            args = ["-NoLogo", "-NoExit"]
            if execution_policy:
                args += ["-ExecutionPolicy", execution_policy]
            return args
        if self.name == "bash":
            return ["--noprofile", "--norc", "-i"]
        return ["-i"]

    def probe_args(self) -> list[str]:
        if self.kind is ShellKind.POWERSHELL:
            return ["-NoProfile", "-Command", "exit 0"]
        return ["-c", "exit 0"]

    def sentinel_statement(self, sentinel: Sentinel) -> str:
        # Token split in two literals: the terminal echo of this line never contains it
        if self.kind is ShellKind.POWERSHELL:
            return f"Write-Output ('{SENTINEL_PREFIX}' + '{sentinel.key}__')"
        return f"printf '%s%s\\n' '{SENTINEL_PREFIX}' '{sentinel.key}__'"

    def version_query(self) -> str:
        if self.kind is ShellKind.POWERSHELL:
            return "$PSVersionTable.PSVersion.ToString()"
        return 'echo "$BASH_VERSION"'

    @property
    def exit_command(self) -> str:
        return "exit"


def parse_version(output: str) -> Optional[str]:
    match = _VERSION_RE.search(output)
    return match.group(0) if match else None
