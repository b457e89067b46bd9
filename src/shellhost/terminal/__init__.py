"""
PTY-backed shell sessions.

Supports Windows (ConPTY via pywinpty) and Unix (pty module).
"""

from .dispatcher import CommandDispatcher, CommandResult
from .registry import SessionExit, SessionRegistry
from .session import Session, SessionInfo, SessionOptions, SessionState
from .shells import ShellExecutable, ShellKind

__all__ = [
    "CommandDispatcher",
    "CommandResult",
    "SessionExit",
    "SessionRegistry",
    "Session",
    "SessionInfo",
    "SessionOptions",
    "SessionState",
    "ShellExecutable",
    "ShellKind",
]
