"""
Typed errors raised by the session engine.

History persistence failures are deliberately absent: they are logged
by the history store and never reach callers.
"""
from __future__ import annotations


class ShellHostError(Exception):
    """Base error of the shellhost engine."""
    pass


class ExecutableNotFound(ShellHostError):
    """No usable shell binary was located; no session can be created."""

    def __init__(self, tried: list[str] | None = None):
        self.tried = list(tried or [])
        super().__init__(
            "Shell not found. Install PowerShell Core (pwsh) or make a POSIX shell available. "
            f"Tried: {', '.join(self.tried) or '-'}"
        )


class SpawnFailure(ShellHostError):
    """The pseudo-terminal process could not be started."""
    pass


class SessionNotFound(ShellHostError):
    """Unknown session id, or the session exited."""

    def __init__(self, session_id: str, reason: str = "not found"):
        self.session_id = session_id
        super().__init__(f"Session {session_id} {reason}")


class CommandTimeout(ShellHostError, TimeoutError):
    """The command did not complete in time. It may still be running."""

    def __init__(self, session_id: str, timeout_ms: int):
        self.session_id = session_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Command timeout after {timeout_ms}ms in session {session_id}")
