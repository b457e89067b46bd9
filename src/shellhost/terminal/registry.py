"""
Session registry.

The only owner of live sessions. Ids are `ps-<n>` and are never reused,
even after the session is gone.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..errors import SpawnFailure
from .pty_backend import PTYBackend, create_pty_backend
from .session import Session, SessionInfo, SessionOptions
from .shells import ShellExecutable, ShellKind

logger = logging.getLogger(__name__)

TERMINAL_ENV = {
    "TERM": "xterm-256color",
    "COLORTERM": "truecolor",
}


@dataclass(frozen=True, slots=True)
class SessionExit:
    """Exit notification of one session."""
    session_id: str
    exit_code: int


ExitListener = Callable[[SessionExit], None]


class SessionRegistry:
    def __init__(
        self,
        shell: ShellExecutable,
        *,
        backend_factory: Callable[[], PTYBackend] = create_pty_backend,
        scrollback_chars: int = 1_000_000,
        id_prefix: str = "ps",
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.shell = shell
        self._backend_factory = backend_factory
        self._scrollback_chars = scrollback_chars
        self._id_prefix = id_prefix
        self._log = log or logger

        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._counter = 0
        self._exit_listeners: List[ExitListener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _next_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"{self._id_prefix}-{self._counter}"

    def _build_command(self, options: SessionOptions) -> list[str]:
        if self.shell.kind is ShellKind.POWERSHELL:
            return [self.shell.path, *self.shell.spawn_args(options.execution_policy)]
        if options.execution_policy:
            self._log.debug(f"[TERMINAL] execution policy ignored for {self.shell.name}")
        return [self.shell.path, *self.shell.spawn_args()]

    async def create(self, options: Optional[SessionOptions] = None) -> Session:
        """
        Spawn a shell in a new PTY and register it.

        Raises:
            SpawnFailure: the working directory is missing or the PTY
                facility refused to start the process
        """
        options = options or SessionOptions()
        session_id = self._next_id()
        cwd = options.cwd or str(Path.home())

        self._log.info(f"[TERMINAL] Creating session {session_id}...")

        if not Path(cwd).is_dir():
            raise SpawnFailure(f"Session creation failed: working directory does not exist: {cwd}")

        env = {**os.environ, **TERMINAL_ENV, **options.env}
        cmd = self._build_command(options)

        pty = self._backend_factory()
        try:
            pty.spawn(cmd, cwd, env=env, size=(options.rows, options.cols))
        except (OSError, ImportError) as e:
            self._log.error(f"[TERMINAL] Failed to create session {session_id}: {e}")
            pty.close()
            raise SpawnFailure(f"Session creation failed: {e}") from e

        session = Session(
            session_id,
            pty,
            cwd=cwd,
            cols=options.cols,
            rows=options.rows,
            scrollback_chars=self._scrollback_chars,
            log=self._log,
        )
        with self._lock:
            self._sessions[session_id] = session
        session.start(self._on_session_exit)

        self._log.info(f"[TERMINAL] Session {session_id} created (pid={session.pid})")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def list(self) -> List[SessionInfo]:
        return [s.info() for s in self.sessions()]

    def remove(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def add_exit_listener(self, listener: ExitListener) -> Callable[[], None]:
        self._exit_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._exit_listeners:
                self._exit_listeners.remove(listener)

        return _unsubscribe

    def _on_session_exit(self, session: Session, code: int) -> None:
        self._log.info(f"[TERMINAL] Session {session.id} exited with code {code}")
        self.remove(session.id)

        event = SessionExit(session_id=session.id, exit_code=code)
        for listener in list(self._exit_listeners):
            try:
                listener(event)
            except Exception:
                self._log.exception(f"[TERMINAL] exit listener failed for {session.id}")
