"""
Shell session engine.

Использование:
    async with ShellEngine() as engine:
        created = await engine.create_session(cwd="/tmp")
        result = await engine.execute_command(created.session_id, "echo hi")
        print(result.output, engine.get_metrics())
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from .config import EngineConfig
from .errors import SessionNotFound, ShellHostError
from .history import HistoryStore
from .monitoring.metrics import MetricsCollector, MetricsSnapshot
from .resolver import candidates_from_paths, resolve_shell
from .terminal.dispatcher import CommandDispatcher, CommandResult
from .terminal.pty_backend import PTYBackend, create_pty_backend
from .terminal.registry import ExitListener, SessionRegistry
from .terminal.session import OutputListener, Session, SessionInfo, SessionOptions
from .terminal.shells import ShellExecutable, parse_version

logger = logging.getLogger(__name__)

VERSION_PROBE_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class CreatedSession:
    session_id: str
    pid: Optional[int]


class ShellEngine:
    """
    Facade over resolver, registry, dispatcher, history and metrics.

    The shell is resolved once, when the engine is built.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        shell: Optional[ShellExecutable] = None,
        backend_factory: Callable[[], PTYBackend] = create_pty_backend,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._log = log or logger

        if shell is None:
            candidates = None
            if self.config.shell_candidates:
                candidates = candidates_from_paths(self.config.shell_candidates)
            shell = resolve_shell(candidates, timeout=self.config.probe_timeout_sec, log=self._log)
        self.shell = shell
        self.shell_version: Optional[str] = None

        self.history = HistoryStore(
            self.config.history_path, limit=self.config.history_limit, log=self._log
        )
        self.registry = SessionRegistry(
            shell,
            backend_factory=backend_factory,
            scrollback_chars=self.config.scrollback_chars,
            log=self._log,
        )
        self.metrics = MetricsCollector(active_sessions=lambda: len(self.registry))
        self.dispatcher = CommandDispatcher(
            self.registry,
            self.history,
            self.metrics,
            default_timeout_ms=self.config.default_timeout_ms,
            slow_command_ms=self.config.slow_command_ms,
            log=self._log,
        )
        self._closing: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "ShellEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    def _require(self, session_id: str) -> Session:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def create_session(
        self,
        *,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        execution_policy: Optional[str] = None,
    ) -> CreatedSession:
        options = SessionOptions(
            cols=cols or self.config.cols,
            rows=rows or self.config.rows,
            cwd=cwd,
            env=dict(env or {}),
            execution_policy=execution_policy or self.config.execution_policy,
        )
        session = await self.registry.create(options)

        if self.config.probe_version:
            await self._probe_version(session)

        return CreatedSession(session_id=session.id, pid=session.pid)

    async def _probe_version(self, session: Session) -> Optional[str]:
        try:
            output = await self.dispatcher.probe(
                session, self.shell.version_query(), VERSION_PROBE_TIMEOUT_MS
            )
        except ShellHostError as e:
            self._log.error(f"[TERMINAL] Failed to get shell version: {e}")
            return None

        version = parse_version(output)
        if version:
            session.shell_version = version
            self.shell_version = version
            self._log.info(f"[TERMINAL] {self.shell.name} version: {version}")
        return version

    async def execute_command(
        self,
        session_id: str,
        command: str,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        return await self.dispatcher.execute(session_id, command, timeout_ms)

    def write_to_session(self, session_id: str, data: str) -> None:
        """Write raw input to session."""
        self._require(session_id).write(data)

    def resize_terminal(self, session_id: str, cols: int, rows: int) -> None:
        self._require(session_id).resize(cols, rows)

    def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        session = self.registry.get(session_id)
        return session.info() if session else None

    def list_sessions(self) -> List[SessionInfo]:
        return self.registry.list()

    def get_output(self, session_id: str) -> str:
        return self._require(session_id).output

    def add_output_listener(self, session_id: str, listener: OutputListener) -> Callable[[], None]:
        """
        Subscribe to raw output chunks of one session, in arrival order.

        Returns a callable that detaches the listener.
        """
        return self._require(session_id).add_listener(listener)

    def add_exit_listener(self, listener: ExitListener) -> Callable[[], None]:
        return self.registry.add_exit_listener(listener)

    def close_session(self, session_id: str) -> bool:
        """
        Ask a session to exit. Returns False for an unknown id.

        The graceful shutdown runs in the background; await wait_closed()
        to join it.
        """
        session = self.registry.get(session_id)
        if session is None:
            return False

        task = asyncio.get_running_loop().create_task(
            self._close(session), name=f"close-{session_id}"
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return True

    async def _close(self, session: Session) -> None:
        await session.shutdown(self.config.close_grace_sec, self.shell.exit_command)
        self.registry.remove(session.id)

    async def wait_closed(self) -> None:
        """Wait for every pending close_session() to finish."""
        if self._closing:
            await asyncio.gather(*list(self._closing))

    def get_history(self, limit: int = 100) -> List[str]:
        return self.history.list(limit)

    def clear_history(self) -> None:
        self.history.clear()

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    async def cleanup(self) -> None:
        """Kill every session and persist history."""
        self._log.info("[TERMINAL] Cleaning up session engine...")

        sessions = self.registry.sessions()
        for session in sessions:
            session.kill()
        for session in sessions:
            try:
                await session.wait_closed(timeout=5.0)
            except asyncio.TimeoutError:
                self._log.warning(f"[TERMINAL] Session {session.id} did not exit during cleanup")
            self.registry.remove(session.id)

        await self.wait_closed()
        self.history.save()
