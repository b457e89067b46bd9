"""
A single shell process running inside a pseudo-terminal.

The session owns its PTY handle for its entire life, keeps an output
accumulator and fans every chunk out to the attached listeners in
registration order.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .pty_backend import PTYBackend

logger = logging.getLogger(__name__)

OutputListener = Callable[[str], None]

# Upper bound on waiting for the process to go away after a forced kill
KILL_WAIT_SEC = 5.0

# Sentinels of timed-out dispatches still expected in the stream
MAX_STALE_SENTINELS = 8
_TAIL_CHARS = 64


class SessionState(str, Enum):
    """Состояния сессии."""
    CREATED = "created"
    RUNNING = "running"
    EXECUTING = "executing"
    IDLE = "idle"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(slots=True)
class SessionOptions:
    cols: int = 120
    rows: int = 30
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    execution_policy: str = "RemoteSigned"


@dataclass
class SessionInfo:
    """Summary of a live session."""
    id: str
    pid: Optional[int]
    cwd: str
    uptime_ms: int
    command_count: int
    state: str
    cols: int
    rows: int
    shell_version: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class Session:
    def __init__(
        self,
        session_id: str,
        pty: PTYBackend,
        *,
        cwd: str,
        cols: int,
        rows: int,
        scrollback_chars: int = 1_000_000,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.id = session_id
        self.pty = pty
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.started_at = time.time()
        self.command_count = 0
        self.shell_version: Optional[str] = None
        self.state = SessionState.CREATED

        # Per-session execution queue: asyncio.Lock wakes waiters in FIFO order
        self.execution_lock = asyncio.Lock()

        self._log = log or logger
        self._scrollback_chars = scrollback_chars
        self._buffer = ""
        self._listeners: List[OutputListener] = []
        self._stale: List[str] = []
        self._tail = ""
        self._exited: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self.pty.pid

    @property
    def output(self) -> str:
        """Everything the process printed (bounded by scrollback)."""
        return self._buffer

    @property
    def exited(self) -> asyncio.Future[int]:
        return self._exited

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def stale_sentinels(self) -> List[str]:
        return list(self._stale)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def start(self, on_exit: Callable[["Session", int], None]) -> None:
        self.state = SessionState.RUNNING
        self._pump_task = asyncio.get_running_loop().create_task(
            self._pump(on_exit), name=f"pty-pump-{self.id}"
        )

    async def _pump(self, on_exit: Callable[["Session", int], None]) -> None:
        """Read PTY output until EOF, then collect the exit code."""
        try:
            while True:
                data = await self.pty.read_async()
                if not data:
                    break
                self._on_data(data)
        except Exception:
            self._log.exception(f"[TERMINAL] Session {self.id}: PTY read failed")

        try:
            code = await self.pty.wait_async()
        except Exception:
            self._log.exception(f"[TERMINAL] Session {self.id}: failed to collect exit code")
            code = -1

        self.pty.close()
        self.state = SessionState.CLOSED
        if not self._exited.done():
            self._exited.set_result(code)
        on_exit(self, code)

    def _on_data(self, data: str) -> None:
        self._buffer += data
        if self._scrollback_chars and len(self._buffer) > self._scrollback_chars:
            self._buffer = self._buffer[-self._scrollback_chars:]

        text = self._tail + data
        if self._stale:
            self._stale = [token for token in self._stale if token not in text]
        self._tail = text[-_TAIL_CHARS:]

        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception:
                self._log.exception(f"[TERMINAL] Session {self.id}: output listener failed")

    def add_listener(self, listener: OutputListener) -> Callable[[], None]:
        """Attach an output listener. Returns a callable that detaches it."""
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: OutputListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def write(self, data: str) -> None:
        self.pty.write(data)

    def resize(self, cols: int, rows: int) -> None:
        self.pty.resize(rows, cols)
        self.cols = cols
        self.rows = rows

    def add_stale_sentinel(self, token: str) -> None:
        """Remember the sentinel of a timed-out dispatch until it shows up."""
        self._stale.append(token)
        del self._stale[:-MAX_STALE_SENTINELS]

    def next_command_number(self) -> int:
        self.command_count += 1
        return self.command_count

    def mark_executing(self) -> None:
        if self.state in (SessionState.RUNNING, SessionState.IDLE):
            self.state = SessionState.EXECUTING

    def mark_idle(self) -> None:
        if self.state is SessionState.EXECUTING:
            self.state = SessionState.IDLE

    async def wait_closed(self, timeout: Optional[float] = None) -> int:
        """Wait for the process to exit and return its exit code."""
        return await asyncio.wait_for(asyncio.shield(self._exited), timeout)

    async def shutdown(self, grace: float, exit_command: str = "exit") -> None:
        """
        Graceful close: send the exit command, then force-kill the process
        tree if it is still alive after the grace period.
        """
        if self.is_closed:
            return
        self.state = SessionState.CLOSING

        try:
            self.write(exit_command + "\r")
        except OSError as e:
            self._log.warning(f"[TERMINAL] Session {self.id}: exit command not delivered: {e}")

        try:
            await self.wait_closed(grace)
            return
        except asyncio.TimeoutError:
            self._log.info(f"[TERMINAL] Session {self.id} still alive after {grace}s, killing")

        self.kill()
        try:
            await self.wait_closed(KILL_WAIT_SEC)
        except asyncio.TimeoutError:
            self._log.warning(f"[TERMINAL] Session {self.id}: process did not exit after kill")

    def kill(self) -> None:
        try:
            self.pty.kill()
        except Exception as e:
            self._log.error(f"[TERMINAL] Failed to kill session {self.id}: {e}")

    def info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            pid=self.pid,
            cwd=self.cwd,
            uptime_ms=int((time.time() - self.started_at) * 1000),
            command_count=self.command_count,
            state=self.state.value,
            cols=self.cols,
            rows=self.rows,
            shell_version=self.shell_version,
        )
