"""
Command dispatcher.

Runs one command at a time per session. Completion is detected by a
sentinel token the shell prints after the command; the timeout is only
an upper bound. A timed-out command keeps running in the shell: later
output lands in the session accumulator, never in another capture.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from ..errors import CommandTimeout, SessionNotFound
from ..history import HistoryStore
from ..monitoring.metrics import MetricsCollector
from .registry import SessionRegistry
from .session import Session, SessionState
from .shells import Sentinel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
SLOW_COMMAND_MS = 50


@dataclass(frozen=True)
class CommandResult:
    output: str
    execution_time_ms: float
    command_number: int

    def to_dict(self) -> dict:
        return asdict(self)


class OutputCapture:
    """
    Accumulates the output of one dispatch until its sentinel shows up.

    Output preceding the sentinels of earlier timed-out dispatches belongs
    to those commands and is discarded.
    """

    def __init__(self, sentinel: Sentinel, skip: Iterable[str] = ()) -> None:
        self.sentinel = sentinel
        self.done: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._skip = list(skip)
        self._text = ""
        self._scan_from = 0

    def feed(self, data: str) -> None:
        if self.done.done():
            return
        self._text += data

        while self._skip:
            idx = self._text.find(self._skip[0])
            if idx == -1:
                break
            self._text = self._text[idx + len(self._skip[0]):]
            self._skip.pop(0)
            self._scan_from = 0

        token = self.sentinel.token
        idx = self._text.find(token, self._scan_from)
        if idx != -1:
            self.done.set_result(self._clean(self._text[:idx]))
            return
        # Only the tail can complete a token split across chunks
        self._scan_from = max(0, len(self._text) - len(token) + 1)

    def _clean(self, text: str) -> str:
        # Drop the echoed sentinel statement (its line carries the key)
        lines = text.split("\n")
        return "\n".join(line for line in lines if self.sentinel.key not in line)


def is_recordable(command: str) -> bool:
    """Blank commands and comments stay out of history."""
    return bool(command.strip()) and not command.lstrip().startswith("#")


class CommandDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        history: HistoryStore,
        metrics: MetricsCollector,
        *,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        slow_command_ms: int = SLOW_COMMAND_MS,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.history = history
        self.metrics = metrics
        self.default_timeout_ms = default_timeout_ms
        self.slow_command_ms = slow_command_ms
        self._log = log or logger

    async def execute(
        self,
        session_id: str,
        command: str,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """
        Execute a command in a session and capture its output.

        Raises:
            SessionNotFound: unknown id, or the session exited meanwhile
            CommandTimeout: no completion within timeout_ms
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms

        self._ensure_open(session)
        # Recorded before running: a command that later times out still counts
        if is_recordable(command):
            self.history.append(command)

        async with session.execution_lock:
            self._ensure_open(session)

            command_number = session.next_command_number()
            started = time.perf_counter()
            try:
                output = await self._dispatch(session, command, timeout_ms)
            finally:
                execution_time = (time.perf_counter() - started) * 1000
                self.metrics.record(execution_time)

        if execution_time > self.slow_command_ms:
            self._log.warning(f"[TERMINAL] Slow command execution: {execution_time:.0f}ms")

        return CommandResult(
            output=output,
            execution_time_ms=execution_time,
            command_number=command_number,
        )

    async def probe(self, session: Session, command: str, timeout_ms: int) -> str:
        """Run an internal query. No history, metrics or command numbering."""
        async with session.execution_lock:
            self._ensure_open(session)
            return await self._dispatch(session, command, timeout_ms)

    @staticmethod
    def _ensure_open(session: Session) -> None:
        if session.is_closed:
            raise SessionNotFound(session.id, "exited")
        if session.state is SessionState.CLOSING:
            raise SessionNotFound(session.id, "is closing")

    async def _dispatch(self, session: Session, command: str, timeout_ms: int) -> str:
        sentinel = Sentinel.new()
        capture = OutputCapture(sentinel, skip=session.stale_sentinels)
        detach = session.add_listener(capture.feed)
        session.mark_executing()

        try:
            line = f"{command}\r{self.registry.shell.sentinel_statement(sentinel)}\r"
            try:
                session.write(line)
            except OSError as e:
                raise SessionNotFound(session.id, f"is not writable: {e}") from e

            done, _ = await asyncio.wait(
                {capture.done, session.exited},
                timeout=timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if capture.done in done:
                return capture.done.result()
            if session.exited in done:
                raise SessionNotFound(session.id, "exited during command")
            session.add_stale_sentinel(sentinel.token)
            raise CommandTimeout(session.id, timeout_ms)
        finally:
            detach()
            session.mark_idle()
            if not capture.done.done():
                capture.done.cancel()
