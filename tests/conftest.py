"""
Pytest configuration and fixtures.
"""

import asyncio
import itertools
import re
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shellhost.config import EngineConfig
from shellhost.engine import ShellEngine
from shellhost.terminal.pty_backend import PTYBackend
from shellhost.terminal.shells import ShellExecutable, ShellKind

_PRINTF_RE = re.compile(r"printf '%s%s\\n' '(.*?)' '(.*?)'")
_pids = itertools.count(40000)


class FakePTY(PTYBackend):
    """
    Scripted stand-in for a POSIX shell.

    Understands `echo`, `sleep`, the sentinel `printf`, `exit` and
    `$BASH_VERSION`. Lines are executed one after another, like a real
    shell reading typed-ahead input.
    """

    version = "5.2.15"

    def __init__(self, *, ignore_exit: bool = False, fail_spawn: bool = False, echo: bool = True):
        self.ignore_exit = ignore_exit
        self.fail_spawn = fail_spawn
        self.echo = echo

        self.cmd: Optional[List[str]] = None
        self.cwd: Optional[str] = None
        self.env: Optional[Dict[str, str]] = None
        self.size: Optional[Tuple[int, int]] = None
        self.written: List[str] = []
        self.killed = False
        self.closed = False

        self._pid: Optional[int] = None
        self._pending = ""
        self._exit_code: Optional[int] = None
        self._out: Optional[asyncio.Queue] = None
        self._in: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    def spawn(self, cmd, cwd, env=None, size=(24, 80)) -> None:
        if self.fail_spawn:
            raise OSError("spawn refused")
        self.cmd = list(cmd)
        self.cwd = cwd
        self.env = env
        self.size = size
        self._pid = next(_pids)
        self._out = asyncio.Queue()
        self._in = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._exit_code is None:
            line = await self._in.get()
            if self.echo:
                self.emit(line + "\r\n")
            await self._execute(line)

    async def _execute(self, line: str) -> None:
        line = line.strip()
        match = _PRINTF_RE.fullmatch(line)
        if match:
            self.emit(match.group(1) + match.group(2) + "\r\n")
        elif line == "exit":
            if not self.ignore_exit:
                self._finish(0)
        elif "$BASH_VERSION" in line:
            self.emit(self.version + "\r\n")
        elif line.startswith("echo "):
            self.emit(line[5:].strip('"') + "\r\n")
        elif line.startswith("sleep "):
            await asyncio.sleep(float(line.split()[1]))
        elif line and not line.startswith("#"):
            self.emit(f"{line}: command not found\r\n")

    def emit(self, text: str) -> None:
        if self._exit_code is None:
            self._out.put_nowait(text)

    def _finish(self, code: int) -> None:
        if self._exit_code is not None:
            return
        self._exit_code = code
        self._out.put_nowait(None)
        if self._worker is not None and self._worker is not asyncio.current_task():
            self._worker.cancel()

    async def read_async(self, size: int = 4096) -> str:
        item = await self._out.get()
        return "" if item is None else item

    def write(self, data: str) -> None:
        if self._exit_code is not None:
            raise OSError("pty closed")
        self.written.append(data)
        self._pending += data
        while "\r" in self._pending:
            line, self._pending = self._pending.split("\r", 1)
            self._in.put_nowait(line)

    def resize(self, rows: int, cols: int) -> None:
        self.size = (rows, cols)

    def kill(self) -> None:
        self.killed = True
        self._finish(-9)

    def wait(self) -> int:
        return self._exit_code if self._exit_code is not None else -1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp = tempfile.mkdtemp()
    yield Path(temp)
    shutil.rmtree(temp, ignore_errors=True)


@pytest.fixture
def posix_shell():
    return ShellExecutable("/bin/bash", ShellKind.POSIX)


@pytest.fixture
def make_engine(temp_dir, posix_shell):
    """Build engines wired to FakePTY backends."""
    backends: List[FakePTY] = []

    def _make(*, shell: Optional[ShellExecutable] = None, fake_kwargs: Optional[dict] = None, **config) -> ShellEngine:
        def factory() -> FakePTY:
            pty = FakePTY(**(fake_kwargs or {}))
            backends.append(pty)
            return pty

        cfg = EngineConfig(
            history_path=str(temp_dir / "history"),
            probe_version=config.pop("probe_version", False),
            close_grace_sec=config.pop("close_grace_sec", 0.2),
            **config,
        )
        return ShellEngine(cfg, shell=shell or posix_shell, backend_factory=factory)

    _make.backends = backends
    return _make


@pytest_asyncio.fixture
async def engine(make_engine):
    engine = make_engine()
    yield engine
    await engine.cleanup()
