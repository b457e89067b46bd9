"""
Cross-platform PTY backend.

Uses pywinpty on Windows, built-in pty on Unix.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import sys
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from ..processes import kill_tree

logger = logging.getLogger(__name__)


class PTYBackend(ABC):
    """Abstract PTY backend."""

    @property
    @abstractmethod
    def pid(self) -> Optional[int]:
        """OS process id of the spawned child."""
        pass

    @abstractmethod
    def spawn(
        self,
        cmd: list[str],
        cwd: str,
        env: Optional[Dict[str, str]] = None,
        size: Tuple[int, int] = (24, 80),
    ) -> None:
        """Spawn a process in PTY."""
        pass

    @abstractmethod
    async def read_async(self, size: int = 4096) -> str:
        """Wait for output. Returns an empty string once the PTY is closed."""
        pass

    @abstractmethod
    def write(self, data: str) -> None:
        """Write to PTY."""
        pass

    @abstractmethod
    def resize(self, rows: int, cols: int) -> None:
        """Resize PTY."""
        pass

    @abstractmethod
    def kill(self) -> None:
        """Force-terminate the process and its children."""
        pass

    @abstractmethod
    def wait(self) -> int:
        """Block until the process exits and return its exit code."""
        pass

    async def wait_async(self) -> int:
        return await asyncio.to_thread(self.wait)

    def close(self) -> None:
        """Release PTY handles."""
        pass


class WindowsPTY(PTYBackend):
    """Windows PTY using pywinpty/ConPTY."""

    def __init__(self):
        self.process = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def spawn(
        self,
        cmd: list[str],
        cwd: str,
        env: Optional[Dict[str, str]] = None,
        size: Tuple[int, int] = (24, 80),
    ) -> None:
        try:
            from winpty import PtyProcess
        except ImportError:
            raise ImportError("pywinpty is required on Windows. Install with: pip install pywinpty")

        self.process = PtyProcess.spawn(
            cmd,
            cwd=cwd,
            env=env,
            dimensions=(size[0], size[1]),
        )
        logger.info(f"[TERMINAL] WindowsPTY spawned PID {self.process.pid}: {cmd}")

    async def read_async(self, size: int = 4096) -> str:
        if not self.process:
            return ""
        try:
            return await asyncio.to_thread(self.process.read, size)
        except EOFError:
            return ""

    def write(self, data: str) -> None:
        if self.process:
            self.process.write(data)

    def resize(self, rows: int, cols: int) -> None:
        if self.process:
            try:
                self.process.setwinsize(rows, cols)
            except Exception as e:
                logger.warning(f"[TERMINAL] resize failed: {e}")

    def kill(self) -> None:
        if self.process:
            kill_tree(self.process.pid)

    def wait(self) -> int:
        if not self.process:
            return -1
        code = self.process.wait()
        return code if code is not None else 0


class UnixPTY(PTYBackend):
    """Unix PTY using built-in pty module."""

    def __init__(self):
        self.master_fd: Optional[int] = None
        self.slave_fd: Optional[int] = None
        self._pid: Optional[int] = None
        self._exit_code: Optional[int] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    def spawn(
        self,
        cmd: list[str],
        cwd: str,
        env: Optional[Dict[str, str]] = None,
        size: Tuple[int, int] = (24, 80),
    ) -> None:
        import pty
        import fcntl
        import struct
        import termios

        # Create PTY pair
        self.master_fd, self.slave_fd = pty.openpty()

        # Set terminal size
        winsize = struct.pack('HHHH', size[0], size[1], 0, 0)
        fcntl.ioctl(self.slave_fd, termios.TIOCSWINSZ, winsize)

        # Fork process
        self._pid = os.fork()

        if self._pid == 0:
            # Child process: never returns into the parent's code
            try:
                os.close(self.master_fd)
                os.setsid()

                # Set controlling terminal
                fcntl.ioctl(self.slave_fd, termios.TIOCSCTTY, 0)

                # Redirect stdio
                os.dup2(self.slave_fd, 0)
                os.dup2(self.slave_fd, 1)
                os.dup2(self.slave_fd, 2)

                if self.slave_fd > 2:
                    os.close(self.slave_fd)

                # Change directory and exec
                os.chdir(cwd)
                if env is not None:
                    os.execvpe(cmd[0], cmd, env)
                os.execvp(cmd[0], cmd)
            finally:
                os._exit(127)
        else:
            # Parent process
            os.close(self.slave_fd)
            self.slave_fd = None

            # Set non-blocking
            flags = fcntl.fcntl(self.master_fd, fcntl.F_GETFL)
            fcntl.fcntl(self.master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

            logger.info(f"[TERMINAL] UnixPTY spawned PID {self._pid}: {cmd}")

    async def read_async(self, size: int = 4096) -> str:
        loop = asyncio.get_running_loop()
        while self.master_fd is not None:
            try:
                data = os.read(self.master_fd, size)
            except BlockingIOError:
                await self._readable(loop, self.master_fd)
                continue
            except OSError:
                # EIO once every slave handle is closed
                return ""
            if not data:
                return ""
            text = self._decoder.decode(data)
            if text:
                return text
        return ""

    @staticmethod
    async def _readable(loop: asyncio.AbstractEventLoop, fd: int) -> None:
        ready = loop.create_future()

        def _on_ready() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_reader(fd, _on_ready)
        try:
            await ready
        finally:
            loop.remove_reader(fd)

    def write(self, data: str) -> None:
        if self.master_fd is not None:
            os.write(self.master_fd, data.encode('utf-8'))

    def resize(self, rows: int, cols: int) -> None:
        if self.master_fd is not None:
            import fcntl
            import struct
            import termios
            winsize = struct.pack('HHHH', rows, cols, 0, 0)
            fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)

    def kill(self) -> None:
        if self._pid and self._exit_code is None:
            kill_tree(self._pid)

    def wait(self) -> int:
        if self._exit_code is not None:
            return self._exit_code
        if self._pid is None:
            return -1
        try:
            _, status = os.waitpid(self._pid, 0)
        except ChildProcessError:
            return -1
        self._exit_code = os.waitstatus_to_exitcode(status)
        return self._exit_code

    def close(self) -> None:
        for fd in (self.master_fd, self.slave_fd):
            if fd is not None:
                try:
                    os.close(fd)
                except OSError:
                    pass
        self.master_fd = None
        self.slave_fd = None


def create_pty_backend() -> PTYBackend:
    """Create appropriate PTY backend for current platform."""
    if sys.platform == "win32":
        return WindowsPTY()
    else:
        return UnixPTY()
