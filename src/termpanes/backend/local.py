"""LocalPtyBackend - shells on local POSIX pseudo-terminals

Each session is one child process attached to the slave end of a PTY.
The master end is watched with ``loop.add_reader``; every chunk is
published to subscribers and appended to a rolling scrollback buffer
that ``reattach`` serves to a newly mounted pane.
"""

import asyncio
import fcntl
import os
import pty
import signal
import struct
import termios
from dataclasses import dataclass, field
from pathlib import Path

from ..config import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    METRICS_ENABLED,
    OUTPUT_BUFFER_MAX_BYTES,
    OUTPUT_READ_SIZE,
    SHELL_PROFILES,
    TERMINATE_GRACE_SECONDS,
)
from ..errors import ResizeFailed, SessionNotFound, SpawnFailed
from ..session.types import Dimensions
from ..telemetry import format_pane_log, get_logger, metrics
from .base import PtyBackend

logger = get_logger(__name__)


@dataclass
class _PtySession:
    """Runtime record of one local session"""

    session_id: str
    master_fd: int
    process: asyncio.subprocess.Process
    buffer: bytearray = field(default_factory=bytearray)
    reading: bool = True


def resolve_shell(shell: str) -> list[str]:
    """Map a shell selector to an argv.

    Known selectors come from ``SHELL_PROFILES``; anything else is run
    as a program path.
    """
    argv = SHELL_PROFILES.get(shell)
    if argv is not None:
        return list(argv)
    return [shell]


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    winsz = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsz)


class LocalPtyBackend(PtyBackend):
    """PTY backend running shells as local child processes

    Usage:
        backend = LocalPtyBackend()
        dims = await backend.spawn(pane_id, "bash", None, "/tmp")
    """

    def __init__(self, buffer_limit: int = OUTPUT_BUFFER_MAX_BYTES):
        super().__init__()
        self._buffer_limit = buffer_limit
        self._sessions: dict[str, _PtySession] = {}

    @property
    def name(self) -> str:
        return "local"

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> list[str]:
        return list(self._sessions.keys())

    # === Spawn ===

    async def spawn(
        self,
        session_id: str,
        shell: str,
        distro: str | None = None,
        cwd: str | None = None,
    ) -> Dimensions:
        if session_id in self._sessions:
            raise SpawnFailed(session_id, f"session already running: {session_id}")

        argv = resolve_shell(shell)
        workdir = self._resolve_cwd(cwd)
        env = dict(os.environ)
        env.setdefault("TERM", "xterm-256color")
        if distro:
            env["TERMPANES_DISTRO"] = distro

        dims = Dimensions(DEFAULT_COLS, DEFAULT_ROWS)
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnFailed(session_id, f"openpty failed: {e}") from e

        try:
            _set_winsize(master_fd, dims.cols, dims.rows)
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=workdir,
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnFailed(session_id, f"{argv[0]}: {e.strerror or e}") from e
        except Exception as e:
            # e.g. ValueError for a NUL byte in argv or env
            os.close(master_fd)
            raise SpawnFailed(session_id, f"{argv[0]!r}: {e}") from e
        finally:
            os.close(slave_fd)

        session = _PtySession(session_id=session_id, master_fd=master_fd, process=process)
        self._sessions[session_id] = session
        os.set_blocking(master_fd, False)
        asyncio.get_running_loop().add_reader(master_fd, self._on_readable, session)
        if METRICS_ENABLED:
            metrics.inc("backend.spawned", {"shell": shell})

        logger.info(
            format_pane_log("Local", session_id, f"Spawned {' '.join(argv)} pid={process.pid} cwd={workdir}")
        )
        return dims

    @staticmethod
    def _resolve_cwd(cwd: str | None) -> str:
        if cwd and Path(cwd).is_dir():
            return cwd
        return str(Path.home())

    # === Output ===

    def _on_readable(self, session: _PtySession) -> None:
        try:
            data = os.read(session.master_fd, OUTPUT_READ_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the child has closed the slave end
            data = b""

        if not data:
            self._stop_reading(session)
            logger.info(format_pane_log("Local", session.session_id, "Shell exited"))
            return

        session.buffer.extend(data)
        overflow = len(session.buffer) - self._buffer_limit
        if overflow > 0:
            del session.buffer[:overflow]
        self._publish(session.session_id, data)

    def _stop_reading(self, session: _PtySession) -> None:
        if not session.reading:
            return
        session.reading = False
        try:
            asyncio.get_running_loop().remove_reader(session.master_fd)
        except RuntimeError:
            pass

    async def reattach(self, session_id: str) -> bytes | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return bytes(session.buffer)

    # === Input / resize ===

    async def write(self, session_id: str, data: bytes) -> None:
        session = self._require(session_id)
        view = memoryview(data)
        while view:
            try:
                written = os.write(session.master_fd, view)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            view = view[written:]

    async def resize(self, session_id: str, cols: int, rows: int) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise ResizeFailed(session_id, f"no such session: {session_id}")
        try:
            _set_winsize(session.master_fd, cols, rows)
        except OSError as e:
            raise ResizeFailed(session_id, f"TIOCSWINSZ failed: {e}") from e

    # === Terminate ===

    async def terminate(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        self._stop_reading(session)
        process = session.process
        if process.returncode is None:
            self._signal_group(process.pid, signal.SIGHUP)
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(format_pane_log("Local", session_id, "No exit after SIGHUP, killing"))
                self._signal_group(process.pid, signal.SIGKILL)
                await process.wait()

        try:
            os.close(session.master_fd)
        except OSError:
            pass
        logger.info(format_pane_log("Local", session_id, f"Terminated (exit={process.returncode})"))

    async def close(self) -> None:
        """Terminate every session (process shutdown)."""
        for session_id in list(self._sessions):
            await self.terminate(session_id)

    @staticmethod
    def _signal_group(pid: int, sig: int) -> None:
        try:
            os.killpg(os.getpgid(pid), sig)
        except ProcessLookupError:
            pass

    def _require(self, session_id: str) -> _PtySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id, f"no such session: {session_id}")
        return session
