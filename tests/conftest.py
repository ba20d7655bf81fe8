"""Pytest configuration and shared test doubles"""

import asyncio

import pytest

from termpanes.backend.base import PtyBackend
from termpanes.errors import ReattachBufferUnavailable, ResizeFailed, SpawnFailed
from termpanes.session.types import Dimensions


@pytest.fixture
def anyio_backend():
    """Run anyio tests on asyncio only"""
    return "asyncio"


class FakeBackend(PtyBackend):
    """In-memory PtyBackend recording every call

    Knobs:
        spawn_errors: session_id -> message, spawn raises SpawnFailed
        spawn_gate: when set, spawn waits on this event before returning
        buffers: session_id -> bytes served by reattach
        reattach_error: reattach raises ReattachBufferUnavailable
        resize_error: resize raises ResizeFailed
    """

    def __init__(self):
        super().__init__()
        self.sessions: set[str] = set()
        self.spawned: list[tuple[str, str, str | None, str | None]] = []
        self.reattached: list[str] = []
        self.writes: list[tuple[str, bytes]] = []
        self.resizes: list[tuple[str, int, int]] = []
        self.terminated: list[str] = []

        self.spawn_errors: dict[str, str] = {}
        self.spawn_gate: asyncio.Event | None = None
        self.buffers: dict[str, bytes] = {}
        self.reattach_error = False
        self.resize_error = False

    @property
    def name(self) -> str:
        return "fake"

    async def spawn(self, session_id, shell, distro=None, cwd=None):
        self.spawned.append((session_id, shell, distro, cwd))
        if self.spawn_gate is not None:
            await self.spawn_gate.wait()
        if session_id in self.spawn_errors:
            raise SpawnFailed(session_id, self.spawn_errors[session_id])
        self.sessions.add(session_id)
        return Dimensions(80, 24)

    async def reattach(self, session_id):
        self.reattached.append(session_id)
        if self.reattach_error:
            raise ReattachBufferUnavailable(session_id, "buffer gone")
        self.sessions.add(session_id)
        return self.buffers.get(session_id)

    async def write(self, session_id, data):
        self.writes.append((session_id, data))

    async def resize(self, session_id, cols, rows):
        if self.resize_error:
            raise ResizeFailed(session_id, "ioctl failed")
        self.resizes.append((session_id, cols, rows))

    async def terminate(self, session_id):
        self.terminated.append(session_id)
        self.sessions.discard(session_id)

    def has_session(self, session_id):
        return session_id in self.sessions

    def emit(self, session_id: str, chunk: bytes) -> None:
        """Push output as if the shell wrote it"""
        self._publish(session_id, chunk)


@pytest.fixture
def backend():
    return FakeBackend()
