"""SessionCoordinator tests"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch

from termpanes.layout import TerminalNode
from termpanes.session import Dimensions, RemovalReason, SessionCoordinator, SessionPhase
from termpanes.telemetry import metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def node():
    return TerminalNode(id="pane-0001", shell="bash", distro="ubuntu", cwd="/home/me")


@pytest.fixture
def output():
    return []


def _coordinator(node, backend, output, **kwargs):
    kwargs.setdefault("resize_delay", 0.01)
    return SessionCoordinator(node, backend, on_output=output.append, **kwargs)


async def _wait_for_phase(coordinator, phase):
    for _ in range(100):
        if coordinator.phase is phase:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"phase stayed {coordinator.phase}")


class TestSpawn:
    """IDLE → SPAWNING → RUNNING"""

    async def test_spawn_success(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)

        assert await coordinator.start() is True

        assert coordinator.phase is SessionPhase.RUNNING
        assert backend.spawned == [("pane-0001", "bash", "ubuntu", "/home/me")]
        assert coordinator.state.dimensions == Dimensions(80, 24)
        assert coordinator.state.spawned_at is not None
        assert backend.subscriber_count("pane-0001") == 1

    async def test_start_is_single_shot(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        assert await coordinator.start() is False
        assert len(backend.spawned) == 1

    async def test_concurrent_start_spawns_once(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        results = await asyncio.gather(coordinator.start(), coordinator.start())
        assert sorted(results) == [False, True]
        assert len(backend.spawned) == 1

    async def test_spawn_failure_inline(self, node, backend, output):
        backend.spawn_errors["pane-0001"] = "bash: not found"
        coordinator = _coordinator(node, backend, output)

        assert await coordinator.start() is False

        assert coordinator.phase is SessionPhase.CLOSED
        assert coordinator.error == "bash: not found"
        assert len(output) == 1
        assert b"\x1b[31m" in output[0]
        assert b"bash: not found" in output[0]
        assert backend.subscriber_count("pane-0001") == 0
        assert metrics.get_counter("session.spawn_failed", {"shell": "bash"}) == 1

    async def test_unexpected_backend_error_wrapped(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        with patch.object(backend, "spawn", AsyncMock(side_effect=OSError("no pty"))):
            assert await coordinator.start() is False
        assert coordinator.phase is SessionPhase.CLOSED
        assert "no pty" in coordinator.error

    async def test_phase_callbacks(self, node, backend, output):
        on_phase = Mock()
        coordinator = _coordinator(node, backend, output, on_phase_change=on_phase)
        await coordinator.start()
        await coordinator.close()

        phases = [(c.args[1], c.args[2]) for c in on_phase.call_args_list]
        assert phases == [
            (SessionPhase.IDLE, SessionPhase.SPAWNING),
            (SessionPhase.SPAWNING, SessionPhase.RUNNING),
            (SessionPhase.RUNNING, SessionPhase.CLOSING),
            (SessionPhase.CLOSING, SessionPhase.CLOSED),
        ]
        assert len(coordinator.state.history) == 4


class TestReattach:
    """IDLE → REATTACHING → RUNNING"""

    @pytest.fixture
    def node(self):
        return TerminalNode(id="pane-0002", shell="bash", reattach=True)

    async def test_buffer_replayed(self, node, backend, output):
        backend.buffers["pane-0002"] = b"previous output\r\n"
        coordinator = _coordinator(node, backend, output)

        assert await coordinator.start() is True

        assert coordinator.phase is SessionPhase.RUNNING
        assert backend.spawned == []
        assert output == [b"previous output\r\n"]

    async def test_empty_buffer(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        assert await coordinator.start() is True
        assert output == []

    async def test_buffer_unavailable_is_not_fatal(self, node, backend, output):
        backend.reattach_error = True
        coordinator = _coordinator(node, backend, output)

        assert await coordinator.start() is True
        assert coordinator.phase is SessionPhase.RUNNING
        assert output == []
        assert metrics.get_counter("session.reattach_buffer_unavailable") == 1

    async def test_live_output_after_replay(self, node, backend, output):
        """Output arriving during the buffer fetch follows the scrollback"""

        async def fetch(session_id):
            backend.emit(session_id, b"live")
            return b"scrollback"

        coordinator = _coordinator(node, backend, output)
        with patch.object(backend, "reattach", AsyncMock(side_effect=fetch)):
            await coordinator.start()

        assert output == [b"scrollback", b"live"]

    async def test_cwd_from_scrollback(self, node, backend, output):
        backend.buffers["pane-0002"] = b"\x1b]7;file://h/projects\x07$ "
        on_cwd = Mock()
        coordinator = _coordinator(node, backend, output, on_cwd_change=on_cwd)
        await coordinator.start()
        on_cwd.assert_called_once_with("pane-0002", "/projects")


class TestOutput:
    """Output forwarding and cwd tracking"""

    async def test_output_forwarded(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        backend.emit("pane-0001", b"hello")
        assert output == [b"hello"]

    async def test_cwd_reported_once_per_change(self, node, backend, output):
        on_cwd = Mock()
        coordinator = _coordinator(node, backend, output, on_cwd_change=on_cwd)
        await coordinator.start()

        backend.emit("pane-0001", b"\x1b]7;file://h/tmp\x07")
        backend.emit("pane-0001", b"\x1b]7;file://h/tmp\x07")
        backend.emit("pane-0001", b"\x1b]7;file://h/v")
        backend.emit("pane-0001", b"ar\x07")

        assert [c.args for c in on_cwd.call_args_list] == [
            ("pane-0001", "/tmp"),
            ("pane-0001", "/var"),
        ]
        assert coordinator.state.cwd == "/var"

    async def test_failing_output_callback_isolated(self, node, backend):
        coordinator = SessionCoordinator(node, backend, on_output=Mock(side_effect=RuntimeError("x")))
        await coordinator.start()
        backend.emit("pane-0001", b"data")
        assert coordinator.phase is SessionPhase.RUNNING

    async def test_output_dropped_after_close(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()
        await coordinator.close()

        coordinator.feed_output(b"late")
        assert output == []


class TestInput:
    """write()"""

    async def test_write_when_running(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        assert await coordinator.write("ls\r") is True
        assert backend.writes == [("pane-0001", b"ls\r")]

    async def test_write_before_start_dropped(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        assert await coordinator.write(b"ls") is False
        assert backend.writes == []


class TestResize:
    """Debounced resize"""

    async def test_burst_reaches_backend_once(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        for cols in (100, 110, 120):
            coordinator.request_resize(cols, 40)
        await coordinator.flush_resize()

        assert backend.resizes == [("pane-0001", 120, 40)]
        assert coordinator.state.dimensions == Dimensions(120, 40)

    async def test_invalid_size_ignored(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()
        coordinator.request_resize(0, 40)
        await coordinator.flush_resize()
        assert backend.resizes == []

    async def test_resize_requested_while_spawning(self, node, backend, output):
        backend.spawn_gate = asyncio.Event()
        coordinator = _coordinator(node, backend, output)
        task = asyncio.create_task(coordinator.start())
        await _wait_for_phase(coordinator, SessionPhase.SPAWNING)

        coordinator.request_resize(132, 50)
        backend.spawn_gate.set()
        await task
        await coordinator.flush_resize()

        assert backend.resizes == [("pane-0001", 132, 50)]

    async def test_resize_failure_swallowed(self, node, backend, output):
        backend.resize_error = True
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        coordinator.request_resize(100, 30)
        await coordinator.flush_resize()

        assert coordinator.phase is SessionPhase.RUNNING
        assert coordinator.state.dimensions == Dimensions(80, 24)
        assert metrics.total("resize.failed") == 1


class TestClose:
    """close()"""

    async def test_close_terminates(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        await coordinator.close(RemovalReason.PANE_CLOSED)

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == ["pane-0001"]
        assert backend.subscriber_count("pane-0001") == 0
        assert coordinator.close_reason is RemovalReason.PANE_CLOSED

    async def test_close_is_idempotent(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()
        await coordinator.close()
        await coordinator.close()
        assert backend.terminated == ["pane-0001"]

    async def test_detached_skips_terminate(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()

        await coordinator.close(RemovalReason.DETACHED)

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == []
        assert backend.has_session("pane-0001")

    async def test_close_idle(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.close()

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == []
        assert await coordinator.start() is False
        assert backend.spawned == []

    async def test_close_cancels_pending_resize(self, node, backend, output):
        coordinator = _coordinator(node, backend, output, resize_delay=0.05)
        await coordinator.start()
        coordinator.request_resize(100, 30)
        await coordinator.close()
        await asyncio.sleep(0.08)
        assert backend.resizes == []

    async def test_wait_closed(self, node, backend, output):
        coordinator = _coordinator(node, backend, output)
        await coordinator.start()
        waiter = asyncio.create_task(coordinator.wait_closed())
        await coordinator.close()
        await asyncio.wait_for(waiter, timeout=1)


class TestLateSpawn:
    """Spawn completing after the pane was removed"""

    async def test_close_during_spawn_cleans_up(self, node, backend, output):
        backend.spawn_gate = asyncio.Event()
        coordinator = _coordinator(node, backend, output)
        task = asyncio.create_task(coordinator.start())
        await _wait_for_phase(coordinator, SessionPhase.SPAWNING)

        await coordinator.close()
        assert coordinator.phase is SessionPhase.CLOSING

        backend.spawn_gate.set()
        assert await task is False

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == ["pane-0001"]
        assert metrics.get_counter("session.leaked_cleanup") == 1

    async def test_node_gone_before_spawn_returns(self, node, backend, output):
        alive = {"pane-0001": True}
        coordinator = _coordinator(node, backend, output, is_node_alive=lambda pid: alive.get(pid, False))
        backend.spawn_gate = asyncio.Event()
        task = asyncio.create_task(coordinator.start())
        await _wait_for_phase(coordinator, SessionPhase.SPAWNING)

        alive["pane-0001"] = False
        backend.spawn_gate.set()
        assert await task is False

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == ["pane-0001"]

    async def test_detached_during_spawn_keeps_session(self, node, backend, output):
        backend.spawn_gate = asyncio.Event()
        coordinator = _coordinator(node, backend, output)
        task = asyncio.create_task(coordinator.start())
        await _wait_for_phase(coordinator, SessionPhase.SPAWNING)

        await coordinator.close(RemovalReason.DETACHED)
        backend.spawn_gate.set()
        await task

        assert coordinator.phase is SessionPhase.CLOSED
        assert backend.terminated == []

    async def test_failed_spawn_after_close_writes_nothing(self, node, backend, output):
        backend.spawn_gate = asyncio.Event()
        backend.spawn_errors["pane-0001"] = "boom"
        coordinator = _coordinator(node, backend, output)
        task = asyncio.create_task(coordinator.start())
        await _wait_for_phase(coordinator, SessionPhase.SPAWNING)

        await coordinator.close()
        backend.spawn_gate.set()
        await task

        assert coordinator.phase is SessionPhase.CLOSED
        assert output == []
