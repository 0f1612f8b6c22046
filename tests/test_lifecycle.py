"""Tests for the serialized server lifecycle manager."""

import threading
import time

import pytest

from loopback_mcp.config import LifecycleConfig, ServerConfig
from loopback_mcp.daemon.lifecycle import LifecycleClosedError, LifecycleManager
from loopback_mcp.daemon.server_state import (
    IDLE,
    RUNNING,
    STARTING,
    STOPPED,
    STOPPING,
    StateKind,
)

RESULT_TIMEOUT = 5.0


class FakeServer:
    """Server handle double that tracks which instances are live."""

    def __init__(self, registry, config, policy, *, start_gate=None, fail_start=None, fail_stop=None):
        self.registry = registry
        self.config = config
        self.policy = policy
        self.start_gate = start_gate
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.stop_args = None

    def start(self):
        if self.start_gate is not None:
            self.start_gate.wait(RESULT_TIMEOUT)
        if self.fail_start is not None:
            raise self.fail_start
        self.registry.live.append(self)

    def stop(self, grace_period, hard_deadline):
        self.stop_args = (grace_period, hard_deadline)
        if self in self.registry.live:
            self.registry.live.remove(self)
        if self.fail_stop is not None:
            raise self.fail_stop


class FakeFactory:
    """Builds FakeServers and remembers them in creation order."""

    def __init__(self, **server_kwargs):
        self.server_kwargs = server_kwargs
        self.created = []
        self.live = []

    def __call__(self, config, policy):
        server = FakeServer(self, config, policy, **self.server_kwargs)
        self.created.append(server)
        return server


class Recorder:
    """Thread-safe state callback."""

    def __init__(self):
        self.states = []
        self._lock = threading.Lock()

    def __call__(self, state):
        with self._lock:
            self.states.append(state)

    @property
    def kinds(self):
        return [state.kind for state in self.states]


@pytest.fixture
def config():
    return ServerConfig(host="127.0.0.1", port=8181)


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def manager(factory):
    mgr = LifecycleManager(factory, grace_period=0.1, hard_deadline=0.5, shutdown_timeout=2.0)
    yield mgr
    mgr.shutdown()


class TestStart:
    """Test start transitions and handle ownership."""

    def test_initial_state_is_idle(self, manager):
        assert manager.state == IDLE
        assert manager.is_running is False

    def test_starting_reported_synchronously(self, config):
        """Starting is delivered before start() returns, even with a busy worker."""
        gate = threading.Event()
        mgr = LifecycleManager(FakeFactory(start_gate=gate))
        recorder = Recorder()
        try:
            future = mgr.start(config, recorder)
            assert recorder.states == [STARTING]
            assert not future.done()
        finally:
            gate.set()
            mgr.shutdown()

    def test_start_reaches_running(self, manager, factory, config):
        recorder = Recorder()

        result = manager.start(config, recorder).result(RESULT_TIMEOUT)

        assert result == RUNNING
        assert recorder.states == [STARTING, RUNNING]
        assert manager.state == RUNNING
        assert manager.is_running is True
        assert factory.live == factory.created

    def test_factory_receives_bind_policy(self, manager, factory):
        manager.start(ServerConfig(host="0.0.0.0", port=8181)).result(RESULT_TIMEOUT)

        policy = factory.created[0].policy
        assert policy.allow_external_access is True
        assert policy.bind_address == "0.0.0.0"

    def test_loopback_policy_for_localhost(self, manager, factory):
        manager.start(ServerConfig(host="localhost", port=8181)).result(RESULT_TIMEOUT)

        policy = factory.created[0].policy
        assert policy.allow_external_access is False
        assert policy.bind_address == "localhost"

    def test_second_start_replaces_first_handle(self, manager, factory, config):
        """Only one handle is live after two starts; the first was stopped."""
        manager.start(config)
        manager.start(ServerConfig(host="127.0.0.1", port=8282)).result(RESULT_TIMEOUT)

        assert len(factory.created) == 2
        first, second = factory.created
        assert factory.live == [second]
        assert first.stop_args == (0.1, 0.5)
        assert second.stop_args is None

    def test_bind_failure_reports_failed(self, config):
        error = OSError(98, "Address already in use")
        mgr = LifecycleManager(FakeFactory(fail_start=error))
        recorder = Recorder()
        try:
            result = mgr.start(config, recorder).result(RESULT_TIMEOUT)
        finally:
            mgr.shutdown()

        assert result.kind is StateKind.FAILED
        assert result.error is error
        assert recorder.kinds == [StateKind.STARTING, StateKind.FAILED]
        assert mgr.is_running is False

    def test_factory_error_reports_failed(self, config):
        def broken_factory(config, policy):
            raise RuntimeError("cannot build server")

        mgr = LifecycleManager(broken_factory)
        try:
            result = mgr.start(config).result(RESULT_TIMEOUT)
        finally:
            mgr.shutdown()

        assert result.kind is StateKind.FAILED
        assert isinstance(result.error, RuntimeError)


class TestStop:
    """Test stop transitions."""

    def test_stop_without_server_reports_stopped(self, manager):
        recorder = Recorder()

        result = manager.stop(recorder).result(RESULT_TIMEOUT)

        assert result == STOPPED
        assert recorder.states == [STOPPING, STOPPED]

    def test_stop_releases_running_server(self, manager, factory, config):
        manager.start(config).result(RESULT_TIMEOUT)

        result = manager.stop().result(RESULT_TIMEOUT)

        assert result == STOPPED
        assert factory.live == []
        assert manager.is_running is False

    def test_stop_failure_still_clears_handle(self, config):
        factory = FakeFactory(fail_stop=TimeoutError("port not released"))
        mgr = LifecycleManager(factory)
        try:
            mgr.start(config).result(RESULT_TIMEOUT)
            result = mgr.stop().result(RESULT_TIMEOUT)

            assert result.kind is StateKind.FAILED
            assert isinstance(result.error, TimeoutError)
            assert mgr.is_running is False
        finally:
            mgr.shutdown()


class TestSerialization:
    """Test ordering guarantees across overlapping calls."""

    def test_start_then_stop_callback_sequence(self, config):
        """Transitional states come first, terminal states in submission order."""
        gate = threading.Event()
        mgr = LifecycleManager(FakeFactory(start_gate=gate))
        recorder = Recorder()
        try:
            start_future = mgr.start(config, recorder)
            stop_future = mgr.stop(recorder)
            gate.set()

            assert start_future.result(RESULT_TIMEOUT) == RUNNING
            assert stop_future.result(RESULT_TIMEOUT) == STOPPED
        finally:
            mgr.shutdown()

        assert recorder.states == [STARTING, STOPPING, RUNNING, STOPPED]
        assert mgr.is_running is False

    def test_each_call_gets_exactly_one_terminal_state(self, manager, config):
        recorders = [Recorder() for _ in range(4)]
        futures = [
            manager.start(config, recorders[0]),
            manager.stop(recorders[1]),
            manager.start(config, recorders[2]),
            manager.stop(recorders[3]),
        ]
        results = [future.result(RESULT_TIMEOUT) for future in futures]

        assert results == [RUNNING, STOPPED, RUNNING, STOPPED]
        for recorder in recorders:
            assert len(recorder.states) == 2
            assert sum(state.is_terminal for state in recorder.states) == 1

    def test_concurrent_starts_never_overlap(self, manager, factory):
        """Starts from many threads leave exactly one live handle."""
        futures = []
        lock = threading.Lock()

        def start_one(port):
            future = manager.start(ServerConfig(host="127.0.0.1", port=port))
            with lock:
                futures.append(future)

        threads = [threading.Thread(target=start_one, args=(9000 + i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        for future in futures:
            assert future.result(RESULT_TIMEOUT) == RUNNING

        assert len(factory.created) == 8
        assert len(factory.live) == 1

    def test_last_enqueued_operation_wins(self, manager, config):
        manager.start(config)
        manager.stop()
        final = manager.start(config).result(RESULT_TIMEOUT)

        assert final == RUNNING
        assert manager.is_running is True


class TestListeners:
    """Test the state-transition event stream."""

    def test_listener_sees_every_transition(self, manager, config):
        events = Recorder()
        manager.add_listener(events)

        manager.start(config).result(RESULT_TIMEOUT)
        manager.stop().result(RESULT_TIMEOUT)

        assert events.states == [STARTING, RUNNING, STOPPING, STOPPED]

    def test_removed_listener_gets_nothing(self, manager, config):
        events = Recorder()
        manager.add_listener(events)
        manager.remove_listener(events)

        manager.start(config).result(RESULT_TIMEOUT)

        assert events.states == []

    def test_raising_callback_does_not_break_worker(self, manager, config):
        def explode(state):
            raise ValueError("callback bug")

        assert manager.start(config, explode).result(RESULT_TIMEOUT) == RUNNING
        assert manager.stop().result(RESULT_TIMEOUT) == STOPPED


class TestShutdown:
    """Test process-exit teardown."""

    def test_shutdown_without_start_returns_promptly(self):
        mgr = LifecycleManager(FakeFactory(), shutdown_timeout=10.0)

        began = time.monotonic()
        mgr.shutdown()

        assert time.monotonic() - began < 2.0
        assert mgr.closed is True

    def test_shutdown_stops_running_server(self, factory, config):
        mgr = LifecycleManager(factory, grace_period=0.2, hard_deadline=1.0)
        events = Recorder()
        mgr.add_listener(events)
        mgr.start(config).result(RESULT_TIMEOUT)

        mgr.shutdown()

        assert factory.live == []
        assert factory.created[0].stop_args == (0.2, 1.0)
        assert events.states[-1] == STOPPED

    def test_shutdown_is_idempotent(self, manager):
        manager.shutdown()
        manager.shutdown()

    def test_shutdown_swallows_stop_failure(self, config):
        mgr = LifecycleManager(FakeFactory(fail_stop=RuntimeError("stuck")))
        mgr.start(config).result(RESULT_TIMEOUT)

        mgr.shutdown()

        assert mgr.is_running is False

    def test_shutdown_wait_is_bounded(self, config):
        gate = threading.Event()
        mgr = LifecycleManager(FakeFactory(start_gate=gate), shutdown_timeout=0.2)
        mgr.start(config)
        try:
            began = time.monotonic()
            mgr.shutdown()
            assert time.monotonic() - began < 2.0
        finally:
            gate.set()

    def test_calls_after_shutdown_fail(self, manager, config):
        manager.shutdown()
        recorder = Recorder()

        result = manager.start(config, recorder).result(RESULT_TIMEOUT)

        assert recorder.kinds == [StateKind.STARTING, StateKind.FAILED]
        assert isinstance(result.error, LifecycleClosedError)
        assert isinstance(manager.stop().result(RESULT_TIMEOUT).error, LifecycleClosedError)

    def test_shutdown_from_state_callback_does_not_block(self, factory, config):
        """A callback on the worker may shut the manager down without stalling it."""
        mgr = LifecycleManager(factory, shutdown_timeout=10.0)

        def shut_down_when_running(state):
            if state == RUNNING:
                mgr.shutdown()

        began = time.monotonic()
        assert mgr.start(config, shut_down_when_running).result(RESULT_TIMEOUT) == RUNNING
        assert time.monotonic() - began < 2.0

        deadline = time.monotonic() + RESULT_TIMEOUT
        while factory.live and time.monotonic() < deadline:
            time.sleep(0.01)
        assert factory.live == []
        assert mgr.closed is True


class TestFromConfig:
    """Test construction from settings."""

    def test_timeouts_come_from_config(self, factory):
        lifecycle = LifecycleConfig(grace_period=0.5, hard_deadline=2.0, shutdown_timeout=3.0)
        mgr = LifecycleManager.from_config(lifecycle, factory)
        try:
            assert mgr.grace_period == 0.5
            assert mgr.hard_deadline == 2.0
            assert mgr.shutdown_timeout == 3.0
        finally:
            mgr.shutdown()
