"""Lifecycle tests against a real multiplexer.

Skipped unless the binary is installed. The amux tests also need a running
amux daemon.
"""

import shutil
import time
import uuid

import pytest

from agentmux.amux_backend import AmuxBackend
from agentmux.errors import CapabilityUnavailable, SessionExists, SessionNotFound
from agentmux.models import HealthState
from agentmux.nudge_lock import NudgeLockRegistry
from agentmux.tmux_backend import TmuxBackend

pytestmark = pytest.mark.integration


def unique_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def tmux_backend():
    if shutil.which("tmux") is None:
        pytest.skip("tmux not installed")
    backend = TmuxBackend(nudge_locks=NudgeLockRegistry())
    created = []
    yield backend, created
    for name in created:
        if backend.has_session(name):
            backend.kill_session(name)


@pytest.fixture
def amux_backend():
    if shutil.which("amux") is None:
        pytest.skip("amux not installed")
    backend = AmuxBackend(nudge_locks=NudgeLockRegistry())
    if not backend.is_available():
        pytest.skip("amux daemon not running")
    created = []
    yield backend, created
    for name in created:
        if backend.has_session(name):
            backend.kill_session(name)


class TestTmuxLifecycle:

    def test_never_created_session_is_dead(self, tmux_backend):
        backend, _ = tmux_backend
        name = unique_name("agentmux-never")
        assert backend.has_session(name) is False
        assert backend.check_session_health(name) == HealthState.SESSION_DEAD

    def test_create_capture_destroy(self, tmux_backend, tmp_path):
        backend, created = tmux_backend
        name = unique_name("agentmux-test")
        created.append(name)

        backend.new_session_with_command(name, str(tmp_path), "echo hello; sleep 30")
        assert backend.has_session(name)
        assert name in backend.get_session_set()

        deadline = time.monotonic() + 5
        output = ""
        while "hello" not in output and time.monotonic() < deadline:
            output = backend.capture_pane(name, 10)
            time.sleep(0.1)
        assert "hello" in output

        backend.kill_session(name)
        assert not backend.has_session(name)
        assert backend.check_session_health(name) == HealthState.SESSION_DEAD

    def test_duplicate_create(self, tmux_backend, tmp_path):
        backend, created = tmux_backend
        name = unique_name("agentmux-test")
        created.append(name)

        backend.new_session(name, str(tmp_path))
        with pytest.raises(SessionExists):
            backend.new_session(name, str(tmp_path))

    def test_prefix_of_existing_name_is_not_matched(self, tmux_backend, tmp_path):
        backend, created = tmux_backend
        prefix = unique_name("agentmux-prefix")
        name = f"{prefix}-witness"
        created.append(name)
        backend.new_session_with_command(name, str(tmp_path), "sleep 30")

        assert backend.has_session(prefix) is False
        with pytest.raises(SessionNotFound):
            backend.kill_session(prefix)
        with pytest.raises(SessionNotFound):
            backend.kill_session_with_processes(prefix)
        with pytest.raises(SessionNotFound):
            backend.capture_pane(prefix, 5)

        assert backend.has_session(name)
        assert backend.is_agent_alive(name)

    def test_environment(self, tmux_backend, tmp_path):
        backend, created = tmux_backend
        name = unique_name("agentmux-test")
        created.append(name)

        backend.new_session_with_command_and_env(name, str(tmp_path), "sleep 30", {"AGENTMUX_TEST": "1"})
        backend.set_environment(name, "AGENTMUX_OTHER", "two")

        assert backend.get_environment(name, "AGENTMUX_TEST") == "1"
        assert backend.get_environment(name, "AGENTMUX_OTHER") == "two"


class TestAmuxLifecycle:

    def test_never_created_session_is_dead(self, amux_backend):
        backend, _ = amux_backend
        name = unique_name("agentmux-never")
        assert backend.has_session(name) is False
        assert backend.check_session_health(name) == HealthState.SESSION_DEAD

    def test_create_capture_destroy(self, amux_backend, tmp_path):
        backend, created = amux_backend
        name = unique_name("agentmux-test")
        created.append(name)

        backend.new_session_with_command(name, str(tmp_path), "echo hello; sleep 30")
        assert backend.has_session(name)

        deadline = time.monotonic() + 5
        output = ""
        while "hello" not in output and time.monotonic() < deadline:
            output = backend.capture_pane(name, 10)
            time.sleep(0.1)
        assert "hello" in output

        backend.kill_session(name)
        assert backend.check_session_health(name) == HealthState.SESSION_DEAD

    def test_duplicate_create(self, amux_backend, tmp_path):
        backend, created = amux_backend
        name = unique_name("agentmux-test")
        created.append(name)

        backend.new_session_with_command(name, str(tmp_path), "sleep 30")
        with pytest.raises(SessionExists):
            backend.new_session_with_command(name, str(tmp_path), "sleep 30")

    def test_send_keys_unsupported(self, amux_backend):
        backend, _ = amux_backend
        with pytest.raises(CapabilityUnavailable):
            backend.send_keys("anything", "hello")
