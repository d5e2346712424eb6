"""Shared pytest fixtures for agentmux tests."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from agentmux.amux_backend import AmuxBackend
from agentmux.models import HealthState, Rig, SessionInfo
from agentmux.nudge_lock import NudgeLockRegistry
from agentmux.tmux_backend import TmuxBackend
from agentmux.witness import WitnessManager


@pytest.fixture
def nudge_locks() -> NudgeLockRegistry:
    """Fresh lock registry so tests never share nudge state."""
    return NudgeLockRegistry()


@pytest.fixture
def mock_tmux(nudge_locks) -> MagicMock:
    """
    Mock TmuxBackend for testing without actual tmux sessions.

    Returns:
        MagicMock with a healthy session configured
    """
    mock = MagicMock(spec=TmuxBackend)
    mock.binary = "tmux"
    mock.nudge_locks = nudge_locks
    mock.has_session.return_value = True
    mock.is_agent_alive.return_value = True
    mock.is_available.return_value = True
    mock.list_sessions.return_value = []
    mock.list_session_details.return_value = []
    mock.capture_pane.return_value = "Mock tmux output"
    mock.get_session_info.return_value = SessionInfo(name="myrig-witness", command="claude", pid=4242)
    mock.check_session_health.return_value = HealthState.SESSION_HEALTHY
    return mock


@pytest.fixture
def mock_amux(nudge_locks) -> MagicMock:
    """Mock AmuxBackend: no extended capabilities, no session environment."""
    mock = MagicMock(spec=AmuxBackend)
    mock.binary = "amux"
    mock.nudge_locks = nudge_locks
    mock.has_session.return_value = False
    mock.is_agent_alive.return_value = False
    mock.get_session_info.return_value = SessionInfo(name="myrig-witness", command="claude", pid=4242)
    return mock


@pytest.fixture
def rig(tmp_path: Path) -> Rig:
    """A rig rooted in a temporary directory."""
    path = tmp_path / "myrig"
    path.mkdir()
    return Rig(name="myrig", path=str(path))


@pytest.fixture
def fast_config() -> dict:
    """Config with every wait shortened for tests."""
    return {
        "timeouts": {
            "witness": {"agent_start_timeout_seconds": 1, "settle_seconds": 0},
            "tmux": {"send_keys_settle_seconds": 0, "wait_poll_seconds": 0, "bypass_settle_seconds": 0},
        }
    }


@pytest.fixture
def witness(rig, mock_tmux, nudge_locks, fast_config) -> WitnessManager:
    """WitnessManager over a mocked tmux backend."""
    return WitnessManager(rig, backend=mock_tmux, nudge_locks=nudge_locks, config=fast_config)
