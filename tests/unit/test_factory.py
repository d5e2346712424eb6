"""Unit tests for backend selection."""

import pytest

from agentmux.amux_backend import AmuxBackend
from agentmux.factory import BACKEND_ENV_VAR, backend_name, new_backend
from agentmux.tmux_backend import TmuxBackend


@pytest.mark.parametrize("value,expected", [
    (None, "tmux"),
    ("", "tmux"),
    ("tmux", "tmux"),
    ("amux", "amux"),
    (" AMUX ", "amux"),
    ("screen", "tmux"),
])
def test_backend_name(monkeypatch, value, expected):
    if value is None:
        monkeypatch.delenv(BACKEND_ENV_VAR, raising=False)
    else:
        monkeypatch.setenv(BACKEND_ENV_VAR, value)
    assert backend_name() == expected


def test_new_backend_amux(monkeypatch, nudge_locks):
    monkeypatch.setenv(BACKEND_ENV_VAR, "amux")
    backend = new_backend({}, nudge_locks)
    assert isinstance(backend, AmuxBackend)
    assert backend.nudge_locks is nudge_locks


def test_new_backend_defaults_to_tmux(monkeypatch):
    monkeypatch.delenv(BACKEND_ENV_VAR, raising=False)
    assert isinstance(new_backend(), TmuxBackend)


def test_new_backend_returns_fresh_instances(monkeypatch):
    monkeypatch.delenv(BACKEND_ENV_VAR, raising=False)
    assert new_backend() is not new_backend()
