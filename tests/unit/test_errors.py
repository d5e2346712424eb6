"""Unit tests for error classification."""

import subprocess

import pytest

from agentmux.errors import (
    BackendUnavailable,
    CapabilityUnavailable,
    CommandError,
    EnvironmentKeyNotFound,
    LockTimeout,
    MuxError,
    SessionExists,
    SessionNotFound,
    classify_error,
    classify_error_kind,
)
from agentmux.tmux_backend import TMUX_PHRASES


class TestClassifyError:
    """Tests for mapping stderr text to typed errors."""

    @pytest.mark.parametrize("stderr,expected", [
        ("amux: daemon not running", BackendUnavailable),
        ("dial unix /tmp/amux.sock: connect: connection refused", BackendUnavailable),
        ("open /tmp/amux.sock: No such file or directory", BackendUnavailable),
        ("session s1 already exists", SessionExists),
        ("session s9 not found", SessionNotFound),
        ("No such session: s9", SessionNotFound),
    ])
    def test_known_phrases(self, stderr, expected):
        err = classify_error("amux", ["new", "-t", "s1"], stderr)
        assert type(err) is expected
        assert isinstance(err, MuxError)

    def test_matching_is_case_insensitive(self):
        assert classify_error_kind("SESSION ALREADY EXISTS") is SessionExists

    def test_first_matching_row_wins(self):
        # Mentions both phrases; the daemon row comes first
        err = classify_error("amux", ["has"], "daemon not running: session not found")
        assert isinstance(err, BackendUnavailable)

    def test_unmatched_stderr_keeps_subcommand_and_text(self):
        err = classify_error("amux", ["capture", "-t", "s1"], "weird failure 42", returncode=3)
        assert isinstance(err, CommandError)
        assert "capture" in str(err)
        assert "weird failure 42" in str(err)
        assert err.returncode == 3

    def test_empty_stderr_chains_cause(self):
        cause = subprocess.CalledProcessError(1, ["amux", "kill"])
        err = classify_error("amux", ["kill", "-t", "s1"], "   ", cause=cause, returncode=1)
        assert isinstance(err, CommandError)
        assert err.__cause__ is cause
        assert str(err).startswith("amux kill:")

    def test_classified_error_carries_stderr(self):
        err = classify_error("amux", ["new"], "session s1 already exists\n")
        assert str(err) == "session s1 already exists"

    def test_tmux_phrases(self):
        assert classify_error_kind("no server running on /tmp/tmux-0/default", TMUX_PHRASES) is BackendUnavailable
        assert classify_error_kind("duplicate session: s1", TMUX_PHRASES) is SessionExists
        assert classify_error_kind("can't find session: s1", TMUX_PHRASES) is SessionNotFound
        assert classify_error_kind("unknown variable: FOO", TMUX_PHRASES) is None


class TestErrorMessages:
    """Tests for error message content."""

    def test_capability_unavailable_names_operation_and_args(self):
        err = CapabilityUnavailable("send_keys", "s1", "hello", backend="amux")
        assert "send_keys" in str(err)
        assert "'s1'" in str(err)
        assert "'hello'" in str(err)
        assert err.operation == "send_keys"

    def test_lock_timeout_mentions_hung_nudge(self):
        err = LockTimeout("s1", 30)
        assert "s1" in str(err)
        assert "previous nudge may be hung" in str(err)

    def test_environment_key_not_found(self):
        err = EnvironmentKeyNotFound("s1", "FOO")
        assert err.key == "FOO"
        assert "FOO" in str(err)
