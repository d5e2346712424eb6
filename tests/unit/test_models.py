"""Unit tests for models."""

from datetime import datetime

from agentmux.models import RoleConfig, SessionInfo, SessionSet, session_prefix_for, witness_session_name


class TestSessionInfo:
    """Tests for SessionInfo dataclass."""

    def test_to_dict_roundtrip(self):
        original = SessionInfo(
            name="myrig-witness",
            command="claude",
            pid=4242,
            alive=True,
            created_at=datetime(2024, 1, 15, 10, 30, 0),
            uptime_seconds=60.0,
            last_activity=datetime(2024, 1, 15, 10, 31, 0),
            idle_seconds=5.0,
        )

        restored = SessionInfo.from_dict(original.to_dict())

        assert restored == original

    def test_from_kebab_case_record(self):
        info = SessionInfo.from_dict({
            "name": "s1",
            "pid": "77",
            "alive": False,
            "created-at": "2024-01-15T10:30:00Z",
            "uptime-seconds": 12,
            "idle-seconds": 3,
        })

        assert info.pid == 77
        assert info.alive is False
        assert info.created_at.year == 2024
        assert info.uptime_seconds == 12.0
        assert info.idle_seconds == 3.0
        assert info.command == ""

    def test_unparseable_timestamp(self):
        info = SessionInfo.from_dict({"name": "s1", "created_at": "yesterday"})
        assert info.created_at is None

    def test_defaults(self):
        info = SessionInfo.from_dict({"name": "s1"})
        assert info.alive is True
        assert info.pid is None


class TestSessionSet:

    def test_membership(self):
        sessions = SessionSet(["b", "a", "a"])
        assert sessions.has("a")
        assert not sessions.has("c")
        assert len(sessions) == 2
        assert list(sessions) == ["a", "b"]

    def test_empty(self):
        assert not SessionSet().has("a")
        assert SessionSet().names() == []


class TestNaming:

    def test_prefix(self):
        assert session_prefix_for("My Rig_2") == "my-rig-2"
        assert session_prefix_for("!!!") == "rig"

    def test_witness_session_name(self):
        assert witness_session_name("myrig") == "myrig-witness"


class TestRoleConfig:

    def test_from_dict(self):
        cfg = RoleConfig.from_dict({"start_command": "claude", "env_vars": {"N": 1}})
        assert cfg.start_command == "claude"
        assert cfg.env_vars == {"N": "1"}

    def test_empty(self):
        assert RoleConfig.from_dict(None) is None
        assert RoleConfig.from_dict({}) is None
