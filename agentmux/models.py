"""Data models for agentmux."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional


class HealthState(Enum):
    """Health of a session, recomputed on every query."""
    SESSION_HEALTHY = "healthy"
    SESSION_DEAD = "session-dead"  # No multiplexer session
    AGENT_DEAD = "agent-dead"      # Pane alive, hosted agent gone (zombie)
    AGENT_HUNG = "agent-hung"      # Agent alive but no output for too long

    def __str__(self) -> str:
        return self.value


def _parse_timestamp(value) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class SessionInfo:
    """A multiplexer session as reported by a backend's listing or info output."""
    name: str
    command: str = ""
    pid: Optional[int] = None
    alive: bool = True
    created_at: Optional[datetime] = None
    uptime_seconds: Optional[float] = None
    last_activity: Optional[datetime] = None
    idle_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "command": self.command,
            "pid": self.pid,
            "alive": self.alive,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "uptime_seconds": self.uptime_seconds,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "idle_seconds": self.idle_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionInfo":
        """Create from a structured list/info record.

        Accepts both the snake_case keys written by to_dict() and the
        kebab-case keys some multiplexers emit.
        """
        def pick(*keys):
            for key in keys:
                if key in data:
                    return data[key]
            return None

        pid = pick("pid")
        uptime = pick("uptime_seconds", "uptime-seconds", "uptime")
        idle = pick("idle_seconds", "idle-seconds", "idle")
        alive = pick("alive")
        return cls(
            name=data["name"],
            command=pick("command") or "",
            pid=int(pid) if pid not in (None, "") else None,
            alive=bool(alive) if alive is not None else True,
            created_at=_parse_timestamp(pick("created_at", "created-at", "created")),
            uptime_seconds=float(uptime) if uptime is not None else None,
            last_activity=_parse_timestamp(pick("last_activity", "last-activity")),
            idle_seconds=float(idle) if idle is not None else None,
        )


class SessionSet:
    """Immutable set of session names for cheap repeated membership checks."""

    def __init__(self, names: Iterable[str] = ()):
        self._names = frozenset(names)

    def has(self, name: str) -> bool:
        return name in self._names

    def names(self) -> list[str]:
        return sorted(self._names)

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self):
        return iter(self.names())


@dataclass
class Rig:
    """The workspace a witness supervises."""
    name: str
    path: str
    town_root: Optional[str] = None  # Defaults to the rig path


@dataclass
class RoleConfig:
    """Role settings resolved by the caller (start command and extra env)."""
    start_command: Optional[str] = None
    env_vars: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["RoleConfig"]:
        if not data:
            return None
        return cls(
            start_command=data.get("start_command"),
            env_vars={str(k): str(v) for k, v in (data.get("env_vars") or {}).items()},
        )


def session_prefix_for(rig_name: str) -> str:
    """Session name prefix for a rig: lowercase, non-alphanumerics collapsed to '-'."""
    prefix = re.sub(r"[^a-z0-9]+", "-", rig_name.lower()).strip("-")
    return prefix or "rig"


def witness_session_name(prefix: str) -> str:
    return f"{prefix}-witness"
