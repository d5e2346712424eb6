"""amux session operations via subprocess.

amux is a session multiplexer that talks to its daemon over a Unix socket
instead of the tmux client-server model. It has no keystroke injection and
no per-session environment: environment variables can only be given at
creation time, by building the whole environment of the ``amux new``
process (inherit, then overlay). Setting a variable after creation is
therefore unsupported, while reading one back works by inspecting the
hosted process.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .backend import SessionBackend
from .errors import (
    BackendUnavailable,
    CapabilityUnavailable,
    EnvironmentKeyNotFound,
    MuxError,
    SessionNotFound,
)
from .health import command_matches
from .models import SessionInfo

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/zsh"


def build_env(overlay: dict[str, str], base: Optional[dict[str, str]] = None) -> dict[str, str]:
    """
    Build a child environment: the current process environment with ``overlay`` on top.

    Args:
        overlay: Variables to add or replace
        base: Environment to start from (defaults to os.environ)

    Returns:
        New mapping; neither input is modified
    """
    env = dict(os.environ if base is None else base)
    env.update({str(k): str(v) for k, v in overlay.items()})
    return env


def read_process_environ(pid: int, proc_root: str = "/proc") -> dict[str, str]:
    """Parse the NUL-separated environment block of a running process."""
    raw = (Path(proc_root) / str(pid) / "environ").read_bytes()
    env = {}
    for entry in raw.split(b"\0"):
        if b"=" not in entry:
            continue
        key, _, value = entry.decode("utf-8", errors="replace").partition("=")
        env[key] = value
    return env


class AmuxBackend(SessionBackend):
    """Session backend driving the ``amux`` CLI."""

    binary = "amux"

    def __init__(self, config: Optional[dict] = None, nudge_locks=None, proc_root: str = "/proc"):
        super().__init__(config, nudge_locks)
        backend_config = self.config.get("backend", {})
        amux_timeouts = self.config.get("timeouts", {}).get("amux", {})
        self.default_shell = backend_config.get("amux_default_shell", DEFAULT_SHELL)
        self.command_timeout_seconds = amux_timeouts.get("command_timeout_seconds", 10)
        self.proc_root = proc_root

    def _new_args(self, name: str, work_dir: str, command: str) -> list[str]:
        args = ["new", "-t", name]
        if work_dir:
            args += ["-d", work_dir]
        return args + ["--", command]

    def new_session(self, name: str, work_dir: str) -> None:
        self._run(*self._new_args(name, work_dir, self.default_shell))
        logger.info(f"Created amux session {name} in {work_dir}")

    def new_session_with_command(self, name: str, work_dir: str, command: str) -> None:
        self._run(*self._new_args(name, work_dir, command))
        logger.info(f"Created amux session {name} with command {command}")

    def new_session_with_command_and_env(self, name: str, work_dir: str, command: str, env: dict[str, str]) -> None:
        # amux new has no -e flag; the daemon spawns the pane with the client's environment.
        self._run(*self._new_args(name, work_dir, command), env=build_env(env))
        logger.info(f"Created amux session {name} with command {command} ({len(env)} env vars)")

    def kill_session(self, name: str) -> None:
        self._run("kill", "-t", name)
        logger.info(f"Killed amux session {name}")

    def kill_session_with_processes(self, name: str) -> None:
        # amux kill already tears down the whole process tree.
        self.kill_session(name)

    def has_session(self, name: str) -> bool:
        # has reports a missing session in ways that are not reliably
        # distinguishable from other failures, so any failure means "no".
        try:
            self._run("has", "-t", name)
        except MuxError as e:
            logger.debug(f"amux has {name}: {e}")
            return False
        return True

    def _list_json(self) -> list[dict]:
        out = self._run("ls", "--json")
        if not out:
            return []
        try:
            data = json.loads(out)
        except json.JSONDecodeError as e:
            raise MuxError(f"amux ls: parsing JSON: {e}") from e
        data = data or []
        if not isinstance(data, list) or not all(isinstance(r, dict) and r.get("name") for r in data):
            raise MuxError("amux ls: unexpected JSON shape")
        return data

    def list_sessions(self) -> list[str]:
        try:
            records = self._list_json()
        except BackendUnavailable:
            return []
        return [r["name"] for r in records]

    def list_session_details(self) -> list[SessionInfo]:
        try:
            records = self._list_json()
        except BackendUnavailable:
            return []
        return [SessionInfo.from_dict(r) for r in records]

    def get_session_info(self, name: str) -> SessionInfo:
        out = self._run("info", "-t", name, "--json")
        try:
            data = json.loads(out)
        except json.JSONDecodeError as e:
            raise MuxError(f"amux info: parsing JSON: {e}") from e
        if not data:
            raise SessionNotFound(f"session not found: {name}")
        if not isinstance(data, dict):
            raise MuxError("amux info: unexpected JSON shape")
        data.setdefault("name", name)
        return SessionInfo.from_dict(data)

    def send_keys(self, name: str, text: str) -> None:
        raise CapabilityUnavailable("send_keys", name, text, backend="amux")

    def capture_pane(self, name: str, lines: int) -> str:
        return self._run("capture", "-t", name, "--lines", str(lines))

    def set_environment(self, name: str, key: str, value: str) -> None:
        raise CapabilityUnavailable("set_environment", name, key, backend="amux")

    def get_environment(self, name: str, key: str) -> str:
        """Read a variable from the environment the session's process was started with."""
        info = self.get_session_info(name)
        if not info.pid:
            raise CapabilityUnavailable("get_environment", name, key, backend="amux")
        try:
            env = read_process_environ(info.pid, self.proc_root)
        except OSError as e:
            raise CapabilityUnavailable("get_environment", name, key, backend="amux") from e
        if key not in env:
            raise EnvironmentKeyNotFound(name, key)
        return env[key]

    def is_agent_alive(self, name: str) -> bool:
        try:
            return self.get_session_info(name).alive
        except MuxError as e:
            logger.debug(f"amux info {name}: {e}")
            return False

    def is_agent_running(self, name: str, *expected_commands: str) -> bool:
        try:
            info = self.get_session_info(name)
        except MuxError:
            return False
        return info.alive and command_matches(info.command, expected_commands)

    def is_available(self) -> bool:
        try:
            self._run("ls")
        except MuxError:
            return False
        return True

