"""tmux operations for spawning and supervising agent sessions."""

import hashlib
import logging
import os
import signal
import time
from datetime import datetime
from typing import Optional, Sequence

from .backend import SUPPORTED_SHELLS, ExtendedCapabilities, SessionBackend
from .errors import (
    BackendUnavailable,
    CommandError,
    EnvironmentKeyNotFound,
    MuxError,
    SessionExists,
    SessionNotFound,
    WaitTimeout,
)
from .health import command_matches
from .models import SessionInfo

logger = logging.getLogger(__name__)

TMUX_PHRASES = (
    ("no server running", BackendUnavailable),
    ("error connecting to", BackendUnavailable),
    ("connection refused", BackendUnavailable),
    ("no such file or directory", BackendUnavailable),
    ("duplicate session", SessionExists),
    ("already exists", SessionExists),
    ("can't find session", SessionNotFound),
    ("can't find pane", SessionNotFound),
    ("not found", SessionNotFound),
    ("no such session", SessionNotFound),
)

# Tab-separated so commands containing spaces survive the split
SESSION_FORMAT = "\t".join([
    "#{session_name}",
    "#{pane_current_command}",
    "#{pane_pid}",
    "#{pane_dead}",
    "#{session_created}",
    "#{session_activity}",
])

THEME_COLOURS = (
    "colour24", "colour28", "colour30", "colour54", "colour58",
    "colour88", "colour94", "colour97", "colour130", "colour136",
)

BYPASS_WARNING_TEXT = "Bypass Permissions mode"


def session_target(name: str) -> str:
    """Exact-match session target; a bare name lets tmux fall back to prefix matching."""
    return f"={name}"


def pane_target(name: str) -> str:
    """Active pane of the exactly-named session."""
    return f"={name}:"


def assign_theme(rig_name: str) -> str:
    """Stable status bar colour for a rig, so every session of a rig looks alike."""
    digest = hashlib.sha256(rig_name.encode("utf-8")).digest()
    return THEME_COLOURS[digest[0] % len(THEME_COLOURS)]


def parse_session_line(line: str, now: Optional[float] = None) -> SessionInfo:
    """Parse one SESSION_FORMAT line into a SessionInfo."""
    now = time.time() if now is None else now
    parts = line.split("\t")
    parts += [""] * (6 - len(parts))
    name, command, pid, dead, created, activity = parts[:6]

    created_ts = int(created) if created.isdigit() else None
    activity_ts = int(activity) if activity.isdigit() else None
    return SessionInfo(
        name=name,
        command=command,
        pid=int(pid) if pid.isdigit() else None,
        alive=dead != "1",
        created_at=datetime.fromtimestamp(created_ts) if created_ts else None,
        uptime_seconds=max(now - created_ts, 0) if created_ts else None,
        last_activity=datetime.fromtimestamp(activity_ts) if activity_ts else None,
        idle_seconds=max(now - activity_ts, 0) if activity_ts else None,
    )


class TmuxBackend(SessionBackend, ExtendedCapabilities):
    """Controls tmux sessions for supervised agents."""

    binary = "tmux"
    error_phrases = TMUX_PHRASES

    def __init__(self, config: Optional[dict] = None, nudge_locks=None):
        super().__init__(config, nudge_locks)

        # Load timeout configuration with fallbacks
        tmux_timeouts = self.config.get("timeouts", {}).get("tmux", {})
        self.command_timeout_seconds = tmux_timeouts.get("command_timeout_seconds", 10)
        self.send_keys_settle_seconds = tmux_timeouts.get("send_keys_settle_seconds", 0.3)
        self.wait_poll_seconds = tmux_timeouts.get("wait_poll_seconds", 0.2)
        self.bypass_settle_seconds = tmux_timeouts.get("bypass_settle_seconds", 1.0)

    def _new_session_args(self, name: str, work_dir: str, env: Optional[dict] = None) -> list[str]:
        args = ["new-session", "-d", "-s", name]
        if work_dir:
            args += ["-c", work_dir]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        return args

    def new_session(self, name: str, work_dir: str) -> None:
        self._run(*self._new_session_args(name, work_dir))
        logger.info(f"Created session {name} in {work_dir}")

    def new_session_with_command(self, name: str, work_dir: str, command: str) -> None:
        self._run(*self._new_session_args(name, work_dir), command)
        logger.info(f"Created session {name} with command {command}")

    def new_session_with_command_and_env(self, name: str, work_dir: str, command: str, env: dict[str, str]) -> None:
        self._run(*self._new_session_args(name, work_dir, env), command)
        logger.info(f"Created session {name} with command {command} ({len(env)} env vars)")

    def kill_session(self, name: str) -> None:
        self._run("kill-session", "-t", session_target(name))
        logger.info(f"Killed session {name}")

    def kill_session_with_processes(self, name: str) -> None:
        """
        Terminate the pane's process group, then kill the session.

        kill-session only sends SIGHUP to the pane, which agents that ignore
        it survive, so the process group is signalled explicitly first.
        """
        try:
            pid = self.get_session_info(name).pid
        except SessionNotFound:
            raise
        except MuxError as e:
            logger.warning(f"Could not read pane pid for {name}: {e}")
            pid = None

        if pid:
            try:
                os.killpg(os.getpgid(pid), signal.SIGTERM)
                logger.info(f"Sent SIGTERM to process group of {name} (pid={pid})")
            except (ProcessLookupError, PermissionError) as e:
                logger.warning(f"Could not signal processes of {name}: {e}")

        try:
            self.kill_session(name)
        except SessionNotFound:
            # The pane exited on SIGTERM and took the session with it
            logger.debug(f"Session {name} already gone after SIGTERM")

    def has_session(self, name: str) -> bool:
        """Check if a tmux session exists (exact name match)."""
        try:
            self._run("has-session", "-t", session_target(name))
        except MuxError as e:
            logger.debug(f"has-session {name}: {e}")
            return False
        return True

    def list_sessions(self) -> list[str]:
        """List all tmux sessions."""
        try:
            out = self._run("list-sessions", "-F", "#{session_name}")
        except BackendUnavailable:
            return []
        return [s.strip() for s in out.split("\n") if s.strip()]

    def list_session_details(self) -> list[SessionInfo]:
        try:
            out = self._run("list-sessions", "-F", SESSION_FORMAT)
        except BackendUnavailable:
            return []
        now = time.time()
        return [parse_session_line(line, now) for line in out.split("\n") if line.strip()]

    def get_session_info(self, name: str) -> SessionInfo:
        out = self._run("display-message", "-p", "-t", pane_target(name), SESSION_FORMAT)
        if not out:
            raise SessionNotFound(f"session not found: {name}")
        return parse_session_line(out)

    def send_keys(self, name: str, text: str) -> None:
        """
        Type ``text`` literally into the session and submit it with Enter.

        Enter goes as a separate keystroke after a settle delay: agent TUIs
        treat a fast burst as a paste, in which a trailing newline does not submit.
        """
        self._run("send-keys", "-t", pane_target(name), "-l", "--", text)
        time.sleep(self.send_keys_settle_seconds)
        self._run("send-keys", "-t", pane_target(name), "Enter")
        logger.info(f"Sent input to {name}: {text[:50]}...")

    def send_key(self, name: str, key: str) -> None:
        """Send a single named key (e.g. 'Down', 'Enter', 'Escape')."""
        self._run("send-keys", "-t", pane_target(name), key)

    def capture_pane(self, name: str, lines: int) -> str:
        return self._run("capture-pane", "-p", "-t", pane_target(name), "-S", f"-{lines}")

    def set_environment(self, name: str, key: str, value: str) -> None:
        self._run("set-environment", "-t", session_target(name), key, value)

    def get_environment(self, name: str, key: str) -> str:
        try:
            out = self._run("show-environment", "-t", session_target(name), key)
        except CommandError as e:
            if "unknown variable" in e.stderr:
                raise EnvironmentKeyNotFound(name, key) from e
            raise
        # "-KEY" marks a variable removed from the session environment
        if out.startswith("-") or "=" not in out:
            raise EnvironmentKeyNotFound(name, key)
        return out.split("=", 1)[1]

    def _agent_in_pane(self, info: SessionInfo) -> bool:
        return info.alive and bool(info.command) and info.command not in SUPPORTED_SHELLS

    def is_agent_alive(self, name: str) -> bool:
        """True if the pane is alive and running something other than a bare shell."""
        try:
            info = self.get_session_info(name)
        except MuxError as e:
            logger.debug(f"Could not read pane state for {name}: {e}")
            return False
        return self._agent_in_pane(info)

    def is_agent_running(self, name: str, *expected_commands: str) -> bool:
        try:
            info = self.get_session_info(name)
        except MuxError as e:
            logger.debug(f"Could not read pane state for {name}: {e}")
            return False
        return self._agent_in_pane(info) and command_matches(info.command, expected_commands)

    def is_available(self) -> bool:
        try:
            self._run("-V")
        except MuxError:
            return False
        return True

    # Extended capabilities

    def configure_session(self, name: str, rig: str, worker: str, role: str) -> None:
        """Label the status bar with rig/worker and colour it with the rig theme."""
        theme = assign_theme(rig)
        self._run("set-option", "-t", session_target(name), "status-left", f"[{rig}/{worker}] ")
        self._run("set-option", "-t", session_target(name), "status-style", f"bg={theme},fg=white")
        self._run("set-environment", "-t", session_target(name), "AGENTMUX_ROLE", role)
        logger.info(f"Configured session {name} for {rig}/{worker} ({role})")

    def wait_for_command(self, name: str, exclude_commands: Sequence[str], timeout: float) -> None:
        deadline = time.monotonic() + timeout
        last_command = ""
        while True:
            try:
                info = self.get_session_info(name)
                last_command = info.command
                if info.alive and info.command and info.command not in exclude_commands:
                    logger.info(f"Session {name} is running {info.command}")
                    return
            except SessionNotFound:
                raise
            except MuxError as e:
                logger.debug(f"Waiting for {name}: {e}")
            if time.monotonic() >= deadline:
                raise WaitTimeout(
                    f"timeout after {timeout:g}s waiting for agent in {name} "
                    f"(pane still running {last_command or 'nothing'})"
                )
            time.sleep(self.wait_poll_seconds)

    def accept_bypass_permissions_warning(self, name: str) -> None:
        time.sleep(self.bypass_settle_seconds)
        content = self.capture_pane(name, 30)
        if BYPASS_WARNING_TEXT not in content:
            return
        # Warning defaults to "No, exit"; move to "Yes, I accept" and confirm
        self.send_key(name, "Down")
        time.sleep(self.send_keys_settle_seconds)
        self.send_key(name, "Enter")
        logger.info(f"Accepted bypass permissions warning in {name}")
