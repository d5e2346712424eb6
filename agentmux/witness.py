"""Witness lifecycle: start, stop, status and zombie recovery for one rig.

The multiplexer session is the only record of whether the witness is
running; no state file is kept. Start reads health before acting, so a
healthy session is never replaced. Between that read and the kill/create
that follows, another actor can still change the session; the multiplexer
resolves such races and this module does not lock around them.
"""

import logging
import os
import shlex
import time
from pathlib import Path
from typing import Iterable, Optional

from .backend import SUPPORTED_SHELLS, SessionBackend, extended_capabilities
from .errors import AlreadyRunning, CapabilityUnavailable, MuxError, NotRunning, SessionNotFound
from .factory import new_backend
from .models import HealthState, Rig, RoleConfig, SessionInfo, session_prefix_for, witness_session_name
from .nudge_lock import NudgeLockRegistry

logger = logging.getLogger(__name__)

ROLE = "witness"
DEFAULT_AGENT_COMMAND = "claude"


def agent_env(role: str, rig_name: str, town_root: str, agent: Optional[str] = None) -> dict[str, str]:
    """Base environment every agent session of a role gets."""
    env = {
        "AGENTMUX_ROLE": role,
        "AGENTMUX_RIG": rig_name,
        "AGENTMUX_TOWN_ROOT": town_root,
        "BD_ACTOR": f"{rig_name}/{role}",
    }
    if agent:
        env["AGENTMUX_AGENT"] = agent
    return env


def expand_role_pattern(value: str, town_root: str, rig_name: str, role: str) -> str:
    """Expand {town}, {rig}, {role} and {prefix} placeholders in a role config value."""
    return (
        value.replace("{town}", town_root)
        .replace("{rig}", rig_name)
        .replace("{role}", role)
        .replace("{prefix}", session_prefix_for(rig_name))
    )


def role_config_env_vars(role_config: Optional[RoleConfig], town_root: str, rig_name: str) -> dict[str, str]:
    if role_config is None or not role_config.env_vars:
        return {}
    return {
        key: expand_role_pattern(value, town_root, rig_name, ROLE)
        for key, value in role_config.env_vars.items()
    }


def parse_env_overrides(overrides: Optional[Iterable[str]]) -> dict[str, str]:
    """Parse KEY=VALUE strings; malformed entries are skipped with a warning."""
    parsed = {}
    for override in overrides or ():
        key, sep, value = override.partition("=")
        if not sep or not key:
            logger.warning(f"Ignoring malformed env override {override!r} (expected KEY=VALUE)")
            continue
        parsed[key] = value
    return parsed


class WitnessManager:
    """Handles witness lifecycle and health for a rig."""

    def __init__(
        self,
        rig: Rig,
        backend: Optional[SessionBackend] = None,
        nudge_locks: Optional[NudgeLockRegistry] = None,
        config: Optional[dict] = None,
        role_config: Optional[RoleConfig] = None,
    ):
        """
        Initialize witness manager.

        Args:
            rig: Rig the witness supervises
            backend: Session backend (defaults to the one selected by the environment)
            nudge_locks: Registry serializing nudges; owned by this manager when not given
            config: Configuration dictionary
            role_config: Resolved witness role config (start command, extra env)
        """
        self.rig = rig
        self.config = config or {}
        self.role_config = role_config
        if nudge_locks is None:
            nudge_locks = backend.nudge_locks if backend is not None else NudgeLockRegistry()
        self.nudge_locks = nudge_locks
        self.backend = backend if backend is not None else new_backend(self.config, self.nudge_locks)
        self.backend.nudge_locks = self.nudge_locks

        witness_config = self.config.get("witness", {})
        witness_timeouts = self.config.get("timeouts", {}).get("witness", {})
        self.agent_command = witness_config.get("command", DEFAULT_AGENT_COMMAND)
        self.agents: dict = witness_config.get("agents", {}) or {}
        self.agent_start_timeout = witness_timeouts.get("agent_start_timeout_seconds", 60)
        self.settle_seconds = witness_timeouts.get("settle_seconds", 2)

    def session_name(self) -> str:
        return witness_session_name(session_prefix_for(self.rig.name))

    def town_root(self) -> str:
        return self.rig.town_root or self.rig.path

    def witness_dir(self) -> str:
        """Working directory: witness/rig/, else witness/, else the rig root."""
        rig_path = Path(self.rig.path).expanduser()
        for candidate in (rig_path / "witness" / "rig", rig_path / "witness"):
            if candidate.is_dir():
                return str(candidate)
        return str(rig_path)

    def is_running(self) -> bool:
        """True only if the session exists and the agent in it is alive."""
        return self.backend.check_session_health(self.session_name(), 0) == HealthState.SESSION_HEALTHY

    def is_healthy(self, max_inactivity: float = 0) -> HealthState:
        """Detailed health, including hung detection when max_inactivity > 0."""
        return self.backend.check_session_health(self.session_name(), max_inactivity)

    def status(self) -> SessionInfo:
        """
        Information about the witness session.

        Raises:
            NotRunning: the session does not exist
        """
        name = self.session_name()
        if not self.backend.has_session(name):
            raise NotRunning()
        try:
            return self.backend.get_session_info(name)
        except SessionNotFound:
            raise NotRunning()
        except MuxError as e:
            logger.debug(f"No session details for {name}: {e}")
            return SessionInfo(name=name)

    def build_start_command(self, agent_override: Optional[str] = None) -> str:
        """Command the witness session runs.

        A role config start command wins unless an agent override is given.
        Otherwise the agent command is prefixed with exports of the role
        environment, since session environment only reaches new panes.
        """
        town_root = self.town_root()
        if not agent_override and self.role_config and self.role_config.start_command:
            return expand_role_pattern(self.role_config.start_command, town_root, self.rig.name, ROLE)

        if agent_override:
            agent_command = self.agents.get(agent_override, agent_override)
        else:
            agent_command = self.agent_command
        exports = " ".join(
            f"{key}={shlex.quote(value)}"
            for key, value in agent_env(ROLE, self.rig.name, town_root, agent_override).items()
        )
        return f"export {exports} && {agent_command}"

    def start(
        self,
        agent_override: Optional[str] = None,
        env_overrides: Optional[Iterable[str]] = None,
        foreground: bool = False,
    ) -> None:
        """
        Start the witness, replacing a zombie session if one is found.

        Args:
            agent_override: Agent alias (or command) to run instead of the default
            env_overrides: KEY=VALUE pairs overriding every other env source
            foreground: Deprecated; always rejected

        Raises:
            AlreadyRunning: a healthy witness session already exists
            MuxError: session creation or the readiness wait failed
        """
        if foreground:
            raise ValueError("foreground mode is deprecated; start the witness in the background")

        backend = self.backend
        name = self.session_name()

        if backend.has_session(name):
            if backend.is_agent_alive(name):
                raise AlreadyRunning()
            # Zombie: pane is there but the agent is gone
            logger.warning(f"Witness session {name} is a zombie, killing it before restart")
            try:
                backend.kill_session(name)
            except SessionNotFound:
                logger.info(f"Zombie session {name} disappeared before kill")
            except MuxError as e:
                logger.error(f"Failed to kill zombie session {name}: {e}")
                raise

        work_dir = self.witness_dir()
        town_root = self.town_root()
        command = self.build_start_command(agent_override)

        backend.new_session_with_command(name, work_dir, command)
        logger.info(f"Created witness session {name} in {work_dir}")

        # Later sources win: role defaults, then role config, then explicit overrides
        env = agent_env(ROLE, self.rig.name, town_root, agent_override)
        env.update(role_config_env_vars(self.role_config, town_root, self.rig.name))
        env.update(parse_env_overrides(env_overrides))
        self._apply_environment(name, env)

        extras = extended_capabilities(backend)
        if extras is not None:
            try:
                extras.configure_session(name, self.rig.name, ROLE, ROLE)
            except MuxError as e:
                logger.warning(f"Could not configure session {name}: {e}")

            try:
                extras.wait_for_command(name, SUPPORTED_SHELLS, self.agent_start_timeout)
            except MuxError as e:
                logger.error(f"Witness {name} did not start: {e}")
                try:
                    backend.kill_session_with_processes(name)
                except MuxError as kill_err:
                    logger.warning(f"Cleanup of failed witness session {name} failed: {kill_err}")
                raise

            try:
                extras.accept_bypass_permissions_warning(name)
            except MuxError as e:
                logger.warning(f"Accepting bypass permissions for {name}: {e}")
        else:
            # No readiness probe on this backend
            time.sleep(self.settle_seconds)

        self._track_pid(name)
        logger.info(f"Witness started for rig {self.rig.name} ({name})")

    def _apply_environment(self, name: str, env: dict[str, str]) -> None:
        """Best-effort: the session works without these."""
        for key, value in env.items():
            try:
                self.backend.set_environment(name, key, value)
            except CapabilityUnavailable as e:
                logger.info(f"Session environment not supported for {name}: {e}")
                return
            except MuxError as e:
                logger.warning(f"Could not set {key} for {name}: {e}")

    def _track_pid(self, name: str) -> None:
        """Record the hosted pid for orphan cleanup. Best-effort."""
        try:
            pid = self.backend.get_session_info(name).pid
            if not pid:
                return
            pid_dir = Path(self.town_root()).expanduser() / ".runtime" / "pids"
            pid_dir.mkdir(parents=True, exist_ok=True)
            (pid_dir / f"{name}.pid").write_text(f"{pid}\n")
        except (MuxError, OSError) as e:
            logger.warning(f"Tracking session PID for {name}: {e}")

    def stop(self) -> None:
        """
        Stop the witness.

        Raises:
            NotRunning: the session does not exist
        """
        name = self.session_name()
        if not self.backend.has_session(name):
            raise NotRunning()
        self.backend.kill_session(name)
        self._forget_pid(name)
        logger.info(f"Witness stopped for rig {self.rig.name} ({name})")

    def _forget_pid(self, name: str) -> None:
        pid_file = Path(self.town_root()).expanduser() / ".runtime" / "pids" / f"{name}.pid"
        try:
            pid_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {pid_file}: {e}")

    def nudge(self, message: str) -> None:
        """Send a message to the witness, serialized with other nudges to it."""
        self.backend.nudge_session(self.session_name(), message)

    def capture(self, lines: int = 50) -> str:
        return self.backend.capture_pane(self.session_name(), lines)


def witness_from_config(config: dict, backend: Optional[SessionBackend] = None) -> Optional[WitnessManager]:
    """Build a WitnessManager from the ``witness`` config section, or None if no rig is configured."""
    witness_config = config.get("witness", {})
    rig_config = witness_config.get("rig") or {}
    if not rig_config.get("name") or not rig_config.get("path"):
        return None
    rig = Rig(
        name=rig_config["name"],
        path=os.path.expanduser(rig_config["path"]),
        town_root=os.path.expanduser(rig_config["town_root"]) if rig_config.get("town_root") else None,
    )
    return WitnessManager(
        rig,
        backend=backend,
        config=config,
        role_config=RoleConfig.from_dict(witness_config.get("role_config")),
    )
