"""Session backend contract shared by the tmux and amux adapters."""

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .errors import DEFAULT_PHRASES, BackendUnavailable, MuxError, classify_error
from .health import classify_health
from .models import HealthState, SessionInfo, SessionSet
from .nudge_lock import DEFAULT_NUDGE_LOCK_TIMEOUT, NudgeLockRegistry, default_registry

logger = logging.getLogger(__name__)

# Foreground commands that mean "the agent has not started (or has exited) and only the shell is left"
SUPPORTED_SHELLS = ("bash", "zsh", "sh", "fish", "tcsh", "ksh", "dash")


class SessionBackend(ABC):
    """
    Abstract session operations over an external terminal multiplexer.

    Callers depend only on this class. Every failure a caller can act on is
    raised as a MuxError subclass. The only in-process state an operation
    touches is the nudge lock registry.
    """

    #: Multiplexer binary, also used as error message prefix
    binary: str = ""
    #: Ordered (stderr phrase, error class) table used to classify failures
    error_phrases: Sequence[tuple[str, type]] = DEFAULT_PHRASES

    def __init__(self, config: Optional[dict] = None, nudge_locks: Optional[NudgeLockRegistry] = None):
        self.config = config or {}
        self.nudge_locks = nudge_locks if nudge_locks is not None else default_registry()
        witness_timeouts = self.config.get("timeouts", {}).get("witness", {})
        self.nudge_lock_timeout = witness_timeouts.get("nudge_lock_timeout_seconds", DEFAULT_NUDGE_LOCK_TIMEOUT)
        self.command_timeout_seconds: Optional[float] = None

    def _run(self, *args: str, env: Optional[dict] = None) -> str:
        """
        Run a multiplexer subcommand and return its stripped stdout.

        Raises:
            MuxError: classified from the exit status and stderr
        """
        cmd = [self.binary, *args]
        logger.debug(f"Running {self.binary} command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                env=env,
                timeout=self.command_timeout_seconds,
            )
        except FileNotFoundError as e:
            raise BackendUnavailable(f"{self.binary} not installed") from e
        except subprocess.TimeoutExpired as e:
            raise classify_error(self.binary, args, "", cause=e, phrases=self.error_phrases) from e

        if result.returncode != 0:
            cause = subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)
            raise classify_error(
                self.binary, args, result.stderr or "",
                cause=cause, returncode=result.returncode, phrases=self.error_phrases,
            )
        return (result.stdout or "").strip()

    # Session lifecycle

    @abstractmethod
    def new_session(self, name: str, work_dir: str) -> None:
        """Create a detached session running the default shell."""

    @abstractmethod
    def new_session_with_command(self, name: str, work_dir: str, command: str) -> None:
        """Create a detached session running ``command``."""

    @abstractmethod
    def new_session_with_command_and_env(self, name: str, work_dir: str, command: str, env: dict[str, str]) -> None:
        """Create a detached session running ``command`` with ``env`` overlaid on the inherited environment."""

    @abstractmethod
    def kill_session(self, name: str) -> None:
        """Destroy a session."""

    @abstractmethod
    def kill_session_with_processes(self, name: str) -> None:
        """Destroy a session and every process it hosts."""

    @abstractmethod
    def has_session(self, name: str) -> bool:
        """True if the session exists. Never raises for a missing session."""

    @abstractmethod
    def list_sessions(self) -> list[str]:
        """Names of all sessions; empty when the daemon is not running."""

    @abstractmethod
    def list_session_details(self) -> list[SessionInfo]:
        """Descriptors of all sessions; empty when the daemon is not running."""

    @abstractmethod
    def get_session_info(self, name: str) -> SessionInfo:
        """Descriptor of one session."""

    def get_session_set(self) -> SessionSet:
        return SessionSet(self.list_sessions())

    # Input

    @abstractmethod
    def send_keys(self, name: str, text: str) -> None:
        """Deliver literal text as keyboard input to the session's active pane."""

    def nudge_session(self, name: str, message: str) -> None:
        """
        Send a message to a session, serialized against other nudges to it.

        The lock is released on every exit path, including delivery failure.

        Raises:
            LockTimeout: a previous nudge still holds the session's lock
        """
        with self.nudge_locks.hold(name, self.nudge_lock_timeout):
            self.send_keys(name, message)

    # Output

    @abstractmethod
    def capture_pane(self, name: str, lines: int) -> str:
        """Last ``lines`` lines of the session's rendered output."""

    # Environment

    @abstractmethod
    def set_environment(self, name: str, key: str, value: str) -> None:
        """Set a variable in the session environment."""

    @abstractmethod
    def get_environment(self, name: str, key: str) -> str:
        """Read a variable from the session environment."""

    # Health

    @abstractmethod
    def is_agent_alive(self, name: str) -> bool:
        """True if the session exists and its hosted agent process is alive."""

    @abstractmethod
    def is_agent_running(self, name: str, *expected_commands: str) -> bool:
        """True if the agent is alive and, when given, its command contains one of ``expected_commands``."""

    @abstractmethod
    def is_available(self) -> bool:
        """True if the multiplexer daemon is reachable."""

    def check_session_health(self, name: str, max_inactivity: float = 0) -> HealthState:
        """
        Classify a session as healthy, dead, zombie (agent dead) or hung.

        Args:
            name: Session name
            max_inactivity: Seconds without output before a live agent counts as hung;
                0 disables hang detection

        Returns:
            HealthState for the session
        """
        exists = self.has_session(name)
        alive = exists and self.is_agent_alive(name)
        idle_seconds = None
        if alive and max_inactivity > 0:
            try:
                idle_seconds = self.get_session_info(name).idle_seconds
            except MuxError as e:
                logger.debug(f"Could not read activity for {name}: {e}")
        return classify_health(exists, alive, idle_seconds, max_inactivity)


class ExtendedCapabilities(ABC):
    """Optional extras a backend may offer on top of SessionBackend."""

    @abstractmethod
    def configure_session(self, name: str, rig: str, worker: str, role: str) -> None:
        """Apply status bar theming and labels for a rig worker."""

    @abstractmethod
    def wait_for_command(self, name: str, exclude_commands: Sequence[str], timeout: float) -> None:
        """Block until the pane's foreground command is none of ``exclude_commands``.

        Raises:
            WaitTimeout: the command did not start within ``timeout`` seconds
        """

    @abstractmethod
    def accept_bypass_permissions_warning(self, name: str) -> None:
        """Dismiss the agent's bypass-permissions confirmation if it is showing."""


def extended_capabilities(backend: SessionBackend) -> Optional[ExtendedCapabilities]:
    """Return ``backend`` as ExtendedCapabilities if it offers them, else None."""
    if isinstance(backend, ExtendedCapabilities):
        return backend
    return None
