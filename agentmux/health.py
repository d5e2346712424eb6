"""Session health classification."""

from typing import Optional

from .models import HealthState


def classify_health(
    exists: bool,
    alive: bool,
    idle_seconds: Optional[float] = None,
    max_inactivity: float = 0,
) -> HealthState:
    """
    Classify a session from its existence and liveness telemetry.

    Checks run in priority order: a missing session is SESSION_DEAD before
    anything else is looked at, a present session with a dead agent is
    AGENT_DEAD, and only a live agent can be AGENT_HUNG.

    Args:
        exists: Whether the multiplexer session exists
        alive: Whether the hosted agent process is alive
        idle_seconds: Seconds since the pane last produced output (None = unknown)
        max_inactivity: Idle threshold in seconds; 0 or less disables hang detection

    Returns:
        The session's HealthState
    """
    if not exists:
        return HealthState.SESSION_DEAD
    if not alive:
        return HealthState.AGENT_DEAD
    if max_inactivity > 0 and idle_seconds is not None and idle_seconds > max_inactivity:
        return HealthState.AGENT_HUNG
    return HealthState.SESSION_HEALTHY


def command_matches(command: str, expected_commands: tuple[str, ...]) -> bool:
    """True if no expectation was given or ``command`` contains one of them."""
    if not expected_commands:
        return True
    return any(expected and expected in command for expected in expected_commands)
