"""Backend selection.

AGENTMUX_SESSION_BACKEND=amux selects the amux backend; anything else,
including unset, selects tmux.
"""

import os
from typing import Optional

from .backend import SessionBackend
from .nudge_lock import NudgeLockRegistry

BACKEND_ENV_VAR = "AGENTMUX_SESSION_BACKEND"


def backend_name() -> str:
    """Name of the configured backend: "amux" or "tmux"."""
    if os.environ.get(BACKEND_ENV_VAR, "").strip().lower() == "amux":
        return "amux"
    return "tmux"


def new_backend(config: Optional[dict] = None, nudge_locks: Optional[NudgeLockRegistry] = None) -> SessionBackend:
    """Return a fresh instance of the configured session backend."""
    if backend_name() == "amux":
        from .amux_backend import AmuxBackend

        return AmuxBackend(config=config, nudge_locks=nudge_locks)

    from .tmux_backend import TmuxBackend

    return TmuxBackend(config=config, nudge_locks=nudge_locks)
