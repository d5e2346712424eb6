"""Per-session locks that keep concurrent nudges from interleaving."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .errors import LockTimeout

logger = logging.getLogger(__name__)

DEFAULT_NUDGE_LOCK_TIMEOUT = 30.0


class NudgeLockRegistry:
    """
    Maps session names to single-slot locks.

    Locks are created on first reference and kept for the life of the
    registry. Session names are reused and bounded by the number of
    concurrently active agents, so the map never grows without limit.
    A slot may be released by a thread other than the one that took it.
    """

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, session: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session)
            if lock is None:
                lock = threading.Lock()
                self._locks[session] = lock
            return lock

    def acquire(self, session: str, timeout: float = DEFAULT_NUDGE_LOCK_TIMEOUT) -> bool:
        """
        Take the slot for a session, waiting at most ``timeout`` seconds.

        Returns:
            True if acquired, False on timeout (nothing is held in that case)
        """
        return self._lock_for(session).acquire(timeout=max(timeout, 0))

    def release(self, session: str) -> None:
        """Free the slot for a session. No-op when it is not held."""
        lock = self._lock_for(session)
        try:
            lock.release()
        except RuntimeError:
            pass

    def is_held(self, session: str) -> bool:
        return self._lock_for(session).locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, session: str, timeout: float = DEFAULT_NUDGE_LOCK_TIMEOUT) -> Iterator[None]:
        """Hold the slot for the duration of the block; raise LockTimeout if it cannot be taken."""
        if not self.acquire(session, timeout):
            logger.warning(f"Nudge lock for {session} not acquired within {timeout}s")
            raise LockTimeout(session, timeout)
        try:
            yield
        finally:
            self.release(session)


_default_registry = NudgeLockRegistry()


def default_registry() -> NudgeLockRegistry:
    """Process-wide registry used by backends that are not given one."""
    return _default_registry
