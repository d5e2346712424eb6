"""Background health patrol that restarts a dead or hung witness."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .errors import AlreadyRunning, MuxError, NotRunning
from .models import HealthState

logger = logging.getLogger(__name__)


class WitnessMonitor:
    """Polls witness health and runs the recovery protocol when it degrades."""

    def __init__(self, witness, config: Optional[dict] = None):
        """
        Initialize witness monitor.

        Args:
            witness: WitnessManager to patrol
            config: Configuration dictionary (reads the ``monitor`` section)
        """
        self.witness = witness
        monitor_config = (config or {}).get("monitor", {})
        self.poll_interval = monitor_config.get("poll_interval", 30)
        self.max_inactivity = monitor_config.get("max_inactivity", 0)
        self.restart_dead = monitor_config.get("restart_dead", False)
        self.max_restarts = monitor_config.get("max_restarts", 3)

        self.restart_count = 0
        self.last_state: Optional[HealthState] = None
        self.last_check: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self):
        """Start the patrol loop."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._patrol())
        logger.info(f"Witness monitor started (poll every {self.poll_interval}s)")

    async def stop(self):
        """Stop the patrol loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Witness monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _patrol(self):
        while self._running:
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in witness patrol: {e}")
            await asyncio.sleep(self.poll_interval)

    async def check_once(self) -> HealthState:
        """
        Check health once and recover if needed.

        Returns:
            The health state observed before any recovery
        """
        state = await asyncio.to_thread(self.witness.is_healthy, self.max_inactivity)
        self.last_state = state
        self.last_check = datetime.now()

        if state == HealthState.SESSION_HEALTHY:
            return state
        if state == HealthState.SESSION_DEAD and not self.restart_dead:
            logger.debug("Witness session not running; restart_dead disabled")
            return state
        if self.restart_count >= self.max_restarts:
            logger.warning(
                f"Witness is {state} but restart limit reached ({self.restart_count}/{self.max_restarts})"
            )
            return state

        await self._recover(state)
        return state

    async def _recover(self, state: HealthState):
        self.restart_count += 1
        logger.warning(f"Witness is {state}, restarting (attempt {self.restart_count}/{self.max_restarts})")
        try:
            if state == HealthState.AGENT_HUNG:
                # A hung agent still counts as alive, so start() would refuse it
                try:
                    await asyncio.to_thread(self.witness.stop)
                except NotRunning:
                    pass
            await asyncio.to_thread(self.witness.start)
            logger.info("Witness restarted")
        except AlreadyRunning:
            logger.info("Witness recovered on its own before restart")
        except MuxError as e:
            logger.error(f"Witness restart failed: {e}")

    def reset(self):
        """Clear the restart counter (e.g. after an operator intervened)."""
        self.restart_count = 0
