"""Main entry point - wires backend, witness, monitor and HTTP server."""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn
import yaml

from .factory import backend_name, new_backend
from .nudge_lock import NudgeLockRegistry
from .server import create_app
from .witness import WitnessManager, witness_from_config
from .witness_monitor import WitnessMonitor

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENTMUX_CONFIG"


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


class AgentMuxApp:
    """Main application orchestrator."""

    def __init__(self, config: dict):
        self.config = config

        # Server config
        self.host = config.get("server", {}).get("host", "127.0.0.1")
        self.port = config.get("server", {}).get("port", 8421)

        # One registry for every nudge this process sends
        self.nudge_locks = NudgeLockRegistry()
        self.backend = new_backend(config, self.nudge_locks)
        logger.info(f"Using {backend_name()} session backend")

        self.witness: Optional[WitnessManager] = witness_from_config(config, backend=self.backend)
        self.monitor: Optional[WitnessMonitor] = None
        if self.witness:
            self.monitor = WitnessMonitor(self.witness, config=config)
        else:
            logger.warning("No witness rig configured; witness endpoints disabled")

        self.app = create_app(
            witness=self.witness,
            backend=self.backend,
            monitor=self.monitor,
            config=config,
        )

    async def start(self):
        """Start all components."""
        logger.info("Starting agentmux...")

        if not self.backend.is_available():
            logger.warning(f"{self.backend.binary} is not available; sessions will appear absent")

        monitor_enabled = self.config.get("monitor", {}).get("enabled", True)
        if self.monitor and monitor_enabled:
            await self.monitor.start()

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        server = uvicorn.Server(config)

        logger.info(f"Starting server on http://{self.host}:{self.port}")
        await server.serve()

    async def stop(self):
        """Stop all components."""
        logger.info("Stopping agentmux...")
        if self.monitor:
            await self.monitor.stop()
        logger.info("Shutdown complete")


def setup_signal_handlers(app: AgentMuxApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        asyncio.create_task(app.stop())
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main():
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(os.environ.get(CONFIG_ENV_VAR, "config.yaml"))

    app = AgentMuxApp(config)
    setup_signal_handlers(app)

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def run():
    """Entry point for console script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
