"""FastAPI server exposing witness control and session health."""

import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .errors import (
    AlreadyRunning,
    BackendUnavailable,
    CapabilityUnavailable,
    LockTimeout,
    MuxError,
    NotRunning,
    SessionExists,
    SessionNotFound,
)
from .models import HealthState

logger = logging.getLogger(__name__)

# Checked in order; subclasses must come before their bases
ERROR_STATUS = (
    (AlreadyRunning, 409),
    (SessionExists, 409),
    (NotRunning, 404),
    (SessionNotFound, 404),
    (CapabilityUnavailable, 501),
    (BackendUnavailable, 503),
    (LockTimeout, 423),
)


def status_for_error(err: MuxError) -> int:
    for kind, status in ERROR_STATUS:
        if isinstance(err, kind):
            return status
    return 500


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log slow requests for debugging."""

    def __init__(self, app, config: Optional[dict] = None):
        super().__init__(app)
        self.config = config or {}

        server_timeouts = self.config.get("timeouts", {}).get("server", {})
        self.slow_threshold = server_timeouts.get("slow_request_threshold_seconds", 1.0)
        self.timing_threshold = server_timeouts.get("request_timing_threshold_seconds", 0.1)

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        if elapsed > self.slow_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} "
                f"took {elapsed:.2f}s"
            )
        elif elapsed > self.timing_threshold:
            logger.info(
                f"Request: {request.method} {request.url.path} "
                f"took {elapsed*1000:.0f}ms"
            )

        return response


class StartWitnessRequest(BaseModel):
    """Request to start the witness."""
    agent: Optional[str] = None
    env: list[str] = []  # KEY=VALUE overrides


class NudgeRequest(BaseModel):
    """Request to nudge the witness."""
    message: str


class SessionResponse(BaseModel):
    """Response containing session info."""
    name: str
    command: str = ""
    pid: Optional[int] = None
    alive: bool = True
    created_at: Optional[str] = None
    uptime_seconds: Optional[float] = None
    last_activity: Optional[str] = None
    idle_seconds: Optional[float] = None


class HealthResponse(BaseModel):
    """Health of one session."""
    session: str
    state: str
    healthy: bool


def create_app(
    witness=None,
    backend=None,
    monitor=None,
    config: Optional[dict] = None,
    lifespan=None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        witness: WitnessManager instance
        backend: SessionBackend instance (defaults to the witness's backend)
        monitor: WitnessMonitor instance
        config: Configuration dictionary
        lifespan: Optional ASGI lifespan context manager

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="agentmux",
        description="Supervise agent sessions hosted in tmux or amux",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config or {}
    app.add_middleware(RequestTimingMiddleware, config=config)

    app.state.witness = witness
    app.state.backend = backend or (witness.backend if witness else None)
    app.state.monitor = monitor

    @app.exception_handler(MuxError)
    async def mux_error_handler(request: Request, exc: MuxError):
        status = status_for_error(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})

    def require_witness():
        if not app.state.witness:
            raise HTTPException(status_code=503, detail="Witness not configured")
        return app.state.witness

    def require_backend():
        if not app.state.backend:
            raise HTTPException(status_code=503, detail="Session backend not configured")
        return app.state.backend

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "agentmux"}

    @app.get("/health")
    def health():
        """Service health, including whether the multiplexer is reachable."""
        backend = app.state.backend
        return {
            "status": "healthy",
            "backend": getattr(backend, "binary", None),
            "backend_available": backend.is_available() if backend else False,
        }

    @app.get("/witness", response_model=SessionResponse)
    def witness_status():
        """Witness session details."""
        info = require_witness().status()
        return SessionResponse(**info.to_dict())

    @app.get("/witness/health", response_model=HealthResponse)
    def witness_health(max_inactivity: float = 0):
        """Witness health; max_inactivity > 0 enables hung detection."""
        witness = require_witness()
        state = witness.is_healthy(max_inactivity)
        return HealthResponse(session=witness.session_name(), state=state.value, healthy=state == HealthState.SESSION_HEALTHY)

    @app.post("/witness/start")
    def witness_start(request: Optional[StartWitnessRequest] = None):
        """Start the witness (replaces a zombie session)."""
        witness = require_witness()
        request = request or StartWitnessRequest()
        witness.start(agent_override=request.agent, env_overrides=request.env)
        return {"status": "started", "session": witness.session_name()}

    @app.post("/witness/stop")
    def witness_stop():
        """Stop the witness."""
        witness = require_witness()
        witness.stop()
        return {"status": "stopped", "session": witness.session_name()}

    @app.post("/witness/nudge")
    def witness_nudge(request: NudgeRequest):
        """Send a message to the witness."""
        witness = require_witness()
        witness.nudge(request.message)
        return {"status": "delivered", "session": witness.session_name()}

    @app.get("/witness/monitor")
    async def witness_monitor():
        """Patrol loop state."""
        monitor = app.state.monitor
        if not monitor:
            raise HTTPException(status_code=503, detail="Witness monitor not configured")
        return {
            "running": monitor.is_running,
            "restart_count": monitor.restart_count,
            "max_restarts": monitor.max_restarts,
            "last_state": monitor.last_state.value if monitor.last_state else None,
            "last_check": monitor.last_check.isoformat() if monitor.last_check else None,
        }

    @app.get("/sessions")
    def list_sessions():
        """List all multiplexer sessions."""
        sessions = require_backend().list_session_details()
        return {"sessions": [SessionResponse(**s.to_dict()) for s in sessions]}

    @app.get("/sessions/{name}", response_model=SessionResponse)
    def get_session(name: str):
        """Get session details."""
        backend = require_backend()
        if not backend.has_session(name):
            raise HTTPException(status_code=404, detail="Session not found")
        return SessionResponse(**backend.get_session_info(name).to_dict())

    @app.get("/sessions/{name}/health", response_model=HealthResponse)
    def session_health(name: str, max_inactivity: float = 0):
        """Health classification of any session."""
        state = require_backend().check_session_health(name, max_inactivity)
        return HealthResponse(session=name, state=state.value, healthy=state == HealthState.SESSION_HEALTHY)

    @app.get("/sessions/{name}/output")
    def session_output(name: str, lines: int = 50):
        """Recent pane output."""
        backend = require_backend()
        if not backend.has_session(name):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"session": name, "output": backend.capture_pane(name, lines)}

    return app
