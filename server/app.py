"""
FastAPI server for the AI Concierge.

Endpoints:
- GET /test: Liveness check (plain text)
- GET /health: Health check
- GET /metrics: JSON metrics
- POST /twilio/incoming: Greeting + record TwiML for an inbound call
- POST /twilio/handle-recording: Transcribe, match, respond/connect, hang up
- GET /audio/<file>: Rendered speech for Twilio <Play>
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Type
import logging

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
import structlog
import uvicorn

from src.concierge.config import get_config, init_config, ConfigError
from src.concierge.context import ConciergeContext, create_context
from src.concierge.orchestrator import CallOrchestrator, CallOutcome, CallResponse
from src.concierge.schemas import RecordingWebhook, VoiceWebhook

# Initialize structured logging
def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set log level
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)

ROUTES = (
    "GET  /test",
    "GET  /health",
    "GET  /metrics",
    "POST /twilio/incoming",
    "POST /twilio/handle-recording",
    "GET  /audio/<file>",
)


# Callers who hang up before recording never reach the recording callback
ACTIVE_CALL_TTL_S = 300.0


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_calls: int = 0
    recordings_handled: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    fallback_speech: int = 0
    errors: int = 0
    active_call_ttl_s: float = ACTIVE_CALL_TTL_S
    _call_started: Dict[str, float] = field(default_factory=dict, repr=False)

    def call_started(self, call_sid: Optional[str], now: Optional[float] = None) -> None:
        self.total_calls += 1
        if call_sid:
            self._call_started[call_sid] = time.time() if now is None else now

    def call_finished(self, call_sid: Optional[str]) -> None:
        if call_sid:
            self._call_started.pop(call_sid, None)

    def active_calls(self, now: Optional[float] = None) -> int:
        """Calls greeted but not yet finished, ignoring ones older than the TTL."""
        cutoff = (time.time() if now is None else now) - self.active_call_ttl_s
        stale = [sid for sid, started in self._call_started.items() if started < cutoff]
        for sid in stale:
            del self._call_started[sid]
        return len(self._call_started)

    def record(self, response: CallResponse) -> None:
        key = response.outcome.value
        self.outcomes[key] = self.outcomes.get(key, 0) + 1
        if response.spoke_with_fallback:
            self.fallback_speech += 1
        if response.outcome in (CallOutcome.ERROR, CallOutcome.MISUNDERSTOOD):
            self.errors += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_calls": self.total_calls,
            "active_calls": self.active_calls(),
            "recordings_handled": self.recordings_handled,
            "outcomes": dict(self.outcomes),
            "fallback_speech": self.fallback_speech,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting AI Concierge server...")

    try:
        # Initialize and validate configuration
        config = init_config()
        configure_logging(config.log_level)

        Path(config.audio_dir).mkdir(parents=True, exist_ok=True)
        app.state.context = create_context(config)

        logger.info(
            "Server ready",
            port=config.port,
            public_host=config.public_host or "(request host)",
            routes=list(ROUTES),
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except SystemExit:
        raise
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)

    yield

    # Shutdown
    logger.info("Shutting down server...")
    context: Optional[ConciergeContext] = getattr(app.state, "context", None)
    if context is not None:
        await context.close()


# Create FastAPI app
app = FastAPI(
    title="AI Concierge",
    description="Answers the door phone, works out who the caller wants, and connects them",
    version="1.0.0",
    lifespan=lifespan,
)

app.mount(
    "/audio",
    StaticFiles(directory=get_config().audio_dir, check_dir=False),
    name="audio",
)


def get_orchestrator(request: Request) -> CallOrchestrator:
    """
    Build an orchestrator over the process-wide context.

    Creates the context on first use when the lifespan did not run, after the
    same validation startup performs. Missing credentials raise ConfigError.
    """
    context: Optional[ConciergeContext] = getattr(request.app.state, "context", None)
    if context is None:
        context = create_context(init_config())
        request.app.state.context = context
    return CallOrchestrator(context)


async def _form_payload(request: Request) -> Dict[str, Any]:
    """Twilio posts form-encoded webhooks; tolerate JSON for manual testing."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return dict(form)


def _webhook_fields(model: Type[VoiceWebhook], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a webhook payload.

    A payload that fails validation keeps only its string fields, so the call
    still gets TwiML (an apology when the RecordingSid is unusable).
    """
    try:
        return model.model_validate(payload).model_dump()
    except ValidationError as e:
        logger.warning(
            "Malformed webhook payload",
            schema=model.__name__,
            errors=[".".join(str(p) for p in err["loc"]) for err in e.errors()],
        )
        return {key: value for key, value in payload.items() if isinstance(value, str)}


def _twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


@app.get("/test")
async def test_route() -> PlainTextResponse:
    """Liveness check."""
    return PlainTextResponse("Server is running!")


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_calls": metrics.active_calls(),
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.post("/twilio/incoming")
async def incoming_call(
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> Response:
    """
    Inbound call webhook.

    Returns TwiML that greets the caller and records their answer.
    """
    payload = _webhook_fields(VoiceWebhook, await _form_payload(request))
    call_sid = payload.get("CallSid")

    metrics.call_started(call_sid)

    result = await orchestrator.handle_incoming(str(request.base_url), payload)
    metrics.record(result)

    logger.info("Sending greeting TwiML", call_sid=call_sid, fallback=result.spoke_with_fallback)
    return _twiml_response(result.twiml)


@app.post("/twilio/handle-recording")
async def handle_recording(
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> Response:
    """
    Recording callback webhook.

    Always returns TwiML ending in <Hangup/>, even when every step failed.
    """
    payload = _webhook_fields(RecordingWebhook, await _form_payload(request))
    call_sid = payload.get("CallSid")

    metrics.recordings_handled += 1
    try:
        result = await orchestrator.handle_recording(payload, str(request.base_url))
    finally:
        metrics.call_finished(call_sid)
    metrics.record(result)

    logger.info(
        "Sending response TwiML",
        call_sid=call_sid,
        outcome=result.outcome.value,
        fallback=result.spoke_with_fallback,
    )
    return _twiml_response(result.twiml)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info(
        "Starting server",
        port=config.port,
    )

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
