"""
FastAPI server for the Voice Script Assistant.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- GET /state: Session, recorder and pipeline state
- POST /auth/sign-in, /auth/sign-up, /auth/sign-out
- POST /recording/start, /recording/stop
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog
import uvicorn

from src.assistant.config import get_config, init_config, ConfigError
from src.assistant.errors import (
    MicrophonePermissionError,
    PipelineBusyError,
    RecorderStateError,
    SessionRequiredError,
)


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


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_requests: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_requests": self.total_requests,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


class Credentials(BaseModel):
    email: str
    password: str


def _assistant(request: Request) -> Any:
    return request.app.state.assistant


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Voice Script Assistant server...")

    owns_assistant = app.state.assistant is None
    if owns_assistant:
        try:
            config = init_config()
            configure_logging(config.log_level)

            from src.assistant.app import create_assistant
            app.state.assistant = create_assistant(config)

            logger.info("Server ready", port=config.port, storage_backend=config.storage_backend)

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
    if owns_assistant and app.state.assistant is not None:
        try:
            await app.state.assistant.close()
        except Exception as e:
            logger.error("Error closing assistant", error=str(e))


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(assistant: Optional[Any] = None) -> FastAPI:
    app = FastAPI(
        title="Voice Script Assistant",
        description="Records speech, matches it to a canned script and plays the spoken answer",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.assistant = assistant

    @app.middleware("http")
    async def count_requests(request: Request, call_next):
        metrics.total_requests += 1
        return await call_next(request)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(
            content={
                "status": "healthy",
                "timestamp": time.time(),
            }
        )

    @app.get("/metrics")
    async def get_metrics(request: Request) -> JSONResponse:
        """Metrics endpoint."""
        data = metrics.to_dict()
        assistant = _assistant(request)
        if assistant is not None:
            data["assistant"] = assistant.metrics()
        return JSONResponse(content=data)

    @app.get("/state")
    async def get_state(request: Request) -> JSONResponse:
        return JSONResponse(content=_assistant(request).snapshot())

    @app.post("/auth/sign-in")
    async def sign_in(credentials: Credentials, request: Request) -> JSONResponse:
        ok = await _assistant(request).sign_in(credentials.email, credentials.password)
        return JSONResponse(status_code=200 if ok else 401, content={"signed_in": ok})

    @app.post("/auth/sign-up")
    async def sign_up(credentials: Credentials, request: Request) -> JSONResponse:
        ok = await _assistant(request).sign_up(credentials.email, credentials.password)
        return JSONResponse(status_code=200 if ok else 400, content={"signed_in": ok})

    @app.post("/auth/sign-out")
    async def sign_out(request: Request) -> JSONResponse:
        await _assistant(request).sign_out()
        return JSONResponse(content={"signed_in": False})

    @app.post("/recording/start")
    async def start_recording(request: Request) -> JSONResponse:
        assistant = _assistant(request)
        try:
            await assistant.start_recording()
        except SessionRequiredError as e:
            return _error(401, str(e))
        except MicrophonePermissionError as e:
            return _error(403, str(e))
        except (PipelineBusyError, RecorderStateError) as e:
            return _error(409, str(e))

        return JSONResponse(content={"recorder_state": "recording"})

    @app.post("/recording/stop")
    async def stop_recording(request: Request) -> JSONResponse:
        audio = await _assistant(request).stop_recording()
        if audio is None:
            return JSONResponse(content={"stopped": False})
        return JSONResponse(
            content={
                "stopped": True,
                "duration_ms": round(audio.duration_ms, 1),
                "chunks": audio.chunk_count,
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            error=str(exc),
        )
        metrics.errors += 1

        return _error(500, "Internal server error")

    return app


# Create FastAPI app
app = create_app()


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
        host="127.0.0.1",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
