"""
agent_sentry.security — Shared HTTP plumbing: logging, CORS, rate limiting, errors.

Used by the query API and by the CLI for log setup.
"""

import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# ─── Context var for request ID ────────────────────────────────────

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


# ─── Structured JSON logging ──────────────────────────────────────

class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = request_id_var.get("")
        return True


def setup_structured_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure JSON structured logging for the ``agent_sentry`` logger tree."""
    from pythonjsonlogger.json import JsonFormatter

    level = level or os.environ.get("SENTRY_LOG_LEVEL", "INFO")
    logger = logging.getLogger("agent_sentry")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        logger.addHandler(handler)

    return logger


logger = setup_structured_logging()


# ─── Rate Limiter (slowapi) ───────────────────────────────────────

limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Custom 429 handler."""
    return Response(
        content='{"detail":"Rate limit exceeded. Try again later."}',
        status_code=429,
        media_type="application/json",
        headers={"Retry-After": str(exc.detail.split()[-1]) if exc.detail else "60"},
    )


# ─── Request ID + Logging Middleware ──────────────────────────────

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Inject request ID, log requests, add security headers."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request_id_var.set(rid)

        t0 = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error", extra={"path": request.url.path})
            raise

        elapsed_ms = round((time.time() - t0) * 1000, 1)
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "",
            },
        )

        response.headers["X-Request-ID"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        return response


# ─── CORS configuration ──────────────────────────────────────────

def configure_cors(app, allowed_origins: Optional[list[str]] = None):
    """Add CORS middleware; the payment headers must be visible to browsers."""
    origins = allowed_origins
    if not origins:
        env_origins = os.environ.get("ALLOWED_ORIGINS", "")
        if env_origins:
            origins = [o.strip() for o in env_origins.split(",") if o.strip()]
        else:
            origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "X-Payment"],
        expose_headers=["X-Request-ID", "X-Payment-Required"],
    )


# ─── Global exception handler (never leak internals) ─────────────

async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, type(exc).__name__)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ─── Apply all security to a FastAPI app ──────────────────────────

def apply_security(app):
    """One-call setup: CORS, rate limiting, logging middleware, error handlers."""
    configure_cors(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    app.add_middleware(RequestLoggingMiddleware)
