"""FastAPI server for the NEPQ clinic secretary.

Run with:
    uvicorn secretary.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import re
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from secretary.api.routes import router, webhook_router
from secretary.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from secretary.inbound import create_inbound_processor
from secretary.services.metrics import metrics
from secretary.services.store import StoreUnavailableError

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: wire the inbound processor once and store it in app state.

    Shutdown cancels the budget and maintenance timers and closes the
    store and HTTP clients.
    """
    logger.info("Starting secretary…")
    processor = create_inbound_processor()
    await processor.start()
    application.state.processor = processor
    logger.info("Secretary ready (store backend: %s).", processor.sessions.store.backend_name)
    yield
    await processor.aclose()
    application.state.processor = None
    metrics.close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="NEPQ Clinic Secretary",
    description=(
        "WhatsApp secretary for medical offices — NEPQ discovery, objection "
        "handling, scheduling and emergency triage."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (admin panel) ──────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Patient phone numbers appear in admin paths; keep only the last digits.
_PHONE_IN_PATH = re.compile(r"\d{5,}(\d{4})")


def redact_path(path: str) -> str:
    return _PHONE_IN_PATH.sub(r"***\1", path)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, redact_path(request.url.path),
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    """Both session backends are down: admin calls get a 503, never a 500."""
    request_id = getattr(request.state, "request_id", "?")
    logger.critical("[%s] Session store unavailable: %s", request_id, exc)
    return JSONResponse(
        status_code=503, content={"detail": "Temporarily unavailable. Please try again."},
    )


# ── Register routes ──────────────────────────────────────────────────
app.include_router(webhook_router)
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "NEPQ Clinic Secretary",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "webhook": "/webhook",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting secretary API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "secretary.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
