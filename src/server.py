"""FastAPI server for the Sonrisas dental assistant.

Run with:
    uvicorn src.server:app --reload --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.agent import TurnController, create_dental_agent
from src.api.routes import router
from src.config import (
    CORS_ORIGINS,
    MAX_SESSIONS,
    MAX_TOOL_ROUNDS,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_TTL_SECONDS,
)
from src.services.appointments import get_appointment_store
from src.services.sessions import ConversationStore

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: connect Firestore, compile the agent, create the store.

    Firestore is connected eagerly so that bad credentials stop the
    server here instead of failing on the first booking.
    """
    logger.info("Connecting to Firestore…")
    get_appointment_store()

    logger.info("Compiling LangGraph agent…")
    agent = create_dental_agent(max_tool_rounds=MAX_TOOL_ROUNDS)
    sessions = ConversationStore(max_sessions=MAX_SESSIONS, ttl_seconds=SESSION_TTL_SECONDS)
    application.state.controller = TurnController(
        agent, sessions, max_tool_rounds=MAX_TOOL_ROUNDS,
    )
    logger.info("Assistant ready.")
    yield
    application.state.controller = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Sonrisas Dental Assistant",
    description=(
        "Virtual receptionist for Clínica Dental Sonrisas: book, look up, "
        "reschedule and cancel appointments."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the Vite frontend) ─────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Sonrisas Dental Assistant",
        "status": "online",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Sonrisas Dental API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
