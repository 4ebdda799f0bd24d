"""FastAPI route definitions for the dental assistant API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from src.agent import TurnController
from src.api.schemas import ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from src.prompts import HTTP_ERROR_REPLY

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_controller(request: Request) -> TurnController:
    """Retrieve the turn controller from app state.

    The controller is built once during the FastAPI lifespan (see
    ``server.py``).
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return controller


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}},
)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the assistant and get its reply.

    The sessionId keeps conversation context across requests; it defaults
    to a shared ``"default"`` session.

    The turn (model calls + Firestore tools) is blocking, so it runs in a
    worker thread via ``asyncio.to_thread`` to keep the event loop free.
    """
    request_id = getattr(http_request.state, "request_id", "?")

    if request.message is None or not request.message.strip():
        logger.info("[%s] Rejected chat request without a message", request_id)
        return JSONResponse(
            status_code=400,
            content={"error": "The 'message' field is missing from the request."},
        )

    controller = _get_controller(http_request)
    session_id = request.session_id

    try:
        logger.info("[%s] User [%s]: %s", request_id, session_id, request.message)
        reply = await asyncio.to_thread(controller.handle, session_id, request.message)
        logger.info("[%s] Assistant [%s]: %s", request_id, session_id, reply)
        return ChatResponse(response=reply, session_id=session_id)

    except Exception:
        # Full traceback stays in the server log; the client gets a fixed text.
        logger.exception("[%s] Error processing chat request", request_id)
        return JSONResponse(status_code=500, content={"response": HTTP_ERROR_REPLY})
