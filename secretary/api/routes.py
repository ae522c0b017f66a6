"""FastAPI route definitions: WhatsApp webhook and the admin / test API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from secretary.api.schemas import (
    AutomationRequest,
    AutomationResponse,
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ManualMessageRequest,
    ManualMessageResponse,
    ResetResponse,
    StatsResponse,
    WebhookAck,
)
from secretary.config import VERIFY_TOKEN
from secretary.inbound import InboundProcessor, RateLimitedError, parse_webhook_payload
from secretary.services.store import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


def _get_processor(request: Request) -> InboundProcessor:
    """Retrieve the inbound processor from app state.

    It is created once during the FastAPI lifespan (see ``server.py``).
    """
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(
            status_code=503,
            detail="The secretary is still starting up. Please try again in a moment.",
        )
    return processor


# ── Webhook ──────────────────────────────────────────────────────────


@webhook_router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge for the right token."""
    if mode == "subscribe" and VERIFY_TOKEN and token == VERIFY_TOKEN:
        logger.info("Webhook verified")
        return challenge
    logger.warning("Webhook verification failed (mode=%s)", mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@webhook_router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(http_request: Request, background_tasks: BackgroundTasks):
    """Acknowledge immediately; each message is processed in the background."""
    processor = _get_processor(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        payload = await http_request.json()
    except ValueError:
        logger.warning("[%s] Webhook body is not JSON, ignoring", request_id)
        return WebhookAck()

    messages = parse_webhook_payload(payload if isinstance(payload, dict) else {})
    for message in messages:
        background_tasks.add_task(processor.handle_webhook_message, message)
    logger.debug("[%s] Webhook queued %d message(s)", request_id, len(messages))
    return WebhookAck()


# ── API ──────────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint."""
    processor = getattr(http_request.app.state, "processor", None)
    if processor is None:
        return HealthResponse()
    store = processor.sessions.store
    return HealthResponse(store_backend=store.backend_name, degraded=store.degraded)


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Run one turn synchronously and return the reply (test channel)."""
    processor = _get_processor(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        reply = await processor.converse(
            request.identity, request.message, bot_instance_id=request.bot_instance_id,
        )
    except RateLimitedError as e:
        raise HTTPException(
            status_code=429, detail="Too many messages. Please wait a moment.",
        ) from e
    except StoreUnavailableError as e:
        logger.critical("[%s] Session store unavailable", request_id)
        raise HTTPException(
            status_code=503, detail="Temporarily unavailable. Please try again.",
        ) from e
    except Exception as e:
        # Full traceback stays in the logs; the client gets a generic message
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500, detail="An internal error occurred. Please try again.",
        ) from e

    return ChatResponse(reply=reply, identity=request.identity)


@router.patch("/patients/{identity}/automation", response_model=AutomationResponse)
async def set_automation(identity: str, request: AutomationRequest, http_request: Request):
    processor = _get_processor(http_request)
    await processor.automation.set_active(identity, request.is_ai_active)
    return AutomationResponse(identity=identity, is_ai_active=request.is_ai_active)


@router.post("/messages/send", response_model=ManualMessageResponse)
async def send_manual_message(request: ManualMessageRequest, http_request: Request):
    """Send an operator message; automated replies pause for that identity."""
    processor = _get_processor(http_request)
    delivered = await processor.send_manual(request.identity, request.text)
    return ManualMessageResponse(identity=request.identity, delivered=delivered)


@router.delete("/conversations/{identity}", response_model=ResetResponse)
async def reset_conversation(identity: str, http_request: Request):
    processor = _get_processor(http_request)
    session = await processor.sessions.reset_session(identity)
    return ResetResponse(identity=identity, stage=session.stage.value)


@router.get("/stats", response_model=StatsResponse)
async def stats(http_request: Request):
    processor = _get_processor(http_request)
    return StatsResponse(**await processor.stats())
