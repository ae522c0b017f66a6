"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """One message on the synchronous test channel."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    identity: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Stable identity of the sender (e.g. the phone number)",
    )
    bot_instance_id: str | None = Field(
        default=None,
        max_length=100,
        description="Clinic bot id; the default clinic is used when omitted",
    )


class ChatResponse(BaseModel):
    reply: str = Field(..., description="The secretary's reply")
    identity: str


class WebhookAck(BaseModel):
    status: str = "received"


class AutomationRequest(BaseModel):
    is_ai_active: bool


class AutomationResponse(BaseModel):
    identity: str
    is_ai_active: bool


class ManualMessageRequest(BaseModel):
    """Operator-typed message; sending it pauses automated replies."""

    identity: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1, max_length=4096)


class ManualMessageResponse(BaseModel):
    identity: str
    delivered: bool
    is_ai_active: bool = False


class ResetResponse(BaseModel):
    identity: str
    stage: str


class StatsResponse(BaseModel):
    sessions: dict[str, Any]
    budget: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "nepq-secretary"
    store_backend: str | None = None
    degraded: bool | None = None
