"""Outbox items and the webhook envelope."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

EventType = Literal["application_submitted"]
OutboxStatus = Literal["pending", "sent", "failed"]


class OutboxItem(BaseModel):
    """Durable record of one domain event awaiting webhook delivery."""

    id: str
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    status: OutboxStatus = "pending"
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: datetime
    dedupe_key: str
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class WebhookEnvelope(BaseModel):
    """Body POSTed to the webhook target."""

    event_id: str
    event_type: EventType
    occurred_at: str
    data: dict[str, Any]


__all__ = ["EventType", "OutboxStatus", "OutboxItem", "WebhookEnvelope"]
