"""Pydantic request/response schemas for the Reconciliation API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Payment status check
# ---------------------------------------------------------------------------
class CheckPaymentRequest(BaseModel):
    type: Literal["order", "subscription"]
    id: str

    model_config = {
        "json_schema_extra": {
            "examples": [{"type": "order", "id": "4f6b8e7a-1c2d-4e5f-9a0b-1c2d3e4f5a6b"}]
        }
    }


class CheckPaymentResponse(BaseModel):
    status: str  # pending, confirmed, expired, no_transaction, declined, cancelled
    trace_id: str
    already_confirmed: bool | None = None
    updated: bool | None = None
    provider_status: str | None = None
    recurrence_status: str | None = None
    recurrence_authorized: bool | None = None
    rec_status: str | None = None
    rec_approved: bool | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class WebhookAck(BaseModel):
    received: bool = True
    processed: int = 0
    trace_id: str


# ---------------------------------------------------------------------------
# Delivery axis
# ---------------------------------------------------------------------------
class DeliveryStatusRequest(BaseModel):
    action: Literal["en_route", "delivered", "cancelled"]


class RescheduleRequest(BaseModel):
    delivery_date: date
    delivery_time_slot: Literal["morning", "afternoon"]


class StatusResponse(BaseModel):
    status: str
