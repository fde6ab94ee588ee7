"""FastAPI routes for the Reconciliation domain — payment checks, webhooks, deliveries."""

import json
import uuid
from datetime import date

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from reconciliation.api.ratelimit import enforce_rate_limit
from reconciliation.api.schemas import (
    CheckPaymentRequest,
    CheckPaymentResponse,
    DeliveryStatusRequest,
    RescheduleRequest,
    StatusResponse,
    WebhookAck,
)
from reconciliation.gateway import get_card_gateway
from reconciliation.gateway.efi_webhook import parse_notification
from reconciliation.gateway.port import GatewayError, WebhookPayloadError, WebhookSignatureError
from reconciliation.order.delivery import ChangeOrderDeliveryStatus, RescheduleOrderDelivery
from reconciliation.payment.boundary import process_with_audit
from reconciliation.payment.card_webhook import ProcessCardWebhook
from reconciliation.payment.pix_webhook import ProcessPixWebhook
from reconciliation.payment.status_check import CheckPaymentStatus
from reconciliation.scheduling.agenda import delivery_agenda
from reconciliation.settings.resolver import SettingsResolver
from reconciliation.subscription.delivery_status import ChangeSubscriptionDeliveryStatus

logger = structlog.get_logger(__name__)


def trace_id_header(x_trace_id: str | None = Header(default=None)) -> str:
    """Caller-supplied X-Trace-Id, or a fresh one."""
    return x_trace_id or str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post(
    "/check",
    response_model=CheckPaymentResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_rate_limit)],
)
def check_payment(
    body: CheckPaymentRequest,
    trace_id: str = Depends(trace_id_header),
) -> CheckPaymentResponse:
    """Ask the provider about an order's or subscription's charge and reconcile."""
    command = CheckPaymentStatus(target_type=body.type, target_id=body.id, trace_id=trace_id)
    try:
        result = process_with_audit(
            command,
            provider="reconciliation",
            event="check_payment_status",
            trace_id=trace_id,
            entity_type=body.type,
            entity_id=body.id,
        )
    except GatewayError as exc:
        raise HTTPException(status_code=500, detail="could not process payment") from exc
    return CheckPaymentResponse(**result)


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/pix", response_model=WebhookAck)
async def pix_webhook(request: Request, trace_id: str = Depends(trace_id_header)) -> WebhookAck:
    """Receive an instant-payment notification (pix, rec and cobr arrays)."""
    raw = await request.body()
    try:
        parse_notification(json.loads(raw))
    except (ValueError, WebhookPayloadError) as exc:
        logger.warning("Malformed instant-payment webhook", trace_id=trace_id, error=str(exc))
        raise HTTPException(status_code=400, detail="Malformed webhook payload") from exc

    command = ProcessPixWebhook(raw_body=raw.decode("utf-8"), trace_id=trace_id)
    try:
        result = await run_in_threadpool(
            process_with_audit, command, provider="pix", event="pix_webhook", trace_id=trace_id
        )
    except GatewayError as exc:
        raise HTTPException(status_code=500, detail="could not process payment") from exc
    return WebhookAck(processed=result["processed"], trace_id=trace_id)


@webhook_router.post("/card", response_model=WebhookAck)
async def card_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    trace_id: str = Depends(trace_id_header),
) -> WebhookAck:
    """Receive a card processor event, verified with the endpoint secret."""
    raw = await request.body()
    try:
        event = get_card_gateway().construct_event(raw, stripe_signature)
    except (WebhookSignatureError, WebhookPayloadError) as exc:
        logger.warning("Rejected card webhook", trace_id=trace_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    event_type = event.get("type")
    if not event_type:
        raise HTTPException(status_code=400, detail="Card event carries no type")

    command = ProcessCardWebhook(event_type=event_type, raw_body=json.dumps(event), trace_id=trace_id)
    try:
        result = await run_in_threadpool(
            process_with_audit, command, provider="card", event=event_type, trace_id=trace_id
        )
    except GatewayError as exc:
        raise HTTPException(status_code=500, detail="could not process payment") from exc
    return WebhookAck(processed=result["processed"], trace_id=trace_id)


# ---------------------------------------------------------------------------
# Delivery Router
# ---------------------------------------------------------------------------
delivery_router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@delivery_router.get("/{day}")
def get_delivery_agenda(day: date) -> dict:
    """Paid orders and subscription deliveries scheduled on `day`, by time window."""
    return delivery_agenda(day, SettingsResolver.load())


@delivery_router.post("/orders/{order_id}/status", response_model=StatusResponse)
def change_order_delivery_status(order_id: str, body: DeliveryStatusRequest) -> StatusResponse:
    command = ChangeOrderDeliveryStatus(order_id=order_id, action=body.action)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status=body.action)


@delivery_router.put("/orders/{order_id}/schedule", response_model=StatusResponse)
def reschedule_order_delivery(order_id: str, body: RescheduleRequest) -> StatusResponse:
    """Manually move an order to another date and window."""
    command = RescheduleOrderDelivery(
        order_id=order_id,
        delivery_date=body.delivery_date,
        delivery_time_slot=body.delivery_time_slot,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="rescheduled")


@delivery_router.post("/subscriptions/{delivery_id}/status", response_model=StatusResponse)
def change_subscription_delivery_status(delivery_id: str, body: DeliveryStatusRequest) -> StatusResponse:
    command = ChangeSubscriptionDeliveryStatus(delivery_id=delivery_id, action=body.action)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status=body.action)
