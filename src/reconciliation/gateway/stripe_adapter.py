"""Stripe card adapter.

No mutual TLS: every call is authorized by the server-side secret key. First
payments surface through checkout-session retrieval; recurring billing only
through webhook events, which are verified with the endpoint secret.
"""

import json
import os

import stripe
import structlog

from reconciliation.gateway.port import (
    CardGateway,
    ChargeState,
    ChargeStatus,
    CredentialsError,
    GatewayError,
    WebhookPayloadError,
    WebhookSignatureError,
)

logger = structlog.get_logger(__name__)


class StripeCardGateway(CardGateway):
    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else os.environ.get("STRIPE_SECRET_KEY")
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else os.environ.get("STRIPE_WEBHOOK_SECRET")
        )

    def obtain_access_token(self) -> str:
        if not self.api_key:
            raise CredentialsError("STRIPE_SECRET_KEY is not configured", provider=self.provider)
        return self.api_key

    def query_charge_status(self, transaction_id: str) -> ChargeStatus:
        """Checkout-session lookup; `paid` means the first payment settled."""
        api_key = self.obtain_access_token()
        try:
            session = stripe.checkout.Session.retrieve(transaction_id, api_key=api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe session lookup failed", session_id=transaction_id, error=str(exc))
            raise GatewayError(f"Stripe session lookup failed: {exc}", provider=self.provider) from exc

        payment_status = getattr(session, "payment_status", None) or ""
        state = ChargeState.SETTLED if payment_status == "paid" else ChargeState.ACTIVE
        return ChargeStatus(
            state=state,
            transaction_id=transaction_id,
            provider_status=payment_status,
            payment_reference=getattr(session, "payment_intent", None),
            subscription_reference=getattr(session, "subscription", None),
        )

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        if self.webhook_secret:
            if not signature:
                raise WebhookSignatureError("Missing Stripe-Signature header", provider=self.provider)
            try:
                stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            except stripe.SignatureVerificationError as exc:
                raise WebhookSignatureError(f"Invalid Stripe signature: {exc}", provider=self.provider) from exc
            except ValueError as exc:
                raise WebhookSignatureError(f"Invalid Stripe payload: {exc}", provider=self.provider) from exc
        else:
            logger.warning("STRIPE_WEBHOOK_SECRET not set, accepting unverified webhook")

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookPayloadError("Stripe payload is not JSON", provider=self.provider) from exc
        if not isinstance(event, dict):
            raise WebhookPayloadError("Stripe payload is not an event object", provider=self.provider)
        return event
