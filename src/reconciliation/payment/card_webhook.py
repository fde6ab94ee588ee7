"""Card processor webhook processing — command and handler.

The route verifies and decodes the event; this handler dispatches on the
event type. Unknown event types are acknowledged without effect.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import String, Text
from protean.utils.globals import current_domain

from reconciliation.audit.audit_entry import AuditEntry
from reconciliation.audit.sink import RepositoryAuditSink
from reconciliation.domain import reconciliation
from reconciliation.order.order import Order
from reconciliation.payment.lookup import order_by_card_payment, subscription_by_card
from reconciliation.payment.reconciler import Reconciler
from reconciliation.settings.resolver import SettingsResolver
from reconciliation.subscription.subscription import Subscription

logger = structlog.get_logger(__name__)

PROVIDER = "card"


@reconciliation.command(part_of="AuditEntry")
class ProcessCardWebhook:
    """Apply a verified card processor event."""

    event_type = String(required=True, max_length=100)
    raw_body = Text(required=True)  # full event object as JSON
    trace_id = String(required=True, max_length=100)


def _get_or_none(aggregate_cls, identifier):
    if not identifier:
        return None
    try:
        return current_domain.repository_for(aggregate_cls).get(identifier)
    except ObjectNotFoundError:
        return None


@reconciliation.command_handler(part_of=AuditEntry)
class CardWebhookHandler:
    @handle(ProcessCardWebhook)
    def process_card_webhook(self, command):
        event = json.loads(command.raw_body)
        data = (event.get("data") or {}).get("object") or {}
        reconciler = Reconciler(SettingsResolver.load(), RepositoryAuditSink(), command.trace_id)

        handlers = {
            "checkout.session.completed": self._checkout_completed,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
            "payment_intent.payment_failed": self._payment_intent_failed,
            "customer.subscription.deleted": self._subscription_deleted,
        }
        handler = handlers.get(command.event_type)
        if handler is None:
            logger.info("Card event ignored", event_type=command.event_type, event_id=event.get("id"))
            return {"received": True, "processed": 0}

        logger.info("Card event received", event_type=command.event_type, event_id=event.get("id"))
        processed = handler(reconciler, data)
        return {"received": True, "processed": processed}

    def _unmatched(self, reconciler: Reconciler, event: str, details: dict) -> int:
        logger.warning("No order or subscription matches card event", card_event=event, **details)
        reconciler.audit.record(
            provider=PROVIDER,
            trace_id=reconciler.trace_id,
            event=f"{event}_unmatched",
            ok=False,
            error_message="No order or subscription matches the provider id",
            details=details,
        )
        return 0

    def _checkout_completed(self, reconciler: Reconciler, session: dict) -> int:
        metadata = session.get("metadata") or {}
        session_id = session.get("id")

        if metadata.get("type") == "order":
            order = _get_or_none(Order, metadata.get("order_id"))
            if order is None:
                return self._unmatched(reconciler, "checkout_completed", {"metadata": metadata})
            reconciler.confirm_order(
                order, PROVIDER, "webhook", card_payment_id=session.get("payment_intent") or session_id
            )
            return 1

        if metadata.get("type") == "subscription":
            subscription = _get_or_none(Subscription, metadata.get("subscription_id"))
            if subscription is None:
                return self._unmatched(reconciler, "checkout_completed", {"metadata": metadata})
            reconciler.activate_subscription(
                subscription,
                PROVIDER,
                "webhook",
                card_subscription_id=session.get("subscription") or session_id,
                charge_reference=session.get("invoice") or session_id,
            )
            return 1

        return self._unmatched(reconciler, "checkout_completed", {"session_id": session_id, "metadata": metadata})

    def _invoice_paid(self, reconciler: Reconciler, invoice: dict) -> int:
        card_subscription_id = invoice.get("subscription")
        if not card_subscription_id:
            logger.info("Paid invoice without subscription ignored", invoice_id=invoice.get("id"))
            return 0
        subscription = subscription_by_card(card_subscription_id)
        if subscription is None:
            return self._unmatched(reconciler, "invoice_paid", {"card_subscription_id": card_subscription_id})
        reconciler.refresh_card_subscription(subscription, PROVIDER, invoice.get("id"))
        return 1

    def _invoice_failed(self, reconciler: Reconciler, invoice: dict) -> int:
        card_subscription_id = invoice.get("subscription")
        if card_subscription_id:
            subscription = subscription_by_card(card_subscription_id)
            if subscription is None:
                return self._unmatched(
                    reconciler, "invoice_payment_failed", {"card_subscription_id": card_subscription_id}
                )
            reconciler.pause_subscription(subscription, PROVIDER, reason="invoice payment failed")
            return 1
        return self._decline_by_intent(reconciler, invoice.get("payment_intent"), "invoice_payment_failed")

    def _payment_intent_failed(self, reconciler: Reconciler, intent: dict) -> int:
        return self._decline_by_intent(reconciler, intent.get("id"), "payment_intent_failed")

    def _decline_by_intent(self, reconciler: Reconciler, payment_intent: str | None, event: str) -> int:
        order = order_by_card_payment(payment_intent)
        if order is None:
            return self._unmatched(reconciler, event, {"payment_intent": payment_intent})
        reconciler.decline_order(order, PROVIDER, reason="card payment failed")
        return 1

    def _subscription_deleted(self, reconciler: Reconciler, card_subscription: dict) -> int:
        subscription = subscription_by_card(card_subscription.get("id"))
        if subscription is None:
            return self._unmatched(
                reconciler, "subscription_deleted", {"card_subscription_id": card_subscription.get("id")}
            )
        reconciler.cancel_subscription(subscription, PROVIDER, reason="cancelled at card processor")
        return 1
