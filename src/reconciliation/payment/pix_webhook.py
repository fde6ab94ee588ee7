"""Instant-payment webhook processing — command and handler.

A single notification may settle first charges, change recurring
authorizations and report recurring-charge results at once. Every entry is
routed to the Reconciler; entries that match no order or subscription are
audited as failures and acknowledged so the provider stops retrying.
"""

import json

import structlog
from protean import handle
from protean.fields import String, Text

from reconciliation.audit.audit_entry import AuditEntry
from reconciliation.audit.sink import RepositoryAuditSink
from reconciliation.domain import reconciliation
from reconciliation.gateway import get_pix_gateway
from reconciliation.gateway.efi_webhook import (
    AuthorizationNotice,
    ChargeNotice,
    RecurringChargeNotice,
    parse_notification,
)
from reconciliation.gateway.port import ChargeState
from reconciliation.payment.lookup import (
    order_by_pix_transaction,
    subscription_by_authorization,
    subscription_by_pix_transaction,
)
from reconciliation.payment.reconciler import Reconciler
from reconciliation.settings.resolver import SettingsResolver

logger = structlog.get_logger(__name__)

PROVIDER = "pix"


@reconciliation.command(part_of="AuditEntry")
class ProcessPixWebhook:
    """Apply an instant-payment provider notification."""

    raw_body = Text(required=True)  # JSON body as received
    trace_id = String(required=True, max_length=100)


@reconciliation.command_handler(part_of=AuditEntry)
class PixWebhookHandler:
    @handle(ProcessPixWebhook)
    def process_pix_webhook(self, command):
        notification = parse_notification(json.loads(command.raw_body))
        if notification.is_empty:
            logger.info("Instant-payment webhook carried nothing to apply", trace_id=command.trace_id)
            return {"received": True, "processed": 0}

        reconciler = Reconciler(
            SettingsResolver.load(),
            RepositoryAuditSink(),
            command.trace_id,
            pix_gateway=get_pix_gateway(),
        )

        processed = 0
        for notice in notification.charges:
            processed += self._apply_charge(reconciler, notice)
        for notice in notification.authorizations:
            processed += self._apply_authorization(reconciler, notice)
        for notice in notification.recurring_charges:
            processed += self._apply_recurring_charge(reconciler, notice)

        logger.info(
            "Instant-payment webhook applied",
            trace_id=command.trace_id,
            charges=len(notification.charges),
            authorizations=len(notification.authorizations),
            recurring_charges=len(notification.recurring_charges),
            processed=processed,
        )
        return {"received": True, "processed": processed}

    def _unmatched(self, reconciler: Reconciler, kind: str, details: dict) -> int:
        logger.warning("No order or subscription matches notification", kind=kind, **details)
        reconciler.audit.record(
            provider=PROVIDER,
            trace_id=reconciler.trace_id,
            event=f"{kind}_unmatched",
            ok=False,
            error_message="No order or subscription matches the provider id",
            details=details,
        )
        return 0

    def _apply_charge(self, reconciler: Reconciler, notice: ChargeNotice) -> int:
        order = order_by_pix_transaction(notice.transaction_id)
        target = order or subscription_by_pix_transaction(notice.transaction_id)
        if target is None:
            return self._unmatched(reconciler, "charge", {"transaction_id": notice.transaction_id})

        if notice.state is None:
            logger.warning(
                "Unknown charge status",
                transaction_id=notice.transaction_id,
                provider_status=notice.provider_status,
            )
            reconciler.audit.record(
                provider=PROVIDER,
                trace_id=reconciler.trace_id,
                event="charge_status_unknown",
                ok=False,
                error_message=f"Unknown charge status '{notice.provider_status}'",
                entity_type="order" if order is not None else "subscription",
                entity_id=str(target.id),
            )
            return 0

        if notice.state.is_removed:
            reconciler.reissue_charge(target, notice.provider_status)
        elif notice.state is ChargeState.SETTLED:
            if order is not None:
                reconciler.confirm_order(order, PROVIDER, "webhook")
            else:
                reconciler.activate_subscription(
                    target, PROVIDER, "webhook", charge_reference=notice.transaction_id
                )
        else:
            logger.info("Charge still active", transaction_id=notice.transaction_id)
            return 0
        return 1

    def _apply_authorization(self, reconciler: Reconciler, notice: AuthorizationNotice) -> int:
        subscription = subscription_by_authorization(notice.authorization_id)
        if subscription is None:
            return self._unmatched(reconciler, "authorization", {"authorization_id": notice.authorization_id})

        if notice.state is None:
            logger.warning(
                "Unknown recurring authorization status",
                authorization_id=notice.authorization_id,
                provider_status=notice.provider_status,
            )
            reconciler.audit.record(
                provider=PROVIDER,
                trace_id=reconciler.trace_id,
                event="recurrence_authorization_unknown",
                ok=False,
                error_message=f"Unknown authorization status '{notice.provider_status}'",
                entity_type="subscription",
                entity_id=str(subscription.id),
            )
            return 0

        reconciler.apply_authorization(subscription, notice.state, PROVIDER)
        return 1

    def _apply_recurring_charge(self, reconciler: Reconciler, notice: RecurringChargeNotice) -> int:
        subscription = None
        if notice.authorization_id:
            subscription = subscription_by_authorization(notice.authorization_id)
        if subscription is None and notice.transaction_id:
            subscription = subscription_by_pix_transaction(notice.transaction_id)
        if subscription is None:
            return self._unmatched(
                reconciler,
                "recurring_charge",
                {"authorization_id": notice.authorization_id, "transaction_id": notice.transaction_id},
            )

        if notice.settled:
            reconciler.settle_recurring_charge(subscription, notice.transaction_id, PROVIDER)
        elif notice.failed:
            reconciler.fail_recurring_charge(
                subscription, notice.transaction_id, notice.provider_status, PROVIDER
            )
        else:
            logger.info(
                "Recurring charge in progress",
                subscription_id=str(subscription.id),
                provider_status=notice.provider_status,
            )
            return 0
        return 1
