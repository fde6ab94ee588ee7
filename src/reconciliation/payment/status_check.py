"""Check payment status: the polled side of reconciliation.

The UI polls this every few seconds while a payment is outstanding. Each call
asks the provider about the stored charge and feeds the answer to the
Reconciler, so polling and webhooks converge on the same state.
"""

from enum import Enum

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from reconciliation.audit.audit_entry import AuditEntry
from reconciliation.audit.sink import RepositoryAuditSink
from reconciliation.domain import reconciliation
from reconciliation.gateway import get_card_gateway, get_pix_gateway
from reconciliation.gateway.port import AuthorizationState, ChargeState, GatewayError
from reconciliation.order.order import Order
from reconciliation.payment.reconciler import Reconciler
from reconciliation.scheduling.status import PaymentMethod
from reconciliation.settings.resolver import SettingsResolver
from reconciliation.subscription.subscription import Subscription

logger = structlog.get_logger(__name__)


class CheckTarget(Enum):
    ORDER = "order"
    SUBSCRIPTION = "subscription"


class CheckResult(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    NO_TRANSACTION = "no_transaction"
    DECLINED = "declined"
    CANCELLED = "cancelled"


@reconciliation.command(part_of="AuditEntry")
class CheckPaymentStatus:
    """Poll the provider for an order's or subscription's outstanding charge."""

    target_type = String(required=True, choices=CheckTarget)
    target_id = Identifier(required=True)
    trace_id = String(required=True, max_length=100)


def _gateway_for(payment_method: str):
    if payment_method == PaymentMethod.CARD.value:
        return get_card_gateway()
    return get_pix_gateway()


def _record_already_confirmed(reconciler: Reconciler, provider: str, entity_type: str, entity_id: str) -> None:
    reconciler.audit.record(
        provider=provider,
        trace_id=reconciler.trace_id,
        event="payment_already_confirmed",
        entity_type=entity_type,
        entity_id=entity_id,
    )


@reconciliation.command_handler(part_of=AuditEntry)
class PaymentStatusHandler:
    @handle(CheckPaymentStatus)
    def check_payment_status(self, command):
        settings = SettingsResolver.load()
        reconciler = Reconciler(settings, RepositoryAuditSink(), command.trace_id)

        if command.target_type == CheckTarget.ORDER.value:
            result = self._check_order(reconciler, str(command.target_id))
        else:
            result = self._check_subscription(reconciler, str(command.target_id))
        result["trace_id"] = command.trace_id
        return result

    def _check_order(self, reconciler: Reconciler, order_id: str) -> dict:
        order = current_domain.repository_for(Order).get(order_id)

        if order.is_confirmed:
            _record_already_confirmed(reconciler, order.payment_method, "order", order_id)
            return {"status": CheckResult.CONFIRMED.value, "already_confirmed": True}
        if not order.is_pending:
            return {"status": order.payment_status}

        gateway = _gateway_for(order.payment_method)
        reference = order.card_payment_id if order.payment_method == PaymentMethod.CARD.value else order.pix_transaction_id
        if not reference:
            return {"status": CheckResult.NO_TRANSACTION.value, "message": "No charge issued for this order"}

        charge = gateway.query_charge_status(reference)
        if charge.state is ChargeState.SETTLED:
            outcome = reconciler.confirm_order(order, gateway.provider, "poll", card_payment_id=charge.payment_reference)
            return {
                "status": CheckResult.CONFIRMED.value,
                "already_confirmed": outcome.already,
                "updated": outcome.changed,
                "provider_status": charge.provider_status,
            }

        status = CheckResult.EXPIRED if charge.state.is_removed else CheckResult.PENDING
        reconciler.audit.record(
            provider=gateway.provider,
            trace_id=reconciler.trace_id,
            event=f"charge_{status.value}",
            entity_type="order",
            entity_id=order_id,
            details={"transaction_id": reference, "provider_status": charge.provider_status},
        )
        return {"status": status.value, "provider_status": charge.provider_status}

    def _check_subscription(self, reconciler: Reconciler, subscription_id: str) -> dict:
        subscription = current_domain.repository_for(Subscription).get(subscription_id)

        if subscription.is_active:
            _record_already_confirmed(reconciler, subscription.payment_method, "subscription", subscription_id)
            return {
                "status": CheckResult.CONFIRMED.value,
                "already_confirmed": True,
                "recurrence_status": subscription.recurrence_status,
                "recurrence_authorized": subscription.recurrence_authorized,
            }
        if subscription.is_cancelled:
            return {"status": CheckResult.CANCELLED.value}

        gateway = _gateway_for(subscription.payment_method)
        if subscription.payment_method == PaymentMethod.CARD.value:
            reference = subscription.card_session_id or subscription.card_subscription_id
        else:
            reference = subscription.pix_transaction_id
        if not reference:
            return {"status": CheckResult.NO_TRANSACTION.value, "message": "No charge issued for this subscription"}

        charge = gateway.query_charge_status(reference)
        authorization = None
        if subscription.pix_authorization_id and subscription.payment_method != PaymentMethod.CARD.value:
            try:
                authorization = gateway.query_authorization_status(subscription.pix_authorization_id)
            except GatewayError as exc:
                # Activation proceeds with the authorization state unknown
                logger.warning(
                    "Recurring authorization lookup failed",
                    subscription_id=subscription_id,
                    error=str(exc),
                )
                reconciler.audit.record(
                    provider=gateway.provider,
                    trace_id=reconciler.trace_id,
                    event="authorization_lookup_failed",
                    ok=False,
                    error_message=str(exc),
                    entity_type="subscription",
                    entity_id=subscription_id,
                )

        rec_details = {}
        if authorization is not None:
            rec_details = {
                "rec_status": authorization.provider_status,
                "rec_approved": authorization.state is AuthorizationState.APPROVED,
            }

        if charge.state is ChargeState.SETTLED:
            outcome = reconciler.activate_subscription(
                subscription,
                gateway.provider,
                "poll",
                authorization=authorization,
                card_subscription_id=charge.subscription_reference,
                charge_reference=reference,
            )
            return {
                "status": CheckResult.CONFIRMED.value,
                "already_confirmed": outcome.already,
                "updated": outcome.changed,
                "provider_status": charge.provider_status,
                "recurrence_status": subscription.recurrence_status,
                "recurrence_authorized": subscription.recurrence_authorized,
                **rec_details,
            }

        status = CheckResult.EXPIRED if charge.state.is_removed else CheckResult.PENDING
        reconciler.audit.record(
            provider=gateway.provider,
            trace_id=reconciler.trace_id,
            event=f"charge_{status.value}",
            entity_type="subscription",
            entity_id=subscription_id,
            details={"transaction_id": reference, "provider_status": charge.provider_status, **rec_details},
        )
        return {"status": status.value, "provider_status": charge.provider_status, **rec_details}
