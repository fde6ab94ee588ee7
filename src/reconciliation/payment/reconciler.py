"""Reconciliation Orchestrator — the single place payment events change state.

Poll results and webhook notifications from both rails end up here. Every
transition follows the same discipline:

1. look at the current status and short-circuit when the target state is
   already reached (duplicate webhook, overlapping poll);
2. apply the state change to the aggregate and stage it in the repository;
3. only then mutate stock and generate delivery rows;
4. record an audit entry describing the decision.

All of it runs inside the command handler's unit of work, so the status
change, stock movements, delivery rows and audit entry commit together.
"""

from dataclasses import dataclass
from datetime import date

import structlog
from protean.utils.globals import current_domain

from reconciliation.audit.sink import AuditSink
from reconciliation.gateway.port import AuthorizationState, AuthorizationStatus, InstantPaymentGateway
from reconciliation.order.order import Order, PaymentStatus
from reconciliation.payment.lookup import deliveries_for_charge
from reconciliation.scheduling import clock
from reconciliation.scheduling.delivery_dates import (
    Frequency,
    WEEKDAYS,
    monthly_delivery_count,
    monthly_delivery_dates,
    next_subscription_delivery_date,
    order_delivery_date,
    parse_frequency,
)
from reconciliation.settings.resolver import SettingsResolver
from reconciliation.stock.ledger import StockLedger
from reconciliation.subscription.delivery import SubscriptionDelivery
from reconciliation.subscription.subscription import RecurrenceStatus, Subscription, SubscriptionStatus

logger = structlog.get_logger(__name__)

_AUTHORIZATION_OUTCOMES = {
    AuthorizationState.CREATED: (False, RecurrenceStatus.AWAITING_AUTHORIZATION),
    AuthorizationState.APPROVED: (True, RecurrenceStatus.ACTIVE),
    AuthorizationState.REJECTED: (False, RecurrenceStatus.REJECTED),
    AuthorizationState.CANCELLED: (False, RecurrenceStatus.CANCELLED),
}


@dataclass(frozen=True)
class Outcome:
    """What a transition did: `changed` is False for duplicates and ignored events."""

    changed: bool
    already: bool = False
    details: dict | None = None


class Reconciler:
    def __init__(
        self,
        settings: SettingsResolver,
        audit: AuditSink,
        trace_id: str,
        ledger: StockLedger | None = None,
        pix_gateway: InstantPaymentGateway | None = None,
    ) -> None:
        self.settings = settings
        self.audit = audit
        self.trace_id = trace_id
        self.ledger = ledger or StockLedger()
        self.pix_gateway = pix_gateway

    def _audit(self, provider: str, event: str, entity, details: dict | None = None, ok: bool = True, error=None):
        self.audit.record(
            provider=provider,
            trace_id=self.trace_id,
            event=event,
            ok=ok,
            error_message=error,
            entity_type="order" if isinstance(entity, Order) else "subscription",
            entity_id=str(entity.id),
            details=details,
        )

    def _today(self) -> date:
        return clock.today(self.settings.timezone)

    # -------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------
    def confirm_order(self, order: Order, provider: str, source: str, card_payment_id: str | None = None) -> Outcome:
        """pending → confirmed, fixing the delivery date and consuming stock once."""
        repo = current_domain.repository_for(Order)

        if order.is_confirmed:
            logger.info("Order already confirmed", order_id=str(order.id), source=source, trace_id=self.trace_id)
            details = {"source": source, "already_confirmed": True}
            self._audit(provider, "order_confirmed", order, details)
            return Outcome(changed=False, already=True, details=details)

        if not order.is_pending:
            logger.warning(
                "Confirmation for a closed order ignored",
                order_id=str(order.id),
                payment_status=order.payment_status,
                trace_id=self.trace_id,
            )
            details = {"source": source, "payment_status": order.payment_status}
            self._audit(provider, "order_confirmation_ignored", order, details)
            return Outcome(changed=False, details=details)

        confirmed_at = clock.now()
        delivery_date, window = order_delivery_date(
            confirmed_at.astimezone(self.settings.timezone),
            cutoff=self.settings.cutoff_time,
            holidays=self.settings.holidays,
            business_weekdays=self.settings.business_weekdays,
            requested_window=order.delivery_time_slot,
        )
        order.confirm(confirmed_at, delivery_date, window, card_payment_id=card_payment_id)
        repo.add(order)
        self.ledger.consume_for_order(order)

        details = {
            "source": source,
            "already_confirmed": False,
            "delivery_date": delivery_date.isoformat(),
            "delivery_time_slot": window,
        }
        logger.info("Order confirmed", order_id=str(order.id), trace_id=self.trace_id, **details)
        self._audit(provider, "order_confirmed", order, details)
        return Outcome(changed=True, details=details)

    def decline_order(self, order: Order, provider: str, reason: str | None = None) -> Outcome:
        if not order.is_pending:
            details = {"payment_status": order.payment_status}
            self._audit(provider, "order_decline_ignored", order, details)
            return Outcome(changed=False, already=order.payment_status == PaymentStatus.DECLINED.value, details=details)

        order.decline(reason)
        current_domain.repository_for(Order).add(order)
        logger.info("Order declined", order_id=str(order.id), reason=reason, trace_id=self.trace_id)
        self._audit(provider, "order_declined", order, {"reason": reason})
        return Outcome(changed=True)

    # -------------------------------------------------------------------
    # Subscriptions: main status
    # -------------------------------------------------------------------
    def _delivery_weekdays(self, subscription: Subscription) -> list[str]:
        """Weekday names deliveries are generated on.

        Daily subscriptions without a custom set deliver on every business weekday.
        """
        if subscription.custom_weekdays:
            return subscription.custom_weekdays
        if parse_frequency(subscription.frequency) is Frequency.DAILY and not subscription.is_emergency:
            return [name for name, number in WEEKDAYS.items() if number in self.settings.business_weekdays]
        return []

    def _monthly_count(self, subscription: Subscription) -> int:
        return monthly_delivery_count(
            subscription.frequency,
            subscription.custom_weekdays,
            is_emergency=subscription.is_emergency,
            counts=self.settings.monthly_counts,
        )

    def _delivery_dates(self, subscription: Subscription, count: int) -> list[date]:
        return monthly_delivery_dates(
            subscription.delivery_weekday,
            self._delivery_weekdays(subscription),
            count,
            self._today(),
        )

    def _create_delivery_rows(self, subscription: Subscription, dates: list[date], charge_reference: str | None) -> None:
        repo = current_domain.repository_for(SubscriptionDelivery)
        for delivery_date in dates:
            repo.add(
                SubscriptionDelivery.schedule(
                    subscription_id=str(subscription.id),
                    delivery_date=delivery_date,
                    total_amount=subscription.total_amount,
                    charge_reference=charge_reference,
                )
            )

    def _next_delivery(self, subscription: Subscription, dates: list[date] | None = None) -> date:
        if dates:
            return dates[0]
        return next_subscription_delivery_date(
            subscription.delivery_weekday,
            self._delivery_weekdays(subscription),
            self._today(),
        )

    def _reserve_once(self, subscription: Subscription, count: int) -> None:
        if not subscription.stock_reserved:
            self.ledger.reserve_for_subscription(subscription, count)
            subscription.mark_stock_reserved(count)

    def activate_subscription(
        self,
        subscription: Subscription,
        provider: str,
        source: str,
        authorization: AuthorizationStatus | None = None,
        card_subscription_id: str | None = None,
        charge_reference: str | None = None,
    ) -> Outcome:
        """paused → active on a settled first payment.

        Reserves stock (only the first time), generates this month's delivery
        rows and records the recurring authorization state when known.
        """
        repo = current_domain.repository_for(Subscription)

        if subscription.is_active:
            if authorization is not None:
                self._record_authorization(subscription, authorization.state)
                repo.add(subscription)
            logger.info("Subscription already active", subscription_id=str(subscription.id), source=source)
            details = {"source": source, "already_confirmed": True}
            self._audit(provider, "subscription_activated", subscription, details)
            return Outcome(changed=False, already=True, details=details)

        if subscription.is_cancelled:
            details = {"source": source, "status": subscription.status}
            logger.warning("Payment for a cancelled subscription ignored", subscription_id=str(subscription.id))
            self._audit(provider, "subscription_activation_ignored", subscription, details)
            return Outcome(changed=False, details=details)

        count = self._monthly_count(subscription)
        dates = self._delivery_dates(subscription, count)
        subscription.activate(clock.now(), self._next_delivery(subscription, dates), card_subscription_id)
        if authorization is not None:
            self._record_authorization(subscription, authorization.state)
        elif subscription.pix_authorization_id and subscription.recurrence_status is None:
            subscription.record_authorization(False, RecurrenceStatus.AWAITING_AUTHORIZATION)
        self._reserve_once(subscription, count)
        repo.add(subscription)
        self._create_delivery_rows(subscription, dates, charge_reference)

        details = {
            "source": source,
            "already_confirmed": False,
            "monthly_count": count,
            "delivery_dates": [d.isoformat() for d in dates],
            "recurrence_status": subscription.recurrence_status,
        }
        logger.info("Subscription activated", subscription_id=str(subscription.id), trace_id=self.trace_id)
        self._audit(provider, "subscription_activated", subscription, details)
        return Outcome(changed=True, details=details)

    def refresh_card_subscription(self, subscription: Subscription, provider: str, charge_reference: str | None) -> Outcome:
        """A card invoice was paid: make sure the subscription is active and its next date current."""
        if not subscription.is_active:
            return self.activate_subscription(subscription, provider, "invoice_paid", charge_reference=charge_reference)

        next_date = self._next_delivery(subscription)
        if next_date != subscription.next_delivery_date:
            subscription.reschedule_next_delivery(next_date)
            current_domain.repository_for(Subscription).add(subscription)
        details = {"next_delivery_date": next_date.isoformat()}
        self._audit(provider, "invoice_paid", subscription, details)
        return Outcome(changed=True, details=details)

    def pause_subscription(self, subscription: Subscription, provider: str, reason: str | None = None) -> Outcome:
        if not subscription.is_active:
            details = {"status": subscription.status}
            self._audit(provider, "subscription_pause_ignored", subscription, details)
            return Outcome(changed=False, already=subscription.status == SubscriptionStatus.PAUSED.value, details=details)

        subscription.pause(reason)
        current_domain.repository_for(Subscription).add(subscription)
        logger.info("Subscription paused", subscription_id=str(subscription.id), reason=reason)
        self._audit(provider, "subscription_paused", subscription, {"reason": reason})
        return Outcome(changed=True)

    def cancel_subscription(self, subscription: Subscription, provider: str, reason: str | None = None) -> Outcome:
        if subscription.is_cancelled:
            self._audit(provider, "subscription_cancelled", subscription, {"already_cancelled": True})
            return Outcome(changed=False, already=True)

        subscription.cancel(reason)
        current_domain.repository_for(Subscription).add(subscription)
        logger.info("Subscription cancelled", subscription_id=str(subscription.id), reason=reason)
        self._audit(provider, "subscription_cancelled", subscription, {"reason": reason})
        return Outcome(changed=True)

    # -------------------------------------------------------------------
    # Subscriptions: recurrence sub-state
    # -------------------------------------------------------------------
    def _record_authorization(self, subscription: Subscription, state: AuthorizationState) -> bool:
        authorized, status = _AUTHORIZATION_OUTCOMES[state]
        if subscription.recurrence_authorized == authorized and subscription.recurrence_status == status.value:
            return False
        subscription.record_authorization(authorized, status)
        return True

    def apply_authorization(self, subscription: Subscription, state: AuthorizationState, provider: str) -> Outcome:
        changed = self._record_authorization(subscription, state)
        if changed:
            current_domain.repository_for(Subscription).add(subscription)
        details = {
            "authorization_state": state.value,
            "recurrence_status": subscription.recurrence_status,
            "recurrence_authorized": subscription.recurrence_authorized,
            "already_applied": not changed,
        }
        logger.info("Recurring authorization updated", subscription_id=str(subscription.id), **details)
        self._audit(provider, "recurrence_authorization_changed", subscription, details)
        return Outcome(changed=changed, already=not changed, details=details)

    def settle_recurring_charge(self, subscription: Subscription, transaction_id: str | None, provider: str) -> Outcome:
        """Generate this cycle's delivery rows for a settled recurring charge.

        Charge settlement, not authorization approval, drives delivery
        generation. Rows remember the charge txid so a repeated settlement
        generates nothing.
        """
        if subscription.is_cancelled:
            details = {"transaction_id": transaction_id, "status": subscription.status}
            self._audit(provider, "recurring_charge_ignored", subscription, details)
            return Outcome(changed=False, details=details)

        if transaction_id and deliveries_for_charge(str(subscription.id), transaction_id):
            details = {"transaction_id": transaction_id, "already_confirmed": True}
            logger.info("Recurring charge already settled", subscription_id=str(subscription.id), **details)
            self._audit(provider, "recurring_charge_settled", subscription, details)
            return Outcome(changed=False, already=True, details=details)

        count = self._monthly_count(subscription)
        dates = self._delivery_dates(subscription, count)
        self._reserve_once(subscription, count)
        subscription.settle_recurring_charge(self._next_delivery(subscription, dates), transaction_id)
        current_domain.repository_for(Subscription).add(subscription)
        self._create_delivery_rows(subscription, dates, transaction_id)

        details = {
            "transaction_id": transaction_id,
            "already_confirmed": False,
            "delivery_dates": [d.isoformat() for d in dates],
        }
        logger.info("Recurring charge settled", subscription_id=str(subscription.id), delivery_count=len(dates))
        self._audit(provider, "recurring_charge_settled", subscription, details)
        return Outcome(changed=True, details=details)

    def fail_recurring_charge(
        self,
        subscription: Subscription,
        transaction_id: str | None,
        provider_status: str,
        provider: str,
    ) -> Outcome:
        already = (
            subscription.recurrence_status == RecurrenceStatus.CHARGE_FAILED.value and not subscription.is_active
        )
        if subscription.is_cancelled or already:
            details = {"transaction_id": transaction_id, "provider_status": provider_status, "already_applied": True}
            self._audit(provider, "recurring_charge_failed", subscription, details)
            return Outcome(changed=False, already=already, details=details)

        subscription.fail_recurring_charge(provider_status, transaction_id)
        current_domain.repository_for(Subscription).add(subscription)
        details = {"transaction_id": transaction_id, "provider_status": provider_status}
        logger.warning("Recurring charge failed, subscription paused", subscription_id=str(subscription.id), **details)
        self._audit(provider, "recurring_charge_failed", subscription, details)
        return Outcome(changed=True, details=details)

    # -------------------------------------------------------------------
    # Expired instant-payment charges
    # -------------------------------------------------------------------
    def reissue_charge(self, entity: Order | Subscription, provider_status: str) -> Outcome:
        """Replace a removed instant-payment charge with a fresh one (webhook path only)."""
        still_pending = entity.is_pending if isinstance(entity, Order) else not (entity.is_active or entity.is_cancelled)
        if not still_pending:
            details = {"provider_status": provider_status, "reissued": False}
            self._audit("pix", "charge_expired", entity, details)
            return Outcome(changed=False, details=details)

        if isinstance(entity, Order):
            description = f"Pedido #{entity.order_number}" if entity.order_number else "Pedido"
        else:
            description = f"Assinatura #{entity.subscription_number}" if entity.subscription_number else "Assinatura"
        issued = self.pix_gateway.create_charge(entity.total_amount, description, reference=str(entity.id))

        previous = entity.pix_transaction_id
        entity.replace_pix_charge(issued.transaction_id)
        current_domain.repository_for(type(entity)).add(entity)

        details = {
            "provider_status": provider_status,
            "reissued": True,
            "previous_transaction_id": previous,
            "transaction_id": issued.transaction_id,
        }
        logger.info("Expired charge reissued", entity_id=str(entity.id), **details)
        self._audit("pix", "charge_reissued", entity, details)
        return Outcome(changed=True, details=details)
