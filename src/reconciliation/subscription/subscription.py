"""Subscription aggregate (CQRS) — recurring or one-off emergency deliveries.

A subscription starts PAUSED with a first charge issued and becomes ACTIVE
only when a payment settles. On the instant-payment rail the payer's bank may
additionally grant a recurring authorization; that lifecycle is tracked in
`recurrence_status`, next to (not inside) the main status.

State Machine (status):
    PAUSED → ACTIVE | CANCELLED
    ACTIVE → PAUSED | CANCELLED

Recurrence sub-state:
    AWAITING_AUTHORIZATION → ACTIVE | REJECTED | CANCELLED | CHARGE_FAILED
    CHARGE_FAILED → ACTIVE (next settled charge)
"""

import json
from datetime import UTC, date, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
)

from reconciliation.domain import reconciliation
from reconciliation.scheduling.delivery_dates import Frequency, parse_frequency, parse_weekday
from reconciliation.scheduling.status import PaymentMethod
from reconciliation.subscription.events import (
    NextDeliveryRescheduled,
    RecurrenceAuthorizationChanged,
    RecurringChargeFailed,
    RecurringChargeSettled,
    SubscriptionActivated,
    SubscriptionCancelled,
    SubscriptionChargeReissued,
    SubscriptionPaused,
    SubscriptionStockReserved,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SubscriptionStatus(Enum):
    PAUSED = "paused"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class RecurrenceStatus(Enum):
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    ACTIVE = "active"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    CHARGE_FAILED = "charge_failed"


_VALID_TRANSITIONS = {
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.CANCELLED: set(),
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@reconciliation.entity(part_of="Subscription")
class SubscriptionItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    unit_price = Float(default=0.0)
    reserved_stock = Integer(default=0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@reconciliation.aggregate
class Subscription:
    subscription_number = Integer()
    customer_id = Identifier()
    status = String(choices=SubscriptionStatus, default=SubscriptionStatus.PAUSED.value)
    frequency = String(choices=Frequency)  # None for emergency subscriptions
    is_emergency = Boolean(default=False)
    delivery_weekday = String(max_length=20)
    delivery_weekdays = Text()  # JSON list of weekday names
    delivery_time_slot = String(max_length=20)
    payment_method = String(required=True, choices=PaymentMethod)
    pix_transaction_id = String(max_length=100)
    pix_authorization_id = String(max_length=100)
    card_session_id = String(max_length=255)
    card_subscription_id = String(max_length=255)
    recurrence_authorized = Boolean(default=False)
    recurrence_status = String(choices=RecurrenceStatus)
    next_delivery_date = Date()
    total_amount = Float(default=0.0)
    stock_reserved = Boolean(default=False)
    items = HasMany(SubscriptionItem)
    activated_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(
        cls,
        payment_method: str,
        items_data: list[dict],
        delivery_weekday: str | None = None,
        delivery_weekdays: list[str] | None = None,
        frequency: str | None = None,
        is_emergency: bool = False,
        customer_id: str | None = None,
        subscription_number: int | None = None,
        pix_transaction_id: str | None = None,
        pix_authorization_id: str | None = None,
        card_session_id: str | None = None,
        delivery_time_slot: str | None = None,
        total_amount: float | None = None,
    ):
        """Create a paused subscription with its items and an issued first charge."""
        if not items_data:
            raise ValidationError({"items": ["A subscription needs at least one item"]})
        if any(item.get("quantity", 0) <= 0 for item in items_data):
            raise ValidationError({"items": ["Item quantity must be positive"]})

        resolved_frequency = parse_frequency(frequency)
        if frequency is not None and resolved_frequency is None:
            raise ValidationError({"frequency": [f"Unknown frequency '{frequency}'"]})
        if resolved_frequency is None and not is_emergency:
            raise ValidationError({"frequency": ["Recurring subscriptions need a frequency"]})
        if delivery_weekday is not None and parse_weekday(delivery_weekday) is None:
            raise ValidationError({"delivery_weekday": [f"Unknown weekday '{delivery_weekday}'"]})

        if total_amount is None:
            total_amount = round(sum(i["quantity"] * i.get("unit_price", 0.0) for i in items_data), 2)

        now = datetime.now(UTC)
        subscription = cls(
            subscription_number=subscription_number,
            customer_id=customer_id,
            frequency=resolved_frequency.value if resolved_frequency else None,
            is_emergency=is_emergency,
            delivery_weekday=delivery_weekday,
            delivery_weekdays=json.dumps(delivery_weekdays) if delivery_weekdays else None,
            delivery_time_slot=delivery_time_slot,
            payment_method=payment_method,
            pix_transaction_id=pix_transaction_id,
            pix_authorization_id=pix_authorization_id,
            card_session_id=card_session_id,
            total_amount=total_amount,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            subscription.add_items(SubscriptionItem(**item_data))
        return subscription

    @property
    def custom_weekdays(self) -> list[str]:
        return json.loads(self.delivery_weekdays) if self.delivery_weekdays else []

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED.value

    def _assert_can_transition(self, target_status: SubscriptionStatus) -> None:
        current = SubscriptionStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    # -------------------------------------------------------------------
    # Main status
    # -------------------------------------------------------------------
    def activate(
        self,
        activated_at: datetime,
        next_delivery_date: date | None,
        card_subscription_id: str | None = None,
    ) -> None:
        """Start delivering after a settled payment."""
        self._assert_can_transition(SubscriptionStatus.ACTIVE)

        self.status = SubscriptionStatus.ACTIVE.value
        self.activated_at = activated_at
        self.next_delivery_date = next_delivery_date
        if card_subscription_id:
            self.card_subscription_id = card_subscription_id
        self.updated_at = activated_at
        self.raise_(
            SubscriptionActivated(
                subscription_id=str(self.id),
                payment_method=self.payment_method,
                next_delivery_date=next_delivery_date,
                activated_at=activated_at,
            )
        )

    def pause(self, reason: str | None = None) -> None:
        self._assert_can_transition(SubscriptionStatus.PAUSED)

        now = datetime.now(UTC)
        self.status = SubscriptionStatus.PAUSED.value
        self.updated_at = now
        self.raise_(SubscriptionPaused(subscription_id=str(self.id), reason=reason, paused_at=now))

    def cancel(self, reason: str | None = None) -> None:
        self._assert_can_transition(SubscriptionStatus.CANCELLED)

        now = datetime.now(UTC)
        self.status = SubscriptionStatus.CANCELLED.value
        self.updated_at = now
        self.raise_(SubscriptionCancelled(subscription_id=str(self.id), reason=reason, cancelled_at=now))

    def mark_stock_reserved(self, monthly_count: int) -> None:
        if self.stock_reserved:
            raise ValidationError({"stock_reserved": ["Stock was already reserved for this subscription"]})

        now = datetime.now(UTC)
        self.stock_reserved = True
        self.updated_at = now
        self.raise_(
            SubscriptionStockReserved(
                subscription_id=str(self.id),
                monthly_count=monthly_count,
                reserved_at=now,
            )
        )

    def reschedule_next_delivery(self, next_delivery_date: date) -> None:
        now = datetime.now(UTC)
        self.next_delivery_date = next_delivery_date
        self.updated_at = now
        self.raise_(
            NextDeliveryRescheduled(
                subscription_id=str(self.id),
                next_delivery_date=next_delivery_date,
                rescheduled_at=now,
            )
        )

    def replace_pix_charge(self, transaction_id: str) -> None:
        if self.is_active or self.is_cancelled:
            raise ValidationError({"status": ["Only paused subscriptions can get a new first charge"]})

        now = datetime.now(UTC)
        previous = self.pix_transaction_id
        self.pix_transaction_id = transaction_id
        self.updated_at = now
        self.raise_(
            SubscriptionChargeReissued(
                subscription_id=str(self.id),
                previous_transaction_id=previous,
                transaction_id=transaction_id,
                reissued_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Recurrence sub-state
    # -------------------------------------------------------------------
    def record_authorization(self, authorized: bool, recurrence_status: RecurrenceStatus) -> None:
        """Record the payer bank's answer to the recurring authorization request."""
        now = datetime.now(UTC)
        self.recurrence_authorized = authorized
        self.recurrence_status = recurrence_status.value
        self.updated_at = now
        self.raise_(
            RecurrenceAuthorizationChanged(
                subscription_id=str(self.id),
                authorization_id=self.pix_authorization_id,
                authorized=authorized,
                recurrence_status=recurrence_status.value,
                changed_at=now,
            )
        )

    def settle_recurring_charge(self, next_delivery_date: date | None, transaction_id: str | None = None) -> None:
        """A recurring charge settled; a paused (not cancelled) subscription resumes."""
        if self.is_cancelled:
            raise ValidationError({"status": ["Cancelled subscriptions cannot settle charges"]})

        now = datetime.now(UTC)
        if not self.is_active:
            self.status = SubscriptionStatus.ACTIVE.value
            self.activated_at = self.activated_at or now
        self.recurrence_status = RecurrenceStatus.ACTIVE.value
        if next_delivery_date is not None:
            self.next_delivery_date = next_delivery_date
        self.updated_at = now
        self.raise_(
            RecurringChargeSettled(
                subscription_id=str(self.id),
                transaction_id=transaction_id,
                next_delivery_date=next_delivery_date,
                settled_at=now,
            )
        )

    def fail_recurring_charge(self, provider_status: str, transaction_id: str | None = None) -> None:
        now = datetime.now(UTC)
        if self.is_active:
            self.status = SubscriptionStatus.PAUSED.value
        self.recurrence_status = RecurrenceStatus.CHARGE_FAILED.value
        self.updated_at = now
        self.raise_(
            RecurringChargeFailed(
                subscription_id=str(self.id),
                transaction_id=transaction_id,
                provider_status=provider_status,
                failed_at=now,
            )
        )
