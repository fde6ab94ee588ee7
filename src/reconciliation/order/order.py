"""Order aggregate (CQRS) — a one-time purchase awaiting or holding payment.

Orders are created unpaid by the checkout flow with a charge already issued
on one of the two payment rails. From then on only reconciliation moves the
payment axis; the delivery axis is moved by operators once paid.

State Machine (payment):
    PENDING → CONFIRMED | DECLINED | CANCELLED

State Machine (delivery):
    AWAITING → EN_ROUTE → DELIVERED
    {AWAITING, EN_ROUTE} → CANCELLED
"""

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
from reconciliation.order.events import (
    OrderCancelled,
    OrderChargeReissued,
    OrderConfirmed,
    OrderDeclined,
    OrderDeliveryStatusChanged,
    OrderRescheduled,
)
from reconciliation.scheduling.status import (
    DeliveryStatus,
    PaymentMethod,
    assert_delivery_transition,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.CONFIRMED, PaymentStatus.DECLINED, PaymentStatus.CANCELLED},
    PaymentStatus.CONFIRMED: set(),
    PaymentStatus.DECLINED: set(),
    PaymentStatus.CANCELLED: set(),
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@reconciliation.entity(part_of="Order")
class OrderItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    unit_price = Float(default=0.0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@reconciliation.aggregate
class Order:
    order_number = Integer()
    customer_id = Identifier()
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    delivery_status = String(choices=DeliveryStatus, default=DeliveryStatus.AWAITING.value)
    payment_method = String(required=True, choices=PaymentMethod)
    pix_transaction_id = String(max_length=100)
    card_payment_id = String(max_length=255)
    delivery_date = Date()
    delivery_time_slot = String(max_length=20)
    manually_scheduled = Boolean(default=False)
    total_amount = Float(default=0.0)
    items = HasMany(OrderItem)
    payment_confirmed_at = DateTime()
    notes = Text()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(
        cls,
        payment_method: str,
        items_data: list[dict],
        customer_id: str | None = None,
        order_number: int | None = None,
        pix_transaction_id: str | None = None,
        card_payment_id: str | None = None,
        delivery_time_slot: str | None = None,
        total_amount: float | None = None,
        notes: str | None = None,
    ):
        """Create an unpaid order with its line items."""
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})
        if any(item.get("quantity", 0) <= 0 for item in items_data):
            raise ValidationError({"items": ["Item quantity must be positive"]})

        if total_amount is None:
            total_amount = round(sum(i["quantity"] * i.get("unit_price", 0.0) for i in items_data), 2)

        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            customer_id=customer_id,
            payment_method=payment_method,
            pix_transaction_id=pix_transaction_id,
            card_payment_id=card_payment_id,
            delivery_time_slot=delivery_time_slot,
            total_amount=total_amount,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))
        return order

    # -------------------------------------------------------------------
    # Payment axis
    # -------------------------------------------------------------------
    @property
    def is_confirmed(self) -> bool:
        return self.payment_status == PaymentStatus.CONFIRMED.value

    @property
    def is_pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING.value

    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.payment_status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError(
                {"payment_status": [f"Cannot transition from {current.value} to {target_status.value}"]}
            )

    def confirm(
        self,
        confirmed_at: datetime,
        delivery_date: date,
        delivery_time_slot: str,
        card_payment_id: str | None = None,
    ) -> None:
        """Mark the payment as settled and fix the delivery date and window."""
        self._assert_can_transition(PaymentStatus.CONFIRMED)

        self.payment_status = PaymentStatus.CONFIRMED.value
        self.payment_confirmed_at = confirmed_at
        self.delivery_date = delivery_date
        self.delivery_time_slot = delivery_time_slot
        if card_payment_id:
            self.card_payment_id = card_payment_id
        self.updated_at = confirmed_at
        self.raise_(
            OrderConfirmed(
                order_id=str(self.id),
                payment_method=self.payment_method,
                delivery_date=delivery_date,
                delivery_time_slot=delivery_time_slot,
                confirmed_at=confirmed_at,
            )
        )

    def decline(self, reason: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.DECLINED)

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.DECLINED.value
        self.updated_at = now
        self.raise_(OrderDeclined(order_id=str(self.id), reason=reason, declined_at=now))

    def cancel(self, reason: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.CANCELLED)

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.CANCELLED.value
        self.delivery_status = DeliveryStatus.CANCELLED.value
        self.updated_at = now
        self.raise_(OrderCancelled(order_id=str(self.id), reason=reason, cancelled_at=now))

    def replace_pix_charge(self, transaction_id: str) -> None:
        """Point the order at a freshly issued instant-payment charge."""
        if not self.is_pending:
            raise ValidationError({"payment_status": ["Only pending orders can get a new charge"]})

        now = datetime.now(UTC)
        previous = self.pix_transaction_id
        self.pix_transaction_id = transaction_id
        self.updated_at = now
        self.raise_(
            OrderChargeReissued(
                order_id=str(self.id),
                previous_transaction_id=previous,
                transaction_id=transaction_id,
                reissued_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Delivery axis (operator driven)
    # -------------------------------------------------------------------
    def reschedule(self, delivery_date: date, delivery_time_slot: str) -> None:
        """Manually override the delivery date and window."""
        if DeliveryStatus(self.delivery_status) in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED):
            raise ValidationError({"delivery_status": ["Finished deliveries cannot be rescheduled"]})

        now = datetime.now(UTC)
        self.delivery_date = delivery_date
        self.delivery_time_slot = delivery_time_slot
        self.manually_scheduled = True
        self.updated_at = now
        self.raise_(
            OrderRescheduled(
                order_id=str(self.id),
                delivery_date=delivery_date,
                delivery_time_slot=delivery_time_slot,
                rescheduled_at=now,
            )
        )

    def _move_delivery(self, target: DeliveryStatus) -> None:
        if target is not DeliveryStatus.CANCELLED and not self.is_confirmed:
            raise ValidationError({"payment_status": ["Order has not been paid"]})
        assert_delivery_transition(self.delivery_status, target)

        now = datetime.now(UTC)
        previous = self.delivery_status
        self.delivery_status = target.value
        self.updated_at = now
        self.raise_(
            OrderDeliveryStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=target.value,
                changed_at=now,
            )
        )

    def mark_en_route(self) -> None:
        self._move_delivery(DeliveryStatus.EN_ROUTE)

    def mark_delivered(self) -> None:
        self._move_delivery(DeliveryStatus.DELIVERED)

    def cancel_delivery(self) -> None:
        self._move_delivery(DeliveryStatus.CANCELLED)
