"""SubscriptionDelivery aggregate — one scheduled occurrence of a subscription.

Rows are only generated for settled charges, so the payment status is always
CONFIRMED at creation. `charge_reference` ties every row of a batch to the
charge that paid for it.
"""

from datetime import UTC, date, datetime

from protean.fields import Date, DateTime, Float, Identifier, String, Text

from reconciliation.domain import reconciliation
from reconciliation.order.order import PaymentStatus
from reconciliation.scheduling.status import DeliveryStatus, assert_delivery_transition
from reconciliation.subscription.events import (
    SubscriptionDeliveryScheduled,
    SubscriptionDeliveryStatusChanged,
)


@reconciliation.aggregate
class SubscriptionDelivery:
    subscription_id = Identifier(required=True)
    delivery_date = Date(required=True)
    total_amount = Float(default=0.0)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.CONFIRMED.value)
    delivery_status = String(choices=DeliveryStatus, default=DeliveryStatus.AWAITING.value)
    charge_reference = String(max_length=255)
    notes = Text()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def schedule(
        cls,
        subscription_id: str,
        delivery_date: date,
        total_amount: float,
        charge_reference: str | None = None,
    ):
        now = datetime.now(UTC)
        delivery = cls(
            subscription_id=subscription_id,
            delivery_date=delivery_date,
            total_amount=total_amount,
            payment_status=PaymentStatus.CONFIRMED.value,
            charge_reference=charge_reference,
            created_at=now,
            updated_at=now,
        )
        delivery.raise_(
            SubscriptionDeliveryScheduled(
                delivery_id=str(delivery.id),
                subscription_id=str(subscription_id),
                delivery_date=delivery_date,
                charge_reference=charge_reference,
                scheduled_at=now,
            )
        )
        return delivery

    def _move(self, target: DeliveryStatus) -> None:
        assert_delivery_transition(self.delivery_status, target)

        now = datetime.now(UTC)
        previous = self.delivery_status
        self.delivery_status = target.value
        self.updated_at = now
        self.raise_(
            SubscriptionDeliveryStatusChanged(
                delivery_id=str(self.id),
                subscription_id=str(self.subscription_id),
                previous_status=previous,
                new_status=target.value,
                changed_at=now,
            )
        )

    def mark_en_route(self) -> None:
        self._move(DeliveryStatus.EN_ROUTE)

    def mark_delivered(self) -> None:
        self._move(DeliveryStatus.DELIVERED)

    def cancel(self) -> None:
        self._move(DeliveryStatus.CANCELLED)
