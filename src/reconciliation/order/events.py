"""Order domain events — facts about payment and delivery of one-time orders."""

from protean.fields import Date, DateTime, Identifier, String

from reconciliation.domain import reconciliation


@reconciliation.event(part_of="Order")
class OrderConfirmed:
    """Payment for the order settled and a delivery date was fixed."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_method = String(required=True)
    delivery_date = Date(required=True)
    delivery_time_slot = String(required=True)
    confirmed_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class OrderDeclined:
    """The card processor reported the payment as failed."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    declined_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class OrderChargeReissued:
    """An expired instant-payment charge was replaced by a fresh one."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_transaction_id = String()
    transaction_id = String(required=True)
    reissued_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class OrderRescheduled:
    """An operator moved the delivery to another date or window."""

    __version__ = 1

    order_id = Identifier(required=True)
    delivery_date = Date(required=True)
    delivery_time_slot = String(required=True)
    rescheduled_at = DateTime(required=True)


@reconciliation.event(part_of="Order")
class OrderDeliveryStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)
