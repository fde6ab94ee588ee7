"""Subscription domain events — activation, recurrence and delivery scheduling."""

from protean.fields import Boolean, Date, DateTime, Identifier, Integer, String

from reconciliation.domain import reconciliation


@reconciliation.event(part_of="Subscription")
class SubscriptionActivated:
    """The first payment settled and the subscription started delivering."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    payment_method = String(required=True)
    next_delivery_date = Date()
    activated_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class SubscriptionPaused:
    __version__ = 1

    subscription_id = Identifier(required=True)
    reason = String()
    paused_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class SubscriptionCancelled:
    __version__ = 1

    subscription_id = Identifier(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class SubscriptionStockReserved:
    """Stock for one paid month was set aside at first activation."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    monthly_count = Integer(required=True)
    reserved_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class RecurrenceAuthorizationChanged:
    """The payer's bank approved, rejected or cancelled automatic charges."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    authorization_id = String()
    authorized = Boolean(required=True)
    recurrence_status = String(required=True)
    changed_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class RecurringChargeSettled:
    __version__ = 1

    subscription_id = Identifier(required=True)
    transaction_id = String()
    next_delivery_date = Date()
    settled_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class RecurringChargeFailed:
    __version__ = 1

    subscription_id = Identifier(required=True)
    transaction_id = String()
    provider_status = String()
    failed_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class NextDeliveryRescheduled:
    __version__ = 1

    subscription_id = Identifier(required=True)
    next_delivery_date = Date(required=True)
    rescheduled_at = DateTime(required=True)


@reconciliation.event(part_of="Subscription")
class SubscriptionChargeReissued:
    """An expired first charge was replaced by a fresh one."""

    __version__ = 1

    subscription_id = Identifier(required=True)
    previous_transaction_id = String()
    transaction_id = String(required=True)
    reissued_at = DateTime(required=True)


@reconciliation.event(part_of="SubscriptionDelivery")
class SubscriptionDeliveryScheduled:
    """One delivery occurrence was generated for a settled charge."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    subscription_id = Identifier(required=True)
    delivery_date = Date(required=True)
    charge_reference = String()
    scheduled_at = DateTime(required=True)


@reconciliation.event(part_of="SubscriptionDelivery")
class SubscriptionDeliveryStatusChanged:
    __version__ = 1

    delivery_id = Identifier(required=True)
    subscription_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)
