"""Order delivery — commands and handler.

Operator-driven moves on the delivery axis of a one-off order.
"""

from enum import Enum

from protean import handle
from protean.fields import Date, Identifier, String
from protean.utils.globals import current_domain

from reconciliation.domain import reconciliation
from reconciliation.order.order import Order
from reconciliation.scheduling.delivery_dates import TimeWindow


class DeliveryAction(Enum):
    EN_ROUTE = "en_route"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@reconciliation.command(part_of="Order")
class ChangeOrderDeliveryStatus:
    """Move an order along the delivery axis."""

    order_id = Identifier(required=True)
    action = String(required=True, choices=DeliveryAction)


@reconciliation.command(part_of="Order")
class RescheduleOrderDelivery:
    """Manually override an order's delivery date and window."""

    order_id = Identifier(required=True)
    delivery_date = Date(required=True)
    delivery_time_slot = String(required=True, choices=TimeWindow)


@reconciliation.command_handler(part_of=Order)
class OrderDeliveryHandler:
    @handle(ChangeOrderDeliveryStatus)
    def change_delivery_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        action = DeliveryAction(command.action)
        if action is DeliveryAction.EN_ROUTE:
            order.mark_en_route()
        elif action is DeliveryAction.DELIVERED:
            order.mark_delivered()
        else:
            order.cancel_delivery()

        repo.add(order)

    @handle(RescheduleOrderDelivery)
    def reschedule_delivery(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.reschedule(command.delivery_date, command.delivery_time_slot)
        repo.add(order)
