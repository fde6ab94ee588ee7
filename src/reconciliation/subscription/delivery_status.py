"""Subscription delivery status — command and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from reconciliation.domain import reconciliation
from reconciliation.order.delivery import DeliveryAction
from reconciliation.subscription.delivery import SubscriptionDelivery


@reconciliation.command(part_of="SubscriptionDelivery")
class ChangeSubscriptionDeliveryStatus:
    """Move one scheduled subscription delivery along the delivery axis."""

    delivery_id = Identifier(required=True)
    action = String(required=True, choices=DeliveryAction)


@reconciliation.command_handler(part_of=SubscriptionDelivery)
class SubscriptionDeliveryHandler:
    @handle(ChangeSubscriptionDeliveryStatus)
    def change_delivery_status(self, command):
        repo = current_domain.repository_for(SubscriptionDelivery)
        delivery = repo.get(command.delivery_id)

        action = DeliveryAction(command.action)
        if action is DeliveryAction.EN_ROUTE:
            delivery.mark_en_route()
        elif action is DeliveryAction.DELIVERED:
            delivery.mark_delivered()
        else:
            delivery.cancel()

        repo.add(delivery)
