"""Stock Ledger Operations — the only writer of `Product.stock` during reconciliation.

The ledger has no notion of "already consumed": callers run it exactly once,
right after the order or subscription transition that pays for the stock has
been applied. Each item is a read-modify-write on its product, clamped at
zero. A storage failure propagates and aborts the reconciliation step.
"""

import structlog
from protean.utils.globals import current_domain

from reconciliation.order.order import Order
from reconciliation.stock.product import Product
from reconciliation.subscription.subscription import Subscription

logger = structlog.get_logger(__name__)


class StockLedger:
    def consume_for_order(self, order: Order) -> dict[str, int]:
        """Remove each line item's quantity from stock.

        Returns product id → units actually removed.
        """
        repo = current_domain.repository_for(Product)
        removed: dict[str, int] = {}
        for item in order.items or []:
            product = repo.get(str(item.product_id))
            removed[str(product.id)] = product.remove_stock(item.quantity, "order", str(order.id))
            repo.add(product)

        logger.info("Stock consumed for order", order_id=str(order.id), removed=removed)
        return removed

    def reserve_for_subscription(self, subscription: Subscription, monthly_count: int) -> dict[str, int]:
        """Set aside `quantity × monthly_count` units per item and record it on the item.

        The caller persists `subscription`; products are persisted here.
        """
        repo = current_domain.repository_for(Product)
        reserved: dict[str, int] = {}
        for item in subscription.items or []:
            total = item.quantity * monthly_count
            product = repo.get(str(item.product_id))
            product.remove_stock(total, "subscription", str(subscription.id))
            repo.add(product)
            item.reserved_stock = total
            reserved[str(product.id)] = total

        logger.info(
            "Stock reserved for subscription",
            subscription_id=str(subscription.id),
            monthly_count=monthly_count,
            reserved=reserved,
        )
        return reserved
