"""Stock domain events."""

from protean.fields import DateTime, Identifier, Integer, String

from reconciliation.domain import reconciliation


@reconciliation.event(part_of="Product")
class StockConsumed:
    """Stock left the shelf for a confirmed order or an activated subscription."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity_requested = Integer(required=True)
    quantity_removed = Integer(required=True)
    remaining = Integer(required=True)
    reason = String(required=True, max_length=30)  # order | subscription
    reference_id = Identifier(required=True)
    consumed_at = DateTime(required=True)


@reconciliation.event(part_of="Product")
class LowStockDetected:
    """Stock dropped to or below the product's minimum."""

    __version__ = 1

    product_id = Identifier(required=True)
    name = String(required=True)
    current_stock = Integer(required=True)
    stock_min = Integer(required=True)
    detected_at = DateTime(required=True)
