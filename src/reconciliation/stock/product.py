"""Product aggregate — the stock-carrying side of a catalogue product.

Only the stock ledger writes `stock` during reconciliation. Removals are
clamped at zero: a shortfall is absorbed, never recorded as negative stock.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Integer, String

from reconciliation.domain import reconciliation
from reconciliation.stock.events import LowStockDetected, StockConsumed


@reconciliation.aggregate
class Product:
    name = String(required=True, max_length=200)
    unit_price = Float(default=0.0)
    stock = Integer(default=0)
    stock_min = Integer(default=0)
    stock_max = Integer()
    updated_at = DateTime()

    @classmethod
    def create(cls, name, stock=0, stock_min=0, stock_max=None, unit_price=0.0):
        if stock < 0:
            raise ValidationError({"stock": ["Stock cannot be negative"]})
        return cls(
            name=name,
            stock=stock,
            stock_min=stock_min,
            stock_max=stock_max,
            unit_price=unit_price,
            updated_at=datetime.now(UTC),
        )

    def remove_stock(self, quantity: int, reason: str, reference_id: str) -> int:
        """Take `quantity` units off the shelf, never going below zero.

        Returns the number of units actually removed.
        """
        if quantity < 0:
            raise ValidationError({"quantity": ["Quantity cannot be negative"]})

        now = datetime.now(UTC)
        removed = min(quantity, self.stock or 0)
        self.stock = max(0, (self.stock or 0) - quantity)
        self.updated_at = now
        self.raise_(
            StockConsumed(
                product_id=str(self.id),
                quantity_requested=quantity,
                quantity_removed=removed,
                remaining=self.stock,
                reason=reason,
                reference_id=str(reference_id),
                consumed_at=now,
            )
        )
        self._check_low_stock()
        return removed

    def _check_low_stock(self):
        """Raise LowStockDetected if stock is at or below the minimum."""
        if self.stock_min and self.stock <= self.stock_min:
            self.raise_(
                LowStockDetected(
                    product_id=str(self.id),
                    name=self.name,
                    current_stock=self.stock,
                    stock_min=self.stock_min,
                    detected_at=datetime.now(UTC),
                )
            )
