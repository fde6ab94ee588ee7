"""Tests for Product stock removal and the stock ledger."""

import pytest
from protean import current_domain
from protean.exceptions import ValidationError
from reconciliation.order.order import Order
from reconciliation.stock.events import LowStockDetected, StockConsumed
from reconciliation.stock.ledger import StockLedger
from reconciliation.stock.product import Product
from reconciliation.subscription.subscription import Subscription


def _stock(product):
    return current_domain.repository_for(Product).get(str(product.id)).stock


class TestProductStock:
    def test_remove_stock(self):
        product = Product.create(name="Alface", stock=10)
        assert product.remove_stock(3, "order", "ord-1") == 3
        assert product.stock == 7
        assert any(isinstance(e, StockConsumed) for e in product._events)

    def test_removal_clamps_at_zero(self):
        product = Product.create(name="Alface", stock=2)
        assert product.remove_stock(5, "order", "ord-1") == 2
        assert product.stock == 0

    def test_low_stock_is_signalled(self):
        product = Product.create(name="Alface", stock=6, stock_min=5)
        product.remove_stock(1, "order", "ord-1")
        event = next(e for e in product._events if isinstance(e, LowStockDetected))
        assert event.current_stock == 5

    def test_no_signal_above_minimum(self):
        product = Product.create(name="Alface", stock=20, stock_min=5)
        product.remove_stock(1, "order", "ord-1")
        assert not any(isinstance(e, LowStockDetected) for e in product._events)

    def test_negative_quantity_is_rejected(self):
        with pytest.raises(ValidationError):
            Product.create(name="Alface", stock=5).remove_stock(-1, "order", "ord-1")

    def test_negative_initial_stock_is_rejected(self):
        with pytest.raises(ValidationError):
            Product.create(name="Alface", stock=-1)


class TestStockLedger:
    def test_consume_for_order(self, make_product):
        lettuce = make_product("Alface", stock=10)
        arugula = make_product("Rúcula", stock=1)
        order = Order.create(
            payment_method="instant_payment",
            items_data=[
                {"product_id": str(lettuce.id), "quantity": 3},
                {"product_id": str(arugula.id), "quantity": 4},
            ],
        )

        removed = StockLedger().consume_for_order(order)

        assert removed == {str(lettuce.id): 3, str(arugula.id): 1}
        assert _stock(lettuce) == 7
        assert _stock(arugula) == 0

    def test_reserve_for_subscription(self, make_product):
        lettuce = make_product("Alface", stock=100)
        subscription = Subscription.create(
            payment_method="instant_payment",
            items_data=[{"product_id": str(lettuce.id), "quantity": 2}],
            frequency="semanal",
            delivery_weekday="segunda",
        )

        reserved = StockLedger().reserve_for_subscription(subscription, 4)

        assert reserved == {str(lettuce.id): 8}
        assert subscription.items[0].reserved_stock == 8
        assert _stock(lettuce) == 92
