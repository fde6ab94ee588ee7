from datetime import UTC, datetime

import pytest
from protean.integrations.pytest import DomainFixture

# Tuesday 2026-03-10, 11:30 in São Paulo (UTC-3)
TUESDAY_BEFORE_CUTOFF = datetime(2026, 3, 10, 14, 30, tzinfo=UTC)


@pytest.fixture(scope="session")
def reconciliation_bed():
    from reconciliation.domain import reconciliation

    bed = DomainFixture(reconciliation)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(reconciliation_bed):
    with reconciliation_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _reset_collaborators():
    from reconciliation.api.ratelimit import reset_rate_limiter
    from reconciliation.gateway import reset_gateways
    from reconciliation.scheduling import clock

    reset_gateways()
    reset_rate_limiter()
    clock.reset_clock()
    yield
    reset_gateways()
    reset_rate_limiter()
    clock.reset_clock()


@pytest.fixture()
def fixed_clock():
    from reconciliation.scheduling import clock

    clock.set_clock(TUESDAY_BEFORE_CUTOFF)
    return TUESDAY_BEFORE_CUTOFF


@pytest.fixture()
def pix_gateway():
    from reconciliation.gateway import set_pix_gateway
    from reconciliation.gateway.fake_adapter import FakePixGateway

    gateway = FakePixGateway()
    set_pix_gateway(gateway)
    return gateway


@pytest.fixture()
def card_gateway():
    from reconciliation.gateway import set_card_gateway
    from reconciliation.gateway.fake_adapter import FakeCardGateway

    gateway = FakeCardGateway()
    set_card_gateway(gateway)
    return gateway


@pytest.fixture()
def lettuce():
    return create_product("Alface crespa", stock=100)


@pytest.fixture()
def arugula():
    return create_product("Rúcula", stock=50)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def create_product(name, stock=100, stock_min=0):
    from protean import current_domain
    from reconciliation.stock.product import Product

    product = Product.create(name=name, stock=stock, stock_min=stock_min, unit_price=5.0)
    current_domain.repository_for(Product).add(product)
    return product


def create_order(product, quantity=2, payment_method="instant_payment", **overrides):
    from protean import current_domain
    from reconciliation.order.order import Order

    defaults = {
        "payment_method": payment_method,
        "items_data": [{"product_id": str(product.id), "quantity": quantity, "unit_price": 5.0}],
        "order_number": 1001,
    }
    if payment_method == "instant_payment":
        defaults["pix_transaction_id"] = "txid-order-001"
    defaults.update(overrides)
    order = Order.create(**defaults)
    current_domain.repository_for(Order).add(order)
    return order


def create_subscription(product, quantity=1, payment_method="instant_payment", **overrides):
    from protean import current_domain
    from reconciliation.subscription.subscription import Subscription

    defaults = {
        "payment_method": payment_method,
        "items_data": [{"product_id": str(product.id), "quantity": quantity, "unit_price": 10.0}],
        "frequency": "semanal",
        "delivery_weekday": "segunda",
        "subscription_number": 501,
    }
    if payment_method == "instant_payment":
        defaults["pix_transaction_id"] = "txid-sub-001"
        defaults["pix_authorization_id"] = "rec-001"
    else:
        defaults["card_session_id"] = "cs_test_001"
    defaults.update(overrides)
    subscription = Subscription.create(**defaults)
    current_domain.repository_for(Subscription).add(subscription)
    return subscription


def store_setting(key, value):
    from protean import current_domain
    from reconciliation.settings.setting import Setting

    current_domain.repository_for(Setting).add(Setting.create(key, value))


def audit_entries(event=None):
    from protean import current_domain
    from reconciliation.audit.audit_entry import AuditEntry

    entries = current_domain.repository_for(AuditEntry)._dao.query.all().items
    if event is not None:
        entries = [e for e in entries if e.event == event]
    return entries


@pytest.fixture()
def make_product():
    return create_product


@pytest.fixture()
def make_order():
    return create_order


@pytest.fixture()
def make_subscription():
    return create_subscription


@pytest.fixture()
def setting():
    return store_setting


@pytest.fixture()
def audit_log():
    return audit_entries
