"""Test fixtures for the storefront order service tests."""

import hashlib

import pytest
from fastapi.testclient import TestClient

from storefront_orders.config import Settings
from storefront_orders.notifications import NotificationDispatcher
from storefront_orders.orders import OrderService
from storefront_orders.schemas import Order, OrderItem, Product, SizeVariant, User
from storefront_orders.server import create_app
from storefront_orders.settlement import SettlementWorkflow
from storefront_orders.store import InMemoryOrderStore, InMemoryProductStore, InMemoryUserDirectory

MERCHANT_ID = "1211149"
MERCHANT_SECRET = "MTIzNDU2Nzg5MDEyMzQ1Njc4OTA="


def reference_md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


class RecordingTransport:
    """Mail transport that records messages and can fail a set number of times."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.sent = []

    def send(self, message):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("SMTP connection refused")
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


class FakeInvoiceRenderer:
    def __init__(self):
        self.calls = []

    def render(self, order, product_names, user=None):
        self.calls.append(order.order_id)
        return b"%PDF-1.4 fake invoice for " + order.order_id.encode()


@pytest.fixture
def settings():
    """Settings pointing at a test merchant, with no backoff delay."""
    return Settings(
        merchant_id=MERCHANT_ID,
        merchant_secret=MERCHANT_SECRET,
        frontend_url="https://shop.example.com",
        backend_url="https://api.example.com",
        from_email="orders@example.com",
        store_name="FreshNets",
        notify_backoff_seconds=0,
    )


@pytest.fixture
def customer():
    return User(
        user_id="user-1",
        first_name="Nimal",
        last_name="Perera",
        email="nimal@example.com",
        phone="0711111111",
    )


@pytest.fixture
def admin():
    return User(user_id="admin-1", first_name="Store", last_name="Admin", email="admin@example.com", is_admin=True)


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def product_store():
    return InMemoryProductStore(
        [
            Product(
                product_id="P1",
                name="Linen Shirt",
                category="shirts",
                sizes=[SizeVariant(size="M", price=1000, stock=10), SizeVariant(size="L", price=1000, stock=4)],
            ),
            Product(
                product_id="P2",
                name="Denim Shorts",
                category="shorts",
                sizes=[SizeVariant(size="32", price=2500, stock=3)],
            ),
        ]
    )


@pytest.fixture
def user_directory(customer, admin):
    return InMemoryUserDirectory([customer, admin])


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def invoice_renderer():
    return FakeInvoiceRenderer()


@pytest.fixture
def pending_order(order_store):
    """A Pending order for two M shirts and one pair of shorts."""
    order = Order(
        order_id="ORD_1718000000000_0421",
        user_id="user-1",
        items=[
            OrderItem(product_id="P1", size="M", quantity=2, price=1000),
            OrderItem(product_id="P2", size="32", quantity=1, price=2500),
        ],
        total_amount=4500,
    )
    return order_store.insert(order)


@pytest.fixture
def settlement(settings, order_store, product_store):
    return SettlementWorkflow(settings, order_store, product_store)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def dispatcher(settings, transport, order_store, product_store, user_directory, invoice_renderer, sleeps):
    return NotificationDispatcher(
        settings,
        transport,
        order_store,
        product_store,
        user_directory,
        invoice_renderer=invoice_renderer,
        sleep=sleeps.append,
    )


@pytest.fixture
def order_service(settings, order_store, product_store, user_directory, invoice_renderer):
    return OrderService(settings, order_store, product_store, user_directory, invoice_renderer)


@pytest.fixture
def app(settings, order_store, product_store, user_directory, transport, sleeps):
    return create_app(
        settings=settings,
        orders=order_store,
        products=product_store,
        users=user_directory,
        transport=transport,
        sleep=sleeps.append,
    )


@pytest.fixture
def test_client(app):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def sign_notification():
    """Build gateway notification fields signed the way the gateway signs them."""

    def _sign(order_id, amount="4500.00", status_code="2", payment_id="320025071234", secret=MERCHANT_SECRET):
        fields = {
            "merchant_id": MERCHANT_ID,
            "order_id": order_id,
            "payment_id": payment_id,
            "payhere_amount": amount,
            "payhere_currency": "LKR",
            "status_code": status_code,
            "method": "VISA",
            "status_message": "Successfully completed the payment.",
        }
        fields["md5sig"] = reference_md5(
            MERCHANT_ID + order_id + amount + "LKR" + status_code + reference_md5(secret)
        )
        return fields

    return _sign
