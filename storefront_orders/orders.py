"""Order creation and queries."""

import random
import time

from .config import Settings
from .errors import AuthenticationRequired, OrderNotFound, PermissionDenied, PersistenceFailure, ValidationError
from .hashing import format_amount, sign_checkout
from .invoice import InvoiceRenderer
from .logger import logger
from .schemas import (
    CheckoutResponse,
    CreateOrderRequest,
    CustomerSummary,
    Order,
    OrderDetails,
    PaymentRequest,
    User,
)
from .store import OrderRepository, ProductRepository, UserDirectory


def generate_order_id() -> str:
    """Return a new business order id, e.g. ``ORD_1718000000000_0421``."""
    return f"ORD_{int(time.time() * 1000)}_{random.randint(0, 9999):04d}"


class OrderService:
    """Create-order, fetch and list operations behind the storefront API."""

    def __init__(
        self,
        settings: Settings,
        orders: OrderRepository,
        products: ProductRepository,
        users: UserDirectory,
        invoice_renderer: InvoiceRenderer | None = None,
    ):
        self.settings = settings
        self.orders = orders
        self.products = products
        self.users = users
        self.invoice_renderer = invoice_renderer

    def create_order(self, user: User | None, request: CreateOrderRequest) -> CheckoutResponse:
        """Persist a Pending order and return the signed payment request.

        Args:
            user: The authenticated caller.
            request: Items and total from the storefront cart.

        Returns:
            CheckoutResponse: The payment fields to post to the gateway, and the order id.

        Raises:
            AuthenticationRequired: If there is no caller
            ValidationError: If the order has no items
        """
        if user is None:
            raise AuthenticationRequired()
        if not request.items:
            raise ValidationError("Order must contain at least one item")

        items_total = sum(item.price * item.quantity for item in request.items)
        if format_amount(items_total) != format_amount(request.total_amount):
            logger.warning(
                f"Order total does not match line items | user_id={user.user_id} "
                f"| total={request.total_amount} | items_total={items_total}"
            )

        order = self._insert_new(user, request)
        logger.info(f"Order created | order_id={order.order_id} | user_id={user.user_id} | total={order.total_amount}")

        payment = self.build_payment_request(order, user)
        return CheckoutResponse(payment_data=payment, order_id=order.order_id)

    def _insert_new(self, user: User, request: CreateOrderRequest, retries: int = 2) -> Order:
        def new_order() -> Order:
            return Order(
                order_id=generate_order_id(),
                user_id=user.user_id,
                items=request.items,
                total_amount=request.total_amount,
            )

        for _ in range(retries):
            order = new_order()
            try:
                return self.orders.insert(order)
            except PersistenceFailure:
                logger.warning(f"Order id collision, retrying | order_id={order.order_id}")
        return self.orders.insert(new_order())

    def build_payment_request(self, order: Order, user: User) -> PaymentRequest:
        """Build and sign the hosted checkout fields for an order."""
        s = self.settings
        frontend = s.frontend_url.rstrip("/")
        payment = PaymentRequest(
            merchant_id=s.merchant_id,
            return_url=f"{frontend}/order/{order.order_id}",
            cancel_url=f"{frontend}/cart",
            notify_url=s.notify_url,
            order_id=order.order_id,
            items=s.checkout_description,
            amount=format_amount(order.total_amount),
            currency=s.currency,
            first_name=user.first_name,
            last_name=user.last_name,
            email=str(user.email or ""),
            phone=user.phone or s.default_phone,
            address=user.address or s.default_address,
            city=user.city or s.default_city,
            country=user.country or s.default_country,
        )
        payment.hash = sign_checkout(payment.model_dump(), s.merchant_secret.get_secret_value())
        return payment

    def _find(self, order_id: str) -> Order:
        order = self.orders.find(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def product_names(self, order: Order) -> dict[str, str]:
        return {p.product_id: p.name for p in self.products.find_many(order.product_ids)}

    def get_order(self, order_id: str) -> OrderDetails:
        """Fetch one order with product names and customer fields filled in.

        Raises:
            OrderNotFound: If the order doesn't exist
        """
        order = self._find(order_id)
        names = self.product_names(order)
        items = [
            item.model_copy(update={"product_name": names.get(item.product_id, item.product_name)})
            for item in order.items
        ]
        details = OrderDetails(**order.model_dump(exclude={"items"}), items=items)
        user = self.users.find(order.user_id)
        if user is not None:
            details.customer = CustomerSummary(
                name=user.full_name, email=str(user.email) if user.email else None, phone=user.phone
            )
        return details

    def list_orders(self, caller: User | None, skip: int = 0, limit: int | None = None) -> list[Order]:
        """List every order, newest first. Admin only.

        Raises:
            AuthenticationRequired: If there is no caller
            PermissionDenied: If the caller is not an admin
        """
        if caller is None:
            raise AuthenticationRequired()
        if not caller.is_admin:
            raise PermissionDenied()
        return self.orders.list_all(skip=skip, limit=limit)

    def list_user_orders(self, caller: User | None, skip: int = 0, limit: int | None = None) -> list[Order]:
        if caller is None:
            raise AuthenticationRequired()
        return self.orders.list_by_user(caller.user_id, skip=skip, limit=limit)

    def render_invoice(self, order_id: str) -> bytes:
        """Render the PDF invoice for an order.

        Raises:
            OrderNotFound: If the order doesn't exist
        """
        if self.invoice_renderer is None:
            raise RuntimeError("No invoice renderer configured")
        order = self._find(order_id)
        return self.invoice_renderer.render(order, self.product_names(order), self.users.find(order.user_id))
