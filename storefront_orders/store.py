"""Document store for orders, products and users.

The repositories expose narrow atomic operations (conditional status
transition, per-size stock increment, error-log append) instead of
read-modify-write, so duplicate or concurrent gateway callbacks are safe
without a global lock. The in-memory implementations guard every operation
with a lock and hand out copies, the way a document database returns fresh
documents.
"""

import threading
from typing import Protocol

from .errors import PersistenceFailure
from .logger import logger
from .schemas import NotificationError, Order, OrderStatus, Product, User, utcnow


class OrderRepository(Protocol):
    """Persistence operations the order service needs."""

    def insert(self, order: Order) -> Order: ...

    def find(self, order_id: str) -> Order | None: ...

    def list_all(self, skip: int = 0, limit: int | None = None) -> list[Order]: ...

    def list_by_user(self, user_id: str, skip: int = 0, limit: int | None = None) -> list[Order]: ...

    def transition(self, order_id: str, status: OrderStatus, payment_id: str | None = None) -> Order | None:
        """Move a Pending order to a terminal status; None if it was not Pending."""
        ...

    def append_notification_error(self, order_id: str, message: str) -> bool: ...


class ProductRepository(Protocol):
    def find(self, product_id: str) -> Product | None: ...

    def find_many(self, product_ids: list[str]) -> list[Product]: ...

    def increment_stock(self, product_id: str, size: str, delta: int) -> bool:
        """Add ``delta`` to one size's stock; False if no such product/size."""
        ...


class UserDirectory(Protocol):
    def find(self, user_id: str) -> User | None: ...


def _page(orders: list[Order], skip: int, limit: int | None) -> list[Order]:
    # insertion order breaks created_at ties
    ranked = sorted(enumerate(orders), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    orders = [order for _, order in ranked]
    end = None if limit is None else skip + limit
    return [o.model_copy(deep=True) for o in orders[skip:end]]


class InMemoryOrderStore:
    """Order collection keyed by business order id."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = threading.Lock()

    def insert(self, order: Order) -> Order:
        with self._lock:
            if order.order_id in self._orders:
                raise PersistenceFailure(f"Duplicate order id: {order.order_id}")
            self._orders[order.order_id] = order.model_copy(deep=True)
        logger.debug(f"Order stored | order_id={order.order_id}")
        return order.model_copy(deep=True)

    def find(self, order_id: str) -> Order | None:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def list_all(self, skip: int = 0, limit: int | None = None) -> list[Order]:
        with self._lock:
            return _page(list(self._orders.values()), skip, limit)

    def list_by_user(self, user_id: str, skip: int = 0, limit: int | None = None) -> list[Order]:
        with self._lock:
            return _page([o for o in self._orders.values() if o.user_id == user_id], skip, limit)

    def transition(self, order_id: str, status: OrderStatus, payment_id: str | None = None) -> Order | None:
        if status == OrderStatus.PENDING:
            raise ValueError("Orders can only transition to a terminal status")
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != OrderStatus.PENDING:
                return None
            order.status = status
            order.payment_id = payment_id if status == OrderStatus.PAID else None
            order.updated_at = utcnow()
            return order.model_copy(deep=True)

    def append_notification_error(self, order_id: str, message: str) -> bool:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return False
            order.notification_errors.append(NotificationError(message=message))
            return True


class InMemoryProductStore:
    """Product catalogue; stock changes only through ``increment_stock``."""

    def __init__(self, products: list[Product] | None = None) -> None:
        self._products: dict[str, Product] = {}
        self._lock = threading.Lock()
        for product in products or []:
            self.add(product)

    def add(self, product: Product) -> None:
        with self._lock:
            self._products[product.product_id] = product.model_copy(deep=True)

    def find(self, product_id: str) -> Product | None:
        with self._lock:
            product = self._products.get(product_id)
            return product.model_copy(deep=True) if product else None

    def find_many(self, product_ids: list[str]) -> list[Product]:
        wanted = set(product_ids)
        with self._lock:
            return [p.model_copy(deep=True) for pid, p in self._products.items() if pid in wanted]

    def increment_stock(self, product_id: str, size: str, delta: int) -> bool:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return False
            for variant in product.sizes:
                if variant.size == size:
                    variant.stock += delta
                    return True
            return False


class InMemoryUserDirectory:
    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {u.user_id: u for u in users or []}

    def add(self, user: User) -> None:
        self._users[user.user_id] = user

    def find(self, user_id: str) -> User | None:
        return self._users.get(user_id)
