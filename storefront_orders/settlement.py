"""Payment notification handling.

A gateway notification moves an order from Pending to Paid or Failed exactly
once. The signature is checked before anything is read or written; the state
change is a conditional transition in the store, so a retried or concurrent
duplicate notification finds the order already terminal and becomes a no-op.
Stock decrements and the confirmation email happen only for the caller that
won the transition.
"""

from .config import Settings
from .errors import InvalidSignature, OrderNotFound, ValidationError
from .hashing import format_amount, signatures_match, verify_callback
from .logger import logger
from .schemas import Order, OrderStatus, PaymentNotification, SettlementResult
from .store import OrderRepository, ProductRepository


class SettlementWorkflow:
    """Verifies gateway notifications and settles the matching order.

    Attributes:
        settings: Service configuration holding the merchant secret.
        orders: Order repository.
        products: Product repository whose per-size stock is decremented.
    """

    def __init__(self, settings: Settings, orders: OrderRepository, products: ProductRepository):
        self.settings = settings
        self.orders = orders
        self.products = products

    def verify(self, notification: PaymentNotification) -> None:
        """Check the notification signature.

        Raises:
            InvalidSignature: If the recomputed signature differs from ``md5sig``
        """
        expected = verify_callback(
            notification.model_dump(exclude={"md5sig", "method"}),
            self.settings.merchant_secret.get_secret_value(),
        )
        if not signatures_match(expected, notification.md5sig):
            logger.warning(
                f"Rejected payment notification with invalid signature | order_id={notification.order_id} "
                f"| status_code={notification.status_code}"
            )
            raise InvalidSignature(notification.order_id)

    def settle(self, notification: PaymentNotification) -> SettlementResult:
        """Handle one gateway notification.

        Args:
            notification: The parsed notification fields.

        Returns:
            SettlementResult: ``paid``, ``failed`` or ``already_processed``;
            ``notify`` is True only when the caller should send the
            confirmation email.

        Raises:
            InvalidSignature: Signature mismatch; nothing was changed
            OrderNotFound: Unknown order id; nothing was changed
            ValidationError: Success notification without a payment id; nothing was changed
        """
        self.verify(notification)

        order = self.orders.find(notification.order_id)
        if order is None:
            logger.warning(f"Payment notification for unknown order | order_id={notification.order_id}")
            raise OrderNotFound(notification.order_id)

        if order.is_terminal:
            logger.info(
                f"Duplicate payment notification ignored | order_id={order.order_id} | status={order.status.value}"
            )
            return SettlementResult(order_id=order.order_id, outcome="already_processed")

        if notification.is_success:
            return self._settle_paid(order, notification)
        return self._settle_failed(order, notification)

    def _settle_paid(self, order: Order, notification: PaymentNotification) -> SettlementResult:
        if not notification.payment_id.strip():
            logger.warning(f"Successful payment notification without payment_id | order_id={order.order_id}")
            raise ValidationError("Successful payment notification must carry a payment_id")

        expected_amount = format_amount(order.total_amount)
        try:
            paid_amount = format_amount(notification.payhere_amount)
        except ValueError:
            paid_amount = notification.payhere_amount
        if paid_amount != expected_amount:
            logger.warning(
                f"Paid amount differs from order total | order_id={order.order_id} "
                f"| paid={notification.payhere_amount} | expected={expected_amount}"
            )

        updated = self.orders.transition(order.order_id, OrderStatus.PAID, payment_id=notification.payment_id)
        if updated is None:
            logger.info(f"Order settled concurrently, skipping side effects | order_id={order.order_id}")
            return SettlementResult(order_id=order.order_id, outcome="already_processed")
        logger.info(f"Order paid | order_id={order.order_id} | payment_id={notification.payment_id}")

        stock_errors = self._decrement_stock(updated)
        return SettlementResult(order_id=order.order_id, outcome="paid", notify=True, stock_errors=stock_errors)

    def _settle_failed(self, order: Order, notification: PaymentNotification) -> SettlementResult:
        updated = self.orders.transition(order.order_id, OrderStatus.FAILED)
        if updated is None:
            logger.info(f"Order settled concurrently, skipping | order_id={order.order_id}")
            return SettlementResult(order_id=order.order_id, outcome="already_processed")
        logger.info(
            f"Order payment failed | order_id={order.order_id} | status_code={notification.status_code} "
            f"| status_message={notification.status_message}"
        )
        return SettlementResult(order_id=order.order_id, outcome="failed")

    def _decrement_stock(self, order: Order) -> list[str]:
        """Decrement stock for every line item, recording failures without rolling back."""
        errors = []
        for item in order.items:
            try:
                matched = self.products.increment_stock(item.product_id, item.size, -item.quantity)
                if not matched:
                    errors.append(f"Stock update failed: no product {item.product_id} with size {item.size}")
            except Exception as e:
                logger.exception(
                    f"Stock update error | order_id={order.order_id} | product_id={item.product_id} | size={item.size}",
                )
                errors.append(f"Stock update failed for {item.product_id}/{item.size}: {e}")

        for message in errors:
            logger.error(f"{message} | order_id={order.order_id}")
            self.orders.append_notification_error(order.order_id, message)
        if not errors:
            logger.info(f"Stock updated | order_id={order.order_id} | lines={len(order.items)}")
        return errors
