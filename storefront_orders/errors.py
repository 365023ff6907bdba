"""Exceptions raised by the order service, each mapped to an HTTP status."""


class OrderServiceError(Exception):
    """Base exception for all order service errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationRequired(OrderServiceError):
    """Raised when a request carries no resolvable caller."""

    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class PermissionDenied(OrderServiceError):
    """Raised when the caller lacks the role an operation needs."""

    status_code = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class ValidationError(OrderServiceError):
    """Raised when request data is missing or malformed."""

    status_code = 400


class InvalidSignature(OrderServiceError):
    """Raised when a gateway callback signature does not match."""

    status_code = 400

    def __init__(self, order_id: str | None = None):
        self.order_id = order_id
        super().__init__("Invalid signature")


class OrderNotFound(OrderServiceError):
    """Raised when an order ID doesn't exist."""

    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class NotificationDeliveryFailure(OrderServiceError):
    """Raised when a customer email could not be delivered after all attempts."""

    status_code = 502

    def __init__(self, order_id: str, reason: str, attempts: int = 1):
        self.order_id = order_id
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Email delivery failed for order {order_id} after {attempts} attempt(s): {reason}")


class PersistenceFailure(OrderServiceError):
    """Raised when the document store rejects or fails an operation."""

    status_code = 500
