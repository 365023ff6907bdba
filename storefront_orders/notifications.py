"""Customer email notifications for settled orders."""

import base64
import smtplib
import time
from collections.abc import Callable
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from typing import Protocol

import requests
from pydantic import BaseModel, Field

from .config import Settings
from .errors import NotificationDeliveryFailure, OrderNotFound, ValidationError
from .hashing import format_amount
from .invoice import InvoiceRenderer
from .logger import logger
from .schemas import Order, OrderStatus, User
from .store import OrderRepository, ProductRepository, UserDirectory


class Attachment(BaseModel):
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


class MailMessage(BaseModel):
    """An outbound email, independent of the transport that sends it."""

    to: str
    subject: str
    html: str
    sender: str
    headers: dict[str, str] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)


class MailTransport(Protocol):
    """Protocol defining the interface for mail transports."""

    def send(self, message: MailMessage) -> str:
        """Send a message.

        Args:
            message: The message to send

        Returns:
            str: Provider message id

        Raises:
            Exception: Any transport error; the dispatcher decides whether to retry
        """
        ...


class SmtpMailTransport:
    """SMTP relay transport (STARTTLS + login)."""

    def __init__(self, host: str, port: int, user: str = "", password: str = "", timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def _build(self, message: MailMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = message.sender
        msg["To"] = message.to
        msg["Message-ID"] = make_msgid()
        for name, value in message.headers.items():
            msg[name] = value
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(message.html, subtype="html")
        for attachment in message.attachments:
            maintype, subtype = attachment.mime_type.split("/", 1)
            msg.add_attachment(
                attachment.content, maintype=maintype, subtype=subtype, filename=attachment.filename
            )
        return msg

    def send(self, message: MailMessage) -> str:
        msg = self._build(message)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)
        return msg["Message-ID"]

    def verify(self) -> bool:
        """Check that the relay accepts a connection and login. Never raises."""
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.noop()
        except Exception as e:
            logger.error(f"SMTP server check failed | host={self.host}:{self.port} | error={e}")
            return False
        logger.info(f"SMTP server is ready | host={self.host}:{self.port}")
        return True


class HttpApiMailTransport:
    """Transactional mail provider reached over a JSON send API."""

    def __init__(self, api_url: str, api_key: str, timeout: float = 15.0):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout

    def send(self, message: MailMessage) -> str:
        response = requests.post(
            self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "from": message.sender,
                "to": [message.to],
                "subject": message.subject,
                "html": message.html,
                "headers": message.headers,
                "attachments": [
                    {
                        "filename": a.filename,
                        "content": base64.b64encode(a.content).decode("ascii"),
                        "type": a.mime_type,
                    }
                    for a in message.attachments
                ],
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        try:
            return str(response.json().get("id", ""))
        except ValueError:
            return ""


def build_mail_transport(settings: Settings) -> MailTransport:
    """Create the transport selected by ``settings.mail_transport``."""
    if settings.mail_transport == "api":
        return HttpApiMailTransport(
            settings.mail_api_url,
            settings.mail_api_key.get_secret_value(),
            timeout=settings.mail_api_timeout,
        )
    return SmtpMailTransport(
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_user,
        settings.smtp_password.get_secret_value(),
        timeout=settings.smtp_timeout,
    )


def render_order_email(order: Order, product_names: dict[str, str], store_name: str, currency: str = "LKR") -> str:
    """Render the HTML body of an order confirmation."""
    items_list = "".join(
        f"<li>{escape(product_names.get(item.product_id) or 'Unknown Product')} - "
        f"Size: {escape(item.size)}, Quantity: {item.quantity}, "
        f"Price: {format_amount(item.price)} {currency}</li>"
        for item in order.items
    )
    return (
        f"<h1>Order Confirmation #{escape(order.order_id)}</h1>"
        "<p>Thank you for your purchase!</p>"
        f"<p><strong>Order Total:</strong> {format_amount(order.total_amount)} {currency}</p>"
        f"<p><strong>Payment Status:</strong> {order.status.value}</p>"
        "<h2>Order Details:</h2>"
        f"<ul>{items_list}</ul>"
        "<p>We'll notify you when your items ship.</p>"
        f"<p>Thank you for shopping with {escape(store_name)}!</p>"
    )


class NotificationDispatcher:
    """Sends order confirmations with bounded retry and records failures on the order."""

    def __init__(
        self,
        settings: Settings,
        transport: MailTransport,
        orders: OrderRepository,
        products: ProductRepository,
        users: UserDirectory,
        invoice_renderer: InvoiceRenderer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.orders = orders
        self.products = products
        self.users = users
        self.invoice_renderer = invoice_renderer
        self._sleep = sleep

    def product_names(self, order: Order) -> dict[str, str]:
        """Look up display names for every distinct product on the order in one query."""
        return {p.product_id: p.name for p in self.products.find_many(order.product_ids)}

    def build_confirmation(self, order: Order, user: User) -> MailMessage:
        names = self.product_names(order)
        message = MailMessage(
            to=str(user.email),
            subject=f"Your Order #{order.order_id} Confirmation",
            html=render_order_email(order, names, self.settings.store_name, self.settings.currency),
            sender=f"{self.settings.store_name} <{self.settings.from_email}>",
            headers={"X-Mailer": f"{self.settings.store_name} Server", "Priority": "high"},
        )
        if self.settings.attach_invoice and self.invoice_renderer is not None:
            message.attachments.append(
                Attachment(
                    filename=f"invoice-{order.order_id}.pdf",
                    content=self.invoice_renderer.render(order, names, user),
                )
            )
        return message

    def deliver(self, order_id: str, message: MailMessage) -> str:
        """Send a message, retrying with a fixed backoff.

        Args:
            order_id: Order the message belongs to, for logging
            message: The message to send

        Returns:
            str: Provider message id

        Raises:
            NotificationDeliveryFailure: If every attempt failed
        """
        attempts = self.settings.notify_max_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                message_id = self.transport.send(message)
                logger.info(f"Email sent | order_id={order_id} | attempt={attempt} | message_id={message_id}")
                return message_id
            except Exception as e:
                last_error = e
                logger.warning(f"Email attempt {attempt}/{attempts} failed | order_id={order_id} | error={e}")
                if attempt < attempts:
                    self._sleep(self.settings.notify_backoff_seconds)
        raise NotificationDeliveryFailure(order_id, str(last_error), attempts=attempts)

    def _send_confirmation(self, order: Order) -> str:
        user = self.users.find(order.user_id)
        if user is None or not user.email:
            raise NotificationDeliveryFailure(order.order_id, f"No email address for user {order.user_id}", attempts=0)
        return self.deliver(order.order_id, self.build_confirmation(order, user))

    def _record_failure(self, order_id: str, error: Exception) -> None:
        message = error.message if isinstance(error, NotificationDeliveryFailure) else f"Email delivery failed: {error}"
        if not self.orders.append_notification_error(order_id, message):
            logger.error(f"Could not record notification error | order_id={order_id}")

    def dispatch_order_confirmation(self, order_id: str) -> bool:
        """Best-effort confirmation email for a freshly paid order.

        Runs off the request path. Failures are logged and appended to the
        order's error log; nothing is raised.

        Returns:
            bool: True if the email was handed to the transport
        """
        try:
            order = self.orders.find(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            self._send_confirmation(order)
            return True
        except Exception as e:
            logger.error(f"Order confirmation not delivered | order_id={order_id} | error={e}")
            self._record_failure(order_id, e)
            return False

    def resend(self, order_id: str) -> str:
        """Manually resend the confirmation for a paid order.

        Raises:
            OrderNotFound: If the order doesn't exist
            ValidationError: If the order has not been paid
            NotificationDeliveryFailure: If delivery failed; also recorded on the order
        """
        order = self.orders.find(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.PAID:
            raise ValidationError(f"Order {order_id} is {order.status.value}; only paid orders can be emailed")
        try:
            return self._send_confirmation(order)
        except NotificationDeliveryFailure as e:
            self._record_failure(order_id, e)
            raise
