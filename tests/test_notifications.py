"""Tests for confirmation email dispatch."""

import pytest
import requests

from storefront_orders.errors import NotificationDeliveryFailure, OrderNotFound, ValidationError
from storefront_orders.notifications import (
    HttpApiMailTransport,
    MailMessage,
    NotificationDispatcher,
    SmtpMailTransport,
    build_mail_transport,
    render_order_email,
)
from storefront_orders.schemas import OrderStatus


@pytest.fixture
def paid_order(order_store, pending_order):
    return order_store.transition(pending_order.order_id, OrderStatus.PAID, payment_id="320025071234")


def test_render_order_email_lists_items_with_names(pending_order):
    html = render_order_email(pending_order, {"P1": "Linen Shirt"}, "FreshNets")

    assert f"Order Confirmation #{pending_order.order_id}" in html
    assert "4500.00 LKR" in html
    assert "Linen Shirt - Size: M, Quantity: 2, Price: 1000.00 LKR" in html
    assert "Unknown Product - Size: 32" in html
    assert "FreshNets" in html


def test_render_order_email_escapes_product_names(pending_order):
    html = render_order_email(pending_order, {"P1": "<script>x</script>"}, "FreshNets")

    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_dispatch_sends_confirmation_with_invoice(dispatcher, transport, invoice_renderer, paid_order):
    assert dispatcher.dispatch_order_confirmation(paid_order.order_id) is True

    assert transport.attempts == 1
    message = transport.sent[0]
    assert message.to == "nimal@example.com"
    assert message.subject == f"Your Order #{paid_order.order_id} Confirmation"
    assert message.sender == "FreshNets <orders@example.com>"
    assert "Linen Shirt" in message.html
    assert "Denim Shorts" in message.html
    assert [a.filename for a in message.attachments] == [f"invoice-{paid_order.order_id}.pdf"]
    assert invoice_renderer.calls == [paid_order.order_id]


def test_product_names_use_one_bulk_lookup(dispatcher, product_store, paid_order, mocker):
    spy = mocker.spy(product_store, "find_many")

    names = dispatcher.product_names(paid_order)

    assert names == {"P1": "Linen Shirt", "P2": "Denim Shorts"}
    spy.assert_called_once_with(["P1", "P2"])


def test_dispatch_retries_with_fixed_backoff(dispatcher, transport, sleeps, order_store, paid_order):
    transport.failures = 2

    assert dispatcher.dispatch_order_confirmation(paid_order.order_id) is True

    assert transport.attempts == 3
    assert sleeps == [0, 0]
    assert order_store.find(paid_order.order_id).notification_errors == []


def test_dispatch_records_error_after_final_attempt(dispatcher, transport, sleeps, order_store, paid_order):
    transport.failures = 5

    assert dispatcher.dispatch_order_confirmation(paid_order.order_id) is False

    assert transport.attempts == 3
    assert len(sleeps) == 2
    errors = order_store.find(paid_order.order_id).notification_errors
    assert len(errors) == 1
    assert "after 3 attempt(s)" in errors[0].message
    assert "SMTP connection refused" in errors[0].message
    assert errors[0].timestamp is not None


def test_dispatch_without_customer_email_records_error(dispatcher, transport, user_directory, customer, order_store, paid_order):
    user_directory.add(customer.model_copy(update={"email": None}))

    assert dispatcher.dispatch_order_confirmation(paid_order.order_id) is False

    assert transport.attempts == 0
    errors = order_store.find(paid_order.order_id).notification_errors
    assert "No email address" in errors[0].message


def test_dispatch_for_missing_order_never_raises(dispatcher, transport):
    assert dispatcher.dispatch_order_confirmation("ORD_0_0000") is False
    assert transport.attempts == 0


def test_dispatch_contains_invoice_render_errors(dispatcher, invoice_renderer, transport, order_store, paid_order, mocker):
    mocker.patch.object(invoice_renderer, "render", side_effect=RuntimeError("font missing"))

    assert dispatcher.dispatch_order_confirmation(paid_order.order_id) is False
    assert transport.attempts == 0
    assert "font missing" in order_store.find(paid_order.order_id).notification_errors[0].message


def test_invoice_attachment_can_be_disabled(settings, transport, order_store, product_store, user_directory, invoice_renderer, paid_order):
    dispatcher = NotificationDispatcher(
        settings.model_copy(update={"attach_invoice": False}),
        transport,
        order_store,
        product_store,
        user_directory,
        invoice_renderer=invoice_renderer,
        sleep=lambda _: None,
    )

    dispatcher.dispatch_order_confirmation(paid_order.order_id)

    assert transport.sent[0].attachments == []
    assert invoice_renderer.calls == []


def test_resend_requires_paid_order(dispatcher, pending_order):
    with pytest.raises(ValidationError):
        dispatcher.resend(pending_order.order_id)


def test_resend_unknown_order(dispatcher):
    with pytest.raises(OrderNotFound):
        dispatcher.resend("ORD_0_0000")


def test_resend_raises_and_records_failure(dispatcher, transport, order_store, paid_order):
    transport.failures = 3

    with pytest.raises(NotificationDeliveryFailure) as exc_info:
        dispatcher.resend(paid_order.order_id)

    assert exc_info.value.attempts == 3
    assert len(order_store.find(paid_order.order_id).notification_errors) == 1


def test_smtp_transport_sends_message(mocker):
    smtp_class = mocker.patch("storefront_orders.notifications.smtplib.SMTP")
    server = smtp_class.return_value.__enter__.return_value
    transport = SmtpMailTransport("smtp.example.com", 587, "user", "pass", timeout=12)
    message = MailMessage(to="a@example.com", subject="Hi", html="<p>Hi</p>", sender="Shop <s@example.com>")

    message_id = transport.send(message)

    smtp_class.assert_called_once_with("smtp.example.com", 587, timeout=12)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("user", "pass")
    sent = server.send_message.call_args.args[0]
    assert sent["To"] == "a@example.com"
    assert sent["Subject"] == "Hi"
    assert message_id == sent["Message-ID"]


def test_http_api_transport_posts_json(mocker):
    post = mocker.patch("storefront_orders.notifications.requests.post")
    post.return_value.json.return_value = {"id": "abc123"}
    transport = HttpApiMailTransport("https://mail.example.com/send", "key-1", timeout=5)
    message = MailMessage(to="a@example.com", subject="Hi", html="<p>Hi</p>", sender="s@example.com")

    assert transport.send(message) == "abc123"

    kwargs = post.call_args.kwargs
    assert kwargs["headers"] == {"Authorization": "Bearer key-1"}
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert kwargs["timeout"] == 5


def test_http_api_transport_raises_on_error_status(mocker):
    post = mocker.patch("storefront_orders.notifications.requests.post")
    post.return_value.raise_for_status.side_effect = requests.HTTPError("503 Service Unavailable")
    transport = HttpApiMailTransport("https://mail.example.com/send", "key-1")

    with pytest.raises(requests.HTTPError):
        transport.send(MailMessage(to="a@example.com", subject="Hi", html="x", sender="s@example.com"))


def test_build_mail_transport_follows_settings(settings):
    assert isinstance(build_mail_transport(settings), SmtpMailTransport)
    assert isinstance(build_mail_transport(settings.model_copy(update={"mail_transport": "api"})), HttpApiMailTransport)


def test_smtp_transport_verify_checks_connection(mocker):
    smtp_class = mocker.patch("storefront_orders.notifications.smtplib.SMTP")
    server = smtp_class.return_value.__enter__.return_value
    transport = SmtpMailTransport("smtp.example.com", 587, "user", "pass")

    assert transport.verify() is True

    server.starttls.assert_called_once()
    server.login.assert_called_once_with("user", "pass")
    server.noop.assert_called_once()
    server.send_message.assert_not_called()


def test_smtp_transport_verify_reports_failure(mocker):
    mocker.patch("storefront_orders.notifications.smtplib.SMTP", side_effect=OSError("connection refused"))

    assert SmtpMailTransport("smtp.example.com", 587).verify() is False
