"""Keyed MD5 signatures for the hosted checkout gateway.

Both directions use the same two-stage construction: the merchant secret is
hashed on its own, its uppercase hex digest is appended to a fixed sequence of
fields, and the uppercase hex MD5 of that string is the signature. The field
order is part of the gateway protocol.
"""

import hashlib
import hmac
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CHECKOUT_FIELDS = ("merchant_id", "order_id", "amount", "currency")
CALLBACK_FIELDS = ("merchant_id", "order_id", "payhere_amount", "payhere_currency", "status_code")

_CENTS = Decimal("0.01")


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def format_amount(amount: Any) -> str:
    """Format an amount with exactly two decimal digits and no separators.

    Args:
        amount: A number or numeric string, e.g. ``2000`` or ``"10.5"``.

    Returns:
        str: The amount rounded half-up to cents, e.g. ``"2000.00"``. Values
        that are not numeric are returned unchanged as strings.

    Raises:
        ValueError: If the amount is infinite or NaN
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return str(amount)
    if not value.is_finite():
        raise ValueError(f"Amount is not a finite number: {amount}")
    return str(value.quantize(_CENTS, rounding=ROUND_HALF_UP))


def _field(fields: Mapping[str, Any], name: str) -> str:
    value = fields.get(name)
    return "" if value is None else str(value)


def sign_checkout(fields: Mapping[str, Any], secret: str) -> str:
    """Compute the hash sent with an outbound payment request.

    Args:
        fields: Payment request fields; ``merchant_id``, ``order_id``,
            ``amount`` and ``currency`` are used.
        secret: The merchant secret.

    Returns:
        str: 32-character uppercase hex signature.
    """
    payload = (
        _field(fields, "merchant_id")
        + _field(fields, "order_id")
        + format_amount(_field(fields, "amount"))
        + _field(fields, "currency")
        + _md5_upper(secret)
    )
    return _md5_upper(payload)


def verify_callback(fields: Mapping[str, Any], secret: str) -> str:
    """Compute the signature the gateway should have sent with a notification.

    The gross amount is used exactly as received. The ``md5sig`` and
    ``method`` fields are not part of the signed payload.

    Args:
        fields: Notification fields as posted by the gateway.
        secret: The merchant secret.

    Returns:
        str: 32-character uppercase hex signature.
    """
    payload = "".join(_field(fields, name) for name in CALLBACK_FIELDS) + _md5_upper(secret)
    return _md5_upper(payload)


def signatures_match(expected: str, received: str | None) -> bool:
    """Case-sensitive, constant-time signature comparison."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
