"""Service configuration loaded from the environment."""

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and passed to components.

    Attributes:
        merchant_id: Merchant identifier issued by the payment gateway.
        merchant_secret: Shared secret used for checkout and callback hashes.
        currency: Currency code sent with every payment request.
        frontend_url: Storefront base URL used for return/cancel redirects.
        backend_url: Public base URL of this service, used for the notify URL.
        mail_transport: Which mail transport to build ("smtp" or "api").
        smtp_host, smtp_port, smtp_user, smtp_password: SMTP relay settings.
        smtp_timeout: Connection and socket timeout for SMTP, in seconds.
        mail_api_url, mail_api_key: HTTP send API settings.
        mail_api_timeout: Request timeout for the send API, in seconds.
        from_email: Sender address for customer emails.
        store_name: Display name used in emails and invoices.
        notify_max_attempts: Delivery attempts before giving up.
        notify_backoff_seconds: Fixed delay between delivery attempts.
        attach_invoice: Attach a PDF invoice to confirmation emails.
    """

    model_config = ConfigDict(frozen=True)

    merchant_id: str = ""
    merchant_secret: SecretStr = SecretStr("")
    currency: str = "LKR"
    checkout_description: str = "Fashion Products"

    frontend_url: str = "http://localhost:3000"
    backend_url: str = "http://localhost:8000"

    mail_transport: Literal["smtp", "api"] = "smtp"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_timeout: float = Field(30.0, gt=0)
    mail_api_url: str = "https://api.mail-service.com/v1/send"
    mail_api_key: SecretStr = SecretStr("")
    mail_api_timeout: float = Field(15.0, gt=0)
    from_email: str = "orders@freshnets.lk"
    store_name: str = "FreshNets"

    notify_max_attempts: int = Field(3, ge=1)
    notify_backoff_seconds: float = Field(2.0, ge=0)
    attach_invoice: bool = True

    default_phone: str = "0771234567"
    default_address: str = "No. 123, Main Street"
    default_city: str = "Colombo"
    default_country: str = "Sri Lanka"

    log_level: str = "INFO"
    log_file: str | None = None

    @property
    def notify_url(self) -> str:
        """URL the gateway posts payment notifications to."""
        return f"{self.backend_url.rstrip('/')}/api/orders/notify"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset ones.

        Returns:
            Settings: The populated configuration.
        """
        env_map = {
            "merchant_id": "PAYHERE_MERCHANT_ID",
            "merchant_secret": "PAYHERE_SECRET",
            "currency": "PAYHERE_CURRENCY",
            "checkout_description": "CHECKOUT_DESCRIPTION",
            "frontend_url": "FRONTEND_URL",
            "backend_url": "BACKEND_URL",
            "mail_transport": "MAIL_TRANSPORT",
            "smtp_host": "SMTP_HOST",
            "smtp_port": "SMTP_PORT",
            "smtp_user": "SMTP_USER",
            "smtp_password": "SMTP_PASS",
            "smtp_timeout": "SMTP_TIMEOUT",
            "mail_api_url": "MAIL_API_URL",
            "mail_api_key": "MAIL_API_KEY",
            "mail_api_timeout": "MAIL_API_TIMEOUT",
            "from_email": "FROM_EMAIL",
            "store_name": "STORE_NAME",
            "notify_max_attempts": "NOTIFY_MAX_ATTEMPTS",
            "notify_backoff_seconds": "NOTIFY_BACKOFF_SECONDS",
            "attach_invoice": "ATTACH_INVOICE",
            "default_phone": "DEFAULT_PHONE",
            "default_address": "DEFAULT_ADDRESS",
            "default_city": "DEFAULT_CITY",
            "default_country": "DEFAULT_COUNTRY",
            "log_level": "LOG_LEVEL",
            "log_file": "LOG_FILE",
        }
        values = {field: os.environ[var] for field, var in env_map.items() if os.getenv(var)}
        return cls(**values)
