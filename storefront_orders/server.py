"""FastAPI server implementation for the storefront order service."""

import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from io import BytesIO

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import InvalidSignature, OrderNotFound, OrderServiceError, ValidationError
from .invoice import InvoiceRenderer, ReportLabInvoiceRenderer
from .logger import logger
from .notifications import MailTransport, NotificationDispatcher, build_mail_transport
from .orders import OrderService
from .schemas import CheckoutResponse, CreateOrderRequest, Order, OrderDetails, PaymentNotification, User
from .settlement import SettlementWorkflow
from .store import (
    InMemoryOrderStore,
    InMemoryProductStore,
    InMemoryUserDirectory,
    OrderRepository,
    ProductRepository,
    UserDirectory,
)


class ServiceState:
    """Components wired together once per process."""

    def __init__(
        self,
        settings: Settings,
        orders: OrderRepository,
        products: ProductRepository,
        users: UserDirectory,
        transport: MailTransport,
        invoice_renderer: InvoiceRenderer,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.orders = orders
        self.products = products
        self.users = users
        self.transport = transport
        self.order_service = OrderService(settings, orders, products, users, invoice_renderer)
        self.settlement = SettlementWorkflow(settings, orders, products)
        self.dispatcher = NotificationDispatcher(
            settings, transport, orders, products, users, invoice_renderer=invoice_renderer, sleep=sleep
        )


def get_state(request: Request) -> ServiceState:
    return request.app.state.services


def current_user(
    state: ServiceState = Depends(get_state),
    x_user_id: str | None = Header(default=None),
) -> User | None:
    """Resolve the caller set by the upstream authentication layer."""
    if not x_user_id:
        return None
    return state.users.find(x_user_id)


router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=CheckoutResponse)
def create_order(
    body: CreateOrderRequest,
    state: ServiceState = Depends(get_state),
    user: User | None = Depends(current_user),
):
    """Create a Pending order and return the signed payment request.

    Returns:
        CheckoutResponse: ``{success, paymentData, orderId}``
    """
    return state.order_service.create_order(user, body)


@router.get("", response_model=list[Order])
def list_orders(
    skip: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1, le=500),
    state: ServiceState = Depends(get_state),
    user: User | None = Depends(current_user),
):
    """List all orders (admin)."""
    return state.order_service.list_orders(user, skip=skip, limit=limit)


@router.get("/user", response_model=list[Order])
def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1, le=500),
    state: ServiceState = Depends(get_state),
    user: User | None = Depends(current_user),
):
    """List the caller's orders."""
    return state.order_service.list_user_orders(user, skip=skip, limit=limit)


async def _notification_fields(request: Request) -> dict:
    fields = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = await request.json()
            if isinstance(body, dict):
                fields.update(body)
        else:
            form = await request.form()
            fields.update({key: value for key, value in form.items() if isinstance(value, str)})
    return fields


@router.api_route("/notify", methods=["GET", "POST"], response_class=PlainTextResponse)
async def payment_notification(
    request: Request,
    background_tasks: BackgroundTasks,
    state: ServiceState = Depends(get_state),
):
    """Gateway payment notification.

    Answers ``200 OK`` for every handled outcome, including duplicates, so
    the gateway stops retrying. The confirmation email is sent after the
    response.
    """
    try:
        fields = await _notification_fields(request)
        notification = PaymentNotification.model_validate(fields)
    except (PydanticValidationError, ValueError) as e:
        logger.warning(f"Malformed payment notification: {e}")
        return PlainTextResponse("Invalid notification", status_code=400)

    logger.info(
        f"Payment notification received | order_id={notification.order_id} "
        f"| status_code={notification.status_code} | payment_id={notification.payment_id}"
    )
    try:
        result = await run_in_threadpool(state.settlement.settle, notification)
    except InvalidSignature:
        return PlainTextResponse("Invalid signature", status_code=400)
    except ValidationError as e:
        return PlainTextResponse(e.message, status_code=400)
    except OrderNotFound:
        return PlainTextResponse("Order not found", status_code=404)
    except Exception:
        logger.exception(f"Error processing payment notification | order_id={notification.order_id}")
        return PlainTextResponse("Error processing payment", status_code=500)

    if result.notify:
        background_tasks.add_task(state.dispatcher.dispatch_order_confirmation, result.order_id)
    return PlainTextResponse("OK")


@router.get("/{order_id}", response_model=OrderDetails)
def get_order(order_id: str, state: ServiceState = Depends(get_state)):
    """Fetch one order with product names and customer details."""
    return state.order_service.get_order(order_id)


@router.post("/{order_id}/send-email")
def send_order_email(order_id: str, state: ServiceState = Depends(get_state)):
    """Resend the confirmation email for a paid order."""
    message_id = state.dispatcher.resend(order_id)
    return {"success": True, "message": f"Confirmation email sent for order {order_id}", "messageId": message_id}


@router.get("/{order_id}/generate-pdf")
def generate_order_pdf(order_id: str, state: ServiceState = Depends(get_state)):
    """Download the order invoice as a PDF."""
    pdf = state.order_service.render_invoice(order_id)
    return StreamingResponse(
        BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{order_id}.pdf"'},
    )


async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    """Map OrderServiceError subclasses to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "error_type": "ValidationError", "errors": errors},
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_type": "UnexpectedError"},
    )


def create_app(
    settings: Settings | None = None,
    orders: OrderRepository | None = None,
    products: ProductRepository | None = None,
    users: UserDirectory | None = None,
    transport: MailTransport | None = None,
    invoice_renderer: InvoiceRenderer | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FastAPI:
    """Build the FastAPI application with its components.

    Args:
        settings: Configuration; read from the environment when omitted
        orders: Order repository; in-memory when omitted
        products: Product repository; in-memory when omitted
        users: User directory; in-memory when omitted
        transport: Mail transport; chosen from settings when omitted
        invoice_renderer: PDF renderer; ReportLab when omitted
        sleep: Backoff sleep used between email attempts

    Returns:
        FastAPI: The configured application
    """
    settings = settings or Settings.from_env()
    state = ServiceState(
        settings=settings,
        orders=orders if orders is not None else InMemoryOrderStore(),
        products=products if products is not None else InMemoryProductStore(),
        users=users if users is not None else InMemoryUserDirectory(),
        transport=transport if transport is not None else build_mail_transport(settings),
        invoice_renderer=invoice_renderer or ReportLabInvoiceRenderer(settings.store_name, settings.currency),
        sleep=sleep,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not settings.merchant_id or not settings.merchant_secret.get_secret_value():
            logger.warning("Payment gateway merchant id or secret is not configured")
        verify = getattr(state.transport, "verify", None)
        if verify is not None:
            await run_in_threadpool(verify)
        logger.info(
            f"Order service starting | merchant_id={settings.merchant_id} | currency={settings.currency} "
            f"| mail_transport={settings.mail_transport} | notify_url={settings.notify_url}"
        )
        yield
        logger.info("Order service shutdown complete")

    app = FastAPI(title="Storefront Order Service", lifespan=lifespan)
    app.state.services = state
    app.add_exception_handler(OrderServiceError, order_service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy"}

    app.include_router(router)
    logger.info("API router mounted.")
    return app


app = create_app()
