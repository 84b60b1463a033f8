"""FastAPI server implementation for the Cashier Service."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from confluent_kafka.admin import AdminClient
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .cart_filter import CartMessageFilter
from .catalog import CatalogStore, InMemoryCatalogStore
from .classifier import CheckoutResultClassifier
from .config import CashierSettings
from .consumer import CartConsumer
from .errors import (
    CashierError,
    CheckoutGatewayUnavailable,
    EmptyCart,
    InsufficientCash,
    InvalidCartId,
    InvalidSessionState,
    ItemNotInCart,
    PersistenceFailure,
    TransportUnavailable,
)
from .gateway import SnapCheckoutGateway
from .ledger import InMemorySalesLedger
from .logger import logger
from .producer import StatusProducer
from .router import TopicRouter
from .schemas import (
    CashPayment,
    CheckoutRequest,
    NavigationEvent,
    NavigationResult,
    QuantityUpdate,
    SaleRecord,
    SessionView,
    StartSessionRequest,
)
from .session import SessionController

ERROR_STATUS = (
    (InvalidCartId, 422),
    (InsufficientCash, 422),
    (EmptyCart, 422),
    (ItemNotInCart, 404),
    (InvalidSessionState, 409),
    (TransportUnavailable, 503),
    (CheckoutGatewayUnavailable, 502),
    (PersistenceFailure, 500),
)


class CashierState:
    """Class to manage cashier service state."""

    def __init__(self):
        """Initialize cashier state."""
        self.settings = CashierSettings.from_env()
        self.consumer: Optional[CartConsumer] = None
        self.producer: Optional[StatusProducer] = None
        self.ledger = InMemorySalesLedger()
        self.controller: Optional[SessionController] = None
        self.consumer_task: Optional[asyncio.Task] = None


def build_controller(
    settings: CashierSettings,
    consumer: CartConsumer,
    producer: StatusProducer,
    catalog: CatalogStore,
    ledger: InMemorySalesLedger,
) -> SessionController:
    """Wire the session controller and its collaborators.

    Args:
        settings: Service settings
        consumer: Cart message consumer
        producer: Status event producer
        catalog: Product catalog
        ledger: Sales ledger

    Returns:
        SessionController: A controller with an idle session.
    """
    router = TopicRouter(consumer, producer)
    return SessionController(
        router=router,
        cart_filter=CartMessageFilter(catalog, router),
        ledger=ledger,
        gateway=SnapCheckoutGateway(
            settings.midtrans_server_key,
            base_url=settings.midtrans_base_url,
            timeout=settings.gateway_timeout,
        ),
        classifier=CheckoutResultClassifier(settings.checkout_finish_hosts),
        cashier_name=settings.cashier_name,
        listen_timeout=settings.listen_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    # Startup: connect to the bus and start polling for cart messages
    settings = state.settings
    state.consumer = CartConsumer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        poll_interval=settings.poll_interval,
    )
    state.producer = StatusProducer(bootstrap_servers=settings.kafka_bootstrap_servers, client_id=settings.kafka_client_id)
    try:
        state.consumer.connect()
        state.producer.connect()
    except TransportUnavailable as e:
        logger.error(f"Starting without message bus: {e}")

    catalog = InMemoryCatalogStore.from_json_file(settings.catalog_path) if settings.catalog_path else InMemoryCatalogStore()
    state.controller = build_controller(settings, state.consumer, state.producer, catalog, state.ledger)
    state.consumer_task = asyncio.create_task(state.consumer.process_messages())
    logger.info("Consumer task started")

    yield

    # Shutdown
    logger.info("Shutting down cashier service...")
    state.controller.close()
    state.consumer.stop()
    await state.consumer_task
    state.consumer.close()
    state.producer.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Cashier Service", lifespan=lifespan)
state = CashierState()


@app.exception_handler(CashierError)
async def cashier_error_handler(request: Request, exc: CashierError):
    """Turn service errors into operator notices."""
    status_code = next((code for exc_type, code in ERROR_STATUS if isinstance(exc, exc_type)), 400)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc), "retryable": exc.retryable},
    )


def _controller() -> SessionController:
    if state.controller is None:
        raise HTTPException(status_code=503, detail="Service unavailable")
    return state.controller


def _view(controller: SessionController) -> SessionView:
    return SessionView(
        session=controller.session,
        listening_topic=controller.router.active_topic,
        checkout_attempt=controller.checkout_attempt,
        sale=controller.sale,
        sale_persisted=controller.sale_persisted,
        status_published=controller.status_published,
        notice=controller.notice,
    )


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """Check if the service is ready to handle requests."""
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.kafka_bootstrap_servers})
        cluster_metadata = admin.list_topics(timeout=5)
        if cluster_metadata is not None:
            return {"status": "ready", "kafka": "connected"}
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
    return {"status": "not ready", "kafka": "disconnected"}


@app.post("/session", response_model=SessionView)
async def start_session(request: StartSessionRequest):
    """Attach the terminal to a cart and start listening for its contents."""
    controller = _controller()
    await controller.start_session(request.cart_id)
    return _view(controller)


@app.get("/session", response_model=SessionView)
async def get_session():
    """Get the current session."""
    return _view(_controller())


@app.patch("/session/items/{product_id}", response_model=SessionView)
async def update_item(product_id: str, update: QuantityUpdate):
    """Change the quantity of a cart line."""
    controller = _controller()
    controller.update_quantity(product_id, update.quantity)
    return _view(controller)


@app.delete("/session/items/{product_id}", response_model=SessionView)
async def remove_item(product_id: str):
    """Remove a cart line."""
    controller = _controller()
    controller.remove_item(product_id)
    return _view(controller)


@app.post("/session/checkout", response_model=SessionView)
async def checkout(request: CheckoutRequest):
    """Start payment; transfer checkouts return the hosted page URL."""
    controller = _controller()
    await controller.checkout(request.method)
    return _view(controller)


@app.post("/session/checkout/cancel", response_model=SessionView)
async def cancel_checkout():
    """Close the payment step and return to the cart."""
    controller = _controller()
    controller.cancel_checkout()
    return _view(controller)


@app.post("/session/navigation", response_model=NavigationResult)
async def observe_navigation(event: NavigationEvent):
    """Report a navigation of the hosted payment page."""
    controller = _controller()
    outcome = await controller.observe_navigation(event.url)
    return NavigationResult(outcome=outcome, view=_view(controller))


@app.post("/session/cash", response_model=SessionView)
async def pay_cash(payment: CashPayment):
    """Complete the sale with cash."""
    controller = _controller()
    await controller.pay_cash(payment.cash_paid)
    return _view(controller)


@app.post("/session/reset", response_model=SessionView)
async def reset_session():
    """Finish with the current cart."""
    controller = _controller()
    await controller.reset()
    return _view(controller)


@app.get("/sales/{transaction_id}", response_model=SaleRecord)
async def get_sale(transaction_id: str):
    """Get a recorded sale by transaction ID.

    Raises:
        HTTPException: If the sale is not found
    """
    sale = state.ledger.get(transaction_id)
    if not sale:
        raise HTTPException(status_code=404, detail="Sale not found")
    return sale


@app.get("/sales", response_model=list[SaleRecord])
async def list_sales(cart_id: Optional[str] = None):
    """List recorded sales, optionally for one cart."""
    return state.ledger.list_sales(cart_id)
