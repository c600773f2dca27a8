"""FastAPI server implementation for the Inventory Service."""

import asyncio
import threading
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

from confluent_kafka import KafkaException
from confluent_kafka.admin import AdminClient
from fastapi import Depends, FastAPI, HTTPException, Path, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .consumer import OrderConsumer
from .exceptions import DuplicateProductError, ProductNotFoundError, StartupError, StoreUnavailableError
from .inventory import ReservationEngine
from .logger import logger
from .producer import OutcomeProducer
from .retry import Backoff
from .schemas import MAX_ID, InventoryAvailability, InventoryPayload
from .store import StockStore

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def check_kafka_connection(bootstrap_servers: str, timeout: float = 5.0) -> bool:
    """Check if Kafka connection is available.

    Returns:
        bool: True if Kafka is accessible, False otherwise.
    """
    try:
        admin = AdminClient({"bootstrap.servers": bootstrap_servers})
        return admin.list_topics(timeout=timeout) is not None
    except KafkaException as e:
        logger.error(f"Kafka connection failed: {e}")
        return False


class ServiceState:
    """Owns the store handle, the producer and the consumer thread for the process lifetime."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.store: Optional[StockStore] = None
        self.producer: Optional[OutcomeProducer] = None
        self.consumer: Optional[OrderConsumer] = None
        self.consumer_thread: Optional[threading.Thread] = None

    def start(self, settings: Settings) -> None:
        """Connect to the store and the broker and start consuming orders.

        Raises:
            StartupError: If the store or the broker cannot be reached.
        """
        self.settings = settings
        backoff = Backoff(settings.retry_backoff, settings.retry_backoff_max)

        self.store = StockStore(
            settings.database_url,
            timeout=settings.store_timeout,
            retries=settings.store_retries,
            backoff=backoff,
        )
        try:
            self.store.ping()
            if settings.auto_create_schema:
                self.store.create_schema()
        except StoreUnavailableError as e:
            raise StartupError(f"Cannot connect to the stock store: {e}") from e
        logger.info("Connected to the stock store")

        if not check_kafka_connection(settings.kafka_bootstrap_servers, timeout=settings.publish_timeout):
            raise StartupError(f"Cannot reach Kafka at {settings.kafka_bootstrap_servers}")

        self.producer = OutcomeProducer(
            settings.kafka_bootstrap_servers,
            reserved_topic=settings.reserved_topic,
            failed_topic=settings.failed_topic,
            timeout=settings.publish_timeout,
            retries=settings.publish_retries,
            backoff=backoff,
        )
        self.consumer = OrderConsumer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.consumer_group,
            engine=ReservationEngine(self.store),
            producer=self.producer,
            topic=settings.orders_topic,
            backoff=backoff,
            read_error_alert_threshold=settings.read_error_alert_threshold,
        )
        self.consumer.subscribe()

        self.consumer_thread = threading.Thread(target=self.consumer.run, name="order-consumer", daemon=True)
        self.consumer_thread.start()
        logger.info("Consumer thread started")

    def stop(self) -> None:
        """Stop consuming, let the in-flight message finish, then release resources."""
        if self.consumer:
            self.consumer.stop()
            if self.consumer_thread and self.consumer_thread.is_alive():
                settings = self.settings or Settings()
                join_timeout = settings.store_timeout * settings.store_retries + (
                    settings.publish_timeout * settings.publish_retries
                )
                self.consumer_thread.join(timeout=join_timeout + settings.retry_backoff_max)
                if self.consumer_thread.is_alive():
                    logger.warning("Consumer thread did not finish its in-flight message before shutdown")
            else:
                self.consumer.close()
        if self.producer:
            self.producer.close()
        if self.store:
            self.store.dispose()


state = ServiceState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    settings = Settings.from_env()
    try:
        state.start(settings)
    except StartupError as e:
        logger.critical(f"Startup failed: {e}")
        state.stop()
        raise

    logger.info(f"inventory-service running on :{settings.port}")
    yield

    logger.info("Shutting down inventory service...")
    await asyncio.to_thread(state.stop)
    logger.info("Shutdown complete")


app = FastAPI(title="Inventory Service", lifespan=lifespan)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Add CORS headers to every response and answer preflight requests."""
    if request.method == "OPTIONS":
        return Response(status_code=HTTPStatus.NO_CONTENT, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTPStatus.BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def get_store() -> StockStore:
    # Only reachable when the app is served without its lifespan; startup
    # failures stop the process before any request is accepted.
    if state.store is None:
        raise HTTPException(status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail="Service unavailable")
    return state.store


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
def readiness_check(store: StockStore = Depends(get_store)):
    """Readiness check that verifies the store and Kafka connections."""
    try:
        store.ping()
        store_ok = True
    except StoreUnavailableError:
        store_ok = False
    settings = state.settings or Settings()
    kafka_ok = check_kafka_connection(settings.kafka_bootstrap_servers)
    ready = store_ok and kafka_ok
    return {
        "status": "ready" if ready else "not ready",
        "store": "connected" if store_ok else "disconnected",
        "kafka": "connected" if kafka_ok else "disconnected",
    }


@app.get("/stats")
def consumer_stats():
    """Reservation loop statistics."""
    if state.consumer is None:
        raise HTTPException(status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail="Consumer not running")
    return state.consumer.snapshot()


@app.get("/inventory/{product_id}", response_model=InventoryAvailability)
def get_inventory(product_id: int = Path(..., le=MAX_ID), store: StockStore = Depends(get_store)):
    """Look up the stock level of a product.

    Raises:
        HTTPException: 404 if the product is unknown.
    """
    try:
        quantity = store.get_quantity(product_id)
    except (ProductNotFoundError, StoreUnavailableError):
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Product not found")
    return InventoryAvailability(available=quantity > 0, quantity=quantity)


@app.post("/inventory", status_code=HTTPStatus.CREATED, response_model=InventoryPayload)
def create_inventory(payload: InventoryPayload, store: StockStore = Depends(get_store)):
    """Create a stock record."""
    try:
        store.create(payload.product_id, payload.quantity)
    except (DuplicateProductError, StoreUnavailableError) as e:
        logger.warning(f"Insert failed for product {payload.product_id}: {e}")
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Insert failed")
    logger.info(f"Created stock record | product_id={payload.product_id} | quantity={payload.quantity}")
    return payload


@app.put("/inventory/{product_id}", response_model=InventoryPayload)
def update_inventory(
    payload: InventoryPayload,
    product_id: int = Path(..., le=MAX_ID),
    store: StockStore = Depends(get_store),
):
    """Overwrite the stock level of an existing product."""
    if payload.product_id != product_id:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="product_id does not match the path")
    try:
        store.update(product_id, payload.quantity)
    except (ProductNotFoundError, StoreUnavailableError) as e:
        logger.warning(f"Update failed for product {product_id}: {e}")
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Update failed")
    logger.info(f"Updated stock record | product_id={product_id} | quantity={payload.quantity}")
    return payload
