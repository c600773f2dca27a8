"""SQLAlchemy repository for stock quantities and reservation decisions.

The `inventories` table maps a product identifier to its available quantity.
Reservations are applied with a single conditional UPDATE so that two
concurrent orders can never both take the last unit, and every decision is
recorded in the `reservations` ledger inside the same transaction. A
redelivered order finds its ledger row and gets the recorded decision back
instead of decrementing the stock a second time.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String, create_engine, select, text, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .exceptions import DuplicateProductError, ProductNotFoundError, StoreUnavailableError
from .logger import logger
from .retry import Backoff, retry_call

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class Base(DeclarativeBase):
    pass


class Inventory(Base):
    """Stock level of a single product."""

    __tablename__ = "inventories"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_inventories_quantity_non_negative"),)

    product_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Reservation(Base):
    """Decision taken for one order, keyed by order id."""

    __tablename__ = "reservations"

    order_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReserveStatus(str, Enum):
    RESERVED = "RESERVED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class ReserveResult:
    """Result of `StockStore.try_reserve`.

    Attributes:
        status: Whether the decrement happened, and if not, why.
        replayed: True when the decision was read back from the ledger.
    """

    status: ReserveStatus
    replayed: bool = False

    @property
    def reserved(self) -> bool:
        return self.status is ReserveStatus.RESERVED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _engine_options(database_url: str, timeout: float) -> dict:
    """Engine options giving every connection a bounded deadline."""
    options = {"pool_pre_ping": True}
    if make_url(database_url).get_backend_name() == "postgresql":
        options["pool_timeout"] = timeout
        options["connect_args"] = {
            "connect_timeout": max(1, math.ceil(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return options


class StockStore:
    """Repository for stock records.

    Provides point reads, the atomic conditional decrement used by the
    reservation engine, and the plain insert/update statements used by the
    HTTP API. Connectivity failures are retried with bounded backoff and then
    reported as `StoreUnavailableError`.
    """

    def __init__(
        self,
        database_url: str,
        timeout: float = 5.0,
        retries: int = 3,
        backoff: Optional[Backoff] = None,
        **engine_kwargs,
    ):
        """Create the engine for the given database.

        Args:
            database_url: SQLAlchemy database URL.
            timeout: Deadline for connecting and for each statement, in seconds.
            retries: Attempts per operation before giving up.
            backoff: Backoff policy between attempts.
            **engine_kwargs: Extra arguments for `create_engine`, overriding the defaults.
        """
        options = _engine_options(database_url, timeout)
        options.update(engine_kwargs)
        self.engine = create_engine(database_url, **options)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        self._retries = retries
        self._backoff = backoff or Backoff()

    def _run(self, operation: str, func):
        def log_retry(attempt: int, exc: BaseException) -> None:
            logger.warning(f"Store operation {operation} failed (attempt {attempt}/{self._retries}): {exc}")

        try:
            return retry_call(func, self._retries, self._backoff.fresh(), TRANSIENT_ERRORS, on_retry=log_retry)
        except TRANSIENT_ERRORS as exc:
            logger.error(f"Store operation {operation} gave up after {self._retries} attempts: {exc}")
            raise StoreUnavailableError(f"{operation} failed: {exc}") from exc

    def create_schema(self) -> None:
        """Create the tables if they do not exist."""
        self._run("create_schema", lambda: Base.metadata.create_all(self.engine))

    def ping(self) -> None:
        """Round-trip a trivial statement, raising `StoreUnavailableError` on failure."""

        def execute():
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        self._run("ping", execute)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Store connections disposed")

    def get_quantity(self, product_id: int) -> int:
        """Return the current quantity of a product.

        Raises:
            ProductNotFoundError: If no stock record exists.
        """

        def query():
            with self._session_factory() as session:
                return session.scalar(select(Inventory.quantity).where(Inventory.product_id == product_id))

        quantity = self._run("get_quantity", query)
        if quantity is None:
            raise ProductNotFoundError(product_id)
        return quantity

    def create(self, product_id: int, quantity: int) -> None:
        """Insert a stock record.

        Raises:
            DuplicateProductError: If the product already has a record.
        """

        def insert():
            with self._session_factory.begin() as session:
                session.add(Inventory(product_id=product_id, quantity=quantity, updated_at=_utcnow()))

        try:
            self._run("create", insert)
        except IntegrityError as exc:
            raise DuplicateProductError(product_id) from exc

    def update(self, product_id: int, quantity: int) -> None:
        """Overwrite the quantity of an existing stock record.

        Raises:
            ProductNotFoundError: If no stock record exists.
        """

        def execute():
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(Inventory)
                    .where(Inventory.product_id == product_id)
                    .values(quantity=quantity, updated_at=_utcnow())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount

        if self._run("update", execute) == 0:
            raise ProductNotFoundError(product_id)

    def _find_reservation(self, order_id: int) -> Optional[ReserveResult]:
        with self._session_factory() as session:
            status = session.scalar(select(Reservation.status).where(Reservation.order_id == order_id))
        if status is None:
            return None
        return ReserveResult(ReserveStatus(status), replayed=True)

    def get_reservation(self, order_id: int) -> Optional[ReserveResult]:
        """Return the recorded decision for an order, if any."""
        return self._run("get_reservation", lambda: self._find_reservation(order_id))

    def try_reserve(self, product_id: int, amount: int, order_id: int) -> ReserveResult:
        """Atomically take `amount` units of a product for an order.

        The decrement is one conditional UPDATE that only matches when enough
        stock is left. The decision is written to the ledger in the same
        transaction; if the order was already decided, the transaction is
        rolled back and the recorded decision is returned instead.

        Args:
            product_id: Product to reserve.
            amount: Units to take, must be positive.
            order_id: Order the reservation belongs to.

        Returns:
            ReserveResult: RESERVED, INSUFFICIENT_STOCK or NOT_FOUND.
        """
        if amount <= 0:
            raise ValueError(f"Reservation amount must be positive, got {amount}")

        def reserve() -> ReserveResult:
            with self._session_factory.begin() as session:
                decremented = session.execute(
                    update(Inventory)
                    .where(Inventory.product_id == product_id, Inventory.quantity >= amount)
                    .values(quantity=Inventory.quantity - amount, updated_at=_utcnow())
                    .execution_options(synchronize_session=False)
                ).rowcount
                if decremented == 1:
                    status = ReserveStatus.RESERVED
                elif session.scalar(select(Inventory.product_id).where(Inventory.product_id == product_id)) is None:
                    status = ReserveStatus.NOT_FOUND
                else:
                    status = ReserveStatus.INSUFFICIENT_STOCK
                session.add(
                    Reservation(
                        order_id=order_id,
                        product_id=product_id,
                        quantity=amount,
                        status=status.value,
                        created_at=_utcnow(),
                    )
                )
                session.flush()
            return ReserveResult(status)

        def attempt() -> ReserveResult:
            recorded = self._find_reservation(order_id)
            if recorded is not None:
                return recorded
            try:
                return reserve()
            except IntegrityError:
                # A concurrent delivery of the same order committed first.
                recorded = self._find_reservation(order_id)
                if recorded is None:
                    raise
                return recorded

        return self._run("try_reserve", attempt)
