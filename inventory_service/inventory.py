"""Reservation decisions for incoming order events."""

from .exceptions import StoreUnavailableError
from .logger import logger
from .schemas import (
    INVALID_EVENT,
    NOT_ENOUGH_STOCK,
    PRODUCT_NOT_FOUND,
    RESERVED_MESSAGE,
    TRANSIENT_ERROR,
    InventoryOutcomeEvent,
    OrderCreatedEvent,
)
from .store import ReserveStatus, StockStore

FAILURE_MESSAGES = {
    ReserveStatus.INSUFFICIENT_STOCK: NOT_ENOUGH_STOCK,
    ReserveStatus.NOT_FOUND: PRODUCT_NOT_FOUND,
}


class ReservationEngine:
    """Decides whether an order can be served from stock and applies the decrement.

    The outcome is RESERVED exactly when the store committed the decrement for
    the order; every other path yields a FAILED outcome and leaves stock untouched.
    """

    def __init__(self, store: StockStore):
        self.store = store

    @staticmethod
    def validate(event: OrderCreatedEvent) -> bool:
        return event.quantity > 0 and event.product_id > 0

    def reserve(self, event: OrderCreatedEvent) -> InventoryOutcomeEvent:
        """Attempt to reserve stock for an order.

        Args:
            event (OrderCreatedEvent): The order to serve.

        Returns:
            InventoryOutcomeEvent: RESERVED, or FAILED with the reason.
        """
        if not self.validate(event):
            logger.warning(
                f"Rejecting invalid order event | order_id={event.order_id} | "
                f"product_id={event.product_id} | quantity={event.quantity}"
            )
            return InventoryOutcomeEvent.failed(event.order_id, INVALID_EVENT)

        try:
            result = self.store.try_reserve(event.product_id, event.quantity, event.order_id)
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable while reserving for order {event.order_id}: {e}")
            return InventoryOutcomeEvent.failed(event.order_id, TRANSIENT_ERROR)

        if result.replayed:
            logger.info(f"Order {event.order_id} already decided as {result.status.value}, replaying outcome")

        if result.reserved:
            logger.info(
                f"Reserved stock | order_id={event.order_id} | product_id={event.product_id} | "
                f"quantity={event.quantity}"
            )
            return InventoryOutcomeEvent.reserved(event.order_id, RESERVED_MESSAGE)

        message = FAILURE_MESSAGES[result.status]
        logger.info(
            f"Reservation rejected | order_id={event.order_id} | product_id={event.product_id} | "
            f"quantity={event.quantity} | reason={message}"
        )
        return InventoryOutcomeEvent.failed(event.order_id, message)
