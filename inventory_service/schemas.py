"""Pydantic models for Inventory Service events and HTTP payloads."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

RESERVED_MESSAGE = "Reserved successfully"
NOT_ENOUGH_STOCK = "Not enough stock"
PRODUCT_NOT_FOUND = "Product not found"
INVALID_EVENT = "invalid event"
TRANSIENT_ERROR = "transient error"

# Identifiers are 64-bit signed integers on the wire and in the store.
MIN_ID = -(2**63)
MAX_ID = 2**63 - 1

# Upper bound of the stock quantity column.
MAX_QUANTITY = 2**31 - 1


class ReservationStatus(str, Enum):
    """Outcome status carried by inventory outcome events."""

    RESERVED = "RESERVED"
    FAILED = "FAILED"


class OrderCreatedEvent(BaseModel):
    """Order event consumed from the orders topic.

    Attributes:
        order_id (int): Identifier of the order, wire name `orderId`.
        user_id (int): Customer who placed the order, wire name `userId`.
        product_id (int): Product to reserve, wire name `productId`.
        quantity (int): Units requested. Range checks belong to the reservation engine.
        total (float): Order total.

    Parsing is strict: booleans, numeric strings and floats are rejected for
    the integer fields, and identifiers must fit in a signed 64-bit integer.
    """

    model_config = ConfigDict(strict=True, populate_by_name=True, frozen=True)

    order_id: int = Field(..., alias="orderId", ge=MIN_ID, le=MAX_ID)
    user_id: int = Field(..., alias="userId", ge=MIN_ID, le=MAX_ID)
    product_id: int = Field(..., alias="productId", ge=MIN_ID, le=MAX_ID)
    quantity: int = Field(..., ge=MIN_ID, le=MAX_ID)
    total: float


class InventoryOutcomeEvent(BaseModel):
    """Reservation outcome published to the reserved or failed topic."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: int = Field(..., alias="orderId")
    status: ReservationStatus
    message: str

    @classmethod
    def reserved(cls, order_id: int, message: str = RESERVED_MESSAGE) -> "InventoryOutcomeEvent":
        return cls(order_id=order_id, status=ReservationStatus.RESERVED, message=message)

    @classmethod
    def failed(cls, order_id: int, message: str) -> "InventoryOutcomeEvent":
        return cls(order_id=order_id, status=ReservationStatus.FAILED, message=message)

    @property
    def is_reserved(self) -> bool:
        return self.status is ReservationStatus.RESERVED

    def to_wire(self) -> bytes:
        """Serialize to the wire JSON `{orderId, status, message}`."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class InventoryPayload(BaseModel):
    """Request body for creating or updating a stock record."""

    product_id: int = Field(..., gt=0, le=MAX_ID, description="Product identifier.")
    quantity: int = Field(..., ge=0, le=MAX_QUANTITY, description="Units in stock.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"product_id": 42, "quantity": 10},
        }
    )


class InventoryAvailability(BaseModel):
    """Response body for a stock lookup."""

    available: bool
    quantity: int
