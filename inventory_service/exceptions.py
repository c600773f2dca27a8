"""Exceptions raised by the Inventory Service."""


class InventoryServiceError(Exception):
    """Base class for inventory service errors."""


class ProductNotFoundError(InventoryServiceError):
    """No stock record exists for the requested product."""

    def __init__(self, product_id: int):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class DuplicateProductError(InventoryServiceError):
    """A stock record already exists for the product."""

    def __init__(self, product_id: int):
        super().__init__(f"Product already exists: {product_id}")
        self.product_id = product_id


class StoreUnavailableError(InventoryServiceError):
    """The stock store could not be reached within the retry budget."""


class PublishError(InventoryServiceError):
    """An outcome event was not acknowledged by the broker."""


class StartupError(InventoryServiceError):
    """A required dependency was unreachable while the service was starting."""
