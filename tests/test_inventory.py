"""Tests for the reservation engine."""

import pytest

from inventory_service.exceptions import StoreUnavailableError
from inventory_service.inventory import ReservationEngine
from inventory_service.schemas import InventoryOutcomeEvent, OrderCreatedEvent, ReservationStatus

from conftest import order_event


def make_event(**overrides) -> OrderCreatedEvent:
    return OrderCreatedEvent.model_validate(order_event(**overrides))


def test_reserve_with_enough_stock(store, engine):
    """productID=42 with 10 units, order of 5 is reserved and leaves 5."""
    store.create(42, 10)
    outcome = engine.reserve(make_event(order_id=1, product_id=42, quantity=5))
    assert outcome == InventoryOutcomeEvent.reserved(1)
    assert outcome.message == "Reserved successfully"
    assert store.get_quantity(42) == 5


def test_reserve_with_insufficient_stock(store, engine):
    """productID=42 with 3 units, order of 5 fails and leaves stock unchanged."""
    store.create(42, 3)
    outcome = engine.reserve(make_event(order_id=2, product_id=42, quantity=5))
    assert outcome.status is ReservationStatus.FAILED
    assert outcome.message == "Not enough stock"
    assert store.get_quantity(42) == 3


def test_reserve_unknown_product(store, engine):
    outcome = engine.reserve(make_event(order_id=3, product_id=999, quantity=1))
    assert outcome == InventoryOutcomeEvent.failed(3, "Product not found")


@pytest.mark.parametrize("overrides", [{"quantity": 0}, {"quantity": -2}, {"product_id": 0}])
def test_invalid_event_does_not_touch_store(mocker, overrides):
    store = mocker.Mock()
    outcome = ReservationEngine(store).reserve(make_event(order_id=4, **overrides))
    assert outcome == InventoryOutcomeEvent.failed(4, "invalid event")
    store.try_reserve.assert_not_called()


def test_store_outage_yields_transient_failure(mocker):
    store = mocker.Mock()
    store.try_reserve.side_effect = StoreUnavailableError("try_reserve failed")
    outcome = ReservationEngine(store).reserve(make_event(order_id=5))
    assert outcome == InventoryOutcomeEvent.failed(5, "transient error")


def test_two_orders_for_last_unit(store, engine):
    store.create(1, 1)
    first = engine.reserve(make_event(order_id=10, product_id=1, quantity=1))
    second = engine.reserve(make_event(order_id=11, product_id=1, quantity=1))
    assert [first.status, second.status] == [ReservationStatus.RESERVED, ReservationStatus.FAILED]
    assert second.message == "Not enough stock"
    assert store.get_quantity(1) == 0


def test_redelivered_order_replays_same_outcome(store, engine):
    store.create(42, 10)
    event = make_event(order_id=20, product_id=42, quantity=4)
    assert engine.reserve(event).is_reserved
    assert engine.reserve(event) == InventoryOutcomeEvent.reserved(20)
    assert store.get_quantity(42) == 6


def test_outcome_wire_format():
    outcome = InventoryOutcomeEvent.failed(9, "Not enough stock")
    assert outcome.to_wire() == b'{"orderId":9,"status":"FAILED","message":"Not enough stock"}'


def test_order_event_reads_camel_case_fields():
    event = make_event(order_id=1, product_id=42, quantity=5, user_id=7, total=49.95)
    assert (event.order_id, event.user_id, event.product_id, event.quantity, event.total) == (1, 7, 42, 5, 49.95)
