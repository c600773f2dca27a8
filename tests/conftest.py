"""Test fixtures for the inventory service tests."""

import json
from unittest.mock import Mock

import pytest
from sqlalchemy.pool import StaticPool

from inventory_service.inventory import ReservationEngine
from inventory_service.producer import OutcomeProducer, PublishResult
from inventory_service.retry import Backoff
from inventory_service.store import StockStore


def make_message(value, offset=0, partition=0, topic="orders", error=None):
    """Build a stand-in for a confluent_kafka Message.

    Args:
        value: dict (encoded as JSON), bytes, or None
    """
    if isinstance(value, dict):
        value = json.dumps(value).encode("utf-8")
    msg = Mock()
    msg.value.return_value = value
    msg.error.return_value = error
    msg.topic.return_value = topic
    msg.partition.return_value = partition
    msg.offset.return_value = offset
    return msg


def order_event(order_id=1, product_id=42, quantity=5, user_id=7, total=49.95):
    return {
        "orderId": order_id,
        "userId": user_id,
        "productId": product_id,
        "quantity": quantity,
        "total": total,
    }


@pytest.fixture
def no_backoff():
    return Backoff(0, 0)


@pytest.fixture
def store(no_backoff):
    """In-memory SQLite store with the schema created."""
    stock_store = StockStore(
        "sqlite://",
        backoff=no_backoff,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    stock_store.create_schema()
    yield stock_store
    stock_store.dispose()


@pytest.fixture
def engine(store):
    return ReservationEngine(store)


@pytest.fixture
def mock_kafka_producer(mocker):
    """Patch the confluent Producer and acknowledge every record it is given."""
    producer_mock = mocker.MagicMock()
    producer_mock.sent = []

    def produce(topic, key, value, on_delivery):
        producer_mock.sent.append((topic, key, value))
        delivered = Mock()
        delivered.topic.return_value = topic
        delivered.partition.return_value = 0
        delivered.offset.return_value = len(producer_mock.sent) - 1
        on_delivery(None, delivered)

    producer_mock.produce.side_effect = produce
    producer_mock.flush.return_value = 0
    mocker.patch("inventory_service.producer.Producer", return_value=producer_mock)
    return producer_mock


@pytest.fixture
def outcome_producer(mock_kafka_producer, no_backoff):
    return OutcomeProducer("localhost:9092", timeout=1.0, retries=3, backoff=no_backoff)


@pytest.fixture
def mock_kafka_consumer(mocker):
    """Patch the confluent Consumer used by the order consumer."""
    consumer_mock = mocker.MagicMock()
    mocker.patch("inventory_service.consumer.Consumer", return_value=consumer_mock)
    return consumer_mock


@pytest.fixture
def stub_producer():
    """OutcomeProducer stand-in that acknowledges every outcome."""
    producer = Mock(spec=OutcomeProducer)
    producer.published = []

    def publish(outcome):
        producer.published.append(outcome)
        return PublishResult(ok=True, topic="inventory-reserved" if outcome.is_reserved else "inventory-failed", attempts=1)

    producer.publish.side_effect = publish
    return producer
