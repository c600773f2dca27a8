"""Kafka consumer driving stock reservations for created orders."""

import threading
import time
from enum import Enum
from typing import Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition
from logging_utils.config import get_kafka_logger
from pydantic import ValidationError

from .inventory import ReservationEngine
from .producer import OutcomeProducer
from .retry import Backoff
from .schemas import TRANSIENT_ERROR, InventoryOutcomeEvent, OrderCreatedEvent

logger = get_kafka_logger("inventory-service")

# Offsets are committed by hand once the outcome is acknowledged.
DEFAULT_CONSUMER_CONFIG = {
    "auto.offset.reset": "earliest",
    "enable.auto.commit": False,
    "session.timeout.ms": 30000,
    "max.poll.interval.ms": 300000,
}

STATUS_LOG_INTERVAL = 300


class ConsumerState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    PUBLISHING = "publishing"


class OrderConsumer:
    """Consumes order events one at a time and publishes reservation outcomes.

    Each message goes IDLE -> PROCESSING -> PUBLISHING -> IDLE. The offset of
    a message is committed only after its outcome was acknowledged by the
    broker; when publishing fails the consumer seeks back to the message so it
    is delivered again. Malformed payloads are logged and committed without an
    outcome. An order whose reservation raises unexpectedly is answered with
    FAILED("transient error") so the loop keeps going.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        engine: ReservationEngine,
        producer: OutcomeProducer,
        topic: str = "orders",
        auto_offset_reset: str = "earliest",
        poll_timeout: float = 1.0,
        backoff: Optional[Backoff] = None,
        read_error_alert_threshold: int = 10,
    ):
        """Initialize the order consumer.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            group_id: Consumer group ID, fixed per deployment
            engine: Reservation engine deciding each order
            producer: Publisher for the resulting outcomes
            topic: Topic carrying order events
            auto_offset_reset: Where to start consuming from if no offset is stored
            poll_timeout: Seconds to wait for a message on each poll
            backoff: Backoff policy after read or publish failures
            read_error_alert_threshold: Consecutive read errors that raise a critical alert
        """
        logger.info(f"Initializing consumer | bootstrap_servers={bootstrap_servers} | group_id={group_id}")
        config = DEFAULT_CONSUMER_CONFIG.copy()
        config.update(
            {
                "bootstrap.servers": bootstrap_servers,
                "group.id": group_id,
                "auto.offset.reset": auto_offset_reset,
            }
        )
        self.consumer = Consumer(config)
        self.engine = engine
        self.producer = producer
        self.topic = topic
        self.state = ConsumerState.IDLE
        self._poll_timeout = poll_timeout
        self._alert_threshold = read_error_alert_threshold
        self._stop_event = threading.Event()
        self._closed = False

        policy = backoff or Backoff()
        # Waiting on the stop event keeps shutdown responsive during backoff.
        self._read_backoff = Backoff(policy.initial, policy.maximum, policy.factor, sleep=self._stop_event.wait)
        self._publish_backoff = Backoff(policy.initial, policy.maximum, policy.factor, sleep=self._stop_event.wait)

        self.stats = {
            "messages_processed": 0,
            "reserved": 0,
            "failed": 0,
            "skipped": 0,
            "read_errors": 0,
            "consecutive_read_errors": 0,
            "publish_errors": 0,
            "commit_errors": 0,
            "errors": 0,
            "start_time": time.time(),
        }

    def subscribe(self) -> None:
        """Subscribe to the orders topic."""
        logger.info(f"Subscribing to topics: {[self.topic]}")
        self.consumer.subscribe([self.topic])
        logger.info("Successfully subscribed to topics")

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Stop fetching new messages; an in-flight message is finished first."""
        logger.info("Stop requested for order consumer")
        self._stop_event.set()

    def run(self) -> None:
        """Process messages until `stop` is called, then close the consumer."""
        logger.info("Starting message processing loop")
        last_status_log = time.time()
        try:
            while self.running:
                try:
                    self.poll_once()
                except Exception as e:
                    self.stats["errors"] += 1
                    logger.exception(f"Error processing message: {e}")

                now = time.time()
                if now - last_status_log >= STATUS_LOG_INTERVAL:
                    self._log_status()
                    last_status_log = now
        finally:
            self._log_status()
            self.close()

    def poll_once(self) -> None:
        """Fetch at most one message and drive it through a full cycle."""
        try:
            msg = self.consumer.poll(timeout=self._poll_timeout)
        except KafkaException as e:
            self._on_read_error(e)
            return

        if msg is None:
            return

        if msg.error():
            if msg.error().code() == KafkaError._PARTITION_EOF:
                logger.debug("Reached end of partition")
                return
            self._on_read_error(msg.error())
            return

        self.stats["consecutive_read_errors"] = 0
        self._read_backoff.reset()
        self.handle_message(msg)

    def handle_message(self, msg) -> None:
        """Reserve stock for one order message and publish the outcome.

        Args:
            msg: The Kafka message carrying an OrderCreated event.
        """
        self.state = ConsumerState.PROCESSING
        try:
            logger.debug(f"Received message | topic={msg.topic()} | partition={msg.partition()} | offset={msg.offset()}")
            event = self._deserialize(msg)
            if event is None:
                self.stats["skipped"] += 1
                self._commit(msg)
                return

            logger.info(f"Received OrderCreatedEvent: {event.model_dump(by_alias=True)}")
            try:
                outcome = self.engine.reserve(event)
            except Exception as e:
                # No decision was recorded, so a later redelivery starts from scratch.
                self.stats["errors"] += 1
                logger.exception(f"Error reserving stock for order {event.order_id}: {e}")
                outcome = InventoryOutcomeEvent.failed(event.order_id, TRANSIENT_ERROR)

            self.state = ConsumerState.PUBLISHING
            result = self.producer.publish(outcome)
            if not result.ok:
                self.stats["publish_errors"] += 1
                logger.critical(
                    f"Outcome for order {outcome.order_id} could not be published after {result.attempts} attempts, "
                    f"offset not committed | topic={msg.topic()} | partition={msg.partition()} | "
                    f"offset={msg.offset()} | error={result.error}"
                )
                self._rewind(msg)
                self._publish_backoff.failed()
                return

            self._publish_backoff.reset()
            self._commit(msg)
            self.stats["messages_processed"] += 1
            self.stats["reserved" if outcome.is_reserved else "failed"] += 1
        finally:
            self.state = ConsumerState.IDLE

    def _deserialize(self, msg) -> Optional[OrderCreatedEvent]:
        value = msg.value()
        if value is None:
            logger.error(f"Skipping empty message | partition={msg.partition()} | offset={msg.offset()}")
            return None
        try:
            return OrderCreatedEvent.model_validate_json(value)
        except ValidationError as e:
            logger.error(
                f"Failed to decode order event, skipping | error={e.errors(include_url=False)} | "
                f"partition={msg.partition()} | offset={msg.offset()}"
            )
            return None

    def _commit(self, msg) -> None:
        try:
            self.consumer.commit(message=msg, asynchronous=False)
        except KafkaException as e:
            # The message will be redelivered and replayed from the reservation ledger.
            self.stats["commit_errors"] += 1
            logger.error(f"Offset commit failed | partition={msg.partition()} | offset={msg.offset()} | error={e}")

    def _rewind(self, msg) -> None:
        try:
            self.consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))
        except KafkaException as e:
            logger.error(f"Failed to seek back to offset {msg.offset()} on partition {msg.partition()}: {e}")

    def _on_read_error(self, error) -> None:
        self.stats["read_errors"] += 1
        self.stats["consecutive_read_errors"] += 1
        consecutive = self.stats["consecutive_read_errors"]
        logger.error(f"Kafka read error ({consecutive} in a row): {error}")
        if consecutive % self._alert_threshold == 0:
            logger.critical(f"Order topic unreadable for {consecutive} consecutive polls")
        delay = self._read_backoff.failed()
        logger.debug(f"Backed off {delay:.2f}s before next read")

    def snapshot(self) -> dict:
        """Return a copy of the statistics with runtime and current state."""
        data = {key: value for key, value in self.stats.items() if key != "start_time"}
        data["runtime_seconds"] = round(time.time() - self.stats["start_time"], 2)
        data["state"] = self.state.value
        return data

    def _log_status(self) -> None:
        """Log consumer status and statistics."""
        runtime = time.time() - self.stats["start_time"]
        msg_rate = self.stats["messages_processed"] / runtime if runtime > 0 else 0
        logger.info(
            f"Consumer status | messages_processed={self.stats['messages_processed']} | "
            f"reserved={self.stats['reserved']} | failed={self.stats['failed']} | skipped={self.stats['skipped']} | "
            f"read_errors={self.stats['read_errors']} | publish_errors={self.stats['publish_errors']} | "
            f"errors={self.stats['errors']} | runtime_seconds={runtime:.2f} | messages_per_second={msg_rate:.2f}"
        )

    def close(self) -> None:
        """Close the consumer connection."""
        if self._closed:
            return
        self._closed = True
        self.consumer.close()
        logger.info("Consumer closed")
