"""Kafka producer for publishing inventory outcome events."""

from dataclasses import dataclass
from typing import Optional

from confluent_kafka import KafkaException, Producer
from logging_utils.config import get_kafka_logger

from .exceptions import PublishError
from .retry import Backoff
from .schemas import InventoryOutcomeEvent

logger = get_kafka_logger("inventory-service")


@dataclass(frozen=True)
class PublishResult:
    """Result of publishing one outcome.

    Attributes:
        ok: True once the broker acknowledged the record.
        topic: Topic the outcome was routed to.
        attempts: Number of produce attempts made.
        error: Last delivery error when `ok` is False.
    """

    ok: bool
    topic: str
    attempts: int
    error: Optional[str] = None


class OutcomeProducer:
    """Kafka producer for publishing reservation outcomes.

    RESERVED outcomes go to the reserved topic, everything else to the failed
    topic. Records are keyed by order id and each publish waits for the
    broker acknowledgement, so the caller knows whether the outcome is durable.

    Attributes:
        producer: The underlying Kafka producer instance.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        reserved_topic: str = "inventory-reserved",
        failed_topic: str = "inventory-failed",
        client_id: str = "inventory-service",
        timeout: float = 10.0,
        retries: int = 3,
        backoff: Optional[Backoff] = None,
    ):
        """Initialize the Kafka producer.

        Args:
            bootstrap_servers: Comma-separated list of Kafka broker addresses.
            reserved_topic: Topic receiving RESERVED outcomes.
            failed_topic: Topic receiving FAILED outcomes.
            client_id: Producer client ID.
            timeout: Seconds to wait for the acknowledgement of one attempt.
            retries: Produce attempts per outcome.
            backoff: Backoff policy between attempts.
        """
        self.producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "client.id": client_id,
                "acks": "all",
                "enable.idempotence": True,
                "message.timeout.ms": int(timeout * 1000),
            }
        )
        self.reserved_topic = reserved_topic
        self.failed_topic = failed_topic
        self._timeout = timeout
        self._retries = retries
        self._backoff = backoff or Backoff()

    def topic_for(self, outcome: InventoryOutcomeEvent) -> str:
        return self.reserved_topic if outcome.is_reserved else self.failed_topic

    def _send(self, topic: str, outcome: InventoryOutcomeEvent) -> None:
        """Produce one record and block until it is acknowledged or the deadline passes."""
        report: dict = {}

        def on_delivery(err, msg) -> None:
            if err:
                report["error"] = err
            else:
                logger.debug(f"Message delivered to {msg.topic()} [p:{msg.partition()}] @ {msg.offset()}")

        self.producer.produce(
            topic=topic,
            key=str(outcome.order_id).encode("utf-8"),
            value=outcome.to_wire(),
            on_delivery=on_delivery,
        )
        remaining = self.producer.flush(self._timeout)
        if remaining > 0:
            raise PublishError(f"{remaining} message(s) not acknowledged within {self._timeout}s")
        if "error" in report:
            raise PublishError(f"Delivery failed: {report['error']}")

    def publish(self, outcome: InventoryOutcomeEvent) -> PublishResult:
        """Publish an outcome to its topic, retrying a bounded number of times.

        Args:
            outcome (InventoryOutcomeEvent): The outcome to publish.

        Returns:
            PublishResult: Whether the outcome was acknowledged, never raises for broker errors.
        """
        topic = self.topic_for(outcome)
        backoff = self._backoff.fresh()
        last_error = None
        for attempt in range(1, self._retries + 1):
            try:
                self._send(topic, outcome)
                logger.info(
                    f"Published outcome | order_id={outcome.order_id} | status={outcome.status.value} | topic={topic}"
                )
                return PublishResult(ok=True, topic=topic, attempts=attempt)
            except (PublishError, KafkaException, BufferError) as e:
                last_error = str(e)
                logger.warning(
                    f"Publish attempt {attempt}/{self._retries} failed | order_id={outcome.order_id} | "
                    f"topic={topic} | error={e}"
                )
                if attempt < self._retries:
                    backoff.failed()

        logger.error(f"Failed to publish outcome for order {outcome.order_id} to {topic}: {last_error}")
        return PublishResult(ok=False, topic=topic, attempts=self._retries, error=last_error)

    def flush(self, timeout: float = 10.0) -> None:
        """Wait for all messages to be delivered.

        Args:
            timeout: Maximum time to wait in seconds
        """
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still pending delivery")

    def close(self) -> None:
        """Flush pending messages before shutdown."""
        self.flush()
        logger.info("Producer closed")
