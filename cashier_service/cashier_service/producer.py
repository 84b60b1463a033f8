"""Kafka producer for publishing payment status events."""

from typing import Optional

from confluent_kafka import KafkaException, Producer

from .errors import TransportUnavailable
from .logger import kafka_logger as logger
from .topics import to_kafka_topic


class StatusProducer:
    """Producer for the events sent back to cart devices.

    Attributes:
        producer: The underlying Kafka producer, ``None`` while disconnected.
    """

    def __init__(self, bootstrap_servers: str, client_id: str, acks: str = "all"):
        """Initialize the status producer.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            client_id: Producer client ID
            acks: The number of acknowledgments the producer requires
        """
        self._config = {
            "bootstrap.servers": bootstrap_servers,
            "client.id": client_id,
            "acks": acks,
            "message.timeout.ms": 5000,
        }
        self.producer: Optional[Producer] = None

    @property
    def connected(self) -> bool:
        return self.producer is not None

    def connect(self) -> None:
        """Create the Kafka producer.

        Raises:
            TransportUnavailable: If the producer cannot be created.
        """
        if self.producer is not None:
            return
        try:
            self.producer = Producer(self._config)
        except KafkaException as e:
            raise TransportUnavailable(f"Kafka producer could not be created: {e}") from e

    def _delivery_callback(self, err, msg) -> None:
        """Handle delivery reports from Kafka.

        Args:
            err: Error that occurred during delivery
            msg: The delivered message
        """
        if err:
            logger.error(f"Message delivery failed: {err} | kafka_topic={msg.topic()}")
        else:
            logger.debug(f"Message delivered to {msg.topic()} [{msg.partition()}]")

    def publish(self, topic: str, value: bytes, key: Optional[str] = None) -> None:
        """Publish one message to a logical topic.

        Args:
            topic: Logical topic, e.g. ``C1/payment-status``
            value: Serialized message body
            key: Optional message key

        Raises:
            TransportUnavailable: If the producer is disconnected or its queue is full.
        """
        if not self.connected:
            raise TransportUnavailable("Kafka producer is not connected")
        try:
            self.producer.produce(
                topic=to_kafka_topic(topic),
                key=key,
                value=value,
                callback=self._delivery_callback,
            )
            # Trigger any available delivery callbacks
            self.producer.poll(0)
        except BufferError as e:
            logger.warning("Producer buffer full, flushing...")
            self.producer.flush(1.0)
            raise TransportUnavailable(f"Producer queue is full: {e}") from e
        except KafkaException as e:
            raise TransportUnavailable(f"Publish to {topic} failed: {e}") from e

    def flush(self, timeout: float = 10.0) -> None:
        """Wait for all messages to be delivered.

        Args:
            timeout: Maximum time to wait in seconds
        """
        if not self.connected:
            return
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still pending delivery")

    def close(self) -> None:
        """Flush pending messages and drop the producer."""
        self.flush()
        self.producer = None
        logger.info("Producer closed")
