"""Kafka consumer delivering cart messages to per-topic handlers."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from confluent_kafka import TIMESTAMP_NOT_AVAILABLE, Consumer, KafkaError, KafkaException

from .errors import TransportUnavailable
from .logger import kafka_logger as logger
from .topics import to_kafka_topic

MessageHandler = Callable[[Optional[bytes]], Awaitable[None]]


class CartConsumer:
    """Consumer for cart-content messages.

    Handlers are registered per logical topic and can be added or removed
    while the poll loop runs. Every change re-issues the Kafka subscription,
    and a polled message whose topic no longer has a handler is dropped, so
    nothing queued on a released topic reaches a handler afterwards.

    Re-subscribing resumes from the group's committed offset, so a topic can
    still hold messages published before the handler was registered. Those are
    dropped by timestamp: a handler only sees messages from its own subscription.

    Attributes:
        consumer: The underlying Kafka consumer, ``None`` while disconnected.
        poll_interval: Seconds to sleep when a poll returns nothing.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        auto_offset_reset: str = "latest",
        enable_auto_commit: bool = True,
        poll_interval: float = 0.1,
    ) -> None:
        """Initialize the cart consumer.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            group_id: Consumer group ID, one per cashier terminal
            auto_offset_reset: Where to start consuming from if no offset is stored
            enable_auto_commit: Whether to auto-commit offsets
            poll_interval: Seconds to yield to the event loop between empty polls
        """
        self._config = {
            "bootstrap.servers": bootstrap_servers,
            "group.id": group_id,
            "auto.offset.reset": auto_offset_reset,
            "enable.auto.commit": enable_auto_commit,
        }
        self.poll_interval = poll_interval
        self.consumer: Optional[Consumer] = None
        # kafka topic -> (logical topic, handler, subscribed at in epoch ms)
        self._handlers: dict[str, tuple[str, MessageHandler, int]] = {}
        self._running = False

    @property
    def connected(self) -> bool:
        return self.consumer is not None

    @property
    def topics(self) -> list[str]:
        """Logical topics that currently have a handler."""
        return [topic for topic, _, _ in self._handlers.values()]

    def connect(self) -> None:
        """Create the Kafka consumer.

        Raises:
            TransportUnavailable: If the consumer cannot be created.
        """
        if self.consumer is not None:
            return
        logger.info(
            f"Initializing consumer | bootstrap_servers={self._config['bootstrap.servers']} | "
            f"group_id={self._config['group.id']}"
        )
        try:
            self.consumer = Consumer(self._config)
        except KafkaException as e:
            raise TransportUnavailable(f"Kafka consumer could not be created: {e}") from e

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Register ``handler`` for ``topic`` and update the Kafka subscription.

        Args:
            topic: Logical topic, e.g. ``C1/payment``
            handler: Coroutine function receiving the raw message value

        Raises:
            TransportUnavailable: If the consumer is not connected.
        """
        if not self.connected:
            raise TransportUnavailable("Kafka consumer is not connected")
        self._handlers[to_kafka_topic(topic)] = (topic, handler, int(time.time() * 1000))
        self._apply_subscription()
        logger.info(f"Subscribed | topic={topic} | kafka_topic={to_kafka_topic(topic)}")

    def unsubscribe(self, topic: str) -> None:
        """Remove the handler for ``topic``. Unknown topics are ignored."""
        if self._handlers.pop(to_kafka_topic(topic), None) is None:
            return
        if self.connected:
            self._apply_subscription()
        logger.info(f"Unsubscribed | topic={topic}")

    def _apply_subscription(self) -> None:
        kafka_topics = list(self._handlers)
        try:
            if kafka_topics:
                self.consumer.subscribe(kafka_topics)
            else:
                self.consumer.unsubscribe()
        except (KafkaException, RuntimeError) as e:
            raise TransportUnavailable(f"Kafka subscription failed: {e}") from e

    async def dispatch(self, msg) -> bool:
        """Deliver one polled message to the handler registered for its topic.

        Args:
            msg: A message returned by ``Consumer.poll``

        Returns:
            bool: True if a handler received the message, False if it was dropped.
        """
        entry = self._handlers.get(msg.topic())
        if entry is None:
            logger.debug(f"Dropping message for released topic | kafka_topic={msg.topic()} | offset={msg.offset()}")
            return False

        topic, handler, subscribed_at = entry
        timestamp_type, timestamp = msg.timestamp()
        if timestamp_type != TIMESTAMP_NOT_AVAILABLE and timestamp < subscribed_at:
            logger.info(
                f"Dropping message older than subscription | topic={topic} | offset={msg.offset()} | "
                f"age_ms={subscribed_at - timestamp}"
            )
            return False

        logger.debug(f"Received message | topic={topic} | partition={msg.partition()} | offset={msg.offset()}")
        try:
            await handler(msg.value())
        except Exception as e:
            logger.exception(f"Error processing message | topic={topic} | error={e}")
        return True

    async def process_messages(self) -> None:
        """Poll Kafka and dispatch messages until stopped or closed.

        Each message is handled to completion before the next poll, which keeps
        the delivery order of a topic.
        """
        logger.info("Starting message processing loop")
        self._running = True
        try:
            while self._running and self.connected:
                msg = self.consumer.poll(0) if self._handlers else None

                if msg is None:
                    await asyncio.sleep(self.poll_interval)
                    continue

                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        logger.debug("Reached end of partition")
                        continue
                    logger.error(f"Kafka error: {msg.error()}")
                    await asyncio.sleep(self.poll_interval)
                    continue

                await self.dispatch(msg)
        finally:
            self._running = False
            logger.info("Message processing loop stopped")

    def stop(self) -> None:
        """Ask the poll loop to exit after the current iteration."""
        self._running = False

    def close(self) -> None:
        """Close the consumer connection and drop all handlers."""
        self.stop()
        self._handlers.clear()
        if self.consumer is not None:
            self.consumer.close()
            self.consumer = None
        logger.info("Consumer closed")
