"""Topic router owning the terminal's single cart subscription."""

from typing import Optional

from .consumer import CartConsumer, MessageHandler
from .errors import InvalidCartId
from .logger import kafka_logger as logger
from .producer import StatusProducer
from .schemas import PaymentStatusEvent
from .topics import payment_topic, status_topic


class TopicRouter:
    """Maps cart ids to topics and keeps at most one active subscription.

    The consumer and producer are injected; their connection lifecycle belongs
    to whoever created them.
    """

    def __init__(self, consumer: CartConsumer, producer: StatusProducer):
        self.consumer = consumer
        self.producer = producer
        self._active_topic: Optional[str] = None

    @property
    def active_topic(self) -> Optional[str]:
        return self._active_topic

    def start_session(self, cart_id: str, handler: MessageHandler) -> str:
        """Listen for the contents of one cart.

        Any previous subscription is released before the new one is made.

        Args:
            cart_id: Cart id as typed by the operator
            handler: Sole handler for messages on the cart's topic

        Returns:
            str: The subscribed topic, ``{cart_id}/payment``.

        Raises:
            InvalidCartId: If the cart id is blank.
            TransportUnavailable: If the bus is disconnected.
        """
        cart_id = (cart_id or "").strip()
        if not cart_id:
            raise InvalidCartId("Cart id must not be empty")

        self.end_session()
        topic = payment_topic(cart_id)
        self.consumer.subscribe(topic, handler)
        self._active_topic = topic
        logger.info(f"Listening for cart | cart_id={cart_id} | topic={topic}")
        return topic

    def end_session(self, topic: Optional[str] = None) -> None:
        """Release the active subscription. Safe to call repeatedly.

        Args:
            topic: Only release the subscription if it is this topic.
        """
        if self._active_topic is None:
            return
        if topic is not None and topic != self._active_topic:
            logger.debug(f"Ignoring release of inactive topic | topic={topic} | active={self._active_topic}")
            return
        released, self._active_topic = self._active_topic, None
        self.consumer.unsubscribe(released)

    def publish_status(self, cart_id: str, event: PaymentStatusEvent) -> str:
        """Publish a payment status event for a cart.

        Args:
            cart_id: Cart the event is for
            event: The status event

        Returns:
            str: The topic published to, ``{cart_id}/payment-status``.

        Raises:
            TransportUnavailable: If the bus is disconnected.
        """
        topic = status_topic(cart_id)
        self.producer.publish(topic, event.to_bytes(), key=cart_id)
        logger.info(f"Published payment status | topic={topic} | method={event.payment_method.value}")
        return topic
