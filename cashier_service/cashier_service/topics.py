"""Topic naming for cart sessions.

Cart devices address topics MQTT-style (``C1/payment``). Kafka topic names
are limited to ``[A-Za-z0-9._-]``, so each logical topic maps 1:1 onto a
Kafka name with ``/`` replaced by ``.`` (``C1/payment`` -> ``C1.payment``),
the same mapping the MQTT bridge in front of the broker is configured with.
"""

import re

PAYMENT_SUFFIX = "payment"
STATUS_SUFFIX = "payment-status"

_ILLEGAL_KAFKA_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def payment_topic(cart_id: str) -> str:
    """Topic the cart device publishes its contents on."""
    return f"{cart_id}/{PAYMENT_SUFFIX}"


def status_topic(cart_id: str) -> str:
    """Topic the terminal publishes the payment status on."""
    return f"{cart_id}/{STATUS_SUFFIX}"


def to_kafka_topic(topic: str) -> str:
    """Map a logical topic onto a legal Kafka topic name.

    Args:
        topic: Logical topic, e.g. ``C1/payment``.

    Returns:
        str: Kafka topic name, e.g. ``C1.payment``.
    """
    return _ILLEGAL_KAFKA_CHARS.sub("_", topic.replace("/", "."))
