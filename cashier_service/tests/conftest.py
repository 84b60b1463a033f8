"""Test fixtures for the cashier service tests."""

import json
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from confluent_kafka import TIMESTAMP_CREATE_TIME

from cashier_service.cart_filter import CartMessageFilter
from cashier_service.catalog import InMemoryCatalogStore
from cashier_service.consumer import CartConsumer
from cashier_service.ledger import InMemorySalesLedger
from cashier_service.producer import StatusProducer
from cashier_service.router import TopicRouter
from cashier_service.schemas import CartSession, CatalogProduct, SessionState
from cashier_service.session import SessionController

SNAP_URL = "https://app.sandbox.midtrans.com/snap/v2/vtweb/0b2f6a1c-token"


@pytest.fixture
def kafka_message():
    """Factory for mock Kafka messages as returned by ``Consumer.poll``.

    Without an explicit ``timestamp`` (epoch ms) a message reads as published
    at the moment it is dispatched.
    """

    def make(topic: str, value, offset: int = 0, timestamp=None):
        msg = MagicMock()
        msg.error.return_value = None
        msg.topic.return_value = topic
        msg.partition.return_value = 0
        msg.offset.return_value = offset
        if timestamp is None:
            msg.timestamp.side_effect = lambda: (TIMESTAMP_CREATE_TIME, int(time.time() * 1000))
        else:
            msg.timestamp.return_value = (TIMESTAMP_CREATE_TIME, timestamp)
        msg.value.return_value = json.dumps(value).encode() if isinstance(value, dict) else value
        return msg

    return make


@pytest.fixture
def mock_kafka_consumer(mocker):
    """Mock the Kafka consumer class and return its instance."""
    consumer_class = mocker.patch("cashier_service.consumer.Consumer")
    return consumer_class.return_value


@pytest.fixture
def mock_kafka_producer(mocker):
    """Mock the Kafka producer class and return its instance."""
    producer_class = mocker.patch("cashier_service.producer.Producer")
    producer_class.return_value.flush.return_value = 0
    return producer_class.return_value


@pytest.fixture
def cart_consumer(mock_kafka_consumer):
    """A connected cart consumer backed by the mocked Kafka consumer."""
    consumer = CartConsumer("localhost:9092", "test-terminal", poll_interval=0.01)
    consumer.connect()
    return consumer


@pytest.fixture
def status_producer(mock_kafka_producer):
    """A connected status producer backed by the mocked Kafka producer."""
    producer = StatusProducer("localhost:9092", "test-client")
    producer.connect()
    return producer


@pytest.fixture
def router(cart_consumer, status_producer):
    return TopicRouter(cart_consumer, status_producer)


@pytest.fixture
def catalog():
    """Catalog with two priced products and one discounted product."""
    store = InMemoryCatalogStore(
        [
            CatalogProduct(product_id="P1", name="Beras 1kg", price=Decimal("10000")),
            CatalogProduct(product_id="P2", name="Susu UHT", price=Decimal("6000")),
        ]
    )
    store.put(CatalogProduct(product_id="P3", name="Kopi Bubuk", price=Decimal("20000"), discount=Decimal("10")))
    return store


@pytest.fixture
def cart_filter(catalog, router):
    return CartMessageFilter(catalog, router)


@pytest.fixture
def ledger():
    return InMemorySalesLedger()


@pytest.fixture
def gateway():
    """Checkout gateway that hands out a sandbox Snap URL."""
    gateway = MagicMock()
    gateway.create_checkout_session = AsyncMock(return_value=SNAP_URL)
    return gateway


@pytest.fixture
def controller(router, cart_filter, ledger, gateway):
    return SessionController(router=router, cart_filter=cart_filter, ledger=ledger, gateway=gateway)


@pytest.fixture
def listening_session(router):
    """A session listening on cart C1, as the controller would set it up."""
    session = CartSession(cart_id="C1", state=SessionState.LISTENING)
    session.topic = router.start_session("C1", AsyncMock())
    return session


@pytest.fixture
def cart_payload():
    """Cart contents worth 32000: 2 x P1 and 2 x P2."""
    return {"id": "user-7", "items": [{"id": "P1", "qty": 2}, {"id": "P2", "qty": 2}]}
