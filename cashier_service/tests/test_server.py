"""Tests for the cashier service HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from cashier_service import server
from cashier_service.errors import CheckoutGatewayUnavailable
from cashier_service.server import app

FINISH_URL = "https://app.sandbox.midtrans.com/snap/v2/vtweb/finish?transaction_status=settlement"


@pytest.fixture
def test_client(controller, ledger, mocker):
    """Create a test client around a controller backed by mocked Kafka."""
    mocker.patch.object(server.state, "controller", controller)
    mocker.patch.object(server.state, "ledger", ledger)
    return TestClient(app)


def deliver(cart_consumer, message):
    """Run one bus delivery to completion."""
    asyncio.run(cart_consumer.dispatch(message))


def test_health_check(test_client):
    """Test the health check endpoint."""
    response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_readiness_check(test_client, mocker):
    """Test the readiness endpoint against a reachable and an unreachable broker."""
    admin_class = mocker.patch("cashier_service.server.AdminClient")

    response = test_client.get("/health/ready")
    assert response.json() == {"status": "ready", "kafka": "connected"}

    admin_class.return_value.list_topics.side_effect = Exception("timed out")
    response = test_client.get("/health/ready")
    assert response.json() == {"status": "not ready", "kafka": "disconnected"}


def test_start_session(test_client):
    """Test attaching the terminal to a cart."""
    response = test_client.post("/session", json={"cart_id": " C1 "})

    assert response.status_code == 200
    data = response.json()
    assert data["session"]["cart_id"] == "C1"
    assert data["session"]["state"] == "listening"
    assert data["listening_topic"] == "C1/payment"


def test_start_session_blank_cart(test_client):
    """Test that a blank cart id is rejected."""
    response = test_client.post("/session", json={"cart_id": "   "})

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "InvalidCartId"
    assert data["retryable"] is False


def test_get_idle_session(test_client):
    """Test reading the session before any cart is attached."""
    response = test_client.get("/session")

    assert response.status_code == 200
    assert response.json()["session"]["state"] == "idle"
    assert response.json()["listening_topic"] is None


def test_checkout_requires_cart(test_client):
    """Test that checkout is refused while no cart is populated."""
    test_client.post("/session", json={"cart_id": "C1"})

    response = test_client.post("/session/checkout", json={"method": "tunai"})

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidSessionState"


def test_invalid_payment_method(test_client):
    """Test that unknown payment methods fail validation."""
    response = test_client.post("/session/checkout", json={"method": "bitcoin"})

    assert response.status_code == 422


def test_cash_sale_flow(test_client, cart_consumer, kafka_message, cart_payload):
    """Test a full cash sale through the API."""
    test_client.post("/session", json={"cart_id": "C1"})
    deliver(cart_consumer, kafka_message("C1.payment", cart_payload))

    response = test_client.get("/session")
    assert response.json()["session"]["state"] == "populated"
    assert response.json()["session"]["total_amount"] == "32000"

    response = test_client.patch("/session/items/P2", json={"quantity": 1})
    assert response.json()["session"]["total_amount"] == "26000"

    response = test_client.delete("/session/items/P9")
    assert response.status_code == 404
    assert response.json()["error"] == "ItemNotInCart"

    response = test_client.post("/session/checkout", json={"method": "tunai"})
    assert response.json()["session"]["state"] == "awaiting_payment"

    response = test_client.post("/session/cash", json={"cash_paid": 20000})
    assert response.status_code == 422
    assert response.json()["error"] == "InsufficientCash"

    response = test_client.post("/session/cash", json={"cash_paid": 50000})
    assert response.status_code == 200
    sale = response.json()["sale"]
    assert sale["change"] == "24000"
    assert sale["payment_method"] == "tunai"
    assert response.json()["sale_persisted"] is True
    assert response.json()["status_published"] is True

    response = test_client.get(f"/sales/{sale['transaction_id']}")
    assert response.status_code == 200
    assert response.json()["cart_id"] == "C1"

    response = test_client.get("/sales", params={"cart_id": "C1"})
    assert [s["transaction_id"] for s in response.json()] == [sale["transaction_id"]]

    response = test_client.post("/session/reset")
    assert response.json()["session"]["state"] == "idle"
    assert response.json()["sale"] is None


def test_transfer_flow(test_client, cart_consumer, kafka_message, cart_payload):
    """Test a hosted checkout through the API."""
    test_client.post("/session", json={"cart_id": "C1"})
    deliver(cart_consumer, kafka_message("C1.payment", cart_payload))

    response = test_client.post("/session/checkout", json={"method": "transfer"})
    attempt = response.json()["checkout_attempt"]
    assert attempt["method"] == "transfer"
    assert attempt["redirect_url"].startswith("https://app.sandbox.midtrans.com/")

    response = test_client.post("/session/navigation", json={"url": attempt["redirect_url"]})
    assert response.json()["outcome"] is None

    response = test_client.post("/session/navigation", json={"url": FINISH_URL})
    data = response.json()
    assert data["outcome"] == "settled"
    assert data["view"]["session"]["state"] == "paid"
    assert data["view"]["sale"]["payment_method"] == "transfer"


def test_gateway_error(test_client, gateway, cart_consumer, kafka_message, cart_payload):
    """Test that a payment page failure is a retryable 502."""
    gateway.create_checkout_session.side_effect = CheckoutGatewayUnavailable("Payment gateway unavailable")
    test_client.post("/session", json={"cart_id": "C1"})
    deliver(cart_consumer, kafka_message("C1.payment", cart_payload))

    response = test_client.post("/session/checkout", json={"method": "transfer"})

    assert response.status_code == 502
    assert response.json()["retryable"] is True

    response = test_client.post("/session/checkout/cancel")
    assert response.status_code == 409


def test_sale_not_found(test_client):
    """Test reading an unknown sale."""
    response = test_client.get("/sales/TRX0-0000")

    assert response.status_code == 404


def test_service_unavailable_without_controller(mocker):
    """Test that session endpoints answer 503 before startup completes."""
    mocker.patch.object(server.state, "controller", None)
    client = TestClient(app)

    response = client.get("/session")

    assert response.status_code == 503
