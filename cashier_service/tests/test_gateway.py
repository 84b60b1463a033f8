"""Tests for the Snap checkout gateway."""

from decimal import Decimal

import pytest
import requests

from cashier_service.errors import CheckoutGatewayUnavailable
from cashier_service.gateway import SnapCheckoutGateway

REDIRECT_URL = "https://app.sandbox.midtrans.com/snap/v2/vtweb/0b2f6a1c-token"


@pytest.fixture
def mock_post(mocker):
    """Mock ``requests.post`` with a successful Snap response."""
    post = mocker.patch("cashier_service.gateway.requests.post")
    post.return_value.json.return_value = {"token": "0b2f6a1c-token", "redirect_url": REDIRECT_URL}
    return post


@pytest.fixture
def snap_gateway():
    return SnapCheckoutGateway("SB-Mid-server-test", timeout=3)


@pytest.mark.asyncio
async def test_create_checkout_session(snap_gateway, mock_post):
    """Test creating a Snap transaction."""
    url = await snap_gateway.create_checkout_session(Decimal("32000"))

    assert url == REDIRECT_URL
    mock_post.assert_called_once()
    args, kwargs = mock_post.call_args
    assert args[0] == "https://app.sandbox.midtrans.com/snap/v1/transactions"
    assert kwargs["auth"] == ("SB-Mid-server-test", "")
    assert kwargs["timeout"] == 3
    details = kwargs["json"]["transaction_details"]
    assert details["gross_amount"] == 32000
    assert details["order_id"].startswith("order-")


@pytest.mark.parametrize(
    "amount, expected",
    [(Decimal("18000.0"), 18000), (Decimal("32000.5"), 32001), (Decimal("999.49"), 999)],
)
def test_gross_amount_is_whole_rupiah(amount, expected):
    """Test rounding amounts for Snap."""
    assert SnapCheckoutGateway.gross_amount(amount) == expected


@pytest.mark.asyncio
async def test_missing_server_key(mock_post):
    """Test that an unconfigured gateway fails without calling Snap."""
    gateway = SnapCheckoutGateway("")

    with pytest.raises(CheckoutGatewayUnavailable):
        await gateway.create_checkout_session(Decimal("1000"))
    mock_post.assert_not_called()


@pytest.mark.asyncio
async def test_connection_error(snap_gateway, mock_post):
    """Test that network errors are reported as gateway unavailable."""
    mock_post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(CheckoutGatewayUnavailable):
        await snap_gateway.create_checkout_session(Decimal("1000"))


@pytest.mark.asyncio
async def test_http_error(snap_gateway, mock_post):
    """Test that a rejected request is reported as gateway unavailable."""
    mock_post.return_value.raise_for_status.side_effect = requests.HTTPError("401 Client Error")

    with pytest.raises(CheckoutGatewayUnavailable):
        await snap_gateway.create_checkout_session(Decimal("1000"))


@pytest.mark.asyncio
async def test_response_without_redirect_url(snap_gateway, mock_post):
    """Test that a response without a payment page URL is refused."""
    mock_post.return_value.json.return_value = {"token": "0b2f6a1c-token"}

    with pytest.raises(CheckoutGatewayUnavailable, match="redirect_url"):
        await snap_gateway.create_checkout_session(Decimal("1000"))


@pytest.mark.asyncio
async def test_invalid_json(snap_gateway, mock_post):
    """Test that an unparsable response is refused."""
    mock_post.return_value.json.side_effect = ValueError("Expecting value")

    with pytest.raises(CheckoutGatewayUnavailable):
        await snap_gateway.create_checkout_session(Decimal("1000"))
