"""Tests for cart message parsing and catalog resolution."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from cashier_service.cart_filter import CartMessageFilter
from cashier_service.errors import CatalogLookupFailure, EmptyCart, MalformedPayload, NoValidItems
from cashier_service.schemas import CatalogProduct, SessionState


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.mark.asyncio
async def test_resolves_known_items_and_reports_missing(cart_filter, listening_session, router):
    """Test that unknown products are reported while known ones are priced."""
    resolution = await cart_filter.on_message(
        listening_session, encode({"items": [{"id": "P1", "qty": 2}, {"id": "P9", "qty": 1}]})
    )

    assert len(resolution.items) == 1
    item = resolution.items[0]
    assert item.product_id == "P1"
    assert item.name == "Beras 1kg"
    assert item.line_total == Decimal("20000")
    assert resolution.not_found == ["P9"]
    assert resolution.unresolved[0].reason == "not_found"
    assert listening_session.message_accepted
    assert listening_session.items == resolution.items
    assert router.active_topic is None


@pytest.mark.asyncio
async def test_empty_cart_keeps_listening(cart_filter, listening_session, router, cart_payload):
    """Test that an empty cart is rejected and a corrected message still accepted."""
    with pytest.raises(EmptyCart):
        await cart_filter.on_message(listening_session, encode({"id": "user-7", "items": []}))

    assert not listening_session.message_accepted
    assert router.active_topic == "C1/payment"

    resolution = await cart_filter.on_message(listening_session, encode(cart_payload))

    assert len(resolution.items) == 2
    assert listening_session.message_accepted
    assert listening_session.total_amount == Decimal("32000")


@pytest.mark.parametrize(
    "raw",
    [
        None,
        b"not json",
        b"\xff\xfe\x00",
        b"[1, 2, 3]",
        b'"items"',
        b'{"id": "user-7"}',
        b'{"items": "P1"}',
        b'{"items": null}',
    ],
)
@pytest.mark.asyncio
async def test_malformed_payload_keeps_listening(cart_filter, listening_session, router, raw):
    """Test that unusable payloads are rejected without closing the session."""
    with pytest.raises(MalformedPayload):
        await cart_filter.on_message(listening_session, raw)

    assert not listening_session.message_accepted
    assert router.active_topic == "C1/payment"


@pytest.mark.asyncio
async def test_ignores_messages_after_acceptance(cart_filter, listening_session, cart_payload):
    """Test that only the first accepted message populates the session."""
    await cart_filter.on_message(listening_session, encode(cart_payload))
    accepted = list(listening_session.items)

    result = await cart_filter.on_message(listening_session, encode({"items": [{"id": "P3", "qty": 9}]}))

    assert result is None
    assert listening_session.items == accepted


@pytest.mark.asyncio
async def test_no_valid_items_releases_topic(cart_filter, listening_session, router, mock_kafka_consumer):
    """Test that a cart resolving to nothing ends the subscription."""
    with pytest.raises(NoValidItems) as exc_info:
        await cart_filter.on_message(listening_session, encode({"items": [{"id": "P9"}, {"qty": 3}]}))

    reasons = [u.reason for u in exc_info.value.unresolved]
    assert reasons == ["not_found", "missing_reference"]
    assert not listening_session.message_accepted
    assert router.active_topic is None
    mock_kafka_consumer.unsubscribe.assert_called_once()


@pytest.mark.asyncio
async def test_prices_come_from_catalog(cart_filter, listening_session):
    """Test that prices and discounts in the message are ignored."""
    resolution = await cart_filter.on_message(
        listening_session,
        encode({"items": [{"id": "P3", "qty": 1, "price": 1, "discount": 100}]}),
    )

    item = resolution.items[0]
    assert item.unit_price == Decimal("20000")
    assert item.discount_percent == Decimal("10")
    assert item.line_total == Decimal("18000")


@pytest.mark.asyncio
async def test_item_defaults_and_invalid_entries(cart_filter, listening_session):
    """Test quantity defaults and per-item rejection."""
    resolution = await cart_filter.on_message(
        listening_session,
        encode({"userId": "user-9", "items": [{"id": "P1"}, {"id": "P2", "qty": 0}, "P3", {"id": 42, "qty": None}]}),
    )

    assert resolution.user_id == "user-9"
    assert [(i.product_id, i.quantity) for i in resolution.items] == [("P1", 1)]
    assert [(u.index, u.product_id, u.reason) for u in resolution.unresolved] == [
        (1, "P2", "invalid_item"),
        (2, None, "invalid_item"),
        (3, "42", "not_found"),
    ]


@pytest.mark.asyncio
async def test_unknown_user(cart_filter, listening_session):
    """Test that a missing user id is recorded as unknown."""
    resolution = await cart_filter.on_message(listening_session, {"items": [{"id": "P1"}]})

    assert resolution.user_id == "unknown"
    assert listening_session.user_id == "unknown"


@pytest.mark.asyncio
async def test_catalog_failure_is_not_fatal(router, listening_session):
    """Test that a failed lookup only drops the affected item."""
    catalog = MagicMock()
    catalog.get = AsyncMock(
        side_effect=[
            CatalogLookupFailure("catalog timeout"),
            CatalogProduct(product_id="P2", name="Susu UHT", price=Decimal("6000")),
        ]
    )
    cart_filter = CartMessageFilter(catalog, router)

    resolution = await cart_filter.on_message(listening_session, encode({"items": [{"id": "P1"}, {"id": "P2"}]}))

    assert [i.product_id for i in resolution.items] == ["P2"]
    assert resolution.unresolved[0].reason == "lookup_failed"
    assert resolution.not_found == ["P1"]


@pytest.mark.asyncio
async def test_discards_result_for_closed_session(cart_filter, listening_session, router, cart_payload):
    """Test that a session closed during resolution is left untouched."""
    listening_session.state = SessionState.IDLE

    result = await cart_filter.on_message(listening_session, encode(cart_payload))

    assert result is None
    assert not listening_session.message_accepted
    assert router.active_topic == "C1/payment"
