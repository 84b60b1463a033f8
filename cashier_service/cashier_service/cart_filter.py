"""Turns the one useful cart message of a session into line items."""

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from .catalog import CatalogStore
from .errors import CatalogLookupFailure, EmptyCart, MalformedPayload, NoValidItems
from .logger import logger
from .router import TopicRouter
from .schemas import (
    CartResolution,
    CartSession,
    LineItem,
    RawCartItem,
    RawCartMessage,
    SessionState,
    UnresolvedItem,
)

RawPayload = Union[bytes, str, dict, None]


class CartMessageFilter:
    """Validates cart messages and resolves their items against the catalog.

    A session accepts exactly one cart message. Messages that cannot be parsed
    leave the session listening for a corrected one; a message that was parsed
    but resolved nothing ends the subscription so a faulty device cannot keep
    retrying into the same session.
    """

    def __init__(self, catalog: CatalogStore, router: TopicRouter):
        self.catalog = catalog
        self.router = router

    def parse(self, raw: RawPayload) -> RawCartMessage:
        """Decode and validate the message envelope.

        Args:
            raw: Message value as received from the bus, or an already decoded object

        Returns:
            RawCartMessage: The envelope with its unvalidated item entries.

        Raises:
            MalformedPayload: If the payload is not an object with an ``items`` array.
            EmptyCart: If ``items`` is empty.
        """
        data: Any = raw
        if isinstance(raw, (bytes, bytearray)):
            try:
                data = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedPayload(f"Payload is not UTF-8: {e}") from e
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise MalformedPayload(f"Payload is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedPayload(f"Payload must be an object, got {type(data).__name__}")
        if not isinstance(data.get("items"), list):
            raise MalformedPayload("Payload has no items array")

        try:
            message = RawCartMessage.model_validate(data)
        except ValidationError as e:
            raise MalformedPayload(f"Invalid cart message: {e.errors()[0]['msg']}") from e

        if not message.items:
            raise EmptyCart("Cart message has no items")
        return message

    async def resolve(self, message: RawCartMessage) -> CartResolution:
        """Look up every entry in the catalog.

        Prices and discounts come from the catalog, never from the message.
        Entries that cannot be resolved are reported, not fatal.
        """
        items: list[LineItem] = []
        unresolved: list[UnresolvedItem] = []

        for index, entry in enumerate(message.items):
            try:
                raw_item = RawCartItem.model_validate(entry)
            except ValidationError:
                product_id = entry.get("id") if isinstance(entry, dict) else None
                unresolved.append(
                    UnresolvedItem(
                        index=index,
                        product_id=product_id if isinstance(product_id, str) else None,
                        reason="invalid_item",
                    )
                )
                continue

            if raw_item.product_id is None:
                logger.warning(f"Cart item without product reference | index={index}")
                unresolved.append(UnresolvedItem(index=index, reason="missing_reference"))
                continue

            try:
                product = await self.catalog.get(raw_item.product_id)
            except CatalogLookupFailure as e:
                logger.warning(f"Catalog lookup failed | product_id={raw_item.product_id} | error={e}")
                unresolved.append(UnresolvedItem(index=index, product_id=raw_item.product_id, reason="lookup_failed"))
                continue

            if product is None:
                unresolved.append(UnresolvedItem(index=index, product_id=raw_item.product_id, reason="not_found"))
                continue

            items.append(LineItem.from_catalog(product, raw_item.quantity))

        return CartResolution(user_id=message.user_id, items=items, unresolved=unresolved)

    async def on_message(self, session: CartSession, raw: RawPayload) -> Optional[CartResolution]:
        """Handle one cart message for ``session``.

        Args:
            session: The session the message arrived for
            raw: The message value

        Returns:
            The resolution that was accepted into the session, or None if the
            session had already accepted a message or stopped listening.

        Raises:
            MalformedPayload: Unusable payload; the session keeps listening.
            EmptyCart: No items; the session keeps listening.
            NoValidItems: Nothing resolved; the subscription has been released.
        """
        if session.message_accepted:
            logger.debug(f"Ignoring duplicate cart message | cart_id={session.cart_id}")
            return None

        message = self.parse(raw)
        resolution = await self.resolve(message)

        if session.state is not SessionState.LISTENING:
            # Session was reset or replaced while the catalog was queried
            logger.info(f"Discarding cart message for closed session | session_id={session.session_id}")
            return None

        if resolution.unresolved:
            logger.warning(
                f"Unresolved cart items | cart_id={session.cart_id} | "
                f"not_found={resolution.not_found} | count={len(resolution.unresolved)}"
            )

        # The topic serves one useful delivery per session, success or not
        self.router.end_session(session.topic)

        if not resolution.items:
            raise NoValidItems(
                f"No item of cart {session.cart_id} matched the catalog",
                unresolved=resolution.unresolved,
            )

        session.accept(resolution.user_id, resolution.items)
        logger.info(
            f"Accepted cart message | cart_id={session.cart_id} | user_id={resolution.user_id} | "
            f"items={len(resolution.items)} | total={session.total_amount}"
        )
        return resolution
