"""Exceptions raised by the cashier service."""

from typing import Optional


class CashierError(Exception):
    """Base class for all cashier service errors.

    Attributes:
        retryable: Whether the operator can fix the situation by retrying.
    """

    retryable = False


class InvalidCartId(CashierError, ValueError):
    """The operator submitted a blank cart id."""


class TransportUnavailable(CashierError):
    """The message bus is not connected or rejected the request."""

    retryable = True


class CartMessageError(CashierError):
    """An inbound cart message could not be turned into a cart."""


class MalformedPayload(CartMessageError):
    """The payload is not an object with an ``items`` array."""


class EmptyCart(CartMessageError):
    """The cart has no items."""


class NoValidItems(CartMessageError):
    """None of the items in a cart message resolved against the catalog."""

    def __init__(self, message: str, unresolved: Optional[list] = None):
        super().__init__(message)
        self.unresolved = unresolved or []


class CatalogLookupFailure(CashierError):
    """The catalog store could not answer a lookup."""

    retryable = True


class PersistenceFailure(CashierError):
    """The sale could not be written to the sales ledger."""

    retryable = True


class CheckoutGatewayUnavailable(CashierError):
    """The hosted checkout session could not be created."""

    retryable = True


class InvalidSessionState(CashierError):
    """The operation is not allowed in the session's current state."""


class InsufficientCash(CashierError, ValueError):
    """Tendered cash is less than the amount due."""


class ItemNotInCart(CashierError, KeyError):
    """The product is not in the session's cart."""
