"""Checkout gateway: creates hosted payment pages."""

import asyncio
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import requests

from .errors import CheckoutGatewayUnavailable
from .logger import logger


class CheckoutGateway(Protocol):
    """Protocol defining the hosted checkout contract."""

    async def create_checkout_session(self, amount: Decimal) -> str:
        """Create a hosted payment page for ``amount``.

        Args:
            amount: Amount due

        Returns:
            str: URL of the hosted payment page.

        Raises:
            CheckoutGatewayUnavailable: If no page could be created.
        """
        ...


class SnapCheckoutGateway:
    """Midtrans Snap client."""

    def __init__(self, server_key: str, base_url: str = "https://app.sandbox.midtrans.com", timeout: float = 10.0):
        """Initialize the Snap client.

        Args:
            server_key: Merchant server key, sent as the basic-auth user
            base_url: Snap API base URL (sandbox by default)
            timeout: Request timeout in seconds
        """
        self.server_key = server_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @staticmethod
    def gross_amount(amount: Decimal) -> int:
        """Snap takes whole rupiah."""
        return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def _create_transaction(self, amount: Decimal) -> str:
        if not self.server_key:
            raise CheckoutGatewayUnavailable("Snap server key is not configured")

        order_id = f"order-{int(time.time() * 1000)}"
        try:
            response = requests.post(
                f"{self.base_url}/snap/v1/transactions",
                auth=(self.server_key, ""),
                headers={"Accept": "application/json"},
                json={"transaction_details": {"order_id": order_id, "gross_amount": self.gross_amount(amount)}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Snap transaction failed | order_id={order_id} | error={e}")
            raise CheckoutGatewayUnavailable(f"Payment gateway unavailable: {e}") from e
        except ValueError as e:
            raise CheckoutGatewayUnavailable("Payment gateway returned invalid JSON") from e

        redirect_url = data.get("redirect_url") if isinstance(data, dict) else None
        if not redirect_url:
            logger.error(f"Snap response without redirect_url | order_id={order_id} | response={data}")
            raise CheckoutGatewayUnavailable("Invalid response: redirect_url not found")

        logger.info(f"Snap transaction created | order_id={order_id} | amount={amount}")
        return redirect_url

    async def create_checkout_session(self, amount: Decimal) -> str:
        # requests blocks; keep the event loop free while Snap answers
        return await asyncio.to_thread(self._create_transaction, amount)
