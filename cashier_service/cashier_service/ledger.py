"""Sales ledger: append-only storage of paid transactions."""

from typing import Optional, Protocol

from .errors import PersistenceFailure
from .logger import logger
from .schemas import SaleRecord


class SalesLedger(Protocol):
    """Protocol defining the append-only sale store."""

    async def record(self, sale: SaleRecord) -> str:
        """Append a sale.

        Args:
            sale: The paid transaction

        Returns:
            str: The stored transaction id.

        Raises:
            PersistenceFailure: If the sale could not be stored.
        """
        ...


class InMemorySalesLedger:
    """Ledger kept in process memory."""

    def __init__(self):
        self._sales: dict[str, SaleRecord] = {}

    async def record(self, sale: SaleRecord) -> str:
        if sale.transaction_id in self._sales:
            raise PersistenceFailure(f"Transaction {sale.transaction_id} is already recorded")
        self._sales[sale.transaction_id] = sale
        logger.info(f"Recorded sale | transaction_id={sale.transaction_id} | cart_id={sale.cart_id} | total={sale.total}")
        return sale.transaction_id

    def get(self, transaction_id: str) -> Optional[SaleRecord]:
        return self._sales.get(transaction_id)

    def list_sales(self, cart_id: Optional[str] = None) -> list[SaleRecord]:
        """Get all recorded sales, optionally for one cart.

        Args:
            cart_id: Optional cart id to filter by

        Returns:
            Sales in the order they were recorded.
        """
        if cart_id:
            return [sale for sale in self._sales.values() if sale.cart_id == cart_id]
        return list(self._sales.values())
