"""Catalog store: the authority on product names, prices and discounts."""

import json
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from .errors import CatalogLookupFailure
from .logger import logger
from .schemas import CatalogProduct


class CatalogStore(Protocol):
    """Protocol defining keyed product lookup."""

    async def get(self, product_id: str) -> Optional[CatalogProduct]:
        """Look up a product.

        Args:
            product_id: Catalog key

        Returns:
            The product, or None if it does not exist.

        Raises:
            CatalogLookupFailure: If the store could not answer.
        """
        ...


class InMemoryCatalogStore:
    """Catalog held in memory, optionally loaded from a JSON file."""

    def __init__(self, products: Optional[list[CatalogProduct]] = None):
        self._products: dict[str, CatalogProduct] = {}
        for product in products or []:
            self.put(product)

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryCatalogStore":
        """Load a catalog file.

        The file holds either a list of products or an object keyed by
        product id, each product with ``name``, ``price`` and optional
        ``discount``.

        Args:
            path: Path to the JSON file

        Returns:
            InMemoryCatalogStore: The loaded catalog.

        Raises:
            CatalogLookupFailure: If the file cannot be read or parsed.
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            if isinstance(data, dict):
                data = [{"product_id": key, **value} for key, value in data.items()]
            products = [CatalogProduct.model_validate(entry) for entry in data]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            raise CatalogLookupFailure(f"Cannot load catalog from {path}: {e}") from e
        logger.info(f"Loaded catalog | path={path} | products={len(products)}")
        return cls(products)

    def put(self, product: CatalogProduct) -> None:
        """Add ``product``, replacing any entry with the same id."""
        self._products[product.product_id] = product

    async def get(self, product_id: str) -> Optional[CatalogProduct]:
        return self._products.get(product_id)

    def __len__(self) -> int:
        return len(self._products)
