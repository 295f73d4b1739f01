"""Product catalog - configured products addressed by index and by ID.

Products are created from configuration and mutated only when prices are
loaded from the bridge.
"""

import json
from typing import List, Optional

from iap_billing.config import Config, get_config
from iap_billing.errors import PriceFormatError, PriceMismatchError, ProductNotFoundError
from iap_billing.models import ProductDefinition
from iap_billing.state_logger import log_price_change
from iap_billing.utils.price_parser import parse_price


class ProductCatalog:
    """Ordered catalog of purchasable products.

    Identity is positional (catalog index) and by product ID.
    """

    def __init__(
        self,
        products: Optional[List[ProductDefinition]] = None,
        config: Optional[Config] = None,
    ):
        """Initialize product catalog.

        Args:
            products: Explicit product list. If not provided, loaded from configuration.
            config: Configuration instance. If not provided, uses global config.
        """
        if products is None:
            config = config or get_config()
            products = [p.model_copy() for p in config.store.products]
        self._products: List[ProductDefinition] = list(products)
        self._prices_loaded = False

    def is_valid_index(self, index: int) -> bool:
        """Check whether ``index`` addresses a catalog entry."""
        return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(self._products)

    def get(self, index: int) -> ProductDefinition:
        """Get product by catalog index.

        Raises:
            IndexError: If index is out of catalog bounds
        """
        if not self.is_valid_index(index):
            raise IndexError(f"Product index out of range: {index} (catalog size {len(self._products)})")
        return self._products[index]

    def get_by_id(self, product_id: str) -> ProductDefinition:
        """Get product by ID.

        Raises:
            ProductNotFoundError: If product ID not found
        """
        for product in self._products:
            if product.id == product_id:
                return product
        raise ProductNotFoundError(
            f"Product not found: {product_id}. Available products: {self.product_ids()}"
        )

    def product_ids(self) -> List[str]:
        """Get product IDs in catalog order."""
        return [product.id for product in self._products]

    @property
    def prices_loaded(self) -> bool:
        return self._prices_loaded

    def mark_prices_loaded(self) -> None:
        self._prices_loaded = True

    def apply_products_details(self, data: str) -> None:
        """Assign prices from a bridge products-details payload.

        The payload is a JSON array of ``{"productId", "price"}`` objects, one per
        requested product, in request order. Each entry is matched by position
        and its product ID must equal the catalog ID at that position. Nothing
        is assigned unless every entry parses and matches.

        Args:
            data: JSON payload from the bridge

        Raises:
            PriceMismatchError: If the payload shape or IDs do not match the catalog
            PriceFormatError: If a price string cannot be normalized
        """
        try:
            entries = json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            raise PriceMismatchError(f"products details are not valid JSON: {e}") from e

        if not isinstance(entries, list) or len(entries) != len(self._products):
            raise PriceMismatchError(
                f"expected {len(self._products)} product details, "
                f"got {len(entries) if isinstance(entries, list) else type(entries).__name__}"
            )

        prices = []
        for index, (product, entry) in enumerate(zip(self._products, entries)):
            if not isinstance(entry, dict):
                raise PriceMismatchError(f"product details entry {index} is not an object")
            returned_id = entry.get("productId")
            if returned_id != product.id:
                raise PriceMismatchError(
                    f"product details entry {index} is for {returned_id!r}, expected {product.id!r}"
                )
            raw_price = entry.get("price")
            if raw_price is None:
                raise PriceFormatError("")
            prices.append(parse_price(str(raw_price)))

        for product, price in zip(self._products, prices):
            old_price = product.price
            product.price = price
            if old_price != price:
                log_price_change(product_id=product.id, old_price=old_price, new_price=price)

        self._prices_loaded = True

    def __len__(self) -> int:
        return len(self._products)

    def __iter__(self):
        return iter(self._products)

    def __repr__(self) -> str:
        return f"ProductCatalog(products={len(self._products)}, prices_loaded={self._prices_loaded})"
