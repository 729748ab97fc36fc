# Overview: In-memory cart aggregation with advisory stock checks against a catalog snapshot.

"""
Cart Aggregator

A cart holds at most one line per product code. Every mutation is checked
against the catalog snapshot the cart was opened with; those checks are
advisory (the snapshot can be stale), checkout re-validates against fresh
stock before anything is written.

Carts are single-actor and never persisted. CartRegistry lets the HTTP layer
address carts by token across requests within one process.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace

from .catalog_service import CatalogSnapshot, ProductView
from .errors import InsufficientStock, InvalidProductCode, NotFound, OutOfStock, ValidationError
from .identifiers import ProductCode
from .pricing_service import Totals, compute_totals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItem:
    product_code: ProductCode
    product_name: str
    unit_price_cents: int
    quantity: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "productCode": self.product_code,
            "productName": self.product_name,
            "quantity": self.quantity,
            "price": self.unit_price_cents / 100,
            "totalPrice": self.line_total_cents / 100,
            "price_cents": self.unit_price_cents,
            "total_price_cents": self.line_total_cents,
        }


class Cart:
    def __init__(self, catalog: CatalogSnapshot, tax_rate_bps: int):
        self.catalog = catalog
        self.tax_rate_bps = tax_rate_bps
        self._lines: dict[ProductCode, LineItem] = {}

    @property
    def lines(self) -> list[LineItem]:
        return list(self._lines.values())

    def line(self, code) -> LineItem | None:
        return self._lines.get(ProductCode(code))

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_by_code(self, code) -> "Cart":
        """Add one unit of the product scanned or typed as ``code``."""
        code = ProductCode(code)
        product = self.catalog.get(code)
        if product is None:
            raise NotFound(f"No product with code {code}", details={"product_code": code})
        return self.add_by_product(product)

    def add_by_product(self, product: ProductView) -> "Cart":
        """Add one unit of an already resolved product (search/manual pick)."""
        existing = self._lines.get(product.product_code)

        if existing is None:
            if product.quantity < 1:
                raise OutOfStock(
                    f"{product.name} is out of stock",
                    details={"product_code": product.product_code, "available": product.quantity},
                )
            self._lines[product.product_code] = LineItem(
                product_code=product.product_code,
                product_name=product.name,
                unit_price_cents=product.selling_price_cents,
                quantity=1,
            )
            return self

        if existing.quantity + 1 > product.quantity:
            raise InsufficientStock(
                f"Cannot add more {product.name}. Only {product.quantity} available in stock.",
                details={
                    "product_code": product.product_code,
                    "requested_quantity": existing.quantity + 1,
                    "available": product.quantity,
                },
            )
        self._lines[product.product_code] = replace(existing, quantity=existing.quantity + 1)
        return self

    def adjust_quantity(self, code, delta: int) -> "Cart":
        """
        Change a line's quantity by ``delta``.

        The result never drops below 1 (use remove_line to drop a product).
        Increases beyond the product's stock fail and leave the line as is.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta must be an integer")

        code = ProductCode(code)
        existing = self._lines.get(code)
        if existing is None:
            raise NotFound(f"{code} is not in the cart", details={"product_code": code})

        new_quantity = max(1, existing.quantity + delta)
        if new_quantity > existing.quantity:
            product = self.catalog.get(code)
            available = product.quantity if product else 0
            if new_quantity > available:
                raise InsufficientStock(
                    f"Cannot add more. Only {available} available in stock.",
                    details={
                        "product_code": code,
                        "requested_quantity": new_quantity,
                        "available": available,
                    },
                )

        self._lines[code] = replace(existing, quantity=new_quantity)
        return self

    def remove_line(self, code) -> "Cart":
        try:
            code = ProductCode(code)
        except InvalidProductCode:
            # Never a valid key, so never in the cart
            return self
        self._lines.pop(code, None)
        return self

    def clear(self) -> "Cart":
        self._lines.clear()
        return self

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    def totals(self) -> Totals:
        return compute_totals((line.line_total_cents for line in self._lines.values()), self.tax_rate_bps)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self._lines.values()],
            "totals": self.totals().to_dict(),
        }


class CartRegistry:
    """Process-local map of open carts keyed by an opaque token."""

    def __init__(self):
        self._carts: dict[str, Cart] = {}
        self._lock = threading.Lock()

    def open(self, catalog: CatalogSnapshot, tax_rate_bps: int) -> tuple[str, Cart]:
        token = uuid.uuid4().hex
        cart = Cart(catalog, tax_rate_bps)
        with self._lock:
            self._carts[token] = cart
        logger.debug("Opened cart %s", token)
        return token, cart

    def get(self, token: str) -> Cart:
        with self._lock:
            cart = self._carts.get(token)
        if cart is None:
            raise NotFound("Cart not found", details={"cart_token": token})
        return cart

    def discard(self, token: str) -> None:
        with self._lock:
            self._carts.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._carts)
