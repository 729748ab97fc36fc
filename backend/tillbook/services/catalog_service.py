# Overview: Catalog store and in-memory catalog snapshot used by carts and checkout.

"""
Catalog access for the billing core.

CatalogStore is the persistence boundary for products: per-product reads and a
compare-and-set quantity write. No multi-product transaction is offered.

CatalogSnapshot is a point-in-time, in-memory view of every product. Carts
validate against it; checkout refreshes it before its authoritative stock
check. A snapshot is passed in explicitly; there is no module-level catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product
from ..time_utils import utcnow
from .errors import InvalidOperation, NotFound, PersistenceError, ValidationError
from .identifiers import ProductCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductView:
    """Detached, read-only copy of a product row."""
    product_id: int
    product_code: ProductCode
    name: str
    selling_price_cents: int
    quantity: int
    version: int
    cost_price_cents: int | None = None
    mrp_cents: int | None = None
    category_name: str | None = None
    subcategories: tuple[str, ...] = field(default_factory=tuple)
    dealer_name: str | None = None

    @classmethod
    def from_model(cls, product: Product) -> "ProductView":
        return cls(
            product_id=product.id,
            product_code=ProductCode(product.product_code),
            name=product.name,
            selling_price_cents=product.selling_price_cents,
            quantity=product.quantity,
            version=product.version_id,
            cost_price_cents=product.cost_price_cents,
            mrp_cents=product.mrp_cents,
            category_name=product.category_name,
            subcategories=tuple(product.subcategories or ()),
            dealer_name=product.dealer_name,
        )


class CatalogStore:
    """Database-backed product store. Reads always reload rows from the database."""

    def get(self, code) -> ProductView | None:
        code = ProductCode(code)
        try:
            product = db.session.query(Product).populate_existing().filter_by(product_code=code).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to read product", details={"product_code": code}) from exc
        return ProductView.from_model(product) if product else None

    def get_by_id(self, product_id: int) -> ProductView | None:
        try:
            product = db.session.get(Product, product_id, populate_existing=True)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to read product", details={"product_id": product_id}) from exc
        return ProductView.from_model(product) if product else None

    def list_all(self) -> list[ProductView]:
        try:
            products = (
                db.session.query(Product)
                .populate_existing()
                .order_by(Product.name.asc(), Product.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to list products") from exc
        return [ProductView.from_model(p) for p in products]

    def set_quantity(self, product_id: int, quantity: int, *, expected_version: int) -> int:
        """
        Compare-and-set the stock count. Flushes but does not commit.

        Raises StaleDataError if the row's version moved since it was read,
        NotFound if the product no longer exists. Returns the new version.
        """
        if quantity < 0:
            raise ValidationError("quantity cannot be negative", details={"product_id": product_id})

        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.version_id == expected_version)
            .values(quantity=quantity, version_id=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount:
            return expected_version + 1

        exists = db.session.query(Product.id).filter_by(id=product_id).first()
        if exists is None:
            raise NotFound("Product not found", details={"product_id": product_id})
        raise StaleDataError(
            f"Product {product_id} changed since version {expected_version} was read"
        )


class CatalogSnapshot:
    """In-memory view of the catalog keyed by product code."""

    def __init__(self, store: CatalogStore):
        self.store = store
        self._by_code: dict[ProductCode, ProductView] = {}
        self._by_id: dict[int, ProductView] = {}

    def refresh(self) -> "CatalogSnapshot":
        products = self.store.list_all()
        self._by_code = {p.product_code: p for p in products}
        self._by_id = {p.product_id: p for p in products}
        logger.debug("Catalog snapshot refreshed with %d products", len(products))
        return self

    def get(self, code) -> ProductView | None:
        return self._by_code.get(ProductCode(code))

    def get_by_id(self, product_id: int) -> ProductView | None:
        return self._by_id.get(product_id)


# =============================================================================
# CATALOG ENTRY
# =============================================================================

def _require_int(data: dict, key: str, *, required: bool = False, minimum: int = 0) -> int | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def create_product(data: dict) -> Product:
    """
    Create a catalog entry.

    Catalog maintenance lives outside the billing core; this exists so the API
    and CLI can seed products. Prices are integer cents.
    """
    code = ProductCode(data.get("product_code") or data.get("productCode") or "")
    name = (data.get("name") or data.get("productName") or "").strip()
    if not name:
        raise ValidationError("name is required")

    subcategories = data.get("subcategories") or []
    if not isinstance(subcategories, list) or not all(isinstance(s, str) for s in subcategories):
        raise ValidationError("subcategories must be a list of strings")

    product = Product(
        product_code=code,
        name=name,
        selling_price_cents=_require_int(data, "selling_price_cents", required=True),
        cost_price_cents=_require_int(data, "cost_price_cents"),
        mrp_cents=_require_int(data, "mrp_cents"),
        category_name=data.get("category_name"),
        subcategories=subcategories,
        quantity=_require_int(data, "quantity") or 0,
        dealer_name=data.get("dealer_name"),
    )

    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise InvalidOperation(
            f"Product code {code} already exists",
            details={"product_code": code},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to create product") from exc

    logger.info("Created product %s (%s) with quantity %d", code, name, product.quantity)
    return product
