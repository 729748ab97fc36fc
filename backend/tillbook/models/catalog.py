from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def cents_to_units(cents: int | None) -> float | None:
    """Display amount (rupees, dollars...) for a stored cent value."""
    if cents is None:
        return None
    return cents / 100


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.quantity is a mutable counter (not ledger-derived). Every stock
    write is a compare-and-set on version_id so two terminals selling the same
    product cannot silently overwrite each other's decrement. The history of
    writes made by billing lives in StockMovement.

    LOOKUP PATTERN:
    - Scan lookup: Product.query.filter_by(product_code=X)
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)
    mrp_cents = db.Column(db.Integer, nullable=True)

    category_name = db.Column(db.String(128), nullable=True)
    subcategories = db.Column(db.JSON, nullable=False, default=list)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    dealer_name = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.product_code!r} name={self.name!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "productId": self.id,
            "productCode": self.product_code,
            "productName": self.name,
            "product_selling_price": cents_to_units(self.selling_price_cents),
            "product_cost_price": cents_to_units(self.cost_price_cents),
            "product_mrp_price": cents_to_units(self.mrp_cents),
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "mrp_cents": self.mrp_cents,
            "category": {
                "name": self.category_name,
                "subcategories": list(self.subcategories or []),
            },
            "quantity": self.quantity,
            "dealerName": self.dealer_name,
            "version": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one applied stock adjustment.

    (reference, product_code) is unique: a bill can move a given product's
    stock at most once. Replaying a bill's adjustments skips products that
    already have a row here.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("reference", "product_code", name="uq_stock_movements_reference_code"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Bill id (sale or return) that caused the movement
    reference = db.Column(db.String(64), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_code = db.Column(db.String(64), nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "product_id": self.product_id,
            "product_code": self.product_code,
            "delta": self.delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "occurred_at": to_utc_z(self.occurred_at),
        }
