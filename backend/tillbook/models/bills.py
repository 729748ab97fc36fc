from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import cents_to_units

PAYMENT_METHODS = ("cash", "card", "upi")


class Bill(db.Model):
    """
    Finalized sale or return.

    Bills are immutable once inserted: a reversal is a new Bill with
    is_return=True pointing at the original through original_bill_id.
    Amounts are stored in cents; a return bill stores non-positive amounts.
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.Index("ix_bills_date", "date"),
        db.Index("ix_bills_original_bill_id", "original_bill_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, time-derived identifier (e.g., "BILL-1718000000000")
    bill_id = db.Column(db.String(64), nullable=False, unique=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    # Rate used to compute tax_cents, in basis points (1800 = 18%)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=False, default="")
    customer_phone = db.Column(db.String(32), nullable=True)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")

    is_return = db.Column(db.Boolean, nullable=False, default=False)
    original_bill_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "BillLine",
        backref="bill",
        order_by="BillLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Bill {self.bill_id} total_cents={self.total_cents} is_return={self.is_return}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "billId": self.bill_id,
            "date": to_utc_z(self.date),
            "items": [line.to_dict() for line in self.items],
            "subtotal": cents_to_units(self.subtotal_cents),
            "tax": cents_to_units(self.tax_cents),
            "total": cents_to_units(self.total_cents),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "taxRate": self.tax_rate_bps / 10000,
            "customerName": self.customer_name,
            "customerPhone": self.customer_phone,
            "paymentMethod": self.payment_method,
            "isReturn": self.is_return,
            "originalBillId": self.original_bill_id,
        }


class BillLine(db.Model):
    """Frozen copy of one cart line; never follows later catalog edits."""
    __tablename__ = "bill_lines"
    __table_args__ = (
        db.UniqueConstraint("bill_pk", "position", name="uq_bill_lines_bill_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_pk = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    # Negative on return bills
    total_price_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "productCode": self.product_code,
            "productName": self.product_name,
            "quantity": self.quantity,
            "price": cents_to_units(self.price_cents),
            "totalPrice": cents_to_units(self.total_price_cents),
            "price_cents": self.price_cents,
            "total_price_cents": self.total_price_cents,
        }


def _reject_mutation(mapper, connection, target):
    from ..services.errors import ImmutableRecordError
    name = getattr(target, "bill_id", None) or getattr(target, "bill_pk", None)
    raise ImmutableRecordError(
        f"{type(target).__name__} records are immutable",
        details={"record": str(name)},
    )


for _model in (Bill, BillLine):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
