# Overview: Bill ledger: append-only persistence and history queries for sale and return bills.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Bill, BillLine, PAYMENT_METHODS
from ..time_utils import epoch_millis
from .errors import NotFound, PersistenceError, ValidationError
from .identifiers import ProductCode
from .pricing_service import Totals

logger = logging.getLogger(__name__)
"""
Bill Ledger Invariants (authoritative)

- Append-only: bills and their lines are inserted once, never updated or
  deleted (enforced by mapper events on the models).
- A bill and all of its lines are inserted in one DB transaction.
- total == subtotal + tax on every bill.
- Return bills: subtotal, tax, total and every line total are <= 0, and
  original_bill_id names the sale being reversed.
- History reads are ordered by date descending (newest first).
"""


@dataclass(frozen=True)
class BillLineDraft:
    product_code: ProductCode
    product_name: str
    quantity: int
    price_cents: int
    total_price_cents: int


@dataclass(frozen=True)
class BillDraft:
    """A bill that has been computed but not yet written."""
    bill_id: str
    date: datetime
    items: tuple[BillLineDraft, ...]
    totals: Totals
    tax_rate_bps: int
    customer_name: str = ""
    customer_phone: str | None = None
    payment_method: str = "cash"
    is_return: bool = False
    original_bill_id: str | None = None

    def line_quantities(self) -> dict[ProductCode, int]:
        quantities: dict[ProductCode, int] = {}
        for item in self.items:
            quantities[item.product_code] = quantities.get(item.product_code, 0) + item.quantity
        return quantities

    def to_dict(self) -> dict:
        return {
            "billId": self.bill_id,
            "items": [
                {
                    "productCode": i.product_code,
                    "productName": i.product_name,
                    "quantity": i.quantity,
                    "price": i.price_cents / 100,
                    "totalPrice": i.total_price_cents / 100,
                }
                for i in self.items
            ],
            **{k: v for k, v in self.totals.to_dict().items() if not k.endswith("_cents")},
            "isReturn": self.is_return,
            "originalBillId": self.original_bill_id,
        }


def _check_draft(draft: BillDraft) -> None:
    t = draft.totals
    if t.total_cents != t.subtotal_cents + t.tax_cents:
        raise ValidationError("total must equal subtotal + tax", details={"bill_id": draft.bill_id})
    if t.subtotal_cents != sum(i.total_price_cents for i in draft.items):
        raise ValidationError("subtotal must equal the sum of line totals", details={"bill_id": draft.bill_id})
    if draft.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": draft.payment_method},
        )
    if draft.is_return:
        if not draft.original_bill_id:
            raise ValidationError("return bills must reference an original bill")
        if t.subtotal_cents > 0 or t.tax_cents > 0 or t.total_cents > 0:
            raise ValidationError("return bill amounts must be <= 0", details={"bill_id": draft.bill_id})
        if any(i.total_price_cents > 0 for i in draft.items):
            raise ValidationError("return line totals must be <= 0", details={"bill_id": draft.bill_id})
    elif draft.original_bill_id:
        raise ValidationError("only return bills may reference an original bill")


class BillLedger:
    """Database-backed bill history."""

    def create(self, draft: BillDraft) -> Bill:
        """
        Insert a bill and its lines atomically.

        Raises PersistenceError on any store failure; in that case nothing
        was written.
        """
        _check_draft(draft)

        bill = Bill(
            bill_id=draft.bill_id,
            date=draft.date,
            subtotal_cents=draft.totals.subtotal_cents,
            tax_cents=draft.totals.tax_cents,
            total_cents=draft.totals.total_cents,
            tax_rate_bps=draft.tax_rate_bps,
            customer_name=draft.customer_name or "",
            customer_phone=draft.customer_phone or None,
            payment_method=draft.payment_method,
            is_return=draft.is_return,
            original_bill_id=draft.original_bill_id,
        )
        for position, item in enumerate(draft.items, start=1):
            bill.items.append(BillLine(
                position=position,
                product_code=item.product_code,
                product_name=item.product_name,
                quantity=item.quantity,
                price_cents=item.price_cents,
                total_price_cents=item.total_price_cents,
            ))

        db.session.add(bill)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Bill %s was not saved: %s", draft.bill_id, exc)
            raise PersistenceError(
                "Failed to save bill",
                details={"bill_id": draft.bill_id},
            ) from exc

        logger.info(
            "Saved %s %s total_cents=%d lines=%d",
            "return bill" if draft.is_return else "bill",
            bill.bill_id,
            bill.total_cents,
            len(draft.items),
        )
        return bill

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_all(self, *, limit: int | None = None, is_return: bool | None = None) -> list[Bill]:
        """All bills, newest first."""
        q = db.session.query(Bill)
        if is_return is not None:
            q = q.filter(Bill.is_return == is_return)
        q = q.order_by(Bill.date.desc(), Bill.id.desc())
        if limit is not None:
            q = q.limit(limit)
        try:
            return q.all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to read bills") from exc

    def find(self, bill_id: str) -> Bill | None:
        try:
            return db.session.query(Bill).filter_by(bill_id=bill_id).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to read bill", details={"bill_id": bill_id}) from exc

    def get(self, bill_id: str) -> Bill:
        bill = self.find(bill_id)
        if bill is None:
            raise NotFound(f"Bill {bill_id} not found", details={"bill_id": bill_id})
        return bill

    def returns_for(self, bill_id: str) -> list[Bill]:
        """Return bills linked to an original bill, oldest first."""
        try:
            return (
                db.session.query(Bill)
                .filter(Bill.original_bill_id == bill_id, Bill.is_return.is_(True))
                .order_by(Bill.date.asc(), Bill.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to read returns", details={"bill_id": bill_id}) from exc

    def returned_quantities(self, bill_id: str) -> dict[ProductCode, int]:
        """Units already returned against ``bill_id`` summed over all its returns."""
        totals: dict[ProductCode, int] = {}
        for ret in self.returns_for(bill_id):
            for line in ret.items:
                code = ProductCode(line.product_code)
                totals[code] = totals.get(code, 0) + line.quantity
        return totals

    def refunded_tax_cents(self, bill_id: str) -> int:
        """Tax already refunded against ``bill_id`` (a positive amount)."""
        return sum(-ret.tax_cents for ret in self.returns_for(bill_id))

    # =========================================================================
    # IDENTIFIERS
    # =========================================================================

    def _exists(self, bill_id: str) -> bool:
        return db.session.query(Bill.id).filter_by(bill_id=bill_id).first() is not None

    def next_bill_id(self, prefix: str = "BILL", now: datetime | None = None) -> str:
        """
        Time-derived id ``BILL-<epoch millis>``.

        If the millisecond is already taken the value is bumped until free, so
        ids stay unique and sort in creation order.
        """
        millis = epoch_millis(now)
        candidate = f"{prefix}-{millis}"
        while self._exists(candidate):
            millis += 1
            candidate = f"{prefix}-{millis}"
        return candidate

    def next_return_bill_id(self, original_bill_id: str) -> str:
        """``R-<original>`` for the first return, ``R-<original>-<n>`` after that."""
        candidate = f"R-{original_bill_id}"
        n = 1
        while self._exists(candidate):
            n += 1
            candidate = f"R-{original_bill_id}-{n}"
        return candidate
