"""
Return Processing Service

A return never edits the original bill. It produces a new bill with
is_return=True, non-positive amounts and original_bill_id set, and restores
stock for the returned units.

DESIGN PRINCIPLES:
- Returns of returns are refused.
- A product can be returned up to the quantity sold on the original bill,
  less whatever earlier returns of that bill already took back.
- Stock is restored BEFORE the return bill is written. If restoration fails
  no bill is written; retrying the same return skips products already
  restored (the return bill id is the idempotency key).
- Return bill ids: "R-<original>" for the first return of a bill,
  "R-<original>-<n>" for later partial returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import Bill
from ..time_utils import utcnow
from .errors import (
    InvalidOperation,
    NoItemsSelected,
    PartialCommit,
    PersistenceError,
    StockAdjustmentFailed,
)
from .identifiers import ProductCode
from .ledger_service import BillDraft, BillLedger, BillLineDraft
from .pricing_service import Totals, compute_return_totals
from .stock_service import ReconcileReport, StockReconciler, return_adjustments

logger = logging.getLogger(__name__)


def _sold_lines(bill: Bill) -> dict[ProductCode, dict]:
    """Per product: name, unit price and quantity sold on ``bill``."""
    sold: dict[ProductCode, dict] = {}
    for line in bill.items:
        code = ProductCode(line.product_code)
        entry = sold.setdefault(code, {
            "product_name": line.product_name,
            "price_cents": line.price_cents,
            "quantity": 0,
        })
        entry["quantity"] += line.quantity
    return sold


# =============================================================================
# EDIT SITE
# =============================================================================

class ReturnSelection:
    """
    Per-product return quantities being edited for one original bill.

    set_quantity clamps into [0, returnable]; it never lets a request exceed
    what is still returnable.
    """

    def __init__(self, original_bill: Bill, already_returned: dict | None = None):
        if original_bill.is_return:
            raise InvalidOperation("Cannot return a return bill", details={"bill_id": original_bill.bill_id})
        self.original_bill = original_bill
        self._sold = _sold_lines(original_bill)
        self._already = {ProductCode(k): v for k, v in (already_returned or {}).items()}
        self._quantities: dict[ProductCode, int] = dict.fromkeys(self._sold, 0)

    def returnable(self, code) -> int:
        code = ProductCode(code)
        sold = self._sold.get(code)
        if sold is None:
            return 0
        return max(0, sold["quantity"] - self._already.get(code, 0))

    def set_quantity(self, code, quantity: int) -> int:
        code = ProductCode(code)
        if code not in self._sold:
            raise InvalidOperation(
                f"{code} is not on bill {self.original_bill.bill_id}",
                details={"product_code": code},
            )
        clamped = min(max(0, int(quantity)), self.returnable(code))
        self._quantities[code] = clamped
        return clamped

    @property
    def quantities(self) -> dict[ProductCode, int]:
        return dict(self._quantities)

    def to_dict(self) -> dict:
        return {
            "billId": self.original_bill.bill_id,
            "items": [
                {
                    "productCode": code,
                    "productName": sold["product_name"],
                    "sold": sold["quantity"],
                    "alreadyReturned": self._already.get(code, 0),
                    "returnable": self.returnable(code),
                    "selected": self._quantities[code],
                }
                for code, sold in self._sold.items()
            ],
        }


# =============================================================================
# RETURN CONSTRUCTION
# =============================================================================

def build_return(
    original_bill: Bill,
    requested: dict,
    *,
    bill_id: str,
    tax_rate_bps: int,
    already_returned: dict | None = None,
    refunded_tax_cents: int = 0,
) -> BillDraft:
    """
    Build (but do not persist) the return bill for ``requested`` units.

    Raises:
        InvalidOperation: original is a return, unknown product, or a
            quantity outside [0, returnable]
        NoItemsSelected: every requested quantity is 0

    ``refunded_tax_cents`` is the tax already refunded by earlier returns of
    the bill; this return refunds at most what the sale charged minus that.
    """
    if original_bill.is_return:
        raise InvalidOperation("Cannot return a return bill", details={"bill_id": original_bill.bill_id})

    sold = _sold_lines(original_bill)
    already = {ProductCode(k): v for k, v in (already_returned or {}).items()}

    quantities: dict[ProductCode, int] = {}
    for raw_code, qty in (requested or {}).items():
        code = ProductCode(raw_code)
        if code not in sold:
            raise InvalidOperation(
                f"{code} is not on bill {original_bill.bill_id}",
                details={"product_code": code},
            )
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise InvalidOperation("Return quantities must be integers", details={"product_code": code})
        returnable = max(0, sold[code]["quantity"] - already.get(code, 0))
        # Keys that normalize to the same code share one cap
        total = quantities.get(code, 0) + qty
        if qty < 0 or total > returnable:
            raise InvalidOperation(
                f"Cannot return {total} of {code}. Returnable: {returnable}",
                details={
                    "product_code": code,
                    "requested_quantity": total,
                    "sold": sold[code]["quantity"],
                    "already_returned": already.get(code, 0),
                    "returnable": returnable,
                },
            )
        quantities[code] = total

    # Keep the original bill's line order
    items = tuple(
        BillLineDraft(
            product_code=code,
            product_name=entry["product_name"],
            quantity=quantities[code],
            price_cents=entry["price_cents"],
            total_price_cents=-(entry["price_cents"] * quantities[code]),
        )
        for code, entry in sold.items()
        if quantities.get(code, 0) > 0
    )
    if not items:
        raise NoItemsSelected("Please select items to return", details={"bill_id": original_bill.bill_id})

    totals = compute_return_totals((i.total_price_cents for i in items), tax_rate_bps)
    # Per-return rounding must not refund more tax than the sale charged
    tax_left = max(0, original_bill.tax_cents - refunded_tax_cents)
    if -totals.tax_cents > tax_left:
        totals = Totals(
            subtotal_cents=totals.subtotal_cents,
            tax_cents=-tax_left,
            total_cents=totals.subtotal_cents - tax_left,
        )

    return BillDraft(
        bill_id=bill_id,
        date=utcnow(),
        items=items,
        totals=totals,
        tax_rate_bps=tax_rate_bps,
        customer_name=original_bill.customer_name,
        customer_phone=original_bill.customer_phone,
        payment_method=original_bill.payment_method,
        is_return=True,
        original_bill_id=original_bill.bill_id,
    )


@dataclass
class ReturnResult:
    bill: Bill
    report: ReconcileReport

    def to_dict(self) -> dict:
        return {"bill": self.bill.to_dict(), "stock": self.report.to_dict()}


class ReturnProcessor:
    def __init__(self, ledger: BillLedger, reconciler: StockReconciler, tax_rate_bps: int):
        self.ledger = ledger
        self.reconciler = reconciler
        self.tax_rate_bps = tax_rate_bps

    def selection(self, original_bill_id: str) -> ReturnSelection:
        original = self.ledger.get(original_bill_id)
        if original.is_return:
            raise InvalidOperation("Cannot return a return bill", details={"bill_id": original.bill_id})
        return ReturnSelection(original, self.ledger.returned_quantities(original.bill_id))

    def submit(self, original_bill_id: str, requested: dict) -> ReturnResult:
        """
        Restore stock for ``requested`` units, then write the return bill.

        Raises:
            NotFound: original bill does not exist
            InvalidOperation / NoItemsSelected: see build_return
            StockAdjustmentFailed: stock restore failed, no bill written
            PartialCommit: stock restored but the return bill was not saved
        """
        original = self.ledger.get(original_bill_id)
        if original.is_return:
            raise InvalidOperation("Cannot return a return bill", details={"bill_id": original.bill_id})

        bill_id = self.ledger.next_return_bill_id(original.bill_id)
        draft = build_return(
            original,
            requested,
            bill_id=bill_id,
            tax_rate_bps=self.tax_rate_bps,
            already_returned=self.ledger.returned_quantities(original.bill_id),
            refunded_tax_cents=self.ledger.refunded_tax_cents(original.bill_id),
        )
        quantities = draft.line_quantities()
        self._check_previous_attempt(bill_id, quantities)

        try:
            report = self.reconciler.apply(return_adjustments(quantities), reference=bill_id)
        except StockAdjustmentFailed:
            logger.warning("Return %s aborted: stock restore failed, no bill written", bill_id)
            raise

        try:
            bill = self.ledger.create(draft)
        except PersistenceError as exc:
            logger.error(
                "PARTIAL COMMIT: stock restored for return %s but the bill was not saved. "
                "Resubmit the same return quantities to write it.",
                bill_id,
            )
            raise PartialCommit(
                f"Stock restored but return bill {bill_id} was not saved",
                bill_id=bill_id,
                details={"applied": list(report.applied), "remediation": "resubmit_return"},
            ) from exc

        logger.info("Return %s against %s complete, total_cents=%d", bill.bill_id, original.bill_id, bill.total_cents)
        return ReturnResult(bill=bill, report=report)

    def _check_previous_attempt(self, bill_id: str, quantities: dict[ProductCode, int]) -> None:
        """An earlier failed attempt of this return must have moved the same units."""
        for movement in self.reconciler.movements_for(bill_id):
            code = ProductCode(movement.product_code)
            if quantities.get(code) != movement.delta:
                raise InvalidOperation(
                    f"An earlier attempt of return {bill_id} restored {movement.delta} of {code}; "
                    "resubmit the same quantities",
                    details={
                        "bill_id": bill_id,
                        "product_code": code,
                        "restored": movement.delta,
                        "requested_quantity": quantities.get(code, 0),
                    },
                )
