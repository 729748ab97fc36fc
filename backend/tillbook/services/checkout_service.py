# Overview: Checkout orchestrator: validates a cart, persists the bill, then reconciles stock.

"""
Checkout protocol

1. Refresh the catalog snapshot and re-validate every cart line against it.
   Any shortfall aborts with InsufficientStock; nothing is written.
2. Build the bill from the cart lines and the pricing engine.
3. Persist the bill. PersistenceError here means nothing was written.
4. Apply one stock adjustment per line, keyed by the bill id. A failure here
   raises PartialCommit: the bill exists, stock is partly adjusted. The
   remediation is resume(bill_id), never a second checkout.
5. Refresh the snapshot and clear the cart.

The bill is written before stock moves: a bill with stale stock can be
reconciled from its own lines, a stock decrement with no bill cannot.
Once step 3 succeeds the sale is committed; there is no cancellation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..models import Bill, PAYMENT_METHODS
from ..time_utils import utcnow
from .cart_service import Cart
from .errors import (
    InsufficientStock,
    InvalidOperation,
    PartialCommit,
    PersistenceError,
    StockAdjustmentFailed,
    ValidationError,
)
from .identifiers import ProductCode
from .ledger_service import BillDraft, BillLedger, BillLineDraft
from .pricing_service import compute_totals
from .stock_service import ReconcileReport, StockAdjustment, StockReconciler, sale_adjustments

logger = logging.getLogger(__name__)

STEP_VALIDATED = "validated"
STEP_BILL_PERSISTED = "bill_persisted"
STEP_STOCK_APPLIED = "stock_applied"
STEP_CATALOG_REFRESHED = "catalog_refreshed"
CHECKOUT_STEPS = (STEP_VALIDATED, STEP_BILL_PERSISTED, STEP_STOCK_APPLIED, STEP_CATALOG_REFRESHED)


@dataclass
class CheckoutResult:
    bill: Bill
    report: ReconcileReport
    steps: dict[str, bool] = field(default_factory=lambda: dict.fromkeys(CHECKOUT_STEPS, False))

    def to_dict(self) -> dict:
        return {
            "bill": self.bill.to_dict(),
            "stock": self.report.to_dict(),
            "steps": dict(self.steps),
        }


def bill_adjustments(bill: Bill) -> list[StockAdjustment]:
    """Stock adjustments a persisted bill implies (sales decrement, returns restore)."""
    quantities: dict[ProductCode, int] = {}
    for line in bill.items:
        code = ProductCode(line.product_code)
        quantities[code] = quantities.get(code, 0) + line.quantity
    sign = 1 if bill.is_return else -1
    return [StockAdjustment(code, sign * qty) for code, qty in quantities.items() if qty > 0]


class CheckoutOrchestrator:
    def __init__(self, ledger: BillLedger, reconciler: StockReconciler, tax_rate_bps: int):
        self.ledger = ledger
        self.reconciler = reconciler
        self.tax_rate_bps = tax_rate_bps

    def validate_stock(self, cart: Cart) -> None:
        """Authoritative stock check against a freshly refreshed snapshot."""
        cart.catalog.refresh()

        shortfalls = []
        for line in cart.lines:
            product = cart.catalog.get(line.product_code)
            available = product.quantity if product else 0
            if line.quantity > available:
                shortfalls.append({
                    "product_code": line.product_code,
                    "product_name": line.product_name,
                    "requested_quantity": line.quantity,
                    "available": available,
                })

        if shortfalls:
            names = ", ".join(s["product_name"] for s in shortfalls)
            logger.warning("Checkout aborted, insufficient stock for: %s", names)
            raise InsufficientStock(
                f"Insufficient stock for: {names}",
                details={"items": shortfalls, "product_names": [s["product_name"] for s in shortfalls]},
            )

    def build_bill(
        self,
        cart: Cart,
        *,
        customer_name: str = "",
        customer_phone: str | None = None,
        payment_method: str = "cash",
    ) -> BillDraft:
        items = tuple(
            BillLineDraft(
                product_code=line.product_code,
                product_name=line.product_name,
                quantity=line.quantity,
                price_cents=line.unit_price_cents,
                total_price_cents=line.line_total_cents,
            )
            for line in cart.lines
        )
        totals = compute_totals((i.total_price_cents for i in items), self.tax_rate_bps)
        now = utcnow()
        return BillDraft(
            bill_id=self.ledger.next_bill_id(now=now),
            date=now,
            items=items,
            totals=totals,
            tax_rate_bps=self.tax_rate_bps,
            customer_name=(customer_name or "").strip(),
            customer_phone=(customer_phone or "").strip() or None,
            payment_method=payment_method,
        )

    def checkout(
        self,
        cart: Cart,
        *,
        customer_name: str = "",
        customer_phone: str | None = None,
        payment_method: str = "cash",
    ) -> CheckoutResult:
        if cart.is_empty():
            raise InvalidOperation("Cannot check out an empty cart")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
                details={"payment_method": payment_method},
            )

        self.validate_stock(cart)

        draft = self.build_bill(
            cart,
            customer_name=customer_name,
            customer_phone=customer_phone,
            payment_method=payment_method,
        )

        # Raises PersistenceError with nothing written
        bill = self.ledger.create(draft)

        try:
            report = self.reconciler.apply(
                sale_adjustments(draft.line_quantities()),
                reference=bill.bill_id,
            )
        except StockAdjustmentFailed as exc:
            cart.clear()
            self._refresh_quietly(cart)
            logger.error(
                "PARTIAL COMMIT: bill %s saved but stock only partly updated "
                "(applied=%s failed=%s). Reconcile stock for this bill; do not re-run checkout.",
                bill.bill_id, exc.details.get("applied"), exc.details.get("failed"),
            )
            raise PartialCommit(
                f"Bill {bill.bill_id} saved but stock was only partially updated",
                bill_id=bill.bill_id,
                details={**exc.details, "remediation": "reconcile_stock"},
            ) from exc

        result = CheckoutResult(bill=bill, report=report)
        result.steps[STEP_VALIDATED] = True
        result.steps[STEP_BILL_PERSISTED] = True
        result.steps[STEP_STOCK_APPLIED] = True
        result.steps[STEP_CATALOG_REFRESHED] = self._refresh_quietly(cart)

        cart.clear()
        logger.info("Checkout complete: bill %s total_cents=%d", bill.bill_id, bill.total_cents)
        return result

    def resume(self, bill_id: str) -> ReconcileReport:
        """
        Finish the stock side of a persisted bill.

        Only products without a movement for this bill are adjusted, so this
        is safe to run more than once.
        """
        bill = self.ledger.get(bill_id)
        adjustments = bill_adjustments(bill)
        pending = self.reconciler.pending(adjustments, reference=bill.bill_id)
        logger.info("Resuming stock for %s: %d of %d adjustments pending", bill.bill_id, len(pending), len(adjustments))
        return self.reconciler.apply(adjustments, reference=bill.bill_id)

    @staticmethod
    def _refresh_quietly(cart: Cart) -> bool:
        try:
            cart.catalog.refresh()
        except PersistenceError:
            logger.warning("Catalog refresh after checkout failed; snapshot is stale")
            return False
        return True
