# Overview: Stock reconciler: applies signed per-product quantity deltas to the catalog store.

"""
Stock Reconciler

Each adjustment is applied on its own: read the product, compute the new
count, compare-and-set it together with a StockMovement row, commit. There is
no cross-product atomicity. If adjustment N fails, adjustments 1..N-1 stay
applied and StockAdjustmentFailed reports which ones.

INVARIANTS:
- Persisted quantity never drops below zero: new = max(0, current + delta).
- The read/write pair for one product is the unit that can race. A version
  mismatch on write is retried from a fresh read (retry_stock_write), so
  concurrent terminals cannot lose each other's updates.
- (reference, product_code) is applied at most once. Re-running the
  adjustments of a bill only touches products without a movement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import StockMovement
from ..time_utils import utcnow
from .catalog_service import CatalogStore
from .concurrency import retry_stock_write
from .errors import BillingError, NotFound, StockAdjustmentFailed, ValidationError
from .identifiers import ProductCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    """Intent to move one product's stock; negative for sales, positive for returns."""
    product_code: ProductCode
    delta: int

    def __post_init__(self):
        object.__setattr__(self, "product_code", ProductCode(self.product_code))
        if isinstance(self.delta, bool) or not isinstance(self.delta, int) or self.delta == 0:
            raise ValidationError("delta must be a non-zero integer", details={"product_code": self.product_code})


@dataclass
class ReconcileReport:
    reference: str
    applied: list[ProductCode] = field(default_factory=list)
    skipped: list[ProductCode] = field(default_factory=list)
    movements: list[StockMovement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "applied": list(self.applied),
            "skipped": list(self.skipped),
            "movements": [m.to_dict() for m in self.movements],
        }


def sale_adjustments(quantities: dict) -> list[StockAdjustment]:
    return [StockAdjustment(code, -qty) for code, qty in quantities.items() if qty > 0]


def return_adjustments(quantities: dict) -> list[StockAdjustment]:
    return [StockAdjustment(code, qty) for code, qty in quantities.items() if qty > 0]


class StockReconciler:
    def __init__(self, store: CatalogStore, *, attempts: int = 3, backoff_base: float = 0.05):
        self.store = store
        self.attempts = attempts
        self.backoff_base = backoff_base

    def apply(self, adjustments: Iterable[StockAdjustment], *, reference: str) -> ReconcileReport:
        """
        Apply ``adjustments`` in order under the idempotency key ``reference``.

        Raises StockAdjustmentFailed on the first adjustment that cannot be
        applied; details carry ``applied``, ``skipped`` and ``failed`` codes.
        """
        report = ReconcileReport(reference=reference)
        for adjustment in adjustments:
            try:
                movement = retry_stock_write(
                    lambda: self._apply_one(adjustment, reference),
                    product_code=adjustment.product_code,
                    reference=reference,
                    attempts=self.attempts,
                    backoff_base=self.backoff_base,
                )
            except (BillingError, SQLAlchemyError, StaleDataError) as exc:
                db.session.rollback()
                logger.error(
                    "Stock adjustment %s %+d for %s failed: %s",
                    adjustment.product_code, adjustment.delta, reference, exc,
                )
                raise StockAdjustmentFailed(
                    f"Stock update failed for {adjustment.product_code}",
                    details={
                        "reference": reference,
                        "applied": list(report.applied),
                        "skipped": list(report.skipped),
                        "failed": adjustment.product_code,
                        "reason": str(exc),
                    },
                ) from exc

            if movement is None:
                report.skipped.append(adjustment.product_code)
            else:
                report.applied.append(adjustment.product_code)
                report.movements.append(movement)

        logger.info(
            "Stock reconciled for %s: applied=%d skipped=%d",
            reference, len(report.applied), len(report.skipped),
        )
        return report

    def _apply_one(self, adjustment: StockAdjustment, reference: str) -> StockMovement | None:
        product = self.store.get(adjustment.product_code)
        if product is None:
            raise NotFound(
                f"No product with code {adjustment.product_code}",
                details={"product_code": adjustment.product_code},
            )

        if self.has_movement(reference, adjustment.product_code):
            logger.info("Stock for %s already adjusted by %s, skipping", adjustment.product_code, reference)
            return None

        new_quantity = max(0, product.quantity + adjustment.delta)
        if product.quantity + adjustment.delta < 0:
            logger.warning(
                "Stock for %s clamped at zero (had %d, delta %d, reference %s)",
                product.product_code, product.quantity, adjustment.delta, reference,
            )

        self.store.set_quantity(product.product_id, new_quantity, expected_version=product.version)
        movement = StockMovement(
            reference=reference,
            product_id=product.product_id,
            product_code=product.product_code,
            delta=adjustment.delta,
            quantity_before=product.quantity,
            quantity_after=new_quantity,
            occurred_at=utcnow(),
        )
        db.session.add(movement)
        db.session.commit()
        return movement

    # =========================================================================
    # QUERIES
    # =========================================================================

    def has_movement(self, reference: str, code) -> bool:
        return (
            db.session.query(StockMovement.id)
            .filter_by(reference=reference, product_code=ProductCode(code))
            .first()
            is not None
        )

    def movements_for(self, reference: str) -> list[StockMovement]:
        return (
            db.session.query(StockMovement)
            .filter_by(reference=reference)
            .order_by(StockMovement.id.asc())
            .all()
        )

    def pending(self, adjustments: Iterable[StockAdjustment], *, reference: str) -> list[StockAdjustment]:
        """Adjustments of ``reference`` that have not been applied yet."""
        done = {m.product_code for m in self.movements_for(reference)}
        return [a for a in adjustments if a.product_code not in done]
