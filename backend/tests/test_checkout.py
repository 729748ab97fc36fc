import pytest

from conftest import TAX_BPS, FailingLedger, FailingWriteStore, stock_of
from tillbook.models import Bill
from tillbook.services.checkout_service import CHECKOUT_STEPS, CheckoutOrchestrator, bill_adjustments
from tillbook.services.errors import (
    InsufficientStock,
    InvalidOperation,
    NotFound,
    PartialCommit,
    PersistenceError,
    ValidationError,
)
from tillbook.services.stock_service import StockReconciler


def fill(cart, *codes):
    for code in codes:
        cart.add_by_code(code)
    return cart


class TestCheckout:
    def test_sale(self, orchestrator, cart, ledger):
        fill(cart, "A-001", "A-001", "B-001")

        result = orchestrator.checkout(cart, customer_name=" Asha ", customer_phone="9876543210")

        bill = result.bill
        assert bill.bill_id.startswith("BILL-")
        assert (bill.subtotal_cents, bill.tax_cents, bill.total_cents) == (2500, 450, 2950)
        data = bill.to_dict()
        assert (data["subtotal"], data["tax"], data["total"]) == (25.0, 4.5, 29.5)
        assert data["customerName"] == "Asha"
        assert [(i["productCode"], i["quantity"], i["totalPrice"]) for i in data["items"]] == [
            ("A-001", 2, 20.0),
            ("B-001", 1, 5.0),
        ]

        assert stock_of("A-001") == 3
        assert stock_of("B-001") == 2
        assert result.report.applied == ["A-001", "B-001"]
        assert result.steps == dict.fromkeys(CHECKOUT_STEPS, True)
        assert cart.is_empty()
        assert cart.catalog.get("A-001").quantity == 3
        assert ledger.get(bill.bill_id).is_return is False

    def test_empty_cart(self, orchestrator, cart, db_session):
        with pytest.raises(InvalidOperation):
            orchestrator.checkout(cart)
        assert db_session.query(Bill).count() == 0

    def test_unknown_payment_method(self, orchestrator, cart, db_session):
        fill(cart, "A-001")
        with pytest.raises(ValidationError):
            orchestrator.checkout(cart, payment_method="cheque")
        assert db_session.query(Bill).count() == 0
        assert len(cart) == 1

    @pytest.mark.parametrize("method", ["cash", "card", "upi"])
    def test_payment_methods(self, orchestrator, cart, method):
        fill(cart, "B-001")
        assert orchestrator.checkout(cart, payment_method=method).bill.payment_method == method

    def test_price_on_bill_survives_catalog_edit(self, orchestrator, cart, product_a, db_session, ledger):
        fill(cart, "A-001")
        bill_id = orchestrator.checkout(cart).bill.bill_id

        product_a.selling_price_cents = 9900
        db_session.commit()

        line = ledger.get(bill_id).items[0]
        assert line.price_cents == 1000
        assert line.total_price_cents == 1000


class TestRevalidation:
    def test_stock_sold_elsewhere_aborts(self, orchestrator, cart, store, db_session):
        fill(cart, "A-001", "A-001", "B-001")
        view = store.get("A-001")
        store.set_quantity(view.product_id, 1, expected_version=view.version)
        db_session.commit()

        with pytest.raises(InsufficientStock) as exc_info:
            orchestrator.checkout(cart)

        assert exc_info.value.details["product_names"] == ["Product A"]
        assert exc_info.value.details["items"][0]["available"] == 1
        assert "Product A" in exc_info.value.message
        assert db_session.query(Bill).count() == 0
        assert stock_of("A-001") == 1
        assert stock_of("B-001") == 3
        # Cart is left for the cashier to fix
        assert cart.line("A-001").quantity == 2

    def test_product_deleted_elsewhere_aborts(self, orchestrator, cart, product_b, db_session):
        fill(cart, "B-001")
        db_session.delete(product_b)
        db_session.commit()

        with pytest.raises(InsufficientStock) as exc_info:
            orchestrator.checkout(cart)
        assert exc_info.value.details["items"][0]["available"] == 0


class TestFailures:
    def test_bill_not_saved_leaves_stock_alone(self, cart, reconciler, db_session):
        orchestrator = CheckoutOrchestrator(FailingLedger(), reconciler, TAX_BPS)
        fill(cart, "A-001", "B-001")

        with pytest.raises(PersistenceError):
            orchestrator.checkout(cart)

        assert stock_of("A-001") == 5
        assert stock_of("B-001") == 3
        assert len(cart) == 2

    def test_stock_failure_is_partial_commit(self, cart, ledger, db_session):
        failing = StockReconciler(FailingWriteStore(["B-001"]), backoff_base=0)
        orchestrator = CheckoutOrchestrator(ledger, failing, TAX_BPS)
        fill(cart, "A-001", "A-001", "B-001")

        with pytest.raises(PartialCommit) as exc_info:
            orchestrator.checkout(cart)

        err = exc_info.value
        assert ledger.get(err.bill_id).total_cents == 2950
        assert err.details["applied"] == ["A-001"]
        assert err.details["failed"] == "B-001"
        assert err.details["remediation"] == "reconcile_stock"
        assert stock_of("A-001") == 3
        assert stock_of("B-001") == 3
        assert cart.is_empty()

    def test_resume_finishes_stock(self, cart, ledger, orchestrator, db_session):
        failing = StockReconciler(FailingWriteStore(["B-001"]), backoff_base=0)
        fill(cart, "A-001", "A-001", "B-001")
        with pytest.raises(PartialCommit) as exc_info:
            CheckoutOrchestrator(ledger, failing, TAX_BPS).checkout(cart)
        bill_id = exc_info.value.bill_id

        report = orchestrator.resume(bill_id)

        assert report.applied == ["B-001"]
        assert report.skipped == ["A-001"]
        assert stock_of("A-001") == 3
        assert stock_of("B-001") == 2

        again = orchestrator.resume(bill_id)
        assert again.applied == []
        assert stock_of("B-001") == 2
        assert db_session.query(Bill).count() == 1

    def test_resume_unknown_bill(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.resume("BILL-404")


def test_bill_adjustments_follow_bill_kind(orchestrator, cart, returns):
    fill(cart, "A-001", "A-001", "B-001")
    sale = orchestrator.checkout(cart).bill
    assert [(a.product_code, a.delta) for a in bill_adjustments(sale)] == [("A-001", -2), ("B-001", -1)]

    refund = returns.submit(sale.bill_id, {"A-001": 1}).bill
    assert [(a.product_code, a.delta) for a in bill_adjustments(refund)] == [("A-001", 1)]
