import pytest

from conftest import TAX_BPS, FailingLedger, FailingWriteStore, stock_of
from tillbook.models import Bill
from tillbook.services.errors import (
    InvalidOperation,
    NoItemsSelected,
    NotFound,
    PartialCommit,
    StockAdjustmentFailed,
)
from tillbook.services.return_service import ReturnProcessor, ReturnSelection, build_return
from tillbook.services.stock_service import StockReconciler


@pytest.fixture
def sale(orchestrator, cart):
    """A×2 at 10.00 and B×1 at 5.00; leaves A=3, B=2 in stock."""
    for code in ("A-001", "A-001", "B-001"):
        cart.add_by_code(code)
    return orchestrator.checkout(cart, customer_name="Asha", payment_method="upi").bill


class TestSubmit:
    def test_single_unit_return(self, returns, sale, ledger):
        result = returns.submit(sale.bill_id, {"A-001": 1})

        bill = result.bill
        assert bill.bill_id == f"R-{sale.bill_id}"
        assert bill.is_return is True
        assert bill.original_bill_id == sale.bill_id
        data = bill.to_dict()
        assert (data["subtotal"], data["tax"], data["total"]) == (-10.0, -1.8, -11.8)
        assert data["items"] == [{
            "productCode": "A-001",
            "productName": "Product A",
            "quantity": 1,
            "price": 10.0,
            "totalPrice": -10.0,
            "price_cents": 1000,
            "total_price_cents": -1000,
        }]
        # Carried over from the sale
        assert data["customerName"] == "Asha"
        assert data["paymentMethod"] == "upi"

        assert stock_of("A-001") == 4
        assert stock_of("B-001") == 2
        assert result.report.applied == ["A-001"]

        # Original bill untouched
        original = ledger.get(sale.bill_id)
        assert original.total_cents == 2950
        assert [i.quantity for i in original.items] == [2, 1]

    def test_full_return_mirrors_sale(self, returns, sale):
        bill = returns.submit(sale.bill_id, {"A-001": 2, "B-001": 1}).bill
        assert (bill.subtotal_cents, bill.tax_cents, bill.total_cents) == (-2500, -450, -2950)
        assert stock_of("A-001") == 5
        assert stock_of("B-001") == 3

    def test_zero_quantities_are_dropped(self, returns, sale):
        bill = returns.submit(sale.bill_id, {"A-001": 0, "B-001": 1}).bill
        assert [i.product_code for i in bill.items] == ["B-001"]

    def test_return_of_return_is_refused(self, returns, sale):
        refund = returns.submit(sale.bill_id, {"A-001": 1}).bill

        with pytest.raises(InvalidOperation):
            returns.submit(refund.bill_id, {"A-001": 1})
        with pytest.raises(InvalidOperation):
            returns.selection(refund.bill_id)
        assert stock_of("A-001") == 4

    def test_nothing_selected(self, returns, sale, db_session):
        with pytest.raises(NoItemsSelected):
            returns.submit(sale.bill_id, {"A-001": 0})
        with pytest.raises(NoItemsSelected):
            returns.submit(sale.bill_id, {})
        assert db_session.query(Bill).filter_by(is_return=True).count() == 0

    def test_more_than_sold(self, returns, sale):
        with pytest.raises(InvalidOperation) as exc_info:
            returns.submit(sale.bill_id, {"A-001": 3})
        assert exc_info.value.details["returnable"] == 2
        assert stock_of("A-001") == 3

    @pytest.mark.parametrize("qty", [-1, 1.5, "1", True])
    def test_bad_quantity(self, returns, sale, qty):
        with pytest.raises(InvalidOperation):
            returns.submit(sale.bill_id, {"A-001": qty})

    def test_product_not_on_bill(self, returns, sale, make_product):
        make_product("C-001", quantity=4)
        with pytest.raises(InvalidOperation):
            returns.submit(sale.bill_id, {"C-001": 1})
        assert stock_of("C-001") == 4

    def test_unknown_bill(self, returns, db_session):
        with pytest.raises(NotFound):
            returns.submit("BILL-404", {"A-001": 1})

    def test_codes_that_normalize_alike_share_the_cap(self, returns, sale, ledger):
        with pytest.raises(InvalidOperation) as exc_info:
            returns.submit(sale.bill_id, {"A-001": 2, " A-001": 2})

        assert exc_info.value.details["requested_quantity"] == 4
        assert exc_info.value.details["returnable"] == 2
        assert stock_of("A-001") == 3
        assert ledger.returns_for(sale.bill_id) == []

    def test_codes_that_normalize_alike_merge_into_one_line(self, returns, sale):
        bill = returns.submit(sale.bill_id, {"A-001": 1, " A-001 ": 1}).bill

        assert [(i.product_code, i.quantity) for i in bill.items] == [("A-001", 2)]
        assert bill.subtotal_cents == -2000
        assert stock_of("A-001") == 5

    def test_tax_refunds_never_exceed_tax_charged(self, returns, orchestrator, cart, make_product):
        make_product("C-003", selling_price_cents=3, quantity=3)
        cart.catalog.refresh()
        for _ in range(3):
            cart.add_by_code("C-003")
        sale = orchestrator.checkout(cart, customer_name="Asha").bill
        # 9 cents at 18% rounds up to 2 cents
        assert sale.tax_cents == 2

        refunds = [returns.submit(sale.bill_id, {"C-003": 1}).bill for _ in range(3)]

        assert [r.tax_cents for r in refunds] == [-1, -1, 0]
        assert sum(r.tax_cents for r in refunds) == -sale.tax_cents
        assert all(r.total_cents == r.subtotal_cents + r.tax_cents for r in refunds)
        assert stock_of("C-003") == 3


class TestPartialReturns:
    def test_later_returns_get_numbered_ids(self, returns, sale):
        first = returns.submit(sale.bill_id, {"A-001": 1}).bill
        second = returns.submit(sale.bill_id, {"B-001": 1}).bill
        third = returns.submit(sale.bill_id, {"A-001": 1}).bill

        assert first.bill_id == f"R-{sale.bill_id}"
        assert second.bill_id == f"R-{sale.bill_id}-2"
        assert third.bill_id == f"R-{sale.bill_id}-3"
        assert stock_of("A-001") == 5
        assert stock_of("B-001") == 3

    def test_cap_is_cumulative(self, returns, sale):
        returns.submit(sale.bill_id, {"A-001": 1})

        with pytest.raises(InvalidOperation) as exc_info:
            returns.submit(sale.bill_id, {"A-001": 2})
        assert exc_info.value.details["already_returned"] == 1
        assert exc_info.value.details["returnable"] == 1

        returns.submit(sale.bill_id, {"A-001": 1})
        with pytest.raises(InvalidOperation):
            returns.submit(sale.bill_id, {"A-001": 1})
        assert stock_of("A-001") == 5


class TestFailures:
    def test_stock_failure_writes_no_bill(self, ledger, sale, db_session):
        failing = ReturnProcessor(ledger, StockReconciler(FailingWriteStore(["B-001"]), backoff_base=0), TAX_BPS)

        with pytest.raises(StockAdjustmentFailed) as exc_info:
            failing.submit(sale.bill_id, {"A-001": 1, "B-001": 1})

        assert exc_info.value.details["applied"] == ["A-001"]
        assert ledger.find(f"R-{sale.bill_id}") is None
        assert stock_of("A-001") == 4
        assert stock_of("B-001") == 2

    def test_resubmit_after_stock_failure(self, ledger, returns, sale):
        failing = ReturnProcessor(ledger, StockReconciler(FailingWriteStore(["B-001"]), backoff_base=0), TAX_BPS)
        with pytest.raises(StockAdjustmentFailed):
            failing.submit(sale.bill_id, {"A-001": 1, "B-001": 1})

        result = returns.submit(sale.bill_id, {"A-001": 1, "B-001": 1})

        assert result.bill.bill_id == f"R-{sale.bill_id}"
        assert result.report.skipped == ["A-001"]
        assert result.report.applied == ["B-001"]
        # A-001 restored once, not twice
        assert stock_of("A-001") == 4
        assert stock_of("B-001") == 3

    def test_resubmit_with_other_quantities_is_refused(self, ledger, returns, sale):
        failing = ReturnProcessor(ledger, StockReconciler(FailingWriteStore(["B-001"]), backoff_base=0), TAX_BPS)
        with pytest.raises(StockAdjustmentFailed):
            failing.submit(sale.bill_id, {"A-001": 1, "B-001": 1})

        with pytest.raises(InvalidOperation) as exc_info:
            returns.submit(sale.bill_id, {"A-001": 2, "B-001": 1})
        assert exc_info.value.details["restored"] == 1
        assert stock_of("A-001") == 4

    def test_bill_not_saved_is_partial_commit(self, reconciler, returns, sale, ledger):
        failing = ReturnProcessor(FailingLedger(returns_only=True), reconciler, TAX_BPS)

        with pytest.raises(PartialCommit) as exc_info:
            failing.submit(sale.bill_id, {"A-001": 1})

        assert exc_info.value.bill_id == f"R-{sale.bill_id}"
        assert exc_info.value.details["remediation"] == "resubmit_return"
        assert stock_of("A-001") == 4
        assert ledger.find(f"R-{sale.bill_id}") is None

        # Resubmitting writes the bill without restoring stock again
        result = returns.submit(sale.bill_id, {"A-001": 1})
        assert result.bill.bill_id == f"R-{sale.bill_id}"
        assert result.report.skipped == ["A-001"]
        assert stock_of("A-001") == 4


class TestSelection:
    def test_clamps_to_returnable(self, returns, sale):
        returns.submit(sale.bill_id, {"A-001": 1})
        selection = returns.selection(sale.bill_id)

        assert selection.returnable("A-001") == 1
        assert selection.set_quantity("A-001", 5) == 1
        assert selection.set_quantity("B-001", -3) == 0
        assert selection.quantities == {"A-001": 1, "B-001": 0}

        items = {i["productCode"]: i for i in selection.to_dict()["items"]}
        assert items["A-001"]["alreadyReturned"] == 1
        assert items["A-001"]["selected"] == 1
        assert items["B-001"]["returnable"] == 1

    def test_unknown_code(self, returns, sale):
        selection = returns.selection(sale.bill_id)
        assert selection.returnable("Z-404") == 0
        with pytest.raises(InvalidOperation):
            selection.set_quantity("Z-404", 1)

    def test_refuses_return_bill(self, returns, sale):
        refund = returns.submit(sale.bill_id, {"A-001": 1}).bill
        with pytest.raises(InvalidOperation):
            ReturnSelection(refund)


def test_return_amounts_are_never_positive(sale):
    draft = build_return(sale, {"A-001": 1, "B-001": 1}, bill_id="R-X", tax_rate_bps=TAX_BPS)

    assert draft.totals.subtotal_cents == -1500
    assert draft.totals.tax_cents == -270
    assert draft.totals.total_cents == -1770
    assert all(i.total_price_cents < 0 and i.quantity > 0 for i in draft.items)
    assert draft.original_bill_id == sale.bill_id


def test_return_tax_capped_by_earlier_refunds(sale):
    # The sale charged 450 cents of tax; 400 of it were already refunded
    draft = build_return(
        sale, {"A-001": 1}, bill_id="R-X", tax_rate_bps=TAX_BPS, refunded_tax_cents=400,
    )

    assert draft.totals.subtotal_cents == -1000
    assert draft.totals.tax_cents == -50
    assert draft.totals.total_cents == -1050
