# Overview: Flask API routes for bill history, receipts, returns and stock reconciliation.

from flask import Blueprint, current_app, jsonify, request

from ..services.errors import BillingError, ValidationError
from ..services.ledger_service import BillLedger
from ..services.pricing_service import tax_label
from ..services.wiring import business_profile, checkout_orchestrator, return_processor, stock_reconciler

bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


@bills_bp.get("")
def list_bills_route():
    """
    Bill history, newest first.

    Query params:
        type: "sale" or "return" (optional)
        limit: max rows (optional)
    """
    bill_type = request.args.get("type")
    if bill_type not in (None, "sale", "return"):
        raise ValidationError("type must be 'sale' or 'return'")
    is_return = None if bill_type is None else bill_type == "return"

    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        raise ValidationError("limit must be positive")

    bills = BillLedger().list_all(limit=limit, is_return=is_return)
    return jsonify({"items": [b.to_dict() for b in bills], "count": len(bills)}), 200


@bills_bp.get("/<bill_id>")
def get_bill_route(bill_id: str):
    ledger = BillLedger()
    bill = ledger.get(bill_id)
    movements = stock_reconciler().movements_for(bill.bill_id)
    return jsonify({
        "bill": bill.to_dict(),
        "returns": [r.bill_id for r in ledger.returns_for(bill.bill_id)] if not bill.is_return else [],
        "stock_movements": [m.to_dict() for m in movements],
    }), 200


@bills_bp.get("/<bill_id>/receipt")
def receipt_route(bill_id: str):
    """Read-only payload for the print/export collaborator."""
    bill = BillLedger().get(bill_id)
    return jsonify({
        "bill": bill.to_dict(),
        "business": business_profile(),
        "taxLabel": tax_label(bill.tax_rate_bps),
    }), 200


@bills_bp.get("/<bill_id>/returns")
def return_selection_route(bill_id: str):
    """Returnable quantities per product for the return dialog."""
    selection = return_processor().selection(bill_id)
    return jsonify(selection.to_dict()), 200


@bills_bp.post("/<bill_id>/returns")
def submit_return_route(bill_id: str):
    """
    Return items from a bill.

    Request body:
    {
        "items": {"<productCode>": 1, "<otherCode>": 0}
    }

    Returns:
        201: return bill created, stock restored
        409: invalid selection (return of a return, nothing selected, too many units)
        503: stock could not be restored (no return bill written)
        500: partial_commit - stock restored, return bill not saved
    """
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, dict):
        raise ValidationError("items must be an object of productCode -> quantity")

    try:
        result = return_processor().submit(bill_id, items)
    except BillingError:
        raise
    except Exception:
        current_app.logger.exception("Failed to process return for %s", bill_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 201


@bills_bp.post("/<bill_id>/reconcile")
def reconcile_route(bill_id: str):
    """
    Apply any stock adjustments of a bill that never landed (partial commit).

    Safe to call repeatedly: products already adjusted for this bill are skipped.
    """
    try:
        report = checkout_orchestrator().resume(bill_id)
    except BillingError:
        raise
    except Exception:
        current_app.logger.exception("Failed to reconcile stock for %s", bill_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"stock": report.to_dict()}), 200
