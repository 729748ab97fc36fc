# Overview: Flask API routes for building carts and checking them out.

"""
Cart API

Carts live in process memory and are addressed by the token returned from
POST /api/carts. Each mutation refreshes the cart's catalog snapshot first,
so stock checks use the latest committed quantities.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services.errors import BillingError, NotFound, PartialCommit, ValidationError
from ..services.wiring import cart_registry, catalog_snapshot, checkout_orchestrator, tax_rate_bps

carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _cart_payload(token: str, cart) -> dict:
    return {"cart_token": token, "cart": cart.to_dict()}


@carts_bp.post("")
def open_cart_route():
    snapshot = catalog_snapshot()
    token, cart = cart_registry().open(snapshot, tax_rate_bps())
    return jsonify(_cart_payload(token, cart)), 201


@carts_bp.get("/<token>")
def get_cart_route(token: str):
    cart = cart_registry().get(token)
    return jsonify(_cart_payload(token, cart)), 200


@carts_bp.delete("/<token>")
def discard_cart_route(token: str):
    cart_registry().get(token)
    cart_registry().discard(token)
    return jsonify({"discarded": token}), 200


@carts_bp.post("/<token>/items")
def add_item_route(token: str):
    """
    Add one unit of a product.

    Request body: {"code": "<scanned code>"} or {"product_id": 12}
    """
    cart = cart_registry().get(token)
    data = request.get_json(silent=True) or {}

    cart.catalog.refresh()
    if data.get("code") is not None:
        cart.add_by_code(data["code"])
    elif data.get("product_id") is not None:
        product = cart.catalog.get_by_id(data["product_id"])
        if product is None:
            raise NotFound("Product not found", details={"product_id": data["product_id"]})
        cart.add_by_product(product)
    else:
        raise ValidationError("code or product_id required")

    return jsonify(_cart_payload(token, cart)), 200


@carts_bp.patch("/<token>/items/<code>")
def adjust_item_route(token: str, code: str):
    """Request body: {"delta": 1} or {"delta": -1}"""
    cart = cart_registry().get(token)
    data = request.get_json(silent=True) or {}
    if "delta" not in data:
        raise ValidationError("delta required")

    cart.catalog.refresh()
    cart.adjust_quantity(code, data["delta"])
    return jsonify(_cart_payload(token, cart)), 200


@carts_bp.delete("/<token>/items/<code>")
def remove_item_route(token: str, code: str):
    cart = cart_registry().get(token)
    cart.remove_line(code)
    return jsonify(_cart_payload(token, cart)), 200


@carts_bp.post("/<token>/checkout")
def checkout_route(token: str):
    """
    Finalize the cart into a bill and decrement stock.

    Request body:
    {
        "customerName": "Asha",
        "customerPhone": "9876543210",  (optional)
        "paymentMethod": "cash" | "card" | "upi"
    }

    Returns:
        201: bill created, stock updated
        409: stock changed since items were added (nothing written)
        503: bill could not be saved (nothing written)
        500: partial_commit - bill saved, stock needs reconciliation
    """
    cart = cart_registry().get(token)
    data = request.get_json(silent=True) or {}

    try:
        result = checkout_orchestrator().checkout(
            cart,
            customer_name=data.get("customerName", ""),
            customer_phone=data.get("customerPhone"),
            payment_method=data.get("paymentMethod", "cash"),
        )
    except PartialCommit:
        # The sale is committed and the cart already emptied
        cart_registry().discard(token)
        raise
    except BillingError:
        raise
    except Exception:
        current_app.logger.exception("Failed to check out cart %s", token)
        return jsonify({"error": "Internal server error"}), 500

    cart_registry().discard(token)
    return jsonify(result.to_dict()), 201
