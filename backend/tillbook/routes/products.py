# Overview: Flask API routes for catalog lookups and catalog entry.

from flask import Blueprint, jsonify, request

from ..extensions import db
from ..models import Product
from ..services import catalog_service
from ..services.errors import NotFound
from ..services.identifiers import ProductCode

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    List the catalog.

    Query params:
        in_stock: "1" to hide products with zero quantity
    """
    q = db.session.query(Product)
    if request.args.get("in_stock") == "1":
        q = q.filter(Product.quantity > 0)
    products = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.post("")
def create_product_route():
    """
    Create a catalog entry. Prices are integer cents.

    Request body:
    {
        "product_code": "8901234567890",
        "name": "Notebook",
        "selling_price_cents": 1000,
        "cost_price_cents": 700,       (optional)
        "mrp_cents": 1200,             (optional)
        "quantity": 25,                (optional, default 0)
        "category_name": "Stationery", (optional)
        "subcategories": ["Paper"],    (optional)
        "dealer_name": "Acme Traders"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    product = catalog_service.create_product(data)
    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/<code>")
def get_product_route(code: str):
    code = ProductCode(code)
    product = db.session.query(Product).filter_by(product_code=code).first()
    if product is None:
        raise NotFound(f"No product with code {code}", details={"product_code": code})
    return jsonify({"product": product.to_dict()}), 200
