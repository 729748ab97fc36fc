# Overview: Flask API routes for system health; reports database reachability.

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Bill, Product
from ..services.pricing_service import tax_label
from ..services.wiring import cart_registry, tax_rate_bps

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Count products and bills; report latency."""
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        bill_count = db.session.query(Bill).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"products": product_count, "bills": bill_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    bps = tax_rate_bps()
    return jsonify({
        "status": database["status"],
        "database": database,
        "open_carts": len(cart_registry()),
        "tax": {"rate": bps / 10000, "label": tax_label(bps)},
    }), status_code
