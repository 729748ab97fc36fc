# backend/tillbook/__init__.py
from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate
from .logging_setup import configure_logging


ERROR_STATUS = {
    "validation_error": 400,
    "invalid_product_code": 400,
    "not_found": 404,
    "out_of_stock": 409,
    "insufficient_stock": 409,
    "invalid_operation": 409,
    "no_items_selected": 409,
    "immutable_record": 409,
    "persistence_error": 503,
    "stock_adjustment_failed": 503,
    "partial_commit": 500,
}


def create_app(config_object=None, overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    if overrides:
        app.config.from_mapping(overrides)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.cart_service import CartRegistry
    from .services.wiring import CART_REGISTRY_KEY
    app.extensions[CART_REGISTRY_KEY] = CartRegistry()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.carts import carts_bp
    from .routes.bills import bills_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(carts_bp)
    app.register_blueprint(bills_bp)

    from .services.errors import BillingError

    @app.errorhandler(BillingError)
    def handle_billing_error(exc: BillingError):
        status = ERROR_STATUS.get(exc.code, 400)
        if status >= 500:
            app.logger.error("%s: %s %s", exc.code, exc.message, exc.details)
        return jsonify(exc.to_dict()), status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
