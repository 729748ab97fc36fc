# Overview: Builds billing collaborators from the active Flask app's configuration.

from __future__ import annotations

from flask import current_app

from .cart_service import CartRegistry
from .catalog_service import CatalogSnapshot, CatalogStore
from .checkout_service import CheckoutOrchestrator
from .ledger_service import BillLedger
from .pricing_service import rate_to_bps
from .return_service import ReturnProcessor
from .stock_service import StockReconciler

CART_REGISTRY_KEY = "tillbook.carts"


def tax_rate_bps() -> int:
    return rate_to_bps(current_app.config["TAX_RATE"])


def cart_registry() -> CartRegistry:
    return current_app.extensions[CART_REGISTRY_KEY]


def catalog_snapshot() -> CatalogSnapshot:
    return CatalogSnapshot(CatalogStore()).refresh()


def stock_reconciler(store: CatalogStore | None = None) -> StockReconciler:
    return StockReconciler(
        store or CatalogStore(),
        attempts=current_app.config.get("STOCK_RETRY_ATTEMPTS", 3),
    )


def checkout_orchestrator() -> CheckoutOrchestrator:
    return CheckoutOrchestrator(BillLedger(), stock_reconciler(), tax_rate_bps())


def return_processor() -> ReturnProcessor:
    return ReturnProcessor(BillLedger(), stock_reconciler(), tax_rate_bps())


def business_profile() -> dict:
    cfg = current_app.config
    return {
        "businessName": cfg.get("BUSINESS_NAME", ""),
        "businessAddress": cfg.get("BUSINESS_ADDRESS", ""),
        "businessPhone": cfg.get("BUSINESS_PHONE", ""),
        "businessGSTIN": cfg.get("BUSINESS_GSTIN", ""),
    }
