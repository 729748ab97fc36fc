# backend/tillbook/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # One rate for checkout, returns and receipt labels.
    TAX_RATE = Decimal(os.environ.get("TAX_RATE", "0.18"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Read/compare/write attempts per product before a stock write gives up
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))

    # Business profile handed to the print/export collaborator
    BUSINESS_NAME = os.environ.get("BUSINESS_NAME", "Tillbook Store")
    BUSINESS_ADDRESS = os.environ.get("BUSINESS_ADDRESS", "")
    BUSINESS_PHONE = os.environ.get("BUSINESS_PHONE", "")
    BUSINESS_GSTIN = os.environ.get("BUSINESS_GSTIN", "")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
    TAX_RATE = Decimal("0.18")
