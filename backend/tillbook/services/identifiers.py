# Overview: Typed product code used as the cart and catalog key.

"""
Product codes come from barcode scans or manual entry. They are matched
exactly (case-sensitive) after trimming surrounding whitespace.
"""

from __future__ import annotations

from .errors import InvalidProductCode

MAX_CODE_LENGTH = 64


class ProductCode(str):
    """A validated, scan-matchable product code."""

    def __new__(cls, value):
        if isinstance(value, ProductCode):
            return value
        if not isinstance(value, str):
            raise InvalidProductCode("product code must be a string")
        cleaned = value.strip()
        if not cleaned:
            raise InvalidProductCode("product code is required")
        if len(cleaned) > MAX_CODE_LENGTH:
            raise InvalidProductCode(
                f"product code longer than {MAX_CODE_LENGTH} characters",
                details={"code": cleaned[:MAX_CODE_LENGTH]},
            )
        if any(ch.isspace() or not ch.isprintable() for ch in cleaned):
            raise InvalidProductCode(
                "product code may not contain whitespace or control characters",
                details={"code": cleaned},
            )
        return super().__new__(cls, cleaned)

    def __repr__(self) -> str:
        return f"ProductCode({str.__repr__(self)})"
