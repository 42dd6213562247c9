"""Enumerations and sentinels shared across the Pacioli document chain.

Keeps the identifiers that the tax engine, the chain rules, the workbook
store, and the CLI all agree on in one place.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Placeholder stored in ``linkedDocuments`` while a child is being created.
PENDING_LINK = "pending"

# Document number sentinel meaning "assign the next sequence number".
AUTO_NUMBER = "auto"

DEFAULT_PAYMENT_METHOD = "Bank Transfer"


class DocumentType(str, Enum):
    """Enumerate the three document kinds that form a chain."""

    QUOTATION = "quotation"
    INVOICE = "invoice"
    RECEIPT = "receipt"


class DocumentStatus(str, Enum):
    """Enumerate the lifecycle statuses a document may carry."""

    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    HOLD = "hold"
    CANCELLED = "cancelled"
    REVISED = "revised"


class AmountType(str, Enum):
    """Enumerate how a partial payment value is interpreted."""

    PERCENT = "percent"
    FIXED = "fixed"


class LegacyTaxType(str, Enum):
    """Enumerate the single-tax modes used by legacy documents."""

    WITHHOLDING = "withholding"
    VAT = "vat"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    DOCUMENTS = "Documents"
    COUNTERS = "Counters"


# Canonical chain ordering; unknown types sort last.
TYPE_ORDER: dict[str, int] = {
    DocumentType.QUOTATION.value: 1,
    DocumentType.INVOICE.value: 2,
    DocumentType.RECEIPT.value: 3,
}
UNKNOWN_TYPE_ORDER = 99

DOCUMENT_PREFIXES: dict[DocumentType, str] = {
    DocumentType.QUOTATION: "QT",
    DocumentType.INVOICE: "INV",
    DocumentType.RECEIPT: "REC",
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PENDING_LINK",
    "AUTO_NUMBER",
    "DEFAULT_PAYMENT_METHOD",
    "DocumentType",
    "DocumentStatus",
    "AmountType",
    "LegacyTaxType",
    "SheetName",
    "TYPE_ORDER",
    "UNKNOWN_TYPE_ORDER",
    "DOCUMENT_PREFIXES",
]
