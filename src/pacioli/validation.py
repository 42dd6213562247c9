"""Field-level validation of documents before they are stored."""

from __future__ import annotations

import re
from decimal import Decimal
from typing import List

from . import log
from .constants import AUTO_NUMBER, DocumentType
from .errors import DocumentValidationError
from .models import Document, LineItem


DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ZERO = Decimal("0")


def _check_date(errors: List[str], value, label: str) -> None:
    if not value:
        errors.append(f"{label} is required")
    elif not DATE_FORMAT.match(str(value)):
        errors.append(f"{label} must be in YYYY-MM-DD format")


def _item_errors(index: int, item: LineItem) -> List[str]:
    errors = []
    if not (item.description or "").strip():
        errors.append(f"Item {index}: Description is required")
    if item.quantity is None or item.quantity <= ZERO:
        errors.append(f"Item {index}: Valid quantity is required")
    if not (item.unit or "").strip():
        errors.append(f"Item {index}: Unit is required")
    if item.unit_price is None or item.unit_price < ZERO:
        errors.append(f"Item {index}: Valid unit price is required")
    return errors


def validate_document(document: Document, *, allow_auto_number: bool = False) -> List[str]:
    """Collect every validation error for ``document``.

    Args:
        document (Document): Document to check.
        allow_auto_number (bool): Accept the ``"auto"`` number sentinel.
            Drafts may carry it; stored documents may not.

    Returns:
        list[str]: Human-readable problems, empty when the document is valid.
    """

    errors: List[str] = []

    number = (document.document_number or "").strip()
    if not number:
        errors.append("Document number is required")
    elif number == AUTO_NUMBER and not allow_auto_number:
        errors.append("Document number must be assigned before saving")

    _check_date(errors, document.issue_date, "Issue date")

    if not document.items:
        errors.append("At least one item is required")
    for index, item in enumerate(document.items, start=1):
        errors.extend(_item_errors(index, item))

    for label, rule in (("VAT", document.tax_config.vat), ("Withholding", document.tax_config.withholding)):
        if rule.enabled and not (ZERO <= rule.rate <= Decimal("1")):
            errors.append(f"{label} rate must be between 0 and 1")

    if document.type is DocumentType.QUOTATION:
        _check_date(errors, document.valid_until, "Valid until date")
    elif document.type is DocumentType.INVOICE:
        _check_date(errors, document.due_date, "Due date")
    elif document.type is DocumentType.RECEIPT:
        _check_date(errors, document.payment_date, "Payment date")
        if not (document.payment_method or "").strip():
            errors.append("Payment method is required")
        if document.paid_amount is None or document.paid_amount < ZERO:
            errors.append("Valid paid amount is required")

    return errors


def require_valid_document(document: Document, *, allow_auto_number: bool = False) -> None:
    """Raise when :func:`validate_document` reports any problem.

    Raises:
        DocumentValidationError: Carrying every collected message.
    """

    errors = validate_document(document, allow_auto_number=allow_auto_number)
    if errors:
        log.warning("Document %s failed validation: %s", document.document_number, "; ".join(errors))
        raise DocumentValidationError(errors)


__all__ = ["DATE_FORMAT", "validate_document", "require_valid_document"]
