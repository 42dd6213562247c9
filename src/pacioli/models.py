"""Document entity model for the quotation → invoice → receipt chain.

Documents are immutable dataclasses; every rule in the engine returns a
new instance via :func:`dataclasses.replace` instead of mutating the pool
it was given. The persisted representation is a JSON object with the
camelCase keys used by earlier releases, so :func:`document_from_dict` is
also the single place where legacy records are migrated (single-tax
fields, missing ``type``, revisions detected only by their number).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from .constants import AmountType, DocumentStatus, DocumentType
from .tax import TaxBreakdown, TaxConfig, TaxRule, legacy_tax_config


REVISION_SUFFIX = re.compile(r"-R\d+$")


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def document_id_for(document_type: DocumentType, document_number: str) -> str:
    """Storage identifier for a document: its type joined to its number."""

    return f"{document_type.value}-{document_number}"


@dataclass(frozen=True)
class LineItem:
    """One billable line on a document."""

    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    details: Optional[str] = None


@dataclass(frozen=True)
class LinkedDocuments:
    """Forward references from a source document to its chain children."""

    invoice_id: Optional[str] = None
    receipt_id: Optional[str] = None

    def get(self, target_type: DocumentType) -> Optional[str]:
        if target_type is DocumentType.INVOICE:
            return self.invoice_id
        if target_type is DocumentType.RECEIPT:
            return self.receipt_id
        return None

    def with_link(self, target_type: DocumentType, value: Optional[str]) -> "LinkedDocuments":
        if target_type is DocumentType.INVOICE:
            return replace(self, invoice_id=value)
        if target_type is DocumentType.RECEIPT:
            return replace(self, receipt_id=value)
        return self


@dataclass(frozen=True)
class DeletedLink:
    """Tombstone for a chain child that existed and was later deleted."""

    id: str
    document_number: str
    deleted_at: str


@dataclass(frozen=True)
class DeletedLinks:
    """Tombstones keyed by the child's document type."""

    invoice: Optional[DeletedLink] = None
    receipt: Optional[DeletedLink] = None

    def get(self, target_type: DocumentType) -> Optional[DeletedLink]:
        if target_type is DocumentType.INVOICE:
            return self.invoice
        if target_type is DocumentType.RECEIPT:
            return self.receipt
        return None

    def with_entry(self, target_type: DocumentType, entry: Optional[DeletedLink]) -> "DeletedLinks":
        if target_type is DocumentType.INVOICE:
            return replace(self, invoice=entry)
        if target_type is DocumentType.RECEIPT:
            return replace(self, receipt=entry)
        return self


@dataclass(frozen=True)
class PartialPayment:
    """Portion of the total collected by one document."""

    enabled: bool = False
    type: AmountType = AmountType.PERCENT
    value: Decimal = Decimal("0")
    installment_number: Optional[int] = None
    total_installments: Optional[int] = None
    base_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Installment:
    """Progress of a contract paid across several receipts."""

    is_installment: bool = False
    installment_number: int = 1
    total_contract_amount: Decimal = Decimal("0")
    paid_to_date: Decimal = Decimal("0")
    remaining_amount: Optional[Decimal] = None
    parent_chain_id: Optional[str] = None
    is_complete: bool = False


@dataclass(frozen=True)
class Document:
    """A quotation, invoice, or receipt together with its chain linkage."""

    id: str
    type: DocumentType
    document_number: str
    issue_date: str = ""
    status: DocumentStatus = DocumentStatus.PENDING
    items: Tuple[LineItem, ...] = ()
    tax_config: TaxConfig = field(default_factory=TaxConfig)
    tax_breakdown: Optional[TaxBreakdown] = None
    customer_id: Optional[str] = None
    freelancer_id: Optional[str] = None
    profile_id: Optional[str] = None
    notes: Optional[str] = None
    payment_terms: Tuple[str, ...] = ()
    valid_until: Optional[str] = None
    due_date: Optional[str] = None
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    reference_number: Optional[str] = None
    chain_id: Optional[str] = None
    source_document_id: Optional[str] = None
    source_document_number: Optional[str] = None
    linked_documents: LinkedDocuments = field(default_factory=LinkedDocuments)
    deleted_linked_documents: DeletedLinks = field(default_factory=DeletedLinks)
    is_revision: bool = False
    revision_number: Optional[int] = None
    original_document_number: Optional[str] = None
    original_document_id: Optional[str] = None
    partial_payment: Optional[PartialPayment] = None
    installment: Optional[Installment] = None
    created_at: Optional[str] = None
    status_updated_at: Optional[str] = None
    revised_at: Optional[str] = None
    archived_at: Optional[str] = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


# ---------------------------------------------------------------------------
# Payload (de)serialization
# ---------------------------------------------------------------------------


def _decimal(raw: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if raw is None or raw == "":
        return default
    return Decimal(str(raw))


def _text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def infer_document_type(payload: Mapping[str, Any]) -> DocumentType:
    """Determine a document's type, falling back to type-specific dates.

    Raises:
        ValueError: If the payload has no ``type`` and no date field that
            identifies one.
    """

    raw = payload.get("type")
    if raw:
        return DocumentType(raw)
    if payload.get("validUntil"):
        return DocumentType.QUOTATION
    if payload.get("dueDate"):
        return DocumentType.INVOICE
    if payload.get("paymentDate"):
        return DocumentType.RECEIPT
    raise ValueError(f"Cannot determine document type for '{payload.get('id')}'")


def tax_config_from_dict(raw: Mapping[str, Any]) -> TaxConfig:
    vat = raw.get("vat") or {}
    withholding = raw.get("withholding") or {}
    return TaxConfig(
        vat=TaxRule(enabled=bool(vat.get("enabled")), rate=_decimal(vat.get("rate"), Decimal("0"))),
        withholding=TaxRule(
            enabled=bool(withholding.get("enabled")),
            rate=_decimal(withholding.get("rate"), Decimal("0")),
        ),
        gross_up=bool(raw.get("grossUp")),
    )


def tax_config_to_dict(config: TaxConfig) -> Dict[str, Any]:
    return {
        "vat": {"enabled": config.vat.enabled, "rate": str(config.vat.rate)},
        "withholding": {"enabled": config.withholding.enabled, "rate": str(config.withholding.rate)},
        "grossUp": config.gross_up,
    }


def _breakdown_from_dict(raw: Optional[Mapping[str, Any]]) -> Optional[TaxBreakdown]:
    if not raw:
        return None
    return TaxBreakdown(
        subtotal=_decimal(raw.get("subtotal"), Decimal("0")),
        vat_amount=_decimal(raw.get("vatAmount"), Decimal("0")),
        withholding_amount=_decimal(raw.get("withholdingAmount"), Decimal("0")),
        total=_decimal(raw.get("total"), Decimal("0")),
        gross_up_amount=_decimal(raw.get("grossUpAmount")),
    )


def _breakdown_to_dict(breakdown: TaxBreakdown) -> Dict[str, Any]:
    data = {
        "subtotal": str(breakdown.subtotal),
        "vatAmount": str(breakdown.vat_amount),
        "withholdingAmount": str(breakdown.withholding_amount),
        "total": str(breakdown.total),
    }
    if breakdown.gross_up_amount is not None:
        data["grossUpAmount"] = str(breakdown.gross_up_amount)
    return data


def _item_from_dict(raw: Mapping[str, Any]) -> LineItem:
    return LineItem(
        description=str(raw.get("description") or ""),
        quantity=_decimal(raw.get("quantity"), Decimal("0")),
        unit=str(raw.get("unit") or ""),
        unit_price=_decimal(raw.get("unitPrice"), Decimal("0")),
        details=raw.get("details"),
    )


def _item_to_dict(item: LineItem) -> Dict[str, Any]:
    data = {
        "description": item.description,
        "quantity": str(item.quantity),
        "unit": item.unit,
        "unitPrice": str(item.unit_price),
    }
    if item.details:
        data["details"] = item.details
    return data


def _deleted_link_from_dict(raw: Optional[Mapping[str, Any]]) -> Optional[DeletedLink]:
    if not raw:
        return None
    return DeletedLink(
        id=str(raw.get("id")),
        document_number=str(raw.get("documentNumber") or raw.get("id")),
        deleted_at=str(raw.get("deletedAt") or ""),
    )


def _deleted_link_to_dict(entry: DeletedLink) -> Dict[str, Any]:
    return {"id": entry.id, "documentNumber": entry.document_number, "deletedAt": entry.deleted_at}


def _partial_payment_from_dict(raw: Optional[Mapping[str, Any]]) -> Optional[PartialPayment]:
    if not raw:
        return None
    return PartialPayment(
        enabled=bool(raw.get("enabled")),
        type=AmountType(raw.get("type") or AmountType.PERCENT.value),
        value=_decimal(raw.get("value"), Decimal("0")),
        installment_number=raw.get("installmentNumber"),
        total_installments=raw.get("totalInstallments"),
        base_amount=_decimal(raw.get("baseAmount")),
    )


def _partial_payment_to_dict(payment: PartialPayment) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "enabled": payment.enabled,
        "type": payment.type.value,
        "value": str(payment.value),
    }
    if payment.installment_number is not None:
        data["installmentNumber"] = payment.installment_number
    if payment.total_installments is not None:
        data["totalInstallments"] = payment.total_installments
    if payment.base_amount is not None:
        data["baseAmount"] = str(payment.base_amount)
    return data


def _installment_from_dict(raw: Optional[Mapping[str, Any]]) -> Optional[Installment]:
    if not raw:
        return None
    return Installment(
        is_installment=bool(raw.get("isInstallment")),
        installment_number=int(raw.get("installmentNumber") or 1),
        total_contract_amount=_decimal(raw.get("totalContractAmount"), Decimal("0")),
        paid_to_date=_decimal(raw.get("paidToDate"), Decimal("0")),
        remaining_amount=_decimal(raw.get("remainingAmount")),
        parent_chain_id=raw.get("parentChainId"),
        is_complete=bool(raw.get("isComplete")),
    )


def _installment_to_dict(installment: Installment) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "isInstallment": installment.is_installment,
        "installmentNumber": installment.installment_number,
        "totalContractAmount": str(installment.total_contract_amount),
        "paidToDate": str(installment.paid_to_date),
        "isComplete": installment.is_complete,
    }
    if installment.remaining_amount is not None:
        data["remainingAmount"] = str(installment.remaining_amount)
    if installment.parent_chain_id is not None:
        data["parentChainId"] = installment.parent_chain_id
    return data


def document_from_dict(payload: Mapping[str, Any]) -> Document:
    """Build a :class:`Document` from its stored JSON payload.

    Legacy payloads are migrated on the way in: ``taxRate``/``taxType``
    become a :class:`TaxConfig`, a missing ``type`` is inferred from the
    type-specific date, and documents whose number ends in ``-R<n>`` are
    flagged as revisions when ``isRevision`` was never recorded.

    Raises:
        KeyError: If ``id`` is missing.
        ValueError: If the type or status cannot be interpreted.
    """

    document_id = str(payload["id"])
    document_number = str(payload.get("documentNumber") or document_id)

    if payload.get("taxConfig"):
        tax_config = tax_config_from_dict(payload["taxConfig"])
    else:
        tax_config = legacy_tax_config(payload.get("taxRate"), payload.get("taxType"))

    revision_number = payload.get("revisionNumber")
    revision_number = int(revision_number) if revision_number not in (None, "") else None
    if "isRevision" in payload:
        is_revision = bool(payload["isRevision"])
    else:
        is_revision = bool(revision_number and revision_number > 0) or bool(
            REVISION_SUFFIX.search(document_number)
        )

    linked = payload.get("linkedDocuments") or {}
    deleted = payload.get("deletedLinkedDocuments") or {}

    return Document(
        id=document_id,
        type=infer_document_type(payload),
        document_number=document_number,
        issue_date=str(payload.get("issueDate") or ""),
        status=DocumentStatus(payload.get("status") or DocumentStatus.PENDING.value),
        items=tuple(_item_from_dict(item) for item in payload.get("items") or ()),
        tax_config=tax_config,
        tax_breakdown=_breakdown_from_dict(payload.get("taxBreakdown")),
        customer_id=payload.get("customerId"),
        freelancer_id=payload.get("freelancerId"),
        profile_id=payload.get("profileId"),
        notes=payload.get("notes"),
        payment_terms=tuple(payload.get("paymentTerms") or ()),
        valid_until=payload.get("validUntil"),
        due_date=payload.get("dueDate"),
        payment_date=payload.get("paymentDate"),
        payment_method=payload.get("paymentMethod"),
        paid_amount=_decimal(payload.get("paidAmount")),
        reference_number=payload.get("referenceNumber"),
        chain_id=payload.get("chainId"),
        source_document_id=payload.get("sourceDocumentId"),
        source_document_number=payload.get("sourceDocumentNumber"),
        linked_documents=LinkedDocuments(
            invoice_id=linked.get("invoiceId"),
            receipt_id=linked.get("receiptId"),
        ),
        deleted_linked_documents=DeletedLinks(
            invoice=_deleted_link_from_dict(deleted.get("invoice")),
            receipt=_deleted_link_from_dict(deleted.get("receipt")),
        ),
        is_revision=is_revision,
        revision_number=revision_number,
        original_document_number=payload.get("originalDocumentNumber"),
        original_document_id=payload.get("originalDocumentId"),
        partial_payment=_partial_payment_from_dict(payload.get("partialPayment")),
        installment=_installment_from_dict(payload.get("installment")),
        created_at=payload.get("createdAt"),
        status_updated_at=payload.get("statusUpdatedAt"),
        revised_at=payload.get("revisedAt"),
        # Older stores wrote the snake_case key.
        archived_at=payload.get("archivedAt") or payload.get("archived_at"),
    )


def document_to_dict(document: Document) -> Dict[str, Any]:
    """Serialize a :class:`Document` into its JSON payload, omitting empty fields."""

    data: Dict[str, Any] = {
        "id": document.id,
        "type": document.type.value,
        "documentNumber": document.document_number,
        "issueDate": document.issue_date,
        "status": document.status.value,
        "items": [_item_to_dict(item) for item in document.items],
        "taxConfig": tax_config_to_dict(document.tax_config),
        "isRevision": document.is_revision,
    }

    optional_fields = {
        "customerId": document.customer_id,
        "freelancerId": document.freelancer_id,
        "profileId": document.profile_id,
        "notes": document.notes,
        "validUntil": document.valid_until,
        "dueDate": document.due_date,
        "paymentDate": document.payment_date,
        "paymentMethod": document.payment_method,
        "paidAmount": _text(document.paid_amount),
        "referenceNumber": document.reference_number,
        "chainId": document.chain_id,
        "sourceDocumentId": document.source_document_id,
        "sourceDocumentNumber": document.source_document_number,
        "revisionNumber": document.revision_number,
        "originalDocumentNumber": document.original_document_number,
        "originalDocumentId": document.original_document_id,
        "createdAt": document.created_at,
        "statusUpdatedAt": document.status_updated_at,
        "revisedAt": document.revised_at,
        "archivedAt": document.archived_at,
    }
    data.update({key: value for key, value in optional_fields.items() if value is not None})

    if document.payment_terms:
        data["paymentTerms"] = list(document.payment_terms)
    if document.tax_breakdown is not None:
        data["taxBreakdown"] = _breakdown_to_dict(document.tax_breakdown)

    linked = {
        key: value
        for key, value in (
            ("invoiceId", document.linked_documents.invoice_id),
            ("receiptId", document.linked_documents.receipt_id),
        )
        if value is not None
    }
    if linked:
        data["linkedDocuments"] = linked

    deleted = {
        key: _deleted_link_to_dict(entry)
        for key, entry in (
            ("invoice", document.deleted_linked_documents.invoice),
            ("receipt", document.deleted_linked_documents.receipt),
        )
        if entry is not None
    }
    if deleted:
        data["deletedLinkedDocuments"] = deleted

    if document.partial_payment is not None:
        data["partialPayment"] = _partial_payment_to_dict(document.partial_payment)
    if document.installment is not None:
        data["installment"] = _installment_to_dict(document.installment)

    return data


__all__ = [
    "REVISION_SUFFIX",
    "resolve_timestamp",
    "document_id_for",
    "LineItem",
    "LinkedDocuments",
    "DeletedLink",
    "DeletedLinks",
    "PartialPayment",
    "Installment",
    "Document",
    "infer_document_type",
    "tax_config_from_dict",
    "tax_config_to_dict",
    "document_from_dict",
    "document_to_dict",
]
