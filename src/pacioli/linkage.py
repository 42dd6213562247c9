"""Chain linkage rules: turning a quotation into an invoice, an invoice into a receipt.

The engine never touches storage. :func:`create_linked_document` returns a
:class:`LinkedDocumentDraft` describing the child to create and, when a
stale placeholder or tombstone had to be cleared, the updated source. The
caller persists both and then records the forward link with
:func:`record_link`.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional, Union

from . import log
from .constants import (
    AUTO_NUMBER,
    DEFAULT_PAYMENT_METHOD,
    PENDING_LINK,
    AmountType,
    DocumentStatus,
    DocumentType,
)
from .errors import DuplicateLink, InvalidWorkflowTransition, PreconditionNotMet
from .models import Document, LinkedDocuments, DeletedLinks, resolve_timestamp
from .tax import calculate_tax_breakdown, items_subtotal, round_money


LINKABLE_SOURCES = {
    DocumentType.INVOICE: DocumentType.QUOTATION,
    DocumentType.RECEIPT: DocumentType.INVOICE,
}

BLOCKED_QUOTATION_STATUSES = frozenset({DocumentStatus.CANCELLED, DocumentStatus.REVISED})


@dataclass(frozen=True)
class LinkedDocumentDraft:
    """Result of a successful link request.

    Attributes:
        target_type: Type of the child being created.
        chain_id: Chain identifier shared by the source and the child.
        document: Child document with every inherited field filled in. Its
            ``id`` is empty and its number is the ``"auto"`` sentinel until
            :func:`materialize_draft` assigns real values.
        source_update: Source with the stale link state cleared, or ``None``
            when the source needed no cleanup.
        recreated: ``True`` when a pending placeholder or deleted child was
            replaced.
    """

    target_type: DocumentType
    chain_id: str
    document: Document
    source_update: Optional[Document] = None
    recreated: bool = False


def mint_chain_id(when: Optional[datetime] = None) -> str:
    """Generate a chain identifier of the form ``chain-<epoch ms>-<9 hex>``."""

    moment = resolve_timestamp(when)
    return f"chain-{int(moment.timestamp() * 1000)}-{secrets.token_hex(5)[:9]}"


def _coerce_target(target_type: Union[str, DocumentType]) -> DocumentType:
    try:
        target = DocumentType(target_type)
    except ValueError:
        target = None
    if target not in LINKABLE_SOURCES:
        log.warning("Rejected link request for unsupported target type %r", target_type)
        raise InvalidWorkflowTransition(f"Linked documents must be an invoice or a receipt, got '{target_type}'")
    return target


def check_link_allowed(source: Document, target_type: Union[str, DocumentType]) -> DocumentType:
    """Verify that ``source`` may spawn a child of ``target_type``.

    Checks run in a fixed order and the first failure wins: target type,
    source type, target-specific status gate, then existing link.

    Args:
        source (Document): Document the child would be derived from.
        target_type (str | DocumentType): ``"invoice"`` or ``"receipt"``.

    Returns:
        DocumentType: The normalized target type.

    Raises:
        InvalidWorkflowTransition: If the pairing is not quotation→invoice or
            invoice→receipt.
        PreconditionNotMet: If a receipt is requested from an unpaid invoice,
            or an invoice from a cancelled or revised quotation.
        DuplicateLink: If the source already links a real child of the
            requested type.
    """

    target = _coerce_target(target_type)
    expected_source = LINKABLE_SOURCES[target]
    if source.type is not expected_source:
        log.warning(
            "Rejected %s link from %s %s",
            target.value,
            source.type.value,
            source.document_number,
        )
        raise InvalidWorkflowTransition(
            f"A {target.value} can only be created from a {expected_source.value}, "
            f"not from {source.type.value} {source.document_number}"
        )

    if target is DocumentType.RECEIPT and source.status is not DocumentStatus.PAID:
        log.warning("Invoice %s is %s, receipt refused", source.document_number, source.status.value)
        raise PreconditionNotMet("Invoice must be paid before a receipt can be issued")

    if target is DocumentType.INVOICE and source.status in BLOCKED_QUOTATION_STATUSES:
        log.warning("Quotation %s is %s, invoice refused", source.document_number, source.status.value)
        raise PreconditionNotMet(
            f"Quotation {source.document_number} is {source.status.value} and cannot be invoiced"
        )

    existing = source.linked_documents.get(target)
    if existing and existing != PENDING_LINK:
        log.warning("%s already links %s %s", source.document_number, target.value, existing)
        raise DuplicateLink(f"{source.document_number} already has a linked {target.value}: {existing}")

    return target


def check_chain_slot_free(chain_documents: Iterable[Document], target_type: Union[str, DocumentType]) -> None:
    """Refuse a child when the chain already holds a live document of that type.

    A revision starts without forward links, so :func:`check_link_allowed`
    alone would let it spawn a second invoice or receipt next to the one
    issued from the document it supersedes.

    Raises:
        DuplicateLink: If a non-revision document of ``target_type`` is
            already a member of the chain.
    """

    target = DocumentType(target_type)
    for document in chain_documents:
        if document.type is target and not document.is_revision:
            log.warning("Chain %s already holds %s %s", document.chain_id, target.value, document.document_number)
            raise DuplicateLink(
                f"Chain {document.chain_id} already has a {target.value}: {document.document_number}"
            )


def clear_stale_link(source: Document, target_type: DocumentType) -> Optional[Document]:
    """Drop a pending placeholder or tombstone for ``target_type``.

    Returns:
        Document | None: The cleaned source, or ``None`` when there was
            nothing to clear.
    """

    pending = source.linked_documents.get(target_type) == PENDING_LINK
    tombstone = source.deleted_linked_documents.get(target_type) is not None
    if not (pending or tombstone):
        return None
    log.info("Clearing stale %s link state on %s", target_type.value, source.document_number)
    return replace(
        source,
        linked_documents=source.linked_documents.with_link(target_type, None),
        deleted_linked_documents=source.deleted_linked_documents.with_entry(target_type, None),
    )


def source_total(source: Document) -> Decimal:
    """Total of ``source``: the stored breakdown when present, otherwise recomputed."""

    if source.tax_breakdown is not None:
        return source.tax_breakdown.total
    return calculate_tax_breakdown(items_subtotal(source.items), source.tax_config).total


def compute_paid_amount(source: Document) -> Decimal:
    """Amount a receipt for ``source`` collects.

    The base is the installment's remaining amount when the chain is paid in
    installments, otherwise the source total. An enabled partial payment
    takes a percentage of its own ``base_amount`` (falling back to that
    base) or a fixed amount.
    """

    total = source_total(source)
    installment = source.installment
    base = installment.remaining_amount if installment and installment.remaining_amount else total

    paid = base
    partial = source.partial_payment
    if partial is not None and partial.enabled:
        if partial.type is AmountType.PERCENT:
            paid = (partial.base_amount or base) * partial.value / Decimal("100")
        elif partial.type is AmountType.FIXED:
            paid = partial.value
    return round_money(paid)


def create_linked_document(
    source: Document,
    target_type: Union[str, DocumentType],
    *,
    timestamp: Optional[datetime] = None,
    payment_method: str = DEFAULT_PAYMENT_METHOD,
    chain_id_factory: Callable[[Optional[datetime]], str] = mint_chain_id,
) -> LinkedDocumentDraft:
    """Prepare the child document for a quotation→invoice or invoice→receipt step.

    Args:
        source (Document): Document the child is derived from.
        target_type (str | DocumentType): ``"invoice"`` or ``"receipt"``.
        timestamp (datetime | None): Clock used for the issue/payment date
            and a freshly minted chain id. Defaults to the current UTC time.
        payment_method (str): Payment method stamped on receipt drafts.
        chain_id_factory (Callable): Mints a chain id when the source has
            none.

    Returns:
        LinkedDocumentDraft: Child draft plus any source cleanup.

    Raises:
        InvalidWorkflowTransition: See :func:`check_link_allowed`.
        PreconditionNotMet: See :func:`check_link_allowed`.
        DuplicateLink: See :func:`check_link_allowed`.
    """

    target = check_link_allowed(source, target_type)
    moment = resolve_timestamp(timestamp)
    source_update = clear_stale_link(source, target)
    chain_id = source.chain_id or chain_id_factory(moment)
    today = moment.date().isoformat()

    child = Document(
        id="",
        type=target,
        document_number=AUTO_NUMBER,
        issue_date=today,
        items=source.items,
        tax_config=source.tax_config,
        customer_id=source.customer_id,
        freelancer_id=source.freelancer_id,
        profile_id=source.profile_id,
        notes=source.notes,
        payment_terms=source.payment_terms,
        chain_id=chain_id,
        source_document_id=source.id,
        source_document_number=source.document_number,
        partial_payment=source.partial_payment,
        installment=source.installment,
        linked_documents=LinkedDocuments(),
        deleted_linked_documents=DeletedLinks(),
    )

    if target is DocumentType.INVOICE:
        child = replace(child, due_date=source.valid_until or "")
    else:
        child = replace(
            child,
            payment_date=today,
            payment_method=payment_method,
            paid_amount=compute_paid_amount(source),
            reference_number=source.document_number,
        )

    log.info(
        "Prepared %s draft from %s in chain %s",
        target.value,
        source.document_number,
        chain_id,
    )
    return LinkedDocumentDraft(
        target_type=target,
        chain_id=chain_id,
        document=child,
        source_update=source_update,
        recreated=source_update is not None,
    )


def materialize_draft(
    draft: LinkedDocumentDraft,
    *,
    document_id: str,
    document_number: str,
    created_at: str,
    **overrides,
) -> Document:
    """Give a draft its identity and apply caller edits.

    ``overrides`` may replace any editable field but never the fields that
    tie the child to its chain.
    """

    locked = {"id", "type", "document_number", "created_at", "chain_id", "source_document_id", "source_document_number"}
    forbidden = locked.intersection(overrides)
    if forbidden:
        raise ValueError(f"Cannot override chain fields: {', '.join(sorted(forbidden))}")
    return replace(
        draft.document,
        id=document_id,
        document_number=document_number,
        created_at=created_at,
        **overrides,
    )


def record_link(source: Document, target_type: DocumentType, child_id: str, chain_id: str) -> Document:
    """Point ``source`` at its new child and stamp the chain id when missing."""

    return replace(
        source,
        linked_documents=source.linked_documents.with_link(target_type, child_id),
        chain_id=source.chain_id or chain_id,
    )


__all__ = [
    "LINKABLE_SOURCES",
    "LinkedDocumentDraft",
    "mint_chain_id",
    "check_link_allowed",
    "check_chain_slot_free",
    "clear_stale_link",
    "source_total",
    "compute_paid_amount",
    "create_linked_document",
    "materialize_draft",
    "record_link",
]
