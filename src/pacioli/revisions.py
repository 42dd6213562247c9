"""Revision numbering and bookkeeping.

A revision re-issues a document under ``<base>-R<n>`` and marks the
document it supersedes as ``revised``. Retracting (deleting) the last
revision restores the superseded document's status.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from . import log
from .constants import DocumentStatus, DocumentType
from .models import DeletedLinks, Document, LinkedDocuments, document_id_for, resolve_timestamp


REVISION_MANAGED_FIELDS = frozenset(
    {
        "id",
        "type",
        "document_number",
        "status",
        "is_revision",
        "revision_number",
        "original_document_number",
        "original_document_id",
        "chain_id",
        "source_document_id",
        "source_document_number",
        "linked_documents",
        "deleted_linked_documents",
        "created_at",
        "status_updated_at",
        "revised_at",
        "archived_at",
    }
)


@dataclass(frozen=True)
class RevisionResult:
    """New revision plus the superseded document with its status updated."""

    revision: Document
    original_update: Document


def is_revision_document(document: Document) -> bool:
    return document.is_revision or (document.revision_number or 0) > 0


def next_revision_number(documents: Iterable[Document], base_document_number: str) -> int:
    """Return one more than the highest ``<base>-R<n>`` suffix in use, or 1."""

    pattern = re.compile(re.escape(base_document_number) + r"-R(\d+)$")
    highest = 0
    for document in documents:
        match = pattern.match(document.document_number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def revision_document_number(base_document_number: str, revision_number: int) -> str:
    return f"{base_document_number}-R{revision_number}"


def revision_base_number(document: Document) -> str:
    """Number that revisions of ``document`` are suffixed onto.

    Revising a revision continues the original sequence (``QT-1-R2`` rather
    than ``QT-1-R1-R1``).
    """

    if is_revision_document(document) and document.original_document_number:
        return document.original_document_number
    return document.document_number


def default_restored_status(document_type: DocumentType) -> DocumentStatus:
    """Status a superseded document returns to once its revisions are gone."""

    if document_type is DocumentType.QUOTATION:
        return DocumentStatus.APPROVED
    return DocumentStatus.PENDING


def create_revision(
    original: Document,
    documents: Iterable[Document],
    *,
    timestamp: Optional[datetime] = None,
    document_id_factory: Callable[[DocumentType, str], str] = document_id_for,
    **overrides,
) -> RevisionResult:
    """Re-issue ``original`` as the next ``-R<n>`` revision.

    The revision keeps the original's chain membership and source
    back-reference, starts as ``pending``, and carries no forward links of
    its own. ``overrides`` replaces editable fields such as items or dates.

    Args:
        original (Document): Document being superseded.
        documents (Iterable[Document]): Pool scanned for revision numbers in use.
        timestamp (datetime | None): Clock for ``created_at`` and ``revised_at``.
        document_id_factory (Callable): Builds the revision's id from its
            type and number.

    Returns:
        RevisionResult: The revision and the original marked ``revised``.
    """

    forbidden = REVISION_MANAGED_FIELDS.intersection(overrides)
    if forbidden:
        raise ValueError(f"Cannot override revision fields: {', '.join(sorted(forbidden))}")

    moment = resolve_timestamp(timestamp).isoformat()
    base_number = revision_base_number(original)
    number = next_revision_number(documents, base_number)
    revision_number = revision_document_number(base_number, number)

    revision = replace(
        original,
        id=document_id_factory(original.type, revision_number),
        document_number=revision_number,
        status=DocumentStatus.PENDING,
        is_revision=True,
        revision_number=number,
        original_document_number=base_number,
        original_document_id=original.id,
        linked_documents=LinkedDocuments(),
        deleted_linked_documents=DeletedLinks(),
        created_at=moment,
        status_updated_at=None,
        revised_at=None,
        archived_at=None,
        **overrides,
    )
    original_update = replace(
        original,
        status=DocumentStatus.REVISED,
        status_updated_at=moment,
        revised_at=moment,
    )
    log.info("Revised %s as %s", original.document_number, revision_number)
    return RevisionResult(revision=revision, original_update=original_update)


def retract_revision(
    revision: Document,
    original: Optional[Document],
    documents: Iterable[Document],
    *,
    timestamp: Optional[datetime] = None,
) -> Optional[Document]:
    """Status update for ``original`` once ``revision`` is deleted.

    Returns:
        Document | None: ``original`` restored to its type's default status,
            or ``None`` when it is not ``revised`` or another revision of it
            remains.
    """

    if original is None or original.status is not DocumentStatus.REVISED:
        return None

    remaining = [
        doc
        for doc in documents
        if doc.id != revision.id and doc.original_document_id == original.id and is_revision_document(doc)
    ]
    if remaining:
        log.info(
            "%s keeps status revised; %d other revision(s) remain",
            original.document_number,
            len(remaining),
        )
        return None

    restored = default_restored_status(original.type)
    log.info("Restoring %s to %s after removing %s", original.document_number, restored.value, revision.document_number)
    return replace(
        original,
        status=restored,
        status_updated_at=resolve_timestamp(timestamp).isoformat(),
    )


__all__ = [
    "RevisionResult",
    "is_revision_document",
    "next_revision_number",
    "revision_document_number",
    "revision_base_number",
    "default_restored_status",
    "create_revision",
    "retract_revision",
]
