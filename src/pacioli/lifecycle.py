"""Deletion, archival, and status rules for chain members.

Each function returns a plan describing what the caller must write: the
ids to remove and the surviving documents whose cross-references changed.
Plans are computed against the pool as given and never mutate it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple, Union

from . import log
from .constants import DocumentStatus
from .errors import DocumentNotFound, DocumentValidationError
from .models import DeletedLink, Document, resolve_timestamp
from .revisions import is_revision_document, retract_revision
from .traversal import sort_chain, type_rank


@dataclass(frozen=True)
class DeletionPlan:
    """Outcome of deleting a single document."""

    document_id: Optional[str]
    updates: Tuple[Document, ...] = ()

    @property
    def removed(self) -> bool:
        return self.document_id is not None


@dataclass(frozen=True)
class ArchivePlan:
    """Documents of one chain stamped with ``archived_at``."""

    chain_id: str
    archived_at: str
    updates: Tuple[Document, ...]
    archived_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ChainDeletionPlan:
    """Outcome of deleting every member of one chain."""

    chain_id: str
    deleted_ids: Tuple[str, ...]
    updates: Tuple[Document, ...] = ()


def _pool_by_id(documents: Iterable[Document]) -> Dict[str, Document]:
    return {doc.id: doc for doc in documents}


def delete_document(
    document: Document,
    documents: Iterable[Document],
    *,
    timestamp: Optional[datetime] = None,
) -> DeletionPlan:
    """Plan the removal of ``document`` and the cross-reference cascade.

    When the document is a linked chain child, its source's forward link is
    moved into ``deleted_linked_documents``. When it is a revision, the
    superseded document's status is restored once no other revision of it
    remains. Deleting a document that is not in the pool yields an empty
    plan.

    Args:
        document (Document): Document to delete.
        documents (Iterable[Document]): Current pool, including ``document``.
        timestamp (datetime | None): Clock for ``deleted_at`` stamps.

    Returns:
        DeletionPlan: Id to remove and updated surviving documents.
    """

    pool = _pool_by_id(documents)
    if document.id not in pool:
        log.info("Document %s already absent; nothing to delete", document.id)
        return DeletionPlan(document_id=None)

    moment = resolve_timestamp(timestamp)
    updates: Dict[str, Document] = {}

    if document.chain_id and document.source_document_id:
        source = pool.get(document.source_document_id)
        if source is not None and source.linked_documents.get(document.type) == document.id:
            updates[source.id] = replace(
                source,
                linked_documents=source.linked_documents.with_link(document.type, None),
                deleted_linked_documents=source.deleted_linked_documents.with_entry(
                    document.type,
                    DeletedLink(
                        id=document.id,
                        document_number=document.document_number,
                        deleted_at=moment.isoformat(),
                    ),
                ),
            )
            log.info(
                "Recorded deleted %s %s on %s",
                document.type.value,
                document.document_number,
                source.document_number,
            )

    if is_revision_document(document) and document.original_document_id:
        original = updates.get(document.original_document_id) or pool.get(document.original_document_id)
        restored = retract_revision(document, original, pool.values(), timestamp=moment)
        if restored is not None:
            updates[restored.id] = restored

    log.info("Planned deletion of %s with %d cascade update(s)", document.document_number, len(updates))
    return DeletionPlan(document_id=document.id, updates=tuple(updates.values()))


def _chain_members(chain_id: str, documents: Iterable[Document]) -> list:
    members = [doc for doc in documents if doc.chain_id == chain_id]
    if not members:
        log.warning("No documents found in chain %s", chain_id)
        raise DocumentNotFound(f"Chain '{chain_id}' has no documents")
    return members


def archive_chain(
    chain_id: str,
    documents: Iterable[Document],
    *,
    timestamp: Optional[datetime] = None,
) -> ArchivePlan:
    """Stamp ``archived_at`` on every document carrying ``chain_id``.

    Members that are already archived keep their original stamp.

    Raises:
        DocumentNotFound: If no document belongs to the chain.
    """

    members = sort_chain(_chain_members(chain_id, documents))
    archived_at = resolve_timestamp(timestamp).isoformat()
    updates = tuple(replace(doc, archived_at=archived_at) for doc in members if not doc.is_archived)
    log.info("Archiving chain %s: %d of %d document(s) newly archived", chain_id, len(updates), len(members))
    return ArchivePlan(
        chain_id=chain_id,
        archived_at=archived_at,
        updates=updates,
        archived_ids=tuple(doc.id for doc in members),
    )


def delete_chain(
    chain_id: str,
    documents: Iterable[Document],
    *,
    timestamp: Optional[datetime] = None,
) -> ChainDeletionPlan:
    """Delete every member of ``chain_id`` through :func:`delete_document`.

    Members are removed receipts first so each cascade sees its source
    still present. Updates aimed at documents deleted later in the same
    pass are dropped from the plan.

    Raises:
        DocumentNotFound: If no document belongs to the chain.
    """

    snapshot = _pool_by_id(documents)
    pool = dict(snapshot)
    members = _chain_members(chain_id, pool.values())
    moment = resolve_timestamp(timestamp)

    deleted = []
    for member in sorted(members, key=type_rank, reverse=True):
        current = pool.get(member.id, member)
        plan = delete_document(current, pool.values(), timestamp=moment)
        for update in plan.updates:
            pool[update.id] = update
        if plan.removed:
            pool.pop(plan.document_id, None)
            deleted.append(plan.document_id)

    touched = tuple(doc for doc_id, doc in pool.items() if snapshot.get(doc_id) is not doc)
    log.info("Deleted chain %s: %d document(s) removed", chain_id, len(deleted))
    return ChainDeletionPlan(chain_id=chain_id, deleted_ids=tuple(deleted), updates=touched)


def change_status(
    document: Document,
    status: Union[str, DocumentStatus],
    *,
    timestamp: Optional[datetime] = None,
) -> Document:
    """Return ``document`` with a new status and ``status_updated_at`` stamp.

    Raises:
        DocumentValidationError: If ``status`` is not a known status.
    """

    try:
        new_status = DocumentStatus(status)
    except ValueError as exc:
        valid = ", ".join(item.value for item in DocumentStatus)
        log.warning("Rejected unknown status %r for %s", status, document.document_number)
        raise DocumentValidationError([f"Unknown status '{status}' (expected one of {valid})"]) from exc

    log.info("Status of %s: %s -> %s", document.document_number, document.status.value, new_status.value)
    return replace(
        document,
        status=new_status,
        status_updated_at=resolve_timestamp(timestamp).isoformat(),
    )


__all__ = [
    "DeletionPlan",
    "ArchivePlan",
    "ChainDeletionPlan",
    "delete_document",
    "archive_chain",
    "delete_chain",
    "change_status",
]
