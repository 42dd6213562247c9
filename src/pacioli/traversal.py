"""Chain traversal over an in-memory pool of documents.

A :class:`ChainIndex` keeps the pool keyed by id, by source id, and by
chain id so that a traversal never rescans the whole pool. The index is
rebuilt from scratch by the orchestration layer whenever its document
cache is invalidated.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from . import log
from .constants import PENDING_LINK, TYPE_ORDER, UNKNOWN_TYPE_ORDER
from .errors import ChainIntegrityError, DocumentNotFound
from .models import Document


@dataclass(frozen=True)
class ChainView:
    """Canonically ordered members of one chain."""

    chain_id: Optional[str]
    documents: Tuple[Document, ...]


class ChainIndex:
    """Adjacency index over a document pool."""

    def __init__(self, documents: Iterable[Document]) -> None:
        self.by_id: Dict[str, Document] = {}
        self.by_source: Dict[str, List[Document]] = defaultdict(list)
        self.by_chain: Dict[str, List[Document]] = defaultdict(list)
        for document in documents:
            self.add(document)

    def add(self, document: Document) -> None:
        self.by_id[document.id] = document
        if document.source_document_id:
            self.by_source[document.source_document_id].append(document)
        if document.chain_id:
            self.by_chain[document.chain_id].append(document)

    def get(self, document_id: str) -> Optional[Document]:
        return self.by_id.get(document_id)

    def __len__(self) -> int:
        return len(self.by_id)

    def __iter__(self):
        return iter(self.by_id.values())

    def neighbours(self, document: Document) -> List[Document]:
        """Every document directly related to ``document``."""

        related: List[Document] = []
        if document.source_document_id:
            parent = self.by_id.get(document.source_document_id)
            if parent is not None:
                related.append(parent)
        for child_id in (document.linked_documents.invoice_id, document.linked_documents.receipt_id):
            if child_id and child_id != PENDING_LINK and child_id in self.by_id:
                related.append(self.by_id[child_id])
        related.extend(self.by_source.get(document.id, ()))
        if document.chain_id:
            related.extend(self.by_chain.get(document.chain_id, ()))
        return related


PoolLike = Union[ChainIndex, Iterable[Document]]


def _as_index(pool: PoolLike) -> ChainIndex:
    return pool if isinstance(pool, ChainIndex) else ChainIndex(pool)


def type_rank(document: Document) -> int:
    type_value = getattr(document.type, "value", document.type)
    return TYPE_ORDER.get(type_value, UNKNOWN_TYPE_ORDER)


def sort_chain(documents: Iterable[Document]) -> List[Document]:
    """Order documents quotation, invoice, receipt; ties by issue date then number."""

    return sorted(documents, key=lambda doc: (type_rank(doc), doc.issue_date or "", doc.document_number))


def find_document(pool: PoolLike, document_id: str) -> Document:
    """Return the document with ``document_id``.

    Raises:
        DocumentNotFound: If no document in ``pool`` carries the id.
    """

    document = _as_index(pool).get(document_id)
    if document is None:
        log.warning("Document %s not found in pool", document_id)
        raise DocumentNotFound(f"Document '{document_id}' does not exist")
    return document


def collect_chain(pool: PoolLike, start: Document) -> List[Document]:
    """Breadth-first walk from ``start`` across every chain relation.

    Returns the visited documents in discovery order, ``start`` first.
    """

    index = _as_index(pool)
    visited: Dict[str, Document] = {start.id: start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for neighbour in index.neighbours(current):
            if neighbour.id not in visited:
                visited[neighbour.id] = neighbour
                queue.append(neighbour)
    return list(visited.values())


def verify_chain(documents: Iterable[Document]) -> None:
    """Check the invariants every collected chain must satisfy.

    Raises:
        ChainIntegrityError: If the members carry more than one distinct
            chain id, or if two non-revision documents of the same type
            belong to the chain.
    """

    members = list(documents)
    chain_ids = {doc.chain_id for doc in members if doc.chain_id}
    if len(chain_ids) > 1:
        log.error("Connected documents disagree on chain id: %s", sorted(chain_ids))
        raise ChainIntegrityError(f"Connected documents carry different chain ids: {', '.join(sorted(chain_ids))}")

    seen: Dict[object, Document] = {}
    for doc in members:
        if doc.is_revision:
            continue
        previous = seen.get(doc.type)
        if previous is not None:
            log.error(
                "Chain holds two %s documents: %s and %s",
                getattr(doc.type, "value", doc.type),
                previous.document_number,
                doc.document_number,
            )
            raise ChainIntegrityError(
                f"Chain holds both {previous.document_number} and {doc.document_number} of the same type"
            )
        seen[doc.type] = doc


def build_chain(pool: PoolLike, start: Document) -> ChainView:
    """Reconstruct the full chain that ``start`` belongs to.

    Args:
        pool (ChainIndex | Iterable[Document]): Every known document.
        start (Document): Any member of the chain.

    Returns:
        ChainView: The chain id (first non-null id met during the walk, or
            ``None``) and the members in canonical order.

    Raises:
        ChainIntegrityError: When the collected members violate chain
            invariants (see :func:`verify_chain`).
    """

    collected = collect_chain(pool, start)
    verify_chain(collected)
    chain_id = next((doc.chain_id for doc in collected if doc.chain_id), None)
    ordered = tuple(sort_chain(collected))
    log.debug("Built chain %s with %d document(s) from %s", chain_id, len(ordered), start.id)
    return ChainView(chain_id=chain_id, documents=ordered)


def chain_members(pool: PoolLike, chain_id: str) -> List[Document]:
    """Documents whose ``chain_id`` equals ``chain_id``, in canonical order."""

    return sort_chain(_as_index(pool).by_chain.get(chain_id, ()))


def active_documents(pool: Iterable[Document]) -> List[Document]:
    return [doc for doc in pool if not doc.is_archived]


def archived_documents(pool: Iterable[Document]) -> List[Document]:
    return [doc for doc in pool if doc.is_archived]


__all__ = [
    "ChainView",
    "ChainIndex",
    "type_rank",
    "sort_chain",
    "find_document",
    "collect_chain",
    "verify_chain",
    "build_chain",
    "chain_members",
    "active_documents",
    "archived_documents",
]
