"""Business logic layer for Pacioli.

This module orchestrates the document chain engine against the workbook
store. The engine modules (:mod:`.linkage`, :mod:`.revisions`,
:mod:`.lifecycle`, :mod:`.traversal`) are pure; every read and write here
goes through the Data Access Layer, and nothing is written until every
rule for the request has passed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, lifecycle, linkage, log, revisions
from .constants import AUTO_NUMBER, EXPECTED_SCHEMA_VERSION, DocumentStatus, DocumentType
from .errors import BusinessRuleViolation, DocumentNotFound
from .models import Document, Installment, LineItem, PartialPayment, document_id_for
from .numbering import SequenceCounter, default_counter, increment_counter, next_document_number
from .tax import TaxConfig, calculate_tax_breakdown, items_subtotal
from .traversal import ChainIndex, ChainView, build_chain, chain_members
from .validation import require_valid_document


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class IssueCommand:
    """User intent for issuing a chain root (or standalone) document."""

    document_type: DocumentType
    items: Tuple[LineItem, ...]
    tax_config: TaxConfig = field(default_factory=TaxConfig)
    document_number: str = AUTO_NUMBER
    issue_date: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
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
    partial_payment: Optional[PartialPayment] = None
    installment: Optional[Installment] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LinkCommand:
    """User intent for deriving an invoice or receipt from an existing document."""

    source_id: str
    target_type: Union[str, DocumentType]
    document_number: str = AUTO_NUMBER
    changes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RevisionCommand:
    """User intent for re-issuing a document as its next revision."""

    document_id: str
    changes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp, usually sourced
            from a command object.

    Returns:
        datetime: ``candidate`` when provided, otherwise the current UTC
            datetime generated via :func:`datetime.now`.
    """

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries keyed by domain area (documents,
    counters) holding precomputed query results so repeated reads do not
    rescan the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping for the named bucket.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Args:
        context (RuntimeContext): Active runtime context whose cache should be
            pruned.
        *names (str): Bucket identifiers to remove. Missing buckets are
            ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_documents_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the document cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` documents in workbook
            order, a ``by_id`` lookup, and a chain ``index``.
    """

    bucket = _get_cache_bucket(context, "documents")
    if "all" not in bucket:
        all_documents = list(data_manager.iter_documents(context.workbook))
        bucket["all"] = all_documents
        bucket["by_id"] = {document.id: document for document in all_documents}
        bucket["index"] = ChainIndex(all_documents)
        log.debug("Populated documents cache with %d entries", len(all_documents))
    return bucket


def _ensure_counters_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sequence counter bucket on demand, keyed by document type."""

    bucket = _get_cache_bucket(context, "counters")
    if "by_type" not in bucket:
        bucket["by_type"] = {counter.document_type: counter for counter in data_manager.iter_counters(context.workbook)}
        log.debug("Populated counters cache with %d entries", len(bucket["by_type"]))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_documents(
    context: RuntimeContext,
    *,
    include_archived: bool = False,
    only_archived: bool = False,
) -> List[Document]:
    """Return cached documents, hiding archived ones unless asked.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        include_archived (bool): Return archived and active documents.
        only_archived (bool): Return archived documents only. Takes
            precedence over ``include_archived``.

    Returns:
        list[Document]: Documents in workbook order.
    """

    documents = _ensure_documents_cache(context)["all"]
    if only_archived:
        return [document for document in documents if document.is_archived]
    if include_archived:
        return list(documents)
    return [document for document in documents if not document.is_archived]


def get_document(context: RuntimeContext, document_id: str) -> Document:
    """Resolve a document by its identifier, archived or not.

    Raises:
        DocumentNotFound: If ``document_id`` is absent from the workbook.
    """

    cache = _ensure_documents_cache(context)
    try:
        return cache["by_id"][document_id]
    except KeyError as exc:
        log.warning("Document lookup failed for id '%s'", document_id)
        raise DocumentNotFound(f"Unknown document id: {document_id}") from exc


def get_chain(context: RuntimeContext, document_id: str) -> ChainView:
    """Reconstruct the chain containing ``document_id``.

    Raises:
        DocumentNotFound: If the starting document does not exist.
        ChainIntegrityError: If the stored chain contradicts its invariants.
    """

    start = get_document(context, document_id)
    return build_chain(_ensure_documents_cache(context)["index"], start)


def _counter_for(context: RuntimeContext, document_type: DocumentType, today: date) -> SequenceCounter:
    counters = _ensure_counters_cache(context)["by_type"]
    return counters.get(document_type) or default_counter(document_type, today)


def _assign_number(context: RuntimeContext, document_type: DocumentType, requested: str, today: date) -> str:
    """Substitute the next sequence number for the ``"auto"`` sentinel."""

    requested = (requested or AUTO_NUMBER).strip()
    if requested != AUTO_NUMBER:
        return requested
    number = next_document_number(_counter_for(context, document_type, today), today)
    log.debug("Assigned %s number %s", document_type.value, number)
    return number


def _bump_counter(context: RuntimeContext, document_type: DocumentType, number: str, today: date) -> None:
    counter = increment_counter(_counter_for(context, document_type, today), number, today)
    data_manager.upsert_counter(context.workbook, counter)
    _invalidate_cache(context, "counters")


def _require_unused_id(context: RuntimeContext, document_id: str) -> None:
    if document_id in _ensure_documents_cache(context)["by_id"]:
        log.warning("Document id '%s' already in use", document_id)
        raise BusinessRuleViolation(f"Document number already in use: {document_id}")


def with_tax_breakdown(document: Document) -> Document:
    """Snapshot the tax breakdown computed from the document's items."""

    breakdown = calculate_tax_breakdown(items_subtotal(document.items), document.tax_config)
    return replace(document, tax_breakdown=breakdown)


def issue_document(context: RuntimeContext, command: IssueCommand) -> Document:
    """Number, price, validate, and append a new document.

    Receipts issued without an explicit paid amount collect the document
    total.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (IssueCommand): Structured intent describing the document.

    Returns:
        Document: The stored document.

    Raises:
        RuntimeError: On schema version mismatch.
        InvalidTaxConfiguration: If the tax rates cannot be computed.
        DocumentValidationError: If required fields are missing or malformed.
        BusinessRuleViolation: If the document number is already taken.
    """

    ensure_schema_version(context)
    timestamp = _resolve_timestamp(command.timestamp)
    today = timestamp.date()
    document_type = DocumentType(command.document_type)
    number = _assign_number(context, document_type, command.document_number, today)
    document_id = document_id_for(document_type, number)
    _require_unused_id(context, document_id)

    document = with_tax_breakdown(
        Document(
            id=document_id,
            type=document_type,
            document_number=number,
            issue_date=command.issue_date or today.isoformat(),
            status=DocumentStatus(command.status),
            items=tuple(command.items),
            tax_config=command.tax_config,
            customer_id=command.customer_id,
            freelancer_id=command.freelancer_id,
            profile_id=command.profile_id,
            notes=command.notes,
            payment_terms=tuple(command.payment_terms),
            valid_until=command.valid_until,
            due_date=command.due_date,
            payment_date=command.payment_date,
            payment_method=command.payment_method,
            paid_amount=command.paid_amount,
            partial_payment=command.partial_payment,
            installment=command.installment,
            created_at=timestamp.isoformat(),
        )
    )
    if document.type is DocumentType.RECEIPT and document.paid_amount is None:
        document = replace(document, paid_amount=document.tax_breakdown.total)
    require_valid_document(document)

    data_manager.append_document(context.workbook, document)
    _bump_counter(context, document_type, number, today)
    _invalidate_cache(context, "documents")
    log.info(
        "Issued %s '%s' (total=%s)",
        document.type.value,
        document.document_number,
        document.tax_breakdown.total,
    )
    return document


def _chain_documents(context: RuntimeContext, chain_id: Optional[str]) -> List[Document]:
    if not chain_id:
        return []
    return chain_members(_ensure_documents_cache(context)["index"], chain_id)


def prepare_linked_document(
    context: RuntimeContext,
    source_id: str,
    target_type: Union[str, DocumentType],
    *,
    timestamp: Optional[datetime] = None,
) -> linkage.LinkedDocumentDraft:
    """Build the draft child of ``source_id`` without writing anything.

    Raises:
        DocumentNotFound: If the source does not exist.
        InvalidWorkflowTransition: If the type pairing is not allowed.
        PreconditionNotMet: If the source's status blocks the link.
        DuplicateLink: If the source, or any live member of its chain, already
            has a child of this type.
    """

    source = get_document(context, source_id)
    draft = linkage.create_linked_document(
        source,
        target_type,
        timestamp=_resolve_timestamp(timestamp),
        payment_method=context.settings.default_payment_method,
    )
    linkage.check_chain_slot_free(_chain_documents(context, source.chain_id), draft.target_type)
    return draft


def issue_linked_document(context: RuntimeContext, command: LinkCommand) -> Document:
    """Create and store the next chain member derived from ``command.source_id``.

    The link preconditions are checked twice: once to build the draft and
    again against a freshly read source immediately before the child and
    the updated source are written together.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (LinkCommand): Source, target type, and field edits.

    Returns:
        Document: The stored child document.

    Raises:
        DocumentNotFound: If the source does not exist.
        InvalidWorkflowTransition: If the type pairing is not allowed.
        PreconditionNotMet: If the source's status blocks the link.
        DuplicateLink: If the source, or any live member of its chain, already
            has a child of this type.
        DocumentValidationError: If the resulting child is incomplete.
    """

    ensure_schema_version(context)
    timestamp = _resolve_timestamp(command.timestamp)
    today = timestamp.date()
    draft = prepare_linked_document(context, command.source_id, command.target_type, timestamp=timestamp)

    number = _assign_number(context, draft.target_type, command.document_number, today)
    document_id = document_id_for(draft.target_type, number)
    _require_unused_id(context, document_id)

    child = linkage.materialize_draft(
        draft,
        document_id=document_id,
        document_number=number,
        created_at=timestamp.isoformat(),
        **dict(command.changes),
    )
    child = with_tax_breakdown(child)
    require_valid_document(child)

    _invalidate_cache(context, "documents")
    fresh_source = get_document(context, command.source_id)
    linkage.check_link_allowed(fresh_source, draft.target_type)
    linkage.check_chain_slot_free(_chain_documents(context, fresh_source.chain_id), draft.target_type)
    cleaned_source = linkage.clear_stale_link(fresh_source, draft.target_type) or fresh_source
    linked_source = linkage.record_link(cleaned_source, draft.target_type, child.id, draft.chain_id)

    data_manager.append_document(context.workbook, child)
    data_manager.replace_document(context.workbook, linked_source)
    _bump_counter(context, draft.target_type, number, today)
    _invalidate_cache(context, "documents")
    log.info(
        "Issued %s '%s' from '%s' in chain %s%s",
        child.type.value,
        child.document_number,
        linked_source.document_number,
        draft.chain_id,
        " (recreated)" if draft.recreated else "",
    )
    return child


def revise_document(context: RuntimeContext, command: RevisionCommand) -> Document:
    """Re-issue a document under its next ``-R<n>`` number.

    The revision is priced and validated before either row is written; the
    superseded document is then marked ``revised``.

    Raises:
        DocumentNotFound: If the document does not exist.
        DocumentValidationError: If the revision is incomplete.
        ValueError: If ``command.changes`` targets a field managed by the
            revision engine.
    """

    ensure_schema_version(context)
    timestamp = _resolve_timestamp(command.timestamp)
    original = get_document(context, command.document_id)
    result = revisions.create_revision(
        original,
        list_documents(context, include_archived=True),
        timestamp=timestamp,
        **dict(command.changes),
    )
    revision = with_tax_breakdown(result.revision)
    _require_unused_id(context, revision.id)
    require_valid_document(revision)

    data_manager.append_document(context.workbook, revision)
    data_manager.replace_document(context.workbook, result.original_update)
    _invalidate_cache(context, "documents")
    log.info("Revised '%s' as '%s'", original.document_number, revision.document_number)
    return revision


def update_status(
    context: RuntimeContext,
    document_id: str,
    status: Union[str, DocumentStatus],
    *,
    timestamp: Optional[datetime] = None,
) -> Document:
    """Change a document's status.

    Raises:
        DocumentNotFound: If the document does not exist.
        DocumentValidationError: If ``status`` is unknown.
    """

    ensure_schema_version(context)
    document = get_document(context, document_id)
    updated = lifecycle.change_status(document, status, timestamp=_resolve_timestamp(timestamp))
    data_manager.replace_document(context.workbook, updated)
    _invalidate_cache(context, "documents")
    return updated


def delete_document(
    context: RuntimeContext,
    document_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> bool:
    """Delete a document and apply its cross-reference cascade.

    Deleting an id that is not stored is a no-op.

    Returns:
        bool: ``True`` when a document was removed.
    """

    ensure_schema_version(context)
    cache = _ensure_documents_cache(context)
    document = cache["by_id"].get(document_id)
    if document is None:
        log.info("Delete requested for absent document '%s'", document_id)
        return False

    plan = lifecycle.delete_document(document, cache["all"], timestamp=_resolve_timestamp(timestamp))
    for update in plan.updates:
        data_manager.replace_document(context.workbook, update)
    removed = data_manager.remove_document(context.workbook, document_id)
    _invalidate_cache(context, "documents")
    log.info("Deleted document '%s' (%d related update(s))", document.document_number, len(plan.updates))
    return removed


def archive_chain(
    context: RuntimeContext,
    chain_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> lifecycle.ArchivePlan:
    """Stamp every member of ``chain_id`` as archived.

    Raises:
        DocumentNotFound: If the chain has no documents.
    """

    ensure_schema_version(context)
    plan = lifecycle.archive_chain(
        chain_id,
        _ensure_documents_cache(context)["all"],
        timestamp=_resolve_timestamp(timestamp),
    )
    for update in plan.updates:
        data_manager.replace_document(context.workbook, update)
    _invalidate_cache(context, "documents")
    log.info("Archived chain %s (%d document(s))", chain_id, len(plan.archived_ids))
    return plan


def delete_chain(
    context: RuntimeContext,
    chain_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> lifecycle.ChainDeletionPlan:
    """Delete every member of ``chain_id`` with per-document cascades.

    Raises:
        DocumentNotFound: If the chain has no documents.
    """

    ensure_schema_version(context)
    plan = lifecycle.delete_chain(
        chain_id,
        _ensure_documents_cache(context)["all"],
        timestamp=_resolve_timestamp(timestamp),
    )
    for update in plan.updates:
        data_manager.replace_document(context.workbook, update)
    for document_id in plan.deleted_ids:
        data_manager.remove_document(context.workbook, document_id)
    _invalidate_cache(context, "documents")
    log.info("Deleted chain %s (%d document(s))", chain_id, len(plan.deleted_ids))
    return plan


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""

    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
