"""Data access layer for Pacioli.

Everything that touches ``config.ini`` or the workbook file lives here:
locating and parsing the configuration, opening and saving the workbook,
and reading or writing single rows of the ``Documents`` and ``Counters``
sheets. Chain and tax rules belong elsewhere.

Each document occupies one row of the ``Documents`` sheet. A handful of
columns are kept for people browsing the workbook in Excel; the
``Payload`` column holds the complete document as JSON and is the only
column read back.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_PAYMENT_METHOD, DocumentType, SheetName
from .models import Document, document_from_dict, document_to_dict
from .numbering import SequenceCounter


CONFIG_FILE_NAME = "config.ini"
DOCUMENTS_SHEET = SheetName.DOCUMENTS.value
COUNTERS_SHEET = SheetName.COUNTERS.value

DOCUMENT_COLUMNS = (
    "DocumentID",
    "DocumentType",
    "DocumentNumber",
    "Status",
    "ChainID",
    "SourceDocumentID",
    "ArchivedAt",
    "Payload",
)
COUNTER_COLUMNS = ("DocumentType", "Prefix", "Year", "Month", "LastNumber")


@dataclass(frozen=True)
class ConfigSettings:
    """Settings read from ``config.ini``."""

    data_file: Path
    business_name: str
    schema_version: str
    default_payment_method: str = DEFAULT_PAYMENT_METHOD


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Return ``explicit_path`` unchanged, or search upward for ``config.ini``.

    The search starts in the current working directory and stops at the
    first ancestor holding a ``CONFIG_FILE_NAME`` file. An explicit path is
    not checked here; :func:`read_config` reports it if it is missing.

    Raises:
        FileNotFoundError: If no ancestor directory holds the file.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Read ``config_path`` into a ``ConfigParser`` without checking its keys.

    Args:
        config_path (Path): Location of ``config.ini``.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If no file exists at ``config_path``.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Pull the required entries out of ``parser``.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Output of :func:`read_config`.
        base_path (Path | None): Directory anchoring relative ``DataFile``
            entries.

    Returns:
        ConfigSettings: Immutable settings with an absolute data file path.

    Raises:
        KeyError: If one of the required sections or options is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        payment_method = parser.get("Defaults", "PaymentMethod")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_payment_method=payment_method,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the document workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: The loaded workbook.

    Raises:
        FileNotFoundError: If no workbook exists at ``data_file``.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand.

    Args:
        workbook (Workbook): Workbook to write.
        destination (Path): Target file; may differ from the file it was loaded from.
    """

    target = Path(destination).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(target)
    log.debug("Saved workbook to %s", target)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_documents(workbook: Workbook) -> Iterable[Document]:
    """Iterate over documents stored on the ``Documents`` worksheet.

    The header row and fully empty rows are skipped; every other row is
    decoded through :func:`deserialize_document`. A row that cannot be
    decoded, such as a legacy payload with no type and no type-specific
    date, is logged at WARNING and left out so the rest of the sheet stays
    readable.

    Args:
        workbook (Workbook): Workbook containing the ``Documents`` sheet.

    Yields:
        Document: One document per populated row.
    """

    sheet = workbook[DOCUMENTS_SHEET]
    for row_number, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if not any(cell is not None for cell in raw):
            continue
        try:
            document = deserialize_document(raw)
        except ValueError as exc:
            log.warning("Skipping unreadable document row %d (%s): %s", row_number, raw[0], exc)
            continue
        yield document


def iter_counters(workbook: Workbook) -> Iterable[SequenceCounter]:
    """Iterate over the ``Counters`` worksheet and yield typed counters."""

    sheet = workbook[COUNTERS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_counter(raw)


def append_document(workbook: Workbook, document: Document) -> None:
    """Append a document to the ``Documents`` worksheet.

    Args:
        workbook (Workbook): Workbook whose documents sheet should be modified.
        document (Document): Fully numbered document ready for persistence.

    Raises:
        ValueError: If a row with the same ``DocumentID`` already exists.
    """

    if locate_row(workbook, DOCUMENTS_SHEET, "DocumentID", document.id) is not None:
        raise ValueError(f"Document already exists: {document.id}")
    workbook[DOCUMENTS_SHEET].append(serialize_document(document))


def replace_document(workbook: Workbook, document: Document) -> None:
    """Overwrite the row holding ``document.id`` with the document's new state.

    Args:
        workbook (Workbook): Workbook containing the documents sheet.
        document (Document): Updated document.

    Raises:
        KeyError: If no row carries the document's id.
    """

    row_index = locate_row(workbook, DOCUMENTS_SHEET, "DocumentID", document.id)
    if row_index is None:
        raise KeyError(f"Document not found: {document.id}")

    sheet = workbook[DOCUMENTS_SHEET]
    for column, value in enumerate(serialize_document(document), start=1):
        sheet.cell(row=row_index, column=column, value=value)


def remove_document(workbook: Workbook, document_id: str) -> bool:
    """Delete the row holding ``document_id``.

    Returns:
        bool: ``True`` when a row was removed, ``False`` when none matched.
    """

    row_index = locate_row(workbook, DOCUMENTS_SHEET, "DocumentID", document_id)
    if row_index is None:
        return False
    workbook[DOCUMENTS_SHEET].delete_rows(row_index)
    return True


def upsert_counter(workbook: Workbook, counter: SequenceCounter) -> None:
    """Write ``counter`` over the row for its document type, appending when absent."""

    sheet = workbook[COUNTERS_SHEET]
    values = serialize_counter(counter)
    row_index = locate_row(workbook, COUNTERS_SHEET, "DocumentType", counter.document_type.value)
    if row_index is None:
        sheet.append(values)
        return
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Return the 1-based row whose ``key_column`` cell equals ``key_value``.

    Data rows only; ``None`` when nothing matches.

    Raises:
        KeyError: If ``key_column`` is not a header of ``sheet_name``.
    """

    sheet = workbook[sheet_name]
    headers = [cell.value for cell in sheet[1]]
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    position = headers.index(key_column)
    for row_number, values in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if values[position] == key_value:
            return row_number

    return None


def serialize_document(document: Document) -> list[object]:
    """Convert a document into the ``Documents`` column ordering.

    Returns:
        list[object]: Values ordered as :data:`DOCUMENT_COLUMNS`.
    """

    payload = json.dumps(document_to_dict(document), ensure_ascii=False, sort_keys=True)
    return [
        document.id,
        document.type.value,
        document.document_number,
        document.status.value,
        document.chain_id,
        document.source_document_id,
        document.archived_at,
        payload,
    ]


def deserialize_document(raw_row: Sequence[object]) -> Document:
    """Convert a raw worksheet row into a :class:`Document`.

    Only the ``Payload`` column is decoded; the other columns mirror it for
    readability in Excel.

    Raises:
        ValueError: If the payload is missing or is not valid JSON.
    """

    payload_raw = raw_row[DOCUMENT_COLUMNS.index("Payload")]
    if not payload_raw:
        raise ValueError(f"Document row {raw_row[0]!r} has no payload")
    payload: dict[str, Any] = json.loads(str(payload_raw))
    payload.setdefault("id", raw_row[0])
    return document_from_dict(payload)


def serialize_counter(counter: SequenceCounter) -> list[object]:
    return [
        counter.document_type.value,
        counter.prefix,
        counter.year,
        counter.month,
        counter.last_number,
    ]


def deserialize_counter(raw_row: Sequence[object]) -> SequenceCounter:
    """Convert a raw ``Counters`` row into a :class:`SequenceCounter`.

    Blank year or month cells fall back to the current month.
    """

    document_type, prefix, year, month, last_number = raw_row[: len(COUNTER_COLUMNS)]
    today = date.today()
    return SequenceCounter(
        document_type=DocumentType(str(document_type)),
        prefix=str(prefix),
        year=int(year) if year is not None else today.year,
        month=int(month) if month is not None else today.month,
        last_number=int(last_number) if last_number is not None else 0,
    )
