"""Bootstrap the Pacioli workbook.

Runs as the ``pacioli-setup`` script and is imported by the test fixtures,
so the sheet layout lives in one place.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path
from typing import Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .constants import DocumentType, SheetName
from .numbering import default_counter


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.DOCUMENTS.value: data_manager.DOCUMENT_COLUMNS,
    SheetName.COUNTERS.value: data_manager.COUNTER_COLUMNS,
}

CONFIG_FILE = "config.ini"


def _write_header(worksheet: Worksheet, columns: Sequence[str]) -> None:
    header_font = Font(bold=True)
    worksheet.append(list(columns))
    for cell in worksheet[1]:
        cell.font = header_font


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    today: Optional[date] = None,
    overwrite: bool = False,
) -> Path:
    """Create the document workbook at ``destination``.

    Every sheet gets a bold header row, and the ``Counters`` sheet is seeded
    with one zeroed counter per document type for the current month.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    target = Path(destination).expanduser().resolve()
    if target.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    # openpyxl always starts with one blank sheet
    workbook.remove(workbook.worksheets[0])
    for sheet_name, columns in sheet_columns.items():
        _write_header(workbook.create_sheet(title=sheet_name), columns)

    if SheetName.COUNTERS.value in sheet_columns:
        seed_day = today or date.today()
        for document_type in DocumentType:
            data_manager.upsert_counter(workbook, default_counter(document_type, seed_day))

    workbook.save(target)
    log.info("Created workbook at %s", target)
    return target


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pacioli-setup", description="Create the Pacioli document workbook.")
    parser.add_argument("--config", default=CONFIG_FILE, help="config.ini naming the workbook (default: %(default)s)")
    parser.add_argument("--force", action="store_true", help="Replace an existing workbook.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``pacioli-setup``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Pacioli setup using {config_path}")

    try:
        created = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Cannot write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Workbook ready at {created}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
