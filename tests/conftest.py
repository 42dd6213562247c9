"""Shared pytest fixtures and utilities for Pacioli tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Import from src/ without an editable install.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pacioli import cli, constants, core_logic, data_manager  # noqa: E402
from pacioli.constants import DocumentStatus, DocumentType  # noqa: E402
from pacioli.models import Document, LineItem  # noqa: E402
from pacioli.setup_excel import create_master_workbook  # noqa: E402
from pacioli.tax import TaxConfig, TaxRule  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_PAYMENT_METHOD = "Bank Transfer"
FIXED_NOW = datetime(2025, 10, 30, 9, 30, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "PaymentMethod = {payment_method}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Paths and values written into one temporary config.ini."""

    directory: Path
    config_path: Path
    workbook_path: Path
    payment_method: str
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Put sys.path back the way the session found it."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized document workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "documents.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, today=FIXED_NOW.date(), overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Write a config.ini next to a fresh workbook and describe both."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Studio",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        payment_method: str = DEFAULT_PAYMENT_METHOD,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                payment_method=payment_method,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            payment_method=payment_method,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Path of a config.ini pointing at a fresh workbook."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Runtime context backed by a real temporary workbook."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_document() -> Callable[..., Document]:
    """Build valid documents with sensible per-type defaults."""

    def _make(document_type: DocumentType = DocumentType.QUOTATION, number: str = "QT-001", **fields) -> Document:
        defaults = {
            "id": f"{document_type.value}-{number}",
            "type": document_type,
            "document_number": number,
            "issue_date": "2025-10-01",
            "items": (LineItem("Design work", Decimal("1"), "job", Decimal("1000")),),
            "tax_config": TaxConfig(
                vat=TaxRule(enabled=True, rate=Decimal("0.07")),
                withholding=TaxRule(enabled=True, rate=Decimal("0.03")),
            ),
        }
        if document_type is DocumentType.QUOTATION:
            defaults["valid_until"] = "2025-10-31"
        elif document_type is DocumentType.INVOICE:
            defaults["due_date"] = "2025-11-15"
        else:
            defaults.update(
                payment_date="2025-11-20",
                payment_method=DEFAULT_PAYMENT_METHOD,
                paid_amount=Decimal("1040.00"),
                status=DocumentStatus.PAID,
            )
        defaults.update(fields)
        return Document(**defaults)

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Bare parser for exercising the register_* helpers."""

    return argparse.ArgumentParser(prog="pacioli", description="Pacioli CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Subparser action hanging off ``cli_parser``."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Three distinct no-op commands."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Settings for contexts whose workbook is a Mock."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "documents.xlsx",
        business_name="Test Studio",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_payment_method=DEFAULT_PAYMENT_METHOD,
    )


@pytest.fixture
def workbook() -> Mock:
    """Stand-in workbook; the DAL functions are patched in these tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """RuntimeContext built from ``settings`` and the Mock workbook."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Freeze ``datetime.now`` as seen by core_logic."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
