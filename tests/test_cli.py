"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping
from unittest.mock import Mock

import pytest

from pacioli import cli, core_logic
from pacioli.constants import AUTO_NUMBER, DocumentStatus, DocumentType
from pacioli.errors import ChainIntegrityError, DocumentNotFound, DuplicateLink
from pacioli.models import LineItem
from pacioli.tax import TaxBreakdown, TaxRule


WRITE_COMMANDS = {
    "issue",
    "link",
    "revise",
    "status",
    "delete",
    "archive-chain",
    "delete-chain",
}

READ_COMMANDS = {
    "list",
    "chain",
    "tax",
}


def _parse(*argv: str) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(list(argv))


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pacioli"
    assert "invoice" in (parser.description or "")


def test_configure_subcommands_registers_all_commands(cli_parser):
    """configure_subcommands should wire every write and read sub-command."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert callable(spec.execute)
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_returns_command_specs(subparsers_action):
    """register_read_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert READ_COMMANDS <= set(subparsers_action.choices)


def test_issue_command_parses_repeated_items():
    """issue should accept several --item options and the tax switches."""

    args = _parse(
        "issue",
        "--type",
        "quotation",
        "--item",
        "Logo|1|job|1000",
        "--item",
        "Banner|2|piece|150.50",
        "--vat",
        "0.07",
        "--gross-up",
        "--valid-until",
        "2025-11-30",
    )

    assert args.command == "issue"
    assert args.items == ["Logo|1|job|1000", "Banner|2|piece|150.50"]
    assert args.number == AUTO_NUMBER
    assert args.gross_up is True
    assert args.wht is None


def test_link_command_restricts_targets():
    """link only accepts invoice and receipt targets."""

    with pytest.raises(SystemExit):
        _parse("link", "--source-id", "quotation-QT-1", "--target", "quotation")


def test_status_command_restricts_statuses():
    """status only accepts known statuses."""

    args = _parse("status", "--document-id", "invoice-INV-1", "--status", "paid")
    assert args.status == "paid"

    with pytest.raises(SystemExit):
        _parse("status", "--document-id", "invoice-INV-1", "--status", "lost")


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_load_runtime_context_supports_defaults(monkeypatch, tmp_path):
    """load_runtime_context should resolve config.ini from the working directory."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == tmp_path / "config.ini"
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.chdir(tmp_path)
    assert cli.load_runtime_context() is sentinel_context


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(context):
    """dispatch_command should call the executor associated with the command."""

    execute = Mock(return_value=0)
    spec = cli.CommandSpec("alpha", "help", lambda s: s.add_parser("alpha"), execute)
    args = argparse.Namespace(command="alpha")

    assert cli.dispatch_command(context, args, {"alpha": spec}) == 0
    execute.assert_called_once_with(context, args)


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should index specs by their command names."""

    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_parse_item_reads_pipe_separated_fields():
    """parse_item should split the four item fields and parse numbers."""

    item = cli.parse_item(" Banner | 2 | piece | 150.50 ")

    assert item == LineItem("Banner", Decimal("2"), "piece", Decimal("150.50"))


@pytest.mark.parametrize("raw", ["Logo|1|job", "Logo|one|job|1000", "Logo|1|job|cheap"])
def test_parse_item_rejects_malformed_items(raw):
    """Items with missing fields or non-numeric values are rejected."""

    with pytest.raises(ValueError):
        cli.parse_item(raw)


def test_translate_tax_config_enables_supplied_rates():
    """Only the rates given on the command line are enabled."""

    config = cli.translate_tax_config(argparse.Namespace(vat="0.07", wht=None, gross_up=True))

    assert config.vat == TaxRule(enabled=True, rate=Decimal("0.07"))
    assert config.withholding == TaxRule()
    assert config.gross_up is True


def test_translate_issue_returns_issue_command():
    """translate_issue should build a typed IssueCommand."""

    args = _parse(
        "issue",
        "--type",
        "receipt",
        "--number",
        "REC-9",
        "--item",
        "Logo|1|job|1000",
        "--wht",
        "0.03",
        "--payment-date",
        "2025-10-30",
        "--payment-method",
        "Cash",
        "--paid-amount",
        "970",
        "--payment-term",
        "Due on receipt",
    )

    command = cli.translate_issue(args)

    assert command.document_type is DocumentType.RECEIPT
    assert command.document_number == "REC-9"
    assert command.items == (LineItem("Logo", Decimal("1"), "job", Decimal("1000")),)
    assert command.tax_config.withholding.enabled is True
    assert command.paid_amount == Decimal("970")
    assert command.payment_terms == ("Due on receipt",)


def test_translate_link_keeps_only_supplied_changes():
    """translate_link should pass through only the edits the user supplied."""

    args = _parse("link", "--source-id", "invoice-INV-1", "--target", "receipt", "--paid-amount", "500")

    command = cli.translate_link(args)

    assert command.source_id == "invoice-INV-1"
    assert command.target_type is DocumentType.RECEIPT
    assert command.changes == {"paid_amount": Decimal("500")}


def test_translate_revise_replaces_items_when_given():
    """translate_revise should only include items when --item was used."""

    with_items = cli.translate_revise(_parse("revise", "--document-id", "q", "--item", "Logo|2|job|900"))
    without_items = cli.translate_revise(_parse("revise", "--document-id", "q", "--notes", "v2"))

    assert with_items.changes == {"items": (LineItem("Logo", Decimal("2"), "job", Decimal("900")),)}
    assert without_items.changes == {"notes": "v2"}


def test_format_document_renders_tab_separated_line(make_document):
    """format_document should show id, type, number, status, total, chain, and flags."""

    document = make_document(
        number="QT-001-R1",
        is_revision=True,
        chain_id="chain-1",
        tax_breakdown=TaxBreakdown(Decimal("1000"), Decimal("70"), Decimal("30"), Decimal("1040.00")),
    )

    assert cli.format_document(document) == "\t".join(
        ["quotation-QT-001-R1", "quotation", "QT-001-R1", "pending", "1040.00", "chain-1", "revision"]
    )
    assert cli.format_document(make_document()).split("\t")[4:] == ["", "-"]


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_link_invokes_bll(context, monkeypatch, make_document, capsys):
    """run_link should translate args and print the created document."""

    child = make_document(DocumentType.INVOICE, "INV-202510-001")
    issue_linked = Mock(return_value=child)
    monkeypatch.setattr(core_logic, "issue_linked_document", issue_linked)

    exit_code = cli.run_link(context, _parse("link", "--source-id", "quotation-QT-001", "--target", "invoice"))

    assert exit_code == 0
    (called_context, command), _ = issue_linked.call_args
    assert called_context is context
    assert command.source_id == "quotation-QT-001"
    assert "INV-202510-001" in capsys.readouterr().out


def test_run_status_passes_enum(context, monkeypatch, make_document):
    """run_status should hand the BLL a DocumentStatus."""

    update = Mock(return_value=make_document(status=DocumentStatus.APPROVED))
    monkeypatch.setattr(core_logic, "update_status", update)

    cli.run_status(context, _parse("status", "--document-id", "quotation-QT-001", "--status", "approved"))

    update.assert_called_once_with(context, "quotation-QT-001", DocumentStatus.APPROVED)


def test_run_delete_reports_absent_documents(context, monkeypatch, capsys):
    """run_delete should tell the user when nothing was deleted."""

    monkeypatch.setattr(core_logic, "delete_document", Mock(return_value=False))

    assert cli.run_delete(context, _parse("delete", "--document-id", "invoice-INV-404")) == 0
    assert "already absent" in capsys.readouterr().out


def test_run_tax_report_prints_gross_up(context, capsys):
    """The tax command prints every line including the gross-up amount."""

    args = _parse("tax", "--amount", "1000", "--vat", "0.07", "--wht", "0.03", "--gross-up")

    assert cli.run_tax_report(context, args) == 0

    output = capsys.readouterr().out.splitlines()
    assert output == [
        "Subtotal: 961.54",
        "VAT: 67.31",
        "Withholding: 28.85",
        "Total: 1000.00",
        "Gross-up: -38.46",
    ]


def test_run_list_report_maps_archived_choice(context, monkeypatch):
    """--archived only should request archived documents exclusively."""

    list_documents = Mock(return_value=[])
    monkeypatch.setattr(core_logic, "list_documents", list_documents)

    cli.run_list_report(context, _parse("list", "--archived", "only"))

    list_documents.assert_called_once_with(context, include_archived=False, only_archived=True)


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (DuplicateLink("already linked"), 2),
        (DocumentNotFound("missing document"), 2),
        (FileNotFoundError("missing"), 3),
        (ChainIntegrityError("corrupt"), 1),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_workbook_saves_changes(context, monkeypatch):
    """persist_workbook should request the data layer to save the workbook."""

    persist = Mock()
    monkeypatch.setattr(cli.core_logic, "persist_context", persist)
    cli.persist_workbook(context)
    persist.assert_called_once_with(context)


def test_persist_workbook_handles_read_only_workbooks(context, monkeypatch):
    """persist_workbook should handle read-only workbook scenarios gracefully."""

    def fake_persist(_: core_logic.RuntimeContext) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)
    with pytest.raises(RuntimeError, match="read-only"):
        cli.persist_workbook(context)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, context):
    """main should execute the command parsed from argv and persist."""

    parser = _stub_parser(command="issue")
    command_table = {"issue": cli.CommandSpec("issue", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    called = {}

    def fake_dispatch(ctx: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["context"] = ctx
        called["args"] = args
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: called.setdefault("persisted", ctx))

    assert cli.main(["issue"]) == 0
    assert called["context"] is context
    assert called["persisted"] is context
    assert called["args"].command == "issue"


def test_main_handles_bll_errors(monkeypatch, context):
    """main should surface business rule violations as non-zero exits without saving."""

    parser = _stub_parser(command="link")
    command_table = {"link": cli.CommandSpec("link", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    def fake_dispatch(*_: object) -> int:
        raise DuplicateLink("already linked")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    persist = Mock()
    monkeypatch.setattr(cli, "persist_workbook", persist)

    assert cli.main(["link"]) == 2
    persist.assert_not_called()


def test_main_runs_tax_without_workbook(monkeypatch, capsys):
    """The tax command needs no config or workbook and saves nothing."""

    load = Mock(side_effect=FileNotFoundError("config.ini"))
    persist = Mock()
    monkeypatch.setattr(cli, "load_runtime_context", load)
    monkeypatch.setattr(cli, "persist_workbook", persist)

    assert cli.main(["tax", "--amount", "1000", "--vat", "0.07", "--wht", "0.03"]) == 0

    assert capsys.readouterr().out.splitlines()[-1] == "Total: 1040.00"
    load.assert_not_called()
    persist.assert_not_called()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
