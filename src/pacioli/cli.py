"""Command-line entry points for the Pacioli document chain.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin lets tests and scripts reuse the same parser
configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import AUTO_NUMBER, DocumentStatus, DocumentType
from .errors import BusinessRuleViolation
from .models import Document, LineItem
from .tax import TaxConfig, TaxRule, calculate_tax_breakdown


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    needs_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pacioli",
        description="Issue and track quotation, invoice, and receipt chains.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as issuing and linking documents."""
    specs = {
        "issue": register_issue_command(subparsers),
        "link": register_link_command(subparsers),
        "revise": register_revise_command(subparsers),
        "status": register_status_command(subparsers),
        "delete": register_delete_command(subparsers),
        "archive-chain": register_archive_chain_command(subparsers),
        "delete-chain": register_delete_chain_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and chain views."""
    specs = {
        "list": register_list_command(subparsers),
        "chain": register_chain_command(subparsers),
        "tax": register_tax_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_tax_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--vat", default=None, help="VAT rate as a fraction, e.g. 0.07.")
    parser.add_argument("--wht", default=None, help="Withholding rate as a fraction, e.g. 0.03.")
    parser.add_argument(
        "--gross-up",
        action="store_true",
        help="Treat the item subtotal as the net amount to receive.",
    )


def _add_item_argument(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        default=None,
        required=required,
        metavar="DESCRIPTION|QUANTITY|UNIT|UNIT_PRICE",
        help="Line item; repeat for several items.",
    )


def register_issue_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``issue``."""
    name = "issue"
    help_text = "Issue a new quotation, invoice, or receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--type", dest="document_type", choices=[member.value for member in DocumentType], required=True)
        parser.add_argument("--number", default=AUTO_NUMBER, help="Document number, or 'auto'.")
        parser.add_argument("--issue-date", default=None)
        _add_item_argument(parser, required=True)
        _add_tax_arguments(parser)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--freelancer-id", default=None)
        parser.add_argument("--notes", default=None)
        parser.add_argument("--payment-term", dest="payment_terms", action="append", default=None)
        parser.add_argument("--valid-until", default=None)
        parser.add_argument("--due-date", default=None)
        parser.add_argument("--payment-date", default=None)
        parser.add_argument("--payment-method", default=None)
        parser.add_argument("--paid-amount", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_issue)


def register_link_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``link``."""
    name = "link"
    help_text = "Create the next chain document (quotation to invoice, invoice to receipt)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--source-id", required=True)
        parser.add_argument(
            "--target",
            dest="target_type",
            choices=[DocumentType.INVOICE.value, DocumentType.RECEIPT.value],
            required=True,
        )
        parser.add_argument("--number", default=AUTO_NUMBER)
        parser.add_argument("--issue-date", default=None)
        parser.add_argument("--due-date", default=None)
        parser.add_argument("--payment-date", default=None)
        parser.add_argument("--payment-method", default=None)
        parser.add_argument("--paid-amount", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_link)


def register_revise_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``revise``."""
    name = "revise"
    help_text = "Re-issue a document as its next revision."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        _add_item_argument(parser, required=False)
        parser.add_argument("--issue-date", default=None)
        parser.add_argument("--valid-until", default=None)
        parser.add_argument("--due-date", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_revise)


def register_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``status``."""
    name = "status"
    help_text = "Change the status of a document."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in DocumentStatus], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_status)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a document and update the documents that reference it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_archive_chain_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``archive-chain``."""
    name = "archive-chain"
    help_text = "Archive every document of a chain."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--chain-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_archive_chain)


def register_delete_chain_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-chain``."""
    name = "delete-chain"
    help_text = "Delete every document of a chain."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--chain-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_chain)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "List documents."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--archived",
            choices=["exclude", "include", "only"],
            default="exclude",
            help="How to treat archived documents.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_report)


def register_chain_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``chain``."""
    name = "chain"
    help_text = "Display the chain a document belongs to."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_chain_report)


def register_tax_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tax``."""
    name = "tax"
    help_text = "Compute a tax breakdown for an amount."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--amount", required=True)
        _add_tax_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_tax_report,
        needs_context=False,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, label: str) -> Decimal:
    """Parse a decimal argument, naming the option in the error."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{label} must be a number, got '{raw}'") from exc


def parse_item(raw: str) -> LineItem:
    """Parse ``DESCRIPTION|QUANTITY|UNIT|UNIT_PRICE`` into a :class:`LineItem`."""
    parts = [part.strip() for part in raw.split("|")]
    if len(parts) != 4:
        raise ValueError(f"Item must look like DESCRIPTION|QUANTITY|UNIT|UNIT_PRICE, got '{raw}'")
    description, quantity, unit, unit_price = parts
    return LineItem(
        description=description,
        quantity=parse_decimal(quantity, "Item quantity"),
        unit=unit,
        unit_price=parse_decimal(unit_price, "Item unit price"),
    )


def translate_tax_config(args: argparse.Namespace) -> TaxConfig:
    """Translate ``--vat``/``--wht``/``--gross-up`` into a :class:`TaxConfig`."""
    vat = getattr(args, "vat", None)
    wht = getattr(args, "wht", None)
    return TaxConfig(
        vat=TaxRule(enabled=True, rate=parse_decimal(vat, "VAT rate")) if vat is not None else TaxRule(),
        withholding=TaxRule(enabled=True, rate=parse_decimal(wht, "Withholding rate")) if wht is not None else TaxRule(),
        gross_up=bool(getattr(args, "gross_up", False)),
    )


def _optional_amount(raw: Optional[str]) -> Optional[Decimal]:
    return parse_decimal(raw, "Paid amount") if raw is not None else None


def _present(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def translate_issue(args: argparse.Namespace) -> core_logic.IssueCommand:
    """Translate CLI args into an issue command object."""
    return core_logic.IssueCommand(
        document_type=DocumentType(args.document_type),
        items=tuple(parse_item(raw) for raw in args.items),
        tax_config=translate_tax_config(args),
        document_number=args.number,
        issue_date=args.issue_date,
        customer_id=args.customer_id,
        freelancer_id=args.freelancer_id,
        notes=args.notes,
        payment_terms=tuple(args.payment_terms or ()),
        valid_until=args.valid_until,
        due_date=args.due_date,
        payment_date=args.payment_date,
        payment_method=args.payment_method,
        paid_amount=_optional_amount(args.paid_amount),
    )


def translate_link(args: argparse.Namespace) -> core_logic.LinkCommand:
    """Translate CLI args into a link command object."""
    changes = _present(
        {
            "issue_date": args.issue_date,
            "due_date": args.due_date,
            "payment_date": args.payment_date,
            "payment_method": args.payment_method,
            "paid_amount": _optional_amount(args.paid_amount),
            "notes": args.notes,
        }
    )
    return core_logic.LinkCommand(
        source_id=args.source_id,
        target_type=DocumentType(args.target_type),
        document_number=args.number,
        changes=changes,
    )


def translate_revise(args: argparse.Namespace) -> core_logic.RevisionCommand:
    """Translate CLI args into a revision command object."""
    items = tuple(parse_item(raw) for raw in args.items) if args.items else None
    changes = _present(
        {
            "items": items,
            "issue_date": args.issue_date,
            "valid_until": args.valid_until,
            "due_date": args.due_date,
            "notes": args.notes,
        }
    )
    return core_logic.RevisionCommand(document_id=args.document_id, changes=changes)


def format_document(document: Document) -> str:
    """Render one document as a single tab-separated line."""
    total = document.tax_breakdown.total if document.tax_breakdown is not None else ""
    flags: List[str] = []
    if document.is_revision:
        flags.append("revision")
    if document.is_archived:
        flags.append("archived")
    return "\t".join(
        [
            document.id,
            document.type.value,
            document.document_number,
            document.status.value,
            str(total),
            document.chain_id or "-",
            ",".join(flags),
        ]
    ).rstrip()


def run_issue(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the issue workflow via the BLL."""
    command = translate_issue(args)
    document = core_logic.issue_document(context, command)
    print(format_document(document))
    return 0


def run_link(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the link workflow via the BLL."""
    command = translate_link(args)
    document = core_logic.issue_linked_document(context, command)
    print(format_document(document))
    return 0


def run_revise(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the revision workflow via the BLL."""
    command = translate_revise(args)
    document = core_logic.revise_document(context, command)
    print(format_document(document))
    return 0


def run_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the status change workflow via the BLL."""
    document = core_logic.update_status(context, args.document_id, DocumentStatus(args.status))
    print(format_document(document))
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete workflow via the BLL."""
    removed = core_logic.delete_document(context, args.document_id)
    print(f"Deleted {args.document_id}" if removed else f"{args.document_id} was already absent")
    return 0


def run_archive_chain(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the archive workflow via the BLL."""
    plan = core_logic.archive_chain(context, args.chain_id)
    print(f"Archived {len(plan.archived_ids)} document(s) in {plan.chain_id}")
    return 0


def run_delete_chain(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the chain deletion workflow via the BLL."""
    plan = core_logic.delete_chain(context, args.chain_id)
    print(f"Deleted {len(plan.deleted_ids)} document(s) in {plan.chain_id}")
    return 0


def run_list_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the document listing workflow."""
    documents = core_logic.list_documents(
        context,
        include_archived=args.archived == "include",
        only_archived=args.archived == "only",
    )
    for document in documents:
        print(format_document(document))
    return 0


def run_chain_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the chain view workflow."""
    chain = core_logic.get_chain(context, args.document_id)
    print(f"Chain: {chain.chain_id or '-'}")
    for document in chain.documents:
        print(format_document(document))
    return 0


def run_tax_report(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Execute the tax breakdown workflow; no workbook is involved."""
    breakdown = calculate_tax_breakdown(parse_decimal(args.amount, "Amount"), translate_tax_config(args))
    print(f"Subtotal: {breakdown.subtotal}")
    print(f"VAT: {breakdown.vat_amount}")
    print(f"Withholding: {breakdown.withholding_amount}")
    print(f"Total: {breakdown.total}")
    if breakdown.gross_up_amount is not None:
        print(f"Gross-up: {breakdown.gross_up_amount}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    spec = command_table.get(getattr(args, "command", None))
    try:
        if spec is not None and not spec.needs_context:
            return dispatch_command(None, args, command_table)
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
