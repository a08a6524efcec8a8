"""Command-line entry points for the recycling ledger toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the filter state and command objects consumed by
the ledger and business layers, and printing the results. Keeping the CLI
thin ensures the same parser configuration can be reused by tests, scripts,
or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import PAGE_SIZE_OPTIONS, Direction, LocationType, StoreBackend, TransactionType
from .ledger import ANY, DateRange, FilterState, Specific
from .rest_store import PostgrestRecordStore
from .session import LedgerSession, LedgerView


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="recycle-ledger",
        description="Command-line tools for the recycling operation's ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    read_specs = register_read_commands(subparsers)
    write_specs = register_write_commands(subparsers)
    return build_command_table([*read_specs.values(), *write_specs.values()])


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as the ledger listing and totals."""
    specs = {
        "transactions": register_transactions_command(subparsers),
        "totals": register_totals_command(subparsers),
        "bank-accounts": register_bank_accounts_command(subparsers),
        "locations": register_locations_command(subparsers),
        "materials": register_materials_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands for locations and materials."""
    specs = {
        "add-location": register_add_location_command(subparsers),
        "update-location": register_update_location_command(subparsers),
        "delete-location": register_delete_location_command(subparsers),
        "add-material": register_add_material_command(subparsers),
        "update-material": register_update_material_command(subparsers),
        "delete-material": register_delete_material_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    """Attach the ledger filter flags shared by ``transactions`` and ``totals``."""
    parser.add_argument("--search", default="", help="Match description, type, or reference.")
    parser.add_argument("--start", type=date.fromisoformat, default=None, help="Start date (YYYY-MM-DD).")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="End date (YYYY-MM-DD).")
    parser.add_argument("--type", dest="transaction_type", choices=[member.value for member in TransactionType])
    parser.add_argument("--direction", choices=[member.value for member in Direction])
    account = parser.add_mutually_exclusive_group()
    account.add_argument("--account", default=None, help="Bank account id, taken literally.")
    account.add_argument("--cash", action="store_true", help="Only entries paid without a bank account.")


def add_location_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument(
        "--type",
        dest="location_type",
        choices=[member.value for member in LocationType],
        default=LocationType.LSGI.value if required else None,
    )
    parser.add_argument("--district", default=None)
    parser.add_argument("--address", default=None)
    parser.add_argument("--contact-person", default=None)
    parser.add_argument("--contact-number", default=None)


def register_transactions_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transactions``."""
    name = "transactions"
    help_text = "List ledger entries, newest first, one page at a time."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_filter_arguments(parser)
        parser.add_argument("--page", type=int, default=1, help="Page number, starting at 1.")
        parser.add_argument("--page-size", type=int, choices=PAGE_SIZE_OPTIONS, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transactions)


def register_totals_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``totals``."""
    name = "totals"
    help_text = "Display total credits, debits, and net balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_totals)


def register_bank_accounts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bank-accounts``."""
    name = "bank-accounts"
    help_text = "List bank accounts by name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bank_accounts)


def register_locations_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``locations``."""
    name = "locations"
    help_text = "List locations, optionally filtered by name, address, or contact."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_locations)


def register_materials_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``materials``."""
    name = "materials"
    help_text = "List materials, optionally filtered by name or description."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_materials)


def register_add_location_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-location``."""
    name = "add-location"
    help_text = "Register a new location in the Locations sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_location_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_location, mutates=True)


def register_update_location_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-location``."""
    name = "update-location"
    help_text = "Edit an existing location; omitted fields keep their values."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--location-id", required=True)
        add_location_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_location, mutates=True)


def register_delete_location_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-location``."""
    name = "delete-location"
    help_text = "Delete a location that no transaction references."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--location-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_location, mutates=True)


def register_add_material_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-material``."""
    name = "add-material"
    help_text = "Register a new material in the Materials sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_material, mutates=True)


def register_update_material_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-material``."""
    name = "update-material"
    help_text = "Edit an existing material; omitted fields keep their values."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--material-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_material, mutates=True)


def register_delete_material_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-material``."""
    name = "delete-material"
    help_text = "Delete a material that no transaction references."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--material-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_material, mutates=True)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def build_record_store(context: core_logic.RuntimeContext) -> core_logic.RecordStore:
    """Pick the record store configured under ``[Store] Backend``."""
    if context.settings.store_backend is StoreBackend.POSTGREST:
        return PostgrestRecordStore.from_config(context.settings)
    return core_logic.WorkbookRecordStore(context)


def open_session(context: core_logic.RuntimeContext, store: Optional[core_logic.RecordStore] = None) -> LedgerSession:
    """Create a session from the configured store and load it once.

    Raises:
        core_logic.FetchFailure: If the initial load did not succeed.
    """
    settings = context.settings
    session = LedgerSession(
        store if store is not None else build_record_store(context),
        page_size=settings.default_page_size,
        currency_symbol=settings.currency_symbol,
        grouping=settings.digit_grouping,
    )
    view = session.refresh()
    if view.alert is not None:
        raise core_logic.FetchFailure(view.alert.message)
    return session


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    return resolve_command(args, command_table).execute(context, args)


def resolve_command(args: argparse.Namespace, command_table: Mapping[str, CommandSpec]) -> CommandSpec:
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec


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


def translate_account(value: Optional[str], cash: bool = False):
    """Map ``--account``/``--cash`` onto a bank account selector.

    Any ``--account`` value is an id, so an account named "cash" stays
    selectable.
    """
    if cash:
        return Specific(None)
    if value is None:
        return ANY
    return Specific(value.strip())


def translate_filters(args: argparse.Namespace) -> FilterState:
    """Translate CLI args into a ledger filter state."""
    transaction_type = getattr(args, "transaction_type", None)
    direction = getattr(args, "direction", None)
    return FilterState(
        search=getattr(args, "search", "") or "",
        date_range=DateRange(getattr(args, "start", None), getattr(args, "end", None)),
        transaction_type=Specific(TransactionType(transaction_type)) if transaction_type else ANY,
        direction=Specific(Direction(direction)) if direction else ANY,
        bank_account=translate_account(getattr(args, "account", None), getattr(args, "cash", False)),
    )


def apply_filter_state(session: LedgerSession, state: FilterState) -> LedgerView:
    """Push every field of ``state`` through the session setters."""
    session.set_search(state.search)
    session.set_date_range(state.date_range.start, state.date_range.end)
    session.set_transaction_type(state.transaction_type)
    session.set_direction(state.direction)
    return session.set_bank_account(state.bank_account)


def translate_location(args: argparse.Namespace) -> core_logic.LocationCommand:
    """Translate CLI args into a location command object."""
    return core_logic.LocationCommand(
        name=args.name,
        location_type=args.location_type,
        district=args.district,
        address=args.address,
        contact_person=args.contact_person,
        contact_number=args.contact_number,
    )


def translate_location_update(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> core_logic.LocationCommand:
    """Merge the supplied flags over the stored location."""
    current = core_logic.get_location(context, args.location_id)
    return core_logic.LocationCommand(
        name=_pick(args.name, current.name),
        location_type=_pick(args.location_type, current.location_type),
        district=_pick(args.district, current.district),
        address=_pick(args.address, current.address),
        contact_person=_pick(args.contact_person, current.contact_person),
        contact_number=_pick(args.contact_number, current.contact_number),
    )


def translate_material(args: argparse.Namespace) -> core_logic.MaterialCommand:
    """Translate CLI args into a material command object."""
    return core_logic.MaterialCommand(name=args.name, description=args.description)


def translate_material_update(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> core_logic.MaterialCommand:
    current = core_logic.get_material(context, args.material_id)
    return core_logic.MaterialCommand(
        name=_pick(args.name, current.name),
        description=_pick(args.description, current.description),
    )


def _pick(supplied, stored):
    return stored if supplied is None else supplied


def run_transactions(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one page of the filtered ledger."""
    session = open_session(context)
    apply_filter_state(session, translate_filters(args))
    if args.page_size is not None:
        session.set_page_size(args.page_size)
    view = session.set_page(args.page - 1)
    print_transactions(view)
    return 0


def run_totals(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print credit, debit, and net totals for the filtered ledger."""
    session = open_session(context)
    view = apply_filter_state(session, translate_filters(args))
    print_totals(view)
    return 0


def run_bank_accounts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for account in build_record_store(context).fetch_bank_accounts():
        print(f"{account.bank_account_id}\t{account.name}")
    return 0


def run_locations(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for location in core_logic.list_locations(context, search=args.search):
        print(
            "\t".join(
                value or ""
                for value in (
                    location.location_id,
                    location.name,
                    location.location_type,
                    location.district,
                    location.contact_person,
                    location.contact_number,
                )
            )
        )
    return 0


def run_materials(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for material in core_logic.list_materials(context, search=args.search):
        print(f"{material.material_id}\t{material.name}\t{material.description or ''}")
    return 0


def run_add_location(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-location workflow in the BLL."""
    record = core_logic.add_location(context, translate_location(args))
    print(f"Added location {record.location_id}: {record.name}")
    return 0


def run_update_location(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-location workflow in the BLL."""
    record = core_logic.update_location(context, args.location_id, translate_location_update(context, args))
    print(f"Updated location {record.location_id}: {record.name}")
    return 0


def run_delete_location(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-location workflow in the BLL."""
    core_logic.delete_location(context, args.location_id, store=build_record_store(context))
    print(f"Deleted location {args.location_id}")
    return 0


def run_add_material(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-material workflow in the BLL."""
    record = core_logic.add_material(context, translate_material(args))
    print(f"Added material {record.material_id}: {record.name}")
    return 0


def run_update_material(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-material workflow in the BLL."""
    record = core_logic.update_material(context, args.material_id, translate_material_update(context, args))
    print(f"Updated material {record.material_id}: {record.name}")
    return 0


def run_delete_material(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-material workflow in the BLL."""
    core_logic.delete_material(context, args.material_id, store=build_record_store(context))
    print(f"Deleted material {args.material_id}")
    return 0


def print_transactions(view: LedgerView) -> None:
    header = ("Date", "Type", "Reference", "Description", "Account", "Debit", "Credit")
    print(" | ".join(header))
    for row in view.rows:
        print(
            " | ".join(
                (row.date, row.transaction_type, row.reference_type, row.description, row.account, row.debit, row.credit)
            )
        )
    if not view.rows:
        print("No transactions found")
    print(f"Page {view.page_index + 1} of {view.page_count} ({view.total_count} transactions, {view.page_size} per page)")


def print_totals(view: LedgerView) -> None:
    print(f"Total Credits: {view.formatted_totals.credits}")
    print(f"Total Debits:  {view.formatted_totals.debits}")
    print(f"Net Balance:   {view.formatted_totals.net}")
    if view.totals.anomalies:
        print(f"Excluded {len(view.totals.anomalies)} malformed transaction(s):")
        for anomaly in view.totals.anomalies:
            print(f"  {anomaly.transaction_id}: {anomaly.reason}")


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.FetchFailure):
        log.error("%s", error)
        return 4
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
    try:
        spec = resolve_command(args, command_table)
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = spec.execute(context, args)
        if exit_code == 0 and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
