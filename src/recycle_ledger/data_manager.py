"""Data access layer for the recycling ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Filtering, aggregation, and business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual reference-data rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY_SYMBOL,
    DEFAULT_PAGE_SIZE,
    PAGE_SIZE_OPTIONS,
    DigitGrouping,
    SheetName,
    StoreBackend,
)


CONFIG_FILE_NAME = "config.ini"
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
BANK_ACCOUNTS_SHEET = SheetName.BANK_ACCOUNTS.value
LOCATIONS_SHEET = SheetName.LOCATIONS.value
MATERIALS_SHEET = SheetName.MATERIALS.value

_TRUE_STRINGS = {"true", "1", "yes", "y"}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    organisation_name: str
    schema_version: str
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    digit_grouping: DigitGrouping = DigitGrouping.INDIAN
    default_page_size: int = DEFAULT_PAGE_SIZE
    store_backend: StoreBackend = StoreBackend.WORKBOOK
    store_url: Optional[str] = None
    api_key_variable: Optional[str] = None


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet.

    ``transaction_date`` and ``amount`` are ``None`` when the stored value
    could not be parsed; such rows are still listed but never aggregated.
    """

    transaction_id: str
    transaction_date: Optional[date]
    transaction_type: str
    reference_type: Optional[str]
    description: Optional[str]
    amount: Optional[Decimal]
    is_credit: bool
    bank_account_id: Optional[str]
    location_id: Optional[str] = None
    material_id: Optional[str] = None
    bank_account_name: Optional[str] = None


@dataclass(frozen=True)
class BankAccountRow:
    """In-memory view of a row from the ``BankAccounts`` sheet."""

    bank_account_id: str
    name: str


@dataclass(frozen=True)
class LocationRow:
    """In-memory view of a row from the ``Locations`` sheet."""

    location_id: str
    name: str
    location_type: str
    district: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    contact_number: Optional[str] = None


@dataclass(frozen=True)
class MaterialRow:
    """In-memory view of a row from the ``Materials`` sheet."""

    material_id: str
    name: str
    description: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    The function expands user home references (``~``), resolves the absolute
    path, and validates that the file exists before parsing it. Validation of
    required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Display]`` and ``[Store]`` are
    optional and fall back to the package defaults. Relative ``DataFile``
    paths are expanded against ``base_path`` when provided, or against the
    current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a display or store option holds an unsupported value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        organisation_name = parser.get("System", "OrganisationName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    currency_symbol = parser.get("Display", "CurrencySymbol", fallback=DEFAULT_CURRENCY_SYMBOL)
    grouping_raw = parser.get("Display", "DigitGrouping", fallback=DigitGrouping.INDIAN.value)
    try:
        digit_grouping = DigitGrouping(grouping_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported DigitGrouping: {grouping_raw}") from exc

    try:
        default_page_size = parser.getint("Display", "DefaultPageSize", fallback=DEFAULT_PAGE_SIZE)
    except ValueError as exc:
        raise ValueError(f"DefaultPageSize must be an integer: {exc}") from exc
    if default_page_size not in PAGE_SIZE_OPTIONS:
        raise ValueError(
            f"DefaultPageSize must be one of {PAGE_SIZE_OPTIONS}, got {default_page_size}"
        )

    backend_raw = parser.get("Store", "Backend", fallback=StoreBackend.WORKBOOK.value)
    try:
        store_backend = StoreBackend(backend_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported store backend: {backend_raw}") from exc
    store_url = parser.get("Store", "Url", fallback=None) or None
    api_key_variable = parser.get("Store", "ApiKeyVariable", fallback=None) or None
    if store_backend is StoreBackend.POSTGREST and not store_url:
        raise KeyError("Missing required configuration entry: [Store] Url")

    return ConfigSettings(
        data_file=data_file_path,
        organisation_name=organisation_name,
        schema_version=schema_version,
        currency_symbol=currency_symbol,
        digit_grouping=digit_grouping,
        default_page_size=default_page_size,
        store_backend=store_backend,
        store_url=store_url.rstrip("/") if store_url else None,
        api_key_variable=api_key_variable,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream ledger entries from the ``Transactions`` worksheet.

    The generator skips the header and rows whose cells are all ``None``.
    Each meaningful row is transformed via :func:`deserialize_transaction`.
    Rows are yielded in sheet order; ordering for display is the record
    store's concern.

    Args:
        workbook (Workbook): Workbook containing the transactions sheet.

    Yields:
        TransactionRow: Normalized transaction record for each populated row.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def iter_bank_accounts(workbook: Workbook) -> Iterable[BankAccountRow]:
    """Iterate over the ``BankAccounts`` worksheet and yield typed records."""

    sheet = workbook[BANK_ACCOUNTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_bank_account(raw)


def iter_locations(workbook: Workbook) -> Iterable[LocationRow]:
    """Iterate over the ``Locations`` worksheet and yield typed records."""

    sheet = workbook[LOCATIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_location(raw)


def iter_materials(workbook: Workbook) -> Iterable[MaterialRow]:
    """Iterate over the ``Materials`` worksheet and yield typed records."""

    sheet = workbook[MATERIALS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_material(raw)


def append_location(workbook: Workbook, record: LocationRow) -> None:
    """Append a location record to the ``Locations`` worksheet."""

    workbook[LOCATIONS_SHEET].append(serialize_location(record))


def append_material(workbook: Workbook, record: MaterialRow) -> None:
    """Append a material record to the ``Materials`` worksheet."""

    workbook[MATERIALS_SHEET].append(serialize_material(record))


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: dict[str, Any],
) -> None:
    """Update selected columns for an existing row.

    The function locates the row whose ``key_column`` matches ``key_value``,
    validates that each requested field exists in the header row, and then
    writes the provided values into the corresponding cells. Only the
    specified fields are modified, leaving other columns untouched.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet holding the row.
        key_column (str): Header title of the identifier column.
        key_value (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    unknown = [name for name in field_values if name not in header_map]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    for field, value in field_values.items():
        # cell(value=None) leaves the old value in place, so assign explicitly.
        sheet.cell(row=row_index, column=header_map[field]).value = value


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row identified by ``key_value`` from ``sheet_name``.

    Raises:
        KeyError: If no row carries ``key_value`` in ``key_column``.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Values are compared as strings because Excel happily turns numeric-looking
    identifiers into numbers.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1] if len(row) >= key_col_index else None
        if cell_value is not None and str(cell_value) == str(key_value):
            return row_idx

    return None


def _header_map(sheet) -> dict[str, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the ``Transactions`` column order.

    Only used to seed workbooks; the ledger never writes transactions itself.
    """

    return [
        record.transaction_id,
        record.transaction_date.isoformat() if record.transaction_date else None,
        record.transaction_type,
        record.reference_type,
        record.description,
        record.amount,
        record.is_credit,
        record.bank_account_id,
        record.location_id,
        record.material_id,
    ]


def serialize_bank_account(record: BankAccountRow) -> list[object]:
    """Return ``[BankAccountID, Name]`` for worksheet insertion."""

    return [record.bank_account_id, record.name]


def serialize_location(record: LocationRow) -> list[object]:
    """Convert a location dataclass into the ``Locations`` column order."""

    return [
        record.location_id,
        record.name,
        record.location_type,
        record.district,
        record.address,
        record.contact_person,
        record.contact_number,
    ]


def serialize_material(record: MaterialRow) -> list[object]:
    """Return ``[MaterialID, Name, Description]`` for worksheet insertion."""

    return [record.material_id, record.name, record.description]


def parse_transaction_date(value: object) -> Optional[date]:
    """Normalize a stored transaction date into a calendar date.

    Accepts ``date``/``datetime`` cells and ISO 8601 strings with or without a
    time component. Time-of-day is discarded so boundary comparisons work on
    calendar dates only.

    Returns:
        date | None: Parsed date, or ``None`` when the value is blank or not
            a recognizable date.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        log.warning("Unparseable transaction date: %r", value)
        return None


def parse_amount(value: object) -> Optional[Decimal]:
    """Convert a stored amount into a :class:`~decimal.Decimal`.

    Values are routed through ``str`` so floats stored by Excel do not carry
    binary artefacts into the ledger. Non-numeric and non-finite values yield
    ``None``. Sign checks are left to the aggregation step.
    """

    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        log.warning("Non-numeric transaction amount: %r", value)
        return None
    if not amount.is_finite():
        log.warning("Non-finite transaction amount: %r", value)
        return None
    return amount


def parse_flag(value: object) -> bool:
    """Interpret a worksheet boolean that may have been typed as text."""

    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _cell(raw_row: Sequence[object], index: int) -> object:
    return raw_row[index] if index < len(raw_row) else None


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record.

    Dates and amounts are parsed leniently: malformed values become ``None``
    instead of aborting the whole sheet read. Optional text columns remain
    ``None`` when blank and identifiers are coerced to ``str``.

    Args:
        raw_row (Sequence[object]): Raw cell values from the transactions row
            in their worksheet order. Short rows are padded with ``None``.

    Returns:
        TransactionRow: Dataclass reflecting the row contents.
    """

    transaction_id = _cell(raw_row, 0)
    transaction_type = _cell(raw_row, 2)
    return TransactionRow(
        transaction_id=str(transaction_id) if transaction_id is not None else "",
        transaction_date=parse_transaction_date(_cell(raw_row, 1)),
        transaction_type=str(transaction_type) if transaction_type is not None else "",
        reference_type=_optional_text(_cell(raw_row, 3)),
        description=_optional_text(_cell(raw_row, 4)),
        amount=parse_amount(_cell(raw_row, 5)),
        is_credit=parse_flag(_cell(raw_row, 6)),
        bank_account_id=_optional_text(_cell(raw_row, 7)),
        location_id=_optional_text(_cell(raw_row, 8)),
        material_id=_optional_text(_cell(raw_row, 9)),
    )


def deserialize_bank_account(raw_row: Sequence[object]) -> BankAccountRow:
    """Convert a raw worksheet row into a bank account record."""

    return BankAccountRow(
        bank_account_id=str(_cell(raw_row, 0)),
        name=str(_cell(raw_row, 1) or ""),
    )


def deserialize_location(raw_row: Sequence[object]) -> LocationRow:
    """Convert a raw worksheet row into a location record."""

    return LocationRow(
        location_id=str(_cell(raw_row, 0)),
        name=str(_cell(raw_row, 1) or ""),
        location_type=str(_cell(raw_row, 2) or ""),
        district=_optional_text(_cell(raw_row, 3)),
        address=_optional_text(_cell(raw_row, 4)),
        contact_person=_optional_text(_cell(raw_row, 5)),
        contact_number=_optional_text(_cell(raw_row, 6)),
    )


def deserialize_material(raw_row: Sequence[object]) -> MaterialRow:
    """Convert a raw worksheet row into a material record."""

    return MaterialRow(
        material_id=str(_cell(raw_row, 0)),
        name=str(_cell(raw_row, 1) or ""),
        description=_optional_text(_cell(raw_row, 2)),
    )
