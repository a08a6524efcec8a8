"""Business logic layer for the recycling ledger.

This module owns the runtime context (settings plus a live workbook), the
record store adapter the ledger session reads from, and the rules guarding
reference data (locations and materials). It consumes the Data Access Layer
(DAL) for all I/O and never reorders, edits, or creates ledger entries.
"""

from __future__ import annotations

import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, LocationType


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced location, material, or account is unknown."""


class ValidationFailure(BusinessRuleViolation):
    """Raised when reference-data input is rejected before anything is written.

    ``field_errors`` maps each offending field to a user-facing message.
    """

    def __init__(self, field_errors: Mapping[str, str]):
        self.field_errors = dict(field_errors)
        super().__init__("; ".join(f"{name}: {message}" for name, message in self.field_errors.items()))


class ReferentialConstraintFailure(BusinessRuleViolation):
    """Raised when deleting a reference entity that ledger entries still use."""


class FetchFailure(Exception):
    """Raised when a record store cannot supply transactions or accounts."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class LocationCommand:
    """User intent for creating or editing a location."""

    name: str
    location_type: str = LocationType.LSGI.value
    district: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    contact_number: Optional[str] = None


@dataclass(frozen=True)
class MaterialCommand:
    """User intent for creating or editing a material."""

    name: str
    description: Optional[str] = None


class RecordStore(Protocol):
    """Read-only source of ledger entries and the bank-account reference list."""

    def fetch_transactions(self) -> List[data_manager.TransactionRow]:
        """Return every entry, newest first, with bank account names joined."""

    def fetch_bank_accounts(self) -> List[data_manager.BankAccountRow]:
        """Return every bank account ordered by name."""


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries keyed by domain area (transactions, bank
    accounts, locations, materials) that hold the rows read from the
    workbook so repeated queries do not re-scan the sheets.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_bucket(context: RuntimeContext, name: str, loader, key: str) -> Dict[str, Any]:
    """Populate ``name`` with ``all`` rows and a ``by_id`` index on demand."""

    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_bucket(context, "transactions", data_manager.iter_transactions, "transaction_id")


def _ensure_bank_accounts_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_bucket(context, "bank_accounts", data_manager.iter_bank_accounts, "bank_account_id")


def _ensure_locations_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_bucket(context, "locations", data_manager.iter_locations, "location_id")


def _ensure_materials_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_bucket(context, "materials", data_manager.iter_materials, "material_id")


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    The helper resolves ``config.ini``, parses settings, and opens the Excel
    workbook that stores the ledger and reference data. The resulting
    :class:`RuntimeContext` bundles the immutable settings with a mutable
    workbook handle and an empty cache store.

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
    """Validate workbook compatibility before reading or mutating state.

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


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return a shallow copy of the cached ledger in workbook order."""
    cache = _ensure_transactions_cache(context)
    return list(cache["all"])


def list_bank_accounts(context: RuntimeContext) -> List[data_manager.BankAccountRow]:
    """Return the bank accounts ordered by name, case-insensitively."""
    cache = _ensure_bank_accounts_cache(context)
    return sorted(cache["all"], key=lambda account: account.name.casefold())


def list_locations(context: RuntimeContext, *, search: str = "") -> List[data_manager.LocationRow]:
    """Return locations ordered by name, optionally narrowed by ``search``.

    The search is a case-insensitive substring match on the name, address,
    and contact person.
    """
    cache = _ensure_locations_cache(context)
    rows = sorted(cache["all"], key=lambda row: row.name.casefold())
    needle = search.strip().casefold()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if any(value and needle in value.casefold() for value in (row.name, row.address, row.contact_person))
    ]


def list_materials(context: RuntimeContext, *, search: str = "") -> List[data_manager.MaterialRow]:
    """Return materials ordered by name, optionally narrowed by ``search``."""
    cache = _ensure_materials_cache(context)
    rows = sorted(cache["all"], key=lambda row: row.name.casefold())
    needle = search.strip().casefold()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if any(value and needle in value.casefold() for value in (row.name, row.description))
    ]


def get_location(context: RuntimeContext, location_id: str) -> data_manager.LocationRow:
    """Resolve a location by identifier.

    Raises:
        MissingReferenceError: If ``location_id`` is absent from the workbook.
    """
    cache = _ensure_locations_cache(context)
    try:
        return cache["by_id"][location_id]
    except KeyError as exc:
        log.warning("Location lookup failed for id '%s'", location_id)
        raise MissingReferenceError(f"Unknown location id: {location_id}") from exc


def get_material(context: RuntimeContext, material_id: str) -> data_manager.MaterialRow:
    """Resolve a material by identifier.

    Raises:
        MissingReferenceError: If ``material_id`` is absent from the workbook.
    """
    cache = _ensure_materials_cache(context)
    try:
        return cache["by_id"][material_id]
    except KeyError as exc:
        log.warning("Material lookup failed for id '%s'", material_id)
        raise MissingReferenceError(f"Unknown material id: {material_id}") from exc


# ---------------------------------------------------------------------------
# Record store adapter
# ---------------------------------------------------------------------------


class WorkbookRecordStore:
    """Record store backed by the runtime context's workbook.

    With ``reload_on_fetch`` every fetch first re-reads the workbook from disk
    so a refresh observes edits made by other tools; otherwise the context's
    caches are reused.
    """

    def __init__(self, context: RuntimeContext, *, reload_on_fetch: bool = False):
        self.context = context
        self.reload_on_fetch = reload_on_fetch

    def fetch_transactions(self) -> List[data_manager.TransactionRow]:
        with _fetch_guard("transactions"):
            self._maybe_reload()
            accounts = _ensure_bank_accounts_cache(self.context)["by_id"]
            rows = [
                replace(row, bank_account_name=accounts[row.bank_account_id].name)
                if row.bank_account_id in accounts
                else row
                for row in list_transactions(self.context)
            ]
        ordered = order_newest_first(rows)
        log.info("Fetched %d transactions from workbook", len(ordered))
        return ordered

    def fetch_bank_accounts(self) -> List[data_manager.BankAccountRow]:
        with _fetch_guard("bank accounts"):
            self._maybe_reload()
            return list_bank_accounts(self.context)

    def _maybe_reload(self) -> None:
        if self.reload_on_fetch:
            self.context = refresh_context(self.context)


@contextmanager
def _fetch_guard(what: str) -> Iterator[None]:
    """Translate workbook read errors into :class:`FetchFailure`."""
    try:
        yield
    except (OSError, KeyError, InvalidFileException, zipfile.BadZipFile) as exc:
        log.error("Failed to load %s: %s", what, exc)
        raise FetchFailure(f"Failed to load {what}: {exc}") from exc


def order_newest_first(rows: List[data_manager.TransactionRow]) -> List[data_manager.TransactionRow]:
    """Sort by transaction date descending, keeping ties in source order.

    Entries without a usable date sink to the bottom.
    """
    return sorted(rows, key=lambda row: row.transaction_date or date.min, reverse=True)


# ---------------------------------------------------------------------------
# Reference data: locations and materials
# ---------------------------------------------------------------------------


def add_location(context: RuntimeContext, command: LocationCommand, *, when: Optional[datetime] = None) -> data_manager.LocationRow:
    """Validate and append a new location.

    Raises:
        ValidationFailure: If the name is blank or duplicated, or the type is
            not a known :class:`~recycle_ledger.constants.LocationType`.
    """
    record = data_manager.LocationRow(
        location_id=generate_reference_id(prefix="L", when=_resolve_timestamp(when)),
        **_clean_location(context, command, exclude_id=None),
    )
    data_manager.append_location(context.workbook, record)
    _invalidate_cache(context, "locations")
    log.info("Added location '%s' (%s)", record.location_id, record.name)
    return record


def update_location(context: RuntimeContext, location_id: str, command: LocationCommand) -> data_manager.LocationRow:
    """Validate and overwrite an existing location's fields.

    Raises:
        MissingReferenceError: If ``location_id`` is unknown.
        ValidationFailure: If the new values are rejected.
    """
    get_location(context, location_id)
    cleaned = _clean_location(context, command, exclude_id=location_id)
    data_manager.update_row(
        context.workbook,
        data_manager.LOCATIONS_SHEET,
        "LocationID",
        location_id,
        field_values={
            "Name": cleaned["name"],
            "Type": cleaned["location_type"],
            "District": cleaned["district"],
            "Address": cleaned["address"],
            "ContactPerson": cleaned["contact_person"],
            "ContactNumber": cleaned["contact_number"],
        },
    )
    _invalidate_cache(context, "locations")
    log.info("Updated location '%s'", location_id)
    return data_manager.LocationRow(location_id=location_id, **cleaned)


def delete_location(context: RuntimeContext, location_id: str, *, store: Optional[RecordStore] = None) -> None:
    """Delete a location that no ledger entry references.

    Args:
        store: Where the ledger lives when it is not the workbook. Its
            transactions are the ones checked for references.

    Raises:
        MissingReferenceError: If ``location_id`` is unknown.
        ReferentialConstraintFailure: If a transaction still uses it.
        FetchFailure: If ``store`` cannot be read; nothing is deleted.
    """
    get_location(context, location_id)
    if any(row.location_id == location_id for row in _ledger_rows(context, store)):
        log.warning("Refused to delete location '%s': referenced by transactions", location_id)
        raise ReferentialConstraintFailure("Cannot delete this location because it is used in transactions")
    data_manager.delete_row(context.workbook, data_manager.LOCATIONS_SHEET, "LocationID", location_id)
    _invalidate_cache(context, "locations")
    log.info("Deleted location '%s'", location_id)


def add_material(context: RuntimeContext, command: MaterialCommand, *, when: Optional[datetime] = None) -> data_manager.MaterialRow:
    """Validate and append a new material."""
    record = data_manager.MaterialRow(
        material_id=generate_reference_id(prefix="M", when=_resolve_timestamp(when)),
        **_clean_material(context, command, exclude_id=None),
    )
    data_manager.append_material(context.workbook, record)
    _invalidate_cache(context, "materials")
    log.info("Added material '%s' (%s)", record.material_id, record.name)
    return record


def update_material(context: RuntimeContext, material_id: str, command: MaterialCommand) -> data_manager.MaterialRow:
    get_material(context, material_id)
    cleaned = _clean_material(context, command, exclude_id=material_id)
    data_manager.update_row(
        context.workbook,
        data_manager.MATERIALS_SHEET,
        "MaterialID",
        material_id,
        field_values={"Name": cleaned["name"], "Description": cleaned["description"]},
    )
    _invalidate_cache(context, "materials")
    log.info("Updated material '%s'", material_id)
    return data_manager.MaterialRow(material_id=material_id, **cleaned)


def delete_material(context: RuntimeContext, material_id: str, *, store: Optional[RecordStore] = None) -> None:
    """Delete a material that no ledger entry references.

    Raises:
        MissingReferenceError: If ``material_id`` is unknown.
        ReferentialConstraintFailure: If a transaction still uses it.
        FetchFailure: If ``store`` cannot be read; nothing is deleted.
    """
    get_material(context, material_id)
    if any(row.material_id == material_id for row in _ledger_rows(context, store)):
        log.warning("Refused to delete material '%s': referenced by transactions", material_id)
        raise ReferentialConstraintFailure("Cannot delete this material because it is used in transactions")
    data_manager.delete_row(context.workbook, data_manager.MATERIALS_SHEET, "MaterialID", material_id)
    _invalidate_cache(context, "materials")
    log.info("Deleted material '%s'", material_id)


def _ledger_rows(context: RuntimeContext, store: Optional[RecordStore]) -> List[data_manager.TransactionRow]:
    if store is None:
        return list_transactions(context)
    return store.fetch_transactions()


def _clean_location(context: RuntimeContext, command: LocationCommand, *, exclude_id: Optional[str]) -> Dict[str, Optional[str]]:
    errors: Dict[str, str] = {}
    name = (command.name or "").strip()
    if not name:
        errors["name"] = "Name is required"
    elif _name_taken(list_locations(context), name, "location_id", exclude_id):
        errors["name"] = "A location with this name already exists"

    location_type = (command.location_type or "").strip()
    if not location_type:
        errors["type"] = "Type is required"
    elif location_type not in {member.value for member in LocationType}:
        errors["type"] = f"Unknown location type: {location_type}"

    if errors:
        log.error("Location validation failed: %s", errors)
        raise ValidationFailure(errors)

    return {
        "name": name,
        "location_type": location_type,
        "district": _blank_to_none(command.district),
        "address": _blank_to_none(command.address),
        "contact_person": _blank_to_none(command.contact_person),
        "contact_number": _blank_to_none(command.contact_number),
    }


def _clean_material(context: RuntimeContext, command: MaterialCommand, *, exclude_id: Optional[str]) -> Dict[str, Optional[str]]:
    name = (command.name or "").strip()
    if not name:
        errors = {"name": "Name is required"}
    elif _name_taken(list_materials(context), name, "material_id", exclude_id):
        errors = {"name": "A material with this name already exists"}
    else:
        return {"name": name, "description": _blank_to_none(command.description)}
    log.error("Material validation failed: %s", errors)
    raise ValidationFailure(errors)


def _name_taken(rows, name: str, key: str, exclude_id: Optional[str]) -> bool:
    wanted = name.casefold()
    return any(row.name.casefold() == wanted and getattr(row, key) != exclude_id for row in rows)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def generate_reference_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``."""
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


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
