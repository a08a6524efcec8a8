"""Shared pytest fixtures and utilities for recycling ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from recycle_ledger import constants, core_logic, data_manager  # noqa: E402
from recycle_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "OrganisationName = {organisation_name}\n"
    "SchemaVersion = {schema_version}\n"
)


def make_transaction(
    transaction_id: str,
    when: date | None,
    amount: str | None,
    *,
    is_credit: bool = False,
    transaction_type: str = "expense",
    reference_type: str | None = "expense",
    description: str | None = None,
    bank_account_id: str | None = None,
    bank_account_name: str | None = None,
    location_id: str | None = None,
    material_id: str | None = None,
) -> data_manager.TransactionRow:
    """Build a transaction row with sensible defaults for tests."""

    return data_manager.TransactionRow(
        transaction_id=transaction_id,
        transaction_date=when,
        transaction_type=transaction_type,
        reference_type=reference_type,
        description=description,
        amount=Decimal(amount) if amount is not None else None,
        is_credit=is_credit,
        bank_account_id=bank_account_id,
        location_id=location_id,
        material_id=material_id,
        bank_account_name=bank_account_name,
    )


SAMPLE_BANK_ACCOUNTS = (
    data_manager.BankAccountRow(bank_account_id="B1", name="SBI Current"),
    data_manager.BankAccountRow(bank_account_id="B2", name="Canara Savings"),
)

# Credits 3500.00, debits 2350.75, net 1149.25, in workbook (oldest first) order.
SAMPLE_TRANSACTIONS = (
    make_transaction(
        "T1", date(2024, 1, 5), "1500.00", is_credit=True, transaction_type="revenue",
        reference_type="outward_entry", description="Sale of PET bottles", bank_account_id="B1",
        location_id="L1", material_id="M1",
    ),
    make_transaction(
        "T2", date(2024, 1, 10), "600.50", transaction_type="material_purchase",
        reference_type="inward_entry", description="Purchase of plastic scrap",
        location_id="L1", material_id="M2",
    ),
    make_transaction(
        "T3", date(2024, 2, 1), "1200", transaction_type="staff_payment",
        reference_type="staff_payment", description="Salary for Ravi", bank_account_id="B2",
    ),
    make_transaction(
        "T4", date(2024, 2, 15), "250.25", transaction_type="commission",
        reference_type="commission_payment", description="Agent commission", bank_account_id="B1",
    ),
    make_transaction(
        "T5", date(2024, 3, 1), "2000", is_credit=True, transaction_type="revenue",
        reference_type="segregated_entry", description="Sale of cardboard",
    ),
    make_transaction(
        "T6", date(2024, 3, 20), "300", transaction_type="expense",
        reference_type="expense", description="Transport charges", bank_account_id="B2",
    ),
)

SAMPLE_LOCATIONS = (
    data_manager.LocationRow(
        location_id="L1", name="Kochi Corporation", location_type="LSGI", district="Ernakulam",
        address="Park Avenue", contact_person="Anil", contact_number="9800000001",
    ),
    data_manager.LocationRow(
        location_id="L2", name="Green Collection Hub", location_type="Collection Centre",
        district="Thrissur", address="MG Road", contact_person="Meera",
    ),
)

SAMPLE_MATERIALS = (
    data_manager.MaterialRow(material_id="M1", name="PET Bottles", description="Clear plastic"),
    data_manager.MaterialRow(material_id="M2", name="Mixed Plastic", description=None),
    data_manager.MaterialRow(material_id="M3", name="Cardboard", description="Corrugated boxes"),
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    organisation_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder.

    Rows passed in are serialized through the data layer so the sheets look
    exactly like ones written by the application.
    """

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "ledger.xlsx",
        transactions: Sequence[data_manager.TransactionRow] = (),
        bank_accounts: Sequence[data_manager.BankAccountRow] = (),
        locations: Sequence[data_manager.LocationRow] = (),
        materials: Sequence[data_manager.MaterialRow] = (),
        raw_transaction_rows: Sequence[Sequence[object]] = (),
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)

        workbook = data_manager.open_workbook(workbook_path)
        for record in transactions:
            workbook[data_manager.TRANSACTIONS_SHEET].append(data_manager.serialize_transaction(record))
        for raw in raw_transaction_rows:
            workbook[data_manager.TRANSACTIONS_SHEET].append(list(raw))
        for account in bank_accounts:
            workbook[data_manager.BANK_ACCOUNTS_SHEET].append(data_manager.serialize_bank_account(account))
        for location in locations:
            data_manager.append_location(workbook, location)
        for material in materials:
            data_manager.append_material(workbook, material)
        data_manager.save_workbook(workbook, workbook_path)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty ledger workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        organisation_name: str = "Test Recyclers",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        extra: str = "",
        **workbook_rows,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", **workbook_rows)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                organisation_name=organisation_name,
                schema_version=schema_version,
            )
            + extra,
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            organisation_name=organisation_name,
        )

    return _create_config


@pytest.fixture
def seeded_config(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """Config bundle whose workbook holds the sample ledger and reference data."""

    return config_factory(
        transactions=SAMPLE_TRANSACTIONS,
        bank_accounts=SAMPLE_BANK_ACCOUNTS,
        locations=SAMPLE_LOCATIONS,
        materials=SAMPLE_MATERIALS,
    )


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(seeded_config: ConfigBundle) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(seeded_config.config_path)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def records() -> list[data_manager.TransactionRow]:
    """Sample ledger entries newest first, with account names joined."""

    names = {account.bank_account_id: account.name for account in SAMPLE_BANK_ACCOUNTS}
    rows = [
        replace(row, bank_account_name=names.get(row.bank_account_id))
        for row in SAMPLE_TRANSACTIONS
    ]
    return list(reversed(rows))


@pytest.fixture
def transaction_factory() -> Callable[..., data_manager.TransactionRow]:
    """Expose :func:`make_transaction` to test modules."""

    return make_transaction


@pytest.fixture
def sample_transactions() -> tuple[data_manager.TransactionRow, ...]:
    """Sample ledger entries in workbook order, without joined account names."""

    return SAMPLE_TRANSACTIONS


@pytest.fixture
def sample_bank_accounts() -> tuple[data_manager.BankAccountRow, ...]:
    return SAMPLE_BANK_ACCOUNTS


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="recycle-ledger", description="Recycling ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        organisation_name="Test Recyclers",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
