"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from recycle_ledger import constants, data_manager


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "OrganisationName") == "Test Recyclers"
    assert parser.get("System", "SchemaVersion") == constants.EXPECTED_SCHEMA_VERSION


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


# ---------------------------------------------------------------------------
# Settings parsing
# ---------------------------------------------------------------------------


def _parser(text: str) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    parser.read_string(text)
    return parser


_SYSTEM = "[System]\nDataFile = ledger.xlsx\nOrganisationName = Green Works\nSchemaVersion = 1.0.0\n"


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.organisation_name == "Test Recyclers"


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    with pytest.raises(KeyError):
        data_manager.parse_settings(_parser("[Other]\nvalue=1"), base_path=tmp_path)


def test_parse_settings_applies_display_and_store_defaults(tmp_path):
    settings = data_manager.parse_settings(_parser(_SYSTEM), base_path=tmp_path)

    assert settings.currency_symbol == "₹"
    assert settings.digit_grouping is constants.DigitGrouping.INDIAN
    assert settings.default_page_size == 10
    assert settings.store_backend is constants.StoreBackend.WORKBOOK
    assert settings.store_url is None


def test_parse_settings_reads_display_and_store_sections(tmp_path):
    text = (
        _SYSTEM
        + "[Display]\nCurrencySymbol = Rs \nDigitGrouping = Western\nDefaultPageSize = 25\n"
        + "[Store]\nBackend = postgrest\nUrl = https://db.example.org/\nApiKeyVariable = LEDGER_KEY\n"
    )
    settings = data_manager.parse_settings(_parser(text), base_path=tmp_path)

    assert settings.digit_grouping is constants.DigitGrouping.WESTERN
    assert settings.default_page_size == 25
    assert settings.store_backend is constants.StoreBackend.POSTGREST
    assert settings.store_url == "https://db.example.org"
    assert settings.api_key_variable == "LEDGER_KEY"


@pytest.mark.parametrize(
    "extra",
    [
        "[Display]\nDigitGrouping = roman\n",
        "[Display]\nDefaultPageSize = 12\n",
        "[Display]\nDefaultPageSize = many\n",
        "[Store]\nBackend = sqlite\n",
    ],
)
def test_parse_settings_rejects_invalid_values(tmp_path, extra):
    with pytest.raises(ValueError):
        data_manager.parse_settings(_parser(_SYSTEM + extra), base_path=tmp_path)


def test_parse_settings_postgrest_requires_url(tmp_path):
    with pytest.raises(KeyError):
        data_manager.parse_settings(_parser(_SYSTEM + "[Store]\nBackend = postgrest\n"), base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[data_manager.BANK_ACCOUNTS_SHEET].append(["B9", "Federal Bank"])
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy[data_manager.BANK_ACCOUNTS_SHEET].iter_rows(min_row=2, values_only=True))
    assert ("B9", "Federal Bank") in rows


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should discard unsaved in-memory edits."""

    original = data_manager.open_workbook(master_workbook_path)
    original[data_manager.MATERIALS_SHEET].append(["M1", "Glass", None])

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert list(data_manager.iter_materials(refreshed)) == []


# ---------------------------------------------------------------------------
# Sheet readers
# ---------------------------------------------------------------------------


def test_iter_transactions_round_trips_seeded_rows(workbook_factory, sample_transactions):
    """Rows written through the serializer should read back unchanged."""

    path = workbook_factory(transactions=sample_transactions)
    rows = list(data_manager.iter_transactions(data_manager.open_workbook(path)))

    assert [row.transaction_id for row in rows] == ["T1", "T2", "T3", "T4", "T5", "T6"]
    assert rows == list(sample_transactions)


def test_iter_transactions_tolerates_malformed_rows(workbook_factory):
    path = workbook_factory(
        raw_transaction_rows=[
            ["BAD1", "31/02/2024", "expense", None, "Typo date", "12.50", False, None],
            ["BAD2", datetime(2024, 1, 5, 14, 30), "revenue", "other", None, "n/a", "TRUE", "B1"],
            [None, None, None, None, None, None, None, None],
        ]
    )
    first, second = data_manager.iter_transactions(data_manager.open_workbook(path))

    assert first.transaction_date is None
    assert first.amount == Decimal("12.50")
    assert second.transaction_date == date(2024, 1, 5)
    assert second.amount is None
    assert second.is_credit is True


def test_iter_reference_sheets_yield_typed_rows(workbook_factory, sample_bank_accounts):
    location = data_manager.LocationRow("L1", "Kochi Corporation", "LSGI", district="Ernakulam")
    material = data_manager.MaterialRow("M1", "PET Bottles")
    path = workbook_factory(bank_accounts=sample_bank_accounts, locations=[location], materials=[material])
    workbook = data_manager.open_workbook(path)

    assert list(data_manager.iter_bank_accounts(workbook)) == list(sample_bank_accounts)
    assert list(data_manager.iter_locations(workbook)) == [location]
    assert list(data_manager.iter_materials(workbook)) == [material]


# ---------------------------------------------------------------------------
# Row writers
# ---------------------------------------------------------------------------


def test_append_location_adds_row(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    record = data_manager.LocationRow("L5", "Aluva Municipality", "LSGI", contact_person="Joy")
    data_manager.append_location(workbook, record)

    assert list(data_manager.iter_locations(workbook)) == [record]


def test_update_row_modifies_selected_columns(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_material(workbook, data_manager.MaterialRow("M1", "Glass", "Bottles"))

    data_manager.update_row(
        workbook,
        data_manager.MATERIALS_SHEET,
        "MaterialID",
        "M1",
        field_values={"Description": "Cullet"},
    )
    assert list(data_manager.iter_materials(workbook)) == [data_manager.MaterialRow("M1", "Glass", "Cullet")]


def test_update_row_writes_none_over_existing_text(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_material(workbook, data_manager.MaterialRow("M1", "Glass", "Bottles"))

    data_manager.update_row(
        workbook,
        data_manager.MATERIALS_SHEET,
        "MaterialID",
        "M1",
        field_values={"Description": None},
    )
    assert list(data_manager.iter_materials(workbook)) == [data_manager.MaterialRow("M1", "Glass", None)]


def test_update_row_missing_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_row(workbook, data_manager.MATERIALS_SHEET, "MaterialID", "NOPE", field_values={})


def test_update_row_unknown_field_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_material(workbook, data_manager.MaterialRow("M1", "Glass"))
    with pytest.raises(KeyError):
        data_manager.update_row(
            workbook,
            data_manager.MATERIALS_SHEET,
            "MaterialID",
            "M1",
            field_values={"Colour": "green"},
        )


def test_delete_row_removes_only_the_match(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    for material_id in ("M1", "M2", "M3"):
        data_manager.append_material(workbook, data_manager.MaterialRow(material_id, f"Name {material_id}"))

    data_manager.delete_row(workbook, data_manager.MATERIALS_SHEET, "MaterialID", "M2")
    assert [row.material_id for row in data_manager.iter_materials(workbook)] == ["M1", "M3"]


def test_delete_row_missing_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.delete_row(workbook, data_manager.LOCATIONS_SHEET, "LocationID", "L404")


def test_locate_row_compares_identifiers_as_text(master_workbook_path):
    """Numeric-looking ids stored as numbers should still be found."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[data_manager.BANK_ACCOUNTS_SHEET].append([101, "Numeric Id Bank"])

    assert data_manager.locate_row(workbook, data_manager.BANK_ACCOUNTS_SHEET, "BankAccountID", "101") == 2
    assert data_manager.locate_row(workbook, data_manager.BANK_ACCOUNTS_SHEET, "BankAccountID", "102") is None


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, data_manager.BANK_ACCOUNTS_SHEET, "IBAN", "X")


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (date(2024, 1, 31), date(2024, 1, 31)),
        (datetime(2024, 1, 31, 23, 59), date(2024, 1, 31)),
        ("2024-01-31", date(2024, 1, 31)),
        ("2024-01-31T23:59:00+05:30", date(2024, 1, 31)),
        ("", None),
        (None, None),
        ("yesterday", None),
    ],
)
def test_parse_transaction_date(raw, expected):
    assert data_manager.parse_transaction_date(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (Decimal("10.25"), Decimal("10.25")),
        (0.1, Decimal("0.1")),
        (42, Decimal("42")),
        (" 7.5 ", Decimal("7.5")),
        ("-3", Decimal("-3")),
        ("abc", None),
        ("NaN", None),
        ("Infinity", None),
        (True, None),
        (None, None),
    ],
)
def test_parse_amount(raw, expected):
    assert data_manager.parse_amount(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(True, True), (False, False), (None, False), (1, True), ("TRUE", True), ("yes", True), ("no", False)],
)
def test_parse_flag(raw, expected):
    assert data_manager.parse_flag(raw) is expected


def test_serialize_transaction_preserves_column_order(transaction_factory):
    record = transaction_factory(
        "T1", date(2024, 1, 5), "10", is_credit=True, bank_account_id="B1", location_id="L1", material_id="M1"
    )
    assert data_manager.serialize_transaction(record) == [
        "T1", "2024-01-05", "expense", "expense", None, Decimal("10"), True, "B1", "L1", "M1",
    ]


def test_deserialize_transaction_pads_short_rows():
    row = data_manager.deserialize_transaction(["T9", "2024-02-02", "other"])
    assert row.transaction_id == "T9"
    assert row.amount is None
    assert row.is_credit is False
    assert row.bank_account_id is None
