"""Enumerations shared across the recycling ledger modules.

Centralises domain constants so that the data access layer (DAL), the ledger
core, and the CLI presentation layer rely on a single source of truth for
identifiers, labels, and workbook layout.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Rows-per-page choices offered by the transactions table.
PAGE_SIZE_OPTIONS: tuple[int, ...] = (5, 10, 25, 50)
DEFAULT_PAGE_SIZE = 10

DEFAULT_CURRENCY_SYMBOL = "₹"
CASH_ACCOUNT_LABEL = "Cash"


class TransactionType(str, Enum):
    """Enumerate the financial categories a ledger entry can belong to."""

    REVENUE = "revenue"
    MATERIAL_PURCHASE = "material_purchase"
    STAFF_PAYMENT = "staff_payment"
    COMMISSION = "commission"
    EXPENSE = "expense"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _TRANSACTION_TYPE_LABELS[self]


_TRANSACTION_TYPE_LABELS = {
    TransactionType.REVENUE: "Revenue",
    TransactionType.MATERIAL_PURCHASE: "Material Purchase",
    TransactionType.STAFF_PAYMENT: "Staff Payment",
    TransactionType.COMMISSION: "Commission",
    TransactionType.EXPENSE: "Expense",
    TransactionType.OTHER: "Other",
}


class ReferenceType(str, Enum):
    """Enumerate the business events that originate ledger entries."""

    INWARD_ENTRY = "inward_entry"
    OUTWARD_ENTRY = "outward_entry"
    SEGREGATED_ENTRY = "segregated_entry"
    STAFF_PAYMENT = "staff_payment"
    COMMISSION_PAYMENT = "commission_payment"
    EXPENSE = "expense"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _REFERENCE_TYPE_LABELS[self]


_REFERENCE_TYPE_LABELS = {
    ReferenceType.INWARD_ENTRY: "Inward Entry",
    ReferenceType.OUTWARD_ENTRY: "Outward Entry",
    ReferenceType.SEGREGATED_ENTRY: "Segregated Entry",
    ReferenceType.STAFF_PAYMENT: "Staff Payment",
    ReferenceType.COMMISSION_PAYMENT: "Commission Payment",
    ReferenceType.EXPENSE: "Expense",
    ReferenceType.OTHER: "Other",
}


class Direction(str, Enum):
    """Whether an entry increases (credit) or decreases (debit) the balance."""

    CREDIT = "credit"
    DEBIT = "debit"


class LocationType(str, Enum):
    """Enumerate the kinds of sites waste is collected from or delivered to."""

    LSGI = "LSGI"
    PRIVATE = "Private"
    COLLECTION_CENTRE = "Collection Centre"
    PROCESSING_FACILITY = "Processing Facility"
    OTHER = "Other"


class DigitGrouping(str, Enum):
    """Thousands grouping styles supported by currency formatting."""

    INDIAN = "indian"
    WESTERN = "western"


class StoreBackend(str, Enum):
    """Record store implementations selectable from ``config.ini``."""

    WORKBOOK = "workbook"
    POSTGREST = "postgrest"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    TRANSACTIONS = "Transactions"
    BANK_ACCOUNTS = "BankAccounts"
    LOCATIONS = "Locations"
    MATERIALS = "Materials"


def transaction_type_label(value: str) -> str:
    """Return the display label for ``value``, echoing unknown codes."""

    try:
        return TransactionType(value).label
    except ValueError:
        return value


def reference_type_label(value: str | None) -> str:
    """Return the display label for ``value``, echoing unknown codes."""

    if value is None:
        return ""
    try:
        return ReferenceType(value).label
    except ValueError:
        return value


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PAGE_SIZE_OPTIONS",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_CURRENCY_SYMBOL",
    "CASH_ACCOUNT_LABEL",
    "TransactionType",
    "ReferenceType",
    "Direction",
    "LocationType",
    "DigitGrouping",
    "StoreBackend",
    "SheetName",
    "transaction_type_label",
    "reference_type_label",
]
