"""Stateful front for the transactions view.

A :class:`LedgerSession` holds the loaded records, the filter and pagination
state, and the values derived from them. Every change goes through one of the
setters, which recomputes the derived values from scratch, resets pagination
where needed, and notifies subscribers with a fresh :class:`LedgerView`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from . import log, pagination
from .constants import (
    CASH_ACCOUNT_LABEL,
    DEFAULT_CURRENCY_SYMBOL,
    DEFAULT_PAGE_SIZE,
    DigitGrouping,
    Direction,
    TransactionType,
    reference_type_label,
    transaction_type_label,
)
from .core_logic import FetchFailure, RecordStore
from .data_manager import BankAccountRow, TransactionRow
from .ledger import (
    ANY,
    DEFAULT_FILTERS,
    DateRange,
    FilterState,
    FilterValue,
    LedgerTotals,
    Specific,
    aggregate,
    apply_filters,
    find_anomaly,
    format_currency,
)


ALL_ACCOUNTS_LABEL = "All Accounts"
DATE_DISPLAY_FORMAT = "%d/%m/%Y"

Listener = Callable[["LedgerView"], None]


@dataclass(frozen=True)
class Alert:
    """Dismissible message shown above the table."""

    severity: str
    message: str


@dataclass(frozen=True)
class Derived:
    """Values computed from the records and the filter state."""

    filtered: tuple[TransactionRow, ...]
    totals: LedgerTotals


@dataclass(frozen=True)
class LedgerRow:
    """One display-ready table row."""

    transaction_id: str
    date: str
    transaction_type: str
    reference_type: str
    description: str
    account: str
    debit: str
    credit: str


@dataclass(frozen=True)
class FormattedTotals:
    credits: str
    debits: str
    net: str


@dataclass(frozen=True)
class AccountChoice:
    selector: FilterValue[Optional[str]]
    label: str


@dataclass(frozen=True)
class LedgerView:
    """Snapshot of everything the transactions screen renders."""

    rows: tuple[LedgerRow, ...]
    totals: LedgerTotals
    formatted_totals: FormattedTotals
    filters: FilterState
    page_index: int
    page_size: int
    page_count: int
    total_count: int
    alert: Optional[Alert] = None
    account_choices: tuple[AccountChoice, ...] = field(default_factory=tuple)


def recompute(records: Sequence[TransactionRow], state: FilterState) -> Derived:
    """Rebuild the filtered sequence and its totals from ``records``."""

    filtered = apply_filters(records, state)
    return Derived(filtered=filtered, totals=aggregate(filtered))


def account_label(record: TransactionRow) -> str:
    """Name of the account an entry moved through; ``"Cash"`` when there is none."""

    if record.bank_account_id is None:
        return CASH_ACCOUNT_LABEL
    return record.bank_account_name or record.bank_account_id


class LedgerSession:
    """Own the transactions view state and keep its derived values current.

    Args:
        store: Record store to fetch transactions and bank accounts from.
        page_size: Initial rows per page, one of ``PAGE_SIZE_OPTIONS``.
        currency_symbol: Prefix used when formatting amounts.
        grouping: Digit grouping used when formatting amounts.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
        grouping: DigitGrouping = DigitGrouping.INDIAN,
    ):
        self.store = store
        self.currency_symbol = currency_symbol
        self.grouping = DigitGrouping(grouping)
        self._records: tuple[TransactionRow, ...] = ()
        self._bank_accounts: tuple[BankAccountRow, ...] = ()
        self._filters = DEFAULT_FILTERS
        self._pagination = pagination.PaginationState(page_size=page_size)
        self._derived = recompute(self._records, self._filters)
        self._alert: Optional[Alert] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def records(self) -> tuple[TransactionRow, ...]:
        return self._records

    @property
    def bank_accounts(self) -> tuple[BankAccountRow, ...]:
        return self._bank_accounts

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def page_state(self) -> pagination.PaginationState:
        return self._pagination

    @property
    def filtered(self) -> tuple[TransactionRow, ...]:
        return self._derived.filtered

    @property
    def totals(self) -> LedgerTotals:
        return self._derived.totals

    @property
    def alert(self) -> Optional[Alert]:
        return self._alert

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def refresh(self) -> "LedgerView":
        """Fetch fresh records from the store.

        A failed transaction fetch raises no error: the message becomes the
        session alert and the previously loaded records stay on screen. A
        failed bank-account fetch only logs; the old account list is kept.
        """

        if self.store is None:
            raise RuntimeError("LedgerSession has no record store to refresh from")

        try:
            records = self.store.fetch_transactions()
        except FetchFailure as exc:
            log.error("Keeping %d previously loaded transactions: %s", len(self._records), exc)
            self._alert = Alert(severity="error", message=str(exc))
            return self._publish()

        try:
            self._bank_accounts = tuple(self.store.fetch_bank_accounts())
        except FetchFailure as exc:
            log.warning("Bank account list not refreshed: %s", exc)

        return self.load_records(records)

    def load_records(self, records: Sequence[TransactionRow]) -> "LedgerView":
        """Replace the whole record set; the newest load always wins."""

        self._records = tuple(records)
        log.debug("Loaded %d transaction(s) into session", len(self._records))
        unusable = [record.transaction_id for record in self._records if find_anomaly(record) is not None]
        if unusable:
            log.warning("%d transaction(s) cannot be totalled: %s", len(unusable), ", ".join(unusable))
        return self._recompute()

    def load_bank_accounts(self, accounts: Sequence[BankAccountRow]) -> "LedgerView":
        self._bank_accounts = tuple(accounts)
        return self._publish()

    def dismiss_alert(self) -> "LedgerView":
        self._alert = None
        return self._publish()

    # ------------------------------------------------------------------
    # Filter setters
    # ------------------------------------------------------------------

    def set_search(self, query: str) -> "LedgerView":
        return self._set_filters(self._filters.with_changes(search=query or ""))

    def set_date_range(self, start: Optional[date], end: Optional[date]) -> "LedgerView":
        """Set both bounds at once.

        Raises:
            ValueError: If ``start`` falls after ``end``.
        """

        date_range = DateRange(start, end)
        if date_range.is_inverted:
            raise ValueError(f"Start date {date_range.start} is after end date {date_range.end}")
        return self._set_filters(self._filters.with_changes(date_range=date_range))

    def set_start_date(self, start: Optional[date]) -> "LedgerView":
        return self.set_date_range(start, self._filters.date_range.end)

    def set_end_date(self, end: Optional[date]) -> "LedgerView":
        return self.set_date_range(self._filters.date_range.start, end)

    def set_transaction_type(self, selector: FilterValue[TransactionType]) -> "LedgerView":
        if selector is not ANY:
            selector = Specific(TransactionType(selector.value))
        return self._set_filters(self._filters.with_changes(transaction_type=selector))

    def set_direction(self, selector: FilterValue[Direction]) -> "LedgerView":
        if selector is not ANY:
            selector = Specific(Direction(selector.value))
        return self._set_filters(self._filters.with_changes(direction=selector))

    def set_bank_account(self, selector: FilterValue[Optional[str]]) -> "LedgerView":
        """Restrict to one account; ``Specific(None)`` selects cash entries."""

        return self._set_filters(self._filters.with_changes(bank_account=selector))

    def reset_filters(self) -> "LedgerView":
        return self._set_filters(DEFAULT_FILTERS)

    # ------------------------------------------------------------------
    # Pagination setters
    # ------------------------------------------------------------------

    def set_page(self, page_index: int) -> "LedgerView":
        self._pagination = pagination.set_page(self._pagination, page_index, len(self.filtered))
        return self._publish()

    def set_page_size(self, page_size: int) -> "LedgerView":
        self._pagination = pagination.set_page_size(self._pagination, page_size)
        return self._publish()

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new view; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def view(self) -> "LedgerView":
        """Build the current view without notifying anyone."""

        state = self._pagination
        filtered = self._derived.filtered
        visible = pagination.visible_slice(filtered, state.page_index, state.page_size)
        totals = self._derived.totals
        return LedgerView(
            rows=tuple(self._display_row(record) for record in visible),
            totals=totals,
            formatted_totals=FormattedTotals(
                credits=self.format_amount(totals.credits),
                debits=self.format_amount(totals.debits),
                net=self.format_amount(totals.net),
            ),
            filters=self._filters,
            page_index=pagination.clamp_page_index(state.page_index, len(filtered), state.page_size),
            page_size=state.page_size,
            page_count=pagination.page_count(len(filtered), state.page_size),
            total_count=len(filtered),
            alert=self._alert,
            account_choices=self.account_choices(),
        )

    def account_choices(self) -> tuple[AccountChoice, ...]:
        return (
            AccountChoice(ANY, ALL_ACCOUNTS_LABEL),
            AccountChoice(Specific(None), CASH_ACCOUNT_LABEL),
            *(AccountChoice(Specific(account.bank_account_id), account.name) for account in self._bank_accounts),
        )

    def format_amount(self, amount: Decimal) -> str:
        return format_currency(amount, self.currency_symbol, self.grouping)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_filters(self, state: FilterState) -> "LedgerView":
        self._filters = state
        return self._recompute()

    def _recompute(self) -> "LedgerView":
        self._derived = recompute(self._records, self._filters)
        self._pagination = pagination.on_filter_changed(self._pagination)
        return self._publish()

    def _publish(self) -> "LedgerView":
        current = self.view()
        for listener in list(self._listeners):
            listener(current)
        return current

    def _display_row(self, record: TransactionRow) -> LedgerRow:
        amount = self.format_amount(record.amount) if record.amount is not None else ""
        return LedgerRow(
            transaction_id=record.transaction_id,
            date=record.transaction_date.strftime(DATE_DISPLAY_FORMAT) if record.transaction_date else "",
            transaction_type=transaction_type_label(record.transaction_type),
            reference_type=reference_type_label(record.reference_type),
            description=record.description or "",
            account=account_label(record),
            debit="" if record.is_credit else amount,
            credit=amount if record.is_credit else "",
        )
