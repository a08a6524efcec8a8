"""Filtering and aggregation engine for the transaction ledger.

Everything in this module is a pure function of its inputs: predicates test a
single :class:`~recycle_ledger.data_manager.TransactionRow`, the filter engine
composes the active predicates with logical AND, and the aggregation engine
reduces a filtered sequence into credit, debit, and net totals. Nothing here
touches the workbook, the network, or pagination state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Generic, Iterable, Optional, Sequence, TypeVar, Union

from . import log
from .constants import DEFAULT_CURRENCY_SYMBOL, DigitGrouping, Direction, TransactionType
from .data_manager import TransactionRow


T = TypeVar("T")

Predicate = Callable[[TransactionRow], bool]

_ZERO = Decimal("0")
_CENTS = Decimal("0.01")


class _AnyValue:
    """Wildcard selector: the filter does not restrict the set."""

    _instance: Optional["_AnyValue"] = None

    def __new__(cls) -> "_AnyValue":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANY"

    def __reduce__(self):
        return (_AnyValue, ())


ANY = _AnyValue()


@dataclass(frozen=True)
class Specific(Generic[T]):
    """Selector pinned to one concrete value (which may itself be ``None``)."""

    value: T


FilterValue = Union[_AnyValue, Specific[T]]


def is_any(selector: FilterValue) -> bool:
    return selector is ANY


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-date interval.

    The range only restricts the ledger when both bounds are present; a lone
    start or end date is kept so the UI can show it, but it filters nothing.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _as_date(self.start))
        object.__setattr__(self, "end", _as_date(self.end))

    @property
    def is_active(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_inverted(self) -> bool:
        return self.is_active and self.start > self.end  # type: ignore[operator]


def _as_date(value: Optional[date]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class FilterState:
    """Every user-adjustable filter for the transactions view."""

    search: str = ""
    date_range: DateRange = field(default_factory=DateRange)
    transaction_type: FilterValue[TransactionType] = ANY
    direction: FilterValue[Direction] = ANY
    bank_account: FilterValue[Optional[str]] = ANY

    def with_changes(self, **changes) -> "FilterState":
        return replace(self, **changes)

    @property
    def is_default(self) -> bool:
        return self == DEFAULT_FILTERS


DEFAULT_FILTERS = FilterState()


@dataclass(frozen=True)
class Anomaly:
    """A record that was skipped while aggregating, and why."""

    transaction_id: str
    reason: str


@dataclass(frozen=True)
class LedgerTotals:
    """Derived aggregates for one filtered sequence."""

    credits: Decimal = _ZERO
    debits: Decimal = _ZERO
    net: Decimal = _ZERO
    anomalies: tuple[Anomaly, ...] = ()


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def matches_search(record: TransactionRow, query: str) -> bool:
    """Case-insensitive substring match on description, type, or reference.

    Only the empty query matches every record; whitespace is part of the
    needle.
    """

    if query == "":
        return True
    needle = query.casefold()
    for haystack in (record.description, record.transaction_type, record.reference_type):
        if haystack and needle in haystack.casefold():
            return True
    return False


def matches_date_range(record: TransactionRow, date_range: DateRange) -> bool:
    """Inclusive calendar-date containment; identity unless both bounds are set.

    Records whose date could not be parsed never fall inside an active range,
    and an inverted range contains nothing.
    """

    if not date_range.is_active:
        return True
    if record.transaction_date is None:
        return False
    return date_range.start <= record.transaction_date <= date_range.end  # type: ignore[operator]


def matches_transaction_type(record: TransactionRow, selector: FilterValue[TransactionType]) -> bool:
    if is_any(selector):
        return True
    return record.transaction_type == TransactionType(selector.value).value


def matches_direction(record: TransactionRow, selector: FilterValue[Direction]) -> bool:
    if is_any(selector):
        return True
    return record.is_credit == (Direction(selector.value) is Direction.CREDIT)


def matches_bank_account(record: TransactionRow, selector: FilterValue[Optional[str]]) -> bool:
    """Exact account match; ``Specific(None)`` selects cash entries only."""

    if is_any(selector):
        return True
    return record.bank_account_id == selector.value


# ---------------------------------------------------------------------------
# Filter engine
# ---------------------------------------------------------------------------


def active_predicates(state: FilterState) -> list[Predicate]:
    """Bind every non-identity filter in ``state`` to its predicate."""

    predicates: list[Predicate] = []
    if state.search != "":
        predicates.append(_bind(matches_search, state.search))
    if state.date_range.is_active:
        predicates.append(_bind(matches_date_range, state.date_range))
    if not is_any(state.transaction_type):
        predicates.append(_bind(matches_transaction_type, state.transaction_type))
    if not is_any(state.direction):
        predicates.append(_bind(matches_direction, state.direction))
    if not is_any(state.bank_account):
        predicates.append(_bind(matches_bank_account, state.bank_account))
    return predicates


def _bind(predicate: Callable[[TransactionRow, Any], bool], param: object) -> Predicate:
    def bound(record: TransactionRow) -> bool:
        return predicate(record, param)

    return bound


def apply_filters(records: Sequence[TransactionRow], state: FilterState) -> tuple[TransactionRow, ...]:
    """Return the records satisfying every active filter, in input order.

    The result is always rebuilt from ``records``; nothing is patched
    incrementally. With every filter at its default the result equals the
    input.
    """

    predicates = active_predicates(state)
    if not predicates:
        return tuple(records)
    filtered = tuple(record for record in records if all(test(record) for test in predicates))
    log.debug(
        "Applied %d filter(s): %d of %d records retained",
        len(predicates),
        len(filtered),
        len(records),
    )
    return filtered


# ---------------------------------------------------------------------------
# Aggregation engine
# ---------------------------------------------------------------------------


def find_anomaly(record: TransactionRow) -> Optional[Anomaly]:
    """Explain why ``record`` cannot be totalled, or return ``None``."""
    if record.amount is None:
        return Anomaly(record.transaction_id, "amount is missing or not numeric")
    if record.amount < _ZERO:
        return Anomaly(record.transaction_id, f"amount {record.amount} is negative")
    return None


def aggregate(records: Iterable[TransactionRow]) -> LedgerTotals:
    """Reduce ``records`` into credit, debit, and net totals.

    Sums are accumulated as :class:`~decimal.Decimal` so no floating-point
    drift reaches the display. Records with a missing or negative amount are
    left out of every total and reported in ``LedgerTotals.anomalies``.
    Records with an unparseable date still count: the date does not affect
    the amount.
    """

    credits = _ZERO
    debits = _ZERO
    anomalies: list[Anomaly] = []

    for record in records:
        anomaly = find_anomaly(record)
        if anomaly is not None:
            anomalies.append(anomaly)
            continue
        if record.is_credit:
            credits += record.amount
        else:
            debits += record.amount

    if anomalies:
        log.debug(
            "Excluded %d malformed transaction(s) from totals: %s",
            len(anomalies),
            ", ".join(anomaly.transaction_id for anomaly in anomalies),
        )

    return LedgerTotals(
        credits=credits,
        debits=debits,
        net=credits - debits,
        anomalies=tuple(anomalies),
    )


def format_currency(
    amount: Decimal,
    symbol: str = DEFAULT_CURRENCY_SYMBOL,
    grouping: DigitGrouping = DigitGrouping.INDIAN,
) -> str:
    """Format ``amount`` with two decimals, e.g. ``'₹1,23,456.78'``.

    Indian grouping puts the first separator after three digits and every
    following one after two; western grouping uses threes throughout.
    """

    quantized = Decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if quantized < 0 else ""
    whole, _, fraction = f"{abs(quantized):f}".partition(".")
    if DigitGrouping(grouping) is DigitGrouping.INDIAN:
        grouped = _group_indian(whole)
    else:
        grouped = f"{int(whole):,}"
    return f"{sign}{symbol}{grouped}.{fraction or '00'}"


def _group_indian(whole: str) -> str:
    if len(whole) <= 3:
        return whole
    head, tail = whole[:-3], whole[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join([*pairs, tail])
