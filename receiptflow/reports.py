"""Report aggregation: period buckets, category breakdown and trend.

Reports are derived on demand from a snapshot of documents and never
stored. Every function here is pure.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Tuple

from .models import (
    CategoryBreakdown,
    DocumentStatus,
    PeriodKind,
    Report,
    ReportPeriod,
    TransactionType,
)


logger = logging.getLogger(__name__)

MONTHS_PER_WINDOW = 6
UNCATEGORIZED = "Uncategorized"
CENT = Decimal("0.01")

# (label, first day, first day after)
Bucket = Tuple[str, date, date]


def _field(document: Any, name: str):
    if isinstance(document, dict):
        return document.get(name)
    return getattr(document, name, None)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _add_months(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_buckets(end_year: int, end_month: int, count: int = MONTHS_PER_WINDOW) -> List[Bucket]:
    buckets = []
    for offset in range(count - 1, -1, -1):
        year, month = _add_months(end_year, end_month, -offset)
        next_year, next_month = _add_months(year, month, 1)
        start = date(year, month, 1)
        buckets.append((start.strftime("%b %Y"), start, date(next_year, next_month, 1)))
    return buckets


def _quarter_buckets(year: int) -> List[Bucket]:
    buckets = []
    for quarter in range(4):
        start = date(year, quarter * 3 + 1, 1)
        end_year, end_month = _add_months(year, quarter * 3 + 1, 3)
        buckets.append((f"{year} Q{quarter + 1}", start, date(end_year, end_month, 1)))
    return buckets


def period_window(period_kind: PeriodKind, period: ReportPeriod, as_of: date, back: int = 0) -> List[Bucket]:
    """Buckets for the requested window, shifted ``back`` windows earlier.

    Monthly windows are the six calendar months ending with the reference
    month (``current``) or the six before that (``previous``). Annual
    windows are the four quarters of the reference year or the prior year.
    """
    shift = back + (1 if ReportPeriod(period) == ReportPeriod.PREVIOUS else 0)
    if PeriodKind(period_kind) == PeriodKind.MONTHLY:
        year, month = _add_months(as_of.year, as_of.month, -MONTHS_PER_WINDOW * shift)
        return _month_buckets(year, month)
    return _quarter_buckets(as_of.year - shift)


def _bucket_index(buckets: List[Bucket], day: date) -> Optional[int]:
    for index, (_, start, end) in enumerate(buckets):
        if start <= day < end:
            return index
    return None


def _to_decimal(amount) -> Decimal:
    return Decimal(str(amount or 0))


def _percentage(part: Decimal, total: Decimal) -> int:
    if total == 0:
        return 0
    return int((part / total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _window_total(documents: List[Any], buckets: List[Bucket]) -> Decimal:
    total = Decimal("0")
    for doc in documents:
        if _bucket_index(buckets, _as_date(_field(doc, "date"))) is not None:
            total += _to_decimal(_field(doc, "amount"))
    return total


def category_breakdown(documents: Iterable[Any]) -> List[CategoryBreakdown]:
    """Group by category, largest first; percentages rounded independently"""
    sums = defaultdict(Decimal)
    for doc in documents:
        name = (_field(doc, "category") or "").strip() or UNCATEGORIZED
        sums[name] += _to_decimal(_field(doc, "amount"))

    total = sum(sums.values(), Decimal("0"))
    entries = sorted(sums.items(), key=lambda item: (-item[1], item[0]))
    return [
        CategoryBreakdown(
            name=name,
            amount=float(amount.quantize(CENT)),
            percentageOfTotal=_percentage(amount, total),
        )
        for name, amount in entries
    ]


def trend_percentage(current_total, prior_total) -> Optional[float]:
    """Signed percentage change, or None when there is nothing to compare to"""
    current_total = _to_decimal(current_total)
    prior_total = _to_decimal(prior_total)
    if prior_total == 0:
        return None
    change = (current_total - prior_total) / prior_total * 100
    return float(change.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def generate_report(
    period_kind: PeriodKind,
    period: ReportPeriod,
    documents: Iterable[Any],
    as_of: Optional[date] = None,
    statuses: Optional[Iterable[DocumentStatus]] = None,
    transaction_type: Optional[TransactionType] = None
) -> Report:
    """
    Aggregate documents into a period report

    Args:
        period_kind: monthly (month buckets) or annual (quarter buckets)
        period: current or previous window relative to ``as_of``
        documents: Document models or dicts with amount, date and category
        as_of: Reference date, defaults to today
        statuses: Only include documents with these statuses
        transaction_type: Only include documents with this transaction type

    Returns:
        Report; an empty input yields a zeroed report
    """
    period_kind = PeriodKind(period_kind)
    period = ReportPeriod(period)
    as_of = as_of or date.today()

    selected = list(documents)
    if statuses is not None:
        wanted = {DocumentStatus(s) for s in statuses}
        selected = [d for d in selected if DocumentStatus(_field(d, "status")) in wanted]
    if transaction_type is not None:
        wanted_type = TransactionType(transaction_type)
        selected = [d for d in selected if _field(d, "transactionType") == wanted_type]

    buckets = period_window(period_kind, period, as_of)
    series = [Decimal("0")] * len(buckets)
    active = [False] * len(buckets)
    in_window = []
    for doc in selected:
        index = _bucket_index(buckets, _as_date(_field(doc, "date")))
        if index is None:
            continue
        series[index] += _to_decimal(_field(doc, "amount"))
        active[index] = True
        in_window.append(doc)

    total = sum(series, Decimal("0"))
    active_count = sum(active)
    average = total / active_count if active_count else Decimal("0")
    prior_total = _window_total(selected, period_window(period_kind, period, as_of, back=1))

    report = Report(
        periodKind=period_kind,
        period=period,
        periodLabels=[label for label, _, _ in buckets],
        seriesTotals=[float(value.quantize(CENT)) for value in series],
        categoryBreakdown=category_breakdown(in_window),
        totalForPeriod=float(total.quantize(CENT)),
        averagePerBucket=float(average.quantize(CENT, rounding=ROUND_HALF_UP)),
        trendVsPriorPeriod=trend_percentage(total, prior_total),
        generatedAt=datetime.now(timezone.utc),
    )
    logger.info(
        "Generated %s/%s report: %d documents, total %.2f",
        period_kind.value, period.value, len(in_window), report.totalForPeriod
    )
    return report
