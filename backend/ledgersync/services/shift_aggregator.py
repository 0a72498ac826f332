"""
Shift aggregation service.

iCafeCloud's reportData for a whole business day is eventually consistent and
undercounts the current graveyard shift, so a day is rebuilt from its shifts:
one report per shift (scoped to the shift's own time range and staff name),
merged field by field.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from collections import OrderedDict, defaultdict
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel
import asyncio
import logging

from ledgersync.config import settings
from ledgersync.exceptions import InternalInvariantViolation
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import round_money
from ledgersync.schemas.report import (
    ZERO,
    AggregatedReport,
    ProductSale,
    ReportTotals,
    Shift,
    ShiftDetail,
    ShiftReport,
    ShiftSummary,
    StaffTopup,
    TopMember,
    TopPC,
)
from ledgersync.services.icafe_service import icafe_service
from ledgersync.services.report_adapter import parse_report, parse_shift, parse_shift_detail
from ledgersync.services.revenue_reconciler import reconcile
from ledgersync.utils.business_day import (
    get_business_day_window,
    local_now,
    shift_hours,
)
from ledgersync.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

TOP_LIST_SIZE = 5


def _sum_fields(model_cls, items: Sequence[BaseModel]) -> Dict[str, Any]:
    """Field-by-field sum of Decimal and nested-model fields; list fields are skipped"""
    summed: Dict[str, Any] = {}
    for name in model_cls.model_fields:
        values = [getattr(item, name) for item in items]
        if isinstance(values[0], Decimal):
            summed[name] = sum(values, ZERO)
        elif isinstance(values[0], BaseModel):
            sub_cls = type(values[0])
            summed[name] = sub_cls(**_sum_fields(sub_cls, values))
    return summed


def _rank(pairs: Iterable[Tuple[str, Decimal]], limit: int = TOP_LIST_SIZE) -> List[Tuple[str, Decimal]]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for name, amount in pairs:
        totals[name] += amount
    # Highest first, ties broken by name so the order never depends on input order
    return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]


def merge_products(items: Iterable[ProductSale]) -> List[ProductSale]:
    """Merge product line items by name, summing quantity, revenue and refunded quantity"""
    merged: Dict[str, Dict[str, Decimal]] = defaultdict(
        lambda: {"order_number": ZERO, "order_total": ZERO, "order_refunded": ZERO}
    )
    for item in items:
        bucket = merged[item.product_name]
        bucket["order_number"] += item.order_number
        bucket["order_total"] += item.order_total
        bucket["order_refunded"] += item.order_refunded
    return [ProductSale(product_name=name, **merged[name]) for name in sorted(merged)]


def merge_reports(reports: Sequence[ReportTotals]) -> ReportTotals:
    """
    Merge per-shift reports into one.

    Scalar fields sum (commutative and associative), top members / top PCs are
    combined by name and re-ranked, products are combined by name.
    """
    if not reports:
        return ReportTotals()

    merged = ReportTotals(**_sum_fields(ReportTotals, reports))

    merged.top_members = [
        TopMember(member=name, amount=amount)
        for name, amount in _rank((m.member, m.amount) for r in reports for m in r.top_members)
    ]
    merged.top_pcs = [
        TopPC(pc_name=name, total_spend=amount)
        for name, amount in _rank((pc.pc_name, pc.total_spend) for r in reports for pc in r.top_pcs)
    ]
    merged.products = merge_products(p for r in reports for p in r.products)
    return merged


class ShiftAggregator:
    """
    Builds AggregatedReports from per-shift iCafeCloud data

    The source is anything with the IcafeService coroutine interface
    (list_shifts, get_report, get_shift_detail).
    """

    def __init__(
        self,
        source=None,
        clock: Optional[Clock] = None,
        utc_offset_hours: Optional[int] = None,
    ):
        self.source = source or icafe_service
        self.clock = clock or SystemClock()
        self.utc_offset_hours = (
            utc_offset_hours if utc_offset_hours is not None else settings.CAFE_UTC_OFFSET_HOURS
        )

    async def list_shifts(
        self,
        credentials: CafeCredentials,
        date_start: str,
        date_end: str,
        time_start: Optional[str] = None,
        time_end: Optional[str] = None,
    ) -> List[Shift]:
        """
        List real shifts in a range, sorted by start

        The "All Shifts" pseudo-row is dropped; rows without a staff name or
        start time are logged and dropped.
        """
        rows = await self.source.list_shifts(credentials, date_start, date_end, time_start, time_end)

        shifts: Dict[Tuple, Shift] = {}
        for row in rows:
            try:
                shift = parse_shift(row, self.utc_offset_hours)
            except InternalInvariantViolation as e:
                logger.warning("[%s] Excluding shift row: %s", credentials.name, e)
                continue
            if shift is None:
                continue
            key = (shift.shift_id,) if shift.shift_id else (shift.staff_name, shift.start)
            shifts[key] = shift

        return sorted(shifts.values(), key=lambda s: (s.start, s.staff_name))

    async def shifts_for_business_day(self, credentials: CafeCredentials, business_date: date) -> List[Shift]:
        """Shifts whose start or end falls inside the business day window"""
        window = get_business_day_window(business_date, self.utc_offset_hours)
        candidates = await self.list_shifts(credentials, **window.bracket_range())
        return [s for s in candidates if window.contains(s.start) or window.contains(s.end)]

    async def aggregate_business_day(self, credentials: CafeCredentials, business_date: date) -> AggregatedReport:
        """
        Merged report for one business day (06:00 to 05:59 the next day)

        Args:
            credentials: Cafe credentials
            business_date: Business date

        Returns:
            AggregatedReport (all zeros when no shift falls in the window)
        """
        window = get_business_day_window(business_date, self.utc_offset_hours)
        shifts = await self.shifts_for_business_day(credentials, business_date)

        logger.info(
            "[%s] Business day %s: %d shift(s) %s",
            credentials.name, business_date, len(shifts),
            ", ".join(f"{s.staff_name} ({s.shift_type.value})" for s in shifts),
        )

        report = await self._aggregate(credentials, shifts)
        report.business_date = business_date
        for key, value in window.report_range().items():
            setattr(report, key, value)
        return report

    async def aggregate_range(
        self,
        credentials: CafeCredentials,
        date_start: str,
        date_end: str,
        time_start: str = "00:00",
        time_end: str = "23:59",
    ) -> AggregatedReport:
        """Merged report for every shift listed in an explicit date/time range"""
        shifts = await self.list_shifts(credentials, date_start, date_end, time_start, time_end)
        report = await self._aggregate(credentials, shifts)
        report.date_start = date_start
        report.date_end = date_end
        report.time_start = time_start
        report.time_end = time_end
        return report

    async def _fetch_report(self, credentials: CafeCredentials, shift: Shift, now: datetime) -> ShiftReport:
        end = shift.end if shift.end is not None else now
        data = await self.source.get_report(
            credentials,
            date_start=shift.start.date().isoformat(),
            date_end=end.date().isoformat(),
            time_start=shift.start.strftime("%H:%M"),
            time_end=end.strftime("%H:%M"),
            staff_name=shift.staff_name,
        )
        return parse_report(data)

    async def _fetch_detail(self, credentials: CafeCredentials, shift: Shift) -> ShiftDetail:
        if not shift.shift_id:
            return ShiftDetail()
        data = await self.source.get_shift_detail(credentials, shift.shift_id)
        return parse_shift_detail(data, shift)

    async def _aggregate(self, credentials: CafeCredentials, shifts: List[Shift]) -> AggregatedReport:
        if not shifts:
            return AggregatedReport()

        now = local_now(self.clock.now(), self.utc_offset_hours)

        # Step 1: Fan out one report + one detail fetch per shift
        results = await asyncio.gather(
            *(self._fetch_report(credentials, s, now) for s in shifts),
            *(self._fetch_detail(credentials, s) for s in shifts),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
        report_results = results[:len(shifts)]
        detail_results = results[len(shifts):]

        # Step 2: Per-shift contributions, zeroed on failure
        contributions: List[ShiftReport] = []
        details: List[ShiftDetail] = []
        summaries: List[ShiftSummary] = []
        failed = 0

        for shift, report_result, detail_result in zip(shifts, report_results, detail_results):
            error = None
            if isinstance(report_result, Exception):
                failed += 1
                error = str(report_result)
                logger.warning(
                    "[%s] Report for %s's shift %s failed, counting it as zero: %s",
                    credentials.name, shift.staff_name, shift.shift_id, report_result,
                )
                report_result = ShiftReport()

            if isinstance(detail_result, Exception):
                logger.warning(
                    "[%s] Detail for %s's shift %s failed, no expense items: %s",
                    credentials.name, shift.staff_name, shift.shift_id, detail_result,
                )
                detail_result = ShiftDetail()

            if not report_result.products and detail_result.products:
                report_result.products = list(detail_result.products)

            contributions.append(report_result)
            details.append(detail_result)
            summaries.append(self._summarize(shift, report_result, now, error))

        # Step 3: Merge
        merged = merge_reports(contributions)

        topups_by_staff: "OrderedDict[str, StaffTopup]" = OrderedDict()
        for shift, contribution in zip(shifts, contributions):
            if contribution.topup.amount <= ZERO and contribution.topup.number <= ZERO:
                continue
            entry = topups_by_staff.setdefault(shift.staff_name, StaffTopup(name=shift.staff_name))
            entry.total += contribution.topup.amount
            entry.count += contribution.topup.number

        return AggregatedReport(
            **{name: getattr(merged, name) for name in ReportTotals.model_fields},
            expense_items=[item for d in details for item in d.expense_items],
            shift_expense_total=sum((d.expense_total for d in details), ZERO),
            shifts=summaries,
            topups_by_staff=list(topups_by_staff.values()),
            shift_count=len(shifts),
            failed_shift_count=failed,
        )

    def _summarize(self, shift: Shift, report: ShiftReport, now: datetime, error: Optional[str]) -> ShiftSummary:
        totals = reconcile(report)
        topup_count = report.topup.number
        return ShiftSummary(
            shift_id=shift.shift_id,
            staff_name=shift.staff_name,
            shift_type=shift.shift_type,
            start=shift.start,
            end=shift.end,
            cash=totals.cash,
            sales=totals.sales,
            topups=totals.topups,
            topup_count=topup_count,
            refunds=totals.refund_total,
            profit=totals.profit,
            expense=totals.expense,
            average_topup=round_money(totals.topups / topup_count) if topup_count else ZERO,
            hours=round(shift_hours(shift.start, shift.end, now), 2),
            report_failed=error is not None,
            error=error,
        )
