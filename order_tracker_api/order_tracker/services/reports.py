from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Set, Tuple
from uuid import UUID

from order_tracker.core.settings import get_app_settings
from order_tracker.core.stages import (
    STAGES,
    TERMINAL_STAGE,
    Stage,
    assess_risk_level,
    is_terminal_stage,
    parse_stage,
    stage_label,
    stage_rank,
)
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.reports import (
    AgingKpis,
    AgingRow,
    CompletionKpis,
    CompletionRow,
    CompletionTimeReport,
    FirstPassYieldKpis,
    FirstPassYieldReport,
    MonthOverMonth,
    OrderValueAtRiskReport,
    RepMonthlySeries,
    ReportFilter,
    ReportMeta,
    ReworkRow,
    SalesByItemReport,
    SalesByMonthReport,
    SalesByRepReport,
    SalesKpis,
    SalesMonthRow,
    SalesRow,
    StageAgingReport,
    StageCountRow,
    StageDistributionKpis,
    StageDistributionReport,
    StageDurationKpis,
    StageDurationRow,
    StageDurationsReport,
    ThroughputKpis,
    ThroughputReport,
    ThroughputWeek,
    ValueAtRiskKpis,
    ValueAtRiskRow,
    ValueAtRiskSeries,
)
from order_tracker.schemas.tracking import OrderItemRead, OrderRead, StatusEventRead
from order_tracker.services.base import BaseService
from order_tracker.services.formatting import (
    calculate_stats,
    format_count,
    format_currency,
    format_days,
    format_duration,
    format_percent,
    percent_of,
    round_half_up,
)
from order_tracker.services.stage_engine import replay_regressions

logger = logging.getLogger(__name__)

OTHER_KEY = "OTHER"
UNASSIGNED_REP = "UNASSIGNED"
SECONDS_PER_DAY = 86400
VALUE_AT_RISK_ROWS = 20


def _meta(report: str, report_filter: ReportFilter, row_count: int) -> ReportMeta:
    return ReportMeta(
        report=report,
        date_from=report_filter.date_from,
        date_to=report_filter.date_to,
        row_count=row_count,
    )


def _group_by_item(events: List[StatusEventRead]) -> Dict[UUID, List[StatusEventRead]]:
    grouped: Dict[UUID, List[StatusEventRead]] = defaultdict(list)
    for event in events:
        if event.item_id is not None:
            grouped[event.item_id].append(event)
    return grouped


def _stage_count_rows(counts: Dict[Stage, int]) -> List[StageCountRow]:
    total = sum(counts.values())
    return [
        StageCountRow(
            stage=stage,
            label=stage_label(stage),
            rank=stage_rank(stage),
            count=counts.get(stage, 0),
            count_formatted=format_count(counts.get(stage, 0)),
            percent_of_total=percent_of(counts.get(stage, 0), total),
            percent_of_total_formatted=format_percent(percent_of(counts.get(stage, 0), total)),
        )
        for stage in STAGES
    ]


def _iso_week(moment: datetime) -> str:
    iso = moment.isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


def _month_key(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def _month_range(first: str, last: str) -> Iterator[str]:
    year, month = (int(part) for part in first.split("-"))
    while f"{year:04d}-{month:02d}" <= last:
        yield f"{year:04d}-{month:02d}"
        month += 1
        if month > 12:
            year, month = year + 1, 1


class _SalesBucket:
    __slots__ = ("total", "count")

    def __init__(self) -> None:
        self.total = 0.0
        self.count = 0

    def add(self, price: float) -> None:
        self.total += price
        self.count += 1


def _sales_row(key: str, label: str, bucket: _SalesBucket, grand_total: float) -> SalesRow:
    total = round_half_up(bucket.total, 2)
    share = percent_of(total, grand_total)
    return SalesRow(
        key=key,
        label=label,
        item_count=bucket.count,
        item_count_formatted=format_count(bucket.count),
        total=total,
        total_formatted=format_currency(total),
        percent_of_total=share,
        percent_of_total_formatted=format_percent(share),
    )


def _sales_kpis(grand_total: float, item_count: int) -> SalesKpis:
    return SalesKpis(
        total_sales=grand_total,
        total_sales_formatted=format_currency(grand_total),
        item_count=item_count,
        item_count_formatted=format_count(item_count),
    )


def _month_over_month(current: float, previous: float) -> MonthOverMonth:
    change = round_half_up(current - previous, 2)
    change_percent = None if previous == 0 else round_half_up((current - previous) / previous * 100.0, 1)
    if current > previous:
        direction = "up"
    elif current < previous:
        direction = "down"
    else:
        direction = "flat"
    return MonthOverMonth(
        change=change,
        change_formatted=format_currency(change),
        change_percent=change_percent,
        change_percent_formatted=format_percent(change_percent),
        direction=direction,
    )


class ReportAggregator(BaseService):
    """
    Read-only business reports.

    Every report validates its ReportFilter first, tolerates empty data and is
    deterministic for a given store snapshot. Only stage aging and order value
    at risk depend on the current time, and that is passed in explicitly.
    """

    def __init__(self, repository: TrackingRepository, top_n: Optional[int] = None) -> None:
        super().__init__(repository)
        self.top_n = top_n if top_n is not None else get_app_settings().REPORT_TOP_N

    async def _priced_items(self, report_filter: ReportFilter) -> List[Tuple[OrderRead, OrderItemRead]]:
        orders = await self.repository.list_orders(report_filter.order_filter())
        return [(order, item) for order in orders for item in order.items if item.item_price is not None]

    async def _scoped_item_ids(self, report_filter: ReportFilter) -> Optional[Set[UUID]]:
        """Ids of the items a scoped filter selects, or None when every item counts."""
        if not report_filter.scoped:
            return None
        orders = await self.repository.list_orders(report_filter.order_filter(dated=False))
        return {item.id for order in orders for item in order.items}

    async def _events_in_range(self, report_filter: ReportFilter) -> List[StatusEventRead]:
        events = await self.repository.list_status_events(
            date_from=report_filter.date_from, date_to=report_filter.date_to
        )
        scope = await self._scoped_item_ids(report_filter)
        if scope is not None:
            events = [e for e in events if e.item_id in scope]
        return events

    async def _scoped_orders(self, report_filter: ReportFilter, dated: bool) -> List[OrderRead]:
        # Order-level reports count archived items' orders too; product codes
        # still drop orders that have none of them.
        orders = await self.repository.list_orders(report_filter.order_filter(dated=dated, include_archived=True))
        if report_filter.product_codes:
            orders = [o for o in orders if o.items]
        return orders

    # PUBLIC_INTERFACE
    async def first_pass_yield(self, report_filter: ReportFilter) -> FirstPassYieldReport:
        """
        Share of items that never moved backwards.

        Items are those with at least one status event in range; regressions are
        counted over each item's full history.
        """
        report_filter.check()
        in_range = await self._events_in_range(report_filter)
        item_ids = sorted({e.item_id for e in in_range if e.item_id is not None}, key=str)
        history = _group_by_item(await self.repository.list_status_events(item_ids=item_ids)) if item_ids else {}

        clean_count = 0
        rows: List[ReworkRow] = []
        for item_id in item_ids:
            events = history.get(item_id, [])
            regressions = replay_regressions(events)
            if not regressions:
                clean_count += 1
                continue
            item = await self.repository.get_item(item_id)
            rows.append(
                ReworkRow(
                    item_id=item_id,
                    order_id=events[0].order_id,
                    product_code=item.product_code if item else None,
                    current_stage=item.current_stage if item else None,
                    regression_count=len(regressions),
                    regressions=regressions,
                )
            )
        rows.sort(key=lambda r: (-r.regression_count, str(r.item_id)))

        rework_count = len(rows)
        evaluated = clean_count + rework_count
        yield_rate = clean_count / evaluated if evaluated else 0.0
        kpis = FirstPassYieldKpis(
            items_evaluated=evaluated,
            items_evaluated_formatted=format_count(evaluated),
            clean_count=clean_count,
            clean_count_formatted=format_count(clean_count),
            rework_count=rework_count,
            rework_count_formatted=format_count(rework_count),
            yield_rate=yield_rate,
            yield_rate_formatted=format_percent(yield_rate * 100.0),
        )
        return FirstPassYieldReport(meta=_meta("first-pass-yield", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def stage_distribution(self, report_filter: ReportFilter) -> StageDistributionReport:
        """Orders per current aggregate stage, every stage listed. Ignores the date range but honours the scope."""
        report_filter.check()
        orders = await self._scoped_orders(report_filter, dated=False)
        counts: Dict[Stage, int] = defaultdict(int)
        for order in orders:
            counts[parse_stage(order.current_stage)] += 1
        rows = _stage_count_rows(counts)
        kpis = StageDistributionKpis(total_orders=len(orders), total_orders_formatted=format_count(len(orders)))
        return StageDistributionReport(meta=_meta("stage-distribution", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def average_completion_time(self, report_filter: ReportFilter) -> CompletionTimeReport:
        """
        Whole days from order creation to completion, averaged over orders completed in range.

        An order completes when its last non-archived item first reached the
        terminal stage. Orders missing that history are left out.
        """
        report_filter.check()
        stages = [s for s in (report_filter.stages or [TERMINAL_STAGE]) if is_terminal_stage(s)]
        orders = []
        if stages:
            orders = await self.repository.list_orders(
                report_filter.order_filter(dated=False, stages=stages, include_archived=False)
            )
        orders = [o for o in orders if o.items]
        events = (
            await self.repository.list_status_events(order_ids=[o.id for o in orders]) if orders else []
        )
        first_terminal: Dict[UUID, datetime] = {}
        for event in events:
            if event.item_id is not None and event.stage == TERMINAL_STAGE:
                first_terminal.setdefault(event.item_id, event.created_at)

        rows: List[CompletionRow] = []
        for order in orders:
            stamps = [first_terminal.get(item.id) for item in order.items]
            if any(stamp is None for stamp in stamps):
                continue
            completed_at = max(stamps)
            if not report_filter.contains(completed_at):
                continue
            days = max(0, math.floor((completed_at - order.created_at).total_seconds() / SECONDS_PER_DAY))
            rows.append(
                CompletionRow(
                    order_id=order.id,
                    po_number=order.po_number,
                    created_at=order.created_at,
                    completed_at=completed_at,
                    days=days,
                    days_formatted=format_days(days),
                )
            )
        rows.sort(key=lambda r: (r.completed_at, str(r.order_id)))

        average = int(round_half_up(sum(r.days for r in rows) / len(rows))) if rows else 0
        kpis = CompletionKpis(
            completed_orders=len(rows),
            completed_orders_formatted=format_count(len(rows)),
            average_days=average,
            average_days_formatted=format_days(average),
        )
        return CompletionTimeReport(meta=_meta("avg-completion-time", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def throughput(self, report_filter: ReportFilter) -> ThroughputReport:
        """Status events in range per stage, with an ISO-week series."""
        report_filter.check()
        events = await self._events_in_range(report_filter)
        counts: Dict[Stage, int] = defaultdict(int)
        weeks: Dict[str, Dict[str, int]] = {}
        for event in events:
            stage = parse_stage(event.stage)
            counts[stage] += 1
            week = weeks.setdefault(_iso_week(event.created_at), {s.value: 0 for s in STAGES})
            week[stage.value] += 1

        rows = _stage_count_rows(counts)
        series = [
            ThroughputWeek(week=key, counts=weeks[key], total=sum(weeks[key].values())) for key in sorted(weeks)
        ]
        kpis = ThroughputKpis(total_events=len(events), total_events_formatted=format_count(len(events)))
        return ThroughputReport(meta=_meta("throughput", report_filter, len(rows)), kpis=kpis, rows=rows, series=series)

    # PUBLIC_INTERFACE
    async def sales_by_item(self, report_filter: ReportFilter, top_n: Optional[int] = None) -> SalesByItemReport:
        """Sales per product code; the top N are listed and the rest fold into OTHER."""
        report_filter.check()
        limit = top_n if top_n is not None else self.top_n
        buckets: Dict[str, _SalesBucket] = defaultdict(_SalesBucket)
        for _, item in await self._priced_items(report_filter):
            buckets[item.product_code].add(item.item_price)

        grand_total = round_half_up(sum(b.total for b in buckets.values()), 2)
        ranked = sorted(buckets.items(), key=lambda kv: (-kv[1].total, kv[0]))
        rows = [_sales_row(code, code, bucket, grand_total) for code, bucket in ranked[:limit]]
        rest = ranked[limit:]
        if rest:
            other = _SalesBucket()
            for _, bucket in rest:
                other.total += bucket.total
                other.count += bucket.count
            rows.append(_sales_row(OTHER_KEY, f"Other ({len(rest)} products)", other, grand_total))

        kpis = _sales_kpis(grand_total, sum(b.count for b in buckets.values()))
        return SalesByItemReport(meta=_meta("sales-by-item", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def sales_by_month(self, report_filter: ReportFilter) -> SalesByMonthReport:
        """
        Sales per calendar month of order creation, oldest first.

        Months without sales between the first and last month are listed with a
        zero total. Every month but the first carries a month-over-month change.
        """
        report_filter.check()
        buckets: Dict[str, _SalesBucket] = defaultdict(_SalesBucket)
        for order, item in await self._priced_items(report_filter):
            buckets[_month_key(order.created_at)].add(item.item_price)

        grand_total = round_half_up(sum(b.total for b in buckets.values()), 2)
        rows: List[SalesMonthRow] = []
        if buckets:
            previous: Optional[float] = None
            for month in _month_range(min(buckets), max(buckets)):
                bucket = buckets.get(month) or _SalesBucket()
                total = round_half_up(bucket.total, 2)
                share = percent_of(total, grand_total)
                rows.append(
                    SalesMonthRow(
                        month=month,
                        item_count=bucket.count,
                        item_count_formatted=format_count(bucket.count),
                        total=total,
                        total_formatted=format_currency(total),
                        percent_of_total=share,
                        percent_of_total_formatted=format_percent(share),
                        mom=None if previous is None else _month_over_month(total, previous),
                    )
                )
                previous = total

        kpis = _sales_kpis(grand_total, sum(b.count for b in buckets.values()))
        return SalesByMonthReport(meta=_meta("sales-by-month", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def sales_by_rep(self, report_filter: ReportFilter, include_monthly: bool = False) -> SalesByRepReport:
        """Sales per assigned rep, largest first, optionally with a monthly series per rep."""
        report_filter.check()
        buckets: Dict[str, _SalesBucket] = defaultdict(_SalesBucket)
        labels: Dict[str, str] = {}
        monthly: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        for order, item in await self._priced_items(report_filter):
            key = order.rep_id or UNASSIGNED_REP
            labels.setdefault(key, order.rep_name or order.rep_id or "Unassigned")
            buckets[key].add(item.item_price)
            monthly[key][_month_key(order.created_at)] += item.item_price

        grand_total = round_half_up(sum(b.total for b in buckets.values()), 2)
        ranked = sorted(buckets.items(), key=lambda kv: (-kv[1].total, kv[0]))
        rows = [_sales_row(key, labels[key], bucket, grand_total) for key, bucket in ranked]

        series = None
        if include_monthly:
            series = [
                RepMonthlySeries(
                    rep_id=key,
                    rep_name=labels[key],
                    months={month: round_half_up(value, 2) for month, value in sorted(monthly[key].items())},
                )
                for key, _ in ranked
            ]
        kpis = _sales_kpis(grand_total, sum(b.count for b in buckets.values()))
        return SalesByRepReport(
            meta=_meta("sales-by-rep", report_filter, len(rows)), kpis=kpis, rows=rows, series=series
        )

    # PUBLIC_INTERFACE
    async def stage_durations(self, report_filter: ReportFilter) -> StageDurationsReport:
        """
        Time items spent in each stage, from consecutive status events.

        An interval counts when it starts in range. The stage an item is in now
        has no end yet and is left out.
        """
        report_filter.check()
        in_range = await self._events_in_range(report_filter)
        item_ids = sorted({e.item_id for e in in_range if e.item_id is not None}, key=str)
        history = _group_by_item(await self.repository.list_status_events(item_ids=item_ids)) if item_ids else {}

        samples: Dict[Stage, List[float]] = defaultdict(list)
        measured_items = set()
        for item_id, events in history.items():
            for start, end in zip(events, events[1:]):
                if not report_filter.contains(start.created_at):
                    continue
                samples[parse_stage(start.stage)].append((end.created_at - start.created_at).total_seconds())
                measured_items.add(item_id)

        rows = []
        for stage in STAGES:
            stats = calculate_stats(samples.get(stage, []))
            rows.append(
                StageDurationRow(
                    stage=stage,
                    label=stage_label(stage),
                    count=stats["count"],
                    min_seconds=stats["min"],
                    max_seconds=stats["max"],
                    mean_seconds=stats["mean"],
                    median_seconds=stats["median"],
                    p90_seconds=stats["p90"],
                    min_formatted=format_duration(stats["min"]),
                    max_formatted=format_duration(stats["max"]),
                    mean_formatted=format_duration(stats["mean"]),
                    median_formatted=format_duration(stats["median"]),
                    p90_formatted=format_duration(stats["p90"]),
                )
            )
        intervals = sum(len(values) for values in samples.values())
        kpis = StageDurationKpis(
            items_measured=len(measured_items),
            items_measured_formatted=format_count(len(measured_items)),
            intervals_measured=intervals,
            intervals_measured_formatted=format_count(intervals),
        )
        return StageDurationsReport(meta=_meta("stage-durations", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def stage_aging(self, report_filter: ReportFilter, now: datetime) -> StageAgingReport:
        """
        Open orders by time spent in their current stage, with a risk level.

        Time in stage runs from the order's latest status event (or its creation)
        to `now`. The date range applies to order creation.
        """
        report_filter.check()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        orders = await self._scoped_orders(report_filter, dated=True)
        orders = [o for o in orders if not is_terminal_stage(o.current_stage)]
        events = await self.repository.list_status_events(order_ids=[o.id for o in orders]) if orders else []
        latest: Dict[UUID, datetime] = {}
        for event in events:
            latest[event.order_id] = event.created_at

        rows: List[AgingRow] = []
        levels = {"normal": 0, "warning": 0, "critical": 0}
        for order in orders:
            stage = parse_stage(order.current_stage)
            since = latest.get(order.id, order.created_at)
            seconds = max(0.0, (now - since).total_seconds())
            risk = assess_risk_level(stage, seconds)
            levels[risk] += 1
            days = math.floor(seconds / SECONDS_PER_DAY)
            rows.append(
                AgingRow(
                    order_id=order.id,
                    po_number=order.po_number,
                    stage=stage,
                    label=stage_label(stage),
                    in_stage_since=since,
                    days_in_stage=days,
                    days_in_stage_formatted=format_days(days),
                    risk_level=risk,
                )
            )
        rows.sort(key=lambda r: (r.in_stage_since, str(r.order_id)))

        kpis = AgingKpis(
            open_orders=len(rows),
            open_orders_formatted=format_count(len(rows)),
            normal_count=levels["normal"],
            warning_count=levels["warning"],
            critical_count=levels["critical"],
        )
        return StageAgingReport(meta=_meta("stage-aging", report_filter, len(rows)), kpis=kpis, rows=rows)

    # PUBLIC_INTERFACE
    async def order_value_at_risk(
        self, report_filter: ReportFilter, now: datetime, aging_threshold_days: Optional[int] = None
    ) -> OrderValueAtRiskReport:
        """
        Value of open orders that are late or stuck in their current stage.

        An order is late once its ETA has passed and aging when its latest status
        event (or its creation) is older than the threshold; late wins when both
        hold. Order value is the sum of its priced items, and orders worth nothing
        are skipped. Each risk lists its VALUE_AT_RISK_ROWS largest orders, while
        the KPIs cover all of them.
        """
        report_filter.check()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if aging_threshold_days is None:
            aging_threshold_days = get_app_settings().REPORT_AGING_THRESHOLD_DAYS
        threshold_seconds = aging_threshold_days * SECONDS_PER_DAY

        orders = await self.repository.list_orders(report_filter.order_filter())
        orders = [o for o in orders if not is_terminal_stage(o.current_stage)]
        events = await self.repository.list_status_events(order_ids=[o.id for o in orders]) if orders else []
        latest: Dict[UUID, datetime] = {}
        for event in events:
            latest[event.order_id] = event.created_at

        account_names: Dict[UUID, Optional[str]] = {}
        late: List[ValueAtRiskRow] = []
        aging: List[ValueAtRiskRow] = []
        for order in orders:
            value = round_half_up(sum(i.item_price for i in order.items if i.item_price is not None), 2)
            if value == 0:
                continue
            eta = order.eta_date
            if eta is not None and eta.tzinfo is None:
                eta = eta.replace(tzinfo=timezone.utc)
            since = latest.get(order.id, order.created_at)
            seconds = max(0.0, (now - since).total_seconds())
            is_late = eta is not None and eta < now
            if not is_late and seconds <= threshold_seconds:
                continue

            if order.account_id not in account_names:
                account = await self.repository.get_account(order.account_id)
                account_names[order.account_id] = account.name if account else None
            stage = parse_stage(order.current_stage)
            row = ValueAtRiskRow(
                order_id=order.id,
                po_number=order.po_number,
                account_name=account_names[order.account_id],
                stage=stage,
                label=stage_label(stage),
                risk="late" if is_late else "aging",
                value=value,
                value_formatted=format_currency(value),
                eta_date=eta,
                days_late=math.floor((now - eta).total_seconds() / SECONDS_PER_DAY) if is_late else None,
                last_update=since,
                days_in_stage=math.floor(seconds / SECONDS_PER_DAY),
            )
            (late if is_late else aging).append(row)

        late.sort(key=lambda r: (-r.value, str(r.order_id)))
        aging.sort(key=lambda r: (-r.value, str(r.order_id)))
        late_total = round_half_up(sum(r.value for r in late), 2)
        aging_total = round_half_up(sum(r.value for r in aging), 2)
        total = round_half_up(late_total + aging_total, 2)
        kpis = ValueAtRiskKpis(
            total_at_risk=total,
            total_at_risk_formatted=format_currency(total),
            late_total=late_total,
            late_total_formatted=format_currency(late_total),
            late_count=len(late),
            aging_total=aging_total,
            aging_total_formatted=format_currency(aging_total),
            aging_count=len(aging),
            aging_threshold_days=aging_threshold_days,
        )
        series = [
            ValueAtRiskSeries(
                category="Late Orders", value=late_total, value_formatted=format_currency(late_total), count=len(late)
            ),
            ValueAtRiskSeries(
                category="Aging Orders",
                value=aging_total,
                value_formatted=format_currency(aging_total),
                count=len(aging),
            ),
        ]
        rows = late[:VALUE_AT_RISK_ROWS] + aging[:VALUE_AT_RISK_ROWS]
        return OrderValueAtRiskReport(
            meta=_meta("order-value-at-risk", report_filter, len(rows)), kpis=kpis, rows=rows, series=series
        )
