from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from order_tracker.core.errors import InvalidDateRangeError
from order_tracker.core.stages import Stage, parse_stage
from order_tracker.schemas.common import CamelModel
from order_tracker.schemas.orders import Regression
from order_tracker.schemas.tracking import OrderFilter


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReportFilter(BaseModel):
    """
    Selection shared by every report.

    The inclusive date range applies to whatever the report is about (events,
    completion or order creation). Plain dates widen to whole days (date_from at
    00:00, date_to at the end of the day); naive datetimes are taken as UTC.

    The scope criteria narrow the orders, and through them the items, a report
    looks at. Archived items are left out unless include_archived is set.
    """
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    account_id: Optional[UUID] = None
    rep_id: Optional[str] = None
    stages: List[Stage] = Field(default_factory=list, description="Current order stages to keep")
    product_codes: List[str] = Field(default_factory=list)
    include_archived: bool = False

    @field_validator("stages", mode="before")
    @classmethod
    def _parse_stages(cls, v):
        # InvalidStageError is not a ValueError, so it reaches the API handler as is.
        return [parse_stage(stage) for stage in (v or [])]

    @field_validator("date_from", mode="before")
    @classmethod
    def _start_of_day(cls, v):
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.min, tzinfo=timezone.utc)
        return v

    @field_validator("date_to", mode="before")
    @classmethod
    def _end_of_day(cls, v):
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.max, tzinfo=timezone.utc)
        return v

    @field_validator("date_from", "date_to")
    @classmethod
    def _utc_if_naive(cls, v):
        return _as_aware(v)

    def check(self) -> "ReportFilter":
        """Raise InvalidDateRangeError when date_from is after date_to."""
        if self.date_from is not None and self.date_to is not None and self.date_from > self.date_to:
            raise InvalidDateRangeError(
                "date_from must not be after date_to",
                details={"date_from": self.date_from.isoformat(), "date_to": self.date_to.isoformat()},
            )
        return self

    @property
    def scoped(self) -> bool:
        """True when an account, rep, stage or product criterion is set."""
        return bool(self.account_id or self.rep_id or self.stages or self.product_codes)

    def order_filter(self, dated: bool = True, **overrides) -> OrderFilter:
        """Repository selection for this filter; dated=False drops the date range."""
        fields = {
            "account_id": self.account_id,
            "rep_id": self.rep_id,
            "stages": list(self.stages),
            "product_codes": list(self.product_codes),
            "include_archived": self.include_archived,
        }
        if dated:
            fields.update(date_from=self.date_from, date_to=self.date_to)
        fields.update(overrides)
        return OrderFilter(**fields)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        moment = _as_aware(moment)
        if self.date_from is not None and moment < self.date_from:
            return False
        if self.date_to is not None and moment > self.date_to:
            return False
        return True


class ReportMeta(CamelModel):
    """Header shared by every report."""
    report: str = Field(..., description="Report key, e.g. first-pass-yield")
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    row_count: int = 0


# First-Pass Yield

class FirstPassYieldKpis(CamelModel):
    items_evaluated: int
    items_evaluated_formatted: str
    clean_count: int
    clean_count_formatted: str
    rework_count: int
    rework_count_formatted: str
    yield_rate: float = Field(..., description="clean / (clean + rework), 0.0 when no items")
    yield_rate_formatted: str


class ReworkRow(CamelModel):
    item_id: UUID
    order_id: UUID
    product_code: Optional[str] = None
    current_stage: Optional[Stage] = None
    regression_count: int
    regressions: List[Regression] = Field(default_factory=list)


class FirstPassYieldReport(CamelModel):
    meta: ReportMeta
    kpis: FirstPassYieldKpis
    rows: List[ReworkRow] = Field(default_factory=list)


# Stage distribution / throughput

class StageCountRow(CamelModel):
    stage: Stage
    label: str
    rank: int
    count: int
    count_formatted: str
    percent_of_total: float
    percent_of_total_formatted: str


class StageDistributionKpis(CamelModel):
    total_orders: int
    total_orders_formatted: str


class StageDistributionReport(CamelModel):
    meta: ReportMeta
    kpis: StageDistributionKpis
    rows: List[StageCountRow] = Field(default_factory=list)


class ThroughputKpis(CamelModel):
    total_events: int
    total_events_formatted: str


class ThroughputWeek(CamelModel):
    week: str = Field(..., description="ISO week, e.g. 2025-W07")
    counts: Dict[str, int] = Field(default_factory=dict, description="Events per stage")
    total: int


class ThroughputReport(CamelModel):
    meta: ReportMeta
    kpis: ThroughputKpis
    rows: List[StageCountRow] = Field(default_factory=list)
    series: List[ThroughputWeek] = Field(default_factory=list)


# Average completion time

class CompletionKpis(CamelModel):
    completed_orders: int
    completed_orders_formatted: str
    average_days: int
    average_days_formatted: str


class CompletionRow(CamelModel):
    order_id: UUID
    po_number: str
    created_at: datetime
    completed_at: datetime
    days: int
    days_formatted: str


class CompletionTimeReport(CamelModel):
    meta: ReportMeta
    kpis: CompletionKpis
    rows: List[CompletionRow] = Field(default_factory=list)


# Sales

class SalesKpis(CamelModel):
    total_sales: float
    total_sales_formatted: str
    item_count: int
    item_count_formatted: str


class SalesRow(CamelModel):
    key: str = Field(..., description="Product code, rep id or OTHER")
    label: str
    item_count: int
    item_count_formatted: str
    total: float
    total_formatted: str
    percent_of_total: float
    percent_of_total_formatted: str


class MonthOverMonth(CamelModel):
    change: float
    change_formatted: str
    change_percent: Optional[float] = Field(None, description="None when the previous month is 0")
    change_percent_formatted: str
    direction: str = Field(..., description="up | down | flat")


class SalesMonthRow(CamelModel):
    month: str = Field(..., description="YYYY-MM of order creation")
    item_count: int
    item_count_formatted: str
    total: float
    total_formatted: str
    percent_of_total: float
    percent_of_total_formatted: str
    mom: Optional[MonthOverMonth] = None


class RepMonthlySeries(CamelModel):
    rep_id: str
    rep_name: str
    months: Dict[str, float] = Field(default_factory=dict)


class SalesByItemReport(CamelModel):
    meta: ReportMeta
    kpis: SalesKpis
    rows: List[SalesRow] = Field(default_factory=list)


class SalesByMonthReport(CamelModel):
    meta: ReportMeta
    kpis: SalesKpis
    rows: List[SalesMonthRow] = Field(default_factory=list)


class SalesByRepReport(CamelModel):
    meta: ReportMeta
    kpis: SalesKpis
    rows: List[SalesRow] = Field(default_factory=list)
    series: Optional[List[RepMonthlySeries]] = None


# Stage durations / aging

class StageDurationRow(CamelModel):
    stage: Stage
    label: str
    count: int
    min_seconds: Optional[float] = None
    max_seconds: Optional[float] = None
    mean_seconds: Optional[float] = None
    median_seconds: Optional[float] = None
    p90_seconds: Optional[float] = None
    min_formatted: str
    max_formatted: str
    mean_formatted: str
    median_formatted: str
    p90_formatted: str


class StageDurationKpis(CamelModel):
    items_measured: int
    items_measured_formatted: str
    intervals_measured: int
    intervals_measured_formatted: str


class StageDurationsReport(CamelModel):
    meta: ReportMeta
    kpis: StageDurationKpis
    rows: List[StageDurationRow] = Field(default_factory=list)


class AgingRow(CamelModel):
    order_id: UUID
    po_number: str
    stage: Stage
    label: str
    in_stage_since: datetime
    days_in_stage: int
    days_in_stage_formatted: str
    risk_level: str = Field(..., description="normal | warning | critical")


class AgingKpis(CamelModel):
    open_orders: int
    open_orders_formatted: str
    normal_count: int
    warning_count: int
    critical_count: int


class StageAgingReport(CamelModel):
    meta: ReportMeta
    kpis: AgingKpis
    rows: List[AgingRow] = Field(default_factory=list)


# Order value at risk

class ValueAtRiskRow(CamelModel):
    order_id: UUID
    po_number: str
    account_name: Optional[str] = None
    stage: Stage
    label: str
    risk: str = Field(..., description="late | aging")
    value: float
    value_formatted: str
    eta_date: Optional[datetime] = None
    days_late: Optional[int] = None
    last_update: Optional[datetime] = Field(None, description="Latest status event, or order creation")
    days_in_stage: Optional[int] = None


class ValueAtRiskKpis(CamelModel):
    total_at_risk: float
    total_at_risk_formatted: str
    late_total: float
    late_total_formatted: str
    late_count: int
    aging_total: float
    aging_total_formatted: str
    aging_count: int
    aging_threshold_days: int


class ValueAtRiskSeries(CamelModel):
    category: str
    value: float
    value_formatted: str
    count: int


class OrderValueAtRiskReport(CamelModel):
    meta: ReportMeta
    kpis: ValueAtRiskKpis
    rows: List[ValueAtRiskRow] = Field(default_factory=list)
    series: List[ValueAtRiskSeries] = Field(default_factory=list)
