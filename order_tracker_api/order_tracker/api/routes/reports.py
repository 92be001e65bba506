from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel

from order_tracker.core.deps import get_repository, require_roles
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.reports import (
    CompletionTimeReport,
    FirstPassYieldReport,
    OrderValueAtRiskReport,
    ReportFilter,
    SalesByItemReport,
    SalesByMonthReport,
    SalesByRepReport,
    StageAgingReport,
    StageDistributionReport,
    StageDurationsReport,
    ThroughputReport,
)
from order_tracker.services.exports import export_report
from order_tracker.services.reports import ReportAggregator

# PUBLIC_INTERFACE
router = APIRouter(
    prefix="/reports",
    tags=["Reports"],
    dependencies=[Depends(require_roles("admin"))],
)

FORMAT_DESCRIPTION = "Response format: json | csv | xlsx | pdf"
FORMAT_PATTERN = "^(json|csv|xlsx|pdf)$"


def _respond(report: BaseModel, name: str, export_format: str):
    if export_format == "json":
        return report
    exported = export_report(report, name, export_format)
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


# PUBLIC_INTERFACE
def get_report_filter(
    date_from: Optional[Union[date, datetime]] = Query(None, description="Inclusive range start (ISO date or datetime)"),
    date_to: Optional[Union[date, datetime]] = Query(None, description="Inclusive range end (ISO date or datetime)"),
    account_id: Optional[UUID] = Query(None, description="Only orders of this account"),
    rep_id: Optional[str] = Query(None, description="Only orders assigned to this sales rep"),
    stage: List[str] = Query([], description="Only orders currently in one of these stages (repeatable)"),
    product_code: List[str] = Query([], description="Only items with one of these product codes (repeatable)"),
    include_archived: bool = Query(False, description="Count archived items"),
) -> ReportFilter:
    """
    Build the report selection from query parameters.

    Unknown stage names are rejected with invalid_stage before any report runs.
    """
    return ReportFilter(
        date_from=date_from,
        date_to=date_to,
        account_id=account_id,
        rep_id=rep_id,
        stages=stage,
        product_codes=product_code,
        include_archived=include_archived,
    )


# PUBLIC_INTERFACE
@router.get(
    "/first-pass-yield",
    response_model=FirstPassYieldReport,
    summary="First-pass yield",
    description="Share of items with activity in range that never regressed to an earlier stage.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def first_pass_yield_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).first_pass_yield(report_filter)
    return _respond(report, "first_pass_yield", format)


# PUBLIC_INTERFACE
@router.get(
    "/stage-distribution",
    response_model=StageDistributionReport,
    summary="Stage distribution",
    description="Number of orders in each production stage right now.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def stage_distribution_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).stage_distribution(report_filter)
    return _respond(report, "stage_distribution", format)


# PUBLIC_INTERFACE
@router.get(
    "/avg-completion-time",
    response_model=CompletionTimeReport,
    summary="Average completion time",
    description="Average whole days from order creation to delivery of its last item, for orders completed in range.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def average_completion_time_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).average_completion_time(report_filter)
    return _respond(report, "avg_completion_time", format)


# PUBLIC_INTERFACE
@router.get(
    "/throughput",
    response_model=ThroughputReport,
    summary="Throughput",
    description="Stage changes in range per stage, with a weekly (ISO week) series.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def throughput_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).throughput(report_filter)
    return _respond(report, "throughput", format)


# PUBLIC_INTERFACE
@router.get(
    "/sales-by-item",
    response_model=SalesByItemReport,
    summary="Sales by item",
    description="Sales per product code for orders created in range; products past the top N fold into OTHER.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def sales_by_item_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    top_n: Optional[int] = Query(None, ge=0, le=100, description="Products listed before folding into OTHER"),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).sales_by_item(report_filter, top_n=top_n)
    return _respond(report, "sales_by_item", format)


# PUBLIC_INTERFACE
@router.get(
    "/sales-by-month",
    response_model=SalesByMonthReport,
    summary="Sales by month",
    description="Sales per month of order creation with month-over-month change.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def sales_by_month_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).sales_by_month(report_filter)
    return _respond(report, "sales_by_month", format)


# PUBLIC_INTERFACE
@router.get(
    "/sales-by-rep",
    response_model=SalesByRepReport,
    summary="Sales by rep",
    description="Sales per assigned sales rep, optionally with a monthly series per rep.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def sales_by_rep_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    include_monthly: bool = Query(False, description="Add a monthly series per rep"),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).sales_by_rep(report_filter, include_monthly=include_monthly)
    return _respond(report, "sales_by_rep", format)


# PUBLIC_INTERFACE
@router.get(
    "/stage-durations",
    response_model=StageDurationsReport,
    summary="Stage durations",
    description="Time items spent in each stage (count, min, max, mean, median, p90).",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def stage_durations_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    report = await ReportAggregator(repository).stage_durations(report_filter)
    return _respond(report, "stage_durations", format)


# PUBLIC_INTERFACE
@router.get(
    "/stage-aging",
    response_model=StageAgingReport,
    summary="Stage aging",
    description="Open orders by time in their current stage, flagged warning or critical past the stage thresholds.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def stage_aging_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    as_of: Optional[datetime] = Query(None, description="Reference time (defaults to now)"),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    now = as_of or datetime.now(timezone.utc)
    report = await ReportAggregator(repository).stage_aging(report_filter, now)
    return _respond(report, "stage_aging", format)


# PUBLIC_INTERFACE
@router.get(
    "/order-value-at-risk",
    response_model=OrderValueAtRiskReport,
    summary="Order value at risk",
    description="Value of open orders that are past their ETA or stuck in their current stage past the threshold.",
    response_description="Report JSON or file stream (CSV/XLSX/PDF)",
)
async def order_value_at_risk_report(
    report_filter: ReportFilter = Depends(get_report_filter),
    repository: TrackingRepository = Depends(get_repository),
    as_of: Optional[datetime] = Query(None, description="Reference time (defaults to now)"),
    aging_threshold_days: Optional[int] = Query(
        None, ge=0, le=365, description="Days in one stage before an order counts as aging (default from settings)"
    ),
    format: str = Query("json", description=FORMAT_DESCRIPTION, pattern=FORMAT_PATTERN),
):
    now = as_of or datetime.now(timezone.utc)
    report = await ReportAggregator(repository).order_value_at_risk(
        report_filter, now, aging_threshold_days=aging_threshold_days
    )
    return _respond(report, "order_value_at_risk", format)
