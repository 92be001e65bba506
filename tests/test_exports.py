from datetime import datetime, timezone

import pytest

from order_tracker.core.stages import Stage
from order_tracker.schemas.reports import ReportFilter
from order_tracker.services.exports import export_report, report_rows_frame
from order_tracker.services.reports import ReportAggregator


async def regressed_yield_report(repo):
    order = repo.add_order(repo.add_account().id)
    item = repo.add_item(order.id)
    for n, stage in enumerate([Stage.NEW, Stage.QUALITY_CHECK, Stage.NEW]):
        repo.add_event(item, stage, datetime(2024, 1, 1 + n, tzinfo=timezone.utc))
    return await ReportAggregator(repo).first_pass_yield(ReportFilter())


class TestReportFrame:
    @pytest.mark.anyio
    async def test_nested_values_are_flattened(self, repo):
        frame = report_rows_frame(await regressed_yield_report(repo))

        assert list(frame["regression_count"]) == [1]
        assert frame["regressions"][0].startswith("[")

    @pytest.mark.anyio
    async def test_empty_report(self, repo):
        report = await ReportAggregator(repo).sales_by_month(ReportFilter())
        assert report_rows_frame(report).empty


class TestExportReport:
    @pytest.mark.anyio
    async def test_csv(self, repo):
        exported = export_report(await regressed_yield_report(repo), "first_pass_yield", "csv")

        assert exported.media_type == "text/csv"
        assert exported.filename == "first_pass_yield.csv"
        assert exported.content.decode("utf-8").splitlines()[0].startswith("item_id")

    @pytest.mark.anyio
    async def test_empty_report_still_renders_pdf(self, repo):
        report = await ReportAggregator(repo).sales_by_rep(ReportFilter())

        exported = export_report(report, "sales_by_rep", "pdf")

        assert exported.content.startswith(b"%PDF")

    @pytest.mark.anyio
    async def test_unknown_format(self, repo):
        report = await ReportAggregator(repo).sales_by_rep(ReportFilter())
        with pytest.raises(ValueError):
            export_report(report, "sales_by_rep", "docx")
