import math
from uuid import uuid4

import pytest

from order_tracker.core.errors import InvalidMeasurementError, NotFoundError
from order_tracker.services.audit import AuditAction
from order_tracker.services.measurements import (
    UNSET,
    MeasurementService,
    normalize,
    prepare_measurement_update,
)


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (None, None),
            ("", None),
            ("   ", None),
            (UNSET, None),
            (12, 12.0),
            (12.5, 12.5),
            ("12.5", 12.5),
            (" 7 ", 7.0),
            (0, 0.0),
        ],
    )
    def test_valid_values(self, raw, expected):
        assert normalize(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "12cm", True, [1], float("nan"), "inf", math.inf])
    def test_invalid_values(self, raw):
        with pytest.raises(InvalidMeasurementError):
            normalize(raw)


class TestPrepareMeasurementUpdate:
    def test_absent_null_and_value_are_distinct(self):
        prepared = prepare_measurement_update({"height": None, "width": "3.5"})
        assert prepared == {"height": None, "width": 3.5}
        assert "length" not in prepared

    def test_unset_is_skipped(self):
        assert prepare_measurement_update({"height": UNSET, "weight": ""}) == {"weight": None}

    def test_camel_case_unit_keys(self):
        prepared = prepare_measurement_update({"measurementUnit": " in ", "weightUnit": "lb"})
        assert prepared == {"measurement_unit": "in", "weight_unit": "lb"}

    def test_invalid_field_raises_with_field_name(self):
        with pytest.raises(InvalidMeasurementError) as exc_info:
            prepare_measurement_update({"height": 10, "weight": "heavy"})
        assert exc_info.value.field == "weight"

    def test_invalid_field_collected_when_skipping(self):
        skipped = []
        prepared = prepare_measurement_update({"height": 10, "weight": "heavy"}, skipped)
        assert prepared == {"height": 10.0}
        assert [s.field for s in skipped] == ["weight"]


@pytest.fixture
def seeded(repo):
    account = repo.add_account()
    order = repo.add_order(account.id)
    item = repo.add_item(order.id, height=10.0, width=4.0, measurement_unit="in")
    other = repo.add_item(order.id, product_code="BOLT")
    return order, item, other


class TestMeasurementService:
    @pytest.mark.anyio
    async def test_partial_update_leaves_absent_fields(self, repo, actor, seeded):
        _, item, _ = seeded
        result = await MeasurementService(repo).update_item_measurements(item.id, {"height": "12", "width": None}, actor)

        stored = repo.items[item.id]
        assert stored.height == 12.0
        assert stored.width is None
        assert stored.measurement_unit == "in"
        assert stored.measured_by == actor.display_name
        assert stored.measured_at is not None
        assert result.audit_entry.action == AuditAction.MEASUREMENTS_UPDATED
        changes = {c["field"]: c for c in result.audit_entry.metadata["changes"]}
        assert changes["height"] == {"field": "height", "oldValue": 10.0, "newValue": 12.0, "unit": "in"}
        assert changes["width"]["newValue"] is None

    @pytest.mark.anyio
    async def test_unchanged_values_write_no_audit_entry(self, repo, actor, seeded):
        _, item, _ = seeded
        result = await MeasurementService(repo).update_item_measurements(item.id, {"height": 10}, actor)
        assert result.audit_entry is None
        assert repo.audit == []

    @pytest.mark.anyio
    async def test_empty_partial_is_a_no_op(self, repo, actor, seeded):
        _, item, _ = seeded
        before = repo.items[item.id]
        result = await MeasurementService(repo).update_item_measurements(item.id, {}, actor)
        assert result.applied == {}
        assert repo.items[item.id] == before

    @pytest.mark.anyio
    async def test_invalid_value_rejects_whole_update(self, repo, actor, seeded):
        _, item, _ = seeded
        with pytest.raises(InvalidMeasurementError):
            await MeasurementService(repo).update_item_measurements(item.id, {"height": 11, "width": "wide"}, actor)
        assert repo.items[item.id].height == 10.0
        assert repo.atomic_calls == []

    @pytest.mark.anyio
    async def test_keep_stored_on_invalid(self, repo, actor, seeded):
        _, item, _ = seeded
        result = await MeasurementService(repo).update_item_measurements(
            item.id, {"height": 11, "width": "wide"}, actor, keep_stored_on_invalid=True
        )
        assert repo.items[item.id].height == 11.0
        assert repo.items[item.id].width == 4.0
        assert [s.field for s in result.skipped] == ["width"]

    @pytest.mark.anyio
    async def test_item_of_another_order_is_not_found(self, repo, actor, seeded):
        _, item, _ = seeded
        with pytest.raises(NotFoundError):
            await MeasurementService(repo).update_item_measurements(item.id, {"height": 1}, actor, order_id=uuid4())

    @pytest.mark.anyio
    async def test_bulk_update_applies_order_units(self, repo, actor, seeded):
        order, item, other = seeded
        result = await MeasurementService(repo).update_order_measurements(
            order.id,
            [{"id": str(item.id), "height": 20}, {"id": other.id, "weight": "5", "weight_unit": "kg"}],
            actor,
            measurement_unit="cm",
            weight_unit="lb",
        )
        assert result.updated == 2
        assert repo.items[item.id].measurement_unit == "cm"
        assert repo.items[item.id].weight_unit == "lb"
        assert repo.items[other.id].weight == 5.0
        assert repo.items[other.id].weight_unit == "kg"

    @pytest.mark.anyio
    async def test_bulk_update_is_all_or_nothing(self, repo, actor, seeded):
        order, item, _ = seeded
        with pytest.raises(NotFoundError):
            await MeasurementService(repo).update_order_measurements(
                order.id, [{"id": item.id, "height": 99}, {"id": uuid4(), "height": 1}], actor
            )
        assert repo.items[item.id].height == 10.0
        assert repo.audit == []

    @pytest.mark.anyio
    async def test_bulk_update_rolls_back_when_audit_write_fails(self, repo, actor, seeded):
        order, item, other = seeded
        repo.fail_audit_writes = True
        with pytest.raises(RuntimeError):
            await MeasurementService(repo).update_order_measurements(
                order.id, [{"id": item.id, "height": 99}, {"id": other.id, "height": 1}], actor
            )
        assert repo.items[item.id].height == 10.0
        assert repo.items[other.id].height is None

    @pytest.mark.anyio
    async def test_bulk_update_without_entries(self, repo, actor, seeded):
        order, _, _ = seeded
        result = await MeasurementService(repo).update_order_measurements(order.id, [], actor)
        assert result.updated == 0
