import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketState

from order_tracker.core.errors import ConcurrencyConflictError, InvalidStageError, NotFoundError
from order_tracker.core.stages import FORWARD, REGRESSION, UNCHANGED, Stage
from order_tracker.services.audit import AuditAction, EntityType
from order_tracker.services.base import retry_on_conflict
from order_tracker.services.realtime import KIOSK_TOPIC, broadcast_manager
from order_tracker.services.stage_engine import StageTransitionEngine, aggregate_stage


@pytest.fixture
def order_with_items(repo):
    account = repo.add_account()
    order = repo.add_order(account.id, current_stage=Stage.NEW)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    items = [
        repo.add_item(order.id, product_code=f"P{n}", current_stage=stage, created_at=base + timedelta(minutes=n))
        for n, stage in enumerate([Stage.NEW, Stage.MANUFACTURING, Stage.QUALITY_CHECK])
    ]
    return order, items


def actions(repo):
    return [entry.action for entry in repo.audit]


class TestAggregateStage:
    def test_least_progressed_active_item_wins(self, repo, order_with_items):
        _, items = order_with_items
        assert aggregate_stage(items) is Stage.NEW
        archived = items[0].model_copy(update={"archived_at": datetime.now(timezone.utc)})
        assert aggregate_stage([archived, items[1], items[2]]) is Stage.MANUFACTURING

    def test_no_active_items(self, repo, order_with_items):
        _, items = order_with_items
        now = datetime.now(timezone.utc)
        assert aggregate_stage([i.model_copy(update={"archived_at": now}) for i in items]) is None
        assert aggregate_stage([]) is None


class TestTransition:
    @pytest.mark.anyio
    async def test_forward_move_updates_item_and_order(self, repo, actor, order_with_items):
        order, items = order_with_items
        engine = StageTransitionEngine(repo)

        result = await engine.transition(items[0].id, "manufacturing", actor)

        assert result.direction == FORWARD
        assert result.item.current_stage is Stage.MANUFACTURING
        assert result.event.stage is Stage.MANUFACTURING
        assert result.order_stage is Stage.MANUFACTURING
        assert repo.orders[order.id].current_stage is Stage.MANUFACTURING
        assert actions(repo) == [AuditAction.ITEM_STAGE_CHANGED, AuditAction.ORDER_STAGE_CHANGED]
        item_entry = repo.audit[0]
        assert item_entry.metadata["fromStage"] == "NEW"
        assert item_entry.metadata["toStage"] == "MANUFACTURING"
        assert item_entry.metadata["regression"] is False
        assert item_entry.performed_by_name == actor.display_name

    @pytest.mark.anyio
    async def test_order_stage_untouched_when_aggregate_holds(self, repo, actor, order_with_items):
        order, items = order_with_items
        result = await StageTransitionEngine(repo).transition(items[2].id, Stage.PACKAGING, actor)
        assert result.order_stage is Stage.NEW
        assert actions(repo) == [AuditAction.ITEM_STAGE_CHANGED]

    @pytest.mark.anyio
    async def test_same_stage_without_note_writes_nothing(self, repo, actor, order_with_items):
        _, items = order_with_items
        result = await StageTransitionEngine(repo).transition(items[1].id, Stage.MANUFACTURING, actor)
        assert result.direction == UNCHANGED
        assert result.event is None
        assert repo.events == []
        assert repo.audit == []

    @pytest.mark.anyio
    async def test_same_stage_with_note_records_note(self, repo, actor, order_with_items):
        _, items = order_with_items
        await StageTransitionEngine(repo).transition(items[1].id, Stage.MANUFACTURING, actor, note="  waiting on parts ")
        assert repo.events == []
        assert actions(repo) == [AuditAction.ITEM_STAGE_NOTE_ADDED]
        assert repo.audit[0].metadata["note"] == "waiting on parts"

    @pytest.mark.anyio
    async def test_unknown_stage_rejected_before_any_read(self, repo, actor, order_with_items):
        _, items = order_with_items
        with pytest.raises(InvalidStageError):
            await StageTransitionEngine(repo).transition(items[0].id, "SHIPPED", actor)
        assert repo.atomic_calls == []

    @pytest.mark.anyio
    async def test_unknown_item(self, repo, actor):
        with pytest.raises(NotFoundError):
            await StageTransitionEngine(repo).transition(uuid4(), Stage.PACKAGING, actor)

    @pytest.mark.anyio
    async def test_regression_is_detected_once(self, repo, actor, order_with_items):
        _, items = order_with_items
        engine = StageTransitionEngine(repo)
        item = items[1]

        await engine.transition(item.id, Stage.QUALITY_CHECK, actor)
        result = await engine.transition(item.id, Stage.MANUFACTURING, actor, note="failed inspection")

        assert result.direction == REGRESSION
        regressions = await engine.regressions_for_item(item.id)
        assert len(regressions) == 1
        assert regressions[0].from_stage is Stage.QUALITY_CHECK
        assert regressions[0].to_stage is Stage.MANUFACTURING
        assert regressions[0].note == "failed inspection"
        item_entries = [e for e in repo.audit if e.action == AuditAction.ITEM_STAGE_CHANGED]
        assert [e.metadata["regression"] for e in item_entries] == [False, True]

    @pytest.mark.anyio
    async def test_first_move_backwards_is_a_regression_in_history(self, repo, actor, order_with_items):
        _, items = order_with_items
        engine = StageTransitionEngine(repo)
        item = items[2]

        result = await engine.transition(item.id, Stage.MANUFACTURING, actor)

        assert result.direction == REGRESSION
        assert [e.stage for e in repo.events] == [Stage.QUALITY_CHECK, Stage.MANUFACTURING]
        assert repo.events[0].created_at == item.created_at
        regressions = await engine.regressions_for_item(item.id)
        assert [(r.from_stage, r.to_stage) for r in regressions] == [(Stage.QUALITY_CHECK, Stage.MANUFACTURING)]

    @pytest.mark.anyio
    async def test_existing_history_gets_no_baseline(self, repo, actor, order_with_items):
        _, items = order_with_items
        repo.add_event(items[0], Stage.NEW, datetime(2024, 1, 2, tzinfo=timezone.utc))

        await StageTransitionEngine(repo).transition(items[0].id, Stage.MANUFACTURING, actor)

        assert [e.stage for e in repo.events] == [Stage.NEW, Stage.MANUFACTURING]

    @pytest.mark.anyio
    async def test_event_timestamps_strictly_increase(self, repo, actor, order_with_items):
        _, items = order_with_items
        engine = StageTransitionEngine(repo)
        item = items[0]
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        repo.add_event(item, Stage.NEW, future)

        result = await engine.transition(item.id, Stage.MANUFACTURING, actor)

        assert result.event.created_at > future

    @pytest.mark.anyio
    async def test_failed_audit_rolls_back_transition(self, repo, actor, order_with_items):
        order, items = order_with_items
        repo.fail_audit_writes = True
        with pytest.raises(RuntimeError):
            await StageTransitionEngine(repo).transition(items[0].id, Stage.PACKAGING, actor)
        assert repo.items[items[0].id].current_stage is Stage.NEW
        assert repo.orders[order.id].current_stage is Stage.NEW
        assert repo.events == []

    @pytest.mark.anyio
    async def test_concurrent_transitions_keep_order_stage_consistent(self, repo, actor, order_with_items):
        order, items = order_with_items
        engine = StageTransitionEngine(repo)

        await asyncio.gather(
            engine.transition(items[0].id, Stage.PACKAGING, actor),
            engine.transition(items[1].id, Stage.PACKAGING, actor),
            engine.transition(items[2].id, Stage.PACKAGING, actor),
        )

        assert {i.current_stage for i in repo.items.values()} == {Stage.PACKAGING}
        assert repo.orders[order.id].current_stage is Stage.PACKAGING
        assert len(repo.events) == 6
        order_entries = [e for e in repo.audit if e.entity_type == EntityType.ORDER]
        assert order_entries[-1].metadata["toStage"] == "PACKAGING"

    @pytest.mark.anyio
    async def test_conflict_is_retried_once(self, repo, actor, order_with_items):
        _, items = order_with_items
        repo.conflicts_to_raise = 1
        result = await StageTransitionEngine(repo).transition(items[0].id, Stage.MANUFACTURING, actor)
        assert result.direction == FORWARD
        assert [e.stage for e in repo.events] == [Stage.NEW, Stage.MANUFACTURING]

    @pytest.mark.anyio
    async def test_second_conflict_propagates(self, repo, actor, order_with_items):
        _, items = order_with_items
        repo.conflicts_to_raise = 2
        with pytest.raises(ConcurrencyConflictError):
            await StageTransitionEngine(repo).transition(items[0].id, Stage.MANUFACTURING, actor)
        assert repo.events == []

    @pytest.mark.anyio
    async def test_kiosk_subscribers_receive_stage_change(self, repo, actor, order_with_items):
        _, items = order_with_items

        class Socket:
            application_state = WebSocketState.CONNECTED
            client_state = WebSocketState.CONNECTED

            def __init__(self):
                self.sent = []

            async def send_json(self, message):
                self.sent.append(message)

        socket = Socket()
        await broadcast_manager.connect(KIOSK_TOPIC, socket)
        try:
            assert broadcast_manager.subscriber_count(KIOSK_TOPIC) == 1
            await StageTransitionEngine(repo).transition(items[0].id, Stage.MANUFACTURING, actor)
        finally:
            await broadcast_manager.disconnect(KIOSK_TOPIC, socket)
        assert broadcast_manager.subscriber_count(KIOSK_TOPIC) == 0
        assert len(socket.sent) == 1
        assert socket.sent[0]["type"] == "item.stage_changed"
        assert socket.sent[0]["payload"]["toStage"] == "MANUFACTURING"


class TestArchive:
    @pytest.mark.anyio
    async def test_archiving_least_progressed_item_advances_order(self, repo, actor, order_with_items):
        order, items = order_with_items
        engine = StageTransitionEngine(repo)

        result = await engine.set_item_archived(items[0].id, True, actor)

        assert result.current_stage is Stage.MANUFACTURING
        assert len(result.items) == 3
        assert actions(repo) == [AuditAction.ITEM_ARCHIVED, AuditAction.ORDER_STAGE_CHANGED]

        restored = await engine.set_item_archived(items[0].id, False, actor)
        assert restored.current_stage is Stage.NEW
        assert actions(repo)[-2:] == [AuditAction.ITEM_RESTORED, AuditAction.ORDER_STAGE_CHANGED]

    @pytest.mark.anyio
    async def test_archiving_twice_is_a_no_op(self, repo, actor, order_with_items):
        _, items = order_with_items
        engine = StageTransitionEngine(repo)
        await engine.set_item_archived(items[2].id, True, actor)
        await engine.set_item_archived(items[2].id, True, actor)
        assert actions(repo) == [AuditAction.ITEM_ARCHIVED]

    @pytest.mark.anyio
    async def test_archiving_every_item_keeps_stored_stage(self, repo, actor, order_with_items):
        order, items = order_with_items
        engine = StageTransitionEngine(repo)
        for item in items:
            await engine.set_item_archived(item.id, True, actor)
        assert repo.orders[order.id].current_stage is Stage.QUALITY_CHECK


class TestRetryOnConflict:
    @pytest.mark.anyio
    async def test_returns_second_attempt(self):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise ConcurrencyConflictError("busy")
            return "done"

        assert await retry_on_conflict(operation, backoff_seconds=0) == "done"
        assert len(calls) == 2

    @pytest.mark.anyio
    async def test_other_errors_are_not_retried(self):
        calls = []

        async def operation():
            calls.append(1)
            raise NotFoundError("Order", "x")

        with pytest.raises(NotFoundError):
            await retry_on_conflict(operation, backoff_seconds=0)
        assert len(calls) == 1
