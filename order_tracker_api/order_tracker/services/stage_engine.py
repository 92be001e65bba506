from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from order_tracker.core.errors import NotFoundError
from order_tracker.core.stages import (
    REGRESSION,
    UNCHANGED,
    Stage,
    classify_transition,
    parse_stage,
    stage_rank,
)
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.orders import Regression, TransitionResult
from order_tracker.schemas.realtime import StageChangedEvent
from order_tracker.schemas.tracking import Actor, OrderItemRead, OrderRead, StatusEventRead
from order_tracker.services.audit import AuditAction, AuditLogger, EntityType
from order_tracker.services.base import BaseService, retry_on_conflict
from order_tracker.services.realtime import broadcast_manager

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def aggregate_stage(items: Iterable[OrderItemRead]) -> Optional[Stage]:
    """
    Least-progressed stage among non-archived items, or None when there are none.
    """
    stages = [parse_stage(item.current_stage) for item in items if item.archived_at is None]
    if not stages:
        return None
    return min(stages, key=stage_rank)


# PUBLIC_INTERFACE
def replay_regressions(events: Sequence[StatusEventRead]) -> List[Regression]:
    """
    Walk one item's status events (oldest first) and return every step that
    lowered the stage rank.
    """
    regressions: List[Regression] = []
    for previous, current in zip(events, events[1:]):
        if stage_rank(current.stage) < stage_rank(previous.stage):
            regressions.append(
                Regression(from_stage=previous.stage, to_stage=current.stage, note=current.note, at=current.created_at)
            )
    return regressions


class StageTransitionEngine(BaseService):
    """
    Moves order items between production stages.

    Each transition reads, decides and writes inside one atomic unit keyed by the
    item and its order, keeps the order's aggregate stage in sync and writes the
    audit trail in the same unit. Kiosk displays are notified after commit.
    """

    def __init__(self, repository: TrackingRepository) -> None:
        super().__init__(repository)
        self.audit = AuditLogger(repository)

    async def _require_item(self, item_id: UUID) -> OrderItemRead:
        item = await self.repository.get_item(item_id)
        if item is None:
            raise NotFoundError("OrderItem", item_id)
        return item

    async def _history_with_baseline(self, item: OrderItemRead, current: Stage) -> List[StatusEventRead]:
        """
        The item's status events, seeded with one for its current stage when it has none.

        Replay compares adjacent events, so without a starting event a first move
        backwards would never show up as a regression.
        """
        events = await self.repository.list_status_events(item_ids=[item.id])
        if events:
            return events
        baseline = await self.repository.append_status_event(
            order_id=item.order_id,
            item_id=item.id,
            stage=current,
            note=None,
            created_at=min(item.created_at, datetime.now(timezone.utc)),
        )
        return [baseline]

    @staticmethod
    def _event_timestamp(events: Sequence[StatusEventRead]) -> datetime:
        # Event order within an item must be strict for history replay.
        now = datetime.now(timezone.utc)
        if events and events[-1].created_at >= now:
            now = events[-1].created_at + timedelta(microseconds=1)
        return now

    async def _sync_order_stage(self, order_id: UUID, actor: Actor) -> Stage:
        """Recompute the aggregate stage and persist it when it moved."""
        order = await self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        items = await self.repository.list_items_for_order(order_id)
        new_stage = aggregate_stage(items)
        if new_stage is None or new_stage == order.current_stage:
            # All items archived keeps the stored stage.
            return order.current_stage
        await self.repository.update_order(order_id, {"current_stage": new_stage})
        await self.audit.record(
            EntityType.ORDER,
            order_id,
            AuditAction.ORDER_STAGE_CHANGED,
            {"fromStage": order.current_stage.value, "toStage": new_stage.value},
            actor,
        )
        logger.info("Order %s stage %s -> %s", order_id, order.current_stage.value, new_stage.value)
        return new_stage

    async def _transition_once(
        self,
        item_id: UUID,
        target: Stage,
        actor: Actor,
        note: Optional[str],
    ) -> Tuple[TransitionResult, Optional[StageChangedEvent]]:
        # The first read only resolves the order id needed for the lock keys.
        located = await self._require_item(item_id)
        async with self.repository.atomic(f"item:{item_id}", f"order:{located.order_id}"):
            item = await self._require_item(item_id)
            current = parse_stage(item.current_stage)
            direction = classify_transition(current, target)

            if direction == UNCHANGED:
                if note:
                    await self.audit.record(
                        EntityType.ORDER_ITEM,
                        item.id,
                        AuditAction.ITEM_STAGE_NOTE_ADDED,
                        {"stage": current.value, "note": note, "orderId": str(item.order_id)},
                        actor,
                    )
                order = await self.repository.get_order(item.order_id)
                result = TransitionResult(
                    item=item,
                    event=None,
                    direction=UNCHANGED,
                    order_stage=order.current_stage if order else None,
                )
                return result, None

            history = await self._history_with_baseline(item, current)
            created_at = self._event_timestamp(history)
            updated = await self.repository.update_item(item.id, {"current_stage": target})
            event = await self.repository.append_status_event(
                order_id=item.order_id,
                item_id=item.id,
                stage=target,
                note=note,
                created_at=created_at,
            )
            regression = direction == REGRESSION
            await self.audit.record(
                EntityType.ORDER_ITEM,
                item.id,
                AuditAction.ITEM_STAGE_CHANGED,
                {
                    "fromStage": current.value,
                    "toStage": target.value,
                    "regression": regression,
                    "note": note,
                    "orderId": str(item.order_id),
                },
                actor,
            )
            order_stage = await self._sync_order_stage(item.order_id, actor)

        if regression:
            logger.warning("Item %s regressed %s -> %s", item.id, current.value, target.value)
        else:
            logger.info("Item %s moved %s -> %s", item.id, current.value, target.value)

        notice = StageChangedEvent(
            order_id=item.order_id,
            item_id=item.id,
            product_code=item.product_code,
            from_stage=current,
            to_stage=target,
            order_stage=order_stage,
            regression=regression,
            performed_by=actor.display_name,
        )
        result = TransitionResult(item=updated, event=event, direction=direction, order_stage=order_stage)
        return result, notice

    # PUBLIC_INTERFACE
    async def transition(
        self,
        item_id: UUID,
        target_stage: Stage | str,
        actor: Actor,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move an item to `target_stage`.

        Moving to the current stage writes nothing, except an
        ITEM_STAGE_NOTE_ADDED audit entry when a note is given.

        Raises:
            InvalidStageError: unknown target, raised before any read.
            NotFoundError: unknown item.
            ConcurrencyConflictError: the atomic unit conflicted twice.
        """
        target = parse_stage(target_stage)
        note = (note or "").strip() or None

        result, notice = await retry_on_conflict(
            lambda: self._transition_once(item_id, target, actor, note),
            description=f"stage transition of item {item_id}",
        )
        if notice is not None:
            try:
                await broadcast_manager.publish_stage_changed(notice)
            except Exception:
                logger.exception("Failed to publish kiosk event after transition of item %s", item_id)
        return result

    # PUBLIC_INTERFACE
    async def regressions_for_item(self, item_id: UUID) -> List[Regression]:
        """
        Regressions in an item's stage history, oldest first.

        Raises:
            NotFoundError: unknown item.
        """
        await self._require_item(item_id)
        events = await self.repository.list_status_events(item_ids=[item_id])
        return replay_regressions(events)

    async def _set_archived_once(self, item_id: UUID, archived: bool, actor: Actor) -> OrderRead:
        located = await self._require_item(item_id)
        async with self.repository.atomic(f"item:{item_id}", f"order:{located.order_id}"):
            item = await self._require_item(item_id)
            if item.is_archived != archived:
                await self.repository.update_item(
                    item.id, {"archived_at": datetime.now(timezone.utc) if archived else None}
                )
                await self.audit.record(
                    EntityType.ORDER_ITEM,
                    item.id,
                    AuditAction.ITEM_ARCHIVED if archived else AuditAction.ITEM_RESTORED,
                    {
                        "orderId": str(item.order_id),
                        "productCode": item.product_code,
                        "stage": parse_stage(item.current_stage).value,
                    },
                    actor,
                )
                await self._sync_order_stage(item.order_id, actor)
                logger.info("Item %s %s", item.id, "archived" if archived else "restored")
            order = await self.repository.get_order(item.order_id)
            if order is None:
                raise NotFoundError("Order", item.order_id)
            return order

    # PUBLIC_INTERFACE
    async def set_item_archived(self, item_id: UUID, archived: bool, actor: Actor) -> OrderRead:
        """
        Soft-delete (archived=True) or restore an item and re-derive the order stage.

        Archiving an archived item (or restoring an active one) is a no-op.
        Returns the order with all its items.
        """
        return await retry_on_conflict(
            lambda: self._set_archived_once(item_id, archived, actor),
            description=f"archive toggle of item {item_id}",
        )
