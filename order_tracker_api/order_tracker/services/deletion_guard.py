from __future__ import annotations

import logging
from typing import Sequence
from uuid import UUID

from order_tracker.core.errors import NotFoundError, ReferentialConstraintError
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.accounts import BlockingOrder, DeletionCheck
from order_tracker.schemas.tracking import AccountRead, Actor, OrderRead
from order_tracker.services.audit import AuditAction, AuditLogger, EntityType
from order_tracker.services.base import BaseService, retry_on_conflict

logger = logging.getLogger(__name__)

MAX_LISTED_BLOCKERS = 3


def _blocked_check(account: AccountRead, orders: Sequence[OrderRead]) -> DeletionCheck:
    newest_first = sorted(orders, key=lambda o: (o.created_at, str(o.id)), reverse=True)
    listed = newest_first[:MAX_LISTED_BLOCKERS]
    return DeletionCheck(
        ok=False,
        reason=(
            f'Cannot delete account "{account.name}" because it has {len(orders)} associated order(s). '
            "Delete or reassign the orders first."
        ),
        blocking_orders=[BlockingOrder(id=o.id, reference=o.po_number, created_at=o.created_at) for o in listed],
        overflow_count=len(orders) - len(listed),
    )


class DeletionGuard(BaseService):
    """
    Account deletion that never leaves orphaned orders.

    Any order row, archived items or not, blocks deletion.
    """

    def __init__(self, repository: TrackingRepository) -> None:
        super().__init__(repository)
        self.audit = AuditLogger(repository)

    async def _require_account(self, account_id: UUID) -> AccountRead:
        account = await self.repository.get_account(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    # PUBLIC_INTERFACE
    async def can_delete_account(self, account_id: UUID) -> DeletionCheck:
        """
        Report whether the account can be deleted, and what blocks it if not.

        Raises:
            NotFoundError: unknown account.
        """
        account = await self._require_account(account_id)
        orders = await self.repository.list_orders_for_account(account_id)
        if orders:
            return _blocked_check(account, orders)
        return DeletionCheck(ok=True)

    async def _delete_once(self, account_id: UUID, actor: Actor) -> DeletionCheck:
        async with self.repository.atomic(f"account:{account_id}"):
            account = await self._require_account(account_id)
            orders = await self.repository.list_orders_for_account(account_id)
            if orders:
                raise ReferentialConstraintError(
                    f"Account {account_id} has {len(orders)} order(s)",
                    details={"account_id": str(account_id), "order_count": len(orders)},
                )
            await self.audit.record(
                EntityType.ACCOUNT,
                account.id,
                AuditAction.ACCOUNT_DELETED,
                {"message": f'Account "{account.name}" deleted', "name": account.name, "orderCount": 0},
                actor,
            )
            await self.repository.delete_account(account.id)
        logger.info("Account %s deleted", account_id)
        return DeletionCheck(ok=True)

    # PUBLIC_INTERFACE
    async def delete_account(self, account_id: UUID, actor: Actor) -> DeletionCheck:
        """
        Delete the account when nothing references it.

        The check and the delete run in one atomic unit. A blocked deletion
        (including an order inserted concurrently) rolls the unit back and comes
        back as a blocked DeletionCheck rather than an exception.

        Raises:
            NotFoundError: unknown account.
        """
        try:
            return await retry_on_conflict(
                lambda: self._delete_once(account_id, actor),
                description=f"deletion of account {account_id}",
            )
        except ReferentialConstraintError as exc:
            logger.info("Deletion of account %s blocked: %s", account_id, exc.message)
            account = await self._require_account(account_id)
            orders = await self.repository.list_orders_for_account(account_id)
            if not orders:
                # The blocking row vanished after rollback; report the store's refusal as is.
                return DeletionCheck(ok=False, reason=exc.message)
            return _blocked_check(account, orders)
