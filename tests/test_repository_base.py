from contextlib import asynccontextmanager

import pytest
from sqlalchemy.exc import DBAPIError

from order_tracker.core.errors import ConcurrencyConflictError
from order_tracker.repositories.base import BaseRepository, sqlstate_of
from order_tracker.repositories.tracking import SqlAlchemyTrackingRepository


class DriverError(Exception):
    def __init__(self, sqlstate=None, pgcode=None):
        super().__init__(f"driver error {sqlstate or pgcode}")
        if sqlstate is not None:
            self.sqlstate = sqlstate
        if pgcode is not None:
            self.pgcode = pgcode


def wrapped(**codes):
    return DBAPIError("UPDATE order_items SET current_stage = :stage", {"stage": "NEW"}, DriverError(**codes))


class RecordingSession:
    """Just enough of AsyncSession for advisory locks and the unit of work."""

    def __init__(self):
        self.executed = []
        self.commits = 0

    def in_transaction(self):
        return False

    async def commit(self):
        self.commits += 1

    @asynccontextmanager
    async def begin(self):
        yield self

    async def execute(self, statement, params=None):
        self.executed.append((str(statement), params))


class TestSqlState:
    @pytest.mark.parametrize("code", ["40001", "40P01", "55P03"])
    def test_lock_and_serialization_failures_are_conflicts(self, code):
        exc = wrapped(sqlstate=code)
        assert sqlstate_of(exc) == code
        conflict = BaseRepository.conflict_from(exc, ["order:1"])
        assert isinstance(conflict, ConcurrencyConflictError)
        assert conflict.details == {"keys": ["order:1"]}

    def test_other_codes_are_not_conflicts(self):
        exc = wrapped(sqlstate="23505")
        assert sqlstate_of(exc) == "23505"
        assert BaseRepository.conflict_from(exc, ["order:1"]) is None

    def test_psycopg_pgcode(self):
        assert sqlstate_of(wrapped(pgcode="40P01")) == "40P01"
        assert isinstance(BaseRepository.conflict_from(wrapped(pgcode="40P01"), []), ConcurrencyConflictError)

    def test_driver_error_without_code(self):
        exc = wrapped()
        assert sqlstate_of(exc) is None
        assert BaseRepository.conflict_from(exc, []) is None


class TestAdvisoryLocks:
    @pytest.mark.anyio
    async def test_keys_are_locked_once_in_sorted_order(self):
        session = RecordingSession()

        await BaseRepository(session).lock_keys(["order:b", "item:z", "order:b", "item:a"])

        assert [params["key"] for _, params in session.executed] == ["item:a", "item:z", "order:b"]
        assert all("pg_advisory_xact_lock" in statement for statement, _ in session.executed)

    @pytest.mark.anyio
    async def test_deadlock_inside_unit_becomes_conflict(self):
        repository = SqlAlchemyTrackingRepository(RecordingSession())

        with pytest.raises(ConcurrencyConflictError):
            async with repository.atomic("order:2", "order:1"):
                raise wrapped(sqlstate="40P01")

    @pytest.mark.anyio
    async def test_other_database_errors_propagate(self):
        repository = SqlAlchemyTrackingRepository(RecordingSession())

        with pytest.raises(DBAPIError):
            async with repository.atomic("order:1"):
                raise wrapped(sqlstate="22003")
