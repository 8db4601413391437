from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from unittest.mock import patch

import pytest
from psycopg import errors as pg_errors

from groupdate.config import PostgresSettings
from groupdate.db.core import Database
from groupdate.db.scheduling import PostgresSchedulingStore
from groupdate.errors import ConflictError
from groupdate.models.scheduling import Phase

CREATED = datetime(2030, 1, 1, 9, 0)

EVENT_ROW = (
    "evt12345abcdef",
    "tok-abc",
    "Dinner",
    None,
    date(2030, 6, 10),
    date(2030, 6, 14),
    datetime(2030, 6, 3, 12, 0, tzinfo=UTC),
    2,
    "PICK_DAYS",
    None,
    "host-1",
    "Hazel",
    False,
)

SESSION_ROW = (
    "sess-1",
    "evt12345abcdef",
    "att-alice",
    None,
    "anon_evt12345_" + "a" * 32,
    "Alice",
    "UTC",
    True,
    False,
    True,
    CREATED,
    CREATED,
)


class MockAsyncCursor:
    def __init__(self, rows=None, rowcount=0):
        self.rows = rows or []
        self.rowcount = rowcount
        self._index = 0

    async def fetchone(self):
        if self.rows:
            return self.rows[0]
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self.rows):
            raise StopAsyncIteration
        row = self.rows[self._index]
        self._index += 1
        return row


class MockAsyncConnection:
    """Returns queued results in order; an Exception in the queue is raised."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls: list[tuple[str, tuple | None]] = []
        self.transactions = 0
        self.in_transaction = False
        self.transactional: list[str] = []

    async def execute(self, sql, params=None):
        self.calls.append((sql, params))
        if self.in_transaction:
            self.transactional.append(sql.split()[0])
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        if isinstance(result, MockAsyncCursor):
            return result
        return MockAsyncCursor(result)

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        self.in_transaction = True
        try:
            yield
        finally:
            self.in_transaction = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def conn():
    return MockAsyncConnection()


@pytest.fixture
def store(conn):
    async def connect(*args, **kwargs):
        return conn

    with patch("groupdate.db.core.psycopg.AsyncConnection") as mock_psycopg:
        mock_psycopg.connect = connect
        yield PostgresSchedulingStore(Database(PostgresSettings()))


class TestReads:
    @pytest.mark.asyncio
    async def test_get_event_by_token(self, store, conn):
        conn.results = [[EVENT_ROW]]
        event = await store.get_event_by_token("tok-abc")
        assert event.phase is Phase.PICK_DAYS
        assert event.quorum == 2
        assert event.host_name == "Hazel"
        assert conn.calls[0][1] == ("tok-abc",)

    @pytest.mark.asyncio
    async def test_missing_event(self, store, conn):
        assert await store.get_event_by_token("nope") is None

    @pytest.mark.asyncio
    async def test_sessions_are_utc(self, store, conn):
        conn.results = [[SESSION_ROW]]
        [session] = await store.list_active_sessions("evt12345abcdef")
        assert session.created_at.utcoffset() == timedelta(0)
        assert session.attendee_id == "att-alice"
        assert "is_active" in conn.calls[0][0]

    @pytest.mark.asyncio
    async def test_count_in_votes(self, store, conn):
        conn.results = [[(3,)]]
        assert await store.count_in_votes("evt12345abcdef") == 3

    @pytest.mark.asyncio
    async def test_list_blocks(self, store, conn):
        conn.results = [[("evt12345abcdef", "att-bob", date(2030, 6, 11), False)]]
        [block] = await store.list_blocks("evt12345abcdef")
        assert block.day == date(2030, 6, 11)
        assert block.anonymous is False


class TestWrites:
    @pytest.mark.asyncio
    async def test_replace_blocks_is_one_transaction(self, store, conn):
        days = [date(2030, 6, 12), date(2030, 6, 11), date(2030, 6, 12)]
        blocks = await store.replace_blocks("evt12345abcdef", "att-alice", days, anonymous=True)

        assert [b.day for b in blocks] == [date(2030, 6, 11), date(2030, 6, 12)]
        assert conn.transactions == 1
        statements = [sql.split()[0] for sql, _ in conn.calls]
        assert statements == ["DELETE", "INSERT", "UPDATE"]
        assert conn.calls[1][1][-1] == [date(2030, 6, 11), date(2030, 6, 12)]

    @pytest.mark.asyncio
    async def test_replace_with_no_days_clears(self, store, conn):
        assert await store.replace_blocks("evt12345abcdef", "att-alice", [], anonymous=True) == []
        assert [sql.split()[0] for sql, _ in conn.calls] == ["DELETE", "UPDATE"]

    @pytest.mark.asyncio
    async def test_claim_slot(self, store, conn):
        conn.results = [None, [SESSION_ROW]]
        session = await store.claim_slot(
            "evt12345abcdef",
            "att-alice",
            session_token=SESSION_ROW[4],
            display_name="Alice",
        )
        assert session.id == "sess-1"
        assert conn.transactions == 1
        assert conn.calls[0][0].lstrip().startswith("UPDATE gd_attendee_sessions SET is_active = FALSE")

    @pytest.mark.asyncio
    async def test_claim_slot_race_is_a_conflict(self, store, conn):
        conn.results = [None, pg_errors.UniqueViolation("duplicate key")]
        with pytest.raises(ConflictError) as exc:
            await store.claim_slot("evt12345abcdef", "att-alice", session_token="t", display_name="Alice")
        assert exc.value.error_code == "slot_taken"

    @pytest.mark.asyncio
    async def test_update_phase_compare_and_set(self, store, conn):
        conn.results = [MockAsyncCursor(rowcount=1)]
        assert await store.update_phase("evt12345abcdef", Phase.VOTE, Phase.PICK_DAYS) is True
        params = conn.calls[0][1]
        assert params[0] == "PICK_DAYS"
        assert params[-1] == "VOTE"

        conn.results = [MockAsyncCursor(rowcount=0)]
        assert await store.update_phase("evt12345abcdef", Phase.VOTE, Phase.FAILED) is False

    @pytest.mark.asyncio
    async def test_set_final_date(self, store, conn):
        conn.results = [MockAsyncCursor(rowcount=1)]
        ok = await store.set_final_date("evt12345abcdef", date(2030, 6, 12), Phase.RESULTS, Phase.FINALIZED)
        assert ok is True
        assert conn.calls[0][1][:2] == (date(2030, 6, 12), "FINALIZED")

    @pytest.mark.asyncio
    async def test_override_phase_writes_audit_in_same_transaction(self, store, conn):
        conn.results = [MockAsyncCursor(rowcount=1), None]
        ok = await store.override_phase("evt12345abcdef", Phase.VOTE, Phase.RESULTS, "venue", "authenticated_user")

        assert ok is True
        assert conn.transactions == 1
        assert conn.transactional == ["UPDATE", "INSERT"]
        sql, params = conn.calls[1]
        assert "gd_phase_audit" in sql
        assert params == ("evt12345abcdef", "VOTE", "RESULTS", "venue", "authenticated_user")

    @pytest.mark.asyncio
    async def test_override_phase_lost_race_writes_no_audit(self, store, conn):
        conn.results = [MockAsyncCursor(rowcount=0)]
        assert await store.override_phase("evt12345abcdef", Phase.VOTE, Phase.RESULTS, "venue", "x") is False
        assert len(conn.calls) == 1

    @pytest.mark.asyncio
    async def test_override_phase_audit_failure_propagates(self, store, conn):
        conn.results = [MockAsyncCursor(rowcount=1), pg_errors.UndefinedTable("gd_phase_audit")]
        with pytest.raises(pg_errors.UndefinedTable):
            await store.override_phase("evt12345abcdef", Phase.VOTE, Phase.RESULTS, "venue", "x")
        assert conn.transactional == ["UPDATE", "INSERT"]
