import logging
import secrets
from datetime import UTC, date, datetime

from psycopg import errors as pg_errors

from groupdate.db.core import Database
from groupdate.db.interfaces import SchedulingStore
from groupdate.errors import ConflictError
from groupdate.models.scheduling import (
    AttendeeIdentity,
    AttendeeSession,
    DayBlock,
    Event,
    Phase,
    Vote,
)

logger = logging.getLogger(__name__)

EVENT_COLUMNS = (
    "id, token, title, description, start_date, end_date, vote_deadline, quorum, "
    "phase, final_date, host_id, host_name, show_results_to_everyone"
)
SESSION_COLUMNS = (
    "id, event_id, attendee_id, user_id, session_token, display_name, time_zone, "
    "anonymous_blocks, has_saved_availability, is_active, created_at, updated_at"
)


def _new_id() -> str:
    return secrets.token_hex(12)


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)


def _row_to_event(row) -> Event:
    return Event(
        id=row[0],
        token=row[1],
        title=row[2],
        description=row[3],
        start_date=row[4],
        end_date=row[5],
        vote_deadline=_as_utc(row[6]),
        quorum=row[7],
        phase=Phase(row[8]),
        final_date=row[9],
        host_id=row[10],
        host_name=row[11],
        show_results_to_everyone=row[12],
    )


def _row_to_session(row) -> AttendeeSession:
    return AttendeeSession(
        id=row[0],
        event_id=row[1],
        attendee_id=row[2],
        user_id=row[3],
        session_token=row[4],
        display_name=row[5],
        time_zone=row[6],
        anonymous_blocks=row[7],
        has_saved_availability=row[8],
        is_active=row[9],
        created_at=_as_utc(row[10]),
        updated_at=_as_utc(row[11]),
    )


class PostgresSchedulingStore(SchedulingStore):
    def __init__(self, db: Database):
        self.db = db

    async def get_event_by_token(self, token: str) -> Event | None:
        async with self.db.connection() as conn:
            row = await (
                await conn.execute(f"SELECT {EVENT_COLUMNS} FROM gd_events WHERE token = %s", (token,))
            ).fetchone()
            return _row_to_event(row) if row else None

    async def list_events_past_deadline(self, now: datetime) -> list[Event]:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {EVENT_COLUMNS} FROM gd_events WHERE phase = %s AND vote_deadline < %s ORDER BY vote_deadline",
                (Phase.VOTE.value, now),
            )
            return [_row_to_event(row) async for row in cur]

    async def list_identities(self, event_id: str) -> list[AttendeeIdentity]:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, event_id, label, slug FROM gd_attendee_identities WHERE event_id = %s ORDER BY label, id",
                (event_id,),
            )
            return [AttendeeIdentity(id=r[0], event_id=r[1], label=r[2], slug=r[3]) async for r in cur]

    async def list_active_sessions(self, event_id: str) -> list[AttendeeSession]:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                f"""SELECT {SESSION_COLUMNS} FROM gd_attendee_sessions
                    WHERE event_id = %s AND is_active
                    ORDER BY created_at DESC, id DESC""",
                (event_id,),
            )
            return [_row_to_session(row) async for row in cur]

    async def list_votes(self, event_id: str) -> list[Vote]:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                "SELECT event_id, attendee_id, is_in FROM gd_votes WHERE event_id = %s ORDER BY attendee_id",
                (event_id,),
            )
            return [Vote(event_id=r[0], attendee_id=r[1], is_in=r[2]) async for r in cur]

    async def list_blocks(self, event_id: str) -> list[DayBlock]:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                "SELECT event_id, attendee_id, day, anonymous FROM gd_day_blocks WHERE event_id = %s ORDER BY day, attendee_id",
                (event_id,),
            )
            return [DayBlock(event_id=r[0], attendee_id=r[1], day=r[2], anonymous=r[3]) async for r in cur]

    async def count_in_votes(self, event_id: str) -> int:
        async with self.db.connection() as conn:
            row = await (
                await conn.execute("SELECT COUNT(*) FROM gd_votes WHERE event_id = %s AND is_in", (event_id,))
            ).fetchone()
            return int(row[0]) if row else 0

    async def upsert_vote(self, event_id: str, attendee_id: str, is_in: bool) -> Vote:
        now = datetime.now(UTC)
        async with self.db.connection() as conn:
            await conn.execute(
                """INSERT INTO gd_votes (event_id, attendee_id, is_in, updated_at)
                   VALUES (%s, %s, %s, %s)
                   ON CONFLICT (event_id, attendee_id) DO UPDATE SET is_in = EXCLUDED.is_in, updated_at = EXCLUDED.updated_at""",
                (event_id, attendee_id, is_in, now),
            )
        return Vote(event_id=event_id, attendee_id=attendee_id, is_in=is_in)

    async def replace_blocks(
        self,
        event_id: str,
        attendee_id: str,
        days: list[date],
        anonymous: bool,
    ) -> list[DayBlock]:
        days = sorted(set(days))
        now = datetime.now(UTC)
        async with self.db.connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM gd_day_blocks WHERE event_id = %s AND attendee_id = %s",
                    (event_id, attendee_id),
                )
                if days:
                    await conn.execute(
                        """INSERT INTO gd_day_blocks (event_id, attendee_id, day, anonymous, created_at)
                           SELECT %s, %s, d, %s, %s FROM unnest(%s::date[]) AS d""",
                        (event_id, attendee_id, anonymous, now, days),
                    )
                await conn.execute(
                    """UPDATE gd_attendee_sessions
                       SET has_saved_availability = TRUE, anonymous_blocks = %s, updated_at = %s
                       WHERE event_id = %s AND attendee_id = %s AND is_active""",
                    (anonymous, now, event_id, attendee_id),
                )
        return [DayBlock(event_id=event_id, attendee_id=attendee_id, day=d, anonymous=anonymous) for d in days]

    async def claim_slot(
        self,
        event_id: str,
        attendee_id: str,
        *,
        session_token: str,
        display_name: str,
        user_id: str | None = None,
        time_zone: str = "UTC",
        anonymous_blocks: bool = True,
        replaces_session_id: str | None = None,
    ) -> AttendeeSession:
        now = datetime.now(UTC)
        async with self.db.connection() as conn:
            try:
                async with conn.transaction():
                    await conn.execute(
                        """UPDATE gd_attendee_sessions SET is_active = FALSE, updated_at = %s
                           WHERE event_id = %s AND is_active
                             AND (attendee_id = %s OR session_token = %s OR id = %s
                                  OR (%s::text IS NOT NULL AND user_id = %s))""",
                        (now, event_id, attendee_id, session_token, replaces_session_id, user_id, user_id),
                    )
                    row = await (
                        await conn.execute(
                            f"""INSERT INTO gd_attendee_sessions
                                (id, event_id, attendee_id, user_id, session_token, display_name, time_zone,
                                 anonymous_blocks, has_saved_availability, is_active, created_at, updated_at)
                                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, FALSE, TRUE, %s, %s)
                                RETURNING {SESSION_COLUMNS}""",
                            (
                                _new_id(),
                                event_id,
                                attendee_id,
                                user_id,
                                session_token,
                                display_name,
                                time_zone,
                                anonymous_blocks,
                                now,
                                now,
                            ),
                        )
                    ).fetchone()
            except pg_errors.UniqueViolation:
                logger.info("Concurrent claim lost for slot %s... on event %s...", attendee_id[:8], event_id[:8])
                raise ConflictError(detail="That name was just taken, pick another", error_code="slot_taken") from None
        return _row_to_session(row)

    async def deactivate_session(self, session_id: str) -> None:
        async with self.db.connection() as conn:
            await conn.execute(
                "UPDATE gd_attendee_sessions SET is_active = FALSE, updated_at = %s WHERE id = %s",
                (datetime.now(UTC), session_id),
            )

    async def update_phase(self, event_id: str, expected: Phase, new: Phase) -> bool:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                "UPDATE gd_events SET phase = %s, updated_at = %s WHERE id = %s AND phase = %s",
                (new.value, datetime.now(UTC), event_id, expected.value),
            )
            return cur.rowcount == 1

    async def set_final_date(
        self,
        event_id: str,
        final_date: date | None,
        expected: Phase,
        new: Phase,
    ) -> bool:
        async with self.db.connection() as conn:
            cur = await conn.execute(
                "UPDATE gd_events SET final_date = %s, phase = %s, updated_at = %s WHERE id = %s AND phase = %s",
                (final_date, new.value, datetime.now(UTC), event_id, expected.value),
            )
            return cur.rowcount == 1

    async def set_results_visibility(self, event_id: str, visible: bool) -> None:
        async with self.db.connection() as conn:
            await conn.execute(
                "UPDATE gd_events SET show_results_to_everyone = %s, updated_at = %s WHERE id = %s",
                (visible, datetime.now(UTC), event_id),
            )

    async def override_phase(
        self,
        event_id: str,
        expected: Phase,
        new: Phase,
        reason: str,
        actor_method: str,
    ) -> bool:
        async with self.db.connection() as conn:
            async with conn.transaction():
                cur = await conn.execute(
                    "UPDATE gd_events SET phase = %s, updated_at = %s WHERE id = %s AND phase = %s",
                    (new.value, datetime.now(UTC), event_id, expected.value),
                )
                if cur.rowcount != 1:
                    return False
                await conn.execute(
                    """INSERT INTO gd_phase_audit (event_id, from_phase, to_phase, reason, actor_method)
                       VALUES (%s, %s, %s, %s, %s)""",
                    (event_id, expected.value, new.value, reason, actor_method),
                )
        return True
