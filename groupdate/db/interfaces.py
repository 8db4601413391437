"""Store interface (repository pattern).

Stores must be swappable and return domain models. Every mutating method is
atomic on its own.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime

from groupdate.models.scheduling import (
    AttendeeIdentity,
    AttendeeSession,
    DayBlock,
    Event,
    Phase,
    Vote,
)


class SchedulingStore(ABC):
    """Persistence operations used by the scheduling core."""

    @abstractmethod
    async def get_event_by_token(self, token: str) -> Event | None:
        """Return the event behind an invite token, or None."""
        ...

    @abstractmethod
    async def list_events_past_deadline(self, now: datetime) -> list[Event]:
        """Return events still in VOTE whose vote deadline is before ``now``."""
        ...

    @abstractmethod
    async def list_identities(self, event_id: str) -> list[AttendeeIdentity]:
        """Return the event's name slots ordered by label."""
        ...

    @abstractmethod
    async def list_active_sessions(self, event_id: str) -> list[AttendeeSession]:
        """Return active sessions of the event, newest first."""
        ...

    @abstractmethod
    async def list_votes(self, event_id: str) -> list[Vote]:
        ...

    @abstractmethod
    async def list_blocks(self, event_id: str) -> list[DayBlock]:
        ...

    @abstractmethod
    async def count_in_votes(self, event_id: str) -> int:
        ...

    @abstractmethod
    async def upsert_vote(self, event_id: str, attendee_id: str, is_in: bool) -> Vote:
        ...

    @abstractmethod
    async def replace_blocks(
        self,
        event_id: str,
        attendee_id: str,
        days: list[date],
        anonymous: bool,
    ) -> list[DayBlock]:
        """Replace all blocks of one identity.

        Also marks its active session as having saved availability and stores
        ``anonymous`` as the session's blocking preference.
        """
        ...

    @abstractmethod
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
        """Deactivate prior sessions on the slot (and the claimant's previous one), then create a new one.

        Raises ConflictError if a concurrent claim won the slot.
        """
        ...

    @abstractmethod
    async def deactivate_session(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def update_phase(self, event_id: str, expected: Phase, new: Phase) -> bool:
        """Compare-and-set the phase. Returns False if the phase was not ``expected``."""
        ...

    @abstractmethod
    async def set_final_date(
        self,
        event_id: str,
        final_date: date | None,
        expected: Phase,
        new: Phase,
    ) -> bool:
        """Write the final date and phase together, compare-and-set on the phase."""
        ...

    @abstractmethod
    async def set_results_visibility(self, event_id: str, visible: bool) -> None:
        ...

    @abstractmethod
    async def override_phase(
        self,
        event_id: str,
        expected: Phase,
        new: Phase,
        reason: str,
        actor_method: str,
    ) -> bool:
        """Compare-and-set the phase and write the audit row in one transaction."""
        ...
