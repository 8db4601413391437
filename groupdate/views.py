"""Compose the per-viewer event view from one consistent set of reads."""

from dataclasses import dataclass
from datetime import datetime

from groupdate.availability import compute_availability
from groupdate.dates import each_day_inclusive
from groupdate.models.scheduling import (
    AttendeeIdentity,
    AttendeeSession,
    DayBlock,
    Event,
    HostDecision,
    Vote,
)
from groupdate.models.views import (
    AttendeeDetail,
    AvailabilityProgress,
    DayCount,
    EventSummary,
    EventView,
    PhaseSummary,
    RankedDay,
    SessionView,
    SlotView,
    YouView,
)
from groupdate.phases import deadline_status, results_visible


@dataclass
class EventSnapshot:
    event: Event
    identities: list[AttendeeIdentity]
    sessions: list[AttendeeSession]
    votes: list[Vote]
    blocks: list[DayBlock]

    @property
    def in_set(self) -> set[str]:
        return {v.attendee_id for v in self.votes if v.is_in}


def build_event_view(
    snapshot: EventSnapshot,
    viewer_session: AttendeeSession | None,
    host: HostDecision,
    now: datetime,
) -> EventView:
    event = snapshot.event
    slots = {i.id: i for i in snapshot.identities}
    active = [s for s in snapshot.sessions if s.is_active]
    session_by_slot = {s.attendee_id: s for s in active}
    in_set = snapshot.in_set
    in_count = len(in_set)

    with_progress = {v.attendee_id for v in snapshot.votes} | {b.attendee_id for b in snapshot.blocks}
    total_participants = len(with_progress)

    visible = results_visible(event, host.is_host)
    result = compute_availability(in_set, snapshot.blocks, each_day_inclusive(event.start_date, event.end_date))

    saved = {s.attendee_id for s in active if s.has_saved_availability}
    completed = len(in_set & saved)

    summary = PhaseSummary(
        in_count=in_count,
        total_participants=total_participants,
        quorum=event.quorum,
        vote_deadline=event.vote_deadline,
        deadline_expired=now > event.vote_deadline,
        deadline_status=deadline_status(event, in_count, now),
    )
    availability: list[DayCount] = []
    if visible:
        summary.earliest_all = result.earliest_all.day if result.earliest_all else None
        summary.earliest_most = result.earliest_most.day if result.earliest_most else None
        summary.top_dates = [
            RankedDay(day=d.day, available=d.available, total_attendees=total_participants)
            for d in result.top3
        ]
        availability = [DayCount(day=d.day, available=d.available) for d in result.availability]

    you = None
    initial_blocks = []
    your_vote = None
    if viewer_session is not None and viewer_session.attendee_id in slots:
        slot = slots[viewer_session.attendee_id]
        you = YouView(
            id=viewer_session.id,
            display_name=viewer_session.display_name,
            time_zone=viewer_session.time_zone,
            anonymous_blocks=viewer_session.anonymous_blocks,
            attendee_id=slot.id,
            attendee_label=slot.label,
            attendee_slug=slot.slug,
        )
        initial_blocks = sorted(b.day for b in snapshot.blocks if b.attendee_id == slot.id)
        your_vote = next((v.is_in for v in snapshot.votes if v.attendee_id == slot.id), None)

    return EventView(
        event=EventSummary(
            id=event.id,
            token=event.token,
            title=event.title,
            description=event.description,
            phase=event.phase,
            quorum=event.quorum,
            vote_deadline=event.vote_deadline,
            start_date=event.start_date,
            end_date=event.end_date,
            final_date=event.final_date,
            show_results_to_everyone=event.show_results_to_everyone,
        ),
        attendee_names=[
            SlotView(
                id=i.id,
                label=i.label,
                slug=i.slug,
                taken_by=_taken_by(session_by_slot.get(i.id)),
                claimed_by_logged_user=bool(session_by_slot.get(i.id) and session_by_slot[i.id].user_id),
            )
            for i in sorted(snapshot.identities, key=lambda i: (i.label, i.id))
        ],
        phase_summary=summary,
        availability=availability,
        availability_progress=AvailabilityProgress(
            total_eligible=in_count,
            completed_availability=completed,
            not_set_yet=in_count - completed,
            is_complete=in_count > 0 and completed == in_count,
        ),
        attendee_details=[
            AttendeeDetail(
                id=attendee_id,
                name=slots[attendee_id].label if attendee_id in slots else "Unknown",
                has_set_availability=attendee_id in saved,
                is_logged_in=bool(session_by_slot.get(attendee_id) and session_by_slot[attendee_id].user_id),
            )
            for attendee_id in sorted(in_set)
        ],
        attendee_sessions=[
            SessionView(
                id=s.id,
                display_name=s.display_name,
                time_zone=s.time_zone,
                attendee_id=s.attendee_id,
                attendee_label=slots[s.attendee_id].label,
                attendee_slug=slots[s.attendee_id].slug,
                is_logged_in=s.user_id is not None,
            )
            for s in active
            if s.attendee_id in slots
        ],
        you=you,
        is_host=host.is_host,
        suspected_host=host.suspected_host,
        host_method=host.method,
        host_confidence=host.confidence,
        initial_blocks=initial_blocks,
        your_vote=your_vote,
        results_visible=visible,
    )


def _taken_by(session: AttendeeSession | None) -> str | None:
    if session is None:
        return None
    return "claimed" if session.user_id else "taken"
