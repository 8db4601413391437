from datetime import date, datetime

from pydantic import BaseModel

from groupdate.models.scheduling import Confidence, Phase


class EventSummary(BaseModel):
    id: str
    token: str
    title: str
    description: str | None = None
    phase: Phase
    quorum: int
    vote_deadline: datetime
    start_date: date
    end_date: date
    final_date: date | None = None
    show_results_to_everyone: bool = False


class SlotView(BaseModel):
    id: str
    label: str
    slug: str
    taken_by: str | None = None  # "claimed" (logged-in user), "taken" (anonymous) or None
    claimed_by_logged_user: bool = False


class RankedDay(BaseModel):
    day: date
    available: int
    total_attendees: int


class PhaseSummary(BaseModel):
    in_count: int
    total_participants: int
    quorum: int
    vote_deadline: datetime
    deadline_expired: bool
    deadline_status: str
    earliest_all: date | None = None
    earliest_most: date | None = None
    top_dates: list[RankedDay] = []


class DayCount(BaseModel):
    day: date
    available: int


class AvailabilityProgress(BaseModel):
    total_eligible: int
    completed_availability: int
    not_set_yet: int
    is_complete: bool


class AttendeeDetail(BaseModel):
    id: str
    name: str
    has_voted_in: bool = True
    has_set_availability: bool = False
    is_logged_in: bool = False


class SessionView(BaseModel):
    id: str
    display_name: str
    time_zone: str
    attendee_id: str
    attendee_label: str
    attendee_slug: str
    is_logged_in: bool = False


class YouView(BaseModel):
    id: str
    display_name: str
    time_zone: str
    anonymous_blocks: bool
    attendee_id: str
    attendee_label: str
    attendee_slug: str


class EventView(BaseModel):
    """Everything one viewer sees of an event. Cached per viewer fingerprint."""

    event: EventSummary
    attendee_names: list[SlotView]
    phase_summary: PhaseSummary
    availability: list[DayCount]
    availability_progress: AvailabilityProgress
    attendee_details: list[AttendeeDetail]
    attendee_sessions: list[SessionView]
    you: YouView | None = None
    is_host: bool = False
    suspected_host: bool = False
    host_method: str = "none"
    host_confidence: Confidence | None = None
    initial_blocks: list[date] = []
    your_vote: bool | None = None
    results_visible: bool = False
