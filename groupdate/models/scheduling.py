from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Phase(str, Enum):
    VOTE = "VOTE"
    PICK_DAYS = "PICK_DAYS"
    RESULTS = "RESULTS"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def at_least(self, other: "Confidence") -> bool:
        return self.rank >= other.rank


_CONFIDENCE_RANK = {Confidence.LOW: 1, Confidence.MEDIUM: 2, Confidence.HIGH: 3}


class Event(BaseModel):
    id: str
    token: str
    title: str
    description: str | None = None
    start_date: date
    end_date: date
    vote_deadline: datetime
    quorum: int = Field(ge=1)
    phase: Phase = Phase.VOTE
    final_date: date | None = None
    host_id: str
    host_name: str | None = None
    show_results_to_everyone: bool = False


class AttendeeIdentity(BaseModel):
    id: str
    event_id: str
    label: str
    slug: str


class AttendeeSession(BaseModel):
    id: str
    event_id: str
    attendee_id: str
    user_id: str | None = None
    session_token: str
    display_name: str
    time_zone: str = "UTC"
    anonymous_blocks: bool = True
    has_saved_availability: bool = False
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class Vote(BaseModel):
    event_id: str
    attendee_id: str
    is_in: bool


class DayBlock(BaseModel):
    event_id: str
    attendee_id: str
    day: date
    anonymous: bool = True


class HostDecision(BaseModel):
    """Outcome of host detection for one request.

    ``is_host`` is only set for medium or high confidence matches. A low
    confidence match is reported through ``suspected_host`` and must not be
    used to authorize anything.
    """

    is_host: bool = False
    suspected_host: bool = False
    method: str = "none"
    confidence: Confidence | None = None
    detail: dict[str, str] = Field(default_factory=dict)


class JoinResult(BaseModel):
    session: AttendeeSession
    identity: AttendeeIdentity
    mode: str
