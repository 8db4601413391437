"""Payloads published on the per-event realtime channel."""

from typing import Literal, Optional, TypedDict, Union

Topic = Literal[
    "phase.changed",
    "vote.updated",
    "blocks.updated",
    "attendee.joined",
    "attendee.left",
    "attendee.nameChanged",
    "final.date.set",
    "showResults.changed",
]


class PhaseChanged(TypedDict, total=False):
    phase: str
    previous: str
    automatic: bool
    override: bool


class VoteUpdated(TypedDict):
    attendee_id: str
    is_in: bool


class BlocksUpdated(TypedDict):
    attendee_id: str
    count: int


class AttendeeJoined(TypedDict):
    attendee_id: str
    display_name: str
    mode: str


class AttendeeLeft(TypedDict):
    attendee_id: str


class AttendeeNameChanged(TypedDict):
    previous_attendee_id: str
    attendee_id: str
    display_name: str


class FinalDateSet(TypedDict):
    final_date: Optional[str]
    phase: str


class ShowResultsChanged(TypedDict):
    show_results_to_everyone: bool


EventPayload = Union[
    PhaseChanged,
    VoteUpdated,
    BlocksUpdated,
    AttendeeJoined,
    AttendeeLeft,
    AttendeeNameChanged,
    FinalDateSet,
    ShowResultsChanged,
]


class EventMessage(TypedDict):
    type: Topic
    event_id: str
    payload: EventPayload
    sent_at: str
