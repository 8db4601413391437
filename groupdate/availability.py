"""Summarise attendee availability across the days of an event.

``compute_availability`` is pure: the same in-set, blocks and days always give
the same result, whatever order they are supplied in.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from typing import Protocol

from pydantic import BaseModel

from groupdate.dates import to_utc_day

logger = logging.getLogger(__name__)


class BlockLike(Protocol):
    attendee_id: str
    day: date


class AvailabilityDay(BaseModel):
    day: date
    available: int
    blocked_attendees: list[str]


class AvailabilityResult(BaseModel):
    availability: list[AvailabilityDay]
    earliest_all: AvailabilityDay | None = None
    earliest_most: AvailabilityDay | None = None
    top3: list[AvailabilityDay]


def compute_availability(
    in_set: Iterable[str],
    blocks: Iterable[BlockLike],
    days: Iterable[date],
) -> AvailabilityResult:
    attendees_in = set(in_set)
    total_in = len(attendees_in)

    blocked_by_day: dict[date, set[str]] = defaultdict(set)
    skipped = 0
    for block in blocks:
        # blocks from attendees who are not "in" never reduce a day's count
        if block.attendee_id not in attendees_in:
            skipped += 1
            continue
        blocked_by_day[to_utc_day(block.day)].add(block.attendee_id)

    ordered_days = sorted({to_utc_day(d) for d in days})
    availability = [
        AvailabilityDay(
            day=d,
            available=max(0, total_in - len(blocked_by_day.get(d, ()))),
            blocked_attendees=sorted(blocked_by_day.get(d, ())),
        )
        for d in ordered_days
    ]

    earliest_all = None
    if total_in > 0:
        earliest_all = next((d for d in availability if d.available == total_in), None)

    earliest_most = None
    for d in availability:
        if earliest_most is None or d.available > earliest_most.available:
            earliest_most = d

    top3 = sorted(availability, key=lambda d: (-d.available, d.day))[:3]

    logger.debug(
        "compute_availability total_in=%d days=%d blocked_days=%d skipped_blocks=%d",
        total_in,
        len(availability),
        len(blocked_by_day),
        skipped,
    )
    return AvailabilityResult(
        availability=availability,
        earliest_all=earliest_all,
        earliest_most=earliest_most,
        top3=top3,
    )
