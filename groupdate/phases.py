"""Event phase state machine.

    VOTE -> PICK_DAYS -> RESULTS -> FINALIZED
      \\-> FAILED

Only the rules live here. Applying them against the store, notifying and
invalidating caches is done by ``SchedulingService``.
"""

from datetime import datetime

from groupdate.errors import ConflictError, UnauthorizedError, ValidationError
from groupdate.models.scheduling import Confidence, Event, Phase

TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.VOTE: frozenset({Phase.PICK_DAYS, Phase.FAILED}),
    Phase.PICK_DAYS: frozenset({Phase.RESULTS}),
    Phase.RESULTS: frozenset({Phase.FINALIZED}),
    Phase.FINALIZED: frozenset(),
    Phase.FAILED: frozenset(),
}

# RESULTS -> FINALIZED is reached by setting a final date, VOTE -> FAILED only by the deadline rule.
HOST_FORCEABLE: frozenset[tuple[Phase, Phase]] = frozenset(
    {
        (Phase.VOTE, Phase.PICK_DAYS),
        (Phase.PICK_DAYS, Phase.RESULTS),
    }
)

HOST_ACTION_CONFIDENCE = Confidence.MEDIUM

VOTING_PHASES = frozenset({Phase.VOTE, Phase.PICK_DAYS})


def parse_phase(name: str | Phase) -> Phase:
    if isinstance(name, Phase):
        return name
    try:
        return Phase(str(name).strip().upper())
    except ValueError:
        raise ValidationError(detail=f"Invalid phase: {name}", error_code="invalid_phase") from None


def is_legal(current: Phase, target: Phase) -> bool:
    return target in TRANSITIONS[current]


def due_transition(event: Event, in_count: int, now: datetime) -> Phase | None:
    """Return the automatic transition the event is due for, if any."""
    if event.phase is not Phase.VOTE:
        return None
    if in_count >= event.quorum:
        return Phase.PICK_DAYS
    if now > event.vote_deadline:
        return Phase.FAILED
    return None


def check_host_transition(current: Phase, target: Phase) -> None:
    if (current, target) in HOST_FORCEABLE:
        return
    if current is Phase.RESULTS and target is Phase.FINALIZED:
        raise ConflictError(
            detail="Set a final date to finalize the event",
            error_code="finalize_via_final_date",
        )
    raise ConflictError(
        detail=f"Cannot move from {current.value} to {target.value}",
        error_code="illegal_transition",
        current=current.value,
        target=target.value,
    )


def require_host_confidence(confidence: Confidence | None, action: str) -> None:
    if confidence is None or not confidence.at_least(HOST_ACTION_CONFIDENCE):
        raise UnauthorizedError(
            detail=f"Only the host can {action}",
            error_code="host_required",
        )


def deadline_status(event: Event, in_count: int, now: datetime) -> str:
    expired = now > event.vote_deadline
    has_quorum = in_count >= event.quorum
    if expired:
        return "expired_with_quorum" if has_quorum else "expired_without_quorum"
    return "active_with_quorum" if has_quorum else "active_needs_quorum"


def results_visible(event: Event, is_host: bool) -> bool:
    if event.phase in (Phase.RESULTS, Phase.FINALIZED):
        return True
    if event.phase is Phase.PICK_DAYS:
        return is_host or event.show_results_to_everyone
    return False
