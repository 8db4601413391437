"""Entry points of the scheduling core.

Every operation works on an event loaded through ``open_event``, which also
applies any automatic phase transition that has come due. Every mutation
invalidates the event's cached views and then notifies realtime subscribers;
neither of those side effects can fail the request.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime

from groupdate.availability import AvailabilityResult, compute_availability
from groupdate.bus import EventBus
from groupdate.cache import EventViewCache, viewer_fingerprint
from groupdate.config import Settings
from groupdate.dates import each_day_inclusive, is_within_range, to_utc_day, utcnow
from groupdate.db.interfaces import SchedulingStore
from groupdate.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from groupdate.events import EventPayload, Topic
from groupdate.identity import Credentials, IdentityService
from groupdate.models.scheduling import (
    AttendeeIdentity,
    AttendeeSession,
    Confidence,
    Event,
    HostDecision,
    JoinResult,
    Phase,
    Vote,
)
from groupdate.models.views import EventView
from groupdate.phases import (
    VOTING_PHASES,
    check_host_transition,
    due_transition,
    parse_phase,
    require_host_confidence,
)
from groupdate.views import EventSnapshot, build_event_view

logger = logging.getLogger(__name__)


def _short(value: str) -> str:
    return f"{value[:8]}..."


class SchedulingService:
    def __init__(
        self,
        store: SchedulingStore,
        identity: IdentityService,
        cache: EventViewCache,
        bus: EventBus,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.cache = cache
        self.bus = bus
        self.settings = settings
        self.clock = clock

    # -- loading ------------------------------------------------------------

    async def open_event(self, token: str) -> Event:
        event = await self.store.get_event_by_token(token)
        if event is None:
            raise NotFoundError(detail="Event not found")
        return await self.apply_due_transitions(event)

    async def apply_due_transitions(self, event: Event) -> Event:
        """Apply the automatic transition the event is due for, if any. Idempotent."""
        if event.phase is not Phase.VOTE:
            return event
        in_count = await self.store.count_in_votes(event.id)
        target = due_transition(event, in_count, self.clock())
        if target is None:
            return event
        if not await self.store.update_phase(event.id, Phase.VOTE, target):
            # another request got there first
            current = await self.store.get_event_by_token(event.token)
            return current or event
        logger.info(
            "Event %s moved %s -> %s (in=%d quorum=%d)",
            _short(event.id),
            event.phase.value,
            target.value,
            in_count,
            event.quorum,
        )
        await self._after_mutation(
            event,
            "phase",
            "phase.changed",
            {"phase": target.value, "previous": event.phase.value, "automatic": True},
        )
        return event.model_copy(update={"phase": target})

    async def sweep_due_transitions(self) -> dict[str, int]:
        """Apply due transitions to events nobody is looking at."""
        events = await self.store.list_events_past_deadline(self.clock())
        result = {"checked": len(events), "advanced": 0, "failed": 0, "errors": 0}
        for event in events:
            try:
                updated = await self.apply_due_transitions(event)
            except Exception:
                result["errors"] += 1
                logger.exception("Phase sweep failed for event %s", _short(event.id))
                continue
            if updated.phase is Phase.PICK_DAYS:
                result["advanced"] += 1
            elif updated.phase is Phase.FAILED:
                result["failed"] += 1
        if events:
            logger.info("Phase sweep %s", result)
        return result

    # -- identity ----------------------------------------------------------

    async def resolve_viewer_identity(self, event: Event, credentials: Credentials) -> AttendeeIdentity | None:
        return await self.identity.resolve_viewer_identity(event, credentials)

    async def resolve_host(self, event: Event, credentials: Credentials) -> HostDecision:
        return await self.identity.resolve_host(event, credentials)

    # -- reads -------------------------------------------------------------

    async def _snapshot(self, event: Event) -> EventSnapshot:
        return EventSnapshot(
            event=event,
            identities=await self.store.list_identities(event.id),
            sessions=await self.store.list_active_sessions(event.id),
            votes=await self.store.list_votes(event.id),
            blocks=await self.store.list_blocks(event.id),
        )

    async def compute_availability(self, event: Event) -> AvailabilityResult:
        votes = await self.store.list_votes(event.id)
        blocks = await self.store.list_blocks(event.id)
        return compute_availability(
            {v.attendee_id for v in votes if v.is_in},
            blocks,
            each_day_inclusive(event.start_date, event.end_date),
        )

    async def get_event_view(self, event: Event, credentials: Credentials) -> EventView:
        fingerprint = viewer_fingerprint(credentials)
        cached = await self.cache.get(event.token, fingerprint)
        if cached is not None:
            return EventView.model_validate(cached)

        generation = await self.cache.generation(event.token)
        snapshot = await self._snapshot(event)
        viewer = await self.identity.resolve_viewer_session(
            event, credentials, snapshot.sessions, snapshot.identities
        )
        host = await self.identity.resolve_host(event, credentials, viewer)
        view = build_event_view(snapshot, viewer, host, self.clock())
        await self.cache.set(event.token, fingerprint, view.model_dump(mode="json"), generation=generation)
        return view

    # -- attendee writes ---------------------------------------------------

    async def apply_vote(self, event: Event, identity: AttendeeIdentity | None, is_in: bool) -> tuple[Vote, Event]:
        if identity is None:
            raise UnauthorizedError(detail="Join the event before voting", error_code="not_joined")
        if event.phase is Phase.FAILED:
            raise ConflictError(detail="Voting closed: the deadline passed without quorum", error_code="event_failed")
        if event.phase not in VOTING_PHASES:
            raise ConflictError(
                detail="Voting is only allowed during VOTE and PICK_DAYS",
                error_code="voting_closed",
                phase=event.phase.value,
            )

        vote = await self.store.upsert_vote(event.id, identity.id, is_in)
        await self._after_mutation(event, "vote", "vote.updated", {"attendee_id": identity.id, "is_in": is_in})
        # quorum reached by this vote advances the event right away
        event = await self.apply_due_transitions(event)
        return vote, event

    async def apply_blocks(
        self,
        event: Event,
        identity: AttendeeIdentity | None,
        dates: list[date | datetime | str],
        anonymous: bool | None = None,
    ) -> list[date]:
        if identity is None:
            raise UnauthorizedError(detail="Join the event before blocking days", error_code="not_joined")
        if event.phase is not Phase.PICK_DAYS:
            raise ConflictError(
                detail="Day blocking is only allowed during PICK_DAYS",
                error_code="blocks_closed",
                phase=event.phase.value,
            )

        days = sorted({to_utc_day(d) for d in dates})
        outside = [d.isoformat() for d in days if not is_within_range(d, event.start_date, event.end_date)]
        if outside:
            raise ValidationError(
                detail="Some dates are outside the event range",
                error_code="date_out_of_range",
                dates=outside,
            )

        if anonymous is None:
            sessions = await self.store.list_active_sessions(event.id)
            mine = next((s for s in sessions if s.attendee_id == identity.id), None)
            anonymous = mine.anonymous_blocks if mine else True

        blocks = await self.store.replace_blocks(event.id, identity.id, days, anonymous)
        await self._after_mutation(
            event,
            "blocks",
            "blocks.updated",
            {"attendee_id": identity.id, "count": len(blocks)},
        )
        return [b.day for b in blocks]

    async def _find_slot(self, event: Event, attendee_id: str | None, slug: str | None) -> AttendeeIdentity:
        identities = await self.store.list_identities(event.id)
        slot = None
        if attendee_id:
            slot = next((i for i in identities if i.id == attendee_id), None)
        elif slug:
            slot = next((i for i in identities if i.slug == slug), None)
        if slot is None:
            raise ValidationError(detail="Invalid attendee name", error_code="invalid_attendee")
        return slot

    @staticmethod
    def _ensure_claimable(slot: AttendeeIdentity, sessions: list[AttendeeSession], user_id: str | None) -> None:
        holder = next((s for s in sessions if s.attendee_id == slot.id), None)
        if holder is not None and holder.user_id and holder.user_id != user_id:
            raise ConflictError(
                detail=f'The name "{slot.label}" is claimed by a logged-in user',
                error_code="slot_claimed",
            )

    async def join(
        self,
        event: Event,
        credentials: Credentials,
        attendee_id: str | None = None,
        name_slug: str | None = None,
        display_name: str | None = None,
        time_zone: str | None = None,
    ) -> JoinResult:
        slot = await self._find_slot(event, attendee_id, name_slug)
        sessions = await self.store.list_active_sessions(event.id)
        self._ensure_claimable(slot, sessions, credentials.user_id)

        current = await self.identity.resolve_viewer_session(event, credentials, sessions)
        if current is not None and current.attendee_id == slot.id:
            return JoinResult(session=current, identity=slot, mode="unchanged")

        token = current.session_token if current else self.identity.generate_session_token(
            event.id, credentials.user_id
        )
        session = await self.store.claim_slot(
            event.id,
            slot.id,
            session_token=token,
            display_name=(display_name or "").strip() or slot.label,
            user_id=credentials.user_id,
            time_zone=time_zone or "UTC",
            anonymous_blocks=credentials.user_id is None,
            replaces_session_id=current.id if current else None,
        )
        mode = "switched" if current else "created"
        logger.info("Attendee %s %s on event %s", _short(slot.id), mode, _short(event.id))
        await self._after_mutation(
            event,
            "join",
            "attendee.joined",
            {"attendee_id": slot.id, "display_name": session.display_name, "mode": mode},
        )
        return JoinResult(session=session, identity=slot, mode=mode)

    async def leave(self, event: Event, credentials: Credentials) -> AttendeeSession:
        session = await self.identity.resolve_viewer_session(event, credentials)
        if session is None:
            raise UnauthorizedError(detail="Not currently joined to this event", error_code="not_joined")
        await self.store.deactivate_session(session.id)
        await self._after_mutation(event, "leave", "attendee.left", {"attendee_id": session.attendee_id})
        return session

    async def switch_name(self, event: Event, credentials: Credentials, attendee_id: str) -> JoinResult:
        slot = await self._find_slot(event, attendee_id, None)
        sessions = await self.store.list_active_sessions(event.id)
        current = await self.identity.resolve_viewer_session(event, credentials, sessions)
        if current is None:
            raise UnauthorizedError(detail="Join the event before switching names", error_code="not_joined")
        if current.attendee_id == slot.id:
            return JoinResult(session=current, identity=slot, mode="unchanged")
        self._ensure_claimable(slot, sessions, credentials.user_id)

        session = await self.store.claim_slot(
            event.id,
            slot.id,
            session_token=current.session_token,
            display_name=slot.label,
            user_id=current.user_id,
            time_zone=current.time_zone,
            anonymous_blocks=current.anonymous_blocks,
            replaces_session_id=current.id,
        )
        await self._after_mutation(
            event,
            "switch_name",
            "attendee.nameChanged",
            {
                "previous_attendee_id": current.attendee_id,
                "attendee_id": slot.id,
                "display_name": session.display_name,
            },
        )
        return JoinResult(session=session, identity=slot, mode="switched")

    # -- host writes -------------------------------------------------------

    async def transition_phase(
        self,
        event: Event,
        target: Phase | str,
        actor_confidence: Confidence | None,
    ) -> Event:
        require_host_confidence(actor_confidence, "change the phase")
        target = parse_phase(target)
        if event.phase is target:
            return event
        check_host_transition(event.phase, target)
        if not await self.store.update_phase(event.id, event.phase, target):
            raise ConflictError(detail="The phase changed concurrently, reload and retry", error_code="phase_changed")
        logger.info("Host moved event %s %s -> %s", _short(event.id), event.phase.value, target.value)
        await self._after_mutation(
            event,
            "phase",
            "phase.changed",
            {"phase": target.value, "previous": event.phase.value, "automatic": False},
        )
        return event.model_copy(update={"phase": target})

    async def set_final_date(
        self,
        event: Event,
        day: date | datetime | str | None,
        actor_confidence: Confidence | None,
    ) -> Event:
        require_host_confidence(actor_confidence, "pick the final date")
        if event.phase not in (Phase.RESULTS, Phase.FINALIZED):
            raise ConflictError(
                detail="The final date can only be set once results are in",
                error_code="final_date_closed",
                phase=event.phase.value,
            )
        final = to_utc_day(day) if day is not None else None
        if final is not None and not is_within_range(final, event.start_date, event.end_date):
            raise ValidationError(detail="Final date must be within the event range", error_code="date_out_of_range")

        new_phase = Phase.FINALIZED if final is not None else event.phase
        if not await self.store.set_final_date(event.id, final, event.phase, new_phase):
            raise ConflictError(detail="The phase changed concurrently, reload and retry", error_code="phase_changed")
        await self._after_mutation(
            event,
            "final_date",
            "final.date.set",
            {"final_date": final.isoformat() if final else None, "phase": new_phase.value},
        )
        if new_phase is not event.phase:
            await self.bus.notify(
                event.id,
                "phase.changed",
                {"phase": new_phase.value, "previous": event.phase.value, "automatic": False},
            )
        return event.model_copy(update={"final_date": final, "phase": new_phase})

    async def toggle_results_visibility(
        self,
        event: Event,
        visible: bool,
        actor_confidence: Confidence | None,
    ) -> Event:
        require_host_confidence(actor_confidence, "change results visibility")
        await self.store.set_results_visibility(event.id, visible)
        await self._after_mutation(
            event,
            "results_visibility",
            "showResults.changed",
            {"show_results_to_everyone": visible},
        )
        return event.model_copy(update={"show_results_to_everyone": visible})

    async def override_phase(
        self,
        event: Event,
        target: Phase | str,
        actor_confidence: Confidence | None,
        reason: str,
        actor_method: str = "unknown",
    ) -> Event:
        """Move the event to any phase, outside the transition table. Audited."""
        if not self.settings.phase.allow_override:
            raise ConflictError(detail="Phase override is disabled", error_code="override_disabled")
        if actor_confidence is None or not actor_confidence.at_least(Confidence.HIGH):
            raise UnauthorizedError(detail="Phase override requires a verified host", error_code="host_required")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(detail="A reason is required to override the phase", error_code="reason_required")
        target = parse_phase(target)
        if target is event.phase:
            return event

        if not await self.store.override_phase(event.id, event.phase, target, reason, actor_method):
            raise ConflictError(detail="The phase changed concurrently, reload and retry", error_code="phase_changed")
        logger.warning(
            "Phase override on event %s: %s -> %s by %s (%s)",
            _short(event.id),
            event.phase.value,
            target.value,
            actor_method,
            reason,
        )
        await self._after_mutation(
            event,
            "override",
            "phase.changed",
            {"phase": target.value, "previous": event.phase.value, "override": True},
        )
        return event.model_copy(update={"phase": target})

    # -- side effects ------------------------------------------------------

    async def invalidate(self, event_token: str, operation: str) -> int:
        return await self.cache.invalidate(event_token, operation)

    async def _after_mutation(self, event: Event, operation: str, topic: Topic, payload: EventPayload) -> None:
        await self.invalidate(event.token, operation)
        await self.bus.notify(event.id, topic, payload)
