import re
from typing import Annotated, Optional

from fastapi import APIRouter, Path, Request, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from groupdate.dates import parse_day
from groupdate.dependencies import Service
from groupdate.errors import ValidationError
from groupdate.models.scheduling import Event, JoinResult
from groupdate.models.views import EventView
from groupdate.phases import parse_phase
from groupdate.scheduling import SchedulingService

router = APIRouter(prefix="/events", tags=["events"])

TOKEN_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"
SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")

EventToken = Annotated[str, Path(pattern=TOKEN_PATTERN)]


def _check_day(v: str) -> str:
    # raises ValueError so bad dates surface as request validation errors
    try:
        parse_day(v)
    except ValidationError:
        raise ValueError(f"invalid date: {v}") from None
    return v


class VoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_in: bool = Field(alias="in")


class BlocksRequest(BaseModel):
    dates: list[str]
    anonymous: Optional[bool] = None

    @field_validator("dates")
    @classmethod
    def validate_dates(cls, v: list[str]) -> list[str]:
        if len(v) > 366:
            raise ValueError("too many dates")
        return [_check_day(d) for d in v]


class JoinRequest(BaseModel):
    attendee_id: Optional[str] = None
    name_slug: Optional[str] = None
    display_name: Optional[str] = None
    time_zone: Optional[str] = None

    @field_validator("name_slug")
    @classmethod
    def validate_slug(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not SLUG_RE.match(v):
            raise ValueError("invalid name slug")
        return v

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if len(v) > 100:
            raise ValueError("display_name must be at most 100 characters")
        return v or None

    @model_validator(mode="after")
    def require_slot(self) -> "JoinRequest":
        if not self.attendee_id and not self.name_slug:
            raise ValueError("either attendee_id or name_slug must be provided")
        return self


class SwitchNameRequest(BaseModel):
    attendee_id: str


class PhaseRequest(BaseModel):
    phase: str

    @field_validator("phase")
    @classmethod
    def validate_phase(cls, v: str) -> str:
        try:
            return parse_phase(v).value
        except ValidationError:
            raise ValueError(f"invalid phase: {v}") from None


class OverrideRequest(PhaseRequest):
    reason: str

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 500:
            raise ValueError("reason must be 1-500 characters")
        return v


class FinalDateRequest(BaseModel):
    final_date: Optional[str] = None

    @field_validator("final_date")
    @classmethod
    def validate_final_date(cls, v: Optional[str]) -> Optional[str]:
        return _check_day(v) if v is not None else None


class ShowResultsRequest(BaseModel):
    show_results_to_everyone: bool


def _set_cookie(response: Response, service: SchedulingService, name: str, value: str) -> None:
    auth = service.settings.auth
    response.set_cookie(
        name,
        value,
        max_age=auth.cookie_max_age_sec,
        httponly=True,
        samesite="lax",
        secure=auth.cookie_secure,
    )


def _remember_session(response: Response, service: SchedulingService, event: Event, result: JoinResult) -> None:
    _set_cookie(response, service, service.identity.session_cookie_name(event), result.session.session_token)
    if result.session.user_id is None:
        _set_cookie(response, service, service.identity.person_cookie_name(event), result.identity.slug)


def _phase_payload(event: Event) -> dict:
    return {
        "phase": event.phase.value,
        "final_date": event.final_date.isoformat() if event.final_date else None,
        "show_results_to_everyone": event.show_results_to_everyone,
    }


@router.get("/{token}", response_model=EventView)
async def get_event(token: EventToken, request: Request, service: Service) -> EventView:
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    return await service.get_event_view(event, credentials)


@router.post("/{token}/vote")
async def vote(token: EventToken, body: VoteRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    identity = await service.resolve_viewer_identity(event, credentials)
    result, event = await service.apply_vote(event, identity, body.is_in)
    return {"ok": True, "in": result.is_in, "phase": event.phase.value}


@router.post("/{token}/blocks")
async def blocks(token: EventToken, body: BlocksRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    identity = await service.resolve_viewer_identity(event, credentials)
    days = await service.apply_blocks(event, identity, body.dates, body.anonymous)
    return {"ok": True, "count": len(days), "dates": [d.isoformat() for d in days]}


@router.post("/{token}/join")
async def join(token: EventToken, body: JoinRequest, request: Request, response: Response, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    result = await service.join(
        event,
        credentials,
        attendee_id=body.attendee_id,
        name_slug=body.name_slug,
        display_name=body.display_name,
        time_zone=body.time_zone,
    )
    _remember_session(response, service, event, result)
    return {
        "ok": True,
        "mode": result.mode,
        "you": {
            "id": result.session.id,
            "display_name": result.session.display_name,
            "time_zone": result.session.time_zone,
            "attendee_id": result.identity.id,
            "attendee_label": result.identity.label,
            "attendee_slug": result.identity.slug,
        },
    }


@router.delete("/{token}/leave")
async def leave(token: EventToken, request: Request, response: Response, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    await service.leave(event, credentials)
    response.delete_cookie(service.identity.session_cookie_name(event))
    response.delete_cookie(service.identity.person_cookie_name(event))
    return {"ok": True}


@router.post("/{token}/switch-name")
async def switch_name(
    token: EventToken,
    body: SwitchNameRequest,
    request: Request,
    response: Response,
    service: Service,
):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    result = await service.switch_name(event, credentials, body.attendee_id)
    if result.mode != "unchanged":
        _remember_session(response, service, event, result)
    return {"ok": True, "mode": result.mode, "attendee_id": result.identity.id, "label": result.identity.label}


@router.post("/{token}/phase")
async def change_phase(token: EventToken, body: PhaseRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    host = await service.resolve_host(event, credentials)
    event = await service.transition_phase(event, body.phase, host.confidence)
    return {"ok": True, **_phase_payload(event)}


@router.post("/{token}/phase/override")
async def override_phase(token: EventToken, body: OverrideRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    host = await service.resolve_host(event, credentials)
    event = await service.override_phase(event, body.phase, host.confidence, body.reason, host.method)
    return {"ok": True, **_phase_payload(event)}


@router.post("/{token}/final")
async def set_final_date(token: EventToken, body: FinalDateRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    host = await service.resolve_host(event, credentials)
    event = await service.set_final_date(event, body.final_date, host.confidence)
    return {"ok": True, **_phase_payload(event)}


@router.post("/{token}/show-results")
async def show_results(token: EventToken, body: ShowResultsRequest, request: Request, service: Service):
    event = await service.open_event(token)
    credentials = await service.identity.read_credentials(request, event)
    host = await service.resolve_host(event, credentials)
    event = await service.toggle_results_visibility(event, body.show_results_to_everyone, host.confidence)
    return {"ok": True, **_phase_payload(event)}
