"""Identity resolution: who is making this request, and are they the host.

Viewer resolution tries, in order, the authenticated user id, the session
token and the anonymous "selected person" slug, against the event's active
sessions. Host detection runs an ordered list of matchers and keeps the most
confident match; only medium or high confidence counts as being the host.
"""

import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field

from starlette.requests import Request

from groupdate.auth import AuthProvider
from groupdate.db.interfaces import SchedulingStore
from groupdate.models.scheduling import (
    AttendeeIdentity,
    AttendeeSession,
    Confidence,
    Event,
    HostDecision,
)

logger = logging.getLogger(__name__)

EVENT_PREFIX_LEN = 8
NONCE_HEX_LEN = 32


@dataclass(frozen=True)
class Credentials:
    """Everything a request offers about who it is. All parts optional."""

    user_id: str | None = None
    session_token: str | None = None
    preferred_slug: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.user_id or self.session_token or self.preferred_slug)


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    method: str
    confidence: Confidence | None = None
    detail: dict[str, str] = field(default_factory=dict)


NO_MATCH = MatchResult(matched=False, method="none")


@dataclass(frozen=True)
class HostContext:
    event: Event
    credentials: Credentials
    viewer_session: AttendeeSession | None
    host_token: str | None


def _event_prefix(event_id: str) -> str:
    return event_id[:EVENT_PREFIX_LEN]


def _short(value: str | None) -> str:
    return f"{value[:8]}..." if value else "none"


def match_authenticated_user(ctx: HostContext) -> MatchResult:
    user_id = ctx.credentials.user_id
    if user_id and user_id == ctx.event.host_id:
        return MatchResult(True, "authenticated_user", Confidence.HIGH, {"user_id": _short(user_id)})
    return NO_MATCH


def match_token_embeds_host(ctx: HostContext) -> MatchResult:
    token = ctx.credentials.session_token
    if not token or ctx.viewer_session is None or ctx.viewer_session.session_token != token:
        return NO_MATCH
    pattern = re.compile(
        rf"^user_{re.escape(ctx.event.host_id)}_{re.escape(_event_prefix(ctx.event.id))}_[0-9a-f]{{{NONCE_HEX_LEN}}}$"
    )
    if pattern.match(token):
        return MatchResult(True, "token_embeds_host", Confidence.HIGH, {"token": _short(token)})
    return NO_MATCH


def match_creation_token(ctx: HostContext) -> MatchResult:
    token = ctx.credentials.session_token
    if token and ctx.host_token and hmac.compare_digest(token, ctx.host_token):
        return MatchResult(True, "creation_token", Confidence.MEDIUM, {"token": _short(token)})
    return NO_MATCH


def match_display_name(ctx: HostContext) -> MatchResult:
    if ctx.viewer_session is None or not ctx.event.host_name:
        return NO_MATCH
    name = ctx.viewer_session.display_name.strip()
    if name and name.casefold() == ctx.event.host_name.strip().casefold():
        return MatchResult(True, "display_name", Confidence.LOW, {"display_name": name})
    return NO_MATCH


HOST_MATCHERS: tuple[Callable[[HostContext], MatchResult], ...] = (
    match_authenticated_user,
    match_token_embeds_host,
    match_creation_token,
    match_display_name,
)


def best_match(results: list[MatchResult]) -> MatchResult:
    """Highest confidence wins; earlier matchers win ties."""
    best = NO_MATCH
    for result in results:
        if not result.matched:
            continue
        if best is NO_MATCH or result.confidence.rank > best.confidence.rank:
            best = result
    return best


def _by_user_id(creds: Credentials, sessions: list[AttendeeSession], _slots: dict[str, AttendeeIdentity]):
    if not creds.user_id:
        return None
    return next((s for s in sessions if s.user_id == creds.user_id), None)


def _by_session_token(creds: Credentials, sessions: list[AttendeeSession], _slots: dict[str, AttendeeIdentity]):
    if not creds.session_token:
        return None
    return next(
        (s for s in sessions if hmac.compare_digest(s.session_token, creds.session_token)),
        None,
    )


def _by_preferred_slug(creds: Credentials, sessions: list[AttendeeSession], slots: dict[str, AttendeeIdentity]):
    if not creds.preferred_slug:
        return None
    slot = next((i for i in slots.values() if i.slug == creds.preferred_slug), None)
    if slot is None:
        return None
    # a slot held by a logged-in user cannot be taken over by a cookie
    return next((s for s in sessions if s.attendee_id == slot.id and s.user_id is None), None)


VIEWER_STRATEGIES = (
    ("user_id", _by_user_id),
    ("session_token", _by_session_token),
    ("preferred_slug", _by_preferred_slug),
)


class IdentityService:
    """Resolves viewers and hosts. Built once per process in the lifespan."""

    def __init__(
        self,
        store: SchedulingStore,
        auth_provider: AuthProvider,
        token_secret: str,
        session_cookie_prefix: str = "gd_session_",
        person_cookie_prefix: str = "selected-person-",
        session_header: str = "X-Session-Token",
    ):
        self.store = store
        self.auth_provider = auth_provider
        self._token_secret = token_secret.encode()
        self.session_cookie_prefix = session_cookie_prefix
        self.person_cookie_prefix = person_cookie_prefix
        self.session_header = session_header

    # -- credentials -------------------------------------------------------

    async def authenticated_user_id(self, request: Request) -> str | None:
        try:
            return await self.auth_provider.get_user_id(request)
        except Exception as e:
            logger.warning("Auth provider failed, treating request as anonymous: %r", e)
            return None

    def session_cookie_name(self, event: Event) -> str:
        return f"{self.session_cookie_prefix}{_event_prefix(event.id)}"

    def person_cookie_name(self, event: Event) -> str:
        return f"{self.person_cookie_prefix}{_event_prefix(event.id)}"

    async def read_credentials(self, request: Request, event: Event) -> Credentials:
        token = request.cookies.get(self.session_cookie_name(event)) or request.headers.get(self.session_header)
        return Credentials(
            user_id=await self.authenticated_user_id(request),
            session_token=token or None,
            preferred_slug=request.cookies.get(self.person_cookie_name(event)) or None,
        )

    # -- tokens ------------------------------------------------------------

    def generate_session_token(self, event_id: str, user_id: str | None = None) -> str:
        nonce = secrets.token_hex(NONCE_HEX_LEN // 2)
        if user_id:
            return f"user_{user_id}_{_event_prefix(event_id)}_{nonce}"
        return f"anon_{_event_prefix(event_id)}_{nonce}"

    def generate_host_token(self, event_id: str, host_id: str) -> str:
        """Token handed to the host when the event is created."""
        digest = hmac.new(self._token_secret, f"{event_id}:{host_id}".encode(), hashlib.sha256).hexdigest()
        return f"host_{_event_prefix(event_id)}_{host_id[:8]}_{digest[:NONCE_HEX_LEN]}"

    # -- viewer ------------------------------------------------------------

    async def resolve_viewer_session(
        self,
        event: Event,
        credentials: Credentials,
        sessions: list[AttendeeSession] | None = None,
        identities: list[AttendeeIdentity] | None = None,
    ) -> AttendeeSession | None:
        if credentials.is_empty:
            return None
        if sessions is None:
            sessions = await self.store.list_active_sessions(event.id)
        # store lookups are per event already; the filter keeps foreign rows out regardless
        sessions = sorted(
            (s for s in sessions if s.is_active and s.event_id == event.id),
            key=lambda s: (s.created_at, s.id),
            reverse=True,
        )
        slots: dict[str, AttendeeIdentity] = {}
        if credentials.preferred_slug:
            if identities is None:
                identities = await self.store.list_identities(event.id)
            slots = {i.id: i for i in identities}

        for name, strategy in VIEWER_STRATEGIES:
            found = strategy(credentials, sessions, slots)
            if found is not None:
                logger.debug(
                    "Resolved viewer via %s event=%s session=%s",
                    name,
                    _short(event.id),
                    _short(found.id),
                )
                return found
        return None

    async def resolve_viewer_identity(
        self,
        event: Event,
        credentials: Credentials,
        sessions: list[AttendeeSession] | None = None,
        identities: list[AttendeeIdentity] | None = None,
    ) -> AttendeeIdentity | None:
        if identities is None and not credentials.is_empty:
            identities = await self.store.list_identities(event.id)
        session = await self.resolve_viewer_session(event, credentials, sessions, identities)
        if session is None:
            return None
        return next((i for i in identities or [] if i.id == session.attendee_id), None)

    # -- host --------------------------------------------------------------

    async def resolve_host(
        self,
        event: Event,
        credentials: Credentials,
        viewer_session: AttendeeSession | None = None,
    ) -> HostDecision:
        if viewer_session is None and not credentials.is_empty:
            viewer_session = await self.resolve_viewer_session(event, credentials)
        ctx = HostContext(
            event=event,
            credentials=credentials,
            viewer_session=viewer_session,
            host_token=self.generate_host_token(event.id, event.host_id),
        )
        best = best_match([matcher(ctx) for matcher in HOST_MATCHERS])
        if not best.matched:
            return HostDecision()
        authoritative = best.confidence.at_least(Confidence.MEDIUM)
        logger.debug(
            "Host detection event=%s method=%s confidence=%s",
            _short(event.id),
            best.method,
            best.confidence.value,
        )
        return HostDecision(
            is_host=authoritative,
            suspected_host=not authoritative,
            method=best.method,
            confidence=best.confidence,
            detail=best.detail,
        )
