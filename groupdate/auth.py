"""Authenticated-user signal.

The OAuth flow lives upstream; by the time a request reaches this service the
gateway has put the user id in a header. The signal is optional and
best-effort: callers go through ``IdentityService.authenticated_user_id`` which
treats any failure here as "not authenticated".
"""

import re
from typing import Protocol

from starlette.requests import Request

USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class AuthProviderError(Exception):
    """The auth subsystem could not produce a trustworthy answer."""


class AuthProvider(Protocol):
    async def get_user_id(self, request: Request) -> str | None: ...


class TrustedHeaderAuthProvider:
    def __init__(self, header: str = "X-Authenticated-User"):
        self.header = header

    async def get_user_id(self, request: Request) -> str | None:
        raw = request.headers.get(self.header)
        if raw is None or not raw.strip():
            return None
        user_id = raw.strip()
        if not USER_ID_RE.match(user_id):
            raise AuthProviderError(f"malformed {self.header} header")
        return user_id
