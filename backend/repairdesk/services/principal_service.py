# Overview: Service-layer operations for principal resolution; turns credentials into a Principal.

"""
Principal Resolver

resolve(credentials) -> Principal, or raises an AuthFailure subclass.

- Bearer token present: verify signature/issuer/audience (TokenExpired,
  TokenInvalid), then re-check that the staff user still exists and is
  active (PrincipalInactive). Roles come from the token, not the store.
- Else session token present: look up the session and its client. A
  session whose client no longer exists is reported to the caller's
  on_invalid_session hook and rejected with SessionInvalid.
- Else Unauthenticated.

The resolver never mutates sessions or tokens itself. Side effects
(invalidation, activity tracking) belong to the hooks the request layer
passes in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..extensions import db
from ..errors import PrincipalInactive, SessionInvalid, Unauthenticated
from ..models import Client, ClientSession, User
from ..permissions import Principal
from . import session_service, token_service


@dataclass(frozen=True)
class Credentials:
    """Opaque credential strings extracted by the routing layer."""
    bearer_token: str | None = None
    session_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.bearer_token and not self.session_token


def resolve(
    credentials: Credentials,
    *,
    on_invalid_session: Callable[[str, str], None] | None = None,
    on_session_resolved: Callable[[ClientSession], None] | None = None,
) -> Principal:
    if credentials.bearer_token:
        return _resolve_staff(credentials.bearer_token)
    if credentials.session_token:
        return _resolve_client(
            credentials.session_token,
            on_invalid_session=on_invalid_session,
            on_session_resolved=on_session_resolved,
        )
    raise Unauthenticated("Authentication required")


def _resolve_staff(token: str) -> Principal:
    claims = token_service.decode_staff_token(token)

    user = db.session.get(User, claims.user_id)
    if user is None or not user.is_active:
        raise PrincipalInactive("Staff account is inactive or no longer exists")

    return Principal.staff(
        user.id,
        claims.roles,
        display_name=claims.username or user.username,
        email=claims.email or user.email,
    )


def _resolve_client(token, *, on_invalid_session, on_session_resolved) -> Principal:
    session = session_service.lookup_client_session(token)
    if session is None:
        raise SessionInvalid("Session expired or invalid")

    client = db.session.get(Client, session.client_id)
    if client is None:
        if on_invalid_session is not None:
            on_invalid_session(token, "Client no longer exists")
        raise SessionInvalid("Session refers to a client that no longer exists")

    if not client.is_active:
        raise PrincipalInactive("Client account is inactive")

    if on_session_resolved is not None:
        on_session_resolved(session)

    return Principal.client(client.id, display_name=client.display_name, email=client.email)
