# Overview: Service-layer operations for staff tokens; signs and verifies bearer tokens.

"""
Staff Bearer Tokens

Staff (desktop app) authenticate with a signed JWT. The token carries a
snapshot of the user's roles at issuance; a role change takes effect at
the next login. Deactivation is checked per request by the principal
resolver, independently of token validity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta, timezone

from flask import current_app
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from ..errors import TokenExpired, TokenInvalid
from ..permissions import STAFF_ROLES
from ..models import User
from repairdesk.time_utils import utcnow


REQUIRED_CLAIMS = ("sub", "roles", "iss", "aud", "exp")


@dataclass(frozen=True)
class StaffClaims:
    user_id: int
    username: str | None
    email: str | None
    roles: frozenset


def issue_staff_token(user: User, *, roles=None, expires_in: timedelta | None = None) -> str:
    """Sign a bearer token for `user` with its current roles."""
    cfg = current_app.config
    now = utcnow().replace(tzinfo=timezone.utc)
    lifetime = expires_in if expires_in is not None else timedelta(hours=cfg["JWT_EXPIRES_HOURS"])
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "email": user.email,
        "roles": sorted(roles if roles is not None else user.role_names),
        "iss": cfg["JWT_ISSUER"],
        "aud": cfg["JWT_AUDIENCE"],
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(claims, cfg["JWT_SECRET"], algorithm=cfg["JWT_ALGORITHM"])


def decode_staff_token(token: str) -> StaffClaims:
    """
    Verify signature, issuer, audience and expiry.

    Raises:
        TokenExpired: signature valid but token past exp
        TokenInvalid: anything else (bad signature, wrong iss/aud, missing claims)
    """
    cfg = current_app.config
    try:
        payload = jwt.decode(
            token,
            cfg["JWT_SECRET"],
            algorithms=[cfg["JWT_ALGORITHM"]],
            audience=cfg["JWT_AUDIENCE"],
            issuer=cfg["JWT_ISSUER"],
        )
    except ExpiredSignatureError:
        raise TokenExpired("Token has expired")
    except JWTError as exc:
        raise TokenInvalid(f"Invalid token: {exc}")

    missing = [c for c in REQUIRED_CLAIMS if c not in payload]
    if missing:
        raise TokenInvalid(f"Token missing claims: {', '.join(missing)}")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise TokenInvalid("Token subject is not a user id")

    roles = payload["roles"]
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        raise TokenInvalid("Token roles claim is malformed")

    staff_roles = frozenset(roles) & STAFF_ROLES
    if not staff_roles:
        raise TokenInvalid("Token carries no staff role")

    return StaffClaims(
        user_id=user_id,
        username=payload.get("username"),
        email=payload.get("email"),
        roles=staff_roles,
    )
