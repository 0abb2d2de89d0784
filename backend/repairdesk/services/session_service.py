# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Client Session Management Service

WHY: Clients use the web portal with a cookie that references a server-side
session. Tokens are cryptographically secure, hashed in database, and
time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (CLIENT_SESSION_HOURS) and idle timeout
  (CLIENT_SESSION_IDLE_HOURS)
- Revocable on logout or when the client record disappears

lookup_client_session() never writes; activity tracking is a separate
touch_client_session() call made by the request layer.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import ClientSession
from repairdesk.time_utils import ensure_utc, utcnow


logger = logging.getLogger(__name__)


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config["CLIENT_SESSION_HOURS"])


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config["CLIENT_SESSION_IDLE_HOURS"])


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used as the stored lookup key."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_client_session(
    client_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[ClientSession, str]:
    """
    Create a session for a client.

    Returns (session_record, plaintext_token). The cookie carries the
    plaintext token; the database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = ClientSession(
        client_id=client_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def lookup_client_session(token: str) -> ClientSession | None:
    """
    Return the live session for `token`, or None if it is unknown,
    revoked, past its absolute expiry or idle for too long.

    Read-only.
    """
    if not token:
        return None

    session = db.session.query(ClientSession).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None

    now = utcnow()
    if ensure_utc(session.expires_at) < now:
        return None
    if now - ensure_utc(session.last_used_at) > _idle_timeout():
        return None
    return session


def touch_client_session(session: ClientSession) -> None:
    """Record activity on a session (idle timeout tracking)."""
    session.last_used_at = utcnow()
    db.session.commit()


def invalidate_client_session(token: str, reason: str = "Logout") -> bool:
    """
    Revoke the session referenced by `token`.

    Returns True if a live session was revoked.
    """
    session = db.session.query(ClientSession).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()
    logger.info("Client session %s revoked: %s", session.id, reason)
    return True


def revoke_all_client_sessions(client_id: int, reason: str = "Revoked") -> int:
    """Revoke every live session of a client. Returns the count revoked."""
    now = utcnow()
    sessions = db.session.query(ClientSession).filter_by(
        client_id=client_id,
        is_revoked=False,
    ).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return len(sessions)


def cleanup_sessions() -> int:
    """
    Delete sessions that can no longer be used (revoked, expired or idle).

    Returns the number of rows deleted.
    """
    now = utcnow()
    deleted = db.session.query(ClientSession).filter(
        or_(
            ClientSession.is_revoked.is_(True),
            ClientSession.expires_at < now,
            ClientSession.last_used_at < now - _idle_timeout(),
        )
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
