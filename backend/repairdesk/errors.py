# Overview: Error taxonomy shared by services, decorators and routes.

"""
Every failure the core can produce has its own class so the HTTP layer can
answer with an accurate status code. Nothing here is ever collapsed into a
generic error.

Categories:
- client: the caller must change the request before retrying
- infrastructure: persistence failures; the only category eligible for
  transparent retry with backoff

SequenceConflict is a client-category error that is nevertheless safe to
retry, because it signals a detected race on invoice numbering.
"""

from __future__ import annotations


CATEGORY_CLIENT = "client"
CATEGORY_INFRASTRUCTURE = "infrastructure"


class RepairDeskError(Exception):
    """Base class for all typed errors."""

    code = "ERROR"
    http_status = 400
    retryable = False
    category = CATEGORY_CLIENT

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.default_message())
        self.details = details or {}

    @classmethod
    def default_message(cls) -> str:
        return cls.code.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        payload = {"error": str(self), "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(RepairDeskError):
    code = "NOT_FOUND"
    http_status = 404


# -- Principal resolver --

class AuthFailure(RepairDeskError):
    http_status = 401


class Unauthenticated(AuthFailure):
    code = "UNAUTHENTICATED"


class TokenExpired(AuthFailure):
    code = "TOKEN_EXPIRED"


class TokenInvalid(AuthFailure):
    code = "TOKEN_INVALID"


class PrincipalInactive(AuthFailure):
    code = "PRINCIPAL_INACTIVE"


class SessionInvalid(AuthFailure):
    code = "SESSION_INVALID"


# -- Authorization policy engine --

class AccessDenied(RepairDeskError):
    http_status = 403


class WrongPrincipalKind(AccessDenied):
    code = "WRONG_PRINCIPAL_KIND"


class InsufficientRole(AccessDenied):
    code = "INSUFFICIENT_ROLE"


class NotOwner(AccessDenied):
    code = "NOT_OWNER"


# -- Order lifecycle state machine --

class TransitionRejected(RepairDeskError):
    http_status = 409


class IllegalTransition(TransitionRejected):
    code = "ILLEGAL_TRANSITION"


class PreconditionFailed(TransitionRejected):
    code = "PRECONDITION_FAILED"


# -- Invoice identifier generator --

class SequenceConflict(RepairDeskError):
    code = "SEQUENCE_CONFLICT"
    http_status = 409
    retryable = True


# -- Persistence --

class InfrastructureError(RepairDeskError):
    code = "INFRASTRUCTURE_ERROR"
    http_status = 503
    retryable = True
    category = CATEGORY_INFRASTRUCTURE


class DeliveryFailed(InfrastructureError):
    """An external collaborator (e.g. email delivery) failed."""
    code = "DELIVERY_FAILED"
    http_status = 502
