# Overview: Unified per-request identity for staff and clients.

from __future__ import annotations

from dataclasses import dataclass, field

from .kinds import AuthMethod, PrincipalKind
from .roles import ADMINISTRATOR, CLIENT_ROLES, expand_roles


@dataclass(frozen=True)
class Principal:
    """
    Output of authentication for one request.

    Built fresh per request and never persisted. For clients `roles` is
    always {"Client"}; for staff it is the role snapshot carried by the
    token at issuance.
    """
    kind: PrincipalKind
    id: int
    roles: frozenset = field(default_factory=frozenset)
    auth_method: AuthMethod = AuthMethod.TOKEN
    display_name: str | None = None
    email: str | None = None

    @classmethod
    def staff(cls, user_id: int, roles, *, display_name=None, email=None) -> "Principal":
        return cls(
            kind=PrincipalKind.STAFF,
            id=user_id,
            roles=frozenset(roles),
            auth_method=AuthMethod.TOKEN,
            display_name=display_name,
            email=email,
        )

    @classmethod
    def client(cls, client_id: int, *, display_name=None, email=None) -> "Principal":
        return cls(
            kind=PrincipalKind.CLIENT,
            id=client_id,
            roles=CLIENT_ROLES,
            auth_method=AuthMethod.SESSION,
            display_name=display_name,
            email=email,
        )

    @property
    def is_staff(self) -> bool:
        return self.kind == PrincipalKind.STAFF

    @property
    def is_client(self) -> bool:
        return self.kind == PrincipalKind.CLIENT

    @property
    def effective_roles(self) -> frozenset:
        return expand_roles(self.roles)

    @property
    def is_administrator(self) -> bool:
        return self.is_staff and ADMINISTRATOR in self.roles

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "roles": sorted(self.roles),
            "auth_method": self.auth_method.value,
            "display_name": self.display_name,
            "email": self.email,
        }
