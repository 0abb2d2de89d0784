# Overview: Principal kind and authentication method constants.

import enum


class PrincipalKind(str, enum.Enum):
    """Structural kind of an authenticated caller."""
    STAFF = "STAFF"
    CLIENT = "CLIENT"


class RequirementKind(str, enum.Enum):
    """Principal kind an operation admits. ANY admits both."""
    STAFF = "STAFF"
    CLIENT = "CLIENT"
    ANY = "ANY"


class AuthMethod(str, enum.Enum):
    """How the principal authenticated. Informational only."""
    TOKEN = "TOKEN"
    SESSION = "SESSION"
