"""Role to capability mapping used by the HTTP layer."""

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    ADMIN = 'ADMIN'
    THERAPIST = 'THERAPIST'
    INTERN = 'INTERN'
    PATIENT = 'PATIENT'


class Capability(str, Enum):
    VIEW_APPOINTMENTS = 'view_appointments'
    MANAGE_APPOINTMENTS = 'manage_appointments'
    VIEW_WORKING_HOURS = 'view_working_hours'
    MANAGE_WORKING_HOURS = 'manage_working_hours'


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.THERAPIST: frozenset(Capability),
    Role.INTERN: frozenset({Capability.VIEW_APPOINTMENTS, Capability.VIEW_WORKING_HOURS}),
    Role.PATIENT: frozenset({Capability.VIEW_APPOINTMENTS}),
}


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def has_capabilities(role: Role | str | None, required: Iterable[Capability]) -> bool:
    """Return True when ``role`` grants every capability in ``required``.

    Unknown or missing roles grant nothing.
    """
    resolved = role if isinstance(role, Role) else parse_role(role)
    if resolved is None:
        return False
    return set(required) <= ROLE_CAPABILITIES[resolved]
