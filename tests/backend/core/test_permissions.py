import pytest

from backend.core.permissions import Capability, Role, has_capabilities, parse_role


@pytest.mark.parametrize(
    ('value', 'expected'),
    [('ADMIN', Role.ADMIN), (' therapist ', Role.THERAPIST), ('intern', Role.INTERN), ('', None), ('OWNER', None)],
)
def test_parse_role(value: str, expected) -> None:
    assert parse_role(value) is expected


def test_parse_role_handles_missing_value() -> None:
    assert parse_role(None) is None


@pytest.mark.parametrize('role', ['ADMIN', 'THERAPIST'])
def test_staff_can_manage_everything(role: str) -> None:
    assert has_capabilities(role, list(Capability))


def test_intern_is_read_only() -> None:
    assert has_capabilities(Role.INTERN, [Capability.VIEW_APPOINTMENTS, Capability.VIEW_WORKING_HOURS])
    assert not has_capabilities(Role.INTERN, [Capability.MANAGE_APPOINTMENTS])
    assert not has_capabilities(Role.INTERN, [Capability.MANAGE_WORKING_HOURS])


def test_patient_only_views_appointments() -> None:
    assert has_capabilities('PATIENT', [Capability.VIEW_APPOINTMENTS])
    assert not has_capabilities('PATIENT', [Capability.VIEW_WORKING_HOURS])


def test_unknown_role_grants_nothing() -> None:
    assert not has_capabilities('GUEST', [Capability.VIEW_APPOINTMENTS])
    assert not has_capabilities(None, [Capability.VIEW_APPOINTMENTS])
