import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from backend.auth import jwt_handler
from backend.auth.dependencies import ensure_capabilities, get_current_user
from backend.core.permissions import Capability
from backend.routes.auth_routes import me


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_token_round_trip() -> None:
    token = jwt_handler.create_access_token('ana@clinic.test', role='THERAPIST')

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == 'ana@clinic.test'
    assert payload['role'] == 'THERAPIST'


def test_expired_token_is_rejected() -> None:
    token = jwt_handler.create_access_token('ana@clinic.test', expires_minutes=-1)

    with pytest.raises(jwt.ExpiredSignatureError):
        jwt_handler.decode_access_token(token)


def test_current_user_from_token(db, clinic) -> None:
    token = jwt_handler.create_access_token(clinic.therapist_user.email)

    user = get_current_user(credentials=bearer(token), db=db)

    assert user.id == clinic.therapist_user.id


@pytest.mark.parametrize('token', ['not-a-token', jwt.encode({'sub': 'x'}, 'other-secret', algorithm='HS256')])
def test_invalid_token_is_unauthorized(db, token: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=bearer(token), db=db)

    assert exception_info.value.status_code == 401


def test_unknown_user_is_unauthorized(db, clinic) -> None:
    token = jwt_handler.create_access_token('ghost@clinic.test')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=bearer(token), db=db)

    assert exception_info.value.detail == 'User not found'


def test_ensure_capabilities_forbids_missing_capability(clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        ensure_capabilities(clinic.patient_user, Capability.MANAGE_APPOINTMENTS)

    assert exception_info.value.status_code == 403


def test_me_reports_linked_profiles(clinic) -> None:
    assert me(current_user=clinic.therapist_user)['therapist_id'] == clinic.therapist.id
    assert me(current_user=clinic.patient_user)['patient_id'] == clinic.patient.id
    assert me(current_user=clinic.intern)['supervisor_id'] == clinic.therapist.id
