from fastapi import APIRouter, Depends

from backend.auth.dependencies import get_current_user
from backend.models.user import User

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    therapist = getattr(current_user, "therapist", None)
    patient = getattr(current_user, "patient", None)
    return {
        "email": current_user.email,
        "name": current_user.name,
        "role": current_user.role,
        "therapist_id": therapist.id if therapist else None,
        "patient_id": patient.id if patient else None,
        "supervisor_id": current_user.supervisor_id,
    }
