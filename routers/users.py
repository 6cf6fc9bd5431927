# routers/users.py
from fastapi import APIRouter, HTTPException

from db import SessionDep
from gate import VolunteerDep
from moderation import set_active
from schemas import ActiveStatusUpdate, ProfileRead

router = APIRouter(tags=["users"])


@router.post("/me/active", response_model=ProfileRead)
def update_active_status(
    update: ActiveStatusUpdate,
    session: SessionDep,
    context: VolunteerDep,
):
    """
    A volunteer's online/offline switch. It decides whether new pickups
    are shown. Admin blocks live in a separate flag and are not touched here.
    """
    profile = set_active(session, context.user_id, update.is_active)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile
