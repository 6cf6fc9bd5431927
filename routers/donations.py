from typing import List

from fastapi import APIRouter, HTTPException, Response

import lifecycle
from db import SessionDep
from errors import (
    DonationNotFound,
    GateRedirect,
    LifecycleError,
    StoreError,
    TransitionConflict,
    VolunteerOffline,
)
from gate import HOME_URL, AdminDep, DonorDep, NgoDep, SignedInDep, VolunteerDep
from models import Role
from moderation import get_profile
from schemas import DonationCreate, DonationRead

router = APIRouter(tags=["donations"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DonationNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TransitionConflict):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, VolunteerOffline):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, StoreError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.post("/", response_model=DonationRead, status_code=201)
def create_donation(donation_in: DonationCreate, session: SessionDep, context: DonorDep):
    """
    Post surplus food. New donations always start out pending.
    """
    try:
        return lifecycle.create_donation(session, context.user_id, donation_in)
    except StoreError as exc:
        raise _http_error(exc)


@router.get("/mine", response_model=List[DonationRead])
def my_donations(session: SessionDep, context: SignedInDep):
    """
    Donations the current user is attached to: posted (donor), accepted (ngo)
    or claimed (volunteer). Admins get everything.
    """
    if context.role is Role.donor:
        return lifecycle.donor_history(session, context.user_id)
    if context.role is Role.ngo:
        return lifecycle.ngo_accepted(session, context.user_id)
    if context.role is Role.volunteer:
        return lifecycle.volunteer_claimed(session, context.user_id)
    if context.role is Role.admin:
        return lifecycle.all_donations(session)
    raise GateRedirect(HOME_URL)


@router.get("/available", response_model=List[DonationRead])
def available_donations(session: SessionDep, context: SignedInDep):
    """
    The shared, contended set: pending donations for NGOs, accepted-but-unclaimed
    ones for volunteers who are online.
    """
    if context.role is Role.ngo:
        return lifecycle.ngo_available(session)
    if context.role is Role.volunteer:
        profile = get_profile(session, context.user_id)
        if profile is None or not profile.is_active:
            return []
        return lifecycle.volunteer_available(session)
    raise GateRedirect(HOME_URL)


@router.get("/stats")
def donation_stats(session: SessionDep, context: AdminDep):
    return lifecycle.donation_counts(session)


@router.get("/{donation_id}", response_model=DonationRead)
def get_donation(donation_id: int, session: SessionDep, context: SignedInDep):
    try:
        donation = lifecycle.get_donation(session, donation_id)
    except LifecycleError as exc:
        raise _http_error(exc)

    involved = context.user_id in (donation.donor_id, donation.ngo_id, donation.volunteer_id)
    if context.role is not Role.admin and not involved:
        raise HTTPException(status_code=404, detail=f"Donation {donation_id} not found.")
    return donation


@router.post("/{donation_id}/accept", response_model=DonationRead)
def accept_donation(donation_id: int, session: SessionDep, context: NgoDep):
    try:
        return lifecycle.accept_donation(session, donation_id, context.user_id)
    except (LifecycleError, StoreError) as exc:
        raise _http_error(exc)


@router.post("/{donation_id}/claim", response_model=DonationRead)
def claim_donation(donation_id: int, session: SessionDep, context: VolunteerDep):
    try:
        return lifecycle.claim_donation(session, donation_id, context.user_id)
    except (LifecycleError, StoreError) as exc:
        raise _http_error(exc)


@router.post("/{donation_id}/deliver", response_model=DonationRead)
def deliver_donation(donation_id: int, session: SessionDep, context: VolunteerDep):
    try:
        return lifecycle.mark_delivered(session, donation_id, context.user_id)
    except (LifecycleError, StoreError) as exc:
        raise _http_error(exc)


@router.delete("/{donation_id}", status_code=204)
def delete_donation(donation_id: int, session: SessionDep, context: AdminDep):
    try:
        lifecycle.delete_donation(session, donation_id)
    except (LifecycleError, StoreError) as exc:
        raise _http_error(exc)
    return Response(status_code=204)
