"""Donation lifecycle: pending -> accepted -> picked_up -> delivered.

Every transition is one conditional ``UPDATE`` whose ``WHERE`` clause carries
the expected prior state. When two actors race for the same donation the
database applies exactly one of the updates; the other matches zero rows and
gets a ``TransitionConflict``. Nothing here locks or re-reads before writing.
"""

import logging
from typing import Callable, List

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from errors import DonationNotFound, StoreError, TransitionConflict, VolunteerOffline
from models import STATUS_ORDER, Donation, DonationStatus, Profile, utc_now
from realtime import DELETE, INSERT, UPDATE, ChangeFeed, changes
from schemas import DonationCreate, DonationRead

logger = logging.getLogger(__name__)

TABLE = "donations"


def _store_call(session: Session, action: str, fn: Callable):
    try:
        return fn()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("store error while trying to %s", action)
        raise StoreError(f"Could not {action}. Please try again.") from exc


def _newest_first(stmt):
    return stmt.order_by(col(Donation.created_at).desc(), col(Donation.id).desc())


def _read_all(session: Session, stmt) -> List[DonationRead]:
    rows = _store_call(session, "load donations", lambda: session.exec(stmt).all())
    return [DonationRead.model_validate(row) for row in rows]


def get_donation(session: Session, donation_id: int) -> DonationRead:
    stmt = (
        select(Donation)
        .where(Donation.id == donation_id)
        .execution_options(populate_existing=True)
    )
    row = _store_call(session, "load the donation", lambda: session.exec(stmt).first())
    if row is None:
        raise DonationNotFound(donation_id)
    return DonationRead.model_validate(row)


# --- queries, one per actionable set ---

def donor_history(session: Session, donor_id: int) -> List[DonationRead]:
    return _read_all(session, _newest_first(select(Donation).where(Donation.donor_id == donor_id)))


def ngo_available(session: Session) -> List[DonationRead]:
    stmt = select(Donation).where(Donation.status == DonationStatus.pending)
    return _read_all(session, _newest_first(stmt))


def ngo_accepted(session: Session, ngo_id: int) -> List[DonationRead]:
    return _read_all(session, _newest_first(select(Donation).where(Donation.ngo_id == ngo_id)))


def volunteer_available(session: Session) -> List[DonationRead]:
    stmt = select(Donation).where(
        Donation.status == DonationStatus.accepted,
        col(Donation.volunteer_id).is_(None),
    )
    return _read_all(session, _newest_first(stmt))


def volunteer_claimed(session: Session, volunteer_id: int) -> List[DonationRead]:
    stmt = select(Donation).where(Donation.volunteer_id == volunteer_id)
    return _read_all(session, _newest_first(stmt))


def all_donations(session: Session) -> List[DonationRead]:
    return _read_all(session, _newest_first(select(Donation)))


def donation_counts(session: Session) -> dict:
    stmt = select(Donation.status, func.count()).group_by(Donation.status)
    rows = _store_call(session, "count donations", lambda: session.exec(stmt).all())
    counts = {status.value: 0 for status in STATUS_ORDER}
    for status, n in rows:
        counts[DonationStatus(status).value] = n
    counts["total"] = sum(counts.values())
    return counts


# --- writes ---

def create_donation(
    session: Session,
    donor_id: int,
    data: DonationCreate,
    feed: ChangeFeed = changes,
) -> DonationRead:
    fields = data.model_dump()
    if not fields["city"]:
        profile = _store_call(
            session,
            "load the profile",
            lambda: session.exec(select(Profile).where(Profile.user_id == donor_id)).first(),
        )
        fields["city"] = profile.city if profile else ""

    donation = Donation(donor_id=donor_id, status=DonationStatus.pending, **fields)

    def _insert():
        session.add(donation)
        session.commit()
        session.refresh(donation)

    _store_call(session, "post the donation", _insert)
    logger.info("donor %s posted donation %s", donor_id, donation.id)
    feed.publish(TABLE, INSERT, donation.id)
    return DonationRead.model_validate(donation)


def _transition(
    session: Session,
    donation_id: int,
    preconditions: list,
    values: dict,
    conflict_message: str,
    feed: ChangeFeed,
) -> DonationRead:
    stmt = (
        update(Donation)
        .where(col(Donation.id) == donation_id, *preconditions)
        .values(**values)
    )

    def _apply() -> int:
        result = session.connection().execute(stmt)
        session.commit()
        return result.rowcount

    matched = _store_call(session, "update the donation", _apply)
    if matched == 0:
        # Either it never existed or someone else got there first
        current = get_donation(session, donation_id)
        logger.info(
            "transition to %s on donation %s rejected, row is %s",
            values["status"].value,
            donation_id,
            current.status.value,
        )
        raise TransitionConflict(donation_id, conflict_message)

    logger.info("donation %s is now %s", donation_id, values["status"].value)
    feed.publish(TABLE, UPDATE, donation_id)
    return get_donation(session, donation_id)


def accept_donation(
    session: Session, donation_id: int, ngo_id: int, feed: ChangeFeed = changes
) -> DonationRead:
    return _transition(
        session,
        donation_id,
        [Donation.status == DonationStatus.pending],
        {
            "ngo_id": ngo_id,
            "status": DonationStatus.accepted,
            "accepted_at": utc_now(),
        },
        "This donation is no longer available. Another NGO just accepted it.",
        feed,
    )


def _is_active(session: Session, user_id: int) -> bool:
    profile = _store_call(
        session,
        "load the profile",
        lambda: session.exec(select(Profile).where(Profile.user_id == user_id)).first(),
    )
    return bool(profile and profile.is_active)


def claim_donation(
    session: Session, donation_id: int, volunteer_id: int, feed: ChangeFeed = changes
) -> DonationRead:
    if not _is_active(session, volunteer_id):
        raise VolunteerOffline("Go online to pick up deliveries.")

    return _transition(
        session,
        donation_id,
        [
            Donation.status == DonationStatus.accepted,
            col(Donation.volunteer_id).is_(None),
        ],
        {
            "volunteer_id": volunteer_id,
            "status": DonationStatus.picked_up,
            "picked_up_at": utc_now(),
        },
        "This pickup is no longer available. Another volunteer just claimed it.",
        feed,
    )


def mark_delivered(
    session: Session, donation_id: int, volunteer_id: int, feed: ChangeFeed = changes
) -> DonationRead:
    return _transition(
        session,
        donation_id,
        [
            Donation.status == DonationStatus.picked_up,
            Donation.volunteer_id == volunteer_id,
        ],
        {"status": DonationStatus.delivered, "delivered_at": utc_now()},
        "This delivery is not in progress under your name.",
        feed,
    )


def delete_donation(
    session: Session, donation_id: int, feed: ChangeFeed = changes
) -> None:
    stmt = delete(Donation).where(col(Donation.id) == donation_id)

    def _apply() -> int:
        result = session.connection().execute(stmt)
        session.commit()
        return result.rowcount

    if _store_call(session, "delete the donation", _apply) == 0:
        raise DonationNotFound(donation_id)
    logger.info("donation %s deleted", donation_id)
    feed.publish(TABLE, DELETE, donation_id)

