import logging
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, or_, select

from models import ContactMessage, Donation, MessageStatus, Profile, Role, User, UserRole
from realtime import INSERT, UPDATE, ChangeFeed, changes
from schemas import ContactCreate, ContactMessageRead, UserRow

logger = logging.getLogger(__name__)


def list_users(
    session: Session,
    search: Optional[str] = None,
    role: Optional[Role] = None,
) -> List[UserRow]:
    """Users joined with profile and role, optionally filtered by name/email and role."""
    donation_counts = (
        select(Donation.donor_id, func.count().label("n"))
        .group_by(Donation.donor_id)
        .subquery()
    )
    stmt = (
        select(User, Profile, UserRole.role, donation_counts.c.n)
        .join(Profile, Profile.user_id == User.id)
        .outerjoin(UserRole, UserRole.user_id == User.id)
        .outerjoin(donation_counts, donation_counts.c.donor_id == User.id)
        .order_by(col(User.created_at).desc(), col(User.id).desc())
    )
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Profile.full_name).like(pattern),
                func.lower(User.email).like(pattern),
            )
        )
    if role is not None:
        stmt = stmt.where(UserRole.role == role)

    rows = []
    for user, profile, user_role, n in session.exec(stmt).all():
        rows.append(
            UserRow(
                user_id=user.id,
                email=user.email,
                full_name=profile.full_name,
                city=profile.city,
                role=user_role,
                is_active=profile.is_active,
                blocked=profile.blocked,
                donations=n or 0,
            )
        )
    return rows


def user_counts(session: Session) -> dict:
    stmt = select(UserRole.role, func.count()).group_by(UserRole.role)
    counts = {role.value: 0 for role in Role}
    for role, n in session.exec(stmt).all():
        counts[Role(role).value] = n
    active_volunteers = session.exec(
        select(func.count())
        .select_from(Profile)
        .join(UserRole, UserRole.user_id == Profile.user_id)
        .where(UserRole.role == Role.volunteer, Profile.is_active == True)  # noqa: E712
    ).one()
    counts["active_volunteers"] = active_volunteers
    return counts


def get_profile(session: Session, user_id: int) -> Optional[Profile]:
    return session.exec(select(Profile).where(Profile.user_id == user_id)).first()


def set_active(
    session: Session, user_id: int, is_active: bool, feed: ChangeFeed = changes
) -> Optional[Profile]:
    """Flip a profile's is_active flag. Last write wins."""
    profile = get_profile(session, user_id)
    if profile is None:
        return None
    profile.is_active = is_active
    session.add(profile)
    session.commit()
    session.refresh(profile)
    logger.info("user %s is_active=%s", user_id, is_active)
    feed.publish("profiles", UPDATE, user_id)
    return profile


def set_blocked(
    session: Session, user_id: int, blocked: bool, feed: ChangeFeed = changes
) -> Optional[Profile]:
    """Admin block/unblock. A blocked profile is also inactive, so a volunteer drops offline."""
    profile = get_profile(session, user_id)
    if profile is None:
        return None
    profile.blocked = blocked
    profile.is_active = not blocked
    session.add(profile)
    session.commit()
    session.refresh(profile)
    logger.info("user %s blocked=%s", user_id, blocked)
    feed.publish("profiles", UPDATE, user_id)
    return profile


def create_message(
    session: Session, data: ContactCreate, feed: ChangeFeed = changes
) -> ContactMessageRead:
    message = ContactMessage(**data.model_dump())
    session.add(message)
    session.commit()
    session.refresh(message)
    logger.info("contact message %s from %s", message.id, message.email)
    feed.publish("contact_messages", INSERT, message.id)
    return ContactMessageRead.model_validate(message)


def list_messages(session: Session) -> List[ContactMessageRead]:
    stmt = select(ContactMessage).order_by(
        col(ContactMessage.created_at).desc(), col(ContactMessage.id).desc()
    )
    return [ContactMessageRead.model_validate(m) for m in session.exec(stmt).all()]


def resolve_message(
    session: Session, message_id: int, feed: ChangeFeed = changes
) -> Optional[ContactMessageRead]:
    message = session.get(ContactMessage, message_id)
    if message is None:
        return None
    message.status = MessageStatus.resolved
    session.add(message)
    session.commit()
    session.refresh(message)
    feed.publish("contact_messages", UPDATE, message_id)
    return ContactMessageRead.model_validate(message)
