import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from config import settings
from errors import IdentityError
from models import Profile, Role, User, UserRole
from realtime import INSERT, ChangeFeed, changes
from schemas import ProfileRead, SignInData, SignUpData

logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(settings.SECRET_KEY, salt="session")

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

INVALID_CREDENTIALS = "Invalid login credentials"
ALREADY_REGISTERED = "User already registered"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int) -> str:
    # Only the identity goes in the cookie; role and profile are looked up
    # again on every request.
    return serializer.dumps({"user_id": user_id})


def verify_session_token(token: str, max_age_seconds: Optional[int] = None) -> Optional[int]:
    """Return the user id in ``token``, or None if it is invalid or expired."""
    if max_age_seconds is None:
        max_age_seconds = settings.SESSION_MAX_AGE
    try:
        data = serializer.loads(token, max_age=max_age_seconds)
    except (SignatureExpired, BadSignature):
        return None
    user_id = data.get("user_id") if isinstance(data, dict) else None
    return user_id if isinstance(user_id, int) else None


class SessionState(str, Enum):
    loading = "loading"
    anonymous = "anonymous"
    authenticated = "authenticated"


@dataclass(frozen=True)
class SessionContext:
    state: SessionState
    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    profile: Optional[ProfileRead] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.authenticated

    @property
    def is_blocked(self) -> bool:
        if self.profile is None:
            return False
        if self.profile.blocked:
            return True
        # Volunteers use is_active as their online switch, not as a ban
        return not self.profile.is_active and self.role is not Role.volunteer


LOADING = SessionContext(state=SessionState.loading)
ANONYMOUS = SessionContext(state=SessionState.anonymous)


def resolve_context(session: Session, token: Optional[str]) -> SessionContext:
    """Build the session context for a request.

    A valid cookie whose role or profile cannot be loaded still yields an
    authenticated context, just without a role.
    """
    if not token:
        return ANONYMOUS

    user_id = verify_session_token(token)
    if user_id is None:
        return ANONYMOUS
    return load_context(session, user_id)


def load_context(session: Session, user_id: int) -> SessionContext:
    """Current user, role and profile for an already verified user id."""
    try:
        user = session.get(User, user_id)
        if user is None:
            return ANONYMOUS
        profile = session.exec(select(Profile).where(Profile.user_id == user_id)).first()
        user_role = session.exec(select(UserRole).where(UserRole.user_id == user_id)).first()
    except SQLAlchemyError:
        logger.exception("could not resolve role for user %s", user_id)
        return SessionContext(state=SessionState.authenticated, user_id=user_id)

    if profile is None or user_role is None:
        return SessionContext(
            state=SessionState.authenticated, user_id=user_id, email=user.email
        )

    return SessionContext(
        state=SessionState.authenticated,
        user_id=user_id,
        email=user.email,
        role=Role(user_role.role),
        profile=ProfileRead.model_validate(profile),
    )


def sign_up(session: Session, data: SignUpData, feed: ChangeFeed = changes) -> User:
    if len(data.password) < settings.MIN_PASSWORD_LENGTH:
        raise IdentityError(
            f"Password should be at least {settings.MIN_PASSWORD_LENGTH} characters"
        )

    email = data.email.lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise IdentityError(ALREADY_REGISTERED)

    role = Role.admin if email in {e.lower() for e in settings.ADMIN_EMAILS} else Role(data.role)

    user = User(email=email, password_hash=hash_password(data.password))
    try:
        session.add(user)
        session.flush()
        session.add(
            Profile(
                user_id=user.id,
                full_name=data.full_name,
                phone=data.phone,
                city=data.city,
                is_active=True,
            )
        )
        session.add(UserRole(user_id=user.id, role=role))
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise IdentityError(ALREADY_REGISTERED) from exc
    session.refresh(user)

    logger.info("new %s account %s (user %s)", role.value, email, user.id)
    feed.publish("profiles", INSERT, user.id)
    return user


def sign_in(session: Session, data: SignInData) -> User:
    user = session.exec(select(User).where(User.email == data.email.lower())).first()
    if user is None or not verify_password(data.password, user.password_hash):
        raise IdentityError(INVALID_CREDENTIALS)
    return user


def dashboard_url(role: Optional[Role]) -> str:
    return {
        Role.donor: "/donor/dashboard",
        Role.ngo: "/receiver/dashboard",
        Role.volunteer: "/volunteer/dashboard",
        Role.admin: "/admin",
    }.get(role, "/")
