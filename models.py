from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    donor = "donor"
    ngo = "ngo"
    volunteer = "volunteer"
    admin = "admin"


class DonationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    picked_up = "picked_up"
    delivered = "delivered"


STATUS_ORDER = [
    DonationStatus.pending,
    DonationStatus.accepted,
    DonationStatus.picked_up,
    DonationStatus.delivered,
]


class MessageStatus(str, Enum):
    new = "new"
    resolved = "resolved"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utc_now)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, unique=True)

    full_name: str
    phone: str = ""
    city: str = ""
    is_active: bool = True
    # written only by an admin; the owner cannot lift it
    blocked: bool = False


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, unique=True)
    role: Role


class Donation(SQLModel, table=True):
    __tablename__ = "donations"

    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="users.id", index=True)
    ngo_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    volunteer_id: Optional[int] = Field(
        default=None, foreign_key="users.id", index=True
    )

    food_item: str
    quantity: int
    description: str = ""
    city: str = ""
    pickup_address: str
    food_source: str = "home"
    expiry_time: Optional[datetime] = None

    status: DonationStatus = Field(default=DonationStatus.pending, index=True)
    created_at: datetime = Field(default_factory=utc_now)
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class ContactMessage(SQLModel, table=True):
    __tablename__ = "contact_messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    subject: str
    message: str
    status: MessageStatus = MessageStatus.new
    created_at: datetime = Field(default_factory=utc_now)
