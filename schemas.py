from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from models import DonationStatus, MessageStatus, Role

HOLDS_NGO = {DonationStatus.accepted, DonationStatus.picked_up, DonationStatus.delivered}
HOLDS_VOLUNTEER = {DonationStatus.picked_up, DonationStatus.delivered}


class SignUpData(BaseModel):
    email: EmailStr
    password: str
    full_name: str = Field(min_length=1)
    phone: str = ""
    city: str = ""
    role: Literal["donor", "ngo", "volunteer"]


class SignInData(BaseModel):
    email: EmailStr
    password: str


class ProfileRead(BaseModel):
    user_id: int
    full_name: str
    phone: str
    city: str
    is_active: bool
    blocked: bool = False

    model_config = ConfigDict(from_attributes=True)


class DonationCreate(BaseModel):
    food_item: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    description: str = ""
    city: str = ""
    pickup_address: str = Field(min_length=1)
    food_source: Literal["home", "restaurant", "event", "other"] = "home"
    expiry_time: Optional[datetime] = None

    @field_validator("expiry_time")
    @classmethod
    def expiry_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Browsers send datetime-local values without an offset; read them as UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DonationRead(BaseModel):
    """A donation row as the lifecycle engine sees it.

    Rows that break the actor/status invariants are rejected here, so nothing
    downstream has to re-check them.
    """

    id: int
    donor_id: int
    ngo_id: Optional[int]
    volunteer_id: Optional[int]
    food_item: str
    quantity: int
    description: str
    city: str
    pickup_address: str
    food_source: str
    expiry_time: Optional[datetime]
    status: DonationStatus
    created_at: datetime
    accepted_at: Optional[datetime]
    picked_up_at: Optional[datetime]
    delivered_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_actor_fields(self) -> "DonationRead":
        if (self.ngo_id is not None) != (self.status in HOLDS_NGO):
            raise ValueError(
                f"donation {self.id}: ngo_id does not match status {self.status.value}"
            )
        if (self.volunteer_id is not None) != (self.status in HOLDS_VOLUNTEER):
            raise ValueError(
                f"donation {self.id}: volunteer_id does not match status {self.status.value}"
            )
        return self


class ContactCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)


class ContactMessageRead(BaseModel):
    id: int
    name: str
    email: str
    subject: str
    message: str
    status: MessageStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserRow(BaseModel):
    """One line of the admin's user table."""

    user_id: int
    email: str
    full_name: str
    city: str
    role: Optional[Role]
    is_active: bool
    blocked: bool = False
    donations: int = 0


class ActiveStatusUpdate(BaseModel):
    is_active: bool
