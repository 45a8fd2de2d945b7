from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

UserType = Literal["donor", "ngo", "admin"]
UserStatus = Literal["pending", "active", "inactive"]
Condition = Literal["excellent", "good", "fair", "poor"]
DeliveryOption = Literal["pickup", "delivery", "both"]
DonationStatus = Literal[
    "pending", "claimed", "processing", "shipping", "delivered", "cancelled", "removed"
]

MAX_DONATION_IMAGES = 5


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    type: Literal["donor", "ngo"]
    phone: Optional[str] = None
    address: Optional[str] = None

    # NGO profile, required when type == "ngo"
    registration_number: Optional[str] = Field(default=None, alias="registrationNumber")
    category: Optional[str] = None
    description: Optional[str] = None


class LoginData(BaseModel):
    email: EmailStr
    password: str
    type: UserType


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    type: str
    status: str
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NgoDetailsRead(BaseModel):
    registration_number: str
    description: str
    category: str

    model_config = ConfigDict(from_attributes=True)


class NgoRead(UserRead):
    registration_number: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class UserStatusUpdate(BaseModel):
    status: UserStatus


class DonationCreate(BaseModel):
    # Required fields are checked by the handler so that every missing one
    # can be reported at once.
    name: Optional[str] = None
    category: Optional[str] = None
    conditions: Optional[Condition] = None
    description: Optional[str] = None
    delivery_option: Optional[DeliveryOption] = None
    location: Optional[str] = None
    images: List[str] = Field(default_factory=list)

    @field_validator(
        "name", "category", "conditions", "description", "delivery_option", "location",
        mode="before",
    )
    @classmethod
    def blank_as_missing(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class DonationStatusUpdate(BaseModel):
    status: DonationStatus


class DonationRead(BaseModel):
    id: int
    name: str
    category: str
    conditions: str
    description: str
    donor_id: int
    donor_name: str
    delivery_option: str
    location: str
    status: str
    created_at: datetime
    images: List[str] = Field(default_factory=list)

    # Present once an NGO has claimed the donation
    ngo_id: Optional[int] = None
    claim_status: Optional[str] = None
    delivery_charge: Optional[float] = None
    claimed_at: Optional[datetime] = None


@dataclass
class DonationFilters:
    category: Optional[str] = None
    conditions: Optional[str] = None
    status: Optional[str] = None
    donor_id: Optional[int] = None
    ngo_id: Optional[int] = None


class ClaimCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    donation_id: int = Field(alias="donationId")
    delivery_charge: float = Field(default=0, ge=0, alias="deliveryCharge")


class FeedbackCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    donation_id: int = Field(alias="donationId")
    to_id: int = Field(alias="toId")
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class FeedbackRead(BaseModel):
    id: int
    donation_id: int
    from_id: int
    to_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    from_name: str
    from_type: str
    to_name: str
    to_type: str
    donation_name: str
