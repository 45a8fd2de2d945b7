from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Donation lifecycle: status -> statuses reachable by a status update.
# "claimed" is only entered through the claim workflow.
DONATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"cancelled", "removed"}),
    "claimed": frozenset({"processing"}),
    "processing": frozenset({"shipping"}),
    "shipping": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
    "removed": frozenset(),
}

# Donation statuses mirrored onto the claim row.
CLAIM_STATUSES = frozenset({"processing", "shipping", "delivered"})


def can_transition(current: str, target: str) -> bool:
    return target in DONATION_TRANSITIONS.get(current, frozenset())


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    password_hash: str
    type: str  # donor | ngo | admin
    status: str = "active"  # pending | active | inactive
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class NgoDetails(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    ngo_id: int = Field(foreign_key="user.id", unique=True)

    registration_number: str
    description: str
    category: str


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    name: str
    category: str
    conditions: str  # excellent | good | fair | poor
    description: str
    delivery_option: str  # pickup | delivery | both
    location: str
    status: str = "pending"
    created_at: datetime = Field(default_factory=utcnow, index=True)


class DonationImage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donation_id: int = Field(foreign_key="donation.id", index=True)

    position: int = 0
    image_url: str


class DonationClaim(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # At most one claim per donation
    donation_id: int = Field(foreign_key="donation.id", unique=True)
    ngo_id: int = Field(foreign_key="user.id", index=True)

    status: str = "processing"  # processing | shipping | delivered
    delivery_charge: float = 0
    claimed_at: datetime = Field(default_factory=utcnow)


class Feedback(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("donation_id", "from_id", "to_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    donation_id: int = Field(foreign_key="donation.id", index=True)
    from_id: int = Field(foreign_key="user.id")
    to_id: int = Field(foreign_key="user.id")

    rating: int
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
