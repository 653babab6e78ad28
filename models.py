from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Role(str, Enum):
    DONOR = "donor"
    RECEIVER = "receiver"
    COURIER = "courier"


class DietaryKind(str, Enum):
    VEG = "veg"
    NON_VEG = "non-veg"
    MIXED = "mixed"


class ListingStatus(str, Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    AWAITING_COURIER = "awaiting_courier"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    role: Role
    phone: str
    address: str
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ListingItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    listing_id: Optional[int] = Field(default=None, foreign_key="listing.id", index=True)

    name: str
    quantity: float = 1
    unit: str = "servings"
    ingredients_text: str = ""

    listing: Optional["Listing"] = Relationship(back_populates="items")


class Rating(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("listing_id", "reviewer_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    listing_id: int = Field(foreign_key="listing.id", index=True)
    reviewer_id: int = Field(foreign_key="account.id")
    reviewer_name: str
    score: int
    comment: str = ""
    rated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    listing: Optional["Listing"] = Relationship(back_populates="ratings")


class Listing(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="account.id", index=True)
    donor_name: str = ""

    dietary_kind: DietaryKind
    pickup_window: str = "ASAP"
    shelf_life_hours: float
    notes: Optional[str] = None
    address: str
    lat: Optional[float] = None
    lng: Optional[float] = None

    status: ListingStatus = Field(default=ListingStatus.AVAILABLE, index=True)
    calories: int = 0
    protein: int = 0
    fat: int = 0
    rating_average: float = 0
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True), index=True
    )

    items: List[ListingItem] = Relationship(back_populates="listing")
    ratings: List[Rating] = Relationship(back_populates="listing")

    @property
    def expires_at(self) -> datetime:
        return as_utc(self.created_at) + timedelta(hours=self.shelf_life_hours)

    def is_expired(self, now: datetime) -> bool:
        """Display-only: an expired listing keeps whatever status it had."""
        return as_utc(now) >= self.expires_at

    @property
    def has_location(self) -> bool:
        if self.lat is None or self.lng is None:
            return False
        return -90 <= self.lat <= 90 and -180 <= self.lng <= 180


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    listing_id: int = Field(foreign_key="listing.id", index=True)
    receiver_id: int = Field(foreign_key="account.id", index=True)
    receiver_name: str
    receiver_address: str
    courier_id: Optional[int] = Field(default=None, foreign_key="account.id", index=True)
    courier_name: Optional[str] = None

    status: OrderStatus = Field(default=OrderStatus.AWAITING_COURIER, index=True)
    total_fee: int = 0
    commission: int = 0
    courier_payout: int = 0

    claimed_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True), index=True
    )
    picked_up_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    delivered_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    listing: Optional[Listing] = Relationship()
