from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from models import (
    DietaryKind,
    Listing,
    ListingStatus,
    Order,
    OrderStatus,
    Role,
    as_utc,
)


class APIModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------- accounts ----------

class AccountCreate(APIModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    phone: str
    address: str
    role: Role


class LoginData(APIModel):
    email: EmailStr
    password: str


class AccountRead(APIModel):
    id: int
    name: str
    role: Role
    address: str


class AccountProfile(AccountRead):
    email: EmailStr
    phone: str


class LoginResponse(AccountRead):
    token: str


# ---------- listings ----------

class Location(APIModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ListingItemIn(APIModel):
    name: str = Field(min_length=1)
    quantity: float = Field(default=1, gt=0)
    unit: str = "servings"
    ingredients_text: str = ""


class ListingCreate(APIModel):
    items: List[ListingItemIn] = Field(min_length=1)
    dietary_kind: DietaryKind
    pickup_window: str = "ASAP"
    shelf_life_hours: float = Field(gt=0)
    address: str
    location: Optional[Location] = None
    notes: Optional[str] = None


class ListingItemRead(APIModel):
    name: str
    quantity: float
    unit: str
    ingredients_text: str


class RatingCreate(APIModel):
    reviewer_id: int
    reviewer_name: str
    score: int
    comment: str = ""


class RatingRead(APIModel):
    reviewer_id: int
    reviewer_name: str
    score: int
    comment: str
    rated_at: datetime


class RatingAverage(APIModel):
    rating_average: float


class NutritionEstimate(APIModel):
    calories: int
    protein: int
    fat: int


class ListingRead(APIModel):
    id: int
    donor_id: int
    donor_name: str
    items: List[ListingItemRead]
    dietary_kind: DietaryKind
    pickup_window: str
    shelf_life_hours: float
    notes: Optional[str] = None
    address: str
    location: Optional[Location] = None
    status: ListingStatus
    nutrition_estimate: NutritionEstimate
    ratings: List[RatingRead]
    rating_average: float
    created_at: datetime
    expires_at: datetime
    is_expired: bool
    distance_km: Optional[float] = None

    @classmethod
    def build(
        cls,
        listing: Listing,
        now: datetime,
        status: Optional[ListingStatus] = None,
        distance_km: Optional[float] = None,
    ) -> "ListingRead":
        location = None
        if listing.has_location:
            location = Location(lat=listing.lat, lng=listing.lng)
        return cls(
            id=listing.id,
            donor_id=listing.donor_id,
            donor_name=listing.donor_name,
            items=[ListingItemRead.model_validate(item) for item in listing.items],
            dietary_kind=listing.dietary_kind,
            pickup_window=listing.pickup_window,
            shelf_life_hours=listing.shelf_life_hours,
            notes=listing.notes,
            address=listing.address,
            location=location,
            status=status or listing.status,
            nutrition_estimate=NutritionEstimate(
                calories=listing.calories,
                protein=listing.protein,
                fat=listing.fat,
            ),
            ratings=[RatingRead.model_validate(r) for r in listing.ratings],
            rating_average=listing.rating_average,
            created_at=as_utc(listing.created_at),
            expires_at=listing.expires_at,
            is_expired=listing.is_expired(now),
            distance_km=distance_km,
        )


# ---------- orders ----------

class ClaimRequest(APIModel):
    listing_id: int
    receiver_id: int
    receiver_name: str
    receiver_address: str


class AcceptRequest(APIModel):
    courier_id: int
    courier_name: str


class OrderRead(APIModel):
    id: int
    listing_id: int
    receiver_id: int
    receiver_name: str
    receiver_address: str
    courier_id: Optional[int] = None
    courier_name: Optional[str] = None
    status: OrderStatus
    total_fee: int
    commission: int
    courier_payout: int
    claimed_at: datetime
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    listing: Optional[ListingRead] = None

    @classmethod
    def build(cls, order: Order, listing: Optional[ListingRead] = None) -> "OrderRead":
        data = {}
        for name in cls.model_fields:
            if name == "listing":
                continue
            value = getattr(order, name)
            data[name] = as_utc(value) if isinstance(value, datetime) else value
        return cls(**data, listing=listing)
