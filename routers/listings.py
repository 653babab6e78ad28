from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from db import SessionDep
from errors import ValidationError
from lifecycle import EngineDep
from matching import find_nearby_listings
from models import DietaryKind
from schemas import ListingCreate, ListingRead, RatingAverage, RatingCreate
from .auth import CurrentAccountDep, DonorDep

router = APIRouter(tags=["listings"])


@router.post("", response_model=ListingRead, status_code=201)
def create_listing(listing_in: ListingCreate, engine: EngineDep, donor: DonorDep):
    """
    Post a new donation. The nutrition estimate is computed from the
    items' ingredients.
    """
    listing = engine.create_listing(donor, listing_in)
    return ListingRead.build(listing, engine.clock())


@router.get("", response_model=List[ListingRead])
def list_listings(engine: EngineDep, current: CurrentAccountDep):
    """
    All listings, newest first, whatever their status.
    """
    now = engine.clock()
    return [ListingRead.build(listing, now) for listing in engine.listings.list_all()]


@router.get("/nearby", response_model=List[ListingRead])
def nearby_listings(
    session: SessionDep,
    engine: EngineDep,
    current: CurrentAccountDep,
    dietary: Optional[str] = None,
    q: Optional[str] = None,
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    max_distance_km: Optional[float] = Query(default=None, alias="maxDistanceKm", gt=0),
):
    """
    Available listings filtered by dietary kind and item name, annotated with
    the distance from (lat, lng) when both are given.
    """
    if dietary is not None and dietary != "all":
        try:
            dietary = DietaryKind(dietary)
        except ValueError as exc:
            raise ValidationError(
                "dietary must be one of veg, non-veg, mixed, all", field="dietary"
            ) from exc
    if (lat is None) != (lng is None):
        raise ValidationError("lat and lng must be given together", field="lat")

    location = (lat, lng) if lat is not None else None
    now = engine.clock()
    matches = find_nearby_listings(
        session,
        dietary=dietary,
        query=q,
        requester_location=location,
        max_distance_km=max_distance_km,
    )
    return [
        ListingRead.build(listing, now, distance_km=distance)
        for listing, distance in matches
    ]


@router.get("/{listing_id}", response_model=ListingRead)
def get_listing(listing_id: int, engine: EngineDep, current: CurrentAccountDep):
    listing = engine.listings.require(listing_id)
    return ListingRead.build(listing, engine.clock())


@router.delete("/{listing_id}")
def delete_listing(listing_id: int, engine: EngineDep, donor: DonorDep):
    """
    Delete one of your own listings. Only possible while it is still available.
    """
    engine.delete_listing(listing_id, donor.id)
    return {"message": "Listing deleted successfully"}


@router.put("/{listing_id}/cancel", response_model=ListingRead)
def cancel_listing(listing_id: int, engine: EngineDep, donor: DonorDep):
    listing = engine.cancel_listing(listing_id, donor.id)
    return ListingRead.build(listing, engine.clock())


@router.post("/{listing_id}/rate", response_model=RatingAverage)
def rate_listing(
    listing_id: int,
    rating_in: RatingCreate,
    engine: EngineDep,
    current: CurrentAccountDep,
):
    if rating_in.reviewer_id != current.id:
        raise HTTPException(status_code=403, detail="You can only rate as yourself")
    average = engine.submit_rating(
        listing_id,
        reviewer_id=rating_in.reviewer_id,
        reviewer_name=rating_in.reviewer_name,
        score=rating_in.score,
        comment=rating_in.comment,
    )
    return RatingAverage(rating_average=average)
