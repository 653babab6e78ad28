"""Queries that present listings and orders to the people who need them."""

from math import asin, cos, radians, sin, sqrt
from typing import List, Optional, Sequence, Tuple, Union

from sqlmodel import Session, col, select

from models import DietaryKind, Listing, ListingItem, ListingStatus, Order
from store import OrderStore

EARTH_RADIUS_KM = 6371.0

LatLng = Tuple[float, float]


def haversine_km(origin: LatLng, destination: LatLng) -> float:
    """Great-circle distance between two (lat, lng) points in kilometres."""
    lat1, lng1 = map(radians, origin)
    lat2, lng2 = map(radians, destination)
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(sqrt(a))


def find_nearby_listings(
    session: Session,
    dietary: Optional[Union[DietaryKind, str]] = None,
    query: Optional[str] = None,
    requester_location: Optional[LatLng] = None,
    max_distance_km: Optional[float] = None,
) -> List[Tuple[Listing, Optional[float]]]:
    """
    Available listings matching the filters, newest first, each paired with
    its distance from `requester_location` (None when either side has no
    location).

    `dietary` of None or "all" matches every kind. `query` is a
    case-insensitive substring match against item names. Given a requester
    location, `max_distance_km` drops listings farther away than that and
    listings without a location.
    """
    stmt = select(Listing).where(Listing.status == ListingStatus.AVAILABLE)
    if dietary is not None and dietary != "all":
        stmt = stmt.where(Listing.dietary_kind == DietaryKind(dietary))
    if query:
        stmt = stmt.where(
            Listing.items.any(col(ListingItem.name).icontains(query, autoescape=True))
        )
    stmt = stmt.order_by(col(Listing.created_at).desc(), col(Listing.id).desc())

    results: List[Tuple[Listing, Optional[float]]] = []
    for listing in session.exec(stmt).all():
        distance = None
        if requester_location is not None:
            if listing.has_location:
                distance = haversine_km(requester_location, (listing.lat, listing.lng))
            if max_distance_km is not None and (
                distance is None or distance > max_distance_km
            ):
                continue
        results.append((listing, distance))
    return results


def find_orders_awaiting_courier(session: Session) -> Sequence[Order]:
    """Oldest claim first, so couriers serve receivers in order."""
    return OrderStore(session).awaiting_courier()


def find_orders_for_user(session: Session, user_id: int) -> Sequence[Order]:
    return OrderStore(session).for_user(user_id)
