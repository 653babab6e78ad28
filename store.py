from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, or_, update
from sqlmodel import Session, col, select

from errors import NotFoundError
from models import (
    Listing,
    ListingItem,
    ListingStatus,
    Order,
    OrderStatus,
    Rating,
)


class ListingStore:
    """Listing rows plus their items and ratings. Never commits."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, listing_id: int) -> Optional[Listing]:
        return self.session.get(Listing, listing_id, populate_existing=True)

    def require(self, listing_id: int) -> Listing:
        listing = self.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        return listing

    def add(self, listing: Listing, items: Iterable[ListingItem]) -> Listing:
        listing.items = list(items)
        self.session.add(listing)
        self.session.flush()
        return listing

    def list_all(self) -> Sequence[Listing]:
        query = select(Listing).order_by(
            col(Listing.created_at).desc(), col(Listing.id).desc()
        )
        return self.session.exec(query).all()

    def list_for_donor(self, donor_id: int) -> Sequence[Listing]:
        query = (
            select(Listing)
            .where(Listing.donor_id == donor_id)
            .order_by(col(Listing.created_at).desc(), col(Listing.id).desc())
        )
        return self.session.exec(query).all()

    def compare_and_set_status(
        self,
        listing_id: int,
        expected: Iterable[ListingStatus],
        new: ListingStatus,
    ) -> bool:
        """Set status only if it is currently one of `expected`."""
        stmt = (
            update(Listing)
            .where(
                col(Listing.id) == listing_id,
                col(Listing.status).in_(list(expected)),
            )
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def delete_if_available(self, listing_id: int, donor_id: int) -> bool:
        """
        Remove the listing with its items and ratings, children first.

        The listing row goes last under the same owner/status guard. When it
        matches nothing the caller must roll back, which restores the children.
        """
        guard = (
            col(Listing.id) == listing_id,
            col(Listing.donor_id) == donor_id,
            col(Listing.status) == ListingStatus.AVAILABLE,
        )
        deletable = select(Listing.id).where(*guard)
        for child in (Rating, ListingItem):
            self.session.execute(
                delete(child)
                .where(col(child.listing_id).in_(deletable))
                .execution_options(synchronize_session=False)
            )
        stmt = (
            delete(Listing)
            .where(*guard)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def lock(self, listing_id: int) -> Listing:
        """Load the listing holding its row lock until commit."""
        query = (
            select(Listing)
            .where(Listing.id == listing_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        listing = self.session.exec(query).first()
        if listing is None:
            raise NotFoundError("Listing not found")
        return listing

    def has_rating_from(self, listing_id: int, reviewer_id: int) -> bool:
        query = select(Rating.id).where(
            Rating.listing_id == listing_id,
            Rating.reviewer_id == reviewer_id,
        )
        return self.session.exec(query).first() is not None

    def add_rating(self, rating: Rating) -> List[int]:
        """Insert the rating and return every score now on the listing."""
        self.session.add(rating)
        self.session.flush()
        scores = self.session.exec(
            select(Rating.score).where(Rating.listing_id == rating.listing_id)
        ).all()
        return list(scores)

    def set_rating_average(self, listing_id: int, average: float) -> None:
        self.session.execute(
            update(Listing)
            .where(col(Listing.id) == listing_id)
            .values(rating_average=average)
            .execution_options(synchronize_session=False)
        )


class OrderStore:
    """Order rows. Never commits."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id: int) -> Optional[Order]:
        return self.session.get(Order, order_id, populate_existing=True)

    def require(self, order_id: int) -> Order:
        order = self.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def add(self, order: Order) -> Order:
        self.session.add(order)
        self.session.flush()
        return order

    def compare_and_set(
        self,
        order_id: int,
        expected: OrderStatus,
        values: Dict[str, Any],
        assigned_courier: Optional[int] = None,
    ) -> bool:
        """Apply `values` only if the order is still in `expected` status."""
        conditions = [col(Order.id) == order_id, col(Order.status) == expected]
        if assigned_courier is not None:
            conditions.append(col(Order.courier_id) == assigned_courier)
        stmt = (
            update(Order)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def awaiting_courier(self) -> Sequence[Order]:
        query = (
            select(Order)
            .where(Order.status == OrderStatus.AWAITING_COURIER)
            .order_by(col(Order.claimed_at).asc(), col(Order.id).asc())
        )
        return self.session.exec(query).all()

    def for_user(self, user_id: int) -> Sequence[Order]:
        query = (
            select(Order)
            .where(or_(Order.receiver_id == user_id, Order.courier_id == user_id))
            .order_by(col(Order.claimed_at).desc(), col(Order.id).desc())
        )
        return self.session.exec(query).all()

    def delivered_for(self, listing_id: int, receiver_id: int) -> Optional[Order]:
        query = select(Order).where(
            Order.listing_id == listing_id,
            Order.receiver_id == receiver_id,
            Order.status == OrderStatus.DELIVERED,
        )
        return self.session.exec(query).first()
