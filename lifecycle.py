"""
Donation lifecycle engine.

Every state change here is a single guarded UPDATE on one row (listing or
order), so two callers racing for the same row cannot both win. Listing
status follows its order: the order is written first and the listing is
brought along afterwards, best-effort. When the two disagree the order wins.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Callable, Dict, FrozenSet, Iterable, Optional, Sequence
from datetime import datetime
import logging

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from config import FeePolicy, Settings, get_settings
from db import SessionDep, store_errors
from errors import (
    ConflictError,
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    ValidationError,
)
from models import (
    Account,
    Listing,
    ListingItem,
    ListingStatus,
    Order,
    OrderStatus,
    Rating,
    Role,
    utcnow,
)
from nutrition import estimate_for_items
from schemas import ListingCreate
from store import ListingStore, OrderStore

logger = logging.getLogger(__name__)

LISTING_TRANSITIONS: Dict[ListingStatus, FrozenSet[ListingStatus]] = {
    ListingStatus.AVAILABLE: frozenset({ListingStatus.CLAIMED, ListingStatus.CANCELLED}),
    ListingStatus.CLAIMED: frozenset({ListingStatus.PICKED_UP}),
    ListingStatus.PICKED_UP: frozenset({ListingStatus.DELIVERED}),
    ListingStatus.DELIVERED: frozenset(),
    ListingStatus.CANCELLED: frozenset(),
}

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.AWAITING_COURIER: frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
}


def check_listing_transition(current: ListingStatus, target: ListingStatus) -> None:
    if target not in LISTING_TRANSITIONS[current]:
        raise InvalidStateError("listing", current.value, target.value)


def check_order_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in ORDER_TRANSITIONS[current]:
        raise InvalidStateError("order", current.value, target.value)


def split_fee(policy: FeePolicy) -> Dict[str, int]:
    """
    Split the fixed fee into commission and courier payout.

    The payout is the remainder, so the two halves always add up to the total.
    """
    commission = int(
        (Decimal(policy.total_fee) * Decimal(str(policy.commission_rate))).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
    return {
        "total_fee": policy.total_fee,
        "commission": commission,
        "courier_payout": policy.total_fee - commission,
    }


def average_rating(scores: Iterable[int]) -> float:
    scores = list(scores)
    if not scores:
        return 0.0
    mean = Decimal(sum(scores)) / Decimal(len(scores))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def effective_listing_status(
    order_status: OrderStatus, listing_status: ListingStatus
) -> ListingStatus:
    """The listing status implied by its order, which is authoritative."""
    if order_status == OrderStatus.DELIVERED:
        return ListingStatus.DELIVERED
    if order_status == OrderStatus.PICKED_UP and listing_status == ListingStatus.CLAIMED:
        return ListingStatus.PICKED_UP
    return listing_status


class LifecycleEngine:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.settings = settings
        self.fees = settings.fees
        self.clock = clock
        self.listings = ListingStore(session)
        self.orders = OrderStore(session)

    # ---------- listings ----------

    def create_listing(self, donor: Account, payload: ListingCreate) -> Listing:
        if donor.role != Role.DONOR:
            raise PermissionDeniedError("Only donors can create listings")

        estimate = estimate_for_items(item.ingredients_text for item in payload.items)
        listing = Listing(
            donor_id=donor.id,
            donor_name=donor.name,
            dietary_kind=payload.dietary_kind,
            pickup_window=payload.pickup_window,
            shelf_life_hours=payload.shelf_life_hours,
            notes=payload.notes,
            address=payload.address,
            lat=payload.location.lat if payload.location else None,
            lng=payload.location.lng if payload.location else None,
            status=ListingStatus.AVAILABLE,
            created_at=self.clock(),
            **estimate,
        )
        items = [
            ListingItem(
                name=item.name,
                quantity=item.quantity,
                unit=item.unit,
                ingredients_text=item.ingredients_text,
            )
            for item in payload.items
        ]
        with store_errors(self.session):
            self.listings.add(listing, items)
            self.session.commit()
            self.session.refresh(listing)
        logger.info("listing %s created by donor %s", listing.id, donor.id)
        return listing

    def delete_listing(self, listing_id: int, caller_id: int) -> None:
        with store_errors(self.session):
            listing = self._owned_listing(listing_id, caller_id)
            if listing.status != ListingStatus.AVAILABLE:
                raise InvalidStateError(
                    "listing",
                    listing.status.value,
                    "deleted",
                    f"cannot delete listing in status '{listing.status.value}'",
                )
            if not self.listings.delete_if_available(listing_id, caller_id):
                self.session.rollback()
                raise self._listing_race(listing, "deleted")
            self.session.commit()
        logger.info("listing %s deleted by donor %s", listing_id, caller_id)

    def cancel_listing(self, listing_id: int, caller_id: int) -> Listing:
        with store_errors(self.session):
            listing = self._owned_listing(listing_id, caller_id)
            check_listing_transition(listing.status, ListingStatus.CANCELLED)
            changed = self.listings.compare_and_set_status(
                listing_id, [ListingStatus.AVAILABLE], ListingStatus.CANCELLED
            )
            if not changed:
                raise self._listing_race(listing, ListingStatus.CANCELLED.value)
            self.session.commit()
            self.session.refresh(listing)
        logger.info("listing %s cancelled by donor %s", listing_id, caller_id)
        return listing

    def _owned_listing(self, listing_id: int, caller_id: int) -> Listing:
        listing = self.listings.require(listing_id)
        if listing.donor_id != caller_id:
            raise PermissionDeniedError("Only the donor can change this listing")
        return listing

    def _listing_race(self, stale: Listing, attempted: str) -> ConflictError:
        """Build the error for a guarded write that lost to another caller."""
        current = self.listings.get(stale.id)
        if current is None:
            raise NotFoundError("Listing not found")
        return ConflictError(
            "listing",
            current.status.value,
            attempted,
            f"listing changed to '{current.status.value}' before it could be {attempted}",
        )

    # ---------- claim / accept / deliver ----------

    def claim_listing(
        self,
        listing_id: int,
        receiver_id: int,
        receiver_name: str,
        receiver_address: str,
    ) -> Order:
        with store_errors(self.session):
            claimed = self.listings.compare_and_set_status(
                listing_id, [ListingStatus.AVAILABLE], ListingStatus.CLAIMED
            )
            if not claimed:
                listing = self.listings.get(listing_id)
                current = listing.status.value if listing is not None else "missing"
                logger.info(
                    "claim on listing %s by %s rejected, status is %s",
                    listing_id,
                    receiver_id,
                    current,
                )
                raise ConflictError(
                    "listing",
                    current,
                    ListingStatus.CLAIMED.value,
                    "listing not available",
                )
            order = self.orders.add(
                Order(
                    listing_id=listing_id,
                    receiver_id=receiver_id,
                    receiver_name=receiver_name,
                    receiver_address=receiver_address,
                    status=OrderStatus.AWAITING_COURIER,
                    claimed_at=self.clock(),
                )
            )
            self.session.commit()
            self.session.refresh(order)
        logger.info("listing %s claimed by %s as order %s", listing_id, receiver_id, order.id)
        return order

    def accept_order(self, order_id: int, courier_id: int, courier_name: str) -> Order:
        values = {
            "courier_id": courier_id,
            "courier_name": courier_name,
            "status": OrderStatus.PICKED_UP,
            "picked_up_at": self.clock(),
            **split_fee(self.fees),
        }
        with store_errors(self.session):
            if not self.orders.compare_and_set(
                order_id, OrderStatus.AWAITING_COURIER, values
            ):
                order = self.orders.require(order_id)
                if order.status == OrderStatus.PICKED_UP:
                    logger.info(
                        "courier %s lost order %s to courier %s",
                        courier_id,
                        order_id,
                        order.courier_id,
                    )
                    raise ConflictError(
                        "order",
                        order.status.value,
                        OrderStatus.PICKED_UP.value,
                        "order already accepted by another courier",
                    )
                check_order_transition(order.status, OrderStatus.PICKED_UP)
                raise ConflictError("order", order.status.value, OrderStatus.PICKED_UP.value)
            self.session.commit()
            order = self.orders.require(order_id)
        logger.info("order %s accepted by courier %s", order_id, courier_id)

        self._propagate(order.listing_id, [ListingStatus.CLAIMED], ListingStatus.PICKED_UP)
        return order

    def complete_delivery(self, order_id: int, courier_id: Optional[int] = None) -> Order:
        values = {"status": OrderStatus.DELIVERED, "delivered_at": self.clock()}
        with store_errors(self.session):
            if not self.orders.compare_and_set(
                order_id, OrderStatus.PICKED_UP, values, assigned_courier=courier_id
            ):
                order = self.orders.require(order_id)
                if (
                    order.status == OrderStatus.PICKED_UP
                    and courier_id is not None
                    and order.courier_id != courier_id
                ):
                    raise PermissionDeniedError(
                        "Only the assigned courier can complete this delivery"
                    )
                check_order_transition(order.status, OrderStatus.DELIVERED)
                raise ConflictError("order", order.status.value, OrderStatus.DELIVERED.value)
            self.session.commit()
            order = self.orders.require(order_id)
        logger.info("order %s delivered", order_id)

        self._propagate(
            order.listing_id,
            [ListingStatus.CLAIMED, ListingStatus.PICKED_UP],
            ListingStatus.DELIVERED,
        )
        return order

    def _propagate(
        self,
        listing_id: int,
        expected: Sequence[ListingStatus],
        target: ListingStatus,
    ) -> bool:
        """Move the listing along after its order; failures are left for reconcile()."""
        attempts = self.settings.propagation_attempts
        for attempt in range(1, attempts + 1):
            try:
                with store_errors(self.session):
                    changed = self.listings.compare_and_set_status(
                        listing_id, expected, target
                    )
                    self.session.commit()
                return changed
            except UnavailableError:
                logger.warning(
                    "listing %s -> %s attempt %d/%d failed",
                    listing_id,
                    target.value,
                    attempt,
                    attempts,
                )
            except Exception:
                # the order is already committed; reconcile() repairs the listing
                logger.exception(
                    "listing %s -> %s failed, not retrying", listing_id, target.value
                )
                return False
        logger.error(
            "listing %s left behind its order at %s; will reconcile on read",
            listing_id,
            target.value,
        )
        return False

    def reconcile(self, orders: Sequence[Order]) -> Dict[int, ListingStatus]:
        """
        Map order id -> listing status as it should be displayed, repairing
        listings that fell behind their order.
        """
        lagging = []
        effective: Dict[int, ListingStatus] = {}
        for order in orders:
            listing = order.listing
            if listing is None:
                continue
            status = effective_listing_status(order.status, listing.status)
            effective[order.id] = status
            if status != listing.status:
                lagging.append((listing.id, listing.status, status))

        for listing_id, current, target in lagging:
            logger.info(
                "reconciling listing %s from %s to %s",
                listing_id,
                current.value,
                target.value,
            )
            self._propagate(listing_id, [current], target)
        return effective

    # ---------- ratings ----------

    def submit_rating(
        self,
        listing_id: int,
        reviewer_id: int,
        reviewer_name: str,
        score: int,
        comment: str = "",
    ) -> float:
        if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
            raise ValidationError("score must be an integer from 1 to 5", field="score")

        with store_errors(self.session):
            listing = self.listings.lock(listing_id)
            if self.listings.has_rating_from(listing_id, reviewer_id):
                raise DuplicateError("You have already rated this listing")
            if (
                self.settings.require_delivery_for_rating
                and self.orders.delivered_for(listing_id, reviewer_id) is None
            ):
                raise InvalidStateError(
                    "listing",
                    listing.status.value,
                    "rated",
                    "listing has not been delivered to this reviewer",
                )
            rating = Rating(
                listing_id=listing_id,
                reviewer_id=reviewer_id,
                reviewer_name=reviewer_name,
                score=score,
                comment=comment,
                rated_at=self.clock(),
            )
            try:
                scores = self.listings.add_rating(rating)
            except IntegrityError as exc:
                raise DuplicateError("You have already rated this listing") from exc
            average = average_rating(scores)
            self.listings.set_rating_average(listing_id, average)
            self.session.commit()
        logger.info(
            "listing %s rated %d by %s, average now %.1f",
            listing_id,
            score,
            reviewer_id,
            average,
        )
        return average


def get_lifecycle_engine(session: SessionDep) -> LifecycleEngine:
    return LifecycleEngine(session, get_settings())


EngineDep = Annotated[LifecycleEngine, Depends(get_lifecycle_engine)]
