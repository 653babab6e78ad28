from typing import List, Sequence

from fastapi import APIRouter, HTTPException

from db import SessionDep
from lifecycle import EngineDep, LifecycleEngine
from matching import find_orders_awaiting_courier, find_orders_for_user
from models import Order, OrderStatus, Role
from schemas import AcceptRequest, ClaimRequest, ListingRead, OrderRead
from .auth import CourierDep, CurrentAccountDep, ReceiverDep

router = APIRouter(tags=["orders"])


def _with_listings(engine: LifecycleEngine, orders: Sequence[Order]) -> List[OrderRead]:
    """Embed each order's listing, showing the status the order implies."""
    statuses = engine.reconcile(orders)
    now = engine.clock()
    result = []
    for order in orders:
        listing = None
        if order.listing is not None:
            listing = ListingRead.build(order.listing, now, status=statuses.get(order.id))
        result.append(OrderRead.build(order, listing))
    return result


@router.post("/claim", response_model=OrderRead, status_code=201)
def claim_listing(claim: ClaimRequest, engine: EngineDep, receiver: ReceiverDep):
    """
    Reserve an available listing. Exactly one of several racing receivers wins;
    the others get a 400.
    """
    if claim.receiver_id != receiver.id:
        raise HTTPException(status_code=403, detail="You can only claim for yourself")
    order = engine.claim_listing(
        claim.listing_id,
        receiver_id=claim.receiver_id,
        receiver_name=claim.receiver_name,
        receiver_address=claim.receiver_address,
    )
    return OrderRead.build(order)


@router.get("/awaiting-courier", response_model=List[OrderRead])
def orders_awaiting_courier(
    session: SessionDep, engine: EngineDep, courier: CourierDep
):
    """
    Orders nobody has picked up yet, oldest claim first.
    """
    return _with_listings(engine, find_orders_awaiting_courier(session))


@router.get("/user/{user_id}", response_model=List[OrderRead])
def orders_for_user(
    user_id: int, session: SessionDep, engine: EngineDep, current: CurrentAccountDep
):
    """
    Orders where the user is the receiver or the courier, newest first.
    """
    if user_id != current.id:
        raise HTTPException(status_code=403, detail="You can only view your own orders")
    return _with_listings(engine, find_orders_for_user(session, user_id))


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, engine: EngineDep, current: CurrentAccountDep):
    order = engine.orders.require(order_id)
    visible = current.id in (order.receiver_id, order.courier_id) or (
        order.status == OrderStatus.AWAITING_COURIER and current.role == Role.COURIER
    )
    if not visible:
        raise HTTPException(status_code=403, detail="Not your order")
    return _with_listings(engine, [order])[0]


@router.put("/{order_id}/accept", response_model=OrderRead)
def accept_order(
    order_id: int, accept: AcceptRequest, engine: EngineDep, courier: CourierDep
):
    """
    Take an order for delivery. Fixes the fee split and marks it picked up.
    """
    if accept.courier_id != courier.id:
        raise HTTPException(status_code=403, detail="You can only accept as yourself")
    order = engine.accept_order(order_id, accept.courier_id, accept.courier_name)
    return OrderRead.build(order)


@router.put("/{order_id}/deliver", response_model=OrderRead)
def deliver_order(order_id: int, engine: EngineDep, courier: CourierDep):
    order = engine.complete_delivery(order_id, courier_id=courier.id)
    return OrderRead.build(order)
