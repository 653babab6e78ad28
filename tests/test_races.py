"""
Two callers hitting the same listing or order at once: exactly one wins.

Each worker has its own session (its own connection), like two API
requests served in parallel.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from sqlmodel import Session, select

from errors import ConflictError, InvalidStateError
from lifecycle import LifecycleEngine
from models import Order, OrderStatus, Role
from conftest import listing_payload, make_account


def _race(engine, settings, attempts):
    """Run each attempt(engine) in its own thread and session, released together."""
    barrier = threading.Barrier(len(attempts))

    def run(attempt):
        with Session(engine) as session:
            lifecycle = LifecycleEngine(session, settings)
            barrier.wait()
            try:
                return attempt(lifecycle)
            except InvalidStateError as exc:
                return exc

    with ThreadPoolExecutor(max_workers=len(attempts)) as pool:
        return list(pool.map(run, attempts))


def test_concurrent_claims_create_exactly_one_order(race_engine, settings) -> None:
    with Session(race_engine) as session:
        donor = make_account(session, Role.DONOR, "Dana")
        first = make_account(session, Role.RECEIVER, "Ravi")
        second = make_account(session, Role.RECEIVER, "Rita")
        listing = LifecycleEngine(session, settings).create_listing(donor, listing_payload())
        listing_id = listing.id
        receivers = [(first.id, first.name), (second.id, second.name)]
        session.commit()

    def claim_as(receiver_id, name):
        return lambda lifecycle: lifecycle.claim_listing(
            listing_id, receiver_id, name, "somewhere"
        ).id

    results = _race(race_engine, settings, [claim_as(*r) for r in receivers])

    winners = [r for r in results if isinstance(r, int)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)
    assert losers[0].message == "listing not available"

    with Session(race_engine) as session:
        orders = session.exec(select(Order).where(Order.listing_id == listing_id)).all()
        assert [order.id for order in orders] == winners


def test_concurrent_accepts_assign_one_courier(race_engine, settings) -> None:
    with Session(race_engine) as session:
        donor = make_account(session, Role.DONOR, "Dana")
        receiver = make_account(session, Role.RECEIVER, "Ravi")
        couriers = [
            make_account(session, Role.COURIER, "Chen"),
            make_account(session, Role.COURIER, "Cora"),
        ]
        lifecycle = LifecycleEngine(session, settings)
        listing = lifecycle.create_listing(donor, listing_payload())
        order = lifecycle.claim_listing(listing.id, receiver.id, receiver.name, "somewhere")
        order_id = order.id
        courier_ids = [(c.id, c.name) for c in couriers]
        session.commit()

    def accept_as(courier_id, name):
        return lambda lifecycle: lifecycle.accept_order(order_id, courier_id, name).courier_id

    results = _race(race_engine, settings, [accept_as(*c) for c in courier_ids])

    winners = [r for r in results if isinstance(r, int)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)

    with Session(race_engine) as session:
        stored = session.get(Order, order_id)
        assert stored.status == OrderStatus.PICKED_UP
        assert stored.courier_id == winners[0]
        assert stored.commission + stored.courier_payout == stored.total_fee
