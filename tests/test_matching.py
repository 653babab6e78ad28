import pytest

from matching import (
    find_nearby_listings,
    find_orders_awaiting_courier,
    find_orders_for_user,
    haversine_km,
)
from models import DietaryKind
from schemas import ListingItemIn, Location
from conftest import listing_payload

REQUESTER = (13.6288, 79.4192)


class TestHaversine:
    def test_short_hop(self) -> None:
        assert haversine_km(REQUESTER, (13.6300, 79.4200)) == pytest.approx(0.15, abs=0.015)

    def test_same_point(self) -> None:
        assert haversine_km(REQUESTER, REQUESTER) == 0

    def test_symmetric(self) -> None:
        a, b = (12.9716, 77.5946), (13.0827, 80.2707)
        assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))
        # Bengaluru to Chennai, roughly 290 km as the crow flies
        assert 280 < haversine_km(a, b) < 300


class TestFindNearbyListings:
    @pytest.fixture
    def listings(self, engine, clock, donor, receiver):
        rice = engine.create_listing(donor, listing_payload())
        clock.advance(minutes=1)
        curry = engine.create_listing(
            donor,
            listing_payload(
                items=[ListingItemIn(name="Chicken Curry", ingredients_text="chicken, oil")],
                dietary_kind=DietaryKind.NON_VEG,
                location=Location(lat=13.70, lng=79.50),
            ),
        )
        clock.advance(minutes=1)
        nowhere = engine.create_listing(
            donor,
            listing_payload(
                items=[ListingItemIn(name="Fruit Bowl")],
                dietary_kind=DietaryKind.MIXED,
                location=None,
            ),
        )
        clock.advance(minutes=1)
        claimed = engine.create_listing(donor, listing_payload())
        engine.claim_listing(claimed.id, receiver.id, receiver.name, receiver.address)
        return {"rice": rice.id, "curry": curry.id, "nowhere": nowhere.id, "claimed": claimed.id}

    def test_only_available_newest_first(self, session, listings) -> None:
        ids = [listing.id for listing, _ in find_nearby_listings(session)]
        assert ids == [listings["nowhere"], listings["curry"], listings["rice"]]

    @pytest.mark.parametrize("dietary", [None, "all"])
    def test_all_kinds(self, session, listings, dietary) -> None:
        assert len(find_nearby_listings(session, dietary=dietary)) == 3

    def test_dietary_filter(self, session, listings) -> None:
        results = find_nearby_listings(session, dietary="non-veg")
        assert [listing.id for listing, _ in results] == [listings["curry"]]

    def test_item_name_case_insensitive(self, session, listings) -> None:
        results = find_nearby_listings(session, query="RICE")
        assert [listing.id for listing, _ in results] == [listings["rice"]]

    def test_wildcards_in_query_are_literal(self, session, listings) -> None:
        assert find_nearby_listings(session, query="%") == []

    def test_distance_annotation(self, session, listings) -> None:
        results = dict(
            (listing.id, distance)
            for listing, distance in find_nearby_listings(session, requester_location=REQUESTER)
        )
        assert results[listings["rice"]] == pytest.approx(0.15, abs=0.015)
        assert results[listings["curry"]] > 5
        assert results[listings["nowhere"]] is None

    def test_no_location_means_no_distance(self, session, listings) -> None:
        assert all(distance is None for _, distance in find_nearby_listings(session))

    def test_radius_limit(self, session, listings) -> None:
        results = find_nearby_listings(
            session, requester_location=REQUESTER, max_distance_km=1
        )
        assert [listing.id for listing, _ in results] == [listings["rice"]]


class TestOrderQueries:
    def test_awaiting_courier_oldest_first(
        self, engine, session, clock, donor, receiver, other_receiver, courier
    ) -> None:
        claimed = []
        for who in (receiver, other_receiver, receiver):
            listing = engine.create_listing(donor, listing_payload())
            clock.advance(minutes=5)
            claimed.append(
                engine.claim_listing(listing.id, who.id, who.name, who.address).id
            )
        engine.accept_order(claimed[1], courier.id, courier.name)

        waiting = [order.id for order in find_orders_awaiting_courier(session)]
        assert waiting == [claimed[0], claimed[2]]

    def test_orders_for_user_newest_first(
        self, engine, session, clock, donor, receiver, other_receiver, courier
    ) -> None:
        mine = []
        for who in (receiver, other_receiver, receiver):
            listing = engine.create_listing(donor, listing_payload())
            clock.advance(minutes=5)
            mine.append(engine.claim_listing(listing.id, who.id, who.name, who.address).id)
        engine.accept_order(mine[1], courier.id, courier.name)

        assert [o.id for o in find_orders_for_user(session, receiver.id)] == [mine[2], mine[0]]
        assert [o.id for o in find_orders_for_user(session, courier.id)] == [mine[1]]
        assert find_orders_for_user(session, donor.id) == []
