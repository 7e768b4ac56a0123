"""
Tests for TripSession: the multi-store state machine, item migration and the
list writes each transition produces.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from conftest import FakeListStore, make_item, make_store
from Trip_Sense.domain.models import Deal, DealMechanism
from Trip_Sense.services.category_classifier import CategoryClassifier
from Trip_Sense.services.deal_stacking_service import DealStackingService
from Trip_Sense.services.persistence_outbox import PersistenceOutbox
from Trip_Sense.services.section_router import SectionRouter
from Trip_Sense.services.trip_session import (
    Resolution,
    StorePlan,
    TripPlan,
    TripSession,
    TripState,
    append_note,
)

NOW = datetime(2024, 6, 15, 10, 30)

FRESHMART = make_store(1, "FreshMart", is_favorite=True)
VALUE_FOODS = make_store(2, "Value Foods")


class FakeDeals:
    def __init__(self, deals=None, loyalty=None):
        self.deals = deals or []
        self.loyalty = loyalty
        self.calls = 0

    def get_deals(self, store_id, on_date=None):
        self.calls += 1
        return [d for d in self.deals if d.store_id in (None, store_id)]

    def get_loyalty_terms(self, store_id):
        return self.loyalty


def build_session(plan_items, store=None, deals=None):
    """
    plan_items: list of (Store, [items]) pairs.
    """
    all_items = [i for _, items in plan_items for i in items]
    store = store or FakeListStore(all_items)
    outbox = PersistenceOutbox(store, retry_attempts=1, retry_wait_seconds=0)
    session = TripSession(
        outbox,
        SectionRouter(CategoryClassifier(use_cache=False)),
        stacker=DealStackingService(),
        deals_service=deals,
        clock=lambda: NOW,
    )
    plan = TripPlan(stores=[StorePlan(s, list(items)) for s, items in plan_items])
    return session, store, plan


@pytest.fixture
def two_store_trip():
    items_a = [
        make_item(1, "milk", price=350, store_id=1),
        make_item(2, "apples", price=79, quantity=6, store_id=1),
        make_item(3, "Cheddar Cheese", price=549, store_id=1),
    ]
    items_b = [make_item(4, "rice", price=649, store_id=2)]
    session, store, plan = build_session([(FRESHMART, items_a), (VALUE_FOODS, items_b)])
    assert session.start(plan).ok
    return session, store


class TestStart:
    def test_start_enters_first_section(self, two_store_trip):
        session, _ = two_store_trip
        assert session.state == TripState.IN_SECTION
        assert session.current_store.name == "FreshMart"
        assert session.section_index == 0
        assert [s.section_id for s in session.current_route.sections] == ["produce", "dairy"]
        assert session.started_at == NOW

    def test_item_in_two_stores_stays_with_first(self):
        milk = make_item(1, "milk")
        session, _, plan = build_session([(FRESHMART, [milk]), (VALUE_FOODS, [milk, make_item(2, "rice")])])
        session.start(plan)
        assert session.members_of(1) == [1]
        assert session.members_of(2) == [2]

    def test_empty_plan_is_rejected(self):
        session, _, _ = build_session([])
        result = session.start(TripPlan())
        assert not result.ok
        assert session.state == TripState.NOT_STARTED

    def test_cannot_start_twice(self, two_store_trip):
        session, _ = two_store_trip
        assert not session.start(TripPlan(stores=[StorePlan(VALUE_FOODS, [])])).ok
        assert session.current_store.name == "FreshMart"


class TestShopping:
    def test_toggle_persists_completion(self, two_store_trip):
        session, store = two_store_trip
        assert session.toggle_item(2).ok
        assert 2 in session.completed_items
        assert store.items[2].is_checked_off

        assert session.toggle_item(2).ok
        assert 2 not in session.completed_items
        assert not store.items[2].is_checked_off

    def test_toggle_item_from_another_store_is_rejected(self, two_store_trip):
        session, _ = two_store_trip
        result = session.toggle_item(4)
        assert not result.ok
        assert result.state == TripState.IN_SECTION

    def test_progress(self, two_store_trip):
        session, _ = two_store_trip
        session.toggle_item(1)
        session.toggle_item(2)
        assert session.progress_percent == 50.0

    def test_progress_ignores_items_deleted_elsewhere(self):
        milk, apples = make_item(1, "milk"), make_item(2, "apples")
        session, _, plan = build_session([(FRESHMART, [milk, apples])])
        session.start(plan)

        session.refresh_from_store([milk])
        session.toggle_item(1)
        assert session.current_route.item_ids() == [1]
        assert session.progress_percent == 100.0

    def test_progress_ignores_deferred_items(self):
        session, _, plan = build_session([(FRESHMART, [make_item(1, "milk"), make_item(2, "apples")])])
        session.start(plan)

        session.report_out_of_stock(2)
        session.resolve_out_of_stock(Resolution.DEFER)
        session.toggle_item(1)
        assert session.current_route.item_ids() == [1]
        assert session.progress_percent == 100.0

    def test_section_navigation_bounds(self, two_store_trip):
        session, _ = two_store_trip
        assert not session.retreat_section().ok
        assert session.advance_section().ok
        assert session.current_section.section_id == "dairy"
        assert not session.advance_section().ok
        assert session.section_index == 1
        assert session.retreat_section().ok
        assert not session.jump_to_section(5).ok
        assert session.jump_to_section(1).ok

    def test_persistence_failure_still_advances(self, two_store_trip):
        session, store = two_store_trip
        store.fail_always = True

        assert session.toggle_item(1).ok
        assert 1 in session.completed_items
        assert session.outbox.has_pending(1)

        store.fail_always = False
        session.outbox.reconcile()
        assert store.items[1].is_checked_off


class TestOutOfStock:
    def test_migrate_moves_item_to_next_store(self, two_store_trip):
        session, store = two_store_trip
        assert session.report_out_of_stock(3).ok
        assert session.state == TripState.AWAITING_OUT_OF_STOCK
        assert session.pending_item.id == 3

        result = session.resolve_out_of_stock(Resolution.MIGRATE)
        assert result.ok
        assert session.state == TripState.IN_SECTION

        assert 3 not in session.route_for(1).item_ids()
        moved = session.route_for(2).find_item(3)
        assert moved is not None
        assert moved[1].origin_store == "FreshMart"
        assert session.members_of(2) == [4, 3]

        assert store.items[3].planned_store_id == 2
        assert store.items[3].notes == "Moved from FreshMart (out of stock)"

    def test_migrate_folds_into_duplicate(self):
        session, store, plan = build_session(
            [(FRESHMART, [make_item(1, "milk")]), (VALUE_FOODS, [make_item(5, "Milk")])]
        )
        session.start(plan)
        session.report_out_of_stock(1)
        result = session.resolve_out_of_stock(Resolution.MIGRATE)

        assert "merged" in result.message
        assert session.members_of(2) == [5]
        assert session.route_for(2).item_ids() == [5]

        session.end_store()
        session.toggle_item(5)
        assert store.items[1].is_checked_off
        assert session.progress_percent == 100.0

        session.end_store()
        assert session.state == TripState.TRIP_COMPLETE
        assert sorted(store.deleted) == [1, 5]

    def test_migrate_at_last_store_defers(self):
        session, store, plan = build_session([(FRESHMART, [make_item(1, "milk")])])
        session.start(plan)
        session.report_out_of_stock(1)
        session.resolve_out_of_stock(Resolution.MIGRATE)

        assert session.members_of(1) == []
        assert store.items[1].planned_store_id is None
        assert store.items[1].notes == "Deferred on 2024-06-15: out of stock at FreshMart"

    def test_found_completes_item(self, two_store_trip):
        session, _ = two_store_trip
        session.report_out_of_stock(1)
        session.resolve_out_of_stock(Resolution.FOUND)
        assert 1 in session.completed_items

    def test_invalid_out_of_stock_transitions(self, two_store_trip):
        session, _ = two_store_trip
        assert not session.resolve_out_of_stock(Resolution.DEFER).ok

        session.toggle_item(1)
        assert not session.report_out_of_stock(1).ok

        session.report_out_of_stock(2)
        assert not session.resolve_out_of_stock(Resolution.END_TRIP).ok
        assert not session.resolve_out_of_stock("teleport").ok
        assert not session.toggle_item(3).ok
        assert not session.end_store().ok
        assert session.state == TripState.AWAITING_OUT_OF_STOCK
        assert session.pending_item.id == 2


class TestEndStore:
    def test_non_final_store_keeps_unfinished_items_on_list(self, two_store_trip):
        session, store = two_store_trip
        session.toggle_item(1)
        session.toggle_item(2)

        result = session.end_store()
        assert result.ok
        assert session.current_store.name == "Value Foods"
        assert session.section_index == 0

        assert sorted(store.deleted) == [1, 2]
        assert 3 in store.items
        assert store.items[3].notes == "Not found at FreshMart on 2024-06-15"
        assert 3 not in session.route_for(2).item_ids()
        assert session.summary()["left_behind"] == [3]

    def test_last_store_with_leftovers_needs_review(self, two_store_trip):
        session, store = two_store_trip
        session.end_store()

        result = session.end_store()
        assert result.ok
        assert session.state == TripState.END_OF_STORE_REVIEW
        assert [i.id for i in session.review_items] == [4]

        assert not session.resolve_review_item(99, Resolution.FOUND).ok

        done = session.resolve_review_item(4, Resolution.DEFER)
        assert done.ok
        assert session.state == TripState.TRIP_COMPLETE
        assert store.items[4].planned_store_id is None
        assert "Deferred on 2024-06-15: not found at Value Foods" in store.items[4].notes

    def test_review_found_deletes_item(self, two_store_trip):
        session, store = two_store_trip
        session.end_store()
        session.end_store()
        session.resolve_review_item(4, Resolution.FOUND)
        assert session.state == TripState.TRIP_COMPLETE
        assert 4 in store.deleted

    def test_review_can_end_trip(self, two_store_trip):
        session, store = two_store_trip
        session.end_store()
        session.end_store()
        session.resolve_review_item(4, Resolution.END_TRIP)
        assert session.state == TripState.TRIP_COMPLETE
        assert store.items[4].notes == "Returned to list after trip on 2024-06-15"

    def test_last_store_all_done_completes_trip(self):
        session, store, plan = build_session([(FRESHMART, [make_item(1, "milk")])])
        session.start(plan)
        session.toggle_item(1)
        assert session.end_store().message == "Trip complete"
        assert store.deleted == [1]
        assert session.current_store is None


class TestEndTrip:
    def test_end_trip_returns_unfinished_items(self, two_store_trip):
        session, store = two_store_trip
        session.toggle_item(1)

        assert session.end_trip().ok
        assert session.state == TripState.TRIP_COMPLETE
        assert store.deleted == [1]
        for item_id in (2, 3, 4):
            assert store.items[item_id].notes == "Returned to list after trip on 2024-06-15"
        assert session.summary()["returned_to_list"] == [2, 3, 4]

    def test_end_trip_returns_items_left_at_earlier_stores(self, two_store_trip):
        session, store = two_store_trip
        session.toggle_item(1)
        session.toggle_item(2)
        session.end_store()

        assert session.end_trip().ok
        assert store.items[3].notes == (
            "Not found at FreshMart on 2024-06-15 | Returned to list after trip on 2024-06-15"
        )
        assert session.summary()["returned_to_list"] == [3, 4]

    def test_finishing_last_store_returns_earlier_leftovers(self, two_store_trip):
        session, store = two_store_trip
        session.toggle_item(1)
        session.toggle_item(2)
        session.end_store()
        session.toggle_item(4)

        assert session.end_store().message == "Trip complete"
        assert "Returned to list after trip on 2024-06-15" in store.items[3].notes
        assert session.summary()["returned_to_list"] == [3]
        assert sorted(store.deleted) == [1, 2, 4]

    def test_finished_trip_clears_working_state(self, two_store_trip):
        session, _ = two_store_trip
        session.toggle_item(1)
        session.end_trip()

        assert session.members_of(1) == []
        assert session.route_for(1) is None
        assert session.item(1) is None
        summary = session.summary()
        assert summary["completed"] == 1
        assert summary["progress_percent"] == 25.0

    def test_finished_session_can_start_again(self, two_store_trip):
        session, _ = two_store_trip
        session.end_trip()

        result = session.start(TripPlan(stores=[StorePlan(VALUE_FOODS, [make_item(7, "bread")])]))
        assert result.ok
        assert session.current_store.name == "Value Foods"
        assert session.members_of(2) == [7]
        assert session.summary()["returned_to_list"] == []

    def test_end_trip_twice_is_rejected(self, two_store_trip):
        session, _ = two_store_trip
        session.end_trip()
        assert not session.end_trip().ok

    def test_nothing_works_before_start(self):
        session, _, _ = build_session([])
        assert not session.toggle_item(1).ok
        assert not session.advance_section().ok
        assert not session.end_store().ok
        assert not session.end_trip().ok
        assert session.current_route is None


class TestRefreshAndStacking:
    def test_refresh_drops_deleted_and_updates_edits(self, two_store_trip):
        session, store = two_store_trip
        del store.items[2]
        store.items[1] = make_item(1, "milk", price=400, quantity=2, store_id=1)

        assert session.refresh_from_store(store.get_active_items(include_checked_off=True)).ok
        assert 2 not in session.members_of(1)
        assert session.item(1).quantity == 2
        assert session.route_for(1).find_item(1)[1].item.suggested_price == 400

    def test_current_stacking_uses_store_deals(self):
        deals = FakeDeals([Deal(id=1, product_name="milk", mechanism=DealMechanism.SALE_PRICE, sale_price=299)])
        session, _, plan = build_session(
            [(FRESHMART, [make_item(1, "2% Milk", price=350)]), (VALUE_FOODS, [make_item(2, "rice", price=649)])],
            deals=deals,
        )
        session.start(plan)

        result = session.current_stacking()
        assert result.final_total == 299
        session.current_stacking()
        assert deals.calls == 1

        session.end_store()
        assert session.current_stacking().final_total == 649

    def test_no_stacking_before_start(self):
        session, _, _ = build_session([])
        assert session.current_stacking() is None


def test_append_note():
    assert append_note(None, "a") == "a"
    assert append_note("  ", "a") == "a"
    assert append_note("x", "a") == "x | a"
