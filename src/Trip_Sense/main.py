"""
Trip_Sense.main

Smoke-test harness for the Trip Sense engine.

Run from project root with:
    python -m Trip_Sense.main
or, once installed:
    trip-sense-demo
"""

from __future__ import annotations

import logging

from Trip_Sense.config_store import load_config
from Trip_Sense.domain.models import Route, StackingResult, format_quantity
from Trip_Sense.logging_config import configure_logging
from Trip_Sense.services.category_classifier import CategoryClassifier
from Trip_Sense.services.deal_stacking_service import DealStackingService
from Trip_Sense.services.deals_service import DealsService
from Trip_Sense.services.demo_seed_service import seed_demo_data
from Trip_Sense.services.persistence_outbox import PersistenceOutbox
from Trip_Sense.services.planning_service import PlanningService
from Trip_Sense.services.section_router import SectionRouter
from Trip_Sense.services.shopping_list_service import ShoppingListService
from Trip_Sense.services.trip_session import Resolution, TripSession

logger = logging.getLogger(__name__)


def _print_route(route: Route) -> None:
    print(f"    Route for {route.store_name}: {route.total_items} item(s), ~{route.estimated_minutes} min")
    for s in route.sections:
        print(f"      [{s.aisle}] {s.label}")
        for ci in s.items:
            origin = f"  (from {ci.origin_store})" if ci.origin_store else ""
            flag = " ?" if ci.is_provisional else ""
            print(
                f"        - ({ci.item_id}) {ci.item.display_name} "
                f"x{format_quantity(ci.item.quantity)} {ci.item.unit}{flag}  -> {ci.shelf_hint}{origin}"
            )


def _print_stacking(result: StackingResult) -> None:
    print(f"      subtotal ${result.subtotal / 100:.2f}")
    for d in result.applied_deals:
        print(f"      item {d.item_id}: {d.description}  -${d.savings / 100:.2f}")
    if result.loyalty_discount is not None:
        print(f"      loyalty  -${result.loyalty_discount / 100:.2f}")
    for c in result.stacked_coupons:
        print(f"      coupon: {c.description}  -${c.savings / 100:.2f}")
    print(f"      total ${result.final_total / 100:.2f}  (saved ${result.total_savings / 100:.2f})")


def run_smoke_test() -> None:
    cfg = load_config()
    configure_logging(cfg.log_level, cfg.log_file or None)

    print("=== Trip Sense smoke test starting ===")

    # 1) Seed DB
    print("[1] Seeding demo data...")
    counts = seed_demo_data(reset_first=True)
    print(f"    ✔ Seeded {counts}\n")

    shopping = ShoppingListService()
    deals = DealsService.from_config()

    # 2) Plan
    print("[2] Building trip plan...")
    planner = PlanningService(shopping=shopping, deals_service=deals)
    plan = planner.build_trip_plan(max_stores=3)
    for line in plan.summary:
        print(f"    {line}")
    for sp in plan.stores:
        print(f"    Stacking at {sp.store.name}:")
        if sp.stacking is not None:
            _print_stacking(sp.stacking)
    print()

    # 3) Start session
    print("[3] Starting trip...")
    classifier = CategoryClassifier.from_config()
    router = SectionRouter(classifier, rank_overrides=cfg.section_rank_overrides)
    outbox = PersistenceOutbox.from_config(shopping)
    session = TripSession(outbox, router, stacker=DealStackingService(), deals_service=deals)
    result = session.start(plan)
    print(f"    {result.message}")
    for sp in plan.stores:
        route = session.route_for(sp.store.id)
        if route is not None:
            _print_route(route)
    print()

    # 4) Walk the first store, one item out of stock
    print("[4] Shopping the first store...")
    route = session.current_route
    out_of_stock = None
    if route is not None:
        for idx, section in enumerate(route.sections):
            session.jump_to_section(idx)
            for ci in section.items:
                if out_of_stock is None and len(session.stores) > 1 and ci.item.display_name.lower().startswith("cheddar"):
                    out_of_stock = ci.item_id
                    session.report_out_of_stock(ci.item_id)
                    res = session.resolve_out_of_stock(Resolution.MIGRATE)
                    print(f"    ✗ {ci.item.display_name}: {res.message}")
                    continue
                session.toggle_item(ci.item_id)
                print(f"    ✔ {ci.item.display_name}  ({session.progress_percent:.0f}%)")
    stacking = session.current_stacking()
    if stacking is not None:
        print("    Stacking for what was in the cart:")
        _print_stacking(stacking)
    res = session.end_store()
    print(f"    {res.message}\n")

    # 5) Remaining stores
    step = 5
    while session.current_store is not None and session.state.value == "in_section":
        print(f"[{step}] Shopping {session.current_store.name}...")
        route = session.current_route
        if route is not None:
            _print_route(route)
            first = True
            for ci in route.classified_items():
                # leave the first item behind to exercise the review step
                if first:
                    first = False
                    continue
                session.toggle_item(ci.item_id)
        res = session.end_store()
        print(f"    {res.message}")
        for item in session.review_items:
            res = session.resolve_review_item(item.id, Resolution.DEFER)
            print(f"    review: {item.display_name} -> {res.message}")
        step += 1
        print()

    # 6) Reconcile + summary
    print(f"[{step}] Reconciling list writes...")
    report = outbox.reconcile()
    print(f"    {report}")
    summary = session.summary()
    for key in ("state", "stores", "completed", "deleted", "migrated", "deferred", "progress_percent"):
        print(f"    {key}: {summary[key]}")
    print()

    print("    Remaining list:")
    for item in shopping.get_active_items(include_checked_off=True):
        print(f"     - ({item.id}) {item.display_name}  store={item.planned_store_id}  notes={item.notes or ''}")

    print("=== Smoke test complete ===")


if __name__ == "__main__":
    run_smoke_test()
