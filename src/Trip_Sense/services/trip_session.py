"""
Trip_Sense.services.trip_session

Stateful driver for one (possibly multi-store) shopping trip.

States:
    NOT_STARTED -> IN_SECTION <-> AWAITING_OUT_OF_STOCK
                -> END_OF_STORE_REVIEW (last store only) -> TRIP_COMPLETE

Store membership is an explicit ownership map (store id -> ordered item ids);
routes are regenerated from it whenever membership changes. Every list write
goes through the PersistenceOutbox, so session state always advances even
when the list store is failing.

Invalid transitions never raise: they return TransitionResult(ok=False) and
leave the session untouched.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from Trip_Sense.domain.models import (
    Deal,
    LoyaltyTerms,
    Route,
    Section,
    ShoppingListItem,
    StackingResult,
    Store,
)
from Trip_Sense.services.deal_stacking_service import DealStackingService
from Trip_Sense.services.persistence_outbox import PersistenceIntent, PersistenceOutbox
from Trip_Sense.services.section_router import SectionRouter

logger = logging.getLogger(__name__)


class TripState(str, Enum):
    NOT_STARTED = "not_started"
    IN_SECTION = "in_section"
    AWAITING_OUT_OF_STOCK = "awaiting_out_of_stock"
    END_OF_STORE_REVIEW = "end_of_store_review"
    TRIP_COMPLETE = "trip_complete"


class Resolution(str, Enum):
    FOUND = "found"
    MIGRATE = "migrate"
    DEFER = "defer"
    END_TRIP = "end_trip"


@dataclass
class StorePlan:
    store: Store
    items: List[ShoppingListItem] = field(default_factory=list)
    stacking: Optional[StackingResult] = None


@dataclass
class TripPlan:
    stores: List[StorePlan] = field(default_factory=list)
    unassigned: List[ShoppingListItem] = field(default_factory=list)
    summary: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    state: TripState
    message: str = ""


def append_note(existing: Optional[str], note: str) -> str:
    if existing and existing.strip():
        return f"{existing.strip()} | {note}"
    return note


class TripSession:
    """
    outbox must provide submit(PersistenceIntent).
    deals_service (optional) must provide get_deals(store_id) and
    get_loyalty_terms(store_id); it is only used by current_stacking().
    """

    def __init__(
        self,
        outbox: PersistenceOutbox,
        router: SectionRouter,
        stacker: Optional[DealStackingService] = None,
        deals_service=None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.outbox = outbox
        self.router = router
        self.stacker = stacker
        self.deals_service = deals_service
        self._clock = clock or datetime.now

        self._lock = threading.RLock()
        self._reset()

    def _reset(self) -> None:
        self._state = TripState.NOT_STARTED
        self._stores: List[Store] = []
        self._ownership: Dict[int, List[int]] = {}
        self._routes: Dict[int, Route] = {}
        self._items: Dict[int, ShoppingListItem] = {}
        self._completed: Dict[int, Set[int]] = {}
        self._folded: Dict[int, List[int]] = {}
        self._deferred: List[int] = []
        self._migrated: List[Tuple[int, str, str]] = []
        self._left_behind: List[int] = []
        self._deleted: List[int] = []
        self._returned: List[int] = []
        self._store_idx = 0
        self._section_idx = 0
        self._pending_item: Optional[int] = None
        self._review: List[int] = []
        self._deal_cache: Dict[int, Tuple[List[Deal], Optional[LoyaltyTerms]]] = {}
        self._started_at: Optional[datetime] = None
        self._ended_at: Optional[datetime] = None
        self._final_progress: Optional[float] = None
        self._final_completed = 0

    # ---------- Result helpers ----------

    def _ok(self, message: str = "") -> TransitionResult:
        logger.debug("Trip transition -> %s %s", self._state.value, message)
        return TransitionResult(True, self._state, message)

    def _reject(self, message: str) -> TransitionResult:
        logger.info("Rejected trip transition in state %s: %s", self._state.value, message)
        return TransitionResult(False, self._state, message)

    # ---------- Read-only accessors ----------

    @property
    def state(self) -> TripState:
        return self._state

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def stores(self) -> List[Store]:
        with self._lock:
            return list(self._stores)

    @property
    def store_index(self) -> int:
        return self._store_idx

    @property
    def section_index(self) -> int:
        return self._section_idx

    @property
    def current_store(self) -> Optional[Store]:
        with self._lock:
            if not self._active() or not self._stores:
                return None
            return self._stores[self._store_idx]

    @property
    def current_route(self) -> Optional[Route]:
        with self._lock:
            store = self.current_store
            return self._routes.get(store.id) if store else None

    @property
    def current_section(self) -> Optional[Section]:
        with self._lock:
            route = self.current_route
            if route is None or not route.sections:
                return None
            return route.sections[self._section_idx]

    @property
    def completed_items(self) -> FrozenSet[int]:
        """Item ids completed at the current store."""
        with self._lock:
            store = self.current_store
            return frozenset(self._completed.get(store.id, set())) if store else frozenset()

    @property
    def pending_item(self) -> Optional[ShoppingListItem]:
        with self._lock:
            return self._items.get(self._pending_item) if self._pending_item is not None else None

    @property
    def review_items(self) -> List[ShoppingListItem]:
        with self._lock:
            return [self._items[i] for i in self._review]

    def route_for(self, store_id: int) -> Optional[Route]:
        with self._lock:
            return self._routes.get(store_id)

    def members_of(self, store_id: int) -> List[int]:
        with self._lock:
            return list(self._ownership.get(store_id, []))

    def item(self, item_id: int) -> Optional[ShoppingListItem]:
        with self._lock:
            return self._items.get(item_id)

    @property
    def progress_percent(self) -> float:
        """
        Share of the items still in play that are completed (folded
        duplicates count with the item they were merged into). Deferred items
        and items deleted from the list no longer count.
        """
        with self._lock:
            if self._state == TripState.TRIP_COMPLETE:
                return self._final_progress if self._final_progress is not None else 100.0
            return self._progress_locked()

    def current_stacking(self, on_date=None) -> Optional[StackingResult]:
        """
        Deal stacking for the current store's items. Recomputed on every
        call; deals are fetched once per store per session.
        """
        with self._lock:
            store = self.current_store
            if store is None or self.stacker is None:
                return None
            items = [self._items[i] for i in self._ownership.get(store.id, [])]
            deals, loyalty = self._deals_for(store)
        return self.stacker.stack(items, deals, loyalty, store_id=store.id, on_date=on_date)

    def summary(self) -> Dict[str, object]:
        with self._lock:
            now = self._ended_at or self._clock()
            elapsed = (now - self._started_at).total_seconds() / 60.0 if self._started_at else 0.0
            return {
                "state": self._state.value,
                "stores": [s.name for s in self._stores],
                "store_index": self._store_idx,
                "completed": self._completed_count(),
                "deleted": len(self._deleted),
                "migrated": [
                    {"item_id": i, "from": src, "to": dst} for i, src, dst in self._migrated
                ],
                "deferred": list(self._deferred),
                "left_behind": list(self._left_behind),
                "returned_to_list": list(self._returned),
                "progress_percent": self.progress_percent,
                "elapsed_minutes": round(elapsed, 1),
                "pending_writes": len(self.outbox.pending),
                "notices": self.outbox.notices(),
            }

    # ---------- Transitions ----------

    def start(self, plan: TripPlan) -> TransitionResult:
        """
        Build one Route per store in the plan and enter the first section of
        the first store. An item listed under several stores stays with the
        first one. A finished session can be started again with a new plan.
        """
        with self._lock:
            if self._state == TripState.TRIP_COMPLETE:
                self._reset()
            if self._state != TripState.NOT_STARTED:
                return self._reject("Trip already started")
            if plan is None or not plan.stores:
                return self._reject("Plan has no stores")

            seen_stores: Set[int] = set()
            for sp in plan.stores:
                if sp is None or sp.store is None or sp.store.id in seen_stores:
                    continue
                seen_stores.add(sp.store.id)

                members: List[int] = []
                for item in sp.items or []:
                    if item is None or not (item.display_name or "").strip():
                        continue
                    if item.id in self._items:
                        logger.debug("Item %s already planned at another store; keeping first", item.id)
                        continue
                    self._items[item.id] = item
                    members.append(item.id)

                self._stores.append(sp.store)
                self._ownership[sp.store.id] = members
                self._completed[sp.store.id] = set()
                self._routes[sp.store.id] = self.router.build_route(
                    [self._items[i] for i in members], sp.store.name, sp.store.id
                )

            if not self._stores:
                self._reset()
                return self._reject("Plan has no usable stores")

            self._store_idx = 0
            self._section_idx = 0
            self._started_at = self._clock()
            self._state = TripState.IN_SECTION
            return self._ok(f"Started trip at {self._stores[0].name}")

    def toggle_item(self, item_id: int) -> TransitionResult:
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Items can only be toggled while shopping a section")
            store = self._stores[self._store_idx]
            if item_id not in self._ownership[store.id]:
                return self._reject(f"Item {item_id} is not on the route for {store.name}")

            completed = self._completed[store.id]
            if item_id in completed:
                completed.discard(item_id)
                self._set_checked(item_id, False)
                return self._ok(f"Item {item_id} unchecked")

            completed.add(item_id)
            self._set_checked(item_id, True)
            return self._ok(f"Item {item_id} checked off")

    def report_out_of_stock(self, item_id: int) -> TransitionResult:
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Out-of-stock can only be reported while shopping a section")
            store = self._stores[self._store_idx]
            if item_id not in self._ownership[store.id]:
                return self._reject(f"Item {item_id} is not on the route for {store.name}")
            if item_id in self._completed[store.id]:
                return self._reject(f"Item {item_id} is already checked off")

            self._pending_item = item_id
            self._state = TripState.AWAITING_OUT_OF_STOCK
            return self._ok(f"Awaiting decision for item {item_id}")

    def resolve_out_of_stock(self, resolution: Resolution) -> TransitionResult:
        with self._lock:
            if self._state != TripState.AWAITING_OUT_OF_STOCK or self._pending_item is None:
                return self._reject("No out-of-stock decision is pending")
            try:
                resolution = Resolution(resolution)
            except ValueError:
                return self._reject(f"Unknown resolution {resolution!r}")
            if resolution == Resolution.END_TRIP:
                return self._reject("Out-of-stock items resolve to found, migrate or defer")

            item_id = self._pending_item
            store = self._stores[self._store_idx]

            if resolution == Resolution.FOUND:
                self._completed[store.id].add(item_id)
                self._set_checked(item_id, True)
                message = f"Item {item_id} found"
            elif resolution == Resolution.MIGRATE and self._store_idx + 1 < len(self._stores):
                message = self._migrate(item_id, self._store_idx, self._store_idx + 1)
            else:
                message = self._defer(item_id, store, reason="out of stock")

            self._pending_item = None
            self._state = TripState.IN_SECTION
            self._clamp_section()
            return self._ok(message)

    def advance_section(self) -> TransitionResult:
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Not currently in a section")
            route = self._routes[self._stores[self._store_idx].id]
            if self._section_idx + 1 >= len(route.sections):
                return self._reject("Already at the last section")
            self._section_idx += 1
            return self._ok(f"Section {self._section_idx}")

    def retreat_section(self) -> TransitionResult:
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Not currently in a section")
            if self._section_idx == 0:
                return self._reject("Already at the first section")
            self._section_idx -= 1
            return self._ok(f"Section {self._section_idx}")

    def jump_to_section(self, index: int) -> TransitionResult:
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Not currently in a section")
            route = self._routes[self._stores[self._store_idx].id]
            if not isinstance(index, int) or not 0 <= index < len(route.sections):
                return self._reject(f"Section index {index!r} out of range")
            self._section_idx = index
            return self._ok(f"Section {index}")

    def end_store(self) -> TransitionResult:
        """
        Finish the current store. Completed items are deleted from the list.
        On a non-final store, unfinished items are annotated and stay on the
        list, and the trip moves to the next store. On the final store,
        unfinished items need an explicit review first.
        """
        with self._lock:
            if self._state != TripState.IN_SECTION:
                return self._reject("Finish the current decision before ending the store")

            store = self._stores[self._store_idx]
            remaining = self._uncompleted(store.id)
            is_last = self._store_idx + 1 >= len(self._stores)

            if is_last and remaining:
                self._review = list(remaining)
                self._state = TripState.END_OF_STORE_REVIEW
                return self._ok(f"{len(remaining)} item(s) need review at {store.name}")

            self._delete_completed(store)

            if is_last:
                self._finish()
                return self._ok("Trip complete")

            when = self._clock().strftime("%Y-%m-%d")
            for item_id in remaining:
                self._annotate(item_id, f"Not found at {store.name} on {when}")
                self._left_behind.append(item_id)

            self._store_idx += 1
            self._section_idx = 0
            return self._ok(f"Moved on to {self._stores[self._store_idx].name}")

    def resolve_review_item(self, item_id: int, resolution: Resolution) -> TransitionResult:
        with self._lock:
            if self._state != TripState.END_OF_STORE_REVIEW:
                return self._reject("No end-of-store review in progress")
            if item_id not in self._review:
                return self._reject(f"Item {item_id} is not awaiting review")
            try:
                resolution = Resolution(resolution)
            except ValueError:
                return self._reject(f"Unknown resolution {resolution!r}")

            if resolution == Resolution.END_TRIP:
                return self._end_trip_locked()

            store = self._stores[self._store_idx]
            self._review.remove(item_id)
            if resolution == Resolution.FOUND:
                self._completed[store.id].add(item_id)
                self._set_checked(item_id, True)
                message = f"Item {item_id} found"
            else:
                # no later store exists during final review; migrate behaves as defer
                message = self._defer(item_id, store, reason="not found")

            if self._review:
                return self._ok(message)

            self._delete_completed(store)
            self._finish()
            return self._ok("Trip complete")

    def end_trip(self) -> TransitionResult:
        with self._lock:
            return self._end_trip_locked()

    def refresh_from_store(self, items: Iterable[Optional[ShoppingListItem]]) -> TransitionResult:
        """
        Re-sync tracked items with the authoritative list: pick up edits to
        name, quantity, unit, price and category, and drop items that were
        deleted elsewhere. Completion state stays with the session.
        """
        with self._lock:
            if not self._active():
                return self._reject("No active trip")

            fresh: Dict[int, ShoppingListItem] = {}
            for it in items or []:
                if it is not None and isinstance(it, ShoppingListItem):
                    fresh[it.id] = it

            updated = removed = 0
            for store in self._stores:
                members = self._ownership[store.id]
                route = self._routes[store.id]
                for item_id in list(members):
                    current = self._items[item_id]
                    latest = fresh.get(item_id)
                    if latest is None:
                        members.remove(item_id)
                        self._completed[store.id].discard(item_id)
                        route = self.router.remove_items(route, [item_id])
                        if item_id in self._review:
                            self._review.remove(item_id)
                        removed += 1
                        continue

                    merged = replace(
                        current,
                        display_name=latest.display_name,
                        quantity=latest.quantity,
                        unit=latest.unit,
                        suggested_price=latest.suggested_price,
                        category=latest.category,
                    )
                    if merged == current:
                        continue
                    self._items[item_id] = merged
                    updated += 1
                    if merged.display_name != current.display_name or merged.category != current.category:
                        found = route.find_item(item_id)
                        origin = found[1].origin_store if found else None
                        ci = replace(self.router.classify_item(merged), origin_store=origin)
                        route = self.router.add_items(self.router.remove_items(route, [item_id]), [ci])
                    else:
                        route = self.router.replace_item(route, merged)
                self._routes[store.id] = route

            if self._pending_item is not None and self._pending_item not in self._items_in_play():
                self._pending_item = None
                if self._state == TripState.AWAITING_OUT_OF_STOCK:
                    self._state = TripState.IN_SECTION
            if self._state == TripState.END_OF_STORE_REVIEW and not self._review:
                store = self._stores[self._store_idx]
                self._delete_completed(store)
                self._finish()
            self._clamp_section()
            return self._ok(f"Refreshed: {updated} updated, {removed} removed")

    # ---------- Internals ----------

    def _active(self) -> bool:
        return self._state not in (TripState.NOT_STARTED, TripState.TRIP_COMPLETE)

    def _items_in_play(self) -> Set[int]:
        return {i for members in self._ownership.values() for i in members}

    def _with_folded(self, item_id: int) -> List[int]:
        return [item_id] + list(self._folded.get(item_id, []))

    def _progress_locked(self) -> float:
        in_play: Set[int] = set()
        for item_id in self._items_in_play():
            in_play.update(self._with_folded(item_id))
        if not in_play:
            return 0.0
        done: Set[int] = set()
        for ids in self._completed.values():
            for i in ids:
                done.update(self._with_folded(i))
        return round(100.0 * len(done & in_play) / len(in_play), 1)

    def _completed_count(self) -> int:
        if self._state == TripState.TRIP_COMPLETE:
            return self._final_completed
        return sum(len(v) for v in self._completed.values())

    def _uncompleted(self, store_id: int) -> List[int]:
        done = self._completed.get(store_id, set())
        return [i for i in self._ownership.get(store_id, []) if i not in done]

    def _clamp_section(self) -> None:
        if not self._stores:
            self._section_idx = 0
            return
        route = self._routes[self._stores[self._store_idx].id]
        self._section_idx = max(0, min(self._section_idx, len(route.sections) - 1))

    def _set_checked(self, item_id: int, checked: bool) -> None:
        for i in self._with_folded(item_id):
            if i in self._items:
                self._items[i] = replace(self._items[i], is_checked_off=checked)
            intent = PersistenceIntent.complete(i) if checked else PersistenceIntent.uncomplete(i)
            self.outbox.submit(intent)

    def _annotate(self, item_id: int, note: str) -> None:
        for i in self._with_folded(item_id):
            item = self._items.get(i)
            if item is None:
                continue
            notes = append_note(item.notes, note)
            self._items[i] = replace(item, notes=notes)
            self.outbox.submit(PersistenceIntent.annotate(i, notes))

    def _reassign(self, item_id: int, store_id: Optional[int]) -> None:
        for i in self._with_folded(item_id):
            item = self._items.get(i)
            if item is not None:
                self._items[i] = replace(item, planned_store_id=store_id)
            self.outbox.submit(PersistenceIntent.reassign(i, store_id))

    def _migrate(self, item_id: int, src_idx: int, dest_idx: int) -> str:
        src = self._stores[src_idx]
        dest = self._stores[dest_idx]

        self._ownership[src.id].remove(item_id)
        self._routes[src.id] = self.router.remove_items(self._routes[src.id], [item_id])

        self._annotate(item_id, f"Moved from {src.name} (out of stock)")
        self._reassign(item_id, dest.id)
        self._migrated.append((item_id, src.name, dest.name))

        name = self._items[item_id].normalized_name
        duplicate = next(
            (i for i in self._ownership[dest.id] if self._items[i].normalized_name == name),
            None,
        )
        if duplicate is not None:
            self._folded.setdefault(duplicate, []).extend(self._with_folded(item_id))
            self._folded.pop(item_id, None)
            if duplicate in self._completed[dest.id]:
                for i in self._with_folded(duplicate)[1:]:
                    self._items[i] = replace(self._items[i], is_checked_off=True)
                    self.outbox.submit(PersistenceIntent.complete(i))
            return f"Item {item_id} merged into item {duplicate} at {dest.name}"

        self._ownership[dest.id].append(item_id)
        ci = replace(self.router.classify_item(self._items[item_id]), origin_store=src.name)
        self._routes[dest.id] = self.router.add_items(self._routes[dest.id], [ci])
        return f"Item {item_id} moved to {dest.name}"

    def _defer(self, item_id: int, store: Store, reason: str) -> str:
        if item_id in self._ownership[store.id]:
            self._ownership[store.id].remove(item_id)
            self._routes[store.id] = self.router.remove_items(self._routes[store.id], [item_id])

        when = self._clock().strftime("%Y-%m-%d")
        self._annotate(item_id, f"Deferred on {when}: {reason} at {store.name}")
        self._reassign(item_id, None)
        self._deferred.extend(self._with_folded(item_id))
        return f"Item {item_id} deferred"

    def _delete_completed(self, store: Store) -> None:
        done = self._completed.get(store.id, set())
        for item_id in [i for i in self._ownership.get(store.id, []) if i in done]:
            for i in self._with_folded(item_id):
                self.outbox.submit(PersistenceIntent.delete(i))
                self._deleted.append(i)

    def _end_trip_locked(self) -> TransitionResult:
        if not self._active():
            return self._reject("No active trip")

        store = self._stores[self._store_idx]
        self._delete_completed(store)
        self._finish()
        return self._ok("Trip ended")

    def _finish(self) -> None:
        """
        Close the trip: every item still incomplete at any store, including
        ones left behind earlier, is returned to the list. Final figures are
        kept for summary() and the per-trip maps are cleared.
        """
        when = self._clock().strftime("%Y-%m-%d")
        for s in self._stores:
            for item_id in self._uncompleted(s.id):
                self._annotate(item_id, f"Returned to list after trip on {when}")
                self._returned.extend(self._with_folded(item_id))

        self._final_progress = self._progress_locked() if self._items_in_play() else 100.0
        self._final_completed = sum(len(v) for v in self._completed.values())

        self._pending_item = None
        self._review = []
        self._ownership.clear()
        self._routes.clear()
        self._items.clear()
        self._completed.clear()
        self._folded.clear()
        self._deal_cache.clear()
        self._ended_at = self._clock()
        self._state = TripState.TRIP_COMPLETE

    def _deals_for(self, store: Store) -> Tuple[List[Deal], Optional[LoyaltyTerms]]:
        if self.deals_service is None:
            return [], None
        cached = self._deal_cache.get(store.id)
        if cached is None:
            cached = (
                list(self.deals_service.get_deals(store.id) or []),
                self.deals_service.get_loyalty_terms(store.id),
            )
            self._deal_cache[store.id] = cached
        return cached
