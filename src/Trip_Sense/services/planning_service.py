"""
Trip_Sense.services.planning_service

Service layer for planning which stores to visit for the current shopping list.

This version:
  - Reads active shopping list items.
  - Reads all known stores (with favorite/priority info).
  - Groups items by their planned store, capped at `max_stores` stores.
  - Items without a usable store go to a generic fallback store.
  - Prices each store's basket with the deal stacker (deals + loyalty + coupons).

Stacking results are memoized by (store, item set, deal set, loyalty, date);
call clear_cache() after the deal catalog changes underneath the service.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import astuple
from datetime import date
from typing import Dict, Hashable, List, Optional, Tuple

from Trip_Sense.config_store import get_store_priority
from Trip_Sense.data.repositories.stores_repo import list_stores
from Trip_Sense.domain.models import Deal, LoyaltyTerms, ShoppingListItem, StackingResult, Store
from Trip_Sense.services.deal_stacking_service import DealStackingService
from Trip_Sense.services.deals_service import DealsService
from Trip_Sense.services.shopping_list_service import ShoppingListService
from Trip_Sense.services.trip_session import StorePlan, TripPlan

logger = logging.getLogger(__name__)


class PlanningService:
    """
    High-level store planning.

    Key method:
      - build_trip_plan(max_stores=3) -> TripPlan
    """

    def __init__(
        self,
        shopping: Optional[ShoppingListService] = None,
        deals_service: Optional[DealsService] = None,
        stacker: Optional[DealStackingService] = None,
        store_priority: Optional[List[str]] = None,
    ) -> None:
        self._shopping = shopping or ShoppingListService()
        self._deals = deals_service or DealsService()
        self._stacker = stacker or DealStackingService()
        self._store_priority = store_priority

        self._cache: Dict[Hashable, StackingResult] = {}
        self._cache_lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    # ---------- Public API ----------

    def build_trip_plan(self, max_stores: int = 3, on_date: Optional[date] = None) -> TripPlan:
        """
        Build a store visit plan for all active shopping list items.

        Strategy:
          1) Group active items by planned_store_id.
          2) Keep the stores that have items, ordered by favorite, priority,
             configured store priority, then name; cap at `max_stores`.
          3) Items with no store (or a store that did not make the cut) go to
             the generic fallback store.
          4) Stack deals per store and build a summary.
        """
        if max_stores < 1:
            raise ValueError("max_stores must be at least 1")

        d = on_date or date.today()
        items = self._shopping.get_active_items(include_checked_off=False, store_id=None)
        stores = list_stores()

        if not stores:
            return TripPlan(
                stores=[],
                unassigned=list(items),
                summary=self._build_summary([], list(items)),
            )

        store_by_id: Dict[int, Store] = {s.id: s for s in stores}
        ordered = self.order_stores(stores)

        by_store: Dict[int, List[ShoppingListItem]] = {}
        for itm in items:
            if itm.planned_store_id in store_by_id:
                by_store.setdefault(itm.planned_store_id, []).append(itm)

        chosen_ids = [s.id for s in ordered if s.id in by_store][:max_stores]

        leftovers = [i for i in items if i.planned_store_id not in chosen_ids]
        if leftovers:
            fallback_id = self._choose_generic_fallback_store(ordered, chosen_ids)
            if fallback_id not in chosen_ids:
                chosen_ids.append(fallback_id)
            plan_items = {sid: [] for sid in chosen_ids}
            for itm in items:
                target = itm.planned_store_id if itm.planned_store_id in chosen_ids else fallback_id
                plan_items[target].append(itm)
        else:
            plan_items = {sid: list(by_store[sid]) for sid in chosen_ids}

        rank = {s.id: idx for idx, s in enumerate(ordered)}
        chosen_ids.sort(key=lambda sid: rank[sid])

        store_plans: List[StorePlan] = []
        for sid in chosen_ids:
            store = store_by_id[sid]
            its = plan_items[sid]
            store_plans.append(StorePlan(store=store, items=its, stacking=self.stack_for_store(store, its, d)))

        return TripPlan(
            stores=store_plans,
            unassigned=[],
            summary=self._build_summary(store_plans, []),
        )

    def stack_for_store(self, store: Store, items: List[ShoppingListItem], on_date: Optional[date] = None) -> StackingResult:
        """
        Price one store's basket. Memoized by store, item set, deal set,
        loyalty terms and date.
        Callers always get their own copy of the result.
        """
        d = on_date or date.today()
        deals = list(self._deals.get_deals(store.id, on_date=d) or [])
        loyalty = self._deals.get_loyalty_terms(store.id)

        key = self._cache_key(store.id, items, deals, loyalty, d)
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.cache_hits += 1
                return copy.deepcopy(cached)

        result = self._stacker.stack(items, deals, loyalty, store_id=store.id, on_date=d)
        with self._cache_lock:
            self._cache[key] = copy.deepcopy(result)
            self.cache_misses += 1
        return result

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def order_stores(self, stores: List[Store]) -> List[Store]:
        """
        favorites first, then by priority, then by configured store priority,
        then by name.
        """
        names = [n.lower() for n in (self._store_priority if self._store_priority is not None else get_store_priority())]

        def _pref(s: Store) -> int:
            low = (s.name or "").lower()
            return names.index(low) if low in names else len(names)

        return sorted(
            stores,
            key=lambda s: (
                0 if s.is_favorite else 1,
                -(s.priority or 0),
                _pref(s),
                (s.name or "").lower(),
            ),
        )

    # ---------- Internal helpers ----------

    @staticmethod
    def _cache_key(
        store_id: int,
        items: List[ShoppingListItem],
        deals: List[Deal],
        loyalty: Optional[LoyaltyTerms],
        on_date: date,
    ) -> Tuple:
        return (
            store_id,
            tuple(astuple(i) for i in items),
            tuple(astuple(x) for x in deals),
            astuple(loyalty) if loyalty else None,
            on_date,
        )

    @staticmethod
    def _choose_generic_fallback_store(ordered_stores: List[Store], chosen_store_ids: List[int]) -> int:
        """
        Store for items that have no usable planned store: the best-ranked
        chosen store, else the best-ranked store overall.
        """
        for s in ordered_stores:
            if s.id in chosen_store_ids:
                return s.id
        return ordered_stores[0].id

    @staticmethod
    def _build_summary(store_plans: List[StorePlan], unassigned: List[ShoppingListItem]) -> List[str]:
        """
        Human-readable summary lines of the plan.
        """
        parts: List[str] = []

        total_items = sum(len(sp.items) for sp in store_plans) + len(unassigned)
        if not store_plans:
            parts.append("No plan possible (no items or no stores configured).")
        else:
            parts.append(f"Planned {total_items} item(s) across {len(store_plans)} store(s).")

        basket = savings = 0
        for sp in store_plans:
            fav_flag = " (favorite)" if sp.store.is_favorite else ""
            parts.append(f"- {sp.store.name}{fav_flag}: {len(sp.items)} item(s)")
            if sp.stacking is not None:
                basket += sp.stacking.final_total
                savings += sp.stacking.total_savings
                parts.append(
                    f"    total: ${sp.stacking.final_total / 100:.2f}  "
                    f"(saves ${sp.stacking.total_savings / 100:.2f} on ${sp.stacking.subtotal / 100:.2f})"
                )
            preview_names = ", ".join(i.display_name for i in sp.items[:5])
            if preview_names:
                parts.append(f"    e.g. {preview_names}")

        if store_plans:
            parts.append(f"Basket total: ${basket / 100:.2f}  (total savings ${savings / 100:.2f})")

        if unassigned:
            parts.append(
                "Unassigned items (no stores configured): " + ", ".join(i.display_name for i in unassigned[:5])
            )
        return parts
