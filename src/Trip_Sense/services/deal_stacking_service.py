"""
Trip_Sense.services.deal_stacking_service

Match promotions to shopping list items and stack them into a final cost.

Order of operations (all amounts integer cents):
  1) per-item deals: best deal per item from the highest-priority match tier
       tier 1: product-name containment (either direction, whole words)
       tier 2: category equality (after resolving category aliases)
       tier 3: curated keyword groups ({milk, dairy}, {bread, loaf}, ...)
  2) loyalty percentage on the running total
  3) storewide spend-threshold coupons, in supplied order, each checked
     against the running total at the time it is evaluated

The service is stateless; stack() can be called from any thread and as often
as the item set or deal catalog changes.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from Trip_Sense.domain.models import (
    AppliedCoupon,
    AppliedDeal,
    Deal,
    DealMechanism,
    LoyaltyTerms,
    ShoppingListItem,
    StackingResult,
    normalize_product_name,
)
from Trip_Sense.domain.section_tables import CATEGORY_HINT_ALIASES

logger = logging.getLogger(__name__)


KEYWORD_GROUPS: Tuple[FrozenSet[str], ...] = (
    frozenset({"milk", "dairy"}),
    frozenset({"bread", "loaf", "loaves", "baguette"}),
    frozenset({"chicken", "poultry", "drumsticks", "thighs"}),
    frozenset({"beef", "steak", "sirloin", "ribeye"}),
    frozenset({"pork", "bacon", "ham"}),
    frozenset({"fish", "seafood", "salmon", "cod", "tilapia", "shrimp"}),
    frozenset({"cheese", "cheddar", "mozzarella", "parmesan"}),
    frozenset({"yogurt", "yoghurt"}),
    frozenset({"eggs", "egg"}),
    frozenset({"pasta", "spaghetti", "macaroni", "penne", "noodles"}),
    frozenset({"soda", "pop", "cola"}),
    frozenset({"detergent", "laundry"}),
    frozenset({"tissue", "tissues", "kleenex"}),
)

TIER_NAME = 1
TIER_CATEGORY = 2
TIER_KEYWORD_GROUP = 3


_re_noise = re.compile(r"[^a-z0-9%&\s]")


def _normalize(text: Optional[str]) -> str:
    return " ".join(_re_noise.sub(" ", normalize_product_name(text)).split())


def _contains_word(haystack: str, needle: str) -> bool:
    if not haystack or not needle:
        return False
    return re.search(r"(?<![a-z0-9])" + re.escape(needle) + r"(?![a-z0-9])", haystack) is not None


def _canon_category(category: Optional[str]) -> str:
    c = " ".join((category or "").lower().split())
    return CATEGORY_HINT_ALIASES.get(c, c)


def _coerce_mechanism(deal: Deal) -> Optional[DealMechanism]:
    try:
        return DealMechanism(deal.mechanism)
    except ValueError:
        return None


def _valid_items(items: Optional[Iterable[Optional[ShoppingListItem]]]) -> List[ShoppingListItem]:
    out: List[ShoppingListItem] = []
    for item in items or []:
        if item is None or not isinstance(item, ShoppingListItem):
            continue
        if not (item.display_name or "").strip():
            continue
        out.append(item)
    return out


class DealStackingService:
    """
    Stateless deal matcher + stacker.
    """

    def __init__(self, keyword_groups: Optional[Sequence[FrozenSet[str]]] = None) -> None:
        self.keyword_groups = tuple(keyword_groups) if keyword_groups is not None else KEYWORD_GROUPS

    # ---------------- Public API ----------------

    def eligible_deals(
        self,
        deals: Optional[Iterable[Optional[Deal]]],
        store_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> List[Deal]:
        """
        Deals that are well-formed, active on on_date (default today) and
        either store-agnostic or for store_id. Order is preserved.
        """
        d = on_date or date.today()
        out: List[Deal] = []
        for deal in deals or []:
            if deal is None or not isinstance(deal, Deal):
                continue
            if _coerce_mechanism(deal) is None:
                logger.debug("Skipping deal %r with unknown mechanism %r", deal.id, deal.mechanism)
                continue
            if store_id is not None and deal.store_id is not None and deal.store_id != store_id:
                continue
            if not deal.is_active(d):
                continue
            out.append(deal)
        return out

    def stack(
        self,
        items: Optional[Iterable[Optional[ShoppingListItem]]],
        deals: Optional[Iterable[Optional[Deal]]],
        loyalty: Optional[LoyaltyTerms] = None,
        *,
        store_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> StackingResult:
        valid = _valid_items(items)
        usable = self.eligible_deals(deals, store_id=store_id, on_date=on_date)
        item_deals = [d for d in usable if _coerce_mechanism(d) != DealMechanism.SPEND_THRESHOLD_PERCENT]
        coupons = [d for d in usable if _coerce_mechanism(d) == DealMechanism.SPEND_THRESHOLD_PERCENT]

        result = StackingResult()

        # 1) per-item deals
        for item in valid:
            line_total = item.line_total()
            result.subtotal += line_total
            if line_total <= 0:
                continue
            applied = self.best_deal_for_item(item, item_deals)
            if applied is not None:
                result.applied_deals.append(applied)
                result.item_savings += applied.savings

        running = result.subtotal - result.item_savings

        # 2) loyalty
        if loyalty is not None and (store_id is None or loyalty.store_id == store_id):
            pct = max(0.0, min(100.0, float(loyalty.percent_off or 0.0)))
            discount = min(running, int(round(running * pct / 100.0)))
            result.loyalty_discount = discount
            running -= discount

        # 3) storewide threshold coupons
        for coupon in coupons:
            threshold = int(coupon.spend_threshold or 0)
            pct = float(coupon.percent_off or 0.0)
            if running < threshold:
                logger.debug("Coupon %s skipped: total %s below threshold %s", coupon.id, running, threshold)
                continue
            if pct <= 0:
                continue
            savings = int(round(running * pct / 100.0))
            if savings <= 0 or savings > running:
                continue
            result.stacked_coupons.append(
                AppliedCoupon(
                    deal_id=coupon.id,
                    spend_threshold=threshold,
                    percent_off=pct,
                    savings=savings,
                    description=coupon.description or f"{pct:g}% off orders over ${threshold / 100:.2f}",
                )
            )
            result.coupon_savings += savings
            running -= savings

        result.total_savings = result.item_savings + (result.loyalty_discount or 0) + result.coupon_savings
        result.final_total = result.subtotal - result.total_savings
        return result

    def best_deal_for_item(self, item: ShoppingListItem, deals: Sequence[Deal]) -> Optional[AppliedDeal]:
        """
        Pick the deal with the largest line savings from the best tier that
        has any match. Ties keep the first deal encountered.
        """
        candidates = self._best_tier_candidates(item, deals)
        best: Optional[AppliedDeal] = None
        for deal in candidates:
            applied = self.apply_deal(item, deal)
            if applied is None or applied.savings <= 0:
                continue
            if best is None or applied.savings > best.savings:
                best = applied
        return best

    def match_tier(self, item: ShoppingListItem, deal: Deal) -> Optional[int]:
        item_name = _normalize(item.display_name)
        deal_name = _normalize(deal.product_name)

        if deal_name and (_contains_word(item_name, deal_name) or _contains_word(deal_name, item_name)):
            return TIER_NAME

        item_cat = _canon_category(item.category)
        deal_cat = _canon_category(deal.category)
        if item_cat and deal_cat and item_cat == deal_cat:
            return TIER_CATEGORY

        if deal_name:
            for group in self.keyword_groups:
                if any(_contains_word(item_name, w) for w in group) and any(
                    _contains_word(deal_name, w) for w in group
                ):
                    return TIER_KEYWORD_GROUP
        return None

    def apply_deal(self, item: ShoppingListItem, deal: Deal) -> Optional[AppliedDeal]:
        """
        Price one item under one deal. Returns None when the deal cannot be
        applied (missing price, malformed deal, storewide coupon).
        """
        if item.suggested_price is None:
            return None
        price = int(item.suggested_price)
        if price <= 0:
            return None
        qty = float(item.quantity) if item.quantity and item.quantity > 0 else 1.0
        line_total = item.line_total()
        mech = _coerce_mechanism(deal)

        if mech == DealMechanism.SALE_PRICE:
            if deal.sale_price is None or deal.sale_price < 0:
                return None
            discounted = int(deal.sale_price)
            savings = int(round(max(0, price - discounted) * qty))
            note = deal.description or f"Sale ${discounted / 100:.2f} (was ${price / 100:.2f})"

        elif mech == DealMechanism.PERCENT_OFF:
            pct = float(deal.percent_off or 0.0)
            if not 0 < pct <= 100:
                return None
            discounted = int(round(price * (1 - pct / 100.0)))
            savings = int(round((price - discounted) * qty))
            note = deal.description or f"{pct:g}% off"

        elif mech == DealMechanism.BUY_N_DISCOUNT:
            n = int(deal.buy_quantity or 0)
            pct = float(deal.percent_off if deal.percent_off is not None else 100.0)
            if n < 1 or not 0 < pct <= 100:
                return None
            discounted_units = math.floor(qty / (n + 1))
            savings = int(round(discounted_units * price * pct / 100.0))
            discounted = int(round((line_total - savings) / qty)) if savings else price
            note = deal.description or (
                f"Buy {n} get 1 free" if pct >= 100 else f"Buy {n} get 1 {pct:g}% off"
            )

        else:
            return None

        savings = max(0, min(savings, line_total))
        return AppliedDeal(
            item_id=item.id,
            deal_id=deal.id,
            original_unit_price=price,
            discounted_unit_price=discounted,
            savings=savings,
            description=note,
        )

    # ---------------- Internals ----------------

    def _best_tier_candidates(self, item: ShoppingListItem, deals: Sequence[Deal]) -> List[Deal]:
        by_tier = {TIER_NAME: [], TIER_CATEGORY: [], TIER_KEYWORD_GROUP: []}
        for deal in deals:
            tier = self.match_tier(item, deal)
            if tier is not None:
                by_tier[tier].append(deal)
        for tier in (TIER_NAME, TIER_CATEGORY, TIER_KEYWORD_GROUP):
            if by_tier[tier]:
                return by_tier[tier]
        return []
