"""
Tests for DealStackingService: per-item matching tiers, deal math and the
item deals -> loyalty -> coupons order.
"""

from __future__ import annotations

from datetime import date

import pytest

from conftest import make_item
from Trip_Sense.domain.models import Deal, DealMechanism, LoyaltyTerms
from Trip_Sense.services.deal_stacking_service import (
    TIER_CATEGORY,
    TIER_KEYWORD_GROUP,
    TIER_NAME,
    DealStackingService,
)

TODAY = date(2024, 6, 15)


@pytest.fixture
def stacker():
    return DealStackingService()


def sale(deal_id, product, price, **kw):
    return Deal(id=deal_id, product_name=product, mechanism=DealMechanism.SALE_PRICE, sale_price=price, **kw)


def coupon(deal_id, threshold, pct, **kw):
    return Deal(
        id=deal_id,
        product_name="Storewide",
        mechanism=DealMechanism.SPEND_THRESHOLD_PERCENT,
        spend_threshold=threshold,
        percent_off=pct,
        **kw,
    )


class TestStack:
    def test_single_sale_price_deal(self, stacker):
        items = [make_item(1, "2% Milk", price=350, unit="GALLON")]
        result = stacker.stack(items, [sale(10, "milk", 299)], on_date=TODAY)

        assert len(result.applied_deals) == 1
        assert result.applied_deals[0].savings == 51
        assert result.subtotal == 350
        assert result.final_total == 299
        assert result.loyalty_discount is None
        assert result.stacked_coupons == []

    def test_no_deals_is_zero_savings(self, stacker):
        items = [make_item(1, "rice", price=649)]
        result = stacker.stack(items, [], on_date=TODAY)
        assert result.total_savings == 0
        assert result.final_total == 649

    def test_empty_and_malformed_input(self, stacker):
        result = stacker.stack(None, None)
        assert result.subtotal == 0
        assert result.final_total == 0

        result = stacker.stack([None, make_item(1, "  ", price=100)], [None, "junk"], on_date=TODAY)
        assert result.subtotal == 0

    def test_coupon_below_threshold_is_skipped(self, stacker):
        # 5000 basket, 200 off the bread -> 4800 < 5000
        items = [make_item(1, "bread", price=1000), make_item(2, "rice", price=4000)]
        deals = [sale(1, "bread", 800), coupon(2, 5000, 10)]
        result = stacker.stack(items, deals, on_date=TODAY)

        assert result.subtotal - result.item_savings == 4800
        assert result.stacked_coupons == []
        assert result.final_total == 4800

    def test_full_stack_order(self, stacker):
        items = [make_item(1, "rice", price=6000)]
        deals = [sale(1, "rice", 5000), coupon(2, 4000, 10)]
        loyalty = LoyaltyTerms(store_id=7, percent_off=2.0)
        result = stacker.stack(items, deals, loyalty, store_id=7, on_date=TODAY)

        # 6000 -> 5000 (deal) -> 4900 (2% loyalty) -> 4410 (10% coupon)
        assert result.item_savings == 1000
        assert result.loyalty_discount == 100
        assert result.coupon_savings == 490
        assert result.final_total == 4410
        assert result.total_savings == result.subtotal - result.final_total

    def test_coupons_evaluated_against_running_total(self, stacker):
        items = [make_item(1, "rice", price=5500)]
        deals = [coupon(1, 5000, 10), coupon(2, 5000, 10)]
        result = stacker.stack(items, deals, on_date=TODAY)

        # first coupon brings 5500 to 4950, so the second no longer qualifies
        assert [c.deal_id for c in result.stacked_coupons] == [1]
        assert result.final_total == 4950

    def test_loyalty_for_another_store_is_ignored(self, stacker):
        items = [make_item(1, "rice", price=1000)]
        result = stacker.stack(items, [], LoyaltyTerms(store_id=2, percent_off=5), store_id=1, on_date=TODAY)
        assert result.loyalty_discount is None
        assert result.final_total == 1000

    def test_inactive_and_foreign_deals_are_ignored(self, stacker):
        items = [make_item(1, "milk", price=350)]
        deals = [
            sale(1, "milk", 100, end_date=date(2024, 6, 1)),
            sale(2, "milk", 200, store_id=99),
            sale(3, "milk", 300, store_id=1),
        ]
        result = stacker.stack(items, deals, store_id=1, on_date=TODAY)
        assert [d.deal_id for d in result.applied_deals] == [3]

    def test_best_saving_deal_wins(self, stacker):
        items = [make_item(1, "milk", price=400)]
        deals = [
            sale(1, "milk", 350),
            Deal(id=2, product_name="milk", mechanism=DealMechanism.PERCENT_OFF, percent_off=25),
        ]
        result = stacker.stack(items, deals, on_date=TODAY)
        assert result.applied_deals[0].deal_id == 2
        assert result.applied_deals[0].savings == 100

    def test_name_match_beats_category_match(self, stacker):
        items = [make_item(1, "Cheddar Cheese", price=500, category="Dairy & Eggs")]
        deals = [
            Deal(id=1, product_name="yogurt", category="dairy", mechanism=DealMechanism.PERCENT_OFF, percent_off=50),
            Deal(id=2, product_name="cheese", mechanism=DealMechanism.PERCENT_OFF, percent_off=10),
        ]
        result = stacker.stack(items, deals, on_date=TODAY)
        assert result.applied_deals[0].deal_id == 2

    def test_items_without_price_contribute_nothing(self, stacker):
        result = stacker.stack([make_item(1, "milk")], [sale(1, "milk", 100)], on_date=TODAY)
        assert result.applied_deals == []
        assert result.subtotal == 0


class TestMatchTier:
    def test_tiers(self, stacker):
        milk = make_item(1, "2% Milk", category="dairy")
        assert stacker.match_tier(milk, sale(1, "milk", 1)) == TIER_NAME
        assert stacker.match_tier(milk, sale(2, "butter", 1, category="Dairy & Eggs")) == TIER_CATEGORY
        assert stacker.match_tier(make_item(2, "milk"), sale(3, "dairy case", 1)) == TIER_KEYWORD_GROUP
        assert stacker.match_tier(milk, sale(4, "steak", 1)) is None

    def test_name_containment_needs_whole_words(self, stacker):
        assert stacker.match_tier(make_item(1, "pineapple"), sale(1, "apple", 1)) is None


class TestApplyDeal:
    def test_bogo(self, stacker):
        bread = make_item(1, "bread", price=429, quantity=2)
        bogo = Deal(id=1, product_name="bread", mechanism=DealMechanism.BUY_N_DISCOUNT, buy_quantity=1, percent_off=100)
        applied = stacker.apply_deal(bread, bogo)
        assert applied.savings == 429

    def test_buy_n_needs_enough_units(self, stacker):
        bread = make_item(1, "bread", price=429, quantity=1)
        bogo = Deal(id=1, product_name="bread", mechanism=DealMechanism.BUY_N_DISCOUNT, buy_quantity=1, percent_off=100)
        assert stacker.apply_deal(bread, bogo).savings == 0

    def test_buy_two_get_one_half_off(self, stacker):
        soup = make_item(1, "soup", price=200, quantity=6)
        deal = Deal(id=1, product_name="soup", mechanism=DealMechanism.BUY_N_DISCOUNT, buy_quantity=2, percent_off=50)
        # two free-ish units at half price
        assert stacker.apply_deal(soup, deal).savings == 200

    def test_sale_price_above_regular_saves_nothing(self, stacker):
        assert stacker.apply_deal(make_item(1, "milk", price=300), sale(1, "milk", 350)).savings == 0

    def test_sale_price_scales_with_quantity(self, stacker):
        apples = make_item(1, "apples", price=79, quantity=6)
        assert stacker.apply_deal(apples, sale(1, "apples", 59)).savings == 120

    def test_storewide_coupon_is_not_an_item_deal(self, stacker):
        assert stacker.apply_deal(make_item(1, "milk", price=300), coupon(1, 0, 10)) is None
