"""
Trip_Sense.services.demo_seed_service

Demo seeder for the trip engine.

Creates:
- 2 stores (one favorite)
- a dozen shopping list items with prices and planned stores
- flyer deals (parsed from promotion text) + one storewide coupon
- loyalty terms for the favorite store

Fixed data, so demos and smoke tests are repeatable.

Usage:
    from Trip_Sense.services.demo_seed_service import seed_demo_data
    seed_demo_data(reset_first=True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

from Trip_Sense.data.connection import get_connection
from Trip_Sense.data.repositories import deals_repo, loyalty_repo
from Trip_Sense.data.repositories.shopping_list_repo import add_item
from Trip_Sense.data.repositories.stores_repo import create_store
from Trip_Sense.data.schema import initialize_database
from Trip_Sense.services.multibuy_deal_service import MultiBuyDealService

logger = logging.getLogger(__name__)


# -----------------------------
# Demo catalog
# -----------------------------

@dataclass(frozen=True)
class DemoItemSpec:
    name: str
    quantity: float
    unit: str
    price: int              # cents per unit
    store_index: Optional[int]
    category: Optional[str] = None


@dataclass(frozen=True)
class DemoDealSpec:
    product_name: str
    promotion: str
    regular_price: Optional[int]
    store_index: Optional[int]
    category: Optional[str] = None


def _demo_stores() -> List[dict]:
    return [
        {
            "name": "FreshMart",
            "address": "100 Market St",
            "city": "Surrey",
            "postal_code": "V3T 0A1",
            "is_favorite": True,
            "priority": 3,
            "notes": "Demo seed store",
        },
        {
            "name": "Value Foods",
            "address": "200 Commerce Ave",
            "city": "Surrey",
            "postal_code": "V3T 0A1",
            "is_favorite": False,
            "priority": 1,
            "notes": "Demo seed store",
        },
    ]


def _demo_items() -> List[DemoItemSpec]:
    return [
        DemoItemSpec("2% Milk", 1, "GALLON", 350, 0),
        DemoItemSpec("Apples", 6, "COUNT", 79, 0),
        DemoItemSpec("Bananas", 1, "BUNCH", 149, 0),
        DemoItemSpec("Chicken Breast", 2, "LB", 599, 0),
        DemoItemSpec("Cheddar Cheese", 1, "PKG", 549, 0),
        DemoItemSpec("Sourdough Bread", 2, "LOAF", 429, 0),
        DemoItemSpec("Imported Parmesan", 1, "PKG", 899, 0),
        DemoItemSpec("Rice", 1, "BAG", 649, 1),
        DemoItemSpec("Pasta Sauce", 2, "JAR", 349, 1),
        DemoItemSpec("Frozen Peas", 1, "BAG", 279, 1),
        DemoItemSpec("Paper Towels", 1, "PACK", 1199, 1),
        DemoItemSpec("Toothpaste", 1, "COUNT", 399, None, "Personal Care"),
    ]


def _demo_deals() -> List[DemoDealSpec]:
    return [
        DemoDealSpec("milk", "$2.99", 350, 0, "dairy"),
        DemoDealSpec("bread", "Buy 1 Get 1 Free", 429, 0, "bakery"),
        DemoDealSpec("cheese", "20% off", None, 0, "dairy"),
        DemoDealSpec("chicken", "2/$10", 599, None, "meat"),
        DemoDealSpec("pasta sauce", "3 for $9", 349, 1, "pantry"),
        DemoDealSpec("", "Spend $50 save 10%", None, 0),
    ]


# -----------------------------
# Reset / cleanup
# -----------------------------

def reset_all_demo_data() -> None:
    """
    Clears tables (demo-friendly reset) so seeding is repeatable.
    """
    initialize_database()

    with get_connection() as conn:
        cur = conn.cursor()

        # child -> parent order
        cur.execute("DELETE FROM loyalty_terms;")
        cur.execute("DELETE FROM store_deals;")
        cur.execute("DELETE FROM shopping_list;")
        cur.execute("DELETE FROM stores;")

        conn.commit()


# -----------------------------
# Seeding
# -----------------------------

def seed_demo_data(reset_first: bool = True, today: Optional[date] = None) -> Dict[str, int]:
    """
    Seed the database with a small, believable dataset.

    Returns counts:
        {"stores": 2, "items": 12, "deals": 6, "loyalty": 1}
    """
    initialize_database()

    if reset_first:
        reset_all_demo_data()

    d = today or date.today()
    parser = MultiBuyDealService()

    # 1) Stores
    store_ids: List[int] = []
    for s in _demo_stores():
        store_ids.append(create_store(**s).id)

    # 2) Shopping list
    for spec in _demo_items():
        add_item(
            display_name=spec.name,
            quantity=spec.quantity,
            unit=spec.unit,
            planned_store_id=store_ids[spec.store_index] if spec.store_index is not None else None,
            suggested_price=spec.price,
            category=spec.category,
            added_by="demo_seed",
        )

    # 3) Deals, parsed from flyer wording
    deals_created = 0
    for spec in _demo_deals():
        parsed = parser.parse(spec.promotion, spec.regular_price)
        if parsed is None:
            logger.warning("Demo promotion %r did not parse", spec.promotion)
            continue
        deals_repo.add_deal(
            product_name=spec.product_name or "Storewide",
            mechanism=parsed.mechanism,
            store_id=store_ids[spec.store_index] if spec.store_index is not None else None,
            category=spec.category,
            sale_price=parsed.sale_price,
            regular_price=spec.regular_price,
            percent_off=parsed.percent_off,
            spend_threshold=parsed.spend_threshold,
            buy_quantity=parsed.buy_quantity,
            start_date=d - timedelta(days=2),
            end_date=d + timedelta(days=5),
            description=spec.promotion,
        )
        deals_created += 1

    # 4) Loyalty for the favorite store
    loyalty_repo.set_loyalty_terms(store_ids[0], percent_off=2.0, member_id="DEMO-0001")

    return {
        "stores": len(store_ids),
        "items": len(_demo_items()),
        "deals": deals_created,
        "loyalty": 1,
    }
