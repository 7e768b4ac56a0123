"""
Trip_Sense.domain.models

Dataclasses representing the core domain objects of the Trip Sense engine.
These are the types that repositories return and services operate on.

Money is always integer minor-currency units (cents).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple


# ---------- Units ----------

class Unit(str, Enum):
    COUNT = "COUNT"
    LB = "LB"
    OZ = "OZ"
    G = "G"
    KG = "KG"
    PKG = "PKG"
    ROLL = "ROLL"
    BOX = "BOX"
    CAN = "CAN"
    BOTTLE = "BOTTLE"
    JAR = "JAR"
    BUNCH = "BUNCH"
    GALLON = "GALLON"
    LOAF = "LOAF"
    DOZEN = "DOZEN"
    PINT = "PINT"
    QUART = "QUART"
    CUP = "CUP"
    ML = "ML"
    L = "L"
    SLICE = "SLICE"
    PACK = "PACK"
    BAG = "BAG"
    CONTAINER = "CONTAINER"
    PIECE = "PIECE"
    UNIT = "UNIT"
    SERVING = "SERVING"

    @classmethod
    def parse(cls, text: Optional[str]) -> "Unit":
        """
        Map free-text unit strings ("lbs", "gal", "ea", "Cans") onto the enum.
        Unknown or empty values become COUNT.
        """
        return cls.try_parse(text) or cls.COUNT

    @classmethod
    def try_parse(cls, text: Optional[str]) -> Optional["Unit"]:
        """Like parse(), but returns None for unrecognised text."""
        if not text:
            return None
        s = str(text).strip().upper().rstrip(".")
        if s in cls.__members__:
            return cls[s]
        return _UNIT_ALIASES.get(s.lower())


_UNIT_ALIASES: Dict[str, Unit] = {
    "ea": Unit.COUNT,
    "each": Unit.COUNT,
    "ct": Unit.COUNT,
    "x": Unit.COUNT,
    "lbs": Unit.LB,
    "pound": Unit.LB,
    "pounds": Unit.LB,
    "#": Unit.LB,
    "ounce": Unit.OZ,
    "ounces": Unit.OZ,
    "gram": Unit.G,
    "grams": Unit.G,
    "kgs": Unit.KG,
    "kilogram": Unit.KG,
    "kilograms": Unit.KG,
    "package": Unit.PKG,
    "packages": Unit.PKG,
    "rolls": Unit.ROLL,
    "boxes": Unit.BOX,
    "cans": Unit.CAN,
    "btl": Unit.BOTTLE,
    "bottles": Unit.BOTTLE,
    "jars": Unit.JAR,
    "bunches": Unit.BUNCH,
    "gal": Unit.GALLON,
    "gallons": Unit.GALLON,
    "loaves": Unit.LOAF,
    "doz": Unit.DOZEN,
    "pints": Unit.PINT,
    "quarts": Unit.QUART,
    "cups": Unit.CUP,
    "litre": Unit.L,
    "liter": Unit.L,
    "litres": Unit.L,
    "liters": Unit.L,
    "slices": Unit.SLICE,
    "packs": Unit.PACK,
    "bags": Unit.BAG,
    "containers": Unit.CONTAINER,
    "pieces": Unit.PIECE,
    "pcs": Unit.PIECE,
    "units": Unit.UNIT,
    "servings": Unit.SERVING,
}


def format_quantity(quantity: Optional[float]) -> str:
    """
    Display helper: 1.0 -> "1", 1.5 -> "1.5", 0.3333 -> "0.33".
    """
    if quantity is None:
        return "1"
    text = f"{float(quantity):.2f}".rstrip("0").rstrip(".")
    return text or "0"


def normalize_product_name(name: Optional[str]) -> str:
    """
    Lowercase + collapse whitespace. Used for dedup and exact lookups.
    """
    if not name:
        return ""
    return " ".join(str(name).lower().split())


# ---------- Stores & list items ----------

@dataclass
class Store:
    id: int
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    is_favorite: bool = False
    priority: int = 0
    notes: Optional[str] = None


@dataclass
class ShoppingListItem:
    id: int
    display_name: str
    quantity: float = 1.0
    unit: str = Unit.COUNT.value
    planned_store_id: Optional[int] = None  # which store to buy at
    suggested_price: Optional[int] = None   # unit price, cents
    category: Optional[str] = None          # free-text hint from the user / catalog
    added_by: Optional[str] = None
    added_at: Optional[str] = None          # ISO datetime string
    is_checked_off: bool = False
    is_active: bool = True
    notes: Optional[str] = None

    @property
    def normalized_name(self) -> str:
        return normalize_product_name(self.display_name)

    def line_total(self) -> int:
        """
        Full-price cost of this line in cents. Unknown prices count as 0.
        """
        if self.suggested_price is None:
            return 0
        qty = float(self.quantity) if self.quantity and self.quantity > 0 else 1.0
        return int(round(int(self.suggested_price) * qty))


# ---------- Classification & routing ----------

@dataclass
class ClassificationResult:
    """Output of the CategoryClassifier."""

    category: str                 # section id, e.g. 'dairy'
    label: str                    # human label, e.g. 'Dairy & Eggs'
    confidence: float
    aisle: str
    shelf_hint: str
    method: str                   # 'exact' | 'keyword' | 'fuzzy' | 'hint' | 'fallback' | 'remote'
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ClassifiedItem:
    item: ShoppingListItem
    section_id: str
    confidence: float
    shelf_hint: str
    is_provisional: bool = False
    is_fresh: bool = False
    is_complex: bool = False
    origin_store: Optional[str] = None   # set when migrated in from another store

    @property
    def item_id(self) -> int:
        return self.item.id


@dataclass(frozen=True)
class Section:
    section_id: str
    label: str
    aisle: str
    rank: int
    items: Tuple[ClassifiedItem, ...] = ()
    minutes: float = 0.0


@dataclass(frozen=True)
class Route:
    store_name: str
    store_id: Optional[int] = None
    sections: Tuple[Section, ...] = ()
    estimated_minutes: int = 0
    total_items: int = 0

    def item_ids(self) -> List[int]:
        return [ci.item_id for s in self.sections for ci in s.items]

    def classified_items(self) -> List[ClassifiedItem]:
        return [ci for s in self.sections for ci in s.items]

    def find_item(self, item_id: int) -> Optional[Tuple[int, ClassifiedItem]]:
        """
        Return (section_index, ClassifiedItem) or None.
        """
        for idx, section in enumerate(self.sections):
            for ci in section.items:
                if ci.item_id == item_id:
                    return idx, ci
        return None


# ---------- Deals & stacking ----------

class DealMechanism(str, Enum):
    SALE_PRICE = "sale_price"
    PERCENT_OFF = "percent_off"
    SPEND_THRESHOLD_PERCENT = "spend_threshold_percent"
    BUY_N_DISCOUNT = "buy_n_discount"


@dataclass
class Deal:
    """
    A promotion from the circular / deal source. Read-only to the engine.

    Which fields matter depends on the mechanism:
      - SALE_PRICE:              sale_price
      - PERCENT_OFF:             percent_off
      - BUY_N_DISCOUNT:          buy_quantity + percent_off (BOGO = 1, 100)
      - SPEND_THRESHOLD_PERCENT: spend_threshold + percent_off (storewide)
    """
    id: int
    product_name: str
    mechanism: DealMechanism = DealMechanism.SALE_PRICE
    store_id: Optional[int] = None          # None = valid at any retailer
    category: Optional[str] = None
    sale_price: Optional[int] = None        # cents
    regular_price: Optional[int] = None     # cents
    percent_off: Optional[float] = None
    spend_threshold: Optional[int] = None   # cents
    buy_quantity: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

    def is_active(self, on_date: Optional[date] = None) -> bool:
        d = on_date or date.today()
        if self.start_date and d < self.start_date:
            return False
        if self.end_date and d > self.end_date:
            return False
        return True

    @property
    def is_storewide(self) -> bool:
        return self.mechanism == DealMechanism.SPEND_THRESHOLD_PERCENT


@dataclass
class LoyaltyTerms:
    store_id: int
    percent_off: float
    member_id: Optional[str] = None


@dataclass
class AppliedDeal:
    item_id: int
    deal_id: int
    original_unit_price: int
    discounted_unit_price: int
    savings: int
    description: str


@dataclass
class AppliedCoupon:
    deal_id: int
    spend_threshold: int
    percent_off: float
    savings: int
    description: str


@dataclass
class StackingResult:
    subtotal: int = 0                                   # pre-discount
    applied_deals: List[AppliedDeal] = field(default_factory=list)
    item_savings: int = 0
    loyalty_discount: Optional[int] = None
    stacked_coupons: List[AppliedCoupon] = field(default_factory=list)
    coupon_savings: int = 0
    total_savings: int = 0
    final_total: int = 0
