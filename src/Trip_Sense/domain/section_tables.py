"""
Trip_Sense.domain.section_tables

Versioned lookup tables for classification and routing.

Everything here is plain data (section id -> ordered keyword list, etc.) so the
tables can be tested directly and overlaid from a JSON file without code
changes. Bump TABLES_VERSION whenever the defaults change.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

TABLES_VERSION = "2024.1"

GENERIC_SECTION = "generic"


@dataclass(frozen=True)
class SectionSpec:
    label: str
    aisle: str
    default_shelf_hint: str
    rank: int


# Store-layout order: produce -> dairy -> meat -> pantry -> frozen -> bakery
# -> personal care -> household -> generic
SECTIONS: Dict[str, SectionSpec] = {
    "produce": SectionSpec("Produce", "Aisle 1", "produce section", 10),
    "dairy": SectionSpec("Dairy & Eggs", "Aisle 2", "dairy cooler", 20),
    "meat": SectionSpec("Meat & Seafood", "Aisle 3", "meat counter", 30),
    "pantry": SectionSpec("Pantry & Canned Goods", "Aisle 4-6", "center store shelves", 40),
    "frozen": SectionSpec("Frozen Foods", "Aisle 7", "freezer aisle", 50),
    "bakery": SectionSpec("Bakery", "Aisle 8", "bakery counter", 60),
    "personal_care": SectionSpec("Personal Care", "Aisle 9", "health & beauty shelves", 70),
    "household": SectionSpec("Household", "Aisle 10", "household aisle", 80),
    GENERIC_SECTION: SectionSpec("Other", "Customer Service", "ask an associate", 90),
}


# Exact product names. Order matters only for display/debugging.
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "produce": [
        "apple", "apples", "banana", "bananas", "orange", "oranges", "grapes",
        "strawberries", "blueberries", "raspberries", "lemon", "lemons", "lime",
        "limes", "avocado", "avocados", "tomato", "tomatoes", "onion", "onions",
        "carrot", "carrots", "potato", "potatoes", "lettuce", "spinach", "kale",
        "broccoli", "cauliflower", "cucumber", "celery", "garlic", "ginger",
        "mushrooms", "bell pepper", "zucchini", "cilantro", "parsley", "basil",
    ],
    "dairy": [
        "milk", "eggs", "egg", "butter", "cheese", "yogurt", "greek yogurt",
        "cream", "sour cream", "heavy cream", "cottage cheese", "cream cheese",
        "half and half", "buttermilk",
    ],
    "meat": [
        "chicken", "chicken breast", "chicken thighs", "ground beef", "beef",
        "steak", "pork", "pork chops", "bacon", "sausage", "ham", "turkey",
        "ground turkey", "salmon", "tuna steak", "shrimp", "fish", "cod",
        "tilapia",
    ],
    "pantry": [
        "rice", "pasta", "flour", "sugar", "salt", "cereal", "oatmeal", "oats",
        "beans", "black beans", "canned tomatoes", "pasta sauce", "soup",
        "broth", "olive oil", "vegetable oil", "vinegar", "peanut butter",
        "jam", "honey", "coffee", "tea", "crackers", "chips", "ketchup",
        "mustard", "mayonnaise", "soy sauce", "spices", "juice", "soda", "water",
    ],
    "frozen": [
        "ice cream", "frozen pizza", "frozen vegetables", "frozen peas",
        "frozen berries", "popsicles", "frozen dinner", "frozen waffles",
    ],
    "bakery": [
        "bread", "bagels", "bagel", "muffins", "croissants", "tortillas",
        "buns", "rolls", "baguette", "cake", "cookies", "donuts", "pita",
    ],
    "personal_care": [
        "shampoo", "conditioner", "toothpaste", "toothbrush", "deodorant",
        "body wash", "soap", "lotion", "sunscreen", "razors", "floss",
        "mouthwash",
    ],
    "household": [
        "paper towels", "toilet paper", "tissues", "napkins", "dish soap",
        "laundry detergent", "detergent", "bleach", "trash bags", "aluminum foil",
        "plastic wrap", "sponges", "cleaner",
    ],
}


# Brand names and varietal keywords used by the substring scorer.
CATEGORY_SYNONYMS: Dict[str, List[str]] = {
    "produce": [
        "fruit", "vegetable", "veggie", "berry", "melon", "pear", "peach",
        "plum", "cherry", "kiwi", "mango", "pineapple", "watermelon",
        "cantaloupe", "grapefruit", "arugula", "cabbage", "pepper", "jalapeno",
        "squash", "eggplant", "asparagus", "corn", "scallion", "shallot", "leek",
        "herb", "dill", "mint", "rosemary", "thyme", "dole", "chiquita",
        "del monte", "honeycrisp", "gala", "fuji", "granny smith", "roma",
        "yukon", "russet",
    ],
    "dairy": [
        "dairy", "cheddar", "mozzarella", "swiss", "provolone", "gouda", "brie",
        "feta", "ricotta", "parmesan", "skim", "2%", "1%", "lactose free",
        "lactaid", "fairlife", "horizon", "margarine", "whipping cream",
        "kefir", "dozen",
    ],
    "meat": [
        "poultry", "breast", "thigh", "wings", "drumstick", "ribeye", "sirloin",
        "tenderloin", "brisket", "roast", "loin", "chop", "ground", "lamb",
        "duck", "seafood", "crab", "lobster", "scallop", "trout", "halibut",
        "deli", "salami", "pepperoni", "prosciutto", "tyson", "perdue",
    ],
    "pantry": [
        "canned", "noodle", "spaghetti", "macaroni", "quinoa", "couscous",
        "barley", "granola", "sauce", "marinara", "stock", "oil", "spice",
        "seasoning", "baking", "cocoa", "vanilla", "nut", "almond", "peanut",
        "cashew", "walnut", "snack", "pretzel", "syrup", "kraft", "hunts",
        "campbell", "heinz", "sparkling", "beverage",
    ],
    "frozen": [
        "frozen", "gelato", "sorbet", "sherbet", "popsicle", "hot pocket",
        "stouffer", "lean cuisine", "birds eye", "eggo",
    ],
    "bakery": [
        "loaf", "sourdough", "rye", "wheat bread", "english muffin", "naan",
        "brioche", "ciabatta", "pastry", "pie", "brownie", "cupcake",
        "wonder", "pepperidge", "sara lee",
    ],
    "personal_care": [
        "hair", "skincare", "moisturizer", "cleanser", "lip balm", "chapstick",
        "tampon", "shaving", "dental", "vitamin", "dove", "olay", "pantene",
        "colgate", "crest", "head & shoulders",
    ],
    "household": [
        "paper towel", "tissue", "laundry", "fabric softener", "dryer sheet",
        "disinfectant", "garbage bag", "ziploc", "storage bag", "foil",
        "dishwasher", "tide", "dawn", "lysol", "bounty", "charmin", "clorox",
    ],
}


# Free-text category hints (catalog labels, UI labels) -> section id.
CATEGORY_HINT_ALIASES: Dict[str, str] = {
    "produce": "produce",
    "fruit": "produce",
    "vegetables": "produce",
    "dairy": "dairy",
    "dairy & eggs": "dairy",
    "dairy and eggs": "dairy",
    "meat": "meat",
    "meat & seafood": "meat",
    "meat and seafood": "meat",
    "seafood": "meat",
    "pantry": "pantry",
    "pantry & canned goods": "pantry",
    "canned goods": "pantry",
    "beverages": "pantry",
    "frozen": "frozen",
    "frozen foods": "frozen",
    "bakery": "bakery",
    "personal care": "personal_care",
    "personal_care": "personal_care",
    "health & beauty": "personal_care",
    "household": "household",
    "household items": "household",
    "generic": GENERIC_SECTION,
    "other": GENERIC_SECTION,
}


# Ordered: first keyword contained in the product name wins.
SHELF_HINT_RULES: List[Tuple[str, str]] = [
    ("ice cream", "freezer doors, dessert case"),
    ("frozen", "freezer aisle"),
    ("milk", "refrigerated wall"),
    ("egg", "refrigerated wall, next to milk"),
    ("yogurt", "dairy cooler, middle shelves"),
    ("cheese", "specialty cheese case"),
    ("butter", "dairy cooler, top shelf"),
    ("chicken", "meat counter, poultry case"),
    ("beef", "meat counter, beef case"),
    ("salmon", "seafood counter"),
    ("shrimp", "seafood counter"),
    ("fish", "seafood counter"),
    ("bread", "bread rack"),
    ("bagel", "bread rack"),
    ("herb", "produce misting shelf"),
    ("lettuce", "produce misting shelf"),
    ("spinach", "produce misting shelf"),
    ("banana", "produce entrance display"),
    ("apple", "produce entrance display"),
    ("cereal", "cereal aisle, eye level"),
    ("spice", "baking & spices aisle"),
    ("oil", "oils & vinegars shelf"),
    ("paper towel", "paper goods, bottom shelf"),
    ("toilet paper", "paper goods, bottom shelf"),
]


# Items that need extra selection time.
FRESH_SECTIONS = ("produce", "meat")
FRESH_KEYWORDS: List[str] = ["seafood", "fish", "salmon", "shrimp", "fresh"]
COMPLEX_KEYWORDS: List[str] = [
    "imported", "specialty", "artisan", "gourmet", "aged", "craft",
    "deli sliced", "custom cut", "organic heirloom",
]


_TABLE_NAMES = (
    "CATEGORY_KEYWORDS",
    "CATEGORY_SYNONYMS",
    "CATEGORY_HINT_ALIASES",
    "SHELF_HINT_RULES",
    "FRESH_KEYWORDS",
    "COMPLEX_KEYWORDS",
)


@dataclass
class SectionTables:
    """
    Bundle of all tables the classifier/router read. Instances are treated as
    read-only once built.
    """
    version: str
    sections: Dict[str, SectionSpec]
    category_keywords: Dict[str, List[str]]
    category_synonyms: Dict[str, List[str]]
    category_hint_aliases: Dict[str, str]
    shelf_hint_rules: List[Tuple[str, str]]
    fresh_keywords: List[str]
    complex_keywords: List[str]


def default_tables() -> SectionTables:
    return SectionTables(
        version=TABLES_VERSION,
        sections=dict(SECTIONS),
        category_keywords=copy.deepcopy(CATEGORY_KEYWORDS),
        category_synonyms=copy.deepcopy(CATEGORY_SYNONYMS),
        category_hint_aliases=dict(CATEGORY_HINT_ALIASES),
        shelf_hint_rules=list(SHELF_HINT_RULES),
        fresh_keywords=list(FRESH_KEYWORDS),
        complex_keywords=list(COMPLEX_KEYWORDS),
    )


def load_tables(path: Optional[str | Path] = None) -> SectionTables:
    """
    Return the default tables, optionally overlaid with a JSON file.

    The JSON may contain any of: "version", "category_keywords",
    "category_synonyms", "category_hint_aliases", "shelf_hint_rules"
    (list of [keyword, hint] pairs). Keyword lists are appended per category,
    so an overlay only needs to list additions. Unreadable files are ignored.
    """
    tables = default_tables()
    if not path:
        return tables

    p = Path(path)
    if not p.exists():
        return tables
    try:
        with p.open("r", encoding="utf-8") as f:
            data: Dict[str, Any] = json.load(f)
    except (OSError, ValueError):
        return tables
    if not isinstance(data, dict):
        return tables

    tables.version = str(data.get("version") or tables.version)

    for attr in ("category_keywords", "category_synonyms"):
        overlay = data.get(attr) or {}
        if not isinstance(overlay, dict):
            continue
        target: Dict[str, List[str]] = getattr(tables, attr)
        for category, words in overlay.items():
            if category not in tables.sections or not isinstance(words, list):
                continue
            existing = target.setdefault(category, [])
            for w in words:
                w_norm = " ".join(str(w).lower().split())
                if w_norm and w_norm not in existing:
                    existing.append(w_norm)

    aliases = data.get("category_hint_aliases") or {}
    if not isinstance(aliases, dict):
        aliases = {}
    for alias, section in aliases.items():
        if isinstance(section, str) and section in tables.sections:
            tables.category_hint_aliases[str(alias).lower().strip()] = section

    rules = data.get("shelf_hint_rules") or []
    if not isinstance(rules, list):
        rules = []
    extra = [(str(r[0]).lower(), str(r[1])) for r in rules if isinstance(r, (list, tuple)) and len(r) == 2]
    if extra:
        tables.shelf_hint_rules = extra + tables.shelf_hint_rules

    return tables


def shelf_hint_for(name: str, section_id: str, tables: Optional[SectionTables] = None) -> str:
    """
    Shelf-location hint for a product: first matching keyword rule, else the
    section's default hint.
    """
    t = tables or default_tables()
    low = " ".join((name or "").lower().split())
    for keyword, hint in t.shelf_hint_rules:
        if keyword in low:
            return hint
    spec = t.sections.get(section_id) or t.sections[GENERIC_SECTION]
    return spec.default_shelf_hint
