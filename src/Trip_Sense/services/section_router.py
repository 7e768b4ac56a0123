"""
Trip_Sense.services.section_router

Turn a flat list of shopping items into a walkable Route for one store:

- classify each item into a section (CategoryClassifier)
- group by section, order sections by store-layout rank (stable)
- attach shelf hints and fresh/complex flags
- estimate walking + selection time

Routes are immutable. Every edit (relocate, add, remove) returns a new Route
rebuilt from the same ordered item sequence, so regenerating with identical
input always gives identical output.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Union

from Trip_Sense.domain.models import (
    ClassificationResult,
    ClassifiedItem,
    Route,
    Section,
    ShoppingListItem,
)
from Trip_Sense.domain.section_tables import FRESH_SECTIONS, GENERIC_SECTION
from Trip_Sense.services.category_classifier import CategoryClassifier

logger = logging.getLogger(__name__)


RouteInput = Union[ShoppingListItem, ClassifiedItem]

BASE_MINUTES = 15.0
MINUTES_PER_SECTION = 3.0
MINUTES_PER_ITEM = 0.5
FRESH_BONUS_MINUTES = 0.5
COMPLEX_BONUS_MINUTES = 1.0


def _has_word(text: str, word: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(word) + r"(?![a-z0-9])", text) is not None


def estimate_minutes(section_count: int, item_count: int, fresh_count: int, complex_count: int) -> int:
    """
    ceil(max(15, 3*sections + 0.5*items) + 0.5*fresh + 1.0*complex).
    An empty route takes 0 minutes.
    """
    if item_count <= 0:
        return 0
    base = max(BASE_MINUTES, MINUTES_PER_SECTION * section_count + MINUTES_PER_ITEM * item_count)
    total = base + FRESH_BONUS_MINUTES * fresh_count + COMPLEX_BONUS_MINUTES * complex_count
    return int(math.ceil(total))


class SectionRouter:
    """
    classifier must provide:
        - classify(name, hint) -> ClassificationResult
        - refine(name, hint, local) -> ClassificationResult
        - is_provisional(result) -> bool
        - tables (SectionTables)
    """

    def __init__(
        self,
        classifier: Optional[CategoryClassifier] = None,
        rank_overrides: Optional[Dict[str, int]] = None,
    ) -> None:
        self.classifier = classifier or CategoryClassifier()
        self.tables = self.classifier.tables
        self._ranks: Dict[str, int] = {sid: spec.rank for sid, spec in self.tables.sections.items()}
        for sid, rank in (rank_overrides or {}).items():
            if sid in self._ranks:
                self._ranks[sid] = int(rank)
            else:
                logger.debug("Ignoring rank override for unknown section %r", sid)

    def section_rank(self, section_id: str) -> int:
        return self._ranks.get(section_id, self._ranks[GENERIC_SECTION])

    # ---------------- Classification ----------------

    def classify_item(self, item: ShoppingListItem) -> ClassifiedItem:
        result = self.classifier.classify(item.display_name, item.category)
        return self._to_classified(item, result)

    def classify_items(self, items: Iterable[Optional[ShoppingListItem]]) -> List[ClassifiedItem]:
        out: List[ClassifiedItem] = []
        for item in items or []:
            if not self._usable(item):
                continue
            out.append(self.classify_item(item))
        return out

    def _to_classified(
        self,
        item: ShoppingListItem,
        result: ClassificationResult,
        origin_store: Optional[str] = None,
    ) -> ClassifiedItem:
        section_id = result.category if result.category in self.tables.sections else GENERIC_SECTION
        name = " ".join((item.display_name or "").lower().split())
        return ClassifiedItem(
            item=item,
            section_id=section_id,
            confidence=result.confidence,
            shelf_hint=result.shelf_hint,
            is_provisional=self.classifier.is_provisional(result),
            is_fresh=self._is_fresh(name, section_id),
            is_complex=any(_has_word(name, k) for k in self.tables.complex_keywords),
            origin_store=origin_store,
        )

    def _is_fresh(self, name: str, section_id: str) -> bool:
        if section_id in FRESH_SECTIONS:
            return True
        return any(_has_word(name, k) for k in self.tables.fresh_keywords)

    @staticmethod
    def _usable(item) -> bool:
        if item is None:
            return False
        if isinstance(item, ClassifiedItem):
            item = item.item
        return isinstance(item, ShoppingListItem) and bool((item.display_name or "").strip())

    # ---------------- Route building ----------------

    def build_route(
        self,
        items: Optional[Sequence[Optional[RouteInput]]],
        store_name: str,
        store_id: Optional[int] = None,
    ) -> Route:
        """
        Build a Route. Accepts raw ShoppingListItems (classified here) or
        ClassifiedItems (used as-is). Malformed entries are skipped and
        duplicate item ids keep their first occurrence.
        """
        classified: List[ClassifiedItem] = []
        seen = set()
        for entry in items or []:
            if not self._usable(entry):
                continue
            ci = entry if isinstance(entry, ClassifiedItem) else self.classify_item(entry)
            if ci.item_id in seen:
                continue
            seen.add(ci.item_id)
            classified.append(ci)

        return self._assemble(classified, store_name, store_id)

    def _assemble(self, classified: List[ClassifiedItem], store_name: str, store_id: Optional[int]) -> Route:
        groups: Dict[str, List[ClassifiedItem]] = {}
        for ci in classified:
            groups.setdefault(ci.section_id, []).append(ci)

        ordered_ids = sorted(groups, key=lambda sid: (self.section_rank(sid), sid))

        sections: List[Section] = []
        fresh = complex_ = 0
        for sid in ordered_ids:
            members = groups[sid]
            spec = self.tables.sections.get(sid) or self.tables.sections[GENERIC_SECTION]
            s_fresh = sum(1 for ci in members if ci.is_fresh)
            s_complex = sum(1 for ci in members if ci.is_complex)
            fresh += s_fresh
            complex_ += s_complex
            minutes = (
                MINUTES_PER_SECTION
                + MINUTES_PER_ITEM * len(members)
                + FRESH_BONUS_MINUTES * s_fresh
                + COMPLEX_BONUS_MINUTES * s_complex
            )
            sections.append(
                Section(
                    section_id=sid,
                    label=spec.label,
                    aisle=spec.aisle,
                    rank=self.section_rank(sid),
                    items=tuple(members),
                    minutes=minutes,
                )
            )

        return Route(
            store_name=store_name,
            store_id=store_id,
            sections=tuple(sections),
            estimated_minutes=estimate_minutes(len(sections), len(classified), fresh, complex_),
            total_items=len(classified),
        )

    # ---------------- Route edits ----------------

    def relocate(self, route: Route, item_id: int, classification: ClassificationResult) -> Route:
        """
        Move one item to the section named by `classification`. The old and
        new section memberships change in the same returned Route.
        """
        if route.find_item(item_id) is None:
            return route

        updated: List[ClassifiedItem] = []
        for ci in route.classified_items():
            if ci.item_id == item_id:
                moved = self._to_classified(ci.item, classification, origin_store=ci.origin_store)
                logger.debug(
                    "Relocating item %s from %s to %s (%.2f)",
                    item_id, ci.section_id, moved.section_id, moved.confidence,
                )
                updated.append(moved)
            else:
                updated.append(ci)
        return self._assemble(updated, route.store_name, route.store_id)

    def refine_route(self, route: Route) -> Route:
        """
        Ask the classifier to refine every provisional item and relocate the
        ones whose answer changed.
        """
        current = route
        for ci in route.classified_items():
            if not ci.is_provisional:
                continue
            local = self.classifier.classify(ci.item.display_name, ci.item.category)
            refined = self.classifier.refine(ci.item.display_name, ci.item.category, local)
            if refined is local:
                continue
            if refined.category != ci.section_id or refined.confidence != ci.confidence:
                current = self.relocate(current, ci.item_id, refined)
        return current

    def remove_items(self, route: Route, item_ids: Iterable[int]) -> Route:
        drop = set(item_ids)
        if not drop:
            return route
        kept = [ci for ci in route.classified_items() if ci.item_id not in drop]
        return self._assemble(kept, route.store_name, route.store_id)

    def add_items(self, route: Route, items: Sequence[RouteInput]) -> Route:
        return self.build_route(list(route.classified_items()) + list(items or []), route.store_name, route.store_id)

    def replace_item(self, route: Route, item: ShoppingListItem) -> Route:
        """
        Swap in a fresher copy of an item (same id), keeping its section and
        annotations. Unknown ids return the route unchanged.
        """
        if route.find_item(item.id) is None:
            return route
        updated = [replace(ci, item=item) if ci.item_id == item.id else ci for ci in route.classified_items()]
        return self._assemble(updated, route.store_name, route.store_id)
