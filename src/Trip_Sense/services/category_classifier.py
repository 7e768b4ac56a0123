"""
Trip_Sense.services.category_classifier

Map free-text product names ("2% Milk", "Dole bananas", "chiken thighs") onto
a store section with a confidence score.

Local heuristic, in order:
  1) exact normalized lookup in the keyword table
  2) substring scoring over keywords + synonyms (brands, varietals),
     preferring the category named by the hint
  3) fuzzy token match for misspellings (rapidfuzz)
  4) the category hint on its own
  5) generic fallback

classify() is pure: it reads only the tables captured at construction.
refine() is the best-effort upgrade through an external service and is the
only path that touches the network or the JSON cache.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from rapidfuzz import fuzz, process

from Trip_Sense.config_store import cache_get, cache_set, load_config
from Trip_Sense.domain.models import ClassificationResult, normalize_product_name
from Trip_Sense.domain.section_tables import (
    GENERIC_SECTION,
    SectionTables,
    default_tables,
    shelf_hint_for,
)
from Trip_Sense.integrations.classification_client import (
    ClassificationServiceError,
    RemoteClassification,
    RemoteClassifier,
)

logger = logging.getLogger(__name__)


EXACT_CONFIDENCE = 0.95
KEYWORD_BASE_CONFIDENCE = 0.7
KEYWORD_STEP = 0.1
HINT_AGREEMENT_BONUS = 0.05
KEYWORD_MAX_CONFIDENCE = 0.9
FUZZY_CONFIDENCE = 0.6
HINT_ONLY_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.3

HINT_PREFERENCE = 0.5
FUZZY_MIN_RATIO = 80
FUZZY_MIN_TOKEN_LEN = 4
CONTAINING_MIN_LEN = 3

DEFAULT_PROVISIONAL_THRESHOLD = 0.6


_re_noise = re.compile(r"[^a-z0-9%&\s]")


def _normalize(text: Optional[str]) -> str:
    t = normalize_product_name(text)
    t = _re_noise.sub(" ", t)
    return " ".join(t.split())


def _contains_word(haystack: str, needle: str) -> bool:
    pattern = r"(?<![a-z0-9])" + re.escape(needle) + r"(?![a-z0-9])"
    return re.search(pattern, haystack) is not None


class CategoryClassifier:
    """
    Keyword/synonym classifier backed by versioned section tables.

    remote (optional) must provide:
        - classify(product_name, category_hint) -> RemoteClassification
          raising ClassificationServiceError on any failure
    """

    def __init__(
        self,
        tables: Optional[SectionTables] = None,
        remote: Optional[RemoteClassifier] = None,
        provisional_threshold: float = DEFAULT_PROVISIONAL_THRESHOLD,
        cache_days: float = 30,
        use_cache: bool = True,
    ) -> None:
        self.tables = tables or default_tables()
        self.remote = remote
        self.provisional_threshold = float(provisional_threshold)
        self.cache_days = cache_days
        self.use_cache = use_cache

        # Categories in store-layout order so that "first wins" == "lower rank wins".
        self._categories: List[str] = sorted(
            (c for c in self.tables.sections if c != GENERIC_SECTION),
            key=lambda c: (self.tables.sections[c].rank, c),
        )

        self._exact: Dict[str, str] = {}
        self._terms: Dict[str, List[str]] = {}
        fuzzy_terms: List[str] = []
        self._fuzzy_category: Dict[str, str] = {}

        for category in self._categories:
            keywords = [_normalize(k) for k in self.tables.category_keywords.get(category, [])]
            synonyms = [_normalize(s) for s in self.tables.category_synonyms.get(category, [])]
            for k in keywords:
                if k:
                    self._exact.setdefault(k, category)
            terms = [t for t in dict.fromkeys(keywords + synonyms) if t]
            self._terms[category] = terms
            for t in terms:
                if " " not in t and len(t) >= FUZZY_MIN_TOKEN_LEN and t not in self._fuzzy_category:
                    self._fuzzy_category[t] = category
                    fuzzy_terms.append(t)

        self._fuzzy_terms = fuzzy_terms

    @classmethod
    def from_config(cls, tables: Optional[SectionTables] = None) -> "CategoryClassifier":
        cfg = load_config()
        remote = None
        if cfg.classification_service_url:
            remote = RemoteClassifier(cfg.classification_service_url, timeout=cfg.classification_timeout_seconds)
        return cls(
            tables=tables,
            remote=remote,
            provisional_threshold=cfg.provisional_confidence_threshold,
        )

    # ---------------- Public API ----------------

    def classify(self, product_name: Optional[str], category_hint: Optional[str] = None) -> ClassificationResult:
        name = _normalize(product_name)
        hint_section = self.resolve_hint(category_hint)

        if not name:
            return self._fallback(name, ["empty product name"])

        # 1) exact
        category = self._exact.get(name)
        if category:
            return self._result(name, category, EXACT_CONFIDENCE, "exact", [f"exact keyword '{name}'"])

        # 2) substring scoring
        scored = self._score_substrings(name, hint_section)
        if scored is not None:
            category, hits, matched = scored
            confidence = KEYWORD_BASE_CONFIDENCE + KEYWORD_STEP * (hits - 1)
            if hint_section == category:
                confidence += HINT_AGREEMENT_BONUS
            confidence = min(confidence, KEYWORD_MAX_CONFIDENCE)
            reasons = [f"matched {', '.join(repr(m) for m in matched)}"]
            if hint_section == category:
                reasons.append("agrees with category hint")
            return self._result(name, category, confidence, "keyword", reasons)

        # 3) fuzzy token match (misspellings)
        fuzzy = self._fuzzy_match(name)
        if fuzzy is not None:
            category, term, token = fuzzy
            return self._result(name, category, FUZZY_CONFIDENCE, "fuzzy", [f"'{token}' looks like '{term}'"])

        # 4) hint only
        if hint_section and hint_section != GENERIC_SECTION:
            return self._result(name, hint_section, HINT_ONLY_CONFIDENCE, "hint", [f"category hint '{category_hint}'"])

        # 5) fallback
        return self._fallback(name, ["no keyword match"])

    def is_provisional(self, result: ClassificationResult) -> bool:
        return result.confidence < self.provisional_threshold

    def resolve_hint(self, category_hint: Optional[str]) -> Optional[str]:
        """
        Map a free-text hint ("Dairy & Eggs", "produce") to a section id.
        """
        if not category_hint:
            return None
        h = " ".join(str(category_hint).lower().split())
        if h in self.tables.sections:
            return h
        return self.tables.category_hint_aliases.get(h)

    def refine(
        self,
        product_name: Optional[str],
        category_hint: Optional[str] = None,
        local: Optional[ClassificationResult] = None,
    ) -> ClassificationResult:
        """
        Ask the external classifier to improve a provisional result.

        Returns `local` unchanged when the result is not provisional, no remote
        is configured, the remote fails, or the remote answer is not better.
        Never raises.
        """
        if local is None:
            local = self.classify(product_name, category_hint)
        if self.remote is None or not self.is_provisional(local):
            return local

        name = _normalize(product_name)
        if not name:
            return local

        cache_key = f"classify:{self.tables.version}:{name}"
        try:
            remote = self._remote_lookup(name, category_hint, cache_key)
        except ClassificationServiceError as exc:
            logger.warning("Remote classification failed for %r, keeping local result: %s", name, exc)
            return local

        if remote.category not in self.tables.sections:
            logger.debug("Remote category %r for %r is not a known section", remote.category, name)
            return local
        if remote.confidence <= local.confidence:
            return local

        spec = self.tables.sections[remote.category]
        return ClassificationResult(
            category=remote.category,
            label=spec.label,
            confidence=remote.confidence,
            aisle=spec.aisle,
            shelf_hint=remote.shelf_hint or shelf_hint_for(name, remote.category, self.tables),
            method="remote",
            reasons=[f"external service ({remote.confidence:.2f})"] + list(local.reasons),
        )

    # ---------------- Internals ----------------

    def _remote_lookup(self, name: str, category_hint: Optional[str], cache_key: str) -> RemoteClassification:
        if self.use_cache:
            cached = cache_get(cache_key, max_age_days=self.cache_days)
            if cached is not None:
                return RemoteClassification.from_dict(cached)

        result = self.remote.classify(name, category_hint)

        if self.use_cache:
            try:
                cache_set(cache_key, result.to_dict())
            except OSError as exc:
                logger.debug("Could not cache classification for %r: %s", name, exc)
        return result

    def _score_substrings(
        self, name: str, hint_section: Optional[str]
    ) -> Optional[Tuple[str, int, List[str]]]:
        best: Optional[Tuple[float, int, str, int, List[str]]] = None
        for category in self._categories:
            matched: List[str] = []
            for term in self._terms[category]:
                if _contains_word(name, term):
                    matched.append(term)
                elif len(name) >= CONTAINING_MIN_LEN and _contains_word(term, name):
                    matched.append(term)
            if not matched:
                continue
            score = float(len(matched))
            if hint_section == category:
                score += HINT_PREFERENCE
            rank = self.tables.sections[category].rank
            # higher score first, then lower rank
            if best is None or (score, -rank) > (best[0], -best[1]):
                best = (score, rank, category, len(matched), matched)

        if best is None:
            return None
        return best[2], best[3], best[4]

    def _fuzzy_match(self, name: str) -> Optional[Tuple[str, str, str]]:
        best: Optional[Tuple[float, int, str, str, str]] = None
        for token in name.split():
            if len(token) < FUZZY_MIN_TOKEN_LEN:
                continue
            hit = process.extractOne(
                token,
                self._fuzzy_terms,
                scorer=fuzz.ratio,
                score_cutoff=FUZZY_MIN_RATIO,
            )
            if not hit:
                continue
            term, score, _ = hit
            category = self._fuzzy_category[term]
            rank = self.tables.sections[category].rank
            if best is None or (score, -rank) > (best[0], -best[1]):
                best = (score, rank, category, term, token)

        if best is None:
            return None
        return best[2], best[3], best[4]

    def _result(self, name: str, category: str, confidence: float, method: str, reasons: List[str]) -> ClassificationResult:
        spec = self.tables.sections.get(category) or self.tables.sections[GENERIC_SECTION]
        return ClassificationResult(
            category=category,
            label=spec.label,
            confidence=round(confidence, 4),
            aisle=spec.aisle,
            shelf_hint=shelf_hint_for(name, category, self.tables),
            method=method,
            reasons=reasons,
        )

    def _fallback(self, name: str, reasons: List[str]) -> ClassificationResult:
        return self._result(name, GENERIC_SECTION, FALLBACK_CONFIDENCE, "fallback", reasons)
