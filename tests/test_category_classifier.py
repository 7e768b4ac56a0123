"""
Tests for CategoryClassifier: local heuristic ordering, hint handling and the
best-effort remote refinement.
"""

from __future__ import annotations

import pytest

from Trip_Sense.config_store import cache_get
from Trip_Sense.domain.section_tables import GENERIC_SECTION, load_tables
from Trip_Sense.integrations.classification_client import (
    ClassificationServiceError,
    RemoteClassification,
)
from Trip_Sense.services.category_classifier import CategoryClassifier


class StubRemote:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    def classify(self, product_name, category_hint=None):
        self.calls.append((product_name, category_hint))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def classifier():
    return CategoryClassifier(use_cache=False)


class TestLocalClassification:
    @pytest.mark.parametrize(
        "name, section",
        [("apples", "produce"), ("Milk", "dairy"), ("rice", "pantry"), ("Paper Towels", "household")],
    )
    def test_exact_keyword(self, classifier, name, section):
        result = classifier.classify(name)
        assert result.category == section
        assert result.confidence == pytest.approx(0.95)
        assert result.method == "exact"

    def test_brand_synonym_maps_to_section(self, classifier):
        result = classifier.classify("Tide Pods")
        assert result.category == "household"
        assert result.confidence == pytest.approx(0.7)
        assert result.method == "keyword"

    def test_more_hits_raise_confidence(self, classifier):
        result = classifier.classify("Dole Bananas")
        assert result.category == "produce"
        assert result.confidence == pytest.approx(0.8)

    def test_tie_goes_to_lower_layout_rank(self, classifier):
        # "corn" is produce, "frozen" is frozen; produce comes first in the store
        result = classifier.classify("frozen corn")
        assert result.category == "produce"
        assert result.confidence == pytest.approx(0.7)

    def test_hint_breaks_tie_and_adds_bonus(self, classifier):
        result = classifier.classify("frozen corn", "Frozen Foods")
        assert result.category == "frozen"
        assert result.confidence == pytest.approx(0.75)
        assert "agrees with category hint" in result.reasons

    @pytest.mark.parametrize(
        "name, section",
        [("bannana", "produce"), ("tomatoe", "produce"), ("chiken thighs", "meat"), ("bred", "bakery")],
    )
    def test_misspellings_use_fuzzy_match(self, classifier, name, section):
        result = classifier.classify(name)
        assert result.category == section
        assert result.method == "fuzzy"
        assert result.confidence == pytest.approx(0.6)

    def test_unknown_name_falls_back_to_generic(self, classifier):
        result = classifier.classify("xqzw")
        assert result.category == GENERIC_SECTION
        assert result.confidence == pytest.approx(0.3)
        assert result.method == "fallback"
        assert classifier.is_provisional(result)

    def test_hint_alone_when_name_is_unknown(self, classifier):
        result = classifier.classify("xqzw", "Dairy & Eggs")
        assert result.category == "dairy"
        assert result.confidence == pytest.approx(0.5)
        assert result.method == "hint"

    @pytest.mark.parametrize("name", [None, "", "   ", "!!!"])
    def test_empty_names_never_raise(self, classifier, name):
        result = classifier.classify(name)
        assert result.category == GENERIC_SECTION

    def test_shelf_hint_comes_from_keyword_rules(self, classifier):
        assert classifier.classify("2% Milk").shelf_hint == "refrigerated wall"
        assert classifier.classify("rice").shelf_hint == "center store shelves"

    def test_resolve_hint(self, classifier):
        assert classifier.resolve_hint("Personal Care") == "personal_care"
        assert classifier.resolve_hint("  produce ") == "produce"
        assert classifier.resolve_hint("spaceship parts") is None
        assert classifier.resolve_hint(None) is None

    def test_classify_is_deterministic(self, classifier):
        first = classifier.classify("Sourdough Bread", "bakery")
        second = classifier.classify("Sourdough Bread", "bakery")
        assert first == second


class TestTableOverlay:
    def test_json_overlay_adds_keywords(self, tmp_path):
        path = tmp_path / "tables.json"
        path.write_text(
            '{"version": "test.2", "category_synonyms": {"pantry": ["nutella"]},'
            ' "shelf_hint_rules": [["nutella", "spreads shelf"]]}',
            encoding="utf-8",
        )
        tables = load_tables(path)
        classifier = CategoryClassifier(tables=tables, use_cache=False)

        result = classifier.classify("Nutella")
        assert tables.version == "test.2"
        assert result.category == "pantry"
        assert result.shelf_hint == "spreads shelf"

    def test_wrongly_shaped_overlay_sections_are_ignored(self, tmp_path):
        path = tmp_path / "tables.json"
        path.write_text(
            '{"category_keywords": ["oops"], "category_hint_aliases": ["x"],'
            ' "shelf_hint_rules": {"a": "b"}, "category_synonyms": {"pantry": ["nutella"]}}',
            encoding="utf-8",
        )
        defaults = load_tables()
        tables = load_tables(path)

        assert tables.category_keywords == defaults.category_keywords
        assert tables.category_hint_aliases == defaults.category_hint_aliases
        assert tables.shelf_hint_rules == defaults.shelf_hint_rules
        assert CategoryClassifier(tables=tables, use_cache=False).classify("Nutella").category == "pantry"

    def test_missing_overlay_returns_defaults(self, tmp_path):
        tables = load_tables(tmp_path / "nope.json")
        assert "produce" in tables.sections


class TestRemoteRefinement:
    def test_confident_local_result_skips_remote(self):
        remote = StubRemote(RemoteClassification("bakery", 0.99))
        classifier = CategoryClassifier(remote=remote, use_cache=False)

        result = classifier.refine("apples")
        assert result.category == "produce"
        assert remote.calls == []

    def test_better_remote_answer_wins(self):
        remote = StubRemote(RemoteClassification("pantry", 0.9, "international aisle"))
        classifier = CategoryClassifier(remote=remote, use_cache=False)

        result = classifier.refine("gochujang")
        assert result.category == "pantry"
        assert result.method == "remote"
        assert result.shelf_hint == "international aisle"
        assert result.confidence == pytest.approx(0.9)

    def test_remote_failure_keeps_local(self):
        remote = StubRemote(error=ClassificationServiceError("timeout"))
        classifier = CategoryClassifier(remote=remote, use_cache=False)

        local = classifier.classify("gochujang")
        assert classifier.refine("gochujang", local=local) is local

    def test_unknown_remote_section_is_ignored(self):
        remote = StubRemote(RemoteClassification("spaceship", 0.99))
        classifier = CategoryClassifier(remote=remote, use_cache=False)

        assert classifier.refine("gochujang").category == GENERIC_SECTION

    def test_remote_answers_are_cached(self):
        remote = StubRemote(RemoteClassification("pantry", 0.9))
        classifier = CategoryClassifier(remote=remote, use_cache=True)

        classifier.refine("gochujang")
        classifier.refine("gochujang")

        assert len(remote.calls) == 1
        key = f"classify:{classifier.tables.version}:gochujang"
        assert cache_get(key)["category"] == "pantry"
