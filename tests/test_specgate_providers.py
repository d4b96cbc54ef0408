"""
Tests for SpecGate providers (glossary, pattern library, inherited context)
and edge case discovery.
"""

import pytest
import yaml

from specgate.errors import ConfigError
from specgate.models.session import InheritedContext, Priority, SessionPhase, TaskContext
from specgate.services.edge_cases import EDGE_CASE_FAMILIES, discover_edge_cases
from specgate.services.providers import (
    DEFAULT_DOMAIN_TERMS,
    HistoricalPattern,
    InMemoryPatternProvider,
    StaticContextProvider,
    StaticGlossaryProvider,
    YamlGlossaryProvider,
    YamlPatternProvider,
    default_glossary,
    default_patterns,
    keywords,
)


def make_task(**overrides) -> TaskContext:
    values = dict(task_id="task-1", task_description="Export orders to the billing system", domain="logistics")
    values.update(overrides)
    return TaskContext(**values)


class TestGlossary:
    def test_default_terms(self):
        terms = StaticGlossaryProvider().terms()

        assert set(terms) == {"user", "process", "account"}
        assert terms["user"].confusion_score == pytest.approx(76.0)

    def test_explicit_empty_glossary(self):
        assert StaticGlossaryProvider({}).terms() == {}

    def test_yaml_overrides_defaults(self, tmp_path):
        path = tmp_path / "glossary.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "terms": {
                        "User": {
                            "domain_specificity": 10,
                            "meanings": [{"definition": "Paying subscriber", "context": "Billing", "frequency": 100}],
                        }
                    }
                }
            ),
            encoding="utf-8",
        )

        terms = YamlGlossaryProvider(path).terms()

        assert terms["user"].meanings[0].definition == "Paying subscriber"
        assert terms["user"].confusion_score == 0.0
        assert "process" in terms
        assert DEFAULT_DOMAIN_TERMS["user"].meanings[0].frequency == 60

    def test_yaml_without_defaults_and_refresh(self, tmp_path):
        path = tmp_path / "glossary.yaml"
        path.write_text("terms:\n  order:\n    meanings: [{definition: Purchase}]\n", encoding="utf-8")
        provider = YamlGlossaryProvider(path, include_defaults=False)

        assert list(provider.terms()) == ["order"]

        path.write_text("terms:\n  ticket:\n    meanings: [{definition: Support request}]\n", encoding="utf-8")
        assert list(provider.terms()) == ["order"]
        provider.refresh()
        assert list(provider.terms()) == ["ticket"]

    @pytest.mark.parametrize(
        "content",
        [
            "terms: [1, 2]\n",
            "terms:\n  order:\n    meanings: [{context: Sales}]\n",
            "terms: {order: [unclosed\n",
            "terms:\n  order:\n    meanings: [{definition: Purchase, frequency: often}]\n",
            "terms:\n  order:\n    meanings: [{definition: [a, b]}]\n",
            "terms:\n  order:\n    domain_specificity: true\n",
            "terms:\n  order: purchase\n",
        ],
    )
    def test_invalid_glossary(self, tmp_path, content):
        path = tmp_path / "glossary.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigError):
            YamlGlossaryProvider(path).terms()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            YamlGlossaryProvider(tmp_path / "absent.yaml").terms()


class TestPatterns:
    def test_keywords_drop_stopwords_and_duplicates(self):
        assert keywords("The orders and the ORDERS for billing, to be paid") == ["orders", "billing", "paid"]

    def test_similarity_is_weighted_by_success_rate(self):
        provider = InMemoryPatternProvider(
            [
                HistoricalPattern("p-full", ["orders", "billing"], success_rate=1.0),
                HistoricalPattern("p-half", ["orders", "invoices"], success_rate=0.8),
                HistoricalPattern("p-unproven", ["orders", "billing"]),
                HistoricalPattern("p-empty", []),
            ]
        )

        matches = provider.find_similar(make_task())

        assert [(m.pattern.pattern_id, m.similarity) for m in matches] == [("p-full", 1.0), ("p-half", 0.4)]

    def test_min_similarity(self):
        provider = InMemoryPatternProvider(
            [HistoricalPattern("p-half", ["orders", "invoices"], success_rate=0.8)],
            min_similarity=0.5,
        )
        assert provider.find_similar(make_task()) == []

    def test_yaml_library(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "patterns": [
                        {
                            "pattern_id": "csv-export",
                            "keywords": ["export", "orders"],
                            "success_rate": 0.9,
                            "average_confidence_at_success": 88,
                        }
                    ]
                }
            ),
            encoding="utf-8",
        )

        matches = YamlPatternProvider(path).find_similar(make_task())

        assert [m.pattern.pattern_id for m in matches] == ["csv-export"]
        assert matches[0].similarity == pytest.approx(0.9)

    @pytest.mark.parametrize(
        "content",
        [
            "patterns: {}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a], colour: red}\n",
            "patterns:\n  - {pattern_id: x, keywords: foo}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a, 3]}\n",
            "patterns:\n  - {pattern_id: x}\n",
            "patterns:\n  - {keywords: [a]}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a], success_rate: high}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a], success_rate: true}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a], average_confidence_at_success: '88'}\n",
            "patterns:\n  - {pattern_id: x, keywords: [a], similar_tasks_count: 2.5}\n",
            "patterns:\n  - just-a-string\n",
        ],
    )
    def test_invalid_library(self, tmp_path, content):
        path = tmp_path / "patterns.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigError):
            YamlPatternProvider(path).patterns()

    def test_defaults_for_unconfigured_paths(self, tmp_path):
        assert isinstance(default_glossary(None), StaticGlossaryProvider)
        assert isinstance(default_glossary(tmp_path / "g.yaml"), YamlGlossaryProvider)
        assert default_patterns(None).find_similar(make_task()) == []
        assert isinstance(default_patterns(tmp_path / "p.yaml"), YamlPatternProvider)


class TestContextProvider:
    def test_registered_context_wins_over_default(self):
        shared = InheritedContext(decisions=["Use the shared ledger"])
        specific = InheritedContext(insights=["Orders ship from two warehouses"])
        provider = StaticContextProvider(default=shared)
        provider.register("task-1", specific)

        assert provider.inherit(make_task()) is specific
        assert provider.inherit(make_task(task_id="task-2")) is shared
        assert StaticContextProvider().inherit(make_task()) is None

    def test_richness(self):
        context = InheritedContext(
            decisions=["a", "b"],
            successful_patterns=["c"],
            insights=["d"],
            technical_context={"db": "postgres"},
            relevance_score=0.5,
        )
        assert context.richness == pytest.approx(20.0)
        assert InheritedContext(decisions=["x"] * 20).richness == 100.0


class TestEdgeCaseDiscovery:
    def test_families_in_catalogue_order(self):
        found = discover_edge_cases(
            "Vendor webhooks may fail when two admins edit at the same time",
            known_categories=[],
            phase=SessionPhase.EXPLORATION,
            start_index=4,
        )

        assert [e.category for e in found] == ["concurrency", "error_recovery", "external_dependency"]
        assert [e.id for e in found] == ["ec_4", "ec_5", "ec_6"]
        assert found[0].trigger_conditions == ['Answer mentions "at the same time"']
        assert all(e.discovered_in_phase == SessionPhase.EXPLORATION for e in found)

    def test_known_families_are_skipped(self):
        found = discover_edge_cases(
            "Only admins with the export role have access",
            known_categories=["authorization"],
            phase=SessionPhase.TRIAGE,
            start_index=1,
        )
        assert found == []

    def test_authorization_is_critical(self):
        (edge,) = discover_edge_cases(
            "Only admins with the export role have access",
            known_categories=[],
            phase=SessionPhase.TRIAGE,
            start_index=1,
        )
        assert edge.priority == Priority.CRITICAL

    def test_every_family_has_a_strategy(self):
        assert all(f.testing_strategy and f.expected_behavior for f in EDGE_CASE_FAMILIES)
