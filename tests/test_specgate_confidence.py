"""
Tests for the SpecGate confidence scorer.

Covers the initial estimate, the weighted component score, the dynamic
threshold, trend analysis and proceed recommendations.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given, settings, strategies as st

from specgate.config import DEFAULT_FACTOR_WEIGHTS
from specgate.errors import ScoringAnomalyError
from specgate.models.scoring import (
    ConfidenceTrend,
    ProceedRecommendation,
    RiskLevel,
    TrendDirection,
)
from specgate.models.session import (
    Answer,
    BusinessContext,
    ComplexityLevel,
    ExpectedAnswerType,
    InheritedContext,
    Priority,
    Question,
    QuestionCategory,
    QuestionType,
    QuestioningSession,
    RequirementGap,
    SessionPhase,
    Severity,
    TaskContext,
    TechnicalContext,
)
from specgate.services.confidence import (
    ConfidenceScorer,
    DynamicThresholdCalculator,
    ScoringEvidence,
    TrendAnalyzer,
    collect_evidence,
    requirements_completeness,
)
from specgate.services.providers import HistoricalPattern, InMemoryPatternProvider, PatternMatch

START = datetime(2024, 1, 1, tzinfo=timezone.utc)

REQUIREMENTS = [
    "The orders API must return 50 results per page within 200 ms",
    "Each database write must complete within 100 ms under load",
    "The export endpoint must accept up to 10000 rows per request",
]

ANSWER_TEXTS = [
    "The API returns JSON over REST within 200 ms",
    "Billing rules are approved by the product owner",
    "Retry three times, then alert the on-call team",
    "Users upload CSV files up to 10 MB",
    "Given a paid order, when it ships, then the invoice is emailed",
    "Not sure yet",
]


# =============================================================================
# Helpers
# =============================================================================

def make_task(**overrides) -> TaskContext:
    values = dict(task_id="task-1", task_description="Export orders to the billing system")
    values.update(overrides)
    return TaskContext(**values)


def make_session(task=None, answers=(), category=QuestionCategory.FUNCTIONAL) -> QuestioningSession:
    session = QuestioningSession(
        session_id="qs_test",
        task_context=task or make_task(),
        target_confidence=85.0,
        session_start=START,
    )
    for i, text in enumerate(answers, 1):
        add_answer(session, f"q_{i}", text, category)
    return session


def add_answer(session, question_id, text, category=QuestionCategory.FUNCTIONAL) -> None:
    session.questions_asked.append(
        Question(
            id=question_id,
            text=f"Question {question_id}?",
            type=QuestionType.CLARIFICATION,
            category=category,
            priority=Priority.MEDIUM,
            reasoning="test",
            expected_answer_type=ExpectedAnswerType.TEXT,
            phase=SessionPhase.TRIAGE,
        )
    )
    session.answers_received.append(Answer(question_id=question_id, answer_text=text, confidence_level=0.8))


def critical_gap(gap_id="gap_1") -> RequirementGap:
    return RequirementGap(
        id=gap_id,
        category="requirements",
        description="No explicit requirements",
        severity=Severity.CRITICAL,
        discovered_in_phase=SessionPhase.TRIAGE,
    )


def high_gap(gap_id, source) -> RequirementGap:
    return RequirementGap(
        id=gap_id,
        category="vague_term",
        description="Vague performance descriptor",
        severity=Severity.HIGH,
        discovered_in_phase=SessionPhase.EXPLORATION,
        source=source,
    )


@pytest.fixture
def scorer(service_context):
    return ConfidenceScorer(service_context, patterns=InMemoryPatternProvider())


# =============================================================================
# Initial Confidence
# =============================================================================

class TestInitialConfidence:
    def test_bare_task_starts_at_zero(self, scorer):
        total, factors = scorer.initial_confidence(make_task())

        assert total == 0.0
        assert set(factors) == {
            "requirement_clarity",
            "domain_familiarity",
            "inherited_context",
            "stakeholders",
            "business_context",
        }

    def test_rich_task(self, scorer):
        task = make_task(
            initial_requirements=REQUIREMENTS,
            domain="api",
            stakeholders=["Product Owner", "Finance"],
            existing_context=InheritedContext(decisions=["a", "b"], successful_patterns=["c", "d"]),
            business_context=BusinessContext(business_domain="billing"),
        )

        total, factors = scorer.initial_confidence(task)

        assert factors["requirement_clarity"] == pytest.approx(20.0)
        assert factors["domain_familiarity"] == 3.0
        assert factors["inherited_context"] == pytest.approx(33.0)
        assert factors["stakeholders"] == 10.0
        assert factors["business_context"] == 10.0
        assert total == pytest.approx(76.0)

    def test_pattern_match_means_full_familiarity(self, service_context):
        patterns = InMemoryPatternProvider(
            [HistoricalPattern(pattern_id="orders-api", keywords=["orders", "billing"], success_rate=1.0)]
        )
        scorer = ConfidenceScorer(service_context, patterns=patterns)
        task = make_task(domain="logistics")

        matches = scorer.find_patterns(task)
        _, factors = scorer.initial_confidence(task, matches)

        assert [m.pattern.pattern_id for m in matches] == ["orders-api"]
        assert factors["domain_familiarity"] == 5.0

    def test_fewer_requirements_earn_less_clarity(self, scorer):
        _, one = scorer.initial_confidence(make_task(initial_requirements=REQUIREMENTS[:1]))
        _, three = scorer.initial_confidence(make_task(initial_requirements=REQUIREMENTS))

        assert one["requirement_clarity"] < three["requirement_clarity"]


# =============================================================================
# Scoring
# =============================================================================

class TestScore:
    def test_score_breakdown(self, scorer):
        score = scorer.score(make_session(answers=ANSWER_TEXTS[:3]))

        assert [f.name for f in score.factors] == list(DEFAULT_FACTOR_WEIGHTS)
        assert sum(f.weight for f in score.factors) == pytest.approx(1.0)
        assert 0.0 <= score.overall_confidence <= 100.0
        for factor in score.factors:
            assert 0.0 <= factor.normalized_score <= 100.0
        assert score.metadata.factors_used == list(DEFAULT_FACTOR_WEIGHTS)
        assert score.metadata.data_points == 3
        assert score.metadata.data_quality_score == pytest.approx(80.0)

    def test_overall_is_weighted_sum_times_calculation_confidence(self, scorer):
        score = scorer.score(make_session(answers=ANSWER_TEXTS))
        weighted = sum(f.weight * f.normalized_score for f in score.factors)

        assert score.overall_confidence == pytest.approx(weighted * score.metadata.calculation_confidence, abs=1e-3)

    @pytest.mark.parametrize("data_points,expected", [(0, 0.6), (15, 1.0), (30, 1.0)])
    def test_calculation_confidence(self, scorer, data_points, expected):
        assert scorer.calculation_confidence(data_points) == pytest.approx(expected)

    def test_custom_weights(self, make_context):
        scorer = ConfidenceScorer(
            make_context(factor_weights={"requirements_completeness": 1.0}),
            patterns=InMemoryPatternProvider(),
        )
        score = scorer.score(make_session(answers=ANSWER_TEXTS[:2]))
        completeness = score.factor("requirements_completeness")

        assert score.factor("risk_assessment").weight == 0.0
        assert score.overall_confidence == pytest.approx(
            completeness.normalized_score * score.metadata.calculation_confidence, abs=1e-3
        )

    def test_open_critical_gap_lowers_score(self, scorer):
        clean = make_session(answers=ANSWER_TEXTS[:2])
        gapped = make_session(answers=ANSWER_TEXTS[:2])
        gapped.identified_gaps.append(critical_gap())

        assert scorer.score(gapped).overall_confidence < scorer.score(clean).overall_confidence
        assert "1 critical gaps open" in scorer.score(gapped).factor("requirements_completeness").concerns

    def test_closing_a_gap_never_lowers_score(self, scorer):
        session = make_session(answers=ANSWER_TEXTS[:2])
        session.identified_gaps.append(critical_gap())
        before = scorer.score(session).overall_confidence

        session.identified_gaps[0].closed_by = "q_1"

        assert scorer.score(session).overall_confidence > before

    def test_context_raises_context_availability(self, scorer):
        bare = scorer.score(make_session())
        rich_task = make_task(
            stakeholders=["PO"],
            existing_context=InheritedContext(decisions=["a"] * 5, successful_patterns=["b"] * 5),
            business_context=BusinessContext(),
            technical_context=TechnicalContext(technology_stack=["python"]),
        )
        rich = scorer.score(make_session(task=rich_task))

        assert bare.factor("context_availability").normalized_score == 0.0
        assert rich.factor("context_availability").normalized_score == pytest.approx(90.0)

    def test_out_of_range_score_raises(self, scorer):
        scorer.weights["risk_assessment"] = 5.0

        with pytest.raises(ScoringAnomalyError):
            scorer.score(make_session())

    def test_recommendations_sorted_by_priority(self, scorer):
        session = make_session(answers=ANSWER_TEXTS[:1])
        session.identified_gaps.append(critical_gap())

        score = scorer.score(session)
        ranks = [r.priority.rank for r in score.recommendations]

        assert ranks == sorted(ranks, reverse=True)
        assert score.recommendations[0].priority == Priority.CRITICAL

    @settings(max_examples=40, deadline=None)
    @given(
        answers=st.lists(st.sampled_from(ANSWER_TEXTS), min_size=1, max_size=8),
        category=st.sampled_from(list(QuestionCategory)),
    )
    def test_answers_without_critical_gaps_never_lower_confidence(self, answers, category):
        scorer = ConfidenceScorer(patterns=InMemoryPatternProvider())
        session = make_session()
        previous = scorer.score(session).overall_confidence
        for i, text in enumerate(answers, 1):
            add_answer(session, f"q_{i}", text, category)
            current = scorer.score(session).overall_confidence
            assert current >= previous
            previous = current

    def test_open_high_gaps_cost_eight_per_source(self):
        session = make_session(answers=ANSWER_TEXTS[:3])

        def completeness():
            return requirements_completeness(collect_evidence(session), session.task_context)[0]

        clean = completeness()
        session.identified_gaps += [high_gap("gap_1", "answer:q_1"), high_gap("gap_2", "answer:q_1")]
        one_source = completeness()
        session.identified_gaps.append(high_gap("gap_3", "answer:q_2"))
        two_sources = completeness()

        assert clean - one_source == 8.0
        assert one_source - two_sources == 8.0

        session.identified_gaps[2].closed_by = "q_3"

        assert completeness() > one_source

    @settings(max_examples=40, deadline=None)
    @given(raised=st.lists(st.integers(min_value=0, max_value=3), min_size=1, max_size=8))
    def test_answers_raising_high_gaps_never_lower_confidence(self, raised):
        scorer = ConfidenceScorer(patterns=InMemoryPatternProvider())
        session = make_session()
        session.identified_gaps.append(high_gap("gap_0", "task_context"))
        previous = scorer.score(session).overall_confidence
        for i, count in enumerate(raised, 1):
            add_answer(session, f"q_{i}", ANSWER_TEXTS[(i - 1) % 5])
            for n in range(count):
                session.identified_gaps.append(high_gap(f"gap_{i}_{n}", f"answer:q_{i}"))
            current = scorer.score(session).overall_confidence
            assert current >= previous
            previous = current


class TestEvidence:
    def test_collect_evidence_counts(self):
        session = make_session(answers=ANSWER_TEXTS[:5])
        session.identified_gaps.append(critical_gap())

        ev = collect_evidence(session)

        assert ev.answers == 5
        assert ev.answered_categories == 1
        assert ev.open_critical_gaps == 1
        assert ev.high_gap_sources == 0
        assert ev.consensus_answers == 1
        assert ev.mitigation_answers == 1
        assert ev.data_points == 5


# =============================================================================
# Thresholds, Trends and Recommendations
# =============================================================================

class TestDynamicThreshold:
    def test_medium_task_keeps_base(self):
        task = make_task(stakeholders=["a", "b"])
        threshold = DynamicThresholdCalculator().calculate(task, 85.0, RiskLevel.MEDIUM)

        assert threshold.final_threshold == 85.0
        assert threshold.justification == ["Base threshold 85"]

    def test_ceiling(self):
        task = make_task(complexity_level=ComplexityLevel.COMPLEX)
        threshold = DynamicThresholdCalculator().calculate(task, 85.0, RiskLevel.HIGH)

        assert threshold.stakeholder_adjustment == 2.0
        assert threshold.final_threshold == 95.0

    def test_relaxed_for_simple_low_risk(self):
        task = make_task(complexity_level=ComplexityLevel.SIMPLE, stakeholders=list("abcdef"))
        threshold = DynamicThresholdCalculator().calculate(task, 85.0, RiskLevel.LOW)

        assert threshold.final_threshold == 78.0

    def test_floor(self):
        task = make_task(complexity_level=ComplexityLevel.SIMPLE, stakeholders=["a"])
        threshold = DynamicThresholdCalculator().calculate(task, 40.0, RiskLevel.LOW)

        assert threshold.final_threshold == 50.0

    def test_historical_adjustment_is_capped_and_weighted(self):
        task = make_task(stakeholders=["a"])
        match = PatternMatch(
            pattern=HistoricalPattern(pattern_id="p1", keywords=["orders"], average_confidence_at_success=95.0),
            similarity=0.5,
        )
        threshold = DynamicThresholdCalculator().calculate(task, 85.0, RiskLevel.MEDIUM, [match])

        assert threshold.historical_adjustment == 2.5
        assert threshold.final_threshold == 87.5


class TestTrend:
    def test_single_point_is_stable(self):
        trend = TrendAnalyzer().analyze([42.0])

        assert trend.direction == TrendDirection.STABLE
        assert trend.predicted_next_score == 42.0
        assert not trend.diminishing_returns

    def test_increasing(self):
        trend = TrendAnalyzer().analyze([50, 55, 60, 70])

        assert trend.direction == TrendDirection.INCREASING
        assert trend.rate_of_change == pytest.approx(6.6667, abs=1e-3)
        assert trend.predicted_next_score == pytest.approx(76.67)
        assert not trend.diminishing_returns

    def test_diminishing_returns(self):
        trend = TrendAnalyzer(min_improvement=2.0).analyze([50, 60, 61, 61.5])

        assert trend.direction == TrendDirection.INCREASING
        assert trend.diminishing_returns

    def test_volatile(self):
        assert TrendAnalyzer().analyze([50, 60, 52, 61]).direction == TrendDirection.VOLATILE

    def test_decreasing(self):
        assert TrendAnalyzer().analyze([60, 55, 50]).direction == TrendDirection.DECREASING

    def test_flat_is_stable(self):
        trend = TrendAnalyzer().analyze([60, 60.1, 60.2])

        assert trend.direction == TrendDirection.STABLE
        assert trend.diminishing_returns

    def test_window_keeps_recent_scores(self):
        trend = TrendAnalyzer(window=3).analyze([1, 2, 3, 4, 5])
        assert trend.historical_scores == [3.0, 4.0, 5.0]


def _trend(direction=TrendDirection.INCREASING, history=(50.0, 60.0), diminishing=False) -> ConfidenceTrend:
    return ConfidenceTrend(
        direction=direction,
        rate_of_change=0.0,
        historical_scores=list(history),
        predicted_next_score=0.0,
        confidence_in_prediction=0.0,
        diminishing_returns=diminishing,
    )


class TestRecommendation:
    def test_proceed_when_target_met_without_critical_gaps(self):
        assert ConfidenceScorer.proceed_recommendation(
            90.0, 85.0, ScoringEvidence(), _trend()
        ) == ProceedRecommendation.PROCEED

    def test_critical_gap_blocks_proceed(self):
        assert ConfidenceScorer.proceed_recommendation(
            90.0, 85.0, ScoringEvidence(open_critical_gaps=1), _trend()
        ) == ProceedRecommendation.CONTINUE_QUESTIONING

    def test_pause_on_diminishing_returns(self):
        assert ConfidenceScorer.proceed_recommendation(
            60.0, 85.0, ScoringEvidence(), _trend(diminishing=True)
        ) == ProceedRecommendation.PAUSE_FOR_CLARIFICATION

    def test_pause_when_stalled_with_critical_gaps(self):
        evidence = ScoringEvidence(open_critical_gaps=2)
        stalled = _trend(direction=TrendDirection.STABLE)

        assert ConfidenceScorer.proceed_recommendation(60.0, 85.0, evidence, stalled) == (
            ProceedRecommendation.PAUSE_FOR_CLARIFICATION
        )
        first_score = _trend(direction=TrendDirection.STABLE, history=(60.0,))
        assert ConfidenceScorer.proceed_recommendation(60.0, 85.0, evidence, first_score) == (
            ProceedRecommendation.CONTINUE_QUESTIONING
        )

    @pytest.mark.parametrize(
        "evidence,overall,expected",
        [
            (ScoringEvidence(open_critical_gaps=1), 95.0, RiskLevel.HIGH),
            (ScoringEvidence(), 45.0, RiskLevel.HIGH),
            (ScoringEvidence(), 60.0, RiskLevel.MEDIUM),
            (ScoringEvidence(open_high_gaps=3), 90.0, RiskLevel.MEDIUM),
            (ScoringEvidence(), 90.0, RiskLevel.LOW),
        ],
    )
    def test_risk_level(self, evidence, overall, expected):
        assert ConfidenceScorer.risk_level(evidence, overall) == expected
