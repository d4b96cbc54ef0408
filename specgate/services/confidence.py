"""
SpecGate Confidence Scorer

Turns a session's answers, gaps, edge cases and context into ten weighted
component scores and one overall confidence percentage, plus a dynamic
threshold, a trend and recommendations.

Every component only grows with new answers, edge cases and closed gaps.
Open critical gaps are the only evidence that pulls a component down, so an
answer that records no new critical gap can never lower the overall score.
"""

import math
import re
import statistics
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from specgate.errors import ScoringAnomalyError
from specgate.models.scoring import (
    CalculationMetadata,
    ConfidenceFactor,
    ConfidenceRecommendation,
    ConfidenceScore,
    ConfidenceTrend,
    DynamicThreshold,
    ProceedRecommendation,
    RecommendationType,
    RiskLevel,
    ThresholdAnalysis,
    TrendDirection,
)
from specgate.models.session import (
    ComplexityLevel,
    Priority,
    QuestionCategory,
    QuestioningSession,
    Severity,
    TaskContext,
)
from specgate.services.base import Service, ServiceContext
from specgate.services.providers import PatternMatch, PatternProvider, default_patterns

SCORER_VERSION = "1.0.0"

_TECHNICAL = re.compile(
    r"\b(api|endpoints?|databases?|schemas?|services?|queues?|cache|framework|library|protocol|"
    r"https?|json|sql|postgres\w*|redis|docker|kubernetes|components?|modules?)\b",
    re.I,
)
_ARCHITECTURE = re.compile(r"\b(architect\w*|components?|services?|modules?|layers?|patterns?|microservices?|monolith)\b", re.I)
_INTERFACE = re.compile(r"\b(api|endpoints?|interfaces?|contracts?|schemas?|requests?|responses?|webhooks?)\b", re.I)
_DATA = re.compile(r"\b(data|fields?|tables?|models?|records?|json|csv|formats?|columns?)\b", re.I)
_TESTABLE = re.compile(r"\d|\b(given|when|then|should|must|shall|expect\w*|verif\w+|acceptance)\b", re.I)
_ERROR = re.compile(r"\b(errors?|fail\w*|exceptions?|timeouts?|invalid|retry|retries|fallback)\b", re.I)
_INTEGRATION_DETAIL = re.compile(r"\b(protocol|endpoints?|formats?|rest|grpc|graphql|webhooks?|queues?|events?)\b", re.I)
_BUSINESS = re.compile(r"\b(business|rules?|polic(?:y|ies)|revenue|pricing|compliance|regulat\w+|invoices?|orders?|contracts?)\b", re.I)
_MITIGATION = re.compile(r"\b(fallback|retry|retries|rollback|backups?|mitigat\w+|monitor\w*|alert\w*|circuit breaker|redundan\w+)\b", re.I)
_STAKEHOLDER = re.compile(r"\b(stakeholders?|owners?|teams?|customers?|users?|admins?|managers?|product)\b", re.I)
_CONSENSUS = re.compile(r"\b(agreed|confirmed|approved|signed off|consensus|aligned)\b", re.I)
_ACCEPTANCE = re.compile(r"\b(given|when|then|acceptance|criteria|must|shall|verify)\b", re.I)
_PRECISE = re.compile(
    r"\b\d+(?:\.\d+)?\s*(?:ms|s|sec|seconds?|minutes?|hours?|days?|%|percent|mb|gb|kb|rps|requests?|users?|items?)\b",
    re.I,
)
_DIGIT = re.compile(r"\d")

FAMILIAR_DOMAINS = frozenset({"web", "api", "cli", "data", "mobile", "backend", "frontend", "e-commerce", "ecommerce"})

_TECHNICAL_CATEGORIES = (QuestionCategory.TECHNICAL, QuestionCategory.INTEGRATION, QuestionCategory.NON_FUNCTIONAL)
_BUSINESS_CATEGORIES = (QuestionCategory.BUSINESS, QuestionCategory.COMPLIANCE)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass
class ScoringEvidence:
    """Counts the component heuristics are computed from."""
    answers: int = 0
    answered_categories: int = 0
    technical_answers: int = 0
    business_answers: int = 0
    architecture_mentions: int = 0
    interface_mentions: int = 0
    data_mentions: int = 0
    testable_answers: int = 0
    error_answers: int = 0
    integration_detail_answers: int = 0
    mitigation_answers: int = 0
    stakeholder_mentions: int = 0
    consensus_answers: int = 0
    acceptance_answers: int = 0
    quantified_answers: int = 0
    precise_terms: int = 0
    open_critical_gaps: int = 0
    open_high_gaps: int = 0
    high_gap_sources: int = 0
    closed_gaps: int = 0
    edge_cases: int = 0
    edge_case_priorities: int = 0
    critical_edge_cases: int = 0
    edge_cases_with_strategy: int = 0
    pattern_matches: int = 0
    mean_answer_confidence: float = 0.0
    context_points: int = 0

    @property
    def data_points(self) -> int:
        return self.answers + self.edge_cases + self.closed_gaps + self.context_points


def _count(pattern: Pattern[str], texts: Sequence[str]) -> int:
    return sum(1 for t in texts if pattern.search(t))


def collect_evidence(session: QuestioningSession) -> ScoringEvidence:
    texts = [a.answer_text or "" for a in session.answers_received]
    questions = {q.id: q for q in session.questions_asked}
    answered = [questions[a.question_id] for a in session.answers_received if a.question_id in questions]
    task = session.task_context

    technical = sum(
        1 for q, t in zip(answered, texts) if q.category in _TECHNICAL_CATEGORIES or _TECHNICAL.search(t)
    )
    business = sum(
        1 for q, t in zip(answered, texts) if q.category in _BUSINESS_CATEGORIES or _BUSINESS.search(t)
    )
    context_points = (
        (3 if task.existing_context else 0)
        + (1 if task.business_context else 0)
        + (1 if task.technical_context else 0)
        + min(3, len(task.stakeholders))
    )
    return ScoringEvidence(
        answers=len(texts),
        answered_categories=len({q.category for q in answered}),
        technical_answers=technical,
        business_answers=business,
        architecture_mentions=_count(_ARCHITECTURE, texts),
        interface_mentions=_count(_INTERFACE, texts),
        data_mentions=_count(_DATA, texts),
        testable_answers=_count(_TESTABLE, texts),
        error_answers=_count(_ERROR, texts),
        integration_detail_answers=_count(_INTEGRATION_DETAIL, texts),
        mitigation_answers=_count(_MITIGATION, texts),
        stakeholder_mentions=_count(_STAKEHOLDER, texts),
        consensus_answers=_count(_CONSENSUS, texts),
        acceptance_answers=_count(_ACCEPTANCE, texts),
        quantified_answers=_count(_DIGIT, texts),
        precise_terms=sum(len(_PRECISE.findall(t)) + len(_TECHNICAL.findall(t)) for t in texts),
        open_critical_gaps=len(session.open_gaps(Severity.CRITICAL)),
        open_high_gaps=len(session.open_gaps(Severity.HIGH)),
        high_gap_sources=len({g.source for g in session.open_gaps(Severity.HIGH)}),
        closed_gaps=sum(1 for g in session.identified_gaps if not g.is_open),
        edge_cases=len(session.edge_cases),
        edge_case_priorities=len({e.priority for e in session.edge_cases}),
        critical_edge_cases=sum(1 for e in session.edge_cases if e.priority == Priority.CRITICAL),
        edge_cases_with_strategy=sum(1 for e in session.edge_cases if e.testing_strategy),
        pattern_matches=session.historical_pattern_matches,
        mean_answer_confidence=(
            statistics.fmean(a.confidence_level for a in session.answers_received)
            if session.answers_received else 0.0
        ),
        context_points=context_points,
    )


# =============================================================================
# Component heuristics
# =============================================================================

ComponentResult = Tuple[float, str, List[str], List[str]]


def requirements_completeness(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    # Open high gaps cost 8 per source (the task context or the answer that
    # raised them). An answer adds at most one source, so this term never falls.
    base = min(90.0, max(0.0, 8.0 * (ev.answers - ev.high_gap_sources)))
    breadth = min(10.0, 2.0 * ev.answered_categories)
    closure = min(10.0, 2.0 * ev.closed_gaps)
    penalty = 15.0 * ev.open_critical_gaps
    evidence = [f"{ev.answers} answers", f"{ev.answered_categories} categories covered", f"{ev.closed_gaps} gaps closed"]
    concerns = []
    if ev.open_critical_gaps:
        concerns.append(f"{ev.open_critical_gaps} critical gaps open")
    if ev.open_high_gaps:
        concerns.append(f"{ev.open_high_gaps} high-severity gaps open")
    return (
        base + breadth + closure - penalty,
        "answer count less open high-gap sources, coverage bonus, critical gap penalty",
        evidence,
        concerns,
    )


def implementation_clarity(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    architecture = min(100.0, 25.0 * ev.architecture_mentions)
    interface = min(100.0, 25.0 * ev.interface_mentions)
    data = min(100.0, 25.0 * ev.data_mentions)
    stack = 10.0 if task.technical_context and task.technical_context.technology_stack else 0.0
    score = min(40.0, 5.0 * ev.technical_answers) + 0.3 * architecture + 0.2 * interface + 0.1 * data + stack
    concerns = [] if ev.interface_mentions else ["No interfaces described"]
    return score, "technical answers plus architecture, interface and data clarity", [
        f"{ev.technical_answers} technical answers"
    ], concerns


def testing_readiness(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    points = len(task.technical_context.integration_points) if task.technical_context else 0
    integration = min(100.0, 25.0 * ev.integration_detail_answers + 10.0 * points)
    score = (
        min(40.0, 8.0 * ev.testable_answers)
        + min(25.0, 5.0 * ev.edge_cases)
        + min(20.0, 4.0 * ev.error_answers)
        + 0.15 * integration
    )
    concerns = [] if ev.error_answers else ["Error scenarios not discussed"]
    return score, "testable answers, edge cases, error scenarios", [
        f"{ev.testable_answers} testable answers", f"{ev.edge_cases} edge cases"
    ], concerns


def context_availability(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    richness = task.existing_context.richness if task.existing_context else 0.0
    score = (
        0.4 * richness
        + (25.0 if task.business_context else 0.0)
        + (20.0 if task.technical_context else 0.0)
        + min(15.0, 5.0 * len(task.stakeholders))
        + min(15.0, 3.0 * ev.pattern_matches)
    )
    concerns = [] if task.existing_context else ["No inherited context"]
    return score, "inherited context richness and supplied context", [
        f"richness {richness:.0f}", f"{len(task.stakeholders)} stakeholders"
    ], concerns


def edge_case_coverage(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    score = (
        min(50.0, 10.0 * ev.edge_cases)
        + 10.0 * ev.edge_case_priorities
        + 15.0 * ev.critical_edge_cases
        + min(25.0, 5.0 * ev.edge_cases_with_strategy)
    )
    concerns = [] if ev.edge_cases else ["No edge cases identified"]
    return score, "edge case count, priority spread and test strategies", [f"{ev.edge_cases} edge cases"], concerns


def business_rule_clarity(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    bc = task.business_context
    static = (5.0 * len(bc.business_rules) + 3.0 * len(bc.user_personas) + 4.0 * len(bc.compliance_requirements)) if bc else 0.0
    score = min(60.0, 12.0 * ev.business_answers) + static
    return score, "business answers and documented rules", [f"{ev.business_answers} business answers"], []


def technical_feasibility(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    tc = task.technical_context
    constraints = len(tc.performance_requirements) + len(tc.scalability_requirements) if tc else 0
    perf_risk = 1 if (tc and tc.performance_requirements and task.complexity_level == ComplexityLevel.COMPLEX) else 0
    integration_heavy = 1 if (tc and len(tc.integration_points) > 3) else 0
    score = (
        85.0
        - 5.0 * min(constraints, 4)
        - 10.0 * perf_risk
        - 8.0 * integration_heavy
        + min(15.0, 2.0 * ev.technical_answers)
        - 15.0 * ev.open_critical_gaps
    )
    concerns = ["Performance-critical complex task"] if perf_risk else []
    return score, "constraint load against technical detail", [f"{constraints} constraints"], concerns


_COMPLEXITY_RISK = {ComplexityLevel.SIMPLE: 3.0, ComplexityLevel.MEDIUM: 8.0, ComplexityLevel.COMPLEX: 15.0}


def risk_assessment(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    compliance = 8.0 if task.business_context and task.business_context.compliance_requirements else 0.0
    score = (
        100.0
        - _COMPLEXITY_RISK[task.complexity_level]
        - compliance
        - 15.0 * ev.open_critical_gaps
        + min(30.0, 10.0 * ev.mitigation_answers)
    )
    return score, "inherent risk less open critical gaps plus mitigations", [
        f"{ev.mitigation_answers} mitigation answers"
    ], []


def stakeholder_alignment(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    score = (
        min(30.0, 10.0 * len(task.stakeholders))
        + min(40.0, 8.0 * ev.stakeholder_mentions)
        + min(30.0, 6.0 * ev.consensus_answers)
    )
    concerns = [] if task.stakeholders else ["No stakeholders named"]
    return score, "named stakeholders, mentions and consensus", [f"{ev.consensus_answers} consensus signals"], concerns


def definition_precision(ev: ScoringEvidence, task: TaskContext) -> ComponentResult:
    acceptance = min(100.0, 20.0 * ev.acceptance_answers)
    score = min(40.0, 4.0 * ev.precise_terms) + min(30.0, 6.0 * ev.quantified_answers) + 0.3 * acceptance
    return score, "precise terms, quantified answers, acceptance language", [
        f"{ev.quantified_answers} quantified answers"
    ], []


COMPONENTS: Dict[str, Callable[[ScoringEvidence, TaskContext], ComponentResult]] = {
    "requirements_completeness": requirements_completeness,
    "implementation_clarity": implementation_clarity,
    "test_coverage_readiness": testing_readiness,
    "context_availability": context_availability,
    "edge_case_coverage": edge_case_coverage,
    "business_rule_clarity": business_rule_clarity,
    "technical_feasibility": technical_feasibility,
    "risk_assessment": risk_assessment,
    "stakeholder_alignment": stakeholder_alignment,
    "definition_precision": definition_precision,
}

_IMPROVEMENT_ACTIONS: Dict[str, List[str]] = {
    "requirements_completeness": ["Answer the open questions", "Close critical gaps first"],
    "implementation_clarity": ["Describe components and interfaces", "Name the data model"],
    "test_coverage_readiness": ["State acceptance criteria", "Describe error scenarios"],
    "context_availability": ["Link decisions from earlier phases", "Document business and technical context"],
    "edge_case_coverage": ["Walk through failure and boundary scenarios"],
    "business_rule_clarity": ["List the business rules that apply"],
    "technical_feasibility": ["Confirm the constraints are achievable"],
    "risk_assessment": ["Describe mitigations for the main risks"],
    "stakeholder_alignment": ["Get explicit sign-off from stakeholders"],
    "definition_precision": ["Quantify targets with units"],
}


# =============================================================================
# Threshold and trend
# =============================================================================

class DynamicThresholdCalculator:
    """Adjusts the base target by risk, complexity, history and stakeholders."""

    RISK_ADJUSTMENT = {RiskLevel.HIGH: 5.0, RiskLevel.MEDIUM: 0.0, RiskLevel.LOW: -5.0}
    COMPLEXITY_ADJUSTMENT = {ComplexityLevel.COMPLEX: 5.0, ComplexityLevel.MEDIUM: 0.0, ComplexityLevel.SIMPLE: -5.0}
    FLOOR = 50.0
    CEILING = 95.0

    def calculate(
        self,
        task: TaskContext,
        base: float,
        risk: RiskLevel,
        matches: Sequence[PatternMatch] = (),
    ) -> DynamicThreshold:
        risk_adj = self.RISK_ADJUSTMENT[risk]
        complexity_adj = self.COMPLEXITY_ADJUSTMENT[task.complexity_level]

        historical_adj = 0.0
        justification = [f"Base threshold {base:g}"]
        if risk_adj:
            justification.append(f"{risk.value} risk: {risk_adj:+g}")
        if complexity_adj:
            justification.append(f"{task.complexity_level.value} task: {complexity_adj:+g}")
        if matches:
            best = matches[0]
            delta = _clamp(best.pattern.average_confidence_at_success - base, -5.0, 5.0)
            historical_adj = round(delta * best.similarity, 2)
            if historical_adj:
                justification.append(f"similar pattern {best.pattern.pattern_id}: {historical_adj:+g}")

        stakeholders = len(task.stakeholders)
        if stakeholders == 0:
            stakeholder_adj = 2.0
            justification.append("no stakeholders to validate answers: +2")
        elif stakeholders > 5:
            stakeholder_adj = 3.0
            justification.append(f"{stakeholders} stakeholders to align: +3")
        else:
            stakeholder_adj = 0.0

        final = _clamp(base + risk_adj + complexity_adj + historical_adj + stakeholder_adj, self.FLOOR, self.CEILING)
        return DynamicThreshold(
            base_threshold=base,
            risk_adjustment=risk_adj,
            complexity_adjustment=complexity_adj,
            historical_adjustment=historical_adj,
            stakeholder_adjustment=stakeholder_adj,
            final_threshold=round(final, 2),
            justification=justification,
        )


@dataclass
class TrendAnalyzer:
    """Classifies the confidence history and detects diminishing returns."""
    min_improvement: float = 2.0
    stable_epsilon: float = 0.5
    volatility_threshold: float = 5.0
    window: int = 10

    def analyze(self, history: Sequence[float]) -> ConfidenceTrend:
        scores = [float(s) for s in history][-self.window:]
        if len(scores) < 2:
            last = scores[-1] if scores else 0.0
            return ConfidenceTrend(
                direction=TrendDirection.STABLE,
                rate_of_change=0.0,
                historical_scores=scores,
                predicted_next_score=last,
                confidence_in_prediction=0.0,
            )

        deltas = [b - a for a, b in zip(scores, scores[1:])]
        recent = deltas[-3:]
        rate = statistics.fmean(recent)
        if all(abs(d) < self.stable_epsilon for d in recent):
            direction = TrendDirection.STABLE
        elif any(d > 0 for d in recent) and any(d < 0 for d in recent) and max(abs(d) for d in recent) >= self.volatility_threshold:
            direction = TrendDirection.VOLATILE
        elif rate > 0:
            direction = TrendDirection.INCREASING
        elif rate < 0:
            direction = TrendDirection.DECREASING
        else:
            direction = TrendDirection.STABLE

        spread = statistics.pstdev(deltas) if len(deltas) > 1 else 0.0
        certainty = (1.0 / (1.0 + spread)) * min(1.0, len(deltas) / 5.0)
        return ConfidenceTrend(
            direction=direction,
            rate_of_change=round(rate, 4),
            historical_scores=scores,
            predicted_next_score=round(_clamp(scores[-1] + rate), 2),
            confidence_in_prediction=round(certainty, 4),
            diminishing_returns=len(deltas) >= 2 and all(d < self.min_improvement for d in deltas[-2:]),
        )


# =============================================================================
# Scorer
# =============================================================================

class ConfidenceScorer(Service):
    """
    Computes session confidence.

    Patterns come from an injected provider so historical matching is
    explicit; by default the configured pattern library (or none) is used.

    Example:
        scorer = ConfidenceScorer()
        score = scorer.score(session, history=session.raw_confidence_history)
        score.overall_confidence, score.threshold_analysis.proceed_recommendation
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        *,
        patterns: Optional[PatternProvider] = None,
        threshold_calculator: Optional[DynamicThresholdCalculator] = None,
    ) -> None:
        super().__init__(context)
        self.patterns = patterns or default_patterns(self.config.pattern_library_path)
        self.weights: Dict[str, float] = dict(self.config.factor_weights)
        self.threshold_calculator = threshold_calculator or DynamicThresholdCalculator()
        self.trend_analyzer = TrendAnalyzer(min_improvement=self.config.min_confidence_improvement)

    # ------------------------------------------------------------------
    # Initial estimate
    # ------------------------------------------------------------------

    def find_patterns(self, task: TaskContext) -> List[PatternMatch]:
        return self.patterns.find_similar(task)

    def initial_confidence(self, task: TaskContext, matches: Sequence[PatternMatch] = ()) -> Tuple[float, Dict[str, float]]:
        """
        Estimate confidence before any question is answered.

        Five factors, each needing evidence: requirement clarity (20),
        domain familiarity (5), inherited context (45), stakeholders (10)
        and business context (10).
        """
        requirements = [r for r in task.initial_requirements if r and r.strip()]
        if requirements:
            per_requirement = [
                0.4
                + (0.2 if len(r) > 50 else 0.0)
                + (0.2 if _DIGIT.search(r) else 0.0)
                + (0.2 if _TECHNICAL.search(r) else 0.0)
                for r in requirements
            ]
            clarity = 20.0 * statistics.fmean(per_requirement) * min(1.0, len(requirements) / 3.0)
        else:
            clarity = 0.0

        if matches:
            familiarity = 5.0
        elif task.domain.strip().lower() in FAMILIAR_DOMAINS:
            familiarity = 3.0
        else:
            familiarity = 0.0

        inherited = 25.0 + 0.2 * task.existing_context.richness if task.existing_context else 0.0
        stakeholders = min(10.0, 5.0 * len(task.stakeholders))
        business = 10.0 if task.business_context else 0.0

        factors = {
            "requirement_clarity": round(clarity, 2),
            "domain_familiarity": familiarity,
            "inherited_context": round(inherited, 2),
            "stakeholders": stakeholders,
            "business_context": business,
        }
        return round(min(100.0, sum(factors.values())), 2), factors

    # ------------------------------------------------------------------
    # Full score
    # ------------------------------------------------------------------

    def calculation_confidence(self, data_points: int) -> float:
        """Fewer data points give a more conservative multiplier (0.6 to 1.0)."""
        needed = max(1, self.config.min_data_points)
        return 0.6 + 0.4 * min(1.0, data_points / needed)

    def score(self, session: QuestioningSession, history: Optional[Sequence[float]] = None) -> ConfidenceScore:
        """
        Score a session.

        Args:
            session: The session snapshot to score
            history: Previous overall scores, oldest first, for trend analysis

        Raises:
            ScoringAnomalyError: if the computed score leaves 0-100
        """
        started = time.perf_counter()
        task = session.task_context
        evidence = collect_evidence(session)

        factors: List[ConfidenceFactor] = []
        for name, component in COMPONENTS.items():
            raw, method, supporting, concerns = component(evidence, task)
            normalized = _clamp(raw)
            weight = self.weights.get(name, 0.0)
            factors.append(
                ConfidenceFactor(
                    name=name,
                    weight=weight,
                    raw_score=round(raw, 4),
                    normalized_score=round(normalized, 4),
                    contribution=weight * normalized / 100.0,
                    assessment_method=method,
                    evidence=supporting,
                    concerns=concerns,
                )
            )

        calc_confidence = self.calculation_confidence(evidence.data_points)
        overall = 100.0 * sum(f.contribution for f in factors) * calc_confidence
        if math.isnan(overall) or overall < 0.0 or overall > 100.0:
            self.logger.error(
                "scoring_out_of_range",
                extra=self.log_extra(session_id=session.session_id, overall=overall),
            )
            raise ScoringAnomalyError(
                f"Overall confidence {overall} is outside 0-100",
                metadata={"session_id": session.session_id, "overall": overall},
            )
        overall = round(overall, 4)

        risk = self.risk_level(evidence, overall)
        matches = self.find_patterns(task)
        dynamic = self.threshold_calculator.calculate(task, session.target_confidence, risk, matches)
        trend = self.trend_analyzer.analyze([*(history or []), overall])
        proceed = self.proceed_recommendation(overall, session.target_confidence, evidence, trend)

        return ConfidenceScore(
            overall_confidence=overall,
            factors=factors,
            threshold_analysis=ThresholdAnalysis(
                current_threshold=session.target_confidence,
                recommended_threshold=dynamic.final_threshold,
                threshold_justification=dynamic.justification,
                risk_level=risk,
                proceed_recommendation=proceed,
            ),
            dynamic_threshold=dynamic,
            trend=trend,
            recommendations=self.recommendations(factors, evidence, dynamic, session.target_confidence, trend),
            metadata=CalculationMetadata(
                version=SCORER_VERSION,
                factors_used=[f.name for f in factors],
                calculation_ms=round((time.perf_counter() - started) * 1000.0, 3),
                data_points=evidence.data_points,
                data_quality_score=round(100.0 * evidence.mean_answer_confidence, 2),
                calculation_confidence=round(calc_confidence, 4),
            ),
        )

    @staticmethod
    def risk_level(evidence: ScoringEvidence, overall: float) -> RiskLevel:
        if evidence.open_critical_gaps or overall < 50:
            return RiskLevel.HIGH
        if evidence.open_high_gaps > 2 or overall < 70:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def proceed_recommendation(
        overall: float,
        target: float,
        evidence: ScoringEvidence,
        trend: ConfidenceTrend,
    ) -> ProceedRecommendation:
        if overall >= target and not evidence.open_critical_gaps:
            return ProceedRecommendation.PROCEED
        stalled = trend.direction in (TrendDirection.STABLE, TrendDirection.DECREASING)
        if trend.diminishing_returns or (evidence.open_critical_gaps and stalled and len(trend.historical_scores) > 1):
            return ProceedRecommendation.PAUSE_FOR_CLARIFICATION
        return ProceedRecommendation.CONTINUE_QUESTIONING

    @staticmethod
    def recommendations(
        factors: Sequence[ConfidenceFactor],
        evidence: ScoringEvidence,
        dynamic: DynamicThreshold,
        target: float,
        trend: ConfidenceTrend,
    ) -> List[ConfidenceRecommendation]:
        out: List[ConfidenceRecommendation] = []
        weak = sorted((f for f in factors if f.normalized_score < 60 and f.weight > 0), key=lambda f: f.normalized_score)
        for factor in weak[:3]:
            out.append(
                ConfidenceRecommendation(
                    type=RecommendationType.IMPROVEMENT,
                    priority=Priority.HIGH if factor.normalized_score < 40 else Priority.MEDIUM,
                    description=f"Improve {factor.name.replace('_', ' ')} ({factor.normalized_score:.0f}/100)",
                    expected_impact=round(factor.weight * (80.0 - factor.normalized_score), 2),
                    actions=list(_IMPROVEMENT_ACTIONS.get(factor.name, [])),
                )
            )
        if evidence.open_critical_gaps:
            out.append(
                ConfidenceRecommendation(
                    type=RecommendationType.RISK_MITIGATION,
                    priority=Priority.CRITICAL,
                    description=f"Resolve {evidence.open_critical_gaps} critical gaps before proceeding",
                    expected_impact=15.0 * evidence.open_critical_gaps,
                    actions=["Ask the stakeholder who owns each gap"],
                )
            )
        if abs(dynamic.final_threshold - target) >= 1.0:
            out.append(
                ConfidenceRecommendation(
                    type=RecommendationType.THRESHOLD_ADJUSTMENT,
                    priority=Priority.LOW,
                    description=f"Consider a threshold of {dynamic.final_threshold:g} instead of {target:g}",
                    expected_impact=abs(dynamic.final_threshold - target),
                    actions=list(dynamic.justification),
                )
            )
        if trend.diminishing_returns:
            out.append(
                ConfidenceRecommendation(
                    type=RecommendationType.PROCESS_OPTIMIZATION,
                    priority=Priority.HIGH,
                    description="Further questions add little confidence; escalate to a stakeholder",
                    expected_impact=0.0,
                    actions=["Pause the session", "Review open gaps with a decision maker"],
                )
            )
        out.sort(key=lambda r: r.priority.rank, reverse=True)
        return out
