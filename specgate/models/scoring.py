"""
SpecGate Scoring Models

Results of the confidence scorer: per-factor breakdown, threshold analysis,
trend and recommendations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List

from specgate.models.session import Priority, utc_now


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProceedRecommendation(str, Enum):
    PROCEED = "proceed"
    CONTINUE_QUESTIONING = "continue_questioning"
    PAUSE_FOR_CLARIFICATION = "pause_for_clarification"


class RecommendationType(str, Enum):
    IMPROVEMENT = "improvement"
    RISK_MITIGATION = "risk_mitigation"
    THRESHOLD_ADJUSTMENT = "threshold_adjustment"
    PROCESS_OPTIMIZATION = "process_optimization"


@dataclass
class ConfidenceFactor:
    name: str
    weight: float
    raw_score: float
    normalized_score: float
    contribution: float
    assessment_method: str
    evidence: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)


@dataclass
class DynamicThreshold:
    base_threshold: float
    risk_adjustment: float
    complexity_adjustment: float
    historical_adjustment: float
    stakeholder_adjustment: float
    final_threshold: float
    justification: List[str] = field(default_factory=list)


@dataclass
class ThresholdAnalysis:
    current_threshold: float
    recommended_threshold: float
    threshold_justification: List[str]
    risk_level: RiskLevel
    proceed_recommendation: ProceedRecommendation


@dataclass
class ConfidenceTrend:
    direction: TrendDirection
    rate_of_change: float
    historical_scores: List[float]
    predicted_next_score: float
    confidence_in_prediction: float
    diminishing_returns: bool = False


@dataclass
class ConfidenceRecommendation:
    type: RecommendationType
    priority: Priority
    description: str
    expected_impact: float
    actions: List[str] = field(default_factory=list)


@dataclass
class CalculationMetadata:
    version: str
    factors_used: List[str]
    calculation_ms: float
    data_points: int
    data_quality_score: float
    calculation_confidence: float
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class ConfidenceScore:
    overall_confidence: float
    factors: List[ConfidenceFactor]
    threshold_analysis: ThresholdAnalysis
    dynamic_threshold: DynamicThreshold
    trend: ConfidenceTrend
    recommendations: List[ConfidenceRecommendation]
    metadata: CalculationMetadata

    def factor(self, name: str) -> ConfidenceFactor:
        for item in self.factors:
            if item.name == name:
                return item
        raise KeyError(name)

    @property
    def component_scores(self) -> Dict[str, float]:
        return {f.name: f.normalized_score for f in self.factors}


@dataclass
class ReadinessAssessment:
    ready: bool
    blocking_issues: List[str] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)


@dataclass
class SessionAnalysis:
    """Snapshot view of where a session stands."""
    overall_confidence: float
    category_confidence: Dict[str, float]
    gap_analysis: Dict[str, int]
    readiness: ReadinessAssessment
