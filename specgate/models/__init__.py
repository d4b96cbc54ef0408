"""
SpecGate Models

Dataclasses and enums for sessions, ambiguity findings, scoring results and
rule evaluation, plus pydantic rule parameters.
"""

from specgate.models.session import (
    # Enums
    SessionPhase,
    SessionStatus,
    QuestionType,
    QuestionCategory,
    Severity,
    Priority,
    ExpectedAnswerType,
    TriggerOperator,
    ComplexityLevel,
    PHASE_ORDER,
    # Task context
    InheritedContext,
    BusinessContext,
    TechnicalContext,
    TaskContext,
    # Session records
    FollowUpTrigger,
    Question,
    Answer,
    RequirementGap,
    EdgeCase,
    PhaseChange,
    QuestioningSession,
)

from specgate.models.ambiguity import (
    AmbiguityType,
    AmbiguityStatus,
    ContradictionType,
    TermAction,
    TextLocation,
    Ambiguity,
    ResolutionRecord,
    ContradictoryStatement,
    ClarificationQuestion,
    TermMeaning,
    DomainTerm,
    DetectionResult,
    AmbiguityAnalysis,
)

from specgate.models.scoring import (
    TrendDirection,
    RiskLevel,
    ProceedRecommendation,
    RecommendationType,
    ConfidenceFactor,
    DynamicThreshold,
    ThresholdAnalysis,
    ConfidenceTrend,
    ConfidenceRecommendation,
    CalculationMetadata,
    ConfidenceScore,
    ReadinessAssessment,
    SessionAnalysis,
)

from specgate.models.rules import (
    RuleFamily,
    TDDPhase,
    AmendmentStatus,
    TDDInput,
    QuestioningInput,
    ContextInput,
    PerformanceMetrics,
    QualityInput,
    ValidationInput,
    RuleInputs,
    TDDParams,
    QuestioningParams,
    ContextParams,
    PerformanceTargets,
    QualityParams,
    ValidationParams,
    Principle,
    Rulebook,
    Violation,
    EvaluationResult,
    Amendment,
    AmendmentResult,
)

__all__ = [
    "SessionPhase", "SessionStatus", "QuestionType", "QuestionCategory", "Severity",
    "Priority", "ExpectedAnswerType", "TriggerOperator", "ComplexityLevel", "PHASE_ORDER",
    "InheritedContext", "BusinessContext", "TechnicalContext", "TaskContext",
    "FollowUpTrigger", "Question", "Answer", "RequirementGap", "EdgeCase", "PhaseChange",
    "QuestioningSession",
    "AmbiguityType", "AmbiguityStatus", "ContradictionType", "TermAction", "TextLocation",
    "Ambiguity", "ResolutionRecord", "ContradictoryStatement", "ClarificationQuestion",
    "TermMeaning", "DomainTerm", "DetectionResult", "AmbiguityAnalysis",
    "TrendDirection", "RiskLevel", "ProceedRecommendation", "RecommendationType",
    "ConfidenceFactor", "DynamicThreshold", "ThresholdAnalysis", "ConfidenceTrend",
    "ConfidenceRecommendation", "CalculationMetadata", "ConfidenceScore",
    "ReadinessAssessment", "SessionAnalysis",
    "RuleFamily", "TDDPhase", "AmendmentStatus", "TDDInput", "QuestioningInput",
    "ContextInput", "PerformanceMetrics", "QualityInput", "ValidationInput", "RuleInputs",
    "TDDParams", "QuestioningParams", "ContextParams", "PerformanceTargets",
    "QualityParams", "ValidationParams", "Principle", "Rulebook", "Violation",
    "EvaluationResult", "Amendment", "AmendmentResult",
]
