"""
SpecGate Session Models

Data classes for a questioning session and everything it owns: questions,
answers, requirement gaps and edge cases. The session is the only owner of
these records; questions and answers are frozen once created.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Enums

class SessionPhase(str, Enum):
    """Questioning phases, in the only order a session may visit them."""
    TRIAGE = "triage"
    EXPLORATION = "exploration"
    VALIDATION = "validation"
    REFINEMENT = "refinement"
    COMPLETION = "completion"

    @property
    def order(self) -> int:
        return PHASE_ORDER.index(self)

    def successor(self) -> Optional["SessionPhase"]:
        idx = self.order
        if idx + 1 < len(PHASE_ORDER):
            return PHASE_ORDER[idx + 1]
        return None


PHASE_ORDER: Tuple[SessionPhase, ...] = (
    SessionPhase.TRIAGE,
    SessionPhase.EXPLORATION,
    SessionPhase.VALIDATION,
    SessionPhase.REFINEMENT,
    SessionPhase.COMPLETION,
)


class SessionStatus(str, Enum):
    """Session status values."""
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.TIMED_OUT)


class QuestionType(str, Enum):
    CLARIFICATION = "clarification"
    EXPLORATION = "exploration"
    VALIDATION = "validation"
    EDGE_CASE = "edge_case"
    CONSTRAINT = "constraint"
    ASSUMPTION = "assumption"
    INTEGRATION = "integration"
    PERFORMANCE = "performance"
    SECURITY = "security"
    USABILITY = "usability"
    BUSINESS_RULE = "business_rule"
    WORKFLOW = "workflow"
    ERROR_HANDLING = "error_handling"


class QuestionCategory(str, Enum):
    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non_functional"
    TECHNICAL = "technical"
    BUSINESS = "business"
    USER_EXPERIENCE = "user_experience"
    INTEGRATION = "integration"
    COMPLIANCE = "compliance"
    TESTING = "testing"
    DEPLOYMENT = "deployment"
    MAINTENANCE = "maintenance"


class Severity(str, Enum):
    """Severity (and priority) scale shared by gaps, edge cases and findings."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, values: List["Severity"]) -> "Severity":
        return max(values, key=lambda s: s.rank) if values else cls.LOW


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}

# Questions and edge cases are prioritized on the same scale.
Priority = Severity


class ExpectedAnswerType(str, Enum):
    TEXT = "text"
    CHOICE = "choice"
    BOOLEAN = "boolean"
    NUMERIC = "numeric"
    STRUCTURED = "structured"


class TriggerOperator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


# Task context

@dataclass
class InheritedContext:
    """Decisions, patterns and insights carried over from earlier work."""
    decisions: List[str] = field(default_factory=list)
    successful_patterns: List[str] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    technical_context: Dict[str, Any] = field(default_factory=dict)
    source_phase: Optional[str] = None
    relevance_score: float = 1.0

    @property
    def richness(self) -> float:
        """0-100 estimate of how much usable context was inherited."""
        raw = (
            10 * len(self.decisions)
            + 10 * len(self.successful_patterns)
            + 5 * len(self.insights)
            + 5 * len(self.technical_context)
        )
        relevance = min(1.0, max(0.0, self.relevance_score))
        return min(100.0, raw) * relevance


@dataclass
class BusinessContext:
    business_domain: str = ""
    user_personas: List[str] = field(default_factory=list)
    business_rules: List[str] = field(default_factory=list)
    compliance_requirements: List[str] = field(default_factory=list)
    success_metrics: List[str] = field(default_factory=list)


@dataclass
class TechnicalContext:
    existing_systems: List[str] = field(default_factory=list)
    technology_stack: List[str] = field(default_factory=list)
    performance_requirements: List[str] = field(default_factory=list)
    scalability_requirements: List[str] = field(default_factory=list)
    integration_points: List[str] = field(default_factory=list)


@dataclass
class TaskContext:
    """Everything the caller knows about the unit of work up front."""
    task_id: str
    task_description: str
    initial_requirements: List[str] = field(default_factory=list)
    domain: str = ""
    complexity_level: ComplexityLevel = ComplexityLevel.MEDIUM
    stakeholders: List[str] = field(default_factory=list)
    existing_context: Optional[InheritedContext] = None
    business_context: Optional[BusinessContext] = None
    technical_context: Optional[TechnicalContext] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskContext":
        """Build a context from plain data (YAML/JSON payloads)."""
        existing = data.get("existing_context")
        business = data.get("business_context")
        technical = data.get("technical_context")
        return cls(
            task_id=str(data["task_id"]),
            task_description=str(data.get("task_description", "")),
            initial_requirements=list(data.get("initial_requirements") or []),
            domain=str(data.get("domain") or ""),
            complexity_level=ComplexityLevel(data.get("complexity_level", "medium")),
            stakeholders=list(data.get("stakeholders") or []),
            existing_context=InheritedContext(**existing) if existing else None,
            business_context=BusinessContext(**business) if business else None,
            technical_context=TechnicalContext(**technical) if technical else None,
        )

    @property
    def statements(self) -> List[str]:
        """Requirement statements known before any question is asked."""
        items = [self.task_description] if self.task_description.strip() else []
        items.extend(r for r in self.initial_requirements if r and r.strip())
        return items


# Questions and answers

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass(frozen=True)
class FollowUpTrigger:
    """A rule that asks more questions when an answer matches a condition."""
    condition: str
    operator: TriggerOperator
    value: Any
    follow_up_questions: Tuple[str, ...] = ()

    def matches(self, answer_text: str, answer_data: Optional[Dict[str, Any]] = None) -> bool:
        text = (answer_text or "").strip().lower()
        if self.operator == TriggerOperator.CONTAINS:
            words = self.value if isinstance(self.value, (list, tuple)) else [self.value]
            return any(re.search(rf"\b{re.escape(str(w).lower())}\b", text) for w in words)
        if self.operator == TriggerOperator.EQUALS:
            return text == str(self.value).strip().lower()
        if self.operator == TriggerOperator.NOT_EQUALS:
            return text != str(self.value).strip().lower()

        number = _numeric_value(text, answer_data, self.condition)
        if number is None:
            return False
        if self.operator == TriggerOperator.GREATER_THAN:
            return number > float(self.value)
        return number < float(self.value)


def _numeric_value(text: str, data: Optional[Dict[str, Any]], key: str) -> Optional[float]:
    if data and isinstance(data.get(key), (int, float)):
        return float(data[key])
    match = _NUMBER.search(text)
    return float(match.group()) if match else None


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    type: QuestionType
    category: QuestionCategory
    priority: Priority
    reasoning: str
    expected_answer_type: ExpectedAnswerType
    phase: SessionPhase
    follow_up_triggers: Tuple[FollowUpTrigger, ...] = ()
    gap_addresses: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now, compare=False)


@dataclass(frozen=True)
class Answer:
    question_id: str
    answer_text: str
    answer_data: Optional[Dict[str, Any]] = None
    confidence_level: float = 0.0
    timestamp: datetime = field(default_factory=utc_now, compare=False)
    follow_up_questions_generated: Tuple[str, ...] = ()
    clarifications_needed: Tuple[str, ...] = ()
    assumptions_identified: Tuple[str, ...] = ()


# Gaps and edge cases

@dataclass
class RequirementGap:
    """
    A missing piece of information.

    Gaps are never deleted; closing one records which answer or ambiguity
    resolution addressed it. Gaps raised from detector findings keep the
    ids of those findings.
    """
    id: str
    category: str
    description: str
    severity: Severity
    discovered_in_phase: SessionPhase
    questions_needed: List[str] = field(default_factory=list)
    potential_impact: str = ""
    source: str = "task_context"
    ambiguity_ids: List[str] = field(default_factory=list)
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.closed_by is None


@dataclass
class EdgeCase:
    id: str
    category: str
    scenario: str
    trigger_conditions: List[str]
    expected_behavior: str
    priority: Priority
    testing_strategy: str
    discovered_in_phase: SessionPhase
    questions_generated: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PhaseChange:
    from_phase: Optional[SessionPhase]
    to_phase: SessionPhase
    confidence: float
    at: datetime = field(default_factory=utc_now)


# Session

@dataclass
class QuestioningSession:
    """
    One tracked questioning lifecycle for a unit of work.

    Mutated only by the questioning engine. Phase moves forward only;
    COMPLETED and TIMED_OUT are terminal.
    """
    session_id: str
    task_context: TaskContext
    target_confidence: float
    session_start: datetime
    current_phase: SessionPhase = SessionPhase.TRIAGE
    status: SessionStatus = SessionStatus.ACTIVE
    confidence_score: float = 0.0
    initial_confidence: float = 0.0
    questions_asked: List[Question] = field(default_factory=list)
    answers_received: List[Answer] = field(default_factory=list)
    identified_gaps: List[RequirementGap] = field(default_factory=list)
    edge_cases: List[EdgeCase] = field(default_factory=list)
    # Detector findings are referenced here, owned by an AmbiguityRegistry.
    ambiguity_ids: List[str] = field(default_factory=list)
    session_duration: float = 0.0
    last_activity: Optional[datetime] = None
    phase_history: List[PhaseChange] = field(default_factory=list)
    confidence_history: List[float] = field(default_factory=list)
    raw_confidence_history: List[float] = field(default_factory=list)
    historical_pattern_matches: int = 0
    last_score: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def answered_question_ids(self) -> List[str]:
        return [a.question_id for a in self.answers_received]

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions_asked:
            if question.id == question_id:
                return question
        return None

    def open_questions(self) -> List[Question]:
        answered = set(self.answered_question_ids)
        return [q for q in self.questions_asked if q.id not in answered]

    def open_gaps(self, severity: Optional[Severity] = None) -> List[RequirementGap]:
        return [
            g for g in self.identified_gaps
            if g.is_open and (severity is None or g.severity == severity)
        ]

    def get_gap(self, gap_id: str) -> Optional[RequirementGap]:
        for gap in self.identified_gaps:
            if gap.id == gap_id:
                return gap
        return None
