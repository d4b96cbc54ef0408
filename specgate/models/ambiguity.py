"""
SpecGate Ambiguity Models

Records produced by the ambiguity detector. Ambiguities are owned by the
detector that found them and only referenced from sessions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from specgate.models.session import Severity, utc_now


class AmbiguityType(str, Enum):
    VAGUE_TERM = "vague_term"
    OVERLOADED_TERM = "overloaded_term"
    MISSING_CONTEXT = "missing_context"
    CONTRADICTION = "contradiction"
    INCOMPLETE_REQUIREMENT = "incomplete_requirement"
    SUBJECTIVE_CRITERIA = "subjective_criteria"
    UNDEFINED_RELATIONSHIP = "undefined_relationship"


class AmbiguityStatus(str, Enum):
    DETECTED = "detected"
    CLARIFYING = "clarifying"
    RESOLVED = "resolved"
    IGNORED = "ignored"

    @property
    def is_final(self) -> bool:
        return self in (AmbiguityStatus.RESOLVED, AmbiguityStatus.IGNORED)


class ContradictionType(str, Enum):
    DIRECT = "direct"
    IMPLICIT = "implicit"


class TermAction(str, Enum):
    """Recommended handling for an overloaded term."""
    DEFINE_CLEARLY = "define_clearly"
    USE_SPECIFIC_TERMS = "use_specific_terms"
    CREATE_GLOSSARY = "create_glossary"


@dataclass(frozen=True)
class TextLocation:
    """Where in the analysed statements a finding was made."""
    statement_index: int
    start: int
    end: int
    excerpt: str


@dataclass
class Ambiguity:
    id: str
    type: AmbiguityType
    severity: Severity
    description: str
    location: TextLocation
    ambiguity_score: float
    suggested_questions: List[str] = field(default_factory=list)
    suggested_resolutions: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    status: AmbiguityStatus = AmbiguityStatus.DETECTED
    detected_at: datetime = field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None


@dataclass(frozen=True)
class ResolutionRecord:
    ambiguity_id: str
    from_status: AmbiguityStatus
    to_status: AmbiguityStatus
    actor: str
    notes: str
    at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ContradictoryStatement:
    statement_1: str
    statement_2: str
    contradiction_type: ContradictionType
    severity: str = "major"
    resolution_approach: str = "Clarify which requirement takes precedence"
    stakeholders_to_involve: tuple = ("Product Owner", "Business Analyst")


@dataclass(frozen=True)
class ClarificationQuestion:
    id: str
    ambiguity_id: str
    question: str
    question_type: str
    context: str
    urgency: str
    stakeholder_role: str
    expected_answer_format: str
    validation_criteria: tuple = ()


@dataclass(frozen=True)
class TermMeaning:
    definition: str
    context: str
    frequency: float
    stakeholder_groups: tuple = ()


@dataclass(frozen=True)
class DomainTerm:
    """A surface term that means different things to different people."""
    term: str
    meanings: tuple
    domain_specificity: float = 50.0

    @property
    def confusion_score(self) -> float:
        """
        Confusion potential from meaning count and how evenly usage is spread.

        Each extra meaning adds 30; a dominant meaning (high usage share)
        reduces the remaining 40 points proportionally.
        """
        count = len(self.meanings)
        if count < 2:
            return 0.0
        total = sum(max(0.0, m.frequency) for m in self.meanings) or 1.0
        dominant = max(max(0.0, m.frequency) for m in self.meanings) / total
        return min(100.0, 30.0 * (count - 1) + 40.0 * (1.0 - dominant))


@dataclass
class DetectionResult:
    """Output of one detector pass over a set of statements."""
    statements: List[str]
    ambiguities: List[Ambiguity]
    clarification_questions: List[ClarificationQuestion]
    contradictions: List[ContradictoryStatement]
    clarity_score: float

    def by_type(self, ambiguity_type: AmbiguityType) -> List[Ambiguity]:
        return [a for a in self.ambiguities if a.type == ambiguity_type]


@dataclass
class AmbiguityAnalysis:
    total: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    clarity_score: float
    high_risk_areas: List[str]
    clarification_priorities: List[ClarificationQuestion]
    resolution_tracking: Dict[str, float]
    recommendations: List[str]
