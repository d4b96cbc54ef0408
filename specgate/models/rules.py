"""
SpecGate Rule Models

Inputs, parameters and outputs of the rule engine. Parameters are pydantic
models so amendments are validated the same way a rulebook file is.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from specgate.models.session import Severity, utc_now


class RuleFamily(str, Enum):
    TEST_DISCIPLINE = "test_discipline"
    QUESTIONING_COMPLETENESS = "questioning_completeness"
    CONTEXT_SIZE = "context_size"
    QUALITY_GATE = "quality_gate"
    VALIDATION_GATE = "validation_gate"


class TDDPhase(str, Enum):
    RED = "red"
    GREEN = "green"
    REFACTOR = "refactor"


class AmendmentStatus(str, Enum):
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


# Rule inputs

@dataclass
class TDDInput:
    has_tests: bool
    tests_are_failing: bool = False
    coverage: float = 0.0
    phase: TDDPhase = TDDPhase.GREEN


@dataclass
class QuestioningInput:
    confidence: float
    questions_asked: int = 0
    gaps_identified: List[str] = field(default_factory=list)
    edge_cases_found: List[str] = field(default_factory=list)


@dataclass
class ContextInput:
    context_lines: int
    has_decision_log: bool = False
    has_patterns: bool = False
    is_embedded: bool = False
    has_external_dependencies: bool = False
    confidence: Optional[float] = None


@dataclass
class PerformanceMetrics:
    sharding_reduction: float = 0.0
    context_lookup_reduction: float = 0.0
    implementation_time_reduction: float = 0.0


@dataclass
class QualityInput:
    test_coverage: float
    has_code_review: bool = False
    follows_naming_conventions: bool = True
    has_code_smells: bool = False
    has_documentation: bool = True
    performance: Optional[PerformanceMetrics] = None


@dataclass
class ValidationInput:
    pre_implementation_validated: bool
    post_implementation_validated: bool
    ci_checks_passed: bool
    no_regressions: bool
    constitutionally_compliant: bool


@dataclass
class RuleInputs:
    """Per-family inputs; families without input are not evaluated."""
    test_discipline: Optional[TDDInput] = None
    questioning: Optional[QuestioningInput] = None
    context: Optional[ContextInput] = None
    quality: Optional[QualityInput] = None
    validation: Optional[ValidationInput] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleInputs":
        """Build inputs from plain data (YAML/JSON payloads)."""
        tdd = data.get("test_discipline")
        quality = data.get("quality")
        if tdd and "phase" in tdd:
            tdd = {**tdd, "phase": TDDPhase(tdd["phase"])}
        if quality and isinstance(quality.get("performance"), dict):
            quality = {**quality, "performance": PerformanceMetrics(**quality["performance"])}
        return cls(
            test_discipline=TDDInput(**tdd) if tdd else None,
            questioning=QuestioningInput(**data["questioning"]) if data.get("questioning") else None,
            context=ContextInput(**data["context"]) if data.get("context") else None,
            quality=QualityInput(**quality) if quality else None,
            validation=ValidationInput(**data["validation"]) if data.get("validation") else None,
        )


# Rule parameters

class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class TDDParams(_Params):
    enabled: bool = True
    minimum_coverage: float = Field(default=80.0, ge=0, le=100)
    require_failing_first: bool = True


class QuestioningParams(_Params):
    enabled: bool = True
    minimum_confidence: float = Field(default=85.0, ge=0, le=100)


class ContextParams(_Params):
    enabled: bool = True
    minimum_lines: int = Field(default=200, ge=0)
    maximum_lines: int = Field(default=2000, ge=1)
    adaptive: bool = True
    high_confidence_minimum: int = Field(default=200, ge=0)
    medium_confidence_minimum: int = Field(default=500, ge=0)
    low_confidence_minimum: int = Field(default=1000, ge=0)
    require_decision_log: bool = True
    require_patterns: bool = True
    require_embedding: bool = True

    @model_validator(mode="after")
    def _band_is_ordered(self) -> "ContextParams":
        if self.minimum_lines > self.maximum_lines:
            raise ValueError("minimum_lines cannot exceed maximum_lines")
        return self


class PerformanceTargets(_Params):
    sharding_reduction: float = Field(default=70.0, ge=0, le=100)
    context_lookup_reduction: float = Field(default=60.0, ge=0, le=100)
    implementation_time_reduction: float = Field(default=30.0, ge=0, le=100)


class QualityParams(_Params):
    enabled: bool = True
    minimum_coverage: float = Field(default=80.0, ge=0, le=100)
    require_code_review: bool = True
    performance: PerformanceTargets = Field(default_factory=PerformanceTargets)
    enforce_naming_conventions: bool = True
    forbid_code_smells: bool = True
    require_documentation: bool = True


class ValidationParams(_Params):
    enabled: bool = True
    require_pre_implementation: bool = True
    require_post_implementation: bool = True
    require_ci: bool = True
    require_no_regressions: bool = True


class Principle(_Params):
    id: str
    name: str
    description: str
    family: RuleFamily
    immutable: bool = False
    parameters: str = Field(description="Rulebook section holding this principle's parameters")


DEFAULT_PRINCIPLES: List[Principle] = [
    Principle(
        id="tdd-first",
        name="Test-Driven Development",
        description="Tests are written and seen failing before implementation.",
        family=RuleFamily.TEST_DISCIPLINE,
        immutable=True,
        parameters="test_discipline",
    ),
    Principle(
        id="questioning-completeness",
        name="Questioning Completeness",
        description="Implementation starts only once requirement confidence reaches the threshold.",
        family=RuleFamily.QUESTIONING_COMPLETENESS,
        immutable=True,
        parameters="questioning",
    ),
    Principle(
        id="context-embedding",
        name="Context Embedding",
        description="Work carries a self-contained context of bounded size.",
        family=RuleFamily.CONTEXT_SIZE,
        immutable=False,
        parameters="context",
    ),
    Principle(
        id="quality-gates",
        name="Quality Gates",
        description="Coverage, review, performance and style targets are met.",
        family=RuleFamily.QUALITY_GATE,
        immutable=False,
        parameters="quality",
    ),
    Principle(
        id="validation-first",
        name="Validation First",
        description="Work is validated before and after implementation.",
        family=RuleFamily.VALIDATION_GATE,
        immutable=True,
        parameters="validation",
    ),
]


class Rulebook(_Params):
    """The full rule configuration: principles plus per-family parameters."""
    version: str = "1.0.0"
    principles: List[Principle] = Field(default_factory=lambda: [p.model_copy() for p in DEFAULT_PRINCIPLES])
    test_discipline: TDDParams = Field(default_factory=TDDParams)
    questioning: QuestioningParams = Field(default_factory=QuestioningParams)
    context: ContextParams = Field(default_factory=ContextParams)
    quality: QualityParams = Field(default_factory=QualityParams)
    validation: ValidationParams = Field(default_factory=ValidationParams)

    def get_principle(self, rule_id: str) -> Optional[Principle]:
        for principle in self.principles:
            if principle.id == rule_id:
                return principle
        return None

    def principle_for(self, family: RuleFamily) -> Principle:
        for principle in self.principles:
            if principle.family == family:
                return principle
        raise KeyError(family)


# Rule outputs

@dataclass
class Violation:
    """
    A rule breach. Identifiers derive from rule and check so repeated
    evaluations of the same inputs compare equal.
    """
    id: str
    family: RuleFamily
    rule_id: str
    severity: Severity
    description: str
    blocked: bool
    resolution: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=utc_now, compare=False)

    @property
    def is_blocking(self) -> bool:
        return self.blocked and self.severity == Severity.CRITICAL

    def asdict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["family"] = self.family.value
        data["severity"] = self.severity.value
        data["detected_at"] = self.detected_at.isoformat()
        return data


@dataclass
class EvaluationResult:
    violations: List[Violation] = field(default_factory=list)
    families_evaluated: List[RuleFamily] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return not self.violations

    @property
    def blocking_violations(self) -> List[Violation]:
        return [v for v in self.violations if v.is_blocking]

    def by_family(self, family: RuleFamily) -> List[Violation]:
        return [v for v in self.violations if v.family == family]


@dataclass
class Amendment:
    id: str
    rule_id: str
    proposed_by: str
    change: Dict[str, Any]
    rationale: str
    status: AmendmentStatus
    reason: str = ""
    proposed_at: datetime = field(default_factory=utc_now)


@dataclass
class AmendmentResult:
    accepted: bool
    reason: str
    amendment: Amendment
