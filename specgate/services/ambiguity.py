"""
SpecGate Ambiguity Detector

Finds vague, overloaded, contradictory and incomplete wording in free-text
requirement statements. Detection is regex and keyword based, deterministic,
and produces typed findings plus deduplicated clarification questions.
"""

import itertools
import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from specgate.errors import AmbiguityNotFoundError, InvalidTransitionError
from specgate.models.ambiguity import (
    Ambiguity,
    AmbiguityAnalysis,
    AmbiguityStatus,
    AmbiguityType,
    ClarificationQuestion,
    ContradictionType,
    ContradictoryStatement,
    DetectionResult,
    ResolutionRecord,
    TermAction,
    TextLocation,
)
from specgate.logging import get_logger, log_extra
from specgate.models.session import Severity, utc_now
from specgate.services.base import Service, ServiceContext
from specgate.services.events import AmbiguityStatusChanged, EventBus, get_event_bus
from specgate.services.providers import GlossaryProvider, default_glossary, keywords

logger = get_logger(__name__)


# =============================================================================
# Detection tables
# =============================================================================

@dataclass(frozen=True)
class VaguePattern:
    pattern: Pattern[str]
    ambiguity_score: float
    severity_base: float
    label: str


VAGUE_PATTERNS: Tuple[VaguePattern, ...] = (
    VaguePattern(re.compile(r"\b(good|better|best|nice|clean|intuitive)\b", re.I), 75, 60, "quality descriptor"),
    VaguePattern(re.compile(r"\b(fast|slow|quick|efficient|optimal)\b", re.I), 80, 70, "performance descriptor"),
    VaguePattern(re.compile(r"\b(easy|simple|complex|difficult)\b", re.I), 70, 55, "complexity descriptor"),
    VaguePattern(re.compile(r"\b(many|few|several|most|some)\b", re.I), 85, 75, "quantity descriptor"),
)

SUBJECTIVE_TERMS: Tuple[str, ...] = (
    "good", "bad", "better", "best", "nice", "clean", "intuitive",
    "user-friendly", "easy", "fast", "slow", "efficient", "optimal",
)
_SUBJECTIVE = re.compile(r"(?<![\w-])(" + "|".join(re.escape(t) for t in SUBJECTIVE_TERMS) + r")(?![\w-])", re.I)

# A number this close to a vague word counts as a qualifier ("fast, under 200 ms").
_QUALIFIER_WINDOW_BEFORE = 15
_QUALIFIER_WINDOW_AFTER = 25
_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class ContextCategory:
    name: str
    label: str
    pattern: Pattern[str]
    severity: Severity
    ambiguity_score: float
    questions: Tuple[str, ...]
    information_sources: Tuple[str, ...]


CONTEXT_CATEGORIES: Tuple[ContextCategory, ...] = (
    ContextCategory(
        name="business",
        label="business rule",
        pattern=re.compile(r"\b(business|rules?|polic(?:y|ies)|constraints?|goals?|objectives?)\b", re.I),
        severity=Severity.HIGH,
        ambiguity_score=75,
        questions=(
            "What business rule or policy governs this requirement?",
            "What business goal does this requirement serve?",
            "Which constraints from the business side apply here?",
        ),
        information_sources=("Business stakeholders", "Policy documents", "Domain experts"),
    ),
    ContextCategory(
        name="technical",
        label="technical constraint",
        pattern=re.compile(r"\b(integrat\w*|apis?|databases?|systems?|performance|security)\b", re.I),
        severity=Severity.HIGH,
        ambiguity_score=80,
        questions=(
            "Which systems or components are involved?",
            "What technical constraints (performance, security, data) apply?",
            "Are there existing interfaces or schemas that must be respected?",
        ),
        information_sources=("Technical architects", "System documentation", "Existing codebase"),
    ),
    ContextCategory(
        name="user",
        label="user workflow",
        pattern=re.compile(r"\b(users?|customers?|interfaces?|workflows?|experiences?)\b", re.I),
        severity=Severity.MEDIUM,
        ambiguity_score=65,
        questions=(
            "Which user roles are affected?",
            "What does the user's workflow look like step by step?",
            "What should the user see when something goes wrong?",
        ),
        information_sources=("UX research", "User personas", "Support tickets"),
    ),
)

_CAPITALIZED = re.compile(r"\b[A-Z][a-z]+\b")
_NUMBERS = re.compile(r"\b\d+(?:\.\d+)?\b")
_WH_WORDS = re.compile(r"\b(?:when|where|how|why|which|what)\b", re.I)

CONTRADICTION_PAIRS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...], ContradictionType], ...] = (
    (("must", "required"), ("optional", "may"), ContradictionType.DIRECT),
    (("always", "never"), ("sometimes", "occasionally"), ContradictionType.DIRECT),
    (("all", "every"), ("some", "partial"), ContradictionType.IMPLICIT),
)
_CONTRADICTION_WORDS = frozenset(w for pair in CONTRADICTION_PAIRS for group in pair[:2] for w in group)

_ACTOR = re.compile(
    r"\b(users?|system|admins?|administrators?|customers?|clients?|services?|operators?|"
    r"applications?|app|teams?|api)\b",
    re.I,
)
_ACTION = re.compile(r"\b(will|should|must|shall|can|needs? to|has to|have to)\b", re.I)
MIN_REQUIREMENT_LENGTH = 50

_RELATIONSHIP = re.compile(r"\b(integrat\w*|connect\w*|sync\w*|interfac\w*|communicat\w*|depend\w*|trigger\w*)\b", re.I)
_RELATIONSHIP_DETAIL = re.compile(r"\b(protocol|format|api|endpoint|method|data|frequency)\b", re.I)

# Clarification-question metadata per finding type.
STAKEHOLDER_ROLES: Dict[AmbiguityType, str] = {
    AmbiguityType.VAGUE_TERM: "Product Owner",
    AmbiguityType.OVERLOADED_TERM: "Domain Expert",
    AmbiguityType.MISSING_CONTEXT: "Business Analyst",
    AmbiguityType.CONTRADICTION: "Product Owner",
    AmbiguityType.INCOMPLETE_REQUIREMENT: "Business Analyst",
    AmbiguityType.SUBJECTIVE_CRITERIA: "UX Designer",
    AmbiguityType.UNDEFINED_RELATIONSHIP: "Technical Architect",
}

ANSWER_FORMATS: Dict[AmbiguityType, str] = {
    AmbiguityType.VAGUE_TERM: "Measurable criteria with specific values",
    AmbiguityType.OVERLOADED_TERM: "Specific term definition",
    AmbiguityType.MISSING_CONTEXT: "Detailed context description",
    AmbiguityType.CONTRADICTION: "Precedence decision with rationale",
    AmbiguityType.INCOMPLETE_REQUIREMENT: "Complete requirement statement",
    AmbiguityType.SUBJECTIVE_CRITERIA: "Objective, measurable criteria",
    AmbiguityType.UNDEFINED_RELATIONSHIP: "Interface specification",
}

VALIDATION_CRITERIA: Dict[AmbiguityType, Tuple[str, ...]] = {
    AmbiguityType.VAGUE_TERM: ("Includes measurable values", "Defines acceptable ranges"),
    AmbiguityType.OVERLOADED_TERM: ("Uses one unambiguous meaning", "Names the stakeholder group"),
    AmbiguityType.MISSING_CONTEXT: ("Names the governing rule or system", "Includes concrete details"),
    AmbiguityType.CONTRADICTION: ("States which requirement wins", "Records who decided"),
    AmbiguityType.INCOMPLETE_REQUIREMENT: ("Names an actor", "Names an action and outcome"),
    AmbiguityType.SUBJECTIVE_CRITERIA: ("Can be verified by a test", "Has a numeric threshold"),
    AmbiguityType.UNDEFINED_RELATIONSHIP: ("Names protocol and data format", "States frequency or trigger"),
}

_URGENCY = {
    Severity.CRITICAL: "blocking",
    Severity.HIGH: "high",
    Severity.MEDIUM: "medium",
    Severity.LOW: "low",
}
_URGENCY_ORDER = {"blocking": 0, "high": 1, "medium": 2, "low": 3}

_ALLOWED_TRANSITIONS: Dict[AmbiguityStatus, Set[AmbiguityStatus]] = {
    AmbiguityStatus.DETECTED: {AmbiguityStatus.CLARIFYING, AmbiguityStatus.RESOLVED, AmbiguityStatus.IGNORED},
    AmbiguityStatus.CLARIFYING: {AmbiguityStatus.RESOLVED, AmbiguityStatus.IGNORED},
    AmbiguityStatus.RESOLVED: set(),
    AmbiguityStatus.IGNORED: set(),
}


def severity_from_base(base: float) -> Severity:
    if base > 80:
        return Severity.CRITICAL
    if base > 60:
        return Severity.HIGH
    if base > 40:
        return Severity.MEDIUM
    return Severity.LOW


def overload_severity(confusion: float) -> Severity:
    if confusion > 90:
        return Severity.CRITICAL
    if confusion > 70:
        return Severity.HIGH
    if confusion > 50:
        return Severity.MEDIUM
    return Severity.LOW


def recommended_term_action(confusion: float, meaning_count: int) -> TermAction:
    if confusion > 80:
        return TermAction.CREATE_GLOSSARY
    if meaning_count > 2:
        return TermAction.USE_SPECIFIC_TERMS
    return TermAction.DEFINE_CLEARLY


def question_type_for(question: str) -> str:
    first = question.strip().split(" ", 1)[0].lower() if question.strip() else ""
    if first in ("what", "how", "which", "who", "where", "when", "why"):
        return "open_ended"
    if first in ("should", "can", "is", "are", "does", "do", "will"):
        return "yes_no"
    return "clarification"


def _has_numeric_qualifier(text: str, start: int, end: int) -> bool:
    window = text[max(0, start - _QUALIFIER_WINDOW_BEFORE): end + _QUALIFIER_WINDOW_AFTER]
    return bool(_DIGIT.search(window))


def _word_pattern(words: Iterable[str]) -> Pattern[str]:
    return re.compile(r"\b(" + "|".join(re.escape(w) for w in words) + r")\b", re.I)


_PAIR_PATTERNS = [
    (_word_pattern(left), _word_pattern(right), kind) for left, right, kind in CONTRADICTION_PAIRS
]


# =============================================================================
# Detector
# =============================================================================

class AmbiguityDetector(Service):
    """
    Scans requirement statements for ambiguity.

    Detection is stateless apart from the id sequence. Findings are only
    kept when the caller passes an AmbiguityRegistry.

    Example:
        detector = AmbiguityDetector()
        result = detector.detect(["The page must load fast"])
        for q in result.clarification_questions:
            print(q.stakeholder_role, q.question)
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        *,
        glossary: Optional[GlossaryProvider] = None,
    ) -> None:
        super().__init__(context)
        self.glossary = glossary or default_glossary(self.config.glossary_path)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(
        self,
        statements: Sequence[str],
        focus: Optional[Iterable[int]] = None,
        *,
        registry: Optional["AmbiguityRegistry"] = None,
    ) -> DetectionResult:
        """
        Analyse statements for ambiguity.

        Args:
            statements: The full requirement set, used for contradiction checks
            focus: Indices to analyse (default: all). Contradictions are
                checked between each focused statement and every other one.
            registry: Where to keep the findings for resolution tracking

        Returns:
            DetectionResult with findings, questions and a clarity score
        """
        statements = [s or "" for s in statements]
        indices = sorted(set(focus)) if focus is not None else list(range(len(statements)))

        ambiguities: List[Ambiguity] = []
        contradictions: List[ContradictoryStatement] = []
        seen_pairs: Set[Tuple[int, int, int]] = set()
        for idx in indices:
            text = statements[idx]
            ambiguities.extend(self._detect_vague_terms(idx, text))
            ambiguities.extend(self._detect_overloaded_terms(idx, text))
            ambiguities.extend(self._detect_missing_context(idx, text))
            found, records = self._detect_contradictions(idx, statements, seen_pairs)
            ambiguities.extend(found)
            contradictions.extend(records)
            ambiguities.extend(self._detect_incomplete(idx, text))
            ambiguities.extend(self._detect_subjective(idx, text))
            ambiguities.extend(self._detect_undefined_relationships(idx, text))

        if registry is not None:
            registry.register(ambiguities)

        result = DetectionResult(
            statements=list(statements),
            ambiguities=ambiguities,
            clarification_questions=self.clarification_questions(ambiguities),
            contradictions=contradictions,
            clarity_score=self.clarity_score(ambiguities, len(indices)),
        )
        self.logger.debug(
            "ambiguity_detected",
            extra=self.log_extra(statements=len(indices), findings=len(ambiguities), clarity=result.clarity_score),
        )
        return result

    def _next_id(self) -> str:
        with self._lock:
            return f"amb_{next(self._ids)}"

    def _new(
        self,
        kind: AmbiguityType,
        severity: Severity,
        description: str,
        idx: int,
        span: Tuple[int, int],
        text: str,
        score: float,
        questions: Sequence[str],
        resolutions: Sequence[str],
        **details,
    ) -> Ambiguity:
        start, end = span
        return Ambiguity(
            id=self._next_id(),
            type=kind,
            severity=severity,
            description=description,
            location=TextLocation(statement_index=idx, start=start, end=end, excerpt=text[start:end]),
            ambiguity_score=score,
            suggested_questions=list(questions),
            suggested_resolutions=list(resolutions),
            details=details,
        )

    def _detect_vague_terms(self, idx: int, text: str) -> List[Ambiguity]:
        found: List[Ambiguity] = []
        for vague in VAGUE_PATTERNS:
            for match in vague.pattern.finditer(text):
                if _has_numeric_qualifier(text, match.start(), match.end()):
                    continue
                term = match.group(1).lower()
                found.append(
                    self._new(
                        AmbiguityType.VAGUE_TERM,
                        severity_from_base(vague.severity_base),
                        f'Vague {vague.label} "{term}" has no measurable definition',
                        idx,
                        match.span(),
                        text,
                        vague.ambiguity_score,
                        (
                            f'What specific criteria define "{term}"?',
                            f'How should "{term}" be measured or evaluated?',
                            f'What are the boundaries or limits for "{term}"?',
                        ),
                        (
                            f'Replace "{term}" with a measurable criterion',
                            "Provide concrete examples of acceptable results",
                        ),
                        term=term,
                    )
                )
        return found

    def _detect_overloaded_terms(self, idx: int, text: str) -> List[Ambiguity]:
        found: List[Ambiguity] = []
        for name, term in self.glossary.terms().items():
            if len(term.meanings) < 2:
                continue
            match = re.search(rf"\b{re.escape(name)}s?\b", text, re.I)
            if not match:
                continue
            confusion = term.confusion_score
            action = recommended_term_action(confusion, len(term.meanings))
            definitions = "; ".join(m.definition for m in term.meanings)
            groups = sorted({g for m in term.meanings for g in m.stakeholder_groups})
            strategy = (
                "Introduce a distinct term for each meaning"
                if len(term.meanings) > 3
                else "Qualify the term wherever it is used"
            )
            found.append(
                self._new(
                    AmbiguityType.OVERLOADED_TERM,
                    overload_severity(confusion),
                    f'"{name}" has {len(term.meanings)} meanings across stakeholder groups',
                    idx,
                    match.span(),
                    text,
                    confusion,
                    (
                        f'Which meaning of "{name}" is intended here ({definitions})?',
                        f'Which stakeholder group does "{name}" refer to?',
                    ),
                    (strategy, f"Action: {action.value}"),
                    term=name,
                    recommended_action=action.value,
                    stakeholder_groups=groups,
                    domain_specificity=term.domain_specificity,
                )
            )
        return found

    def _has_detailed_context(self, text: str) -> bool:
        details = (
            len(_NUMBERS.findall(text))
            + len(_CAPITALIZED.findall(text))
            + len(_WH_WORDS.findall(text))
        )
        return len(text) >= self.config.detail_min_length and details > 2

    def _detect_missing_context(self, idx: int, text: str) -> List[Ambiguity]:
        if self._has_detailed_context(text):
            return []
        found: List[Ambiguity] = []
        for category in CONTEXT_CATEGORIES:
            match = category.pattern.search(text)
            if not match:
                continue
            found.append(
                self._new(
                    AmbiguityType.MISSING_CONTEXT,
                    category.severity,
                    f"Mentions {category.label} topics without the detail needed to act on them",
                    idx,
                    match.span(),
                    text,
                    category.ambiguity_score,
                    category.questions,
                    tuple(f"Consult {source}" for source in category.information_sources),
                    category=category.name,
                    information_sources=list(category.information_sources),
                )
            )
        return found

    def _detect_contradictions(
        self,
        idx: int,
        statements: Sequence[str],
        seen_pairs: Set[Tuple[int, int, int]],
    ) -> Tuple[List[Ambiguity], List[ContradictoryStatement]]:
        text = statements[idx]
        subject = set(keywords(text)) - _CONTRADICTION_WORDS
        found: List[Ambiguity] = []
        records: List[ContradictoryStatement] = []
        for other_idx, other in enumerate(statements):
            if other_idx == idx or not other:
                continue
            shared = subject & (set(keywords(other)) - _CONTRADICTION_WORDS)
            if not shared:
                continue
            for pair_idx, (left, right, kind) in enumerate(_PAIR_PATTERNS):
                key = (min(idx, other_idx), max(idx, other_idx), pair_idx)
                if key in seen_pairs:
                    continue
                mine = left.search(text)
                theirs = right.search(other)
                if not (mine and theirs):
                    mine = right.search(text)
                    theirs = left.search(other)
                if not (mine and theirs):
                    continue
                seen_pairs.add(key)
                record = ContradictoryStatement(statement_1=text, statement_2=other, contradiction_type=kind)
                records.append(record)
                mine_word, their_word = mine.group(1).lower(), theirs.group(1).lower()
                found.append(
                    self._new(
                        AmbiguityType.CONTRADICTION,
                        Severity.HIGH,
                        f'"{mine_word}" conflicts with "{their_word}" in another statement about {", ".join(sorted(shared))}',
                        idx,
                        mine.span(),
                        text,
                        80,
                        (
                            "Which requirement takes precedence?",
                            f'Does "{mine_word}" here override "{their_word}" in the other statement?',
                            "Under what conditions does each statement apply?",
                        ),
                        (record.resolution_approach, "Record the precedence decision and who made it"),
                        other_statement_index=other_idx,
                        contradiction_type=kind.value,
                        contradiction_severity=record.severity,
                        resolution_step="stakeholder-adjudicated precedence",
                        stakeholders_to_involve=list(record.stakeholders_to_involve),
                        shared_subject=sorted(shared),
                    )
                )
        return found, records

    def _detect_incomplete(self, idx: int, text: str) -> List[Ambiguity]:
        stripped = text.strip()
        missing: List[str] = []
        questions: List[str] = []
        if not _ACTOR.search(stripped):
            missing.append("actor")
            questions.append("Who performs or triggers this?")
        if not _ACTION.search(stripped):
            missing.append("action")
            questions.append("What exactly should happen, and is it mandatory?")
        if len(stripped) < MIN_REQUIREMENT_LENGTH:
            missing.append("detail")
            questions.append(f'What are the details for "{stripped[:60]}"?')
        if not missing:
            return []

        severity = {1: Severity.LOW, 2: Severity.MEDIUM, 3: Severity.HIGH}[len(missing)]
        return [
            self._new(
                AmbiguityType.INCOMPLETE_REQUIREMENT,
                severity,
                "Requirement is incomplete: missing " + ", ".join(missing),
                idx,
                (0, len(text)),
                text,
                round(100.0 * len(missing) / 3, 2),
                questions,
                ("Rewrite as: <actor> <must/should> <action> so that <outcome>",),
                missing=missing,
            )
        ]

    def _detect_subjective(self, idx: int, text: str) -> List[Ambiguity]:
        found: List[Ambiguity] = []
        for match in _SUBJECTIVE.finditer(text):
            if _has_numeric_qualifier(text, match.start(), match.end()):
                continue
            term = match.group(1).lower()
            found.append(
                self._new(
                    AmbiguityType.SUBJECTIVE_CRITERIA,
                    Severity.MEDIUM,
                    f'Acceptance depends on the subjective term "{term}"',
                    idx,
                    match.span(),
                    text,
                    70,
                    (
                        f'How will "{term}" be verified objectively?',
                        f'What threshold makes a result "{term}" enough?',
                    ),
                    ("Define a measurable acceptance criterion",),
                    term=term,
                )
            )
        return found

    def _detect_undefined_relationships(self, idx: int, text: str) -> List[Ambiguity]:
        match = _RELATIONSHIP.search(text)
        if not match or _RELATIONSHIP_DETAIL.search(text):
            return []
        return [
            self._new(
                AmbiguityType.UNDEFINED_RELATIONSHIP,
                Severity.MEDIUM,
                f'Relationship "{match.group(1).lower()}" has no protocol, data or frequency',
                idx,
                match.span(),
                text,
                65,
                (
                    "What protocol or interface is used for this interaction?",
                    "What data is exchanged, and in what format?",
                    "How often does the interaction happen, and what triggers it?",
                ),
                ("Document the interface contract",),
                keyword=match.group(1).lower(),
            )
        ]

    # ------------------------------------------------------------------
    # Questions and scores
    # ------------------------------------------------------------------

    def clarification_questions(self, ambiguities: Sequence[Ambiguity]) -> List[ClarificationQuestion]:
        """Convert suggested questions into deduplicated clarification records."""
        seen: Set[str] = set()
        out: List[ClarificationQuestion] = []
        for ambiguity in ambiguities:
            for i, text in enumerate(ambiguity.suggested_questions):
                key = text.strip().lower()
                if not key or key in seen:
                    continue
                seen.add(key)
                out.append(
                    ClarificationQuestion(
                        id=f"q_{ambiguity.id}_{i}",
                        ambiguity_id=ambiguity.id,
                        question=text,
                        question_type=question_type_for(text),
                        context=ambiguity.location.excerpt,
                        urgency=_URGENCY[ambiguity.severity],
                        stakeholder_role=STAKEHOLDER_ROLES[ambiguity.type],
                        expected_answer_format=ANSWER_FORMATS[ambiguity.type],
                        validation_criteria=VALIDATION_CRITERIA[ambiguity.type],
                    )
                )
        return out

    @staticmethod
    def clarity_score(ambiguities: Sequence[Ambiguity], statement_count: int) -> float:
        """max(0, 100 - mean ambiguity score per statement)."""
        if statement_count <= 0:
            return 100.0
        total = sum(a.ambiguity_score for a in ambiguities)
        return round(max(0.0, 100.0 - total / statement_count), 2)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, statements: Sequence[str], registry: Optional["AmbiguityRegistry"] = None) -> AmbiguityAnalysis:
        """
        Detect and summarize: counts, risk areas, priorities and recommendations.

        Resolution tracking covers the given registry (with this run's findings
        added), or only this run when no registry is passed.
        """
        registry = registry if registry is not None else AmbiguityRegistry()
        result = self.detect(statements, registry=registry)
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {s.value: 0 for s in Severity}
        for ambiguity in result.ambiguities:
            by_type[ambiguity.type.value] = by_type.get(ambiguity.type.value, 0) + 1
            by_severity[ambiguity.severity.value] += 1

        high_risk = [f"{kind}: {count} findings" for kind, count in sorted(by_type.items()) if count > 3]
        priorities = sorted(result.clarification_questions, key=lambda q: _URGENCY_ORDER[q.urgency])[:10]

        return AmbiguityAnalysis(
            total=len(result.ambiguities),
            by_type=by_type,
            by_severity=by_severity,
            clarity_score=result.clarity_score,
            high_risk_areas=high_risk,
            clarification_priorities=priorities,
            resolution_tracking=registry.resolution_tracking(),
            recommendations=self._recommendations(by_type, result.clarity_score),
        )

    @staticmethod
    def _recommendations(by_type: Dict[str, int], clarity: float) -> List[str]:
        advice = {
            AmbiguityType.VAGUE_TERM.value: "Replace vague terms with measurable criteria",
            AmbiguityType.OVERLOADED_TERM.value: "Create or extend the project glossary",
            AmbiguityType.MISSING_CONTEXT.value: "Capture the missing business and technical context",
            AmbiguityType.CONTRADICTION.value: "Hold a precedence review with the product owner",
            AmbiguityType.INCOMPLETE_REQUIREMENT.value: "Rewrite requirements as actor-action-outcome statements",
            AmbiguityType.SUBJECTIVE_CRITERIA.value: "Turn subjective acceptance criteria into testable thresholds",
            AmbiguityType.UNDEFINED_RELATIONSHIP.value: "Document interface contracts for every integration",
        }
        out = [advice[kind] for kind in by_type if kind in advice]
        if clarity < 70:
            out.append("Schedule a requirements clarification session before implementation")
        return out


# =============================================================================
# Resolution tracking
# =============================================================================

class AmbiguityRegistry:
    """
    Findings for one scope, normally one questioning session, and their
    resolution history.

    The detector itself keeps no findings. A caller that wants to track
    resolution registers the findings it cares about here; dropping the
    registry drops them.

    Example:
        registry = AmbiguityRegistry("qs_1")
        result = detector.detect(statements, registry=registry)
        registry.resolve(result.ambiguities[0].id, "Under 2 seconds at p95", resolved_by="product owner")
    """

    def __init__(self, scope: Optional[str] = None, *, event_bus: Optional[EventBus] = None) -> None:
        self.scope = scope
        self._bus = event_bus or get_event_bus()
        self._records: Dict[str, Ambiguity] = {}
        self._history: List[ResolutionRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, ambiguity_id: object) -> bool:
        return ambiguity_id in self._records

    def register(self, ambiguities: Iterable[Ambiguity]) -> None:
        with self._lock:
            for ambiguity in ambiguities:
                self._records[ambiguity.id] = ambiguity

    def ambiguities(self, status: Optional[AmbiguityStatus] = None) -> List[Ambiguity]:
        with self._lock:
            items = list(self._records.values())
        return [a for a in items if status is None or a.status == status]

    def get(self, ambiguity_id: str) -> Ambiguity:
        ambiguity = self._records.get(ambiguity_id)
        if ambiguity is None:
            raise AmbiguityNotFoundError(
                f"Unknown ambiguity: {ambiguity_id}",
                metadata={"ambiguity_id": ambiguity_id, "scope": self.scope},
            )
        return ambiguity

    @property
    def history(self) -> List[ResolutionRecord]:
        return list(self._history)

    def start_clarifying(self, ambiguity_id: str, actor: str, notes: str = "") -> Ambiguity:
        return self._transition(ambiguity_id, AmbiguityStatus.CLARIFYING, actor, notes)

    def resolve(self, ambiguity_id: str, resolution: str, resolved_by: str) -> Ambiguity:
        """Mark an ambiguity resolved, recording who resolved it and how."""
        return self._transition(ambiguity_id, AmbiguityStatus.RESOLVED, resolved_by, resolution)

    def ignore(self, ambiguity_id: str, reason: str, actor: str) -> Ambiguity:
        return self._transition(ambiguity_id, AmbiguityStatus.IGNORED, actor, reason)

    def _transition(self, ambiguity_id: str, target: AmbiguityStatus, actor: str, notes: str) -> Ambiguity:
        with self._lock:
            ambiguity = self.get(ambiguity_id)
            current = ambiguity.status
            if target not in _ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Ambiguity {ambiguity_id} cannot move from {current.value} to {target.value}",
                    metadata={"ambiguity_id": ambiguity_id, "from": current.value, "to": target.value},
                )
            ambiguity.status = target
            if target.is_final:
                ambiguity.resolved_at = utc_now()
                ambiguity.resolved_by = actor
                ambiguity.resolution_notes = notes
            self._history.append(
                ResolutionRecord(ambiguity_id=ambiguity_id, from_status=current, to_status=target, actor=actor, notes=notes)
            )

        logger.info(
            "ambiguity_status_changed",
            extra=log_extra(
                session_id=self.scope,
                ambiguity_id=ambiguity_id,
                from_status=current.value,
                to_status=target.value,
            ),
        )
        self._bus.publish(
            AmbiguityStatusChanged(
                ambiguity_id=ambiguity_id,
                session_id=self.scope,
                from_status=current.value,
                to_status=target.value,
                actor=actor,
            )
        )
        return ambiguity

    def resolution_tracking(self) -> Dict[str, float]:
        items = self.ambiguities()
        resolved = [a for a in items if a.status == AmbiguityStatus.RESOLVED]
        hours = [
            (a.resolved_at - a.detected_at).total_seconds() / 3600.0
            for a in resolved
            if a.resolved_at is not None
        ]
        return {
            "total": float(len(items)),
            "resolved": float(len(resolved)),
            "in_progress": float(sum(1 for a in items if a.status == AmbiguityStatus.CLARIFYING)),
            "ignored": float(sum(1 for a in items if a.status == AmbiguityStatus.IGNORED)),
            "resolution_rate": round(100.0 * len(resolved) / len(items), 2) if items else 0.0,
            "average_resolution_hours": round(sum(hours) / len(hours), 4) if hours else 0.0,
        }
