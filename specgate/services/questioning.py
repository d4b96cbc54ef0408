"""
SpecGate Questioning Engine

Drives a questioning session through its phases:

    TRIAGE -> EXPLORATION -> VALIDATION -> REFINEMENT -> COMPLETION

Each processed answer updates gaps and edge cases, recomputes confidence,
checks phase transitions and, while confidence is below target, issues the
next round of questions. Work for one answer is staged on a copy of the
session and committed only once scoring has passed its own checks, so a
rejected answer leaves the session untouched.
"""

import copy
import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from specgate.errors import (
    QuestionNotFoundError,
    ScoringAnomalyError,
    SessionPausedError,
    SessionTerminalError,
    InvalidTransitionError,
    ValidationError,
)
from specgate.logging import session_log_context
from specgate.models.ambiguity import Ambiguity, AmbiguityType
from specgate.models.rules import QuestioningInput
from specgate.models.scoring import ConfidenceScore, ReadinessAssessment, SessionAnalysis
from specgate.models.session import (
    Answer,
    EdgeCase,
    PhaseChange,
    Priority,
    Question,
    QuestionCategory,
    QuestionType,
    QuestioningSession,
    RequirementGap,
    SessionPhase,
    SessionStatus,
    Severity,
    TaskContext,
    utc_now,
)
from specgate.rules.engine import RuleEngine
from specgate.services.ambiguity import AmbiguityDetector, AmbiguityRegistry
from specgate.services.base import Service, ServiceContext
from specgate.services.confidence import ConfidenceScorer
from specgate.services.edge_cases import discover_edge_cases
from specgate.services.events import (
    AnswerRecorded,
    Event,
    EventBus,
    PhaseChanged,
    ScoringAnomalyDetected,
    SessionCompleted,
    SessionPaused,
    SessionResumed,
    SessionStarted,
    SessionTimedOut,
    get_event_bus,
)
from specgate.services.questions import build_question, question_type_for_gap, triage_plan, PHASE_FOCUS

Clock = Callable[[], datetime]

_UNCERTAIN = re.compile(
    r"\b(not sure|unsure|don'?t know|do not know|no idea|tbd|to be determined|unknown|undecided|not decided)\b",
    re.I,
)
_HEDGE = re.compile(r"\b(assum\w+|probably|presumably|likely|i think|i believe|should be fine|expect that)\b", re.I)
_SENTENCE = re.compile(r"(?<=[.!?])\s+")

_IMPACT = {
    Severity.CRITICAL: "Implementation cannot start without this information",
    Severity.HIGH: "Likely rework if left unresolved",
    Severity.MEDIUM: "May cause misaligned expectations",
    Severity.LOW: "Minor clarification",
}

# Findings on answers that are recorded as clarification needs but not as gaps.
_ANSWER_GAP_EXCLUDED = frozenset({AmbiguityType.INCOMPLETE_REQUIREMENT})


@dataclass
class AnswerResult:
    """What one processed answer changed."""
    session: QuestioningSession
    answer: Optional[Answer] = None
    new_questions: List[Question] = field(default_factory=list)
    new_gaps: List[RequirementGap] = field(default_factory=list)
    closed_gaps: List[str] = field(default_factory=list)
    new_edge_cases: List[EdgeCase] = field(default_factory=list)
    phase_changes: List[PhaseChange] = field(default_factory=list)
    score: Optional[ConfidenceScore] = None
    new_ambiguities: List[Ambiguity] = field(default_factory=list)

    @property
    def recorded(self) -> bool:
        return self.answer is not None


def new_session_id(now: datetime) -> str:
    return f"qs_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def _commit(target: QuestioningSession, staged: QuestioningSession) -> None:
    for f in fields(target):
        setattr(target, f.name, getattr(staged, f.name))


class QuestioningEngine(Service):
    """
    Questioning session state machine.

    The engine holds no sessions itself; callers own the session objects and
    must serialize calls for any one session.

    Example:
        engine = QuestioningEngine()
        session = engine.start(task)
        result = engine.process_answer(session, session.questions_asked[0].id, "Users upload CSV files")
        result.new_questions, session.confidence_score, session.current_phase
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        *,
        detector: Optional[AmbiguityDetector] = None,
        scorer: Optional[ConfidenceScorer] = None,
        rule_engine: Optional[RuleEngine] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(context)
        self._bus = event_bus or get_event_bus()
        self.detector = detector or AmbiguityDetector(self.context)
        self.scorer = scorer or ConfidenceScorer(self.context)
        self.rule_engine = rule_engine or RuleEngine(self.context, event_bus=self._bus)
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        task: TaskContext,
        target_confidence: Optional[float] = None,
        *,
        ambiguities: Optional[AmbiguityRegistry] = None,
    ) -> QuestioningSession:
        """
        Open a session for a unit of work.

        A session whose initial estimate already meets the target goes
        straight to COMPLETION without questions. Otherwise exactly
        ``triage_question_count`` triage questions are issued.

        Findings on the task statements are referenced by id from the session
        and kept in ``ambiguities`` when one is given.
        """
        target = self.config.target_confidence if target_confidence is None else float(target_confidence)
        if not 0.0 <= target <= 100.0:
            raise ValidationError(f"target_confidence must be within 0-100, got {target}")
        if not task.task_id:
            raise ValidationError("task_id is required")

        now = self._clock()
        matches = self.scorer.find_patterns(task)
        initial, factors = self.scorer.initial_confidence(task, matches)
        session = QuestioningSession(
            session_id=new_session_id(now),
            task_context=task,
            target_confidence=target,
            session_start=now,
            confidence_score=initial,
            initial_confidence=initial,
            last_activity=now,
            historical_pattern_matches=len(matches),
            metadata={"initial_factors": factors},
        )
        session.phase_history.append(PhaseChange(None, SessionPhase.TRIAGE, initial, now))
        session.confidence_history.append(initial)

        events: List[Event] = []
        with session_log_context(session):
            if initial >= target:
                change = self._set_phase(session, SessionPhase.COMPLETION, now)
                session.status = SessionStatus.COMPLETED
                events.append(self._started_event(session))
                events.append(self._phase_event(session, change))
                events.append(SessionCompleted(session_id=session.session_id, task_id=task.task_id, confidence=initial))
            else:
                gaps, findings = self._initial_gaps(session)
                session.identified_gaps.extend(gaps)
                session.ambiguity_ids.extend(a.id for a in findings)
                if ambiguities is not None:
                    ambiguities.register(findings)
                session.questions_asked.extend(self._triage_questions(session))
                events.append(self._started_event(session))

            self.logger.info(
                "session_started",
                extra=self.log_extra(
                    session_id=session.session_id,
                    task_id=task.task_id,
                    phase=session.current_phase.value,
                    initial_confidence=initial,
                    target=target,
                    questions=len(session.questions_asked),
                    gaps=len(session.identified_gaps),
                ),
            )
        self._publish(events)
        return session

    def _started_event(self, session: QuestioningSession) -> SessionStarted:
        return SessionStarted(
            session_id=session.session_id,
            task_id=session.task_context.task_id,
            initial_confidence=session.initial_confidence,
            triage_questions=len(session.questions_asked),
        )

    def _initial_gaps(self, session: QuestioningSession) -> Tuple[List[RequirementGap], List[Ambiguity]]:
        task = session.task_context
        gaps: List[RequirementGap] = []
        findings: List[Ambiguity] = []
        if not [r for r in task.initial_requirements if r and r.strip()]:
            gaps.append(
                self._gap(
                    session, gaps, "requirements", Severity.CRITICAL,
                    "No explicit requirements were provided",
                    ["What must the finished work do? List the concrete requirements."],
                )
            )
        if not task.stakeholders:
            gaps.append(
                self._gap(
                    session, gaps, "stakeholders", Severity.HIGH,
                    "No stakeholders are named to confirm the requirements",
                    ["Who owns this work and who must approve the result?"],
                )
            )
        if task.statements:
            findings = self.detector.detect(task.statements).ambiguities
            gaps.extend(self._gaps_from_ambiguities(session, gaps, findings, source="task_context"))
        return gaps, findings

    def _triage_questions(self, session: QuestioningSession) -> List[Question]:
        task = session.task_context
        questions: List[Question] = []
        for question_type, focus in triage_plan(task, self.config.triage_question_count):
            addresses = [g.id for g in session.open_gaps() if question_type_for_gap(g) == question_type]
            questions.append(
                build_question(
                    question_type,
                    task,
                    focus,
                    question_id=self._question_id(session, questions),
                    phase=SessionPhase.TRIAGE,
                    priority=Priority.HIGH,
                    gap_addresses=addresses,
                )
            )
        return questions

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def process_answer(
        self,
        session: QuestioningSession,
        question_id: str,
        answer_text: str,
        answer_data: Optional[Dict[str, Any]] = None,
        *,
        confidence_level: Optional[float] = None,
        ambiguities: Optional[AmbiguityRegistry] = None,
    ) -> AnswerResult:
        """
        Record an answer and advance the session.

        Findings on the answer are kept in ``ambiguities``, when given, once
        the answer has been committed.

        Raises:
            SessionTerminalError: the session is COMPLETED or TIMED_OUT
            SessionPausedError: the session is PAUSED
            QuestionNotFoundError: the question is unknown or already answered
            ValidationError: the answer is empty or malformed
            ScoringAnomalyError: confidence regressed without a new critical gap

        An answer arriving after the session ceiling moves the session to
        TIMED_OUT and is returned unrecorded.
        """
        self._ensure_accepts_answers(session)
        if self.check_timeout(session):
            return AnswerResult(session=session)
        if session.status == SessionStatus.PAUSED:
            raise SessionPausedError(
                f"Session {session.session_id} is paused",
                metadata={"session_id": session.session_id},
            )

        question = session.get_question(question_id)
        if question is None or question_id in session.answered_question_ids:
            raise QuestionNotFoundError(
                f"Question {question_id} is not open in session {session.session_id}",
                metadata={"session_id": session.session_id, "question_id": question_id},
            )
        if not isinstance(answer_text, str) or not answer_text.strip():
            raise ValidationError("answer_text must be a non-empty string", metadata={"question_id": question_id})
        if confidence_level is not None and not 0.0 <= confidence_level <= 1.0:
            raise ValidationError("confidence_level must be within 0-1", metadata={"question_id": question_id})

        now = self._clock()
        with session_log_context(session):
            staged = copy.deepcopy(session)
            result = self._apply_answer(staged, question, answer_text, answer_data, confidence_level, now)
            _commit(session, staged)
            result.session = session
            if ambiguities is not None:
                ambiguities.register(result.new_ambiguities)

            self.logger.info(
                "answer_processed",
                extra=self.log_extra(
                    session_id=session.session_id,
                    question_id=question_id,
                    confidence=session.confidence_score,
                    new_questions=len(result.new_questions),
                    new_gaps=len(result.new_gaps),
                    status=session.status.value,
                ),
            )

        events: List[Event] = [
            AnswerRecorded(
                session_id=session.session_id,
                task_id=session.task_context.task_id,
                question_id=question_id,
                confidence=session.confidence_score,
                new_questions=len(result.new_questions),
                new_gaps=len(result.new_gaps),
            )
        ]
        events.extend(self._phase_event(session, change) for change in result.phase_changes)
        if session.status == SessionStatus.COMPLETED:
            events.append(
                SessionCompleted(
                    session_id=session.session_id,
                    task_id=session.task_context.task_id,
                    confidence=session.confidence_score,
                )
            )
        elif session.status == SessionStatus.PAUSED:
            events.append(
                SessionPaused(
                    session_id=session.session_id,
                    task_id=session.task_context.task_id,
                    reason=str(session.metadata.get("pause_reason", "")),
                )
            )
        self._publish(events)
        return result

    def _ensure_accepts_answers(self, session: QuestioningSession) -> None:
        if session.status.is_terminal:
            raise SessionTerminalError(
                f"Session {session.session_id} is {session.status.value}; start a new session",
                metadata={"session_id": session.session_id, "status": session.status.value},
            )

    def _apply_answer(
        self,
        session: QuestioningSession,
        question: Question,
        answer_text: str,
        answer_data: Optional[Dict[str, Any]],
        confidence_level: Optional[float],
        now: datetime,
    ) -> AnswerResult:
        phase = session.current_phase
        uncertain = bool(_UNCERTAIN.search(answer_text))

        prior_answers = [a.answer_text for a in session.answers_received]
        statements = [*session.task_context.statements, *prior_answers, answer_text]
        detection = self.detector.detect(statements, focus=[len(statements) - 1])

        new_gaps: List[RequirementGap] = []
        closed: List[str] = []
        if uncertain:
            severity = Severity.CRITICAL if question.priority.rank >= Priority.HIGH.rank else Severity.HIGH
            new_gaps.append(
                self._gap(
                    session, new_gaps, "uncertainty", severity,
                    f"Unresolved answer to: {question.text}",
                    [f"Who can decide this: {question.text}"],
                    source=f"answer:{question.id}",
                )
            )
        else:
            for gap_id in question.gap_addresses:
                gap = session.get_gap(gap_id)
                if gap is not None and gap.is_open:
                    gap.closed_by = question.id
                    gap.closed_at = now
                    closed.append(gap.id)

        answer_findings = [a for a in detection.ambiguities if a.type not in _ANSWER_GAP_EXCLUDED]
        new_gaps.extend(
            self._gaps_from_ambiguities(session, new_gaps, answer_findings, source=f"answer:{question.id}")
        )
        session.identified_gaps.extend(new_gaps)
        session.ambiguity_ids.extend(a.id for a in detection.ambiguities)

        new_edge_cases = discover_edge_cases(
            answer_text,
            known_categories=[e.category for e in session.edge_cases],
            phase=phase,
            start_index=len(session.edge_cases) + 1,
        )
        session.edge_cases.extend(new_edge_cases)

        follow_ups = self._follow_up_questions(session, question, answer_text, answer_data, new_gaps)
        session.questions_asked.extend(follow_ups)

        if confidence_level is None:
            confidence_level = self._answer_confidence(uncertain, len(detection.ambiguities))
        session.answers_received.append(
            Answer(
                question_id=question.id,
                answer_text=answer_text,
                answer_data=dict(answer_data) if answer_data else None,
                confidence_level=confidence_level,
                timestamp=now,
                follow_up_questions_generated=tuple(q.id for q in follow_ups),
                clarifications_needed=tuple(q.question for q in detection.clarification_questions[:3]),
                assumptions_identified=tuple(
                    s.strip() for s in _SENTENCE.split(answer_text) if _HEDGE.search(s)
                ),
            )
        )

        new_critical = any(g.severity == Severity.CRITICAL for g in new_gaps)
        score = self._score(session, new_critical)
        session.last_score = score

        result = AnswerResult(
            session=session,
            answer=session.answers_received[-1],
            new_questions=list(follow_ups),
            new_gaps=new_gaps,
            closed_gaps=closed,
            new_edge_cases=new_edge_cases,
            score=score,
            new_ambiguities=list(detection.ambiguities),
        )
        result.phase_changes = self._advance_phases(session, now)

        if session.status == SessionStatus.ACTIVE and session.confidence_score < session.target_confidence:
            round_questions = self._next_round(session)
            session.questions_asked.extend(round_questions)
            result.new_questions.extend(round_questions)
            if (
                self.config.pause_on_diminishing_returns
                and session.current_phase != SessionPhase.TRIAGE
                and score.trend.diminishing_returns
            ):
                self._mark_paused(session, "diminishing_returns")
            elif not session.open_questions():
                self._mark_paused(session, "no_questions_remaining")

        session.last_activity = now
        session.session_duration = (now - session.session_start).total_seconds()
        return result

    @staticmethod
    def _answer_confidence(uncertain: bool, findings: int) -> float:
        level = 0.8 - (0.4 if uncertain else 0.0) - 0.1 * min(3, findings)
        return round(max(0.1, min(1.0, level)), 2)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(self, session: QuestioningSession, new_critical: bool) -> ConfidenceScore:
        score = self.scorer.score(session, history=session.raw_confidence_history)
        raw = score.overall_confidence
        previous = session.raw_confidence_history[-1] if session.raw_confidence_history else None
        if previous is not None and raw < previous and not new_critical:
            reason = "confidence regressed without a new critical gap"
            self.logger.error(
                "scoring_anomaly",
                extra=self.log_extra(session_id=session.session_id, previous=previous, current=raw, reason=reason),
            )
            self._publish([
                ScoringAnomalyDetected(
                    session_id=session.session_id,
                    task_id=session.task_context.task_id,
                    previous=previous,
                    current=raw,
                    reason=reason,
                )
            ])
            raise ScoringAnomalyError(
                f"Confidence fell from {previous} to {raw} without a new critical gap",
                metadata={"session_id": session.session_id, "previous": previous, "current": raw},
            )

        session.raw_confidence_history.append(raw)
        # The initial estimate is a floor until answers outweigh it.
        session.confidence_score = round(max(session.initial_confidence, raw), 2)
        session.confidence_history.append(session.confidence_score)
        return score

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _advance_phases(self, session: QuestioningSession, now: datetime) -> List[PhaseChange]:
        changes: List[PhaseChange] = []
        while session.status == SessionStatus.ACTIVE:
            nxt = session.current_phase.successor()
            if nxt is None or not self._may_enter(session, nxt):
                break
            changes.append(self._set_phase(session, nxt, now))
            if nxt == SessionPhase.COMPLETION:
                session.status = SessionStatus.COMPLETED
        return changes

    def _may_enter(self, session: QuestioningSession, phase: SessionPhase) -> bool:
        cfg = self.config
        confidence = session.confidence_score
        if phase == SessionPhase.EXPLORATION:
            return len(session.answers_received) >= cfg.triage_question_count
        if phase == SessionPhase.VALIDATION:
            return (
                confidence > cfg.exploration_exit_confidence
                or len(session.answers_received) > cfg.exploration_answer_cap
            )
        if phase == SessionPhase.REFINEMENT:
            return confidence > cfg.validation_exit_confidence or self._has_minimal_gaps(session)
        if phase == SessionPhase.COMPLETION:
            if confidence < session.target_confidence:
                return False
            violations = self.rule_engine.check_questioning(
                self.questioning_input(session), threshold=session.target_confidence
            )
            return not violations
        return False

    def _has_minimal_gaps(self, session: QuestioningSession) -> bool:
        return (
            not session.open_gaps(Severity.CRITICAL)
            and len(session.open_gaps(Severity.HIGH)) <= self.config.minimal_gap_high_limit
        )

    @staticmethod
    def questioning_input(session: QuestioningSession) -> QuestioningInput:
        return QuestioningInput(
            confidence=session.confidence_score,
            questions_asked=len(session.questions_asked),
            gaps_identified=[g.id for g in session.open_gaps()],
            edge_cases_found=[e.id for e in session.edge_cases],
        )

    def _set_phase(self, session: QuestioningSession, phase: SessionPhase, now: datetime) -> PhaseChange:
        if phase.order <= session.current_phase.order:
            raise InvalidTransitionError(
                f"Phase cannot move from {session.current_phase.value} to {phase.value}",
                metadata={"session_id": session.session_id},
            )
        change = PhaseChange(session.current_phase, phase, session.confidence_score, now)
        session.current_phase = phase
        session.phase_history.append(change)
        self.logger.info(
            "phase_changed",
            extra=self.log_extra(
                session_id=session.session_id,
                from_phase=change.from_phase.value,
                to_phase=phase.value,
                confidence=session.confidence_score,
            ),
        )
        return change

    def _phase_event(self, session: QuestioningSession, change: PhaseChange) -> PhaseChanged:
        return PhaseChanged(
            session_id=session.session_id,
            task_id=session.task_context.task_id,
            from_phase=change.from_phase.value if change.from_phase else "",
            to_phase=change.to_phase.value,
            confidence=change.confidence,
        )

    # ------------------------------------------------------------------
    # Question generation
    # ------------------------------------------------------------------

    def _question_id(self, session: QuestioningSession, pending: Sequence[Question] = ()) -> str:
        return f"q_{len(session.questions_asked) + len(pending) + 1}"

    def _open_capacity(self, session: QuestioningSession, pending: Sequence[Question]) -> int:
        return self.config.max_open_questions - len(session.open_questions()) - len(pending)

    def _follow_up_questions(
        self,
        session: QuestioningSession,
        question: Question,
        answer_text: str,
        answer_data: Optional[Dict[str, Any]],
        new_gaps: Sequence[RequirementGap],
    ) -> List[Question]:
        task = session.task_context
        asked = {q.text for q in session.questions_asked}
        out: List[Question] = []

        def add(candidate: Question) -> None:
            if candidate.text in asked or self._open_capacity(session, out) <= 0:
                return
            asked.add(candidate.text)
            out.append(candidate)

        for trigger in question.follow_up_triggers:
            if not trigger.matches(answer_text, answer_data):
                continue
            for text in trigger.follow_up_questions:
                add(
                    build_question(
                        question.type,
                        task,
                        trigger.condition,
                        question_id=self._question_id(session, out),
                        phase=session.current_phase,
                        priority=question.priority,
                        gap_addresses=question.gap_addresses,
                        text=text,
                        reasoning=f"Follow-up to {question.id}: {trigger.condition.replace('_', ' ')}",
                    )
                )

        for gap in new_gaps:
            if gap.severity.rank >= Severity.HIGH.rank:
                add(self._gap_question(session, gap, out))
        return out

    def _gap_question(self, session: QuestioningSession, gap: RequirementGap, pending: Sequence[Question]) -> Question:
        return build_question(
            question_type_for_gap(gap),
            session.task_context,
            gap.category,
            question_id=self._question_id(session, pending),
            phase=session.current_phase,
            priority=gap.severity,
            gap_addresses=[gap.id],
            text=gap.questions_needed[0] if gap.questions_needed else None,
            reasoning=f"Addresses {gap.severity.value} gap {gap.id}: {gap.description}",
        )

    def _next_round(self, session: QuestioningSession) -> List[Question]:
        """
        Up to ``max_round_questions`` new questions, in priority order:
        critical gaps, high gaps, unexplored edge cases, then phase questions.
        """
        cfg = self.config
        limit = min(cfg.max_round_questions, self._open_capacity(session, ()))
        if limit <= 0:
            return []

        task = session.task_context
        asked = {q.text for q in session.questions_asked}
        pending_gaps = {gap_id for q in session.open_questions() for gap_id in q.gap_addresses}
        out: List[Question] = []

        def add(candidate: Question) -> bool:
            if len(out) >= limit or candidate.text in asked:
                return False
            asked.add(candidate.text)
            out.append(candidate)
            return True

        for severity, cap in ((Severity.CRITICAL, cfg.max_critical_gap_questions), (Severity.HIGH, cfg.max_high_gap_questions)):
            for gap in [g for g in session.open_gaps(severity) if g.id not in pending_gaps][:cap]:
                add(self._gap_question(session, gap, out))

        for edge in session.edge_cases:
            if edge.questions_generated:
                continue
            candidate = build_question(
                QuestionType.EDGE_CASE,
                task,
                edge.category,
                question_id=self._question_id(session, out),
                phase=session.current_phase,
                priority=edge.priority,
                text=f"How should the system behave when: {edge.scenario[0].lower()}{edge.scenario[1:]}?",
                reasoning=f"Explores edge case {edge.id} ({edge.category.replace('_', ' ')})",
            )
            if add(candidate):
                edge.questions_generated.append(candidate.id)

        for question_type, focus in PHASE_FOCUS[session.current_phase]:
            add(
                build_question(
                    question_type,
                    task,
                    focus,
                    question_id=self._question_id(session, out),
                    phase=session.current_phase,
                )
            )

        if not out and not session.open_questions():
            open_ended = self._open_ended_question(session, asked)
            if open_ended is not None:
                out.append(open_ended)
        return out

    def _open_ended_question(self, session: QuestioningSession, asked: set) -> Optional[Question]:
        for category in QuestionCategory:
            area = category.value.replace("_", " ")
            text = f"Is there anything about {area} requirements we have not covered yet?"
            if text in asked:
                continue
            return build_question(
                QuestionType.EXPLORATION,
                session.task_context,
                category.value,
                question_id=self._question_id(session),
                phase=session.current_phase,
                priority=Priority.LOW,
                text=text,
                reasoning=f"Open-ended sweep of {area} requirements",
            )
        return None

    # ------------------------------------------------------------------
    # Gaps
    # ------------------------------------------------------------------

    def _gap(
        self,
        session: QuestioningSession,
        pending: Sequence[RequirementGap],
        category: str,
        severity: Severity,
        description: str,
        questions: Sequence[str],
        *,
        source: str = "task_context",
        ambiguity_ids: Sequence[str] = (),
    ) -> RequirementGap:
        return RequirementGap(
            id=f"gap_{len(session.identified_gaps) + len(pending) + 1}",
            category=category,
            description=description,
            severity=severity,
            discovered_in_phase=session.current_phase,
            questions_needed=list(questions),
            potential_impact=_IMPACT[severity],
            source=source,
            ambiguity_ids=list(ambiguity_ids),
        )

    def _gaps_from_ambiguities(
        self,
        session: QuestioningSession,
        pending: Sequence[RequirementGap],
        ambiguities: Sequence[Ambiguity],
        *,
        source: str,
    ) -> List[RequirementGap]:
        """One gap per statement and ambiguity type, at the highest severity found. LOW findings are skipped."""
        groups: Dict[Tuple[int, AmbiguityType], List[Ambiguity]] = {}
        for ambiguity in ambiguities:
            groups.setdefault((ambiguity.location.statement_index, ambiguity.type), []).append(ambiguity)

        gaps: List[RequirementGap] = []
        for (_, kind), found in groups.items():
            severity = Severity.highest([a.severity for a in found])
            if severity == Severity.LOW:
                continue
            questions: List[str] = []
            for ambiguity in found:
                for q in ambiguity.suggested_questions:
                    if q not in questions:
                        questions.append(q)
            gaps.append(
                self._gap(
                    session,
                    [*pending, *gaps],
                    kind.value,
                    severity,
                    "; ".join(a.description for a in found[:3]),
                    questions[:3],
                    source=source,
                    ambiguity_ids=[a.id for a in found],
                )
            )
        return gaps

    def close_resolved_gaps(self, session: QuestioningSession, ambiguities: AmbiguityRegistry) -> List[str]:
        """
        Close open gaps whose findings are all resolved or ignored.

        Terminal sessions are left as they are. Returns the closed gap ids.
        """
        if session.status.is_terminal:
            return []
        now = self._clock()
        closed: List[str] = []
        for gap in session.open_gaps():
            if not gap.ambiguity_ids or any(a not in ambiguities for a in gap.ambiguity_ids):
                continue
            findings = [ambiguities.get(a) for a in gap.ambiguity_ids]
            if all(f.status.is_final for f in findings):
                gap.closed_by = f"ambiguity:{gap.ambiguity_ids[-1]}"
                gap.closed_at = now
                closed.append(gap.id)
        if closed:
            self.logger.info(
                "gaps_closed_by_resolution",
                extra=self.log_extra(session_id=session.session_id, gaps=closed),
            )
        return closed

    # ------------------------------------------------------------------
    # Pause, resume, timeout
    # ------------------------------------------------------------------

    def check_timeout(self, session: QuestioningSession) -> bool:
        """Move a session past the ceiling to TIMED_OUT. Returns True if it is timed out."""
        if session.status == SessionStatus.TIMED_OUT:
            return True
        if session.status.is_terminal:
            return False
        now = self._clock()
        elapsed = (now - session.session_start).total_seconds()
        if elapsed <= self.config.max_session_seconds:
            return False

        session.status = SessionStatus.TIMED_OUT
        session.session_duration = elapsed
        session.last_activity = now
        self.logger.warning(
            "session_timed_out",
            extra=self.log_extra(
                session_id=session.session_id,
                phase=session.current_phase.value,
                elapsed_seconds=elapsed,
                confidence=session.confidence_score,
            ),
        )
        self._publish([
            SessionTimedOut(
                session_id=session.session_id,
                task_id=session.task_context.task_id,
                elapsed_seconds=elapsed,
            )
        ])
        return True

    def _mark_paused(self, session: QuestioningSession, reason: str) -> None:
        session.status = SessionStatus.PAUSED
        session.metadata["pause_reason"] = reason
        self.logger.info("session_paused", extra=self.log_extra(session_id=session.session_id, reason=reason))

    def pause(self, session: QuestioningSession, reason: str = "manual") -> QuestioningSession:
        self._ensure_accepts_answers(session)
        if self.check_timeout(session):
            return session
        if session.status == SessionStatus.PAUSED:
            raise InvalidTransitionError(
                f"Session {session.session_id} is already paused",
                metadata={"session_id": session.session_id},
            )
        self._mark_paused(session, reason)
        self._publish([SessionPaused(session_id=session.session_id, task_id=session.task_context.task_id, reason=reason)])
        return session

    def resume(self, session: QuestioningSession) -> QuestioningSession:
        """Reactivate a paused session. A session past its ceiling times out instead."""
        self._ensure_accepts_answers(session)
        if session.status != SessionStatus.PAUSED:
            raise InvalidTransitionError(
                f"Session {session.session_id} is not paused",
                metadata={"session_id": session.session_id, "status": session.status.value},
            )
        if self.check_timeout(session):
            return session

        session.status = SessionStatus.ACTIVE
        session.metadata.pop("pause_reason", None)
        session.last_activity = self._clock()
        if not session.open_questions():
            session.questions_asked.extend(self._next_round(session))
        self.logger.info("session_resumed", extra=self.log_extra(session_id=session.session_id))
        self._publish([SessionResumed(session_id=session.session_id, task_id=session.task_context.task_id)])
        return session

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_session(self, session: QuestioningSession) -> SessionAnalysis:
        answers = {a.question_id: a for a in session.answers_received}
        category_confidence: Dict[str, float] = {}
        for category in QuestionCategory:
            asked = [q for q in session.questions_asked if q.category == category]
            answered = [answers[q.id] for q in asked if q.id in answers]
            if not asked or not answered:
                category_confidence[category.value] = 0.0
                continue
            mean_level = sum(a.confidence_level for a in answered) / len(answered)
            category_confidence[category.value] = round(100.0 * len(answered) / len(asked) * (0.5 + 0.5 * mean_level), 2)

        gap_analysis = {severity.value: len(session.open_gaps(severity)) for severity in Severity}
        gap_analysis["closed"] = sum(1 for g in session.identified_gaps if not g.is_open)

        blocking: List[str] = []
        if session.status == SessionStatus.TIMED_OUT:
            blocking.append("Session timed out; start a new session")
        if session.confidence_score < session.target_confidence:
            blocking.append(
                f"Confidence {session.confidence_score:.1f} is below target {session.target_confidence:.1f}"
            )
        blocking.extend(f"Critical gap {g.id}: {g.description}" for g in session.open_gaps(Severity.CRITICAL))

        actions: List[str] = []
        open_questions = session.open_questions()
        if open_questions and not session.status.is_terminal:
            actions.append(f"Answer {len(open_questions)} open questions")
        if session.status == SessionStatus.PAUSED:
            actions.append(f"Resolve the pause ({session.metadata.get('pause_reason', 'manual')}) and resume")
        if isinstance(session.last_score, ConfidenceScore):
            actions.extend(r.description for r in session.last_score.recommendations)

        ready = session.status == SessionStatus.COMPLETED and not blocking
        return SessionAnalysis(
            overall_confidence=session.confidence_score,
            category_confidence=category_confidence,
            gap_analysis=gap_analysis,
            readiness=ReadinessAssessment(ready=ready, blocking_issues=blocking, recommended_actions=actions),
        )

    def _publish(self, events: Sequence[Event]) -> None:
        for event in events:
            self._bus.publish(event)
