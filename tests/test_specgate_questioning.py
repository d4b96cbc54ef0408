"""
Tests for the SpecGate questioning engine.

Covers session start, answer processing, gap and edge case tracking,
follow-up questions, phase progression, pausing, timeouts and the
scoring regression guard.
"""

import dataclasses

import pytest

from specgate.errors import (
    InvalidTransitionError,
    QuestionNotFoundError,
    ScoringAnomalyError,
    SessionPausedError,
    SessionTerminalError,
    ValidationError,
)
from specgate.models.session import (
    BusinessContext,
    ComplexityLevel,
    FollowUpTrigger,
    Priority,
    QuestionType,
    SessionPhase,
    SessionStatus,
    Severity,
    TaskContext,
    TriggerOperator,
)
from specgate.services.ambiguity import AmbiguityRegistry
from specgate.services.confidence import ConfidenceScorer
from specgate.services.events import (
    EventBus,
    PhaseChanged,
    ScoringAnomalyDetected,
    SessionCompleted,
    SessionPaused,
    SessionResumed,
    SessionStarted,
    SessionTimedOut,
)
from specgate.services.providers import InMemoryPatternProvider
from specgate.services.questioning import QuestioningEngine

CLEAN_ANSWER = "The finance team must export the monthly invoice report as CSV within 5 seconds"
VAGUE_ANSWER = "Some users want a fast and easy process"


# =============================================================================
# Fixtures
# =============================================================================

class ScriptedScorer(ConfidenceScorer):
    """Real breakdown, scripted overall values (falls back to the real score when exhausted)."""

    def __init__(self, context, values=()):
        super().__init__(context, patterns=InMemoryPatternProvider())
        self.values = list(values)

    def score(self, session, history=None):
        real = super().score(session, history)
        if not self.values:
            return real
        value = self.values.pop(0)
        trend = self.trend_analyzer.analyze([*(history or []), value])
        return dataclasses.replace(real, overall_confidence=value, trend=trend)


def clean_task(**overrides) -> TaskContext:
    values = dict(
        task_id="task-1",
        task_description=CLEAN_ANSWER,
        initial_requirements=[
            "The finance team must download each exported CSV file from the reports page within 10 seconds"
        ],
        stakeholders=["Product Owner"],
    )
    values.update(overrides)
    return TaskContext(**values)


def sparse_task() -> TaskContext:
    return TaskContext(task_id="task-2", task_description="Build the reporting feature")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    seen = []
    bus.add_handler(None, seen.append)
    return seen


@pytest.fixture
def make_engine(make_context, bus, clock):
    def _make(values=None, **config):
        config.setdefault("pause_on_diminishing_returns", False)
        context = make_context(**config)
        scorer = ScriptedScorer(context, values or ())
        return QuestioningEngine(context, scorer=scorer, event_bus=bus, clock=clock)
    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


def answer_all_open(engine, session, text=CLEAN_ANSWER):
    results = []
    for question in list(session.open_questions()):
        results.append(engine.process_answer(session, question.id, text))
    return results


# =============================================================================
# Start
# =============================================================================

class TestStart:
    def test_triage_round(self, engine, events):
        session = engine.start(clean_task())

        assert session.session_id.startswith("qs_")
        assert session.status == SessionStatus.ACTIVE
        assert session.current_phase == SessionPhase.TRIAGE
        assert [q.id for q in session.questions_asked] == ["q_1", "q_2", "q_3", "q_4", "q_5"]
        assert [q.type for q in session.questions_asked] == [
            QuestionType.CLARIFICATION,
            QuestionType.EDGE_CASE,
            QuestionType.EXPLORATION,
            QuestionType.VALIDATION,
            QuestionType.ASSUMPTION,
        ]
        assert all(q.priority == Priority.HIGH for q in session.questions_asked)
        assert session.identified_gaps == []
        assert session.confidence_history == [session.initial_confidence]
        assert session.phase_history[0].from_phase is None
        assert set(session.metadata["initial_factors"]) >= {"requirement_clarity", "stakeholders"}
        assert [type(e) for e in events] == [SessionStarted]
        assert events[0].triage_questions == 5

    def test_triage_count_is_configurable(self, make_engine):
        session = make_engine(triage_question_count=3).start(clean_task())
        assert len(session.questions_asked) == 3

    def test_integration_and_business_categories(self, engine):
        task = clean_task(
            domain="billing-api",
            complexity_level=ComplexityLevel.COMPLEX,
            business_context=BusinessContext(business_domain="finance"),
        )
        session = engine.start(task)

        assert [q.type for q in session.questions_asked] == [
            QuestionType.CLARIFICATION,
            QuestionType.INTEGRATION,
            QuestionType.CONSTRAINT,
            QuestionType.BUSINESS_RULE,
            QuestionType.EDGE_CASE,
        ]

    def test_sparse_task_opens_gaps(self, engine):
        session = engine.start(sparse_task())
        gaps = {g.category: g for g in session.identified_gaps}

        assert gaps["requirements"].severity == Severity.CRITICAL
        assert gaps["stakeholders"].severity == Severity.HIGH
        assert "incomplete_requirement" in gaps
        clarification = session.questions_asked[0]
        assert set(clarification.gap_addresses) == {gaps["requirements"].id, gaps["incomplete_requirement"].id}

    def test_already_confident_task_completes_immediately(self, engine, events):
        session = engine.start(clean_task(), target_confidence=5)

        assert session.status == SessionStatus.COMPLETED
        assert session.current_phase == SessionPhase.COMPLETION
        assert session.questions_asked == []
        assert [type(e) for e in events] == [SessionStarted, PhaseChanged, SessionCompleted]

    @pytest.mark.parametrize("target", [-1, 100.5])
    def test_target_must_be_a_percentage(self, engine, target):
        with pytest.raises(ValidationError):
            engine.start(clean_task(), target_confidence=target)

    def test_task_id_required(self, engine):
        with pytest.raises(ValidationError):
            engine.start(clean_task(task_id=""))


# =============================================================================
# Answers
# =============================================================================

class TestProcessAnswer:
    def test_clear_answer_closes_addressed_gaps(self, engine):
        session = engine.start(sparse_task())
        gaps = {g.category: g.id for g in session.identified_gaps}

        result = engine.process_answer(session, "q_1", CLEAN_ANSWER)

        assert result.recorded
        assert sorted(result.closed_gaps) == sorted([gaps["requirements"], gaps["incomplete_requirement"]])
        assert session.get_gap(gaps["requirements"]).closed_by == "q_1"
        assert result.new_gaps == []
        # The stakeholder gap has no triage question yet, so the next round asks about it.
        assert [q.gap_addresses for q in result.new_questions] == [(gaps["stakeholders"],)]
        assert result.new_questions[0].text == "Who owns this work and who must approve the result?"

    def test_uncertain_answer_opens_critical_gap(self, engine):
        session = engine.start(clean_task())

        result = engine.process_answer(session, "q_1", "Not sure, the product owner has not decided")

        assert [(g.category, g.severity) for g in result.new_gaps] == [("uncertainty", Severity.CRITICAL)]
        assert result.new_gaps[0].source == "answer:q_1"
        assert result.new_questions[0].gap_addresses == (result.new_gaps[0].id,)
        assert result.answer.confidence_level == pytest.approx(0.3)

    def test_answer_records_assumptions(self, engine):
        session = engine.start(clean_task())

        result = engine.process_answer(
            session, "q_1", "The finance team must export the report as CSV. I think they will also want PDF later."
        )

        assert result.answer.assumptions_identified == ("I think they will also want PDF later.",)

    def test_multiple_options_trigger_follow_up(self, engine):
        session = engine.start(clean_task())

        result = engine.process_answer(session, "q_1", "Either CSV or PDF export is acceptable for the finance team")

        assert [q.text for q in result.new_questions] == ["Which option would you prefer and why?"]
        follow_up = result.new_questions[0]
        assert follow_up.id == "q_6"
        assert follow_up.type == QuestionType.CLARIFICATION
        assert "Follow-up to q_1" in follow_up.reasoning
        assert result.answer.follow_up_questions_generated == ("q_6",)

    def test_edge_cases_are_discovered_once_per_family(self, engine):
        session = engine.start(clean_task())

        first = engine.process_answer(session, "q_1", "Uploads over the size limit must be rejected with an error")
        second = engine.process_answer(session, "q_2", "The limit is enforced on every upload")

        assert [e.category for e in first.new_edge_cases] == ["input_validation", "boundary_values", "error_recovery"]
        assert [e.id for e in first.new_edge_cases] == ["ec_1", "ec_2", "ec_3"]
        edge_questions = [q for q in first.new_questions if q.type == QuestionType.EDGE_CASE]
        assert len(edge_questions) == 3
        assert all(e.questions_generated for e in session.edge_cases)
        assert second.new_edge_cases == []

    def test_answers_update_confidence_history(self, make_engine):
        engine = make_engine(values=[30.0, 40.0])
        session = engine.start(clean_task())

        engine.process_answer(session, "q_1", CLEAN_ANSWER)
        engine.process_answer(session, "q_2", CLEAN_ANSWER)

        assert session.raw_confidence_history == [30.0, 40.0]
        assert session.confidence_history[1:] == [30.0, 40.0]
        assert session.confidence_score == 40.0

    def test_initial_estimate_is_a_floor(self, make_engine):
        engine = make_engine(values=[1.0])
        session = engine.start(clean_task())

        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        assert session.confidence_score == session.initial_confidence

    def test_unknown_question(self, engine):
        session = engine.start(clean_task())
        with pytest.raises(QuestionNotFoundError):
            engine.process_answer(session, "q_99", CLEAN_ANSWER)

    def test_question_cannot_be_answered_twice(self, engine):
        session = engine.start(clean_task())
        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        with pytest.raises(QuestionNotFoundError):
            engine.process_answer(session, "q_1", CLEAN_ANSWER)

    @pytest.mark.parametrize("text,level", [("   ", None), (CLEAN_ANSWER, 1.5)])
    def test_invalid_answers_leave_session_untouched(self, engine, text, level):
        session = engine.start(clean_task())

        with pytest.raises(ValidationError):
            engine.process_answer(session, "q_1", text, confidence_level=level)
        assert session.answers_received == []

    def test_explicit_confidence_level_is_kept(self, engine):
        session = engine.start(clean_task())
        result = engine.process_answer(session, "q_1", CLEAN_ANSWER, confidence_level=0.95)
        assert result.answer.confidence_level == 0.95

    def test_findings_are_referenced_by_gaps(self, engine):
        registry = AmbiguityRegistry()
        session = engine.start(clean_task(), ambiguities=registry)
        before = {a.id for a in registry.ambiguities()}

        result = engine.process_answer(session, "q_1", VAGUE_ANSWER, ambiguities=registry)

        found = {a.id for a in result.new_ambiguities}
        assert found
        assert {a.id for a in registry.ambiguities()} == before | found
        assert found <= set(session.ambiguity_ids)
        linked = [g for g in result.new_gaps if g.ambiguity_ids]
        assert "vague_term" in [g.category for g in linked]
        assert {i for g in linked for i in g.ambiguity_ids} <= found

    def test_rejected_answer_registers_nothing(self, make_engine):
        engine = make_engine(values=[40.0, 30.0])
        registry = AmbiguityRegistry()
        session = engine.start(clean_task(), ambiguities=registry)
        engine.process_answer(session, "q_1", CLEAN_ANSWER, ambiguities=registry)
        registered, referenced = len(registry), list(session.ambiguity_ids)

        with pytest.raises(ScoringAnomalyError):
            engine.process_answer(session, "q_2", VAGUE_ANSWER, ambiguities=registry)

        assert len(registry) == registered
        assert session.ambiguity_ids == referenced

    def test_resolving_every_finding_closes_the_gap(self, engine):
        registry = AmbiguityRegistry()
        session = engine.start(clean_task(), ambiguities=registry)
        result = engine.process_answer(session, "q_1", VAGUE_ANSWER, ambiguities=registry)
        gap = next(g for g in result.new_gaps if g.category == "vague_term")
        assert len(gap.ambiguity_ids) >= 2

        for ambiguity_id in gap.ambiguity_ids[:-1]:
            registry.ignore(ambiguity_id, "duplicate", actor="analyst")
        assert gap.id not in engine.close_resolved_gaps(session, registry)
        assert gap.is_open

        registry.resolve(gap.ambiguity_ids[-1], "Under 2 seconds at p95", resolved_by="product owner")

        assert gap.id in engine.close_resolved_gaps(session, registry)
        assert gap.closed_by == f"ambiguity:{gap.ambiguity_ids[-1]}"
        assert gap.closed_at is not None


class TestFollowUpTrigger:
    def test_contains_matches_whole_words(self):
        trigger = FollowUpTrigger("options", TriggerOperator.CONTAINS, ("or",))

        assert trigger.matches("CSV or PDF")
        assert not trigger.matches("a monthly report")

    def test_numeric_comparison_prefers_structured_data(self):
        trigger = FollowUpTrigger("expected_users", TriggerOperator.GREATER_THAN, 1000)

        assert trigger.matches("not sure", {"expected_users": 5000})
        assert not trigger.matches("about 200 people")
        assert not trigger.matches("no number here")

    def test_equality(self):
        assert FollowUpTrigger("c", TriggerOperator.EQUALS, "Yes").matches(" yes ")
        assert FollowUpTrigger("c", TriggerOperator.NOT_EQUALS, "yes").matches("no")


# =============================================================================
# Scoring Guard
# =============================================================================

class TestScoringGuard:
    def test_regression_without_critical_gap_is_rejected(self, make_engine, events):
        engine = make_engine(values=[40.0, 30.0])
        session = engine.start(clean_task())
        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        with pytest.raises(ScoringAnomalyError):
            engine.process_answer(session, "q_2", CLEAN_ANSWER)

        assert len(session.answers_received) == 1
        assert session.confidence_score == 40.0
        assert "q_2" not in session.answered_question_ids
        anomalies = [e for e in events if isinstance(e, ScoringAnomalyDetected)]
        assert len(anomalies) == 1
        assert (anomalies[0].previous, anomalies[0].current) == (40.0, 30.0)

    def test_regression_with_new_critical_gap_is_allowed(self, make_engine):
        engine = make_engine(values=[40.0, 30.0])
        session = engine.start(clean_task())
        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        result = engine.process_answer(session, "q_2", "Not sure yet")

        assert result.recorded
        assert session.confidence_score == 30.0


# =============================================================================
# Phases
# =============================================================================

class TestPhases:
    def test_progression_to_completion(self, make_engine, events):
        engine = make_engine(values=[20.0, 30.0, 40.0, 50.0, 65.0, 90.0])
        session = engine.start(clean_task())

        results = answer_all_open(engine, session)

        assert session.current_phase == SessionPhase.REFINEMENT
        assert [(c.from_phase, c.to_phase) for c in results[-1].phase_changes] == [
            (SessionPhase.TRIAGE, SessionPhase.EXPLORATION),
            (SessionPhase.EXPLORATION, SessionPhase.VALIDATION),
            (SessionPhase.VALIDATION, SessionPhase.REFINEMENT),
        ]
        refinement = session.open_questions()
        assert [q.type for q in refinement] == [QuestionType.USABILITY, QuestionType.CONSTRAINT, QuestionType.VALIDATION]

        final = engine.process_answer(session, refinement[0].id, CLEAN_ANSWER)

        assert session.status == SessionStatus.COMPLETED
        assert session.current_phase == SessionPhase.COMPLETION
        assert final.new_questions == []
        orders = [c.to_phase.order for c in session.phase_history]
        assert orders == sorted(orders) and len(set(orders)) == len(orders)
        assert isinstance(events[-1], SessionCompleted)

    def test_stays_in_exploration_below_threshold(self, make_engine):
        engine = make_engine(values=[20.0, 21.0, 22.0, 23.0, 24.0])
        session = engine.start(clean_task())

        answer_all_open(engine, session)

        assert session.current_phase == SessionPhase.EXPLORATION
        assert [q.type for q in session.open_questions()] == [
            QuestionType.WORKFLOW,
            QuestionType.INTEGRATION,
            QuestionType.PERFORMANCE,
        ]

    def test_open_ended_question_when_focus_is_exhausted(self, make_engine):
        engine = make_engine(values=[10.5, 11.0, 12.0, 13.0, 14.0], triage_question_count=1)
        session = engine.start(clean_task())

        engine.process_answer(session, "q_1", CLEAN_ANSWER)
        assert len(session.open_questions()) == 4
        answer_all_open(engine, session)

        open_questions = session.open_questions()
        assert [q.text for q in open_questions] == [
            "Is there anything about functional requirements we have not covered yet?"
        ]
        assert open_questions[0].priority == Priority.LOW

    def test_answer_cap_forces_validation_below_threshold(self, make_engine):
        engine = make_engine(values=[20.0] * 21)
        session = engine.start(clean_task())

        for _ in range(20):
            result = engine.process_answer(session, session.open_questions()[0].id, "Not sure yet")
            assert result.recorded
        assert session.current_phase == SessionPhase.EXPLORATION

        result = engine.process_answer(session, session.open_questions()[0].id, "Not sure yet")

        assert len(session.answers_received) == 21
        assert session.confidence_score < 60.0
        assert [(c.from_phase, c.to_phase) for c in result.phase_changes] == [
            (SessionPhase.EXPLORATION, SessionPhase.VALIDATION),
        ]
        assert session.current_phase == SessionPhase.VALIDATION

    def test_minimal_gaps_reach_refinement_below_threshold(self, make_engine):
        engine = make_engine(values=[20.0, 30.0, 40.0, 50.0, 65.0])
        session = engine.start(clean_task())

        results = answer_all_open(engine, session)

        assert session.confidence_score == 65.0
        assert session.open_gaps() == []
        assert engine._has_minimal_gaps(session)
        assert results[-1].phase_changes[-1].from_phase == SessionPhase.VALIDATION
        assert session.current_phase == SessionPhase.REFINEMENT

    def test_open_critical_gap_holds_validation(self, make_engine):
        engine = make_engine(values=[20.0, 30.0, 40.0, 50.0, 65.0])
        session = engine.start(clean_task())
        for question_id in ("q_1", "q_2", "q_3", "q_4"):
            engine.process_answer(session, question_id, CLEAN_ANSWER)

        result = engine.process_answer(session, "q_5", "Not sure yet")

        assert session.confidence_score == 65.0
        assert session.open_gaps(Severity.CRITICAL)
        assert not engine._has_minimal_gaps(session)
        assert [c.to_phase for c in result.phase_changes] == [SessionPhase.EXPLORATION, SessionPhase.VALIDATION]
        assert session.current_phase == SessionPhase.VALIDATION

    def test_answering_completed_session_is_terminal(self, engine):
        session = engine.start(clean_task(), target_confidence=5)
        with pytest.raises(SessionTerminalError):
            engine.process_answer(session, "q_1", CLEAN_ANSWER)


# =============================================================================
# Pause, Resume and Timeout
# =============================================================================

class TestLifecycle:
    def test_pause_and_resume(self, engine, events):
        session = engine.start(clean_task())

        engine.pause(session, "waiting on legal")
        assert session.status == SessionStatus.PAUSED
        assert session.metadata["pause_reason"] == "waiting on legal"
        with pytest.raises(SessionPausedError):
            engine.process_answer(session, "q_1", CLEAN_ANSWER)
        with pytest.raises(InvalidTransitionError):
            engine.pause(session)

        engine.resume(session)
        assert session.status == SessionStatus.ACTIVE
        assert "pause_reason" not in session.metadata
        with pytest.raises(InvalidTransitionError):
            engine.resume(session)

        kinds = [type(e) for e in events]
        assert SessionPaused in kinds and SessionResumed in kinds

    def test_diminishing_returns_pause(self, make_engine):
        engine = make_engine(
            values=[20.0, 30.0, 40.0, 50.0, 65.0, 66.0, 66.5],
            pause_on_diminishing_returns=True,
        )
        session = engine.start(clean_task())
        answer_all_open(engine, session)
        refinement = session.open_questions()

        engine.process_answer(session, refinement[0].id, CLEAN_ANSWER)
        assert session.status == SessionStatus.ACTIVE
        engine.process_answer(session, refinement[1].id, CLEAN_ANSWER)

        assert session.status == SessionStatus.PAUSED
        assert session.metadata["pause_reason"] == "diminishing_returns"

    def test_pause_when_no_questions_remain(self, make_engine):
        engine = make_engine(triage_question_count=1, max_round_questions=0)
        session = engine.start(clean_task())

        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        assert session.status == SessionStatus.PAUSED
        assert session.metadata["pause_reason"] == "no_questions_remaining"

    def test_answer_after_ceiling_times_out(self, engine, clock, events):
        session = engine.start(clean_task())
        clock.advance(hours=9)

        result = engine.process_answer(session, "q_1", CLEAN_ANSWER)

        assert not result.recorded
        assert session.status == SessionStatus.TIMED_OUT
        assert session.answers_received == []
        assert any(isinstance(e, SessionTimedOut) for e in events)
        with pytest.raises(SessionTerminalError):
            engine.process_answer(session, "q_1", CLEAN_ANSWER)

    def test_check_timeout_before_ceiling(self, engine, clock):
        session = engine.start(clean_task())
        clock.advance(hours=7)

        assert engine.check_timeout(session) is False
        assert session.status == SessionStatus.ACTIVE

    def test_resume_after_ceiling_times_out(self, engine, clock):
        session = engine.start(clean_task())
        engine.pause(session)
        clock.advance(hours=9)

        engine.resume(session)

        assert session.status == SessionStatus.TIMED_OUT


# =============================================================================
# Analysis
# =============================================================================

class TestAnalysis:
    def test_in_progress_session(self, engine):
        session = engine.start(clean_task())
        engine.process_answer(session, "q_1", CLEAN_ANSWER)

        analysis = engine.analyze_session(session)

        assert analysis.category_confidence["functional"] == pytest.approx(45.0)
        assert analysis.category_confidence["testing"] == 0.0
        assert analysis.gap_analysis["closed"] == 0
        assert not analysis.readiness.ready
        assert any("below target" in issue for issue in analysis.readiness.blocking_issues)
        assert "Answer 4 open questions" in analysis.readiness.recommended_actions

    def test_completed_session_is_ready(self, make_engine):
        engine = make_engine(values=[20.0, 30.0, 40.0, 50.0, 65.0, 90.0])
        session = engine.start(clean_task())
        answer_all_open(engine, session)
        engine.process_answer(session, session.open_questions()[0].id, CLEAN_ANSWER)

        analysis = engine.analyze_session(session)

        assert analysis.readiness.ready
        assert analysis.readiness.blocking_issues == []
        assert analysis.overall_confidence == 90.0
