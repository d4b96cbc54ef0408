"""
SpecGate Question Strategies

A closed dispatch table from question type to the strategy that words it.
Adding a question type means adding an enum member and a table entry; the
table is checked for completeness at import time.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from specgate.models.session import (
    ExpectedAnswerType,
    FollowUpTrigger,
    Priority,
    Question,
    QuestionCategory,
    QuestionType,
    RequirementGap,
    SessionPhase,
    TaskContext,
    TriggerOperator,
)


@dataclass(frozen=True)
class QuestionDraft:
    text: str
    category: QuestionCategory
    expected_answer_type: ExpectedAnswerType
    reasoning: str
    follow_up_triggers: Tuple[FollowUpTrigger, ...] = ()


Strategy = Callable[[TaskContext, str], QuestionDraft]


def _subject(task: TaskContext, limit: int = 80) -> str:
    text = " ".join(task.task_description.split()) or task.task_id
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _area(focus: str) -> str:
    return focus.replace("_", " ")


MULTIPLE_OPTIONS = FollowUpTrigger(
    condition="mentions_multiple_options",
    operator=TriggerOperator.CONTAINS,
    value=("or", "either", "maybe"),
    follow_up_questions=("Which option would you prefer and why?",),
)


def _clarification(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Can you clarify the specific requirements for {_area(focus)} in the context of {_subject(task)}?",
        category=QuestionCategory.FUNCTIONAL,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning=f"Clarification needed for {_area(focus)} to establish baseline understanding",
        follow_up_triggers=(MULTIPLE_OPTIONS,),
    )


def _exploration(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Walk through how {_area(focus)} should work for {_subject(task)}, from start to finish.",
        category=QuestionCategory.FUNCTIONAL,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning=f"Explores {_area(focus)} beyond the initial description",
        follow_up_triggers=(MULTIPLE_OPTIONS,),
    )


def _validation(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"How will we verify {_area(focus)} is met for {_subject(task)}? What are the acceptance criteria?",
        category=QuestionCategory.TESTING,
        expected_answer_type=ExpectedAnswerType.STRUCTURED,
        reasoning="Acceptance criteria make the requirement testable",
    )


def _edge_case(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"What should happen in unusual or failure situations around {_area(focus)}?",
        category=QuestionCategory.TESTING,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Edge cases drive the negative test suite",
        follow_up_triggers=(
            FollowUpTrigger(
                condition="mentions_retry",
                operator=TriggerOperator.CONTAINS,
                value=("retry", "retries"),
                follow_up_questions=("How many retries are allowed, and what happens when they are exhausted?",),
            ),
        ),
    )


def _constraint(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Which constraints (time, budget, technology, regulation) limit {_area(focus)}?",
        category=QuestionCategory.NON_FUNCTIONAL,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Constraints narrow the solution space early",
    )


def _assumption(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"What are we assuming about {_area(focus)} that has not been confirmed yet?",
        category=QuestionCategory.BUSINESS,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Unstated assumptions are a common source of rework",
    )


def _integration(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Which systems does {_subject(task)} integrate with for {_area(focus)}, and through which interfaces?",
        category=QuestionCategory.INTEGRATION,
        expected_answer_type=ExpectedAnswerType.STRUCTURED,
        reasoning="Integration points carry most of the delivery risk",
        follow_up_triggers=(
            FollowUpTrigger(
                condition="mentions_external_system",
                operator=TriggerOperator.CONTAINS,
                value=("external", "third-party", "vendor"),
                follow_up_questions=("What should happen when the external system is unavailable?",),
            ),
        ),
    )


def _performance(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"What load and response-time targets apply to {_area(focus)}? Please give numbers.",
        category=QuestionCategory.NON_FUNCTIONAL,
        expected_answer_type=ExpectedAnswerType.NUMERIC,
        reasoning="Performance targets must be quantified to be testable",
        follow_up_triggers=(
            FollowUpTrigger(
                condition="expected_users",
                operator=TriggerOperator.GREATER_THAN,
                value=1000,
                follow_up_questions=("How should the system scale as load grows beyond that figure?",),
            ),
        ),
    )


def _security(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Who may access {_area(focus)}, and what data must be protected?",
        category=QuestionCategory.COMPLIANCE,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Access rules and data sensitivity shape the design",
        follow_up_triggers=(
            FollowUpTrigger(
                condition="mentions_sensitive_data",
                operator=TriggerOperator.CONTAINS,
                value=("personal", "payment", "pii", "sensitive"),
                follow_up_questions=("Which regulations govern this data?",),
            ),
        ),
    )


def _usability(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Who are the users of {_area(focus)} and what must they be able to do without help?",
        category=QuestionCategory.USER_EXPERIENCE,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Usability expectations are rarely written down",
    )


def _business_rule(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"Which business rules or policies govern {_area(focus)}?",
        category=QuestionCategory.BUSINESS,
        expected_answer_type=ExpectedAnswerType.STRUCTURED,
        reasoning="Business rules determine correct behavior",
    )


def _workflow(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"What are the steps of the {_area(focus)} workflow, and who performs each one?",
        category=QuestionCategory.FUNCTIONAL,
        expected_answer_type=ExpectedAnswerType.STRUCTURED,
        reasoning="Workflow steps expose missing states and actors",
    )


def _error_handling(task: TaskContext, focus: str) -> QuestionDraft:
    return QuestionDraft(
        text=f"How should errors in {_area(focus)} be reported, and what must the user see?",
        category=QuestionCategory.TECHNICAL,
        expected_answer_type=ExpectedAnswerType.TEXT,
        reasoning="Error handling is part of the observable behavior",
    )


QUESTION_STRATEGIES: Dict[QuestionType, Strategy] = {
    QuestionType.CLARIFICATION: _clarification,
    QuestionType.EXPLORATION: _exploration,
    QuestionType.VALIDATION: _validation,
    QuestionType.EDGE_CASE: _edge_case,
    QuestionType.CONSTRAINT: _constraint,
    QuestionType.ASSUMPTION: _assumption,
    QuestionType.INTEGRATION: _integration,
    QuestionType.PERFORMANCE: _performance,
    QuestionType.SECURITY: _security,
    QuestionType.USABILITY: _usability,
    QuestionType.BUSINESS_RULE: _business_rule,
    QuestionType.WORKFLOW: _workflow,
    QuestionType.ERROR_HANDLING: _error_handling,
}

_missing = set(QuestionType) - set(QUESTION_STRATEGIES)
if _missing:
    raise RuntimeError(f"No question strategy for: {sorted(t.value for t in _missing)}")


# Triage padding when fewer priority categories apply.
FALLBACK_ORDER: Tuple[Tuple[QuestionType, str], ...] = (
    (QuestionType.EXPLORATION, "user_workflows"),
    (QuestionType.VALIDATION, "acceptance_criteria"),
    (QuestionType.ASSUMPTION, "key_assumptions"),
    (QuestionType.PERFORMANCE, "performance_targets"),
    (QuestionType.SECURITY, "access_control"),
    (QuestionType.USABILITY, "user_experience"),
    (QuestionType.WORKFLOW, "process_steps"),
    (QuestionType.ERROR_HANDLING, "failure_modes"),
)

PHASE_FOCUS: Dict[SessionPhase, Tuple[Tuple[QuestionType, str], ...]] = {
    SessionPhase.TRIAGE: (),
    SessionPhase.EXPLORATION: (
        (QuestionType.EXPLORATION, "user_workflows"),
        (QuestionType.WORKFLOW, "process_steps"),
        (QuestionType.INTEGRATION, "external_systems"),
        (QuestionType.PERFORMANCE, "performance_targets"),
    ),
    SessionPhase.VALIDATION: (
        (QuestionType.VALIDATION, "acceptance_criteria"),
        (QuestionType.ASSUMPTION, "key_assumptions"),
        (QuestionType.ERROR_HANDLING, "failure_modes"),
        (QuestionType.SECURITY, "access_control"),
    ),
    SessionPhase.REFINEMENT: (
        (QuestionType.USABILITY, "user_experience"),
        (QuestionType.CONSTRAINT, "delivery_constraints"),
        (QuestionType.VALIDATION, "definition_of_done"),
    ),
    SessionPhase.COMPLETION: (),
}

# Which question type closes which gap category.
GAP_QUESTION_TYPES: Dict[str, QuestionType] = {
    "requirements": QuestionType.CLARIFICATION,
    "stakeholders": QuestionType.BUSINESS_RULE,
    "uncertainty": QuestionType.ASSUMPTION,
    "vague_term": QuestionType.CLARIFICATION,
    "overloaded_term": QuestionType.CLARIFICATION,
    "missing_context": QuestionType.EXPLORATION,
    "contradiction": QuestionType.VALIDATION,
    "incomplete_requirement": QuestionType.CLARIFICATION,
    "subjective_criteria": QuestionType.VALIDATION,
    "undefined_relationship": QuestionType.INTEGRATION,
}


def question_type_for_gap(gap: RequirementGap) -> QuestionType:
    return GAP_QUESTION_TYPES.get(gap.category, QuestionType.CLARIFICATION)


def triage_plan(task: TaskContext, count: int) -> List[Tuple[QuestionType, str]]:
    """
    Priority categories for the triage round, padded to exactly ``count``.

    Functional clarification always comes first and error scenarios are
    always included.
    """
    plan: List[Tuple[QuestionType, str]] = [(QuestionType.CLARIFICATION, "core_functionality")]
    tc = task.technical_context
    if "api" in task.domain.lower() or (tc and tc.integration_points):
        plan.append((QuestionType.INTEGRATION, "api_design"))
    if task.complexity_level.value == "complex":
        plan.append((QuestionType.CONSTRAINT, "complexity_management"))
    if task.business_context:
        plan.append((QuestionType.BUSINESS_RULE, "business_logic"))
    plan.append((QuestionType.EDGE_CASE, "error_scenarios"))

    plan = plan[:count]
    for entry in FALLBACK_ORDER:
        if len(plan) >= count:
            break
        if entry not in plan:
            plan.append(entry)
    return plan


def build_question(
    question_type: QuestionType,
    task: TaskContext,
    focus: str,
    *,
    question_id: str,
    phase: SessionPhase,
    priority: Priority = Priority.MEDIUM,
    gap_addresses: Sequence[str] = (),
    text: Optional[str] = None,
    reasoning: Optional[str] = None,
) -> Question:
    """Word a question through its type's strategy; ``text`` overrides the wording."""
    draft = QUESTION_STRATEGIES[question_type](task, focus)
    return Question(
        id=question_id,
        text=text or draft.text,
        type=question_type,
        category=draft.category,
        priority=priority,
        reasoning=reasoning or draft.reasoning,
        expected_answer_type=draft.expected_answer_type,
        phase=phase,
        follow_up_triggers=draft.follow_up_triggers,
        gap_addresses=tuple(gap_addresses),
    )
