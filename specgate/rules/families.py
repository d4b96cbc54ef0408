"""
SpecGate Rule Families

The five process rules: test discipline, questioning completeness, context
sufficiency, quality gates and validation gates.
"""

from typing import List, Optional

from specgate.models.rules import (
    ContextInput,
    ContextParams,
    QualityInput,
    QualityParams,
    QuestioningInput,
    QuestioningParams,
    RuleFamily,
    TDDInput,
    TDDParams,
    TDDPhase,
    ValidationInput,
    ValidationParams,
    Violation,
)
from specgate.models.session import Severity
from specgate.rules.interface import Rule


class TDDRule(Rule):
    """Tests exist, fail first in the red phase, and cover enough code."""

    family = RuleFamily.TEST_DISCIPLINE
    prefix = "tdd"

    def evaluate(self, inputs: TDDInput) -> List[Violation]:
        params: TDDParams = self.params
        if not inputs.has_tests:
            # Coverage means nothing without tests; report the absence alone.
            return [
                self.violation(
                    "missing-tests",
                    Severity.CRITICAL,
                    "No tests exist for this work",
                    resolution="Write failing tests before implementing",
                )
            ]

        violations: List[Violation] = []
        if params.require_failing_first and inputs.phase == TDDPhase.RED and not inputs.tests_are_failing:
            violations.append(
                self.violation(
                    "tests-not-failing",
                    Severity.CRITICAL,
                    "Red phase requires failing tests, but tests are passing",
                    resolution="Make sure new tests fail before writing the implementation",
                    phase=inputs.phase.value,
                )
            )
        if inputs.coverage < params.minimum_coverage:
            violations.append(
                self.violation(
                    "insufficient-coverage",
                    Severity.CRITICAL,
                    f"Test coverage {inputs.coverage:g}% is below required {params.minimum_coverage:g}%",
                    resolution="Add tests for uncovered code paths",
                    coverage=inputs.coverage,
                    required=params.minimum_coverage,
                )
            )
        return violations


class QuestioningCompletenessRule(Rule):
    """Confidence must reach the threshold before implementation begins."""

    family = RuleFamily.QUESTIONING_COMPLETENESS
    prefix = "q"

    def evaluate(self, inputs: QuestioningInput, threshold: Optional[float] = None) -> List[Violation]:
        params: QuestioningParams = self.params
        required = params.minimum_confidence if threshold is None else threshold
        if inputs.confidence >= required:
            return []

        if inputs.questions_asked == 0:
            description = (
                f"Triage phase required: no questions asked "
                f"(confidence {inputs.confidence:.1f}% < {required:g}%)"
            )
        else:
            description = f"Confidence {inputs.confidence:.1f}% is below required {required:g}%"
        return [
            self.violation(
                "confidence-below-threshold",
                Severity.CRITICAL,
                description,
                resolution="Continue questioning to close the open gaps",
                confidence=round(inputs.confidence, 2),
                required=required,
                questions_asked=inputs.questions_asked,
                open_gaps=len(inputs.gaps_identified),
                edge_cases=len(inputs.edge_cases_found),
            )
        ]


class ContextSufficiencyRule(Rule):
    """Context stays self-contained and within an adaptive size band."""

    family = RuleFamily.CONTEXT_SIZE
    prefix = "ctx"
    blocking_checks = frozenset({"external-dependencies"})

    def minimum_lines(self, confidence: Optional[float]) -> int:
        """Required minimum shrinks as confidence rises."""
        params: ContextParams = self.params
        if not params.adaptive or confidence is None:
            return params.minimum_lines
        if confidence >= 90:
            return params.high_confidence_minimum
        if confidence >= 70:
            return params.medium_confidence_minimum
        return params.low_confidence_minimum

    def evaluate(self, inputs: ContextInput) -> List[Violation]:
        params: ContextParams = self.params
        if inputs.has_external_dependencies:
            return [
                self.violation(
                    "external-dependencies",
                    Severity.CRITICAL,
                    "Context references external dependencies and is not self-contained",
                    resolution="Embed the referenced material into the context",
                )
            ]

        violations: List[Violation] = []
        minimum = self.minimum_lines(inputs.confidence)
        if inputs.context_lines < minimum:
            violations.append(
                self.violation(
                    "context-too-small",
                    Severity.HIGH,
                    f"Context has {inputs.context_lines} lines, minimum is {minimum}",
                    resolution="Add decisions, patterns and constraints to the context",
                    lines=inputs.context_lines,
                    minimum=minimum,
                )
            )
        elif inputs.context_lines > params.maximum_lines:
            violations.append(
                self.violation(
                    "context-too-large",
                    Severity.HIGH,
                    f"Context has {inputs.context_lines} lines, maximum is {params.maximum_lines}",
                    resolution="Trim or shard the context",
                    lines=inputs.context_lines,
                    maximum=params.maximum_lines,
                )
            )

        missing = [
            ("missing-decision-log", params.require_decision_log and not inputs.has_decision_log, "decision log"),
            ("missing-patterns", params.require_patterns and not inputs.has_patterns, "patterns"),
            ("not-embedded", params.require_embedding and not inputs.is_embedded, "embedded context"),
        ]
        for check, is_missing, label in missing:
            if is_missing:
                violations.append(
                    self.violation(
                        check,
                        Severity.HIGH,
                        f"Context is missing required element: {label}",
                        resolution=f"Include the {label} in the context",
                    )
                )
        return violations


class QualityGateRule(Rule):
    """Coverage, review, performance and style targets."""

    family = RuleFamily.QUALITY_GATE
    prefix = "qual"
    blocking_checks = frozenset()

    def evaluate(self, inputs: QualityInput) -> List[Violation]:
        params: QualityParams = self.params
        violations: List[Violation] = []

        if inputs.test_coverage < params.minimum_coverage:
            violations.append(
                self.violation(
                    "insufficient-coverage",
                    Severity.HIGH,
                    f"Test coverage {inputs.test_coverage:g}% is below quality target {params.minimum_coverage:g}%",
                    resolution="Raise coverage before merging",
                )
            )
        if params.require_code_review and not inputs.has_code_review:
            violations.append(
                self.violation(
                    "missing-code-review",
                    Severity.HIGH,
                    "Code review is required but has not happened",
                    resolution="Request a review",
                )
            )

        if inputs.performance is not None:
            targets = params.performance
            for name in ("sharding_reduction", "context_lookup_reduction", "implementation_time_reduction"):
                actual = getattr(inputs.performance, name)
                target = getattr(targets, name)
                if actual < target:
                    violations.append(
                        self.violation(
                            name.replace("_", "-"),
                            Severity.MEDIUM,
                            f"{name.replace('_', ' ').capitalize()} {actual:g}% is below target {target:g}%",
                            actual=actual,
                            target=target,
                        )
                    )

        failed: List[str] = []
        if params.enforce_naming_conventions and not inputs.follows_naming_conventions:
            failed.append("naming conventions")
        if params.forbid_code_smells and inputs.has_code_smells:
            failed.append("code smells")
        if params.require_documentation and not inputs.has_documentation:
            failed.append("documentation")
        if failed:
            violations.append(
                self.violation(
                    "style-checks",
                    Severity.MEDIUM,
                    "Style checks failed: " + ", ".join(failed),
                    resolution="Address the listed style issues",
                    failed_checks=failed,
                )
            )
        return violations


class ValidationGateRule(Rule):
    """Validation before and after implementation, CI, regressions and compliance."""

    family = RuleFamily.VALIDATION_GATE
    prefix = "val"
    blocking_checks = frozenset({"constitutional-compliance"})

    def evaluate(self, inputs: ValidationInput) -> List[Violation]:
        params: ValidationParams = self.params
        violations: List[Violation] = []

        if not inputs.constitutionally_compliant:
            violations.append(
                self.violation(
                    "constitutional-compliance",
                    Severity.CRITICAL,
                    "Work is not compliant with the process rules",
                    resolution="Resolve every blocking violation and re-validate",
                )
            )

        failed: List[str] = []
        if params.require_pre_implementation and not inputs.pre_implementation_validated:
            failed.append("pre-implementation validation")
        if params.require_post_implementation and not inputs.post_implementation_validated:
            failed.append("post-implementation validation")
        if params.require_ci and not inputs.ci_checks_passed:
            failed.append("CI checks")
        if params.require_no_regressions and not inputs.no_regressions:
            failed.append("regression check")
        if failed:
            pre_failed = "pre-implementation validation" in failed
            violations.append(
                self.violation(
                    "validation-failures",
                    Severity.CRITICAL if pre_failed else Severity.HIGH,
                    "Validation failed: " + ", ".join(failed),
                    resolution="Run the missing validations",
                    failed_checks=failed,
                )
            )
        return violations


RULE_CLASSES = (
    TDDRule,
    QuestioningCompletenessRule,
    ContextSufficiencyRule,
    QualityGateRule,
    ValidationGateRule,
)
