"""
SpecGate Rule Engine

Runs the rule families, gates on blocking violations and manages rulebook
amendments.
"""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from specgate.errors import ConfigError, ConstitutionalViolationError
from specgate.models.rules import (
    Amendment,
    AmendmentResult,
    AmendmentStatus,
    ContextInput,
    EvaluationResult,
    QualityInput,
    QuestioningInput,
    RuleFamily,
    RuleInputs,
    Rulebook,
    TDDInput,
    ValidationInput,
    Violation,
)
from specgate.rules.families import (
    ContextSufficiencyRule,
    QualityGateRule,
    QuestioningCompletenessRule,
    RULE_CLASSES,
    TDDRule,
    ValidationGateRule,
)
from specgate.rules.interface import Rule
from specgate.services.base import Service, ServiceContext
from specgate.services.events import AmendmentProposed, EventBus, RulesEvaluated, get_event_bus


def load_rulebook(path: Union[str, Path]) -> Rulebook:
    """
    Load a rulebook from YAML.

    Missing sections fall back to defaults; unknown keys are rejected.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read rulebook {path}: {exc}", metadata={"path": str(path)}) from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Rulebook {path} must be a mapping", metadata={"path": str(path)})
    try:
        return Rulebook.model_validate(raw)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid rulebook {path}: {exc}", metadata={"path": str(path)}) from exc


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge override into base (dicts merge recursively, other values replace)."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class RuleEngine(Service):
    """
    Evaluates process rules and blocks on critical breaches.

    Evaluation is pure: the same inputs against the same rulebook always
    yield the same violations. Only amendments change engine state.

    Example:
        engine = RuleEngine()
        result = engine.evaluate(RuleInputs(test_discipline=TDDInput(has_tests=False)))
        engine.enforce(result)  # raises ConstitutionalViolationError
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        *,
        rulebook: Optional[Rulebook] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        super().__init__(context)
        if rulebook is None:
            rulebook = load_rulebook(self.config.rulebook_path) if self.config.rulebook_path else Rulebook()
        self._rulebook = rulebook
        self._bus = event_bus or get_event_bus()
        self._lock = threading.Lock()
        self._amendments: List[Amendment] = []
        self._rules: Dict[RuleFamily, Rule] = {}
        self._build_rules()

    def _build_rules(self) -> None:
        self._rules = {cls.family: cls(self._rulebook) for cls in RULE_CLASSES}

    @property
    def rulebook(self) -> Rulebook:
        return self._rulebook

    @property
    def amendments(self) -> List[Amendment]:
        return list(self._amendments)

    def rule(self, family: RuleFamily) -> Rule:
        return self._rules[family]

    # ------------------------------------------------------------------
    # Per-family checks
    # ------------------------------------------------------------------

    def check_test_discipline(self, inputs: TDDInput) -> List[Violation]:
        rule: TDDRule = self._rules[RuleFamily.TEST_DISCIPLINE]
        return rule.evaluate(inputs) if rule.enabled else []

    def check_questioning(self, inputs: QuestioningInput, threshold: Optional[float] = None) -> List[Violation]:
        rule: QuestioningCompletenessRule = self._rules[RuleFamily.QUESTIONING_COMPLETENESS]
        return rule.evaluate(inputs, threshold=threshold) if rule.enabled else []

    def check_context(self, inputs: ContextInput) -> List[Violation]:
        rule: ContextSufficiencyRule = self._rules[RuleFamily.CONTEXT_SIZE]
        return rule.evaluate(inputs) if rule.enabled else []

    def check_quality(self, inputs: QualityInput) -> List[Violation]:
        rule: QualityGateRule = self._rules[RuleFamily.QUALITY_GATE]
        return rule.evaluate(inputs) if rule.enabled else []

    def check_validation(self, inputs: ValidationInput) -> List[Violation]:
        rule: ValidationGateRule = self._rules[RuleFamily.VALIDATION_GATE]
        return rule.evaluate(inputs) if rule.enabled else []

    # ------------------------------------------------------------------
    # Aggregate evaluation and gating
    # ------------------------------------------------------------------

    def evaluate(self, inputs: RuleInputs, *, session_id: Optional[str] = None) -> EvaluationResult:
        """Run every family that has input and union the violations."""
        result = EvaluationResult()
        checks = [
            (RuleFamily.TEST_DISCIPLINE, inputs.test_discipline, self.check_test_discipline),
            (RuleFamily.QUESTIONING_COMPLETENESS, inputs.questioning, self.check_questioning),
            (RuleFamily.CONTEXT_SIZE, inputs.context, self.check_context),
            (RuleFamily.QUALITY_GATE, inputs.quality, self.check_quality),
            (RuleFamily.VALIDATION_GATE, inputs.validation, self.check_validation),
        ]
        for family, family_input, check in checks:
            if family_input is None:
                continue
            result.families_evaluated.append(family)
            result.violations.extend(check(family_input))

        self.logger.info(
            "rules_evaluated",
            extra=self.log_extra(
                session_id=session_id,
                families=[f.value for f in result.families_evaluated],
                violations=len(result.violations),
                blocking=len(result.blocking_violations),
            ),
        )
        self._bus.publish(
            RulesEvaluated(
                session_id=session_id,
                families=[f.value for f in result.families_evaluated],
                violations=[v.asdict() for v in result.violations],
                blocking=len(result.blocking_violations),
            )
        )
        return result

    def enforce(self, result: Union[EvaluationResult, List[Violation]]) -> None:
        """
        Raise ConstitutionalViolationError if any violation is blocking and critical.

        The error carries the full violation list; remediation is up to the caller.
        """
        violations = result.violations if isinstance(result, EvaluationResult) else list(result)
        blocking = [v for v in violations if v.is_blocking]
        if not blocking:
            return
        lines = "\n".join(f"- [{v.rule_id}] {v.description}" for v in blocking)
        self.logger.warning(
            "rules_blocked",
            extra=self.log_extra(blocking=[v.id for v in blocking]),
        )
        raise ConstitutionalViolationError(
            f"Blocking rule violations:\n{lines}",
            violations=violations,
            blocking=blocking,
            metadata={"blocking_ids": [v.id for v in blocking]},
        )

    def gate(self, inputs: RuleInputs, *, session_id: Optional[str] = None) -> EvaluationResult:
        """Evaluate and enforce in one step; returns the result when nothing blocks."""
        result = self.evaluate(inputs, session_id=session_id)
        self.enforce(result)
        return result

    # ------------------------------------------------------------------
    # Amendments
    # ------------------------------------------------------------------

    def propose_amendment(
        self,
        rule_id: str,
        change: Dict[str, Any],
        rationale: str,
        proposed_by: str = "unknown",
    ) -> AmendmentResult:
        """
        Propose a parameter change for a rule.

        Immutable rules, unknown rules and changes that fail parameter
        validation are rejected; accepted changes apply immediately.
        """
        with self._lock:
            amendment_id = f"amend-{len(self._amendments) + 1}"
            principle = self._rulebook.get_principle(rule_id)

            reason = ""
            new_rulebook: Optional[Rulebook] = None
            if principle is None:
                reason = f"Unknown rule: {rule_id}"
            elif principle.immutable:
                reason = f"Rule {rule_id} is immutable and cannot be amended"
            elif not change:
                reason = "Amendment contains no changes"
            elif not rationale or not rationale.strip():
                reason = "Amendment requires a rationale"
            else:
                section = getattr(self._rulebook, principle.parameters)
                try:
                    updated = type(section).model_validate(_deep_merge(section.model_dump(), change))
                except PydanticValidationError as exc:
                    reason = f"Invalid parameters for {rule_id}: {exc.errors()[0].get('msg', exc)}"
                else:
                    new_rulebook = self._rulebook.model_copy(update={principle.parameters: updated})

            accepted = new_rulebook is not None
            amendment = Amendment(
                id=amendment_id,
                rule_id=rule_id,
                proposed_by=proposed_by,
                change=dict(change),
                rationale=rationale,
                status=AmendmentStatus.IMPLEMENTED if accepted else AmendmentStatus.REJECTED,
                reason=reason or "Applied",
            )
            self._amendments.append(amendment)
            if new_rulebook is not None:
                self._rulebook = new_rulebook
                self._build_rules()

        self.logger.info(
            "amendment_proposed",
            extra=self.log_extra(rule_id=rule_id, amendment_id=amendment_id, accepted=accepted, reason=reason),
        )
        self._bus.publish(
            AmendmentProposed(rule_id=rule_id, amendment_id=amendment_id, accepted=accepted, reason=amendment.reason)
        )
        return AmendmentResult(accepted=accepted, reason=amendment.reason, amendment=amendment)
