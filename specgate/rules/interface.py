"""
SpecGate Rule Interface

Defines the abstract interface for rule families.
Each family checks one process principle and returns zero or more violations.
"""

from abc import ABC, abstractmethod
from typing import Any, FrozenSet, List, Optional

from pydantic import BaseModel

from specgate.logging import get_logger
from specgate.models.rules import Principle, RuleFamily, Rulebook, Violation
from specgate.models.session import Severity

logger = get_logger(__name__)


class Rule(ABC):
    """
    Abstract base class for rule families.

    A family owns its slice of the rulebook and turns inputs into violations.
    Whether a violation blocks is decided here, not by the family: it blocks
    exactly when its check is listed in ``blocking_checks`` and it is critical.

    Example:
        class MyRule(Rule):
            family = RuleFamily.QUALITY_GATE
            prefix = "qual"

            def evaluate(self, inputs) -> List[Violation]:
                if inputs.test_coverage < self.params.minimum_coverage:
                    return [self.violation("insufficient-coverage", Severity.HIGH, "...")]
                return []
    """

    family: RuleFamily
    prefix: str
    # None means every check of the family may block.
    blocking_checks: Optional[FrozenSet[str]] = None

    def __init__(self, rulebook: Rulebook) -> None:
        self.rulebook = rulebook
        self.principle: Principle = rulebook.principle_for(self.family)

    @property
    def rule_id(self) -> str:
        return self.principle.id

    @property
    def params(self) -> BaseModel:
        return getattr(self.rulebook, self.principle.parameters)

    @property
    def enabled(self) -> bool:
        """Whether this family is enabled in the rulebook."""
        return bool(getattr(self.params, "enabled", True))

    @abstractmethod
    def evaluate(self, inputs: Any) -> List[Violation]:
        """
        Check inputs against this family's parameters.

        Args:
            inputs: The family-specific input record

        Returns:
            Violations, empty when compliant
        """
        ...

    def can_block(self, check: str) -> bool:
        return self.blocking_checks is None or check in self.blocking_checks

    def violation(
        self,
        check: str,
        severity: Severity,
        description: str,
        *,
        resolution: Optional[str] = None,
        **details: Any,
    ) -> Violation:
        """Build a violation with a stable id and the family's blocking policy applied."""
        return Violation(
            id=f"{self.prefix}-{check}",
            family=self.family,
            rule_id=self.rule_id,
            severity=severity,
            description=description,
            blocked=severity == Severity.CRITICAL and self.can_block(check),
            resolution=resolution,
            details=details,
        )
