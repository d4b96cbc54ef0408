"""
SpecGate Rules

Rule families, the rule engine and rulebook loading.
"""

from specgate.rules.interface import Rule
from specgate.rules.families import (
    TDDRule,
    QuestioningCompletenessRule,
    ContextSufficiencyRule,
    QualityGateRule,
    ValidationGateRule,
    RULE_CLASSES,
)
from specgate.rules.engine import RuleEngine, load_rulebook

__all__ = [
    "Rule",
    "TDDRule",
    "QuestioningCompletenessRule",
    "ContextSufficiencyRule",
    "QualityGateRule",
    "ValidationGateRule",
    "RULE_CLASSES",
    "RuleEngine",
    "load_rulebook",
]
