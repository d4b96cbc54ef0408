"""
SpecGate Services

Detection, scoring, questioning and readiness services.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from specgate.services.base import Service, ServiceContext
    from specgate.services.events import EventBus, get_event_bus
    from specgate.services.event_persistence import InMemorySessionStore, SessionStore, install_store_sink
    from specgate.services.providers import (
        ContextProvider,
        GlossaryProvider,
        InMemoryPatternProvider,
        PatternProvider,
        StaticContextProvider,
        StaticGlossaryProvider,
        YamlGlossaryProvider,
        YamlPatternProvider,
    )
    from specgate.services.ambiguity import AmbiguityDetector
    from specgate.services.confidence import ConfidenceScorer, DynamicThresholdCalculator, TrendAnalyzer
    from specgate.services.questioning import AnswerResult, QuestioningEngine
    from specgate.services.readiness import ReadinessService

__all__ = [
    # Base
    "Service",
    "ServiceContext",
    # Events
    "EventBus",
    "get_event_bus",
    "SessionStore",
    "InMemorySessionStore",
    "install_store_sink",
    # Providers
    "GlossaryProvider",
    "StaticGlossaryProvider",
    "YamlGlossaryProvider",
    "PatternProvider",
    "InMemoryPatternProvider",
    "YamlPatternProvider",
    "ContextProvider",
    "StaticContextProvider",
    # Detection and scoring
    "AmbiguityDetector",
    "ConfidenceScorer",
    "DynamicThresholdCalculator",
    "TrendAnalyzer",
    # Sessions
    "QuestioningEngine",
    "AnswerResult",
    "ReadinessService",
]

_EXPORTS = {
    "Service": "specgate.services.base",
    "ServiceContext": "specgate.services.base",
    "EventBus": "specgate.services.events",
    "get_event_bus": "specgate.services.events",
    "SessionStore": "specgate.services.event_persistence",
    "InMemorySessionStore": "specgate.services.event_persistence",
    "install_store_sink": "specgate.services.event_persistence",
    "GlossaryProvider": "specgate.services.providers",
    "StaticGlossaryProvider": "specgate.services.providers",
    "YamlGlossaryProvider": "specgate.services.providers",
    "PatternProvider": "specgate.services.providers",
    "InMemoryPatternProvider": "specgate.services.providers",
    "YamlPatternProvider": "specgate.services.providers",
    "ContextProvider": "specgate.services.providers",
    "StaticContextProvider": "specgate.services.providers",
    "AmbiguityDetector": "specgate.services.ambiguity",
    "ConfidenceScorer": "specgate.services.confidence",
    "DynamicThresholdCalculator": "specgate.services.confidence",
    "TrendAnalyzer": "specgate.services.confidence",
    "QuestioningEngine": "specgate.services.questioning",
    "AnswerResult": "specgate.services.questioning",
    "ReadinessService": "specgate.services.readiness",
}


def __getattr__(name: str):
    module_path = _EXPORTS.get(name)
    if not module_path:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(module_path)
    return getattr(module, name)


def __dir__() -> list[str]:
    return sorted(__all__)
