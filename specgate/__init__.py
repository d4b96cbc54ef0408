"""
SpecGate: Requirements Readiness Engine

Decides whether enough is known about a unit of work to start implementing it:
- Questioning sessions that drive phase progression
- Weighted confidence scoring with dynamic thresholds
- Ambiguity and gap detection over free-text requirements
- A rule engine that blocks work on non-negotiable process breaches

Distribution: Available as both Python library and CLI
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
