"""
SpecGate Edge Case Discovery

Spots answer wording that hints at edge cases worth testing. Each family is
recorded at most once per session.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Pattern, Set, Tuple

from specgate.models.session import EdgeCase, Priority, SessionPhase


@dataclass(frozen=True)
class EdgeCaseFamily:
    category: str
    pattern: Pattern[str]
    scenario: str
    expected_behavior: str
    priority: Priority
    testing_strategy: str


EDGE_CASE_FAMILIES: Tuple[EdgeCaseFamily, ...] = (
    EdgeCaseFamily(
        "input_validation",
        re.compile(r"\b(inputs?|forms?|fields?|uploads?|pars\w+|invalid|malformed)\b", re.I),
        "Invalid or malformed input is submitted",
        "Input is rejected with a clear error and nothing is partially written",
        Priority.HIGH,
        "Property-based tests over malformed inputs",
    ),
    EdgeCaseFamily(
        "boundary_values",
        re.compile(r"\b(limits?|maximum|minimum|max|min|empty|zero|boundar\w+|thresholds?)\b", re.I),
        "Values sit exactly on or just beyond a limit",
        "Limits are enforced consistently at the boundary",
        Priority.MEDIUM,
        "Boundary value tests at, below and above each limit",
    ),
    EdgeCaseFamily(
        "concurrency",
        re.compile(r"\b(concurren\w+|simultaneous\w*|parallel|race|locks?|locking|at the same time)\b", re.I),
        "Two actors modify the same data at once",
        "Updates are serialized or conflicts are reported, never silently lost",
        Priority.HIGH,
        "Concurrent access tests with interleaved writes",
    ),
    EdgeCaseFamily(
        "network_failure",
        re.compile(r"\b(network|timeouts?|offline|latency|unavailable|retry|retries)\b", re.I),
        "A remote call times out or the network drops",
        "The operation retries or fails cleanly with a recoverable state",
        Priority.HIGH,
        "Fault injection for dropped connections and timeouts",
    ),
    EdgeCaseFamily(
        "data_volume",
        re.compile(r"\b(large|bulk|batch(?:es)?|millions?|thousands|volume|scale)\b", re.I),
        "Data volume far exceeds typical usage",
        "Throughput and memory stay within agreed bounds",
        Priority.MEDIUM,
        "Load tests with production-sized data",
    ),
    EdgeCaseFamily(
        "authorization",
        re.compile(r"\b(permissions?|roles?|auth\w*|access|privileges?)\b", re.I),
        "A user attempts an action outside their permissions",
        "The action is denied and the attempt is auditable",
        Priority.CRITICAL,
        "Negative tests for every role",
    ),
    EdgeCaseFamily(
        "error_recovery",
        re.compile(r"\b(fail\w*|errors?|exceptions?|crash\w*|rollback|recover\w*)\b", re.I),
        "The operation fails halfway through",
        "State is rolled back or resumable, and the failure is reported",
        Priority.HIGH,
        "Tests that inject failures mid-operation",
    ),
    EdgeCaseFamily(
        "external_dependency",
        re.compile(r"\b(third[- ]party|external|vendors?|webhooks?|providers?)\b", re.I),
        "An external dependency changes or becomes unavailable",
        "The system degrades gracefully and surfaces the outage",
        Priority.MEDIUM,
        "Contract tests with stubbed dependency failures",
    ),
)


def discover_edge_cases(
    text: str,
    *,
    known_categories: Iterable[str],
    phase: SessionPhase,
    start_index: int,
) -> List[EdgeCase]:
    """
    Edge cases hinted at by ``text`` whose family is not yet known.

    Ids continue from ``start_index`` (``ec_<n>``).
    """
    known: Set[str] = set(known_categories)
    found: List[EdgeCase] = []
    for family in EDGE_CASE_FAMILIES:
        if family.category in known:
            continue
        match = family.pattern.search(text or "")
        if not match:
            continue
        known.add(family.category)
        found.append(
            EdgeCase(
                id=f"ec_{start_index + len(found)}",
                category=family.category,
                scenario=family.scenario,
                trigger_conditions=[f'Answer mentions "{match.group(0).lower()}"'],
                expected_behavior=family.expected_behavior,
                priority=family.priority,
                testing_strategy=family.testing_strategy,
                discovered_in_phase=phase,
            )
        )
    return found
