"""
SpecGate Event Bus

A lightweight in-process event bus so session transitions, rule evaluations
and amendments can be observed (and persisted) without the core knowing who
listens.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from specgate.logging import get_logger
from specgate.models.session import utc_now

logger = get_logger(__name__)


@dataclass
class Event:
    """
    Base class for all events in the system.

    All events carry a timestamp and optional metadata.
    """
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Return the event type name (class name by default)."""
        return self.__class__.__name__


# Session Events

@dataclass
class SessionEvent(Event):
    """Base class for session-related events."""
    session_id: str = ""
    task_id: Optional[str] = None


@dataclass
class SessionStarted(SessionEvent):
    initial_confidence: float = 0.0
    triage_questions: int = 0


@dataclass
class AnswerRecorded(SessionEvent):
    question_id: str = ""
    confidence: float = 0.0
    new_questions: int = 0
    new_gaps: int = 0


@dataclass
class PhaseChanged(SessionEvent):
    from_phase: str = ""
    to_phase: str = ""
    confidence: float = 0.0


@dataclass
class SessionCompleted(SessionEvent):
    confidence: float = 0.0


@dataclass
class SessionPaused(SessionEvent):
    reason: str = ""


@dataclass
class SessionResumed(SessionEvent):
    pass


@dataclass
class SessionTimedOut(SessionEvent):
    elapsed_seconds: float = 0.0


@dataclass
class ScoringAnomalyDetected(SessionEvent):
    previous: float = 0.0
    current: float = 0.0
    reason: str = ""


# Rule Events

@dataclass
class RulesEvaluated(Event):
    session_id: Optional[str] = None
    families: List[str] = field(default_factory=list)
    violations: List[Dict[str, Any]] = field(default_factory=list)
    blocking: int = 0


@dataclass
class AmendmentProposed(Event):
    rule_id: str = ""
    amendment_id: str = ""
    accepted: bool = False
    reason: str = ""


# Ambiguity Events

@dataclass
class AmbiguityStatusChanged(Event):
    ambiguity_id: str = ""
    session_id: Optional[str] = None
    from_status: str = ""
    to_status: str = ""
    actor: str = ""


# Type alias for handlers
EventHandler = Callable[[Event], None]


class EventBus:
    """
    In-process event bus for decoupled service communication.

    Handlers subscribe to an event class (and receive its subclasses) or to
    every event. A failing handler is logged and never breaks the publisher.

    Example:
        bus = EventBus()

        @bus.subscribe(PhaseChanged)
        def on_phase(event: PhaseChanged):
            print(event.from_phase, "->", event.to_phase)
    """

    def __init__(self) -> None:
        self._handlers: Dict[type, List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []

    def subscribe(self, event_type: Optional[type] = None) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler to an event type (None for all events)."""
        def decorator(handler: EventHandler) -> EventHandler:
            self.add_handler(event_type, handler)
            return handler
        return decorator

    def add_handler(self, event_type: Optional[type], handler: EventHandler) -> None:
        if event_type is None:
            self._wildcard_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)

    def remove_handler(self, event_type: Optional[type], handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        if event_type is None:
            if handler in self._wildcard_handlers:
                self._wildcard_handlers.remove(handler)
        elif handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    def publish(self, event: Event) -> None:
        """Publish an event to all registered handlers."""
        handlers_called = 0

        for base_type in type(event).__mro__:
            for handler in self._handlers.get(base_type, []):
                try:
                    handler(event)
                    handlers_called += 1
                except Exception as e:
                    logger.error(
                        f"Error in event handler: {e}",
                        extra={"event_type": event.event_type, "error": str(e)},
                    )

        for handler in self._wildcard_handlers:
            try:
                handler(event)
                handlers_called += 1
            except Exception as e:
                logger.error(
                    f"Error in wildcard handler: {e}",
                    extra={"event_type": event.event_type, "error": str(e)},
                )

        logger.debug(
            f"Published {event.event_type}",
            extra={"event_type": event.event_type, "handlers_called": handlers_called},
        )

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        self._wildcard_handlers.clear()


# Global event bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def publish_event(event: Event) -> None:
    """Convenience function to publish an event to the global bus."""
    get_event_bus().publish(event)


def _reset_event_bus_for_tests() -> None:
    global _event_bus
    _event_bus = None
