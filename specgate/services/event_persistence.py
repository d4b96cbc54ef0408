"""
SpecGate Event Persistence

Binds the in-process EventBus (`specgate.services.events`) to a session store
supplied by the embedding application. The core never writes anywhere itself.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from specgate.logging import get_logger
from specgate.services.events import Event as BusEvent
from specgate.services.events import EventBus, get_event_bus

logger = get_logger(__name__)


class SessionStore(Protocol):
    """What a persistence collaborator must provide."""

    def append_event(
        self,
        session_id: Optional[str],
        event_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any: ...

    def save_session(self, session_id: str, snapshot: Dict[str, Any]) -> Any: ...


class InMemorySessionStore:
    """Keeps events and latest session snapshots in process memory."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}

    def append_event(
        self,
        session_id: Optional[str],
        event_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.events.append(
            {
                "session_id": session_id,
                "event_type": event_type,
                "message": message,
                "metadata": metadata or {},
            }
        )

    def save_session(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        self.sessions[session_id] = snapshot


def json_safe(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-compatible data."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: json_safe(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    return value


def normalize_event_type(name: str) -> str:
    """PhaseChanged -> phase_changed."""
    out: List[str] = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def _default_message(event: BusEvent) -> str:
    pieces: List[str] = [normalize_event_type(event.event_type)]
    for attr in ("to_phase", "question_id", "rule_id", "ambiguity_id", "reason"):
        value = getattr(event, attr, None)
        if value:
            pieces.append(str(value))
    return " - ".join(pieces)


def install_store_sink(
    *,
    store_provider: Callable[[], SessionStore],
    bus: Optional[EventBus] = None,
) -> None:
    """
    Install an EventBus handler that persists every event into the store.

    Idempotent: calling multiple times installs the sink only once per bus.
    """
    bus = bus or get_event_bus()

    if getattr(bus, "_store_sink_installed", False):
        return

    def _persist(event: BusEvent) -> None:
        try:
            store = store_provider()
            store.append_event(
                session_id=getattr(event, "session_id", None),
                event_type=normalize_event_type(event.event_type),
                message=_default_message(event),
                metadata=json_safe(event),
            )
        except Exception as exc:  # pragma: no cover
            logger.warning(
                "event_persist_failed",
                extra={"event_type": getattr(event, "event_type", None), "error": str(exc)},
            )

    bus.add_handler(None, _persist)
    setattr(bus, "_store_sink_installed", True)
