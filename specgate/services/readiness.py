"""
SpecGate Readiness Service

The inbound surface: start sessions, submit answers, evaluate rules, propose
amendments and ask whether a unit of work may proceed to implementation.

Sessions are registered here and each has its own lock, so answers for one
session are processed in order while independent sessions run in parallel.
Each session also has its own ambiguity registry; findings are resolved
through the session that raised them.
"""

import threading
from typing import Any, Dict, List, Optional

from specgate.errors import ConstitutionalViolationError, SessionNotFoundError
from specgate.models.ambiguity import Ambiguity, AmbiguityStatus
from specgate.models.rules import AmendmentResult, EvaluationResult, RuleInputs
from specgate.models.scoring import SessionAnalysis
from specgate.models.session import QuestioningSession, SessionStatus, TaskContext
from specgate.rules.engine import RuleEngine
from specgate.services.ambiguity import AmbiguityRegistry
from specgate.services.base import Service, ServiceContext
from specgate.services.event_persistence import SessionStore, json_safe
from specgate.services.events import EventBus, get_event_bus
from specgate.services.providers import ContextProvider
from specgate.services.questioning import AnswerResult, QuestioningEngine


class ReadinessService(Service):
    """
    Facade over the questioning engine and the rule engine.

    Example:
        service = ReadinessService()
        session = service.start_session(task)
        result = service.submit_answer(session.session_id, session.questions_asked[0].id, "...")
        service.check_readiness(session.session_id, RuleInputs(test_discipline=TDDInput(True, True, 90)))
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        *,
        engine: Optional[QuestioningEngine] = None,
        rule_engine: Optional[RuleEngine] = None,
        store: Optional[SessionStore] = None,
        context_provider: Optional[ContextProvider] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        super().__init__(context)
        bus = event_bus or get_event_bus()
        self.rule_engine = rule_engine or (engine.rule_engine if engine else RuleEngine(self.context, event_bus=bus))
        self.engine = engine or QuestioningEngine(self.context, rule_engine=self.rule_engine, event_bus=bus)
        self.store = store
        self.context_provider = context_provider
        self._sessions: Dict[str, QuestioningSession] = {}
        self._session_locks: Dict[str, threading.Lock] = {}
        self._ambiguities: Dict[str, AmbiguityRegistry] = {}
        self._bus = bus
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, task: TaskContext, target_confidence: Optional[float] = None) -> QuestioningSession:
        if task.existing_context is None and self.context_provider is not None:
            task.existing_context = self.context_provider.inherit(task)
        registry = AmbiguityRegistry(event_bus=self._bus)
        session = self.engine.start(task, target_confidence, ambiguities=registry)
        registry.scope = session.session_id
        with self._registry_lock:
            self._sessions[session.session_id] = session
            self._session_locks[session.session_id] = threading.Lock()
            self._ambiguities[session.session_id] = registry
        self._save(session)
        return session

    def get_session(self, session_id: str) -> QuestioningSession:
        with self._registry_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", metadata={"session_id": session_id})
        return session

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[QuestioningSession]:
        with self._registry_lock:
            sessions = list(self._sessions.values())
        return [s for s in sessions if status is None or s.status == status]

    def _lock_for(self, session_id: str) -> threading.Lock:
        self.get_session(session_id)
        with self._registry_lock:
            return self._session_locks[session_id]

    def submit_answer(
        self,
        session_id: str,
        question_id: str,
        answer_text: str,
        answer_data: Optional[Dict[str, Any]] = None,
        *,
        confidence_level: Optional[float] = None,
    ) -> AnswerResult:
        """Process one answer; returns the updated session and any new questions."""
        with self._lock_for(session_id):
            session = self.get_session(session_id)
            result = self.engine.process_answer(
                session,
                question_id,
                answer_text,
                answer_data,
                confidence_level=confidence_level,
                ambiguities=self.ambiguities(session_id),
            )
            self._save(session)
        return result

    def pause(self, session_id: str, reason: str = "manual") -> QuestioningSession:
        with self._lock_for(session_id):
            session = self.engine.pause(self.get_session(session_id), reason)
            self._save(session)
        return session

    def resume(self, session_id: str) -> QuestioningSession:
        with self._lock_for(session_id):
            session = self.engine.resume(self.get_session(session_id))
            self._save(session)
        return session

    def check_timeout(self, session_id: str) -> bool:
        with self._lock_for(session_id):
            session = self.get_session(session_id)
            timed_out = self.engine.check_timeout(session)
            if timed_out:
                self._save(session)
        return timed_out

    def analyze_session(self, session_id: str) -> SessionAnalysis:
        return self.engine.analyze_session(self.get_session(session_id))

    def discard_session(self, session_id: str) -> QuestioningSession:
        """Forget a session and the findings it references. The store keeps its last snapshot."""
        with self._lock_for(session_id):
            with self._registry_lock:
                session = self._sessions.pop(session_id)
                self._session_locks.pop(session_id, None)
                self._ambiguities.pop(session_id, None)
        self.logger.info("session_discarded", extra=self.log_extra(session_id=session_id))
        return session

    # ------------------------------------------------------------------
    # Ambiguities
    # ------------------------------------------------------------------

    def ambiguities(self, session_id: str) -> AmbiguityRegistry:
        """The findings referenced by one session."""
        self.get_session(session_id)
        with self._registry_lock:
            return self._ambiguities[session_id]

    def start_clarifying_ambiguity(self, session_id: str, ambiguity_id: str, actor: str, notes: str = "") -> Ambiguity:
        return self._change_ambiguity(session_id, ambiguity_id, AmbiguityStatus.CLARIFYING, actor, notes)

    def resolve_ambiguity(self, session_id: str, ambiguity_id: str, resolution: str, resolved_by: str) -> Ambiguity:
        """
        Resolve one of a session's findings. Open gaps raised only from
        findings that are now resolved or ignored are closed.

        Raises:
            SessionNotFoundError: unknown session
            AmbiguityNotFoundError: the finding does not belong to this session
            InvalidTransitionError: the finding is already resolved or ignored
        """
        return self._change_ambiguity(session_id, ambiguity_id, AmbiguityStatus.RESOLVED, resolved_by, resolution)

    def ignore_ambiguity(self, session_id: str, ambiguity_id: str, reason: str, actor: str) -> Ambiguity:
        return self._change_ambiguity(session_id, ambiguity_id, AmbiguityStatus.IGNORED, actor, reason)

    def _change_ambiguity(
        self,
        session_id: str,
        ambiguity_id: str,
        target: AmbiguityStatus,
        actor: str,
        notes: str,
    ) -> Ambiguity:
        with self._lock_for(session_id):
            session = self.get_session(session_id)
            registry = self.ambiguities(session_id)
            if target == AmbiguityStatus.CLARIFYING:
                ambiguity = registry.start_clarifying(ambiguity_id, actor, notes)
            elif target == AmbiguityStatus.RESOLVED:
                ambiguity = registry.resolve(ambiguity_id, notes, resolved_by=actor)
            else:
                ambiguity = registry.ignore(ambiguity_id, notes, actor=actor)
            if target.is_final:
                self.engine.close_resolved_gaps(session, registry)
            self._save(session)
        return ambiguity

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _with_session_input(self, session: QuestioningSession, inputs: Optional[RuleInputs]) -> RuleInputs:
        inputs = inputs or RuleInputs()
        if inputs.questioning is not None:
            return inputs
        return RuleInputs(
            test_discipline=inputs.test_discipline,
            questioning=self.engine.questioning_input(session),
            context=inputs.context,
            quality=inputs.quality,
            validation=inputs.validation,
        )

    def evaluate_rules(self, session_id: str, rule_inputs: Optional[RuleInputs] = None) -> EvaluationResult:
        """
        Evaluate rules for a session; questioning input is taken from the session
        unless supplied. Violations are returned, never raised.
        """
        session = self.get_session(session_id)
        return self.rule_engine.evaluate(self._with_session_input(session, rule_inputs), session_id=session_id)

    def propose_amendment(
        self,
        rule_id: str,
        change: Dict[str, Any],
        rationale: str,
        proposed_by: str = "unknown",
    ) -> AmendmentResult:
        return self.rule_engine.propose_amendment(rule_id, change, rationale, proposed_by=proposed_by)

    def check_readiness(self, session_id: str, rule_inputs: Optional[RuleInputs] = None) -> EvaluationResult:
        """
        Gate implementation for a session.

        Raises:
            ConstitutionalViolationError: the session is not completed, or any
                rule reports a blocking critical violation
        """
        session = self.get_session(session_id)
        result = self.rule_engine.evaluate(self._with_session_input(session, rule_inputs), session_id=session_id)
        if session.status != SessionStatus.COMPLETED:
            self.logger.warning(
                "readiness_blocked",
                extra=self.log_extra(session_id=session_id, status=session.status.value),
            )
            raise ConstitutionalViolationError(
                f"Session {session_id} is {session.status.value}, not completed",
                violations=result.violations,
                blocking=result.blocking_violations,
                metadata={"session_id": session_id, "status": session.status.value},
            )
        self.rule_engine.enforce(result)
        self.logger.info("readiness_confirmed", extra=self.log_extra(session_id=session_id))
        return result

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, session: QuestioningSession) -> None:
        if self.store is None:
            return
        snapshot = json_safe(session)
        registry = self._ambiguities.get(session.session_id)
        if registry is not None:
            snapshot["ambiguities"] = [json_safe(a) for a in registry.ambiguities()]
        self.store.save_session(session.session_id, snapshot)
