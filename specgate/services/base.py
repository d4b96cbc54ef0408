"""
SpecGate Service Base

Defines the base Service class and ServiceContext that all services inherit from.
This provides a consistent interface for dependency injection and context propagation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from specgate.config import Config, get_config
from specgate.logging import get_logger, log_extra


@dataclass
class ServiceContext:
    """
    Context object providing shared dependencies and runtime state to services.

    Attributes:
        config: Application configuration
        request_id: Optional request correlation ID for tracing
        metadata: Additional contextual metadata
    """
    config: Config
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "ServiceContext":
        """Context bound to the process-wide configuration."""
        return cls(config=get_config())

    def with_request_id(self, request_id: str) -> "ServiceContext":
        """Return a new context with the specified request_id."""
        return ServiceContext(
            config=self.config,
            request_id=request_id,
            metadata=self.metadata.copy(),
        )

    def with_metadata(self, **kwargs: Any) -> "ServiceContext":
        """Return a new context with additional metadata."""
        return ServiceContext(
            config=self.config,
            request_id=self.request_id,
            metadata={**self.metadata, **kwargs},
        )


class Service:
    """
    Base class for all SpecGate services.

    Each service receives a ServiceContext providing access to configuration
    and logging. Services never perform I/O of their own; collaborators such
    as providers and stores are passed in.
    """

    def __init__(self, context: Optional[ServiceContext] = None) -> None:
        self.context = context or ServiceContext.default()
        self.config = self.context.config
        self.logger = get_logger(self.__class__.__name__)

    def log_extra(
        self,
        *,
        request_id: Optional[str] = None,
        session_id: Optional[str] = None,
        task_id: Optional[str] = None,
        phase: Optional[str] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        """
        Build a consistent extra dict for structured logging.

        Uses context request_id by default, but can be overridden.
        """
        return log_extra(
            request_id=request_id or self.context.request_id,
            session_id=session_id,
            task_id=task_id,
            phase=phase,
            **extra,
        )
