"""
SpecGate Configuration

Pydantic-backed configuration loaded from environment variables.
Uses SPECGATE_ prefix for all environment variables.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from specgate.errors import ConfigError

DEFAULT_FACTOR_WEIGHTS: Dict[str, float] = {
    "requirements_completeness": 0.25,
    "implementation_clarity": 0.20,
    "test_coverage_readiness": 0.15,
    "context_availability": 0.15,
    "edge_case_coverage": 0.10,
    "business_rule_clarity": 0.07,
    "technical_feasibility": 0.04,
    "risk_assessment": 0.02,
    "stakeholder_alignment": 0.01,
    "definition_precision": 0.01,
}


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - SPECGATE_ENV (default: local)
    - SPECGATE_LOG_LEVEL (default: INFO)
    - SPECGATE_TARGET_CONFIDENCE (default: 85)
    - SPECGATE_MAX_SESSION_HOURS (default: 8)
    - SPECGATE_FACTOR_WEIGHTS (JSON object overriding scorer weights)
    - SPECGATE_GLOSSARY_PATH / PATTERN_LIBRARY_PATH / RULEBOOK_PATH
    """

    # Environment
    environment: str = Field(default="local")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    # Session
    target_confidence: float = Field(default=85.0)
    triage_question_count: int = Field(default=5)
    max_session_hours: float = Field(default=8.0)
    pause_on_diminishing_returns: bool = Field(default=True)

    # Phase transitions
    exploration_exit_confidence: float = Field(default=60.0)
    exploration_answer_cap: int = Field(default=20)
    validation_exit_confidence: float = Field(default=75.0)
    minimal_gap_high_limit: int = Field(default=1)

    # Question rounds
    max_round_questions: int = Field(default=10)
    max_critical_gap_questions: int = Field(default=3)
    max_high_gap_questions: int = Field(default=2)
    max_open_questions: int = Field(default=15)

    # Scoring
    factor_weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_FACTOR_WEIGHTS))
    min_data_points: int = Field(default=15)
    min_confidence_improvement: float = Field(default=2.0)

    # Detection
    detail_min_length: int = Field(default=200)

    # Provider sources
    glossary_path: Optional[Path] = Field(default=None)
    pattern_library_path: Optional[Path] = Field(default=None)
    rulebook_path: Optional[Path] = Field(default=None)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator(
        "target_confidence",
        "exploration_exit_confidence",
        "validation_exit_confidence",
    )
    @classmethod
    def _percentage(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError("confidence thresholds must be within 0-100")
        return value

    @field_validator("factor_weights")
    @classmethod
    def _weights_sum_to_one(cls, value: Dict[str, float]) -> Dict[str, float]:
        unknown = set(value) - set(DEFAULT_FACTOR_WEIGHTS)
        if unknown:
            raise ValueError(f"unknown scoring factors: {sorted(unknown)}")
        merged = {**{k: 0.0 for k in DEFAULT_FACTOR_WEIGHTS}, **value}
        if any(w < 0 for w in merged.values()):
            raise ValueError("factor weights must be non-negative")
        if abs(sum(merged.values()) - 1.0) > 1e-6:
            raise ValueError("factor weights must sum to 1.0")
        return merged

    @model_validator(mode="after")
    def _ordered_phase_thresholds(self) -> "Config":
        if self.exploration_exit_confidence > self.validation_exit_confidence:
            raise ValueError("exploration exit confidence cannot exceed validation exit confidence")
        if self.triage_question_count < 1:
            raise ValueError("triage_question_count must be positive")
        return self

    @property
    def max_session_seconds(self) -> float:
        """Session ceiling in seconds."""
        return self.max_session_hours * 3600.0


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_path(value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    return Path(value).expanduser()


def _parse_weights(value: Optional[str]) -> Dict[str, float]:
    if not value:
        return dict(DEFAULT_FACTOR_WEIGHTS)
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"SPECGATE_FACTOR_WEIGHTS is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("SPECGATE_FACTOR_WEIGHTS must be a JSON object")
    return {str(k): float(v) for k, v in data.items()}


def load_config() -> Config:
    """
    Load SpecGate configuration from environment.

    Environment variables use the SPECGATE_ prefix. Malformed values raise
    ConfigError rather than falling back silently.
    """
    env = os.environ
    try:
        return Config(
            # Environment
            environment=env.get("SPECGATE_ENV", "local"),
            log_level=env.get("SPECGATE_LOG_LEVEL", "INFO"),
            json_logs=_parse_bool(env.get("SPECGATE_LOG_JSON")),

            # Session
            target_confidence=float(env.get("SPECGATE_TARGET_CONFIDENCE", "85")),
            triage_question_count=int(env.get("SPECGATE_TRIAGE_QUESTION_COUNT", "5")),
            max_session_hours=float(env.get("SPECGATE_MAX_SESSION_HOURS", "8")),
            pause_on_diminishing_returns=_parse_bool(
                env.get("SPECGATE_PAUSE_ON_DIMINISHING_RETURNS"), default=True
            ),

            # Phase transitions
            exploration_exit_confidence=float(env.get("SPECGATE_EXPLORATION_EXIT_CONFIDENCE", "60")),
            exploration_answer_cap=int(env.get("SPECGATE_EXPLORATION_ANSWER_CAP", "20")),
            validation_exit_confidence=float(env.get("SPECGATE_VALIDATION_EXIT_CONFIDENCE", "75")),
            minimal_gap_high_limit=int(env.get("SPECGATE_MINIMAL_GAP_HIGH_LIMIT", "1")),

            # Question rounds
            max_round_questions=int(env.get("SPECGATE_MAX_ROUND_QUESTIONS", "10")),
            max_critical_gap_questions=int(env.get("SPECGATE_MAX_CRITICAL_GAP_QUESTIONS", "3")),
            max_high_gap_questions=int(env.get("SPECGATE_MAX_HIGH_GAP_QUESTIONS", "2")),
            max_open_questions=int(env.get("SPECGATE_MAX_OPEN_QUESTIONS", "15")),

            # Scoring
            factor_weights=_parse_weights(env.get("SPECGATE_FACTOR_WEIGHTS")),
            min_data_points=int(env.get("SPECGATE_MIN_DATA_POINTS", "15")),
            min_confidence_improvement=float(env.get("SPECGATE_MIN_CONFIDENCE_IMPROVEMENT", "2.0")),

            # Detection
            detail_min_length=int(env.get("SPECGATE_DETAIL_MIN_LENGTH", "200")),

            # Providers
            glossary_path=_parse_path(env.get("SPECGATE_GLOSSARY_PATH")),
            pattern_library_path=_parse_path(env.get("SPECGATE_PATTERN_LIBRARY_PATH")),
            rulebook_path=_parse_path(env.get("SPECGATE_RULEBOOK_PATH")),
        )
    except (PydanticValidationError, ValueError) as exc:
        raise ConfigError(f"Invalid SpecGate configuration: {exc}") from exc


# Singleton config instance (lazy loaded)
_config: Optional[Config] = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def _reset_config_for_tests() -> None:
    """Reset the global config cache (tests only)."""
    global _config
    with _config_lock:
        _config = None
