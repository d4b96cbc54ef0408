"""
SpecGate Providers

Collaborators that feed the detector and scorer with data the core does not
own: the domain glossary, the historical pattern library and inherited
context. Providers load once per process and refresh on demand.
"""

import re
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import yaml

from specgate.errors import ConfigError
from specgate.logging import get_logger
from specgate.models.ambiguity import DomainTerm, TermMeaning
from specgate.models.session import InheritedContext, TaskContext

logger = get_logger(__name__)


# =============================================================================
# Glossary
# =============================================================================

DEFAULT_DOMAIN_TERMS: Dict[str, DomainTerm] = {
    "user": DomainTerm(
        term="user",
        meanings=(
            TermMeaning("End user of the application", "UI/UX", 60, ("UX Designer", "Product Manager")),
            TermMeaning("System administrator", "Operations", 30, ("IT", "Operations")),
            TermMeaning("Database user account", "Technical", 10, ("Development",)),
        ),
        domain_specificity=30,
    ),
    "process": DomainTerm(
        term="process",
        meanings=(
            TermMeaning("Business workflow", "Business", 50, ("Business Analyst", "Product Owner")),
            TermMeaning("Operating system process", "Technical", 40, ("Development", "Operations")),
            TermMeaning("Data processing step", "Data", 10, ("Data Engineering",)),
        ),
        domain_specificity=40,
    ),
    "account": DomainTerm(
        term="account",
        meanings=(
            TermMeaning("Customer billing account", "Business", 55, ("Finance", "Product Owner")),
            TermMeaning("Login credential set", "Technical", 45, ("Development", "Security")),
        ),
        domain_specificity=45,
    ),
}


class GlossaryProvider(Protocol):
    def terms(self) -> Dict[str, DomainTerm]: ...

    def refresh(self) -> None: ...


class StaticGlossaryProvider:
    """Glossary held in memory; defaults to the built-in overloaded terms."""

    def __init__(self, terms: Optional[Dict[str, DomainTerm]] = None) -> None:
        self._terms = dict(DEFAULT_DOMAIN_TERMS if terms is None else terms)

    def terms(self) -> Dict[str, DomainTerm]:
        return self._terms

    def refresh(self) -> None:
        return None


def _text(data: Dict[str, Any], key: str, default: Optional[str] = None) -> str:
    if key not in data and default is None:
        raise ValueError(f"missing '{key}'")
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _number(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    # bool is an int subclass.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {type(value).__name__}")
    return float(value)


def _text_list(data: Dict[str, Any], key: str, required: bool = False) -> List[str]:
    if required and key not in data:
        raise ValueError(f"missing '{key}'")
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"'{key}' must be a list of strings")
    return list(value)


def _parse_term(name: str, data: Any) -> DomainTerm:
    if not isinstance(data, dict):
        raise ValueError("term entry must be a mapping")
    raw_meanings = data.get("meanings") or []
    if not isinstance(raw_meanings, list) or not all(isinstance(m, dict) for m in raw_meanings):
        raise ValueError("'meanings' must be a list of mappings")
    meanings = tuple(
        TermMeaning(
            definition=_text(m, "definition"),
            context=_text(m, "context", ""),
            frequency=_number(m, "frequency", 1),
            stakeholder_groups=tuple(_text_list(m, "stakeholder_groups")),
        )
        for m in raw_meanings
    )
    return DomainTerm(
        term=name.lower(),
        meanings=meanings,
        domain_specificity=_number(data, "domain_specificity", 50),
    )


class YamlGlossaryProvider:
    """
    Glossary loaded from a YAML file.

    Format::

        terms:
          order:
            domain_specificity: 40
            meanings:
              - definition: Customer purchase
                context: Sales
                frequency: 70
                stakeholder_groups: [Sales]

    When ``include_defaults`` is set, file entries extend and override the
    built-in terms.
    """

    def __init__(self, path: Union[str, Path], *, include_defaults: bool = True) -> None:
        self.path = Path(path)
        self.include_defaults = include_defaults
        self._terms: Optional[Dict[str, DomainTerm]] = None
        self._lock = threading.Lock()

    def terms(self) -> Dict[str, DomainTerm]:
        if self._terms is None:
            with self._lock:
                if self._terms is None:
                    self._terms = self._load()
        return self._terms

    def refresh(self) -> None:
        with self._lock:
            self._terms = self._load()

    def _load(self) -> Dict[str, DomainTerm]:
        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read glossary {self.path}: {exc}", metadata={"path": str(self.path)}) from exc

        entries = raw.get("terms") if isinstance(raw, dict) else None
        if not isinstance(entries, dict):
            raise ConfigError(f"Glossary {self.path} must contain a 'terms' mapping", metadata={"path": str(self.path)})

        terms: Dict[str, DomainTerm] = dict(DEFAULT_DOMAIN_TERMS) if self.include_defaults else {}
        for name, data in entries.items():
            try:
                terms[str(name).lower()] = _parse_term(str(name), data or {})
            except ValueError as exc:
                raise ConfigError(f"Invalid glossary term {name!r}: {exc}", metadata={"path": str(self.path)}) from exc
        logger.info("glossary_loaded", extra={"path": str(self.path), "terms": len(terms)})
        return terms


# =============================================================================
# Historical patterns
# =============================================================================

_WORD = re.compile(r"[a-z][a-z0-9_-]{2,}")
_STOPWORDS = frozenset(
    "the and for with that this from into when will should must have has are was "
    "can not all any each our your their them they then than also only new use".split()
)


def keywords(text: str) -> List[str]:
    """Lowercase content words of a text, in order, without duplicates."""
    seen: Dict[str, None] = {}
    for word in _WORD.findall((text or "").lower()):
        if word not in _STOPWORDS:
            seen.setdefault(word, None)
    return list(seen)


@dataclass
class HistoricalPattern:
    """What earlier, similar tasks looked like when they succeeded."""
    pattern_id: str
    keywords: List[str]
    similar_tasks_count: int = 0
    average_confidence_at_success: float = 85.0
    confidence_variance: float = 0.0
    success_rate: float = 0.0
    failure_indicators: List[str] = field(default_factory=list)


_PATTERN_FIELDS = frozenset(f.name for f in fields(HistoricalPattern))


def _parse_pattern(entry: Any) -> HistoricalPattern:
    if not isinstance(entry, dict):
        raise ValueError("pattern entry must be a mapping")
    unknown = sorted(str(k) for k in entry if k not in _PATTERN_FIELDS)
    if unknown:
        raise ValueError(f"unknown fields {unknown}")
    count = entry.get("similar_tasks_count", 0)
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError("'similar_tasks_count' must be an integer")
    return HistoricalPattern(
        pattern_id=_text(entry, "pattern_id"),
        keywords=_text_list(entry, "keywords", required=True),
        similar_tasks_count=count,
        average_confidence_at_success=_number(entry, "average_confidence_at_success", 85.0),
        confidence_variance=_number(entry, "confidence_variance", 0.0),
        success_rate=_number(entry, "success_rate", 0.0),
        failure_indicators=_text_list(entry, "failure_indicators"),
    )


@dataclass
class PatternMatch:
    pattern: HistoricalPattern
    similarity: float


class PatternProvider(Protocol):
    def find_similar(self, task: TaskContext) -> List[PatternMatch]: ...

    def refresh(self) -> None: ...


class InMemoryPatternProvider:
    """
    Pattern library kept in memory.

    Similarity is the share of a pattern's keywords found in the task text,
    weighted by the pattern's success rate. Matches below ``min_similarity``
    are dropped.
    """

    def __init__(self, patterns: Optional[List[HistoricalPattern]] = None, *, min_similarity: float = 0.2) -> None:
        self._patterns = list(patterns or [])
        self.min_similarity = min_similarity

    def patterns(self) -> List[HistoricalPattern]:
        return self._patterns

    def find_similar(self, task: TaskContext) -> List[PatternMatch]:
        text = " ".join([task.task_description, task.domain, *task.initial_requirements])
        task_words = set(keywords(text))
        matches: List[PatternMatch] = []
        for pattern in self.patterns():
            if not pattern.keywords:
                continue
            overlap = len(task_words & {k.lower() for k in pattern.keywords}) / len(pattern.keywords)
            similarity = overlap * max(0.0, min(1.0, pattern.success_rate))
            if similarity >= self.min_similarity:
                matches.append(PatternMatch(pattern=pattern, similarity=round(similarity, 4)))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def refresh(self) -> None:
        return None


class YamlPatternProvider(InMemoryPatternProvider):
    """Pattern library loaded lazily from YAML (``patterns: [...]``)."""

    def __init__(self, path: Union[str, Path], *, min_similarity: float = 0.2) -> None:
        super().__init__(None, min_similarity=min_similarity)
        self.path = Path(path)
        self._loaded = False
        self._lock = threading.Lock()

    def patterns(self) -> List[HistoricalPattern]:
        if not self._loaded:
            self.refresh()
        return self._patterns

    def refresh(self) -> None:
        with self._lock:
            try:
                raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigError(f"Cannot read pattern library {self.path}: {exc}") from exc
            entries = raw.get("patterns") if isinstance(raw, dict) else None
            if not isinstance(entries, list):
                raise ConfigError(f"Pattern library {self.path} must contain a 'patterns' list")
            try:
                self._patterns = [_parse_pattern(entry) for entry in entries]
            except ValueError as exc:
                raise ConfigError(
                    f"Invalid pattern entry in {self.path}: {exc}", metadata={"path": str(self.path)}
                ) from exc
            self._loaded = True
        logger.info("pattern_library_loaded", extra={"path": str(self.path), "patterns": len(self._patterns)})


# =============================================================================
# Context inheritance
# =============================================================================

class ContextProvider(Protocol):
    def inherit(self, task: TaskContext) -> Optional[InheritedContext]: ...


class StaticContextProvider:
    """Hands out inherited context registered per task id (or a shared default)."""

    def __init__(
        self,
        contexts: Optional[Dict[str, InheritedContext]] = None,
        default: Optional[InheritedContext] = None,
    ) -> None:
        self._contexts = dict(contexts or {})
        self._default = default

    def register(self, task_id: str, context: InheritedContext) -> None:
        self._contexts[task_id] = context

    def inherit(self, task: TaskContext) -> Optional[InheritedContext]:
        return self._contexts.get(task.task_id, self._default)


def default_glossary(path: Optional[Path]) -> GlossaryProvider:
    """Glossary for a configured path, or the built-in one."""
    return YamlGlossaryProvider(path) if path else StaticGlossaryProvider()


def default_patterns(path: Optional[Path]) -> PatternProvider:
    """Pattern library for a configured path, or an empty one."""
    return YamlPatternProvider(path) if path else InMemoryPatternProvider()
