"""
View Registry

Static, process-wide table of warmable views. Each view names the producer
that computes its payload, the cache key it is stored under, its TTL and its
warming priority. Defined once at startup and read-only afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional


logger = logging.getLogger(__name__)


class ViewPriority(str, Enum):
    """Warming tiers, processed in declaration order."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


class UnknownViewError(KeyError):
    """Raised when a view name is not registered."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"View {self.name} not found in warming config"


class ProducerError(Exception):
    """A producer ran but did not yield a usable payload."""


def is_empty_payload(payload: Any) -> bool:
    """None and empty containers/strings count as empty output."""
    if payload is None:
        return True
    if isinstance(payload, (dict, list, tuple, str, bytes)):
        return len(payload) == 0
    return False


@dataclass
class ViewResult:
    """
    Explicit producer outcome.

    Producers may return a plain payload (implicitly ok) or a ViewResult when
    they need to report a non-ok status without raising.
    """
    payload: Any = None
    ok: bool = True
    error: Optional[str] = None


Producer = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ViewDescriptor:
    """
    One warmable view.

    ``route_key`` resolves the key the serving route caches the same payload
    under. It is a callable because route keys can embed the current year.
    """
    name: str
    priority: ViewPriority
    cache_key: str
    ttl: timedelta
    producer: Producer
    description: str = ""
    route_key: Optional[Callable[[], str]] = None

    def keys(self) -> List[str]:
        """Every key the payload is written under, warmed key first."""
        keys = [self.cache_key]
        if self.route_key is not None:
            resolved = self.route_key()
            if resolved and resolved != self.cache_key:
                keys.append(resolved)
        return keys

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority.value,
            "cache_key": self.cache_key,
            "route_key": self.route_key() if self.route_key is not None else None,
            "ttl_seconds": self.ttl.total_seconds(),
            "description": self.description,
        }


class ViewRegistry:
    """Ordered, read-only collection of view descriptors."""

    def __init__(self, views: Iterable[ViewDescriptor]):
        self._views: Dict[str, ViewDescriptor] = {}
        for view in views:
            if view.name in self._views:
                raise ValueError(f"Duplicate view name: {view.name}")
            self._views[view.name] = view

    def get(self, name: str) -> ViewDescriptor:
        try:
            return self._views[name]
        except KeyError:
            raise UnknownViewError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._views

    def __iter__(self) -> Iterator[ViewDescriptor]:
        return iter(self._views.values())

    def __len__(self) -> int:
        return len(self._views)

    def names(self) -> List[str]:
        return list(self._views)

    def by_priority(self, priority: ViewPriority) -> List[ViewDescriptor]:
        """Views of one tier, in registration order."""
        return [view for view in self._views.values() if view.priority == priority]

    def tiers(self) -> List[List[ViewDescriptor]]:
        """All tiers from highest to lowest priority."""
        return [self.by_priority(priority) for priority in ViewPriority]

    def to_dict(self) -> List[Dict[str, Any]]:
        return [view.to_dict() for view in self._views.values()]
