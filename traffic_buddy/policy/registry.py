"""Endpoint policy registry: per-endpoint-pattern limits and cache TTLs."""

import fnmatch
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

_GLOB_CHARS = ("*", "?", "[")
_PREFIX_BOUNDARIES = ("/", "?", "#")

# Match kinds, strongest first
_EXACT = 2
_PREFIX = 1
_GLOB = 0


class Priority(IntEnum):
    """Priority class of an endpoint; higher values are served first."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown priority: {value!r}") from None

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class EndpointPolicy:
    """Rate, burst and caching limits for every endpoint matching ``pattern``."""

    pattern: str
    max_requests_per_window: int
    window_seconds: float
    burst_limit: int
    cooldown_seconds: float
    priority: Priority = Priority.MEDIUM
    cache_ttl_seconds: float = 300.0
    mocking_required: bool = False
    burst_window_seconds: float = 10.0

    @classmethod
    def from_dict(cls, data: dict) -> "EndpointPolicy":
        """Build a policy from a policy-table row (durations in milliseconds)."""
        return cls(
            pattern=data["pattern"],
            max_requests_per_window=int(data["max_requests_per_window"]),
            window_seconds=data.get("window_ms", 3_600_000) / 1000.0,
            burst_limit=int(data.get("burst_limit", data["max_requests_per_window"])),
            cooldown_seconds=data.get("cooldown_ms", 0) / 1000.0,
            priority=Priority.parse(data.get("priority", "medium")),
            cache_ttl_seconds=data.get("cache_ttl_ms", 300_000) / 1000.0,
            mocking_required=bool(data.get("mocking_required", False)),
            burst_window_seconds=data.get("burst_window_ms", 10_000) / 1000.0,
        )

    @property
    def burst_interval_seconds(self) -> float:
        """Burst detection interval, never longer than the window itself."""
        return min(self.burst_window_seconds, self.window_seconds)

    @property
    def has_burst_ceiling(self) -> bool:
        """False when the burst limit can only trip together with the window limit."""
        return (
            self.burst_limit < self.max_requests_per_window
            or self.burst_interval_seconds < self.window_seconds
        )

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "max_requests_per_window": self.max_requests_per_window,
            "window_ms": int(self.window_seconds * 1000),
            "burst_limit": self.burst_limit,
            "burst_window_ms": int(self.burst_window_seconds * 1000),
            "cooldown_ms": int(self.cooldown_seconds * 1000),
            "cache_ttl_ms": int(self.cache_ttl_seconds * 1000),
            "priority": str(self.priority),
            "mocking_required": self.mocking_required,
        }


DEFAULT_POLICY = EndpointPolicy(
    pattern="*",
    max_requests_per_window=30,
    window_seconds=60.0,
    burst_limit=5,
    cooldown_seconds=10.0,
    priority=Priority.LOW,
    cache_ttl_seconds=60.0,
    mocking_required=False,
)


def _subjects(endpoint_id: str) -> List[str]:
    """Strings an endpoint id is matched against, most literal first."""
    subjects = [endpoint_id]
    parsed = urlparse(endpoint_id)
    if parsed.netloc:
        host = parsed.netloc.lower()
        path = parsed.path or "/"
        subjects.extend([host + path, path, host])
    return subjects


def _match(pattern: str, subject: str) -> Optional[Tuple[int, int]]:
    if any(c in pattern for c in _GLOB_CHARS):
        if fnmatch.fnmatchcase(subject, pattern):
            literal = sum(1 for c in pattern if c not in _GLOB_CHARS)
            return (_GLOB, literal)
        return None
    if subject == pattern:
        return (_EXACT, len(pattern))
    if subject.startswith(pattern) and (
        pattern.endswith("/") or subject[len(pattern)] in _PREFIX_BOUNDARIES
    ):
        return (_PREFIX, len(pattern))
    return None


class PolicyRegistry:
    """Resolves an endpoint identifier to the most specific matching policy.

    An exact match beats a prefix match, which beats a glob; within one kind
    the longer literal pattern wins. Unmatched endpoints get the conservative
    default policy. The registry is read-only after construction, so
    ``resolve`` is safe from any number of threads.

    Example:
        >>> registry = PolicyRegistry([EndpointPolicy("/api/cities", 200, 3600, 5, 10)])
        >>> registry.resolve("/api/cities/42").pattern
        '/api/cities'
    """

    def __init__(self, policies: Iterable[EndpointPolicy] = (), default_policy: EndpointPolicy = DEFAULT_POLICY):
        self._policies = tuple(policies)
        self.default_policy = default_policy

    @property
    def policies(self) -> Tuple[EndpointPolicy, ...]:
        return self._policies

    def resolve(self, endpoint_id: str) -> EndpointPolicy:
        """Return the policy for ``endpoint_id``.

        Args:
            endpoint_id: URL, path or host of the request

        Returns:
            Most specific matching policy, or the default policy
        """
        best = None
        best_rank = None
        subjects = _subjects(endpoint_id)
        for policy in self._policies:
            for subject in subjects:
                rank = _match(policy.pattern, subject)
                if rank is not None and (best_rank is None or rank > best_rank):
                    best, best_rank = policy, rank
        return best if best is not None else self.default_policy
