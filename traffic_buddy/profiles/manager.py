"""Environment profiles: complete admission-control settings per test environment."""

import os
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from traffic_buddy.core.errors import ConfigurationError
from traffic_buddy.policy.registry import EndpointPolicy, PolicyRegistry, Priority
from traffic_buddy.retry.engine import RetryPolicy
from traffic_buddy.utils.logger import get_logger

logger = get_logger("profiles.manager")

HOUR = 3600.0
MINUTE = 60.0


@dataclass(frozen=True)
class EnvironmentProfile:
    """Everything one test run needs to know about limits, mocking and parallelism."""

    name: str
    rate_limits: Tuple[EndpointPolicy, ...]
    default_policy: EndpointPolicy
    mocking_enabled: bool
    max_parallel_workers: int
    enforce_mocking: bool = False
    caching_enabled: bool = True
    max_cache_size: int = 1000
    retry_attempts: int = 3
    backoff_multiplier: float = 1.5
    base_delay_seconds: float = 2.0
    test_timeout_seconds: float = 30.0
    request_spacing_seconds: float = 0.0
    suite: Optional[str] = None

    def registry(self) -> PolicyRegistry:
        return PolicyRegistry(self.rate_limits, self.default_policy)

    def retry_policy(self, max_delay_seconds: float = 30.0, jitter: float = 0.0) -> RetryPolicy:
        """Retry budget and backoff shape for calls made under this profile."""
        return RetryPolicy(
            retry_attempts=self.retry_attempts,
            backoff_multiplier=self.backoff_multiplier,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            jitter=jitter,
        )


def _endpoint_table(scale: float, burst_limit: int, cooldown: float) -> Tuple[EndpointPolicy, ...]:
    """Per-endpoint hourly budgets, scaled for the environment."""

    def hourly(pattern, per_hour, priority, ttl, mocking_required):
        return EndpointPolicy(
            pattern=pattern,
            max_requests_per_window=max(1, int(per_hour * scale)),
            window_seconds=HOUR,
            burst_limit=burst_limit,
            cooldown_seconds=cooldown,
            priority=priority,
            cache_ttl_seconds=ttl,
            mocking_required=mocking_required,
        )

    return (
        # External APIs are the most restricted
        hourly("api.unsplash.com", 50, Priority.LOW, HOUR, True),
        hourly("/api/cities", 200, Priority.MEDIUM, 5 * MINUTE, False),
        hourly("/api/health", 100, Priority.HIGH, MINUTE, False),
        # Auth responses are never cached and always mocked
        hourly("/api/auth", 50, Priority.HIGH, 0, True),
    )


def _default_policy(per_window: int, window: float, burst_limit: int, cooldown: float) -> EndpointPolicy:
    return EndpointPolicy(
        pattern="*",
        max_requests_per_window=per_window,
        window_seconds=window,
        burst_limit=burst_limit,
        cooldown_seconds=cooldown,
        priority=Priority.LOW,
        cache_ttl_seconds=MINUTE,
        mocking_required=False,
    )


PROFILES: Dict[str, EnvironmentProfile] = {
    # Permissive: mocks are used when supplied but never demanded
    "development": EnvironmentProfile(
        name="development",
        rate_limits=_endpoint_table(1.0, burst_limit=10, cooldown=5.0),
        default_policy=_default_policy(60, MINUTE, burst_limit=10, cooldown=5.0),
        mocking_enabled=True,
        enforce_mocking=False,
        max_parallel_workers=4,
        max_cache_size=1000,
        retry_attempts=2,
        base_delay_seconds=1.0,
        test_timeout_seconds=30.0,
        request_spacing_seconds=1.0,
    ),
    "ci": EnvironmentProfile(
        name="ci",
        rate_limits=_endpoint_table(0.5, burst_limit=5, cooldown=10.0),
        default_policy=_default_policy(30, MINUTE, burst_limit=5, cooldown=10.0),
        mocking_enabled=True,
        enforce_mocking=True,
        max_parallel_workers=1,
        max_cache_size=500,
        retry_attempts=3,
        base_delay_seconds=2.0,
        test_timeout_seconds=45.0,
        request_spacing_seconds=2.0,
    ),
    # Strictest: real calls only, single worker
    "production-verification": EnvironmentProfile(
        name="production-verification",
        rate_limits=_endpoint_table(0.25, burst_limit=3, cooldown=15.0),
        default_policy=_default_policy(15, MINUTE, burst_limit=3, cooldown=15.0),
        mocking_enabled=False,
        enforce_mocking=False,
        max_parallel_workers=1,
        max_cache_size=200,
        retry_attempts=5,
        base_delay_seconds=4.0,
        test_timeout_seconds=60.0,
        request_spacing_seconds=4.0,
    ),
    # Sustained throughput: large windows, mocks mandatory
    "load": EnvironmentProfile(
        name="load",
        rate_limits=_endpoint_table(2.0, burst_limit=20, cooldown=2.0),
        default_policy=_default_policy(600, 5 * MINUTE, burst_limit=20, cooldown=2.0),
        mocking_enabled=True,
        enforce_mocking=True,
        max_parallel_workers=8,
        max_cache_size=2000,
        retry_attempts=1,
        base_delay_seconds=0.5,
        test_timeout_seconds=20.0,
        request_spacing_seconds=0.5,
    ),
}

ALIASES = {"production": "production-verification", "dev": "development", "prod": "production-verification"}


@dataclass(frozen=True)
class SuiteOverlay:
    """Per-suite adjustments layered on top of an environment profile."""

    rate_limit_multiplier: float
    mocking_enabled: bool
    caching_enabled: bool
    parallelism: int


SUITES: Dict[str, SuiteOverlay] = {
    "visual-testing": SuiteOverlay(0.5, mocking_enabled=True, caching_enabled=True, parallelism=1),
    "api-testing": SuiteOverlay(0.3, mocking_enabled=True, caching_enabled=True, parallelism=1),
    "e2e-testing": SuiteOverlay(0.7, mocking_enabled=True, caching_enabled=True, parallelism=2),
    "unit-testing": SuiteOverlay(1.0, mocking_enabled=True, caching_enabled=False, parallelism=4),
}

DEFAULT_SUITE = "e2e-testing"


def available_environments() -> List[str]:
    return sorted(PROFILES)


def load_profile(environment_name: str) -> EnvironmentProfile:
    """Return the canonical profile for ``environment_name``.

    Raises:
        ConfigurationError: If the name is not a known environment. There is
            no fallback to a permissive profile.
    """
    name = (environment_name or "").strip().lower()
    name = ALIASES.get(name, name)
    if name not in PROFILES:
        raise ConfigurationError(
            f"Unknown test environment {environment_name!r}; expected one of {available_environments()}",
            stage="policy",
        )
    return PROFILES[name]


def detect_environment(environ: Optional[Mapping[str, str]] = None) -> str:
    """Work out the environment name from environment variables.

    ``TRAFFIC_BUDDY_ENV`` wins when set; otherwise load tests, production
    verification and CI are recognized from ``TEST_TYPE``,
    ``TEST_ENVIRONMENT`` and ``CI`` in that order.
    """
    environ = os.environ if environ is None else environ
    explicit = environ.get("TRAFFIC_BUDDY_ENV")
    if explicit:
        return explicit
    if environ.get("TEST_TYPE") == "load":
        return "load"
    if environ.get("TEST_ENVIRONMENT") == "production":
        return "production-verification"
    if environ.get("CI") == "true":
        return "ci"
    return "development"


def apply_suite(profile: EnvironmentProfile, suite_name: Optional[str]) -> EnvironmentProfile:
    """Layer a test-suite overlay on ``profile``.

    Slower suites stretch the request spacing and the base retry delay;
    mocking and caching can only be switched off by a suite, never on;
    workers are capped by the suite.
    """
    if not suite_name:
        return profile
    overlay = SUITES.get(suite_name)
    if overlay is None:
        logger.warning(f"Unknown test suite {suite_name!r}; using {DEFAULT_SUITE} settings")
        overlay = SUITES[DEFAULT_SUITE]
    return replace(
        profile,
        base_delay_seconds=profile.base_delay_seconds / overlay.rate_limit_multiplier,
        request_spacing_seconds=profile.request_spacing_seconds / overlay.rate_limit_multiplier,
        mocking_enabled=profile.mocking_enabled and overlay.mocking_enabled,
        enforce_mocking=profile.enforce_mocking and overlay.mocking_enabled,
        caching_enabled=profile.caching_enabled and overlay.caching_enabled,
        max_parallel_workers=min(profile.max_parallel_workers, overlay.parallelism),
        suite=suite_name,
    )


def merge_policies(base: Iterable[EndpointPolicy], overrides: Iterable[EndpointPolicy]) -> Tuple[EndpointPolicy, ...]:
    """Replace base policies by pattern and append new ones."""
    merged = {policy.pattern: policy for policy in base}
    for policy in overrides:
        merged[policy.pattern] = policy
    return tuple(merged.values())


def build_profile(table: Mapping) -> EnvironmentProfile:
    """Build a profile from a validated policy table.

    The table names a base environment; its ``endpoints`` rows replace or
    extend the base endpoint policies, ``max_parallel_workers`` sets the
    worker count and ``request_spacing_ms`` the minimum request spacing.
    """
    profile = load_profile(table.get("environment") or detect_environment())
    endpoints = table.get("endpoints") or []
    try:
        overrides = [EndpointPolicy.from_dict(row) for row in endpoints]
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Malformed endpoint policy: {exc}", stage="policy") from exc
    if overrides:
        profile = replace(profile, rate_limits=merge_policies(profile.rate_limits, overrides))
    workers = table.get("max_parallel_workers")
    if workers is not None:
        profile = replace(profile, max_parallel_workers=workers)
    spacing_ms = table.get("request_spacing_ms")
    if spacing_ms is not None:
        profile = replace(profile, request_spacing_seconds=spacing_ms / 1000.0)
    profile = apply_suite(profile, table.get("suite"))
    errors = validate_profile(profile)
    if errors:
        raise ConfigurationError(f"Invalid profile {profile.name!r}: {errors}", errors=errors, stage="policy")
    return profile


def validate_profile(profile: EnvironmentProfile) -> List[str]:
    """Return a list of problems with ``profile`` (empty when valid)."""
    errors = []
    for policy in profile.rate_limits + (profile.default_policy,):
        if policy.max_requests_per_window <= 0:
            errors.append(f"{policy.pattern}: max_requests_per_window must be positive")
        if policy.window_seconds <= 0:
            errors.append(f"{policy.pattern}: window must be positive")
        if policy.burst_limit <= 0:
            errors.append(f"{policy.pattern}: burst_limit must be positive")
        if policy.burst_window_seconds <= 0:
            errors.append(f"{policy.pattern}: burst window must be positive")
        if policy.cooldown_seconds < 0:
            errors.append(f"{policy.pattern}: cooldown must be non-negative")
        if policy.cache_ttl_seconds < 0:
            errors.append(f"{policy.pattern}: cache TTL must be non-negative")
    if profile.max_parallel_workers <= 0:
        errors.append("max_parallel_workers must be positive")
    if profile.max_cache_size <= 0:
        errors.append("max_cache_size must be positive")
    if profile.retry_attempts < 1:
        errors.append("retry_attempts must be at least 1")
    if profile.base_delay_seconds < 0:
        errors.append("base delay must be non-negative")
    if profile.request_spacing_seconds < 0:
        errors.append("request spacing must be non-negative")
    if profile.test_timeout_seconds <= 0:
        errors.append("test timeout must be positive")
    return errors


def describe_profile(profile: EnvironmentProfile) -> str:
    """Human-readable summary of the active profile."""
    default = profile.default_policy
    lines = [
        "Current Test Configuration:",
        f"   Environment: {profile.name}" + (f" (suite: {profile.suite})" if profile.suite else ""),
        f"   Default limit: {default.max_requests_per_window} req/{default.window_seconds:g}s, "
        f"burst {default.burst_limit}, cooldown {default.cooldown_seconds:g}s",
        f"   Mocking: {'enabled' if profile.mocking_enabled else 'disabled'}"
        + (" (enforced)" if profile.enforce_mocking else ""),
        f"   Caching: {'enabled' if profile.caching_enabled else 'disabled'} (max {profile.max_cache_size} entries)",
        f"   Retries: {profile.retry_attempts} attempts, base delay {profile.base_delay_seconds:g}s, "
        f"x{profile.backoff_multiplier:g}",
        f"   Spacing: {profile.request_spacing_seconds:g}s between requests (x0.5 high, x1.5 low priority)",
        f"   Workers: {profile.max_parallel_workers}",
        "   Endpoints:",
    ]
    for policy in profile.rate_limits:
        lines.append(
            f"     {policy.pattern}: {policy.max_requests_per_window} req/{policy.window_seconds:g}s, "
            f"{policy.priority} priority, ttl {policy.cache_ttl_seconds:g}s"
            + (", mocking required" if policy.mocking_required else "")
        )
    errors = validate_profile(profile)
    lines.append("   Configuration is valid" if not errors else f"   Configuration errors: {errors}")
    return "\n".join(lines)
