import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from traffic_buddy.cache.engine import MISSING, CacheSweeper, TTLCache
from traffic_buddy.cache.keys import RequestKey
from traffic_buddy.core.clock import MonotonicClock
from traffic_buddy.core.config import ConfigurationManager, config_from_environment
from traffic_buddy.core.errors import ConditionTimeout, ConfigurationError, TrafficBuddyError
from traffic_buddy.dedup.manager import InFlightDeduplicator
from traffic_buddy.monitoring.manager import MonitoringManager
from traffic_buddy.policy.registry import EndpointPolicy, Priority
from traffic_buddy.profiles.manager import EnvironmentProfile, describe_profile, load_profile
from traffic_buddy.retry.engine import ErrorClassifier, RetryEngine
from traffic_buddy.throttling.manager import ThrottleController
from traffic_buddy.utils.logger import configure_logging, get_logger


@dataclass(frozen=True)
class CallOverrides:
    """Per-call adjustments to the resolved endpoint policy."""

    method: str = "GET"
    params: Any = None
    priority: Optional[Union[Priority, str]] = None
    cache_ttl_seconds: Optional[float] = None
    skip_cache: bool = False
    max_wait_seconds: Optional[float] = None
    request_key: Optional[str] = None

    @classmethod
    def coerce(cls, overrides: Union["CallOverrides", Dict[str, Any], None]) -> "CallOverrides":
        if overrides is None:
            return cls()
        if isinstance(overrides, CallOverrides):
            return overrides
        return cls(**overrides)


@dataclass(frozen=True)
class Statistics:
    """Point-in-time counters for reporting. Contains no payloads."""

    total_requests: int = 0
    throttled_count: int = 0
    cache_hits: int = 0
    real_call_count: int = 0
    error_count: int = 0
    dedup_joins: int = 0
    retry_count: int = 0
    successful_calls: int = 0
    pending_requests: int = 0
    cache_size: int = 0

    @property
    def success_rate(self) -> float:
        finished = self.successful_calls + self.error_count
        return self.successful_calls / finished if finished > 0 else 1.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success_rate"] = self.success_rate
        return data


class StatisticsCollector:
    """Collects facade counters and recent events.

    Counters only ever increase until ``reset``; thread-safe for concurrent
    callers.
    """

    COUNTERS = {
        "request": "total_requests",
        "throttled": "throttled_count",
        "cache_hit": "cache_hits",
        "real_call": "real_call_count",
        "error": "error_count",
        "dedup_join": "dedup_joins",
        "retry": "retry_count",
        "success": "successful_calls",
    }

    def __init__(self, max_events: int = 200) -> None:
        self._lock = threading.Lock()
        self._counters = {name: 0 for name in self.COUNTERS.values()}
        self._errors_by_stage: Dict[str, int] = {}
        self._events: deque = deque(maxlen=max_events)

    def record_event(self, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record an event and bump its counter.

        Args:
            event_type: One of ``COUNTERS``' keys
            details: Extra context kept with the recent events
        """
        details = details or {}
        with self._lock:
            self._counters[self.COUNTERS[event_type]] += 1
            if event_type == "error":
                stage = details.get("stage") or "unknown"
                self._errors_by_stage[stage] = self._errors_by_stage.get(stage, 0) + 1
            self._events.append((event_type, details))

    def snapshot(self, pending_requests: int = 0, cache_size: int = 0) -> Statistics:
        with self._lock:
            return Statistics(pending_requests=pending_requests, cache_size=cache_size, **self._counters)

    def errors_by_stage(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._errors_by_stage)

    def recent_events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"event_type": event_type, "details": details} for event_type, details in self._events]

    def reset(self) -> None:
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0
            self._errors_by_stage.clear()
            self._events.clear()


class RateLimitFacade:
    """Single entry point that gates test traffic.

    Composes the policy registry, TTL cache, in-flight deduplicator,
    throttle controller and retry engine for one test run. Each instance
    holds its own state, so independent runs in one process do not share
    limits or cache entries.

    Example:
        >>> facade = RateLimitFacade("development")
        >>> cities = facade.call_with_policy("/api/cities", fetch_cities)
        >>> facade.navigate_with_policy("http://localhost:3000/", lambda: page.goto("http://localhost:3000/"))
        >>> facade.get_statistics().total_requests
        2
    """

    def __init__(
        self,
        profile: Union[EnvironmentProfile, str, None] = None,
        clock=None,
        config: Optional[Dict[str, Any]] = None,
        classifier: Optional[ErrorClassifier] = None,
        rng=None,
    ) -> None:
        """Initialize the facade.

        Args:
            profile: Active profile, or an environment name. When omitted the
                profile is built from ``config`` (or from the
                ``TRAFFIC_BUDDY_*`` environment variables)
            clock: Clock for windows, expiry and sleeps
            config: Configuration dictionary (see ``DEFAULT_CONFIG``)
            classifier: Decides which upstream failures are retried
            rng: Random source for backoff jitter

        Raises:
            ConfigurationError: If the environment or configuration is invalid
        """
        self.config_manager = ConfigurationManager(config if config is not None else config_from_environment())
        self.config = self.config_manager.config
        if config is not None:
            configure_logging(self.config.get("logging", {}))
        self.logger = get_logger("core.facade")

        if profile is None:
            profile = self.config_manager.build_profile()
        elif isinstance(profile, str):
            profile = load_profile(profile)
        self.profile = profile

        self.clock = clock or MonotonicClock()
        self.registry = profile.registry()
        self.cache = TTLCache(max_size=profile.max_cache_size, clock=self.clock)
        self.deduplicator = InFlightDeduplicator()
        self.throttle = ThrottleController(clock=self.clock)
        retry_cfg = self.config.get("retry", {})
        try:
            retry_policy = profile.retry_policy(
                max_delay_seconds=retry_cfg.get("max_delay_seconds", 30),
                jitter=retry_cfg.get("jitter", 0.0),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid retry settings: {exc}") from exc
        self.retry_engine = RetryEngine(retry_policy, clock=self.clock, classifier=classifier, rng=rng)
        self.statistics = StatisticsCollector()
        self._sweeper: Optional[CacheSweeper] = None
        self._monitoring: Optional[MonitoringManager] = None

        for line in describe_profile(profile).splitlines():
            self.logger.debug(line)
        self.logger.info(
            f"Traffic gate ready for {profile.name} environment "
            f"({len(profile.rate_limits)} endpoint policies, {profile.max_parallel_workers} workers)"
        )

    def policy_for(self, endpoint_id: str) -> EndpointPolicy:
        return self.registry.resolve(endpoint_id)

    def requires_mock(self, endpoint_id: str) -> bool:
        """True when calls to ``endpoint_id`` must be served by a mock in this environment."""
        policy = self.registry.resolve(endpoint_id)
        return self.profile.mocking_enabled and self.profile.enforce_mocking and policy.mocking_required

    def _select_callable(
        self, endpoint_id: str, policy: EndpointPolicy, request_fn: Callable[[], Any], mock_fn: Optional[Callable]
    ) -> Callable[[], Any]:
        if self.profile.mocking_enabled:
            if mock_fn is not None:
                return mock_fn
            if self.profile.enforce_mocking and policy.mocking_required:
                raise ConfigurationError(
                    f"Endpoint {endpoint_id} requires a mock in the {self.profile.name} environment",
                    stage="policy",
                )
        return request_fn

    def _max_wait(self, opts: CallOverrides) -> float:
        if opts.max_wait_seconds is not None:
            return opts.max_wait_seconds
        return self.profile.test_timeout_seconds

    def _run_admitted(
        self, policy: EndpointPolicy, opts: CallOverrides, key: RequestKey, fn: Callable[[], Any]
    ) -> Any:
        """Run ``fn`` under the retry engine, taking admission before every attempt."""
        priority = opts.priority if opts.priority is not None else policy.priority
        max_wait = self._max_wait(opts)
        throttled = []

        def attempt():
            admission = self.throttle.acquire(
                policy,
                priority=priority,
                key=str(key),
                max_wait=max_wait,
                min_interval=self.profile.request_spacing_seconds,
            )
            if admission.throttled and not throttled:
                throttled.append(admission)
                self.statistics.record_event("throttled", {"key": str(key), "waited": admission.waited})
            self.statistics.record_event("real_call", {"key": str(key)})
            return fn()

        def on_attempt(number: int) -> None:
            if number > 1:
                self.statistics.record_event("retry", {"key": str(key), "attempt": number})

        outcome = self.retry_engine.run(attempt, label=str(key), on_attempt=on_attempt)
        return outcome.value

    def call_with_policy(
        self,
        endpoint_id: str,
        request_fn: Callable[[], Any],
        overrides: Union[CallOverrides, Dict[str, Any], None] = None,
        mock_fn: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """Perform a data-returning call under the endpoint's policy.

        Args:
            endpoint_id: URL, path or host being called
            request_fn: Zero-argument callable performing the real request
            overrides: ``CallOverrides`` or a dict of its fields
            mock_fn: Zero-argument callable producing a canned response

        Returns:
            The value returned by the real (or mocked) call, possibly cached

        Raises:
            ConfigurationError: If a mandatory mock is missing
            AdmissionTimeout: If admission or a shared call takes too long
            RetryExhausted: If every attempt failed with a retryable error
            NonRetryableUpstreamError: If the call failed with a terminal error
        """
        opts = CallOverrides.coerce(overrides)
        self.statistics.record_event("request", {"endpoint": endpoint_id})
        try:
            policy = self.registry.resolve(endpoint_id)
            fn = self._select_callable(endpoint_id, policy, request_fn, mock_fn)
            key = opts.request_key or RequestKey.build(opts.method, endpoint_id, opts.params)
            ttl = opts.cache_ttl_seconds if opts.cache_ttl_seconds is not None else policy.cache_ttl_seconds
            cacheable = (
                self.profile.caching_enabled and not opts.skip_cache and opts.method.upper() == "GET" and ttl > 0
            )

            if cacheable:
                value = self.cache.lookup(key)
                if value is not MISSING:
                    self.logger.debug(f"Cache hit for {key}")
                    self.statistics.record_event("cache_hit", {"key": str(key)})
                    return value

            shared = {"owner": False, "fresh": False}

            def perform():
                shared["owner"] = True
                if cacheable:
                    # A call for the same key may have settled since the lookup above
                    value = self.cache.lookup(key)
                    if value is not MISSING:
                        self.statistics.record_event("cache_hit", {"key": str(key)})
                        return value
                value = self._run_admitted(policy, opts, key, fn)
                shared["fresh"] = True
                return value

            def publish(value):
                if cacheable and shared["fresh"]:
                    self.cache.put(key, value, ttl)

            try:
                value = self.deduplicator.join_or_start(
                    key, perform, timeout=self._max_wait(opts), on_result=publish
                )
            finally:
                if not shared["owner"]:
                    self.statistics.record_event("dedup_join", {"key": str(key)})
            self.statistics.record_event("success", {"key": str(key)})
            return value
        except TrafficBuddyError as exc:
            self.statistics.record_event("error", {"endpoint": endpoint_id, "stage": exc.stage})
            raise

    def navigate_with_policy(
        self,
        target: str,
        navigate_fn: Callable[[], Any],
        overrides: Union[CallOverrides, Dict[str, Any], None] = None,
    ) -> Any:
        """Run a browser navigation under the target's throttle and retry policy.

        Navigations are never cached or shared between callers: each one
        changes the state of its own page.
        """
        opts = CallOverrides.coerce(overrides)
        self.statistics.record_event("request", {"endpoint": target, "navigation": True})
        try:
            policy = self.registry.resolve(target)
            key = opts.request_key or RequestKey.build("NAVIGATE", target)
            value = self._run_admitted(policy, opts, key, navigate_fn)
            self.statistics.record_event("success", {"key": str(key)})
            return value
        except TrafficBuddyError as exc:
            self.statistics.record_event("error", {"endpoint": target, "stage": exc.stage})
            raise

    def wait_for_condition(
        self,
        condition: Callable[[], bool],
        timeout: float = 30.0,
        interval: float = 1.0,
        description: str = "condition",
    ) -> None:
        """Poll ``condition`` every ``interval`` seconds until it returns True.

        Errors raised by the condition are logged and polling continues.

        Raises:
            ConditionTimeout: If the condition is still false after ``timeout``
        """
        start = self.clock.now()
        while self.clock.now() - start < timeout:
            try:
                if condition():
                    return
            except Exception as e:
                self.logger.warning(f"Error checking {description}: {e!r}")
            self.clock.sleep(interval)
        raise ConditionTimeout(description, timeout)

    def get_statistics(self) -> Statistics:
        """Return a snapshot of the counters without changing any state."""
        return self.statistics.snapshot(
            pending_requests=self.deduplicator.in_flight_count(),
            cache_size=len(self.cache),
        )

    def get_monitoring_manager(self) -> MonitoringManager:
        """Return a MonitoringManager reporting on this facade."""
        if self._monitoring is None:
            self._monitoring = MonitoringManager(self)
        return self._monitoring

    def cached_keys(self) -> Dict[str, float]:
        """Return currently cached keys with their remaining TTL in seconds."""
        return self.cache.entries()

    def reset(self, keep_statistics: bool = False) -> None:
        """Clear cache, in-flight map and window history between independent suites."""
        cleared = self.cache.clear()
        self.deduplicator.clear()
        self.throttle.reset()
        if not keep_statistics:
            self.statistics.reset()
        self.logger.info(f"Traffic gate reset ({cleared} cache entries dropped)")

    def start_cache_sweeper(self, interval: Optional[float] = None) -> CacheSweeper:
        """Start periodic removal of expired cache entries."""
        if self._sweeper is not None and self._sweeper.is_running():
            return self._sweeper
        if interval is None:
            interval = self.config.get("cache", {}).get("sweep_interval_seconds") or 300
        self._sweeper = CacheSweeper(self.cache, interval=interval)
        self._sweeper.start()
        return self._sweeper

    def close(self) -> None:
        """Stop background work. Safe to call more than once."""
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def __enter__(self) -> "RateLimitFacade":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
