"""Test Traffic Buddy - admission control for test traffic.

Gates the outbound calls and browser navigations an automated test run makes
against rate-limited services: per-endpoint throttling, response caching,
in-flight de-duplication and retry with backoff, tuned per test environment.
"""

from traffic_buddy.cache.engine import TTLCache
from traffic_buddy.cache.keys import RequestKey
from traffic_buddy.core.clock import FakeClock, MonotonicClock
from traffic_buddy.core.errors import (
    AdmissionTimeout,
    ConditionTimeout,
    ConfigurationError,
    NonRetryableUpstreamError,
    RetryExhausted,
    TrafficBuddyError,
    UpstreamHTTPError,
)
from traffic_buddy.core.facade import CallOverrides, RateLimitFacade, Statistics
from traffic_buddy.dedup.manager import InFlightDeduplicator
from traffic_buddy.monitoring.manager import MonitoringManager
from traffic_buddy.policy.registry import EndpointPolicy, PolicyRegistry, Priority
from traffic_buddy.profiles.manager import EnvironmentProfile, load_profile
from traffic_buddy.retry.engine import RetryEngine, RetryPolicy
from traffic_buddy.throttling.manager import ThrottleController

__version__ = "0.1.0"

__all__ = [
    "RateLimitFacade",
    "CallOverrides",
    "Statistics",
    "EnvironmentProfile",
    "load_profile",
    "EndpointPolicy",
    "PolicyRegistry",
    "Priority",
    "RequestKey",
    "TTLCache",
    "InFlightDeduplicator",
    "ThrottleController",
    "MonitoringManager",
    "RetryEngine",
    "RetryPolicy",
    "FakeClock",
    "MonotonicClock",
    "TrafficBuddyError",
    "ConfigurationError",
    "AdmissionTimeout",
    "RetryExhausted",
    "NonRetryableUpstreamError",
    "ConditionTimeout",
    "UpstreamHTTPError",
]
