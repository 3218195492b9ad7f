"""
MonitoringManager: Provides programmatic access to operational metrics
and health information for a traffic gate.
"""


import threading
import time
from typing import Any, Dict


class MonitoringManager:
    def __init__(self, facade):
        """Initialize with a reference to the facade whose components are reported on."""
        self.facade = facade
        self.cache_engine = getattr(facade, "cache", None)
        self.throttle_controller = getattr(facade, "throttle", None)
        self.deduplicator = getattr(facade, "deduplicator", None)
        self.start_time = time.time()

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return cache entry counts, hit/miss rates, remaining TTLs, and evictions."""
        stats = {}
        try:
            if self.cache_engine and hasattr(self.cache_engine, "get_cache_performance"):
                stats.update(self.cache_engine.get_cache_performance())

                if hasattr(self.cache_engine, "get_stats"):
                    raw_stats = self.cache_engine.get_stats()
                    stats["hit_count"] = raw_stats.get("hits", "unavailable")
                    stats["miss_count"] = raw_stats.get("misses", "unavailable")
                    lookups = raw_stats.get("hits", 0) + raw_stats.get("misses", 0)
                    stats["miss_rate"] = 1.0 - stats["hit_rate"] if lookups else 0.0
                stats["entries"] = self.cache_engine.entries()
            else:
                stats = {
                    "total_entries": "unavailable",
                    "hit_count": "unavailable",
                    "miss_count": "unavailable",
                    "hit_rate": "unavailable",
                    "miss_rate": "unavailable",
                    "entries": {},
                }
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_throttling_stats(self) -> Dict[str, Any]:
        """Return per-pattern window occupancy, denials and cooldown state."""
        stats = {}
        try:
            if self.throttle_controller:
                per_pattern = self.throttle_controller.get_stats()
                stats["requests_per_pattern"] = per_pattern
                stats["throttle_state"] = {
                    pattern: {
                        "is_cooling_down": state["cooldown_remaining"] > 0,
                        "cooldown_remaining": state["cooldown_remaining"],
                        "burst_violations": state["burst_violations"],
                        "waiting": state["waiting"],
                    }
                    for pattern, state in per_pattern.items()
                }
                stats["total_denials"] = sum(state["denials"] for state in per_pattern.values())
            else:
                stats = {"requests_per_pattern": {}, "throttle_state": {}, "total_denials": None}
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_request_stats(self) -> Dict[str, Any]:
        """Return the facade counters as a dictionary."""
        stats = {}
        try:
            stats = self.facade.get_statistics().to_dict()
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_error_breakdown(self) -> Dict[str, int]:
        """Return error counts keyed by the pipeline stage that produced them."""
        try:
            return self.facade.statistics.errors_by_stage()
        except AttributeError:
            return {}

    def get_health(self) -> Dict[str, Any]:
        """Return uptime, active threads, in-flight requests and recent errors."""
        stats = {}
        try:
            stats["uptime_seconds"] = time.time() - self.start_time
            stats["active_threads"] = threading.active_count()
            stats["environment"] = self.facade.profile.name
            stats["in_flight_requests"] = self.deduplicator.in_flight_count() if self.deduplicator else 0
            stats["recent_errors"] = [
                event["details"] for event in self.facade.statistics.recent_events() if event["event_type"] == "error"
            ]
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def get_report(self) -> Dict[str, Any]:
        """Return every section in one dictionary."""
        return {
            "requests": self.get_request_stats(),
            "cache": self.get_cache_stats(),
            "throttling": self.get_throttling_stats(),
            "errors_by_stage": self.get_error_breakdown(),
            "health": self.get_health(),
        }
