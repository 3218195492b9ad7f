"""
ThrottleController: per-endpoint-pattern sliding-window and burst admission control.
"""

import heapq
import itertools
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from traffic_buddy.core.clock import MonotonicClock
from traffic_buddy.core.errors import AdmissionTimeout
from traffic_buddy.policy.registry import EndpointPolicy, Priority
from traffic_buddy.utils.logger import get_logger

# Share of the minimum request spacing each priority has to keep
PRIORITY_SPACING = {Priority.HIGH: 0.5, Priority.MEDIUM: 1.0, Priority.LOW: 1.5}


@dataclass(frozen=True)
class RequestRecord:
    """One admitted request, kept while it counts towards the window."""

    key: str
    timestamp: float
    pattern: str


@dataclass(frozen=True)
class Admission:
    """Outcome of a single admission check."""

    allowed: bool
    retry_after: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of a blocking ``acquire``."""

    waited: float
    denials: int

    @property
    def throttled(self) -> bool:
        return self.denials > 0


class ThrottleState:
    """Tracks window records, cooldown and queued waiters for one pattern."""

    def __init__(self):
        self.records: deque = deque()
        self.cooldown_until = 0.0
        self.total_admitted = 0
        self.denials = 0
        self.burst_violations = 0
        self.spacing_waits = 0
        self.last_admitted: Optional[float] = None
        self.waiters: List[Tuple[int, int]] = []
        self.policy: Optional[EndpointPolicy] = None


class ThrottleController:
    """Decides whether a request for an endpoint pattern may proceed now.

    Each pattern keeps the records of its admitted requests. A request is
    admitted when the sliding window still has room, the burst sub-window is
    below ``burst_limit``, no burst cooldown is active and the last admission
    is at least the priority-scaled minimum spacing ago. Burst violations
    arm a cooldown so the whole pattern backs off, not just the caller.

    Blocked callers queue per pattern, ordered by priority and then arrival.
    Only the head of a queue asks for admission; it sleeps ``retry_after``
    through the clock without holding the lock.

    Example:
        >>> controller = ThrottleController()
        >>> policy = EndpointPolicy("/api/cities", 5, 1.0, 5, 0.0)
        >>> controller.admit(policy).allowed
        True
    """

    def __init__(self, clock=None, poll_interval: float = 0.05):
        """
        Args:
            clock: Clock used for windows and sleeps (defaults to monotonic)
            poll_interval: Real seconds a queued, non-head waiter blocks
                before re-checking its position
        """
        self.clock = clock or MonotonicClock()
        self.poll_interval = poll_interval
        self.logger = get_logger("throttling.manager")
        self._cond = threading.Condition(threading.Lock())
        self._states: Dict[str, ThrottleState] = {}
        self._sequence = itertools.count()

    def _state(self, pattern: str) -> ThrottleState:
        state = self._states.get(pattern)
        if state is None:
            state = self._states[pattern] = ThrottleState()
        return state

    def _prune(self, state: ThrottleState, window: float, now: float) -> None:
        """Remove records that have left the window."""
        while state.records and now - state.records[0].timestamp >= window:
            state.records.popleft()

    def _burst_records(self, state: ThrottleState, burst_window: float, now: float) -> List[RequestRecord]:
        recent = []
        for record in reversed(state.records):
            if now - record.timestamp >= burst_window:
                break
            recent.append(record)
        recent.reverse()
        return recent

    def _admit_locked(
        self,
        state: ThrottleState,
        policy: EndpointPolicy,
        now: float,
        key: str,
        spacing: float = 0.0,
    ) -> Admission:
        state.policy = policy
        self._prune(state, policy.window_seconds, now)
        burst_interval = policy.burst_interval_seconds
        burst = self._burst_records(state, burst_interval, now) if policy.has_burst_ceiling else []

        window_blocked = len(state.records) >= policy.max_requests_per_window
        burst_blocked = policy.has_burst_ceiling and len(burst) >= policy.burst_limit
        cooldown_wait = state.cooldown_until - now
        spacing_wait = state.last_admitted + spacing - now if state.last_admitted is not None else 0.0

        if not window_blocked and not burst_blocked and cooldown_wait <= 0 and spacing_wait <= 0:
            state.records.append(RequestRecord(key=key, timestamp=now, pattern=policy.pattern))
            state.last_admitted = now
            state.total_admitted += 1
            return Admission(allowed=True)

        state.denials += 1
        waits = []
        reason = "spacing"
        if spacing_wait > 0:
            state.spacing_waits += 1
            waits.append(spacing_wait)
        if cooldown_wait > 0:
            waits.append(cooldown_wait)
            reason = "cooldown"
        if window_blocked:
            waits.append(state.records[0].timestamp + policy.window_seconds - now)
            reason = "window"
        if burst_blocked:
            # Time until the burst count drops below the limit, plus the penalty
            leaving = burst[len(burst) - policy.burst_limit]
            burst_wait = leaving.timestamp + burst_interval - now + policy.cooldown_seconds
            state.cooldown_until = max(state.cooldown_until, now + burst_wait)
            state.burst_violations += 1
            waits.append(burst_wait)
            reason = "burst"
        # Several limits violated: the stricter wait applies
        return Admission(allowed=False, retry_after=max(0.0, max(waits)), reason=reason)

    def admit(
        self,
        policy: EndpointPolicy,
        key: str = "",
        priority: Optional[Priority] = None,
        min_interval: float = 0.0,
    ) -> Admission:
        """Non-blocking admission check; records the request when allowed.

        ``min_interval`` is the minimum spacing between two admissions for
        the pattern, scaled by ``PRIORITY_SPACING`` for the request's priority.
        """
        spacing = self._spacing(policy, priority, min_interval)
        with self._cond:
            return self._admit_locked(self._state(policy.pattern), policy, self.clock.now(), str(key), spacing)

    def _spacing(self, policy: EndpointPolicy, priority, min_interval: float) -> float:
        if min_interval <= 0:
            return 0.0
        priority = Priority.parse(priority if priority is not None else policy.priority)
        return min_interval * PRIORITY_SPACING[priority]

    def acquire(
        self,
        policy: EndpointPolicy,
        priority: Optional[Priority] = None,
        key: str = "",
        max_wait: Optional[float] = None,
        min_interval: float = 0.0,
    ) -> AcquireResult:
        """Block until the request is admitted.

        Args:
            policy: Policy of the endpoint being called
            priority: Queue priority (defaults to the policy's priority)
            key: Request key stored with the admission record
            max_wait: Maximum total seconds to wait for admission
            min_interval: Minimum seconds between admissions for the pattern
                at medium priority

        Returns:
            AcquireResult with the seconds waited and the number of denials

        Raises:
            AdmissionTimeout: If admission would take longer than ``max_wait``
        """
        priority = Priority.parse(priority if priority is not None else policy.priority)
        spacing = self._spacing(policy, priority, min_interval)
        key = str(key)
        start = self.clock.now()
        denials = 0
        with self._cond:
            state = self._state(policy.pattern)
            ticket = (-int(priority), next(self._sequence))
            heapq.heappush(state.waiters, ticket)
        try:
            while True:
                with self._cond:
                    if state.waiters[0] != ticket:
                        self._check_deadline(policy, key, start, max_wait, 0.0)
                        self._cond.wait(self.poll_interval)
                        continue
                    decision = self._admit_locked(state, policy, self.clock.now(), key, spacing)
                    if decision.allowed:
                        heapq.heappop(state.waiters)
                        self._cond.notify_all()
                        return AcquireResult(waited=self.clock.now() - start, denials=denials)
                denials += 1
                self._check_deadline(policy, key, start, max_wait, decision.retry_after)
                self.logger.info(
                    f"Throttled {key or policy.pattern} ({decision.reason}, {priority} priority); "
                    f"waiting {decision.retry_after:.3f}s"
                )
                self.clock.sleep(decision.retry_after)
        finally:
            with self._cond:
                if ticket in state.waiters:
                    state.waiters.remove(ticket)
                    heapq.heapify(state.waiters)
                    self._cond.notify_all()


    def _check_deadline(
        self, policy: EndpointPolicy, key: str, start: float, max_wait: Optional[float], upcoming: float
    ) -> None:
        if max_wait is None:
            return
        waited = self.clock.now() - start
        if waited + upcoming > max_wait:
            raise AdmissionTimeout(
                f"Admission for {key or policy.pattern} exceeded max wait of {max_wait}s", waited=waited
            )

    def window_occupancy(self, pattern: str) -> int:
        """Number of records currently inside the pattern's window."""
        with self._cond:
            state = self._states.get(pattern)
            if state is None or state.policy is None:
                return 0
            self._prune(state, state.policy.window_seconds, self.clock.now())
            return len(state.records)

    def waiting_count(self, pattern: str) -> int:
        with self._cond:
            state = self._states.get(pattern)
            return len(state.waiters) if state is not None else 0

    def reset(self, pattern: Optional[str] = None) -> None:
        """Forget window history for one pattern or for all of them."""
        with self._cond:
            if pattern is None:
                self._states.clear()
            else:
                self._states.pop(pattern, None)
            self._cond.notify_all()

    def get_stats(self) -> Dict[str, Any]:
        """Return per-pattern occupancy, denials and cooldown state."""
        with self._cond:
            now = self.clock.now()
            stats = {}
            for pattern, state in self._states.items():
                if state.policy is not None:
                    self._prune(state, state.policy.window_seconds, now)
                stats[pattern] = {
                    "window_requests": len(state.records),
                    "max_requests_per_window": state.policy.max_requests_per_window if state.policy else None,
                    "total_admitted": state.total_admitted,
                    "denials": state.denials,
                    "burst_violations": state.burst_violations,
                    "spacing_waits": state.spacing_waits,
                    "cooldown_remaining": max(0.0, state.cooldown_until - now),
                    "waiting": len(state.waiters),
                }
            return stats
