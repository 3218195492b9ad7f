"""In-flight request deduplication.

Collapses concurrent identical requests into one real call whose outcome is
shared by every caller attached to it.
"""

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from traffic_buddy.core.errors import AdmissionTimeout
from traffic_buddy.utils.logger import get_logger


@dataclass
class InFlightEntry:
    """A real call that is currently running for ``key``."""

    key: str
    future: Future
    waiter_count: int = 1


class InFlightDeduplicator:
    """Guarantees at most one concurrent real invocation per request key.

    The first caller for a key starts ``factory`` on a worker thread; every
    caller, the first one included, then blocks on the same future and
    receives the identical value or the identical exception. The entry is
    removed as soon as the call settles. A caller that gives up detaches
    without affecting the call or the other waiters.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: Dict[str, InFlightEntry] = {}
        self.logger = get_logger("dedup.manager")
        self._joins = 0

    def join_or_start(
        self,
        key,
        factory: Callable[[], Any],
        timeout: Optional[float] = None,
        on_result: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Attach to the in-flight call for ``key`` or start it with ``factory``.

        Args:
            key: Request key identifying the call
            factory: Zero-argument callable performing the real call
            timeout: Maximum seconds this caller blocks before detaching
            on_result: Called with a successful value while the entry is
                being removed, so no caller sees the key both settled and
                in flight (used for cache population)

        Returns:
            The value produced by the single underlying call

        Raises:
            AdmissionTimeout: If this caller exceeds ``timeout``
            Exception: Whatever the underlying call raised
        """
        key = str(key)
        with self._lock:
            entry = self._in_flight.get(key)
            if entry is not None:
                entry.waiter_count += 1
                self._joins += 1
                owner = False
            else:
                entry = InFlightEntry(key=key, future=Future())
                entry.future.set_running_or_notify_cancel()
                self._in_flight[key] = entry
                owner = True

        if owner:
            worker = threading.Thread(
                target=self._run, args=(entry, factory, on_result), name=f"inflight-{key}", daemon=True
            )
            worker.start()
        else:
            self.logger.debug(f"Waiting for pending request: {key}")

        try:
            return entry.future.result(timeout=timeout)
        except FutureTimeoutError:
            self._detach(entry)
            raise AdmissionTimeout(
                f"Gave up waiting for in-flight request {key} after {timeout}s", waited=timeout, stage="dedup"
            ) from None

    def _run(self, entry: InFlightEntry, factory: Callable[[], Any], on_result) -> None:
        try:
            value = factory()
        except BaseException as exc:
            self._settle(entry)
            entry.future.set_exception(exc)
            return
        try:
            self._settle(entry, on_result, value)
        except Exception as exc:
            self.logger.error(f"Failed to publish result for {entry.key}: {exc!r}")
            entry.future.set_exception(exc)
            return
        entry.future.set_result(value)

    def _settle(self, entry: InFlightEntry, on_result=None, value=None) -> None:
        with self._lock:
            if self._in_flight.get(entry.key) is entry:
                del self._in_flight[entry.key]
            if on_result is not None:
                on_result(value)

    def _detach(self, entry: InFlightEntry) -> None:
        with self._lock:
            entry.waiter_count = max(0, entry.waiter_count - 1)
            remaining = entry.waiter_count
        self.logger.debug(f"Caller detached from {entry.key} ({remaining} still waiting)")

    def is_in_flight(self, key) -> bool:
        with self._lock:
            return str(key) in self._in_flight

    def waiter_count(self, key) -> int:
        """Number of callers attached to the in-flight call for ``key`` (0 if none)."""
        with self._lock:
            entry = self._in_flight.get(str(key))
            return entry.waiter_count if entry is not None else 0

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def joins(self) -> int:
        with self._lock:
            return self._joins

    def clear(self) -> None:
        """Forget every in-flight entry.

        Calls already running keep going and still settle their own
        waiters; new callers simply start fresh calls.
        """
        with self._lock:
            self._in_flight.clear()
            self._joins = 0
