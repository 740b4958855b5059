"""
Circuit breaker for external service calls.

One breaker per service name. CLOSED lets calls through and counts failures
inside a sliding time window; OPEN rejects calls until `next_attempt_time`;
the first call after that deadline moves the breaker to HALF_OPEN, where
`success_threshold` successes close it and any failure reopens it.

When the registry is given a SharedStateStore, every breaker it creates
re-reads its state before each call and writes it back after every
success/failure/transition, so processes guarding the same service share one
circuit. Storage failures are logged and never fail the guarded call.

Usage:
    registry = CircuitBreakerRegistry(store=SqlStateStore(engine))
    breaker = registry.get_breaker("dataforseo", CircuitBreakerConfig(failure_threshold=5))
    metrics = breaker.execute(lambda: client.get_bulk_search_volume(keywords), timeout=30)
"""

import copy
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from opportunity_engine.core.errors import CircuitOpenError
from opportunity_engine.core.state_store import SharedStateStore
from opportunity_engine.core.typing import epoch_ms

logger = logging.getLogger(__name__)

__all__ = [
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitMetrics",
    "CircuitStatus",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "KEY_PREFIX",
]

T = TypeVar("T")

# (service_name, old_state, new_state) - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]

KEY_PREFIX = "circuit-breaker:"
DEFAULT_STATE_TTL_SECONDS = 3600


class CircuitState(Enum):
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # Trial window


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5  # recent failures that trip the circuit
    success_threshold: int = 2  # HALF_OPEN successes needed to close
    timeout: int = 60000  # ms before a HALF_OPEN trial is allowed
    time_window: int = 60000  # ms window for counting recent failures


@dataclass
class CircuitMetrics:
    failures: int = 0
    successes: int = 0
    last_failure_time: int = 0  # epoch ms, 0 = never
    last_success_time: int = 0
    recent_failures: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failures": self.failures,
            "successes": self.successes,
            "lastFailureTime": self.last_failure_time,
            "lastSuccessTime": self.last_success_time,
            "recentFailures": list(self.recent_failures),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CircuitMetrics":
        return cls(
            failures=int(data.get("failures", 0)),
            successes=int(data.get("successes", 0)),
            last_failure_time=int(data.get("lastFailureTime", 0)),
            last_success_time=int(data.get("lastSuccessTime", 0)),
            recent_failures=[int(t) for t in data.get("recentFailures", [])],
        )


@dataclass(frozen=True)
class CircuitStatus:
    """Read-only snapshot of a breaker."""

    service_name: str
    state: CircuitState
    metrics: CircuitMetrics
    next_attempt_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "state": self.state.value,
            "metrics": self.metrics.to_dict(),
            "nextAttemptTime": self.next_attempt_time,
        }


def _encode_state(state: CircuitState, metrics: CircuitMetrics, next_attempt_time: int) -> bytes:
    return json.dumps(
        {"state": state.value, "metrics": metrics.to_dict(), "nextAttemptTime": next_attempt_time}
    ).encode("utf-8")


def _decode_state(raw: bytes) -> Tuple[CircuitState, CircuitMetrics, int]:
    data = json.loads(raw.decode("utf-8"))
    return (
        CircuitState(data["state"]),
        CircuitMetrics.from_dict(data.get("metrics", {})),
        int(data.get("nextAttemptTime", 0)),
    )


Transition = Optional[Tuple[CircuitState, CircuitState]]


@dataclass
class CircuitBreaker:
    service_name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    store: Optional[SharedStateStore] = None  # enables cross-process state
    state_ttl_seconds: float = DEFAULT_STATE_TTL_SECONDS
    on_state_change: Optional[StateChangeCallback] = None
    clock: Callable[[], int] = epoch_ms

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _metrics: CircuitMetrics = field(default_factory=CircuitMetrics, init=False)
    _next_attempt_time: int = field(default=0, init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}{self.service_name}"

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def next_attempt_time(self) -> int:
        return self._next_attempt_time

    def execute(self, fn: Callable[[], T], timeout: Optional[float] = None) -> T:
        """
        Run `fn` through the breaker.

        Raises CircuitOpenError without calling `fn` while OPEN and before the
        recovery deadline. Otherwise the result or exception of `fn` is
        returned/raised unchanged after being recorded. With `timeout`
        (seconds), `fn` runs on a worker thread and a TimeoutError counts as
        a failure.
        """
        self._rehydrate()

        transition: Transition = None
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self.clock() < self._next_attempt_time:
                    raise CircuitOpenError(self.service_name, self._next_attempt_time)
                transition = self._set_state(CircuitState.HALF_OPEN)
                logger.info(f"Circuit {self.service_name}: OPEN -> HALF_OPEN")
        if transition:
            self._after_change(transition)

        try:
            result = self._call(fn, timeout)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _call(self, fn: Callable[[], T], timeout: Optional[float]) -> T:
        if timeout is None:
            return fn()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"breaker-{self.service_name}")
        try:
            return executor.submit(fn).result(timeout=timeout)
        finally:
            # Don't block on a call that overran its timeout
            executor.shutdown(wait=False, cancel_futures=True)

    def record_success(self) -> None:
        transition: Transition = None
        with self._lock:
            self._metrics.successes += 1
            self._metrics.last_success_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                if self._metrics.successes >= self.config.success_threshold:
                    transition = self._close()
                    logger.info(f"Circuit {self.service_name}: HALF_OPEN -> CLOSED")
            elif self._state == CircuitState.CLOSED:
                self._metrics.failures = 0
                self._metrics.recent_failures = []
        # Persist outside lock to avoid holding lock during storage I/O
        self._after_change(transition)

    def record_failure(self) -> None:
        transition: Transition = None
        with self._lock:
            now = self.clock()
            self._metrics.failures += 1
            self._metrics.last_failure_time = now
            self._metrics.recent_failures.append(now)
            self._metrics.recent_failures = [
                t for t in self._metrics.recent_failures if now - t < self.config.time_window
            ]

            if self._state == CircuitState.HALF_OPEN:
                transition = self._open(now)
                logger.warning(f"Circuit {self.service_name}: HALF_OPEN -> OPEN (failure during recovery)")
            elif (
                self._state == CircuitState.CLOSED
                and len(self._metrics.recent_failures) >= self.config.failure_threshold
            ):
                transition = self._open(now)
                logger.warning(f"Circuit {self.service_name}: CLOSED -> OPEN (threshold reached)")
        self._after_change(transition)

    def reset(self) -> None:
        """Force CLOSED with all counters zeroed (operator intervention)."""
        with self._lock:
            old_state = self._state
            self._state = CircuitState.CLOSED
            self._metrics = CircuitMetrics()
            self._next_attempt_time = 0
        logger.info(f"Circuit {self.service_name}: reset (was {old_state.value})")
        self._after_change((old_state, CircuitState.CLOSED) if old_state != CircuitState.CLOSED else None)

    def get_status(self) -> CircuitStatus:
        with self._lock:
            return CircuitStatus(
                service_name=self.service_name,
                state=self._state,
                metrics=copy.deepcopy(self._metrics),
                next_attempt_time=self._next_attempt_time,
            )

    # Must be called while holding self._lock
    def _set_state(self, new_state: CircuitState) -> Transition:
        old_state = self._state
        self._state = new_state
        return (old_state, new_state)

    def _open(self, now: int) -> Transition:
        self._next_attempt_time = now + self.config.timeout
        self._metrics.successes = 0
        return self._set_state(CircuitState.OPEN)

    def _close(self) -> Transition:
        self._metrics.failures = 0
        self._metrics.successes = 0
        self._metrics.recent_failures = []
        return self._set_state(CircuitState.CLOSED)

    def _after_change(self, transition: Transition) -> None:
        self._persist()
        if transition:
            self._notify(*transition)

    def _notify(self, old_state: CircuitState, new_state: CircuitState) -> None:
        if self.on_state_change:
            try:
                self.on_state_change(self.service_name, old_state.value, new_state.value)
            except Exception as e:
                logger.error(f"Circuit breaker notification failed: {e}")

    def _rehydrate(self) -> None:
        """Load the shared state written by any process (no-op without a store)."""
        if self.store is None:
            return
        try:
            raw = self.store.get(self.key)
            if raw is None:
                return
            state, metrics, next_attempt_time = _decode_state(raw)
        except Exception as e:
            # Degrade to in-memory state
            logger.warning(f"Failed to load circuit breaker state for {self.service_name}: {e}")
            return
        with self._lock:
            self._state = state
            self._metrics = metrics
            self._next_attempt_time = next_attempt_time

    def _persist(self) -> None:
        if self.store is None:
            return
        with self._lock:
            payload = _encode_state(self._state, self._metrics, self._next_attempt_time)
        try:
            self.store.set_with_ttl(self.key, payload, self.state_ttl_seconds)
        except Exception as e:
            # Don't let persistence failures break the circuit breaker
            logger.warning(f"Failed to persist circuit breaker state for {self.service_name}: {e}")


class CircuitBreakerRegistry:
    """
    Named breakers, created lazily on first lookup.

    Constructed explicitly and passed to its users; tests build their own.
    """

    def __init__(
        self,
        store: Optional[SharedStateStore] = None,
        default_config: Optional[CircuitBreakerConfig] = None,
        state_ttl_seconds: float = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], int] = epoch_ms,
    ):
        self.store = store
        self.default_config = default_config or CircuitBreakerConfig()
        self.state_ttl_seconds = state_ttl_seconds
        self.clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._notification_callback: Optional[StateChangeCallback] = None
        self._lock = Lock()

    def set_notification_callback(self, callback: Optional[StateChangeCallback]) -> None:
        """Set the state-change callback for current and future breakers."""
        with self._lock:
            self._notification_callback = callback
            for breaker in self._breakers.values():
                breaker.on_state_change = callback

    def get_breaker(self, service_name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Return the breaker for `service_name`; `config` only applies on first creation."""
        with self._lock:
            breaker = self._breakers.get(service_name)
            if breaker is None:
                breaker = CircuitBreaker(
                    service_name=service_name,
                    config=copy.copy(config or self.default_config),
                    store=self.store,
                    state_ttl_seconds=self.state_ttl_seconds,
                    on_state_change=self._notification_callback,
                    clock=self.clock,
                )
                self._breakers[service_name] = breaker
            return breaker

    def get_all_status(self, include_shared: bool = False) -> Dict[str, CircuitStatus]:
        """
        Status of every known breaker.

        With `include_shared`, breakers written to the shared store by other
        processes are included too (read straight from storage).
        """
        with self._lock:
            breakers = list(self._breakers.values())
        statuses = {b.service_name: b.get_status() for b in breakers}

        if include_shared and self.store is not None:
            try:
                keys = self.store.list_keys_by_prefix(KEY_PREFIX)
            except Exception as e:
                logger.warning(f"Failed to list shared circuit breaker state: {e}")
                keys = []
            for key in keys:
                name = key[len(KEY_PREFIX):]
                if name in statuses:
                    continue
                try:
                    raw = self.store.get(key)
                    if raw is None:
                        continue
                    state, metrics, next_attempt_time = _decode_state(raw)
                except Exception as e:
                    logger.warning(f"Failed to load circuit breaker state for {name}: {e}")
                    continue
                statuses[name] = CircuitStatus(name, state, metrics, next_attempt_time)
        return statuses

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def reset_shared(self, service_name: str) -> None:
        """Reset a breaker by name, including one only known through shared storage."""
        self.get_breaker(service_name).reset()

    def status_dicts(self, include_shared: bool = False) -> Dict[str, Dict[str, Any]]:
        return {name: status.to_dict() for name, status in self.get_all_status(include_shared).items()}
