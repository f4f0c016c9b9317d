from __future__ import annotations

import asyncio
from dataclasses import dataclass
from threading import Lock
import time
from typing import Awaitable, Callable, TypeVar

from sijil_api.telemetry import EventMetrics


T = TypeVar("T")


class OperationTimeoutError(Exception):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"Operation timed out after {seconds:g}s")
        self.seconds = seconds


class CircuitOpenError(Exception):
    def __init__(self, key: str, retry_after_seconds: float) -> None:
        super().__init__(f"Circuit '{key}' is open; retry in {retry_after_seconds:.1f}s")
        self.key = key
        self.retry_after_seconds = retry_after_seconds


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(seconds) from exc


@dataclass
class _CircuitState:
    failures: int = 0
    open_until: float | None = None
    last_failure_at: float | None = None


class CircuitBreaker:
    """Keyed circuit breaker.

    A key opens after ``failure_threshold`` consecutive failures and rejects
    calls until ``cooldown_seconds`` have passed; the next call after the
    cooldown is let through, and a success clears the key.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        telemetry: EventMetrics | None = None,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be > 0")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.telemetry = telemetry or EventMetrics()
        self._time_fn = time_fn or time.monotonic
        self._states: dict[str, _CircuitState] = {}
        self._lock = Lock()

    def _ensure_closed(self, key: str) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is None or state.open_until is None:
                return
            now = self._time_fn()
            if now < state.open_until:
                self.telemetry.increment(subject=key, event="circuit_skip")
                raise CircuitOpenError(key, state.open_until - now)

    def _record_failure(self, key: str) -> None:
        with self._lock:
            state = self._states.setdefault(key, _CircuitState())
            now = self._time_fn()
            state.failures += 1
            state.last_failure_at = now
            self.telemetry.increment(subject=key, event="failure")
            if state.failures >= self.failure_threshold:
                state.open_until = now + self.cooldown_seconds
                self.telemetry.increment(subject=key, event="circuit_open")

    def _record_success(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)
            self.telemetry.increment(subject=key, event="success")

    def call(self, key: str, fn: Callable[[], T]) -> T:
        self._ensure_closed(key)
        try:
            result = fn()
        except Exception:
            self._record_failure(key)
            raise
        self._record_success(key)
        return result

    async def call_async(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        self._ensure_closed(key)
        try:
            result = await fn()
        except Exception:
            self._record_failure(key)
            raise
        self._record_success(key)
        return result

    def is_open(self, key: str) -> bool:
        with self._lock:
            state = self._states.get(key)
            return bool(
                state and state.open_until is not None and self._time_fn() < state.open_until
            )

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            now = self._time_fn()
            states = {
                key: {
                    "failures": state.failures,
                    "open": state.open_until is not None and now < state.open_until,
                    "retry_after_seconds": max(state.open_until - now, 0.0)
                    if state.open_until is not None
                    else 0.0,
                }
                for key, state in self._states.items()
            }
        return {"states": states, "events": self.telemetry.snapshot()}
