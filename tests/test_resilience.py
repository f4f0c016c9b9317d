from __future__ import annotations

import asyncio

import pytest

from sijil_api.errors import ServiceUnavailableError
from sijil_api.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    OperationTimeoutError,
    with_timeout,
)
from sijil_api.services.pdf_export import GuardedPdfExporter
from sijil_api.telemetry import RequestMetrics


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _boom() -> None:
    raise RuntimeError("renderer crashed")


def test_with_timeout_returns_result() -> None:
    async def _quick() -> str:
        return "done"

    assert asyncio.run(with_timeout(_quick(), 1.0)) == "done"


def test_with_timeout_raises_operation_timeout() -> None:
    async def _slow() -> None:
        await asyncio.sleep(1.0)

    with pytest.raises(OperationTimeoutError) as exc_info:
        asyncio.run(with_timeout(_slow(), 0.01))

    assert exc_info.value.seconds == 0.01


def test_circuit_opens_after_threshold_and_recovers_after_cooldown() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=30.0, time_fn=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            breaker.call("invoice-pdf", _boom)

    assert breaker.is_open("invoice-pdf") is True
    with pytest.raises(CircuitOpenError) as exc_info:
        breaker.call("invoice-pdf", lambda: "never")
    assert exc_info.value.retry_after_seconds == pytest.approx(30.0)

    clock.now += 31.0
    assert breaker.call("invoice-pdf", lambda: "ok") == "ok"
    assert breaker.is_open("invoice-pdf") is False
    assert breaker.snapshot()["states"] == {}


def test_circuit_keys_are_independent() -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=5.0, time_fn=_Clock())

    with pytest.raises(RuntimeError):
        breaker.call("invoice-pdf", _boom)

    assert breaker.call("document-pdf", lambda: 42) == 42
    assert breaker.is_open("invoice-pdf") is True
    assert breaker.is_open("document-pdf") is False


def test_success_clears_failure_count() -> None:
    breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=5.0, time_fn=_Clock())

    with pytest.raises(RuntimeError):
        breaker.call("k", _boom)
    breaker.call("k", lambda: None)
    with pytest.raises(RuntimeError):
        breaker.call("k", _boom)

    assert breaker.is_open("k") is False


def test_snapshot_reports_open_state_and_events() -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10.0, time_fn=_Clock())
    with pytest.raises(RuntimeError):
        breaker.call("invoice-pdf", _boom)

    snapshot = breaker.snapshot()

    assert snapshot["states"]["invoice-pdf"]["open"] is True
    assert snapshot["states"]["invoice-pdf"]["failures"] == 1
    assert snapshot["events"]["invoice-pdf"] == {"failure": 1, "circuit_open": 1}


def test_async_call_records_failures() -> None:
    breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10.0, time_fn=_Clock())

    async def _fail() -> None:
        raise ValueError("bad")

    with pytest.raises(ValueError):
        asyncio.run(breaker.call_async("k", _fail))
    assert breaker.is_open("k") is True


@pytest.mark.parametrize("threshold,cooldown", [(0, 1.0), (1, 0.0)])
def test_circuit_breaker_validates_arguments(threshold: int, cooldown: float) -> None:
    with pytest.raises(ValueError):
        CircuitBreaker(failure_threshold=threshold, cooldown_seconds=cooldown)


def test_guarded_exporter_maps_timeout_to_service_unavailable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _timed_out(awaitable, seconds: float) -> bytes:
        awaitable.close()
        raise OperationTimeoutError(seconds)

    monkeypatch.setattr("sijil_api.services.pdf_export.with_timeout", _timed_out)
    metrics = RequestMetrics()
    exporter = GuardedPdfExporter(
        breaker=CircuitBreaker(failure_threshold=5, cooldown_seconds=30.0),
        timeout_seconds=0.05,
        request_metrics=metrics,
    )

    with pytest.raises(ServiceUnavailableError) as exc_info:
        asyncio.run(exporter.render("invoice-pdf", lambda: b"%PDF"))

    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "PDF export timed out"
    assert metrics.snapshot()["pdf_export"] == {
        "total": 1,
        "failures": 1,
        "timeouts": 1,
        "by_kind": {"invoice-pdf": 1},
    }


def test_guarded_exporter_reports_open_circuit_with_retry_after() -> None:
    clock = _Clock()
    exporter = GuardedPdfExporter(
        breaker=CircuitBreaker(failure_threshold=1, cooldown_seconds=30.0, time_fn=clock),
        timeout_seconds=1.0,
    )

    with pytest.raises(RuntimeError):
        asyncio.run(exporter.render("invoice-pdf", _boom))
    with pytest.raises(ServiceUnavailableError) as exc_info:
        asyncio.run(exporter.render("invoice-pdf", lambda: b"%PDF"))

    assert exc_info.value.retry_after_seconds == 30
    assert "temporarily unavailable" in exc_info.value.message


def test_guarded_exporter_returns_payload() -> None:
    metrics = RequestMetrics()
    exporter = GuardedPdfExporter(
        breaker=CircuitBreaker(), timeout_seconds=1.0, request_metrics=metrics
    )

    assert asyncio.run(exporter.render("document-pdf", lambda: b"%PDF-1.7")) == b"%PDF-1.7"
    assert metrics.snapshot()["pdf_export"] == {
        "total": 1,
        "failures": 0,
        "timeouts": 0,
        "by_kind": {"document-pdf": 1},
    }
