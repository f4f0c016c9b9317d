from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
import math
from threading import Lock
import time
from typing import Callable


def api_area(path: str) -> str:
    """Return the route group for an API path, e.g. ``/api/matters/1`` -> ``matters``."""

    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2 and parts[0] == "api":
        return parts[1]
    return "other"


def _status_class(status_code: int) -> str:
    return f"{status_code // 100}xx"


@dataclass
class _PdfExportCounts:
    total: int = 0
    failures: int = 0
    timeouts: int = 0
    by_kind: Counter[str] = field(default_factory=Counter)


class RequestMetrics:
    """In-process counters for the API surface, exposed on ``/ops/metrics``."""

    def __init__(
        self,
        *,
        max_latency_samples: int = 2048,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        if max_latency_samples < 1:
            raise ValueError("max_latency_samples must be >= 1")
        self._time_fn = time_fn or time.monotonic
        self._started_at = self._time_fn()
        self._lock = Lock()
        self._requests_by_area: Counter[str] = Counter()
        self._responses_by_class: Counter[str] = Counter()
        self._rate_limited_scopes: Counter[str] = Counter()
        self._pdf = _PdfExportCounts()
        self._latencies_ms: deque[float] = deque(maxlen=max_latency_samples)

    def record_api_response(
        self,
        *,
        status_code: int,
        duration_seconds: float,
        path: str = "/api",
    ) -> None:
        with self._lock:
            self._requests_by_area[api_area(path)] += 1
            self._responses_by_class[_status_class(status_code)] += 1
            self._latencies_ms.append(max(duration_seconds * 1000.0, 0.0))

    def record_rate_limited(self, *, scope: str) -> None:
        with self._lock:
            self._rate_limited_scopes[scope] += 1

    def record_pdf_export(
        self,
        *,
        succeeded: bool,
        kind: str | None = None,
        timed_out: bool = False,
    ) -> None:
        with self._lock:
            self._pdf.total += 1
            if kind:
                self._pdf.by_kind[kind] += 1
            if not succeeded:
                self._pdf.failures += 1
            if timed_out:
                self._pdf.timeouts += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            elapsed_seconds = max(self._time_fn() - self._started_at, 1e-9)
            by_area = dict(self._requests_by_area)
            by_class = dict(self._responses_by_class)
            rate_limited = dict(self._rate_limited_scopes)
            pdf = _PdfExportCounts(
                total=self._pdf.total,
                failures=self._pdf.failures,
                timeouts=self._pdf.timeouts,
                by_kind=Counter(self._pdf.by_kind),
            )
            latencies = sorted(self._latencies_ms)

        total = sum(by_area.values())
        errors = sum(count for name, count in by_class.items() if name in {"4xx", "5xx"})
        return {
            "window_seconds": elapsed_seconds,
            "requests": {
                "total": total,
                "rate_per_minute": (total / elapsed_seconds) * 60.0,
                "by_area": by_area,
                "by_status_class": by_class,
            },
            "errors": {
                "total": errors,
                "rate": (errors / total) if total else 0.0,
            },
            "rate_limited": {
                "total": sum(rate_limited.values()),
                "by_scope": rate_limited,
            },
            "pdf_export": {
                "total": pdf.total,
                "failures": pdf.failures,
                "timeouts": pdf.timeouts,
                "by_kind": dict(pdf.by_kind),
            },
            "latency_ms": {
                "sample_count": len(latencies),
                "p50": _nearest_rank(latencies, 0.50),
                "p95": _nearest_rank(latencies, 0.95),
                "p99": _nearest_rank(latencies, 0.99),
            },
        }


def _nearest_rank(ordered: list[float], quantile: float) -> float:
    if not ordered:
        return 0.0
    index = min(len(ordered) - 1, max(0, math.ceil(quantile * len(ordered)) - 1))
    return float(ordered[index])
