from __future__ import annotations

import logging
import math
from typing import Callable

from starlette.concurrency import run_in_threadpool

from sijil_api.errors import ServiceUnavailableError
from sijil_api.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    OperationTimeoutError,
    with_timeout,
)
from sijil_api.telemetry import RequestMetrics


LOGGER = logging.getLogger(__name__)

INVOICE_PDF_CIRCUIT = "invoice-pdf"
DOCUMENT_PDF_CIRCUIT = "document-pdf"


class GuardedPdfExporter:
    """Runs blocking PDF renderers off the event loop behind a timeout and a circuit breaker."""

    def __init__(
        self,
        *,
        breaker: CircuitBreaker,
        timeout_seconds: float = 10.0,
        request_metrics: RequestMetrics | None = None,
    ) -> None:
        self.breaker = breaker
        self.timeout_seconds = timeout_seconds
        self.request_metrics = request_metrics

    async def render(self, key: str, render: Callable[[], bytes]) -> bytes:
        try:
            payload = await self.breaker.call_async(
                key,
                lambda: with_timeout(run_in_threadpool(render), self.timeout_seconds),
            )
        except CircuitOpenError as exc:
            self._record(key, succeeded=False)
            raise ServiceUnavailableError(
                "PDF export is temporarily unavailable",
                retry_after_seconds=max(1, math.ceil(exc.retry_after_seconds)),
            ) from exc
        except OperationTimeoutError as exc:
            LOGGER.warning("PDF export timed out", extra={"circuit": key})
            self._record(key, succeeded=False, timed_out=True)
            raise ServiceUnavailableError("PDF export timed out") from exc
        except Exception:
            self._record(key, succeeded=False)
            raise
        self._record(key, succeeded=True)
        return payload

    def _record(self, key: str, *, succeeded: bool, timed_out: bool = False) -> None:
        if self.request_metrics is not None:
            self.request_metrics.record_pdf_export(
                succeeded=succeeded, kind=key, timed_out=timed_out
            )
