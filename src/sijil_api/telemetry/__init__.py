from sijil_api.telemetry.event_metrics import EventMetrics
from sijil_api.telemetry.request_metrics import RequestMetrics
from sijil_api.telemetry.tracing import generate_trace_id

__all__ = ["EventMetrics", "RequestMetrics", "generate_trace_id"]
