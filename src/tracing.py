"""
OpenTelemetry Tracing Setup
===========================
Configures tracing for pipeline runs.

One span per run and one child span per stage. Spans are exported over OTLP/HTTP
only when ENABLE_TRACING=true; otherwise the global no-op tracer is used and
every helper here is safe to call.
"""

import atexit
import json
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from loguru import logger

from src.config import TRACING

SERVICE_NAME_VALUE = TRACING.SERVICE_NAME
OTLP_ENDPOINT = TRACING.OTLP_ENDPOINT
ENABLE_TRACING = TRACING.ENABLED

_provider: Optional[TracerProvider] = None


def _cleanup_tracing() -> None:
    """Shutdown the tracer provider to flush pending spans."""
    global _provider
    if _provider is None:
        return
    try:
        _provider.shutdown()
    except Exception as e:
        logger.debug("Tracer provider shutdown failed: {}: {}", type(e).__name__, e)


def setup_tracing(service_name: str = SERVICE_NAME_VALUE) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing with OTLP export.

    Args:
        service_name: Name of the service for trace identification

    Returns:
        Configured tracer instance
    """
    global _provider

    resource = Resource.create({SERVICE_NAME: service_name})
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT)))
    trace.set_tracer_provider(_provider)

    # SonarQube quality gate polling goes through httpx
    HTTPXClientInstrumentor().instrument()

    atexit.register(_cleanup_tracing)

    return trace.get_tracer(service_name)


def get_tracer(name: str = SERVICE_NAME_VALUE) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


def safe_set_span_attributes(span: Any, attributes: Mapping[str, Any]) -> None:
    """Best-effort attribute setter.

    Safe to call when tracing is disabled, when the span is a no-op, or when
    values are not directly serializable.
    """

    if span is None:
        return

    setter = getattr(span, "set_attribute", None)
    if not callable(setter):
        return

    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            continue

        try:
            if isinstance(value, str):
                setter(key, value[:2048])
            elif isinstance(value, (bool, int, float)):
                setter(key, value)
            elif value is None:
                continue
            elif isinstance(value, (list, tuple)):
                trimmed = list(value)[:25]
                if all(isinstance(x, (str, bool, int, float)) for x in trimmed):
                    setter(key, [x[:256] if isinstance(x, str) else x for x in trimmed])
                else:
                    setter(key, [str(x)[:256] for x in trimmed])
            elif isinstance(value, dict):
                try:
                    setter(key, json.dumps(value, sort_keys=True)[:2048])
                except (TypeError, ValueError):
                    setter(key, str(value)[:2048])
            else:
                setter(key, str(value)[:2048])
        except Exception as e:
            # Tracing never breaks a run.
            logger.debug("Dropped span attribute '{}': {}", key, type(e).__name__)


def safe_set_current_span_attributes(attributes: Mapping[str, Any]) -> None:
    """Set attributes on the current span when available."""
    safe_set_span_attributes(trace.get_current_span(), attributes)


@contextmanager
def traced(name: str, attributes: Optional[Mapping[str, Any]] = None) -> Iterator[Any]:
    """Open a span on the pipeline tracer and yield it."""
    tracer = init_tracing()
    with tracer.start_as_current_span(name) as span:
        if attributes:
            safe_set_span_attributes(span, attributes)
        yield span


_tracer: Optional[trace.Tracer] = None


def init_tracing() -> trace.Tracer:
    """
    Initialize tracing if not already done.

    Returns:
        The global tracer instance (or NoOp tracer if disabled)
    """
    global _tracer
    if _tracer is None:
        if ENABLE_TRACING:
            _tracer = setup_tracing()
        else:
            _tracer = trace.get_tracer(SERVICE_NAME_VALUE)
    return _tracer
