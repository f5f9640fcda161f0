"""
OpenTelemetry tracing for the knowledge service.

Opt-in via OTEL_ENABLED=true. When enabled:
- a TracerProvider is registered with the service name as a resource
- spans are exported through a BatchSpanProcessor (OTLP when
  OTEL_EXPORTER_OTLP_ENDPOINT is set, console otherwise)
- incoming FastAPI requests and outbound httpx calls (the OpenAI client
  transport) are instrumented

Search runs and embedding backfills open their own spans:

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("retrieval.search") as span:
        span.set_attribute("search.method", "hybrid")

Environment Variables:
    OTEL_ENABLED: "true" to enable tracing (default: false)
    OTEL_SERVICE_NAME: Override service name
    OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint (optional)
"""

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.trace import Tracer
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

logger = logging.getLogger("Javari.Tracing")

DEFAULT_SERVICE_NAME = "javari-knowledge-service"

_tracer_provider: Optional[TracerProvider] = None
_is_initialized = False


def is_tracing_enabled() -> bool:
    """True when OTEL_ENABLED is "true" (case-insensitive)."""
    return os.getenv("OTEL_ENABLED", "false").lower() == "true"


def _build_exporter() -> SpanExporter:
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not otlp_endpoint:
        logger.info("Using Console exporter for trace output")
        return ConsoleSpanExporter()

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("OTLP exporter requested but grpc exporter is not installed, using console")
        return ConsoleSpanExporter()

    logger.info(f"Using OTLP exporter with endpoint: {otlp_endpoint}")
    return OTLPSpanExporter(endpoint=otlp_endpoint)


def setup_tracing(service_name: Optional[str] = None) -> Optional[TracerProvider]:
    """
    Register the global TracerProvider.

    Args:
        service_name: Overrides OTEL_SERVICE_NAME / DEFAULT_SERVICE_NAME.

    Returns:
        The configured TracerProvider, or None if tracing is disabled.
    """
    global _tracer_provider, _is_initialized

    if _is_initialized:
        return _tracer_provider

    if not is_tracing_enabled():
        logger.info("OpenTelemetry tracing is disabled (set OTEL_ENABLED=true to enable)")
        _is_initialized = True
        return None

    effective_service_name = (
        service_name
        or os.getenv("OTEL_SERVICE_NAME")
        or DEFAULT_SERVICE_NAME
    )

    _tracer_provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: effective_service_name})
    )
    _tracer_provider.add_span_processor(BatchSpanProcessor(_build_exporter()))
    trace.set_tracer_provider(_tracer_provider)

    _is_initialized = True
    logger.info(f"OpenTelemetry tracing initialized for service: {effective_service_name}")
    return _tracer_provider


def get_tracer(name: str) -> Tracer:
    """Tracer for custom spans; a no-op tracer when tracing is disabled."""
    return trace.get_tracer(name)


def instrument_app(app) -> None:
    """Trace every incoming request on the FastAPI app."""
    if not is_tracing_enabled():
        return

    FastAPIInstrumentor.instrument_app(app)
    logger.info("FastAPI instrumentation enabled")


def instrument_httpx() -> None:
    """Trace outbound httpx requests, which covers the OpenAI embeddings client."""
    if not is_tracing_enabled():
        return

    HTTPXClientInstrumentor().instrument()
    logger.info("httpx instrumentation enabled")


def shutdown_tracing() -> None:
    """Flush remaining spans and drop the provider."""
    global _tracer_provider, _is_initialized

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        logger.info("OpenTelemetry tracing shut down")

    _tracer_provider = None
    _is_initialized = False
