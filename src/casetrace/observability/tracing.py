"""OpenTelemetry tracing configuration for casetrace.

Runs and steps execute inside spans (``casetrace.run`` / ``casetrace.step``)
carrying case, run and step attributes. Without a configured provider the
OpenTelemetry API hands out no-op spans, so instrumented code paths cost
nothing when tracing is disabled.

Environment Variables:
    CASETRACE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    CASETRACE_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    CASETRACE_OTEL_SERVICE_NAME: Service name for spans (default: "casetrace")
    CASETRACE_OTEL_EXPORTER: "otlp" or "console" (default: "otlp")
    CASETRACE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    CASETRACE_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter for tests

Never put prompts, generated content or API keys in span attributes.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

TRACER_NAME = "casetrace"

_tracer_provider: TracerProvider | None = None
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and CASETRACE_REQUIRE_OTEL=1."""


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def is_tracing_enabled() -> bool:
    """True when CASETRACE_OTEL_ENABLED is set."""
    return _get_env_bool("CASETRACE_OTEL_ENABLED")


def configure_tracing() -> bool:
    """Install a TracerProvider according to the environment.

    Idempotent: the provider is installed at most once per process.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If CASETRACE_REQUIRE_OTEL=1 and setup fails.
    """
    global _tracer_provider, _test_exporter

    if not is_tracing_enabled():
        logger.debug("OpenTelemetry tracing disabled (CASETRACE_OTEL_ENABLED not set)")
        return False

    if _tracer_provider is not None:
        return True

    try:
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

        service_name = os.environ.get("CASETRACE_OTEL_SERVICE_NAME", "casetrace").strip()
        exporter_type = os.environ.get("CASETRACE_OTEL_EXPORTER", "otlp").strip()
        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if _get_env_bool("CASETRACE_OTEL_TEST_CAPTURE"):
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
            exporter_type = "in-memory"
        elif exporter_type == "console":
            from opentelemetry.sdk.trace.export import ConsoleSpanExporter

            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            endpoint = os.environ.get("CASETRACE_OTEL_EXPORTER_OTLP_ENDPOINT", "").strip()
            exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if _get_env_bool("CASETRACE_REQUIRE_OTEL"):
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application when tracing is enabled."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_httpx() -> None:
    """Instrument outbound httpx calls (generation providers) when tracing is enabled."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.debug("httpx instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument httpx: %s", e)


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    """Run a block inside a span named ``name``.

    None-valued attributes are dropped; other values are stringified.
    Exceptions escaping the block are recorded on the span and re-raised.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    clean = {k: str(v) for k, v in (attributes or {}).items() if v is not None}
    with tracer.start_as_current_span(name, attributes=clean) as span:
        yield span


def get_test_spans() -> list[ReadableSpan]:
    """Spans captured by the in-memory exporter (CASETRACE_OTEL_TEST_CAPTURE=1)."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    """Drop spans captured by the in-memory exporter."""
    if _test_exporter is not None:
        _test_exporter.clear()
