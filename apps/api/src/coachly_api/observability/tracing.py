"""OpenTelemetry wiring: one tracer provider per process, instrumented per app."""

from __future__ import annotations

from typing import Dict

from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

from coachly_api.core.settings import Settings

_tracer_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> Dict[str, str] | None:
    """Parse ``key=value,key2=value2`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""

    if not raw:
        return None
    pairs = (item.split("=", 1) for item in raw.split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs} or None


def build_span_exporter(settings: Settings) -> SpanExporter | None:
    if settings.otel_exporter_otlp_endpoint:
        return OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=parse_otlp_headers(settings.otel_exporter_otlp_headers),
        )
    if settings.otel_console_exporter:
        return ConsoleSpanExporter()
    return None


def _get_tracer_provider(settings: Settings, service_version: str) -> TracerProvider:
    global _tracer_provider

    if _tracer_provider is None:
        resource = Resource.create(
            {
                ResourceAttributes.SERVICE_NAME: settings.service_name,
                ResourceAttributes.SERVICE_VERSION: service_version,
                ResourceAttributes.DEPLOYMENT_ENVIRONMENT: settings.environment,
            }
        )
        provider = TracerProvider(resource=resource)
        exporter = build_span_exporter(settings)
        if exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        LoggingInstrumentor().instrument(set_logging_format=False)
        logger.info("Tracing configured", exporter=type(exporter).__name__ if exporter else None)
        _tracer_provider = provider
    return _tracer_provider


def configure_tracing(app: FastAPI, settings: Settings, *, service_version: str) -> None:
    """Instrument ``app`` so request spans and log lines share trace ids."""

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_get_tracer_provider(settings, service_version))


__all__ = ["build_span_exporter", "configure_tracing", "parse_otlp_headers"]
