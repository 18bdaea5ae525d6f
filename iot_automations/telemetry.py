import logging
import os
from collections.abc import Callable

from opentelemetry import trace

logger = logging.getLogger(__name__)

_TRACER_NAME = "iot_automations"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer; a no-op tracer until ``setup_otel`` installs a provider."""
    return trace.get_tracer(name or _TRACER_NAME)


def _otel_enabled() -> bool:
    return os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}


def _install_provider(service_name: str) -> bool:
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except Exception:
        logger.exception("OpenTelemetry SDK not available, tracing stays off.")
        return False

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces") if endpoint else OTLPSpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def _instrument_fastapi(app) -> None:
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app)


def _instrument_sqlalchemy(_app) -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from iot_automations.db import get_engine

    SQLAlchemyInstrumentor().instrument(engine=get_engine())


def _instrument_celery(_app) -> None:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()


def _instrument_httpx(_app) -> None:
    # webhooks and device commands
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


def _instrument_logging(_app) -> None:
    from opentelemetry.instrumentation.logging import LoggingInstrumentor

    LoggingInstrumentor().instrument(set_logging_format=True)


_INSTRUMENTATIONS: list[tuple[str, Callable, bool]] = [
    # (label, instrument function, needs the FastAPI app)
    ("FastAPI", _instrument_fastapi, True),
    ("SQLAlchemy", _instrument_sqlalchemy, False),
    ("Celery", _instrument_celery, False),
    ("httpx", _instrument_httpx, False),
    ("logging", _instrument_logging, False),
]


def setup_otel(app=None) -> None:
    """Enable tracing when ``OTEL_ENABLED`` is set.

    The API passes its FastAPI app; Celery workers call this without one.
    Instrumentation packages are optional extras, a missing one is skipped.
    """
    if not _otel_enabled():
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", _TRACER_NAME)
    if not _install_provider(service_name):
        return

    for label, instrument, needs_app in _INSTRUMENTATIONS:
        if needs_app and app is None:
            continue
        try:
            instrument(app)
            logger.info("OTel: %s instrumented", label)
        except Exception:
            logger.warning("OTel: %s instrumentation unavailable", label, exc_info=True)

    logger.info("OpenTelemetry tracing enabled (service=%s)", service_name)
