import logging
import os

from opentelemetry import trace

logger = logging.getLogger(__name__)

SERVICE_NAME = "omnidesk_inbox"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Tracer for inbox spans; a no-op tracer until ``setup_otel`` runs."""
    return trace.get_tracer(name or SERVICE_NAME)


def _instrument_fastapi(app) -> None:
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def _instrument_sqlalchemy(app) -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from app.db import get_engine

    SQLAlchemyInstrumentor().instrument(engine=get_engine())


def _instrument_httpx(app) -> None:
    # Provider calls (Telegram, Twilio, Meta, SendPulse, Graph) all go through httpx.
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


def _instrument_redis(app) -> None:
    from opentelemetry.instrumentation.redis import RedisInstrumentor

    RedisInstrumentor().instrument()


def _instrument_logging(app) -> None:
    from opentelemetry.instrumentation.logging import LoggingInstrumentor

    LoggingInstrumentor().instrument(set_logging_format=False)


_INSTRUMENTORS = (
    ("fastapi", _instrument_fastapi),
    ("sqlalchemy", _instrument_sqlalchemy),
    ("httpx", _instrument_httpx),
    ("redis", _instrument_redis),
    ("logging", _instrument_logging),
)


def setup_otel(app) -> None:
    """Export traces over OTLP/HTTP when ``OTEL_ENABLED`` is set.

    Instrumentation packages live in the ``otel`` extra; any that are not
    installed are skipped with a warning.
    """
    if os.getenv("OTEL_ENABLED", "false").lower() not in {"1", "true", "yes", "on"}:
        return

    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.exception("otel_sdk_missing")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", SERVICE_NAME)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    exporter = OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces") if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    enabled = []
    for name, instrument in _INSTRUMENTORS:
        try:
            instrument(app)
        except Exception:
            logger.warning("otel_instrumentation_unavailable target=%s", name, exc_info=True)
            continue
        enabled.append(name)

    logger.info("otel_enabled service=%s instrumented=%s", service_name, ",".join(enabled))
