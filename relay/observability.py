"""
Prometheus metrics + OpenTelemetry tracing for the relay.
- /metrics: webhook outcomes per destination, outbound call latency
- spans around each delivery; they go nowhere until an OTLP endpoint is configured
"""

from contextlib import contextmanager

from fastapi import FastAPI
from starlette.responses import Response
from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider

OUTCOMES = ("delivered", "rejected", "unauthorized", "misconfigured", "failed")

# Mounted by the main app at "/metrics".
metrics_app = FastAPI()


@metrics_app.get("/")  # "/" so the mount path is the public one
def metrics_root():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


WEBHOOK_COUNT = Counter(
    "relay_webhooks_total", "Inbound webhooks by outcome", labelnames=("destination", "outcome")
)
OUTBOUND_LATENCY = Histogram(
    "relay_outbound_seconds",
    "Outbound destination call latency",
    labelnames=("destination",),
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 20.0),
)


def record_outcome(destination: str, outcome: str) -> None:
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown webhook outcome '{outcome}'")
    WEBHOOK_COUNT.labels(destination=destination, outcome=outcome).inc()


_tracer_configured = False


def configure_tracer(endpoint: str | None, service_name: str) -> bool:
    """
    Install an OTLP/HTTP span exporter when an endpoint is set.
    Returns True when a provider was installed by this call.
    """
    global _tracer_configured
    if not endpoint or _tracer_configured:
        return False
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_configured = True
    return True


@contextmanager
def delivery_span(destination: str, kind: str, contacts: int = 1):
    tracer = trace.get_tracer("relay.delivery")
    with tracer.start_as_current_span(f"deliver {kind}") as span:
        span.set_attribute("relay.destination", destination)
        span.set_attribute("relay.contacts", contacts)
        yield span
