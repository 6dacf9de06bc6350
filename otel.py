import os
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "canary-rollout")

def setup_tracing() -> bool:
    # 예: http://localhost:4318/v1/traces
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return False  # 엔드포인트 없으면 비활성(로컬 기본)

    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return True

def get_tracer():
    return trace.get_tracer(SERVICE_NAME)

@contextmanager
def span(name: str, attributes: dict | None = None):
    """
    provider가 없으면 no-op span. 값이 None인 속성은 건너뛴다.
    """
    with get_tracer().start_as_current_span(name) as sp:
        for k, v in (attributes or {}).items():
            if v is not None:
                sp.set_attribute(k, v)
        yield sp
