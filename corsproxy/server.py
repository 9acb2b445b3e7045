import logging
from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from corsproxy.config import ProxyConfig
from corsproxy.errors import UpstreamTransportError
from corsproxy.forwarding.engine import ForwardingEngine
from corsproxy.proxy.route import router
from corsproxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from corsproxy.vars import (
    ALLOW_UNSAFE_CERT,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_TIMEOUT,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    Relayed bodies arrive in many chunks, each of which would otherwise get a span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.forwarding_engine.aclose()


# The whole path space belongs to the proxy, so no docs routes.
app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
app.state.proxy_config = ProxyConfig.from_env()
app.state.forwarding_engine = ForwardingEngine(
    timeout=PROXY_TIMEOUT, verify=not ALLOW_UNSAFE_CERT
)

instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)


@app.exception_handler(UpstreamTransportError)
async def upstream_transport_error_handler(
    request: Request, exc: UpstreamTransportError
):
    log_exception_with_details(logger, "[Forward]", exc, level=logging.WARNING)
    return PlainTextResponse(
        f"Not found because of proxy error: {format_exception_message(exc)}",
        status_code=404,
        headers={"access-control-allow-origin": "*"},
    )


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(
            tuple(
                tuple(item.split("=", 1))
                for item in OTLP_HEADERS.split(",")
                if "=" in item
            )
            or None
        ),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls="")

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)
