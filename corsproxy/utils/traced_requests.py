import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from corsproxy.models import InboundRequest, Target

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    request: InboundRequest,
    target: Optional[Target],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("proxy.method", request.method)
        if target is not None:
            span.set_attribute("proxy.target_url", target.href)
        origin = request.headers.get("origin")
        if origin:
            span.set_attribute("proxy.origin", origin)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(start_message)
        yield span
