import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response
from opentelemetry import trace

from corsproxy.errors import ClientDisconnected
from corsproxy.gate.admission import admit
from corsproxy.models import InboundRequest
from corsproxy.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Not a registered status code; nginx uses it for "client closed request".
CLIENT_CLOSED_REQUEST = 499


async def forward_to_target(request: Request) -> Response:
    """
    Admit the request and, when the gate lets it through, forward it.

    Upstream failures surface as UpstreamTransportError and are answered by
    the application-wide handler registered in corsproxy.server.
    """
    config = request.app.state.proxy_config
    engine = request.app.state.forwarding_engine

    inbound = InboundRequest.from_request(request)
    decision = admit(inbound, config)
    if not decision.admitted:
        return decision.response

    context = decision.context
    with traced_request(
        tracer,
        operation="proxy_request",
        request=inbound,
        target=context.target,
        start_message=f"[Proxy] {inbound.method} {context.target.href}",
    ):
        context.outbound.body = await request.body()
        try:
            return await engine.forward(inbound, context)
        except ClientDisconnected as e:
            logger.info(f"[Proxy] {e.message}")
            return Response(status_code=CLIENT_CLOSED_REQUEST)


async def proxy_all(request: Request):
    """Catch-all route: the whole path is the URL to proxy."""
    return await forward_to_target(request)


# Register catch-all route for proxying. No method list: WebDAV and other
# extension methods are forwarded like any other.
router.add_route("/{path:path}", proxy_all, include_in_schema=False)
