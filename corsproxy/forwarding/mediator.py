"""
Response mediation: decides, once an upstream response has arrived, whether
the hop is followed to a new target or finalized for the client.

client (request)  -> proxy -> (outbound hop) -> target
client (response) <- proxy <- (upstream response) <- target
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import urljoin

from corsproxy.cors.headers import with_cors
from corsproxy.forwarding.context import HopState, RequestContext
from corsproxy.models import InboundRequest, Target
from corsproxy.target.parse import parse_url

logger = logging.getLogger("uvicorn.error")

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
# 307 and 308 must keep method and body, so the client follows those itself.
FOLLOWED_REDIRECT_STATUSES = {301, 302, 303}

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

COOKIE_HEADERS = {"set-cookie", "set-cookie2"}


@dataclass
class Mediation:
    """Outcome of one hop: a target to follow, or headers for the client."""

    follow: Optional[Target] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_redirect(self) -> bool:
        return self.follow is not None


def copy_response_headers(upstream_headers: Mapping[str, str]) -> Dict[str, str]:
    """Lower-cased copy of the upstream headers without hop-by-hop headers."""
    headers = {}
    for name, value in upstream_headers.items():
        name_lower = name.lower()
        if name_lower not in HOP_BY_HOP_HEADERS:
            headers[name_lower] = value
    return headers


def finalize_headers(
    headers: Dict[str, str], context: RequestContext, request: InboundRequest
) -> Dict[str, str]:
    """
    Turn upstream headers into client-facing headers.

    Removes set-cookie/set-cookie2, adds x-request-url, the recorded
    x-cors-redirect-<n> headers and x-final-url, then the CORS headers.
    """
    for name in COOKIE_HEADERS:
        headers.pop(name, None)
    headers["x-request-url"] = context.original_target.href
    for name, value in context.redirect_headers:
        headers[name] = value
    headers["x-final-url"] = context.target.href
    return with_cors(headers, request, context.cors_max_age)


def mediate_response(
    context: RequestContext,
    request: InboundRequest,
    status_code: int,
    upstream_headers: Mapping[str, str],
) -> Mediation:
    """
    Transition function run when a hop's response headers have arrived.

    Moves the context to REDIRECTING (new target set, request downgraded to
    GET, hop recorded) or to FINALIZING (headers ready for the client).
    """
    headers = copy_response_headers(upstream_headers)

    if status_code in REDIRECT_STATUSES and headers.get("location"):
        location = urljoin(context.target.href, headers["location"])
        next_target = parse_url(location)
        if next_target is not None:
            if status_code in FOLLOWED_REDIRECT_STATUSES:
                context.redirect_count += 1
                if context.redirect_count <= context.max_redirects:
                    context.transition(HopState.REDIRECTING)
                    context.record_redirect(status_code, location)
                    context.outbound.downgrade_to_get()
                    context.target = next_target
                    logger.debug(
                        f"[Redirect] {status_code} #{context.redirect_count} -> {location}"
                    )
                    return Mediation(follow=next_target)
            # Let the client follow it, through this proxy again.
            headers["location"] = f"{context.proxy_base_url}/{location}"

    context.transition(HopState.FINALIZING)
    return Mediation(headers=finalize_headers(headers, context, request))
