"""
Access-control gate: decides whether a request is proxied.

The checks run in a fixed order and the first one that refuses the request
wins. Every refusal still carries the CORS headers, so the client can read
the error message cross-origin.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from starlette.responses import PlainTextResponse, Response

from corsproxy.config import ProxyConfig
from corsproxy.cors.headers import with_cors
from corsproxy.errors import (
    ClientInputError,
    GateRejection,
    PolicyViolation,
    RateLimited,
    RoutingMiss,
)
from corsproxy.forwarding.context import RequestContext
from corsproxy.gate.help_text import show_usage
from corsproxy.models import InboundRequest, OutboundRequest, Target
from corsproxy.target.hostname import is_valid_hostname
from corsproxy.target.parse import parse_url

logger = logging.getLogger("uvicorn.error")

# Clients use this to find out whether they need the proxy at all. The answer
# is always "no": if they can read it, CORS headers were not necessary.
CORS_CHECK_HOST = "iscorsneeded"

_MISSING_SLASH = re.compile(r"^/https?:/[^/]", re.IGNORECASE)
_EXPLICIT_SCHEME = re.compile(r"^/https?:", re.IGNORECASE)
MAX_PORT = 65535


@dataclass
class Decision:
    """Either a context to forward with, or a response to send right away."""

    context: Optional[RequestContext] = None
    response: Optional[Response] = None

    @classmethod
    def proceed(cls, context: RequestContext) -> "Decision":
        return cls(context=context)

    @classmethod
    def reply(cls, response: Response) -> "Decision":
        return cls(response=response)

    @property
    def admitted(self) -> bool:
        return self.context is not None


def matches_domain(hostname: str, domains: Iterable[str]) -> bool:
    """Whether hostname equals, or is a sub-domain of, one of the domains."""
    hostname = hostname.lower()
    return any(
        hostname == domain or hostname.endswith("." + domain)
        for domain in (d.lower() for d in domains)
    )


def check_target(request: InboundRequest, target: Target) -> None:
    if target.port is not None and target.port > MAX_PORT:
        raise ClientInputError(f"Port number too large: {target.port}")
    # Don't even try to proxy invalid hosts (such as /favicon.ico, /robots.txt)
    if not _EXPLICIT_SCHEME.match(request.url) and not is_valid_hostname(
        target.hostname
    ):
        raise RoutingMiss(f"Invalid host: {target.hostname}")


def check_required_headers(request: InboundRequest, config: ProxyConfig) -> None:
    if not config.require_header:
        return
    if not any(name in request.headers for name in config.require_header):
        raise ClientInputError(
            "Missing required request header. Must specify one of: "
            + ",".join(config.require_header)
        )


def check_origin(origin: str, config: ProxyConfig) -> None:
    if origin in config.origin_blacklist:
        raise PolicyViolation(
            f'The origin "{origin}" was blacklisted by the operator of this proxy.'
        )
    if config.origin_whitelist and origin not in config.origin_whitelist:
        raise PolicyViolation(
            f'The origin "{origin}" was not whitelisted by the operator of this proxy.'
        )


def check_target_lists(target: Target, config: ProxyConfig) -> None:
    if config.target_blacklist and matches_domain(
        target.hostname, config.target_blacklist
    ):
        raise PolicyViolation(
            f'The target URL hostname "{target.hostname}" is not allowed by this proxy.'
        )
    if config.target_whitelist and not matches_domain(
        target.hostname, config.target_whitelist
    ):
        raise PolicyViolation(
            f'The target URL hostname "{target.hostname}" is not allowed by this proxy.'
        )


def check_rate_limit(origin: str, config: ProxyConfig) -> None:
    message = config.rate_limit_checker.check(origin)
    if message:
        raise RateLimited(
            f'The origin "{origin}" has sent too many requests.\n{message}'
        )


def is_same_origin(origin: str, target: Target) -> bool:
    href = target.href
    return bool(origin) and href.startswith(origin) and href[len(origin):][:1] == "/"


def proxy_base_url(request: InboundRequest) -> str:
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    over_https = request.is_https or forwarded_proto.lstrip().startswith("https")
    return ("https://" if over_https else "http://") + request.headers.get("host", "")


def outbound_headers(request: InboundRequest, config: ProxyConfig) -> Dict[str, str]:
    """Request headers for the target: configured removals and additions applied."""
    headers = dict(request.headers)
    for name in config.remove_headers:
        headers.pop(name, None)
    headers.update(config.set_headers)

    if config.add_forwarded_headers:
        client_ip = request.client_host or "unknown"
        existing_xff = headers.get("x-forwarded-for", "")
        headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
        headers.setdefault("x-forwarded-host", request.headers.get("host", ""))
        headers.setdefault("x-forwarded-proto", "https" if request.is_https else "http")
        if request.server_port is not None:
            headers.setdefault("x-forwarded-port", str(request.server_port))
    return headers


def admit(request: InboundRequest, config: ProxyConfig) -> Decision:
    cors_headers = with_cors({}, request, config.cors_max_age)
    if request.method == "OPTIONS":
        # Pre-flight request. Reply successfully:
        return Decision.reply(Response(status_code=200, headers=cors_headers))

    target = parse_url(request.url[1:])

    handled = config.initial_request_handler.handle(request, target)
    if handled is not None:
        return Decision.reply(handled)

    if target is None:
        # Proxies in front of us that normalize "//" into "/" break URLs.
        if _MISSING_SLASH.match(request.url):
            return _refuse(
                ClientInputError(
                    "The URL is invalid: two slashes are needed after the http(s):."
                ),
                cors_headers,
                request,
            )
        return Decision.reply(show_usage(config.help_file, cors_headers))

    if target.host == CORS_CHECK_HOST:
        return Decision.reply(PlainTextResponse("no", status_code=200))

    origin = request.headers.get("origin", "")
    try:
        check_target(request, target)
        check_required_headers(request, config)
        check_origin(origin, config)
        check_target_lists(target, config)
        check_rate_limit(origin, config)
    except GateRejection as e:
        return _refuse(e, cors_headers, request)

    if config.redirect_same_origin and is_same_origin(origin, target):
        # Send a permanent redirect to offload the server. Badly coded clients
        # should not waste our resources.
        headers = dict(cors_headers)
        headers["vary"] = "origin"
        headers["cache-control"] = "private"
        headers["location"] = target.href
        logger.info(f"[Gate] Same-origin request from {origin} redirected to {target.href}")
        return Decision.reply(Response(status_code=301, headers=headers))

    context = RequestContext(
        target=target,
        proxy_base_url=proxy_base_url(request),
        outbound=OutboundRequest(
            method=request.method, headers=outbound_headers(request, config)
        ),
        max_redirects=config.max_redirects,
        cors_max_age=config.cors_max_age,
        dns_resolver=config.dns_resolver,
        proxy_selector=config.proxy_selector,
    )
    return Decision.proceed(context)


def _refuse(
    rejection: GateRejection, cors_headers: Dict[str, str], request: InboundRequest
) -> Decision:
    logger.info(
        f"[Gate] {request.method} {request.url} refused with "
        f"{rejection.status_code}: {rejection.message.splitlines()[0]}"
    )
    return Decision.reply(
        PlainTextResponse(
            rejection.message, status_code=rejection.status_code, headers=cors_headers
        )
    )
