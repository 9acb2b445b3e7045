"""
Pluggable collaborators of the proxy.

Each hook is a one-method protocol with a default implementation, and is
injected through `ProxyConfig`.
"""

import asyncio
import socket
from typing import Optional, Protocol
from urllib.parse import urlsplit
from urllib.request import getproxies_environment, proxy_bypass_environment

from starlette.responses import Response

from corsproxy.models import InboundRequest, Target


class InitialRequestHandler(Protocol):
    def handle(
        self, request: InboundRequest, target: Optional[Target]
    ) -> Optional[Response]:
        """Return a response to answer the request instead of the proxy."""


class RateLimitChecker(Protocol):
    def check(self, origin: str) -> Optional[str]:
        """Return a message when `origin` exceeded its quota."""


class ProxySelector(Protocol):
    def select(self, url: str) -> Optional[str]:
        """Return the upstream proxy URL to reach `url` through, if any."""


class DnsResolver(Protocol):
    async def resolve(self, hostname: str) -> str:
        """Return the address to connect to for `hostname`."""


class NoInitialRequestHandler:
    def handle(
        self, request: InboundRequest, target: Optional[Target]
    ) -> Optional[Response]:
        return None


class NoRateLimit:
    def check(self, origin: str) -> Optional[str]:
        return None


class DirectProxySelector:
    def select(self, url: str) -> Optional[str]:
        return None


class EnvironmentProxySelector:
    """Pick a proxy from http_proxy / https_proxy / all_proxy, honouring no_proxy."""

    def select(self, url: str) -> Optional[str]:
        parts = urlsplit(url)
        proxies = getproxies_environment()
        if not proxies:
            return None
        if parts.hostname and proxy_bypass_environment(parts.netloc, proxies):
            return None
        return proxies.get(parts.scheme) or proxies.get("all") or None


class PassthroughResolver:
    """Leave name resolution to the HTTP client."""

    async def resolve(self, hostname: str) -> str:
        return hostname


class SystemResolver:
    """Resolve through the event loop's getaddrinfo and use the first address."""

    def __init__(self, family: int = socket.AF_UNSPEC):
        self.family = family

    async def resolve(self, hostname: str) -> str:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(
            hostname, None, family=self.family, type=socket.SOCK_STREAM
        )
        if not infos:
            raise OSError(f"No address found for {hostname}")
        return infos[0][4][0]
