import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, Dict, Optional

import httpx
from opentelemetry import trace
from starlette.responses import StreamingResponse

from corsproxy.errors import ClientDisconnected, UpstreamTransportError
from corsproxy.forwarding.context import HopState, RequestContext
from corsproxy.forwarding.mediator import HOP_BY_HOP_HEADERS, mediate_response
from corsproxy.models import InboundRequest
from corsproxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)

logger = logging.getLogger("uvicorn.error")

DISCONNECT_POLL_INTERVAL = 0.1

ClientFactory = Callable[[Optional[str]], httpx.AsyncClient]


async def _wait_for_disconnect(request: InboundRequest) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


class ForwardingEngine:
    """
    Sends admitted requests to their target and follows redirects.

    One httpx client is kept per upstream proxy URL (None = direct), so the
    connection pools are shared between requests.
    """

    def __init__(
        self,
        timeout: float = 300,
        verify: bool = True,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self._client_factory = client_factory or self._default_client
        self._clients: Dict[Optional[str], httpx.AsyncClient] = {}

    def _default_client(self, proxy_url: Optional[str]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,  # Redirects go through mediate_response
            verify=self.verify,
            proxy=proxy_url,
            trust_env=False,
        )
        # Only send what the client sent, no python-httpx User-Agent and such.
        client.headers.clear()
        return client

    def client_for(self, proxy_url: Optional[str]) -> httpx.AsyncClient:
        client = self._clients.get(proxy_url)
        if client is None:
            client = self._client_factory(proxy_url)
            self._clients[proxy_url] = client
        return client

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()

    async def forward(
        self, request: InboundRequest, context: RequestContext
    ) -> StreamingResponse:
        """
        Run hops until a response is finalized, and stream it to the client.

        Raises UpstreamTransportError when the target cannot be reached and
        ClientDisconnected when the client went away in between.
        """
        while True:
            upstream = await self._run_hop(request, context)
            try:
                mediation = mediate_response(
                    context, request, upstream.status_code, upstream.headers
                )
            except Exception:
                await upstream.aclose()
                raise
            if not mediation.is_redirect:
                break
            # The previous exchange must be gone before the next hop starts.
            await upstream.aclose()

        span = trace.get_current_span()
        span.set_attribute("proxy.status_code", upstream.status_code)
        span.set_attribute("proxy.redirect_count", len(context.redirect_headers))
        span.set_attribute("proxy.final_url", context.target.href)
        logger.info(
            f"[Forward] {request.method} {context.original_target.href} -> "
            f"{upstream.status_code} ({context.target.href})"
        )
        return StreamingResponse(
            self._relay(upstream),
            status_code=upstream.status_code,
            headers=mediation.headers,
        )

    async def _run_hop(
        self, request: InboundRequest, context: RequestContext
    ) -> httpx.Response:
        target = context.target
        context.transition(HopState.RESOLVING)
        try:
            address = await context.dns_resolver.resolve(target.hostname)
        except Exception as e:
            raise UpstreamTransportError(
                f"DNS lookup for {target.hostname} failed: {format_exception_message(e)}"
            ) from e

        context.transition(HopState.SENDING)
        try:
            proxy_url = context.proxy_selector.select(target.href) or None
            client = self.client_for(proxy_url)
            outbound = self._build_request(client, context, address)
        except Exception as e:
            raise UpstreamTransportError(
                f"Cannot build request to {target.href}: {format_exception_message(e)}"
            ) from e

        if proxy_url:
            logger.debug(f"[Forward] {target.href} via proxy {proxy_url}")
        if await request.is_disconnected():
            raise ClientDisconnected(f"Client left before {target.href} was requested")
        try:
            response = await self._send_unless_disconnected(client, outbound, request)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(format_exception_message(e)) from e
        context.transition(HopState.AWAITING_RESPONSE)
        return response

    def _build_request(
        self, client: httpx.AsyncClient, context: RequestContext, address: str
    ) -> httpx.Request:
        target = context.target
        outbound = context.outbound
        headers = {
            name: value
            for name, value in outbound.headers.items()
            if name not in HOP_BY_HOP_HEADERS and name != "host"
        }
        headers["host"] = target.host

        url = target.href
        extensions = {}
        if address != target.hostname:
            # Connect to the resolved address, but keep Host and SNI intact.
            host = f"[{address}]" if ":" in address else address
            if target.port is not None:
                host = f"{host}:{target.port}"
            url = f"{target.scheme}://{host}{target.path}"
            if target.scheme == "https":
                extensions["sni_hostname"] = target.hostname

        return client.build_request(
            outbound.method,
            url,
            headers=headers,
            content=outbound.body or None,
            extensions=extensions,
        )

    async def _send_unless_disconnected(
        self,
        client: httpx.AsyncClient,
        outbound: httpx.Request,
        request: InboundRequest,
    ) -> httpx.Response:
        send = asyncio.ensure_future(client.send(outbound, stream=True))
        watch = asyncio.ensure_future(_wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait(
                {send, watch}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            send.cancel()
            raise
        finally:
            watch.cancel()

        if send in done:
            return send.result()

        send.cancel()
        with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
            late_response = await send
            await late_response.aclose()
        raise ClientDisconnected(f"Client left while {outbound.url} was in flight")

    async def _relay(self, upstream: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            # Headers are already on the wire, so the response can only be ended.
            log_exception_with_details(
                logger, "[Forward]", e, level=logging.WARNING
            )
        finally:
            await upstream.aclose()
