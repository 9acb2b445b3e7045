"""
Fake upstream servers for the forwarding tests.

Responses are built on a stream that has not been read yet, the way httpx
hands them out for `send(stream=True)`, so the engine can relay the body.
"""

from typing import Dict, Iterable, Optional

import httpx


class UpstreamStream(httpx.AsyncByteStream):
    """Response body delivered in the given chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = [chunk for chunk in chunks if chunk]

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


def upstream_response(
    status_code: int,
    content: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
    chunk_size: Optional[int] = None,
) -> httpx.Response:
    headers = dict(headers or {})
    if content:
        headers.setdefault("content-length", str(len(content)))
    size = chunk_size or len(content) or 1
    chunks = [content[i : i + size] for i in range(0, len(content), size)]
    return httpx.Response(status_code, headers=headers, stream=UpstreamStream(chunks))


class Recorder:
    """
    MockTransport handler that records requests and answers with the given
    replies: a status code, or a (status, content, headers) tuple. The last
    reply is repeated once the others are used up.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.replies) > 1:
            reply = self.replies.pop(0)
        else:
            reply = self.replies[0]
        status_code, *rest = reply if isinstance(reply, tuple) else (reply,)
        return upstream_response(status_code, *rest)


def make_client_factory(handler):
    """
    Client factory for ForwardingEngine that answers every request with
    `handler`, and remembers the proxy URL each client was made for.
    """

    def factory(proxy_url):
        factory.proxy_urls.append(proxy_url)
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), follow_redirects=False
        )
        client.headers.clear()
        return client

    factory.proxy_urls = []
    return factory
