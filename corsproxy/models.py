from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict
from starlette.requests import Request


class Target(BaseModel):
    """The upstream URL a client asked to have proxied."""

    model_config = ConfigDict(frozen=True)

    scheme: str
    host: str
    hostname: str
    port: Optional[int] = None
    path: str = "/"
    href: str


async def _never_disconnected() -> bool:
    return False


@dataclass
class InboundRequest:
    """
    The client request as seen by the gate.

    `url` is the raw request target (path and query string) including the
    leading slash. `headers` is a lower-cased copy owned by the proxy, so the
    gate and the CORS synthesizer may remove entries from it.
    """

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    is_https: bool = False
    client_host: Optional[str] = None
    server_port: Optional[int] = None
    is_disconnected: Callable[[], Awaitable[bool]] = _never_disconnected

    @classmethod
    def from_request(cls, request: Request) -> "InboundRequest":
        raw_path = request.scope.get("raw_path")
        url = (
            raw_path.decode("latin-1")
            if raw_path
            else request.scope.get("path", "/")
        )
        query = request.scope.get("query_string", b"")
        if query:
            url = f"{url}?{query.decode('latin-1')}"
        server = request.scope.get("server")
        return cls(
            method=request.method.upper(),
            url=url,
            # Repeated fields are joined into one comma-separated value.
            headers={
                name: ", ".join(request.headers.getlist(name))
                for name in request.headers.keys()
            },
            is_https=request.url.scheme in ("https", "wss"),
            client_host=request.client.host if request.client else None,
            server_port=server[1] if server else None,
            is_disconnected=request.is_disconnected,
        )


@dataclass
class OutboundRequest:
    """Method, headers and body of the current hop towards the target."""

    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def downgrade_to_get(self) -> None:
        self.method = "GET"
        self.body = b""
        self.headers.pop("content-length", None)
        self.headers.pop("content-type", None)
