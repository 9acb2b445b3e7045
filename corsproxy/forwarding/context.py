from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from corsproxy.hooks import (
    DirectProxySelector,
    DnsResolver,
    PassthroughResolver,
    ProxySelector,
)
from corsproxy.models import OutboundRequest, Target


class HopState(str, Enum):
    INIT = "init"
    RESOLVING = "resolving"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    REDIRECTING = "redirecting"
    FINALIZING = "finalizing"


_TRANSITIONS = {
    HopState.INIT: {HopState.RESOLVING, HopState.SENDING},
    HopState.RESOLVING: {HopState.SENDING},
    HopState.SENDING: {HopState.AWAITING_RESPONSE},
    HopState.AWAITING_RESPONSE: {HopState.REDIRECTING, HopState.FINALIZING},
    HopState.REDIRECTING: {HopState.RESOLVING, HopState.SENDING},
    HopState.FINALIZING: set(),
}


class InvalidHopTransition(RuntimeError):
    pass


@dataclass
class RequestContext:
    """
    Per-request forwarding state, created by the gate on admission.

    Only the forwarding engine and the response mediator mutate it: `target`
    moves along the redirect chain while `original_target` keeps the URL the
    client asked for.
    """

    target: Target
    proxy_base_url: str
    outbound: OutboundRequest
    max_redirects: int = 5
    cors_max_age: int = 0
    dns_resolver: DnsResolver = field(default_factory=PassthroughResolver)
    proxy_selector: ProxySelector = field(default_factory=DirectProxySelector)
    redirect_count: int = 0
    original_target: Optional[Target] = None
    redirect_headers: List[Tuple[str, str]] = field(default_factory=list)
    state: HopState = HopState.INIT

    def __post_init__(self):
        if self.original_target is None:
            self.original_target = self.target

    def transition(self, new_state: HopState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidHopTransition(
                f"Cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def record_redirect(self, status_code: int, location: str) -> None:
        self.redirect_headers.append(
            (f"x-cors-redirect-{self.redirect_count}", f"{status_code} {location}")
        )
