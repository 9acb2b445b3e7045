from typing import Optional


class ProxyError(Exception):
    """Base class for everything the proxy raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GateRejection(ProxyError):
    """A request refused by the access-control gate before any upstream I/O."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ClientInputError(GateRejection):
    status_code = 400


class RoutingMiss(GateRejection):
    status_code = 404


class PolicyViolation(GateRejection):
    status_code = 403


class RateLimited(PolicyViolation):
    status_code = 429


class UpstreamTransportError(ProxyError):
    """DNS, connect, send or receive failure while talking to the target."""


class ClientDisconnected(ProxyError):
    """The client went away while a hop was still in flight."""
