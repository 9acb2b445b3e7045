from typing import Dict

from corsproxy.models import InboundRequest


def with_cors(
    headers: Dict[str, str], request: InboundRequest, cors_max_age: int = 0
) -> Dict[str, str]:
    """
    Add the CORS headers to a set of (lower-cased) response headers.

    Consumes access-control-request-method/-headers from the request headers,
    so those are never forwarded to the target. Expose-Headers lists every key
    present at call time, so this has to be the last step that adds headers.
    """
    headers["access-control-allow-origin"] = "*"
    if request.method == "OPTIONS" and cors_max_age:
        headers["access-control-max-age"] = str(cors_max_age)

    requested_method = request.headers.pop("access-control-request-method", None)
    if requested_method:
        headers["access-control-allow-methods"] = requested_method
    requested_headers = request.headers.pop("access-control-request-headers", None)
    if requested_headers:
        headers["access-control-allow-headers"] = requested_headers

    headers["access-control-expose-headers"] = ",".join(headers.keys())
    headers["access-control-allow-credentials"] = "true"
    return headers
