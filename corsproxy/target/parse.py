import re
from typing import Optional

from corsproxy.models import Target
from corsproxy.target.hostname import is_valid_hostname

# Some reverse proxies (Cloudflare among them) collapse "//" into "/", which
# turns /http://example.com into /http:/example.com.
_SINGLE_SLASH_SCHEME = re.compile(r"^http(s?):/(?!/)", re.IGNORECASE)
_EXPLICIT_SCHEME = re.compile(r"^https?:", re.IGNORECASE)

# 1: protocol, 2: host, 3: hostname, 4: port, 5: path + query string
_TARGET_PATTERN = re.compile(
    r"^(?:(https?:)?//)?(([^/?]+?)(?::(\d{0,5})(?=[/?]|$))?)([/?][\s\S]*|$)",
    re.IGNORECASE,
)

_FORBIDDEN_HOSTNAME_CHARS = re.compile(r"[\s@\\]")


def _normalize_hostname(hostname: str) -> Optional[str]:
    if hostname.startswith("[") and hostname.endswith("]"):
        inner = hostname[1:-1]
        return inner.lower() if inner else None
    if not hostname or ":" in hostname or _FORBIDDEN_HOSTNAME_CHARS.search(hostname):
        return None
    return hostname.lower()


def parse_url(raw_url: str) -> Optional[Target]:
    """
    Parse the URL embedded in a request path (leading "/" already removed).

    Accepts "http://host/path", "//host/path", "host/path" and "host:port/path".
    A scheme-less URL gets https when the port is 443 and http otherwise.
    Returns None when no usable hostname can be extracted.
    """
    url = _SINGLE_SLASH_SCHEME.sub(r"http\1://", raw_url)
    slash_was_missing = url != raw_url

    match = _TARGET_PATTERN.match(url)
    if not match:
        return None
    if not match.group(1):
        if _EXPLICIT_SCHEME.match(url):
            # "http:///" would otherwise parse as host "http:" with path "///".
            return None
        if not url.startswith("//"):
            url = "//" + url
        url = ("https:" if match.group(4) == "443" else "http:") + url
        match = _TARGET_PATTERN.match(url)
        if not match:
            return None

    hostname = _normalize_hostname(match.group(3))
    if hostname is None:
        return None
    if slash_was_missing and hostname != "localhost" and not is_valid_hostname(hostname):
        # "http:/x" could just as well be host "http:" with path "/x".
        return None

    port = match.group(4) or None
    host = f"[{hostname}]" if ":" in hostname else hostname
    if port:
        host = f"{host}:{port}"

    path = match.group(5) or "/"
    if path.startswith("?"):
        path = "/" + path

    scheme = match.group(1)[:-1].lower()
    return Target(
        scheme=scheme,
        host=host,
        hostname=hostname,
        port=int(port) if port else None,
        path=path,
        href=f"{scheme}://{host}{path}",
    )
