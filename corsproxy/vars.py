import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cors-proxy")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_header_map(raw: str) -> dict:
    mapping: dict = {}
    if not raw:
        return mapping
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            key, val = entry.split("=", 1)
            key = key.strip().lower()
            val = val.strip()
            if key and val:
                mapping[key] = val
    return mapping


ORIGIN_BLACKLIST = _parse_list(os.getenv("ORIGIN_BLACKLIST", ""))
ORIGIN_WHITELIST = _parse_list(os.getenv("ORIGIN_WHITELIST", ""))
TARGET_BLACKLIST = _parse_list(os.getenv("TARGET_BLACKLIST", ""))
TARGET_WHITELIST = _parse_list(os.getenv("TARGET_WHITELIST", ""))

# Requests from browsers always carry one of these, so plain navigations
# and scrapers are turned away.
REQUIRE_HEADER = _parse_list(os.getenv("REQUIRE_HEADER", "origin,x-requested-with"))
REMOVE_HEADERS = _parse_list(
    os.getenv(
        "REMOVE_HEADERS",
        "cookie,cookie2,x-request-start,x-request-id,via,connect-time,total-route-time",
    )
)
SET_HEADERS = _parse_header_map(os.getenv("SET_HEADERS", ""))

CORS_MAX_AGE = int(os.getenv("CORS_MAX_AGE", "0"))
MAX_REDIRECTS = int(os.getenv("MAX_REDIRECTS", "5"))
REDIRECT_SAME_ORIGIN = _parse_bool(os.getenv("REDIRECT_SAME_ORIGIN", "true"))
ADD_FORWARDED_HEADERS = _parse_bool(os.getenv("ADD_FORWARDED_HEADERS", "false"))

RATE_LIMIT = os.getenv("RATE_LIMIT", "")
HELP_FILE = os.getenv(
    "HELP_FILE", os.path.join(os.path.dirname(__file__), "gate", "help.txt")
)

PROXY_TIMEOUT = int(os.getenv("PROXY_TIMEOUT", "300"))
ALLOW_UNSAFE_CERT = _parse_bool(os.getenv("ALLOW_UNSAFE_CERT", "false"))
