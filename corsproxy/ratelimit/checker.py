import logging
import re
import time
from typing import Callable, Dict, Optional, Pattern

from corsproxy.hooks import NoRateLimit, RateLimitChecker

logger = logging.getLogger("uvicorn.error")

_RATE_LIMIT_SETTING = re.compile(r"^(\d+) (\d+)(?:\s*$|\s+(.+)$)")
_ORIGIN_SCHEME = re.compile(r"^[\w\-]+://", re.IGNORECASE)


def _compile_unlimited_hosts(raw: str) -> Pattern:
    parts = []
    for i, host in enumerate(raw.split()):
        starts_with_slash = host.startswith("/")
        ends_with_slash = host.endswith("/")
        if starts_with_slash or ends_with_slash:
            if len(host) == 1 or not (starts_with_slash and ends_with_slash):
                raise ValueError(
                    f"Invalid RATE_LIMIT. Regex at index {i} must start and end "
                    'with a slash ("/").'
                )
            host = host[1:-1]
            try:
                re.compile(host)
            except re.error as e:
                raise ValueError(f"Invalid RATE_LIMIT. Regex at index {i}: {e}") from e
        else:
            host = re.escape(host)
        parts.append(host)
    return re.compile("^(?:" + "|".join(parts) + ")$", re.IGNORECASE)


class WindowRateLimiter:
    """
    Count requests per origin host in fixed windows.

    Counters live in memory and are dropped when a window ends, so the limit
    is per process.
    """

    def __init__(
        self,
        max_requests: int,
        period_minutes: int,
        unlimited_hosts: Optional[Pattern] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if period_minutes <= 0:
            raise ValueError("Invalid RATE_LIMIT. The period cannot be zero.")
        self.max_requests = max_requests
        self.period_seconds = period_minutes * 60
        self.unlimited_hosts = unlimited_hosts
        self._clock = clock
        self._window_start = clock()
        self._counts: Dict[str, int] = {}
        period = "per minute" if period_minutes == 1 else f"per {period_minutes} minutes"
        self.message = (
            f"The number of requests is limited to {max_requests} {period}. "
            "Please self-host this proxy if you need more quota."
        )

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.period_seconds:
            self._window_start = now
            self._counts = {}

    def check(self, origin: str) -> Optional[str]:
        host = _ORIGIN_SCHEME.sub("", origin)
        if self.unlimited_hosts and self.unlimited_hosts.match(host):
            return None
        self._roll_window()
        count = self._counts.get(host, 0) + 1
        if count > self.max_requests:
            logger.info(f"[RateLimit] Quota exceeded for {host or '<no origin>'}")
            return self.message
        self._counts[host] = count
        return None


def create_rate_limit_checker(
    setting: str, clock: Callable[[], float] = time.monotonic
) -> RateLimitChecker:
    """
    Build a checker from "<max requests> <period in minutes> [unlimited hosts...]".

    Unlimited hosts are matched against the whole origin host (ports included)
    and may be given as /regex/. An empty or unparseable setting disables
    rate limiting.

      "1 5"                     one request per 5 minutes for everyone
      "1 5 example.com"         ... except example.com, which is unlimited
      "0 1 /(.*\\.)?example\\.com/"  only example.com and its sub-domains
    """
    match = _RATE_LIMIT_SETTING.match(setting or "")
    if not match:
        return NoRateLimit()
    unlimited = _compile_unlimited_hosts(match.group(3)) if match.group(3) else None
    return WindowRateLimiter(
        int(match.group(1)), int(match.group(2)), unlimited, clock=clock
    )
