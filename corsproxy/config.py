import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple, Union

from corsproxy.hooks import (
    DnsResolver,
    EnvironmentProxySelector,
    InitialRequestHandler,
    NoInitialRequestHandler,
    NoRateLimit,
    PassthroughResolver,
    ProxySelector,
    RateLimitChecker,
)

DEFAULT_HELP_FILE = os.path.join(os.path.dirname(__file__), "gate", "help.txt")


def _normalize_require_header(
    value: Union[str, Iterable[str], None]
) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value.lower(),)
    return tuple(name.lower() for name in value)


@dataclass(frozen=True)
class ProxyConfig:
    """
    Process-wide proxy settings. Read concurrently by every request, so it
    is frozen once built.
    """

    origin_blacklist: Tuple[str, ...] = ()
    origin_whitelist: Tuple[str, ...] = ()
    target_blacklist: Tuple[str, ...] = ()
    target_whitelist: Tuple[str, ...] = ()
    require_header: Union[str, Tuple[str, ...], None] = ()
    remove_headers: Tuple[str, ...] = ()
    set_headers: Mapping[str, str] = field(default_factory=dict)
    cors_max_age: int = 0
    max_redirects: int = 5
    redirect_same_origin: bool = False
    add_forwarded_headers: bool = True
    help_file: str = DEFAULT_HELP_FILE
    initial_request_handler: InitialRequestHandler = field(
        default_factory=NoInitialRequestHandler
    )
    rate_limit_checker: RateLimitChecker = field(default_factory=NoRateLimit)
    proxy_selector: ProxySelector = field(default_factory=EnvironmentProxySelector)
    dns_resolver: DnsResolver = field(default_factory=PassthroughResolver)

    def __post_init__(self):
        set_ = object.__setattr__
        set_(self, "origin_blacklist", tuple(self.origin_blacklist))
        set_(self, "origin_whitelist", tuple(self.origin_whitelist))
        set_(self, "target_blacklist", tuple(d.lower() for d in self.target_blacklist))
        set_(self, "target_whitelist", tuple(d.lower() for d in self.target_whitelist))
        set_(self, "require_header", _normalize_require_header(self.require_header))
        set_(self, "remove_headers", tuple(h.lower() for h in self.remove_headers))
        set_(
            self,
            "set_headers",
            MappingProxyType({k.lower(): v for k, v in self.set_headers.items()}),
        )

    @classmethod
    def from_env(cls, rate_limit_checker: Optional[RateLimitChecker] = None):
        """Build the configuration from the environment (see corsproxy.vars)."""
        from corsproxy import vars as env
        from corsproxy.ratelimit.checker import create_rate_limit_checker

        return cls(
            origin_blacklist=env.ORIGIN_BLACKLIST,
            origin_whitelist=env.ORIGIN_WHITELIST,
            target_blacklist=env.TARGET_BLACKLIST,
            target_whitelist=env.TARGET_WHITELIST,
            require_header=env.REQUIRE_HEADER,
            remove_headers=env.REMOVE_HEADERS,
            set_headers=env.SET_HEADERS,
            cors_max_age=env.CORS_MAX_AGE,
            max_redirects=env.MAX_REDIRECTS,
            redirect_same_origin=env.REDIRECT_SAME_ORIGIN,
            add_forwarded_headers=env.ADD_FORWARDED_HEADERS,
            help_file=env.HELP_FILE,
            rate_limit_checker=rate_limit_checker
            or create_rate_limit_checker(env.RATE_LIMIT),
        )
