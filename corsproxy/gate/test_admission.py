"""
Tests for the access-control gate.

Tests cover:
- Pre-flight, help and /iscorsneeded responses
- Each refusal, and the order in which the checks run
- Same-origin redirects
- The forwarding context handed to the engine on admission
"""

import pytest
from starlette.responses import Response

from corsproxy.config import ProxyConfig
from corsproxy.forwarding.context import HopState
from corsproxy.gate.admission import admit, matches_domain, proxy_base_url
from corsproxy.models import InboundRequest
from corsproxy.ratelimit.checker import create_rate_limit_checker


def make_request(url, method="GET", headers=None, **kwargs):
    return InboundRequest(
        method=method,
        url=url,
        headers=dict(headers or {"host": "proxy.test"}),
        **kwargs,
    )


def body_of(decision):
    return decision.response.body.decode()


class TestShortCircuits:
    def test_preflight(self):
        config = ProxyConfig(cors_max_age=600, require_header="origin")
        request = make_request(
            "/http://example.com/",
            method="OPTIONS",
            headers={"access-control-request-method": "DELETE"},
        )
        decision = admit(request, config)
        assert not decision.admitted
        response = decision.response
        assert response.status_code == 200
        assert response.body == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-max-age"] == "600"
        assert response.headers["access-control-allow-methods"] == "DELETE"

    def test_help_on_root(self):
        decision = admit(make_request("/"), ProxyConfig())
        assert decision.response.status_code == 200
        assert decision.response.headers["content-type"].startswith("text/plain")
        assert decision.response.headers["access-control-allow-origin"] == "*"
        assert body_of(decision).startswith("This API enables cross-origin requests")

    def test_missing_slash(self):
        decision = admit(make_request("/http:/x"), ProxyConfig())
        assert decision.response.status_code == 400
        assert "two slashes are needed" in body_of(decision)
        assert decision.response.headers["access-control-allow-origin"] == "*"

    def test_iscorsneeded_is_answered_without_cors(self):
        config = ProxyConfig(require_header="origin", origin_whitelist=["x"])
        decision = admit(make_request("/iscorsneeded"), config)
        assert decision.response.status_code == 200
        assert body_of(decision) == "no"
        assert "access-control-allow-origin" not in decision.response.headers

    def test_initial_request_handler_wins(self):
        seen = []

        class Handler:
            def handle(self, request, target):
                seen.append(target)
                return Response("handled", status_code=418)

        config = ProxyConfig(initial_request_handler=Handler())
        decision = admit(make_request("/example.com/"), config)
        assert decision.response.status_code == 418
        assert seen[0].href == "http://example.com/"

    def test_initial_request_handler_sees_missing_target(self):
        seen = []

        class Handler:
            def handle(self, request, target):
                seen.append(target)
                return None

        admit(make_request("/"), ProxyConfig(initial_request_handler=Handler()))
        assert seen == [None]


class TestRefusals:
    def test_port_too_large(self):
        decision = admit(make_request("/example.com:99999/"), ProxyConfig())
        assert decision.response.status_code == 400
        assert body_of(decision) == "Port number too large: 99999"

    @pytest.mark.parametrize("url", ["/favicon.ico", "/robots.txt", "/localhost/x"])
    def test_unroutable_host(self, url):
        decision = admit(make_request(url), ProxyConfig())
        assert decision.response.status_code == 404
        assert decision.response.headers["access-control-allow-origin"] == "*"

    def test_explicit_scheme_skips_host_check(self):
        decision = admit(make_request("/http://localhost/x"), ProxyConfig())
        assert decision.admitted

    def test_missing_required_header(self):
        config = ProxyConfig(require_header=["origin", "x-requested-with"])
        decision = admit(make_request("/example.com/"), config)
        assert decision.response.status_code == 400
        assert body_of(decision) == (
            "Missing required request header. Must specify one of: "
            "origin,x-requested-with"
        )

    def test_any_required_header_is_enough(self):
        config = ProxyConfig(require_header=["origin", "x-requested-with"])
        request = make_request("/example.com/", headers={"x-requested-with": "xhr"})
        assert admit(request, config).admitted

    def test_required_header_is_checked_before_origin_blacklist(self):
        config = ProxyConfig(
            require_header="x-requested-with",
            origin_blacklist=["http://evil.test"],
        )
        request = make_request("/example.com/", headers={"origin": "http://evil.test"})
        assert admit(request, config).response.status_code == 400

        request = make_request(
            "/example.com/",
            headers={"origin": "http://evil.test", "x-requested-with": "xhr"},
        )
        decision = admit(request, config)
        assert decision.response.status_code == 403
        assert body_of(decision) == (
            'The origin "http://evil.test" was blacklisted by the operator of this proxy.'
        )

    def test_origin_whitelist(self):
        config = ProxyConfig(origin_whitelist=["http://good.test"])
        bad = make_request("/example.com/", headers={"origin": "http://bad.test"})
        decision = admit(bad, config)
        assert decision.response.status_code == 403
        assert "was not whitelisted" in body_of(decision)

        good = make_request("/example.com/", headers={"origin": "http://good.test"})
        assert admit(good, config).admitted

    @pytest.mark.parametrize(
        "url,status",
        [
            ("/example.com/", 403),
            ("/API.Example.com/", 403),
            ("/https://deep.api.example.com/", 403),
            ("/notexample.com/", None),
            ("/example.org/", None),
        ],
    )
    def test_target_blacklist(self, url, status):
        decision = admit(make_request(url), ProxyConfig(target_blacklist=["example.com"]))
        if status is None:
            assert decision.admitted
        else:
            assert decision.response.status_code == status
            assert "is not allowed by this proxy" in body_of(decision)

    def test_target_whitelist(self):
        config = ProxyConfig(target_whitelist=["Example.com"])
        assert admit(make_request("/api.example.com/"), config).admitted
        assert admit(make_request("/example.com/"), config).admitted
        assert admit(make_request("/example.org/"), config).response.status_code == 403

    def test_rate_limit(self):
        config = ProxyConfig(rate_limit_checker=create_rate_limit_checker("1 1"))
        headers = {"origin": "http://app.test"}
        assert admit(make_request("/example.com/", headers=headers), config).admitted

        decision = admit(make_request("/example.com/", headers=headers), config)
        assert decision.response.status_code == 429
        assert body_of(decision).startswith(
            'The origin "http://app.test" has sent too many requests.\n'
            "The number of requests is limited to 1 per minute."
        )
        assert decision.response.headers["access-control-allow-origin"] == "*"


class TestSameOrigin:
    def test_redirected_when_enabled(self):
        config = ProxyConfig(redirect_same_origin=True)
        request = make_request(
            "/http://example.com/page", headers={"origin": "http://example.com"}
        )
        response = admit(request, config).response
        assert response.status_code == 301
        assert response.headers["location"] == "http://example.com/page"
        assert response.headers["vary"] == "origin"
        assert response.headers["cache-control"] == "private"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_prefix_must_end_at_host(self):
        config = ProxyConfig(redirect_same_origin=True)
        request = make_request(
            "/http://example.com.evil.test/", headers={"origin": "http://example.com"}
        )
        assert admit(request, config).admitted

    def test_not_redirected_when_disabled(self):
        request = make_request(
            "/http://example.com/page", headers={"origin": "http://example.com"}
        )
        assert admit(request, ProxyConfig()).admitted


class TestAdmission:
    def test_context(self):
        config = ProxyConfig(max_redirects=2, cors_max_age=60)
        request = make_request("/example.com:443/a?b=1", method="PUT")
        context = admit(request, config).context
        assert context.target.href == "https://example.com:443/a?b=1"
        assert context.original_target == context.target
        assert context.outbound.method == "PUT"
        assert context.max_redirects == 2
        assert context.cors_max_age == 60
        assert context.state == HopState.INIT
        assert context.proxy_base_url == "http://proxy.test"

    def test_outbound_headers(self):
        config = ProxyConfig(
            remove_headers=["Cookie"],
            set_headers={"X-Api-Key": "secret"},
            add_forwarded_headers=False,
        )
        request = make_request(
            "/example.com/",
            headers={
                "host": "proxy.test",
                "cookie": "a=b",
                "accept": "text/html",
                "access-control-request-headers": "x-a",
            },
        )
        headers = admit(request, config).context.outbound.headers
        assert headers == {
            "host": "proxy.test",
            "accept": "text/html",
            "x-api-key": "secret",
        }

    def test_forwarded_headers(self):
        request = make_request(
            "/example.com/",
            headers={"host": "proxy.test", "x-forwarded-for": "1.1.1.1"},
            client_host="10.0.0.1",
            server_port=8080,
        )
        headers = admit(request, ProxyConfig()).context.outbound.headers
        assert headers["x-forwarded-for"] == "1.1.1.1, 10.0.0.1"
        assert headers["x-forwarded-host"] == "proxy.test"
        assert headers["x-forwarded-proto"] == "http"
        assert headers["x-forwarded-port"] == "8080"


class TestHelpers:
    def test_matches_domain(self):
        assert matches_domain("a.b.example.com", ["example.com"])
        assert matches_domain("EXAMPLE.com", ["example.COM"])
        assert not matches_domain("badexample.com", ["example.com"])
        assert not matches_domain("example.com", [])

    @pytest.mark.parametrize(
        "is_https,forwarded,expected",
        [
            (False, None, "http://proxy.test"),
            (True, None, "https://proxy.test"),
            (False, "https", "https://proxy.test"),
            (False, "http", "http://proxy.test"),
        ],
    )
    def test_proxy_base_url(self, is_https, forwarded, expected):
        headers = {"host": "proxy.test"}
        if forwarded:
            headers["x-forwarded-proto"] = forwarded
        request = make_request("/", headers=headers, is_https=is_https)
        assert proxy_base_url(request) == expected
