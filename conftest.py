# Ensure tests import the `corsproxy` package from this checkout, also when
# it is not installed.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from corsproxy.utils_tests.upstream_mock import make_client_factory  # noqa: E402

PROXY_ENV_VARS = (
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "ALL_PROXY",
    "NO_PROXY",
    "http_proxy",
    "https_proxy",
    "all_proxy",
    "no_proxy",
)


@pytest.fixture(autouse=True)
def no_proxy_env(monkeypatch):
    """Keep proxy settings of the machine running the tests out of the way."""
    for name in PROXY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_client_factory():
    """Client factory for ForwardingEngine backed by a MockTransport handler."""
    return make_client_factory
