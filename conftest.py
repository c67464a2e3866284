# Shared fixtures for the h2sproxy test modules placed beside the code.
import os
import sys

import pytest
from urllib3 import HTTPHeaderDict

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from h2sproxy.model.Core.types import InboundRequest, RoutingRule, RuleSet  # noqa: E402


@pytest.fixture
def internal_rule():
    return RoutingRule(
        name="internal",
        proxy_kind="socks5",
        upstream_host="127.0.0.1",
        upstream_port="1080",
        patterns=("10.0.0.0/8",),
    )


@pytest.fixture
def rule_set(internal_rule):
    return RuleSet.of([internal_rule])


@pytest.fixture
def make_request():
    """Factory for inbound proxy requests."""

    def _make(url="http://10.1.2.3:80/path", method="GET", headers=None,
              client_host="192.168.1.100", body=None):
        hdrs = HTTPHeaderDict()
        for name, value in (headers or {}).items():
            hdrs.add(name, value)
        return InboundRequest(
            method=method,
            url=url,
            headers=hdrs,
            client_host=client_host,
            body=body,
            request_uri=url,
            remote_addr=f"{client_host}:54321",
        )

    return _make
