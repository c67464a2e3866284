# =============================================================================
# Outbound Transports
# =============================================================================

from typing import Optional

import requests

from .HeaderSanitizer import join_repeated
from .errors import TransportConstructionFailure
from .types import InboundRequest, ProxyKind, RoutingRule


class OutboundClient:
    """
    HTTP client used for exactly one proxied request.

    Attributes:
        session (requests.Session): Underlying session, direct or SOCKS5
        rule (RoutingRule): Rule the client tunnels through, None when direct
        timeout (float): Upstream deadline in seconds, None for no deadline
    """

    def __init__(self, session: requests.Session, rule: Optional[RoutingRule] = None,
                 timeout: Optional[float] = None):
        self.session = session
        self.rule = rule
        self.timeout = timeout

    @property
    def is_direct(self) -> bool:
        return self.rule is None

    @property
    def proxy_url(self) -> Optional[str]:
        return self.session.proxies.get("http")

    def send(self, request: InboundRequest) -> requests.Response:
        """
        Issue the outbound request and return the streamed response.

        Redirects are relayed to the client, never followed.
        """
        if request.request_uri:
            raise ValueError("request_uri can't be set in an outbound request")
        headers = join_repeated(request.headers)
        return self.session.request(
            request.method,
            request.url,
            headers=headers,
            data=request.body,
            stream=True,
            allow_redirects=False,
            timeout=self.timeout,
        )

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _new_session() -> requests.Session:
    session = requests.Session()
    # Only the client's own headers and no environment proxies reach upstream
    session.headers.clear()
    session.trust_env = False
    return session


def socks5_url(host: str, port) -> str:
    """
    Build the socks5h:// URL of an anonymous SOCKS5 proxy.

    Raises:
        TransportConstructionFailure: Empty host or a port outside 1..65535
    """
    host = (host or "").strip()
    if not host or any(c.isspace() for c in host):
        raise TransportConstructionFailure(f"invalid SOCKS5 host {host!r}")
    try:
        port_num = int(str(port).strip())
    except ValueError:
        raise TransportConstructionFailure(f"invalid SOCKS5 port {port!r}") from None
    if not 0 < port_num < 65536:
        raise TransportConstructionFailure(f"invalid SOCKS5 port {port!r}")

    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    # socks5h lets the SOCKS server resolve target names
    return f"socks5h://{host}:{port_num}"


class TransportSelector:
    """Builds a fresh outbound client for every request."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def select(self, rule: Optional[RoutingRule]) -> OutboundClient:
        """
        Return a direct client when rule is None, else a SOCKS5 client.

        Raises:
            TransportConstructionFailure: Unsupported proxy kind or bad address
        """
        if rule is None:
            return OutboundClient(_new_session(), timeout=self.timeout)

        if (rule.proxy_kind or "").lower() != ProxyKind.SOCKS5.value:
            raise TransportConstructionFailure(
                f"rule {rule.name!r}: unsupported proxy type {rule.proxy_kind!r}"
            )
        proxy_url = socks5_url(rule.upstream_host, rule.upstream_port)

        session = _new_session()
        session.proxies.update({"http": proxy_url, "https": proxy_url})
        return OutboundClient(session, rule=rule, timeout=self.timeout)
