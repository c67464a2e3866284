# =============================================================================
# Core Proxy Dispatch
# =============================================================================

import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import SplitResult, urlsplit

import requests
from urllib3 import HTTPHeaderDict
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .HeaderSanitizer import append_forwarded_for, copy_all, strip_hop_by_hop
from .RoutingEngine import RoutingEngine
from .TransportSelector import OutboundClient, TransportSelector
from .errors import (
    MalformedTarget,
    ProxyError,
    ResponseStreamFailure,
    UnsupportedScheme,
    UpstreamRequestFailure,
)
from .types import InboundRequest, RoutingRule, RuleSet

CHUNK_SIZE = 64 * 1024
SUPPORTED_SCHEMES = ("http", "https")


class ResponseWriter(ABC):
    """Client-facing side of a proxied request, implemented by the listener."""

    @abstractmethod
    def send_error(self, status: int, message: str):
        pass

    @abstractmethod
    def write_head(self, status: int, reason: str, headers: HTTPHeaderDict):
        pass

    @abstractmethod
    def write(self, data: bytes):
        pass

    @abstractmethod
    def close_body(self):
        """Complete the response body."""

    @abstractmethod
    def abort(self):
        """Drop the client connection after a partially written response."""


def split_host_port(target: SplitResult) -> str:
    """
    Return the host of an absolute request target.

    Raises:
        MalformedTarget: Missing host, missing port or invalid port
    """
    try:
        port = target.port
    except ValueError as e:
        raise MalformedTarget(f"invalid port in address {target.netloc!r}") from e
    if port is None:
        raise MalformedTarget(f"missing port in address {target.netloc!r}")
    if not target.hostname:
        raise MalformedTarget(f"missing host in address {target.netloc!r}")
    return target.hostname


class ProxyDispatcher:
    """
    Routes each inbound request directly or through the SOCKS5 upstream of the
    first matching rule, then relays the response.

    The dispatcher keeps no per-request state; the rule set is read-only and
    may be shared by every handler thread.
    """

    def __init__(self, rule_set: RuleSet, transport_selector: Optional[TransportSelector] = None,
                 logger: Optional[logging.Logger] = None):
        self.rule_set = rule_set
        self.routing_engine = RoutingEngine(rule_set)
        self.transport_selector = transport_selector or TransportSelector()
        self.logger = logger or logging.getLogger("h2sproxy.dispatcher")

    def handle(self, request: InboundRequest, writer: ResponseWriter):
        """Proxy one request, converting every failure into an error response."""
        self.logger.debug(
            f"remoteAddr: {request.remote_addr}, method: {request.method}, url: {request.url}"
        )
        try:
            self._proxy(request, writer)
        except ResponseStreamFailure as e:
            self.logger.error(f"failed to copy body: {e}")
            writer.abort()
        except ProxyError as e:
            self.logger.error(f"{type(e).__name__}: {e}")
            writer.send_error(e.status, e.client_message)

    def _proxy(self, request: InboundRequest, writer: ResponseWriter):
        target = urlsplit(request.url)
        if target.scheme not in SUPPORTED_SCHEMES:
            raise UnsupportedScheme(target.scheme)
        host = split_host_port(target)

        strip_hop_by_hop(request.headers)
        append_forwarded_for(request.headers, request.client_host)

        rule = self.routing_engine.match(host)

        # An outbound request must not carry the inbound request-line target
        request.request_uri = None

        with self.transport_selector.select(rule) as client:
            self._log_decision(request, rule, client)
            try:
                response = client.send(request)
            except requests.RequestException as e:
                raise UpstreamRequestFailure(f"failed to do request: {e}") from e
            with response:
                self._relay(response, writer)

    def _log_decision(self, request: InboundRequest, rule: Optional[RoutingRule],
                      client: OutboundClient):
        if rule is None:
            self.logger.info(f"proxy rule=default url={request.url}")
        else:
            self.logger.info(
                f"proxy rule={rule.name} url={request.url} proxyType={rule.proxy_kind} "
                f"proxy={client.proxy_url}"
            )

    def _relay(self, response: requests.Response, writer: ResponseWriter):
        upstream_headers = response.raw.headers.copy()
        strip_hop_by_hop(upstream_headers)
        headers = HTTPHeaderDict()
        copy_all(headers, upstream_headers)

        try:
            writer.write_head(response.status_code, response.reason, headers)
            for chunk in response.raw.stream(CHUNK_SIZE, decode_content=False):
                writer.write(chunk)
            writer.close_body()
        except (OSError, Urllib3HTTPError, requests.RequestException) as e:
            raise ResponseStreamFailure(str(e)) from e
