# =============================================================================
# Core Types & Configuration
# =============================================================================

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple, Union

from urllib3 import HTTPHeaderDict


class ProxyKind(Enum):
    SOCKS5 = "socks5"


@dataclass(frozen=True)
class RoutingRule:
    """
    A destination-matching rule.

    Attributes:
        name (str): Rule identifier, only used in logs
        proxy_kind (str): Upstream proxy type, only "socks5" is supported
        upstream_host (str): Address of the SOCKS5 proxy
        upstream_port (str): Port of the SOCKS5 proxy
        patterns (tuple): CIDR blocks matched in declared order
    """
    name: str
    proxy_kind: str = ProxyKind.SOCKS5.value
    upstream_host: str = ""
    upstream_port: str = ""
    patterns: Tuple[str, ...] = ()

    @property
    def upstream_addr(self) -> str:
        return f"{self.upstream_host}:{self.upstream_port}"


@dataclass(frozen=True)
class RuleSet:
    """Ordered, read-only collection of routing rules."""
    rules: Tuple[RoutingRule, ...] = ()

    @classmethod
    def of(cls, rules: Iterable[RoutingRule]) -> "RuleSet":
        return cls(rules=tuple(rules))

    def __iter__(self) -> Iterator[RoutingRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


@dataclass(frozen=True)
class ServerBinding:
    host: str = ""
    port: str = ""

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class InboundRequest:
    """
    A proxy-style request as received from the client.

    `url` is the absolute request target (scheme://host:port/path?query),
    `request_uri` the raw target from the request line. The body is either
    bytes or an iterator of byte chunks.
    """
    method: str
    url: str
    headers: HTTPHeaderDict
    client_host: str
    body: Union[bytes, Iterable[bytes], None] = None
    request_uri: Optional[str] = None
    remote_addr: str = ""
