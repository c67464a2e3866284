import ipaddress
from typing import Optional, Union

from .errors import RuleMatchFailure
from .types import RoutingRule, RuleSet

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_cidr(rule: RoutingRule, pattern: str) -> IPNetwork:
    """
    Parse a CIDR pattern; a bare address without a prefix length is rejected.

    An IPv4-mapped IPv6 block of prefix 96 or longer is returned as the
    IPv4 block it maps.
    """
    if "/" not in pattern:
        raise RuleMatchFailure(rule.name, pattern)
    try:
        network = ipaddress.ip_network(pattern.strip(), strict=False)
    except ValueError as e:
        raise RuleMatchFailure(rule.name, pattern) from e
    if network.version == 6 and network.prefixlen >= 96:
        mapped = network.network_address.ipv4_mapped
        if mapped is not None:
            return ipaddress.ip_network(f"{mapped}/{network.prefixlen - 96}")
    return network


class RoutingEngine:
    """Routing engine matching destination hosts against CIDR rules."""

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    def match(self, host: str) -> Optional[RoutingRule]:
        """
        Return the first rule whose patterns contain host, or None.

        Rules are tried in declared order, then patterns within a rule. A host
        that is not an IP literal is never contained by any pattern; an
        IPv4-mapped IPv6 host is matched as its IPv4 address. An invalid
        pattern reached during evaluation raises RuleMatchFailure, even if a
        later pattern would match.

        Args:
            host (str): Destination host, without port

        Returns:
            Optional[RoutingRule]: The matching rule, None to route directly
        """
        try:
            ip = ipaddress.ip_address(host)
            # ::ffff:a.b.c.d is matched as a.b.c.d
            ip = getattr(ip, "ipv4_mapped", None) or ip
        except ValueError:
            ip = None

        for rule in self.rule_set:
            for pattern in rule.patterns:
                network = parse_cidr(rule, pattern)
                if ip is not None and ip.version == network.version and ip in network:
                    return rule
        return None
