# =============================================================================
# Header Sanitizing
# =============================================================================

from typing import Dict

from urllib3 import HTTPHeaderDict

# https://datatracker.ietf.org/doc/html/rfc9110#section-7.6.1
HOP_BY_HOP_HEADERS = (
    "Proxy-Connection",
    "Keep-Alive",
    "TE",
    "Transfer-Encoding",
    "Upgrade",
)

FORWARDED_FOR = "X-Forwarded-For"


def strip_hop_by_hop(headers: HTTPHeaderDict) -> None:
    """Remove every hop-by-hop header, all values, in place."""
    for name in HOP_BY_HOP_HEADERS:
        headers.discard(name)


def append_forwarded_for(headers: HTTPHeaderDict, client_host: str) -> None:
    """
    Append client_host to the X-Forwarded-For chain.

    Prior values are joined in order and kept as a single header value.
    """
    prior = headers.getlist(FORWARDED_FOR)
    if prior:
        headers[FORWARDED_FOR] = ", ".join(prior + [client_host])
    else:
        headers[FORWARDED_FOR] = client_host


def copy_all(dst: HTTPHeaderDict, src: HTTPHeaderDict) -> None:
    """Add every value of every src header to dst, keeping existing dst values."""
    for name, value in src.iteritems():
        dst.add(name, value)


def join_repeated(headers: HTTPHeaderDict) -> Dict[str, str]:
    """
    Collapse repeated headers into one value each for the outbound client.

    Cookie values are joined with "; " (RFC 6265 section 5.4), every other
    header with ", ".
    """
    joined = {}
    for name in headers:
        separator = "; " if name.lower() == "cookie" else ", "
        joined[name] = separator.join(headers.getlist(name))
    return joined
