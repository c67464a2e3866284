# =============================================================================
# Request Failures
# =============================================================================


class ProxyError(Exception):
    """
    Base class for failures handled at the scope of a single proxied request.

    Attributes:
        status (int): HTTP status reported to the client
        client_message (str): Body text of the error response
    """
    status = 500
    client_message = "unexpected error"


class UnsupportedScheme(ProxyError):
    status = 400

    def __init__(self, scheme: str):
        super().__init__(f"unsupported protocol scheme {scheme!r}")
        self.scheme = scheme
        self.client_message = f"unsupported protocol scheme {scheme}"


class MalformedRequestBody(ProxyError):
    """The client's request body framing could not be read."""

    status = 400

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status
        self.client_message = message


class MalformedTarget(ProxyError):
    """The request target authority could not be split into host and port."""


class RuleMatchFailure(ProxyError):
    """A configured CIDR pattern is not valid."""

    def __init__(self, rule_name: str, pattern: str):
        super().__init__(f"rule {rule_name!r}: invalid CIDR pattern {pattern!r}")
        self.rule_name = rule_name
        self.pattern = pattern


class TransportConstructionFailure(ProxyError):
    """The SOCKS5 client for a matched rule could not be built."""


class UpstreamRequestFailure(ProxyError):
    pass


class ResponseStreamFailure(ProxyError):
    """Body copy to the client failed after status and headers were sent."""


class ProfileError(Exception):
    """The profile file could not be read or parsed."""
