import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

from .Core.errors import ProfileError
from .Core.types import ProxyKind, RoutingRule, RuleSet, ServerBinding


@dataclass(frozen=True)
class Profile:
    """
    Startup configuration: where to listen and how to route.

    Attributes:
        binding (ServerBinding): Local listen address
        rule_set (RuleSet): Routing rules, evaluated in order
        timeout (float): Optional upstream deadline in seconds
    """
    binding: ServerBinding = field(default_factory=ServerBinding)
    rule_set: RuleSet = field(default_factory=RuleSet)
    timeout: Union[float, None] = None

    @property
    def server_addr(self) -> str:
        return self.binding.address


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def rule_from_dict(data: Dict[str, Any]) -> RoutingRule:
    return RoutingRule(
        name=_as_str(data.get("name")),
        proxy_kind=_as_str(data.get("proxy_type", ProxyKind.SOCKS5.value)),
        upstream_host=_as_str(data.get("proxy_ip")),
        upstream_port=_as_str(data.get("port")),
        patterns=tuple(_as_str(p) for p in data.get("patterns") or ()),
    )


def profile_from_dict(data: Dict[str, Any]) -> Profile:
    """
    Build a profile from its JSON form.

    No semantic checks happen here: invalid CIDR patterns or proxy addresses
    surface when a request reaches them.
    """
    if not isinstance(data, dict):
        raise ProfileError("profile must be a JSON object")
    rules = data.get("rules") or []
    if not isinstance(rules, list) or not all(isinstance(r, dict) for r in rules):
        raise ProfileError("profile 'rules' must be a list of objects")
    timeout = data.get("timeout")
    return Profile(
        binding=ServerBinding(host=_as_str(data.get("host")), port=_as_str(data.get("port"))),
        rule_set=RuleSet.of(rule_from_dict(r) for r in rules),
        timeout=float(timeout) if timeout is not None else None,
    )


def load_profile(path: Union[str, Path]) -> Profile:
    """
    Load a profile JSON file.

    Args:
        path: Path of the profile file

    Returns:
        Profile: The parsed profile

    Raises:
        ProfileError: File unreadable or not valid JSON
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ProfileError(f"failed to read profile {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ProfileError(f"failed to parse profile {path}: {e}") from e
    try:
        return profile_from_dict(data)
    except (TypeError, ValueError) as e:
        raise ProfileError(f"invalid profile {path}: {e}") from e
