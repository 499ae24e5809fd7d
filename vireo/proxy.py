"""
Proxy trust for Vireo.

Compiles the "trust proxy" setting into a predicate ``trust(address, hop)``
and walks ``X-Forwarded-For`` with it to find the client address.
"""

import ipaddress
from typing import Any, Callable, Iterable, List, Optional, Union

from .exceptions import SettingError

TrustFunction = Callable[[str, int], bool]

# Named subnets accepted in the "trust proxy" setting
PRESETS = {
    "linklocal": ["169.254.0.0/16", "fe80::/10"],
    "loopback": ["127.0.0.1/8", "::1/128"],
    "uniquelocal": ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7"],
}

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _trust_all(address: str, hop: int) -> bool:
    return True


def _trust_none(address: str, hop: int) -> bool:
    return False


def _parse_networks(values: Iterable[str]) -> List[Network]:
    networks: List[Network] = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        if value in PRESETS:
            networks.extend(_parse_networks(PRESETS[value]))
            continue
        try:
            networks.append(ipaddress.ip_network(value, strict=False))
        except ValueError as exc:
            raise SettingError(f"invalid IP address: {value}") from exc
    return networks


def _parse_address(address: str):
    try:
        parsed = ipaddress.ip_address(address)
    except ValueError:
        return None
    # compare IPv4-mapped IPv6 addresses as IPv4
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return parsed.ipv4_mapped
    return parsed


def compile_trust(value: Any) -> TrustFunction:
    """
    Compile the "trust proxy" setting.

    Accepts a callable ``(address, hop) -> bool``, ``True`` (trust everything),
    an int (trust that many hops), a comma-separated string or a list of
    addresses, subnets and presets ("loopback", "linklocal", "uniquelocal").
    ``False``/``None`` trusts nothing.
    """
    if callable(value):
        return value

    if value is True:
        return _trust_all

    if value is False or value is None:
        return _trust_none

    if isinstance(value, int):
        hops = value

        def trust_hops(address: str, hop: int) -> bool:
            return hop < hops

        return trust_hops

    if isinstance(value, str):
        value = value.split(",")

    if not isinstance(value, (list, tuple)):
        raise SettingError(f"unknown value for trust proxy function: {value!r}")

    networks = _parse_networks(value)
    if not networks:
        return _trust_none

    def trust_networks(address: str, hop: int) -> bool:
        parsed = _parse_address(address)
        if parsed is None:
            return False
        return any(parsed.version == net.version and parsed in net for net in networks)

    return trust_networks


def forwarded_addresses(socket_address: Optional[str], forwarded_for: Optional[str]) -> List[str]:
    """Socket address followed by the X-Forwarded-For entries, closest first."""
    addresses = [socket_address or ""]
    if forwarded_for:
        entries = [item.strip() for item in forwarded_for.split(",")]
        addresses.extend(reversed([item for item in entries if item]))
    return addresses


def all_addresses(socket_address: Optional[str], forwarded_for: Optional[str], trust: TrustFunction) -> List[str]:
    """Addresses up to and including the first untrusted one, closest first."""
    addresses = forwarded_addresses(socket_address, forwarded_for)
    for hop in range(len(addresses) - 1):
        if not trust(addresses[hop], hop):
            return addresses[: hop + 1]
    return addresses


def proxy_address(socket_address: Optional[str], forwarded_for: Optional[str], trust: TrustFunction) -> str:
    """The furthest address that is reachable through trusted proxies."""
    return all_addresses(socket_address, forwarded_for, trust)[-1]
