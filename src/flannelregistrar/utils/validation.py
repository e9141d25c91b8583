"""Validation of subnets, addresses and flannel registry keys."""

from __future__ import annotations

import ipaddress
import re

_CIDR_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})/(\d{1,2})$")
_SUBNET_KEY_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+-\d+$")
_DATE_RE = re.compile(r"^\d{4}[-/]\d{2}[-/]\d{2}")

LOCALHOST_IP = "127.0.0.1"


def is_date_like(value: str) -> bool:
    """True for strings such as ``2024-03-01`` or ``2024/03/01``."""
    return bool(_DATE_RE.match(value))


def validate_subnet(value: str) -> bool:
    """
    Check that ``value`` is an IPv4 CIDR usable as a route destination.

    Rejects date-like strings, octets above 255 and masks outside 1..32.
    """
    if not value or is_date_like(value):
        return False
    match = _CIDR_RE.match(value)
    if not match:
        return False
    octets = [int(g) for g in match.groups()[:4]]
    mask = int(match.group(5))
    if any(o > 255 for o in octets):
        return False
    return 1 <= mask <= 32


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def is_valid_network(value: str) -> bool:
    try:
        ipaddress.IPv4Network(value, strict=False)
    except ValueError:
        return False
    return "/" in value


def subnet_from_key(key: str) -> str | None:
    """
    Convert a flannel subnet key to a CIDR.

    ``/coreos.com/network/subnets/10.5.40.0-24`` -> ``10.5.40.0/24``.
    Returns None for keys that are not subnet keys.
    """
    name = key.rstrip("/").rsplit("/", 1)[-1]
    if is_date_like(name) or not _SUBNET_KEY_RE.match(name):
        return None
    subnet = name.replace("-", "/")
    if not validate_subnet(subnet):
        return None
    return subnet


def slash24_of(ip: str) -> str | None:
    """The /24 network containing ``ip``."""
    try:
        return str(ipaddress.ip_network(f"{ip}/24", strict=False))
    except ValueError:
        return None


def ip_in_network(ip: str, network: str) -> bool:
    try:
        return ipaddress.IPv4Address(ip) in ipaddress.IPv4Network(network, strict=False)
    except ValueError:
        return False


def normalize_destination(value: str) -> str:
    """
    Normalise a route destination for comparison.

    Host routes without a prefix become ``/32``; networks are canonicalised.
    """
    if value == "default":
        return value
    try:
        return str(ipaddress.IPv4Network(value, strict=False))
    except ValueError:
        return value
