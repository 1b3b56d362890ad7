"""SSRF protection for user-submitted URLs."""

from __future__ import annotations

import re
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address
from urllib.parse import SplitResult, urlsplit

from pocket_rag.core.errors import SecurityError

ALLOWED_SCHEMES = ("http", "https")

LOCALHOST_ALIASES = (
    "localhost",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
    "[::1]",
    "0177.0.0.1",
    "2130706433",
    "0x7f.0.0.1",
    "127.0.0.1.nip.io",
    "localtest.me",
    "lvh.me",
)

METADATA_HOSTNAMES = (
    "metadata.google.internal",
    "metadata.gcp.internal",
    "metadata",
    "instance-data",
)

_BLOCKED_IPV4: tuple[tuple[IPv4Network, str], ...] = (
    (IPv4Network("0.0.0.0/8"), "Access to current network addresses is not allowed"),
    (IPv4Network("10.0.0.0/8"), "Access to private IP ranges is not allowed"),
    (IPv4Network("100.64.0.0/10"), "Access to carrier-grade NAT addresses is not allowed"),
    (IPv4Network("127.0.0.0/8"), "Access to loopback addresses is not allowed"),
    (
        IPv4Network("169.254.0.0/16"),
        "Access to link-local and cloud metadata addresses is not allowed",
    ),
    (IPv4Network("172.16.0.0/12"), "Access to private IP ranges is not allowed"),
    (IPv4Network("192.168.0.0/16"), "Access to private IP ranges is not allowed"),
    (IPv4Network("198.18.0.0/15"), "Access to benchmark testing addresses is not allowed"),
    (IPv4Network("224.0.0.0/3"), "Access to multicast and broadcast addresses is not allowed"),
)

_UNIQUE_LOCAL = IPv6Network("fc00::/7")

_DOTTED_QUAD_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
_NUMERIC_PART_RE = re.compile(r"^(0x[0-9a-f]*|[0-9]+)$")


def validate_url_for_ssrf(url: str) -> SplitResult:
    """Parse ``url`` and reject anything that could reach an internal target.

    Raises :class:`SecurityError` with a human-readable reason; returns the
    parsed URL otherwise. Must be called before every request, including each
    redirect hop.
    """
    parsed = _parse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise SecurityError(
            f"Protocol not allowed: {parsed.scheme}:. Only http and https are permitted."
        )

    hostname = (parsed.hostname or "").lower()

    if _matches_domain(hostname, LOCALHOST_ALIASES):
        raise SecurityError("Access to localhost is not allowed")

    quad = _DOTTED_QUAD_RE.match(hostname)
    if quad:
        octets = [int(part) for part in quad.groups()]
        if any(octet > 255 for octet in octets):
            raise SecurityError("Invalid IP address")
        _check_ipv4(IPv4Address(".".join(str(octet) for octet in octets)))
    else:
        legacy = _parse_legacy_ipv4(hostname)
        if legacy is not None:
            _check_ipv4(legacy)

    if ":" in hostname:
        _check_ipv6(hostname)

    if _matches_domain(hostname, METADATA_HOSTNAMES):
        raise SecurityError("Access to cloud metadata endpoints is not allowed")

    return parsed


def is_url_safe(url: str) -> bool:
    """Boolean form of :func:`validate_url_for_ssrf`."""
    try:
        validate_url_for_ssrf(url)
    except SecurityError:
        return False
    return True


def _parse(url: str) -> SplitResult:
    try:
        parsed = urlsplit(url.strip())
        # Accessing .port validates it; urlsplit itself is lenient.
        parsed.port
    except (ValueError, AttributeError) as exc:
        raise SecurityError("Invalid URL format") from exc
    if not parsed.scheme or not parsed.hostname:
        raise SecurityError("Invalid URL format")
    return parsed


def _matches_domain(hostname: str, names: tuple[str, ...]) -> bool:
    return any(hostname == name or hostname.endswith("." + name) for name in names)


def _check_ipv4(address: IPv4Address) -> None:
    for network, reason in _BLOCKED_IPV4:
        if address in network:
            raise SecurityError(reason)


def _check_ipv6(hostname: str) -> None:
    try:
        address = ip_address(hostname.strip("[]").split("%", 1)[0])
    except ValueError:
        return
    if not isinstance(address, IPv6Address):
        return
    if address.ipv4_mapped is not None:
        _check_ipv4(address.ipv4_mapped)
        return
    if (
        address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_unspecified
        or address in _UNIQUE_LOCAL
    ):
        raise SecurityError("Access to private IPv6 addresses is not allowed")


def _parse_legacy_ipv4(hostname: str) -> IPv4Address | None:
    """Decode inet_aton-style hosts such as ``0x7f000001`` or ``017700000001``."""
    parts = hostname.split(".")
    if not 1 <= len(parts) <= 4 or not all(_NUMERIC_PART_RE.match(part) for part in parts):
        return None
    values: list[int] = []
    for part in parts:
        if part.startswith("0x"):
            values.append(int(part[2:] or "0", 16))
        elif len(part) > 1 and part.startswith("0"):
            if any(char in "89" for char in part):
                return None
            values.append(int(part, 8))
        else:
            values.append(int(part))
    # The last part fills every remaining byte of the address.
    head, last = values[:-1], values[-1]
    if any(value > 255 for value in head) or last >= 256 ** (4 - len(head)):
        raise SecurityError("Invalid IP address")
    number = 0
    for value in head:
        number = (number << 8) | value
    number = (number << (8 * (4 - len(head)))) | last
    return IPv4Address(number)


__all__ = ["validate_url_for_ssrf", "is_url_safe", "ALLOWED_SCHEMES"]
