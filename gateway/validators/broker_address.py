"""
Broker endpoint address validation.

Accepts IPv4 dotted quads, the literal `localhost`, and RFC 1123 style
hostnames. Anything else is rejected before a socket is ever opened.
"""

import re

_IPV4_CANDIDATE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
_ALL_NUMERIC = re.compile(r"^[\d.]+$")


def _is_ipv4(address: str) -> bool:
    if not _IPV4_CANDIDATE.match(address):
        return False
    return all(int(octet) <= 255 for octet in address.split("."))


def _is_hostname(address: str) -> bool:
    if len(address) > 253:
        return False
    # Dotted numbers that failed the IPv4 check must not sneak in as hostnames
    if _ALL_NUMERIC.match(address):
        return False
    labels = address.rstrip(".").split(".")
    return all(_HOSTNAME_LABEL.match(label) for label in labels)


def is_valid_broker_address(address: str | None) -> bool:
    """
    Check whether an address may be used as a broker endpoint.

    Args:
        address: Host as entered by an operator

    Returns:
        bool: True for a valid IPv4 address, `localhost`, or hostname
    """
    if not address:
        return False
    address = address.strip()
    if not address:
        return False
    if address.lower() == "localhost":
        return True
    return _is_ipv4(address) or _is_hostname(address)


def is_valid_port(port: object) -> bool:
    """Ports are integers in 1-65535; booleans are not ports."""
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535
