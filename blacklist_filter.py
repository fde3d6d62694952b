"""
Normalize raw ban entries into canonical IPv4 address / CIDR strings and drop
anything that must never reach the kernel blacklist.
"""
import ipaddress
import logging
import re
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# IPv4 with optional /prefix; octets may carry leading zeros (stripped below)
IPV4_CIDR_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})(?:/(\d{1,2}))?$")

# Any IPv4 token inside free text (persisted file lines may carry comments)
IPV4_TOKEN_RE = re.compile(r"(?:\d{1,3}\.){3}\d{1,3}(?:/\d{1,2})?")

# Fixed policy, not configurable
RESERVED_NETWORKS = (
    ipaddress.IPv4Network("0.0.0.0/8"),       # Current network
    ipaddress.IPv4Network("10.0.0.0/8"),      # Private
    ipaddress.IPv4Network("127.0.0.0/8"),     # Loopback
    ipaddress.IPv4Network("172.16.0.0/12"),   # Private
    ipaddress.IPv4Network("192.168.0.0/16"),  # Private
    ipaddress.IPv4Network("224.0.0.0/4"),     # Multicast
    ipaddress.IPv4Network("240.0.0.0/4"),     # Reserved
)


def parse_network(raw: str) -> Optional[ipaddress.IPv4Network]:
    """Return the IPv4 network for ``a.b.c.d`` or ``a.b.c.d/nn``, or None if malformed."""
    m = IPV4_CIDR_RE.match(raw.strip())
    if not m:
        return None
    octets = [int(o) for o in m.group(1, 2, 3, 4)]
    if any(o > 255 for o in octets):
        return None
    prefix = 32 if m.group(5) is None else int(m.group(5))
    # ipset hash:net refuses /0
    if not 1 <= prefix <= 32:
        return None
    address = ".".join(str(o) for o in octets)
    return ipaddress.IPv4Network(f"{address}/{prefix}", strict=False)


def is_reserved(network: ipaddress.IPv4Network) -> bool:
    """True if the network lies inside one of the reserved ranges."""
    return any(network.subnet_of(reserved) for reserved in RESERVED_NETWORKS)


def canonical(network: ipaddress.IPv4Network) -> str:
    return str(network.network_address) if network.prefixlen == 32 else str(network)


def sort_key(entry: str) -> Tuple[int, int]:
    """Numeric order by network address, then prefix length."""
    network = ipaddress.IPv4Network(entry)
    return (int(network.network_address), network.prefixlen)


def normalize(raw: str) -> Optional[str]:
    """Canonical form of ``raw``, or None if it is malformed or reserved."""
    network = parse_network(raw)
    if network is None:
        logger.debug(f"Dropping malformed entry: {raw!r}")
        return None
    if is_reserved(network):
        logger.debug(f"Dropping private/reserved entry: {raw}")
        return None
    return canonical(network)


def extract_tokens(line: str):
    """IPv4 / CIDR looking tokens of a free-text line."""
    return IPV4_TOKEN_RE.findall(line)
