"""
List entry parsing.

A list line is one of: an IPv4/IPv6 address, an IPv4/IPv6 network in CIDR
form, or a DNS hostname. Anything else is malformed and is skipped by the
caller with a warning.
"""

import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

KIND_ADDRESS = "address"
KIND_NETWORK = "network"
KIND_HOSTNAME = "hostname"

COMMENT_PREFIX = "#"

HOSTNAME_LABEL = re.compile(r'^(?!-)[a-z0-9_-]{1,63}(?<!-)$')
MAX_HOSTNAME_LENGTH = 253


@dataclass(frozen=True)
class Entry:
    """A classified list entry in canonical text form."""
    kind: str
    value: str
    version: Optional[int] = None  # IP version for addresses and networks

    @property
    def is_hostname(self) -> bool:
        return self.kind == KIND_HOSTNAME


def _is_hostname(text: str) -> bool:
    if len(text) > MAX_HOSTNAME_LENGTH or "." not in text:
        return False
    labels = text.split(".")
    if labels[-1].isdigit():
        # all-numeric TLD means a broken IP address, not a name
        return False
    return all(HOSTNAME_LABEL.match(label) for label in labels)


def parse_entry(text: str) -> Optional[Entry]:
    """Classify one normalized token; None if it is not a valid entry."""
    token = text.strip()
    if not token:
        return None

    try:
        if "/" in token:
            net: Union[ipaddress.IPv4Network, ipaddress.IPv6Network] = ipaddress.ip_network(token, strict=False)
            if net.prefixlen == net.max_prefixlen:
                return Entry(KIND_ADDRESS, str(net.network_address), net.version)
            return Entry(KIND_NETWORK, str(net), net.version)
        addr = ipaddress.ip_address(token)
        return Entry(KIND_ADDRESS, str(addr), addr.version)
    except ValueError:
        pass

    host = token.lower().rstrip(".")
    if host.startswith("*."):
        host = host[2:]
    elif host.startswith("."):
        host = host[1:]
    if _is_hostname(host):
        return Entry(KIND_HOSTNAME, host)
    return None


def iter_lines(content: str) -> Iterable[str]:
    """Trimmed lines with blanks and comment lines dropped."""
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        yield line


def normalize_entries(raw: Iterable[str]) -> Tuple[List[str], List[str]]:
    """
    Normalize raw lines into unique entries, first occurrence wins.

    Returns:
        (entries, malformed) - entries in canonical form, malformed lines as given
    """
    entries: List[str] = []
    malformed: List[str] = []
    seen = set()

    for line in raw:
        if line is None:
            continue
        line = line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        entry = parse_entry(line)
        if entry is None:
            malformed.append(line)
            continue
        if entry.value in seen:
            continue
        seen.add(entry.value)
        entries.append(entry.value)

    return entries, malformed


def parse_list_content(content: str) -> Tuple[List[str], List[str]]:
    """Parse a list file body, one entry per line."""
    return normalize_entries(iter_lines(content))
