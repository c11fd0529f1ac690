"""
Ipset Compiler

Computes the target membership of one ipset from the resolved entries of
its lists:

1. Union all referenced lists (set semantics)
2. Resolve hostnames with the ipset's DNS server (override, else fallback)
3. Keep only addresses/networks of the ipset's IP version
4. Deduplicate and sort

Hostnames are never members; a hostname without addresses is a warning so
one broken entry does not abort the ipset.
"""

import ipaddress
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Set, Tuple

from keenpbr.config.models import IPSet, PBRConfig
from keenpbr.lists.entries import parse_entry
from keenpbr.lists.models import ResolvedList
from .dns import HostResolver

logger = logging.getLogger(__name__)

MAX_DNS_WORKERS = 8


@dataclass
class CompiledIPSet:
    """Target membership of one ipset."""
    name: str
    ip_version: int
    members: List[str] = field(default_factory=list)
    hostnames: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    unavailable_lists: List[str] = field(default_factory=list)
    filtered_count: int = 0

    @property
    def complete(self) -> bool:
        """True when every referenced list could be read."""
        return not self.unavailable_lists


def member_sort_key(member: str) -> Tuple[int, int, int]:
    net = ipaddress.ip_network(member, strict=False)
    return net.version, int(net.network_address), net.prefixlen


def dns_server_for(ipset: IPSet, cfg: PBRConfig) -> Optional[str]:
    """Override DNS, else the router's resolver when enabled, else fallback DNS."""
    if ipset.routing.override_dns:
        return ipset.routing.override_dns
    if cfg.general.use_keenetic_dns:
        return None
    return cfg.general.fallback_dns or None


def collect_entries(
    ipset: IPSet,
    resolved: Mapping[str, ResolvedList],
) -> Tuple[Set[str], List[str], List[str]]:
    """
    Union the entries of the ipset's lists.

    Returns:
        (literals, hostnames, unavailable) - literal addresses/networks,
        hostnames in first-seen order, referenced lists missing from resolved
    """
    literals: Set[str] = set()
    hostnames: List[str] = []
    seen_hosts: Set[str] = set()
    unavailable: List[str] = []

    for list_name in ipset.lists:
        resolved_list = resolved.get(list_name)
        if resolved_list is None:
            unavailable.append(list_name)
            continue
        for value in resolved_list.entries:
            entry = parse_entry(value)
            if entry is None:
                continue
            if entry.is_hostname:
                if entry.value not in seen_hosts:
                    seen_hosts.add(entry.value)
                    hostnames.append(entry.value)
            else:
                literals.add(entry.value)

    return literals, hostnames, unavailable


def compile_ipset(
    ipset: IPSet,
    resolved: Mapping[str, ResolvedList],
    host_resolver: HostResolver,
    dns_server: Optional[str] = None,
) -> CompiledIPSet:
    """
    Compile the target membership of one ipset.

    Args:
        ipset: ipset definition
        resolved: resolved lists by name; missing names count as unavailable
        host_resolver: DNS resolver for hostname entries
        dns_server: DNS server to query, None for the system resolver
    """
    version = ipset.ip_version
    literals, hostnames, unavailable = collect_entries(ipset, resolved)
    result = CompiledIPSet(
        name=ipset.ipset_name,
        ip_version=version,
        hostnames=hostnames,
        unavailable_lists=unavailable,
    )

    members: Set[str] = set()
    for value in literals:
        net = ipaddress.ip_network(value, strict=False)
        if net.version == version:
            members.add(value)
        else:
            result.filtered_count += 1

    for hostname, addresses in _resolve_all(hostnames, version, host_resolver, dns_server):
        if not addresses:
            result.warnings.append(
                f"ipset '{ipset.ipset_name}': {hostname} resolved to no IPv{version} addresses"
            )
            continue
        for address in addresses:
            try:
                addr = ipaddress.ip_address(address)
            except ValueError:
                continue
            if addr.version == version:
                members.add(str(addr))
            else:
                result.filtered_count += 1

    result.members = sorted(members, key=member_sort_key)
    logger.debug(
        f"Compiled ipset {ipset.ipset_name}: {len(result.members)} members "
        f"from {len(literals)} literals and {len(hostnames)} hostnames"
    )
    return result


def _resolve_all(
    hostnames: List[str],
    version: int,
    host_resolver: HostResolver,
    dns_server: Optional[str],
) -> Iterable[Tuple[str, List[str]]]:
    if not hostnames:
        return []
    if len(hostnames) == 1:
        return [(hostnames[0], host_resolver.resolve(hostnames[0], version, dns_server))]

    workers = min(MAX_DNS_WORKERS, len(hostnames))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dns") as pool:
        results = pool.map(lambda h: host_resolver.resolve(h, version, dns_server), hostnames)
        return list(zip(hostnames, results))
