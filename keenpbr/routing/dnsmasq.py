"""
dnsmasq integration.

Renders `ipset=` directives so the router's dnsmasq adds resolved addresses
of list hostnames to their ipsets at query time, and `server=` directives for
ipsets that override the DNS server.
"""

from typing import Dict, List, Mapping

from keenpbr.config.models import PBRConfig
from keenpbr.ipsets.compiler import collect_entries
from keenpbr.lists.models import ResolvedList


def render_dnsmasq_config(cfg: PBRConfig, resolved: Mapping[str, ResolvedList]) -> List[str]:
    """dnsmasq configuration lines for every hostname of every ipset."""
    ipsets_by_host: Dict[str, List[str]] = {}
    servers_by_host: Dict[str, str] = {}

    for ipset in cfg.ipsets:
        _, hostnames, _ = collect_entries(ipset, resolved)
        override = ipset.routing.override_dns
        for host in hostnames:
            names = ipsets_by_host.setdefault(host, [])
            if ipset.ipset_name not in names:
                names.append(ipset.ipset_name)
            if override and host not in servers_by_host:
                servers_by_host[host] = override

    lines = [f"ipset=/{host}/{','.join(names)}" for host, names in ipsets_by_host.items()]
    lines += [f"server=/{host}/{server}" for host, server in servers_by_host.items()]
    return lines
