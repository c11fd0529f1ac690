"""
Hostname resolution for ipset compilation.

Uses dnspython against an explicit DNS server (ipset override or the
configured fallback) or, when none is configured, the system resolver.
"""

import logging
import threading
from typing import Dict, List, Optional

import dns.exception
import dns.resolver

from keenpbr import settings
from keenpbr.config.validate import parse_dns_server

logger = logging.getLogger(__name__)

RECORD_TYPES = {4: "A", 6: "AAAA"}


class HostResolver:
    """Interface: hostname -> addresses of one IP version."""

    def resolve(self, hostname: str, ip_version: int, server: Optional[str] = None) -> List[str]:
        raise NotImplementedError


class DnsPythonResolver(HostResolver):
    """dnspython-backed resolver with one dns.resolver.Resolver per server."""

    def __init__(self, timeout: float = settings.DNS_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._resolvers: Dict[Optional[str], dns.resolver.Resolver] = {}
        self._lock = threading.Lock()

    def _resolver_for(self, server: Optional[str]) -> dns.resolver.Resolver:
        with self._lock:
            resolver = self._resolvers.get(server)
            if resolver is None:
                if server:
                    resolver = dns.resolver.Resolver(configure=False)
                    address, port = parse_dns_server(server)
                    resolver.port = port
                    resolver.nameservers = [address]
                else:
                    resolver = dns.resolver.Resolver()
                resolver.lifetime = self.timeout
                self._resolvers[server] = resolver
            return resolver

    def resolve(self, hostname: str, ip_version: int, server: Optional[str] = None) -> List[str]:
        resolver = self._resolver_for(server)
        try:
            answer = resolver.resolve(hostname, RECORD_TYPES[ip_version], search=False)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as e:
            logger.warning(f"DNS lookup of {hostname} via {server or 'system resolver'} failed: {e}")
            return []
        return [rdata.address for rdata in answer]
