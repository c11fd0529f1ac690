"""Ipset compilation: resolved lists plus DNS answers into kernel members."""

from .compiler import CompiledIPSet, compile_ipset, dns_server_for
from .dns import DnsPythonResolver, HostResolver

__all__ = [
    "CompiledIPSet",
    "compile_ipset",
    "dns_server_for",
    "DnsPythonResolver",
    "HostResolver",
]
