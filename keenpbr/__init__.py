"""
keen-pbr-web

Policy-based routing manager for Keenetic routers: named host/IP lists are
compiled into kernel ipsets, and traffic matching each ipset is marked and
routed through the first available interface of its routing policy.
"""

from .settings import VERSION as __version__

__all__ = ["__version__"]
