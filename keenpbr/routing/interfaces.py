"""
Interface state probing.

The kernel link state (UP + LOWER_UP) is always consulted. When the router
API integration is enabled, a tunnel is only considered up if the router also
reports it connected; an unreachable router API falls back to the kernel view.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

import httpx

from keenpbr import settings
from .backend import KernelBackend

logger = logging.getLogger(__name__)


class InterfaceProbe:
    """Per-action cache of interface up/down state."""

    def __init__(
        self,
        backend: KernelBackend,
        use_router_api: bool = False,
        rci_url: str = settings.KEENETIC_RCI_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.backend = backend
        self.use_router_api = use_router_api
        self.rci_url = rci_url.rstrip("/")
        self.transport = transport
        self.notes: List[str] = []
        self._cache: Dict[str, bool] = {}
        self._router_interfaces: Optional[Dict[str, dict]] = None
        self._router_checked = False
        self._lock = threading.Lock()

    def _load_router_interfaces(self) -> Optional[Dict[str, dict]]:
        if self._router_checked:
            return self._router_interfaces
        self._router_checked = True
        try:
            with httpx.Client(timeout=settings.KEENETIC_RCI_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = client.get(f"{self.rci_url}/show/interface")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            note = f"router API unavailable ({e}), using kernel link state"
            logger.warning(note)
            self.notes.append(note)
            return None

        by_name: Dict[str, dict] = {}
        if isinstance(data, dict):
            for key, info in data.items():
                if not isinstance(info, dict):
                    continue
                by_name[key] = info
                system_name = info.get("interface-name")
                if system_name:
                    by_name[system_name] = info
        self._router_interfaces = by_name
        return by_name

    def is_up(self, name: str) -> bool:
        if name in self._cache:
            return self._cache[name]

        up = self.backend.interface_up(name)
        if up and self.use_router_api:
            with self._lock:
                router = self._load_router_interfaces()
            info = (router or {}).get(name)
            if info is not None:
                connected = info.get("connected")
                if connected is not None:
                    up = connected == "yes"
                else:
                    up = info.get("link") == "up"
        self._cache[name] = up
        return up

    def select(self, interfaces: List[str]) -> Tuple[Optional[str], List[Tuple[str, bool]]]:
        """First interface that is up, plus the state of every interface."""
        states = [(name, self.is_up(name)) for name in interfaces]
        active = next((name for name, up in states if up), None)
        return active, states
