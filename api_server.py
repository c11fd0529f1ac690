"""
keen-pbr-web API Server

Web control plane for keen-pbr: edit the routing configuration (structured or
raw TOML), browse and edit lists, and run download / apply / self-check
actions against the router's kernel.

Run with:
  keen-pbr-web --config /opt/etc/keen-pbr/keen-pbr.conf --port 3000
or:
  uvicorn --factory api_server:create_app --host 0.0.0.0 --port 3000
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from keenpbr import settings
from keenpbr.actions.admin import router as actions_router
from keenpbr.actions.orchestrator import ActionOrchestrator
from keenpbr.config.admin import router as config_router
from keenpbr.config.models import PBRConfig
from keenpbr.config.store import ConfigStore
from keenpbr.errors import PBRError
from keenpbr.ipsets.dns import HostResolver
from keenpbr.lists.admin import router as lists_router
from keenpbr.lists.blobstore import BlobStore
from keenpbr.routing.backend import KernelBackend, SystemBackend

logger = logging.getLogger(__name__)


# ============================================
# Error Handlers
# ============================================

async def pbr_error_handler(request, exc: PBRError):
    if exc.http_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc}")
    return PlainTextResponse(exc.message, status_code=exc.http_code)


async def request_validation_handler(request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    message = "; ".join(parts) or "invalid request"
    logger.warning(f"{request.method} {request.url.path}: {message}")
    return PlainTextResponse(message, status_code=400)


# ============================================
# App Factory
# ============================================

def create_app(
    config_path: Optional[str] = None,
    backend: Optional[KernelBackend] = None,
    host_resolver: Optional[HostResolver] = None,
    blob_store_factory: Optional[Callable[[PBRConfig], BlobStore]] = None,
    transport: Optional[httpx.BaseTransport] = None,
    rci_transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    """
    Build the API application around one ConfigStore and ActionOrchestrator.

    Tests inject a fake kernel backend, DNS resolver and httpx transports;
    production uses SystemBackend and dnspython.
    """
    app = FastAPI(
        title="keen-pbr-web",
        description="Policy-based routing manager for Keenetic routers",
        version=settings.VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    store = ConfigStore(config_path or settings.CONFIG_PATH)
    app.state.store = store
    app.state.orchestrator = ActionOrchestrator(
        store,
        backend or SystemBackend(),
        host_resolver=host_resolver,
        blob_store_factory=blob_store_factory,
        transport=transport,
        rci_transport=rci_transport,
    )

    app.add_exception_handler(PBRError, pbr_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(config_router)
    app.include_router(lists_router)
    app.include_router(actions_router)

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "version": settings.VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app

