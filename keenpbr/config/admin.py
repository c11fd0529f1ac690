"""
Configuration Endpoints

Structured (JSON) and raw (TOML) views of the single configuration document,
plus a status summary.

Both PUT endpoints replace the whole document; a rejected document leaves the
active configuration untouched.
"""

import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from keenpbr.deps import get_store
from keenpbr.errors import ValidationError
from .models import StatusInfo
from .store import ConfigStore
from .validate import parse_document

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api",
    tags=["config"],
)

TOML_MEDIA_TYPE = "application/toml"


@router.get("/status", response_model=StatusInfo)
def get_status(store: ConfigStore = Depends(get_store)):
    return store.status()


@router.get("/config")
def get_config(store: ConfigStore = Depends(get_store)):
    """Structured configuration document."""
    return store.get().to_json_dict()


@router.put("/config")
async def save_config(request: Request, store: ConfigStore = Depends(get_store)):
    """
    Replace the configuration from a JSON document.

    Errors are returned as plain text (400 for invalid documents).
    """
    body = await request.body()
    try:
        data = json.loads(body or b"null")
    except ValueError as e:
        raise ValidationError(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError("configuration must be a JSON object")

    store.replace(parse_document(data))
    logger.info("Configuration replaced via structured view")
    return {"status": "ok"}


@router.get("/config/raw", response_class=PlainTextResponse)
def get_config_raw(store: ConfigStore = Depends(get_store)):
    """Raw TOML view of the configuration document."""
    return PlainTextResponse(store.get_raw(), media_type=TOML_MEDIA_TYPE)


@router.put("/config/raw")
async def save_config_raw(request: Request, store: ConfigStore = Depends(get_store)):
    """Replace the configuration from TOML text."""
    body = await request.body()
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("configuration text must be UTF-8")

    store.replace_raw(text)
    logger.info("Configuration replaced via raw view")
    return {"status": "ok"}
