"""
List Endpoints

Browse, edit, create and delete the named lists of the configuration.
Saving entries turns any list into an inline list.
"""

import logging
from typing import List
from fastapi import APIRouter, Depends

from keenpbr.actions.orchestrator import ActionOrchestrator
from keenpbr.config.models import LIST_TYPE_FILE
from keenpbr.config.store import ConfigStore
from keenpbr.deps import get_orchestrator, get_store
from keenpbr.errors import NotFound
from .entries import iter_lines
from .models import CreateListRequest, ListInfo, SaveListRequest

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/lists",
    tags=["lists"],
)


@router.get("", response_model=List[ListInfo], response_model_exclude_none=True)
def list_lists(store: ConfigStore = Depends(get_store)):
    return [
        ListInfo(name=l.list_name, type=l.type, url=l.url, file=l.file)
        for l in store.get().lists
    ]


@router.get("/{name}", response_model=ListInfo, response_model_exclude_none=True)
def get_list(
    name: str,
    store: ConfigStore = Depends(get_store),
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    """
    One list with its entries.

    Inline lists return their hosts; file lists return the lines of the file
    (blank and comment lines dropped). URL lists carry no entries.
    """
    cfg = store.get()
    list_def = cfg.get_list(name)
    if list_def is None:
        raise NotFound(f"list '{name}' not found")

    info = ListInfo(name=list_def.list_name, type=list_def.type, url=list_def.url, file=list_def.file)
    if list_def.hosts is not None:
        info.entries = list(list_def.hosts)
    elif list_def.type == LIST_TYPE_FILE:
        content = orchestrator.blob_store_factory(cfg).get(name)
        info.entries = list(iter_lines(content)) if content is not None else []
    return info


@router.put("/{name}")
def save_list(name: str, request: SaveListRequest, store: ConfigStore = Depends(get_store)):
    store.set_list_entries(name, request.entries)
    logger.info(f"List '{name}' saved with {len(request.entries)} entries")
    return {"status": "ok"}


@router.post("")
def create_list(request: CreateListRequest, store: ConfigStore = Depends(get_store)):
    store.create_list(request.name, request.url)
    logger.info(f"List '{request.name}' created ({request.url})")
    return {"status": "ok"}


@router.delete("/{name}")
def delete_list(name: str, store: ConfigStore = Depends(get_store)):
    store.delete_list(name)
    logger.info(f"List '{name}' deleted")
    return {"status": "ok"}
