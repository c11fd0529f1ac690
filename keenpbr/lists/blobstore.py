"""
List content blob store.

Key/value storage of list bodies keyed by list name. File-backed lists are
stored at their configured `file` path; downloaded (URL) lists are cached as
`<lists_output_dir>/<list_name>.lst`.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional

from keenpbr.config.models import LIST_TYPE_FILE, PBRConfig
from keenpbr.shared import atomic_write_text

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".lst"
UNSAFE_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class BlobStore:
    """Interface of the list content store."""

    def get(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, name: str, content: str) -> None:
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        return self.get(name) is not None


class MemoryBlobStore(BlobStore):
    """In-process blob store."""

    def __init__(self, blobs: Optional[Dict[str, str]] = None):
        self.blobs: Dict[str, str] = dict(blobs or {})

    def get(self, name: str) -> Optional[str]:
        return self.blobs.get(name)

    def put(self, name: str, content: str) -> None:
        self.blobs[name] = content


class FileBlobStore(BlobStore):
    """Blob store on the local filesystem."""

    def __init__(self, output_dir: str, paths: Optional[Dict[str, str]] = None):
        self.output_dir = Path(output_dir) if output_dir else Path(".")
        self.paths = dict(paths or {})

    @classmethod
    def for_config(cls, cfg: PBRConfig, default_dir: str = "") -> "FileBlobStore":
        paths = {
            l.list_name: l.file
            for l in cfg.lists
            if l.type == LIST_TYPE_FILE
        }
        return cls(cfg.general.lists_output_dir or default_dir, paths)

    def path_for(self, name: str) -> Path:
        if name in self.paths:
            return Path(self.paths[name])
        safe = UNSAFE_NAME_CHARS.sub("_", name)
        return self.output_dir / f"{safe}{CACHE_SUFFIX}"

    def get(self, name: str) -> Optional[str]:
        path = self.path_for(name)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def put(self, name: str, content: str) -> None:
        path = self.path_for(name)
        atomic_write_text(path, content)
        logger.debug(f"Stored list '{name}' at {path} ({len(content)} bytes)")
