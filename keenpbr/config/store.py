"""
Config Store

Owns the single authoritative configuration document. The structured (JSON)
and raw (TOML) views are two serializations of the same in-memory PBRConfig;
there is no separate raw state.

Mutations are serialized by a writer lock and written to disk before they are
published. Readers get a copy of the last accepted document.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from keenpbr.errors import Conflict, MalformedDocument, NotFound, PBRError, ValidationError
from keenpbr.shared import atomic_write_text, canonicalize_and_hash, verify_hash
from . import codec
from .models import ListDef, PBRConfig, StatusInfo
from .validate import validate_config

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Authoritative configuration document backed by a TOML file.

    Usage:
        store = ConfigStore("/opt/etc/keen-pbr/keen-pbr.conf")
        cfg = store.get()
        store.replace(cfg)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._write_lock = threading.Lock()
        self._doc: Optional[PBRConfig] = None
        self._load_error: Optional[PBRError] = None
        self.load()

    # ========================================
    # LOADING
    # ========================================

    def load(self) -> None:
        """(Re)load the document from disk."""
        with self._write_lock:
            if not self.path.exists():
                logger.warning(f"Config file not found: {self.path}. Starting with an empty document.")
                self._doc = PBRConfig()
                self._load_error = None
                return

            try:
                doc = codec.loads(self.path.read_text(encoding="utf-8"))
                validate_config(doc)
            except PBRError as e:
                logger.error(f"Failed to load config {self.path}: {e.message}")
                self._doc = None
                self._load_error = e
                return

            self._doc = doc
            self._load_error = None
            logger.info(
                f"Loaded config {self.path}: {len(doc.lists)} lists, {len(doc.ipsets)} ipsets"
            )

    # ========================================
    # READS
    # ========================================

    def get(self) -> PBRConfig:
        """Current structured document."""
        doc = self._doc
        if doc is None:
            raise self._load_error or MalformedDocument("configuration is not loaded")
        return doc.model_copy(deep=True)

    def get_raw(self) -> str:
        """
        Canonical TOML text of the current document.

        When the file on disk could not be loaded its text is returned as-is,
        so it can be corrected through replace_raw.
        """
        doc = self._doc
        if doc is None:
            if self.path.exists():
                return self.path.read_text(encoding="utf-8")
            return ""
        return codec.dumps(doc)

    def version(self) -> Optional[str]:
        doc = self._doc
        if doc is None:
            return None
        return canonicalize_and_hash(doc.to_json_dict())

    def status(self) -> StatusInfo:
        doc = self._doc
        if doc is None:
            return StatusInfo(config_path=str(self.path))
        return StatusInfo(
            config_path=str(self.path),
            lists_count=len(doc.lists),
            ipsets_count=len(doc.ipsets),
            config_hash=self.version(),
        )

    # ========================================
    # MUTATIONS
    # ========================================

    def replace(self, doc: PBRConfig) -> PBRConfig:
        """
        Validate and replace the whole document.

        Raises:
            ValidationError: prior document is left untouched
        """
        with self._write_lock:
            return self._commit(doc.model_copy(deep=True))

    def replace_raw(self, text: str) -> PBRConfig:
        """
        Parse, validate and replace from TOML text.

        Raises:
            MalformedDocument: text is not valid TOML
            ValidationError: document violates an invariant
        """
        doc = codec.loads(text)
        with self._write_lock:
            return self._commit(doc)

    def mutate(self, change: Callable[[PBRConfig], None]) -> PBRConfig:
        """Apply an in-place change to a copy of the document and commit it."""
        with self._write_lock:
            doc = self._doc
            if doc is None:
                raise self._load_error or MalformedDocument("configuration is not loaded")
            updated = doc.model_copy(deep=True)
            change(updated)
            return self._commit(updated)

    def set_list_entries(self, name: str, entries: List[str]) -> PBRConfig:
        """Replace a list's entries; the list becomes an inline list."""
        cleaned = [e.strip() for e in entries if e and e.strip()]

        def change(cfg: PBRConfig) -> None:
            for i, list_def in enumerate(cfg.lists):
                if list_def.list_name == name:
                    cfg.lists[i] = ListDef(list_name=name, hosts=cleaned)
                    return
            raise NotFound(f"list '{name}' not found")

        return self.mutate(change)

    def create_list(self, name: str, url: str) -> PBRConfig:
        name = name.strip()
        url = url.strip()
        if not name:
            raise ValidationError("name is required")
        if not url:
            raise ValidationError("url is required")

        def change(cfg: PBRConfig) -> None:
            if cfg.get_list(name) is not None:
                raise Conflict(f"list '{name}' already exists")
            cfg.lists.append(ListDef(list_name=name, url=url))

        return self.mutate(change)

    def delete_list(self, name: str) -> PBRConfig:
        """Remove a list. Lists still referenced by an ipset cannot be removed."""
        def change(cfg: PBRConfig) -> None:
            if cfg.get_list(name) is None:
                raise NotFound(f"list '{name}' not found")
            users = [s.ipset_name for s in cfg.ipsets if name in s.lists]
            if users:
                raise ValidationError(
                    f"list '{name}' is used by ipset(s): {', '.join(users)}"
                )
            cfg.lists = [l for l in cfg.lists if l.list_name != name]

        return self.mutate(change)

    def _commit(self, doc: PBRConfig) -> PBRConfig:
        """Validate, persist, then publish. Caller holds the write lock."""
        validate_config(doc)

        text = codec.dumps(doc)
        expected = canonicalize_and_hash(doc.to_json_dict())
        if not verify_hash(codec.loads(text).to_json_dict(), expected):
            raise ValidationError("document cannot be represented as TOML without loss")

        atomic_write_text(self.path, text)
        self._doc = doc
        self._load_error = None
        logger.info(f"Saved config {self.path} ({expected[:19]})")
        return doc.model_copy(deep=True)
