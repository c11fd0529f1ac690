"""
List Resolver

Turns a ListDef into a normalized, deduplicated sequence of entries:

- inline lists: the configured hosts, no I/O
- file lists: the blob stored at the list's file path
- URL lists: downloaded over HTTP (download action) or read from the cached
  blob of the last download (apply action never fetches)

Failures to read a source raise SourceUnavailable for that list only.
Malformed lines are skipped and reported as warnings on the ResolvedList.
"""

import logging
import time
from typing import Optional

import httpx

from keenpbr import settings
from keenpbr.config.models import LIST_TYPE_FILE, LIST_TYPE_INLINE, ListDef
from keenpbr.errors import SourceUnavailable
from .blobstore import BlobStore
from .entries import normalize_entries, parse_list_content
from .models import ResolvedList

logger = logging.getLogger(__name__)

USER_AGENT = f"keen-pbr-web/{settings.VERSION}"


class ListResolver:
    """
    Resolves list definitions against a blob store.

    Args:
        blobs: list content store (file lists and download cache)
        timeout: per-request timeout for downloads, seconds
        max_bytes: maximum accepted response body size
        transport: optional httpx transport (used by tests)
    """

    def __init__(
        self,
        blobs: BlobStore,
        timeout: float = settings.FETCH_TIMEOUT_SECONDS,
        max_bytes: int = settings.FETCH_MAX_BYTES,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.blobs = blobs
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.transport = transport

    def resolve(
        self,
        list_def: ListDef,
        fetch: bool = False,
        deadline: Optional[float] = None,
    ) -> ResolvedList:
        """
        Resolve one list.

        Args:
            list_def: the list definition
            fetch: download URL lists instead of reading the cache
            deadline: time.monotonic() value after which no fetch is started

        Raises:
            SourceUnavailable
        """
        name = list_def.list_name

        if list_def.type == LIST_TYPE_INLINE:
            entries, malformed = normalize_entries(list_def.hosts or [])
        elif list_def.type == LIST_TYPE_FILE:
            content = self._read_blob(name)
            if content is None:
                raise SourceUnavailable(name, f"file not found: {list_def.file}")
            entries, malformed = parse_list_content(content)
        elif fetch:
            content = self.fetch(name, list_def.url, deadline=deadline)
            self._store_blob(name, content)
            entries, malformed = parse_list_content(content)
        else:
            content = self._read_blob(name)
            if content is None:
                raise SourceUnavailable(name, "not downloaded yet, run download first")
            entries, malformed = parse_list_content(content)

        warnings = [f"list '{name}': skipped malformed entry '{line}'" for line in malformed]
        return ResolvedList(name=name, entries=entries, warnings=warnings)

    def _read_blob(self, name: str) -> Optional[str]:
        try:
            return self.blobs.get(name)
        except OSError as e:
            raise SourceUnavailable(name, f"cannot read list content: {e}")

    def _store_blob(self, name: str, content: str) -> None:
        try:
            self.blobs.put(name, content)
        except OSError as e:
            raise SourceUnavailable(name, f"cannot store downloaded list: {e}")

    def fetch(self, name: str, url: str, deadline: Optional[float] = None) -> str:
        """
        Download a list body with bounded time and size.

        Raises:
            SourceUnavailable: network error, timeout, non-2xx status,
                oversized body or exhausted action deadline
        """
        timeout = self.timeout
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SourceUnavailable(name, "action deadline exceeded")
            timeout = min(timeout, remaining)

        logger.info(f"Downloading list '{name}' from {url}")
        try:
            with httpx.Client(
                timeout=timeout,
                follow_redirects=True,
                transport=self.transport,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise SourceUnavailable(name, f"HTTP {response.status_code} from {url}")

                    chunks = []
                    size = 0
                    for chunk in response.iter_bytes():
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise SourceUnavailable(
                                name, f"response larger than {self.max_bytes} bytes"
                            )
                        chunks.append(chunk)
                    encoding = response.encoding or "utf-8"
        except httpx.InvalidURL as e:
            raise SourceUnavailable(name, f"invalid URL {url!r}: {e}")
        except httpx.TimeoutException:
            raise SourceUnavailable(name, f"timed out after {timeout:.0f}s fetching {url}")
        except httpx.HTTPError as e:
            raise SourceUnavailable(name, f"{type(e).__name__}: {e}")

        content = b"".join(chunks).decode(encoding, errors="replace")
        logger.info(f"Downloaded list '{name}': {size} bytes")
        return content
