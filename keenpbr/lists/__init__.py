"""
List resolution: entry normalization, content storage and downloads.
"""

from .entries import normalize_entries, parse_entry, parse_list_content
from .blobstore import BlobStore, FileBlobStore, MemoryBlobStore
from .models import ResolvedList, ListInfo
from .resolver import ListResolver

__all__ = [
    "normalize_entries",
    "parse_entry",
    "parse_list_content",
    "BlobStore",
    "FileBlobStore",
    "MemoryBlobStore",
    "ResolvedList",
    "ListInfo",
    "ListResolver",
]
