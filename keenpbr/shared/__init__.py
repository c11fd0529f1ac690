"""keen-pbr shared utilities"""

from .hashing import (
    canonicalize,
    canonicalize_and_hash,
    verify_hash,
)
from .files import atomic_write_text

__all__ = [
    "canonicalize",
    "canonicalize_and_hash",
    "verify_hash",
    "atomic_write_text",
]
