"""
Configuration document: models, TOML codec, validation and the store.

HTTP endpoints live in keenpbr.config.admin.
"""

from .models import (
    General,
    Routing,
    IPSet,
    ListDef,
    PBRConfig,
    StatusInfo,
    LIST_TYPE_INLINE,
    LIST_TYPE_FILE,
    LIST_TYPE_URL,
)
from .validate import parse_document, validate_config
from .store import ConfigStore

__all__ = [
    # Models
    "General",
    "Routing",
    "IPSet",
    "ListDef",
    "PBRConfig",
    "StatusInfo",
    "LIST_TYPE_INLINE",
    "LIST_TYPE_FILE",
    "LIST_TYPE_URL",
    # Functions
    "parse_document",
    "validate_config",
    # Store
    "ConfigStore",
]
