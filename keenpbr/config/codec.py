"""
TOML codec for the raw configuration view.

The raw text is only ever a serialization of the structured document:
`dumps` renders a PBRConfig and `loads` parses text back into one. The TOML
layout keeps keen-pbr's on-disk names ([general], [[ipset]], [[list]]).
"""

import re
import sys
from typing import Any, Dict

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from keenpbr.errors import MalformedDocument
from .models import PBRConfig
from .validate import parse_document


# structured key -> TOML key
TOML_KEYS = {
    "general": "general",
    "ipsets": "ipset",
    "lists": "list",
}

POSITION_PATTERN = re.compile(r'at line (\d+), column (\d+)')


def to_toml_dict(cfg: PBRConfig) -> Dict[str, Any]:
    data = cfg.to_json_dict()
    return {TOML_KEYS[key]: data[key] for key in ("general", "ipsets", "lists")}


def from_toml_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    structured: Dict[str, Any] = {}
    for key, toml_key in TOML_KEYS.items():
        if toml_key in data:
            structured[key] = data[toml_key]
    unknown = set(data) - set(TOML_KEYS.values())
    for key in sorted(unknown):
        # surfaced by the model as an extra field
        structured[key] = data[key]
    return structured


def dumps(cfg: PBRConfig) -> str:
    """Render the canonical TOML text of a document."""
    return tomli_w.dumps(to_toml_dict(cfg))


def loads(text: str) -> PBRConfig:
    """
    Parse TOML text into a document.

    Raises:
        MalformedDocument: text is not valid TOML
        ValidationError: TOML is valid but does not describe a config
    """
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        line = getattr(e, "lineno", None)
        column = getattr(e, "colno", None)
        message = getattr(e, "msg", None) or str(e)
        if line is None:
            match = POSITION_PATTERN.search(str(e))
            if match:
                line, column = int(match.group(1)), int(match.group(2))
                message = POSITION_PATTERN.sub("", str(e)).strip(" ()")
        raise MalformedDocument(f"Invalid TOML: {message}", line=line, column=column) from e
    return parse_document(from_toml_dict(data))
