"""
Configuration validation.

Checks the structural invariants a document must satisfy before it may
replace the active configuration. The first violated constraint is reported.
"""

import ipaddress
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError as PydanticValidationError

from keenpbr.errors import ValidationError
from .models import PBRConfig


# Kernel limits
MAX_U32 = 0xFFFFFFFF
RESERVED_TABLES = {253: "default", 254: "main", 255: "local"}
MIN_PRIORITY = 1
MAX_PRIORITY = 32765  # 32766/32767 hold the main/default lookups
MAX_IPSET_NAME_LENGTH = 31
VALID_IP_VERSIONS = (4, 6)
DEFAULT_DNS_PORT = 53
MAX_PORT = 65535


def describe_pydantic_error(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into 'path: message' pairs."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_document(data: Any) -> PBRConfig:
    """Build a PBRConfig from plain data, converting pydantic errors."""
    try:
        return PBRConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(describe_pydantic_error(e)) from e


def parse_dns_server(server: str) -> Tuple[str, int]:
    """
    '8.8.8.8' or '8.8.8.8#5353' -> (address, port)

    Raises:
        ValidationError: address is not an IP literal or port is not 1..65535
    """
    address, sep, port = server.strip().partition("#")
    try:
        ipaddress.ip_address(address)
    except ValueError:
        raise ValidationError(f"DNS server '{server}': '{address}' is not an IP address")
    if not sep:
        return address, DEFAULT_DNS_PORT
    if not port.isdigit() or not 1 <= int(port) <= MAX_PORT:
        raise ValidationError(f"DNS server '{server}': port must be 1..{MAX_PORT}")
    return address, int(port)


def _check_unique(names: List[str], kind: str) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ValidationError(f"duplicate {kind} name: '{name}'")
        seen.add(name)


def validate_config(cfg: PBRConfig) -> None:
    """
    Validate a document.

    Raises:
        ValidationError naming the violated constraint.
    """
    _check_unique([l.list_name for l in cfg.lists], "list")
    _check_unique([s.ipset_name for s in cfg.ipsets], "ipset")

    if cfg.general.fallback_dns:
        try:
            parse_dns_server(cfg.general.fallback_dns)
        except ValidationError as e:
            raise ValidationError(f"general.fallback_dns: {e.message}")

    list_names = {l.list_name for l in cfg.lists}
    marks: Dict[Tuple[int, int], str] = {}
    tables: Dict[Tuple[int, int], str] = {}

    for ipset in cfg.ipsets:
        name = ipset.ipset_name
        if len(name) > MAX_IPSET_NAME_LENGTH:
            raise ValidationError(
                f"ipset '{name}': name longer than {MAX_IPSET_NAME_LENGTH} characters"
            )
        if any(c.isspace() for c in name):
            raise ValidationError(f"ipset '{name}': name must not contain whitespace")

        for ref in ipset.lists:
            if ref not in list_names:
                raise ValidationError(f"ipset '{name}' references unknown list '{ref}'")

        if ipset.ip_version not in VALID_IP_VERSIONS:
            raise ValidationError(
                f"ipset '{name}': ip_version must be 4 or 6, got {ipset.ip_version}"
            )

        routing = ipset.routing
        if not 1 <= routing.fwmark <= MAX_U32:
            raise ValidationError(
                f"ipset '{name}': fwmark {routing.fwmark} out of range 1..{MAX_U32}"
            )
        if not 1 <= routing.table <= MAX_U32:
            raise ValidationError(
                f"ipset '{name}': table {routing.table} out of range 1..{MAX_U32}"
            )
        if routing.table in RESERVED_TABLES:
            raise ValidationError(
                f"ipset '{name}': table {routing.table} is reserved ({RESERVED_TABLES[routing.table]})"
            )
        if not MIN_PRIORITY <= routing.priority <= MAX_PRIORITY:
            raise ValidationError(
                f"ipset '{name}': priority {routing.priority} out of range {MIN_PRIORITY}..{MAX_PRIORITY}"
            )
        if routing.override_dns:
            try:
                parse_dns_server(routing.override_dns)
            except ValidationError as e:
                raise ValidationError(f"ipset '{name}': override_dns: {e.message}")

        marks_key = (ipset.ip_version, routing.fwmark)
        if marks_key in marks:
            raise ValidationError(
                f"ipsets '{marks[marks_key]}' and '{name}' share fwmark {routing.fwmark} "
                f"for IPv{ipset.ip_version}"
            )
        marks[marks_key] = name

        tables_key = (ipset.ip_version, routing.table)
        if tables_key in tables:
            raise ValidationError(
                f"ipsets '{tables[tables_key]}' and '{name}' share routing table {routing.table} "
                f"for IPv{ipset.ip_version}"
            )
        tables[tables_key] = name
