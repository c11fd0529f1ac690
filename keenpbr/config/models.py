"""
Configuration Models

Pydantic models for the keen-pbr configuration document: general settings,
named lists and ipsets with their routing policy.

The JSON (structured) field names are the wire contract of the web UI; the
TOML (raw) layout is handled by codec.py.
"""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


LIST_TYPE_INLINE = "inline"
LIST_TYPE_FILE = "file"
LIST_TYPE_URL = "url"


class General(BaseModel):
    """Process-wide settings of the routing engine."""
    lists_output_dir: str = Field(
        default="",
        description="Directory where downloaded lists are cached"
    )
    use_keenetic_api: bool = Field(
        default=False,
        description="Use the router API to query interface state"
    )
    use_keenetic_dns: bool = Field(
        default=False,
        description="Use the router DNS server for hostname resolution"
    )
    fallback_dns: str = Field(
        default="",
        description="DNS server used when an ipset has no override"
    )

    class Config:
        extra = "forbid"


class Routing(BaseModel):
    """Routing policy attached to one ipset."""
    interfaces: List[str] = Field(default_factory=list)
    kill_switch: bool = False
    fwmark: int
    table: int
    priority: int
    override_dns: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator('override_dns', mode='before')
    @classmethod
    def blank_dns_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class IPSet(BaseModel):
    """A kernel ipset plus its activation policy."""
    ipset_name: str = Field(min_length=1)
    lists: List[str] = Field(default_factory=list)
    ip_version: int = 4
    flush_before_applying: bool = False
    routing: Routing

    class Config:
        extra = "forbid"


class ListDef(BaseModel):
    """
    Named source of entries.

    Exactly one of hosts / file / url is set; the model refuses anything else
    so downstream code can dispatch on `type` alone.
    """
    list_name: str = Field(min_length=1)
    url: Optional[str] = None
    file: Optional[str] = None
    hosts: Optional[List[str]] = None

    class Config:
        extra = "forbid"

    @field_validator('url', 'file', mode='before')
    @classmethod
    def blank_source_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def exactly_one_source(self):
        sources = [
            name for name, value in (("hosts", self.hosts), ("file", self.file), ("url", self.url))
            if value is not None
        ]
        if len(sources) != 1:
            found = ", ".join(sources) if sources else "none"
            raise ValueError(
                f"list '{self.list_name}' must define exactly one of hosts, file, url (found: {found})"
            )
        return self

    @property
    def type(self) -> str:
        if self.url is not None:
            return LIST_TYPE_URL
        if self.file is not None:
            return LIST_TYPE_FILE
        return LIST_TYPE_INLINE


class PBRConfig(BaseModel):
    """Root configuration document."""
    general: General = Field(default_factory=General)
    ipsets: List[IPSet] = Field(default_factory=list)
    lists: List[ListDef] = Field(default_factory=list)

    class Config:
        extra = "forbid"

    def to_json_dict(self) -> dict:
        """Structured view; unset optional fields are omitted."""
        return self.model_dump(exclude_none=True)

    def get_list(self, name: str) -> Optional[ListDef]:
        for list_def in self.lists:
            if list_def.list_name == name:
                return list_def
        return None


# Response models for API endpoints

class StatusInfo(BaseModel):
    config_path: str
    lists_count: int = 0
    ipsets_count: int = 0
    config_hash: Optional[str] = None
