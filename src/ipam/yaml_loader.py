"""Load and validate the IPAM database from YAML files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Union

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from jinja2.exceptions import TemplateError
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as SchemaError

from .models import DocumentError, Provenance

MERGEABLE_SECTIONS = ("alternatives", "zones", "address_map", "iids", "networks")

TagSpec = Union[str, list[str], None]


class _LineLoader(yaml.SafeLoader):
    """SafeLoader that records the origin of every mapping."""

    source_name = "<string>"

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        """Build the mapping and tag it with its source file and line."""
        mapping = super().construct_mapping(node, deep=deep)
        mapping["__line__"] = node.start_mark.line + 1
        mapping["__source__"] = self.source_name
        return mapping


class SourceRecord(BaseModel):
    """Base schema for records that remember where they were defined."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    source: str | None = Field(default=None, alias="__source__")
    line: int | None = Field(default=None, alias="__line__")

    @property
    def provenance(self) -> Provenance | None:
        """The file and line the record was read from."""
        if self.source is None:
            return None
        return Provenance(self.source, self.line)


class AlternativeSpec(SourceRecord):
    """Schema for an alternative (configuration switch)."""

    label: str
    state: str
    allowed_states: list[str] = Field(min_length=1)
    ttl: int | None = Field(default=None, ge=0)


class ZoneSpec(SourceRecord):
    """Schema for a zone definition."""

    name: str
    directory: str | None = None
    ttl: int | None = Field(default=None, ge=0)


class BlockSpec(SourceRecord):
    """Schema for an address block (``block``) or stub net (``net``)."""

    block: str | None = None
    net: str | None = None
    name: str
    plen: int | None = None
    tag: TagSpec = None
    description: str = ""
    children: list[BlockSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _exactly_one_prefix(self) -> BlockSpec:
        """Require exactly one of ``block`` and ``net``."""
        if (self.block is None) == (self.net is None):
            raise ValueError("exactly one of 'block' or 'net' is required")
        if self.net is not None and self.children:
            raise ValueError(f"net {self.net} can't contain further blocks")
        return self

    @property
    def prefix(self) -> str:
        """Return the CIDR text of the block or net."""
        return self.net if self.net is not None else str(self.block)

    @property
    def is_net(self) -> bool:
        """Return True for a stub net."""
        return self.net is not None


class IIDSpec(SourceRecord):
    """Schema for an IPv6 interface identifier."""

    name: str
    id: str
    use: bool = True


class AddressSpec(SourceRecord):
    """Schema for a single address of a host."""

    a: str
    canonical_name: bool | None = None
    reverse_dns: bool | None = None
    dns: bool = True
    alternative: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        """Accept a plain address in place of a mapping."""
        if isinstance(data, str):
            return {"a": data}
        return data


class FamilySpec(SourceRecord):
    """Schema for the addresses of one address family."""

    canonical_name: bool | None = None
    reverse_dns: bool | None = None
    ttl: int | None = Field(default=None, ge=0)
    from_iid: bool | str | None = None
    alternative: str | None = None
    addresses: list[AddressSpec] = Field(default_factory=list)


class IPSpec(SourceRecord):
    """Schema for the ``ip`` section of a host."""

    canonical_name: bool = True
    reverse_dns: bool = True
    ttl: int | None = Field(default=None, ge=0)
    v4: FamilySpec | None = None
    v6: FamilySpec | None = None


class AliasSpec(SourceRecord):
    name: str
    ttl: int | None = Field(default=None, ge=0)
    alternative: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        """Accept a bare name for an alias."""
        if isinstance(data, str):
            return {"name": data}
        return data


class HostedOnSpec(SourceRecord):
    name: str
    ttl: int | None = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        """Accept a bare name for a hosted-on target."""
        if isinstance(data, str):
            return {"name": data}
        return data


class RRSpec(SourceRecord):
    """Schema for a raw resource record attached to a host."""

    type: str
    rdata: str
    ttl: int | None = Field(default=None, ge=0)
    alternative: str | None = None

    @field_validator("type")
    @classmethod
    def _uppercase_type(cls, value: str) -> str:
        """Normalise RR type to uppercase."""
        return value.upper()

    @field_validator("rdata")
    @classmethod
    def _strip_rdata(cls, value: str) -> str:
        """Drop surrounding whitespace from the rdata."""
        return value.strip()


class HostSpec(SourceRecord):
    """Schema for a host."""

    name: str
    description: str = ""
    ttl: int | None = Field(default=None, ge=0)
    tag: TagSpec = None
    dns: bool = True
    noloc: bool = False
    ip: IPSpec = Field(default_factory=IPSpec)
    aliases: list[AliasSpec] = Field(default_factory=list)
    hosted_on: list[HostedOnSpec] = Field(default_factory=list)
    rr: list[RRSpec] = Field(default_factory=list)


class RangeSpec(SourceRecord):
    """An IPv4 block whose addresses are reserved or generated."""

    prefix: str
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        """Accept a bare prefix for a range."""
        if isinstance(data, str):
            return {"prefix": data}
        return data


class ReservedSpec(SourceRecord):
    default: Literal["none", "minimal", "full"] = "full"
    description: str = ""
    blocks: list[RangeSpec] = Field(default_factory=list)


class GenerateSpec(SourceRecord):
    """Schema for hosts generated from a name pattern over address blocks."""

    pattern: str
    ttl: int | None = Field(default=None, ge=0)
    description: str = ""
    blocks: list[RangeSpec] = Field(default_factory=list)


class NetworkSpec(SourceRecord):
    """Schema for a network (IP subnet)."""

    name: str
    description: str = ""
    ttl: int | None = Field(default=None, ge=0)
    tag: TagSpec = None
    location: str | None = None
    reserved: ReservedSpec | None = None
    generate: list[GenerateSpec] = Field(default_factory=list)
    hosts: list[HostSpec] = Field(default_factory=list)


class IpamDocument(SourceRecord):
    """Schema for the whole database."""

    domain: str
    ttl: int | None = Field(default=None, ge=0)
    zone_base: str = "."
    alternatives: list[AlternativeSpec] = Field(default_factory=list)
    zones: list[ZoneSpec] = Field(default_factory=list)
    address_map: list[BlockSpec] = Field(default_factory=list)
    iids: list[IIDSpec] = Field(default_factory=list)
    networks: list[NetworkSpec] = Field(default_factory=list)


@dataclass
class LoadedDocument:
    """A validated database and the files it was read from."""

    document: IpamDocument
    sources: list[Path] = field(default_factory=list)


def _render_yaml(path: Path, extra_context: dict[str, Any] | None = None) -> str:
    """Render a YAML file through Jinja2."""
    env = Environment(
        loader=FileSystemLoader(str(path.parent)),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    template = env.get_template(path.name)
    context = {"env": os.environ}
    if extra_context:
        context.update(extra_context)
    return template.render(**context)


def _parse_yaml(text: str, source: str) -> Any:
    """Parse YAML text, tagging mappings with their origin."""
    loader = _LineLoader(text)
    loader.source_name = source
    try:
        return loader.get_single_data()
    except yaml.YAMLError as exc:
        raise DocumentError(f"Failed to parse YAML: {exc}") from exc
    finally:
        loader.dispose()


def _locate(data: Any, loc: tuple[Any, ...]) -> str:
    """Return `` at <file>, line <n>`` for the deepest mapping on ``loc``."""
    where = ""
    node = data
    for step in loc:
        if isinstance(node, dict) and "__line__" in node:
            where = f" at {node.get('__source__')}, line {node['__line__']}"
        try:
            node = node[step]
        except (KeyError, IndexError, TypeError):
            break
    if isinstance(node, dict) and "__line__" in node:
        where = f" at {node.get('__source__')}, line {node['__line__']}"
    return where


def _read(path: Path, template_vars: dict[str, Any] | None) -> Any:
    """Render and parse ``path``, wrapping template and I/O errors."""
    try:
        rendered = _render_yaml(path, template_vars)
    except TemplateError as exc:
        raise DocumentError(f"Failed to render {path}: {exc}") from exc
    except OSError as exc:
        raise DocumentError(f"Can't read {path}: {exc}") from exc
    return _parse_yaml(rendered, str(path))


def _merge_includes(
    data: dict[str, Any],
    base_dir: Path,
    template_vars: dict[str, Any] | None,
    sources: list[Path],
) -> None:
    """Merge the sections of all files listed under ``include`` into ``data``."""
    for pattern in data.pop("include", None) or []:
        matches = sorted(base_dir.glob(str(pattern)))
        if not matches:
            raise DocumentError(f"include {pattern!r} does not match any file in {base_dir}")
        for path in matches:
            if path in sources:
                raise DocumentError(f"{path} is included more than once")
            sources.append(path)
            included = _read(path, template_vars) or {}
            if not isinstance(included, dict):
                raise DocumentError(f"{path}: included file must contain a mapping")
            _merge_includes(included, path.parent, template_vars, sources)
            unknown = set(included) - set(MERGEABLE_SECTIONS) - {"__line__", "__source__"}
            if unknown:
                raise DocumentError(f"{path}: unsupported sections in included file: {', '.join(sorted(unknown))}")
            for section in MERGEABLE_SECTIONS:
                data.setdefault(section, [])
                data[section].extend(included.get(section) or [])


def validate_document(data: Any) -> IpamDocument:
    """Validate parsed YAML data against the database schema."""
    if not isinstance(data, dict):
        raise DocumentError("The database must be a YAML mapping.")
    try:
        return IpamDocument.model_validate(data)
    except SchemaError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(step) for step in first["loc"])
        raise DocumentError(f"Validation error in {loc}: {first['msg']}{_locate(data, first['loc'])}") from exc


def parse_document(text: str, source: str = "<string>") -> IpamDocument:
    """Parse and validate a database given as YAML text (no includes)."""
    return validate_document(_parse_yaml(text, source))


def load_document(path: Path, template_vars: dict[str, Any] | None = None) -> LoadedDocument:
    """Load the database from ``path``, following includes."""
    sources = [path]
    data = _read(path, template_vars)
    if isinstance(data, dict):
        _merge_includes(data, path.parent, template_vars, sources)
    return LoadedDocument(document=validate_document(data), sources=sources)
