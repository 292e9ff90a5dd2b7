"""Core data models and exceptions used by ipam."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

AF_INFO: dict[int, dict[str, str | int]] = {
    4: {"name": "ipv4", "max_plen": 32, "rrtype": "A", "afi": 1},
    6: {"name": "ipv6", "max_plen": 128, "rrtype": "AAAA", "afi": 2},
}


def ensure_absolute(name: str) -> str:
    """Return a fully qualified name with a trailing dot."""
    stripped = name.strip()
    if stripped in {"", "@", "."}:
        return "."
    return stripped if stripped.endswith(".") else f"{stripped}."


@dataclass(frozen=True)
class Provenance:
    """Origin of a record in the source document."""

    source: str
    line: int | None = None

    def __str__(self) -> str:
        """Return the ``file, line N`` form used in error messages."""
        if self.line is None:
            return self.source
        return f"{self.source}, line {self.line}"

    def short(self) -> str:
        """Return the compact ``file:line`` form used in zone annotations."""
        if self.line is None:
            return self.source
        return f"{self.source}:{self.line}"


def previous_definition(provenance: Provenance | None) -> str:
    """Return a ``(previous definition at ...)`` suffix for error messages."""
    if provenance is None:
        return ""
    return f" (previous definition at {provenance})"


class Thing:
    """Base class for every named object stored in the IPAM.

    A Thing carries its name, the provenance of the record it was built from,
    a free-form description, an optional TTL and a set of tags.  Tags map to
    the names of the Things they were inherited from; an empty list marks a
    tag that was set explicitly.
    """

    def __init__(self, name: str, provenance: Provenance | None = None):
        """Create a Thing with no description, TTL or tags."""
        self.name = name
        self.provenance = provenance
        self.description = ""
        self.ttl: int | None = None
        self.tags: dict[str, list[str]] = {}

    def __repr__(self) -> str:
        """Return the class and name of the Thing."""
        return f"<{type(self).__name__} {self.name}>"

    def set_tags(self, spec: str | Iterable[str] | None, *sources: Thing) -> None:
        """Inherit tags from ``sources`` and apply the tags listed in ``spec``.

        ``spec`` is a whitespace-separated string or a list of tag names.  A
        name prefixed with ``!`` removes an inherited tag.
        """
        for source in sources:
            for tag in source.tags:
                inherited = self.tags.setdefault(tag, [])
                if source.name not in inherited:
                    inherited.append(source.name)
        for token in _split_tags(spec):
            if token.startswith("!"):
                tag = token[1:]
                if not self.tags.get(tag):
                    raise TagError(f"{self.name}: can't remove tag {tag}: not inherited")
                del self.tags[tag]
                continue
            if token in self.tags:
                inherited_from = self.tags[token]
                if inherited_from:
                    raise TagError(
                        f"{self.name}: tag {token} already inherited from {', '.join(inherited_from)}"
                    )
                raise TagError(f"{self.name}: duplicate tag {token}")
            self.tags[token] = []

    def iter_tags(self) -> Iterator[tuple[str, list[str]]]:
        """Yield ``(tag, inherited_from)`` pairs sorted by tag name."""
        for tag in sorted(self.tags):
            yield tag, list(self.tags[tag])

    def has_tags(self, tags: Iterable[str], match_all: bool = True) -> bool:
        """Return True when the Thing carries all (or any) of ``tags``."""
        wanted = list(tags)
        if not wanted:
            return True
        check = all if match_all else any
        return check(tag in self.tags for tag in wanted)


def _split_tags(spec: str | Iterable[str] | None) -> list[str]:
    """Split a tag spec into a list of tag names."""
    if spec is None:
        return []
    if isinstance(spec, str):
        return spec.split()
    return [token for item in spec for token in item.split()]


class IpamError(Exception):
    """Base exception for ipam."""


class ValidationError(IpamError):
    """Raised when the database violates a structural constraint."""


class DocumentError(ValidationError):
    """Raised when the source document can't be parsed or fails validation."""


class MalformedAddressError(ValidationError):
    """Raised for unparsable prefixes and addresses."""


class NonZeroHostPartError(ValidationError):
    """Raised when a prefix has bits set in its host part."""


class NotAnAddressError(ValidationError):
    """Raised when a prefix is found where an address is expected."""


class AddressFamilyMismatchError(ValidationError):
    """Raised when prefixes of different address families are combined."""


class NotMoreSpecificError(ValidationError):
    """Raised when a child prefix is not strictly covered by its parent."""


class StubViolationError(ValidationError):
    """Raised on misuse of stub and non-stub prefixes."""


class PlenMismatchError(ValidationError):
    """Raised when a child violates the required prefix length of its parent."""


class OverlapError(ValidationError):
    """Raised when sibling prefixes overlap."""


class DuplicateNameError(ValidationError):
    """Raised when a name is registered twice in the same registry."""


class AlreadyCanonicalError(ValidationError):
    """Raised when an address already has a canonical host."""


class ReservedAddressError(ValidationError):
    """Raised when a reserved address is assigned a canonical host."""


class NotCoveredError(ValidationError):
    """Raised when an address is not covered by any prefix of a network."""


class CNAMEConflictError(ValidationError):
    """Raised when a CNAME would coexist with other data."""


class TagError(ValidationError):
    """Raised on illegal tag assignments."""


class ReferentialError(IpamError):
    """Raised when a record references something that doesn't exist."""


class UnknownAlternativeError(ReferentialError):
    """Raised for references to undefined alternatives."""


class UnknownStateError(ReferentialError):
    """Raised when an alternative state is not among the allowed states."""


class DanglingReferenceError(ReferentialError):
    """Raised when a hosted-on target does not exist."""


class UnmappedNameError(ReferentialError):
    """Raised when a name can't be associated with any configured zone."""


class BugError(IpamError):
    """Raised when an internal invariant is violated."""

    def __init__(self, message: str):
        """Prefix the message with ``BUG:``."""
        super().__init__(f"BUG: {message}")


class LoadError(IpamError):
    """Fatal error during the load pass, annotated with its origin."""

    def __init__(self, message: str, provenance: Provenance | None = None):
        """Keep the message and provenance and append the location to the text."""
        self.message = message.rstrip()
        self.provenance = provenance
        text = self.message
        if provenance is not None:
            text = f"{text} at {provenance}"
        super().__init__(text)


class QueryError(IpamError):
    """Base class for query-time errors."""


class InvalidQueryError(QueryError):
    """Raised when a query argument can't be interpreted."""


class CacheError(IpamError):
    """Raised when the snapshot cache can't be written or read."""
