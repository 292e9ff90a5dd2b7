"""DNS zones, domains and RRset construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TextIO

import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype

from .models import (
    CNAMEConflictError,
    Provenance,
    Thing,
    UnmappedNameError,
    ValidationError,
    ensure_absolute,
)
from .registry import Registry, by_name

LOG = logging.getLogger("ipam")

# Duplicates of these types are expected and dropped silently.
DUPLICATE_OK = {"PTR", "LOC"}


def canonical_type(rtype: str) -> str:
    """Return the upper-case RR type, rejecting types unknown to dnspython."""
    upper = rtype.strip().upper()
    try:
        dns.rdatatype.from_text(upper)
    except dns.rdatatype.UnknownRdatatype as exc:
        raise ValidationError(f"Unknown RR type {rtype}") from exc
    return upper


def check_rdata(rtype: str, rdata: str, origin: str) -> None:
    """Reject rdata that dnspython can't parse for ``rtype``."""
    try:
        dns.rdata.from_text(
            dns.rdataclass.IN, canonical_type(rtype), rdata, origin=dns.name.from_text(origin)
        )
    except (dns.exception.DNSException, ValueError) as exc:
        raise ValidationError(f"Invalid rdata for {rtype} record: {rdata!r} ({exc})") from exc


@dataclass
class ResourceRecord:
    """One rdata entry of an RRset."""

    rdata: str
    comment: str | None = None
    active: bool = True
    provenance: Provenance | None = None


@dataclass
class RRset:
    """All records of one type at one owner name, sharing a TTL."""

    type: str
    ttl: int | None
    records: list[ResourceRecord] = field(default_factory=list)

    def first_definition(self) -> str:
        """Describe where the RRset was first defined."""
        provenance = self.records[0].provenance if self.records else None
        return f"definition at {provenance}" if provenance else "existing definition"


def _smaller_ttl(current: int | None, new: int | None) -> int | None:
    """Return the smaller of two optional TTLs."""
    if current is None:
        return new
    if new is None:
        return current
    return min(current, new)


class Domain(Thing):
    """An owner name inside a zone together with its RRsets.

    Active records are subject to the CNAME rules; inactive records (facts
    of alternative states that are not selected, or hosts with DNS disabled)
    are kept apart and rendered as comments.
    """

    def __init__(self, name: str, zone: Zone, provenance: Provenance | None = None):
        """Create an owner name in ``zone`` with no records."""
        super().__init__(name, provenance)
        self.zone = zone
        self._active: dict[str, RRset] = {}
        self._inactive: dict[str, RRset] = {}

    @property
    def fqdn(self) -> str:
        """The absolute name of the domain."""
        if not self.name:
            return self.zone.name
        return f"{self.name}.{self.zone.name}"

    def types(self, active: bool = True) -> list[str]:
        """Return the record types present in the active or inactive bucket."""
        return sorted(self._active if active else self._inactive)

    def rrset(self, rtype: str, active: bool = True) -> RRset | None:
        """Return the RRset of ``rtype`` from the active or inactive bucket."""
        bucket = self._active if active else self._inactive
        return bucket.get(rtype.upper())

    def add_rr(
        self,
        ttl: int | None,
        rtype: str,
        rdata: str,
        comment: str | None = None,
        active: bool = True,
        provenance: Provenance | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        """Add a record to the RRset of ``rtype``.

        A TTL that differs from the existing RRset's is logged and, when
        given, appended to ``warnings``.
        """
        rtype = canonical_type(rtype)
        record = ResourceRecord(rdata=rdata, comment=comment, active=active, provenance=provenance)
        if not active:
            inactive = self._inactive.get(rtype)
            if inactive is None:
                self._inactive[rtype] = RRset(type=rtype, ttl=ttl, records=[record])
            else:
                inactive.ttl = ttl
                inactive.records.append(record)
            return

        cname = self._active.get("CNAME")
        if rtype == "CNAME":
            if not self.name:
                raise CNAMEConflictError(f"{self.fqdn}: CNAME not allowed at the zone apex")
            if cname is not None:
                raise CNAMEConflictError(
                    f"{self.fqdn}: multiple CNAME records not allowed (conflicts with {cname.first_definition()})"
                )
            if self._active:
                other = self._active[min(self._active)]
                raise CNAMEConflictError(
                    f"{self.fqdn}: mixing of CNAME with other record types not allowed "
                    f"(conflicts with {other.type} {other.first_definition()})"
                )
        elif cname is not None:
            raise CNAMEConflictError(
                f"{self.fqdn}: mixing of CNAME with other record types not allowed "
                f"(conflicts with CNAME {cname.first_definition()})"
            )

        rrset = self._active.get(rtype)
        if rrset is None:
            self._active[rtype] = RRset(type=rtype, ttl=ttl, records=[record])
            return
        if rrset.ttl != ttl:
            resolved = _smaller_ttl(rrset.ttl, ttl)
            new_ttl = "<default>" if ttl is None else ttl
            old_ttl = "<default>" if rrset.ttl is None else rrset.ttl
            message = (
                f"{self.fqdn}: TTL {new_ttl} of new {rtype} RR differs from TTL {old_ttl} "
                f"of existing RRset, using {resolved}"
            )
            LOG.warning("%s", message)
            if warnings is not None:
                warnings.append(message)
            rrset.ttl = resolved
        rrset.records.append(record)

    def lines(self, indent: int = 0, annotate: bool = False, repeat_owner: bool = False) -> list[str]:
        """Return the domain's records in master-file syntax."""
        owner = self.name or "@"
        pad = " " * indent
        result: list[str] = []
        for rtype in sorted(set(self._active) | set(self._inactive)):
            show_owner = True
            for rrset in (self._active.get(rtype), self._inactive.get(rtype)):
                if rrset is None:
                    continue
                ttl = "" if rrset.ttl is None else str(rrset.ttl)
                seen: set[str] = set()
                for record in rrset.records:
                    if record.rdata in seen:
                        if rtype not in DUPLICATE_OK:
                            LOG.warning(
                                "BUG: skipping unexpected duplicate RR: %s %s %s", self.fqdn, rtype, record.rdata
                            )
                        continue
                    seen.add(record.rdata)
                    if record.active:
                        mark = ""
                        name = owner if show_owner or repeat_owner else ""
                        show_owner = False
                    else:
                        mark = ";<inactive>"
                        name = owner
                    line = f"{pad}{mark}{name:<30} {ttl:>6} IN {rtype:<8} {record.rdata}"
                    if record.comment:
                        line += f" ; {record.comment}"
                    if annotate and record.provenance is not None:
                        line += f" ; {record.provenance.short()}"
                    result.append(line)
        return result

    def print(self, sink: TextIO, indent: int = 0, annotate: bool = False, repeat_owner: bool = False) -> None:
        """Write the domain's records to ``sink``."""
        for line in self.lines(indent, annotate, repeat_owner):
            sink.write(f"{line}\n")


class DomainRegistry(Registry[Domain]):
    label = "Domain registry"


class Zone(Thing):
    """A DNS zone collecting the domains below its apex."""

    def __init__(
        self,
        name: str,
        directory: str | None = None,
        ttl: int | None = None,
        provenance: Provenance | None = None,
    ):
        """Create a zone; ``name`` is made absolute."""
        super().__init__(ensure_absolute(name), provenance)
        self.directory = directory
        self.ttl = ttl
        self.domain_registry = DomainRegistry()

    def add_domain(self, domain: Domain) -> None:
        """Register an owner name in the zone."""
        self.domain_registry.add(domain)

    def lookup_domain(self, name: str) -> Domain | None:
        """Return the domain called ``name`` (relative to the apex), or None."""
        return self.domain_registry.lookup(name)

    def domains(self) -> list[Domain]:
        """Return the zone's domains, apex first, then by name."""
        return self.domain_registry.things(by_name)


class ZoneRegistry(Registry[Zone]):
    """Zones by name.

    While a database is loaded, ``warnings`` is the list that collects the
    warnings raised by new records.
    """

    label = "Zone registry"

    def __init__(self, label: str | None = None):
        """Create the registry with no warning collector attached."""
        super().__init__(label)
        self.warnings: list[str] | None = None

    def lookup_fqdn(self, fqdn: str) -> tuple[Zone, str] | None:
        """Return the most specific zone covering ``fqdn`` and the relative name."""
        absolute = ensure_absolute(fqdn)
        if absolute == ".":
            return None
        labels = absolute[:-1].split(".")
        for index in range(len(labels)):
            zone = self.lookup(".".join(labels[index:]) + ".")
            if zone is not None:
                return zone, ".".join(labels[:index])
        return None

    def add_rr(
        self,
        fqdn: str,
        ttl: int | None,
        rtype: str,
        rdata: str,
        comment: str | None = None,
        active: bool = True,
        provenance: Provenance | None = None,
    ) -> Domain:
        """Add a record for ``fqdn`` to the zone that covers it."""
        found = self.lookup_fqdn(fqdn)
        if found is None:
            raise UnmappedNameError(f"Can't associate {fqdn} with any configured zone")
        zone, name = found
        domain = zone.lookup_domain(name)
        if domain is None:
            domain = Domain(name, zone)
            zone.add_domain(domain)
        if ttl is None:
            ttl = zone.ttl
        domain.add_rr(ttl, rtype, rdata, comment, active, provenance, self.warnings)
        return domain
