"""High-level orchestration: building the IPAM database from a document."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, TypeVar

import dns.reversename

from .address_map import AddressMap
from .alternative import Alternative, AlternativeRegistry, AddressMapping, AliasMapping, RRMapping
from .host import Alias, AliasRegistry, Host
from .iid import IID, IIDRegistry
from .models import (
    AF_INFO,
    BugError,
    DanglingReferenceError,
    IpamError,
    LoadError,
    Provenance,
    Thing,
    UnmappedNameError,
    ValidationError,
    ensure_absolute,
)
from .network import Network, NetworkRegistry
from .prefix import Address, IPAddress, Prefix, nth_host
from .registry import Registry
from .yaml_loader import (
    AddressSpec,
    AlternativeSpec,
    BlockSpec,
    FamilySpec,
    GenerateSpec,
    HostSpec,
    IIDSpec,
    IPSpec,
    IpamDocument,
    NetworkSpec,
    RangeSpec,
    ReservedSpec,
    ZoneSpec,
    load_document,
)
from .zone import Zone, ZoneRegistry, check_rdata

LOG = logging.getLogger("ipam")

ADMIN_PATTERN = re.compile(r"^(\w+)-admin\.(.*)$", re.IGNORECASE)

REGISTRIES = ("zone", "iid", "network", "alternative", "alias")

T = TypeVar("T")


def _pick(value: T | None, default: T | None) -> T | None:
    """Return ``value`` unless it is None, else ``default``."""
    return default if value is None else value


@contextmanager
def _at(provenance: Provenance | None) -> Iterator[None]:
    """Annotate IPAM errors raised in the block with ``provenance``."""
    try:
        yield
    except (LoadError, BugError):
        raise
    except IpamError as exc:
        raise LoadError(str(exc), provenance) from exc


@dataclass
class HostedOnRef:
    host: Host
    target: Thing


@dataclass
class LoadContext:
    """State that is only needed while a database is being loaded."""

    address_cache: dict[str, Address] = field(default_factory=dict)
    host_cache: dict[str, Host] = field(default_factory=dict)
    alias_cache: dict[str, Host] = field(default_factory=dict)
    hosted_on: list[HostedOnRef] = field(default_factory=list)
    admin_check: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass
class _Candidate:
    """An address of a host waiting to be registered."""

    text: str
    provenance: Provenance | None
    canonical: bool
    reverse: bool
    alternative: Alternative | None
    state: str | None
    dns: bool


class IPAM:
    """The IPAM database: address map, networks, hosts and DNS zones.

    A database is built by exactly one call to ``load()`` (or
    ``load_file()``) and is read-only afterwards.
    """

    def __init__(self, verbose: bool = False):
        """Create an empty database; ``verbose`` logs the load pass at DEBUG level."""
        self.verbose = verbose
        self.domain = "."
        self.ttl: int | None = None
        self.address_map = AddressMap()
        self.zones = ZoneRegistry()
        self.iids = IIDRegistry()
        self.networks = NetworkRegistry()
        self.alternatives = AlternativeRegistry()
        self.aliases = AliasRegistry()
        self.warnings: list[str] = []
        self.sources: list[Path] = []
        self._loaded = False

    def registry(self, kind: str) -> Registry[Any] | None:
        """Return one of the registries named in ``REGISTRIES``."""
        return {
            "zone": self.zones,
            "iid": self.iids,
            "network": self.networks,
            "alternative": self.alternatives,
            "alias": self.aliases,
        }.get(kind)

    def load_file(self, path: Path, template_vars: dict[str, Any] | None = None) -> IPAM:
        """Load the database from a YAML file (following includes)."""
        loaded = load_document(path, template_vars)
        self.load(loaded.document)
        self.sources = loaded.sources
        return self

    def load(self, document: IpamDocument) -> IPAM:
        """Populate all registries from a validated document."""
        if self._loaded:
            raise IpamError("The database has already been loaded")
        self._loaded = True
        ctx = LoadContext()
        self.zones.warnings = ctx.warnings
        previous_level = LOG.level
        if self.verbose:
            LOG.setLevel(logging.DEBUG)
        try:
            self.domain = ensure_absolute(document.domain)
            self.ttl = document.ttl
            self._register_alternatives(document.alternatives)
            self._register_zones(document.zone_base, document.zones)
            LOG.debug("Registering address map")
            self._register_blocks(self.address_map, document.address_map)
            self._register_iids(document.iids)
            for network_spec in document.networks:
                self._process_network(ctx, network_spec)
            self._finalize(ctx)
        finally:
            self.zones.warnings = None
            LOG.setLevel(previous_level)
        self.warnings = ctx.warnings
        return self

    def fqdn(self, name: str) -> str:
        """Qualify ``name`` with the database's domain unless it ends with a dot."""
        if name.endswith("."):
            return name
        if self.domain == ".":
            return f"{name}."
        return f"{name}.{self.domain}"

    def _warn_at(self, ctx: LoadContext, provenance: Provenance | None, message: str) -> None:
        """Log a warning and keep it for ``IPAM.warnings``."""
        if provenance is not None:
            message = f"{message} at {provenance}"
        LOG.warning("%s", message)
        ctx.warnings.append(message)

    def _check_alternative(
        self, selector: str | None, provenance: Provenance | None
    ) -> tuple[Alternative | None, str | None]:
        """Return (alternative, state) for an optional ``label:state``."""
        if not selector:
            return None, None
        with _at(provenance):
            alternative, state, _ = self.alternatives.parse_selector(selector)
        return alternative, state

    def _register_alternatives(self, specs: list[AlternativeSpec]) -> None:
        """Register the alternatives and set their current states."""
        for spec in specs:
            with _at(spec.provenance):
                alternative = Alternative(spec.label, spec.allowed_states, spec.provenance)
                alternative.ttl = spec.ttl
                alternative.set_state(spec.state)
                self.alternatives.add(alternative)

    def _register_zones(self, base: str, specs: list[ZoneSpec]) -> None:
        """Register the zones, resolving their directories against ``base``."""
        for spec in specs:
            directory = str(Path(base) / spec.directory) if spec.directory else None
            LOG.debug("Registering zone %s with directory %s", spec.name, directory)
            with _at(spec.provenance):
                zone = Zone(spec.name, directory, _pick(spec.ttl, self.ttl), spec.provenance)
                self.zones.add(zone)

    def _register_blocks(self, parent: AddressMap | Prefix, specs: list[BlockSpec]) -> None:
        """Register blocks and nets below ``parent`` and publish them in DNS.

        Every prefix gets an APL record.  Stub nets are also described with
        the legacy encoding: IPv4 as a PTR to the network address plus an A
        record holding the netmask, IPv6 as a AAAA record of the network
        address (implied /64).
        """
        for spec in specs:
            fqdn = self.fqdn(spec.name)
            provenance = spec.provenance
            LOG.debug("Registering %s %s", "net" if spec.is_net else "block", fqdn)
            with _at(provenance):
                prefix = Prefix(spec.prefix, fqdn, spec.is_net, provenance)
                prefix.description = spec.description
                prefix.set_tags(spec.tag, *([parent] if isinstance(parent, Prefix) else []))
                if spec.is_net:
                    # Stub nets have an implicit plen of the family maximum.
                    if prefix.ip.prefixlen < prefix.max_plen:
                        prefix.plen = prefix.max_plen
                else:
                    prefix.plen = spec.plen
                parent.add(prefix)
                if spec.is_net:
                    if prefix.af == 4:
                        self.zones.add_rr(fqdn, None, "PTR", f"{prefix.ip.network_address}.", provenance=provenance)
                        self.zones.add_rr(fqdn, None, "A", str(prefix.ip.netmask), provenance=provenance)
                    else:
                        self.zones.add_rr(fqdn, None, "AAAA", str(prefix.ip.network_address), provenance=provenance)
                self.zones.add_rr(
                    fqdn, None, "APL", f"{AF_INFO[prefix.af]['afi']}:{prefix.name}", provenance=provenance
                )
            self._register_blocks(prefix, spec.children)

    def _register_iids(self, specs: list[IIDSpec]) -> None:
        """Register the IPv6 interface identifiers."""
        for spec in specs:
            fqdn = self.fqdn(spec.name)
            with _at(spec.provenance):
                iid = IID(fqdn, spec.id, spec.provenance)
                iid.use = spec.use
                self.iids.add(iid)
            LOG.debug("Registered IID %s for host %s", iid.ip, fqdn)

    def _process_network(self, ctx: LoadContext, spec: NetworkSpec) -> None:
        """Build a network with its prefixes, reserved ranges and hosts."""
        fqdn = self.fqdn(spec.name)
        provenance = spec.provenance
        LOG.debug("Processing network %s", fqdn)
        with _at(provenance):
            network = Network(fqdn, spec.location, provenance)
            network.description = spec.description
            network.ttl = spec.ttl
            self.networks.add(network)
            if network.location:
                self.zones.add_rr(fqdn, None, "LOC", network.location, provenance=provenance)
            prefixes = self.address_map.lookup_by_id(fqdn, stub_only=True)
            if not prefixes:
                raise ValidationError(f"Network {fqdn} is not associated with any prefixes")
            for prefix in prefixes:
                network.add_prefix(prefix)
                prefix.network = network
            network.set_tags(spec.tag, *prefixes)
        if spec.reserved is not None:
            self._process_reserved(spec.reserved, network)
        for generate in spec.generate:
            self._process_generate(ctx, generate, network)
        for host_spec in spec.hosts:
            self._process_host(ctx, host_spec, network)

    def _process_reserved(self, spec: ReservedSpec, network: Network) -> None:
        """Reserve infrastructure addresses of the network's IPv4 prefix.

        ``minimal`` reserves network and broadcast addresses of prefixes
        shorter than /31, ``full`` additionally the lowest addresses: one for
        /30 and /29, three for /28 to /26 and seven for /25 and shorter.
        """
        v4 = network.prefixes(af=4)
        if not v4:
            return
        prefix = v4[0]
        plen = prefix.ip.prefixlen
        if plen < 31 and spec.default != "none":
            for addr in (prefix.ip.network_address, prefix.ip.broadcast_address):
                self._reserve(network, spec, addr).description = "Network/Broadcast address"
            if spec.default == "full":
                if plen >= 29:
                    count = 1
                elif plen >= 26:
                    count = 3
                else:
                    count = 7
                for n in range(count):
                    self._reserve(network, spec, nth_host(prefix.ip, n)).description = "Reserved for network equipment"
        for block in spec.blocks:
            for addr in self._expand_block(block, prefix):
                self._reserve(network, block, addr)

    def _reserve(self, network: Network, record: ReservedSpec | RangeSpec, addr: IPAddress) -> Address:
        """Store ``addr`` in ``network`` as a reserved address."""
        LOG.debug("Marking %s as reserved", addr)
        with _at(record.provenance):
            address = Address(str(addr), reserved=True, provenance=record.provenance)
            network.add_address(address)
        address.description = record.description
        return address

    def _expand_block(self, spec: RangeSpec, prefix: Prefix) -> list[IPAddress]:
        """Return the addresses of an IPv4 block, minus ``prefix``'s broadcast."""
        with _at(spec.provenance):
            block = Prefix(spec.prefix, provenance=spec.provenance)
            if block.af != 4:
                raise ValidationError("Address block must be IPv4")
        broadcast = prefix.ip.broadcast_address
        return [addr for addr in block.ip if addr != broadcast]

    def _process_generate(self, ctx: LoadContext, spec: GenerateSpec, network: Network) -> None:
        """Create the numbered hosts of a ``generate`` record."""
        v4 = network.prefixes(af=4)
        if not v4:
            raise LoadError(f"Network {network.name}: generated hosts require an IPv4 prefix", spec.provenance)
        counter = 1
        for block in spec.blocks:
            for addr in self._expand_block(block, v4[0]):
                name = spec.pattern.replace("%n", str(counter), 1)
                counter += 1
                host_spec = HostSpec(
                    name=name,
                    ttl=spec.ttl,
                    description=block.description or spec.description,
                    ip=IPSpec(v4=FamilySpec(addresses=[AddressSpec(a=str(addr))])),
                )
                self._process_host(ctx, host_spec, network, origin=spec.provenance, address_origin=block.provenance)

    def _process_host(
        self,
        ctx: LoadContext,
        spec: HostSpec,
        network: Network,
        origin: Provenance | None = None,
        address_origin: Provenance | None = None,
    ) -> None:
        """Register a host with its addresses, aliases and extra records.

        Generated hosts pass the provenance of their ``generate`` record as
        ``origin`` and that of the address block as ``address_origin``.
        """
        host_fqdn = self.fqdn(spec.name)
        provenance = origin or spec.provenance
        LOG.debug("Processing host %s", host_fqdn)
        with _at(provenance):
            host = Host(host_fqdn, network, provenance)
            host.description = spec.description
            host.set_tags(spec.tag, network)
            network.add_host(host)
            found = self.zones.lookup_fqdn(host_fqdn)
            if found is None:
                raise UnmappedNameError(f"{host_fqdn}: the hostname cannot be associated with any configured zone")
            zone, _ = found
            host.ttl = _pick(spec.ttl, _pick(network.ttl, zone.ttl))
            host.dns = spec.dns

        admin = ADMIN_PATTERN.match(host_fqdn)
        if admin:
            ctx.admin_check[host_fqdn] = f"{admin.group(1)}.{admin.group(2)}"

        self._process_addresses(ctx, host, network, spec.ip, provenance, address_origin)
        if not len(host.address_registry):
            self._warn_at(ctx, host.provenance, f"There are no addresses associated with the host {host.name}")

        if network.location and not spec.noloc:
            with _at(provenance):
                self.zones.add_rr(host_fqdn, None, "LOC", network.location, None, host.dns, network.provenance)

        for alias_spec in spec.aliases:
            alias_fqdn = self.fqdn(alias_spec.name)
            alias_provenance = alias_spec.provenance or provenance
            LOG.debug("Registering host %s as alias for %s", alias_fqdn, host_fqdn)
            alternative, state = self._check_alternative(alias_spec.alternative, alias_provenance)
            with _at(alias_provenance):
                global_alias = self.aliases.lookup(alias_fqdn)
                if global_alias is None:
                    global_alias = Alias(alias_fqdn)
                    self.aliases.add(global_alias)
                global_alias.add_host(host)
                alias = Thing(alias_fqdn, alias_provenance)
                alias.ttl = _pick(alias_spec.ttl, host.ttl)
                host.add_alias(alias)
                alias_mapping = AliasMapping(host_fqdn, alias_fqdn)
                if alternative is not None and state is not None:
                    alternative.add_mapping(state, alias_mapping)
                    alias.ttl = _pick(alternative.ttl, alias.ttl)
                active = host.dns and self.alternatives.is_active(alias_mapping)
                self.zones.add_rr(alias_fqdn, alias.ttl, "CNAME", host_fqdn, None, active, alias_provenance)
            ctx.alias_cache[alias_fqdn.lower()] = host

        for hosted_on_spec in spec.hosted_on:
            target_fqdn = self.fqdn(hosted_on_spec.name)
            target_provenance = hosted_on_spec.provenance or provenance
            LOG.debug("Registering host %s as hosted-on for %s", target_fqdn, host_fqdn)
            with _at(target_provenance):
                target = Thing(target_fqdn, target_provenance)
                target.ttl = _pick(hosted_on_spec.ttl, host.ttl)
                host.add_hosted_on(target)
                ctx.hosted_on.append(HostedOnRef(host=host, target=target))
                self.zones.add_rr(host_fqdn, target.ttl, "PTR", target_fqdn, None, host.dns, target_provenance)

        for rr_spec in spec.rr:
            rr_provenance = rr_spec.provenance or provenance
            alternative, state = self._check_alternative(rr_spec.alternative, rr_provenance)
            rr_ttl = _pick(rr_spec.ttl, host.ttl)
            with _at(rr_provenance):
                check_rdata(rr_spec.type, rr_spec.rdata, zone.name)
                rr_mapping = RRMapping(host_fqdn, rr_spec.type, rr_spec.rdata, rr_ttl, rr_provenance)
                if alternative is not None and state is not None:
                    alternative.add_mapping(state, rr_mapping)
                    rr_ttl = _pick(alternative.ttl, rr_ttl)
                active = host.dns and self.alternatives.is_active(rr_mapping)
                self.zones.add_rr(host_fqdn, rr_ttl, rr_spec.type, rr_spec.rdata, None, active, rr_provenance)

        ctx.host_cache[host_fqdn.lower()] = host

    def _process_addresses(
        self,
        ctx: LoadContext,
        host: Host,
        network: Network,
        ip: IPSpec,
        provenance: Provenance | None,
        address_origin: Provenance | None,
    ) -> None:
        """Attach the explicit and IID-synthesized addresses of ``host``."""
        addr_ttl = _pick(ip.ttl, host.ttl)
        for af, family in ((4, ip.v4), (6, ip.v6)):
            if family is None:
                continue
            canonical_af = bool(_pick(family.canonical_name, ip.canonical_name))
            reverse_af = bool(_pick(family.reverse_dns, ip.reverse_dns))
            af_ttl = _pick(family.ttl, addr_ttl)
            family_provenance = family.provenance or provenance
            candidates: list[_Candidate] = []
            if af == 6:
                candidates.extend(
                    self._synthesize_from_iids(host, network, family, canonical_af, reverse_af, family_provenance)
                )
            for spec in family.addresses:
                canonical = bool(_pick(spec.canonical_name, canonical_af))
                reverse = bool(_pick(spec.reverse_dns, reverse_af)) and canonical
                addr_provenance = spec.provenance or family_provenance
                alternative, state = self._check_alternative(spec.alternative, addr_provenance)
                candidates.append(
                    _Candidate(
                        text=spec.a,
                        provenance=addr_provenance,
                        canonical=canonical,
                        reverse=reverse,
                        alternative=alternative,
                        state=state,
                        dns=host.dns and spec.dns,
                    )
                )
            for candidate in candidates:
                self._add_host_address(ctx, host, network, af, af_ttl, candidate, address_origin)

    def _synthesize_from_iids(
        self,
        host: Host,
        network: Network,
        family: FamilySpec,
        canonical: bool,
        reverse: bool,
        provenance: Provenance | None,
    ) -> list[_Candidate]:
        """Build IPv6 addresses from the host's IID (or the IIDs it names)."""
        from_iid = family.from_iid
        if isinstance(from_iid, str) and from_iid.lower() in {"true", "false"}:
            from_iid = from_iid.lower() == "true"
        if from_iid is False:
            return []
        names = [host.name]
        if isinstance(from_iid, str):
            own = self.iids.lookup(host.name)
            if own is not None:
                raise LoadError(
                    f"{host.name}: Synthesizing of IPv6 address from IID failed: references "
                    f"{from_iid} but has its own IID ({own.ip})",
                    provenance,
                )
            names = [self.fqdn(name) for name in from_iid.split(":")]
        result: list[_Candidate] = []
        for name in names:
            iid = self.iids.lookup(name)
            if iid is None:
                if name != host.name:
                    raise LoadError(
                        f"{host.name}: Synthesizing of IPv6 address from IID failed: references {name}, "
                        "which has no IID.",
                        provenance,
                    )
                continue
            if not iid.use:
                continue
            LOG.debug("Synthesizing IPv6 address for %s from IID", host.name)
            alternative, state = self._check_alternative(family.alternative, provenance)
            for prefix in network.prefixes(af=6):
                with _at(provenance):
                    address = iid.synthesize(prefix)
                result.append(
                    _Candidate(
                        text=str(address),
                        provenance=provenance,
                        canonical=canonical,
                        reverse=reverse if canonical else False,
                        alternative=alternative,
                        state=state,
                        dns=host.dns,
                    )
                )
                iid.in_use = True
        return result

    def _add_host_address(
        self,
        ctx: LoadContext,
        host: Host,
        network: Network,
        af: int,
        ttl: int | None,
        candidate: _Candidate,
        address_origin: Provenance | None,
    ) -> None:
        """Register one address of ``host`` together with its A/AAAA and PTR records."""
        provenance = address_origin or candidate.provenance
        with _at(provenance):
            address = Address(candidate.text, provenance=provenance)
            if address.af != af:
                raise ValidationError(f"{address.name} is not a valid {AF_INFO[af]['name']} address.")
            cached = ctx.address_cache.get(address.name)
            if cached is not None:
                address = cached
            else:
                network.add_address(address)
                ctx.address_cache[address.name] = address
            host.add_address(address)
            rr_ttl = ttl
            mapping = AddressMapping(host.name, address.name)
            if candidate.alternative is not None and candidate.state is not None:
                candidate.alternative.add_mapping(candidate.state, mapping)
                rr_ttl = _pick(candidate.alternative.ttl, rr_ttl)
            active = candidate.dns and self.alternatives.is_active(mapping)
            if candidate.canonical:
                address.set_canonical_host(host)
            address.add_host(host)
            rrtype = str(AF_INFO[af]["rrtype"])
            comment = None if candidate.reverse else f"secondary {rrtype} RR"
            self.zones.add_rr(host.name, rr_ttl, rrtype, address.name, comment, active, provenance)
            if candidate.reverse:
                self._add_reverse(address, host, rr_ttl, active, provenance)

    def _add_reverse(
        self, address: Address, host: Host, ttl: int | None, active: bool, provenance: Provenance | None
    ) -> None:
        """Add the PTR record of a canonical address if a reverse zone covers it."""
        reverse_name = dns.reversename.from_address(address.name).to_text()
        if self.zones.lookup_fqdn(reverse_name) is None:
            return
        self.zones.add_rr(reverse_name, ttl, "PTR", host.name, None, active, provenance)

    def _finalize(self, ctx: LoadContext) -> None:
        """Run the checks that need the complete database."""
        for iid in self.iids:
            if iid.use and not iid.in_use:
                self._warn_at(
                    ctx,
                    iid.provenance,
                    f"IPv6 IID {iid.ip}, assigned to host {iid.name}, isn't referenced anywhere",
                )
        for ref in ctx.hosted_on:
            target = ctx.host_cache.get(ref.target.name.lower())
            if target is None:
                with _at(ref.target.provenance):
                    raise DanglingReferenceError(
                        f"{ref.host.name}: hosted-on host {ref.target.name} does not exist"
                    )
            # A host on several subnets references its target once per interface.
            if target.hosting_registry.lookup(ref.host.name) is None:
                target.add_hosting(ref.host)
        for admin, managed in ctx.admin_check.items():
            if managed.lower() in ctx.host_cache or managed.lower() in ctx.alias_cache:
                continue
            console = ctx.host_cache.get(admin.lower())
            self._warn_at(
                ctx,
                console.provenance if console else None,
                f"Console {admin}: managed host {managed} does not exist",
            )


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
