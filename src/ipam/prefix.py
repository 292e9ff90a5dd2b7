"""Network prefixes, addresses and the registries that hold them."""

from __future__ import annotations

from ipaddress import (
    IPv4Address,
    IPv4Network,
    IPv6Address,
    IPv6Network,
    ip_address,
    ip_interface,
    ip_network,
)
from typing import TYPE_CHECKING, Any, Callable, Iterable, Union

from .models import (
    AF_INFO,
    AddressFamilyMismatchError,
    AlreadyCanonicalError,
    MalformedAddressError,
    NonZeroHostPartError,
    NotAnAddressError,
    NotMoreSpecificError,
    OverlapError,
    PlenMismatchError,
    Provenance,
    ReservedAddressError,
    StubViolationError,
    Thing,
    ValidationError,
)
from .registry import Registry

if TYPE_CHECKING:
    from .host import Host
    from .network import Network

IPNetwork = Union[IPv4Network, IPv6Network]
IPAddress = Union[IPv4Address, IPv6Address]


def parse_prefix(text: str) -> IPNetwork:
    """Parse ``text`` as a prefix with an all-zero host part."""
    stripped = str(text).strip()
    try:
        iface = ip_interface(stripped)
    except ValueError as exc:
        raise MalformedAddressError(f"Malformed prefix or address: {stripped}") from exc
    if iface.ip != iface.network.network_address:
        raise NonZeroHostPartError(f"Not a proper prefix (non-zero host part): {stripped}")
    return iface.network


def as_network(value: str | IPNetwork | IPAddress) -> IPNetwork:
    """Return ``value`` as a network object; plain addresses become host routes."""
    if isinstance(value, (IPv4Network, IPv6Network)):
        return value
    if isinstance(value, (IPv4Address, IPv6Address)):
        return ip_network(value)
    return parse_prefix(value)


class Prefix(Thing):
    """A CIDR prefix with a registry of more-specific prefixes.

    Stub prefixes (nets) hold an ``AddressRegistry`` instead and may be bound
    to a ``Network``.
    """

    def __init__(
        self,
        text: str,
        id: str | None = None,
        stub: bool = False,
        provenance: Provenance | None = None,
    ):
        """Parse ``text`` and create an empty child registry."""
        ip = parse_prefix(text)
        super().__init__(str(ip), provenance)
        self.ip: IPNetwork = ip
        self.id = id
        self.stub = stub
        self._plen: int | None = None
        self._network: Network | None = None
        self.registry: PrefixRegistry = AddressRegistry() if stub else PrefixRegistry()

    @property
    def af(self) -> int:
        """Return the address family (4 or 6)."""
        return self.ip.version

    @property
    def max_plen(self) -> int:
        """Return the longest prefix length of the address family."""
        return int(AF_INFO[self.af]["max_plen"])

    @property
    def plen(self) -> int | None:
        """Required prefix length of all sub-prefixes, if any."""
        return self._plen

    @plen.setter
    def plen(self, value: int | str | None) -> None:
        """Set the required length of sub-prefixes, accepting numeric strings."""
        if value is None:
            self._plen = None
            return
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise ValidationError(f"Can't set plen {value} for {self.name}: not numeric.")
            value = int(value)
        if value > self.max_plen:
            raise ValidationError(
                f"Can't set plen {value} for {self.name}: larger than the maximum value {self.max_plen}."
            )
        if value <= self.ip.prefixlen:
            raise ValidationError(
                f"Can't set plen {value} for {self.name}: too small (must be >{self.ip.prefixlen})."
            )
        self._plen = value

    @property
    def network(self) -> Network | None:
        """The Network bound to this stub prefix."""
        return self._network

    @network.setter
    def network(self, network: Network) -> None:
        """Bind ``network``; only stub prefixes can have one."""
        if not self.stub:
            raise StubViolationError(f"Can't add network {network.name} to non-stub prefix {self.name}")
        self._network = network

    def contains(self, other: Prefix) -> bool:
        """Return True if ``other`` lies within this prefix (identity included)."""
        return other.af == self.af and other.ip.subnet_of(self.ip)

    def add(self, child: Prefix) -> None:
        """Register a more-specific prefix (or an address for stubs)."""
        if child.af != self.af:
            raise AddressFamilyMismatchError(
                f"Can't add {child.name} to prefix {self.name}: address family mismatch"
            )
        if not self.contains(child) or child.ip == self.ip:
            raise NotMoreSpecificError(f"Can't add {child.name} to {self.name}: not a more-specific prefix")
        if self.stub and not isinstance(child, Address):
            raise StubViolationError(f"Can't add a prefix {child.name} to a stub network {self.name}")
        if self._plen is not None and self._plen != child.ip.prefixlen:
            where = f" (defined at {self.provenance})" if self.provenance else ""
            raise PlenMismatchError(
                f"Prefix length of {child.name} does not match required prefix length "
                f"{self._plen} of containing prefix {self.name}{where}"
            )
        self.registry.add(child)

    def subtype(self) -> str:
        """Return ``stubnet`` for nets and ``block`` otherwise."""
        return "stubnet" if self.stub else "block"


class Address(Prefix):
    """A single address: a prefix of maximum length bound to hosts."""

    def __init__(self, text: str, reserved: bool = False, provenance: Provenance | None = None):
        """Parse ``text``, which must be a single address."""
        self._canonical: Host | None = None
        super().__init__(text, provenance=provenance)
        if self.ip.prefixlen != self.max_plen:
            raise NotAnAddressError(f"Prefix {self.name} found where address expected")
        self.name = str(self.ip.network_address)
        self.reserved = reserved
        self.hosts_registry: Registry[Host] = Registry("Host registry")

    @property
    def address(self) -> IPAddress:
        """The address as an ``ipaddress`` object."""
        return self.ip.network_address

    @property
    def id(self) -> str | None:
        """The canonical host name, or a marker for reserved and unassigned addresses."""
        if self.reserved:
            return "<RESERVED>"
        if self._canonical is None:
            return "<no canonical name>"
        return self._id

    @id.setter
    def id(self, value: str | None) -> None:
        """Set the id shown once a canonical host exists."""
        self._id = value

    @property
    def canonical_host(self) -> Host | None:
        """The host whose name the PTR record points to."""
        return self._canonical

    def set_canonical_host(self, host: Host) -> None:
        """Make ``host`` the canonical (reverse DNS) host of this address."""
        if self._canonical is not None:
            where = f" at {self._canonical.provenance}" if self._canonical.provenance else ""
            raise AlreadyCanonicalError(
                f"Can't set {host.name} as canonical host for {self.name}: "
                f"already assigned to {self._canonical.name}{where}"
            )
        if self.reserved:
            raise ReservedAddressError(
                f"Can't set {host.name} as canonical host for {self.name}: marked as reserved"
            )
        self._canonical = host
        self._id = host.name
        self.description = host.description

    def add_host(self, host: Host) -> None:
        """Record that ``host`` uses this address."""
        self.hosts_registry.add(host)

    def hosts(self) -> list[Host]:
        """Return the hosts using this address."""
        return self.hosts_registry.things()


class PrefixRegistry(Registry[Prefix]):
    """Registry of non-overlapping prefixes with a per-family index."""

    label = "Prefix registry"

    def __init__(self, label: str | None = None):
        """Create an empty registry."""
        super().__init__(label)
        self._by_af: dict[int, dict[str, Prefix]] = {}

    def add(self, prefix: Prefix) -> None:
        """Register ``prefix``, rejecting overlaps with same-family siblings."""
        # TODO: linear scan per insertion; switch to a sorted interval index for large address maps.
        for existing in self._by_af.get(prefix.af, {}).values():
            if existing.ip != prefix.ip and (existing.contains(prefix) or prefix.contains(existing)):
                raise OverlapError(f"{self.label}: can't add prefix {prefix.name}, overlaps with {existing.name}")
        # Identical prefixes are caught by the name check.
        super().add(prefix)
        self._by_af.setdefault(prefix.af, {})[prefix.name.lower()] = prefix

    def iterate(self, key: Callable[[Prefix], Any] | None = None, af: int | None = None) -> Iterable[Prefix]:
        """Like ``Registry.iterate``, optionally limited to one address family."""
        if af is None:
            return super().iterate(key)
        members = self._by_af.get(af, {}).values()
        if key is None:
            return members
        return sorted(members, key=key)

    def things(self, key: Callable[[Prefix], Any] | None = None, af: int | None = None) -> list[Prefix]:
        """Return the prefixes as a list, optionally of one address family."""
        return list(self.iterate(key, af))

    def af_list(self) -> list[int]:
        """Return the address families present in the registry."""
        return sorted(af for af, members in self._by_af.items() if members)

    def lookup_by_ip(self, ip: str | IPNetwork | IPAddress) -> tuple[Prefix | None, list[Prefix]]:
        """Longest-prefix match for ``ip``.

        Returns the exactly matching prefix (or None) and the list of strictly
        covering prefixes traversed on the way down, most specific last.  The
        path is returned for exact matches too, so it is only empty when the
        match (or miss) is at this level: ``10.0.0.5`` in a stub net
        ``10.0.0.0/24`` gives ``(<10.0.0.5>, [<10.0.0.0/24>])``.
        """
        target = as_network(ip)
        for prefix in self.iterate(af=target.version):
            if prefix.ip == target:
                return prefix, []
            if target.subnet_of(prefix.ip):
                if isinstance(prefix, Address):
                    break
                match, path = prefix.registry.lookup_by_ip(target)
                return match, [prefix, *path]
        return None, []

    def lookup_by_id(self, id: str, stub_only: bool = False) -> list[Prefix]:
        """Return all prefixes whose id equals ``id`` (ignoring case)."""
        wanted = id.lower()
        result: list[Prefix] = []
        for prefix in self:
            if prefix.id is not None and prefix.id.lower() == wanted and (prefix.stub or not stub_only):
                result.append(prefix)
            # Stub nets hold addresses only.
            if not prefix.stub and not isinstance(prefix, Address):
                result.extend(prefix.registry.lookup_by_id(id, stub_only))
        return result

    def walk(self) -> Iterable[Prefix]:
        """Yield all prefixes depth-first, stopping at stub nets."""
        for prefix in self.iterate(key=by_ip):
            yield prefix
            if not prefix.stub and not isinstance(prefix, Address):
                yield from prefix.registry.walk()


class AddressRegistry(PrefixRegistry):
    """Registry of addresses within a stub net or held by a host."""

    label = "Address registry"


def by_ip(prefix: Prefix) -> tuple[int, int, int]:
    """Sort key ordering prefixes by family, address and length."""
    return (prefix.af, int(prefix.ip.network_address), prefix.ip.prefixlen)


def nth_host(ip: IPNetwork, n: int) -> IPAddress:
    """Return the ``n``-th usable address of ``ip``, counting from zero."""
    offset = 0 if ip.prefixlen >= ip.max_prefixlen - 1 else 1
    return ip_address(int(ip.network_address) + offset + n)
