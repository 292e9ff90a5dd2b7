"""IP subnets grouping stub prefixes and hosts."""

from __future__ import annotations

from typing import Any, Callable

from .host import Host, HostRegistry
from .models import NotCoveredError, Provenance, StubViolationError, Thing, ValidationError
from .prefix import Address, IPAddress, IPNetwork, Prefix, PrefixRegistry
from .registry import Registry


class Network(Thing):
    """A logical IP subnet made of one or more stub prefixes.

    At most one IPv4 prefix is allowed; any number of IPv6 prefixes may be
    attached.  Addresses are stored in the prefix that covers them.
    """

    def __init__(self, name: str, location: str | None = None, provenance: Provenance | None = None):
        """Create a network with empty prefix and host registries."""
        super().__init__(name, provenance)
        self.location = location
        self.prefix_registry = PrefixRegistry("Network prefix registry")
        self.host_registry = HostRegistry()

    def add_prefix(self, prefix: Prefix) -> None:
        """Bind a stub prefix to the network, allowing at most one IPv4 prefix."""
        if not prefix.stub:
            raise StubViolationError(f"Network {self.name}: {prefix.name} is not a stub net")
        if prefix.af == 4 and self.prefix_registry.things(af=4):
            current = ", ".join(p.name for p in self.prefix_registry.things(af=4))
            raise ValidationError(
                f"Network {self.name} can't be associated with more than one IPv4 prefix "
                f"(found: {current}, {prefix.name})"
            )
        self.prefix_registry.add(prefix)

    def prefixes(self, af: int | None = None, key: Callable[[Prefix], Any] | None = None) -> list[Prefix]:
        """Return the network's prefixes, optionally of one family."""
        return self.prefix_registry.things(key, af)

    def add_address(self, address: Address) -> None:
        """Store ``address`` in the prefix of this network that covers it."""
        candidates = self.prefixes(af=address.af)
        for prefix in candidates:
            if prefix.contains(address):
                prefix.add(address)
                return
        covered_by = ", ".join(prefix.name for prefix in candidates)
        raise NotCoveredError(
            f"Address {address.name} not covered by any prefix of network {self.name} ({covered_by})"
        )

    def find_address(self, ip: str | IPNetwork | IPAddress) -> tuple[Prefix | None, list[Prefix]]:
        """Look up ``ip`` among the network's prefixes."""
        return self.prefix_registry.lookup_by_ip(ip)

    def add_host(self, host: Host) -> None:
        """Register a host of this network."""
        self.host_registry.add(host)

    def find_host(self, fqdn: str) -> Host | None:
        """Return the host called ``fqdn``, or None."""
        return self.host_registry.lookup(fqdn)

    def hosts(self, key: Callable[[Host], Any] | None = None) -> list[Host]:
        """Return the network's hosts."""
        return self.host_registry.things(key)

    def find_alias(self, fqdn: str) -> Host | None:
        """Return the host of this network that has ``fqdn`` as an alias."""
        for host in self.host_registry:
            if host.alias_registry.lookup(fqdn) is not None:
                return host
        return None


class NetworkRegistry(Registry[Network]):
    label = "Network registry"

    def find_host(self, fqdn: str) -> list[Host]:
        """Return the hosts called ``fqdn`` across all networks."""
        result: list[Host] = []
        for network in self:
            host = network.find_host(fqdn)
            if host is not None:
                result.append(host)
        return result

    def find_alias(self, fqdn: str) -> Host | None:
        """Return the host that has ``fqdn`` as an alias, in any network."""
        for network in self:
            host = network.find_alias(fqdn)
            if host is not None:
                return host
        return None
