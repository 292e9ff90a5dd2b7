"""Hosts and the global alias registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from .models import NotCoveredError, Provenance, Thing
from .prefix import Address, AddressRegistry
from .registry import Registry, by_name

if TYPE_CHECKING:
    from .network import Network


class Host(Thing):
    """A named endpoint attached to exactly one network."""

    def __init__(self, name: str, network: Network, provenance: Provenance | None = None):
        """Create a host on ``network`` with DNS publishing enabled."""
        super().__init__(name, provenance)
        self.network = network
        self.dns = True
        self.address_registry = AddressRegistry()
        self.alias_registry: Registry[Thing] = Registry("Alias registry")
        self.hosted_on_registry: Registry[Thing] = Registry("Hosted-on registry")
        self.hosting_registry: Registry[Host] = Registry("Hosting registry")

    def add_address(self, address: Address) -> None:
        """Attach an address that already belongs to the host's network."""
        match, _ = self.network.find_address(address.ip)
        if match is not address:
            raise NotCoveredError(
                f"{self.name}: address {address.name} is not registered in network {self.network.name}"
            )
        self.address_registry.add(address)

    def addresses(self, key: Callable[[Any], Any] | None = None, af: int | None = None) -> list[Address]:
        """Return the host's addresses, optionally of one family."""
        return self.address_registry.things(key, af)

    def add_alias(self, alias: Thing) -> None:
        """Register an alias name of the host."""
        self.alias_registry.add(alias)

    def aliases(self, key: Callable[[Thing], Any] | None = None) -> list[Thing]:
        """Return the host's aliases."""
        return self.alias_registry.things(key)

    def add_hosted_on(self, target: Thing) -> None:
        """Record that the host runs on ``target``."""
        self.hosted_on_registry.add(target)

    def hosted_on(self) -> list[Thing]:
        """Return the Things the host runs on."""
        return self.hosted_on_registry.things()

    def add_hosting(self, host: Host) -> None:
        """Record that ``host`` runs on this host."""
        self.hosting_registry.add(host)

    def hosting(self) -> list[Host]:
        """Return the hosts running on this host, by name."""
        return self.hosting_registry.things(by_name)


class HostRegistry(Registry[Host]):
    label = "Host registry"


class Alias(Thing):
    """Global record of an alias name and every host that claims it."""

    def __init__(self, name: str, provenance: Provenance | None = None):
        """Create an alias with no hosts yet."""
        super().__init__(name, provenance)
        self._hosts: list[Host] = []

    def add_host(self, host: Host) -> None:
        """Add a host that claims the alias."""
        self._hosts.append(host)

    def hosts(self) -> list[Host]:
        """Return the claiming hosts, by name."""
        return sorted(self._hosts, key=by_name)


class AliasRegistry(Registry[Alias]):
    label = "Alias registry"
