"""The address map: root of the prefix hierarchy."""

from __future__ import annotations

from typing import Iterable

from .models import Provenance, Thing
from .prefix import IPAddress, IPNetwork, Prefix, PrefixRegistry


class AddressMap(Thing):
    """Holds the top-level blocks and nets of the address plan."""

    def __init__(self, name: str = "Address Map", provenance: Provenance | None = None):
        """Create an empty address map."""
        super().__init__(name, provenance)
        self.registry = PrefixRegistry("Address map")

    def add(self, prefix: Prefix) -> None:
        """Register a top-level prefix."""
        self.registry.add(prefix)

    def lookup_by_ip(self, ip: str | IPNetwork | IPAddress) -> tuple[Prefix | None, list[Prefix]]:
        """Return the exact match for ``ip`` and the path of covering prefixes.

        The path lists the strictly containing ancestors even when the match
        is exact; it is empty only for a top-level match or a miss.
        """
        return self.registry.lookup_by_ip(ip)

    def exact_match(self, ip: str | IPNetwork | IPAddress) -> Prefix | None:
        """Return the prefix registered exactly as ``ip``, or None."""
        match, _ = self.registry.lookup_by_ip(ip)
        return match

    def lookup_by_id(self, id: str, stub_only: bool = False) -> list[Prefix]:
        """Return the top-level prefixes whose id is ``id``."""
        return self.registry.lookup_by_id(id, stub_only)

    def walk(self) -> Iterable[Prefix]:
        """Yield every block and net, depth-first in address order."""
        return self.registry.walk()
