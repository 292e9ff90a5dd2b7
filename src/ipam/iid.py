"""IPv6 interface identifiers."""

from __future__ import annotations

from ipaddress import IPv6Address, IPv6Network

from .models import MalformedAddressError, Provenance, Thing, ValidationError, previous_definition
from .prefix import IPAddress, Prefix
from .registry import Registry

_ZERO_SUBNET = IPv6Network("::/64")


class IID(Thing):
    """An interface identifier assigned to the host named by the IID."""

    def __init__(self, name: str, id: str, provenance: Provenance | None = None):
        """Parse ``id`` and check that it lies within ::/64."""
        super().__init__(name, provenance)
        stripped = id.strip()
        try:
            self.ip = IPv6Address(stripped)
        except ValueError as exc:
            raise MalformedAddressError(f"{name}: Malformed IPv6 address {stripped}") from exc
        if self.ip not in _ZERO_SUBNET:
            raise ValidationError(f"{name}: IID {stripped} not within ::/64")
        self.use = True
        self.in_use = False

    def synthesize(self, prefix: Prefix) -> IPv6Address:
        """Combine the IID with a /64 ``prefix`` into a full address."""
        if prefix.af != 6 or prefix.ip.prefixlen != 64:
            raise ValidationError(
                f"{self.name}: Synthesizing of IPv6 address from IID failed: requires a /64, "
                f"but conflicts with {prefix.name}"
            )
        return IPv6Address(int(prefix.ip.network_address) + int(self.ip))


class IIDRegistry(Registry[IID]):
    label = "IID registry"

    def add(self, iid: IID) -> None:
        """Register ``iid``, rejecting a second host with the same identifier."""
        for existing in self:
            if existing.ip == iid.ip:
                raise ValidationError(
                    f"{self.label}: Duplicate definition of {iid.ip}{previous_definition(existing.provenance)}"
                )
        super().add(iid)

    def lookup_by_ip(self, ip: IPAddress) -> IID | None:
        """Return the IID whose identifier equals ``ip``."""
        if ip.version != 6:
            return None
        for iid in self:
            if iid.ip == ip:
                return iid
        return None
