"""
Tests for prefixes, addresses and the prefix registries.

Covers parsing, non-overlap of siblings with random CIDRs, containment and
plen rules, stub restrictions, longest-prefix match and lookup by id.
"""

from __future__ import annotations

import itertools
import random
from ipaddress import IPv4Network, ip_network

import pytest

from ipam.address_map import AddressMap
from ipam.host import Host
from ipam.models import (
    AddressFamilyMismatchError,
    AlreadyCanonicalError,
    DuplicateNameError,
    MalformedAddressError,
    NonZeroHostPartError,
    NotAnAddressError,
    NotMoreSpecificError,
    OverlapError,
    PlenMismatchError,
    ReservedAddressError,
    StubViolationError,
    ValidationError,
)
from ipam.network import Network
from ipam.prefix import Address, Prefix, PrefixRegistry, nth_host


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def test_prefix_is_normalised() -> None:
    """Prefixes keep their canonical CIDR text as name."""
    prefix = Prefix(" 2001:DB8::/32 ")
    assert prefix.name == "2001:db8::/32"
    assert prefix.af == 6
    assert prefix.max_plen == 128


def test_malformed_prefix_is_rejected() -> None:
    """Unparseable text raises MalformedAddressError."""
    with pytest.raises(MalformedAddressError):
        Prefix("10.0.0.300/24")


def test_non_zero_host_part_is_rejected() -> None:
    """A prefix with host bits set raises NonZeroHostPartError."""
    with pytest.raises(NonZeroHostPartError):
        Prefix("10.0.0.1/24")


def test_address_requires_maximum_length() -> None:
    """Address rejects anything but a host route."""
    assert Address("10.0.0.1").name == "10.0.0.1"
    assert Address("2001:db8::1/128").name == "2001:db8::1"
    with pytest.raises(NotAnAddressError):
        Address("10.0.0.0/24")


# ---------------------------------------------------------------------------
# Registry invariants
# ---------------------------------------------------------------------------

def test_random_siblings_never_overlap() -> None:
    """Whatever a registry accepts, no two of its members overlap."""
    rng = random.Random(20240501)
    registry = PrefixRegistry()
    rejected = 0
    for _ in range(400):
        network = IPv4Network((rng.getrandbits(32), rng.randint(4, 28)), strict=False)
        try:
            registry.add(Prefix(str(network)))
        except (OverlapError, DuplicateNameError):
            rejected += 1
    members = registry.things()
    assert members
    assert rejected > 0
    for first, second in itertools.combinations(members, 2):
        assert not first.ip.overlaps(second.ip)


def test_overlapping_sibling_is_rejected() -> None:
    """10.0.0.0/25 can't be added next to 10.0.0.0/24."""
    registry = PrefixRegistry()
    registry.add(Prefix("10.0.0.0/24"))
    with pytest.raises(OverlapError):
        registry.add(Prefix("10.0.0.0/25"))


def test_identical_prefix_is_a_duplicate() -> None:
    """Adding the same CIDR twice is a duplicate name."""
    registry = PrefixRegistry()
    registry.add(Prefix("10.0.0.0/24"))
    with pytest.raises(DuplicateNameError):
        registry.add(Prefix("10.0.0.0/24"))


def test_families_are_indexed_separately() -> None:
    """Per-family iteration only returns prefixes of that family."""
    registry = PrefixRegistry()
    registry.add(Prefix("10.0.0.0/8"))
    registry.add(Prefix("2001:db8::/32"))
    assert [p.name for p in registry.things(af=4)] == ["10.0.0.0/8"]
    assert [p.name for p in registry.things(af=6)] == ["2001:db8::/32"]
    assert registry.af_list() == [4, 6]


# ---------------------------------------------------------------------------
# Containment
# ---------------------------------------------------------------------------

def test_child_must_be_more_specific() -> None:
    """A child equal to or outside the parent is rejected."""
    parent = Prefix("10.0.0.0/16")
    with pytest.raises(NotMoreSpecificError):
        parent.add(Prefix("10.0.0.0/16"))
    with pytest.raises(NotMoreSpecificError):
        parent.add(Prefix("10.1.0.0/24"))
    with pytest.raises(AddressFamilyMismatchError):
        parent.add(Prefix("2001:db8::/64"))


def test_plen_constrains_children() -> None:
    """Children must have the parent's required prefix length."""
    parent = Prefix("10.0.0.0/16")
    parent.plen = 24
    parent.add(Prefix("10.0.1.0/24"))
    with pytest.raises(PlenMismatchError):
        parent.add(Prefix("10.0.2.0/25"))


def test_plen_must_be_longer_than_prefix() -> None:
    """plen has to lie between the prefix length and the family maximum."""
    prefix = Prefix("10.0.0.0/16")
    with pytest.raises(ValidationError):
        prefix.plen = 16
    with pytest.raises(ValidationError):
        prefix.plen = 33
    with pytest.raises(ValidationError):
        prefix.plen = "abc"
    prefix.plen = "24"
    assert prefix.plen == 24


def test_stub_accepts_addresses_only() -> None:
    """Stub nets hold addresses, never further prefixes."""
    stub = Prefix("10.0.0.0/24", stub=True)
    stub.add(Address("10.0.0.1"))
    with pytest.raises(StubViolationError):
        stub.add(Prefix("10.0.0.128/25"))


def test_network_binding_requires_stub() -> None:
    """Only stub prefixes can be bound to a network."""
    block = Prefix("10.0.0.0/16")
    with pytest.raises(StubViolationError):
        block.network = Network("lan.example.")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

@pytest.fixture()
def address_map() -> AddressMap:
    """10.0.0.0/8 > 10.1.0.0/16 > 10.1.2.0/24 (stub) plus a v6 block."""
    amap = AddressMap()
    top = Prefix("10.0.0.0/8", "top.example.")
    amap.add(top)
    mid = Prefix("10.1.0.0/16", "mid.example.")
    top.add(mid)
    mid.add(Prefix("10.1.2.0/24", "lan.example.", stub=True))
    v6 = Prefix("2001:db8::/32", "v6.example.")
    amap.add(v6)
    v6.add(Prefix("2001:db8:0:1::/64", "LAN.example.", stub=True))
    return amap


def test_lookup_by_ip_returns_exact_match_and_path(address_map: AddressMap) -> None:
    """An exact match comes with the chain of strictly containing prefixes."""
    match, path = address_map.lookup_by_ip("10.1.2.0/24")
    assert match is not None and match.name == "10.1.2.0/24"
    assert [p.name for p in path] == ["10.0.0.0/8", "10.1.0.0/16"]
    for outer, inner in zip(path, path[1:]):
        assert inner.ip.subnet_of(outer.ip) and inner.ip != outer.ip
    assert match.ip.subnet_of(path[-1].ip)


def test_lookup_by_ip_without_exact_match(address_map: AddressMap) -> None:
    """Uncovered targets return the covering path only."""
    match, path = address_map.lookup_by_ip("10.1.3.0/24")
    assert match is None
    assert [p.name for p in path] == ["10.0.0.0/8", "10.1.0.0/16"]
    assert address_map.lookup_by_ip("192.168.0.1") == (None, [])


def test_lookup_by_ip_top_level(address_map: AddressMap) -> None:
    """A top-level exact match has an empty path."""
    match, path = address_map.lookup_by_ip(ip_network("10.0.0.0/8"))
    assert match is not None and match.id == "top.example."
    assert path == []


def test_lookup_by_id_is_case_insensitive(address_map: AddressMap) -> None:
    """Ids are matched ignoring case, optionally only stub nets."""
    found = address_map.lookup_by_id("lan.EXAMPLE.")
    assert sorted(p.name for p in found) == ["10.1.2.0/24", "2001:db8:0:1::/64"]
    assert address_map.lookup_by_id("mid.example.", stub_only=True) == []
    assert [p.name for p in address_map.lookup_by_id("mid.example.")] == ["10.1.0.0/16"]


def test_walk_is_depth_first(address_map: AddressMap) -> None:
    """walk() yields parents before children in address order."""
    assert [p.name for p in address_map.walk()] == [
        "10.0.0.0/8",
        "10.1.0.0/16",
        "10.1.2.0/24",
        "2001:db8::/32",
        "2001:db8:0:1::/64",
    ]


# ---------------------------------------------------------------------------
# Addresses and canonical hosts
# ---------------------------------------------------------------------------

def test_canonical_address_lookup() -> None:
    """An address set as canonical for foo.example. is found by IP."""
    amap = AddressMap()
    net = Prefix("10.0.0.0/24", "lan.example.", stub=True)
    amap.add(net)
    network = Network("lan.example.")
    network.add_prefix(net)
    host = Host("foo.example.", network)
    address = Address("10.0.0.5")
    network.add_address(address)
    address.set_canonical_host(host)

    match, path = amap.lookup_by_ip("10.0.0.5")
    assert match is address
    assert match.canonical_host is not None
    assert match.canonical_host.name == "foo.example."
    assert match.id == "foo.example."
    assert path == [net]


def test_canonical_host_is_assigned_once() -> None:
    """A second canonical host and reserved addresses are rejected."""
    network = Network("lan.example.")
    network.add_prefix(Prefix("10.0.0.0/24", "lan.example.", stub=True))
    address = Address("10.0.0.5")
    address.set_canonical_host(Host("a.example.", network))
    with pytest.raises(AlreadyCanonicalError):
        address.set_canonical_host(Host("b.example.", network))

    reserved = Address("10.0.0.6", reserved=True)
    assert reserved.id == "<RESERVED>"
    with pytest.raises(ReservedAddressError):
        reserved.set_canonical_host(Host("c.example.", network))
    assert Address("10.0.0.7").id == "<no canonical name>"


def test_nth_host_skips_network_address() -> None:
    """Usable addresses start after the network address except for /31 and /32."""
    assert str(nth_host(ip_network("10.0.0.0/24"), 0)) == "10.0.0.1"
    assert str(nth_host(ip_network("10.0.0.0/24"), 6)) == "10.0.0.7"
    assert str(nth_host(ip_network("10.0.0.0/31"), 0)) == "10.0.0.0"
