"""
Tests for alternatives: states, mappings and selector parsing.
"""

from __future__ import annotations

import pytest

from ipam.alternative import (
    AddressMapping,
    AliasMapping,
    Alternative,
    AlternativeRegistry,
    MappingType,
    RRMapping,
    describe_mapping,
)
from ipam.models import BugError, UnknownAlternativeError, UnknownStateError, ValidationError


@pytest.fixture()
def registry() -> AlternativeRegistry:
    registry = AlternativeRegistry()
    alternative = Alternative("foo", ["bar", "BAZ"])
    alternative.set_state("bar")
    registry.add(alternative)
    return registry


def test_mapping_under_other_state_is_inactive(registry: AlternativeRegistry) -> None:
    """A fact mapped under 'baz' is inactive until the state switches."""
    alternative = registry.lookup("foo")
    assert alternative is not None
    mapping = AddressMapping("host.example.", "10.0.0.1")
    alternative.add_mapping("baz", mapping)

    assert alternative.check_state("bar") is True
    assert alternative.check_state("baz") is False
    assert alternative.check_state("qux") is None
    assert registry.is_active(mapping) is False

    assert alternative.set_state("BAZ") == "bar"
    assert registry.is_active(mapping) is True
    assert registry.is_active(AliasMapping("host.example.", "www.example.")) is True


def test_unknown_state_is_rejected(registry: AlternativeRegistry) -> None:
    alternative = registry.lookup("foo")
    assert alternative is not None
    with pytest.raises(UnknownStateError, match="not in list of allowed states"):
        alternative.set_state("qux")
    with pytest.raises(UnknownStateError):
        alternative.add_mapping("qux", AliasMapping("a.", "b."))


def test_duplicate_mapping_is_a_bug(registry: AlternativeRegistry) -> None:
    alternative = registry.lookup("foo")
    assert alternative is not None
    alternative.add_mapping("bar", RRMapping("host.example.", "TXT", '"x"'))
    with pytest.raises(BugError):
        alternative.add_mapping("baz", RRMapping("host.example.", "TXT", '"x"'))


def test_mappings_are_grouped_by_kind(registry: AlternativeRegistry) -> None:
    alternative = registry.lookup("foo")
    assert alternative is not None
    alternative.add_mapping("bar", AliasMapping("host.example.", "www.example."))
    alternative.add_mapping("bar", AddressMapping("host.example.", "10.0.0.1"))
    by_kind = alternative.mappings("bar")
    assert by_kind is not None
    assert [describe_mapping(m) for m in by_kind[MappingType.ALIAS]] == ["www.example. alias for host.example."]
    assert [describe_mapping(m) for m in by_kind[MappingType.ADDRESS]] == ["host.example. address 10.0.0.1"]
    assert by_kind[MappingType.RR] == []
    assert registry.find_mapping(AliasMapping("host.example.", "www.example.")) == (alternative, "bar")


def test_parse_selector(registry: AlternativeRegistry) -> None:
    alternative, state, active = registry.parse_selector("FOO:Baz")
    assert alternative.name == "foo"
    assert state == "baz"
    assert active is False
    with pytest.raises(ValidationError):
        registry.parse_selector("foo")
    with pytest.raises(UnknownAlternativeError):
        registry.parse_selector("nope:bar")
    with pytest.raises(UnknownStateError):
        registry.parse_selector("foo:qux")
