"""
Tests for the Thing base class, tags, provenance and the generic registry.
"""

from __future__ import annotations

import pytest

from ipam.models import (
    BugError,
    DuplicateNameError,
    LoadError,
    Provenance,
    TagError,
    Thing,
    ensure_absolute,
)
from ipam.registry import Registry, by_name


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_is_case_insensitive() -> None:
    """Names differing only in case collide; lookups ignore case."""
    registry: Registry[Thing] = Registry("Test registry")
    first = Thing("Host.Example.", Provenance("a.yaml", 3))
    registry.add(first)
    assert registry.lookup("host.example.") is first
    assert "HOST.EXAMPLE." in registry
    with pytest.raises(DuplicateNameError, match=r"previous definition at a\.yaml, line 3"):
        registry.add(Thing("host.example."))


def test_registry_iteration_order() -> None:
    """Iteration keeps insertion order unless a sort key is given."""
    registry: Registry[Thing] = Registry()
    for name in ("b", "c", "a"):
        registry.add(Thing(name))
    assert [thing.name for thing in registry] == ["b", "c", "a"]
    assert [thing.name for thing in registry.things(by_name)] == ["a", "b", "c"]
    view = registry.iterate()
    assert [thing.name for thing in view] == [thing.name for thing in view]
    assert len(registry) == 3


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def test_tags_are_inherited_and_extended() -> None:
    """Effective tags are inherited tags plus explicit ones minus removals."""
    parent = Thing("parent")
    parent.set_tags("red green")
    other = Thing("other")
    other.set_tags(["green", "blue"])
    child = Thing("child")
    child.set_tags("!red yellow", parent, other)
    assert dict(child.iter_tags()) == {
        "blue": ["other"],
        "green": ["parent", "other"],
        "yellow": [],
    }
    assert child.has_tags(["green", "yellow"])
    assert not child.has_tags(["green", "red"])
    assert child.has_tags(["green", "red"], match_all=False)
    assert child.has_tags([])


def test_removing_a_tag_that_is_not_inherited_fails() -> None:
    """Only inherited tags can be removed."""
    thing = Thing("thing")
    with pytest.raises(TagError):
        thing.set_tags("!red")


def test_duplicate_tags_fail() -> None:
    """Tags can't be set twice or re-set when inherited."""
    parent = Thing("parent")
    parent.set_tags("red")
    with pytest.raises(TagError, match="already inherited from parent"):
        Thing("child").set_tags("red", parent)
    with pytest.raises(TagError):
        Thing("other").set_tags("blue blue")


# ---------------------------------------------------------------------------
# Names, provenance and errors
# ---------------------------------------------------------------------------

def test_ensure_absolute() -> None:
    assert ensure_absolute("example.com") == "example.com."
    assert ensure_absolute("example.com.") == "example.com."
    assert ensure_absolute("@") == "."


def test_load_error_carries_provenance() -> None:
    """LoadError renders as '<msg> at <file>, line <n>'."""
    error = LoadError("broken", Provenance("db.yaml", 12))
    assert str(error) == "broken at db.yaml, line 12"
    assert error.message == "broken"
    assert Provenance("db.yaml", 12).short() == "db.yaml:12"


def test_bug_error_is_prefixed() -> None:
    assert str(BugError("impossible")) == "BUG: impossible"
