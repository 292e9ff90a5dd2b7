"""Generic case-insensitive registry of Things."""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterable, Iterator, TypeVar

from .models import DuplicateNameError, Thing, previous_definition

T = TypeVar("T", bound=Thing)


class Registry(Generic[T]):
    """Container for Things keyed by their lower-cased names.

    Things can only be added, never removed.  Iteration follows insertion
    order unless a sort key is supplied.
    """

    label = "Generic registry"

    def __init__(self, label: str | None = None):
        """Create an empty registry, optionally overriding its label."""
        if label is not None:
            self.label = label
        self._things: dict[str, T] = {}

    def add(self, thing: T) -> None:
        """Register ``thing``, rejecting case-insensitive duplicates."""
        key = thing.name.lower()
        previous = self._things.get(key)
        if previous is not None:
            raise DuplicateNameError(
                f"{self.label}: duplicate definition of {thing.name}"
                f"{previous_definition(previous.provenance)}"
            )
        self._things[key] = thing

    def lookup(self, name: str) -> T | None:
        """Return the Thing called ``name`` (ignoring case) or None."""
        return self._things.get(name.lower())

    def iterate(self, key: Callable[[T], Any] | None = None) -> Iterable[T]:
        """Return the registered Things.

        Without ``key`` the result is a lazy view that can be iterated any
        number of times.  With ``key`` a stably sorted list is returned.
        """
        if key is None:
            return self._things.values()
        return sorted(self._things.values(), key=key)

    def things(self, key: Callable[[T], Any] | None = None) -> list[T]:
        """Return the registered Things as a list."""
        return list(self.iterate(key))

    def __iter__(self) -> Iterator[T]:
        """Iterate over the Things in insertion order."""
        return iter(self._things.values())

    def __len__(self) -> int:
        """Return the number of registered Things."""
        return len(self._things)

    def __contains__(self, name: object) -> bool:
        """Return True if a Thing called ``name`` is registered."""
        return isinstance(name, str) and name.lower() in self._things

    def __repr__(self) -> str:
        """Return the class, label and size of the registry."""
        return f"<{type(self).__name__} {self.label!r} ({len(self)} entries)>"


def by_name(thing: Thing) -> str:
    """Sort key ordering Things by name."""
    return thing.name
