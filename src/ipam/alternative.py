"""Alternatives: labelled switches selecting which DNS facts are active."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from .models import (
    BugError,
    Provenance,
    Thing,
    UnknownAlternativeError,
    UnknownStateError,
    ValidationError,
)
from .registry import Registry


class MappingType(Enum):
    """Kinds of facts an alternative can switch."""

    ADDRESS = "address"
    ALIAS = "alias"
    RR = "rr"


@dataclass(frozen=True)
class AddressMapping:
    """An address of a host that is only published in one state."""

    kind: ClassVar[MappingType] = MappingType.ADDRESS
    host: str
    address: str


@dataclass(frozen=True)
class AliasMapping:
    """An alias (CNAME) of a host that is only published in one state."""

    kind: ClassVar[MappingType] = MappingType.ALIAS
    host: str
    alias: str


@dataclass(frozen=True)
class RRMapping:
    """A raw resource record of a host that is only published in one state."""

    kind: ClassVar[MappingType] = MappingType.RR
    host: str
    type: str
    rdata: str
    ttl: int | None = None
    provenance: Provenance | None = None


Mapping = Union[AddressMapping, AliasMapping, RRMapping]


def describe_mapping(mapping: Mapping) -> str:
    """Return a one-line description of ``mapping``."""
    match mapping:
        case AddressMapping(host=host, address=address):
            return f"{host} address {address}"
        case AliasMapping(host=host, alias=alias):
            return f"{alias} alias for {host}"
        case RRMapping(host=host, type=rtype, rdata=rdata):
            return f"{host} {rtype} {rdata}"
    raise BugError(f"unexpected alternative mapping {mapping!r}")


class Alternative(Thing):
    """A single-state switch over a fixed set of allowed states."""

    def __init__(self, label: str, states: list[str], provenance: Provenance | None = None):
        """Create the switch with its allowed states and no current state."""
        super().__init__(label, provenance)
        self._states: dict[str, dict[MappingType, list[Mapping]]] = {
            state.lower(): {kind: [] for kind in MappingType} for state in states
        }
        self._state: str | None = None

    @property
    def state(self) -> str | None:
        """The currently active state."""
        return self._state

    def set_state(self, state: str) -> str | None:
        """Activate ``state`` and return the previously active one."""
        previous = self._state
        wanted = state.lower()
        if wanted not in self._states:
            raise UnknownStateError(
                f"Can't set alternative {self.name} to {state}: not in list of allowed states "
                f"({', '.join(self.allowed_states())})"
            )
        self._state = wanted
        return previous

    def allowed_states(self) -> list[str]:
        """Return the allowed states in declaration order."""
        return list(self._states)

    def check_state(self, state: str) -> bool | None:
        """Return None for unknown states, else whether ``state`` is active."""
        wanted = state.lower()
        if wanted not in self._states:
            return None
        return self._state == wanted

    def add_mapping(self, state: str, mapping: Mapping) -> None:
        """Record that ``mapping`` is only published in ``state``."""
        wanted = state.lower()
        if wanted not in self._states:
            raise UnknownStateError(f"Illegal state {state!r} for alternative {self.name!r}")
        if self.find_mapping(mapping) is not None:
            raise BugError(
                f"duplicate alternative mapping of type {mapping.kind.value} ({describe_mapping(mapping)})"
            )
        self._states[wanted][mapping.kind].append(mapping)

    def find_mapping(self, mapping: Mapping) -> str | None:
        """Return the state that owns ``mapping`` or None."""
        for state, by_kind in self._states.items():
            if mapping in by_kind[mapping.kind]:
                return state
        return None

    def mappings(self, state: str) -> dict[MappingType, list[Mapping]] | None:
        """Return a copy of the mappings owned by ``state``, or None if it is unknown."""
        by_kind = self._states.get(state.lower())
        if by_kind is None:
            return None
        return {kind: list(items) for kind, items in by_kind.items()}


class AlternativeRegistry(Registry[Alternative]):
    label = "Alternative registry"

    def find_mapping(self, mapping: Mapping) -> tuple[Alternative, str] | None:
        """Return the alternative and state owning ``mapping``, if any."""
        for alternative in self:
            state = alternative.find_mapping(mapping)
            if state is not None:
                return alternative, state
        return None

    def is_active(self, mapping: Mapping) -> bool:
        """Return True unless ``mapping`` belongs to an inactive state."""
        found = self.find_mapping(mapping)
        if found is None:
            return True
        alternative, state = found
        return bool(alternative.check_state(state))

    def parse_selector(self, selector: str) -> tuple[Alternative, str, bool]:
        """Resolve a ``label:state`` reference.

        Returns the alternative, the lower-cased state and whether that state
        is currently active.
        """
        parts = selector.split(":")
        if len(parts) != 2:
            raise ValidationError(f'Malformed alternative specifier "{selector}"')
        label, state = parts
        alternative = self.lookup(label)
        if alternative is None:
            raise UnknownAlternativeError(f'Unknown alternative "{label}"')
        active = alternative.check_state(state)
        if active is None:
            raise UnknownStateError(f'Illegal state "{state}" for alternative "{label}"')
        return alternative, state.lower(), active
