"""Read-only queries over a loaded IPAM database.

Results are plain dicts and lists so they can be dumped as YAML or JSON by
the CLI.
"""

from __future__ import annotations

from typing import Any

from .alternative import AddressMapping, AliasMapping, Mapping, describe_mapping
from .controller import IPAM
from .host import Host
from .models import InvalidQueryError, Thing, ValidationError
from .prefix import Address, IPNetwork, Prefix, as_network, by_ip
from .registry import by_name

SELECT_KINDS = ("block", "net", "subnet", "host")


def _detail(thing: Thing) -> dict[str, Any]:
    """Return the provenance, description and tags shared by every answer."""
    info: dict[str, Any] = {}
    if thing.provenance is not None:
        info["defined-at"] = str(thing.provenance)
    if thing.description:
        info["description"] = thing.description
    tags = {tag: ({"inherited-from": sources} if sources else {}) for tag, sources in thing.iter_tags()}
    if tags:
        info["tags"] = tags
    return info


def _alternative_clause(ipam: IPAM, mapping: Mapping) -> dict[str, Any] | None:
    """Describe the alternative state owning ``mapping``, if any."""
    found = ipam.alternatives.find_mapping(mapping)
    if found is None:
        return None
    alternative, state = found
    return {"active": bool(alternative.check_state(state)), "name": f"{alternative.name}:{state}"}


def _with_alternative(ipam: IPAM, entry: dict[str, Any], mapping: Mapping) -> dict[str, Any]:
    """Add the alternative clause of ``mapping`` to ``entry``."""
    clause = _alternative_clause(ipam, mapping)
    if clause is not None:
        entry["alternative"] = clause
    return entry


def _host_info(ipam: IPAM, host: Host) -> dict[str, Any]:
    """Describe a host with its addresses, aliases and hosting relations."""
    info = _detail(host)
    info["network"] = host.network.name
    info["dns"] = host.dns
    info["addresses"] = [
        _with_alternative(
            ipam,
            {"address": address.name, "canonical": address.canonical_host is host},
            AddressMapping(host.name, address.name),
        )
        for address in host.addresses(by_ip)
    ]
    aliases = [
        _with_alternative(ipam, {"name": alias.name}, AliasMapping(host.name, alias.name))
        for alias in host.aliases(by_name)
    ]
    if aliases:
        info["aliases"] = aliases
    if host.hosted_on():
        info["hosted-on"] = [target.name for target in host.hosted_on()]
    if host.hosting():
        info["hosting"] = [guest.name for guest in host.hosting()]
    return info


def nameinfo(ipam: IPAM, fqdn: str) -> dict[str, Any] | None:
    """Describe everything the database knows about ``fqdn``.

    Returns None when the name is neither an object in the database nor the
    owner of any DNS records.
    """
    stripped = fqdn.strip()
    if stripped in {"", ".", "@"}:
        raise InvalidQueryError(f"Invalid name {fqdn!r}")
    name = ipam.fqdn(stripped)

    is_a: dict[str, Any] = {}
    zone = ipam.zones.lookup(name)
    if zone is not None:
        is_a["zone"] = {**_detail(zone), "directory": zone.directory, "ttl": zone.ttl}
    iid = ipam.iids.lookup(name)
    if iid is not None:
        is_a["iid"] = {**_detail(iid), "id": str(iid.ip), "use": iid.use, "in-use": iid.in_use}
    network = ipam.networks.lookup(name)
    if network is not None:
        is_a["subnet"] = {
            **_detail(network),
            "location": network.location,
            "prefixes": [prefix.name for prefix in network.prefixes(key=by_ip)],
            "hosts": [host.name for host in network.hosts(by_name)],
        }
    for prefix in ipam.address_map.lookup_by_id(name):
        entry = {**_detail(prefix), "prefix": prefix.name}
        if prefix.plen is not None:
            entry["plen"] = prefix.plen
        is_a.setdefault("stubnet" if prefix.stub else "address-block", []).append(entry)
    hosts = ipam.networks.find_host(name)
    if hosts:
        is_a["host"] = [_host_info(ipam, host) for host in hosts]
    alias = ipam.aliases.lookup(name)
    if alias is not None:
        is_a["alias"] = {
            "hosts": [
                _with_alternative(ipam, {"name": host.name}, AliasMapping(host.name, alias.name))
                for host in alias.hosts()
            ]
        }

    info: dict[str, Any] = {"name": name, "type": "fqdn"}
    if is_a:
        info["is-a"] = is_a
    found = ipam.zones.lookup_fqdn(name)
    if found is not None:
        owner_zone, relative = found
        domain = owner_zone.lookup_domain(relative)
        if domain is not None:
            info["dns"] = {"zone": owner_zone.name, "records": domain.lines(repeat_owner=True)}
    if "is-a" not in info and "dns" not in info:
        return None
    return info


def _parse_query_prefix(text: str) -> IPNetwork:
    """Parse a query argument, raising InvalidQueryError if malformed."""
    try:
        return as_network(text.strip())
    except ValidationError as exc:
        raise InvalidQueryError(f"Invalid address or prefix {text!r}: {exc}") from exc


def _path_entry(prefix: Prefix) -> dict[str, Any]:
    """Describe one ancestor on a lookup path."""
    return {"prefix": prefix.name, "id": prefix.id, "subtype": prefix.subtype()}


def _address_info(ipam: IPAM, address: Address) -> dict[str, Any]:
    """Describe an address and the hosts it is assigned to."""
    info = _detail(address)
    info["type"] = "address"
    info["address"] = address.name
    info["reserved"] = address.reserved
    canonical = address.canonical_host
    info["canonical-name"] = canonical.name if canonical is not None else None
    info["assigned-to"] = [
        _with_alternative(
            ipam,
            {"host": host.name, "network": host.network.name},
            AddressMapping(host.name, address.name),
        )
        for host in address.hosts()
    ]
    return info


def _prefix_info(prefix: Prefix) -> dict[str, Any]:
    """Describe a block or net."""
    info = _detail(prefix)
    info["type"] = "prefix"
    info["prefix"] = prefix.name
    info["subtype"] = prefix.subtype()
    info["assigned-to"] = prefix.id
    if prefix.plen is not None:
        info["plen"] = prefix.plen
    if prefix.stub:
        if prefix.network is not None:
            info["subnet"] = prefix.network.name
        info["addresses"] = {address.name: address.id for address in prefix.registry.things(by_ip)}
    else:
        info["next-level-prefixes"] = [child.name for child in prefix.registry.things(by_ip)]
    return info


def prefixinfo(ipam: IPAM, text: str) -> dict[str, Any] | None:
    """Describe the address or prefix ``text``.

    An identifier registered as an IPv6 IID is reported as such.  Otherwise
    the most specific registered prefix is described together with the path
    of prefixes above it; ``exact-match`` tells whether that prefix is the one
    asked for.  Returns None if no registered prefix covers ``text``.
    """
    target = _parse_query_prefix(text)
    if target.prefixlen == target.max_prefixlen:
        iid = ipam.iids.lookup_by_ip(target.network_address)
        if iid is not None:
            return {
                "type": "iid",
                "ip": str(iid.ip),
                "iid": {**_detail(iid), "name": iid.name, "use": iid.use, "in-use": iid.in_use},
            }

    match, path = ipam.address_map.lookup_by_ip(target)
    if match is None:
        if not path:
            return None
        match, path = path[-1], path[:-1]
        exact = False
    else:
        exact = True
    if isinstance(match, Address):
        info = _address_info(ipam, match)
    else:
        info = _prefix_info(match)
    info["query"] = str(target)
    info["exact-match"] = exact
    info["path"] = [_path_entry(prefix) for prefix in path]
    return info


def select(ipam: IPAM, kind: str, tags: list[str], match_all: bool = True) -> list[Thing]:
    """Return the blocks, nets, subnets or hosts carrying ``tags``."""
    if kind in ("block", "net"):
        candidates: list[Thing] = [
            prefix for prefix in ipam.address_map.walk() if prefix.stub == (kind == "net")
        ]
    elif kind == "subnet":
        candidates = list(ipam.networks.things(by_name))
    elif kind == "host":
        candidates = [host for network in ipam.networks.things(by_name) for host in network.hosts(by_name)]
    else:
        raise InvalidQueryError(f"Unknown object type {kind!r}, expected one of {', '.join(SELECT_KINDS)}")
    return [thing for thing in candidates if thing.has_tags(tags, match_all)]


def free_space(ipam: IPAM, text: str) -> list[IPNetwork]:
    """Return the parts of a registered prefix not covered by its children."""
    target = _parse_query_prefix(text)
    prefix = ipam.address_map.exact_match(target)
    if prefix is None:
        raise InvalidQueryError(f"{text} is not a registered prefix")
    free = [prefix.ip]
    for child in prefix.registry.things(by_ip):
        remaining: list[IPNetwork] = []
        for block in free:
            if child.ip.subnet_of(block):
                remaining.extend(block.address_exclude(child.ip))
            else:
                remaining.append(block)
        free = remaining
    return sorted(free, key=lambda net: (int(net.network_address), net.prefixlen))


def alternatives(ipam: IPAM) -> list[dict[str, Any]]:
    """List every alternative with its states and the facts they switch."""
    result: list[dict[str, Any]] = []
    for alternative in ipam.alternatives.things(by_name):
        mappings: dict[str, list[str]] = {}
        for state in alternative.allowed_states():
            by_kind = alternative.mappings(state) or {}
            mappings[state] = [describe_mapping(mapping) for items in by_kind.values() for mapping in items]
        entry = {
            **_detail(alternative),
            "label": alternative.name,
            "state": alternative.state,
            "allowed-states": alternative.allowed_states(),
            "mappings": mappings,
        }
        if alternative.ttl is not None:
            entry["ttl"] = alternative.ttl
        result.append(entry)
    return result
