"""Command-line entry point for ipam."""

from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any

import yaml

from .cache import load_cached, store
from .config import AppConfig, load_config
from .controller import IPAM, configure_logging
from .exporter import render_zone, write_zone_files
from .models import IpamError, QueryError, ensure_absolute
from .query import SELECT_KINDS, alternatives, free_space, nameinfo, prefixinfo, select

ADDRESS_LIKE = re.compile(r"^(?:[0-9a-fA-F]*:[0-9a-fA-F:.]*|\d+(?:\.\d+){3})(?:/\d+)?$")


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Query the IPAM database and generate DNS zone data.")
    parser.add_argument("--log-level", help="Override log level (default from config).")
    parser.add_argument("--database", help="Path to the IPAM database (default from config).")
    parser.add_argument("--no-cache", action="store_true", help="Always load the database from source.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress while loading the database.")
    parser.add_argument(
        "-e",
        "--var",
        action="append",
        help="Template variable in KEY=VALUE form. Can be repeated.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("check", help="Load the database and report problems.")

    whatis_parser = subparsers.add_parser("whatis", help="Describe names, addresses or prefixes.")
    whatis_parser.add_argument("items", nargs="+", help="FQDNs, addresses or prefixes.")
    _register_format_argument(whatis_parser)

    zones_parser = subparsers.add_parser("gen-zones", help="Write zone data files.")
    zones_parser.add_argument("--zone", action="append", help="Only this zone. Can be repeated.")
    zones_parser.add_argument("--output", help="Output directory (default from config).")
    zones_parser.add_argument("--annotate", action="store_true", help="Add file:line of each record.")
    zones_parser.add_argument("--stdout", action="store_true", help="Print zone data instead of writing it.")

    select_parser = subparsers.add_parser("select", help="List objects carrying tags.")
    select_parser.add_argument("kind", choices=SELECT_KINDS, help="Type of object to select.")
    select_parser.add_argument("tags", nargs="*", help="Tags to match.")
    select_parser.add_argument("--any", action="store_true", help="Match any instead of all tags.")

    free_parser = subparsers.add_parser("free", help="Show unallocated space of a prefix.")
    free_parser.add_argument("prefix", help="A registered prefix.")

    alternatives_parser = subparsers.add_parser("alternatives", help="List alternatives and their states.")
    _register_format_argument(alternatives_parser)

    subparsers.add_parser("create-cache", help="Load the database and write the cache file.")
    return parser


def _register_format_argument(subparser: argparse.ArgumentParser) -> None:
    """Add the shared ``--format`` option to a sub-command."""
    subparser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Serialization format of the output.",
    )


def _parse_template_vars(values: list[str] | None) -> dict[str, str]:
    """Convert KEY=VALUE pairs into a dict."""
    result: dict[str, str] = {}
    if not values:
        return result
    for value in values:
        if "=" not in value:
            raise IpamError(f"Invalid template var '{value}', expected KEY=VALUE.")
        key, val = value.split("=", 1)
        result[key] = val
    return result


def _emit(data: Any, fmt: str) -> None:
    """Print ``data`` as YAML or JSON."""
    if fmt == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, sort_keys=False), end="")


def _database(config: AppConfig, args: argparse.Namespace) -> Path:
    """Return the database path from the command line or the configuration."""
    return Path(args.database).resolve() if args.database else config.database


def _load(config: AppConfig, args: argparse.Namespace) -> IPAM:
    """Load the database, through the cache unless disabled."""
    template_vars = _parse_template_vars(args.var)
    database = _database(config, args)
    if args.no_cache or not config.use_cache:
        return IPAM(args.verbose).load_file(database, template_vars)
    return load_cached(database, config.cache_file, template_vars, args.verbose)


def _run_check(config: AppConfig, args: argparse.Namespace) -> None:
    """Load the database without the cache and report its warnings."""
    ipam = IPAM(args.verbose).load_file(_database(config, args), _parse_template_vars(args.var))
    for warning in ipam.warnings:
        print(f"Warning: {warning}")
    print(f"Database OK ({len(ipam.warnings)} warnings).")


def _run_whatis(ipam: IPAM, args: argparse.Namespace) -> None:
    """Describe each item as an address, prefix or name."""
    results: dict[str, Any] = {}
    for item in args.items:
        try:
            if ADDRESS_LIKE.match(item):
                results[item] = prefixinfo(ipam, item)
            else:
                results[item] = nameinfo(ipam, item)
        except QueryError as exc:
            results[item] = {"error": str(exc)}
    _emit(results, args.format)


def _run_gen_zones(ipam: IPAM, config: AppConfig, args: argparse.Namespace) -> None:
    """Write the zone files, or print them with ``--stdout``."""
    annotate = args.annotate or config.annotate
    output_dir = Path(args.output).resolve() if args.output else config.zone_output_dir
    if args.stdout:
        names = args.zone or [zone.name for zone in ipam.zones]
        for name in names:
            zone = ipam.zones.lookup(ensure_absolute(name))
            if zone is None:
                raise IpamError(f"Unknown zone {name}")
            print(render_zone(zone, output_dir, annotate, config.templates_dir).text, end="")
        return
    for path in write_zone_files(ipam, output_dir, annotate, config.templates_dir, args.zone):
        print(f"Wrote {path}")


def _run_select(ipam: IPAM, args: argparse.Namespace) -> None:
    """Print the names of the objects carrying the requested tags."""
    for thing in select(ipam, args.kind, args.tags, match_all=not args.any):
        print(thing.name)


def _run_free(ipam: IPAM, args: argparse.Namespace) -> None:
    """Print the unassigned blocks inside a prefix."""
    for block in free_space(ipam, args.prefix):
        print(block)


def main() -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args()
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level)
        if args.command == "check":
            _run_check(config, args)
        elif args.command == "create-cache":
            ipam = IPAM(args.verbose).load_file(_database(config, args), _parse_template_vars(args.var))
            store(ipam, config.cache_file)
            print(f"Wrote cache to {config.cache_file}")
        else:
            ipam = _load(config, args)
            if args.command == "whatis":
                _run_whatis(ipam, args)
            elif args.command == "gen-zones":
                _run_gen_zones(ipam, config, args)
            elif args.command == "select":
                _run_select(ipam, args)
            elif args.command == "free":
                _run_free(ipam, args)
            elif args.command == "alternatives":
                _emit(alternatives(ipam), args.format)
            else:  # pragma: no cover - argparse ensures we never reach here
                parser.error(f"Unsupported command {args.command}")
    except IpamError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
