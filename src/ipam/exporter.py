"""Render zone data into master-file fragments via Jinja2 templates."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

from .controller import IPAM
from .models import IpamError, ensure_absolute
from .registry import by_name
from .zone import Zone

LOG = logging.getLogger("ipam")

PACKAGE_TEMPLATES = Path(__file__).parent / "templates"


@dataclass
class RenderResult:
    """Holds rendered zone text and destination path."""

    text: str
    output_path: Path


def _environment(templates_dir: Path | None) -> Environment:
    """Build a Jinja2 environment that prefers templates from ``templates_dir``."""
    loaders = [FileSystemLoader(str(templates_dir))] if templates_dir else []
    loaders.append(FileSystemLoader(str(PACKAGE_TEMPLATES)))
    return Environment(
        loader=ChoiceLoader(loaders),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def zone_path(output_dir: Path, zone: Zone) -> Path:
    """Return ``<output>/<zone directory>/<zone>.zone``."""
    filename = f"{zone.name.rstrip('.') or 'root'}.zone"
    if zone.directory:
        return output_dir / zone.directory / filename
    return output_dir / filename


def zone_records(zone: Zone, annotate: bool = False) -> list[str]:
    """Return the master-file lines of all domains of ``zone``."""
    sink = io.StringIO()
    for domain in zone.domains():
        domain.print(sink, annotate=annotate)
    return sink.getvalue().splitlines()


def render_zone(
    zone: Zone,
    output_dir: Path,
    annotate: bool = False,
    templates_dir: Path | None = None,
    template_name: str = "zone.j2",
) -> RenderResult:
    """Render a zone using the configured template directory."""
    template = _environment(templates_dir).get_template(template_name)
    text = template.render(zone=zone.name, ttl=zone.ttl, records=zone_records(zone, annotate))
    return RenderResult(text=text.rstrip() + "\n", output_path=zone_path(output_dir, zone))


def write_zone_file(path: Path, content: str) -> None:
    """Write content to the given path, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def write_zone_files(
    ipam: IPAM,
    output_dir: Path,
    annotate: bool = False,
    templates_dir: Path | None = None,
    zones: list[str] | None = None,
) -> list[Path]:
    """Render every zone (or only ``zones``) below ``output_dir``."""
    if zones:
        selected = []
        for name in zones:
            zone = ipam.zones.lookup(ensure_absolute(name))
            if zone is None:
                raise IpamError(f"Unknown zone {name}")
            selected.append(zone)
    else:
        selected = ipam.zones.things(by_name)
    written: list[Path] = []
    for zone in selected:
        result = render_zone(zone, output_dir, annotate, templates_dir)
        write_zone_file(result.output_path, result.text)
        LOG.info("Wrote zone %s to %s", zone.name, result.output_path)
        written.append(result.output_path)
    return written
