"""
Tests for rendering zone data files through Jinja2 templates.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ipam.controller import IPAM
from ipam.exporter import render_zone, write_zone_files, zone_path, zone_records
from ipam.models import IpamError


def _fields(text: str) -> list[list[str]]:
    return [line.split() for line in text.splitlines()]


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def test_zone_files_land_in_zone_directories(ipam: IPAM, tmp_path: Path) -> None:
    out = tmp_path / "out"
    written = write_zone_files(ipam, out)
    assert set(written) == {
        out / "forward" / "example.com.zone",
        out / "reverse" / "0.0.10.in-addr.arpa.zone",
        out / "reverse" / "8.b.d.0.1.0.0.2.ip6.arpa.zone",
    }
    assert all(path.exists() for path in written)


def test_zone_path_without_directory(load_text, header: str, tmp_path: Path) -> None:
    ipam = load_text(header)
    zone = ipam.zones.lookup("example.com.")
    assert zone_path(tmp_path, zone) == tmp_path / "example.com.zone"


def test_only_selected_zones_are_written(ipam: IPAM, tmp_path: Path) -> None:
    written = write_zone_files(ipam, tmp_path, zones=["example.com"])
    assert written == [tmp_path / "forward" / "example.com.zone"]
    with pytest.raises(IpamError, match="Unknown zone"):
        write_zone_files(ipam, tmp_path, zones=["example.org"])


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

def test_forward_zone_content(ipam: IPAM, tmp_path: Path) -> None:
    zone = ipam.zones.lookup("example.com.")
    result = render_zone(zone, tmp_path)
    lines = result.text.splitlines()
    assert lines[1] == "$ORIGIN example.com."
    assert lines[2] == "$TTL 3600"
    fields = _fields(result.text)
    assert ["server1", "600", "IN", "A", "10.0.0.10"] in fields
    assert any(row[:1] == ["www"] and "CNAME" in row for row in fields)
    assert result.text.endswith("\n")
    assert result.output_path == tmp_path / "forward" / "example.com.zone"


def test_reverse_zone_content(ipam: IPAM, tmp_path: Path) -> None:
    zone = ipam.zones.lookup("0.0.10.in-addr.arpa.")
    text = render_zone(zone, tmp_path).text
    assert any(row[:1] == ["10"] and row[-2:] == ["PTR", "server1.example.com."] for row in _fields(text))


def test_annotated_records_name_their_origin(ipam: IPAM) -> None:
    zone = ipam.zones.lookup("example.com.")
    plain = zone_records(zone)
    annotated = zone_records(zone, annotate=True)
    assert len(plain) == len(annotated)
    assert not any("ipam.yaml:" in line for line in plain)
    assert any("ipam.yaml:" in line for line in annotated)


def test_templates_dir_overrides_packaged_template(ipam: IPAM, tmp_path: Path) -> None:
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "zone.j2").write_text(
        "; custom {{ zone }}\n{% for line in records %}{{ line }}\n{% endfor %}",
        encoding="utf-8",
    )
    zone = ipam.zones.lookup("example.com.")
    text = render_zone(zone, tmp_path, templates_dir=templates).text
    assert text.startswith("; custom example.com.\n")
    assert "$ORIGIN" not in text
