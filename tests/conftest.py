"""
Shared pytest fixtures for the ipam test suite.

Provides a representative IPAM database written to ``tmp_path``, the
IPAM loaded from it, and a factory for loading small ad-hoc documents.
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from ipam.controller import IPAM


SAMPLE_DATABASE = """\
domain: example.com
ttl: 3600
alternatives:
  - label: mail
    state: primary
    allowed_states: [primary, backup]
zones:
  - name: example.com
    directory: forward
  - name: 0.0.10.in-addr.arpa
    directory: reverse
  - name: 8.b.d.0.1.0.0.2.ip6.arpa
    directory: reverse
address_map:
  - block: 10.0.0.0/16
    name: site1
    plen: 24
    tag: site
    description: Main site
    children:
      - net: 10.0.0.0/24
        name: lan1
        tag: office
      - net: 10.0.1.0/24
        name: lan2
  - block: 2001:db8::/48
    name: site1-v6
    plen: 64
    children:
      - net: 2001:db8:0:1::/64
        name: lan1
iids:
  - name: server1
    id: "::10"
  - name: spare
    id: "::99"
networks:
  - name: lan1
    description: Office LAN
    location: 52 22 23.000 N 4 53 32.000 E 0.00m
    tag: wired
    reserved:
      default: full
    hosts:
      - name: server1
        description: Web server
        ttl: 600
        ip:
          v4:
            addresses: [10.0.0.10]
          v6: {}
        aliases: [www]
        rr:
          - type: mx
            rdata: 10 server1
      - name: server2
        ip:
          v4:
            addresses:
              - a: 10.0.0.11
              - a: 10.0.0.12
                alternative: mail:backup
        hosted_on: [server1]
  - name: lan2
    generate:
      - pattern: dyn-%n
        blocks: [10.0.1.100/30]
"""

HEADER = """\
domain: example.com
zones:
  - name: example.com
  - name: 0.0.10.in-addr.arpa
address_map:
  - net: 10.0.0.0/24
    name: lan1
"""


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def database_path(tmp_path: Path) -> Path:
    """Write the sample database and return its path."""
    path = tmp_path / "ipam.yaml"
    path.write_text(SAMPLE_DATABASE, encoding="utf-8")
    return path


@pytest.fixture()
def ipam(database_path: Path) -> IPAM:
    """The sample database, loaded."""
    return IPAM().load_file(database_path)


@pytest.fixture()
def load_text(tmp_path: Path) -> Callable[[str], IPAM]:
    """Return a loader for documents given as (indented) YAML text."""

    def _load(text: str, name: str = "doc.yaml") -> IPAM:
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return IPAM().load_file(path)

    return _load


@pytest.fixture()
def header() -> str:
    """A document prefix with one zone pair and the 10.0.0.0/24 net ``lan1``."""
    return HEADER
