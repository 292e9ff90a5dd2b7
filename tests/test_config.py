"""
Tests for environment-driven configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ipam.config import load_config

ENV_VARS = (
    "IPAM_DATABASE",
    "IPAM_CACHE_FILE",
    "IPAM_USE_CACHE",
    "ZONE_OUTPUT_DIR",
    "TEMPLATES_DIR",
    "IPAM_ANNOTATE",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path: Path) -> None:
    config = load_config()
    assert config.database == (tmp_path / "ipam.yaml").resolve()
    assert config.cache_file == (tmp_path / "ipam.cache").resolve()
    assert config.use_cache is True
    assert config.zone_output_dir == (tmp_path / "zones").resolve()
    assert config.templates_dir is None
    assert config.annotate is False
    assert config.log_level == "WARNING"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IPAM_DATABASE", "db/main.yaml")
    monkeypatch.setenv("IPAM_USE_CACHE", "no")
    monkeypatch.setenv("TEMPLATES_DIR", "tpl")
    monkeypatch.setenv("IPAM_ANNOTATE", "yes")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = load_config()
    assert config.database == (tmp_path / "db" / "main.yaml").resolve()
    assert config.cache_file == (tmp_path / "db" / "main.cache").resolve()
    assert config.use_cache is False
    assert config.templates_dir == (tmp_path / "tpl").resolve()
    assert config.annotate is True
    assert config.log_level == "debug"


def test_invalid_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValueError, match="LOG_LEVEL"):
        load_config()
