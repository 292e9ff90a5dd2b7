"""Environment-driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    database: Path
    cache_file: Path
    use_cache: bool
    zone_output_dir: Path
    templates_dir: Path | None
    annotate: bool
    log_level: str


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Return a boolean parsed from a string."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    database = Path(os.getenv("IPAM_DATABASE", "ipam.yaml")).resolve()
    cache_file = Path(os.getenv("IPAM_CACHE_FILE", str(database.with_suffix(".cache")))).resolve()
    templates = os.getenv("TEMPLATES_DIR")
    log_level = os.getenv("LOG_LEVEL", "WARNING")
    if log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"LOG_LEVEL must be a standard logging level, got {log_level!r}.")

    return AppConfig(
        database=database,
        cache_file=cache_file,
        use_cache=_parse_bool(os.getenv("IPAM_USE_CACHE"), default=True),
        zone_output_dir=Path(os.getenv("ZONE_OUTPUT_DIR", "zones")).resolve(),
        templates_dir=Path(templates).resolve() if templates else None,
        annotate=_parse_bool(os.getenv("IPAM_ANNOTATE")),
        log_level=log_level,
    )
