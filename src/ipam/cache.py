"""Pickled snapshots of a loaded IPAM database."""

from __future__ import annotations

import hashlib
import logging
import os
import pickle
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .controller import IPAM
from .models import CacheError

LOG = logging.getLogger("ipam")


@dataclass
class Snapshot:
    """A loaded database and the digest of the files it was built from."""

    digest: str
    ipam: IPAM


def source_digest(paths: Iterable[Path]) -> str:
    """Return a SHA-256 digest over the names and contents of ``paths``."""
    digest = hashlib.sha256()
    for path in paths:
        digest.update(str(path).encode())
        digest.update(b"\0")
        digest.update(Path(path).read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


def store(ipam: IPAM, path: Path) -> Snapshot:
    """Write a snapshot of ``ipam`` to ``path`` atomically."""
    if not ipam.sources:
        raise CacheError("Can't cache a database that was not loaded from files")
    try:
        snapshot = Snapshot(digest=source_digest(ipam.sources), ipam=ipam)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as handle:
                pickle.dump(snapshot, handle, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_name, path)
        except BaseException:
            os.unlink(tmp_name)
            raise
    except (OSError, pickle.PicklingError) as exc:
        raise CacheError(f"Failed to write cache {path}: {exc}") from exc
    LOG.debug("Stored cache %s (digest %s)", path, snapshot.digest)
    return snapshot


def retrieve(path: Path) -> Snapshot:
    """Read a snapshot written by ``store()``."""
    try:
        with path.open("rb") as handle:
            snapshot = pickle.load(handle)
    except (OSError, EOFError, ValueError, pickle.UnpicklingError, AttributeError, ImportError) as exc:
        raise CacheError(f"Failed to read cache {path}: {exc}") from exc
    if not isinstance(snapshot, Snapshot):
        raise CacheError(f"{path} does not contain an IPAM snapshot")
    return snapshot


def is_current(snapshot: Snapshot, document_path: Path) -> bool:
    """Return True if ``snapshot`` was built from the current ``document_path``."""
    sources = snapshot.ipam.sources
    if not sources or Path(sources[0]) != Path(document_path):
        return False
    try:
        return snapshot.digest == source_digest(sources)
    except OSError:
        return False


def load_cached(
    document_path: Path,
    cache_path: Path,
    template_vars: dict[str, Any] | None = None,
    verbose: bool = False,
) -> IPAM:
    """Return the cached database if it is current, else load and cache it."""
    if cache_path.exists():
        try:
            snapshot = retrieve(cache_path)
        except CacheError as exc:
            LOG.warning("Ignoring unusable cache: %s", exc)
        else:
            if is_current(snapshot, document_path):
                LOG.debug("Using cache %s", cache_path)
                return snapshot.ipam
            LOG.info("Cache %s is stale, reloading %s", cache_path, document_path)
    ipam = IPAM(verbose).load_file(document_path, template_vars)
    store(ipam, cache_path)
    return ipam
