"""Versioned JSON cache files for directory, harvested logs, checkpoints and graphs."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


_LOGGER = logging.getLogger("wardscan.store")

SCHEMA_VERSION = 1
PROGRESS_FILE = "progress.json"


def address_set_digest(addresses: Iterable[str]) -> str:
    """Deterministic cache key for a set of addresses."""

    joined = ",".join(sorted(set(addresses)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _write_json(path: Path, payload: Any, indent: Optional[int] = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=indent), encoding="utf-8")
    os.replace(tmp_path, path)


def _load_json(path: Path) -> Optional[Any]:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        _LOGGER.warning("ignoring unreadable cache file %s", path)
        return None


def _wrap(kind: str, payload: Any) -> dict:
    return {"schema_version": SCHEMA_VERSION, "kind": kind, "payload": payload}


def _unwrap(document: Optional[Any], kind: str) -> Optional[Any]:
    if not isinstance(document, dict):
        return None
    if document.get("schema_version") != SCHEMA_VERSION or document.get("kind") != kind:
        return None
    return document.get("payload")


class CacheStore:
    """Content-addressed cache rooted at ``cache_dir`` plus graph exports under ``graph_dir``."""

    def __init__(self, cache_dir: Path, graph_dir: Optional[Path] = None) -> None:
        self.cache_dir = Path(cache_dir)
        self.graph_dir = Path(graph_dir) if graph_dir is not None else self.cache_dir / "graph"

    # chain directory

    @property
    def directory_path(self) -> Path:
        return self.cache_dir / "chainLog.json"

    def load_directory(self) -> Optional[Dict[str, str]]:
        return _unwrap(_load_json(self.directory_path), "directory")

    def save_directory(self, entries: Dict[str, str]) -> None:
        _write_json(self.directory_path, _wrap("directory", entries))

    # harvested logs

    def logs_path(self, digest: str) -> Path:
        return self.cache_dir / f"logs-{digest}.json"

    def partial_logs_path(self, digest: str) -> Path:
        return self.cache_dir / f"logs-{digest}.partial.json"

    def has_logs(self, digest: str) -> bool:
        return self.load_logs(digest) is not None

    def load_logs(self, digest: str) -> Optional[List[dict]]:
        return _unwrap(_load_json(self.logs_path(digest)), "logs")

    def load_partial_logs(self, digest: str) -> List[dict]:
        return _unwrap(_load_json(self.partial_logs_path(digest)), "logs") or []

    def save_partial_logs(self, digest: str, logs: List[dict]) -> None:
        _write_json(self.partial_logs_path(digest), _wrap("logs", logs))

    def promote_logs(self, digest: str, logs: List[dict]) -> Path:
        """Write the completed harvest and drop its partial file."""

        path = self.logs_path(digest)
        _write_json(path, _wrap("logs", logs), indent=4)
        partial = self.partial_logs_path(digest)
        if partial.exists():
            partial.unlink()
        return path

    # checkpoint

    @property
    def checkpoint_path(self) -> Path:
        return self.cache_dir / PROGRESS_FILE

    def load_checkpoint(self) -> Optional[dict]:
        return _unwrap(_load_json(self.checkpoint_path), "checkpoint")

    def save_checkpoint(self, checkpoint: dict) -> None:
        _write_json(self.checkpoint_path, _wrap("checkpoint", checkpoint), indent=4)

    def clear_checkpoint(self) -> None:
        if self.checkpoint_path.exists():
            self.checkpoint_path.unlink()

    # graphs

    def graph_path(self, name: str) -> Path:
        return self.cache_dir / "graphs" / f"{name}.json"

    def load_graph(self, name: str) -> Optional[List[dict]]:
        return _unwrap(_load_json(self.graph_path(name)), "graph")

    def save_graph(self, name: str, edges: List[dict]) -> None:
        _write_json(self.graph_path(name), _wrap("graph", edges))

    def export_path(self, name: str) -> Path:
        return self.graph_dir / f"{name}.json"

    def save_export(self, name: str, document: dict) -> Path:
        path = self.export_path(name)
        _write_json(path, document, indent=4)
        return path

    def load_export(self, name: str) -> Optional[dict]:
        document = _load_json(self.export_path(name))
        return document if isinstance(document, dict) else None
