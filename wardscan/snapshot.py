"""Persist rendered reports and detect changes between runs."""

from __future__ import annotations

import difflib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional


_LOGGER = logging.getLogger("wardscan.snapshot")

LATEST_FILE = "latest.txt"


@dataclass(frozen=True)
class DiffPart:
    op: str
    text: str


@dataclass(frozen=True)
class SnapshotResult:
    category: str
    changed: bool
    latest_path: Path
    snapshot_path: Optional[Path] = None
    diff: List[DiffPart] = field(default_factory=list)


def diff_chars(previous: str, current: str) -> List[DiffPart]:
    """Character-level diff as a sequence of equal/insert/delete runs."""

    parts: List[DiffPart] = []
    matcher = difflib.SequenceMatcher(None, previous, current, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            parts.append(DiffPart("equal", previous[i1:i2]))
            continue
        if i2 > i1:
            parts.append(DiffPart("delete", previous[i1:i2]))
        if j2 > j1:
            parts.append(DiffPart("insert", current[j1:j2]))
    return parts


def format_diff(parts: List[DiffPart]) -> str:
    chunks = []
    for part in parts:
        if part.op == "insert":
            chunks.append("{+" + part.text + "+}")
        elif part.op == "delete":
            chunks.append("[-" + part.text + "-]")
        else:
            chunks.append(part.text)
    return "".join(chunks)


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class SnapshotDiffer:
    def __init__(self, root: Path, clock: Callable[[], int] = _epoch_millis) -> None:
        self.root = Path(root)
        self.clock = clock

    def category_dir(self, category: str) -> Path:
        return self.root / ("log" if category == "full" else category)

    def latest(self, category: str) -> str:
        path = self.category_dir(category) / LATEST_FILE
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def record(self, report: str, category: str) -> SnapshotResult:
        """Store ``report`` when it differs from the latest one for ``category``."""

        directory = self.category_dir(category)
        latest_path = directory / LATEST_FILE
        previous = self.latest(category)
        if report == previous:
            _LOGGER.info("no changes since last lookup")
            return SnapshotResult(category=category, changed=False, latest_path=latest_path)

        directory.mkdir(parents=True, exist_ok=True)
        stamp = self.clock()
        snapshot_path = directory / f"{stamp}.txt"
        while snapshot_path.exists():
            stamp += 1
            snapshot_path = directory / f"{stamp}.txt"
        snapshot_path.write_text(report, encoding="utf-8")
        latest_path.write_text(report, encoding="utf-8")
        _LOGGER.info("changes detected; created %s", snapshot_path)
        return SnapshotResult(
            category=category,
            changed=True,
            latest_path=latest_path,
            snapshot_path=snapshot_path,
            diff=diff_chars(previous, report),
        )
