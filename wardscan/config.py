"""Runtime settings for wardscan."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional


_URL_RE = re.compile(r"https?://\S+")
_ASSIGNMENT_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")

CHAIN_LOG_ADDRESS = "0xdA0Ab1e0017DEbCd72Be8599041a2aa3bA7e740F"
MCD_DEPLOYMENT_BLOCK = 8928152
BATCH_SIZE_LIMIT = 4096
MAX_RETRIES = 3
RETRY_BACKOFF_SECONDS = 2.0


class ConfigurationError(ValueError):
    """Raised for missing or invalid input before any chain work starts."""


def _dotenv_values(path: str) -> Dict[str, str]:
    """``KEY=value`` assignments of a ``.env`` file; comments and blank lines skipped."""

    env_file = Path(path)
    if not env_file.is_file():
        return {}
    values: Dict[str, str] = {}
    for line in env_file.read_text(encoding="utf-8").splitlines():
        match = _ASSIGNMENT_RE.match(line.strip())
        if not match:
            continue
        key, raw = match.groups()
        values[key] = raw.strip().strip('"').strip("'")
    return values


def _endpoint_from_notes(notes_path: str) -> Optional[str]:
    notes_file = Path(notes_path)
    if not notes_file.exists():
        return None
    match = _URL_RE.search(notes_file.read_text(encoding="utf-8"))
    if not match:
        return None
    return match.group(0)


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 0)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    etherscan_api_key: Optional[str] = None
    registry_address: str = CHAIN_LOG_ADDRESS
    deployment_block: int = MCD_DEPLOYMENT_BLOCK
    batch_size: int = BATCH_SIZE_LIMIT
    max_retries: int = MAX_RETRIES
    retry_backoff: float = RETRY_BACKOFF_SECONDS
    timeout: int = 30
    cache_dir: Path = Path("cached")
    graph_dir: Path = Path("graph")
    report_dir: Path = Path(".")

    @classmethod
    def from_env(
        cls,
        rpc_url: Optional[str] = None,
        notes_path: str = ".notes/notes.txt",
        dotenv_path: str = ".env",
    ) -> "Settings":
        """Build settings from the environment, a `.env` file and the notes file.

        Process environment variables take precedence over `.env` entries;
        neither source is modified.
        """

        env: Dict[str, str] = {**_dotenv_values(dotenv_path), **os.environ}
        url = rpc_url or env.get("ETH_RPC_URL") or _endpoint_from_notes(notes_path)
        if not url:
            raise ConfigurationError("please specify an ETH_RPC_URL env var")

        batch_size = _int_env(env, "WARDSCAN_BATCH_SIZE", BATCH_SIZE_LIMIT)
        if batch_size <= 0:
            raise ConfigurationError("WARDSCAN_BATCH_SIZE must be positive")
        max_retries = _int_env(env, "WARDSCAN_MAX_RETRIES", MAX_RETRIES)
        if max_retries <= 0:
            raise ConfigurationError("WARDSCAN_MAX_RETRIES must be positive")

        return cls(
            rpc_url=url,
            etherscan_api_key=env.get("ETHERSCAN_API_KEY") or None,
            registry_address=env.get("WARDSCAN_REGISTRY_ADDRESS", CHAIN_LOG_ADDRESS),
            deployment_block=_int_env(env, "WARDSCAN_DEPLOYMENT_BLOCK", MCD_DEPLOYMENT_BLOCK),
            batch_size=batch_size,
            max_retries=max_retries,
            retry_backoff=_float_env(env, "WARDSCAN_RETRY_BACKOFF", RETRY_BACKOFF_SECONDS),
            timeout=_int_env(env, "WARDSCAN_TIMEOUT", 30),
            cache_dir=Path(env.get("WARDSCAN_CACHE_DIR", "cached")),
            graph_dir=Path(env.get("WARDSCAN_GRAPH_DIR", "graph")),
            report_dir=Path(env.get("WARDSCAN_REPORT_DIR", ".")),
        )
