"""Ethereum JSON-RPC transport."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests


_LOGGER = logging.getLogger("wardscan.rpc")

_TRANSIENT_MARKERS = ("rate limit", "too many", "capacity", "timeout", "timed out", "header not found")
_REVERT_MARKERS = ("revert", "invalid opcode", "out of gas")


class RPCError(RuntimeError):
    """A JSON-RPC request failed."""


class TransientRPCError(RPCError):
    """Network, timeout or throttling failure; safe to retry."""


class CallReverted(RPCError):
    """A read call reverted; the queried value does not exist."""


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int

    @property
    def iso(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _classify_error(error: dict) -> RPCError:
    message = str(error.get("message") or error)
    lowered = message.lower()
    code = error.get("code")
    if code == 3 or any(marker in lowered for marker in _REVERT_MARKERS):
        return CallReverted(message)
    if code == 429 or any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return TransientRPCError(message)
    return RPCError(f"RPC error {code}: {message}")


class RPCClient:
    """Sequential JSON-RPC client with bounded retries on transient failures."""

    def __init__(
        self,
        endpoint: str,
        timeout: int = 30,
        retries: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.session = session or requests.Session()
        self._id_counter = 0
        self._timestamps: Dict[int, int] = {}

    def _post(self, method: str, params: list) -> Any:
        self._id_counter += 1
        payload = {"jsonrpc": "2.0", "id": self._id_counter, "method": method, "params": params}
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise TransientRPCError(f"{method}: {exc}") from exc
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientRPCError(f"{method}: HTTP {response.status_code}")
        if response.status_code != 200:
            raise RPCError(f"{method}: HTTP {response.status_code}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientRPCError(f"{method}: invalid JSON response") from exc
        if not isinstance(body, dict):
            raise TransientRPCError(f"{method}: unexpected response {type(body).__name__}")
        if body.get("error"):
            raise _classify_error(body["error"])
        return body.get("result")

    def request(self, method: str, params: Optional[list] = None) -> Any:
        delay = self.backoff
        for attempt in range(self.retries):
            try:
                return self._post(method, params or [])
            except TransientRPCError as exc:
                if attempt >= self.retries - 1:
                    raise
                _LOGGER.debug("%s failed (%s), retrying in %.1fs", method, exc, delay)
                time.sleep(delay)
                delay = min(delay * 2, 8.0)
        raise TransientRPCError(f"{method}: no attempts made")

    def block_number(self) -> int:
        result = self.request("eth_blockNumber")
        if not result:
            raise RPCError("No result in eth_blockNumber response")
        return int(result, 16)

    def block(self, number: int) -> BlockInfo:
        if number not in self._timestamps:
            result = self.request("eth_getBlockByNumber", [hex(number), False])
            if not result:
                raise RPCError(f"No result in eth_getBlockByNumber response for {number}")
            self._timestamps[number] = int(result["timestamp"], 16)
        return BlockInfo(number=number, timestamp=self._timestamps[number])

    def get_logs(
        self,
        addresses: Sequence[str],
        topics: List[List[str]],
        from_block: int,
        to_block: int,
    ) -> List[dict]:
        log_filter = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "address": list(addresses),
            "topics": topics,
        }
        # Single attempt: the harvester owns the per-batch retry policy.
        return self._post("eth_getLogs", [log_filter]) or []

    def get_code(self, address: str) -> str:
        return self.request("eth_getCode", [address, "latest"]) or "0x"

    def call(self, address: str, data: str) -> str:
        return self.request("eth_call", [{"to": address, "data": data}, "latest"]) or "0x"
