"""Deployer discovery through the Etherscan account API."""

from __future__ import annotations

import json
import logging
import time
import urllib.parse
import urllib.request
from typing import Callable, List, Optional
from urllib.error import HTTPError, URLError

from eth_utils import to_checksum_address


_LOGGER = logging.getLogger("wardscan.etherscan")

ETHERSCAN_API = "https://api.etherscan.io/api"
_CREATE_TYPES = {"create", "create2"}


class EtherscanError(RuntimeError):
    """An account API query could not be answered."""


def _fetch_account_api(url: str, timeout: int, retries: int = 3, backoff: float = 1.0) -> dict:
    """GET an account API page, retrying connection failures with doubling delays."""

    request = urllib.request.Request(url, headers={"accept": "application/json", "user-agent": "wardscan"})
    for attempt in range(1, retries + 1):
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (HTTPError, URLError, TimeoutError) as exc:
            if attempt == retries:
                raise EtherscanError(f"account API unreachable after {retries} attempts: {exc}") from exc
            delay = backoff * 2 ** (attempt - 1)
            _LOGGER.debug("account API attempt %d failed (%s), retrying in %.1fs", attempt, exc, delay)
            time.sleep(delay)
            continue
        except json.JSONDecodeError as exc:
            raise EtherscanError(f"account API returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise EtherscanError("account API returned an unexpected document")
        return payload
    raise EtherscanError("account API queried with no attempts")


def _is_creation(tx: dict, address: str, internal: bool) -> bool:
    created = (tx.get("contractAddress") or "").lower()
    if created != address.lower():
        return False
    if internal:
        return (tx.get("type") or "").lower() in _CREATE_TYPES
    return (tx.get("to") or "") == ""


class DeployerLookup:
    """Finds the senders of the transactions that created a contract.

    Both the external (``txlist``) and internal (``txlistinternal``) histories
    of the contract are scanned; a creation is a transaction without a
    recipient (external) or a ``create``/``create2`` trace (internal) whose
    ``contractAddress`` is the contract itself.
    """

    def __init__(
        self,
        api_key: Optional[str],
        timeout: int = 10,
        retries: int = 3,
        backoff: float = 1.0,
        fetch_json: Optional[Callable[[str], dict]] = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._fetch_json = fetch_json
        self._warned = False

    def _get(self, url: str) -> dict:
        if self._fetch_json is not None:
            return self._fetch_json(url)
        return _fetch_account_api(url, self.timeout, retries=self.retries, backoff=self.backoff)

    def _transactions(self, address: str, internal: bool) -> List[dict]:
        params = {
            "module": "account",
            "action": "txlistinternal" if internal else "txlist",
            "address": address,
            "startblock": "0",
            "endblock": "latest",
            "sort": "asc",
            "apikey": self.api_key,
        }
        url = f"{ETHERSCAN_API}?{urllib.parse.urlencode(params)}"
        response = self._get(url)
        if response.get("status") != "1":
            return []
        result = response.get("result")
        return result if isinstance(result, list) else []

    def deployers(self, address: str) -> List[str]:
        if not self.api_key:
            if not self._warned:
                _LOGGER.info("ETHERSCAN_API_KEY not set; skipping deployer discovery")
                self._warned = True
            return []
        found: List[str] = []
        for internal in (False, True):
            try:
                txs = self._transactions(address, internal)
            except EtherscanError as exc:
                _LOGGER.warning(
                    "%s transaction scan for %s failed: %s",
                    "internal" if internal else "external",
                    address,
                    exc,
                )
                continue
            for tx in txs:
                if _is_creation(tx, address, internal) and tx.get("from"):
                    deployer = to_checksum_address(tx["from"])
                    if deployer not in found:
                        found.append(deployer)
        _LOGGER.debug("deployers of %s: %s", address, found)
        return found
