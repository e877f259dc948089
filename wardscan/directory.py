"""Chain directory: human-readable names for well-known system addresses."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from eth_utils import to_checksum_address

from .config import ConfigurationError
from .contracts import CHAIN_LOG, Absent, decode_name, read
from .store import CacheStore


_LOGGER = logging.getLogger("wardscan.directory")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value or ""))


class ChainDirectory:
    """Immutable ``address -> name`` table."""

    def __init__(self, entries: Optional[Mapping[str, str]] = None) -> None:
        self._entries: Dict[str, str] = {
            to_checksum_address(address): name for address, name in (entries or {}).items()
        }
        self._by_name: Dict[str, str] = {}
        for address, name in self._entries.items():
            self._by_name.setdefault(name, address)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def items(self) -> Iterable[Tuple[str, str]]:
        return self._entries.items()

    def names(self) -> List[str]:
        return list(self._entries.values())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._entries)

    def name_of(self, address: str) -> str:
        """Display name for ``address``, falling back to the address itself."""

        return self._entries.get(address, address)

    def address_of(self, name: str) -> Optional[str]:
        return self._by_name.get(name)

    def extend(self, entries: Mapping[str, str]) -> "ChainDirectory":
        merged = self.as_dict()
        merged.update(entries)
        return ChainDirectory(merged)

    def resolve(self, identifier: str) -> str:
        """Turn an address or directory name into a checksummed address."""

        if is_address(identifier):
            return to_checksum_address(identifier)
        address = self.address_of(identifier)
        if not address:
            raise ConfigurationError(
                f"'{identifier}' isn't an address nor does it exist in the chainlog."
            )
        return address


def fetch_directory(client, registry_address: str) -> ChainDirectory:
    """Download every entry of the on-chain registry."""

    count = read(client, registry_address, CHAIN_LOG["count"])
    if isinstance(count, Absent):
        raise ConfigurationError(f"registry {registry_address} has no count() ({count.reason})")
    total = int(count.value)
    entries: Dict[str, str] = {}
    for index in range(total):
        if index % 50 == 0:
            _LOGGER.info("downloading the chainlog... %d%%", 100 * index // max(total, 1))
        entry = read(client, registry_address, CHAIN_LOG["get"], index)
        if isinstance(entry, Absent):
            _LOGGER.warning("chainlog entry %d unavailable (%s)", index, entry.reason)
            continue
        name_bytes, address = entry.value
        entries[to_checksum_address(address)] = decode_name(name_bytes)
    _LOGGER.info("downloaded %d chainlog entries", len(entries))
    return ChainDirectory(entries)


def load_directory(client, store: CacheStore, registry_address: str, reuse: bool = False) -> ChainDirectory:
    """Load the directory once per run, from cache when allowed."""

    if reuse:
        cached = store.load_directory()
        if cached is not None:
            _LOGGER.info("loaded %d chainlog entries from cache", len(cached))
            return ChainDirectory(cached)
        _LOGGER.info("no cached chainlog found")
    directory = fetch_directory(client, registry_address)
    store.save_directory(directory.as_dict())
    return directory
