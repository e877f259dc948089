"""Fake chain transport and shared fixtures for wardscan tests."""

import shutil
import signal
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generator, List, Optional, Set, Tuple

import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from wardscan.contracts import CHAIN_LOG, DS_PAUSE, LP_ORACLE
from wardscan.harvest import event_topic, log_note_topic
from wardscan.rpc import BlockInfo, CallReverted, TransientRPCError
from wardscan.store import CacheStore


def addr(n: int) -> str:
    return to_checksum_address("0x" + f"{n:040x}")


SELECTORS = {
    "0x" + function.selector.hex(): (name, function)
    for family in (CHAIN_LOG, DS_PAUSE, LP_ORACLE)
    for name, function in family.items()
}


def address_word(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def rely_log(emitter: str, party: str, block: int, note: bool = False) -> dict:
    topic0 = log_note_topic("rely(address)") if note else event_topic("Rely(address)")
    return {
        "address": emitter.lower(),
        "topics": [topic0, address_word(party)],
        "data": "0x",
        "blockNumber": hex(block),
        "transactionHash": "0x" + f"{block:064x}",
    }


@dataclass
class FakeContract:
    owner: Optional[str] = None
    authority: Optional[str] = None
    wards: Optional[Set[str]] = None
    buds: Optional[Set[str]] = None
    orbs: Optional[Tuple[str, str]] = None
    src: Optional[str] = None
    entries: Optional[List[Tuple[str, str]]] = None


@dataclass
class FakeChain:
    """In-memory stand-in for ``RPCClient``."""

    contracts: Dict[str, FakeContract] = field(default_factory=dict)
    logs: List[dict] = field(default_factory=list)
    latest: int = 10_000
    failing_ranges: Set[Tuple[int, int]] = field(default_factory=set)
    log_calls: List[Tuple[Tuple[str, ...], int, int]] = field(default_factory=list)
    calls: List[Tuple[str, str, Optional[str]]] = field(default_factory=list)
    on_get_logs: Optional[object] = None

    def block_number(self) -> int:
        return self.latest

    def block(self, number: int) -> BlockInfo:
        return BlockInfo(number=number, timestamp=1_600_000_000 + number)

    def get_logs(self, addresses, topics, from_block, to_block) -> List[dict]:
        self.log_calls.append((tuple(addresses), from_block, to_block))
        if self.on_get_logs is not None:
            self.on_get_logs(len(self.log_calls))
        if (from_block, to_block) in self.failing_ranges:
            raise TransientRPCError("timeout")
        wanted = {a.lower() for a in addresses}
        return [
            log
            for log in self.logs
            if log["address"] in wanted and from_block <= int(log["blockNumber"], 16) <= to_block
        ]

    def get_code(self, address: str) -> str:
        return "0x6080" if address in self.contracts else "0x"

    def call(self, address: str, data: str) -> str:
        selector, args = data[:10], data[10:]
        name, function = SELECTORS[selector]
        contract = self.contracts.get(address)
        argument = None
        if function.inputs == ("address",):
            argument = to_checksum_address(abi_decode(["address"], bytes.fromhex(args))[0])
        self.calls.append((address, name, argument))
        if contract is None:
            return "0x"
        if name in ("owner", "authority", "src"):
            value = getattr(contract, name)
            if value is None:
                raise CallReverted("execution reverted")
            return "0x" + abi_encode(["address"], [value]).hex()
        if name in ("orb0", "orb1"):
            if contract.orbs is None:
                raise CallReverted("execution reverted")
            value = contract.orbs[0 if name == "orb0" else 1]
            return "0x" + abi_encode(["address"], [value]).hex()
        if name in ("wards", "bud"):
            members = contract.wards if name == "wards" else contract.buds
            if members is None:
                raise CallReverted("execution reverted")
            return "0x" + abi_encode(["uint256"], [1 if argument in members else 0]).hex()
        if name == "count":
            if contract.entries is None:
                raise CallReverted("execution reverted")
            return "0x" + abi_encode(["uint256"], [len(contract.entries)]).hex()
        if name == "get":
            index = abi_decode(["uint256"], bytes.fromhex(args))[0]
            label, target = contract.entries[index]
            return "0x" + abi_encode(["bytes32", "address"], [label.encode().ljust(32, b"\0"), target]).hex()
        raise CallReverted("execution reverted")

    def probes(self, name: str) -> List[Tuple[str, str, Optional[str]]]:
        return [call for call in self.calls if call[1] == name]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def store(temp_dir: Path) -> CacheStore:
    return CacheStore(temp_dir / "cached", temp_dir / "graph")


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def restore_signals() -> Generator[None, None, None]:
    """Put back the process signal handlers a test installs."""
    saved = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}
    yield
    for signum, handler in saved.items():
        signal.signal(signum, handler)
