"""Resumable, batched harvest of governance logs (rely/kiss notes and events)."""

from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from .config import Settings
from .contracts import ZERO_ADDRESS
from .rpc import RPCError
from .store import CacheStore, address_set_digest


_LOGGER = logging.getLogger("wardscan.harvest")

LOG_NOTE_SIGNATURES = ("rely(address)", "kiss(address)", "kiss(address[])")
EVENT_SIGNATURES = ("Rely(address)", "Kiss(address)")


def log_note_topic(signature: str) -> str:
    """Selector of a logged call, right-padded to a full topic word."""

    return "0x" + function_signature_to_4byte_selector(signature).hex() + "0" * 56


def event_topic(signature: str) -> str:
    return "0x" + keccak(text=signature).hex()


def governance_topics() -> List[List[str]]:
    notes = [log_note_topic(sig) for sig in LOG_NOTE_SIGNATURES]
    events = [event_topic(sig) for sig in EVENT_SIGNATURES]
    return [notes + events]


@dataclass(frozen=True)
class LogEvent:
    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    timestamp: Optional[str] = None
    transaction_hash: Optional[str] = None

    @classmethod
    def from_rpc(cls, raw: dict, timestamp: Optional[str] = None) -> "LogEvent":
        return cls(
            address=to_checksum_address(raw["address"]),
            topics=tuple(raw.get("topics") or ()),
            data=raw.get("data") or "0x",
            block_number=int(raw["blockNumber"], 16),
            timestamp=timestamp,
            transaction_hash=raw.get("transactionHash"),
        )

    @classmethod
    def from_dict(cls, item: dict) -> "LogEvent":
        return cls(
            address=item["address"],
            topics=tuple(item.get("topics") or ()),
            data=item.get("data") or "0x",
            block_number=int(item["blockNumber"]),
            timestamp=item.get("timestamp"),
            transaction_hash=item.get("transactionHash"),
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "topics": list(self.topics),
            "data": self.data,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "transactionHash": self.transaction_hash,
        }


def _data_words(data: str) -> List[str]:
    body = data[2:] if data.startswith("0x") else data
    return [body[i : i + 64] for i in range(0, len(body) - len(body) % 64, 64)]


def extract_addresses(event: LogEvent) -> List[str]:
    """Every address-shaped word in the topics and data of ``event``."""

    words = [topic[2:] if topic.startswith("0x") else topic for topic in event.topics]
    words.extend(_data_words(event.data))
    found: List[str] = []
    for word in words:
        if len(word) != 64 or not word.startswith("0" * 24):
            continue
        address = to_checksum_address("0x" + word[24:])
        if address != ZERO_ADDRESS:
            found.append(address)
    return found


class RunCancelled(RuntimeError):
    """A cancellation request was observed between two units of work."""


class CancelToken:
    """Cooperative cancellation flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise RunCancelled(f"run cancelled during {stage}")


def install_signal_handlers(token: CancelToken) -> None:
    """Route SIGINT/SIGTERM to ``token``; a second signal aborts immediately."""

    def _handler(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        _LOGGER.warning("Gracefully shutting down after the current step (signal %s)...", signum)
        token.cancel()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


class HarvestInterrupted(RunCancelled):
    def __init__(self, from_block: int) -> None:
        super().__init__(f"harvest interrupted; resume from block {from_block}")
        self.from_block = from_block


class LogHarvester:
    def __init__(
        self,
        client,
        store: CacheStore,
        deployment_block: int = 0,
        batch_size: int = 4096,
        max_retries: int = 3,
        retry_backoff: float = 2.0,
        cancel_token: Optional[CancelToken] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.deployment_block = deployment_block
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.cancel_token = cancel_token
        self._sleep = sleep
        self.topics = governance_topics()

    @classmethod
    def from_settings(
        cls,
        client,
        store: CacheStore,
        settings: Settings,
        cancel_token: Optional[CancelToken] = None,
    ) -> "LogHarvester":
        return cls(
            client,
            store,
            deployment_block=settings.deployment_block,
            batch_size=settings.batch_size,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            cancel_token=cancel_token,
        )

    def _to_event(self, raw: dict) -> LogEvent:
        block = self.client.block(int(raw["blockNumber"], 16))
        return LogEvent.from_rpc(raw, timestamp=block.iso)

    def _fetch_batch(self, addresses: Sequence[str], from_block: int, to_block: int) -> List[LogEvent]:
        for attempt in range(1, self.max_retries + 1):
            try:
                batch = self.client.get_logs(addresses, self.topics, from_block, to_block)
                return [self._to_event(raw) for raw in batch]
            except RPCError as exc:
                if attempt >= self.max_retries:
                    _LOGGER.error(
                        "Error after %d attempts for blocks %d-%d, skipping batch: %s",
                        self.max_retries,
                        from_block,
                        to_block,
                        exc,
                    )
                    return []
                _LOGGER.warning("Attempt %d failed (%s). Retrying...", attempt, exc)
                self._sleep(self.retry_backoff)
        return []

    def _resume_point(self, digest: str, start: int, to_block: Optional[int]) -> Optional[dict]:
        checkpoint = self.store.load_checkpoint()
        if not checkpoint or checkpoint.get("digest") != digest:
            return None
        if checkpoint.get("start_block") != start:
            return None
        if to_block is not None and checkpoint.get("to_block") != to_block:
            return None
        return checkpoint

    def harvest(
        self,
        addresses: Iterable[str],
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        reuse: bool = True,
    ) -> List[LogEvent]:
        """Governance logs emitted by ``addresses`` over ``[from_block, to_block]``."""

        targets = sorted(set(addresses))
        digest = address_set_digest(targets)
        if reuse:
            cached = self.store.load_logs(digest)
            if cached is not None:
                _LOGGER.info("Loading logs from cache: %s", self.store.logs_path(digest))
                return [LogEvent.from_dict(item) for item in cached]

        start = self.deployment_block if from_block is None else from_block
        checkpoint = self._resume_point(digest, start, to_block)
        end = to_block if to_block is not None else self.client.block_number()
        logs: List[LogEvent] = []
        cursor = start
        if checkpoint is not None:
            cursor = int(checkpoint["from_block"])
            logs = [LogEvent.from_dict(item) for item in self.store.load_partial_logs(digest)]
            _LOGGER.info("Resuming log scan at block %d with %d cached logs", cursor, len(logs))

        total_blocks = max(end - start + 1, 1)
        while cursor <= end:
            if self.cancel_token is not None and self.cancel_token.cancelled:
                raise HarvestInterrupted(cursor)
            batch_end = min(cursor + self.batch_size - 1, end)
            _LOGGER.info("Scanning logs... %.2f%%", 100 * (cursor - start) / total_blocks)
            logs.extend(self._fetch_batch(targets, cursor, batch_end))
            cursor = batch_end + 1
            self.store.save_checkpoint(
                {"digest": digest, "start_block": start, "from_block": cursor, "to_block": end}
            )
            self.store.save_partial_logs(digest, [event.to_dict() for event in logs])

        self.store.promote_logs(digest, [event.to_dict() for event in logs])
        self.store.clear_checkpoint()
        _LOGGER.info("Scanning logs... 100%% (%d logs for %d addresses)", len(logs), len(targets))
        return logs


@dataclass
class HarvestSession:
    """Per-run log cache keyed by emitting address."""

    harvester: LogHarvester
    reuse_logs: bool = False
    logs: Dict[str, List[LogEvent]] = field(default_factory=dict)
    scanned: Set[str] = field(default_factory=set)

    def prefetch(self, addresses: Iterable[str]) -> None:
        pending = [address for address in dict.fromkeys(addresses) if address not in self.scanned]
        if not pending:
            return
        events = self.harvester.harvest(pending, reuse=self.reuse_logs)
        for address in pending:
            self.logs.setdefault(address, [])
            self.scanned.add(address)
        for event in events:
            self.logs.setdefault(event.address, []).append(event)

    def logs_for(self, address: str) -> List[LogEvent]:
        if address not in self.scanned:
            self.prefetch([address])
        return list(self.logs.get(address, []))

    def relied_and_kissed(self, address: str) -> List[str]:
        """Unique addresses named in ``address``'s rely/kiss logs, in discovery order."""

        found: Dict[str, None] = {}
        for event in self.logs_for(address):
            for party in extract_addresses(event):
                found.setdefault(party, None)
        return list(found)
