"""Per-address authority profile: EOA status, owner, authority, wards and buds."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .contracts import CHAIN_LOG, DS_PAUSE, LP_ORACLE, Absent, Function, ProbeResult, read_address, read_flag
from .directory import ChainDirectory
from .etherscan import DeployerLookup
from .harvest import HarvestSession


_LOGGER = logging.getLogger("wardscan.probes")

_EMPTY_CODE = {"", "0x", "0x0"}


@dataclass(frozen=True)
class AuthorityProfile:
    address: str
    is_eoa: bool
    owner: ProbeResult = field(default_factory=Absent)
    authority: ProbeResult = field(default_factory=Absent)
    wards: List[str] = field(default_factory=list)
    buds: List[str] = field(default_factory=list)


class AuthorityProber:
    def __init__(
        self,
        client,
        directory: ChainDirectory,
        session: HarvestSession,
        deployers: Optional[DeployerLookup] = None,
    ) -> None:
        self.client = client
        self.directory = directory
        self.session = session
        self.deployers = deployers

    def is_eoa(self, address: str) -> bool:
        code = self.client.get_code(address)
        return (code or "").lower() in _EMPTY_CODE

    def _confirm(self, address: str, accessor: Function, candidates: Sequence[str], kind: str) -> List[str]:
        """Subset of ``candidates`` the accessor vouches for.

        Stops at the first candidate for which the accessor is absent: the
        contract has no such mechanism.
        """

        who = self.directory.name_of(address)
        confirmed: List[str] = []
        started = time.monotonic()
        for candidate in candidates:
            result = read_flag(self.client, address, accessor, candidate)
            if isinstance(result, Absent):
                _LOGGER.info("checking %s for %s... no %s", kind, who, kind)
                return confirmed
            if result.value:
                confirmed.append(candidate)
        _LOGGER.info(
            "checking %s for %s... found %d %s in %d seconds",
            kind,
            who,
            len(confirmed),
            kind,
            int(time.monotonic() - started),
        )
        return confirmed

    def wards(self, address: str) -> List[str]:
        candidates = list(self.deployers.deployers(address)) if self.deployers else []
        for party in self.session.relied_and_kissed(address):
            if party not in candidates:
                candidates.append(party)
        confirmed = self._confirm(address, CHAIN_LOG["wards"], candidates, "wards")
        return [ward for ward in confirmed if ward != address]

    def buds(self, address: str) -> List[str]:
        candidates = self.session.relied_and_kissed(address)
        return self._confirm(address, LP_ORACLE["bud"], candidates, "buds")

    def profile(self, address: str) -> AuthorityProfile:
        who = self.directory.name_of(address)
        if who != address:
            _LOGGER.info("starting check for %s (%s)", who, address)
        else:
            _LOGGER.info("starting check for address %s...", address)
        eoa = self.is_eoa(address)
        if eoa:
            # no code, so every accessor would come back empty
            return AuthorityProfile(address=address, is_eoa=True)
        owner = read_address(self.client, address, DS_PAUSE["owner"])
        authority = read_address(self.client, address, DS_PAUSE["authority"])
        return AuthorityProfile(
            address=address,
            is_eoa=eoa,
            owner=owner,
            authority=authority,
            wards=self.wards(address),
            buds=self.buds(address),
        )
