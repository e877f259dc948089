"""Read-only contract accessors used to probe governance relationships.

Each accessor answers with a tagged result: ``Present(value)`` when the
contract returned a meaningful value, ``Absent(reason)`` when the call
reverted, returned nothing, returned the zero sentinel or could not be
reached. Callers never compare against magic zero values themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .rpc import CallReverted, RPCError


_LOGGER = logging.getLogger("wardscan.contracts")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Present:
    value: Any


@dataclass(frozen=True)
class Absent:
    reason: str = "absent"


ProbeResult = Union[Present, Absent]


@dataclass(frozen=True)
class Function:
    signature: str
    outputs: Tuple[str, ...]

    @property
    def inputs(self) -> Tuple[str, ...]:
        args = self.signature[self.signature.index("(") + 1 : -1]
        return tuple(arg for arg in args.split(",") if arg)

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, *args: Any) -> str:
        return "0x" + (self.selector + abi_encode(list(self.inputs), list(args))).hex()

    def decode(self, result: str) -> Tuple[Any, ...]:
        raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
        return tuple(abi_decode(list(self.outputs), raw))


CHAIN_LOG: Dict[str, Function] = {
    "count": Function("count()", ("uint256",)),
    "get": Function("get(uint256)", ("bytes32", "address")),
    "wards": Function("wards(address)", ("uint256",)),
}

DS_PAUSE: Dict[str, Function] = {
    "owner": Function("owner()", ("address",)),
    "authority": Function("authority()", ("address",)),
}

LP_ORACLE: Dict[str, Function] = {
    "bud": Function("bud(address)", ("uint256",)),
    "orb0": Function("orb0()", ("address",)),
    "orb1": Function("orb1()", ("address",)),
    "src": Function("src()", ("address",)),
}


def read(client, address: str, function: Function, *args: Any) -> ProbeResult:
    """Call ``function`` on ``address`` and tag the outcome."""

    try:
        result = client.call(address, function.encode(*args))
    except CallReverted:
        return Absent("reverted")
    except RPCError as exc:
        _LOGGER.warning("%s on %s failed: %s", function.signature, address, exc)
        return Absent("unreachable")
    if not result or result in ("0x", "0x0"):
        return Absent("empty")
    try:
        values = function.decode(result)
    except (DecodingError, ValueError):
        return Absent("undecodable")
    if len(values) == 1:
        return Present(values[0])
    return Present(values)


def read_address(client, address: str, function: Function, *args: Any) -> ProbeResult:
    result = read(client, address, function, *args)
    if isinstance(result, Absent):
        return result
    if int(str(result.value), 16) == 0:
        return Absent("zero")
    return Present(to_checksum_address(result.value))


def read_flag(client, address: str, function: Function, *args: Any) -> ProbeResult:
    """Boolean-style accessor (``wards``/``bud``); Absent means no such mechanism."""

    result = read(client, address, function, *args)
    if isinstance(result, Absent):
        return result
    return Present(int(result.value) != 0)


def decode_name(raw: bytes) -> str:
    return raw.rstrip(b"\x00").decode("utf-8", errors="replace")
