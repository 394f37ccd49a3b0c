"""
ABI encoding of execution parameters.

The flash-loan parameters travel as opaque bytes through the lending pool
to the execution contract's callback:

    (address[] tokens, (uint8 kind, address router)[] hops,
     uint256 slippage_bps, uint256 deadline)
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3

from .types import Token, Venue, VenueKind

PARAMS_TYPES = ["address[]", "(uint8,address)[]", "uint256", "uint256"]
EXECUTE_SIGNATURE = "executeArbitrage(address,uint256,bytes)"

VENUE_KIND_IDS = {
    VenueKind.CONSTANT_PRODUCT: 0,
    VenueKind.STABLE_SWAP: 1,
}


@dataclass(frozen=True)
class DecodedParams:
    tokens: Tuple[str, ...]
    hops: Tuple[Tuple[int, str], ...]
    slippage_bps: int
    deadline: int


def encode_params(
    tokens: Sequence[Token], venues: Sequence[Venue], slippage_bps: int, deadline: int
) -> bytes:
    hops = [(VENUE_KIND_IDS[v.kind], Web3.to_checksum_address(v.router)) for v in venues]
    addresses = [Web3.to_checksum_address(t.address) for t in tokens]
    return encode(PARAMS_TYPES, [addresses, hops, slippage_bps, deadline])


def decode_params(data: bytes) -> DecodedParams:
    tokens, hops, slippage_bps, deadline = decode(PARAMS_TYPES, data)
    return DecodedParams(
        tokens=tuple(str(t) for t in tokens),
        hops=tuple((int(kind), str(router)) for kind, router in hops),
        slippage_bps=int(slippage_bps),
        deadline=int(deadline),
    )


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def encode_execute_call(asset: Token, amount_raw: int, params: bytes) -> bytes:
    """Calldata for the execution contract's entry point."""
    args = encode(
        ["address", "uint256", "bytes"],
        [Web3.to_checksum_address(asset.address), amount_raw, params],
    )
    return function_selector(EXECUTE_SIGNATURE) + args


def split_execute_call(calldata: bytes) -> Tuple[str, int, bytes]:
    """Inverse of encode_execute_call; used by the simulated channel."""
    selector, body = calldata[:4], calldata[4:]
    if selector != function_selector(EXECUTE_SIGNATURE):
        raise ValueError(f"Unexpected selector 0x{selector.hex()}")
    asset, amount, params = decode(["address", "uint256", "bytes"], body)
    return str(asset), int(amount), bytes(params)
