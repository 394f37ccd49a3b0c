"""
Uniswap V2 style pair reads.

Fetches token ordering and reserves from a pair contract, retrying with
exponential backoff when the RPC rate-limits.
"""

import time
from typing import Tuple

from web3 import Web3
from web3.exceptions import Web3Exception

from .abi import UNISWAP_V2_FACTORY_ABI, UNISWAP_V2_PAIR_ABI

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _is_rate_limited(error: Exception) -> bool:
    text = str(error)
    return "429" in text or "Too Many Requests" in text


def fetch_pair(web3: Web3, pair_addr: str, max_retries: int = 3) -> Tuple[str, str, int, int]:
    """
    Read (token0, token1, reserve0, reserve1) from a pair. Reserves are raw.

    Raises:
        Web3Exception: If RPC calls fail after all retries
        ValueError: If the pair address is invalid
    """
    if not Web3.is_address(pair_addr):
        raise ValueError(f"Invalid pair address: {pair_addr}")

    pair = web3.eth.contract(address=Web3.to_checksum_address(pair_addr), abi=UNISWAP_V2_PAIR_ABI)

    last_error = None
    for attempt in range(max_retries):
        try:
            token0 = pair.functions.token0().call()
            token1 = pair.functions.token1().call()
            reserves = pair.functions.getReserves().call()
            return (
                Web3.to_checksum_address(token0),
                Web3.to_checksum_address(token1),
                int(reserves[0]),
                int(reserves[1]),
            )
        except Exception as e:
            last_error = e
            if _is_rate_limited(e) and attempt < max_retries - 1:
                # 1s, 2s, 4s
                time.sleep(2**attempt)
                continue
            raise Web3Exception(f"Failed to fetch pair {pair_addr}: {e}") from e

    raise Web3Exception(
        f"Failed to fetch pair {pair_addr} after {max_retries} retries: {last_error}"
    ) from last_error


def resolve_pair(web3: Web3, factory_addr: str, token_a: str, token_b: str) -> str:
    """Pair address from the factory.

    Raises:
        LookupError: If the factory has no pair for the tokens
    """
    factory = web3.eth.contract(
        address=Web3.to_checksum_address(factory_addr), abi=UNISWAP_V2_FACTORY_ABI
    )
    pair = factory.functions.getPair(
        Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
    ).call()
    if not pair or pair == ZERO_ADDRESS:
        raise LookupError(f"No pair for {token_a}/{token_b} on factory {factory_addr}")
    return Web3.to_checksum_address(pair)
