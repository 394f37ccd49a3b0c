"""Curve style router reads."""

from typing import Optional, Tuple

from web3 import Web3

from .abi import CURVE_ROUTER_ABI, ERC20_ABI
from .constant_product import ZERO_ADDRESS


def get_best_rate(
    web3: Web3, router_addr: str, token_in: str, token_out: str, amount_raw: int
) -> Tuple[Optional[str], int]:
    """(pool, raw amount out) of the router's best single-pool route; (None, 0) if none."""
    router = web3.eth.contract(address=Web3.to_checksum_address(router_addr), abi=CURVE_ROUTER_ABI)
    pool, amount_out = router.functions.get_best_rate(
        Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out), amount_raw
    ).call()
    if not pool or pool == ZERO_ADDRESS:
        return None, 0
    return Web3.to_checksum_address(pool), int(amount_out)


def token_balance(web3: Web3, token: str, holder: str) -> int:
    contract = web3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
    return int(contract.functions.balanceOf(Web3.to_checksum_address(holder)).call())
