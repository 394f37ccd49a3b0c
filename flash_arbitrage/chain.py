"""
In-memory execution environment.

A Ledger holds raw ERC-20 balances, allowances, per-contract storage and
an event log. `execution_unit()` gives every external call EVM commit
semantics: when anything inside raises, all of it is restored. The lending
pool and venue routers here consume and produce ledger balances exactly as
their on-chain counterparts would, in integer raw units.
"""

import copy
import itertools
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .exceptions import ExecutionRevertedError, RevertReason, UnrepaidLoanError

_address_counter = itertools.count(1)


def new_address(prefix: int = 0xA0) -> str:
    """A unique synthetic 20-byte address."""
    return "0x" + f"{prefix:02x}" + f"{next(_address_counter):038x}"


def norm(address: str) -> str:
    return address.lower()


def revert(reason: RevertReason, message: str = "") -> None:
    raise ExecutionRevertedError(reason, message or reason.value)


@dataclass(frozen=True)
class LedgerEvent:
    name: str
    emitter: str
    args: Dict[str, Any] = field(default_factory=dict)


class Ledger:
    """Balances, allowances, contract storage and events."""

    def __init__(self, timestamp: int = 1_700_000_000):
        self.timestamp = timestamp
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.storage: Dict[str, Dict[str, Any]] = {}
        self.events: List[LedgerEvent] = []

    @contextmanager
    def execution_unit(self) -> Iterator["Ledger"]:
        saved = (
            dict(self.balances),
            dict(self.allowances),
            copy.deepcopy(self.storage),
            len(self.events),
        )
        try:
            yield self
        except BaseException:
            self.balances, self.allowances, self.storage = saved[0], saved[1], saved[2]
            del self.events[saved[3]:]
            raise

    def storage_of(self, contract: str) -> Dict[str, Any]:
        return self.storage.setdefault(norm(contract), {})

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances.get((norm(token), norm(holder)), 0)

    def mint(self, token: str, holder: str, amount: int) -> None:
        key = (norm(token), norm(holder))
        self.balances[key] = self.balances.get(key, 0) + amount

    def transfer(self, token: str, src: str, dst: str, amount: int) -> None:
        if amount < 0:
            revert(RevertReason.INSUFFICIENT_BALANCE, "negative transfer")
        held = self.balance_of(token, src)
        if held < amount:
            revert(
                RevertReason.INSUFFICIENT_BALANCE,
                f"{src} holds {held} of {token}, needs {amount}",
            )
        self.balances[(norm(token), norm(src))] = held - amount
        self.mint(token, dst, amount)

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        self.allowances[(norm(token), norm(owner), norm(spender))] = amount

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((norm(token), norm(owner), norm(spender)), 0)

    def transfer_from(self, token: str, spender: str, src: str, dst: str, amount: int) -> None:
        allowed = self.allowance(token, src, spender)
        if allowed < amount:
            revert(
                RevertReason.INSUFFICIENT_BALANCE,
                f"allowance {allowed} of {token} below {amount}",
            )
        self.approve(token, src, spender, allowed - amount)
        self.transfer(token, src, dst, amount)

    def emit(self, name: str, emitter: str, **args: Any) -> None:
        self.events.append(LedgerEvent(name, norm(emitter), args))

    def events_named(self, name: str) -> List[LedgerEvent]:
        return [e for e in self.events if e.name == name]


class LendingPool:
    """
    Flash-loan provider.

    flash_loan sends the amounts to the receiver, invokes its callback and
    then pulls back amount plus premium through an allowance.
    """

    def __init__(self, ledger: Ledger, fee_bps: int = 9, address: Optional[str] = None):
        self.ledger = ledger
        self.address = address or new_address(0xB0)
        self.fee_bps = fee_bps

    def premium(self, amount: int) -> int:
        return amount * self.fee_bps // 10000

    def flash_loan(
        self,
        initiator: str,
        receiver,
        assets: Sequence[str],
        amounts: Sequence[int],
        params: bytes,
    ) -> None:
        with self.ledger.execution_unit():
            premiums = [self.premium(a) for a in amounts]
            before = [self.ledger.balance_of(asset, self.address) for asset in assets]

            for asset, amount, held in zip(assets, amounts, before):
                if held < amount:
                    revert(RevertReason.INSUFFICIENT_LIQUIDITY, f"pool holds {held} of {asset}")
                self.ledger.transfer(asset, self.address, receiver.address, amount)

            ok = receiver.execute_operation(
                self.address, list(assets), list(amounts), premiums, initiator, params
            )
            if not ok:
                revert(RevertReason.FLASH_LOAN_NOT_REPAID, "callback returned false")

            for asset, amount, premium in zip(assets, amounts, premiums):
                owed = amount + premium
                if self.ledger.allowance(asset, receiver.address, self.address) < owed:
                    revert(RevertReason.FLASH_LOAN_NOT_REPAID, f"no allowance for {owed}")
                self.ledger.transfer_from(asset, self.address, receiver.address, self.address, owed)

            for asset, held, premium in zip(assets, before, premiums):
                if self.ledger.balance_of(asset, self.address) < held + premium:
                    raise UnrepaidLoanError(f"Lending pool lost {asset} on a flash loan")


class ConstantProductRouter:
    """Uniswap V2 style router over pair balances held in the ledger."""

    def __init__(self, ledger: Ledger, fee_bps: int = 30, address: Optional[str] = None):
        self.ledger = ledger
        self.address = address or new_address(0xC0)
        self.fee_bps = fee_bps
        self.pairs: Dict[Tuple[str, str], str] = {}

    def add_pool(self, token_a: str, token_b: str, reserve_a: int, reserve_b: int) -> str:
        pair = new_address(0xD0)
        self.pairs[self._key(token_a, token_b)] = pair
        self.ledger.mint(token_a, pair, reserve_a)
        self.ledger.mint(token_b, pair, reserve_b)
        return pair

    @staticmethod
    def _key(token_a: str, token_b: str) -> Tuple[str, str]:
        a, b = sorted((norm(token_a), norm(token_b)))
        return a, b

    def pair_for(self, token_a: str, token_b: str) -> str:
        pair = self.pairs.get(self._key(token_a, token_b))
        if pair is None:
            revert(RevertReason.INVALID_PATH, f"no pair for {token_a}/{token_b}")
        return pair

    def get_amount_out(self, amount_in: int, token_in: str, token_out: str) -> int:
        pair = self.pair_for(token_in, token_out)
        reserve_in = self.ledger.balance_of(token_in, pair)
        reserve_out = self.ledger.balance_of(token_out, pair)
        if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
            revert(RevertReason.INSUFFICIENT_LIQUIDITY, f"empty pair {pair}")
        amount_in_with_fee = amount_in * (10000 - self.fee_bps)
        return amount_in_with_fee * reserve_out // (reserve_in * 10000 + amount_in_with_fee)

    def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> List[int]:
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            amounts.append(self.get_amount_out(amounts[-1], token_in, token_out))
        return amounts

    def swap_exact_tokens_for_tokens(
        self,
        sender: str,
        amount_in: int,
        min_out: int,
        path: Sequence[str],
        recipient: str,
        deadline: int,
    ) -> List[int]:
        with self.ledger.execution_unit():
            if deadline < self.ledger.timestamp:
                revert(RevertReason.DEADLINE_EXPIRED)
            amounts = self.get_amounts_out(amount_in, path)
            if amounts[-1] < min_out:
                revert(
                    RevertReason.SLIPPAGE_EXCEEDED,
                    f"output {amounts[-1]} below minimum {min_out}",
                )
            first_pair = self.pair_for(path[0], path[1])
            self.ledger.transfer_from(path[0], self.address, sender, first_pair, amount_in)
            for i, (token_in, token_out) in enumerate(zip(path, path[1:])):
                pair = self.pair_for(token_in, token_out)
                last = i == len(path) - 2
                to = recipient if last else self.pair_for(path[i + 1], path[i + 2])
                self.ledger.transfer(token_out, pair, to, amounts[i + 1])
            return amounts


@dataclass
class StablePool:
    address: str
    coins: Tuple[str, str]
    rate: Decimal  # raw units of coins[1] per raw unit of coins[0]


class StableSwapRouter:
    """
    Curve style router: best-rate lookup across registered pools and a
    single-pool exchange along a [token_in, pool, token_out] route.
    """

    def __init__(self, ledger: Ledger, fee_bps: int = 4, address: Optional[str] = None):
        self.ledger = ledger
        self.address = address or new_address(0xE0)
        self.fee_bps = fee_bps
        self.pools: Dict[str, StablePool] = {}

    def add_pool(self, token_a: str, token_b: str, balance_a: int, balance_b: int, rate: Decimal) -> str:
        pool = StablePool(new_address(0xF0), (norm(token_a), norm(token_b)), Decimal(rate))
        self.pools[norm(pool.address)] = pool
        self.ledger.mint(token_a, pool.address, balance_a)
        self.ledger.mint(token_b, pool.address, balance_b)
        return pool.address

    def _quote(self, pool: StablePool, token_in: str, token_out: str, amount: int) -> int:
        if (norm(token_in), norm(token_out)) == pool.coins:
            rate = pool.rate
        elif (norm(token_out), norm(token_in)) == pool.coins:
            rate = Decimal(1) / pool.rate
        else:
            return 0
        gross = Decimal(amount) * rate * (Decimal(10000 - self.fee_bps) / Decimal(10000))
        out = int(gross)
        if out >= self.ledger.balance_of(token_out, pool.address):
            return 0
        return out

    def get_best_rate(self, token_in: str, token_out: str, amount: int) -> Tuple[Optional[str], int]:
        best: Tuple[Optional[str], int] = (None, 0)
        for address in sorted(self.pools):
            out = self._quote(self.pools[address], token_in, token_out, amount)
            if out > best[1]:
                best = (self.pools[address].address, out)
        return best

    def exchange(
        self,
        sender: str,
        route: Sequence[str],
        amount: int,
        min_out: int,
        recipient: str,
    ) -> int:
        with self.ledger.execution_unit():
            if len(route) != 3:
                revert(RevertReason.INVALID_PATH, f"route must be [in, pool, out], got {route}")
            token_in, pool_address, token_out = route
            pool = self.pools.get(norm(pool_address))
            if pool is None:
                revert(RevertReason.INVALID_PATH, f"unknown pool {pool_address}")
            out = self._quote(pool, token_in, token_out, amount)
            if out <= 0:
                revert(RevertReason.INSUFFICIENT_LIQUIDITY, f"pool {pool_address} cannot pay")
            if out < min_out:
                revert(RevertReason.SLIPPAGE_EXCEEDED, f"output {out} below minimum {min_out}")
            self.ledger.transfer_from(token_in, self.address, sender, pool.address, amount)
            self.ledger.transfer(token_out, pool.address, recipient, out)
            return out
