"""
Execution contract state machine.

Borrows one asset from the lending pool, walks the encoded token path with
one swap per hop, and only lets the loan close if it holds principal plus
premium afterwards. Persistent state is the owner, the authorized-caller
set, the emergency-stop flag and the reentrancy lock, all kept in ledger
storage so a revert restores them with everything else.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .chain import (
    ConstantProductRouter,
    LedgerEvent,
    Ledger,
    LendingPool,
    StableSwapRouter,
    new_address,
    norm,
    revert,
)
from .codec import VENUE_KIND_IDS, decode_params
from .exceptions import RevertReason
from .types import VenueKind
from .utils import get_logger

logger = get_logger(__name__)

KIND_BY_ID = {kind_id: kind for kind, kind_id in VENUE_KIND_IDS.items()}

PROFIT_EVENT = "ProfitSummary"


@dataclass(frozen=True)
class ConstantProductHop:
    router: ConstantProductRouter


@dataclass(frozen=True)
class StableSwapHop:
    router: StableSwapRouter


class ArbitrageExecutor:
    """
    Flash-loan receiver that executes a cycle atomically.

    Every public method takes the calling address as `sender`; each runs
    in its own execution unit.
    """

    def __init__(
        self,
        ledger: Ledger,
        lending_pool: LendingPool,
        owner: str,
        constant_product_routers: Sequence[ConstantProductRouter] = (),
        stable_swap_routers: Sequence[StableSwapRouter] = (),
        address: Optional[str] = None,
    ):
        self.ledger = ledger
        self.lending_pool = lending_pool
        self.address = address or new_address(0xAB)
        self._routers: Dict[VenueKind, Dict[str, object]] = {
            VenueKind.CONSTANT_PRODUCT: {norm(r.address): r for r in constant_product_routers},
            VenueKind.STABLE_SWAP: {norm(r.address): r for r in stable_swap_routers},
        }

        store = self._store
        store["owner"] = norm(owner)
        store["authorized"] = {norm(owner)}
        store["emergency_stop"] = False
        store["locked"] = False

    @property
    def _store(self) -> dict:
        return self.ledger.storage_of(self.address)

    @property
    def owner(self) -> str:
        return self._store["owner"]

    @property
    def emergency_stopped(self) -> bool:
        return self._store["emergency_stop"]

    def is_authorized(self, caller: str) -> bool:
        return norm(caller) in self._store["authorized"]

    # === ADMINISTRATION ===

    def _only_owner(self, sender: str) -> None:
        if norm(sender) != self.owner:
            revert(RevertReason.NOT_OWNER, "Ownable: caller is not the owner")

    def authorize_caller(self, sender: str, caller: str) -> None:
        with self.ledger.execution_unit():
            self._only_owner(sender)
            self._store["authorized"].add(norm(caller))
            self.ledger.emit("CallerAuthorized", self.address, caller=norm(caller))

    def unauthorize_caller(self, sender: str, caller: str) -> None:
        with self.ledger.execution_unit():
            self._only_owner(sender)
            self._store["authorized"].discard(norm(caller))
            self.ledger.emit("CallerUnauthorized", self.address, caller=norm(caller))

    def activate_emergency_stop(self, sender: str) -> None:
        with self.ledger.execution_unit():
            self._only_owner(sender)
            self._store["emergency_stop"] = True
            self.ledger.emit("EmergencyStopActivated", self.address)

    def deactivate_emergency_stop(self, sender: str) -> None:
        with self.ledger.execution_unit():
            self._only_owner(sender)
            self._store["emergency_stop"] = False
            self.ledger.emit("EmergencyStopDeactivated", self.address)

    def recover_token(self, sender: str, token: str, amount: int) -> None:
        """Send tokens stranded in the contract to the owner."""
        with self.ledger.execution_unit():
            self._only_owner(sender)
            self.ledger.transfer(token, self.address, self.owner, amount)

    # === EXECUTION ===

    def execute_arbitrage(self, sender: str, asset: str, amount: int, params: bytes) -> int:
        """
        Entry point: borrow `amount` of `asset` and run the encoded cycle.

        Returns:
            Realized profit in raw units of `asset`

        Raises:
            ExecutionRevertedError: On any failed condition; nothing changed
        """
        with self.ledger.execution_unit():
            if not self.is_authorized(sender):
                revert(RevertReason.NOT_AUTHORIZED, f"{sender} is not authorized")
            if self.emergency_stopped:
                revert(RevertReason.EMERGENCY_STOPPED)

            decoded = decode_params(params)
            self._check_path(decoded.tokens, len(decoded.hops), asset)

            events_before = len(self.ledger.events)
            self.lending_pool.flash_loan(self.address, self, [asset], [amount], params)

            summaries = [
                e for e in self.ledger.events[events_before:]
                if e.name == PROFIT_EVENT and e.emitter == norm(self.address)
            ]
            return summaries[-1].args["profit"]

    def execute_operation(
        self,
        caller: str,
        assets: List[str],
        amounts: List[int],
        premiums: List[int],
        initiator: str,
        params: bytes,
    ) -> bool:
        """Lending pool callback."""
        with self.ledger.execution_unit():
            if norm(caller) != norm(self.lending_pool.address):
                revert(RevertReason.UNAUTHORIZED_CALLER, f"callback from {caller}")
            if norm(initiator) != norm(self.address):
                revert(RevertReason.INITIATOR_MISMATCH, f"loan initiated by {initiator}")
            if self._store["locked"]:
                revert(RevertReason.REENTRANT_CALL)
            self._store["locked"] = True

            decoded = decode_params(params)
            asset = assets[0]
            self._check_path(decoded.tokens, len(decoded.hops), asset)

            amount = amounts[0]
            for i, (kind_id, router_address) in enumerate(decoded.hops):
                hop = self._resolve_venue(kind_id, router_address)
                amount = self._swap(
                    hop, decoded.tokens[i], decoded.tokens[i + 1], amount,
                    decoded.slippage_bps, decoded.deadline,
                )

            held = self.ledger.balance_of(asset, self.address)
            owed = amounts[0] + premiums[0]
            if held < owed:
                revert(
                    RevertReason.INSUFFICIENT_REPAYMENT,
                    f"holding {held}, owe {owed}",
                )

            self.ledger.approve(asset, self.address, self.lending_pool.address, owed)
            self.ledger.emit(
                PROFIT_EVENT,
                self.address,
                asset=norm(asset),
                principal=amounts[0],
                premium=premiums[0],
                profit=held - owed,
            )
            self._store["locked"] = False
            return True

    @staticmethod
    def _check_path(tokens: Sequence[str], hop_count: int, asset: str) -> None:
        if len(tokens) < 2 or hop_count != len(tokens) - 1:
            revert(RevertReason.INVALID_PATH, "len(hops) must equal len(tokens) - 1")
        if norm(tokens[0]) != norm(asset) or norm(tokens[-1]) != norm(asset):
            revert(RevertReason.INVALID_PATH, "path must start and end at the borrowed asset")

    def _resolve_venue(self, kind_id: int, router_address: str):
        kind = KIND_BY_ID.get(kind_id)
        if kind is None:
            revert(RevertReason.UNSUPPORTED_VENUE, f"unknown venue kind {kind_id}")
        router = self._routers[kind].get(norm(router_address))
        if router is None:
            revert(RevertReason.UNSUPPORTED_VENUE, f"unknown {kind.value} router {router_address}")
        if kind is VenueKind.CONSTANT_PRODUCT:
            return ConstantProductHop(router)
        return StableSwapHop(router)

    def _swap(self, hop, token_in: str, token_out: str, amount: int, slippage_bps: int, deadline: int) -> int:
        """Approve the venue, derive the minimum from its quote and swap."""
        ledger = self.ledger
        if isinstance(hop, ConstantProductHop):
            ledger.approve(token_in, self.address, hop.router.address, amount)
            expected = hop.router.get_amounts_out(amount, [token_in, token_out])[-1]
            min_out = expected * (10000 - slippage_bps) // 10000
            amounts = hop.router.swap_exact_tokens_for_tokens(
                self.address, amount, min_out, [token_in, token_out], self.address, deadline
            )
            return amounts[-1]
        if isinstance(hop, StableSwapHop):
            if deadline < ledger.timestamp:
                revert(RevertReason.DEADLINE_EXPIRED)
            ledger.approve(token_in, self.address, hop.router.address, amount)
            pool, expected = hop.router.get_best_rate(token_in, token_out, amount)
            if pool is None:
                revert(RevertReason.INSUFFICIENT_LIQUIDITY, f"no stable pool for {token_in}/{token_out}")
            min_out = expected * (10000 - slippage_bps) // 10000
            return hop.router.exchange(self.address, [token_in, pool, token_out], amount, min_out, self.address)
        raise AssertionError(f"Unhandled hop type {type(hop).__name__}")


def profit_events(ledger: Ledger, executor: ArbitrageExecutor) -> List[LedgerEvent]:
    return [e for e in ledger.events_named(PROFIT_EVENT) if e.emitter == norm(executor.address)]
