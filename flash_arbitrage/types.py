"""
Core data types for the flash arbitrage pipeline.

Amounts are Decimal values in whole-token units (1.5 WETH is Decimal("1.5"));
conversion to raw integer units happens only at the chain boundary.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

from .amm import to_raw


class VenueKind(str, Enum):
    """Pricing model of a venue."""

    CONSTANT_PRODUCT = "constant_product"
    STABLE_SWAP = "stable_swap"


class CycleState(str, Enum):
    """Per scan cycle state of the strategy engine."""

    IDLE = "idle"
    SCANNING = "scanning"
    EVALUATING = "evaluating"
    SELECTED = "selected"
    NO_OPPORTUNITY = "no_opportunity"


class OutcomeStatus(str, Enum):
    COMMITTED = "committed"
    REVERTED = "reverted"
    NOT_SUBMITTED = "not_submitted"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Token:
    """
    An ERC-20 token.

    Attributes:
        symbol: Ticker used in config and logs (e.g., "WETH")
        address: Checksum address
        decimals: Decimal precision of the raw integer amount
    """

    symbol: str
    address: str
    decimals: int = 18

    def __str__(self) -> str:
        return self.symbol


@dataclass(frozen=True)
class Venue:
    """
    An AMM protocol instance.

    Attributes:
        name: Venue name (e.g., "uniswap", "curve")
        kind: Pricing model tag
        router: Router contract address
        fee: Swap fee as decimal (0.003 for 30 bps)
        factory: Factory contract address, if any
        enabled: Disabled venues are dropped as a unit
    """

    name: str
    kind: VenueKind
    router: str
    fee: Decimal = Decimal("0.003")
    factory: Optional[str] = None
    enabled: bool = True

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, order=True)
class PoolKey:
    """Identity of a pool: venue name plus the pair's symbols in sorted order."""

    venue: str
    token_a: str
    token_b: str

    @classmethod
    def of(cls, venue: str, symbol_x: str, symbol_y: str) -> "PoolKey":
        a, b = sorted((symbol_x, symbol_y))
        return cls(venue, a, b)

    @property
    def pair(self) -> str:
        return f"{self.token_a}/{self.token_b}"


@dataclass(frozen=True)
class PoolState:
    """
    Reserves or rate snapshot of one pool.

    For constant-product pools reserve0/reserve1 drive pricing. Stable-swap
    pools also carry `rate` (token1 received per token0 at refresh time);
    their reserves only gate usability.
    """

    venue: Venue
    token0: Token
    token1: Token
    reserve0: Decimal
    reserve1: Decimal
    block_number: int
    fee: Decimal = Decimal("0.003")
    rate: Optional[Decimal] = None
    address: Optional[str] = None

    @property
    def key(self) -> PoolKey:
        return PoolKey.of(self.venue.name, self.token0.symbol, self.token1.symbol)

    @property
    def is_usable(self) -> bool:
        if self.reserve0 <= 0 or self.reserve1 <= 0:
            return False
        if self.venue.kind is VenueKind.STABLE_SWAP:
            return self.rate is not None and self.rate > 0
        return True

    def has_token(self, symbol: str) -> bool:
        return symbol in (self.token0.symbol, self.token1.symbol)

    def other(self, symbol: str) -> Token:
        if symbol == self.token0.symbol:
            return self.token1
        if symbol == self.token1.symbol:
            return self.token0
        raise KeyError(f"{symbol} not in pool {self.key.pair}")

    def reserves_for(self, symbol_in: str) -> Tuple[Decimal, Decimal]:
        """Return (reserve_in, reserve_out) for a swap selling symbol_in."""
        if symbol_in == self.token0.symbol:
            return self.reserve0, self.reserve1
        if symbol_in == self.token1.symbol:
            return self.reserve1, self.reserve0
        raise KeyError(f"{symbol_in} not in pool {self.key.pair}")

    def mid_price(self, base: str) -> Decimal:
        """Units of the other token per unit of `base`, fee excluded."""
        if self.rate is not None:
            return self.rate if base == self.token0.symbol else Decimal(1) / self.rate
        reserve_in, reserve_out = self.reserves_for(base)
        return reserve_out / reserve_in


class PoolSnapshot:
    """
    Read-only view of every pool state known to the cache at one instant.

    Evaluators share a snapshot; nothing in it can be mutated after the
    cache publishes it.
    """

    def __init__(
        self,
        states: Mapping[PoolKey, PoolState],
        block_number: int = 0,
        degraded: FrozenSet[PoolKey] = frozenset(),
    ):
        self._states = MappingProxyType(dict(states))
        self.block_number = block_number
        self.degraded = frozenset(degraded)

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[PoolState]:
        return iter(self._states.values())

    def __contains__(self, key: PoolKey) -> bool:
        return key in self._states

    def get(self, key: PoolKey) -> Optional[PoolState]:
        return self._states.get(key)

    @property
    def states(self) -> Mapping[PoolKey, PoolState]:
        return self._states

    def for_pair(self, symbol_x: str, symbol_y: str) -> List[PoolState]:
        """Usable, non-degraded pools for a pair across all venues."""
        a, b = sorted((symbol_x, symbol_y))
        return [
            state
            for key, state in sorted(self._states.items())
            if key.token_a == a
            and key.token_b == b
            and key not in self.degraded
            and state.is_usable
        ]


@dataclass(frozen=True)
class Candidate:
    """
    A cycle through one or more venues that returns to its funding token.

    tokens has one more entry than venues, and tokens[0] == tokens[-1].
    """

    tokens: Tuple[Token, ...]
    venues: Tuple[Venue, ...]

    def __post_init__(self):
        if len(self.tokens) < 2 or len(self.venues) != len(self.tokens) - 1:
            raise ValueError(
                f"Path needs len(venues) == len(tokens) - 1, got "
                f"{len(self.venues)} venues for {len(self.tokens)} tokens"
            )
        if self.tokens[0] != self.tokens[-1]:
            raise ValueError(
                f"Cycle must return to {self.tokens[0].symbol}, ends at "
                f"{self.tokens[-1].symbol}"
            )

    @property
    def funding_token(self) -> Token:
        return self.tokens[0]

    @property
    def hop_count(self) -> int:
        return len(self.venues)

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(t.symbol for t in self.tokens)

    @property
    def route_key(self) -> str:
        """Stable text identity used for cool-downs and logs."""
        parts = [self.tokens[0].symbol]
        for venue, token in zip(self.venues, self.tokens[1:]):
            parts.append(f"{venue.name}:{token.symbol}")
        return ">".join(parts)

    def hops(self) -> Iterator[Tuple[Token, Token, Venue]]:
        for i, venue in enumerate(self.venues):
            yield self.tokens[i], self.tokens[i + 1], venue


@dataclass(frozen=True)
class HopQuote:
    """Expected result of one hop."""

    token_in: Token
    token_out: Token
    venue: Venue
    amount_in: Decimal
    amount_out: Decimal
    price_impact: Decimal = Decimal(0)
    pool: Optional[str] = None


@dataclass(frozen=True)
class Evaluation:
    """
    Priced candidate.

    net_profit deducts principal and flash-loan premium from the expected
    final output. The slippage-adjusted figures use the minimum output the
    execution will still accept.

    Amounts are in funding-token units. The `*_value` properties convert
    them into `numeraire` at `numeraire_price` (numeraire per funding
    token); without a numeraire they equal the funding-token amounts.
    """

    candidate: Candidate
    principal: Decimal
    hops: Tuple[HopQuote, ...]
    loan_fee: Decimal
    slippage_tolerance: Decimal
    numeraire: Optional[str] = None
    numeraire_price: Decimal = Decimal(1)

    @property
    def expected_outputs(self) -> Tuple[Decimal, ...]:
        return tuple(h.amount_out for h in self.hops)

    @property
    def final_output(self) -> Decimal:
        return self.hops[-1].amount_out if self.hops else Decimal(0)

    @property
    def net_profit(self) -> Decimal:
        return self.final_output - self.principal - self.loan_fee

    @property
    def min_final_output(self) -> Decimal:
        return self.final_output * (Decimal(1) - self.slippage_tolerance)

    @property
    def net_profit_after_slippage(self) -> Decimal:
        return self.min_final_output - self.principal - self.loan_fee

    @property
    def slippage_delta(self) -> Decimal:
        return self.final_output - self.min_final_output

    @property
    def net_value(self) -> Decimal:
        return self.net_profit * self.numeraire_price

    @property
    def net_value_after_slippage(self) -> Decimal:
        return self.net_profit_after_slippage * self.numeraire_price

    @property
    def worst_case_slippage(self) -> Decimal:
        """Combined price impact across hops."""
        remaining = Decimal(1)
        for hop in self.hops:
            remaining *= Decimal(1) - hop.price_impact
        return Decimal(1) - remaining

    def ranking_key(self) -> Tuple[Decimal, int, Decimal]:
        """
        Sort key, smallest is best.

        With a numeraire, profit and slippage allowance are compared by
        value. Without one they are taken per unit of principal so cycles
        funded in different tokens still compare on one scale.
        """
        if self.numeraire is not None:
            return (
                -self.net_value,
                self.candidate.hop_count,
                self.slippage_delta * self.numeraire_price,
            )
        return (
            -(self.net_profit / self.principal),
            self.candidate.hop_count,
            self.slippage_delta / self.principal,
        )

    def to_log_dict(self) -> Dict[str, str]:
        unit = self.numeraire or self.candidate.funding_token.symbol
        return {
            "route": self.candidate.route_key,
            "principal": str(self.principal),
            "final_output": f"{self.final_output:.8f}",
            "net_profit": f"{self.net_profit:.8f}",
            "net_after_slippage": f"{self.net_profit_after_slippage:.8f}",
            "worst_slippage": f"{self.worst_case_slippage:.6f}",
            "value_after_slippage": f"{self.net_value_after_slippage:.6f} {unit}",
        }


@dataclass(frozen=True)
class FeeParams:
    """Fee fields attached to the execution transaction. Values in wei."""

    strategy: str
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_limit: int
    base_fee: Optional[int] = None

    def to_tx_fields(self) -> Dict[str, int]:
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "gas": self.gas_limit,
        }


@dataclass(frozen=True)
class ExecutionRequest:
    """
    Everything needed to start one execution unit.

    Built once from a validated evaluation; never changed afterwards.
    """

    request_id: str
    asset: Token
    principal: Decimal
    tokens: Tuple[Token, ...]
    venues: Tuple[Venue, ...]
    slippage_bps: int
    deadline: int
    fee: FeeParams
    evaluation: Evaluation
    calldata: bytes = b""

    def __post_init__(self):
        if len(self.venues) != len(self.tokens) - 1:
            raise ValueError("len(venues) must equal len(tokens) - 1")
        if self.tokens[0] != self.tokens[-1] or self.tokens[0] != self.asset:
            raise ValueError("Token path must start and end at the borrowed asset")

    @property
    def principal_raw(self) -> int:
        return to_raw(self.principal, self.asset.decimals)


@dataclass(frozen=True)
class ExecutionOutcome:
    """Terminal result of one scan cycle's execution attempt."""

    status: OutcomeStatus
    request: Optional[ExecutionRequest] = None
    realized_profit: Optional[Decimal] = None
    reason: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    channel: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def committed(cls, request: ExecutionRequest, realized_profit: Decimal, **kwargs) -> "ExecutionOutcome":
        return cls(OutcomeStatus.COMMITTED, request, realized_profit=realized_profit, **kwargs)

    @classmethod
    def reverted(cls, request: ExecutionRequest, reason: str, **kwargs) -> "ExecutionOutcome":
        return cls(OutcomeStatus.REVERTED, request, reason=reason, **kwargs)

    @classmethod
    def not_submitted(cls, reason: str, request: Optional[ExecutionRequest] = None) -> "ExecutionOutcome":
        return cls(OutcomeStatus.NOT_SUBMITTED, request, reason=reason)

    @classmethod
    def timed_out(cls, request: ExecutionRequest, **kwargs) -> "ExecutionOutcome":
        return cls(OutcomeStatus.TIMED_OUT, request, reason="timeout", **kwargs)

    @property
    def is_committed(self) -> bool:
        return self.status is OutcomeStatus.COMMITTED
