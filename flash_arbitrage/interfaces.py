"""
Dependency injection interfaces for the pipeline's external collaborators.

Components receive a clock, a pool state source and a fee data source at
construction instead of reading wall time or an RPC endpoint directly, so
tests can drive them deterministically.
"""

import time
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from .types import PoolState, Token, Venue


@runtime_checkable
class Clock(Protocol):
    """Protocol for time-related operations."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        ...

    def monotonic(self) -> float:
        """Get a monotonic reading in seconds for measuring intervals."""
        ...


class SystemClock:
    """Production clock using system time."""

    def current_timestamp(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Deterministic clock for tests; only moves when told to."""

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time

    def current_timestamp(self) -> float:
        return self._current_time

    def monotonic(self) -> float:
        return self._current_time

    def advance(self, seconds: float) -> None:
        """Manually advance time by specified seconds."""
        self._current_time += seconds


@runtime_checkable
class PoolStateSource(Protocol):
    """Reads reserves or rate data for one pair on one venue."""

    async def read_pool(
        self, venue: Venue, token_a: Token, token_b: Token, block_number: int
    ) -> PoolState:
        ...


@runtime_checkable
class StableSwapQuoter(Protocol):
    """Asks a stable-swap venue for its best rate."""

    async def best_rate(
        self, venue: Venue, token_in: Token, token_out: Token, amount_in: Decimal
    ) -> Tuple[Optional[str], Decimal]:
        """Return (pool address, amount out) for the best route on the venue."""
        ...


@runtime_checkable
class FeeDataSource(Protocol):
    """Chain fee data used by the gas optimizer. All values are in wei."""

    def latest_base_fee(self) -> int:
        ...

    def gas_price(self) -> int:
        ...

    def priority_fee_history(self, block_count: int, percentiles: List[float]) -> List[List[int]]:
        """Per-block priority fee rewards at the requested percentiles."""
        ...
