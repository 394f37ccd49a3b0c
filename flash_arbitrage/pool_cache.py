"""
Pool state cache.

Holds the latest reserves or rate snapshot for every configured pair on
every enabled venue. Refreshes are serialized behind one lock and publish a
new immutable PoolSnapshot; scanners only ever see a completed snapshot.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from .config_loader import BotConfig
from .exceptions import StaleDataError
from .interfaces import PoolStateSource
from .metrics import PipelineMetrics
from .types import PoolKey, PoolSnapshot, PoolState, Token, Venue
from .utils import get_logger

logger = get_logger(__name__)


class PoolStateCache:
    """
    Latest known state per (venue, pair).

    A failed refresh keeps the prior state in place and marks the pool as
    degraded; degraded pools stay available for pricing but do not count as
    independent price sources. States older than `max_block_lookback` blocks
    behind the newest block are left out of snapshots.
    """

    def __init__(
        self,
        config: BotConfig,
        source: PoolStateSource,
        metrics: Optional[PipelineMetrics] = None,
        max_concurrent_refreshes: int = 5,
    ):
        self._source = source
        self._metrics = metrics
        self._lookback = config.network.max_block_lookback
        self._max_concurrent_refreshes = max_concurrent_refreshes

        self._states: Dict[PoolKey, PoolState] = {}
        self._degraded: Set[PoolKey] = set()
        self._latest_block = 0
        self._lock = asyncio.Lock()
        self._snapshot = PoolSnapshot({}, 0)

        enabled = {v.name: v for v in config.enabled_venues}
        self._watched: List[Tuple[Venue, Token, Token]] = [
            (enabled[spec.venue], config.token(spec.base), config.token(spec.quote))
            for spec in config.pools
            if spec.venue in enabled
        ]

    @property
    def latest_block(self) -> int:
        return self._latest_block

    @property
    def degraded_sources(self) -> frozenset:
        return frozenset(self._degraded)

    def snapshot(self) -> PoolSnapshot:
        """Latest completed snapshot. Never blocks on an in-progress refresh."""
        return self._snapshot

    async def refresh(
        self, venue: Venue, token_a: Token, token_b: Token, block_number: Optional[int] = None
    ) -> PoolState:
        """
        Read one pool and publish a new snapshot.

        Raises:
            StaleDataError: If the read fails; the previous state is kept
        """
        block = block_number if block_number is not None else self._latest_block
        key = PoolKey.of(venue.name, token_a.symbol, token_b.symbol)

        try:
            state = await self._source.read_pool(venue, token_a, token_b, block)
        except Exception as e:
            async with self._lock:
                self._degraded.add(key)
                self._publish()
                degraded_count = len(self._degraded)
            log_data = {"venue": venue.name, "pair": key.pair, "error": str(e)}
            logger.warning(f"DEGRADED_SOURCE: {log_data}")
            if self._metrics:
                self._metrics.record_refresh_failure(venue.name, degraded_count)
            raise StaleDataError(
                f"Refresh of {key.pair} on {venue.name} failed: {e}",
                venue=venue.name,
                pair=key.pair,
            ) from e

        async with self._lock:
            self._states[key] = state
            self._degraded.discard(key)
            self._latest_block = max(self._latest_block, state.block_number)
            self._publish()
        if self._metrics:
            self._metrics.set_degraded_sources(len(self._degraded))
        return state

    async def refresh_all(self, block_number: Optional[int] = None) -> int:
        """
        Refresh every watched pool concurrently.

        Failures are absorbed (each is already logged as a degraded source).

        Returns:
            Number of pools refreshed successfully
        """
        if block_number is not None:
            self.note_block(block_number)

        semaphore = asyncio.Semaphore(self._max_concurrent_refreshes)

        async def refresh_one(venue: Venue, token_a: Token, token_b: Token) -> PoolState:
            async with semaphore:
                return await self.refresh(venue, token_a, token_b, block_number)

        results = await asyncio.gather(
            *(refresh_one(*pair) for pair in self._watched), return_exceptions=True
        )

        refreshed = 0
        for result in results:
            if isinstance(result, StaleDataError):
                continue
            if isinstance(result, BaseException):
                raise result
            refreshed += 1

        logger.debug(
            f"Refreshed {refreshed}/{len(self._watched)} pools at block {self._latest_block}"
        )
        return refreshed

    def note_block(self, block_number: int) -> None:
        """Advance the newest known block, aging out states beyond the lookback window."""
        if block_number > self._latest_block:
            self._latest_block = block_number
            self._publish()

    def _publish(self) -> None:
        oldest = self._latest_block - self._lookback
        fresh = {
            key: state
            for key, state in self._states.items()
            if state.block_number >= oldest
        }
        self._snapshot = PoolSnapshot(
            fresh, block_number=self._latest_block, degraded=frozenset(self._degraded)
        )
