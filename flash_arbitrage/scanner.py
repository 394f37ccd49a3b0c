"""
Opportunity scanner.

Builds a token graph from a pool snapshot and enumerates every simple cycle
of up to `max_hops` hops rooted at each configured base token. Nodes are
integer indices into a token table; parallel edges carry one venue each.
"""

from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import networkx as nx

from .config_loader import BotConfig
from .types import Candidate, PoolKey, PoolSnapshot, Token, Venue
from .utils import get_logger

logger = get_logger(__name__)


class TokenGraph:
    """
    Adjacency structure over a snapshot.

    `graph` is a networkx MultiDiGraph whose nodes are ints; `tokens[i]` is
    the Token for node i. Each usable pool adds one edge in each direction,
    keyed by venue name.
    """

    def __init__(self, snapshot: PoolSnapshot, venues: Optional[Sequence[Venue]] = None):
        allowed = {v.name for v in venues} if venues is not None else None
        self.graph = nx.MultiDiGraph()
        self.tokens: List[Token] = []
        self.index: Dict[str, int] = {}

        for key in sorted(snapshot.states):
            state = snapshot.states[key]
            if not state.is_usable or not state.venue.enabled:
                continue
            if allowed is not None and state.venue.name not in allowed:
                continue
            u = self._node(state.token0)
            v = self._node(state.token1)
            self.graph.add_edge(u, v, key=state.venue.name, venue=state.venue, pool=key)
            self.graph.add_edge(v, u, key=state.venue.name, venue=state.venue, pool=key)

    def _node(self, token: Token) -> int:
        if token.symbol not in self.index:
            self.index[token.symbol] = len(self.tokens)
            self.tokens.append(token)
            self.graph.add_node(self.index[token.symbol])
        return self.index[token.symbol]

    def edges_from(self, u: int) -> Iterator[Tuple[int, Venue, PoolKey]]:
        """Outgoing edges in a deterministic order."""
        for v in sorted(self.graph.adj[u]):
            for venue_name in sorted(self.graph.adj[u][v]):
                data = self.graph.adj[u][v][venue_name]
                yield v, data["venue"], data["pool"]


class OpportunityScanner:
    """Enumerates candidate cycles from a snapshot."""

    def __init__(self, config: BotConfig):
        self.base_tokens: Tuple[str, ...] = config.arbitrage.base_tokens
        self.max_hops = config.arbitrage.max_hops
        self.venues = config.enabled_venues

    def scan(self, snapshot: PoolSnapshot, max_hops: Optional[int] = None) -> Iterator[Candidate]:
        """
        Lazily yield every simple cycle of 2..max_hops hops from each base token.

        A pool is used at most once per cycle, so a round trip through the
        same pool is never produced. Stopping iteration early is safe; calling
        scan again restarts from scratch.
        """
        limit = max_hops if max_hops is not None else self.max_hops
        graph = TokenGraph(snapshot, self.venues)

        for symbol in self.base_tokens:
            root = graph.index.get(symbol)
            if root is None:
                logger.debug(f"Base token {symbol} has no usable pools in snapshot")
                continue
            yield from self._cycles_from(graph, root, limit)

    def _cycles_from(self, graph: TokenGraph, root: int, max_hops: int) -> Iterator[Candidate]:
        nodes: List[int] = [root]
        venues: List[Venue] = []
        used_pools: Set[PoolKey] = set()

        def extend(u: int) -> Iterator[Candidate]:
            for v, venue, pool in graph.edges_from(u):
                if pool in used_pools:
                    continue
                if v == root:
                    if len(venues) + 1 >= 2:
                        yield Candidate(
                            tokens=tuple(graph.tokens[i] for i in nodes + [root]),
                            venues=tuple(venues + [venue]),
                        )
                    continue
                if v in nodes or len(venues) + 1 >= max_hops:
                    continue
                nodes.append(v)
                venues.append(venue)
                used_pools.add(pool)
                yield from extend(v)
                used_pools.discard(pool)
                venues.pop()
                nodes.pop()

        yield from extend(root)
