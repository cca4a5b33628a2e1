"""Breadth-first network tracing from seed accounts"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from fundtrace.analysis.edges import aggregate_edges
from fundtrace.analysis.pattern_detector import PatternDetector
from fundtrace.models.analysis import NetworkAnalysis, NetworkEdge, NetworkNode
from fundtrace.models.ledger import Transaction, e8s_to_icp
from fundtrace.services.errors import FetchError
from fundtrace.services.transaction_source import RetryPolicy, TransactionSource, fetch_with_retry

logger = logging.getLogger(__name__)


def _dedupe(addresses: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for address in addresses:
        if address not in seen:
            seen.add(address)
            ordered.append(address)
    return ordered


class NetworkTracer:
    """
    Walk the transfer graph outward from seed accounts

    Exchanges terminate expansion: they are never enqueued, so their
    counterparties are not explored. Every fetch goes through the retry
    policy; an account that still fails is logged, listed in
    `failed_addresses` and left out of the node map.

    Args:
        source: Transaction source used for every account
        exchanges: Exchange account -> exchange name
        seed_addresses: Default seeds when trace_network is called without seeds
        detector: Pattern detector; built from `exchanges` when omitted
        retry_policy: Retry settings; defaults come from settings
        name_for: Optional address -> display name lookup
    """

    def __init__(
        self,
        source: TransactionSource,
        exchanges: Mapping[str, str],
        seed_addresses: Iterable[str] = (),
        detector: Optional[PatternDetector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        name_for: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.source = source
        self.exchanges = exchanges
        self.seed_addresses = _dedupe(seed_addresses)
        self.detector = detector or PatternDetector(exchanges)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.name_for = name_for

    @classmethod
    def from_directory(cls, source: TransactionSource, directory, **kwargs) -> "NetworkTracer":
        """Build a tracer from an AddressDirectory"""
        return cls(
            source,
            exchanges=directory.exchanges,
            seed_addresses=directory.seed_addresses,
            name_for=directory.name_for,
            **kwargs,
        )

    def _node_name(self, address: str) -> str:
        name = self.name_for(address) if self.name_for else None
        return name or f"Network {address[:8]}"

    async def trace_network(
        self,
        max_depth: int,
        min_amount_threshold: int,
        seeds: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> NetworkAnalysis:
        """
        Trace the network around the seeds

        Args:
            max_depth: Maximum hops from any seed; 0 analyzes the seeds only
            min_amount_threshold: Transfers below this amount (e8s) are ignored
                for balances, edges and expansion
            seeds: Seed accounts; defaults to the tracer's seed addresses
            cancel_event: When set, the trace stops before the next fetch and
                returns what it has so far

        Returns:
            NetworkAnalysis with nodes, edges, totals and failed accounts
        """
        seed_list = _dedupe(seeds) if seeds is not None else list(self.seed_addresses)
        seed_set = set(seed_list)

        nodes: Dict[str, NetworkNode] = {}
        edges: List[NetworkEdge] = []
        failed: List[str] = []
        visited: Set[str] = set(seed_list)
        queue: Deque[Tuple[str, int]] = deque((seed, 0) for seed in seed_list)

        logger.info(
            f"Starting network trace from {len(seed_list)} seed addresses "
            f"(max_depth={max_depth}, min_amount={min_amount_threshold})"
        )

        while queue:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Network trace cancelled with %d accounts still queued", len(queue))
                break

            address, depth = queue.popleft()
            if depth > max_depth:
                continue

            logger.info("Analyzing %s at depth %d...", address[:8], depth)

            try:
                transactions = await fetch_with_retry(self.source, address, self.retry_policy)
            except FetchError as e:
                logger.error(f"Error fetching transactions for {address}: {e}")
                failed.append(address)
                continue

            node, node_edges, candidates = self._analyze_account(
                address, transactions, depth, min_amount_threshold, address in seed_set
            )
            nodes[address] = node
            edges.extend(node_edges)

            if depth >= max_depth:
                continue
            for candidate in candidates:
                if candidate not in visited and candidate not in self.exchanges:
                    visited.add(candidate)
                    queue.append((candidate, depth + 1))

        total_balance = sum(node.balance for node in nodes.values())
        suspicious_accounts = [addr for addr, node in nodes.items() if node.patterns_detected]

        logger.info(
            "Network trace complete: %d nodes, %d edges, %.2f ICP, %d suspicious, %d failed",
            len(nodes),
            len(edges),
            e8s_to_icp(total_balance),
            len(suspicious_accounts),
            len(failed),
        )

        return NetworkAnalysis(
            nodes=nodes,
            edges=edges,
            total_balance=total_balance,
            suspicious_accounts=suspicious_accounts,
            failed_addresses=failed,
        )

    def _analyze_account(
        self,
        address: str,
        transactions: List[Transaction],
        depth: int,
        min_amount_threshold: int,
        is_seed: bool,
    ) -> Tuple[NetworkNode, List[NetworkEdge], List[str]]:
        total_received = 0
        total_sent = 0
        candidates: List[str] = []

        kept = [tx for tx in transactions if tx.amount >= min_amount_threshold]
        for tx in kept:
            if tx.to_account == address:
                total_received += tx.amount
                if tx.from_account not in self.exchanges:
                    candidates.append(tx.from_account)
            elif tx.from_account == address:
                total_sent += tx.amount
                if tx.to_account not in self.exchanges:
                    candidates.append(tx.to_account)

        # Patterns look at every transfer, including those below the threshold
        patterns = self.detector.detect_patterns(address, transactions)

        node = NetworkNode(
            address=address,
            name=self._node_name(address),
            balance=max(total_received - total_sent, 0),
            total_received=total_received,
            total_sent=total_sent,
            transaction_count=len(transactions),
            is_exchange=address in self.exchanges,
            is_seed=is_seed,
            depth=depth,
            patterns_detected=[p.pattern_type.value for p in patterns],
        )
        return node, aggregate_edges(kept), candidates
