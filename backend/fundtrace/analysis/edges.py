"""Edge aggregation and graph export helpers"""

from typing import Dict, Iterable, List, Tuple

import networkx as nx

from fundtrace.models.analysis import NetworkAnalysis, NetworkEdge
from fundtrace.models.ledger import Transaction


def aggregate_edges(transactions: Iterable[Transaction]) -> List[NetworkEdge]:
    """
    Collapse transfers into one edge per (from, to) pair

    Edges come out in order of first appearance.
    """
    edge_map: Dict[Tuple[str, str], NetworkEdge] = {}

    for tx in transactions:
        key = (tx.from_account, tx.to_account)
        edge = edge_map.get(key)
        if edge is None:
            edge_map[key] = NetworkEdge(
                from_account=tx.from_account,
                to_account=tx.to_account,
                total_amount=tx.amount,
                transaction_count=1,
                first_timestamp=tx.timestamp,
                last_timestamp=tx.timestamp,
            )
        else:
            edge.total_amount += tx.amount
            edge.transaction_count += 1
            edge.first_timestamp = min(edge.first_timestamp, tx.timestamp)
            edge.last_timestamp = max(edge.last_timestamp, tx.timestamp)

    return list(edge_map.values())


def merge_edges(edges: Iterable[NetworkEdge]) -> List[NetworkEdge]:
    """
    Merge edges that share a (from, to) pair.

    A trace reports the transfer between two traced accounts once from each
    side; merging those copies double counts amounts, so callers should only
    merge edges coming from disjoint transfer sets.
    """
    merged: Dict[Tuple[str, str], NetworkEdge] = {}

    for edge in edges:
        key = (edge.from_account, edge.to_account)
        current = merged.get(key)
        if current is None:
            merged[key] = edge.model_copy()
        else:
            current.total_amount += edge.total_amount
            current.transaction_count += edge.transaction_count
            current.first_timestamp = min(current.first_timestamp, edge.first_timestamp)
            current.last_timestamp = max(current.last_timestamp, edge.last_timestamp)

    return list(merged.values())


def to_networkx(analysis: NetworkAnalysis) -> nx.MultiDiGraph:
    """
    Export a trace as a MultiDiGraph

    Traced nodes carry their NetworkNode fields; counterparties that were
    never traced (exchanges, accounts past the depth limit) appear as bare nodes.
    Duplicate edges are kept as parallel edges.
    """
    graph = nx.MultiDiGraph()

    for address, node in analysis.nodes.items():
        graph.add_node(address, **node.model_dump(exclude={"address"}))

    for edge in analysis.edges:
        graph.add_edge(
            edge.from_account,
            edge.to_account,
            total_amount=edge.total_amount,
            transaction_count=edge.transaction_count,
            first_timestamp=edge.first_timestamp,
            last_timestamp=edge.last_timestamp,
        )

    return graph


def count_clusters(analysis: NetworkAnalysis) -> int:
    """Number of weakly connected groups in the exported graph"""
    graph = to_networkx(analysis)
    return sum(1 for _ in nx.weakly_connected_components(graph))
