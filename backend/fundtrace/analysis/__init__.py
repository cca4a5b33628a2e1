"""Pattern detection and network tracing"""

from .edges import aggregate_edges, count_clusters, merge_edges, to_networkx
from .network_tracer import NetworkTracer
from .pattern_detector import ExchangeCycleRule, PatternDetector, PatternRule

__all__ = [
    "aggregate_edges",
    "count_clusters",
    "merge_edges",
    "to_networkx",
    "NetworkTracer",
    "ExchangeCycleRule",
    "PatternDetector",
    "PatternRule",
]
