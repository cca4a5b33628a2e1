"""Data models for fundtrace"""

from .ledger import (
    E8S_PER_ICP,
    NANOS_PER_DAY,
    AccountHistory,
    LedgerTransfer,
    LocalTransaction,
    OperationType,
    Transaction,
    e8s_to_icp,
)
from .analysis import (
    ExchangeTransfer,
    HoldingPeriod,
    NetworkAnalysis,
    NetworkEdge,
    NetworkNode,
    PatternType,
    SuspiciousPattern,
)
from .api import (
    AccountStatsResponse,
    ConnectedAccount,
    ConnectedAccountsResponse,
    NetworkTraceRequest,
)

__all__ = [
    "E8S_PER_ICP",
    "NANOS_PER_DAY",
    "AccountHistory",
    "LedgerTransfer",
    "LocalTransaction",
    "OperationType",
    "Transaction",
    "e8s_to_icp",
    "ExchangeTransfer",
    "HoldingPeriod",
    "NetworkAnalysis",
    "NetworkEdge",
    "NetworkNode",
    "PatternType",
    "SuspiciousPattern",
    "AccountStatsResponse",
    "ConnectedAccount",
    "ConnectedAccountsResponse",
    "NetworkTraceRequest",
]
