"""Report models written by the report assemblers"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .analysis import NetworkAnalysis, NetworkNode
from .ledger import e8s_to_icp


class AccountFunds(BaseModel):
    """Per-account totals in a funds trace"""

    name: str
    address: str
    balance_icp: float
    received_icp: float
    sent_icp: float
    transaction_count: int
    error: Optional[str] = Field(None, description="Fetch error, if the account could not be read")


class FundsTraceReport(BaseModel):
    """Totals across a list of accounts"""

    total_addresses_analyzed: int
    total_balance_icp: float
    total_received_icp: float
    total_sent_icp: float
    accounts: List[AccountFunds]


class HolderSummary(BaseModel):
    """Condensed node view for human-readable summaries"""

    name: str
    address: str
    balance_icp: float
    received_icp: float
    sent_icp: float
    depth: int
    patterns_detected: List[str] = Field(default_factory=list)


class NetworkTraceReport(BaseModel):
    """Network trace with a ranked summary"""

    total_accounts: int
    total_connections: int
    total_balance_icp: float
    suspicious_accounts: int
    failed_accounts: int
    top_holders: List[HolderSummary]
    network: NetworkAnalysis


class BalancePoint(BaseModel):
    timestamp: int = Field(..., description="Transfer timestamp (ns)")
    balance_icp: float = Field(..., description="Running balance after the transfer, may go negative")


class HubAccount(BaseModel):
    """Account reached from the hubs, with its running balance"""

    name: str
    address: str
    depth_from_hub: int
    balance_icp: float
    received_icp: float
    sent_icp: float
    transaction_count: int
    balance_history: List[BalancePoint] = Field(default_factory=list)


class BalanceDistribution(BaseModel):
    """Accounts holding strictly more than each threshold"""

    over_1m_icp: int
    over_100k_icp: int
    over_10k_icp: int
    over_1k_icp: int


class HubNetworkReport(BaseModel):
    """Every account connected to the hub accounts, with balance histories"""

    hubs: List[str]
    total_accounts_discovered: int
    total_balance_icp: float
    total_balance_usd: float
    balance_distribution: BalanceDistribution
    failed_accounts: List[str] = Field(default_factory=list)
    accounts: List[HubAccount]


class FilterCriteria(BaseModel):
    minimum_balance_icp: float
    suspicious_transaction_threshold: int


class FilteredAccount(BaseModel):
    address: str
    name: str
    balance_icp: float
    transaction_count: int
    suspicious: bool


class FilterSummary(BaseModel):
    total_accounts_analyzed: int
    accounts_above_minimum: int
    suspicious_accounts: int
    total_icp_in_filtered_accounts: float
    filter_criteria: FilterCriteria


class FilteredReport(BaseModel):
    """High-balance accounts of a traced network"""

    filtered_accounts: List[FilteredAccount]
    summary: FilterSummary


class SuspiciousPatternSummary(BaseModel):
    pattern_type: str
    total_amount_icp: float
    withdrawals: int
    deposits: int
    holding_period_days: List[float]


class AccountAnalysisReport(BaseModel):
    """Single account analyzed for patterns"""

    account: str
    transaction_count: int
    patterns: List[SuspiciousPatternSummary] = Field(default_factory=list)


class LocalTransactionView(BaseModel):
    id: int
    operation_type: str
    from_account: Optional[str] = Field(None, serialization_alias="from")
    to_account: Optional[str] = Field(None, serialization_alias="to")
    amount_icp: Optional[float] = None
    timestamp: Optional[int] = None
    memo: Optional[int] = None


class LocalLedgerReport(BaseModel):
    """Account read from the JSONL ledger export"""

    account: str
    analysis_timestamp: str
    search_duration_seconds: float
    total_transactions: int
    balance_icp: float
    total_received_icp: float
    total_sent_icp: float
    operation_types: Dict[str, int]
    first_transaction: Optional[str] = None
    last_transaction: Optional[str] = None
    transactions: List[LocalTransactionView]


def holder_summary(node: NetworkNode) -> HolderSummary:
    return HolderSummary(
        name=node.name,
        address=node.address,
        balance_icp=e8s_to_icp(node.balance),
        received_icp=e8s_to_icp(node.total_received),
        sent_icp=e8s_to_icp(node.total_sent),
        depth=node.depth,
        patterns_detected=node.patterns_detected,
    )
