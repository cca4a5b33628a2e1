"""Analysis models for pattern detection and network tracing"""

from enum import Enum
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field


class PatternType(str, Enum):
    """Kinds of suspicious patterns"""

    EXCHANGE_CYCLE = "ExchangeCycle"  # Withdraw from exchange -> hold -> deposit to exchange
    LARGE_HOLDING = "LargeHolding"
    MIXER_PATTERN = "MixerPattern"


class ExchangeTransfer(BaseModel):
    """Transfer between an account and a known exchange"""

    exchange_name: str = Field(..., description="Exchange display name")
    exchange_account: str = Field(..., description="Exchange-side account identifier")
    amount: int = Field(..., description="Amount in e8s")
    timestamp: int = Field(..., description="Timestamp in nanoseconds")
    is_withdrawal: bool = Field(..., description="True for exchange -> account")


class HoldingPeriod(BaseModel):
    """Withdrawal paired with a later deposit"""

    start_timestamp: int = Field(..., description="Withdrawal timestamp")
    end_timestamp: int = Field(..., description="Deposit timestamp")
    duration_days: float = Field(..., description="Holding duration in days")
    amount_held: int = Field(..., description="Smaller of the two amounts, in e8s")


class SuspiciousPattern(BaseModel):
    """Detected pattern for one account"""

    account: str = Field(..., description="Analyzed account")
    pattern_type: PatternType = Field(..., description="Pattern kind")
    withdrawals: List[ExchangeTransfer] = Field(default_factory=list)
    deposits: List[ExchangeTransfer] = Field(default_factory=list)
    total_amount: int = Field(..., description="Sum of amount_held over holding periods")
    holding_periods: List[HoldingPeriod] = Field(default_factory=list)


class NetworkNode(BaseModel):
    """State of one account in a traced network"""

    address: str = Field(..., description="Account identifier")
    name: str = Field(..., description="Display name")
    balance: int = Field(..., ge=0, description="Received minus sent, floored at zero")
    total_received: int = Field(default=0, description="Received above threshold, in e8s")
    total_sent: int = Field(default=0, description="Sent above threshold, in e8s")
    transaction_count: int = Field(default=0, description="Transfers fetched for the account")
    is_exchange: bool = Field(default=False)
    is_seed: bool = Field(default=False)
    depth: int = Field(..., ge=0, description="BFS distance from the nearest seed")
    patterns_detected: List[str] = Field(default_factory=list, description="Pattern type names")


class NetworkEdge(BaseModel):
    """Aggregated directed flow between two accounts"""

    model_config = ConfigDict(populate_by_name=True)

    from_account: str = Field(..., alias="from")
    to_account: str = Field(..., alias="to")
    total_amount: int = Field(..., description="Sum of aggregated amounts, in e8s")
    transaction_count: int = Field(..., description="Number of aggregated transfers")
    first_timestamp: int = Field(..., description="Earliest aggregated timestamp")
    last_timestamp: int = Field(..., description="Latest aggregated timestamp")


class NetworkAnalysis(BaseModel):
    """Result of a network trace"""

    nodes: Dict[str, NetworkNode] = Field(default_factory=dict)
    edges: List[NetworkEdge] = Field(default_factory=list)
    total_balance: int = Field(default=0, description="Sum of node balances, in e8s")
    suspicious_accounts: List[str] = Field(default_factory=list)
    failed_addresses: List[str] = Field(
        default_factory=list, description="Accounts dropped after fetch failures"
    )

    @property
    def degraded(self) -> bool:
        return bool(self.failed_addresses)

    def sorted_nodes(self) -> List[NetworkNode]:
        """Nodes ordered by balance descending, then address"""
        return sorted(self.nodes.values(), key=lambda n: (-n.balance, n.address))
