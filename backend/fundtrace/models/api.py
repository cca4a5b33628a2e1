"""API request and response models"""

from typing import List, Optional
from pydantic import BaseModel, Field


# Request Models


class NetworkTraceRequest(BaseModel):
    """Request to trace the network around seed accounts"""

    seeds: Optional[List[str]] = Field(
        None, description="Seed accounts (defaults to the directory's seed accounts)"
    )
    max_depth: int = Field(default=3, ge=0, description="Maximum hops from any seed")
    min_amount_e8s: int = Field(
        default=100_000_000, ge=0, description="Minimum transfer amount to follow, in e8s"
    )
    top: int = Field(default=10, ge=0, le=1000, description="Number of top holders to summarize")


# Response Models


class AccountStatsResponse(BaseModel):
    """Aggregate statistics from the local ledger store"""

    account: str = Field(..., description="Account identifier")
    transaction_count: int = Field(..., description="Transfers touching the account")
    total_received_e8s: int = Field(..., description="Total received in e8s")
    total_sent_e8s: int = Field(..., description="Total sent in e8s")
    balance_e8s: int = Field(..., description="Received minus sent (may be negative)")
    first_transaction_timestamp: Optional[int] = Field(None, description="First timestamp (ns)")
    last_transaction_timestamp: Optional[int] = Field(None, description="Last timestamp (ns)")


class ConnectedAccount(BaseModel):
    """Counterparty of an account with flow totals"""

    account: str = Field(..., description="Counterparty account identifier")
    received_e8s: int = Field(..., description="Received from the counterparty")
    sent_e8s: int = Field(..., description="Sent to the counterparty")


class ConnectedAccountsResponse(BaseModel):
    account: str = Field(..., description="Queried account")
    min_amount_e8s: int = Field(..., description="Minimum transfer amount considered")
    connected: List[ConnectedAccount] = Field(default_factory=list)
