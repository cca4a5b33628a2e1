"""Ledger data models"""

from enum import Enum
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

E8S_PER_ICP = 100_000_000
NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_DAY = 24 * 60 * 60 * NANOS_PER_SECOND


def e8s_to_icp(amount: int) -> float:
    """Convert an amount in e8s to ICP"""
    return amount / E8S_PER_ICP


class OperationType(str, Enum):
    """Ledger operation kinds"""

    TRANSFER = "Transfer"
    MINT = "Mint"
    BURN = "Burn"
    APPROVE = "Approve"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OperationType":
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


class Transaction(BaseModel):
    """One ledger transfer between two accounts"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_account: str = Field(..., alias="from", description="Sending account identifier")
    to_account: str = Field(..., alias="to", description="Receiving account identifier")
    amount: int = Field(..., ge=0, description="Amount in e8s")
    timestamp: int = Field(..., ge=0, description="Timestamp in nanoseconds since epoch")


class LedgerTransfer(BaseModel):
    """Transfer record as returned by a transaction source"""

    model_config = ConfigDict(populate_by_name=True)

    op_type: OperationType = Field(default=OperationType.TRANSFER, description="Operation kind")
    from_account: str = Field(..., alias="from", description="Sending account identifier")
    to_account: str = Field(..., alias="to", description="Receiving account identifier")
    id: int = Field(..., description="Ledger block index")
    timestamp: int = Field(default=0, description="Timestamp in nanoseconds")
    amount: int = Field(..., ge=0, description="Amount in e8s")

    def to_transaction(self) -> Transaction:
        return Transaction(
            from_account=self.from_account,
            to_account=self.to_account,
            amount=self.amount,
            timestamp=self.timestamp,
        )


class AccountHistory(BaseModel):
    """Transfers fetched for a named group of accounts"""

    name: str = Field(..., description="Display name of the group")
    principal: Optional[str] = Field(None, description="First principal of the group, if any")
    account: Optional[Tuple[str, int]] = Field(
        None, description="Main account identifier and its balance in e8s"
    )
    ty: str = Field(..., description="Directory category")
    extra_accounts: List[Tuple[str, int]] = Field(
        default_factory=list, description="Other account identifiers with balances"
    )
    transactions: List[LedgerTransfer] = Field(default_factory=list, description="Transfers")
    oldest_tx_id: Optional[int] = Field(None, description="Oldest block index seen by the index")


class LocalTransaction(BaseModel):
    """Transaction record from the local ledger export"""

    id: int = Field(..., description="Transaction identifier")
    operation_type: OperationType = Field(..., description="Operation kind")
    from_account: Optional[str] = Field(None, description="Sending account")
    to_account: Optional[str] = Field(None, description="Receiving account")
    amount: Optional[int] = Field(None, description="Amount in e8s")
    fee: Optional[int] = Field(None, description="Fee in e8s")
    timestamp: Optional[int] = Field(None, description="Timestamp in nanoseconds")
    memo: Optional[int] = Field(None, description="Memo")
    spender: Optional[str] = Field(None, description="Spender account (approvals)")

    def to_transaction(self) -> Optional[Transaction]:
        """Canonical transfer, or None when the record is not a complete transfer"""
        if self.operation_type != OperationType.TRANSFER:
            return None
        if not self.from_account or not self.to_account:
            return None
        if self.amount is None or self.timestamp is None:
            return None
        return Transaction(
            from_account=self.from_account,
            to_account=self.to_account,
            amount=self.amount,
            timestamp=self.timestamp,
        )
