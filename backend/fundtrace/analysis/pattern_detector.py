"""Exchange cycle detection and the pattern rule registry"""

import logging
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence

from fundtrace.models.analysis import (
    ExchangeTransfer,
    HoldingPeriod,
    PatternType,
    SuspiciousPattern,
)
from fundtrace.models.ledger import E8S_PER_ICP, NANOS_PER_DAY, Transaction

logger = logging.getLogger(__name__)

SIX_WEEKS_NANOS = 6 * 7 * NANOS_PER_DAY
TOLERANCE_NANOS = 7 * NANOS_PER_DAY
LARGE_AMOUNT_E8S = 10_000 * E8S_PER_ICP


class PatternRule(ABC):
    """One detector in the registry. Rules never raise on well-formed input."""

    pattern_type: PatternType

    @abstractmethod
    def detect(self, account: str, transactions: Sequence[Transaction]) -> Optional[SuspiciousPattern]:
        """Return a pattern for the account, or None when the rule does not fire"""


class ExchangeCycleRule(PatternRule):
    """
    Withdraw from an exchange, hold for about six weeks, deposit back to an exchange.

    Each withdrawal is paired greedily with the earliest unmatched deposit
    whose delay falls in [holding - tolerance, holding + tolerance]. A deposit
    is matched at most once. Deposits that precede the withdrawal never match.
    """

    pattern_type = PatternType.EXCHANGE_CYCLE

    def __init__(
        self,
        exchanges: Mapping[str, str],
        holding_nanos: int = SIX_WEEKS_NANOS,
        tolerance_nanos: int = TOLERANCE_NANOS,
    ):
        self.exchanges = exchanges
        self.min_delay = holding_nanos - tolerance_nanos
        self.max_delay = holding_nanos + tolerance_nanos

    def _exchange_transfers(self, account: str, transactions: Iterable[Transaction]):
        withdrawals: List[ExchangeTransfer] = []
        deposits: List[ExchangeTransfer] = []

        for tx in transactions:
            if tx.to_account == account and tx.from_account in self.exchanges:
                withdrawals.append(
                    ExchangeTransfer(
                        exchange_name=self.exchanges[tx.from_account],
                        exchange_account=tx.from_account,
                        amount=tx.amount,
                        timestamp=tx.timestamp,
                        is_withdrawal=True,
                    )
                )
            if tx.from_account == account and tx.to_account in self.exchanges:
                deposits.append(
                    ExchangeTransfer(
                        exchange_name=self.exchanges[tx.to_account],
                        exchange_account=tx.to_account,
                        amount=tx.amount,
                        timestamp=tx.timestamp,
                        is_withdrawal=False,
                    )
                )

        # sorted() is stable, so equal timestamps keep input order
        withdrawals = sorted(withdrawals, key=lambda t: t.timestamp)
        deposits = sorted(deposits, key=lambda t: t.timestamp)
        return withdrawals, deposits

    def detect(self, account: str, transactions: Sequence[Transaction]) -> Optional[SuspiciousPattern]:
        withdrawals, deposits = self._exchange_transfers(account, transactions)

        holding_periods: List[HoldingPeriod] = []
        matched = set()

        for withdrawal in withdrawals:
            for idx, deposit in enumerate(deposits):
                if idx in matched:
                    continue

                delay = deposit.timestamp - withdrawal.timestamp
                if self.min_delay <= delay <= self.max_delay:
                    holding_periods.append(
                        HoldingPeriod(
                            start_timestamp=withdrawal.timestamp,
                            end_timestamp=deposit.timestamp,
                            duration_days=delay / NANOS_PER_DAY,
                            amount_held=min(withdrawal.amount, deposit.amount),
                        )
                    )
                    matched.add(idx)
                    break

        if not holding_periods:
            return None

        return SuspiciousPattern(
            account=account,
            pattern_type=self.pattern_type,
            withdrawals=withdrawals,
            deposits=deposits,
            total_amount=sum(hp.amount_held for hp in holding_periods),
            holding_periods=holding_periods,
        )


class PatternDetector:
    """
    Run every registered rule over an account's transactions

    Args:
        exchanges: Exchange account -> exchange name. Copied into a read-only view.
        rules: Rule instances; defaults to the exchange cycle rule only.
    """

    def __init__(self, exchanges: Mapping[str, str], rules: Optional[Sequence[PatternRule]] = None):
        self.exchanges = MappingProxyType(dict(exchanges))
        self.rules: List[PatternRule] = (
            list(rules) if rules is not None else [ExchangeCycleRule(self.exchanges)]
        )

    def detect_patterns(self, account: str, transactions: Sequence[Transaction]) -> List[SuspiciousPattern]:
        patterns = []
        for rule in self.rules:
            pattern = rule.detect(account, transactions)
            if pattern is not None:
                logger.debug(
                    "%s detected for %s (%d holding periods)",
                    rule.pattern_type.value,
                    account[:12],
                    len(pattern.holding_periods),
                )
                patterns.append(pattern)
        return patterns

    def is_exchange(self, address: str) -> bool:
        return address in self.exchanges

    @staticmethod
    def is_large_amount(amount: int) -> bool:
        """Amounts over 10,000 ICP"""
        return amount > LARGE_AMOUNT_E8S
