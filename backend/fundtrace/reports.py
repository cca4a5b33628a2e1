"""Report assemblers: turn fetched histories and traces into JSON reports"""

import json
import logging
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from fundtrace.analysis.pattern_detector import PatternDetector
from fundtrace.config import settings
from fundtrace.models.analysis import NetworkAnalysis, SuspiciousPattern
from fundtrace.models.ledger import (
    E8S_PER_ICP,
    NANOS_PER_SECOND,
    AccountHistory,
    LocalTransaction,
    Transaction,
    e8s_to_icp,
)
from fundtrace.models.reports import (
    AccountAnalysisReport,
    AccountFunds,
    BalanceDistribution,
    BalancePoint,
    FilterCriteria,
    FilteredAccount,
    FilteredReport,
    FilterSummary,
    FundsTraceReport,
    HubAccount,
    HubNetworkReport,
    LocalLedgerReport,
    LocalTransactionView,
    NetworkTraceReport,
    SuspiciousPatternSummary,
    holder_summary,
)
from fundtrace.services.address_directory import AddressDirectory
from fundtrace.services.errors import FetchError
from fundtrace.services.ledger_reader import LocalLedgerReader
from fundtrace.services.transaction_source import (
    RemoteTransactionSource,
    RetryPolicy,
    TransactionSource,
    call_with_retry,
    fetch_with_retry,
)

logger = logging.getLogger(__name__)

NameLookup = Callable[[str], Optional[str]]


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, dict):
        return {key: _jsonable(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_jsonable(item) for item in payload]
    return payload


def write_report(filename: str, payload: Any, output_dir: Optional[Union[str, Path]] = None) -> Path:
    """Write a report as pretty JSON into the report directory and return its path"""
    directory = Path(output_dir or settings.report_output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(_jsonable(payload), handle, indent=2)
        handle.write("\n")

    logger.info(f"Report saved to {path}")
    return path


async def collect_account_histories(
    source: RemoteTransactionSource,
    directory: AddressDirectory,
    policy: Optional[RetryPolicy] = None,
) -> Dict[str, List[AccountHistory]]:
    """
    Fetch every directory entry, grouped by category

    Entries that still fail after retries are logged and left out.
    """
    policy = policy or RetryPolicy.from_settings()
    grouped: Dict[str, List[AccountHistory]] = {}

    for category, entries in directory.by_category().items():
        results = grouped.setdefault(category.value, [])
        for entry in entries:
            try:
                history = await call_with_retry(
                    lambda entry=entry: source.fetch_account_group(
                        entry.name, entry.principals + entry.addresses, entry.category.value
                    ),
                    policy,
                    entry.name,
                )
            except FetchError as e:
                logger.error(f"Error fetching account transactions for {category.value}/{entry.name}: {e}")
                continue
            results.append(history)

    return grouped


def summarize_pattern(pattern: SuspiciousPattern) -> SuspiciousPatternSummary:
    return SuspiciousPatternSummary(
        pattern_type=pattern.pattern_type.value,
        total_amount_icp=e8s_to_icp(pattern.total_amount),
        withdrawals=len(pattern.withdrawals),
        deposits=len(pattern.deposits),
        holding_period_days=[round(hp.duration_days, 1) for hp in pattern.holding_periods],
    )


async def detect_patterns_for(
    source: TransactionSource,
    detector: PatternDetector,
    addresses: Iterable[str],
    policy: Optional[RetryPolicy] = None,
) -> List[SuspiciousPattern]:
    """Run the detector over each address; fetch failures are logged and skipped"""
    policy = policy or RetryPolicy.from_settings()
    all_patterns: List[SuspiciousPattern] = []

    for address in addresses:
        logger.info("Analyzing %s...", address[:8])
        try:
            transactions = await fetch_with_retry(source, address, policy)
        except FetchError as e:
            logger.error(f"Error fetching transactions for {address}: {e}")
            continue

        patterns = detector.detect_patterns(address, transactions)
        if patterns:
            logger.info("Found %d suspicious patterns for %s", len(patterns), address[:8])
            all_patterns.extend(patterns)

    return all_patterns


async def analyze_single_account(
    source: TransactionSource,
    detector: PatternDetector,
    account: str,
    policy: Optional[RetryPolicy] = None,
) -> tuple:
    """
    Fetch one account and run the detector over it

    Returns:
        (AccountAnalysisReport, list of SuspiciousPattern)

    Raises:
        FetchError: if the account cannot be fetched
    """
    transactions = await fetch_with_retry(source, account, policy)
    patterns = detector.detect_patterns(account, transactions)

    report = AccountAnalysisReport(
        account=account,
        transaction_count=len(transactions),
        patterns=[summarize_pattern(p) for p in patterns],
    )
    return report, patterns


def network_trace_report(analysis: NetworkAnalysis, top: int = 10) -> NetworkTraceReport:
    """Wrap a trace with totals and its largest holders"""
    return NetworkTraceReport(
        total_accounts=len(analysis.nodes),
        total_connections=len(analysis.edges),
        total_balance_icp=e8s_to_icp(analysis.total_balance),
        suspicious_accounts=len(analysis.suspicious_accounts),
        failed_accounts=len(analysis.failed_addresses),
        top_holders=[holder_summary(node) for node in analysis.sorted_nodes()[:top]],
        network=analysis,
    )


def _flow_totals(address: str, transactions: Sequence[Transaction]) -> tuple:
    received = 0
    sent = 0
    for tx in transactions:
        if tx.to_account == address:
            received += tx.amount
        elif tx.from_account == address:
            sent += tx.amount
    return received, sent


async def trace_funds(
    source: TransactionSource,
    addresses: Sequence[str],
    name_for: Optional[NameLookup] = None,
    policy: Optional[RetryPolicy] = None,
) -> FundsTraceReport:
    """
    Total received, sent and held across a list of accounts

    Accounts that cannot be fetched are reported as zero rows with the error.
    """
    policy = policy or RetryPolicy.from_settings()
    rows: List[AccountFunds] = []
    balances: List[int] = []
    total_received = 0
    total_sent = 0

    for i, address in enumerate(addresses):
        name = (name_for(address) if name_for else None) or "Unknown"
        logger.info("%d. Analyzing %s (%s)...", i + 1, name, address[:8])

        try:
            transactions = await fetch_with_retry(source, address, policy)
        except FetchError as e:
            logger.error(f"Error fetching transactions for {address}: {e}")
            rows.append(
                AccountFunds(
                    name=name,
                    address=address,
                    balance_icp=0.0,
                    received_icp=0.0,
                    sent_icp=0.0,
                    transaction_count=0,
                    error=str(e),
                )
            )
            balances.append(0)
            continue

        received, sent = _flow_totals(address, transactions)
        balance = max(received - sent, 0)
        total_received += received
        total_sent += sent
        balances.append(balance)

        rows.append(
            AccountFunds(
                name=name,
                address=address,
                balance_icp=e8s_to_icp(balance),
                received_icp=e8s_to_icp(received),
                sent_icp=e8s_to_icp(sent),
                transaction_count=len(transactions),
            )
        )

    rows.sort(key=lambda row: row.balance_icp, reverse=True)

    return FundsTraceReport(
        total_addresses_analyzed=len(addresses),
        total_balance_icp=e8s_to_icp(sum(balances)),
        total_received_icp=e8s_to_icp(total_received),
        total_sent_icp=e8s_to_icp(total_sent),
        accounts=rows,
    )


def running_balance(address: str, transactions: Sequence[Transaction]) -> tuple:
    """
    Replay an account's transfers in time order

    Returns:
        (history, received, sent, counterparties): `history` holds one
        (timestamp, balance_e8s) point per transfer; the balance is not floored.
        Counterparties are listed in order of first contact.
    """
    balance = 0
    received = 0
    sent = 0
    history = []
    counterparties: Dict[str, None] = {}

    for tx in sorted(transactions, key=lambda t: t.timestamp):
        if tx.to_account == address:
            balance += tx.amount
            received += tx.amount
            counterparties.setdefault(tx.from_account)
        elif tx.from_account == address:
            balance -= tx.amount
            sent += tx.amount
            counterparties.setdefault(tx.to_account)
        else:
            continue
        history.append((tx.timestamp, balance))

    return history, received, sent, list(counterparties)


def balance_distribution(balances: Iterable[int]) -> BalanceDistribution:
    balances = list(balances)

    def over(icp: int) -> int:
        return sum(1 for b in balances if b > icp * E8S_PER_ICP)

    return BalanceDistribution(
        over_1m_icp=over(1_000_000),
        over_100k_icp=over(100_000),
        over_10k_icp=over(10_000),
        over_1k_icp=over(1_000),
    )


async def trace_hub_network(
    source: TransactionSource,
    hubs: Sequence[str],
    exchanges: Mapping[str, str],
    name_for: Optional[NameLookup] = None,
    pattern_addresses: Sequence[str] = (),
    max_depth: int = 2,
    policy: Optional[RetryPolicy] = None,
) -> HubNetworkReport:
    """
    Walk out from hub accounts and record every account's balance over time

    Hubs start at depth 0 and `pattern_addresses` at depth 1. Counterparties
    of accounts shallower than `max_depth` are followed unless they are
    exchanges. No amount threshold is applied. Accounts that cannot be
    fetched are listed in `failed_accounts`.
    """
    policy = policy or RetryPolicy.from_settings()

    def label(address: str, fallback: str) -> str:
        return (name_for(address) if name_for else None) or fallback

    discovered = set()
    queue: Deque[Tuple[str, str, int]] = deque()
    for hub in hubs:
        if hub not in discovered:
            discovered.add(hub)
            queue.append((hub, label(hub, f"Hub {hub[:8]}"), 0))
    for address in pattern_addresses:
        if address not in discovered:
            discovered.add(address)
            queue.append((address, label(address, "Pattern Account"), 1))

    rows: List[Tuple[int, HubAccount]] = []
    failed: List[str] = []

    while queue:
        address, name, depth = queue.popleft()
        logger.info("Analyzing %s (%s) at depth %d...", name, address[:8], depth)
        try:
            transactions = await fetch_with_retry(source, address, policy)
        except FetchError as e:
            logger.error(f"Error fetching transactions for {address}: {e}")
            failed.append(address)
            continue

        history, received, sent, counterparties = running_balance(address, transactions)
        final_balance = max(history[-1][1], 0) if history else 0

        if depth < max_depth:
            for other in counterparties:
                if other in exchanges or other in discovered:
                    continue
                discovered.add(other)
                queue.append((other, label(other, f"Connected {other[:8]}"), depth + 1))

        rows.append(
            (
                final_balance,
                HubAccount(
                    name=name,
                    address=address,
                    depth_from_hub=depth,
                    balance_icp=e8s_to_icp(final_balance),
                    received_icp=e8s_to_icp(received),
                    sent_icp=e8s_to_icp(sent),
                    transaction_count=len(transactions),
                    balance_history=[
                        BalancePoint(timestamp=ts, balance_icp=e8s_to_icp(bal)) for ts, bal in history
                    ],
                ),
            )
        )

    rows.sort(key=lambda row: row[0], reverse=True)
    total_balance_icp = e8s_to_icp(sum(balance for balance, _ in rows))

    return HubNetworkReport(
        hubs=list(hubs),
        total_accounts_discovered=len(rows),
        total_balance_icp=total_balance_icp,
        total_balance_usd=total_balance_icp * settings.usd_per_icp,
        balance_distribution=balance_distribution(balance for balance, _ in rows),
        failed_accounts=failed,
        accounts=[account for _, account in rows],
    )


def filter_high_balance(
    analysis: Union[NetworkAnalysis, HubNetworkReport],
    min_balance_icp: Optional[float] = None,
    suspicious_tx_threshold: Optional[int] = None,
) -> FilteredReport:
    """
    Keep traced accounts holding at least `min_balance_icp`

    Reads either a network trace or a hub network report. Accounts with fewer
    than `suspicious_tx_threshold` transfers are flagged: large balances
    reached in a handful of transfers.
    """
    min_balance_icp = settings.filter_min_balance_icp if min_balance_icp is None else min_balance_icp
    if suspicious_tx_threshold is None:
        suspicious_tx_threshold = settings.filter_suspicious_tx_threshold

    if isinstance(analysis, HubNetworkReport):
        candidates = [
            (a.address, a.name, a.balance_icp, a.transaction_count) for a in analysis.accounts
        ]
    else:
        candidates = [
            (n.address, n.name, e8s_to_icp(n.balance), n.transaction_count)
            for n in analysis.sorted_nodes()
        ]

    filtered = [
        FilteredAccount(
            address=address,
            name=name,
            balance_icp=balance_icp,
            transaction_count=tx_count,
            suspicious=tx_count < suspicious_tx_threshold,
        )
        for address, name, balance_icp, tx_count in candidates
        if balance_icp >= min_balance_icp
    ]
    filtered.sort(key=lambda a: a.balance_icp, reverse=True)

    return FilteredReport(
        filtered_accounts=filtered,
        summary=FilterSummary(
            total_accounts_analyzed=len(candidates),
            accounts_above_minimum=len(filtered),
            suspicious_accounts=sum(1 for a in filtered if a.suspicious),
            total_icp_in_filtered_accounts=sum(a.balance_icp for a in filtered),
            filter_criteria=FilterCriteria(
                minimum_balance_icp=min_balance_icp,
                suspicious_transaction_threshold=suspicious_tx_threshold,
            ),
        ),
    )


def _format_timestamp(timestamp: Optional[int]) -> Optional[str]:
    if timestamp is None:
        return None
    dt = datetime.fromtimestamp(timestamp / NANOS_PER_SECOND, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def local_ledger_report(
    account: str,
    transactions: List[LocalTransaction],
    search_duration_seconds: float,
) -> LocalLedgerReport:
    """
    Summarize an account's transactions read from the JSONL export

    Every operation kind with an amount moves the balance: incoming when the
    account is the receiver, outgoing when it is the sender.
    """
    balance = 0
    total_received = 0
    total_sent = 0
    by_operation: Dict[str, int] = {}

    for tx in transactions:
        op = tx.operation_type.value
        by_operation[op] = by_operation.get(op, 0) + 1

        if tx.amount is None:
            continue
        if tx.to_account == account:
            balance += tx.amount
            total_received += tx.amount
        elif tx.from_account == account:
            balance -= tx.amount
            total_sent += tx.amount

    return LocalLedgerReport(
        account=account,
        analysis_timestamp=datetime.now(timezone.utc).isoformat(),
        search_duration_seconds=search_duration_seconds,
        total_transactions=len(transactions),
        balance_icp=e8s_to_icp(max(balance, 0)),
        total_received_icp=e8s_to_icp(total_received),
        total_sent_icp=e8s_to_icp(total_sent),
        operation_types=by_operation,
        first_transaction=_format_timestamp(transactions[0].timestamp) if transactions else None,
        last_transaction=_format_timestamp(transactions[-1].timestamp) if transactions else None,
        transactions=[
            LocalTransactionView(
                id=tx.id,
                operation_type=tx.operation_type.value,
                from_account=tx.from_account,
                to_account=tx.to_account,
                amount_icp=e8s_to_icp(tx.amount) if tx.amount is not None else None,
                timestamp=tx.timestamp,
                memo=tx.memo,
            )
            for tx in transactions
        ],
    )


def analyze_local_ledger(reader: LocalLedgerReader, account: str) -> LocalLedgerReport:
    """Scan the JSONL export for one account and summarize it"""
    start = time.monotonic()
    transactions = reader.find_account_transactions(account)
    elapsed = time.monotonic() - start
    logger.info("Search completed in %.2f seconds, %d transactions", elapsed, len(transactions))
    return local_ledger_report(account, transactions, elapsed)
