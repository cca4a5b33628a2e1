"""Command line entry point for fundtrace"""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from fundtrace.analysis.edges import count_clusters, merge_edges
from fundtrace.analysis.network_tracer import NetworkTracer
from fundtrace.analysis.pattern_detector import PatternDetector
from fundtrace.config import settings
from fundtrace.models.analysis import NetworkAnalysis
from fundtrace.models.ledger import e8s_to_icp
from fundtrace.models.reports import HubNetworkReport, NetworkTraceReport
from fundtrace.reports import (
    analyze_local_ledger,
    analyze_single_account,
    collect_account_histories,
    detect_patterns_for,
    filter_high_balance,
    network_trace_report,
    trace_funds,
    trace_hub_network,
    write_report,
)
from fundtrace.services.address_directory import AddressDirectory
from fundtrace.services.errors import FetchError
from fundtrace.services.identifiers import normalize_address
from fundtrace.services.ledger_db import LedgerDatabase
from fundtrace.services.ledger_reader import LocalLedgerReader
from fundtrace.services.transaction_source import (
    LocalTransactionSource,
    RemoteTransactionSource,
    TransactionSource,
)

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _open_source(args: argparse.Namespace) -> TransactionSource:
    if args.source == "local":
        return LocalTransactionSource(LedgerDatabase(args.db))
    source = RemoteTransactionSource()
    await source.init_redis()
    return source


def _load_directory(args: argparse.Namespace) -> AddressDirectory:
    return AddressDirectory.load(args.directory or settings.address_directory_path)


def _parse_accounts(values: Sequence[str]) -> Optional[List[str]]:
    """Normalize account arguments, printing the first bad one"""
    try:
        return [normalize_address(value) for value in values]
    except ValueError as e:
        print(f"Invalid account: {e}")
        return None


def _print_holders(report: NetworkTraceReport, title: str) -> None:
    print(f"\n{title}:")
    for i, holder in enumerate(report.top_holders, start=1):
        print(f"{i}. {holder.name} ({holder.address[:8]}) - {holder.balance_icp} ICP")
        if holder.patterns_detected:
            print(f"   Patterns: {', '.join(holder.patterns_detected)}")


async def cmd_graph_data(args: argparse.Namespace) -> int:
    directory = _load_directory(args)
    source = RemoteTransactionSource()
    await source.init_redis()
    try:
        grouped = await collect_account_histories(source, directory)
    finally:
        await source.close()

    for category, histories in grouped.items():
        path = write_report(f"account_transactions_{category}.json", histories, args.output)
        print(f"Saved {len(histories)} {category} accounts to {path}")
    return 0


async def cmd_analyze_patterns(args: argparse.Namespace) -> int:
    directory = _load_directory(args)
    addresses = directory.pattern_addresses
    if not addresses:
        print("No seed or suspect addresses configured in the address directory")
        return 1

    source = await _open_source(args)
    try:
        patterns = await detect_patterns_for(source, PatternDetector(directory.exchanges), addresses)
    finally:
        await source.close()

    path = write_report("suspicious_patterns.json", patterns, args.output)
    print(f"\nAnalysis complete! Found {len(patterns)} suspicious patterns.")
    print(f"Results saved to {path}")
    return 0


async def cmd_analyze_account(args: argparse.Namespace) -> int:
    directory = _load_directory(args)
    accounts = _parse_accounts([args.account])
    if accounts is None:
        return 1
    account = accounts[0]

    source = await _open_source(args)
    try:
        report, patterns = await analyze_single_account(
            source, PatternDetector(directory.exchanges), account
        )
    except FetchError as e:
        print(f"Error fetching transactions: {e}")
        return 1
    finally:
        await source.close()

    print(f"Found {report.transaction_count} transactions")
    if not patterns:
        print("No suspicious patterns detected.")
        return 0

    print(f"\nFound {len(patterns)} suspicious patterns:")
    for summary in report.patterns:
        print(f"\n  Pattern Type: {summary.pattern_type}")
        print(f"  Total Amount: {summary.total_amount_icp} ICP")
        print(f"  Withdrawals: {summary.withdrawals}")
        print(f"  Deposits: {summary.deposits}")
        for days in summary.holding_period_days:
            print(f"  Holding Period: {days:.1f} days")

    path = write_report(f"analysis_{account[:8]}.json", patterns, args.output)
    print(f"\nDetailed results saved to {path}")
    return 0


async def _run_trace(args: argparse.Namespace, max_depth: int) -> Optional[NetworkTraceReport]:
    directory = _load_directory(args)
    seeds = _parse_accounts(args.seeds) if args.seeds else directory.seed_addresses
    if seeds is None:
        return None
    if not seeds:
        print("No seed addresses given or configured in the address directory")
        return None

    source = await _open_source(args)
    try:
        tracer = NetworkTracer.from_directory(source, directory)
        analysis = await tracer.trace_network(
            max_depth=max_depth,
            min_amount_threshold=args.min_amount_e8s,
            seeds=seeds,
        )
    finally:
        await source.close()

    return network_trace_report(analysis, top=args.top)


async def cmd_trace_network(args: argparse.Namespace) -> int:
    report = await _run_trace(args, args.max_depth)
    if report is None:
        return 1

    path = write_report("network_trace.json", report, args.output)
    print("\nNetwork Trace Summary:")
    print("====================")
    print(f"Total accounts discovered: {report.total_accounts}")
    print(f"Total connections: {report.total_connections}")
    print(f"Distinct account pairs: {len(merge_edges(report.network.edges))}")
    print(f"Clusters: {count_clusters(report.network)}")
    print(f"Total balance held: {report.total_balance_icp} ICP")
    print(f"Suspicious accounts: {report.suspicious_accounts}")
    if report.failed_accounts:
        print(f"Accounts that could not be fetched: {report.failed_accounts}")
    _print_holders(report, f"Top {len(report.top_holders)} Balance Holders")
    print(f"\nResults saved to {path}")
    return 0


async def cmd_analyze_seeds(args: argparse.Namespace) -> int:
    report = await _run_trace(args, 0)
    if report is None:
        return 1

    path = write_report("seed_analysis.json", report, args.output)
    _print_holders(report, "Seed Address Analysis")
    print(f"\nTotal balance across all seeds: {report.total_balance_icp} ICP")
    print(f"Results saved to {path}")
    return 0


async def cmd_trace_funds(args: argparse.Namespace) -> int:
    directory = _load_directory(args)
    addresses = directory.pattern_addresses
    if not addresses:
        print("No seed or suspect addresses configured in the address directory")
        return 1

    source = await _open_source(args)
    try:
        report = await trace_funds(source, addresses, name_for=directory.name_for)
    finally:
        await source.close()

    path = write_report("funds_trace_report.json", report, args.output)
    print("\n=== FUNDS TRACE SUMMARY ===")
    print(f"Total addresses analyzed: {report.total_addresses_analyzed}")
    print(
        f"Total balance controlled: {report.total_balance_icp} ICP "
        f"(${report.total_balance_icp * settings.usd_per_icp:,.2f} USD*)"
    )
    print(f"Total ever received: {report.total_received_icp} ICP")
    print(f"Total ever sent: {report.total_sent_icp} ICP")
    print("\nTop 10 Holdings:")
    for i, row in enumerate(report.accounts[:10], start=1):
        print(f"{i}. {row.name} ({row.address[:8]}) - {row.balance_icp} ICP")
    print(f"\n* USD estimate based on ~${settings.usd_per_icp}/ICP")
    print(f"Detailed report saved to: {path}")
    return 0


async def cmd_trace_hubs(args: argparse.Namespace) -> int:
    directory = _load_directory(args)
    hubs = _parse_accounts(args.hubs) if args.hubs else directory.seed_addresses
    if hubs is None:
        return 1
    if not hubs:
        print("No hub accounts given or seeds configured in the address directory")
        return 1
    pattern_addresses = [] if args.hubs_only else directory.pattern_addresses

    source = await _open_source(args)
    try:
        report = await trace_hub_network(
            source,
            hubs,
            directory.exchanges,
            name_for=directory.name_for,
            pattern_addresses=pattern_addresses,
            max_depth=args.max_depth,
        )
    finally:
        await source.close()

    path = write_report("complete_network_analysis.json", report, args.output)
    print("\n===== HUB NETWORK SUMMARY =====")
    print(f"Total accounts discovered: {report.total_accounts_discovered}")
    print(f"Total ICP controlled: {report.total_balance_icp} ICP")
    print(f"Total USD value: ${report.total_balance_usd / 1_000_000:.2f}M")
    if report.failed_accounts:
        print(f"Accounts that could not be fetched: {len(report.failed_accounts)}")

    print(f"\nTop {args.top} Balance Holders:")
    for i, account in enumerate(report.accounts[: args.top], start=1):
        print(f"{i}. {account.name} ({account.address[:8]}) [depth {account.depth_from_hub}] - {account.balance_icp} ICP")

    distribution = report.balance_distribution
    print("\nBalance Distribution:")
    print(f"  > 1M ICP: {distribution.over_1m_icp} accounts")
    print(f"  > 100K ICP: {distribution.over_100k_icp} accounts")
    print(f"  > 10K ICP: {distribution.over_10k_icp} accounts")
    print(f"  > 1K ICP: {distribution.over_1k_icp} accounts")
    print(f"\nDetailed report saved to: {path}")
    return 0


def _read_trace(path: Path) -> Union[NetworkAnalysis, HubNetworkReport]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    # Accepts a hub network report, a network trace report or a bare network analysis
    if "accounts" in data:
        return HubNetworkReport.model_validate(data)
    if "network" in data:
        data = data["network"]
    return NetworkAnalysis.model_validate(data)


def _default_trace_input(output_dir: Path) -> Path:
    network_trace = output_dir / "network_trace.json"
    hub_report = output_dir / "complete_network_analysis.json"
    if not network_trace.exists() and hub_report.exists():
        return hub_report
    return network_trace


async def cmd_filter_analysis(args: argparse.Namespace) -> int:
    output_dir = Path(args.output or settings.report_output_dir)
    input_path = Path(args.input) if args.input else _default_trace_input(output_dir)
    if not input_path.exists():
        print(f"No network analysis at {input_path}; run trace-network or trace-hubs first")
        return 1
    print(f"Reading network analysis from {input_path}...")
    analysis = _read_trace(input_path)

    report = filter_high_balance(analysis, args.min_balance_icp, args.tx_threshold)
    path = write_report("filtered_high_balance_report.json", report, args.output)

    summary = report.summary
    print("Summary:")
    print(f"  Total accounts analyzed: {summary.total_accounts_analyzed}")
    print(f"  Accounts with {summary.filter_criteria.minimum_balance_icp:g}+ ICP: {summary.accounts_above_minimum}")
    print(
        f"  Suspicious accounts (< {summary.filter_criteria.suspicious_transaction_threshold} tx): "
        f"{summary.suspicious_accounts}"
    )
    print(f"  Total ICP in filtered accounts: {summary.total_icp_in_filtered_accounts:.2f}")
    print(f"Report saved to {path}")
    return 0


async def cmd_local_ledger(args: argparse.Namespace) -> int:
    accounts = _parse_accounts([args.account])
    if accounts is None:
        return 1
    account = accounts[0]
    reader = LocalLedgerReader(args.ledger_dir or settings.ledger_directory)

    summary = reader.get_summary()
    print("Ledger Summary:")
    print(f"  Files: {summary['total_files']}")
    if "first_transaction_id" in summary:
        print(f"  Transaction IDs: {summary['first_transaction_id']} to {summary['last_transaction_id']}")

    report = analyze_local_ledger(reader, account)
    if not report.transactions:
        print(f"No transactions found for account {account}")
        return 0

    print(f"\nTotal transactions found: {report.total_transactions}")
    print(f"  Current balance: {report.balance_icp} ICP")
    print(f"  Total received: {report.total_received_icp} ICP")
    print(f"  Total sent: {report.total_sent_icp} ICP")
    for op_type, count in report.operation_types.items():
        print(f"  {op_type}: {count}")

    path = write_report(f"local_ledger_analysis_{account[:8]}.json", report, args.output)
    print(f"\nDetailed analysis saved to: {path}")
    return 0


async def cmd_import_db(args: argparse.Namespace) -> int:
    database = LedgerDatabase(args.db)
    try:
        imported = database.import_from_jsonl(args.ledger_dir or settings.ledger_directory)
        print(f"Imported {imported} transactions")
        print(json.dumps(database.get_db_stats(), indent=2))
    finally:
        database.close()
    return 0


async def cmd_query_db(args: argparse.Namespace) -> int:
    accounts = _parse_accounts([args.account])
    if accounts is None:
        return 1
    account = accounts[0]
    database = LedgerDatabase(args.db)
    try:
        started = time.perf_counter()
        stats = database.get_account_stats(account)
        elapsed_ms = (time.perf_counter() - started) * 1000
        connected = database.find_connected_accounts(account, args.min_amount_e8s)
    finally:
        database.close()

    print(json.dumps(stats, indent=2))
    print(f"\nQuery completed in {elapsed_ms:.3f} ms")
    print(f"\nTop Connected Accounts (>= {e8s_to_icp(args.min_amount_e8s)} ICP):")
    for i, (other, received, sent) in enumerate(connected[:20], start=1):
        print(f"{i}. {other[:8]} - Received: {e8s_to_icp(received)} ICP, Sent: {e8s_to_icp(sent)} ICP")
    return 0


async def cmd_daily_balances(args: argparse.Namespace) -> int:
    if args.addresses:
        addresses = _parse_accounts(args.addresses)
        if addresses is None:
            return 1
    else:
        addresses = _load_directory(args).pattern_addresses
    if not addresses:
        print("No addresses given or configured in the address directory")
        return 1

    database = LedgerDatabase(args.db)
    try:
        balances = database.generate_daily_balances(addresses)
    finally:
        database.close()

    path = write_report("daily_balances.json", balances, args.output)
    print(f"Daily balances for {len(balances)} addresses saved to {path}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "fundtrace.main:app",
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
    return 0


def _add_common(parser: argparse.ArgumentParser, fetches: bool = False) -> None:
    parser.add_argument("--output", default=None, help="Report directory (defaults to REPORT_OUTPUT_DIR).")
    parser.add_argument("--directory", default=None, help="Address directory JSON file.")
    parser.add_argument("--db", default=None, help="SQLite ledger store path.")
    if fetches:
        parser.add_argument(
            "--source",
            choices=["remote", "local"],
            default="remote",
            help="Read transfers from the ledger index or the local SQLite store.",
        )


def _add_trace_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--seeds", nargs="*", default=None, help="Seed accounts (defaults to directory seeds).")
    parser.add_argument(
        "--min-amount-e8s",
        type=int,
        default=settings.trace_min_amount_e8s,
        help="Ignore transfers below this amount.",
    )
    parser.add_argument("--top", type=int, default=10, help="Number of top holders to print.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fundtrace", description="Trace ICP ledger funds and flag exchange cycles.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("graph-data", help="Fetch every directory entry and save histories per category.")
    _add_common(p)
    p.set_defaults(handler=cmd_graph_data)

    p = sub.add_parser("analyze-patterns", help="Detect patterns across seed and suspect accounts.")
    _add_common(p, fetches=True)
    p.set_defaults(handler=cmd_analyze_patterns)

    p = sub.add_parser("analyze-account", help="Detect patterns for one account.")
    p.add_argument("account")
    _add_common(p, fetches=True)
    p.set_defaults(handler=cmd_analyze_account)

    p = sub.add_parser("trace-network", help="Trace the transfer network around the seeds.")
    _add_common(p, fetches=True)
    _add_trace_options(p)
    p.add_argument("--max-depth", type=int, default=settings.trace_max_depth, help="Maximum hops from a seed.")
    p.set_defaults(handler=cmd_trace_network)

    p = sub.add_parser("analyze-seeds", help="Analyze the seed accounts without expanding.")
    _add_common(p, fetches=True)
    _add_trace_options(p)
    p.set_defaults(handler=cmd_analyze_seeds)

    p = sub.add_parser("trace-hubs", help="Balance histories of every account connected to the hub accounts.")
    _add_common(p, fetches=True)
    p.add_argument("--hubs", nargs="*", default=None, help="Hub accounts (defaults to directory seeds).")
    p.add_argument("--hubs-only", action="store_true", help="Start from the hubs only, not the directory seed and suspect accounts.")
    p.add_argument("--max-depth", type=int, default=2, help="Maximum hops from a hub.")
    p.add_argument("--top", type=int, default=20, help="Number of top holders to print.")
    p.set_defaults(handler=cmd_trace_hubs)

    p = sub.add_parser("trace-funds", help="Total funds across seed and suspect accounts.")
    _add_common(p, fetches=True)
    p.set_defaults(handler=cmd_trace_funds)

    p = sub.add_parser("filter-analysis", help="High-balance accounts of a saved network trace.")
    _add_common(p)
    p.add_argument("--input", default=None, help="Network trace or hub network JSON (defaults to <output>/network_trace.json).")
    p.add_argument("--min-balance-icp", type=float, default=None, help="Minimum balance to keep.")
    p.add_argument("--tx-threshold", type=int, default=None, help="Flag accounts with fewer transfers.")
    p.set_defaults(handler=cmd_filter_analysis)

    p = sub.add_parser("local-ledger", help="Scan the JSONL ledger export for one account.")
    p.add_argument("account")
    p.add_argument("--ledger-dir", default=None, help="Directory of icp_ledger_*.jsonl files.")
    _add_common(p)
    p.set_defaults(handler=cmd_local_ledger)

    p = sub.add_parser("import-db", help="Import the JSONL ledger export into SQLite.")
    p.add_argument("--ledger-dir", default=None, help="Directory of icp_ledger_*.jsonl files.")
    _add_common(p)
    p.set_defaults(handler=cmd_import_db)

    p = sub.add_parser("query-db", help="Account statistics from the SQLite store.")
    p.add_argument("account")
    p.add_argument("--min-amount-e8s", type=int, default=100_000_000, help="Ignore smaller counterparty transfers.")
    _add_common(p)
    p.set_defaults(handler=cmd_query_db)

    p = sub.add_parser("daily-balances", help="Daily balance series from the SQLite store.")
    p.add_argument("--addresses", nargs="*", default=None, help="Accounts (defaults to seed and suspect accounts).")
    _add_common(p)
    p.set_defaults(handler=cmd_daily_balances)

    p = sub.add_parser("serve", help="Run the HTTP API.")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(handler=cmd_serve)

    return parser


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.log_level)

    if args.handler is cmd_serve:
        return cmd_serve(args)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    sys.exit(main())
