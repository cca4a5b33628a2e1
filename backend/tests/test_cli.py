"""Tests for the command line entry point"""

import json

import pytest

from conftest import ICP, make_account
from fundtrace import cli
from fundtrace.models.analysis import NetworkAnalysis, NetworkNode
from fundtrace.models.ledger import NANOS_PER_DAY
from fundtrace.models.reports import HubNetworkReport
from fundtrace.reports import balance_distribution, network_trace_report, write_report
from fundtrace.services.ledger_db import LedgerDatabase

ALICE = make_account("alice")
BOB = make_account("bob")
BAD_PRINCIPAL = "2vxsx-faf"


def analysis():
    nodes = {
        ALICE: NetworkNode(address=ALICE, name="Alice", balance=20_000 * ICP, transaction_count=3, depth=0),
        BOB: NetworkNode(address=BOB, name="Bob", balance=5 * ICP, transaction_count=40, depth=1),
    }
    return NetworkAnalysis(nodes=nodes, total_balance=sum(n.balance for n in nodes.values()))


def hub_report():
    return {
        "hubs": [ALICE],
        "total_accounts_discovered": 1,
        "total_balance_icp": 50_000.0,
        "total_balance_usd": 500_000.0,
        "balance_distribution": balance_distribution([50_000 * ICP]).model_dump(),
        "accounts": [
            {
                "name": "Hub",
                "address": ALICE,
                "depth_from_hub": 0,
                "balance_icp": 50_000.0,
                "received_icp": 60_000.0,
                "sent_icp": 10_000.0,
                "transaction_count": 4,
                "balance_history": [{"timestamp": 1, "balance_icp": 60_000.0}],
            }
        ],
    }


class TestParser:
    """Test argument parsing"""

    def test_trace_hubs_defaults(self):
        args = cli.parse_args(["trace-hubs"])

        assert args.handler is cli.cmd_trace_hubs
        assert args.hubs is None
        assert args.hubs_only is False
        assert args.max_depth == 2
        assert args.top == 20
        assert args.source == "remote"

    def test_trace_network_options(self):
        args = cli.parse_args(["trace-network", "--seeds", ALICE, BOB, "--max-depth", "1", "--source", "local"])

        assert args.handler is cli.cmd_trace_network
        assert args.seeds == [ALICE, BOB]
        assert args.max_depth == 1
        assert args.source == "local"

    def test_positional_account(self):
        args = cli.parse_args(["query-db", ALICE, "--min-amount-e8s", "5"])

        assert args.account == ALICE
        assert args.min_amount_e8s == 5

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])


class TestReadTrace:
    """Test loading saved traces for filtering"""

    def test_wrapped_network_trace(self, tmp_path):
        path = write_report("network_trace.json", network_trace_report(analysis()), tmp_path)

        loaded = cli._read_trace(path)

        assert isinstance(loaded, NetworkAnalysis)
        assert set(loaded.nodes) == {ALICE, BOB}

    def test_bare_network_analysis(self, tmp_path):
        path = write_report("bare.json", analysis(), tmp_path)

        loaded = cli._read_trace(path)

        assert isinstance(loaded, NetworkAnalysis)
        assert loaded.nodes[ALICE].name == "Alice"

    def test_hub_network_report(self, tmp_path):
        path = tmp_path / "complete_network_analysis.json"
        path.write_text(json.dumps(hub_report()))

        loaded = cli._read_trace(path)

        assert isinstance(loaded, HubNetworkReport)
        assert loaded.accounts[0].balance_history[0].balance_icp == 60_000.0


class TestCommands:
    """Test commands end to end against files in a temporary directory"""

    def test_filter_analysis(self, tmp_path):
        write_report("network_trace.json", network_trace_report(analysis()), tmp_path)

        code = cli.main(
            ["filter-analysis", "--output", str(tmp_path), "--min-balance-icp", "10000", "--tx-threshold", "15"]
        )

        assert code == 0
        report = json.loads((tmp_path / "filtered_high_balance_report.json").read_text())
        assert [a["address"] for a in report["filtered_accounts"]] == [ALICE]
        assert report["filtered_accounts"][0]["suspicious"] is True
        assert report["summary"]["total_accounts_analyzed"] == 2

    def test_filter_analysis_reads_hub_report(self, tmp_path):
        (tmp_path / "complete_network_analysis.json").write_text(json.dumps(hub_report()))

        code = cli.main(["filter-analysis", "--output", str(tmp_path), "--min-balance-icp", "10000"])

        assert code == 0
        report = json.loads((tmp_path / "filtered_high_balance_report.json").read_text())
        assert report["summary"]["accounts_above_minimum"] == 1

    def test_filter_analysis_without_input(self, tmp_path, capsys):
        code = cli.main(["filter-analysis", "--output", str(tmp_path)])

        assert code == 1
        assert "No network analysis" in capsys.readouterr().out
        assert not (tmp_path / "filtered_high_balance_report.json").exists()

    def test_daily_balances(self, tmp_path):
        db_path = tmp_path / "ledger.db"
        database = LedgerDatabase(db_path)
        database.conn.executemany(
            """
            INSERT INTO transactions
                (ledger_id, operation_type, from_account, to_account, amount, fee, timestamp, memo, spender)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (1, "Transfer", BOB, ALICE, 5 * ICP, 10_000, 0, None, None),
                (2, "Transfer", ALICE, BOB, 2 * ICP, 10_000, NANOS_PER_DAY, None, None),
            ],
        )
        database.conn.commit()
        database.close()
        output = tmp_path / "out"

        code = cli.main(["daily-balances", "--addresses", ALICE, "--db", str(db_path), "--output", str(output)])

        assert code == 0
        balances = json.loads((output / "daily_balances.json").read_text())
        assert balances == {ALICE: [[0, 5 * ICP], [1, 3 * ICP - 10_000]]}

    @pytest.mark.parametrize(
        "argv",
        [
            ["query-db", BAD_PRINCIPAL],
            ["analyze-account", BAD_PRINCIPAL],
            ["local-ledger", BAD_PRINCIPAL],
            ["daily-balances", "--addresses", ALICE, BAD_PRINCIPAL],
            ["trace-hubs", "--hubs", BAD_PRINCIPAL],
            ["trace-network", "--seeds", BAD_PRINCIPAL],
        ],
    )
    def test_invalid_account_exits_with_error(self, argv, tmp_path, capsys):
        code = cli.main(argv + ["--output", str(tmp_path), "--db", str(tmp_path / "unused.db")])

        assert code == 1
        assert "Invalid account" in capsys.readouterr().out
        assert not (tmp_path / "unused.db").exists()
