"""Tests for the HTTP API"""

import pytest
from fastapi.testclient import TestClient

from conftest import ICP, WEEK, FakeSource, make_account, tx
from fundtrace.main import app
from fundtrace.services.address_directory import AccountCategory, AddressDirectory, DirectoryEntry, get_directory
from fundtrace.services.ledger_db import LedgerDatabase, get_ledger_database
from fundtrace.services.transaction_source import get_remote_source

SEED = make_account("seed")
FRIEND = make_account("friend")
COINBASE = make_account("coinbase")
BINANCE = make_account("binance")


@pytest.fixture
def client(tmp_path):
    source = FakeSource(
        [
            tx(COINBASE, SEED, 20 * ICP, 0),
            tx(SEED, FRIEND, 5 * ICP, WEEK),
            tx(SEED, BINANCE, 10 * ICP, 6 * WEEK),
        ]
    )
    directory = AddressDirectory(
        [
            DirectoryEntry(name="Coinbase", addresses=(COINBASE,), category=AccountCategory.CEX),
            DirectoryEntry(name="Binance", addresses=(BINANCE,), category=AccountCategory.CEX),
            DirectoryEntry(name="Seed", addresses=(SEED,), category=AccountCategory.SEED),
        ]
    )
    database = LedgerDatabase(tmp_path / "ledger.db")
    database.conn.execute(
        """
        INSERT INTO transactions (ledger_id, operation_type, from_account, to_account, amount, fee, timestamp)
        VALUES (1, 'Transfer', ?, ?, ?, 10000, 5)
        """,
        (SEED, FRIEND, 3 * ICP),
    )
    database.conn.commit()

    async def fake_source():
        return source

    app.dependency_overrides[get_remote_source] = fake_source
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_ledger_database] = lambda: database
    yield TestClient(app)
    app.dependency_overrides.clear()
    database.close()


class TestTraceEndpoint:
    """Test POST /api/trace/network"""

    def test_trace_default_seeds(self, client):
        response = client.post("/api/trace/network", json={"max_depth": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["total_accounts"] == 2
        assert set(data["network"]["nodes"]) == {SEED, FRIEND}
        assert data["network"]["nodes"][SEED]["name"] == "Seed"
        assert data["network"]["suspicious_accounts"] == [SEED]
        assert data["top_holders"][0]["address"] in (SEED, FRIEND)
        edge = data["network"]["edges"][0]
        assert "from" in edge and "to" in edge

    def test_depth_bound(self, client):
        response = client.post("/api/trace/network", json={"max_depth": 99})
        assert response.status_code == 400

    def test_explicit_seeds(self, client):
        response = client.post("/api/trace/network", json={"seeds": [FRIEND], "max_depth": 0})

        assert response.status_code == 200
        assert list(response.json()["network"]["nodes"]) == [FRIEND]


class TestPatternsEndpoint:
    """Test GET /api/patterns/{account}"""

    def test_patterns(self, client):
        response = client.get(f"/api/patterns/{SEED}")

        assert response.status_code == 200
        patterns = response.json()
        assert len(patterns) == 1
        assert patterns[0]["pattern_type"] == "ExchangeCycle"
        assert patterns[0]["total_amount"] == 10 * ICP

    def test_invalid_account(self, client):
        response = client.get(f"/api/patterns/{'ab' * 32}")
        assert response.status_code == 400


class TestAddressEndpoints:
    """Test local store queries"""

    def test_stats(self, client):
        response = client.get(f"/api/address/{SEED}/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["transaction_count"] == 1
        assert data["total_sent_e8s"] == 3 * ICP
        assert data["balance_e8s"] == -3 * ICP

    def test_connected(self, client):
        response = client.get(f"/api/address/{SEED}/connected", params={"min_amount_e8s": ICP})

        assert response.status_code == 200
        assert response.json()["connected"] == [
            {"account": FRIEND, "received_e8s": 0, "sent_e8s": 3 * ICP}
        ]

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
