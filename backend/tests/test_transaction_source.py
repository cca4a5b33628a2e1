"""Tests for transaction sources, retry and the ledger index client"""

import httpx
import pytest

from conftest import ICP, FakeSource, index_entry, make_account, mock_client, tx
from fundtrace.config import settings
from fundtrace.models.ledger import LocalTransaction, OperationType
from fundtrace.services.errors import InvalidAddressError, TransientFetchError
from fundtrace.services import transaction_source
from fundtrace.services.index_client import IndexAccountPage, LedgerIndexClient, parse_index_transaction
from fundtrace.services.ledger_db import LedgerDatabase
from fundtrace.services.transaction_source import (
    LocalTransactionSource,
    RemoteTransactionSource,
    RetryPolicy,
    fetch_with_retry,
    resolve_account,
)

ACCOUNT = make_account("account")
OTHER = make_account("other")


class TestRetryPolicy:
    """Test retry behaviour around a source"""

    def test_delay_backoff(self):
        policy = RetryPolicy(max_attempts=4, delay=2.0, backoff=3.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 6.0, 18.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, no_wait_policy):
        source = FakeSource(flaky={ACCOUNT: 5})

        with pytest.raises(TransientFetchError):
            await fetch_with_retry(source, ACCOUNT, no_wait_policy)
        assert len(source.calls) == 3

    @pytest.mark.asyncio
    async def test_invalid_address_is_not_retried(self, no_wait_policy):
        source = FakeSource(invalid={ACCOUNT})

        with pytest.raises(InvalidAddressError):
            await fetch_with_retry(source, ACCOUNT, no_wait_policy)
        assert len(source.calls) == 1

    def test_resolve_account(self):
        assert resolve_account(ACCOUNT.upper()) == ACCOUNT
        with pytest.raises(InvalidAddressError):
            resolve_account("not-an-account")
        with pytest.raises(InvalidAddressError):
            resolve_account("ab" * 32)


class TestLedgerIndexClient:
    """Test response decoding and error mapping"""

    def test_parse_keeps_transfers_only(self):
        assert parse_index_transaction(index_entry(1, ACCOUNT, OTHER, 5, 9)).amount == 5
        mint = {"id": 2, "transaction": {"operation": {"Mint": {"to": ACCOUNT, "amount": {"e8s": 1}}}}}
        assert parse_index_transaction(mint) is None

    @pytest.mark.asyncio
    async def test_decodes_ok_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/accounts/{ACCOUNT}/transactions"
            assert request.url.params["max_results"] == "50"
            return httpx.Response(
                200,
                json={
                    "Ok": {
                        "balance": 42,
                        "oldest_tx_id": 3,
                        "transactions": [
                            index_entry(3, OTHER, ACCOUNT, 7 * ICP, 100),
                            {"id": 4, "transaction": {"operation": {"Burn": {"from": ACCOUNT}}}},
                        ],
                    }
                },
            )

        client = LedgerIndexClient(client=mock_client(handler))
        page = await client.get_account_transactions(ACCOUNT, max_results=50)

        assert page.balance == 42
        assert page.oldest_tx_id == 3
        assert len(page.transfers) == 1
        transfer = page.transfers[0]
        assert transfer.op_type == OperationType.TRANSFER
        assert (transfer.from_account, transfer.to_account) == (OTHER, ACCOUNT)
        assert transfer.to_transaction().timestamp == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (400, InvalidAddressError),
            (404, InvalidAddressError),
            (429, TransientFetchError),
            (503, TransientFetchError),
        ],
    )
    async def test_status_mapping(self, status, error):
        client = LedgerIndexClient(client=mock_client(lambda request: httpx.Response(status)))

        with pytest.raises(error):
            await client.get_account_transactions(ACCOUNT)

    @pytest.mark.asyncio
    async def test_err_payload_mapping(self):
        def invalid(request):
            return httpx.Response(200, json={"Err": {"message": "Invalid account identifier"}})

        def busy(request):
            return httpx.Response(200, json={"Err": {"message": "index is syncing"}})

        with pytest.raises(InvalidAddressError):
            await LedgerIndexClient(client=mock_client(invalid)).get_account_transactions(ACCOUNT)
        with pytest.raises(TransientFetchError):
            await LedgerIndexClient(client=mock_client(busy)).get_account_transactions(ACCOUNT)

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientFetchError):
            await LedgerIndexClient(client=mock_client(handler)).get_account_transactions(ACCOUNT)


def paged_handler(pages, requested, balance=0, oldest_tx_id=None):
    """Serve `pages[start]` block ids, recording each requested cursor"""

    def handler(request: httpx.Request) -> httpx.Response:
        start = request.url.params.get("start")
        requested.append(start)
        ids = pages(start)
        body = {
            "balance": balance if start is None else 0,
            "transactions": [index_entry(i, OTHER, ACCOUNT, ICP, i) for i in ids],
        }
        if oldest_tx_id is not None:
            body["oldest_tx_id"] = oldest_tx_id
        return httpx.Response(200, json={"Ok": body})

    return handler


class TestIndexPagination:
    """Test following the start cursor across pages"""

    @pytest.mark.asyncio
    async def test_follows_cursor_until_short_page(self):
        pages = {None: [5, 4], "4": [4, 3], "3": [3]}
        requested = []
        client = LedgerIndexClient(client=mock_client(paged_handler(pages.get, requested, balance=8)))

        page = await client.get_account_history(ACCOUNT, page_size=2)

        assert requested == [None, "4", "3"]
        assert [t.id for t in page.transfers] == [5, 4, 3]
        assert page.balance == 8

    @pytest.mark.asyncio
    async def test_stops_at_oldest_block(self):
        requested = []
        handler = paged_handler(lambda start: [9, 8], requested, oldest_tx_id=8)

        page = await LedgerIndexClient(client=mock_client(handler)).get_account_history(ACCOUNT, page_size=2)

        assert requested == [None]
        assert [t.id for t in page.transfers] == [9, 8]
        assert page.oldest_tx_id == 8

    @pytest.mark.asyncio
    async def test_stops_after_max_pages(self):
        def pages(start):
            top = 10 if start is None else int(start)
            return [top, top - 1]

        requested = []
        client = LedgerIndexClient(client=mock_client(paged_handler(pages, requested)))

        page = await client.get_account_history(ACCOUNT, page_size=2, max_pages=3)

        assert len(requested) == 3
        assert [t.id for t in page.transfers] == [10, 9, 8, 7]

    @pytest.mark.asyncio
    async def test_page_without_new_entries_ends_paging(self):
        requested = []
        handler = paged_handler(lambda start: [6, 5], requested)

        page = await LedgerIndexClient(client=mock_client(handler)).get_account_history(ACCOUNT, page_size=2)

        assert requested == [None, "5"]
        assert [t.id for t in page.transfers] == [6, 5]


class TestRemoteTransactionSource:
    """Test the remote source without Redis"""

    @pytest.mark.asyncio
    async def test_fetch(self):
        def handler(request):
            return httpx.Response(
                200, json={"transactions": [index_entry(1, ACCOUNT, OTHER, ICP, 5)], "balance": 0}
            )

        source = RemoteTransactionSource(LedgerIndexClient(client=mock_client(handler)), use_cache=False)
        await source.init_redis()

        transactions = await source.fetch(ACCOUNT)

        assert transactions == [tx(ACCOUNT, OTHER, ICP, 5)]
        assert source.redis is None

    @pytest.mark.asyncio
    async def test_invalid_identifier_rejected_locally(self):
        def handler(request):
            raise AssertionError("index must not be called")

        source = RemoteTransactionSource(LedgerIndexClient(client=mock_client(handler)), use_cache=False)

        with pytest.raises(InvalidAddressError):
            await source.fetch("ab" * 32)

    @pytest.mark.asyncio
    async def test_fetch_account_group(self):
        """Groups merge transfers and report the first account as main"""
        first, second = sorted([ACCOUNT, OTHER])

        def handler(request):
            account = request.url.path.split("/")[2]
            return httpx.Response(
                200,
                json={
                    "balance": 10 if account == first else 20,
                    "oldest_tx_id": 5 if account == first else 2,
                    "transactions": [index_entry(9, account, make_account("x"), ICP, 1)],
                },
            )

        source = RemoteTransactionSource(LedgerIndexClient(client=mock_client(handler)), use_cache=False)
        history = await source.fetch_account_group("Pair", [second, first, "ab" * 32], "suspect")

        assert history.account == (first, 10)
        assert history.extra_accounts == [(second, 20)]
        assert history.oldest_tx_id == 2
        assert len(history.transactions) == 2
        assert history.ty == "suspect"


class FakeRedis:
    """Dict-backed stand-in for redis.asyncio.Redis"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values = {}
        self.ttls = {}

    async def ping(self):
        if self.fail:
            raise ConnectionError("redis unavailable")
        return True

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis unavailable")
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.values[key] = value
        self.ttls[key] = ttl

    async def aclose(self):
        return None


def one_transfer_handler(calls):
    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"balance": 4, "transactions": [index_entry(1, OTHER, ACCOUNT, ICP, 5)]})

    return handler


class TestTransactionCache:
    """Test the Redis cache in front of the index"""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_index(self):
        def handler(request):
            raise AssertionError("index must not be called")

        cached = IndexAccountPage(
            balance=4, transfers=[parse_index_transaction(index_entry(1, OTHER, ACCOUNT, ICP, 5))]
        )
        source = RemoteTransactionSource(LedgerIndexClient(client=mock_client(handler)), use_cache=True)
        source.redis = FakeRedis()
        source.redis.values[f"account_txs:{ACCOUNT}"] = cached.model_dump_json(by_alias=True)

        transactions = await source.fetch(ACCOUNT)

        assert transactions == [tx(OTHER, ACCOUNT, ICP, 5)]

    @pytest.mark.asyncio
    async def test_cache_miss_stores_page(self):
        calls = []
        source = RemoteTransactionSource(
            LedgerIndexClient(client=mock_client(one_transfer_handler(calls))), use_cache=True
        )
        source.redis = FakeRedis()

        first = await source.fetch(ACCOUNT)
        second = await source.fetch(ACCOUNT)

        key = f"account_txs:{ACCOUNT}"
        assert len(calls) == 1
        assert first == second == [tx(OTHER, ACCOUNT, ICP, 5)]
        assert source.redis.ttls[key] == settings.cache_ttl_account_history
        assert IndexAccountPage.model_validate_json(source.redis.values[key]).balance == 4

    @pytest.mark.asyncio
    async def test_failing_cache_falls_back_to_index(self):
        calls = []
        source = RemoteTransactionSource(
            LedgerIndexClient(client=mock_client(one_transfer_handler(calls))), use_cache=True
        )
        source.redis = FakeRedis(fail=True)

        transactions = await source.fetch(ACCOUNT)

        assert len(calls) == 1
        assert transactions == [tx(OTHER, ACCOUNT, ICP, 5)]

    @pytest.mark.asyncio
    async def test_unreachable_redis_runs_uncached(self, monkeypatch):
        monkeypatch.setattr(transaction_source.aioredis, "from_url", lambda *args, **kwargs: FakeRedis(fail=True))
        source = RemoteTransactionSource(
            LedgerIndexClient(client=mock_client(one_transfer_handler([]))), use_cache=True
        )

        await source.init_redis()

        assert source.redis is None
        assert await source.fetch(ACCOUNT) == [tx(OTHER, ACCOUNT, ICP, 5)]

    @pytest.mark.asyncio
    async def test_connected_redis_is_kept(self, monkeypatch):
        redis = FakeRedis()
        monkeypatch.setattr(transaction_source.aioredis, "from_url", lambda *args, **kwargs: redis)
        source = RemoteTransactionSource(
            LedgerIndexClient(client=mock_client(one_transfer_handler([]))), use_cache=True
        )

        await source.init_redis()
        await source.fetch(ACCOUNT)
        await source.close()

        assert source.redis is redis
        assert f"account_txs:{ACCOUNT}" in redis.values


class TestLocalTransactionSource:
    """Test reading transfers from the SQLite store"""

    @pytest.mark.asyncio
    async def test_only_complete_transfers(self, tmp_path):
        database = LedgerDatabase(tmp_path / "ledger.db")
        database.conn.executemany(
            """
            INSERT INTO transactions
                (ledger_id, operation_type, from_account, to_account, amount, fee, timestamp, memo, spender)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (1, "Transfer", OTHER, ACCOUNT, 5 * ICP, 10_000, 100, None, None),
                (2, "Mint", None, ACCOUNT, 9 * ICP, None, 200, None, None),
                (3, "Approve", ACCOUNT, None, None, 10_000, 300, None, OTHER),
            ],
        )
        database.conn.commit()
        source = LocalTransactionSource(database)

        transactions = await source.fetch(ACCOUNT)
        await source.close()

        assert transactions == [tx(OTHER, ACCOUNT, 5 * ICP, 100)]

    def test_local_transaction_conversion(self):
        record = LocalTransaction(id=1, operation_type=OperationType.TRANSFER, from_account=ACCOUNT)
        assert record.to_transaction() is None
