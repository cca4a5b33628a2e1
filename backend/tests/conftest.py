"""Shared fixtures for fundtrace tests"""

import hashlib
import zlib
from typing import Dict, Iterable, List

import httpx
import pytest

from fundtrace.models.ledger import NANOS_PER_DAY, Transaction
from fundtrace.services.errors import InvalidAddressError, TransientFetchError
from fundtrace.services.transaction_source import RetryPolicy, TransactionSource

WEEK = 7 * NANOS_PER_DAY
ICP = 100_000_000


def make_account(seed: str) -> str:
    """Deterministic account identifier with a valid CRC32 prefix"""
    body = hashlib.sha224(seed.encode()).digest()
    return (zlib.crc32(body).to_bytes(4, "big") + body).hex()


def tx(sender: str, receiver: str, amount: int, timestamp: int = 0) -> Transaction:
    return Transaction(from_account=sender, to_account=receiver, amount=amount, timestamp=timestamp)


def index_entry(block: int, sender: str, receiver: str, amount: int, timestamp: int) -> dict:
    """Transfer entry as returned by the ledger index"""
    return {
        "id": block,
        "transaction": {
            "memo": 0,
            "operation": {
                "Transfer": {
                    "from": sender,
                    "to": receiver,
                    "amount": {"e8s": amount},
                    "fee": {"e8s": 10_000},
                }
            },
            "timestamp": {"timestamp_nanos": timestamp},
        },
    }


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://index.test")


class FakeSource(TransactionSource):
    """
    In-memory transaction source

    Serves the transfers of a shared ledger list touching the requested
    address. Addresses in `invalid` raise InvalidAddressError; addresses in
    `flaky` raise TransientFetchError for the given number of calls.
    """

    def __init__(
        self,
        ledger: Iterable[Transaction] = (),
        invalid: Iterable[str] = (),
        flaky: Dict[str, int] = None,
    ):
        self.ledger: List[Transaction] = list(ledger)
        self.invalid = set(invalid)
        self.flaky = dict(flaky or {})
        self.calls: List[str] = []

    async def fetch(self, address: str) -> List[Transaction]:
        self.calls.append(address)
        if address in self.invalid:
            raise InvalidAddressError(f"invalid {address}")
        if self.flaky.get(address, 0) > 0:
            self.flaky[address] -= 1
            raise TransientFetchError(f"unavailable {address}")
        return [t for t in self.ledger if address in (t.from_account, t.to_account)]


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay=0.0, backoff=1.0)


@pytest.fixture
def exchanges() -> Dict[str, str]:
    return {
        make_account("coinbase"): "Coinbase",
        make_account("binance"): "Binance",
    }
