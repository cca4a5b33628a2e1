"""Transaction sources: remote ledger index and local ledger store"""

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

import redis.asyncio as aioredis

from fundtrace.config import settings
from fundtrace.models.ledger import AccountHistory, LedgerTransfer, Transaction
from fundtrace.services.errors import FetchError, InvalidAddressError, TransientFetchError
from fundtrace.services.identifiers import (
    is_principal_text,
    is_valid_account_id,
    normalize_address,
)
from fundtrace.services.index_client import IndexAccountPage, LedgerIndexClient
from fundtrace.services.ledger_db import LedgerDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a failed fetch is retried"""

    max_attempts: int = 3
    delay: float = 10.0
    backoff: float = 1.0  # Multiplier applied to the delay after each failure

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.fetch_max_attempts,
            delay=settings.fetch_retry_delay,
            backoff=settings.fetch_retry_backoff,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)"""
        return self.delay * (self.backoff ** (attempt - 1))


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
) -> T:
    """
    Await `func` until it succeeds or the policy is exhausted.

    Only TransientFetchError is retried; InvalidAddressError and any other
    exception propagate immediately.
    """
    attempts = 0
    while True:
        try:
            return await func()
        except TransientFetchError as exc:
            attempts += 1
            if attempts >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempts)
            logger.warning(
                "Error fetching transactions for %s: %s. Retrying %d/%d in %.1fs...",
                label,
                exc,
                attempts,
                policy.max_attempts,
                delay,
            )
            await asyncio.sleep(delay)


class TransactionSource(ABC):
    """Anything that can list the transfers touching an account"""

    @abstractmethod
    async def fetch(self, address: str) -> List[Transaction]:
        """
        Fetch all transfers touching `address`, in no guaranteed order.

        Raises:
            TransientFetchError: the source may succeed on a later attempt
            InvalidAddressError: the address is malformed or rejected
        """

    async def close(self) -> None:
        return None


async def fetch_with_retry(
    source: TransactionSource,
    address: str,
    policy: Optional[RetryPolicy] = None,
) -> List[Transaction]:
    """Fetch through `source`, retrying transient failures per `policy`"""
    return await call_with_retry(
        lambda: source.fetch(address),
        policy or RetryPolicy.from_settings(),
        address[:12],
    )


def resolve_account(address: str) -> str:
    """
    Normalize an address to a checked account identifier

    Raises:
        InvalidAddressError: if the address is neither a principal nor a valid account identifier
    """
    try:
        account = normalize_address(address)
    except ValueError as exc:
        raise InvalidAddressError(str(exc)) from exc
    if not is_valid_account_id(account):
        raise InvalidAddressError(f"Invalid account identifier: {address}")
    return account


class RemoteTransactionSource(TransactionSource):
    """
    Fetch transfers from the ledger index with Redis caching

    Redis is optional: if the connection fails the source runs uncached.
    """

    def __init__(
        self,
        index_client: Optional[LedgerIndexClient] = None,
        use_cache: Optional[bool] = None,
    ):
        self.index = index_client or LedgerIndexClient()
        self.use_cache = settings.cache_enabled if use_cache is None else use_cache
        self.redis: Optional[aioredis.Redis] = None

    async def init_redis(self) -> None:
        """Initialize Redis connection"""
        if not self.use_cache:
            return
        try:
            self.redis = aioredis.from_url(
                f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}",
                password=settings.redis_password if settings.redis_password else None,
                decode_responses=True,
            )
            await self.redis.ping()
            logger.info("Redis connection initialized")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Running without cache.")
            self.redis = None

    async def close(self) -> None:
        if self.redis:
            await self.redis.aclose()
        await self.index.close()

    async def _get_cache(self, key: str) -> Optional[str]:
        if not self.redis:
            return None
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.warning(f"Cache get failed: {e}")
            return None

    async def _set_cache(self, key: str, value: str, ttl: int) -> None:
        if not self.redis:
            return
        try:
            await self.redis.setex(key, ttl, value)
        except Exception as e:
            logger.warning(f"Cache set failed: {e}")

    async def fetch_account_page(self, address: str) -> IndexAccountPage:
        """Balance and transfers of one account, served from cache when possible"""
        account = resolve_account(address)
        cache_key = f"account_txs:{account}"

        cached = await self._get_cache(cache_key)
        if cached:
            return IndexAccountPage.model_validate_json(cached)

        page = await self.index.get_account_history(account)
        logger.debug("Fetched %d transfers for %s", len(page.transfers), account[:12])
        await self._set_cache(
            cache_key, page.model_dump_json(by_alias=True), settings.cache_ttl_account_history
        )
        return page

    async def fetch(self, address: str) -> List[Transaction]:
        page = await self.fetch_account_page(address)
        return [transfer.to_transaction() for transfer in page.transfers]

    async def fetch_account_group(
        self,
        name: str,
        addresses: Iterable[str],
        category: str,
    ) -> AccountHistory:
        """
        Fetch and merge the transfers of a named group of addresses

        The lexicographically first account is reported as the main account,
        the others as extra accounts. Identifiers the index rejects are skipped.
        """
        addresses = list(addresses)
        principal = next((a for a in addresses if is_principal_text(a)), None)

        identifiers = set()
        for address in addresses:
            try:
                identifiers.add(normalize_address(address))
            except ValueError:
                logger.warning("Skipping invalid principal %s in %s", address, name)

        balances = []
        transfers: List[LedgerTransfer] = []
        oldest_tx_id: Optional[int] = None

        for account in sorted(identifiers):
            if not is_valid_account_id(account):
                logger.info("Skipping invalid account ID: %s", account)
                continue
            try:
                page = await self.fetch_account_page(account)
            except InvalidAddressError as exc:
                logger.warning("Index rejected %s for %s: %s", account, name, exc)
                continue
            if page.oldest_tx_id is not None and (oldest_tx_id is None or page.oldest_tx_id < oldest_tx_id):
                oldest_tx_id = page.oldest_tx_id
            balances.append((account, page.balance))
            transfers.extend(page.transfers)

        return AccountHistory(
            name=name,
            principal=principal,
            account=balances[0] if balances else None,
            ty=category,
            extra_accounts=balances[1:],
            transactions=transfers,
            oldest_tx_id=oldest_tx_id,
        )


class LocalTransactionSource(TransactionSource):
    """Serve transfers from the local SQLite ledger store"""

    def __init__(self, database: LedgerDatabase):
        self.database = database

    async def fetch(self, address: str) -> List[Transaction]:
        account = resolve_account(address)
        try:
            records = await asyncio.to_thread(self.database.get_account_transactions, account)
        except sqlite3.OperationalError as exc:
            raise TransientFetchError(f"Local ledger query failed for {account}: {exc}") from exc

        transactions = []
        for record in records:
            transaction = record.to_transaction()
            if transaction is not None:
                transactions.append(transaction)
        return transactions

    async def close(self) -> None:
        self.database.close()


_remote_source: Optional[RemoteTransactionSource] = None


async def get_remote_source() -> RemoteTransactionSource:
    """Get or create global RemoteTransactionSource instance"""
    global _remote_source
    if _remote_source is None:
        _remote_source = RemoteTransactionSource()
        await _remote_source.init_redis()
    return _remote_source


async def close_remote_source() -> None:
    global _remote_source
    if _remote_source is not None:
        await _remote_source.close()
        _remote_source = None


__all__ = [
    "FetchError",
    "InvalidAddressError",
    "LocalTransactionSource",
    "RemoteTransactionSource",
    "RetryPolicy",
    "TransactionSource",
    "TransientFetchError",
    "call_with_retry",
    "close_remote_source",
    "fetch_with_retry",
    "get_remote_source",
    "resolve_account",
]
