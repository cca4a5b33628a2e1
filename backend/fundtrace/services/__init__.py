"""Services for fundtrace"""

from .address_directory import AccountCategory, AddressDirectory, DirectoryEntry, get_directory
from .errors import FetchError, InvalidAddressError, TransientFetchError
from .ledger_db import LedgerDatabase
from .ledger_reader import LocalLedgerReader
from .transaction_source import (
    LocalTransactionSource,
    RemoteTransactionSource,
    RetryPolicy,
    TransactionSource,
    fetch_with_retry,
)

__all__ = [
    "AccountCategory",
    "AddressDirectory",
    "DirectoryEntry",
    "get_directory",
    "FetchError",
    "InvalidAddressError",
    "TransientFetchError",
    "LedgerDatabase",
    "LocalLedgerReader",
    "LocalTransactionSource",
    "RemoteTransactionSource",
    "RetryPolicy",
    "TransactionSource",
    "fetch_with_retry",
]
