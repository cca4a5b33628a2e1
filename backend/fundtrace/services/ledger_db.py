"""
SQLite store for the exported ledger.

Imports JSONL exports once and answers per-account queries without
rescanning the files.
"""

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from fundtrace.config import settings
from fundtrace.models.ledger import NANOS_PER_DAY, LocalTransaction, OperationType
from fundtrace.services.ledger_reader import LocalLedgerReader, parse_ledger_record

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
    ledger_id INTEGER NOT NULL,
    operation_type TEXT NOT NULL,
    from_account TEXT,
    to_account TEXT,
    amount INTEGER,
    fee INTEGER,
    timestamp INTEGER,
    memo TEXT,
    spender TEXT
);

CREATE INDEX IF NOT EXISTS idx_from_account ON transactions(from_account) WHERE from_account IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_to_account ON transactions(to_account) WHERE to_account IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_spender ON transactions(spender) WHERE spender IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_timestamp ON transactions(timestamp) WHERE timestamp IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_operation_type ON transactions(operation_type);

CREATE INDEX IF NOT EXISTS idx_from_timestamp ON transactions(from_account, timestamp) WHERE from_account IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_to_timestamp ON transactions(to_account, timestamp) WHERE to_account IS NOT NULL;

CREATE TABLE IF NOT EXISTS import_metadata (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

INSERT_SQL = """
INSERT INTO transactions
    (ledger_id, operation_type, from_account, to_account, amount, fee, timestamp, memo, spender)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

CONNECTED_ACCOUNTS_SQL = """
WITH connections AS (
    SELECT
        CASE WHEN from_account = :account THEN to_account ELSE from_account END AS connected_account,
        SUM(CASE WHEN to_account = :account THEN amount ELSE 0 END) AS received,
        SUM(CASE WHEN from_account = :account THEN amount ELSE 0 END) AS sent
    FROM transactions
    WHERE (from_account = :account OR to_account = :account)
        AND amount >= :min_amount
    GROUP BY connected_account
)
SELECT connected_account, received, sent
FROM connections
WHERE connected_account IS NOT NULL
ORDER BY (received + sent) DESC, connected_account
"""

MAX_LOGGED_PARSE_ERRORS = 5


def _row_values(transaction: LocalTransaction) -> Tuple:
    return (
        transaction.id,
        transaction.operation_type.value,
        transaction.from_account,
        transaction.to_account,
        transaction.amount,
        transaction.fee,
        transaction.timestamp,
        str(transaction.memo) if transaction.memo is not None else None,  # u64 overflows INTEGER
        transaction.spender,
    )


class LedgerDatabase:
    """
    SQLite-backed ledger store

    Args:
        db_path: Database file, created if missing. Defaults to settings.ledger_db_path.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = str(db_path or settings.ledger_db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self.conn.execute("PRAGMA cache_size = -64000")  # 64MB
        self.conn.execute("PRAGMA temp_store = MEMORY")

        self._create_schema()

    def _create_schema(self) -> None:
        self.conn.executescript(SCHEMA)

    def close(self) -> None:
        self.conn.close()

    def _imported_files(self) -> set:
        rows = self.conn.execute("SELECT key FROM import_metadata WHERE key LIKE 'file_%'")
        return {row["key"] for row in rows}

    def import_from_jsonl(
        self,
        ledger_directory: Optional[Union[str, Path]] = None,
        batch_size: Optional[int] = None,
        commit_every: Optional[int] = None,
    ) -> int:
        """
        Import every not-yet-imported export file in a directory.

        Progress is tracked per file in import_metadata, so an interrupted
        import resumes at the first file that was not committed.

        Returns:
            Number of transactions inserted
        """
        reader = LocalLedgerReader(ledger_directory or settings.ledger_directory)
        batch_size = batch_size or settings.ledger_import_batch_size
        commit_every = commit_every or settings.ledger_commit_every_files

        start_time = time.monotonic()
        imported_files = self._imported_files()
        total_imported = 0
        logger.info("Starting ledger import of %d files", len(reader.ledger_files))

        for file_idx, ledger_file in enumerate(reader.ledger_files):
            file_key = f"file_{ledger_file.path.name}"
            if file_key in imported_files:
                logger.info("Skipping %s, already imported", ledger_file.path.name)
                continue

            logger.info(
                "Processing file %d/%d: %s", file_idx + 1, len(reader.ledger_files), ledger_file.path.name
            )
            batch: List[Tuple] = []
            file_count = 0
            parse_errors = 0

            for record in reader.iter_file_records(ledger_file.path):
                transaction = parse_ledger_record(record)
                if transaction is None:
                    parse_errors += 1
                    if parse_errors <= MAX_LOGGED_PARSE_ERRORS:
                        logger.warning("Failed to parse transaction: %s", record)
                    continue

                batch.append(_row_values(transaction))
                if len(batch) >= batch_size:
                    self.conn.executemany(INSERT_SQL, batch)
                    file_count += len(batch)
                    batch = []

            if batch:
                self.conn.executemany(INSERT_SQL, batch)
                file_count += len(batch)

            total_imported += file_count
            self.conn.execute(
                "INSERT OR REPLACE INTO import_metadata (key, value) VALUES (?, 'imported')",
                (file_key,),
            )
            logger.info("File complete: %d transactions (parse errors: %d)", file_count, parse_errors)

            if (file_idx + 1) % commit_every == 0:
                self.conn.commit()
                logger.info("Committed progress at file %d", file_idx + 1)

        self.conn.commit()
        self.conn.execute("ANALYZE")

        elapsed = time.monotonic() - start_time
        logger.info(
            "Import complete: %d transactions in %.2fs (%.0f tx/sec)",
            total_imported,
            elapsed,
            total_imported / elapsed if elapsed > 0 else 0.0,
        )
        return total_imported

    @staticmethod
    def _to_local_transaction(row: sqlite3.Row) -> LocalTransaction:
        return LocalTransaction(
            id=row["ledger_id"],
            operation_type=OperationType.parse(row["operation_type"]),
            from_account=row["from_account"],
            to_account=row["to_account"],
            amount=row["amount"],
            fee=row["fee"],
            timestamp=row["timestamp"],
            memo=int(row["memo"]) if row["memo"] is not None else None,
            spender=row["spender"],
        )

    def get_account_transactions(self, account: str) -> List[LocalTransaction]:
        """All transactions where the account is sender, receiver or spender, in ledger order"""
        rows = self.conn.execute(
            """
            SELECT * FROM transactions
            WHERE from_account = :account OR to_account = :account OR spender = :account
            ORDER BY ledger_id, row_id
            """,
            {"account": account},
        )
        return [self._to_local_transaction(row) for row in rows]

    def get_balance_at_timestamp(self, account: str, timestamp: int) -> int:
        """Received minus sent (amount plus fee) up to and including `timestamp`"""
        received = self.conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM transactions WHERE to_account = ? AND timestamp <= ?",
            (account, timestamp),
        ).fetchone()[0]
        sent = self.conn.execute(
            """
            SELECT COALESCE(SUM(amount + COALESCE(fee, 0)), 0) FROM transactions
            WHERE from_account = ? AND timestamp <= ?
            """,
            (account, timestamp),
        ).fetchone()[0]
        return received - sent

    def find_connected_accounts(
        self, account: str, min_amount: Optional[int] = None
    ) -> List[Tuple[str, int, int]]:
        """
        Counterparties of an account with the volume exchanged in each direction

        Returns:
            (counterparty, received_from_it, sent_to_it) tuples, largest volume first
        """
        rows = self.conn.execute(
            CONNECTED_ACCOUNTS_SQL, {"account": account, "min_amount": min_amount or 0}
        )
        return [(row["connected_account"], row["received"], row["sent"]) for row in rows]

    def get_account_stats(self, account: str) -> Dict[str, Any]:
        row = self.conn.execute(
            """
            SELECT
                COUNT(*) AS tx_count,
                COALESCE(SUM(CASE WHEN to_account = :account THEN amount END), 0) AS received,
                COALESCE(SUM(CASE WHEN from_account = :account THEN amount END), 0) AS sent,
                MIN(timestamp) AS first_tx,
                MAX(timestamp) AS last_tx
            FROM transactions
            WHERE from_account = :account OR to_account = :account
            """,
            {"account": account},
        ).fetchone()

        return {
            "account": account,
            "transaction_count": row["tx_count"],
            "total_received_e8s": row["received"],
            "total_sent_e8s": row["sent"],
            "balance_e8s": row["received"] - row["sent"],
            "first_transaction_timestamp": row["first_tx"],
            "last_transaction_timestamp": row["last_tx"],
        }

    def get_db_stats(self) -> Dict[str, Any]:
        total_txs = self.conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
        unique_accounts = self.conn.execute(
            """
            SELECT COUNT(*) FROM (
                SELECT from_account AS account FROM transactions WHERE from_account IS NOT NULL
                UNION
                SELECT to_account AS account FROM transactions WHERE to_account IS NOT NULL
            )
            """
        ).fetchone()[0]

        return {
            "total_transactions": total_txs,
            "unique_accounts": unique_accounts,
            "database_size_mb": self._db_size_mb(),
        }

    def _db_size_mb(self) -> float:
        page_count = self.conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = self.conn.execute("PRAGMA page_size").fetchone()[0]
        return page_count * page_size / 1_048_576

    def day_range(self) -> Tuple[int, int]:
        """First and last ledger day (days since epoch) present in the store"""
        row = self.conn.execute(
            "SELECT MIN(timestamp), MAX(timestamp) FROM transactions WHERE timestamp IS NOT NULL"
        ).fetchone()
        min_ts = row[0] or 0
        max_ts = row[1] or 0
        return min_ts // NANOS_PER_DAY, max_ts // NANOS_PER_DAY

    def generate_daily_balances(self, addresses: Iterable[str]) -> Dict[str, List[List[int]]]:
        """
        End-of-day balance series for each address over the store's day range

        Returns:
            address -> [[day, balance_e8s], ...] with one entry per day
        """
        addresses = list(addresses)
        min_day, max_day = self.day_range()
        logger.info(
            "Generating daily balances for %d addresses, days %d to %d", len(addresses), min_day, max_day
        )

        result = {}
        for idx, address in enumerate(addresses):
            logger.debug("Processing address %d/%d: %s...", idx + 1, len(addresses), address[:8])
            daily = self._daily_balance_for_address(address, min_day, max_day)
            result[address] = [[day, daily.get(day, 0)] for day in range(min_day, max_day + 1)]
        return result

    def _daily_balance_for_address(self, address: str, min_day: int, max_day: int) -> Dict[int, int]:
        rows = self.conn.execute(
            """
            SELECT timestamp, amount, fee, from_account, to_account, operation_type
            FROM transactions
            WHERE (from_account = :address OR to_account = :address) AND timestamp IS NOT NULL
            ORDER BY timestamp, row_id
            """,
            {"address": address},
        )

        daily: Dict[int, int] = {}
        balance = 0
        last_day = min_day

        for row in rows:
            day = row["timestamp"] // NANOS_PER_DAY
            while last_day < day:
                daily[last_day] = balance
                last_day += 1

            amount = row["amount"] or 0
            fee = row["fee"] or 0
            op = OperationType.parse(row["operation_type"])

            if op is OperationType.TRANSFER:
                if row["to_account"] == address:
                    balance += amount
                elif row["from_account"] == address:
                    balance -= amount + fee
            elif op is OperationType.MINT:
                if row["to_account"] == address:
                    balance += amount
            elif op is OperationType.BURN:
                if row["from_account"] == address:
                    balance -= amount

            last_day = day

        while last_day <= max_day:
            daily[last_day] = balance
            last_day += 1

        return daily


_database: Optional[LedgerDatabase] = None


def get_ledger_database() -> LedgerDatabase:
    """Get or open the global LedgerDatabase at settings.ledger_db_path"""
    global _database
    if _database is None:
        _database = LedgerDatabase()
    return _database


def close_ledger_database() -> None:
    global _database
    if _database is not None:
        _database.close()
        _database = None
