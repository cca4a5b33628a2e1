"""Streaming reader for JSONL ledger exports"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from fundtrace.models.ledger import LocalTransaction, OperationType

logger = logging.getLogger(__name__)

LEDGER_FILE_PATTERN = re.compile(r"^icp_ledger_(\d+)_(\d+)\.jsonl$")
NESTED_OPERATION_KEYS = tuple(
    op.value for op in OperationType if op is not OperationType.UNKNOWN
)


@dataclass
class LedgerFile:
    """One export file and the transaction id range it covers"""

    path: Path
    start_id: int
    end_id: int


def parse_filename_range(filename: str) -> Optional[tuple]:
    """
    Extract the id range from an export file name

    "icp_ledger_1099000_1199000.jsonl" -> (1099000, 1199000)
    """
    match = LEDGER_FILE_PATTERN.match(filename)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def _nested(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _split_operation(operation: Dict[str, Any]) -> tuple:
    """Return (operation type, field dict) for flat or variant-keyed operations"""
    if "type" in operation:
        return OperationType.parse(operation.get("type")), operation
    for key in NESTED_OPERATION_KEYS:
        if isinstance(operation.get(key), dict):
            return OperationType(key), operation[key]
    return OperationType.UNKNOWN, operation


def parse_ledger_record(record: Dict[str, Any]) -> Optional[LocalTransaction]:
    """
    Parse one exported ledger record.

    Records carry the operation under `transaction.operation` (or a top-level
    `operation`), either flat with a `type` field or keyed by the variant
    name. Records without a timestamp or operation are rejected; missing
    ids fall back to the timestamp in milliseconds.
    """
    if not isinstance(record, dict):
        return None

    transaction = record.get("transaction") if isinstance(record.get("transaction"), dict) else record
    operation = transaction.get("operation")
    if not isinstance(operation, dict):
        return None

    timestamp = _as_int(_nested(record, "timestamp", "timestamp_nanos"))
    if timestamp is None:
        timestamp = _as_int(_nested(transaction, "timestamp", "timestamp_nanos"))
    if timestamp is None:
        return None

    operation_type, fields = _split_operation(operation)

    record_id = _as_int(record.get("id"))
    if record_id is None:
        record_id = timestamp // 1_000_000

    return LocalTransaction(
        id=record_id,
        operation_type=operation_type,
        from_account=fields.get("from"),
        to_account=fields.get("to"),
        amount=_as_int(_nested(fields, "amount", "e8s")),
        fee=_as_int(_nested(fields, "fee", "e8s")),
        timestamp=timestamp,
        memo=_as_int(transaction.get("memo", record.get("memo"))),
        spender=fields.get("spender"),
    )


def involves_account(transaction: LocalTransaction, account_id: str) -> bool:
    return account_id in (transaction.from_account, transaction.to_account, transaction.spender)


class LocalLedgerReader:
    """
    Stream transactions out of a directory of `icp_ledger_<start>_<end>.jsonl` files

    Files are read line by line so exports larger than memory can be scanned.
    """

    def __init__(self, ledger_directory: Union[str, Path]):
        self.ledger_directory = Path(ledger_directory)
        self.ledger_files = self._discover_ledger_files(self.ledger_directory)

        logger.info("Discovered %d ledger files", len(self.ledger_files))
        if self.ledger_files:
            logger.info(
                "Transaction range: %d to %d",
                self.ledger_files[0].start_id,
                self.ledger_files[-1].end_id,
            )

    @staticmethod
    def _discover_ledger_files(directory: Path) -> List[LedgerFile]:
        files = []
        for path in directory.iterdir():
            id_range = parse_filename_range(path.name)
            if id_range and path.is_file():
                files.append(LedgerFile(path=path, start_id=id_range[0], end_id=id_range[1]))

        # Sorted by start id so reads follow ledger order
        files.sort(key=lambda f: f.start_id)
        return files

    def iter_file_records(self, path: Path) -> Iterator[Dict[str, Any]]:
        """Yield decoded JSON objects from one file, skipping blank and malformed lines"""
        with open(path, "r", encoding="utf-8") as handle:
            for line_num, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Error parsing JSON at %s:%d: %s", path, line_num, e)

    def iter_transactions(self) -> Iterator[LocalTransaction]:
        for ledger_file in self.ledger_files:
            for record in self.iter_file_records(ledger_file.path):
                transaction = parse_ledger_record(record)
                if transaction is not None:
                    yield transaction

    def find_account_transactions(self, account_id: str) -> List[LocalTransaction]:
        """All transactions touching an account, ordered by id"""
        transactions = [tx for tx in self.iter_transactions() if involves_account(tx, account_id)]
        transactions.sort(key=lambda t: t.id)
        return transactions

    def process_account_in_batches(
        self,
        account_id: str,
        batch_size: int,
        processor: Callable[[List[LocalTransaction]], None],
    ) -> None:
        """Feed an account's transactions to `processor` in batches of `batch_size`"""
        batch: List[LocalTransaction] = []
        for transaction in self.iter_transactions():
            if not involves_account(transaction, account_id):
                continue
            batch.append(transaction)
            if len(batch) >= batch_size:
                processor(batch)
                batch = []

        if batch:
            processor(batch)

    def get_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"total_files": len(self.ledger_files)}
        if self.ledger_files:
            summary["first_transaction_id"] = self.ledger_files[0].start_id
            summary["last_transaction_id"] = self.ledger_files[-1].end_id
        summary["files"] = [f.path.name for f in self.ledger_files]
        return summary
