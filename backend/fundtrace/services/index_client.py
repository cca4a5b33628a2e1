"""HTTP client for the remote ledger index"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from fundtrace.config import settings
from fundtrace.models.ledger import LedgerTransfer, OperationType
from fundtrace.services.errors import InvalidAddressError, TransientFetchError

logger = logging.getLogger(__name__)

INVALID_STATUS_CODES = {400, 404, 422}


class IndexAccountPage(BaseModel):
    """Decoded `get_account_identifier_transactions` response"""

    balance: int = Field(default=0, description="Current balance in e8s")
    transfers: List[LedgerTransfer] = Field(default_factory=list, description="Transfer operations")
    oldest_tx_id: Optional[int] = Field(None, description="Oldest block index known for the account")


def parse_index_transaction(entry: Dict[str, Any]) -> Optional[LedgerTransfer]:
    """
    Convert one index entry into a transfer record.

    Only `Transfer` operations are kept; mints, burns and approvals return None.
    Entries look like:
    `{"id": 7, "transaction": {"operation": {"Transfer": {...}}, "timestamp": {"timestamp_nanos": n}}}`
    """
    if not isinstance(entry, dict):
        return None

    transaction = entry.get("transaction") or {}
    operation = transaction.get("operation") or {}
    transfer = operation.get(OperationType.TRANSFER.value)
    if not isinstance(transfer, dict):
        return None

    sender = transfer.get("from")
    receiver = transfer.get("to")
    amount = (transfer.get("amount") or {}).get("e8s")
    if not sender or not receiver or amount is None:
        logger.debug("Skipping incomplete transfer %s", entry.get("id"))
        return None

    timestamp = (transaction.get("timestamp") or {}).get("timestamp_nanos") or 0

    return LedgerTransfer(
        op_type=OperationType.TRANSFER,
        from_account=sender,
        to_account=receiver,
        id=int(entry.get("id", 0)),
        timestamp=int(timestamp),
        amount=int(amount),
    )


class LedgerIndexClient:
    """
    Thin async wrapper around the ledger index HTTP gateway.

    Failures are mapped onto the fetch error taxonomy: anything that may
    succeed on a later attempt is a TransientFetchError, a rejected account
    identifier is an InvalidAddressError.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.index_url,
            timeout=timeout or settings.index_request_timeout,
            headers={
                "User-Agent": settings.index_user_agent,
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_account_transactions(
        self,
        account_identifier: str,
        max_results: Optional[int] = None,
        start: Optional[int] = None,
    ) -> IndexAccountPage:
        """One page of transfers, newest first, starting at block `start` when given"""
        page, _ = await self._fetch_page(account_identifier, max_results or settings.index_max_results, start)
        return page

    async def get_account_history(
        self,
        account_identifier: str,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> IndexAccountPage:
        """
        All transfers of an account, following the `start` cursor page by page

        Stops on a short page, once the oldest block is reached, when a page
        adds nothing new, or after `max_pages` pages.
        """
        page_size = page_size or settings.index_max_results
        max_pages = max_pages or settings.index_max_pages

        seen = set()
        transfers: List[LedgerTransfer] = []
        balance = 0
        oldest_tx_id: Optional[int] = None
        start: Optional[int] = None

        for page_number in range(1, max_pages + 1):
            page, entry_ids = await self._fetch_page(account_identifier, page_size, start)
            if page_number == 1:
                balance = page.balance
            if page.oldest_tx_id is not None:
                oldest_tx_id = page.oldest_tx_id

            new_ids = {i for i in entry_ids if i not in seen}
            seen.update(entry_ids)
            for transfer in page.transfers:
                if transfer.id in new_ids:
                    transfers.append(transfer)

            if len(entry_ids) < page_size or not new_ids:
                break
            start = min(entry_ids)
            if oldest_tx_id is not None and start <= oldest_tx_id:
                break
        else:
            logger.warning(
                "Stopped paging %s after %d pages; history may be incomplete",
                account_identifier[:12],
                max_pages,
            )

        return IndexAccountPage(balance=balance, transfers=transfers, oldest_tx_id=oldest_tx_id)

    async def _fetch_page(
        self,
        account_identifier: str,
        max_results: int,
        start: Optional[int],
    ) -> Tuple[IndexAccountPage, List[int]]:
        params: Dict[str, Any] = {"max_results": max_results}
        if start is not None:
            params["start"] = start

        path = f"/accounts/{account_identifier}/transactions"
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise TransientFetchError(f"Index timed out for {account_identifier}") from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Index unreachable for {account_identifier}: {exc}") from exc

        if response.status_code in INVALID_STATUS_CODES:
            raise InvalidAddressError(
                f"Index rejected {account_identifier} (HTTP {response.status_code})"
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(
                f"Index returned HTTP {response.status_code} for {account_identifier}"
            )
        try:
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise TransientFetchError(f"Bad index response for {account_identifier}: {exc}") from exc

        return self._decode(account_identifier, payload)

    def _decode(self, account_identifier: str, payload: Any) -> Tuple[IndexAccountPage, List[int]]:
        if not isinstance(payload, dict):
            raise TransientFetchError(f"Unexpected index payload for {account_identifier}")

        if "Err" in payload:
            message = str((payload.get("Err") or {}).get("message", ""))
            if "invalid" in message.lower():
                raise InvalidAddressError(f"Index rejected {account_identifier}: {message}")
            raise TransientFetchError(f"Index error for {account_identifier}: {message}")

        body = payload.get("Ok", payload)
        transfers = []
        entry_ids = []
        for entry in body.get("transactions", []) or []:
            if isinstance(entry, dict) and entry.get("id") is not None:
                entry_ids.append(int(entry["id"]))
            transfer = parse_index_transaction(entry)
            if transfer is not None:
                transfers.append(transfer)

        oldest = body.get("oldest_tx_id")
        page = IndexAccountPage(
            balance=int(body.get("balance", 0) or 0),
            transfers=transfers,
            oldest_tx_id=int(oldest) if oldest is not None else None,
        )
        return page, entry_ids
