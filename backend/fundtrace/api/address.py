"""Local ledger store API endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from fundtrace.models.api import AccountStatsResponse, ConnectedAccount, ConnectedAccountsResponse
from fundtrace.services.errors import InvalidAddressError
from fundtrace.services.ledger_db import LedgerDatabase, get_ledger_database
from fundtrace.services.transaction_source import resolve_account

logger = logging.getLogger(__name__)

router = APIRouter()


def _account_or_400(account: str) -> str:
    try:
        return resolve_account(account)
    except InvalidAddressError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{account}/stats", response_model=AccountStatsResponse)
def get_account_stats(
    account: str,
    database: LedgerDatabase = Depends(get_ledger_database),
):
    """Transfer count, totals and first/last timestamps from the local ledger store"""
    account_id = _account_or_400(account)
    try:
        return AccountStatsResponse(**database.get_account_stats(account_id))
    except Exception as e:
        logger.error(f"Error reading stats for {account_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{account}/connected", response_model=ConnectedAccountsResponse)
def get_connected_accounts(
    account: str,
    min_amount_e8s: int = Query(default=100_000_000, ge=0, description="Ignore smaller transfers"),
    limit: int = Query(default=20, ge=1, le=1000, description="Maximum counterparties returned"),
    database: LedgerDatabase = Depends(get_ledger_database),
):
    """
    Counterparties of an account, largest volume first

    Example: GET /api/address/<account identifier>/connected?min_amount_e8s=100000000
    """
    account_id = _account_or_400(account)
    try:
        connected = database.find_connected_accounts(account_id, min_amount_e8s)
    except Exception as e:
        logger.error(f"Error reading counterparties of {account_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return ConnectedAccountsResponse(
        account=account_id,
        min_amount_e8s=min_amount_e8s,
        connected=[
            ConnectedAccount(account=other, received_e8s=received, sent_e8s=sent)
            for other, received, sent in connected[:limit]
        ],
    )
