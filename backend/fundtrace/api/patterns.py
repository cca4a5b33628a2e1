"""Pattern detection API endpoints"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from fundtrace.analysis.pattern_detector import PatternDetector
from fundtrace.models.analysis import SuspiciousPattern
from fundtrace.services.address_directory import AddressDirectory, get_directory
from fundtrace.services.errors import FetchError, InvalidAddressError
from fundtrace.services.transaction_source import (
    RemoteTransactionSource,
    fetch_with_retry,
    get_remote_source,
    resolve_account,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{account}", response_model=List[SuspiciousPattern])
async def get_patterns(
    account: str,
    source: RemoteTransactionSource = Depends(get_remote_source),
    directory: AddressDirectory = Depends(get_directory),
):
    """
    Detect suspicious patterns for one account

    Returns an empty list when nothing is detected.

    Example: GET /api/patterns/<account identifier>
    """
    try:
        account_id = resolve_account(account)
        transactions = await fetch_with_retry(source, account_id)
    except InvalidAddressError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FetchError as e:
        logger.error(f"Error fetching transactions for {account}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    detector = PatternDetector(directory.exchanges)
    return detector.detect_patterns(account_id, transactions)
