"""Network tracing API endpoints"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from fundtrace.analysis.network_tracer import NetworkTracer
from fundtrace.config import settings
from fundtrace.models.api import NetworkTraceRequest
from fundtrace.models.reports import NetworkTraceReport
from fundtrace.reports import network_trace_report
from fundtrace.services.address_directory import AddressDirectory, get_directory
from fundtrace.services.identifiers import normalize_address
from fundtrace.services.transaction_source import RemoteTransactionSource, get_remote_source

logger = logging.getLogger(__name__)

router = APIRouter()


def _resolve_seeds(request: NetworkTraceRequest, directory: AddressDirectory) -> List[str]:
    if request.seeds is None:
        return directory.seed_addresses
    try:
        return [normalize_address(seed) for seed in request.seeds]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/network", response_model=NetworkTraceReport)
async def trace_network(
    request: NetworkTraceRequest,
    source: RemoteTransactionSource = Depends(get_remote_source),
    directory: AddressDirectory = Depends(get_directory),
):
    """
    Trace the transfer network around seed accounts

    Walks breadth-first from the seeds, stopping at exchanges and at
    `max_depth` hops. Accounts whose history cannot be fetched are listed in
    `failed_accounts` instead of failing the request.

    Example:
    ```json
    {
      "seeds": ["<account identifier>"],
      "max_depth": 2,
      "min_amount_e8s": 100000000
    }
    ```
    """
    if request.max_depth > settings.max_trace_depth:
        raise HTTPException(
            status_code=400,
            detail=f"max_depth must be at most {settings.max_trace_depth}",
        )

    seeds = _resolve_seeds(request, directory)
    if not seeds:
        raise HTTPException(status_code=400, detail="No seed accounts given or configured")

    try:
        logger.info(f"Tracing network from {len(seeds)} seeds, max_depth={request.max_depth}")
        tracer = NetworkTracer.from_directory(source, directory)
        analysis = await tracer.trace_network(
            max_depth=request.max_depth,
            min_amount_threshold=request.min_amount_e8s,
            seeds=seeds,
        )
        return network_trace_report(analysis, top=request.top)

    except Exception as e:
        logger.error(f"Error tracing network: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
