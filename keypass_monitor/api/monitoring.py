"""
Monitoring API Endpoints

Transaction monitoring, history, metrics and the error log.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from ..core.monitoring.engine import MonitoringEngine
from ..core.monitoring.models import PerformanceMetrics, TransactionStatus
from ..core.recovery.errors import (
    EngineStoppedError,
    ErrorSeverity,
    UnknownNetworkError,
    ValidationError,
)
from .health import get_engine

router = APIRouter(tags=["Monitoring"])


# =============================================================================
# Request Models
# =============================================================================


class MonitorTransactionRequest(BaseModel):
    """Request to follow a submitted transaction to a terminal status."""

    model_config = ConfigDict(populate_by_name=True)

    reference: str = Field(..., description="Transaction or extrinsic hash")
    operation: str = Field("unknown", description="Operation label, e.g. did-create or sbt-mint")
    max_retries: Optional[int] = Field(None, alias="maxRetries", ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/networks/{network}/transactions")
async def monitor_transaction(
    network: str,
    request: MonitorTransactionRequest,
    engine: MonitoringEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Monitor a transaction and return its terminal record."""
    try:
        tx = await engine.monitor_transaction(
            network,
            request.reference,
            request.operation,
            max_retries=request.max_retries,
            metadata=request.metadata,
        )
    except UnknownNetworkError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EngineStoppedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return tx.to_dict()


@router.get("/transactions")
async def transaction_history(
    network: Optional[str] = Query(None),
    status: Optional[TransactionStatus] = Query(None),
    since: Optional[int] = Query(None, description="Epoch ms lower bound on submission time"),
    engine: MonitoringEngine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    """Transaction history snapshots, oldest first."""
    return [tx.to_dict() for tx in engine.get_transaction_history(network, status, since)]


@router.get("/networks/{network}/metrics", response_model=PerformanceMetrics)
async def network_metrics(
    network: str,
    start: Optional[int] = Query(None, description="Window start, epoch ms (inclusive)"),
    end: Optional[int] = Query(None, description="Window end, epoch ms (exclusive)"),
    engine: MonitoringEngine = Depends(get_engine),
):
    """Performance metrics over [start, end), defaulting to the last hour."""
    try:
        return engine.get_metrics(network, start=start, end=end)
    except UnknownNetworkError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/errors")
async def error_log(
    network: Optional[str] = Query(None),
    severity: Optional[ErrorSeverity] = Query(None),
    since: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    engine: MonitoringEngine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    """Error reports, newest first."""
    reports = engine.get_errors(network=network, severity=severity, since=since, limit=limit)
    return [report.model_dump(mode="json") for report in reports]
