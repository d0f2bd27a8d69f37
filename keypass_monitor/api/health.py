from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..core.monitoring.engine import MonitoringEngine
from ..core.monitoring.models import ConnectionState, HealthCheckResult
from ..core.recovery.errors import UnknownNetworkError

router = APIRouter()


def get_engine(request: Request) -> MonitoringEngine:
    """The engine created by create_app and stored on the application state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Monitoring engine not initialized")
    return engine


@router.get("/healthz")
async def health_check(engine: MonitoringEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Liveness of the service plus the connection state of every network"""
    networks = {network: engine.connection_state(network).value for network in engine.networks}

    if engine.is_stopped:
        status = "stopped"
    elif networks and all(state == ConnectionState.CONNECTED.value for state in networks.values()):
        status = "healthy"
    else:
        status = "degraded"

    return {
        "status": status,
        "networks": networks,
        "connected_networks": sum(1 for s in networks.values() if s == ConnectionState.CONNECTED.value),
        "total_networks": len(networks),
    }


@router.get("/networks/{network}/health", response_model=HealthCheckResult)
async def network_health(
    network: str,
    refresh: bool = Query(False, description="Run a fresh check instead of returning the last one"),
    engine: MonitoringEngine = Depends(get_engine),
):
    """Latest health check for one network"""
    try:
        result = None if refresh else engine.get_health_status(network)
        if result is None:
            result = await engine.check_health(network)
    except UnknownNetworkError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return result
