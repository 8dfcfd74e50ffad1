"""Agent registry and system metrics endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse

from ..agents import MasterCoordinator
from ..dependencies import get_master


router = APIRouter(prefix="/api", tags=["agents"])


@router.get("/agents", response_class=ORJSONResponse)
async def list_agents(master: MasterCoordinator = Depends(get_master)):
    """Active agents with their current load and capacity."""
    return await master.list_agents()


@router.get("/metrics", response_class=ORJSONResponse)
async def system_metrics(master: MasterCoordinator = Depends(get_master)):
    return await master.get_metrics()
