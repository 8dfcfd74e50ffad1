"""Task submission, status and interaction endpoints."""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status
from fastapi.responses import ORJSONResponse

from ..agents import MasterCoordinator
from ..dependencies import get_master
from ..errors import TaskValidationError
from ..middleware.metrics import track_task_received
from ..models import InteractRequest, InteractResponse, TaskCreate


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["tasks"])


@router.post("/tasks", status_code=status.HTTP_201_CREATED, response_class=ORJSONResponse)
async def create_task(
    body: TaskCreate,
    master: MasterCoordinator = Depends(get_master),
):
    """Submit a task. Planning and delegation happen before the response returns."""
    result = await master.receive_task(body)
    if result["success"]:
        track_task_received("accepted")
        return result

    if result.get("error_type") == "validation":
        track_task_received("rejected")
        raise TaskValidationError(result["error"])

    track_task_received("error")
    return ORJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=result)


@router.get("/tasks/{task_id}", response_class=ORJSONResponse)
async def get_task(task_id: str, master: MasterCoordinator = Depends(get_master)):
    """Task with its assignments and progress updates, newest first."""
    result = await master.get_task_status(task_id)
    if "error" in result:
        return ORJSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=result)
    return result


@router.get("/tasks/{task_id}/progress", response_class=ORJSONResponse)
async def get_task_progress(
    task_id: str,
    master: MasterCoordinator = Depends(get_master),
) -> List[Dict[str, Any]]:
    return await master.get_progress_updates(task_id)


@router.post("/tasks/{task_id}/check-progress", response_class=ORJSONResponse)
async def check_task_progress(task_id: str, master: MasterCoordinator = Depends(get_master)):
    """Roll assignment outcomes into the task; finalizes it when every assignment completed."""
    return await master.check_progress(task_id)


@router.post("/tasks/{task_id}/interact", response_model=InteractResponse)
async def interact(
    task_id: str,
    body: InteractRequest,
    master: MasterCoordinator = Depends(get_master),
):
    reply = await master.interact(task_id, body.message)
    return InteractResponse(response=reply)


@router.get("/users/{user_id}/tasks", response_class=ORJSONResponse)
async def list_user_tasks(user_id: str, master: MasterCoordinator = Depends(get_master)):
    return await master.list_user_tasks(user_id)
