"""
Master Coordinator: orchestrates a task end to end.

Task state machine: pending -> in-progress -> completed. The coordinator
creates the task, classifies and plans it through the reasoning
collaborator (with deterministic fallbacks), fans work packages out to
agents as assignments, and rolls assignment outcomes up into task status.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings, settings as default_settings
from ..db.models import Task
from ..errors import NotFoundError, ReasoningError, TaskValidationError
from ..events import EventHub
from ..models import (
    AssignmentStatus,
    ProjectPlan,
    SourceType,
    TaskCreate,
    TaskStatus,
    TaskStatusView,
    Understanding,
    WorkPackage,
)
from ..reasoning import ReasoningClient
from ..registry import AgentRegistry
from ..storage import TaskStore, agent_view, assignment_view, task_view, update_view
from .coordinator import percent


logger = logging.getLogger(__name__)

COORDINATOR_ID = "master-coordinator"


class MasterCoordinator:
    """
    Entry point for submitted tasks and status queries.

    Args:
        store: Persistence boundary
        registry: Agent registry
        reasoning: Reasoning collaborator
        events: Optional hub for outbound notifications
        config: Settings (fallback agent id)
    """

    def __init__(
        self,
        store: TaskStore,
        registry: AgentRegistry,
        reasoning: ReasoningClient,
        events: Optional[EventHub] = None,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.registry = registry
        self.reasoning = reasoning
        self.events = events
        self.config = config or default_settings

    # Submission

    async def receive_task(self, data: Union[TaskCreate, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Receive a task, plan it and delegate its work packages.

        Never raises. Validation failures create nothing.

        Returns:
            Dictionary containing:
            - success: Whether the task was accepted
            - taskId, understanding, projectPlan, assignments, message on success
            - error, error_type ("validation" | "persistence" | "internal") on failure
        """
        try:
            request = self._validate(data)
        except TaskValidationError as e:
            logger.warning(f"Rejected task submission: {e}")
            return {"success": False, "error": str(e), "error_type": "validation"}

        try:
            task = await self.store.create_task(request)
            logger.info(f"Task {task.external_id} received from user {task.user_id}: {task.title}")

            understanding = await self.understand(task)
            await self.store.set_intent(task.id, understanding.model_dump(by_alias=True))

            plan, planned = await self.create_plan(task, understanding)
            if planned:
                await self.store.save_plan(task.id, plan.model_dump(by_alias=True))

            assignments = await self.delegate(task, plan)
            await self.store.set_task_status(task.id, TaskStatus.in_progress)
            await self.check_progress(task.external_id)
        except SQLAlchemyError as e:
            logger.error(f"Persistence failure while receiving task: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_type": "persistence"}
        except Exception as e:
            logger.error(f"Unexpected failure while receiving task: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_type": "internal"}

        if self.events is not None:
            self.events.publish(
                "task-created",
                {"title": task.title, "assignments": len(assignments)},
                task_id=task.external_id,
            )

        return {
            "success": True,
            "taskId": task.external_id,
            "understanding": understanding.model_dump(by_alias=True),
            "projectPlan": plan.model_dump(by_alias=True),
            "assignments": assignments,
            "message": "Task received and processing initiated",
        }

    def _validate(self, data: Union[TaskCreate, Dict[str, Any]]) -> TaskCreate:
        if not isinstance(data, TaskCreate):
            try:
                data = TaskCreate.model_validate(data or {})
            except ValidationError as e:
                raise TaskValidationError(f"Invalid task: {e.errors()[0]['msg']}") from e
        if not (data.user_id or "").strip() or not (data.title or "").strip():
            raise TaskValidationError("userId and title are required")
        return data

    async def understand(self, task: Task) -> Understanding:
        try:
            return await self.reasoning.understand(task)
        except ReasoningError as e:
            logger.warning(f"Understanding failed for {task.external_id} ({e}), using fallback")
            return Understanding.fallback(task.description)

    async def create_plan(self, task: Task, understanding: Understanding) -> Tuple[ProjectPlan, bool]:
        """Returns the plan and whether it came from the reasoning collaborator."""
        agents = await self.registry.list()
        try:
            return await self.reasoning.plan(task, understanding, agents), True
        except ReasoningError as e:
            logger.warning(f"Planning failed for {task.external_id} ({e}), using fallback plan")
            return ProjectPlan.fallback(self.config.FALLBACK_AGENT_ID), False

    async def delegate(self, task: Task, plan: ProjectPlan) -> List[Dict[str, Any]]:
        """Create one assignment per resolvable work package and bump agent load."""
        assignments = []
        for package in plan.work_packages:
            try:
                agent = await self.registry.get(package.assigned_to)
            except NotFoundError:
                logger.warning(f"Agent {package.assigned_to} not found, skipping \"{package.name}\"")
                await self.store.add_progress_update(
                    task.id,
                    SourceType.coordinator,
                    COORDINATOR_ID,
                    f"Skipped \"{package.name}\": agent {package.assigned_to} not found",
                )
                continue

            elements = self._elements(package)
            over_capacity = agent.current_load >= agent.max_capacity
            assignment = await self.store.create_assignment(task.id, agent.id, package.name, elements)
            agent = await self.registry.adjust_load(agent.agent_id, 1)

            message = f"Assigned \"{package.name}\" to {agent.name}"
            if over_capacity:
                logger.warning(
                    f"{agent.name} accepted \"{package.name}\" at capacity "
                    f"({agent.current_load}/{agent.max_capacity})"
                )
                message += f" (over capacity: {agent.current_load}/{agent.max_capacity})"
            await self.store.add_progress_update(task.id, SourceType.coordinator, COORDINATOR_ID, message, 10)

            assignments.append({
                "assignmentId": assignment.external_id,
                "agentName": agent.name,
                "workPackage": package.name,
                "elements": elements,
            })
        logger.info(f"Task {task.external_id}: {len(assignments)}/{len(plan.work_packages)} work packages delegated")
        return assignments

    @staticmethod
    def _elements(package: WorkPackage) -> List[str]:
        elements = [e for e in package.elements if isinstance(e, str) and e.strip()]
        return elements or [package.description or package.name]

    # Progress

    async def check_progress(self, task_id: str) -> Dict[str, Any]:
        """
        Roll assignment statuses up into the task.

        Only completed assignments count as resolved. Finalization happens
        once; later calls still log the summary.

        Raises:
            NotFoundError: If the task is unknown
        """
        task = await self._require_task(task_id)
        rows = await self.store.list_assignments(task.id)
        total = len(rows)
        completed = sum(1 for a, _ in rows if a.status == AssignmentStatus.completed.value)
        progress = percent(completed, total)

        await self.store.add_progress_update(
            task.id,
            SourceType.coordinator,
            COORDINATOR_ID,
            f"Overall progress: {completed}/{total} assignments completed",
            progress,
        )

        finalized = False
        if total > 0 and completed == total:
            finalized = await self.store.finalize_task(task.id)
            if finalized:
                await self.store.add_progress_update(
                    task.id,
                    SourceType.coordinator,
                    COORDINATOR_ID,
                    "Task completed successfully! All work packages finished.",
                    100,
                )
                logger.info(f"Task {task.external_id} completed")

        if self.events is not None:
            self.events.publish(
                "task-progress",
                {"completed": completed, "total": total, "progress": progress, "finalized": finalized},
                task_id=task.external_id,
            )
        return {"completed": completed, "total": total, "progress": progress}

    # Queries

    async def get_task_status(self, task_id: str) -> Dict[str, Any]:
        """Task, its assignments and its updates (newest first), or {"error": "Task not found"}."""
        task = await self.store.get_task(task_id)
        if task is None:
            return {"error": "Task not found"}
        rows = await self.store.list_assignments(task.id)
        updates = await self.store.list_progress_updates(task.id)
        view = TaskStatusView(
            task=task_view(task),
            assignments=[assignment_view(a, agent) for a, agent in rows],
            updates=[update_view(u) for u in updates],
        )
        return view.model_dump(mode="json")

    async def get_progress_updates(self, task_id: str) -> List[Dict[str, Any]]:
        task = await self._require_task(task_id)
        updates = await self.store.list_progress_updates(task.id)
        return [update_view(u).model_dump(mode="json") for u in updates]

    async def list_user_tasks(self, user_id: str) -> List[Dict[str, Any]]:
        tasks = await self.store.list_user_tasks(user_id)
        return [task_view(t).model_dump(mode="json") for t in tasks]

    async def list_agents(self) -> List[Dict[str, Any]]:
        agents = await self.registry.list()
        return [agent_view(a).model_dump(mode="json") for a in agents]

    async def get_metrics(self) -> Dict[str, Any]:
        counts = await self.store.get_counts()
        return {
            "tasks": {
                "total": counts["tasks_total"],
                "completed": counts["tasks_completed"],
                "active": counts["tasks_active"],
            },
            "workBots": counts["work_bots"],
            "agentLoad": counts["agent_load"],
        }

    async def interact(self, task_id: str, message: str) -> str:
        """
        Answer a free-text question about a task.

        Raises:
            NotFoundError: If the task is unknown
        """
        snapshot = await self.get_task_status(task_id)
        if "error" in snapshot:
            raise NotFoundError("task", task_id)
        try:
            return await self.reasoning.respond(snapshot, message)
        except ReasoningError as e:
            logger.warning(f"Interaction reply failed for {task_id} ({e}), using fallback")
            return f"I'm monitoring your task. Status: {snapshot['task']['status']}"

    async def _require_task(self, task_id: str) -> Task:
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task
