"""
Agent Coordinator: turns one assignment into a definite outcome.

Per assignment the state machine is

    assigned -> in-progress -> completed | partial | failed

The coordinator claims the assignment, asks the reasoning collaborator to
decompose its elements into work-bot specs (falling back to one general bot
per element), caps the list, runs the bots one after another, then reports:
terminal status, progress, exactly one load decrement, and a summary update.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.config import settings
from ..db.models import Agent, Assignment, WorkBot
from ..errors import ReasoningError
from ..events import EventHub
from ..models import (
    AssignmentStatus,
    BotResult,
    Decomposition,
    SourceType,
    WorkBotSpec,
    WorkBotStatus,
)
from ..reasoning import ReasoningClient
from ..registry import AgentRegistry
from ..storage import TaskStore
from .executor import WorkBotExecutor


logger = logging.getLogger(__name__)


def percent(done: int, total: int) -> int:
    """Whole-number percentage, halves rounded up. 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


def truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def terminal_status(completed: int, total: int) -> AssignmentStatus:
    """Terminal assignment status from work-bot outcomes."""
    if completed == total:
        return AssignmentStatus.completed
    if completed == 0:
        return AssignmentStatus.failed
    return AssignmentStatus.partial


class AgentCoordinator:
    """
    Stateless service that processes assignments for any agent.

    Args:
        store: Persistence boundary
        registry: Agent registry (load accounting)
        reasoning: Reasoning collaborator
        events: Optional hub for outbound notifications
        max_work_bots: Cap on work bots per assignment
    """

    def __init__(
        self,
        store: TaskStore,
        registry: AgentRegistry,
        reasoning: ReasoningClient,
        events: Optional[EventHub] = None,
        max_work_bots: Optional[int] = None,
    ):
        self.store = store
        self.registry = registry
        self.reasoning = reasoning
        self.events = events
        self.executor = WorkBotExecutor(reasoning)
        self.max_work_bots = max_work_bots if max_work_bots is not None else settings.MAX_WORK_BOTS

    async def process_assignment(self, assignment_pk: int) -> Dict[str, Any]:
        """
        Process one assignment end to end. Never raises.

        Returns:
            Dictionary containing:
            - success: True when the assignment reached completed/partial/failed via reporting
            - status: terminal assignment status
            - taskId: external id of the owning task, once the assignment was loaded
            - workBots: number of work bots created
            - error: message when processing failed early or was skipped
        """
        try:
            assignment = await self.store.get_assignment(assignment_pk)
            if assignment is None:
                return {"success": False, "error": "Assignment not found"}
            task_id = assignment.task.external_id
            claimed = await self.store.claim_assignment(assignment_pk)
        except SQLAlchemyError as e:
            logger.error(f"Could not load or claim assignment {assignment_pk}: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_type": "persistence"}

        if not claimed:
            logger.debug(f"Assignment {assignment.external_id} already claimed, skipping")
            return {
                "success": False,
                "skipped": True,
                "taskId": task_id,
                "error": "Assignment is not in assigned status",
            }

        agent = assignment.agent
        logger.info(f"{agent.name}: processing assignment {assignment.external_id}")

        try:
            specs = await self.analyze(assignment, agent)
            bots = await self.create_work_bots(assignment, agent, specs)
        except Exception as e:
            logger.error(f"{agent.name}: assignment {assignment.external_id} failed before execution: {e}", exc_info=True)
            status = await self._fail(assignment, agent, str(e))
            return {"success": False, "status": status, "taskId": task_id, "error": str(e)}

        try:
            await self.execute_work_bots(bots, assignment, agent)
            status = (await self.report(assignment, agent)).value
        except Exception as e:
            logger.error(f"{agent.name}: assignment {assignment.external_id} failed: {e}", exc_info=True)
            status = await self._fail(assignment, agent, str(e))
            return {"success": False, "status": status, "taskId": task_id, "error": str(e)}

        return {
            "success": True,
            "status": status,
            "taskId": task_id,
            "workBots": len(bots),
            "message": f"{agent.name} completed assignment",
        }

    async def analyze(self, assignment: Assignment, agent: Agent) -> List[WorkBotSpec]:
        """Decompose the assigned elements, falling back to one general bot per element."""
        elements = list(assignment.assigned_elements or [])
        if not elements:
            return []
        try:
            decomposition = await self.reasoning.decompose(elements, agent)
        except ReasoningError as e:
            logger.warning(f"{agent.name}: decomposition failed ({e}), using one bot per element")
            decomposition = Decomposition.fallback(elements)
        return decomposition.tasks

    async def create_work_bots(
        self,
        assignment: Assignment,
        agent: Agent,
        specs: List[WorkBotSpec],
    ) -> List[WorkBot]:
        """Create at most ``max_work_bots`` work bots; extra specs are dropped."""
        if len(specs) > self.max_work_bots:
            logger.info(
                f"{agent.name}: {len(specs)} work bot specs, keeping first {self.max_work_bots}"
            )
        bots = []
        for spec in specs[: self.max_work_bots]:
            bots.append(await self.store.create_work_bot(assignment.id, agent.id, spec))
        return bots

    async def execute_work_bots(self, bots: List[WorkBot], assignment: Assignment, agent: Agent) -> int:
        """
        Run the bots sequentially. A failing bot does not stop its siblings.

        Returns:
            Number of bots that completed successfully
        """
        completed = 0
        for bot in bots:
            await self.store.mark_bot_running(bot.id)
            try:
                result = await self.executor.run(bot.bot_type, bot.description, agent.name)
            except Exception as e:
                logger.error(f"Work bot {bot.external_id} crashed: {e}", exc_info=True)
                result = BotResult(success=False, error=str(e))

            if result.success:
                completed += 1
                await self.store.finish_bot(bot.id, WorkBotStatus.completed, result.model_dump(exclude_none=True))
                await self.store.add_progress_update(
                    assignment.task_id,
                    SourceType.work_bot,
                    bot.external_id,
                    f"Work bot completed: {truncate(bot.description)}",
                )
            else:
                logger.warning(f"Work bot {bot.external_id} failed: {result.error}")
                await self.store.finish_bot(bot.id, WorkBotStatus.failed, result.model_dump(exclude_none=True))

        progress = percent(completed, len(bots)) if bots else 100
        await self.store.set_assignment_progress(assignment.id, progress)
        return completed

    async def report(self, assignment: Assignment, agent: Agent) -> AssignmentStatus:
        """Set the terminal status, release the agent's load and log a summary."""
        bots = await self.store.list_work_bots(assignment.id)
        total = len(bots)
        completed = sum(1 for b in bots if b.status == WorkBotStatus.completed.value)

        status = terminal_status(completed, total)
        progress = percent(completed, total) if total else 100
        if not await self.store.finish_assignment(assignment.id, status, progress):
            logger.warning(f"{assignment.external_id} was no longer in progress when reporting {status.value}")
        await self._release_load(assignment, agent)

        await self.store.add_progress_update(
            assignment.task_id,
            SourceType.agent,
            agent.agent_id,
            f"{agent.name} completed assignment: {completed}/{total} work bots successful",
        )
        logger.info(f"{agent.name}: assignment {assignment.external_id} -> {status.value} ({completed}/{total})")
        self._publish(assignment, status, progress)
        return status

    async def _fail(self, assignment: Assignment, agent: Agent, error: str) -> str:
        """Mark the assignment failed unless it already reached a terminal status.

        Returns the assignment's resulting status.
        """
        try:
            failed = await self.store.finish_assignment(assignment.id, AssignmentStatus.failed)
            await self._release_load(assignment, agent)
            if not failed:
                current = await self.store.get_assignment(assignment.id)
                logger.warning(
                    f"{assignment.external_id} already {current.status}, not marking it failed"
                )
                return current.status
            await self.store.add_progress_update(
                assignment.task_id,
                SourceType.agent,
                agent.agent_id,
                f"{agent.name} failed assignment: {truncate(error, 200)}",
            )
        except Exception as e:
            # Store unavailable; the assignment stays in-progress and is reported by the caller
            logger.error(f"Could not record failure of {assignment.external_id}: {e}", exc_info=True)
            return AssignmentStatus.failed.value
        self._publish(assignment, AssignmentStatus.failed, None)
        return AssignmentStatus.failed.value

    async def _release_load(self, assignment: Assignment, agent: Agent) -> None:
        if await self.store.release_load_claim(assignment.id):
            await self.registry.adjust_load(agent.agent_id, -1)
        else:
            logger.warning(f"Load for {assignment.external_id} already released")

    def _publish(self, assignment: Assignment, status: AssignmentStatus, progress: Optional[int]) -> None:
        if self.events is None:
            return
        self.events.publish(
            "assignment-processed",
            {"assignmentId": assignment.external_id, "status": status.value, "progress": progress},
            task_id=assignment.task.external_id if assignment.task else None,
        )
