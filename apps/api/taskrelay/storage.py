"""Persistence boundary for tasks, assignments, work bots and progress updates.

Every method opens its own short-lived session and commits before returning,
so each mutation is an individual serialized read-modify-write against the
shared store. Status transitions that must not race are expressed as
conditional UPDATE statements.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .db.models import Agent, Assignment, ProgressUpdate, ProjectPlan, Task, WorkBot
from .db.session import AsyncSessionLocal
from .models import (
    AgentView,
    AssignmentStatus,
    AssignmentView,
    ProgressUpdateView,
    SourceType,
    TaskCreate,
    TaskStatus,
    TaskView,
    WorkBotSpec,
    WorkBotStatus,
)


def new_external_id(prefix: str) -> str:
    return f"{prefix}-{uuid4()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    # Tasks

    async def create_task(self, data: TaskCreate) -> Task:
        async with self.session_factory() as session:
            row = Task(
                external_id=new_external_id("task"),
                user_id=data.user_id,
                title=data.title,
                description=data.description or "",
                intent=None,
                timeline=data.timeline,
                desired_outcomes=data.desired_outcomes,
                available_resources=data.available_resources or [],
                priority=data.priority.value,
                status=TaskStatus.pending.value,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def get_task(self, external_id: str) -> Optional[Task]:
        async with self.session_factory() as session:
            result = await session.execute(select(Task).where(Task.external_id == external_id))
            return result.scalar_one_or_none()

    async def get_task_by_pk(self, task_pk: int) -> Optional[Task]:
        async with self.session_factory() as session:
            return await session.get(Task, task_pk)

    async def set_intent(self, task_pk: int, intent: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Task).where(Task.id == task_pk).values(intent=intent, updated_at=_now())
            )
            await session.commit()

    async def set_task_status(self, task_pk: int, status: TaskStatus) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Task).where(Task.id == task_pk).values(status=status.value, updated_at=_now())
            )
            await session.commit()

    async def finalize_task(self, task_pk: int) -> bool:
        """Mark a task completed. Returns False if it already was."""
        async with self.session_factory() as session:
            now = _now()
            stmt = (
                update(Task)
                .where(Task.id == task_pk, Task.status != TaskStatus.completed.value)
                .values(status=TaskStatus.completed.value, completed_at=now, updated_at=now)
                .returning(Task.id)
            )
            res = await session.execute(stmt)
            finalized = res.scalar_one_or_none() is not None
            await session.commit()
            return finalized

    async def list_user_tasks(self, user_id: str) -> List[Task]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Task).where(Task.user_id == user_id).order_by(Task.created_at.desc(), Task.id.desc())
            )
            return list(result.scalars().all())

    async def save_plan(self, task_pk: int, plan_data: Dict[str, Any]) -> str:
        async with self.session_factory() as session:
            plan_id = new_external_id("plan")
            session.add(ProjectPlan(external_id=plan_id, task_id=task_pk, plan_data=plan_data))
            await session.commit()
            return plan_id

    # Assignments

    async def create_assignment(
        self,
        task_pk: int,
        agent_pk: int,
        work_package: str,
        elements: List[str],
    ) -> Assignment:
        async with self.session_factory() as session:
            row = Assignment(
                external_id=new_external_id("assign"),
                task_id=task_pk,
                agent_id=agent_pk,
                work_package=work_package,
                assigned_elements=list(elements),
                status=AssignmentStatus.assigned.value,
                progress=0,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def get_assignment(self, assignment_pk: int) -> Optional[Assignment]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Assignment)
                .options(selectinload(Assignment.agent), selectinload(Assignment.task))
                .where(Assignment.id == assignment_pk)
            )
            return result.scalar_one_or_none()

    async def list_assignments(self, task_pk: int) -> List[Tuple[Assignment, Agent]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Assignment, Agent)
                .join(Agent, Assignment.agent_id == Agent.id)
                .where(Assignment.task_id == task_pk)
                .order_by(Assignment.id)
            )
            return [(a, ag) for a, ag in result.all()]

    async def list_pending_assignment_ids(self) -> List[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Assignment.id)
                .where(Assignment.status == AssignmentStatus.assigned.value)
                .order_by(Assignment.id)
            )
            return list(result.scalars().all())

    async def claim_assignment(self, assignment_pk: int) -> bool:
        """Move an assignment from assigned to in-progress.

        Only one caller can win the claim; everyone else gets False.
        """
        async with self.session_factory() as session:
            stmt = (
                update(Assignment)
                .where(
                    Assignment.id == assignment_pk,
                    Assignment.status == AssignmentStatus.assigned.value,
                )
                .values(status=AssignmentStatus.in_progress.value, started_at=_now())
                .returning(Assignment.id)
            )
            res = await session.execute(stmt)
            claimed = res.scalar_one_or_none() is not None
            await session.commit()
            return claimed

    async def set_assignment_progress(self, assignment_pk: int, progress: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Assignment).where(Assignment.id == assignment_pk).values(progress=progress)
            )
            await session.commit()

    async def finish_assignment(
        self,
        assignment_pk: int,
        status: AssignmentStatus,
        progress: Optional[int] = None,
    ) -> bool:
        """Move an in-progress assignment to a terminal status.

        Returns False if the assignment was no longer in progress; a terminal
        status is never overwritten.
        """
        values: Dict[str, Any] = {"status": status.value, "completed_at": _now()}
        if progress is not None:
            values["progress"] = progress
        async with self.session_factory() as session:
            stmt = (
                update(Assignment)
                .where(
                    Assignment.id == assignment_pk,
                    Assignment.status == AssignmentStatus.in_progress.value,
                )
                .values(**values)
                .returning(Assignment.id)
            )
            res = await session.execute(stmt)
            finished = res.scalar_one_or_none() is not None
            await session.commit()
            return finished

    async def release_load_claim(self, assignment_pk: int) -> bool:
        """Flip load_released once. True only for the first caller."""
        async with self.session_factory() as session:
            stmt = (
                update(Assignment)
                .where(Assignment.id == assignment_pk, Assignment.load_released.is_(False))
                .values(load_released=True)
                .returning(Assignment.id)
            )
            res = await session.execute(stmt)
            released = res.scalar_one_or_none() is not None
            await session.commit()
            return released

    # Work bots

    async def create_work_bot(self, assignment_pk: int, agent_pk: int, spec: WorkBotSpec) -> WorkBot:
        async with self.session_factory() as session:
            row = WorkBot(
                external_id=new_external_id("bot"),
                assignment_id=assignment_pk,
                agent_id=agent_pk,
                bot_type=spec.bot_type.value,
                description=spec.description,
                status=WorkBotStatus.created.value,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def mark_bot_running(self, bot_pk: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(WorkBot)
                .where(WorkBot.id == bot_pk)
                .values(status=WorkBotStatus.running.value, started_at=_now())
            )
            await session.commit()

    async def finish_bot(self, bot_pk: int, status: WorkBotStatus, result: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(WorkBot)
                .where(WorkBot.id == bot_pk)
                .values(status=status.value, result=result, completed_at=_now())
            )
            await session.commit()

    async def list_work_bots(self, assignment_pk: int) -> List[WorkBot]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkBot).where(WorkBot.assignment_id == assignment_pk).order_by(WorkBot.id)
            )
            return list(result.scalars().all())

    # Progress updates

    async def add_progress_update(
        self,
        task_pk: int,
        source_type: SourceType,
        source_id: str,
        message: str,
        progress: Optional[int] = None,
    ) -> ProgressUpdate:
        async with self.session_factory() as session:
            row = ProgressUpdate(
                external_id=new_external_id("update"),
                task_id=task_pk,
                source_type=source_type.value,
                source_id=source_id,
                message=message,
                progress_percentage=progress,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def list_progress_updates(self, task_pk: int) -> List[ProgressUpdate]:
        """Newest first; the autoincrement id is the insertion order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProgressUpdate)
                .where(ProgressUpdate.task_id == task_pk)
                .order_by(ProgressUpdate.id.desc())
            )
            return list(result.scalars().all())

    # Metrics

    async def get_counts(self) -> Dict[str, int]:
        async with self.session_factory() as session:
            total = await session.scalar(select(func.count(Task.id)))
            completed = await session.scalar(
                select(func.count(Task.id)).where(Task.status == TaskStatus.completed.value)
            )
            active = await session.scalar(
                select(func.count(Task.id)).where(Task.status == TaskStatus.in_progress.value)
            )
            bots = await session.scalar(select(func.count(WorkBot.id)))
            load = await session.scalar(select(func.coalesce(func.sum(Agent.current_load), 0)))
            return {
                "tasks_total": total or 0,
                "tasks_completed": completed or 0,
                "tasks_active": active or 0,
                "work_bots": bots or 0,
                "agent_load": int(load or 0),
            }


# View helpers

def task_view(row: Task) -> TaskView:
    return TaskView(
        id=row.external_id,
        user_id=row.user_id,
        title=row.title,
        description=row.description or "",
        intent=row.intent,
        timeline=row.timeline,
        desired_outcomes=row.desired_outcomes,
        available_resources=row.available_resources,
        priority=row.priority,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


def assignment_view(row: Assignment, agent: Agent) -> AssignmentView:
    return AssignmentView(
        id=row.external_id,
        agent_id=agent.agent_id,
        agent_name=agent.name,
        specialization=agent.specialization,
        work_package=row.work_package,
        assigned_elements=list(row.assigned_elements or []),
        status=row.status,
        progress=row.progress,
        assigned_at=row.assigned_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def update_view(row: ProgressUpdate) -> ProgressUpdateView:
    return ProgressUpdateView(
        id=row.external_id,
        source_type=row.source_type,
        source_id=row.source_id,
        message=row.message,
        progress_percentage=row.progress_percentage,
        created_at=row.created_at,
    )


def agent_view(row: Agent) -> AgentView:
    return AgentView(
        agent_id=row.agent_id,
        name=row.name,
        specialization=row.specialization,
        expertise_areas=list(row.expertise_areas or []),
        status=row.status,
        current_load=row.current_load,
        max_capacity=row.max_capacity,
        performance_score=row.performance_score,
    )
