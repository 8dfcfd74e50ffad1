"""Recurring sweep that processes pending assignments."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..agents.coordinator import AgentCoordinator
from ..agents.master import MasterCoordinator
from ..core.config import settings
from ..middleware.metrics import track_assignment_processed, track_sweep
from ..storage import TaskStore


logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "process_pending_assignments"


class AssignmentSweeper:
    """
    Picks up assignments still in ``assigned`` status and processes them.

    ``sweep()`` can be awaited directly (tests drive it that way); ``start()``
    registers it as an interval job on an AsyncIOScheduler.
    """

    def __init__(
        self,
        store: TaskStore,
        coordinator: AgentCoordinator,
        master: MasterCoordinator,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.master = master
        self.interval_seconds = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self.scheduler = scheduler or AsyncIOScheduler()
        self._in_flight: Set[int] = set()

    async def sweep(self) -> Dict[str, Any]:
        """
        Process every pending assignment once, then roll up touched tasks.

        Never raises.

        Returns:
            Dictionary with counts of processed/failed assignments and touched tasks
        """
        try:
            pending = [pk for pk in await self.store.list_pending_assignment_ids() if pk not in self._in_flight]
        except Exception as e:
            logger.error(f"Error in assignment sweep: {e}", exc_info=True)
            return {"processed": 0, "failed": 0, "tasks": 0, "error": str(e)}

        if not pending:
            logger.debug("No pending assignments")
            return {"processed": 0, "failed": 0, "tasks": 0}

        logger.info(f"Sweep picked up {len(pending)} pending assignments")
        started = time.time()
        self._in_flight.update(pending)
        try:
            results = await asyncio.gather(*(self._process(pk) for pk in pending))
        finally:
            self._in_flight.difference_update(pending)

        processed = [r for r in results if r is not None and not r.get("skipped")]
        failed = sum(1 for r in processed if r.get("status") == "failed" or not r.get("success"))
        for r in processed:
            track_assignment_processed(r.get("status") or "error")

        touched: List[str] = []
        for r in processed:
            task_id = r.get("taskId")
            if task_id and task_id not in touched:
                touched.append(task_id)

        for task_id in touched:
            try:
                await self.master.check_progress(task_id)
            except Exception as e:
                logger.error(f"Progress check for {task_id} failed: {e}", exc_info=True)

        track_sweep(time.time() - started)
        logger.info(f"Sweep finished: {len(processed)} processed, {failed} failed")

        return {"processed": len(processed), "failed": failed, "tasks": len(touched)}

    async def _process(self, assignment_pk: int) -> Optional[Dict[str, Any]]:
        try:
            return await self.coordinator.process_assignment(assignment_pk)
        except Exception as e:
            logger.error(f"Error processing assignment {assignment_pk}: {e}", exc_info=True)
            return None

    def start(self) -> None:
        """Start the interval job."""
        logger.info(f"Starting assignment sweep every {self.interval_seconds}s...")
        self.scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self.interval_seconds,
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Background jobs started: {[job.id for job in self.scheduler.get_jobs()]}")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler.running:
            logger.info("Stopping assignment sweep...")
            self.scheduler.shutdown(wait=False)
            logger.info("Assignment sweep stopped")

    def get_job_status(self) -> List[Dict[str, Any]]:
        """Get status of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs
