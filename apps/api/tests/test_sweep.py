"""
Tests for the recurring assignment sweep.
"""

import asyncio

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import OperationalError

from conftest import plan_of, task_request
from taskrelay.jobs.sweep import SWEEP_JOB_ID, AssignmentSweeper


@pytest.mark.asyncio
async def test_sweep_processes_pending_and_finalizes(services, reasoning):
    reasoning.plan_result = plan_of(
        ("Backend", "backend-specialist", ["API"]),
        ("Frontend", "frontend-specialist", ["UI"]),
    )
    result = await services.master.receive_task(task_request())

    summary = await services.sweeper.sweep()

    assert summary == {"processed": 2, "failed": 0, "tasks": 1}
    status = await services.master.get_task_status(result["taskId"])
    assert status["task"]["status"] == "completed"
    assert {a["status"] for a in status["assignments"]} == {"completed"}
    for agent in await services.registry.list():
        assert agent.current_load == 0


@pytest.mark.asyncio
async def test_second_sweep_finds_nothing(services):
    await services.master.receive_task(task_request())
    await services.sweeper.sweep()

    assert await services.sweeper.sweep() == {"processed": 0, "failed": 0, "tasks": 0}


@pytest.mark.asyncio
async def test_overlapping_sweeps_process_each_assignment_once(services):
    await services.master.receive_task(task_request())
    await services.master.receive_task(task_request())

    first, second = await asyncio.gather(services.sweeper.sweep(), services.sweeper.sweep())

    assert first["processed"] + second["processed"] == 2
    assert (await services.registry.get("code-architect")).current_load == 0
    metrics = await services.master.get_metrics()
    assert metrics["workBots"] == 4
    assert metrics["tasks"]["completed"] == 2


@pytest.mark.asyncio
async def test_sweep_counts_failed_assignments(services, reasoning):
    reasoning.fail.add("execute")
    result = await services.master.receive_task(task_request())

    summary = await services.sweeper.sweep()

    assert summary["processed"] == 1
    assert summary["failed"] == 1
    status = await services.master.get_task_status(result["taskId"])
    assert status["assignments"][0]["status"] == "failed"
    assert status["task"]["status"] == "in-progress"


@pytest.mark.asyncio
async def test_sweep_never_raises(services, monkeypatch):
    async def broken():
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(services.store, "list_pending_assignment_ids", broken)

    summary = await services.sweeper.sweep()

    assert summary["processed"] == 0
    assert "connection refused" in summary["error"]


@pytest.mark.asyncio
async def test_scheduler_lifecycle(services):
    sweeper = AssignmentSweeper(
        services.store,
        services.coordinator,
        services.master,
        interval_seconds=3600,
        scheduler=AsyncIOScheduler(),
    )

    sweeper.start()
    try:
        jobs = sweeper.get_job_status()
        assert [job["id"] for job in jobs] == [SWEEP_JOB_ID]
        assert jobs[0]["next_run"] is not None
        assert "interval" in jobs[0]["trigger"]
    finally:
        sweeper.stop()
    # AsyncIOScheduler may finish shutting down on the next loop iteration
    await asyncio.sleep(0)
    assert sweeper.scheduler.running is False
