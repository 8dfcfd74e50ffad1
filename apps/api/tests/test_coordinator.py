"""
Tests for the agent coordinator and work-bot executor.
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_assignment
from taskrelay.agents.coordinator import AgentCoordinator, percent, terminal_status, truncate
from taskrelay.agents.executor import WorkBotExecutor
from taskrelay.models import AssignmentStatus, Decomposition, WorkBotSpec


async def load_of(services, agent_id="code-architect"):
    return (await services.registry.get(agent_id)).current_load


class TestHelpers:

    def test_percent_rounds_half_up(self):
        assert percent(3, 4) == 75
        assert percent(1, 8) == 13
        assert percent(2, 3) == 67
        assert percent(0, 0) == 0

    def test_terminal_status(self):
        assert terminal_status(4, 4) == AssignmentStatus.completed
        assert terminal_status(3, 4) == AssignmentStatus.partial
        assert terminal_status(0, 4) == AssignmentStatus.failed
        assert terminal_status(0, 0) == AssignmentStatus.completed

    def test_truncate(self):
        assert truncate("short") == "short"
        assert truncate("x" * 60) == "x" * 50 + "..."


class TestExecutor:

    @pytest.mark.asyncio
    async def test_success(self, reasoning):
        result = await WorkBotExecutor(reasoning).run("testing", "Write tests", "Quality Assurance")
        assert result.success is True
        assert result.output == "Quality Assurance finished: Write tests"
        assert result.timestamp

    @pytest.mark.asyncio
    async def test_failure_is_a_result(self, reasoning):
        reasoning.failing_bots.add("Write tests")
        result = await WorkBotExecutor(reasoning).run("testing", "Write tests", "Quality Assurance")
        assert result.success is False
        assert "Write tests" in result.error
        assert result.output is None


@pytest.mark.asyncio
async def test_all_bots_succeed(services):
    task, assignment = await make_assignment(services, ["Write handlers", "Write models"])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["success"] is True
    assert result["status"] == "completed"
    assert result["workBots"] == 2
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "completed"
    assert row.progress == 100
    assert row.started_at is not None and row.completed_at is not None
    assert row.load_released is True
    assert await load_of(services) == 0

    bots = await services.store.list_work_bots(assignment.id)
    assert [b.status for b in bots] == ["completed", "completed"]
    assert bots[0].result["success"] is True

    updates = await services.store.list_progress_updates(task.id)
    messages = [u.message for u in updates]
    assert messages[0] == "Code Architect completed assignment: 2/2 work bots successful"
    assert sum(1 for u in updates if u.source_type == "work-bot") == 2


@pytest.mark.asyncio
async def test_three_of_four_bots_is_partial(services, reasoning):
    reasoning.failing_bots.add("d")
    _, assignment = await make_assignment(services, ["a", "b", "c", "d"])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["status"] == "partial"
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "partial"
    assert row.progress == 75
    assert await load_of(services) == 0
    statuses = [b.status for b in await services.store.list_work_bots(assignment.id)]
    assert statuses == ["completed", "completed", "completed", "failed"]


@pytest.mark.asyncio
async def test_all_bots_failing_marks_failed(services, reasoning):
    reasoning.fail.add("execute")
    task, assignment = await make_assignment(services, ["a", "b"])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["status"] == "failed"
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "failed"
    assert row.progress == 0
    assert await load_of(services) == 0
    updates = await services.store.list_progress_updates(task.id)
    assert not [u for u in updates if u.source_type == "work-bot"]


@pytest.mark.asyncio
async def test_decomposition_fallback_one_general_bot_per_element(services, reasoning):
    reasoning.fail.add("decompose")
    elements = [f"element {i}" for i in range(7)]
    _, assignment = await make_assignment(services, elements)

    await services.coordinator.process_assignment(assignment.id)

    bots = await services.store.list_work_bots(assignment.id)
    assert len(bots) == min(5, len(elements))
    assert {b.bot_type for b in bots} == {"general"}
    assert [b.description for b in bots] == elements[:5]


@pytest.mark.asyncio
async def test_decomposition_fallback_small_assignment(services, reasoning):
    reasoning.fail.add("decompose")
    _, assignment = await make_assignment(services, ["only one"])

    await services.coordinator.process_assignment(assignment.id)

    bots = await services.store.list_work_bots(assignment.id)
    assert [(b.bot_type, b.description) for b in bots] == [("general", "only one")]


@pytest.mark.asyncio
async def test_work_bots_are_capped(services, reasoning):
    reasoning.decomposition = Decomposition(
        tasks=[WorkBotSpec(description=f"step {i}", botType="research") for i in range(8)]
    )
    _, assignment = await make_assignment(services, ["big element"])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["workBots"] == 5
    assert len(await services.store.list_work_bots(assignment.id)) == 5


@pytest.mark.asyncio
async def test_custom_cap(services, reasoning):
    coordinator = AgentCoordinator(services.store, services.registry, reasoning, max_work_bots=2)
    _, assignment = await make_assignment(services, ["a", "b", "c"])

    result = await coordinator.process_assignment(assignment.id)

    assert result["workBots"] == 2
    assert result["status"] == "completed"


@pytest.mark.asyncio
async def test_failure_before_execution_still_releases_load(services, monkeypatch):
    task, assignment = await make_assignment(services, ["a"])

    async def broken_create(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(services.store, "create_work_bot", broken_create)

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["success"] is False
    assert result["status"] == "failed"
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "failed"
    assert row.completed_at is not None
    assert await load_of(services) == 0
    updates = await services.store.list_progress_updates(task.id)
    assert updates[0].message.startswith("Code Architect failed assignment:")


@pytest.mark.asyncio
async def test_claim_failure_returns_error(services, monkeypatch):
    _, assignment = await make_assignment(services, ["a"])

    async def broken_claim(*args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("db down"))

    monkeypatch.setattr(services.store, "claim_assignment", broken_claim)

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["success"] is False
    assert result["error_type"] == "persistence"
    assert "db down" in result["error"]
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "assigned"


@pytest.mark.asyncio
async def test_lookup_failure_returns_error(services, monkeypatch):
    async def broken_get(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("db down"))

    monkeypatch.setattr(services.store, "get_assignment", broken_get)

    result = await services.coordinator.process_assignment(1)

    assert result["success"] is False
    assert result["error_type"] == "persistence"


@pytest.mark.asyncio
async def test_failure_after_finish_keeps_terminal_status(services, monkeypatch):
    task, assignment = await make_assignment(services, ["a", "b"])
    add_update = services.store.add_progress_update

    async def flaky_add_update(task_pk, source_type, source_id, message, progress=None):
        if "work bots successful" in message:
            raise OperationalError("INSERT", {}, Exception("disk full"))
        return await add_update(task_pk, source_type, source_id, message, progress)

    monkeypatch.setattr(services.store, "add_progress_update", flaky_add_update)

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["success"] is False
    assert result["status"] == "completed"
    assert result["taskId"] == task.external_id
    row = await services.store.get_assignment(assignment.id)
    assert row.status == "completed"
    assert row.progress == 100
    assert [b.status for b in await services.store.list_work_bots(assignment.id)] == ["completed", "completed"]
    assert await load_of(services) == 0
    messages = [u.message for u in await services.store.list_progress_updates(task.id)]
    assert not any("failed assignment" in m for m in messages)


@pytest.mark.asyncio
async def test_result_carries_task_id(services):
    task, assignment = await make_assignment(services, ["a"])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["taskId"] == task.external_id


@pytest.mark.asyncio
async def test_assignment_is_processed_once(services):
    _, assignment = await make_assignment(services, ["a", "b"])

    first, second = await asyncio.gather(
        services.coordinator.process_assignment(assignment.id),
        services.coordinator.process_assignment(assignment.id),
    )

    outcomes = sorted([bool(first.get("skipped")), bool(second.get("skipped"))])
    assert outcomes == [False, True]
    assert len(await services.store.list_work_bots(assignment.id)) == 2
    assert await load_of(services) == 0

    again = await services.coordinator.process_assignment(assignment.id)
    assert again["skipped"] is True
    assert await load_of(services) == 0


@pytest.mark.asyncio
async def test_unknown_assignment(services):
    result = await services.coordinator.process_assignment(9999)
    assert result == {"success": False, "error": "Assignment not found"}


@pytest.mark.asyncio
async def test_empty_assignment_completes(services):
    _, assignment = await make_assignment(services, [])

    result = await services.coordinator.process_assignment(assignment.id)

    assert result["status"] == "completed"
    row = await services.store.get_assignment(assignment.id)
    assert row.progress == 100
    assert await load_of(services) == 0


@pytest.mark.asyncio
async def test_publishes_assignment_event(services):
    task, assignment = await make_assignment(services, ["a"])
    subscription = services.events.subscribe()

    await services.coordinator.process_assignment(assignment.id)

    event = await asyncio.wait_for(subscription.__anext__(), timeout=1)
    assert event["type"] == "assignment-processed"
    assert event["taskId"] == task.external_id
    assert event["data"]["status"] == "completed"
    subscription.close()
