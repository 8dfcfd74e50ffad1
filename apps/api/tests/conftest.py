import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

_DEFAULT_DB = Path(tempfile.gettempdir()) / "taskrelay_test.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DEFAULT_DB}")
os.environ.setdefault("SWEEP_ENABLED", "false")
os.environ.setdefault("SEED_AGENTS", "false")

from taskrelay.db.session import create_schema  # noqa: E402
from taskrelay.dependencies import Services, build_services  # noqa: E402
from taskrelay.errors import ReasoningError  # noqa: E402
from taskrelay.main import create_app  # noqa: E402
from taskrelay.middleware.rate_limit import RateLimiter  # noqa: E402
from taskrelay.models import (  # noqa: E402
    Decomposition,
    ProjectPlan,
    TaskCreate,
    Understanding,
    WorkBotSpec,
    WorkPackage,
)
from taskrelay.reasoning import ReasoningClient  # noqa: E402


class FakeReasoning(ReasoningClient):
    """Scripted reasoning collaborator.

    Put operation names in ``fail`` to make them raise ReasoningError, and
    descriptions in ``failing_bots`` to make individual work bots fail.
    """

    def __init__(self):
        self.fail: set = set()
        self.failing_bots: set = set()
        self.understanding = Understanding(
            primaryIntent="Ship a working API",
            complexity="Simple",
            requiredExpertise=["Python"],
        )
        self.plan_result: Optional[ProjectPlan] = None
        self.decomposition: Optional[Decomposition] = None
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise ReasoningError(f"{operation} unavailable")

    async def understand(self, task):
        self._check("understand")
        return self.understanding

    async def plan(self, task, understanding, agents):
        self._check("plan")
        return self.plan_result or plan_of(("Build API", "code-architect", ["Write handlers", "Write models"]))

    async def decompose(self, elements, agent):
        self._check("decompose")
        if self.decomposition is not None:
            return self.decomposition
        return Decomposition(
            tasks=[WorkBotSpec(description=e, botType="code-generation") for e in elements],
            strategy="One bot per element",
        )

    async def execute(self, bot_type, description, agent_name):
        self._check("execute")
        if description in self.failing_bots:
            raise ReasoningError(f"bot failed: {description}")
        return f"{agent_name} finished: {description}"

    async def respond(self, status_snapshot: Dict[str, Any], message: str) -> str:
        self._check("respond")
        return f"Your task is {status_snapshot['task']['status']}"


def plan_of(*packages) -> ProjectPlan:
    """Build a plan from (name, agent_id, elements) tuples."""
    return ProjectPlan(
        overview="Test plan",
        workPackages=[
            WorkPackage(id=f"wp-{i + 1}", name=name, assignedTo=agent_id, elements=elements)
            for i, (name, agent_id, elements) in enumerate(packages)
        ],
    )


def task_request(**overrides) -> TaskCreate:
    data = {"userId": "u1", "title": "Build API", "description": "A REST API for notes"}
    data.update(overrides)
    return TaskCreate.model_validate(data)


async def make_assignment(services: Services, elements: List[str], agent_id: str = "code-architect"):
    """Create a task plus one assignment the way the master coordinator does."""
    task = await services.store.create_task(task_request())
    agent = await services.registry.get(agent_id)
    assignment = await services.store.create_assignment(task.id, agent.id, "Package", elements)
    await services.registry.adjust_load(agent_id, 1)
    return task, assignment


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskrelay.db'}")
    await create_schema(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
def reasoning():
    return FakeReasoning()


@pytest_asyncio.fixture
async def services(session_factory, reasoning):
    svc = build_services(session_factory, reasoning)
    await svc.registry.seed()
    return svc


@pytest_asyncio.fixture
async def api_client(services):
    app = create_app(
        services=services,
        rate_limiter=RateLimiter(requests_per_minute=10_000),
        background=False,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
