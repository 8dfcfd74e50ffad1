"""Agent registry: the fixed catalog of specialized agents and their load counters."""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db.models import Agent
from .db.session import AsyncSessionLocal
from .errors import NotFoundError


logger = logging.getLogger(__name__)


DEFAULT_AGENTS: List[Dict[str, object]] = [
    {
        "agent_id": "code-architect",
        "name": "Code Architect",
        "specialization": "Code Development",
        "expertise_areas": ["JavaScript", "Python", "Java", "TypeScript", "Go", "Rust", "C#"],
    },
    {
        "agent_id": "system-architect",
        "name": "System Architect",
        "specialization": "Software Architecture",
        "expertise_areas": ["Microservices", "Monoliths", "Event-Driven", "Serverless", "Design Patterns"],
    },
    {
        "agent_id": "quality-assurance",
        "name": "Quality Assurance",
        "specialization": "Testing & QA",
        "expertise_areas": ["Unit Testing", "Integration Testing", "E2E Testing", "Performance Testing"],
    },
    {
        "agent_id": "security-guardian",
        "name": "Security Guardian",
        "specialization": "Security & Compliance",
        "expertise_areas": ["Vulnerability Assessment", "Penetration Testing", "Security Audits", "Compliance"],
    },
    {
        "agent_id": "documentation-expert",
        "name": "Documentation Expert",
        "specialization": "Documentation",
        "expertise_areas": ["API Docs", "User Guides", "Technical Writing", "Architecture Diagrams"],
    },
    {
        "agent_id": "devops-engineer",
        "name": "DevOps Engineer",
        "specialization": "DevOps & CI/CD",
        "expertise_areas": ["Docker", "Kubernetes", "GitHub Actions", "Jenkins", "Terraform"],
    },
    {
        "agent_id": "data-scientist",
        "name": "Data Scientist",
        "specialization": "Data Science & ML",
        "expertise_areas": ["Machine Learning", "Data Analysis", "Neural Networks", "NLP", "Computer Vision"],
    },
    {
        "agent_id": "uiux-designer",
        "name": "UI/UX Designer",
        "specialization": "User Interface & Experience",
        "expertise_areas": ["React", "Vue", "Angular", "Design Systems", "Accessibility"],
    },
    {
        "agent_id": "backend-specialist",
        "name": "Backend Specialist",
        "specialization": "Backend Development",
        "expertise_areas": ["REST APIs", "GraphQL", "Databases", "Caching", "Message Queues"],
    },
    {
        "agent_id": "frontend-specialist",
        "name": "Frontend Specialist",
        "specialization": "Frontend Development",
        "expertise_areas": ["HTML/CSS", "JavaScript", "Responsive Design", "PWAs", "Performance"],
    },
    {
        "agent_id": "database-expert",
        "name": "Database Expert",
        "specialization": "Database Design & Optimization",
        "expertise_areas": ["SQL", "NoSQL", "Query Optimization", "Data Modeling", "Migrations"],
    },
    {
        "agent_id": "api-designer",
        "name": "API Designer",
        "specialization": "API Design & Integration",
        "expertise_areas": ["REST", "GraphQL", "gRPC", "WebSockets", "API Security"],
    },
]


class AgentRegistry:
    """
    Lookup and load accounting for agents.

    Load changes are serialized per agent with an asyncio.Lock and applied as
    a single ``current_load = current_load + delta`` UPDATE, so concurrent
    assignment creates/completions never lose an update. No clamping happens
    here: callers pair every decrement with exactly one earlier increment.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def seed(self, catalog: Optional[List[Dict[str, object]]] = None) -> int:
        """
        Insert the catalog, ignoring agents that already exist.

        Returns:
            Number of agents in the registry after seeding
        """
        catalog = catalog if catalog is not None else DEFAULT_AGENTS
        async with self.session_factory() as session:
            dialect = session.bind.dialect.name
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            for entry in catalog:
                stmt = insert(Agent).values(**entry).on_conflict_do_nothing(index_elements=["agent_id"])
                await session.execute(stmt)
            await session.commit()

        agents = await self.list(active_only=False)
        logger.info(f"Agent registry seeded: {len(agents)} agents")
        return len(agents)

    async def get(self, agent_id: str) -> Agent:
        """
        Get an active agent by its identifier.

        Raises:
            NotFoundError: If the agent is unknown or inactive
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Agent).where(Agent.agent_id == agent_id, Agent.status == "active")
            )
            agent = result.scalar_one_or_none()
        if agent is None:
            raise NotFoundError("agent", agent_id)
        return agent

    async def list(self, active_only: bool = True) -> List[Agent]:
        async with self.session_factory() as session:
            query = select(Agent).order_by(Agent.id)
            if active_only:
                query = query.where(Agent.status == "active")
            result = await session.execute(query)
            return list(result.scalars().all())

    async def adjust_load(self, agent_id: str, delta: int) -> Agent:
        """
        Atomically add ``delta`` to an agent's current load.

        Raises:
            NotFoundError: If the agent does not exist
        """
        async with self._locks[agent_id]:
            async with self.session_factory() as session:
                stmt = (
                    update(Agent)
                    .where(Agent.agent_id == agent_id)
                    .values(current_load=Agent.current_load + delta)
                    .returning(Agent)
                )
                res = await session.execute(stmt)
                agent = res.scalar_one_or_none()
                if agent is None:
                    await session.rollback()
                    raise NotFoundError("agent", agent_id)
                await session.commit()

        if agent.current_load < 0:
            logger.error(f"Agent {agent_id} load went negative ({agent.current_load}); unmatched decrement")
        elif delta > 0 and agent.current_load > agent.max_capacity:
            logger.warning(
                f"Agent {agent_id} is over capacity: {agent.current_load}/{agent.max_capacity}"
            )
        return agent
