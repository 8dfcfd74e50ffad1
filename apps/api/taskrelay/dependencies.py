"""Service wiring. Everything is constructed once per app and kept on app.state."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .agents import AgentCoordinator, MasterCoordinator
from .core.config import Settings, settings as default_settings
from .db.session import AsyncSessionLocal
from .events import EventHub
from .jobs.sweep import AssignmentSweeper
from .reasoning import LLMReasoning, ReasoningClient
from .registry import AgentRegistry
from .storage import TaskStore


@dataclass
class Services:
    store: TaskStore
    registry: AgentRegistry
    events: EventHub
    coordinator: AgentCoordinator
    master: MasterCoordinator
    sweeper: AssignmentSweeper


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    reasoning: Optional[ReasoningClient] = None,
    config: Optional[Settings] = None,
) -> Services:
    config = config or default_settings
    session_factory = session_factory or AsyncSessionLocal
    reasoning = reasoning or LLMReasoning()

    store = TaskStore(session_factory)
    registry = AgentRegistry(session_factory)
    events = EventHub()
    coordinator = AgentCoordinator(store, registry, reasoning, events, max_work_bots=config.MAX_WORK_BOTS)
    master = MasterCoordinator(store, registry, reasoning, events, config=config)
    sweeper = AssignmentSweeper(store, coordinator, master, interval_seconds=config.SWEEP_INTERVAL_SECONDS)
    return Services(store, registry, events, coordinator, master, sweeper)


def get_master(request: Request) -> MasterCoordinator:
    return request.app.state.services.master


def get_sweeper(request: Request) -> AssignmentSweeper:
    return request.app.state.services.sweeper


def get_event_hub(websocket: WebSocket) -> EventHub:
    return websocket.app.state.services.events
