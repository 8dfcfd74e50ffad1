"""Pydantic models for the delegation tracker.

Typed records for the reasoning collaborator's structured replies
(understanding, plan, decomposition) and the API request/response shapes.
JSON columns are only (de)serialized through these models at the storage
boundary.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# Enums
class TaskStatus(str, Enum):
    """Task status values."""
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"


class TaskPriority(str, Enum):
    """Task priority levels."""
    low = "low"
    normal = "normal"
    high = "high"
    critical = "critical"


class AssignmentStatus(str, Enum):
    """Assignment status values."""
    assigned = "assigned"
    in_progress = "in-progress"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class WorkBotType(str, Enum):
    """Kinds of work bot an agent can spawn."""
    research = "research"
    code_generation = "code-generation"
    testing = "testing"
    documentation = "documentation"
    deployment = "deployment"
    analysis = "analysis"
    general = "general"


class WorkBotStatus(str, Enum):
    """Work bot status values."""
    created = "created"
    running = "running"
    completed = "completed"
    failed = "failed"


class SourceType(str, Enum):
    """Who emitted a progress update."""
    coordinator = "coordinator"
    agent = "agent"
    work_bot = "work-bot"
    external = "external"


# Reasoning collaborator records
class Understanding(BaseModel):
    """Classification of a task. Extra keys from the model are kept as-is."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    primary_intent: str = Field(default="", alias="primaryIntent")
    complexity: str = "Moderate"
    required_expertise: List[str] = Field(default_factory=list, alias="requiredExpertise")

    @classmethod
    def fallback(cls, description: str) -> "Understanding":
        return cls(primaryIntent=description, complexity="Moderate", requiredExpertise=["General"])


class WorkPackage(BaseModel):
    """One slice of a project plan, addressed to a single agent."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    id: str = ""
    name: str
    description: str = ""
    assigned_to: str = Field(..., alias="assignedTo")
    elements: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)


class ProjectPlan(BaseModel):
    """Ordered work packages plus free-form planning notes."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    overview: str = ""
    work_packages: List[WorkPackage] = Field(..., alias="workPackages", min_length=1)
    milestones: List[Any] = Field(default_factory=list)
    timeline: Any = ""

    @classmethod
    def fallback(cls, agent_id: str) -> "ProjectPlan":
        return cls(
            overview="Auto-generated basic plan",
            workPackages=[
                WorkPackage(
                    id="wp-1",
                    name="Complete task",
                    assignedTo=agent_id,
                    elements=["Main implementation"],
                )
            ],
        )


class WorkBotSpec(BaseModel):
    """A concrete unit of work derived from an assignment's elements."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    description: str = Field(..., min_length=1)
    bot_type: WorkBotType = Field(default=WorkBotType.general, alias="botType")
    expected_output: str = Field(default="", alias="expectedOutput")
    dependencies: List[Any] = Field(default_factory=list)

    @field_validator("bot_type", mode="before")
    @classmethod
    def _unknown_type_is_general(cls, value: Any) -> Any:
        valid = {t.value for t in WorkBotType}
        if isinstance(value, WorkBotType) or value in valid:
            return value
        return WorkBotType.general


class Decomposition(BaseModel):
    """Work bot specs an agent derived from its assigned elements."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    tasks: List[WorkBotSpec] = Field(..., min_length=1)
    strategy: str = ""

    @classmethod
    def fallback(cls, elements: List[str]) -> "Decomposition":
        return cls(
            tasks=[
                WorkBotSpec(description=e, botType=WorkBotType.general, expectedOutput=f"Complete: {e}")
                for e in elements
            ],
            strategy="Sequential execution",
        )


class BotResult(BaseModel):
    """Outcome of running one work bot."""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[str] = None


# Request models
class TaskCreate(BaseModel):
    """Request model for submitting a task.

    userId and title are checked by the master coordinator so that every
    inbound trigger gets the same validation envelope.
    """

    model_config = {"populate_by_name": True}

    user_id: Optional[str] = Field(None, alias="userId")
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    timeline: Optional[str] = None
    desired_outcomes: Optional[str] = Field(None, alias="desiredOutcomes")
    available_resources: Optional[List[str]] = Field(None, alias="availableResources")
    priority: TaskPriority = TaskPriority.normal


class InteractRequest(BaseModel):
    """Request model for a free-text question about a task."""
    message: str = Field(..., min_length=1)


class InteractResponse(BaseModel):
    response: str


# Response models
class TaskView(BaseModel):
    """Response model for a task."""
    id: str
    user_id: str
    title: str
    description: str
    intent: Optional[Dict[str, Any]]
    timeline: Optional[str]
    desired_outcomes: Optional[str]
    available_resources: Optional[List[str]]
    priority: TaskPriority
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]


class AssignmentView(BaseModel):
    """Response model for an assignment joined with its agent."""
    id: str
    agent_id: str
    agent_name: str
    specialization: str
    work_package: Optional[str]
    assigned_elements: List[str]
    status: AssignmentStatus
    progress: int
    assigned_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


class ProgressUpdateView(BaseModel):
    """Response model for a progress update."""
    id: str
    source_type: SourceType
    source_id: str
    message: str
    progress_percentage: Optional[int]
    created_at: datetime


class AgentView(BaseModel):
    """Registry snapshot of one agent."""
    agent_id: str
    name: str
    specialization: str
    expertise_areas: List[str]
    status: str
    current_load: int
    max_capacity: int
    performance_score: float


class TaskStatusView(BaseModel):
    """Task joined with its assignments and newest-first progress updates."""
    task: TaskView
    assignments: List[AssignmentView]
    updates: List[ProgressUpdateView]
