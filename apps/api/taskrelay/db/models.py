"""Database models for the delegation tracker.

This module defines SQLAlchemy ORM models for tasks, agents, assignments,
work bots, project plans and the progress audit log.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, false, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(Base):
    """Model for a user-submitted task tracked end to end."""

    __tablename__ = "tasks"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text(), nullable=False, server_default="")
    intent = Column(JSONType, nullable=True)  # Understanding produced by the reasoning collaborator
    timeline = Column(Text(), nullable=True)
    desired_outcomes = Column(Text(), nullable=True)
    available_resources = Column(JSONType, nullable=True)
    priority = Column(String(20), nullable=False, server_default="normal")
    status = Column(String(20), nullable=False, server_default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    assignments = relationship("Assignment", back_populates="task", cascade="all, delete-orphan")
    updates = relationship("ProgressUpdate", back_populates="task", cascade="all, delete-orphan")
    plans = relationship("ProjectPlan", back_populates="task", cascade="all, delete-orphan")


class Agent(Base):
    """Model for a specialized worker identity with bounded capacity."""

    __tablename__ = "agents"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    agent_id = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=False)
    expertise_areas = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, server_default="active")
    current_load = Column(Integer(), nullable=False, server_default="0", default=0)
    max_capacity = Column(Integer(), nullable=False, server_default="10", default=10)
    performance_score = Column(Float(), nullable=False, server_default="100.0", default=100.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())

    # Relationships
    assignments = relationship("Assignment", back_populates="agent")


class Assignment(Base):
    """Model for one work package of a task delegated to one agent."""

    __tablename__ = "assignments"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    task_id = Column(Integer(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer(), ForeignKey("agents.id"), nullable=False, index=True)
    work_package = Column(String(255), nullable=True)
    assigned_elements = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, server_default="assigned", index=True)
    progress = Column(Integer(), nullable=False, server_default="0", default=0)
    load_released = Column(Boolean(), nullable=False, server_default=false(), default=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    task = relationship("Task", back_populates="assignments")
    agent = relationship("Agent", back_populates="assignments")
    work_bots = relationship("WorkBot", back_populates="assignment", cascade="all, delete-orphan")


class WorkBot(Base):
    """Model for a short-lived simulated work unit under an assignment."""

    __tablename__ = "work_bots"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    assignment_id = Column(Integer(), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer(), ForeignKey("agents.id"), nullable=False)
    bot_type = Column(String(50), nullable=False)
    description = Column(Text(), nullable=False)
    status = Column(String(20), nullable=False, server_default="created")
    result = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    assignment = relationship("Assignment", back_populates="work_bots")


class ProjectPlan(Base):
    """Model for a plan obtained from the reasoning collaborator."""

    __tablename__ = "project_plans"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    task_id = Column(Integer(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_data = Column(JSONType, nullable=False)
    version = Column(Integer(), nullable=False, server_default="1", default=1)
    approved = Column(Boolean(), nullable=False, server_default=false(), default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    task = relationship("Task", back_populates="plans")


class ProgressUpdate(Base):
    """Append-only audit log entry for a task."""

    __tablename__ = "progress_updates"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    task_id = Column(Integer(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type = Column(String(20), nullable=False)
    source_id = Column(String(255), nullable=False)
    message = Column(Text(), nullable=False)
    progress_percentage = Column(Integer(), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="updates")
