"""SQLAlchemy database models for workflows and executions."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow documents."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    version = Column(Integer, nullable=False, default=1)
    definition = Column(JSON, nullable=False)  # nodes, connections and settings
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship(
        "ExecutionModel",
        back_populates="workflow",
        cascade="all, delete-orphan"
    )


class ExecutionModel(Base):
    """Database model for execution lifecycle records."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # pending, running, completed, failed, cancelled
    mode = Column(String, nullable=False, default="sync")
    inputs = Column(JSON)
    outputs = Column(JSON)
    error = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    progress = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)

    workflow = relationship("WorkflowModel", back_populates="executions")
