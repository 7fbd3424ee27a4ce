"""Database models and storage layer."""

from .database import Base, create_tables, drop_tables
from .models import WorkflowModel, ExecutionModel

__all__ = [
    "Base",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "ExecutionModel",
]
