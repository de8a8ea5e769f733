"""Database module."""

from app.db.database import close_database, get_db, init_database
from app.db.workflow_store import WorkflowStore, workflow_store

__all__ = ["get_db", "init_database", "close_database", "workflow_store", "WorkflowStore"]
