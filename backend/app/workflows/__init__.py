"""Workflow helpers shared by the API routes."""

from app.workflows.utils import (
    EnvironmentVariableError,
    process_block_states,
    update_workflow_run_counts,
)

__all__ = ["EnvironmentVariableError", "process_block_states", "update_workflow_run_counts"]
