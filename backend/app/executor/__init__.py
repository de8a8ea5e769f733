"""Workflow executor."""

from app.executor.exceptions import (
    BlockExecutionError,
    ExecutorError,
    ReferenceResolutionError,
    WorkflowValidationError,
)
from app.executor.executor import MAX_LOOP_ITERATIONS, Executor

__all__ = [
    "BlockExecutionError",
    "Executor",
    "ExecutorError",
    "MAX_LOOP_ITERATIONS",
    "ReferenceResolutionError",
    "WorkflowValidationError",
]
