"""Pydantic models for the Sim workflow service."""

from app.models.execution import (
    BlockLog,
    ExecutionMetadata,
    ExecutionResult,
    ExecutionTrigger,
    TraceSpan,
    WorkflowLog,
)
from app.models.serialized import (
    BlockConfig,
    BlockMetadata,
    SerializedBlock,
    SerializedConnection,
    SerializedWorkflow,
)
from app.models.workflow import (
    BlockState,
    DeploymentInfo,
    Loop,
    Position,
    SubBlockState,
    Workflow,
    WorkflowCreate,
    WorkflowEdge,
    WorkflowState,
    WorkflowSummary,
    WorkflowVariable,
)

__all__ = [
    # Workflow state
    "Workflow",
    "WorkflowCreate",
    "WorkflowSummary",
    "WorkflowState",
    "WorkflowEdge",
    "WorkflowVariable",
    "BlockState",
    "SubBlockState",
    "Position",
    "Loop",
    "DeploymentInfo",
    # Serialized form
    "SerializedWorkflow",
    "SerializedBlock",
    "SerializedConnection",
    "BlockConfig",
    "BlockMetadata",
    # Execution
    "ExecutionResult",
    "ExecutionMetadata",
    "ExecutionTrigger",
    "BlockLog",
    "TraceSpan",
    "WorkflowLog",
]
