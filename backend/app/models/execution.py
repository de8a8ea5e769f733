"""Pydantic models for execution results, block logs and trace spans."""

from typing import Any, Literal

from pydantic import Field as PydanticField

from app.models.workflow import CamelModel


class BlockLog(CamelModel):
    """Record of a single block execution."""

    block_id: str
    block_name: str | None = None
    block_type: str | None = None
    started_at: str
    ended_at: str
    duration_ms: int = 0
    success: bool
    output: Any = None
    error: str | None = None
    input: dict[str, Any] = PydanticField(default_factory=dict)


class ExecutionMetadata(CamelModel):
    """Timing information for a whole run."""

    duration: int = 0
    start_time: str | None = None
    end_time: str | None = None


class TraceSpan(CamelModel):
    """A timed span in the execution trace, possibly with child spans."""

    id: str
    name: str
    type: str
    duration: int = 0
    start_time: str
    end_time: str
    status: Literal["success", "error"] = "success"
    block_id: str | None = None
    input: Any = None
    output: Any = None
    tokens: dict[str, int] | None = None
    model: str | None = None
    children: list["TraceSpan"] = PydanticField(default_factory=list)


class ExecutionResult(CamelModel):
    """Outcome of executing a workflow."""

    success: bool
    output: Any = PydanticField(default_factory=dict)
    error: str | None = None
    logs: list[BlockLog] = PydanticField(default_factory=list)
    metadata: ExecutionMetadata = PydanticField(default_factory=ExecutionMetadata)
    trace_spans: list[TraceSpan] | None = None
    total_duration: int | None = None


ExecutionTrigger = Literal["api", "manual", "webhook", "schedule", "chat"]


class WorkflowLog(CamelModel):
    """A persisted execution log row."""

    id: str
    workflow_id: str
    execution_id: str | None = None
    level: Literal["info", "error"]
    message: str
    duration: str | None = None
    trigger: str
    created_at: str
    metadata: dict[str, Any] | None = None
